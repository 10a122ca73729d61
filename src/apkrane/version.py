"""Parsing and ordering of APK package version strings.

An APK version is made of up to four segments, always in this order::

    1.2.3      dotted numeric components (mandatory)
    b          optional single-letter qualifier
    _rc1_p2    zero or more suffix groups: keyword + optional counter
    -r4        optional package revision

Versions are compared segment by segment. Suffix keywords follow a fixed
rank where pre-release markers sort below a bare version and post-release
markers sort above it::

    alpha < beta < pre < rc < (none) < cvs < svn < git < hg < p
"""

import re
from dataclasses import dataclass
from enum import IntEnum
from functools import total_ordering
from itertools import zip_longest

from apkrane.errors import VersionError


class Suffix(IntEnum):
    """Suffix keywords, valued by their rank."""

    ALPHA = -4
    BETA = -3
    PRE = -2
    RC = -1
    NONE = 0
    CVS = 1
    SVN = 2
    GIT = 3
    HG = 4
    P = 5


class Ordering(IntEnum):
    LESS = -1
    EQUAL = 0
    GREATER = 1


_SUFFIX_KEYWORDS = {suffix.name.lower(): suffix for suffix in Suffix if suffix is not Suffix.NONE}

_VERSION_RE = re.compile(
    r"""
    (?P<numbers>[0-9]+(?:\.[0-9]+)*)
    (?P<letter>[a-z])?
    (?P<suffixes>(?:_[a-z]+[0-9]*)*)
    (?:-r(?P<revision>[0-9]+))?
    """,
    re.VERBOSE,
)
_SUFFIX_RE = re.compile(r"_([a-z]+)([0-9]*)")

# a missing suffix group compares like this one
_NO_SUFFIX = (Suffix.NONE, 0)


@total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """A parsed package version.

    Two versions are equal only when their raw strings are identical; versions
    whose segments all compare equal (``1.0`` and ``1.0.0``) are ordered by
    their raw string, so the ordering is strict and total.
    """

    raw: str
    numbers: tuple[int, ...]
    letter: str = ""
    suffixes: tuple[tuple[Suffix, int], ...] = ()
    revision: int = 0

    @classmethod
    def parse(cls, version: str) -> "Version":
        return parse_version(version)

    def __str__(self) -> str:
        return self.raw

    def __hash__(self) -> int:
        return hash(self.raw)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return compare_versions(self, other) is Ordering.EQUAL

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return compare_versions(self, other) is Ordering.LESS


def parse_version(version: str) -> Version:
    """Parse a version string.

    Args:
        version: The raw version, e.g. ``8.2.0-r1``

    Returns:
        The parsed Version

    Raises:
        VersionError: If the string is empty, has no leading numeric component,
            uses an unknown suffix keyword, or carries trailing garbage.
    """
    if not version:
        raise VersionError(version, "empty version string")

    match = _VERSION_RE.match(version)
    if match is None:
        raise VersionError(version, "must start with a numeric component")
    if match.end() != len(version):
        rest = version[match.end() :]
        raise VersionError(version, f"unexpected {rest!r} at offset {match.end()}")

    suffixes = []
    for keyword, counter in _SUFFIX_RE.findall(match["suffixes"]):
        suffix = _SUFFIX_KEYWORDS.get(keyword)
        if suffix is None:
            raise VersionError(version, f"unknown suffix {keyword!r}")
        suffixes.append((suffix, _to_int(version, counter) if counter else 0))

    revision = match["revision"]
    return Version(
        raw=version,
        numbers=tuple(_to_int(version, part) for part in match["numbers"].split(".")),
        letter=match["letter"] or "",
        suffixes=tuple(suffixes),
        revision=_to_int(version, revision) if revision is not None else 0,
    )


def _to_int(version: str, digits: str) -> int:
    # int() refuses digit strings beyond sys.get_int_max_str_digits()
    try:
        return int(digits)
    except ValueError:
        raise VersionError(version, f"numeric component of {len(digits)} digits is too long") from None


def _ordering(left, right) -> Ordering:
    if left < right:
        return Ordering.LESS
    if left > right:
        return Ordering.GREATER
    return Ordering.EQUAL


def compare_versions(a: Version, b: Version) -> Ordering:
    """Order two parsed versions."""
    for left, right in zip_longest(a.numbers, b.numbers, fillvalue=0):
        if left != right:
            return _ordering(left, right)

    if a.letter != b.letter:
        # "" sorts before any letter
        return _ordering(a.letter, b.letter)

    for left, right in zip_longest(a.suffixes, b.suffixes, fillvalue=_NO_SUFFIX):
        if left != right:
            return _ordering(left, right)

    if a.revision != b.revision:
        return _ordering(a.revision, b.revision)

    return _ordering(a.raw, b.raw)


def compare(a: str, b: str) -> Ordering:
    """Parse and order two version strings."""
    return compare_versions(parse_version(a), parse_version(b))
