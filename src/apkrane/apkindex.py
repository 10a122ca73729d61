"""APKINDEX archive and .apk artifact codec.

An APKINDEX.tar.gz is a gzip-compressed tar stream holding an ``APKINDEX``
text member (and usually ``DESCRIPTION``). Signed indexes prepend a second
gzip member carrying the signature; ``gzip.decompress`` reads both as one
continuous tar stream.

The APKINDEX text is a list of blocks separated by blank lines, one
``K:value`` pair per line::

    C:Q1hdUpqRv5mYgJEqW52UmVsvmy3EE=
    P:curl
    V:8.2.0-r0
    A:x86_64
    ...

An .apk is itself a concatenation of gzip streams (signature, control, data).
The control stream is a tar holding ``.PKGINFO``; the index checksum of a
package is the SHA-1 of that compressed stream, base64-encoded behind a
``Q1`` prefix.
"""

import base64
import gzip
import hashlib
import io
import logging
import tarfile
import zlib
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import BinaryIO

from pydantic import ValidationError

from apkrane.constants import INDEX_MEMBER
from apkrane.errors import IndexFormatError
from apkrane.models import Package

logger = logging.getLogger(__name__)

# index key -> (model field, kind); also the order fields are written in
_INDEX_FIELDS: dict[str, tuple[str, type]] = {
    "C": ("checksum", str),
    "P": ("name", str),
    "V": ("version", str),
    "A": ("arch", str),
    "S": ("size", int),
    "I": ("installed_size", int),
    "T": ("description", str),
    "U": ("url", str),
    "L": ("license", str),
    "o": ("origin", str),
    "m": ("maintainer", str),
    "t": ("build_time", int),
    "c": ("repo_commit", str),
    "k": ("provider_priority", int),
    "D": ("dependencies", tuple),
    "p": ("provides", tuple),
    "i": ("install_if", tuple),
    "r": ("replaces", tuple),
    "q": ("replaces_priority", int),
}

_PKGINFO_FIELDS: dict[str, tuple[str, type]] = {
    "pkgname": ("name", str),
    "pkgver": ("version", str),
    "pkgdesc": ("description", str),
    "url": ("url", str),
    "builddate": ("build_time", int),
    "size": ("installed_size", int),
    "arch": ("arch", str),
    "origin": ("origin", str),
    "commit": ("repo_commit", str),
    "maintainer": ("maintainer", str),
    "license": ("license", str),
    "provider_priority": ("provider_priority", int),
    "depend": ("dependencies", tuple),
    "provides": ("provides", tuple),
    "install_if": ("install_if", tuple),
    "replaces": ("replaces", tuple),
    "replaces_priority": ("replaces_priority", int),
}

PKGINFO_MEMBER = ".PKGINFO"
DESCRIPTION_MEMBER = "DESCRIPTION"


def _set_field(fields: dict, name: str, kind: type, value: str) -> None:
    if kind is tuple:
        fields[name] = fields.get(name, ()) + tuple(value.split())
    elif kind is int:
        try:
            fields[name] = int(value)
        except ValueError:
            raise IndexFormatError(f"field {name!r} is not an integer: {value!r}") from None
    else:
        fields[name] = value


def _build_package(fields: dict, origin: str) -> Package:
    if not fields.get("name") or not fields.get("version"):
        raise IndexFormatError(f"{origin}: entry without package name or version: {fields}")
    try:
        return Package(**fields)
    except ValidationError as e:
        raise IndexFormatError(f"{origin}: invalid package entry: {e}") from e


def parse_index_text(content: str) -> list[Package]:
    """Parse the text of an APKINDEX member into packages, in index order."""
    packages = []
    fields: dict = {}
    for lineno, line in enumerate(content.splitlines(), start=1):
        if not line.strip():
            if fields:
                packages.append(_build_package(fields, f"APKINDEX line {lineno}"))
                fields = {}
            continue

        key, sep, value = line.partition(":")
        if not sep or len(key) != 1:
            raise IndexFormatError(f"APKINDEX line {lineno}: malformed line {line!r}")
        if key in _INDEX_FIELDS:
            _set_field(fields, *_INDEX_FIELDS[key], value)

    if fields:
        packages.append(_build_package(fields, "APKINDEX end"))
    return packages


def parse_index(data: bytes) -> list[Package]:
    """Parse APKINDEX.tar.gz bytes into packages.

    Raises:
        IndexFormatError: If the archive is not gzip/tar, lacks an APKINDEX
            member, or holds malformed entries.
    """
    try:
        raw = gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise IndexFormatError(f"index is not a gzip archive: {e}") from e

    try:
        with tarfile.open(fileobj=io.BytesIO(raw), mode="r:", ignore_zeros=True) as tar:
            for member in tar:
                if member.name != INDEX_MEMBER:
                    continue
                fobj = tar.extractfile(member)
                if fobj is None:
                    raise IndexFormatError(f"{INDEX_MEMBER} member is not a regular file")
                with fobj as index_file:
                    content = index_file.read().decode("utf-8")
                return parse_index_text(content)
    except (tarfile.TarError, UnicodeDecodeError) as e:
        raise IndexFormatError(f"index archive is unreadable: {e}") from e

    raise IndexFormatError(f"index archive has no {INDEX_MEMBER} member")


def format_index_text(packages: Iterable[Package]) -> str:
    """Render packages as APKINDEX text."""
    blocks = []
    for pkg in packages:
        lines = []
        for key, (name, kind) in _INDEX_FIELDS.items():
            value = getattr(pkg, name)
            if kind is tuple:
                if value:
                    lines.append(f"{key}:{' '.join(value)}")
            elif value is not None:
                lines.append(f"{key}:{value}")
        blocks.append("\n".join(lines) + "\n\n")
    return "".join(blocks)


def _add_member(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = 0o644
    info.mtime = 0
    tar.addfile(info, io.BytesIO(data))


def serialize_index(packages: Iterable[Package], description: str | None = None) -> bytes:
    """Build an unsigned APKINDEX.tar.gz.

    The output only depends on the packages (and their order) and the
    description: tar and gzip timestamps are pinned.
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:", format=tarfile.USTAR_FORMAT) as tar:
        if description:
            _add_member(tar, DESCRIPTION_MEMBER, description.encode("utf-8"))
        _add_member(tar, INDEX_MEMBER, format_index_text(packages).encode("utf-8"))
    return gzip.compress(buffer.getvalue(), mtime=0)


def _iter_gzip_streams(handle: BinaryIO, chunk_size: int = 64 * 1024) -> Iterator[tuple[bytes, bytes]]:
    """Yield (decompressed content, sha1 of compressed bytes) per gzip member."""
    buffer = b""
    while True:
        if not buffer:
            buffer = handle.read(chunk_size)
            if not buffer:
                return

        decomp = zlib.decompressobj(16 + zlib.MAX_WBITS)
        digest = hashlib.sha1()
        content = []
        while not decomp.eof:
            if not buffer:
                buffer = handle.read(chunk_size)
                if not buffer:
                    raise IndexFormatError("truncated gzip stream")
            try:
                content.append(decomp.decompress(buffer))
            except zlib.error as e:
                raise IndexFormatError(f"corrupt gzip stream: {e}") from e
            consumed = len(buffer) - len(decomp.unused_data)
            digest.update(buffer[:consumed])
            buffer = decomp.unused_data
        yield b"".join(content), digest.digest()


def _read_pkginfo(stream: bytes) -> str | None:
    """Return the .PKGINFO text if this stream is the control tar."""
    try:
        with tarfile.open(fileobj=io.BytesIO(stream), mode="r:") as tar:
            for member in tar:
                if member.name not in (PKGINFO_MEMBER, f"./{PKGINFO_MEMBER}"):
                    continue
                fobj = tar.extractfile(member)
                if fobj is None:
                    return None
                with fobj as pkginfo:
                    return pkginfo.read().decode("utf-8")
    except tarfile.TarError:
        return None
    except UnicodeDecodeError as e:
        raise IndexFormatError(f"{PKGINFO_MEMBER} is not valid UTF-8: {e}") from e
    return None


def parse_pkginfo(content: str) -> dict:
    """Map .PKGINFO ``key = value`` lines onto Package fields."""
    fields: dict = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if key in _PKGINFO_FIELDS:
            _set_field(fields, *_PKGINFO_FIELDS[key], value.strip())
    return fields


def parse_package(path: Path) -> Package:
    """Read an .apk artifact into a Package.

    Raises:
        IndexFormatError: If the file is not a valid apk.
    """
    with path.open("rb") as handle:
        for content, digest in _iter_gzip_streams(handle):
            pkginfo = _read_pkginfo(content)
            if pkginfo is None:
                continue
            fields = parse_pkginfo(pkginfo)
            fields["checksum"] = "Q1" + base64.b64encode(digest).decode("ascii")
            fields["size"] = path.stat().st_size
            return _build_package(fields, str(path))

    raise IndexFormatError(f"{path}: no {PKGINFO_MEMBER} found")
