"""Package selection: name filtering and newest-version reduction."""

import logging
from collections.abc import Collection, Iterable

from apkrane.errors import VersionError
from apkrane.models import Package
from apkrane.version import Version, parse_version

logger = logging.getLogger(__name__)


def filter_by_name(packages: Iterable[Package], names: Collection[str] | None = None) -> list[Package]:
    """Keep the packages whose name is in `names`.

    An empty or missing `names` keeps everything. Input order is preserved.
    """
    if not names:
        return list(packages)
    wanted = set(names)
    return [pkg for pkg in packages if pkg.name in wanted]


def latest_by_name(packages: Iterable[Package]) -> dict[str, Package]:
    """Reduce packages to the newest version of each name.

    Packages whose version does not parse are logged and skipped; the rest of
    the selection is unaffected.

    Returns:
        Mapping of package name to the selected package
    """
    best: dict[str, tuple[Package, Version]] = {}
    for pkg in packages:
        try:
            version = parse_version(pkg.version)
        except VersionError as e:
            logger.warning(f"Skipping {pkg.name}: {e}")
            continue

        current = best.get(pkg.name)
        if current is None or version > current[1]:
            best[pkg.name] = (pkg, version)

    return {name: pkg for name, (pkg, _) in best.items()}


def select_latest(packages: Iterable[Package]) -> list[Package]:
    """Like latest_by_name, as a list sorted by package name."""
    selected = latest_by_name(packages)
    return [selected[name] for name in sorted(selected)]
