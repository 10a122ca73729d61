"""Mirror synchronization: load an index, select, fetch, rebuild the local index.

Each run works on one architecture directory ``out_dir/<arch>``. The rebuilt
index lists whatever parses under that directory, not what this run selected,
so repeated runs accumulate into a complete mirror.
"""

import asyncio
import contextlib
import logging
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from apkrane.apkindex import parse_index, parse_package, serialize_index
from apkrane.constants import ARTIFACT_SUFFIX, INDEX_FILENAME
from apkrane.errors import ConfigError, IndexFormatError, NoPackagesFoundError, StorageError, SyncAbortedError
from apkrane.fetcher import Fetcher
from apkrane.models import Package
from apkrane.repository import BucketPath, RepositoryTarget
from apkrane.selector import filter_by_name, select_latest
from apkrane.utils import write_atomic

logger = logging.getLogger(__name__)


class FetchOutcome(str, Enum):
    FETCHED = "fetched"
    SKIPPED = "skipped"
    ABANDONED = "abandoned"
    FAILED = "failed"


@dataclass
class SyncResult:
    """What one architecture run did."""

    arch: str
    index_path: Path
    selected: list[Package] = field(default_factory=list)
    fetched: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    indexed: list[Package] = field(default_factory=list)


async def load_index(fetcher: Fetcher, target: RepositoryTarget) -> list[Package]:
    """Fetch and parse the index of a target."""
    logger.debug(f"Loading index {target.index}")
    data = await fetcher.read(target.index)
    try:
        packages = await asyncio.to_thread(parse_index, data)
    except IndexFormatError as e:
        raise IndexFormatError(f"{target.index}: {e}") from e
    logger.debug(f"Loaded {len(packages)} packages for {target.arch}")
    return packages


def resolve_desired(
    packages: Iterable[Package],
    names: Collection[str] | None = None,
    latest: bool = False,
) -> list[Package]:
    """Filter by name, optionally keep only the newest of each, and drop duplicate filenames."""
    wanted = filter_by_name(packages, names)
    if latest:
        wanted = select_latest(wanted)

    unique: dict[str, Package] = {}
    for pkg in wanted:
        unique.setdefault(pkg.filename, pkg)
    return list(unique.values())


def scan_directory(directory: Path) -> list[Package]:
    """Parse every artifact in a mirror directory.

    Files that are not artifacts are ignored; artifacts that fail to parse,
    or whose metadata names a different file, are logged and left out.
    """
    packages: dict[str, Package] = {}
    for path in sorted(directory.glob(f"*{ARTIFACT_SUFFIX}")):
        if not path.is_file():
            continue
        try:
            pkg = parse_package(path)
        except (IndexFormatError, OSError) as e:
            logger.warning(f"Leaving {path.name} out of the index: {e}")
            continue
        if pkg.filename != path.name:
            logger.warning(f"Leaving {path.name} out of the index: its metadata describes {pkg.filename}")
            continue
        packages[pkg.filename] = pkg

    return sorted(packages.values(), key=lambda pkg: (pkg.name, pkg.version))


class MirrorSync:
    """Mirrors packages from a repository into `out_dir`, one directory per architecture."""

    def __init__(
        self,
        fetcher: Fetcher,
        out_dir: Path,
        *,
        packages: Collection[str] | None = None,
        latest: bool = False,
        bucket: BucketPath | None = None,
        max_concurrency: int | None = None,
    ):
        """Initialize a mirror run.

        Args:
            fetcher: Fetcher used for the index and every artifact
            out_dir: Mirror root
            packages: Package names to mirror. Empty or None mirrors everything
            latest: Keep only the newest version of each package
            bucket: Fetch artifacts from this bucket instead of the repository
            max_concurrency: Upper bound on concurrent downloads per run; None for no bound
        """
        self.fetcher = fetcher
        self.out_dir = Path(out_dir)
        self.packages = set(packages or ())
        self.latest = latest
        self.bucket = bucket
        self.max_concurrency = max_concurrency

    def arch_dir(self, target: RepositoryTarget) -> Path:
        return self.out_dir / target.arch

    async def load(self, target: RepositoryTarget) -> list[Package]:
        return await load_index(self.fetcher, target)

    def resolve(self, packages: Iterable[Package]) -> list[Package]:
        """Reduce index packages to the set this run should mirror.

        Raises:
            NoPackagesFoundError: If nothing matches.
        """
        desired = resolve_desired(packages, self.packages, self.latest)
        if not desired:
            if self.packages:
                raise NoPackagesFoundError(f"no packages found matching {', '.join(sorted(self.packages))}")
            raise NoPackagesFoundError("no packages found")
        return desired

    async def fetch_all(
        self,
        target: RepositoryTarget,
        packages: Sequence[Package],
        failed: asyncio.Event | None = None,
    ) -> list[FetchOutcome]:
        """Download every package not yet present, concurrently.

        All downloads start together. The first failure stops downloads that
        have not started yet; those in flight run to completion. Once every
        download has finished or been abandoned, the first failure is raised.

        Args:
            target: Architecture being mirrored
            packages: Packages to download
            failed: Stop signal shared with other runs. A fresh one is used if not given

        Returns:
            The outcome of each package, in input order

        Raises:
            SyncAbortedError: If `failed` was set by another run and no download of this one failed
        """
        arch_dir = self.arch_dir(target)
        if failed is None:
            failed = asyncio.Event()
        errors: list[Exception] = []
        limiter = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else contextlib.nullcontext()

        async def fetch_one(pkg: Package) -> FetchOutcome:
            async with limiter:
                if failed.is_set():
                    logger.debug(f"Not fetching {pkg.filename}: an earlier download failed")
                    return FetchOutcome.ABANDONED
                try:
                    source = target.artifact_source(pkg.filename, self.bucket)
                    downloaded = await self.fetcher.download(source, arch_dir / pkg.filename)
                except Exception as e:
                    if not failed.is_set():
                        errors.append(e)
                        failed.set()
                    logger.debug(f"Fetching {pkg.filename} failed: {e}")
                    return FetchOutcome.FAILED

            if downloaded:
                logger.info(f"Fetched {pkg.filename}")
                return FetchOutcome.FETCHED
            return FetchOutcome.SKIPPED

        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(fetch_one(pkg)) for pkg in packages]

        if errors:
            raise errors[0]
        if failed.is_set():
            raise SyncAbortedError(f"{target.arch}: stopped after a failure in another architecture")
        return [task.result() for task in tasks]

    async def rebuild(self, target: RepositoryTarget) -> tuple[Path, list[Package]]:
        """Write a new index listing every artifact present for the target."""
        arch_dir = self.arch_dir(target)
        try:
            arch_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(str(arch_dir), f"cannot create directory: {e}") from e

        packages = await asyncio.to_thread(scan_directory, arch_dir)
        index_path = arch_dir / INDEX_FILENAME
        try:
            await asyncio.to_thread(write_atomic, index_path, serialize_index(packages))
        except OSError as e:
            raise StorageError(str(index_path), f"cannot write index: {e}") from e
        logger.info(f"Wrote {index_path} with {len(packages)} packages")
        return index_path, packages

    async def run(self, target: RepositoryTarget, failed: asyncio.Event | None = None) -> SyncResult:
        """Mirror one architecture: load, resolve, fetch, rebuild.

        Any fetch failure, here or in a run sharing `failed`, aborts the run
        before the index is rebuilt.
        """
        if self.bucket is None and target.base is None:
            raise ConfigError(f"no artifact location for {target.arch}: pass a base URL or a bucket")

        selected = self.resolve(await self.load(target))
        logger.info(f"Mirroring {len(selected)} packages for {target.arch} into {self.arch_dir(target)}")

        outcomes = await self.fetch_all(target, selected, failed)
        index_path, indexed = await self.rebuild(target)

        return SyncResult(
            arch=target.arch,
            index_path=index_path,
            selected=selected,
            fetched=[pkg.filename for pkg, out in zip(selected, outcomes) if out is FetchOutcome.FETCHED],
            skipped=[pkg.filename for pkg, out in zip(selected, outcomes) if out is FetchOutcome.SKIPPED],
            indexed=indexed,
        )

    async def run_all(self, targets: Sequence[RepositoryTarget]) -> list[SyncResult]:
        """Run every target concurrently; the first failing architecture fails the call.

        A failure stops the other architectures from starting new downloads,
        lets their in-flight downloads finish, and keeps them from rebuilding
        their index. Architectures that already finished keep theirs.
        """
        failed = asyncio.Event()
        errors: list[Exception] = []

        async def run_one(target: RepositoryTarget) -> SyncResult | None:
            try:
                return await self.run(target, failed)
            except Exception as e:
                errors.append(e)
                failed.set()
                logger.debug(f"Mirroring {target.arch} failed: {e}")
                return None

        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(run_one(target)) for target in targets]

        if errors:
            # the aborted architectures only echo the failure that stopped them
            raise next((e for e in errors if not isinstance(e, SyncAbortedError)), errors[0])
        return [task.result() for task in tasks]
