"""Resolution of index locations into per-architecture repository targets."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from apkrane.config import HttpAuth
from apkrane.constants import DEFAULT_ARCH, INDEX_FILENAME, REPOSITORY_ALIASES
from apkrane.errors import ConfigError, UnknownRepositoryError
from apkrane.fetcher import BucketSource, HttpSource, LocalSource, Source, StdinSource

logger = logging.getLogger(__name__)

STDIN_LOCATION = "-"


def is_url(location: str) -> bool:
    return urlparse(location).scheme in {"http", "https"}


@dataclass(frozen=True)
class BucketPath:
    """A `bucket-name/key-prefix` location in object storage."""

    bucket: str
    prefix: str = ""

    @classmethod
    def parse(cls, value: str) -> "BucketPath":
        bucket, _, prefix = value.strip().removeprefix("s3://").partition("/")
        if not bucket:
            raise ConfigError(f"invalid bucket path {value!r}: expected 'bucket-name/key-prefix'")
        return cls(bucket=bucket, prefix=prefix.strip("/"))

    def key(self, *parts: str) -> str:
        return "/".join(part for part in (self.prefix, *parts) if part)


@dataclass(frozen=True)
class RepositoryTarget:
    """One architecture of a repository: where its index is and where its artifacts live.

    Attributes:
        arch: Architecture name, also the mirror subdirectory
        index: Source of the APKINDEX.tar.gz
        base: URL or directory holding the artifacts, None when unknown (stdin without a base URL)
        auth: Credentials sent with HTTP requests for this repository
    """

    arch: str
    index: Source
    base: str | None = None
    auth: HttpAuth | None = None

    def artifact_location(self, filename: str) -> str:
        """Full URL or path of an artifact, for display."""
        if self.base is None:
            return filename
        if is_url(self.base):
            return f"{self.base.rstrip('/')}/{filename}"
        return str(Path(self.base) / filename)

    def artifact_source(self, filename: str, bucket: BucketPath | None = None) -> Source:
        """Where to fetch an artifact from.

        Raises:
            ConfigError: If neither a bucket nor a repository base is known.
        """
        if bucket is not None:
            return BucketSource(bucket=bucket.bucket, key=bucket.key(self.arch, filename))
        if self.base is None:
            raise ConfigError(f"no artifact location for {self.arch}: pass a base URL or a bucket")
        if is_url(self.base):
            return HttpSource(url=f"{self.base.rstrip('/')}/{filename}", auth=self.auth)
        return LocalSource(path=Path(self.base) / filename)


def _unique(archs: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(arch for arch in archs if arch))


def _url_targets(url: str, archs: Sequence[str], auth: HttpAuth | None) -> list[RepositoryTarget]:
    url = url.rstrip("/")
    if url.endswith(f"/{INDEX_FILENAME}"):
        base = url.removesuffix(f"/{INDEX_FILENAME}")
        root, _, index_arch = base.rpartition("/")
        if not archs or _unique(archs) == [index_arch]:
            return [RepositoryTarget(arch=index_arch, index=HttpSource(url, auth), base=base, auth=auth)]
    else:
        root = url

    return [
        RepositoryTarget(
            arch=arch,
            index=HttpSource(f"{root}/{arch}/{INDEX_FILENAME}", auth),
            base=f"{root}/{arch}",
            auth=auth,
        )
        for arch in _unique(archs) or [DEFAULT_ARCH]
    ]


def _path_targets(path: Path, archs: Sequence[str]) -> list[RepositoryTarget]:
    if path.name == INDEX_FILENAME:
        base = path.parent
        index_arch = base.absolute().name
        if not archs or _unique(archs) == [index_arch]:
            return [RepositoryTarget(arch=index_arch, index=LocalSource(path), base=str(base))]
        root = base.parent
    else:
        root = path

    return [
        RepositoryTarget(
            arch=arch,
            index=LocalSource(root / arch / INDEX_FILENAME),
            base=str(root / arch),
        )
        for arch in _unique(archs) or [DEFAULT_ARCH]
    ]


def resolve_targets(
    location: str,
    archs: Sequence[str] = (),
    *,
    auth: HttpAuth | None = None,
    base_url: str | None = None,
) -> list[RepositoryTarget]:
    """Turn a user-supplied index location into one target per architecture.

    Args:
        location: `-` for stdin, an HTTP(S) URL, a local path, or a repository alias.
            A location ending in APKINDEX.tar.gz is one architecture's index;
            anything else is a repository root that holds one directory per architecture.
        archs: Architectures to mirror. Defaults to the one named by the location, else DEFAULT_ARCH
        auth: HTTP credentials for the repository
        base_url: Artifact base for a stdin index

    Raises:
        UnknownRepositoryError: If the location is a bare name that is not a known alias
        ConfigError: If stdin is combined with several architectures
    """
    if location == STDIN_LOCATION:
        arch_list = _unique(archs) or [DEFAULT_ARCH]
        if len(arch_list) > 1:
            raise ConfigError("an index read from stdin serves exactly one architecture")
        return [RepositoryTarget(arch=arch_list[0], index=StdinSource(), base=base_url, auth=auth)]

    if location in REPOSITORY_ALIASES:
        logger.debug(f"Resolved repository alias {location!r} to {REPOSITORY_ALIASES[location]}")
        return _url_targets(REPOSITORY_ALIASES[location], archs, auth)

    if is_url(location):
        return _url_targets(location, archs, auth)

    path = Path(location)
    if path.exists() or "/" in location or path.name == INDEX_FILENAME:
        return _path_targets(path, archs)

    raise UnknownRepositoryError(location, list(REPOSITORY_ALIASES))
