"""Exceptions raised by apkrane."""


class ApkraneError(Exception):
    """Base class for all apkrane errors."""


class VersionError(ApkraneError, ValueError):
    """A package version string could not be parsed."""

    def __init__(self, version: str, reason: str):
        self.version = version
        self.reason = reason
        super().__init__(f"invalid version {version!r}: {reason}")


class IndexFormatError(ApkraneError):
    """An APKINDEX archive or .apk artifact could not be decoded."""


class ConfigError(ApkraneError):
    """Invalid user-supplied configuration."""


class UnknownRepositoryError(ConfigError):
    """A repository alias that apkrane does not know about."""

    def __init__(self, alias: str, known: list[str]):
        self.alias = alias
        super().__init__(f"unknown repository {alias!r} (known aliases: {', '.join(sorted(known))})")


class NoPackagesFoundError(ApkraneError):
    """The desired package set resolved to nothing."""


class FetchError(ApkraneError):
    """Retrieving bytes from a source failed.

    Attributes:
        source: Human-readable identifier of what was being fetched (URL, path or bucket key)
    """

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class StatusError(FetchError):
    """An HTTP source answered with a status code >= 400."""

    def __init__(self, source: str, status_code: int):
        self.status_code = status_code
        super().__init__(source, f"status {status_code}")


class NotFoundError(FetchError):
    """A local source does not exist."""


class BackendError(FetchError):
    """An object-storage source could not be authenticated or read."""


class StorageError(ApkraneError):
    """Writing into the local mirror failed.

    Attributes:
        path: The file or directory that could not be written
    """

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class SyncAbortedError(ApkraneError):
    """A mirror run stopped because a concurrent run failed."""
