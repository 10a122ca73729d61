"""Runtime configuration that comes from the user or the environment."""

import os

from pydantic import BaseModel, ConfigDict

from apkrane.constants import HTTP_AUTH_ENV, HTTP_TIMEOUT_ENV, MAX_CONCURRENCY_ENV
from apkrane.errors import ConfigError

AUTH_SCHEMES = {"basic"}


class HttpAuth(BaseModel):
    """HTTP credentials for a package repository.

    `domain` is kept for a future per-host credential map; it does not
    restrict which requests the credentials are sent with.
    """

    model_config = ConfigDict(frozen=True)

    scheme: str
    domain: str
    username: str
    password: str

    def __repr__(self) -> str:
        return f"HttpAuth(scheme={self.scheme!r}, domain={self.domain!r}, username={self.username!r})"

    __str__ = __repr__

    def as_httpx(self) -> tuple[str, str]:
        return (self.username, self.password)


def parse_http_auth(value: str) -> HttpAuth:
    """Parse `basic:<domain>:<username>:<password>`.

    The password is everything after the third colon, so it may contain colons.

    Raises:
        ConfigError: On fewer than four fields or an unsupported scheme.
    """
    parts = value.split(":", 3)
    if len(parts) < 4:
        raise ConfigError(
            f"invalid HTTP auth: expected 'basic:<domain>:<username>:<password>', got {len(parts)} field(s)"
        )
    scheme, domain, username, password = parts
    if scheme not in AUTH_SCHEMES:
        raise ConfigError(f"invalid HTTP auth: unsupported scheme {scheme!r}")
    return HttpAuth(scheme=scheme, domain=domain, username=username, password=password)


def resolve_http_auth(explicit: str | None = None) -> HttpAuth | None:
    """Return credentials from `explicit`, falling back to the HTTP_AUTH environment variable."""
    value = explicit if explicit else os.environ.get(HTTP_AUTH_ENV)
    if not value:
        return None
    return parse_http_auth(value)


def resolve_http_timeout(explicit: float | None = None) -> float | None:
    """Return the HTTP timeout in seconds, falling back to APKRANE_HTTP_TIMEOUT.

    Raises:
        ConfigError: If the environment value is not a positive number.
    """
    if explicit is not None:
        return explicit
    value = os.environ.get(HTTP_TIMEOUT_ENV, "").strip()
    if not value:
        return None
    try:
        timeout = float(value)
    except ValueError:
        raise ConfigError(f"{HTTP_TIMEOUT_ENV} must be a number of seconds, got {value!r}") from None
    if timeout <= 0:
        raise ConfigError(f"{HTTP_TIMEOUT_ENV} must be positive, got {value!r}")
    return timeout


def resolve_max_concurrency(explicit: int | None = None) -> int | None:
    """Return the download concurrency bound, falling back to APKRANE_MAX_CONCURRENCY.

    None and 0 both mean unbounded.

    Raises:
        ConfigError: If the value is negative or the environment value is not an integer.
    """
    if explicit is None:
        value = os.environ.get(MAX_CONCURRENCY_ENV, "").strip()
        if not value:
            return None
        try:
            explicit = int(value)
        except ValueError:
            raise ConfigError(f"{MAX_CONCURRENCY_ENV} must be an integer, got {value!r}") from None
    if explicit < 0:
        raise ConfigError(f"concurrency must not be negative, got {explicit}")
    return explicit or None
