import datetime
import logging
import os
import secrets
from pathlib import Path

from dateutil.parser import parse as parse_date

logger = logging.getLogger(__name__)


def try_parse_date(date_str: str | None) -> datetime.datetime | None:
    """Try to parse a date string into a timestamp.

    Args:
        date_str: The date string to parse (e.g., from HTTP Last-Modified header)

    Returns:
        The parsed timestamp, or None if parsing failed or date_str is None
    """

    try:
        return parse_date(date_str) if date_str else None
    except (ValueError, OverflowError) as e:
        logger.debug(f"Failed to parse date '{date_str}': {e}")
        return None


def partial_path(dest: Path) -> Path:
    """Hidden sibling of `dest` to write into before renaming into place."""
    return dest.with_name(f".{dest.name}.{secrets.token_hex(4)}.part")


def write_atomic(dest: Path, data: bytes) -> None:
    """Write `data` to `dest` so readers see either the old or the new file."""
    tmp = partial_path(dest)
    try:
        tmp.write_bytes(data)
        os.replace(tmp, dest)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
