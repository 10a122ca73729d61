from os import getenv
from pathlib import Path

# default mirror root for `apkrane cp`
OUT_DIR = Path(getenv("APKRANE_OUT_DIR", "packages"))

# architecture used when none is given and the index location does not name one
DEFAULT_ARCH = getenv("APKRANE_ARCH", "x86_64")

# seconds; unset means no timeout, callers attach their own deadline
HTTP_TIMEOUT_ENV = "APKRANE_HTTP_TIMEOUT"

# unset or 0 means no limit beyond the HTTP connection pool
MAX_CONCURRENCY_ENV = "APKRANE_MAX_CONCURRENCY"

# `basic:<domain>:<username>:<password>`
HTTP_AUTH_ENV = "HTTP_AUTH"

INDEX_FILENAME = "APKINDEX.tar.gz"
INDEX_MEMBER = "APKINDEX"
ARTIFACT_SUFFIX = ".apk"

# name -> repository root; the architecture directory is appended per run
REPOSITORY_ALIASES = {
    "wolfi": "https://packages.wolfi.dev/os",
    "chainguard": "https://packages.cgr.dev/os",
    "extras": "https://packages.cgr.dev/extras",
}
