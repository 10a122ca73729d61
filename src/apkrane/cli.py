"""apkrane: list and mirror APK package repositories."""

import asyncio
import logging
from collections.abc import Coroutine
from pathlib import Path

import typer

from apkrane.config import resolve_http_auth, resolve_http_timeout, resolve_max_concurrency
from apkrane.constants import OUT_DIR
from apkrane.errors import ApkraneError, ConfigError
from apkrane.fetcher import Fetcher
from apkrane.repository import BucketPath, resolve_targets
from apkrane.sync import MirrorSync, load_index, resolve_desired

logger = logging.getLogger(__name__)

cli = typer.Typer(no_args_is_help=True, help="List and mirror APK package repositories.")

INDEX_HELP = "APKINDEX.tar.gz URL or path, repository root, alias (e.g. wolfi), or - for stdin"
AUTH_HELP = "HTTP credentials as basic:<domain>:<username>:<password> (default: $HTTP_AUTH)"


def _set_verbosity(verbose: bool) -> None:
    logging.getLogger("apkrane").setLevel(logging.DEBUG if verbose else logging.INFO)


def _run(coro: Coroutine, timeout: float | None = None):
    """Run a command coroutine, turning apkrane errors into a single message and exit code 1."""

    async def _with_deadline():
        async with asyncio.timeout(timeout):
            return await coro

    try:
        return asyncio.run(_with_deadline())
    except ApkraneError as e:
        logger.error(str(e))
        raise typer.Exit(code=1) from None
    except TimeoutError:
        logger.error(f"Timed out after {timeout} seconds")
        raise typer.Exit(code=1) from None


async def _list(index, archs, names, latest, auth, full, as_json) -> None:
    targets = resolve_targets(index, archs, auth=resolve_http_auth(auth))
    async with Fetcher(timeout=resolve_http_timeout()) as fetcher:
        for target in targets:
            packages = resolve_desired(await load_index(fetcher, target), names, latest)
            for pkg in packages:
                if as_json:
                    typer.echo(pkg.model_dump_json())
                elif full:
                    typer.echo(target.artifact_location(pkg.filename))
                else:
                    typer.echo(pkg.filename)


@cli.command()
def ls(
    index: str = typer.Argument(..., help=INDEX_HELP),
    full: bool = typer.Option(False, "--full", help="print the full url or path"),
    as_json: bool = typer.Option(False, "--json", help="print each package as json"),
    latest: bool = typer.Option(False, "--latest", help="only list the newest version of each package"),
    package: list[str] = typer.Option([], "--package", "-P", help="only list packages with this name"),
    arch: list[str] = typer.Option([], "--arch", "-a", help="architecture(s) to list"),
    auth: str | None = typer.Option(None, "--auth", help=AUTH_HELP, show_default=False),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="log debug output"),
):
    """List the packages of an index."""
    _set_verbosity(verbose)
    if full and as_json:
        logger.error("--full and --json are mutually exclusive")
        raise typer.Exit(code=1)
    _run(_list(index, arch, package, latest, auth, full, as_json))


async def _copy(index, out_dir, archs, names, latest, bucket, base_url, auth, jobs) -> None:
    targets = resolve_targets(index, archs, auth=resolve_http_auth(auth), base_url=base_url)
    bucket_path = BucketPath.parse(bucket) if bucket else None
    if jobs is not None and jobs < 1:
        raise ConfigError(f"--jobs must be at least 1, got {jobs}")
    max_concurrency = resolve_max_concurrency(jobs)

    async with Fetcher(timeout=resolve_http_timeout()) as fetcher:
        sync = MirrorSync(
            fetcher,
            out_dir,
            packages=names,
            latest=latest,
            bucket=bucket_path,
            max_concurrency=max_concurrency,
        )
        results = await sync.run_all(targets)

    for result in results:
        logger.info(
            f"{result.arch}: fetched {len(result.fetched)}, already present {len(result.skipped)}, "
            f"{len(result.indexed)} packages in {result.index_path}"
        )


@cli.command()
def cp(
    index: str = typer.Argument(..., help=INDEX_HELP),
    out_dir: Path = typer.Option(OUT_DIR, "--out-dir", "-o", help="mirror root, one directory per architecture"),
    latest: bool = typer.Option(False, "--latest", help="only mirror the newest version of each package"),
    package: list[str] = typer.Option([], "--package", "-P", help="only mirror packages with this name"),
    arch: list[str] = typer.Option([], "--arch", "-a", help="architecture(s) to mirror"),
    bucket: str | None = typer.Option(
        None, "--bucket", help="fetch artifacts from S3 bucket-name/key-prefix instead", show_default=False
    ),
    base_url: str | None = typer.Option(
        None, "--base-url", help="artifact base URL when the index comes from stdin", show_default=False
    ),
    auth: str | None = typer.Option(None, "--auth", help=AUTH_HELP, show_default=False),
    jobs: int | None = typer.Option(
        None, "--jobs", "-j", help="maximum concurrent downloads (default: $APKRANE_MAX_CONCURRENCY)", show_default=False
    ),
    timeout: float | None = typer.Option(None, "--timeout", help="give up after this many seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="log debug output"),
):
    """Mirror packages of an index into a local directory and rebuild its APKINDEX."""
    _set_verbosity(verbose)
    _run(_copy(index, out_dir, arch, package, latest, bucket, base_url, auth, jobs), timeout)


def main() -> None:
    """Main entry point for the apkrane CLI."""
    cli()


if __name__ == "__main__":
    main()
