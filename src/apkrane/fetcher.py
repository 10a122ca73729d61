"""Byte retrieval from HTTP, local, object-storage and stdin sources."""

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from os import utime
from pathlib import Path
from typing import BinaryIO, TypeAlias

import aiofiles
import aiofiles.os
import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from apkrane.config import HttpAuth
from apkrane.errors import BackendError, FetchError, NotFoundError, StatusError, StorageError
from apkrane.utils import partial_path, try_parse_date

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1 << 20


@dataclass(frozen=True)
class HttpSource:
    url: str
    auth: HttpAuth | None = None

    def __str__(self) -> str:
        return self.url


@dataclass(frozen=True)
class LocalSource:
    path: Path

    def __str__(self) -> str:
        return str(self.path)


@dataclass(frozen=True)
class BucketSource:
    """An object in an S3 bucket, read with the default boto3 credential chain."""

    bucket: str
    key: str

    def __str__(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


@dataclass(frozen=True)
class StdinSource:
    """Standard input; `stream` overrides sys.stdin.buffer."""

    stream: BinaryIO | None = None

    def __str__(self) -> str:
        return "<stdin>"


Source: TypeAlias = HttpSource | LocalSource | BucketSource | StdinSource


@dataclass
class FetchResponse:
    """An opened source: a byte stream plus what the source told us about it."""

    chunks: AsyncIterator[bytes]
    last_modified: datetime | None = None


class Fetcher:
    """Opens sources and downloads them to disk.

    One Fetcher shares a single HTTP connection pool and S3 client across all
    downloads of a run. Use it as an async context manager so the pool is
    closed afterwards.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        s3_client=None,
        chunk_size: int = CHUNK_SIZE,
        timeout: float | None = None,
    ):
        """Initialize the fetcher.

        Args:
            client: HTTP client to use. Defaults to a new client owned by this fetcher
            s3_client: boto3 S3 client to use. Created on first bucket access if not given
            chunk_size: Read size for streamed sources
            timeout: HTTP timeout in seconds for an owned client; None disables it
        """
        self._client = client
        self._owns_client = client is None
        self._s3 = s3_client
        self._timeout = timeout
        self.chunk_size = chunk_size

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True, timeout=self._timeout)
        return self._client

    def _s3_client(self):
        if self._s3 is None:
            self._s3 = boto3.client("s3")
        return self._s3

    @asynccontextmanager
    async def open(self, source: Source) -> AsyncIterator[FetchResponse]:
        """Open a source for streaming.

        Raises:
            StatusError: HTTP status >= 400
            NotFoundError: Local path does not exist
            BackendError: Object storage could not authenticate or find the object
            FetchError: Any other failure reaching the source
        """
        match source:
            case HttpSource():
                opener = self._open_http(source)
            case LocalSource():
                opener = self._open_local(source)
            case BucketSource():
                opener = self._open_bucket(source)
            case StdinSource():
                opener = self._open_stdin(source)
            case _:
                raise TypeError(f"Unsupported source: {source!r}")

        async with opener as response:
            yield response

    @asynccontextmanager
    async def _open_http(self, source: HttpSource):
        auth = source.auth.as_httpx() if source.auth else None
        try:
            async with self._http_client().stream("GET", source.url, auth=auth) as response:
                if response.status_code >= 400:
                    raise StatusError(source.url, response.status_code)
                logger.debug(f"GET {source.url}: {response.status_code}")
                yield FetchResponse(
                    chunks=self._http_chunks(source, response),
                    last_modified=try_parse_date(response.headers.get("last-modified")),
                )
        except httpx.HTTPError as e:
            raise FetchError(source.url, f"GET failed: {e}") from e

    async def _http_chunks(self, source: HttpSource, response: httpx.Response):
        try:
            async for chunk in response.aiter_bytes(self.chunk_size):
                yield chunk
        except httpx.HTTPError as e:
            raise FetchError(source.url, f"reading response failed: {e}") from e

    @asynccontextmanager
    async def _open_local(self, source: LocalSource):
        try:
            handle = await aiofiles.open(source.path, "rb")
        except FileNotFoundError as e:
            raise NotFoundError(str(source), "no such file") from e
        except OSError as e:
            raise FetchError(str(source), f"cannot open: {e}") from e

        try:
            yield FetchResponse(chunks=self._file_chunks(source, handle))
        finally:
            await handle.close()

    async def _file_chunks(self, source: LocalSource, handle):
        try:
            while chunk := await handle.read(self.chunk_size):
                yield chunk
        except OSError as e:
            raise FetchError(str(source), f"read failed: {e}") from e

    @asynccontextmanager
    async def _open_bucket(self, source: BucketSource):
        try:
            s3 = self._s3_client()
            obj = await asyncio.to_thread(s3.get_object, Bucket=source.bucket, Key=source.key)
        except (BotoCoreError, ClientError) as e:
            raise BackendError(str(source), f"cannot open object: {e}") from e

        body = obj["Body"]
        try:
            yield FetchResponse(
                chunks=self._bucket_chunks(source, body),
                last_modified=obj.get("LastModified"),
            )
        finally:
            body.close()

    async def _bucket_chunks(self, source: BucketSource, body):
        try:
            while chunk := await asyncio.to_thread(body.read, self.chunk_size):
                yield chunk
        except (BotoCoreError, ClientError) as e:
            raise BackendError(str(source), f"read failed: {e}") from e

    @asynccontextmanager
    async def _open_stdin(self, source: StdinSource):
        stream = source.stream if source.stream is not None else sys.stdin.buffer
        yield FetchResponse(chunks=self._stdin_chunks(stream))

    async def _stdin_chunks(self, stream: BinaryIO):
        while chunk := await asyncio.to_thread(stream.read, self.chunk_size):
            yield chunk

    async def read(self, source: Source) -> bytes:
        """Fetch a whole source into memory."""
        async with self.open(source) as response:
            return b"".join([chunk async for chunk in response.chunks])

    async def download(self, source: Source, output_path: Path) -> bool:
        """Download a source to a local path unless the path already exists.

        The data is streamed into a hidden sibling file that is renamed into
        place on success and removed on failure.

        Args:
            source: Where to read from
            output_path: Where to save the downloaded file

        Returns:
            True if the file was downloaded, False if it already existed
        """
        if await aiofiles.os.path.exists(output_path):
            logger.debug(f"Skipping download, file already exists: {output_path}")
            return False

        try:
            await aiofiles.os.makedirs(output_path.parent, exist_ok=True)
        except OSError as e:
            raise StorageError(str(output_path.parent), f"cannot create directory: {e}") from e

        tmp_path = partial_path(output_path)
        try:
            async with self.open(source) as response:
                async with aiofiles.open(tmp_path, "wb") as out:
                    async for chunk in response.chunks:
                        await out.write(chunk)
            await aiofiles.os.replace(tmp_path, output_path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(str(output_path), f"cannot write: {e}") from e
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        if response.last_modified is not None:
            remote_ts = response.last_modified.timestamp()
            try:
                utime(output_path, (remote_ts, remote_ts))
            except OSError as e:
                raise StorageError(str(output_path), f"cannot set modification time: {e}") from e

        logger.debug(f"Downloaded {source} to {output_path}")
        return True
