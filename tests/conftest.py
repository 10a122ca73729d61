"""Shared fixtures: real .apk and APKINDEX.tar.gz bytes, and a fake HTTP repository."""

import gzip
import io
import tarfile

import httpx
import pytest

from apkrane.apkindex import serialize_index
from apkrane.fetcher import Fetcher
from apkrane.models import Package

REPO_URL = "https://packages.example.com/os"


def make_tar(members: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:", format=tarfile.USTAR_FORMAT) as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mtime = 0
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def make_pkginfo(name: str, version: str, arch: str = "x86_64", depends: tuple[str, ...] = ()) -> bytes:
    lines = [
        "# Generated by abuild",
        f"pkgname = {name}",
        f"pkgver = {version}",
        f"pkgdesc = The {name} package",
        "url = https://example.com",
        "builddate = 1700000000",
        "size = 4096",
        f"arch = {arch}",
        f"origin = {name}",
        "license = MIT",
        "commit = 0123456789abcdef",
    ]
    lines += [f"depend = {dep}" for dep in depends]
    return ("\n".join(lines) + "\n").encode()


def make_apk(
    name: str,
    version: str,
    arch: str = "x86_64",
    depends: tuple[str, ...] = (),
    signed: bool = False,
) -> bytes:
    """Build an .apk: optional signature stream, control stream, data stream."""
    streams = []
    if signed:
        streams.append(gzip.compress(make_tar({".SIGN.RSA.test.rsa.pub": b"signature"}), mtime=0))
    streams.append(gzip.compress(make_tar({".PKGINFO": make_pkginfo(name, version, arch, depends)}), mtime=0))
    streams.append(gzip.compress(make_tar({f"usr/share/{name}/README": f"{name} {version}".encode()}), mtime=0))
    return b"".join(streams)


def make_index(packages: list[Package]) -> bytes:
    return serialize_index(packages, description="test repository")


def pkg(name: str, version: str, arch: str = "x86_64", **fields) -> Package:
    return Package(name=name, version=version, arch=arch, **fields)


class FakeRepository:
    """An in-memory HTTP repository served through httpx.MockTransport."""

    def __init__(self, base_url: str = REPO_URL):
        self.base_url = base_url
        self.files: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []
        self.status_overrides: dict[str, int] = {}

    def add_arch(self, arch: str, versions: list[tuple[str, str]], publish: bool = True) -> list[Package]:
        """Publish apks for (name, version) pairs and an index listing them."""
        packages = []
        for name, version in versions:
            apk = make_apk(name, version, arch)
            self.files[f"{self.base_url}/{arch}/{name}-{version}.apk"] = apk
            packages.append(pkg(name, version, arch, size=len(apk)))
        self.files[f"{self.base_url}/{arch}/APKINDEX.tar.gz"] = make_index(packages)
        if not publish:
            for p in packages:
                del self.files[f"{self.base_url}/{arch}/{p.filename}"]
        return packages

    def index_url(self, arch: str = "x86_64") -> str:
        return f"{self.base_url}/{arch}/APKINDEX.tar.gz"

    def requested(self, suffix: str = "") -> list[str]:
        return [str(r.url) for r in self.requests if str(r.url).endswith(suffix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url in self.status_overrides:
            return httpx.Response(self.status_overrides[url])
        if url not in self.files:
            return httpx.Response(404)
        return httpx.Response(
            200,
            content=self.files[url],
            headers={"last-modified": "Wed, 01 Nov 2023 12:00:00 GMT"},
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def fetcher(self, **kwargs) -> Fetcher:
        return Fetcher(client=self.client(), **kwargs)


@pytest.fixture
def fake_repo() -> FakeRepository:
    return FakeRepository()
