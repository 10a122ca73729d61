"""Tests for the apkrane command line."""

import json

import pytest
from conftest import make_apk, make_index, pkg
from typer.testing import CliRunner

from apkrane.apkindex import parse_index
from apkrane.cli import cli

runner = CliRunner()

VERSIONS = [("curl", "8.1.0-r0"), ("curl", "8.2.0-r0"), ("wget", "1.21.0-r0")]


@pytest.fixture
def local_repo(tmp_path):
    """A repository root on disk with an x86_64 directory."""
    root = tmp_path / "repo"
    arch_dir = root / "x86_64"
    arch_dir.mkdir(parents=True)
    packages = []
    for name, version in VERSIONS:
        apk = make_apk(name, version)
        (arch_dir / f"{name}-{version}.apk").write_bytes(apk)
        packages.append(pkg(name, version, size=len(apk)))
    (arch_dir / "APKINDEX.tar.gz").write_bytes(make_index(packages))
    return root


class TestLs:
    def test_lists_filenames(self, local_repo):
        result = runner.invoke(cli, ["ls", str(local_repo / "x86_64" / "APKINDEX.tar.gz")])

        assert result.exit_code == 0
        assert result.stdout.splitlines() == ["curl-8.1.0-r0.apk", "curl-8.2.0-r0.apk", "wget-1.21.0-r0.apk"]

    def test_full_paths(self, local_repo):
        result = runner.invoke(cli, ["ls", str(local_repo), "--full", "--latest"])

        assert result.exit_code == 0
        assert result.stdout.splitlines() == [
            str(local_repo / "x86_64" / "curl-8.2.0-r0.apk"),
            str(local_repo / "x86_64" / "wget-1.21.0-r0.apk"),
        ]

    def test_json(self, local_repo):
        result = runner.invoke(cli, ["ls", str(local_repo), "--json", "-P", "wget"])

        assert result.exit_code == 0
        (line,) = result.stdout.splitlines()
        entry = json.loads(line)
        assert entry["name"] == "wget"
        assert entry["version"] == "1.21.0-r0"
        assert entry["filename"] == "wget-1.21.0-r0.apk"

    def test_full_and_json_are_exclusive(self, local_repo):
        result = runner.invoke(cli, ["ls", str(local_repo), "--full", "--json"])

        assert result.exit_code == 1
        assert "apk" not in result.stdout

    def test_reads_stdin(self, local_repo):
        index = (local_repo / "x86_64" / "APKINDEX.tar.gz").read_bytes()

        result = runner.invoke(cli, ["ls", "-", "--latest"], input=index)

        assert result.exit_code == 0
        assert result.stdout.splitlines() == ["curl-8.2.0-r0.apk", "wget-1.21.0-r0.apk"]

    def test_missing_index(self, tmp_path):
        result = runner.invoke(cli, ["ls", str(tmp_path / "x86_64" / "APKINDEX.tar.gz")])

        assert result.exit_code == 1

    def test_unknown_alias(self):
        result = runner.invoke(cli, ["ls", "nosuchrepo"])

        assert result.exit_code == 1

    def test_invalid_auth(self, local_repo):
        result = runner.invoke(cli, ["ls", str(local_repo), "--auth", "basic:only-domain"])

        assert result.exit_code == 1


class TestCp:
    def test_mirrors_and_rebuilds_index(self, local_repo, tmp_path):
        out_dir = tmp_path / "mirror"

        result = runner.invoke(cli, ["cp", str(local_repo), "--out-dir", str(out_dir), "-P", "curl", "--latest"])

        assert result.exit_code == 0
        index = out_dir / "x86_64" / "APKINDEX.tar.gz"
        assert [p.filename for p in parse_index(index.read_bytes())] == ["curl-8.2.0-r0.apk"]
        assert (out_dir / "x86_64" / "curl-8.2.0-r0.apk").read_bytes() == (
            local_repo / "x86_64" / "curl-8.2.0-r0.apk"
        ).read_bytes()

    def test_second_run_is_a_no_op(self, local_repo, tmp_path):
        out_dir = tmp_path / "mirror"
        args = ["cp", str(local_repo / "x86_64" / "APKINDEX.tar.gz"), "-o", str(out_dir), "-j", "2"]
        runner.invoke(cli, args)
        index = out_dir / "x86_64" / "APKINDEX.tar.gz"
        first = index.read_bytes()

        result = runner.invoke(cli, args)

        assert result.exit_code == 0
        assert index.read_bytes() == first
        assert len(parse_index(first)) == len(VERSIONS)

    def test_missing_artifact_fails_without_index(self, local_repo, tmp_path):
        (local_repo / "x86_64" / "wget-1.21.0-r0.apk").unlink()
        out_dir = tmp_path / "mirror"

        result = runner.invoke(cli, ["cp", str(local_repo), "-o", str(out_dir)])

        assert result.exit_code == 1
        assert not (out_dir / "x86_64" / "APKINDEX.tar.gz").exists()

    def test_no_matching_packages(self, local_repo, tmp_path):
        result = runner.invoke(cli, ["cp", str(local_repo), "-o", str(tmp_path / "mirror"), "-P", "nope"])

        assert result.exit_code == 1
        assert not (tmp_path / "mirror").exists()

    def test_stdin_needs_an_artifact_location(self, local_repo, tmp_path):
        index = (local_repo / "x86_64" / "APKINDEX.tar.gz").read_bytes()

        result = runner.invoke(cli, ["cp", "-", "-o", str(tmp_path / "mirror")], input=index)

        assert result.exit_code == 1

    def test_stdin_with_base_url(self, local_repo, tmp_path):
        index = (local_repo / "x86_64" / "APKINDEX.tar.gz").read_bytes()
        out_dir = tmp_path / "mirror"

        result = runner.invoke(
            cli,
            ["cp", "-", "-o", str(out_dir), "--base-url", str(local_repo / "x86_64"), "-P", "wget"],
            input=index,
        )

        assert result.exit_code == 0
        assert (out_dir / "x86_64" / "wget-1.21.0-r0.apk").exists()

    def test_out_dir_is_a_file(self, local_repo, tmp_path):
        out_file = tmp_path / "mirror"
        out_file.write_text("not a directory")

        result = runner.invoke(cli, ["cp", str(local_repo), "-o", str(out_file)])

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert out_file.read_text() == "not a directory"

    def test_invalid_concurrency_environment(self, local_repo, tmp_path, monkeypatch):
        monkeypatch.setenv("APKRANE_MAX_CONCURRENCY", "lots")

        result = runner.invoke(cli, ["cp", str(local_repo), "-o", str(tmp_path / "mirror")])

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert not (tmp_path / "mirror").exists()

    def test_rejects_zero_jobs(self, local_repo, tmp_path):
        result = runner.invoke(cli, ["cp", str(local_repo), "-o", str(tmp_path / "mirror"), "-j", "0"])

        assert result.exit_code == 1
