"""Tests for configuration taken from the user or the environment."""

import pytest

from apkrane.config import parse_http_auth, resolve_http_auth, resolve_http_timeout, resolve_max_concurrency
from apkrane.errors import ConfigError


class TestParseHttpAuth:
    def test_basic(self):
        auth = parse_http_auth("basic:packages.example.com:user:secret")

        assert auth.scheme == "basic"
        assert auth.domain == "packages.example.com"
        assert auth.as_httpx() == ("user", "secret")

    def test_password_may_contain_colons(self):
        auth = parse_http_auth("basic:example.com:user:se:cr:et")

        assert auth.password == "se:cr:et"

    def test_empty_password_is_allowed(self):
        assert parse_http_auth("basic:example.com:user:").password == ""

    @pytest.mark.parametrize("value", ["basic", "basic:example.com", "basic:example.com:user"])
    def test_too_few_fields(self, value):
        with pytest.raises(ConfigError, match="field"):
            parse_http_auth(value)

    def test_unsupported_scheme(self):
        with pytest.raises(ConfigError, match="unsupported scheme 'bearer'"):
            parse_http_auth("bearer:example.com:user:token")

    def test_repr_hides_password(self):
        auth = parse_http_auth("basic:example.com:user:hunter2")

        assert "hunter2" not in repr(auth)
        assert "hunter2" not in str(auth)


class TestResolveHttpAuth:
    def test_explicit_value_wins(self, monkeypatch):
        monkeypatch.setenv("HTTP_AUTH", "basic:env.example.com:env:env")

        assert resolve_http_auth("basic:cli.example.com:cli:cli").username == "cli"

    def test_falls_back_to_environment(self, monkeypatch):
        monkeypatch.setenv("HTTP_AUTH", "basic:env.example.com:env:pass")

        assert resolve_http_auth().domain == "env.example.com"

    def test_absent(self, monkeypatch):
        monkeypatch.delenv("HTTP_AUTH", raising=False)

        assert resolve_http_auth() is None

    def test_invalid_environment_value(self, monkeypatch):
        monkeypatch.setenv("HTTP_AUTH", "nonsense")

        with pytest.raises(ConfigError):
            resolve_http_auth()


class TestResolveMaxConcurrency:
    def test_explicit(self, monkeypatch):
        monkeypatch.setenv("APKRANE_MAX_CONCURRENCY", "8")

        assert resolve_max_concurrency(3) == 3

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("APKRANE_MAX_CONCURRENCY", " 8 ")

        assert resolve_max_concurrency() == 8

    @pytest.mark.parametrize("value", ["", "0"])
    def test_unbounded(self, monkeypatch, value):
        monkeypatch.setenv("APKRANE_MAX_CONCURRENCY", value)

        assert resolve_max_concurrency() is None

    @pytest.mark.parametrize("value", ["lots", "2.5", "-1"])
    def test_invalid_environment_value(self, monkeypatch, value):
        monkeypatch.setenv("APKRANE_MAX_CONCURRENCY", value)

        with pytest.raises(ConfigError, match="APKRANE_MAX_CONCURRENCY|negative"):
            resolve_max_concurrency()


class TestResolveHttpTimeout:
    def test_unset(self, monkeypatch):
        monkeypatch.delenv("APKRANE_HTTP_TIMEOUT", raising=False)

        assert resolve_http_timeout() is None

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("APKRANE_HTTP_TIMEOUT", "12.5")

        assert resolve_http_timeout() == 12.5

    @pytest.mark.parametrize("value", ["soon", "0", "-3"])
    def test_invalid(self, monkeypatch, value):
        monkeypatch.setenv("APKRANE_HTTP_TIMEOUT", value)

        with pytest.raises(ConfigError, match="APKRANE_HTTP_TIMEOUT"):
            resolve_http_timeout()
