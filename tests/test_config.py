"""
Tests for service configuration and the CLI entry point.
"""
from unittest.mock import patch

from app.core.config import ServiceConfig, get_config


class TestServiceConfig:
    """Tests for configuration loading."""

    def test_defaults(self, monkeypatch):
        for name in ("BUILD_BIND", "BUILD_GIT_HOST", "BUILD_COMMAND_TIMEOUT", "BUILD_LEGACY_CHECKOUT_REPORTING"):
            monkeypatch.delenv(name, raising=False)
        config = get_config()
        assert config.bind == ":5252"
        assert config.host == "0.0.0.0"
        assert config.port == 5252
        assert config.git_host == "github.com"
        assert config.command_timeout is None
        assert config.legacy_checkout_reporting is False

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("BUILD_BIND", "127.0.0.1:8080")
        monkeypatch.setenv("BUILD_COMMAND_TIMEOUT", "30")
        monkeypatch.setenv("BUILD_LEGACY_CHECKOUT_REPORTING", "true")
        config = get_config()
        assert config.host == "127.0.0.1"
        assert config.port == 8080
        assert config.command_timeout == 30
        assert config.legacy_checkout_reporting is True

    def test_invalid_timeout_means_none(self, monkeypatch):
        monkeypatch.setenv("BUILD_COMMAND_TIMEOUT", "soon")
        assert get_config().command_timeout is None

    def test_with_bind(self):
        config = ServiceConfig().with_bind("localhost:9000")
        assert (config.host, config.port) == ("localhost", 9000)
        assert ServiceConfig().with_bind(None).bind == ":5252"


class TestMain:
    """Tests for the command line entry point."""

    def test_bind_flag_overrides_config(self):
        import main

        with patch("uvicorn.run") as run:
            main.main(["--bind", ":9999"])

        _, kwargs = run.call_args
        assert kwargs["host"] == "0.0.0.0"
        assert kwargs["port"] == 9999
