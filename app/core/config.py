"""
Service configuration from environment variables.
All settings are optional with safe defaults.
"""
import os
from dataclasses import dataclass, replace
from typing import Optional

DEFAULT_BIND = ":5252"
DEFAULT_HOST = "0.0.0.0"


@dataclass(frozen=True)
class ServiceConfig:
    """Build service configuration (immutable)."""
    bind: str = DEFAULT_BIND
    workdir_root: str = "./workdir"
    git_host: str = "github.com"
    command_timeout: Optional[int] = None  # None = wait forever
    legacy_checkout_reporting: bool = False
    workspace_retention_hours: int = 24
    log_level: str = "INFO"

    @property
    def host(self) -> str:
        """Host part of the bind address."""
        host, _, _ = self.bind.rpartition(":")
        return host or DEFAULT_HOST

    @property
    def port(self) -> int:
        """Port part of the bind address."""
        _, _, port = self.bind.rpartition(":")
        return int(port)

    def with_bind(self, bind: Optional[str]) -> "ServiceConfig":
        """Return a copy with the bind address overridden (CLI flag)."""
        if not bind:
            return self
        return replace(self, bind=bind)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    try:
        parsed = int(value)
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def get_config() -> ServiceConfig:
    """Load service configuration from environment."""
    return ServiceConfig(
        bind=os.getenv("BUILD_BIND", DEFAULT_BIND),
        workdir_root=os.getenv("BUILD_WORKDIR_ROOT", "./workdir"),
        git_host=os.getenv("BUILD_GIT_HOST", "github.com"),
        command_timeout=_env_int("BUILD_COMMAND_TIMEOUT"),
        legacy_checkout_reporting=_env_bool("BUILD_LEGACY_CHECKOUT_REPORTING"),
        workspace_retention_hours=_env_int("BUILD_WORKSPACE_RETENTION_HOURS") or 24,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
