# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""Environment-driven configuration for the bridge."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import os
from typing import Final


ENV_ORGANIZATION: Final[str] = "ADO_ORGANIZATION"
ENV_AUTH_TYPE: Final[str] = "ADO_AUTH_TYPE"
ENV_LOG_LEVEL: Final[str] = "LOG_LEVEL"
ENV_PORT: Final[str] = "PORT"
ENV_HOST: Final[str] = "HOST"
ENV_SERVER_SCRIPT: Final[str] = "ADO_MCP_SERVER_SCRIPT"

DEFAULT_AUTH_TYPE: Final[str] = "env"
DEFAULT_LOG_LEVEL: Final[str] = "info"
DEFAULT_PORT: Final[int] = 8000
DEFAULT_HOST: Final[str] = "0.0.0.0"
DEFAULT_SERVER_SCRIPT: Final[str] = "/app/azure-devops-mcp/dist/index.js"
DEFAULT_NODE_BINARY: Final[str] = "node"
DEFAULT_RESTART_DELAY: Final[float] = 5.0

_LOG_LEVELS: Final[frozenset[str]] = frozenset({"debug", "info", "warning", "error", "critical"})
_LOG_LEVEL_ALIASES: Final[dict[str, str]] = {"warn": "warning", "fatal": "critical"}


class ConfigurationError(RuntimeError):
    """Raised when required settings are missing or malformed."""


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    """Settings for one bridge process.

    Only ``organization`` is required.  The child command line is derived from
    ``organization`` and ``auth_type`` alone; see :meth:`child_command`.
    """

    organization: str
    auth_type: str = DEFAULT_AUTH_TYPE
    log_level: str = DEFAULT_LOG_LEVEL
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    server_script: str = DEFAULT_SERVER_SCRIPT
    node_binary: str = DEFAULT_NODE_BINARY
    restart_delay: float = DEFAULT_RESTART_DELAY
    restart_on_clean_exit: bool = False
    child_env: Mapping[str, str] = field(default_factory=lambda: {"NODE_ENV": "production"})

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BridgeConfig:
        env = os.environ if environ is None else environ

        organization = (env.get(ENV_ORGANIZATION) or "").strip()
        if not organization:
            raise ConfigurationError(f"{ENV_ORGANIZATION} environment variable is required")

        return cls(
            organization=organization,
            auth_type=env.get(ENV_AUTH_TYPE) or DEFAULT_AUTH_TYPE,
            log_level=_parse_log_level(env.get(ENV_LOG_LEVEL)),
            port=_parse_port(env.get(ENV_PORT)),
            host=env.get(ENV_HOST) or DEFAULT_HOST,
            server_script=env.get(ENV_SERVER_SCRIPT) or DEFAULT_SERVER_SCRIPT,
        )

    @property
    def debug(self) -> bool:
        return self.log_level == "debug"

    def child_command(self) -> list[str]:
        return [self.node_binary, self.server_script, self.organization, "-a", self.auth_type]

    def child_environment(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        env = dict(os.environ if base is None else base)
        env.update(self.child_env)
        return env


def _parse_log_level(raw: str | None) -> str:
    if raw is None or not raw.strip():
        return DEFAULT_LOG_LEVEL
    level = raw.strip().lower()
    level = _LOG_LEVEL_ALIASES.get(level, level)
    if level not in _LOG_LEVELS:
        allowed = ", ".join(sorted(_LOG_LEVELS))
        raise ConfigurationError(f"{ENV_LOG_LEVEL} must be one of {allowed}, got {raw!r}")
    return level


def _parse_port(raw: str | None) -> int:
    if raw is None or not raw.strip():
        return DEFAULT_PORT
    try:
        port = int(raw)
    except ValueError:
        raise ConfigurationError(f"{ENV_PORT} must be an integer, got {raw!r}") from None
    if not 0 < port < 65536:
        raise ConfigurationError(f"{ENV_PORT} must be between 1 and 65535, got {port}")
    return port


__all__ = ["BridgeConfig", "ConfigurationError"]
