"""Configuration for the control plane

Supports configuration via:
1. Builder methods (highest priority)
2. Environment variables (FRAMECTL_CHUNK_SIZE, FRAMECTL_MAX_INLINE_PAYLOAD,
   FRAMECTL_TIMEOUT, FRAMECTL_PORT_CONNECT_TIMEOUT, FRAMECTL_LOG_LEVEL)
3. Default values
"""

import os
from typing import Callable, Optional, TypeVar

N = TypeVar("N", int, float)

DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_MAX_INLINE_PAYLOAD = 32 * 1024 * 1024
DEFAULT_TIMEOUT = 30.0
DEFAULT_PORT_CONNECT_TIMEOUT = 5.0
DEFAULT_LOG_LEVEL = "WARNING"


class ConfigError(ValueError):
    """Invalid configuration value"""

    def __init__(self, name: str, value: object, reason: str):
        super().__init__(f"Invalid value for {name}: {value!r} ({reason})")
        self.name = name
        self.value = value


def _env_number(name: str, parse: Callable[[str], N], default: N) -> N:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = parse(raw.strip())
    except ValueError:
        raise ConfigError(name, raw, "not a number")
    if value <= 0:
        raise ConfigError(name, raw, "must be positive")
    return value


def _positive(name: str, value: N) -> N:
    if value <= 0:
        raise ConfigError(name, value, "must be positive")
    return value


class ControlConfig:
    """Tunables shared by the tracker, execution contexts and transfer ports"""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        max_inline_payload: Optional[int] = None,
        default_timeout: Optional[float] = None,
        port_connect_timeout: Optional[float] = None,
        log_level: Optional[str] = None,
    ):
        """Create configuration

        Args:
            chunk_size: transfer chunk size in bytes
            max_inline_payload: largest base64 payload inlined into a privileged call
            default_timeout: deadline in seconds for progress-wrapped operations
            port_connect_timeout: how long to wait for an injected port to announce itself
            log_level: level name for `framectl.log.configure_logging`
        """
        if chunk_size is None:
            chunk_size = _env_number("FRAMECTL_CHUNK_SIZE", int, DEFAULT_CHUNK_SIZE)
        if max_inline_payload is None:
            max_inline_payload = _env_number("FRAMECTL_MAX_INLINE_PAYLOAD", int, DEFAULT_MAX_INLINE_PAYLOAD)
        if default_timeout is None:
            default_timeout = _env_number("FRAMECTL_TIMEOUT", float, DEFAULT_TIMEOUT)
        if port_connect_timeout is None:
            port_connect_timeout = _env_number(
                "FRAMECTL_PORT_CONNECT_TIMEOUT", float, DEFAULT_PORT_CONNECT_TIMEOUT
            )
        if log_level is None:
            log_level = os.getenv("FRAMECTL_LOG_LEVEL", DEFAULT_LOG_LEVEL)

        self.chunk_size = _positive("chunk_size", chunk_size)
        self.max_inline_payload = _positive("max_inline_payload", max_inline_payload)
        self.default_timeout = _positive("default_timeout", default_timeout)
        self.port_connect_timeout = _positive("port_connect_timeout", port_connect_timeout)
        self.log_level = log_level.upper()

    @classmethod
    def default(cls) -> "ControlConfig":
        return cls()

    def with_chunk_size(self, size: int) -> "ControlConfig":
        self.chunk_size = _positive("chunk_size", size)
        return self

    def with_max_inline_payload(self, size: int) -> "ControlConfig":
        self.max_inline_payload = _positive("max_inline_payload", size)
        return self

    def with_default_timeout(self, seconds: float) -> "ControlConfig":
        self.default_timeout = _positive("default_timeout", seconds)
        return self

    def with_port_connect_timeout(self, seconds: float) -> "ControlConfig":
        self.port_connect_timeout = _positive("port_connect_timeout", seconds)
        return self

    def with_log_level(self, level: str) -> "ControlConfig":
        self.log_level = level.upper()
        return self

    def to_dict(self) -> dict:
        return {
            "chunk_size": self.chunk_size,
            "max_inline_payload": self.max_inline_payload,
            "default_timeout": self.default_timeout,
            "port_connect_timeout": self.port_connect_timeout,
            "log_level": self.log_level,
        }

    def __repr__(self) -> str:
        return f"ControlConfig({self.to_dict()!r})"
