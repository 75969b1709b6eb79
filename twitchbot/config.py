from __future__ import annotations
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from shared.errors import ConfigError
from shared.log import get_logger
from shared.utils import is_irc_name, is_valid_port, normalize_channel
from twitchbot.protocol import is_single_line

logger = get_logger(__name__)

DEFAULT_SERVER = "irc.chat.twitch.tv"
DEFAULT_PORT = 6667
# Twitch allows 20 messages per 30 seconds for regular users
DEFAULT_MESSAGE_DELAY = 30 / 20
DEFAULT_FAREWELL = "Shutting down..."
TRANSPORTS = ("tcp", "websocket")

ENV_PREFIX = "TWITCHBOT_"


@dataclass(frozen=True)
class SessionConfig:
    """
    Everything a chat session needs to know before the first connection.

    Set once, never mutated while a session runs.
    """
    channel: str
    name: str
    server: str = DEFAULT_SERVER
    port: int = DEFAULT_PORT
    message_delay: float = DEFAULT_MESSAGE_DELAY  # seconds slept after every non keep-alive line
    transport: str = "tcp"
    tls: bool = False
    connect_timeout: float = 10.0
    farewell: str = DEFAULT_FAREWELL

    def __post_init__(self) -> None:
        if not is_irc_name(self.channel):
            raise ConfigError(f"Invalid channel name: {self.channel!r}")
        if not is_irc_name(self.name):
            raise ConfigError(f"Invalid bot name: {self.name!r}")
        if not self.server or any(c.isspace() for c in self.server):
            raise ConfigError(f"Invalid server host: {self.server!r}")
        if not is_valid_port(self.port):
            raise ConfigError(f"Invalid port: {self.port!r}")
        if self.message_delay < 0:
            raise ConfigError("message_delay must not be negative")
        if self.connect_timeout <= 0:
            raise ConfigError("connect_timeout must be positive")
        if self.transport not in TRANSPORTS:
            raise ConfigError(f"Unknown transport {self.transport!r}, expected one of {TRANSPORTS}")
        if not is_single_line(self.farewell):
            raise ConfigError("farewell must be a single line")

    @property
    def address(self) -> str:
        return f"{self.server}:{self.port}"


@dataclass(frozen=True)
class ReconnectPolicy:
    """
    How the driver waits between failed session attempts.

    The defaults retry forever with a fixed one second delay; set
    `max_attempts` to give up, `backoff_factor` > 1 to back off.
    """
    delay: float = 1.0
    max_attempts: Optional[int] = None
    backoff_factor: float = 1.0
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.delay < 0:
            raise ConfigError("retry delay must not be negative")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1")
        if self.backoff_factor < 1:
            raise ConfigError("backoff_factor must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the `attempt`-th consecutive failure (1-based)."""
        if self.backoff_factor == 1:
            return self.delay
        return min(self.delay * self.backoff_factor ** (attempt - 1), self.max_delay)

    def gives_up_after(self, attempt: int) -> bool:
        return self.max_attempts is not None and attempt >= self.max_attempts


_FIELD_NAMES = {f.name for f in fields(SessionConfig)}


def _coerce(key: str, value: Any) -> Any:
    """Convert env/YAML values to the field's type."""
    try:
        if key == "port":
            return int(value)
        if key in ("message_delay", "connect_timeout"):
            return float(value)
        if key == "tls":
            if isinstance(value, bool):
                return value
            return str(value).strip().lower() in ("1", "true", "yes", "on")
        if key == "channel":
            return normalize_channel(str(value))
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from e


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    unknown = set(data) - _FIELD_NAMES
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {sorted(unknown)}")
    return data


def _read_env() -> Dict[str, Any]:
    values = {}
    for name in _FIELD_NAMES:
        raw = os.getenv(ENV_PREFIX + name.upper())
        if raw is not None and raw != "":
            values[name] = raw
    return values


def load_config(path: Optional[Path] = None, **overrides: Any) -> SessionConfig:
    """
    Build a SessionConfig from, in increasing priority:
    the YAML file at `path`, TWITCHBOT_* environment variables, and keyword
    overrides (None values are ignored so CLI options can pass through).
    """
    merged: Dict[str, Any] = {}
    if path is not None:
        merged.update(_read_yaml(Path(path)))
    merged.update(_read_env())

    unknown = set(k for k, v in overrides.items() if v is not None) - _FIELD_NAMES
    if unknown:
        raise ConfigError(f"Unknown config options: {sorted(unknown)}")
    merged.update({k: v for k, v in overrides.items() if v is not None})

    for required in ("channel", "name"):
        if required not in merged:
            raise ConfigError(f"Missing required setting '{required}'")

    config = SessionConfig(**{k: _coerce(k, v) for k, v in merged.items()})
    logger.debug("Loaded config for #%s as %s via %s (%s)", config.channel, config.name, config.address, config.transport)
    return config
