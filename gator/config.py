"""Configuration for gator.

Settings live in a JSON file (~/.gatorconfig.json, or GATOR_CONFIG_PATH),
with a handful of environment variable overrides.
"""

import json
import os
import re
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Optional

from gator.errors import ConfigurationError


CONFIG_FILE_NAME = ".gatorconfig.json"
DEFAULT_USER_AGENT = "gator"
DEFAULT_FETCH_TIMEOUT = 30.0

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ms|h|m|s)")
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
}


def _get_config_path() -> Path:
    """Get the config file path, respecting GATOR_CONFIG_PATH env var for testing."""
    env_path = os.environ.get("GATOR_CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path.home() / CONFIG_FILE_NAME


def _default_db_path() -> str:
    return str(Path.home() / ".gator" / "gator.db")


@dataclass
class Config:
    """Settings shared by the CLI commands and the aggregation loop."""

    db_path: str = field(default_factory=_default_db_path)
    current_user_name: Optional[str] = None
    log_level: str = "INFO"
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT
    path: Optional[Path] = field(default=None, repr=False, compare=False)

    def set_user(self, username: str) -> None:
        """Record the logged-in user and persist it to the config file."""
        self.current_user_name = username
        self.write()

    def write(self) -> None:
        path = self.path or _get_config_path()
        data = asdict(self)
        data.pop("path")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2))
        # Owner read/write only
        path.chmod(0o600)


def load_config(path: Optional[Path] = None) -> Config:
    """Load configuration from disk, applying environment overrides.

    A missing file yields the defaults.

    Args:
        path: Optional config file path (defaults to ~/.gatorconfig.json)

    Returns:
        Loaded Config

    Raises:
        ConfigurationError: If the file is not a JSON object or holds bad values
    """
    path = path or _get_config_path()
    data = {}

    if path.exists():
        try:
            data = json.loads(path.read_text() or "{}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Config file {path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a JSON object")

    known = {k: v for k, v in data.items() if k in Config.__dataclass_fields__ and k != "path"}
    config = Config(path=path, **known)

    if os.environ.get("GATOR_DB_PATH"):
        config.db_path = os.environ["GATOR_DB_PATH"]
    if os.environ.get("GATOR_LOG_LEVEL"):
        config.log_level = os.environ["GATOR_LOG_LEVEL"]

    try:
        config.fetch_timeout = float(config.fetch_timeout)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid fetch_timeout: {config.fetch_timeout!r}") from e
    if config.fetch_timeout <= 0:
        raise ConfigurationError(f"fetch_timeout must be positive, got {config.fetch_timeout}")

    return config


_config: Optional[Config] = None


def get_config() -> Config:
    """Get or load the process-wide configuration."""
    global _config

    if _config is None:
        _config = load_config()

    return _config


def set_config(config: Optional[Config]) -> None:
    """Replace the process-wide configuration (None forces a reload)."""
    global _config
    _config = config


def parse_duration(text: str) -> timedelta:
    """Parse a duration string such as "1m", "30s" or "1h30m".

    Args:
        text: One or more <number><unit> groups; units are ms, s, m, h

    Returns:
        The parsed duration

    Raises:
        ConfigurationError: If the string is malformed or not positive
    """
    value = (text or "").strip()
    if not value:
        raise ConfigurationError("Duration is required (e.g. '1m', '30s')")

    total = timedelta()
    pos = 0
    for match in _DURATION_PART.finditer(value):
        if match.start() != pos:
            break
        number, unit = match.groups()
        total += float(number) * _DURATION_UNITS[unit]
        pos = match.end()

    if pos != len(value):
        raise ConfigurationError(f"Invalid duration: {text!r}")
    if total <= timedelta():
        raise ConfigurationError(f"Duration must be positive, got {text!r}")

    return total
