"""
Configuration management for hookline.

Loads ~/.config/hookline/config.yaml (or the file named by
$HOOKLINE_HOME / $XDG_CONFIG_HOME) into a :class:`HooklineConfig`.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

DEFAULT_TIMEOUT = 30.0


def get_config_dir() -> Path:
    """Get config directory.

    Priority order:
    1. $HOOKLINE_HOME (if set)
    2. $XDG_CONFIG_HOME/hookline (if set)
    3. ~/.config/hookline (default)
    """
    hookline_home = os.environ.get("HOOKLINE_HOME")
    if hookline_home:
        return Path(hookline_home)

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base = Path(xdg_config)
    else:
        base = Path.home() / ".config"
    return base / "hookline"


def get_config_file() -> Path:
    return get_config_dir() / "config.yaml"


@dataclass
class LoggingSettings:
    enabled: bool = False
    detailed: bool = False


@dataclass
class PersistenceSettings:
    enabled: bool = False
    max_size: int = 1000
    save_body: bool = False
    path: str | None = None


@dataclass
class Replacement:
    """One ``from`` -> ``to`` rule; ``from`` is literal unless ``regex`` is set."""
    matcher: str
    replacement: str
    regex: bool = False

    def compiled_matcher(self) -> str | re.Pattern[str]:
        return re.compile(self.matcher) if self.regex else self.matcher

    @classmethod
    def from_dict(cls, data: Any) -> Replacement:
        if not isinstance(data, dict) or "from" not in data or "to" not in data:
            raise ConfigError(f"Replacement must be a mapping with 'from' and 'to': {data!r}")
        return cls(
            matcher=str(data["from"]),
            replacement=str(data["to"]),
            regex=bool(data.get("regex", False)),
        )


@dataclass
class HooklineConfig:
    """Settings applied to a HookSystem by ``HookSystem.from_config``."""
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    persistence: PersistenceSettings = field(default_factory=PersistenceSettings)
    url_replacements: list[Replacement] = field(default_factory=list)
    text_replacements: list[Replacement] = field(default_factory=list)
    timeout: float = DEFAULT_TIMEOUT
    raw: dict[str, Any] = field(default_factory=dict)
    path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: Path | None = None) -> HooklineConfig:
        logging_data = data.get("logging") or {}
        persistence_data = data.get("persistence") or {}
        if not isinstance(logging_data, dict) or not isinstance(persistence_data, dict):
            raise ConfigError("'logging' and 'persistence' must be mappings")

        try:
            persistence = PersistenceSettings(
                enabled=bool(persistence_data.get("enabled", False)),
                max_size=int(persistence_data.get("max_size", 1000)),
                save_body=bool(persistence_data.get("save_body", False)),
                path=persistence_data.get("path"),
            )
            timeout = float(data.get("timeout", DEFAULT_TIMEOUT))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid setting: {e}") from e

        return cls(
            logging=LoggingSettings(
                enabled=bool(logging_data.get("enabled", False)),
                detailed=bool(logging_data.get("detailed", False)),
            ),
            persistence=persistence,
            url_replacements=[Replacement.from_dict(r) for r in data.get("url_replacements") or []],
            text_replacements=[Replacement.from_dict(r) for r in data.get("text_replacements") or []],
            timeout=timeout,
            raw=data,
            path=path,
        )


def load_config(path: Path | str | None = None) -> HooklineConfig:
    """
    Load configuration from a YAML file.

    A missing file yields the defaults. A file that cannot be parsed or
    does not contain a YAML mapping raises ConfigError.
    """
    config_file = Path(path) if path is not None else get_config_file()

    if not config_file.exists():
        return HooklineConfig(path=config_file)

    try:
        data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
    except (yaml.YAMLError, OSError) as e:
        raise ConfigError(f"Error loading config from {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a YAML dictionary, got {type(data).__name__}")

    return HooklineConfig.from_dict(data, path=config_file)


def create_config_template() -> str:
    """Return a documented starter config file."""
    return """# hookline configuration
# Location: ~/.config/hookline/config.yaml

# Print one line per completed request
logging:
  enabled: true
  detailed: false

# Keep request summaries in a JSON file (default: ~/.local/state/hookline/state.json)
persistence:
  enabled: false
  max_size: 1000
  save_body: false
  # path: /tmp/hookline.json

# Request timeout in seconds for `hookline fetch`
timeout: 30

# Rewrite request URLs. `from` is an exact URL unless `regex: true`.
url_replacements: []
#  - from: "https://api.old.example.com/data"
#    to: "https://api.new.example.com/data"
#  - from: "^https://old-cdn\\\\.example\\\\.com/(.+)$"
#    to: "https://new-cdn.example.com/\\\\1"
#    regex: true

# Rewrite text and JSON response bodies
text_replacements: []
#  - from: "oldValue"
#    to: "newValue"

# Extra import paths for custom hooks
python_path: []

# Custom hooks by channel: before_request, url_replace, data_transform,
# after_request, on_error
hooks: {}
#  after_request:
#    - name: audit
#      module: my_hooks
#      function: audit
#      priority: 10
#      config:
#        verbose: true

# Functions run once before the first request
startup: []
#  - name: warm_cache
#    module: my_hooks
#    function: warm_cache
"""


def ensure_config_template(force: bool = False) -> Path:
    """Write the starter config unless it exists. Returns its path."""
    config_file = get_config_file()
    if config_file.exists() and not force:
        return config_file

    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(create_config_template(), encoding="utf-8")
    return config_file
