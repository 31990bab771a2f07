"""
Configuration management for automacro.

Loads $AUTOMACRO_HOME/config.yaml (default ~/.config/automacro/config.yaml).

Example:
    macros_dir: ~/.config/automacro/macros
    state_dir: ~/.config/automacro/state
    cache_capacity: 500
    global_ttl_ms: 60000
    local_ttl_ms: 30000
    macro_timeout_s: 60
    max_steps: 100000
    log_level: INFO
    log_format: pretty
    log_file: ~/.config/automacro/automacro.log
    env_file: ~/.config/automacro/.env
"""

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv


class ConfigError(Exception):
    """Configuration validation error."""
    pass


HOME_ENV_VAR = "AUTOMACRO_HOME"
LOG_LEVEL_ENV_VAR = "AUTOMACRO_LOG_LEVEL"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("pretty", "structured")


def get_automacro_home() -> Path:
    """Config home: $AUTOMACRO_HOME or ~/.config/automacro."""
    home = os.environ.get(HOME_ENV_VAR)
    if home:
        return Path(home).expanduser()
    return Path("~/.config/automacro").expanduser()


@dataclass
class AutomacroConfig:
    """Engine and CLI settings."""
    macros_dir: Optional[str] = None
    state_dir: Optional[str] = None
    cache_capacity: int = 500
    global_ttl_ms: int = 60_000
    local_ttl_ms: int = 30_000
    macro_timeout_s: float = 60
    max_steps: int = 100_000
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    env_file: Optional[str] = None

    def __post_init__(self):
        for name in ("cache_capacity", "global_ttl_ms", "local_ttl_ms", "max_steps"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        if isinstance(self.macro_timeout_s, bool) or not isinstance(self.macro_timeout_s, (int, float)) \
                or self.macro_timeout_s <= 0:
            raise ConfigError(f"macro_timeout_s must be a positive number, got {self.macro_timeout_s!r}")
        self.log_level = str(self.log_level).upper()
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {list(LOG_LEVELS)}, got {self.log_level!r}")
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(f"log_format must be one of {list(LOG_FORMATS)}, got {self.log_format!r}")

    @property
    def home(self) -> Path:
        return get_automacro_home()

    @property
    def macros_path(self) -> Path:
        if self.macros_dir:
            return Path(self.macros_dir).expanduser()
        return self.home / "macros"

    @property
    def state_path(self) -> Path:
        if self.state_dir:
            return Path(self.state_dir).expanduser()
        return self.home / "state"

    @property
    def log_path(self) -> Optional[Path]:
        return Path(self.log_file).expanduser() if self.log_file else None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def default_config() -> AutomacroConfig:
    """Defaults, without reading any file."""
    return AutomacroConfig()


def load_config(config_path: Optional[Path] = None) -> AutomacroConfig:
    """
    Load configuration from YAML.

    Args:
        config_path: Explicit file; defaults to $AUTOMACRO_HOME/config.yaml

    Returns:
        AutomacroConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the file is not valid YAML or has invalid values
    """
    if config_path is None:
        config_path = get_automacro_home() / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"automacro config.yaml not found at {config_path}. Run 'automacro init' to create one."
        )

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if not isinstance(data, dict):
        raise ConfigError("Configuration file must be a mapping")

    known = {f.name for f in fields(AutomacroConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {unknown}")

    env_level = os.environ.get(LOG_LEVEL_ENV_VAR)
    if env_level:
        data["log_level"] = env_level

    config = AutomacroConfig(**data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path)

    return config
