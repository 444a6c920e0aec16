#!/usr/bin/env python3
"""
Load and save timeguru configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import tomllib

CONFIG_ENV_VAR = "TIMEGURU_CONFIG_PATH"
TOKEN_ENV_VAR = "TOGGL_API_TOKEN"
REPORT_FORMATS = ("csv", "json")
MISSING_TOKEN_MESSAGE = (
    "No API token provided. Set it with: timeguru config --set-token YOUR_TOKEN"
)


class ConfigError(RuntimeError):
    pass


@dataclass
class Config:
    """
    User configuration.

    Attributes
    ----------
    default_date_range_days : int
        Days covered by commands when no start date is given.
    preferred_report_format : str
        Report format, ``csv`` or ``json``.
    api_token : Optional[str]
        Toggl API token.
    round_duration_minutes : Optional[int]
        Rounding granularity for reported durations; 0 disables rounding.
    current_user_id : Optional[int]
        User whose entries were last synced.
    current_user_email : Optional[str]
        Email of that user.
    """

    default_date_range_days: int = 7
    preferred_report_format: str = "csv"
    api_token: Optional[str] = None
    round_duration_minutes: Optional[int] = 15
    current_user_id: Optional[int] = None
    current_user_email: Optional[str] = None

    def default_date_range(self) -> timedelta:
        """
        Examples
        --------
        >>> Config(default_date_range_days=3).default_date_range().days
        3
        """
        return timedelta(days=self.default_date_range_days)


def get_config_path() -> Path:
    """
    Return the configuration file path.

    Returns
    -------
    Path
        Configuration TOML path.

    Examples
    --------
    >>> isinstance(get_config_path(), Path)
    True
    """
    override = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if override:
        return Path(os.path.expandvars(os.path.expanduser(override)))
    return Path.home() / ".config" / "timeguru" / "config.toml"


def _coerce_int(value: Any, default: Optional[int]) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    return value


def _coerce_str(value: Any, default: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return default
    return value


def config_from_dict(parsed: Dict[str, Any]) -> Config:
    """
    Build a Config from parsed TOML, keeping defaults for bad values.

    Examples
    --------
    >>> config = config_from_dict({"default_date_range_days": "ten", "api_token": "t"})
    >>> (config.default_date_range_days, config.api_token)
    (7, 't')
    """
    defaults = Config()
    report_format = _coerce_str(
        parsed.get("preferred_report_format"), defaults.preferred_report_format
    )
    if report_format not in REPORT_FORMATS:
        report_format = defaults.preferred_report_format
    return Config(
        default_date_range_days=_coerce_int(
            parsed.get("default_date_range_days"), defaults.default_date_range_days
        ),
        preferred_report_format=report_format,
        api_token=_coerce_str(parsed.get("api_token"), None),
        round_duration_minutes=_coerce_int(
            parsed.get("round_duration_minutes"), defaults.round_duration_minutes
        ),
        current_user_id=_coerce_int(parsed.get("current_user_id"), None),
        current_user_email=_coerce_str(parsed.get("current_user_email"), None),
    )


def load_config(path: Optional[Path] = None) -> Config:
    """
    Load configuration from disk.

    Parameters
    ----------
    path : Optional[Path], optional
        Path to the configuration file (defaults to standard path).

    Returns
    -------
    Config
        Parsed configuration, or defaults when the file is missing.

    Raises
    ------
    ConfigError
        If the file cannot be read or is not valid TOML.
    """
    config_path = path or get_config_path()
    if not config_path.exists():
        return Config()
    try:
        raw_text = config_path.read_text(encoding="utf-8")
        parsed = tomllib.loads(raw_text)
    except OSError as exc:
        raise ConfigError(f"Unable to read {config_path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid configuration in {config_path}: {exc}") from exc
    return config_from_dict(parsed)


def _format_toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f"\"{text}\""


def format_config_toml(config: Config) -> str:
    """
    Format configuration as TOML text, omitting unset values.

    Examples
    --------
    >>> print(format_config_toml(Config(round_duration_minutes=None)), end="")
    default_date_range_days = 7
    preferred_report_format = "csv"
    """
    lines: List[str] = []
    for item in fields(config):
        value = getattr(config, item.name)
        if value is None:
            continue
        lines.append(f"{item.name} = {_format_toml_value(value)}")
    return "\n".join(lines) + "\n"


def save_config(config: Config, *, path: Optional[Path] = None) -> Path:
    """
    Save configuration to disk.

    Parameters
    ----------
    config : Config
        Configuration to save.
    path : Optional[Path], optional
        Destination path (defaults to standard path).

    Returns
    -------
    Path
        Path where the configuration was saved.
    """
    config_path = path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(format_config_toml(config), encoding="utf-8")
    return config_path


def resolve_api_token(config: Config, cli_token: Optional[str] = None) -> str:
    """
    Pick the API token from the CLI, the environment, then the config file.

    Parameters
    ----------
    config : Config
        Loaded configuration.
    cli_token : Optional[str], optional
        Token passed on the command line.

    Returns
    -------
    str
        Resolved token.

    Raises
    ------
    ConfigError
        If no token is available.
    """
    for candidate in (cli_token, os.environ.get(TOKEN_ENV_VAR), config.api_token):
        if candidate and candidate.strip():
            return candidate.strip()
    raise ConfigError(MISSING_TOKEN_MESSAGE)
