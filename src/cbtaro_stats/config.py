"""Configuration file management for cbtaro-stats.

Reads and writes ~/.cbtaro/config.json. Environment variables (CBTARO_*)
override values from the file.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from cbtaro_stats.daykey import CUTOFF_HOUR_UTC
from cbtaro_stats.db import DEFAULT_DB_PATH
from cbtaro_stats.ledger import DEFAULT_LEDGER_PATH, DEFAULT_MAX_ROWS

DEFAULT_CONFIG_PATH: Path = Path.home() / ".cbtaro" / "config.json"
DEFAULT_ALLOWED_ORIGIN = "https://0xagcheth.github.io"

logger = logging.getLogger(__name__)

ENV_OVERRIDES = {
    "CBTARO_API_BASE": "api_base",
    "CBTARO_ADMIN_WALLET": "admin_wallet",
    "CBTARO_ALLOWED_ORIGIN": "allowed_origin",
    "CBTARO_DEV": "dev_mode",
    "CBTARO_FID": "fid",
    "CBTARO_WALLET": "wallet",
    "CBTARO_CUTOFF_HOUR": "cutoff_hour_utc",
}

CONFIG_KEYS = (
    "api_base",
    "admin_wallet",
    "allowed_origin",
    "dev_mode",
    "fid",
    "wallet",
    "cutoff_hour_utc",
    "ledger_path",
    "db_path",
    "max_rows",
)

# Bounds for integer settings; a value outside them is rejected on set and
# ignored on load.
INT_KEYS = {
    "fid": (1, 2**63 - 1),
    "cutoff_hour_utc": (0, 23),
    "max_rows": (1, None),
}


@dataclass
class Settings:
    api_base: str = ""
    cutoff_hour_utc: int = CUTOFF_HOUR_UTC
    admin_wallet: str = ""
    allowed_origin: str = DEFAULT_ALLOWED_ORIGIN
    ledger_path: Path = DEFAULT_LEDGER_PATH
    db_path: Path = DEFAULT_DB_PATH
    dev_mode: bool = False
    fid: int | None = None
    wallet: str | None = None
    max_rows: int | None = DEFAULT_MAX_ROWS


def load_config(config_path: Path | None = None) -> dict:
    """Load config from JSON file. Returns {} if file missing or invalid."""
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def save_config(data: dict, config_path: Path | None = None) -> None:
    """Write config dict to JSON file. Creates parent dirs if needed."""
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")


def set_config_value(key: str, value: str, config_path: Path | None = None) -> None:
    """Persist one config value.

    Raises KeyError for unknown keys and ValueError for an integer setting
    that does not parse or is out of range.
    """
    if key not in CONFIG_KEYS:
        raise KeyError(key)
    if key in INT_KEYS:
        _parse_int_setting(key, value)
    config = load_config(config_path)
    config[key] = value
    save_config(config, config_path)


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _parse_int_setting(key: str, value: object) -> int | None:
    """Parse an integer setting; empty means unset. Raises ValueError when invalid."""
    if value is None or str(value).strip() == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {value!r}") from None
    low, high = INT_KEYS[key]
    if number < low or (high is not None and number > high):
        bounds = f"between {low} and {high}" if high is not None else f"at least {low}"
        raise ValueError(f"{key} must be {bounds}, got {number}")
    return number


def _int_setting(raw: Mapping[str, object], key: str, default: int | None) -> int | None:
    """Like _parse_int_setting, but a bad value logs a warning and yields default."""
    try:
        return _parse_int_setting(key, raw.get(key))
    except ValueError as exc:
        logger.warning("Ignoring invalid config value: %s", exc)
        return default


def load_settings(
    config_path: Path | None = None, env: Mapping[str, str] | None = None
) -> Settings:
    """Build Settings from the config file, then apply CBTARO_* environment overrides.

    Invalid integer values are logged and replaced by their defaults, so a
    bad config file never stops the CLI from starting.
    """
    raw = load_config(config_path)
    environ = os.environ if env is None else env
    for var, key in ENV_OVERRIDES.items():
        if environ.get(var):
            raw[key] = environ[var]

    settings = Settings()
    if raw.get("api_base"):
        settings.api_base = str(raw["api_base"]).rstrip("/")
    cutoff = _int_setting(raw, "cutoff_hour_utc", CUTOFF_HOUR_UTC)
    if cutoff is not None:
        settings.cutoff_hour_utc = cutoff
    if raw.get("admin_wallet"):
        settings.admin_wallet = str(raw["admin_wallet"])
    if raw.get("allowed_origin"):
        settings.allowed_origin = str(raw["allowed_origin"])
    if raw.get("ledger_path"):
        settings.ledger_path = Path(raw["ledger_path"]).expanduser()
    if raw.get("db_path"):
        settings.db_path = Path(raw["db_path"]).expanduser()
    if "dev_mode" in raw:
        settings.dev_mode = _as_bool(raw["dev_mode"])
    settings.fid = _int_setting(raw, "fid", None)
    settings.wallet = raw.get("wallet") or None
    if "max_rows" in raw:
        settings.max_rows = _int_setting(raw, "max_rows", DEFAULT_MAX_ROWS)
    return settings
