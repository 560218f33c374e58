"""
Persistent CLI preferences (``~/.config/kdbxreader/config.toml``).

Only known keys with the right type are honoured; anything else is skipped
so a stale or hand-edited file never prevents the tool from starting.
"""

from __future__ import annotations

import argparse
import os
import tomllib
from pathlib import Path

_CONFIG_DIR = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")) / "kdbxreader"
_CONFIG_FILE = _CONFIG_DIR / "config.toml"

_ALLOWED_KEYS: dict[str, type] = {
    "keyfile": str,
    "log_level": str,
}

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_config() -> dict:
    """Load preferences; a missing or unreadable file yields ``{}``."""
    try:
        with open(_CONFIG_FILE, "rb") as f:
            raw = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return {}

    config = {}
    for key, expected in _ALLOWED_KEYS.items():
        value = raw.get(key)
        if isinstance(value, expected):
            config[key] = value
    if config.get("log_level", "WARNING").upper() not in _LOG_LEVELS:
        del config["log_level"]
    return config


def apply_config_defaults(args: argparse.Namespace, config: dict) -> argparse.Namespace:
    """Fill CLI arguments the user did not set from *config*."""
    if getattr(args, "keyfile", None) is None and "keyfile" in config:
        args.keyfile = os.path.expanduser(config["keyfile"])
    if getattr(args, "log_level", None) is None and "log_level" in config:
        args.log_level = config["log_level"]
    return args
