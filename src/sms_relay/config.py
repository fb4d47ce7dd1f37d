"""Configuration loading for the SMS relay.

Layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable SMS_RELAY_CONFIG
3. Fallback to "config/default.yaml"

Any key can then be overridden from the environment with prefix
``SMS_RELAY__`` (e.g., SMS_RELAY__RELAY__CAPACITY=50). Carrier credentials
additionally fall back to the conventional TWILIO_* variables.
"""

from __future__ import annotations

import copy
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "SMS_RELAY__"
CONFIG_ENV = "SMS_RELAY_CONFIG"
DEFAULT_PATH = "config/default.yaml"

DEFAULTS: Dict[str, Any] = {
    "server": {"cors_origins": ["*"]},
    "relay": {"capacity": 100},
    "carrier": {
        "account_sid": None,
        "auth_token": None,
        "phone_number": None,
        "validate_signature": False,
    },
    "inbound": {"auto_reply": ""},
    "poll": {"base_url": "http://127.0.0.1:8000", "interval_seconds": 2.0},
}

# carrier key -> legacy environment variable
_CARRIER_ENV = {
    "account_sid": "TWILIO_ACCOUNT_SID",
    "auth_token": "TWILIO_AUTH_TOKEN",
    "phone_number": "TWILIO_PHONE_NUMBER",
}

# "+1555..." and "0123" must survive as strings
_KEEP_AS_STRING = re.compile(r"^(\+|0\d)")


def _coerce(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    if _KEEP_AS_STRING.match(value):
        return value
    try:
        return float(value) if "." in value else int(value)
    except ValueError:
        return value


def _merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in extra.items():
        # a section with every child commented out loads as None
        if value is None and isinstance(out.get(key), dict):
            continue
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix SMS_RELAY__."""
    carrier = cfg.setdefault("carrier", {})
    for key, env_name in _CARRIER_ENV.items():
        if not carrier.get(key) and os.environ.get(env_name):
            carrier[key] = os.environ[env_name]

    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # SMS_RELAY__POLL__INTERVAL_SECONDS -> cfg["poll"]["interval_seconds"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if not isinstance(sub.get(p), dict):
                sub[p] = {}
            sub = sub[p]
        sub[parts[-1]] = _coerce(value)
    return cfg


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration for the relay.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``SMS_RELAY_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Defaults merged with the file contents, environment overrides applied.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV, DEFAULT_PATH)

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s; using defaults.", path_obj)
        return _apply_env_overrides(copy.deepcopy(DEFAULTS))

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(f"Failed to parse config file {path_obj}: {e}") from e

    if not isinstance(loaded, dict):
        raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(_merge(DEFAULTS, loaded))
