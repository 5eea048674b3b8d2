"""
Config loader for aide-de-camp.
Reads config.yaml once at startup. All other modules import from here.
runtime_config.yaml holds user preferences (e.g. the webhook URL) and is
hot-reloaded on every call to get_runtime_config() via mtime check.
"""

import logging
import os
import re
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"
_RUNTIME_CONFIG_PATH = Path(__file__).parent.parent / "runtime_config.yaml"

DEFAULTS: dict = {
    "openai": {
        "endpoint": "https://api.openai.com/v1/chat/completions",
        "model": "gpt-4.1",
        "api_key": "${OPENAI_API_KEY}",
        "temperature": 0.7,
        "connect_timeout": 60,
        "read_timeout": 300,
        "max_retries": 2,
        "backoff_base": 1.0,
    },
    "webhook": {
        "url": "${AIDE_WEBHOOK_URL}",
        "timeout": 30,
    },
    "conversation": {
        "max_messages": 30,
        "snapshot_path": "./data/conversation.json",
    },
    "hooks": {
        "directory": "./hooks",
        "hooks": [],
    },
    "flight_recorder": {
        "enabled": True,
        "max_records": 200,
        "retention_hours": 24,
    },
    "logging": {
        "level": "INFO",
    },
}

_config: dict | None = None

# Runtime config hot-reload state
_runtime_config: dict = {}
_runtime_mtime: float = 0.0


def _resolve_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} patterns with actual environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return re.sub(r"\$\{(\w+)\}", replacer, value)


def _walk_and_resolve(obj):
    """Recursively resolve env vars in all string values."""
    if isinstance(obj, dict):
        return {k: _walk_and_resolve(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_walk_and_resolve(v) for v in obj]
    elif isinstance(obj, str):
        return _resolve_env_vars(obj)
    return obj


def _merge(base: dict, override: dict) -> dict:
    """Deep-merge override into a copy of base."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Path | None = None) -> dict:
    """
    Load and cache config from YAML file, layered over DEFAULTS.
    A missing config.yaml is not an error; the defaults apply.
    """
    global _config
    if _config is not None and path is None:
        return _config

    config_path = path or _CONFIG_PATH
    raw: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
    else:
        logger.debug("Config not found at %s, using defaults", config_path)

    _config = _walk_and_resolve(_merge(DEFAULTS, raw))
    return _config


def get_config() -> dict:
    """Return cached base config, loading if necessary."""
    if _config is None:
        return load_config()
    return _config


def reset_config():
    """Drop the cached config so the next get_config() re-reads the file."""
    global _config
    _config = None


def get_runtime_config() -> dict:
    """
    Return runtime_config.yaml overrides, hot-reloading if the file changed.
    Returns the contents of the `runtime` key, or {} if file is missing/empty.
    """
    global _runtime_config, _runtime_mtime

    if not _RUNTIME_CONFIG_PATH.exists():
        return {}

    try:
        mtime = _RUNTIME_CONFIG_PATH.stat().st_mtime
    except OSError:
        return _runtime_config

    if mtime == _runtime_mtime:
        return _runtime_config

    # File changed, reload
    try:
        with open(_RUNTIME_CONFIG_PATH) as f:
            data = yaml.safe_load(f) or {}
        _runtime_config = data.get("runtime", {}) or {}
        _runtime_mtime = mtime
    except (OSError, yaml.YAMLError) as e:
        # Keep last good config on parse error
        logger.warning("Could not reload %s: %s", _RUNTIME_CONFIG_PATH, e)

    return _runtime_config


def update_runtime_config(key: str, value) -> bool:
    """
    Write a single key into the runtime: block of runtime_config.yaml.
    Read-modify-write of the whole file. Returns True on success.
    """
    global _runtime_mtime
    try:
        if _RUNTIME_CONFIG_PATH.exists():
            with open(_RUNTIME_CONFIG_PATH) as f:
                data = yaml.safe_load(f) or {}
        else:
            data = {}

        if "runtime" not in data or not isinstance(data["runtime"], dict):
            data["runtime"] = {}

        data["runtime"][key] = value

        with open(_RUNTIME_CONFIG_PATH, "w") as f:
            yaml.dump(data, f, default_flow_style=False, allow_unicode=True)

        # Bust the mtime cache so next get_runtime_config() picks it up
        _runtime_mtime = 0.0
        return True
    except (OSError, yaml.YAMLError) as e:
        logger.error(
            "update_runtime_config(%s) failed: %s (path=%s, writable=%s)",
            key, e, _RUNTIME_CONFIG_PATH,
            os.access(_RUNTIME_CONFIG_PATH.parent, os.W_OK),
        )
        return False
