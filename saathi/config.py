"""
Config loader for saathi.
Reads config.yaml once at startup. All other modules import from here.
String values of the form ${ENV_VAR} are resolved against the environment,
so secrets (the gateway key) live in .env or the process environment.
"""

import os
import re
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

_config: dict | None = None

# Used when config.yaml is missing or leaves a section out.
DEFAULTS: dict = {
    "server": {"host": "0.0.0.0", "port": 8000},
    "gateway": {
        "url": "https://ai.gateway.lovable.dev/v1/chat/completions",
        "model": "google/gemini-2.5-flash",
        "api_key": "${LOVABLE_API_KEY}",
        "api_key_env": "LOVABLE_API_KEY",
        "connect_timeout": 10,
        "idle_timeout": 60,
    },
    "cors": {
        "allow_origin": "*",
        "allow_headers": "authorization, x-client-info, apikey, content-type",
        "allow_methods": "POST, OPTIONS",
    },
    "languages": {"default": "en", "path": ""},
    "client": {
        "proxy_url": "http://localhost:8000/chat",
        "storage_path": "./data/local_storage.json",
        "storage_key": "saathi-chat-history",
        "language": "en",
        "idle_timeout": 60,
        "headers": {},
    },
    "logging": {"level": "INFO", "file": ""},
}


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
    """Section-wise merge: keys in override win, nested dicts merge."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Path | None = None) -> dict:
    """Load and cache config from YAML file, layered over DEFAULTS."""
    global _config
    if _config is not None:
        return _config

    env_path = os.environ.get("SAATHI_CONFIG")
    config_path = path or (Path(env_path) if env_path else _CONFIG_PATH)

    raw: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
    elif path is not None or env_path:
        raise FileNotFoundError(f"Config not found: {config_path}")

    _config = _walk_and_resolve(_merge(DEFAULTS, raw))
    return _config


def get_config() -> dict:
    """Return cached config, loading if necessary."""
    if _config is None:
        return load_config()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() reloads it."""
    global _config
    _config = None
