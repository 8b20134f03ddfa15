import copy
import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

_CONFIG_DIR = Path(__file__).resolve().parent / "storyclip_config"
_PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _init_env():
    env_file = _PROJECT_ROOT / ".env"
    # Real environment variables win over .env entries.
    load_dotenv(dotenv_path=str(env_file), override=False)


def get_default_config():
    """Get default configuration"""
    return {
        # Name of the environment variable holding the Gemini/Veo key
        "credential_env": "GEMINI_API_KEY",

        "models": {
            "segment": "gemini-2.5-flash",
            "video": "veo-2.0-generate-001",
        },

        "generation": {
            "aspect_ratio": "16:9",
            "person_generation": "allow_all",
            "download_timeout_seconds": 120,
        },

        "logging": {
            "log_file": "logs/storyclip.log",
            "level": "INFO",
            "enable_console": False,
        },
    }


def _merge(base, override):
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def _resolve_config_path(config_dir=_CONFIG_DIR):
    config_path = Path(config_dir) / "config.yaml"
    if not config_path.exists():
        config_path = Path(config_dir) / "config.example.yaml"
    return config_path


def load_yaml_config(config_path):
    """Read a YAML config file; a missing or broken file yields an empty dict."""
    if not config_path or not Path(config_path).exists():
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        # Logging is configured from this module, so it cannot be used yet.
        print(f"Warning: Failed to load config from {config_path}: {e}")
        return {}


def apply_env_overrides(config, env_vars):
    """
    Override configuration values with STORYCLIP_* environment variables.
    """
    def set_config(section, key, value):
        if value:
            config.setdefault(section, {})[key] = value

    set_config("models", "segment", env_vars.get("STORYCLIP_SEGMENT_MODEL"))
    set_config("models", "video", env_vars.get("STORYCLIP_VIDEO_MODEL"))
    set_config("logging", "log_file", env_vars.get("STORYCLIP_LOG_FILE"))
    set_config("logging", "level", env_vars.get("STORYCLIP_LOG_LEVEL"))

    if env_vars.get("STORYCLIP_LOG_CONSOLE"):
        config["logging"]["enable_console"] = env_vars["STORYCLIP_LOG_CONSOLE"].lower() == "true"
    if env_vars.get("STORYCLIP_CREDENTIAL_ENV"):
        config["credential_env"] = env_vars["STORYCLIP_CREDENTIAL_ENV"]
    return config


def load_config(config_path=None, env_vars=None):
    """Load configuration: defaults, then YAML file, then environment overrides."""
    config = get_default_config()
    path = Path(config_path) if config_path else _resolve_config_path()
    _merge(config, copy.deepcopy(load_yaml_config(path)))
    return apply_env_overrides(config, os.environ if env_vars is None else env_vars)


_init_env()
config = load_config()
