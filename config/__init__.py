"""Configuration management."""
import os
import yaml
from pathlib import Path

_config = None
_DEFAULT_CONFIG = Path(__file__).parent / "default_config.yaml"

# env var -> (config path, type)
ENV_OVERRIDES = {
    "OPSRULES_DB_PATH": (("database", "path"), str),
    "OPSRULES_LOG_LEVEL": (("logging", "level"), str),
    "OPSRULES_MAX_WORKERS": (("engine", "max_workers"), int),
    "OPSRULES_ACTION_TIMEOUT": (("engine", "action_timeout_seconds"), float),
    "OPSRULES_AUDIT_BATCH_SIZE": (("audit", "batch_size"), int),
    "OPSRULES_CONFIDENCE_LEVEL": (("abtest", "confidence_level"), float),
    "OPSRULES_WEBHOOK_BASE_URL": (("actions", "webhook_base_url"), str),
}

REQUIRED_SECTIONS = ("database", "engine", "audit", "statistics", "abtest")

CHECKS = [
    (("engine", "max_workers"), lambda v: v >= 1, "engine.max_workers must be >= 1"),
    (("engine", "action_timeout_seconds"), lambda v: v > 0, "engine.action_timeout_seconds must be > 0"),
    (("audit", "batch_size"), lambda v: v >= 1, "audit.batch_size must be >= 1"),
    (("abtest", "confidence_level"), lambda v: 0 < v < 1, "abtest.confidence_level must be between 0 and 1"),
    (("statistics", "execution_budget_ms"), lambda v: v > 0, "statistics.execution_budget_ms must be > 0"),
]


def load_config(path=None):
    """Load defaults, then the override file (``path`` or $OPSRULES_CONFIG), then env vars."""
    global _config

    with open(_DEFAULT_CONFIG) as f:
        config = yaml.safe_load(f)

    path = path or os.environ.get("OPSRULES_CONFIG")
    if path and Path(path).exists():
        with open(path) as f:
            overrides = yaml.safe_load(f) or {}
        config = _deep_merge(config, overrides)

    for env_key, (config_path, cast) in ENV_OVERRIDES.items():
        val = os.environ.get(env_key)
        if not val:
            continue
        section = config
        for k in config_path[:-1]:
            section = section.setdefault(k, {})
        try:
            section[config_path[-1]] = cast(val)
        except ValueError:
            raise ValueError(f"{env_key}={val!r} is not a valid {cast.__name__}")

    _validate_config(config)
    _config = config
    return config


def get_config():
    """Return cached config, loading defaults if needed."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def _deep_merge(base, override):
    """Recursively merge override into base dict."""
    result = base.copy()
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _validate_config(config):
    for section in REQUIRED_SECTIONS:
        if not isinstance(config.get(section), dict):
            raise ValueError(f"Missing required config section: {section}")

    for (section, key), check, message in CHECKS:
        value = config[section].get(key)
        if value is None or not check(value):
            raise ValueError(message)
