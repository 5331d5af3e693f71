"""Configuration management."""
import os
import yaml
from pathlib import Path

_DEFAULT_CONFIG = Path(__file__).parent / "default_config.yaml"
_PROJECT_ROOT = Path(__file__).parent.parent

ENV_OVERRIDES = {
    "GRIDWATCH_DB_PATH": ("database", "path"),
    "GRIDWATCH_RULES_PATH": ("rules", "path"),
    "GRIDWATCH_EVAL_INTERVAL": ("evaluator", "interval_seconds"),
    "GRIDWATCH_ESCALATION_INTERVAL": ("escalation", "tick_seconds"),
    "GRIDWATCH_LOG_LEVEL": ("logging", "level"),
}


def load_config(path=None):
    """Load config from YAML, merging defaults with optional overrides."""
    with open(_DEFAULT_CONFIG) as f:
        config = yaml.safe_load(f)

    if path and Path(path).exists():
        with open(path) as f:
            overrides = yaml.safe_load(f) or {}
        config = _deep_merge(config, overrides)

    # Environment variable overrides
    for env_key, config_path in ENV_OVERRIDES.items():
        val = os.environ.get(env_key)
        if val:
            d = config
            for k in config_path[:-1]:
                d = d.setdefault(k, {})
            try:
                d[config_path[-1]] = int(val)
            except ValueError:
                d[config_path[-1]] = val

    config["rules"]["path"] = _resolve_path(config["rules"].get("path"))

    _validate_config(config)
    return config


def _resolve_path(path):
    """Relative paths that do not exist from the CWD are resolved against the project root."""
    if not path:
        return path
    p = Path(path)
    if p.is_absolute() or p.exists():
        return str(p)
    return str(_PROJECT_ROOT / p)


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
    """Basic config validation."""
    required_sections = ["evaluator", "escalation", "database", "rules", "metrics_source", "notifications"]
    for section in required_sections:
        if section not in config:
            raise ValueError(f"Missing required config section: {section}")

    for section, key in (("evaluator", "interval_seconds"), ("escalation", "tick_seconds")):
        value = config[section].get(key)
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 1:
            raise ValueError(f"{section}.{key} must be a number >= 1 second")

    if config["metrics_source"].get("type") not in {"simulated", "http", "static"}:
        raise ValueError(f"Unknown metrics_source.type: {config['metrics_source'].get('type')}")
