"""Configuration management."""
import os
import yaml
from pathlib import Path

_config = None
_DEFAULT_CONFIG = Path(__file__).parent / "default_config.yaml"

# env var -> (config path, type)
ENV_OVERRIDES = {
    "AIMONITOR_DB_PATH": (("database", "path"), str),
    "AIMONITOR_LOG_LEVEL": (("logging", "level"), str),
    "AIMONITOR_AI_API_KEY": (("ai", "api_key"), str),
    "AIMONITOR_PROMETHEUS_URL": (("prometheus", "url"), str),
    "AIMONITOR_WORKERS": (("workers", "max_workers"), int),
}


def load_config(path=None):
    """Load config from YAML, merging defaults with optional overrides."""
    global _config

    with open(_DEFAULT_CONFIG) as f:
        config = yaml.safe_load(f)

    if path:
        if not Path(path).exists():
            raise ValueError(f"Config file not found: {path}")
        with open(path) as f:
            overrides = yaml.safe_load(f) or {}
        config = _deep_merge(config, overrides)

    # Environment variable overrides
    for env_key, (config_path, cast) in ENV_OVERRIDES.items():
        val = os.environ.get(env_key)
        if val:
            d = config
            for k in config_path[:-1]:
                d = d.setdefault(k, {})
            try:
                d[config_path[-1]] = cast(val)
            except ValueError:
                raise ValueError(f"{env_key} must be {cast.__name__}, got {val!r}")

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
    """Basic config validation."""
    required_sections = ["database", "rules", "workers", "notifications", "analysis", "ai", "scheduler"]
    for section in required_sections:
        if section not in config:
            raise ValueError(f"Missing required config section: {section}")

    workers = config["workers"]
    if workers["max_workers"] < 1:
        raise ValueError("workers.max_workers must be >= 1")
    if workers["max_queue"] < 1:
        raise ValueError("workers.max_queue must be >= 1")
    if workers["enqueue_timeout"] < 0:
        raise ValueError("workers.enqueue_timeout must be >= 0")
    if config["scheduler"]["interval"] < 5:
        raise ValueError("scheduler.interval must be >= 5 seconds")
    if config["notifications"]["timeout"] <= 0 or config["notifications"]["smtp_timeout"] <= 0:
        raise ValueError("notification timeouts must be positive")
    if config.get("alerts", {}).get("equality_tolerance", 0.0) < 0:
        raise ValueError("alerts.equality_tolerance must be >= 0")
    if config["analysis"]["history_source"] not in ("database", "prometheus"):
        raise ValueError("analysis.history_source must be 'database' or 'prometheus'")
