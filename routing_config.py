"""
Routing engine configuration.

Defaults live in RoutingConfig. They can be overridden by the "routing"
section of a JSON config file and then by ROUTING_* environment variables
(a .env file in the working directory is honoured via python-dotenv).

    ROUTING_DATA_DIR          base directory for config.json (default /root/routing/data)
    ROUTING_CONFIG_PATH       explicit config file path
    ROUTING_POOL_TIMEOUT      agent pool fetch deadline in seconds
    ROUTING_MONTHLY_BUDGET    default monthly budget in USD
    ROUTING_MIN_SAMPLES       minimum A/B samples before analysis
    ROUTING_SIGNIFICANCE      significance level for A/B analysis
    ROUTING_SIGNIFICANCE_TEST threshold | welch
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger("routing.config")

DATA_DIR = os.environ.get("ROUTING_DATA_DIR", "/root/routing/data")


@dataclass
class RoutingConfig:
    """All tunables of the routing decision engine"""
    # Standard weighted scoring
    capability_weight: float = 0.40
    cost_weight: float = 0.35
    load_weight: float = 0.25
    priority_multipliers: Dict[str, float] = field(default_factory=lambda: {
        "low": 0.8, "normal": 1.0, "high": 1.2, "critical": 1.5,
    })

    # ML-assisted scoring blend
    ml_weight: float = 0.6
    dynamic_weight: float = 0.4

    # Bounded in-memory histories (cap, trim-to)
    routing_history_cap: int = 1000
    routing_history_trim: int = 800
    context_history_cap: int = 1000
    context_history_trim: int = 800
    cost_history_cap: int = 10_000
    cost_history_trim: int = 8_000
    training_history_cap: int = 10_000
    training_history_trim: int = 8_000
    response_time_samples: int = 100
    agent_cost_samples: int = 100
    tracked_users_cap: int = 10_000  # users with cached assignments or monthly volume

    # Cost model
    accuracy_recompute_every: int = 100
    accuracy_window: int = 500
    monthly_budget: float = 200.0

    # Experiments
    min_sample_size: int = 30
    analysis_every: int = 100
    significance_level: float = 0.05
    significance_test: str = "threshold"  # threshold | welch
    seed_default_experiment: bool = True

    # Orchestration
    pool_timeout_seconds: float = 5.0
    max_alternatives: int = 3

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


_ENV_OVERRIDES = {
    "ROUTING_POOL_TIMEOUT": ("pool_timeout_seconds", float),
    "ROUTING_MONTHLY_BUDGET": ("monthly_budget", float),
    "ROUTING_MIN_SAMPLES": ("min_sample_size", int),
    "ROUTING_SIGNIFICANCE": ("significance_level", float),
    "ROUTING_SIGNIFICANCE_TEST": ("significance_test", str),
}


def _read_config_file(path: str) -> Dict[str, Any]:
    """Return the "routing" section of a config file, or {} if unusable."""
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Could not load routing config from {path}: {e}")
        return {}
    section = data.get("routing", {}) if isinstance(data, dict) else {}
    if not isinstance(section, dict):
        logger.warning(f"Ignoring non-object 'routing' section in {path}")
        return {}
    return section


def load_routing_config(path: Optional[str] = None) -> RoutingConfig:
    """Build a RoutingConfig from defaults, config file and environment."""
    load_dotenv()
    config = RoutingConfig()
    known = {f.name for f in fields(RoutingConfig)}

    path = path or os.environ.get("ROUTING_CONFIG_PATH") or os.path.join(DATA_DIR, "config.json")
    for key, value in _read_config_file(path).items():
        if key in known:
            setattr(config, key, value)
        else:
            logger.warning(f"Unknown routing config key ignored: {key}")

    for env_name, (attr, cast) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            setattr(config, attr, cast(raw))
        except ValueError:
            logger.warning(f"Invalid value for {env_name}: {raw!r}, keeping {getattr(config, attr)}")

    return config


# Global instance
_routing_config: Optional[RoutingConfig] = None


def init_routing_config(path: Optional[str] = None) -> RoutingConfig:
    """Initialize global routing config"""
    global _routing_config
    _routing_config = load_routing_config(path)
    return _routing_config


def get_routing_config() -> RoutingConfig:
    """Get global routing config, loading it on first use"""
    global _routing_config
    if _routing_config is None:
        _routing_config = load_routing_config()
    return _routing_config
