"""
Tests for routing_config.py
"""

import json

import pytest

import routing_config
from routing_config import RoutingConfig, get_routing_config, init_routing_config, load_routing_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """No ROUTING_* variables leak in from the host"""
    for name in ("ROUTING_POOL_TIMEOUT", "ROUTING_MONTHLY_BUDGET", "ROUTING_MIN_SAMPLES",
                 "ROUTING_SIGNIFICANCE", "ROUTING_SIGNIFICANCE_TEST", "ROUTING_CONFIG_PATH"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(routing_config, "_routing_config", None)


@pytest.fixture
def config_file(tmp_path):
    def write(data):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(data))
        return str(path)
    return write


class TestDefaults:
    """Built-in defaults"""

    def test_scoring_weights_sum_to_one(self):
        """Capability, cost and load weights add up to 1"""
        config = RoutingConfig()
        assert config.capability_weight + config.cost_weight + config.load_weight == pytest.approx(1.0)

    def test_priority_multipliers(self):
        """Priority multipliers match the documented table"""
        assert RoutingConfig().priority_multipliers == {
            "low": 0.8, "normal": 1.0, "high": 1.2, "critical": 1.5,
        }

    def test_experiment_defaults(self):
        """A/B defaults: 30 samples, 5% level, threshold test"""
        config = RoutingConfig()
        assert config.min_sample_size == 30
        assert config.significance_level == 0.05
        assert config.significance_test == "threshold"

    def test_missing_file_gives_defaults(self, tmp_path):
        """A missing config file is not an error"""
        config = load_routing_config(str(tmp_path / "nope.json"))
        assert config.to_dict() == RoutingConfig().to_dict()


class TestOverrides:
    """Config file and environment overrides"""

    def test_file_section_applied(self, config_file):
        """Known keys from the routing section override defaults"""
        path = config_file({"routing": {"max_alternatives": 5, "pool_timeout_seconds": 2.5}})
        config = load_routing_config(path)
        assert config.max_alternatives == 5
        assert config.pool_timeout_seconds == 2.5

    def test_unknown_keys_ignored(self, config_file):
        """Unknown keys are skipped with a warning"""
        path = config_file({"routing": {"no_such_setting": 1}})
        config = load_routing_config(path)
        assert not hasattr(config, "no_such_setting")

    def test_invalid_json_gives_defaults(self, tmp_path):
        """Unparseable files fall back to defaults"""
        path = tmp_path / "config.json"
        path.write_text("{not json")
        config = load_routing_config(str(path))
        assert config.max_alternatives == 3

    def test_env_overrides_file(self, config_file, monkeypatch):
        """Environment variables win over the config file"""
        path = config_file({"routing": {"min_sample_size": 50}})
        monkeypatch.setenv("ROUTING_MIN_SAMPLES", "75")
        monkeypatch.setenv("ROUTING_SIGNIFICANCE_TEST", "welch")
        config = load_routing_config(path)
        assert config.min_sample_size == 75
        assert config.significance_test == "welch"

    def test_invalid_env_value_ignored(self, monkeypatch, tmp_path):
        """A non-numeric value keeps the previous setting"""
        monkeypatch.setenv("ROUTING_POOL_TIMEOUT", "soon")
        config = load_routing_config(str(tmp_path / "none.json"))
        assert config.pool_timeout_seconds == 5.0


class TestGlobalInstance:
    """init/get helpers"""

    def test_init_then_get(self, config_file):
        """get_routing_config returns the initialized instance"""
        path = config_file({"routing": {"monthly_budget": 42.0}})
        config = init_routing_config(path)
        assert get_routing_config() is config
        assert get_routing_config().monthly_budget == 42.0
