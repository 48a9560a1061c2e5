"""
Tests for scoring_strategies.py
Standard weighted scoring, ML-assisted blending and online training.
"""

from datetime import datetime

import pytest

from capability_matcher import CapabilityMatcher
from context_analyzer import ContextAnalyzer
from cost_optimizer import CostOptimizer
from load_balancer import LoadBalancer
from routing_config import RoutingConfig
from routing_models import AgentLoad, AgentSnapshot, RoutingRequest
from scoring_strategies import (
    DEFAULT_FEATURE_WEIGHTS,
    ML_OPTIMIZED,
    MLAssistedStrategy,
    ScoringInput,
    StandardWeightedStrategy,
    TrainingOutcome,
    TrainingSample,
    default_features,
    pearson,
    seasonal_factor,
    time_of_day_factor,
)


def make_agent(agent_id, cost_per_token=0.00003, provider="openai", model="gpt-4", current_load=0):
    return AgentSnapshot(id=agent_id, provider=provider, model=model,
                         capabilities=frozenset({"text-generation"}), cost_per_token=cost_per_token,
                         load=AgentLoad(current_load=current_load))


@pytest.fixture
def config():
    return RoutingConfig(seed_default_experiment=False, training_history_cap=150, training_history_trim=120)


@pytest.fixture
def standard(config):
    return StandardWeightedStrategy(CapabilityMatcher(), CostOptimizer(config), LoadBalancer(config), config)


@pytest.fixture
def ml(standard, config):
    return MLAssistedStrategy(standard, config, clock=lambda: datetime(2024, 10, 15, 3, 0))


def scoring_input(prompt="Write a letter to my landlord", priority="normal", variant_config=None,
                  user_id="u1", tokens=1000):
    request = RoutingRequest(prompt=prompt, priority=priority, user_id=user_id)
    context = ContextAnalyzer(RoutingConfig()).analyze(prompt)
    return ScoringInput(request=request, context=context, estimated_tokens=tokens,
                        required_capabilities=context.capabilities, variant_config=variant_config or {})


class TestStandardStrategy:
    """Weighted capability/cost/load scoring"""

    def test_sorted_descending(self, standard):
        agents = [make_agent("pricey", cost_per_token=0.02), make_agent("cheap", cost_per_token=0.00001)]
        ranked = standard.score(agents, scoring_input())
        assert [c.agent.id for c in ranked] == ["cheap", "pricey"]
        assert ranked[0].total_score >= ranked[1].total_score
        assert all(c.strategy == "standard" for c in ranked)

    def test_total_is_weighted_sum(self, standard):
        ranked = standard.score([make_agent("a")], scoring_input())
        c = ranked[0]
        expected = c.capability_score * 0.4 + c.cost_score * 0.35 + c.load_score * 0.25
        assert c.total_score == pytest.approx(expected, abs=0.01)

    def test_priority_multiplier(self, standard):
        normal = standard.score([make_agent("a")], scoring_input(priority="normal"))[0]
        critical = standard.score([make_agent("a")], scoring_input(priority="critical"))[0]
        assert critical.total_score == pytest.approx(normal.total_score * 1.5, abs=0.05)

    def test_variant_weight_override(self, standard):
        """weight_adjustments from an experiment variant replace the defaults"""
        config = {"weight_adjustments": {"capability": 0.0, "cost": 1.0, "load": 0.0}}
        c = standard.score([make_agent("a")], scoring_input(variant_config=config))[0]
        assert c.total_score == pytest.approx(c.cost_score, abs=0.01)

    def test_max_cost_zeroes_cost_score(self, standard):
        data = scoring_input()
        data.request.max_cost = 0.000001
        assert standard.score([make_agent("a")], data)[0].cost_score == 0.0

    def test_empty(self, standard):
        assert standard.score([], scoring_input()) == []


class TestMLStrategy:
    """ML-assisted blending"""

    def test_blend_formula(self, ml, standard):
        """0.6 * performance * confidence + 0.4 * normalized standard score"""
        data = scoring_input()
        base = standard.score([make_agent("a")], data)[0]
        blended = ml.score([make_agent("a")], data)[0]
        assert blended.strategy == ML_OPTIMIZED
        assert blended.ml_confidence == 0.6
        expected = blended.predicted_performance * 0.6 * 0.6 + base.total_score * 0.4
        assert blended.total_score == pytest.approx(expected, abs=0.05)

    def test_fallback_on_prediction_error(self, ml, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("model unavailable")
        monkeypatch.setattr(ml, "predict", boom)
        ranked = ml.score([make_agent("a")], scoring_input())
        assert ranked[0].strategy == "standard"

    def test_feature_ranges(self, ml):
        features = ml.extract_features(make_agent("a"), scoring_input())
        assert set(features) == set(DEFAULT_FEATURE_WEIGHTS)
        assert all(0.0 <= v <= 1.0 for v in features.values())
        assert features["time_of_day"] == 1.0
        assert features["seasonal_trend"] == 1.0

    def test_bad_agent_gets_default_features(self, ml):
        agent = AgentSnapshot(id="bad", provider=None, model="x", capabilities=frozenset(), cost_per_token=0.001)
        assert ml.extract_features(agent, scoring_input()) == default_features()

    def test_predictions_ordered(self, ml):
        agents = [make_agent("busy", current_load=45), make_agent("idle")]
        predictions = ml.predict(agents, scoring_input())
        assert predictions[0].agent_id == "idle"


class TestTraining:
    """Online learning from outcomes"""

    def test_historical_performance(self, ml):
        assert ml.historical_performance("a") == 0.7
        ml.train_with_outcome("a", TrainingOutcome(actual_performance=90))
        ml.train_with_outcome("a", TrainingOutcome(actual_performance=70))
        assert ml.historical_performance("a") == pytest.approx(0.8)

    def test_user_preference(self, ml):
        ml.train_with_outcome("a", TrainingOutcome(actual_performance=50, user_id="u1", user_satisfaction=0.9))
        assert ml.user_preference("u1", "a") == pytest.approx(0.9)
        assert ml.user_preference("u2", "a") == 0.6

    def test_uses_features_from_scoring(self, ml):
        """Training reuses the features captured when the request was scored"""
        data = scoring_input()
        ml.predict([make_agent("a")], data)
        ml.train_with_outcome("a", TrainingOutcome(actual_performance=80, request_id=data.request.request_id))
        sample = ml._training[-1]
        assert sample.features["time_of_day"] == 1.0

    def test_weights_adapt_after_100_samples(self, ml):
        samples = []
        for i in range(100):
            features = default_features()
            features["historical_performance"] = i / 100
            samples.append(TrainingSample("a", features, TrainingOutcome(actual_performance=float(i))))
        before = ml.weights["historical_performance"]
        ml.train(samples)
        assert ml.weights["historical_performance"] > before
        assert sum(ml.weights.values()) == pytest.approx(1.0)

    def test_confidence_after_50_samples(self, ml):
        samples = [TrainingSample("a", default_features(), TrainingOutcome(actual_performance=70.0))
                   for _ in range(60)]
        ml.train(samples)
        assert ml._confidence(default_features(), ml.weights) == 1.0

    def test_training_history_trimmed(self, ml):
        samples = [TrainingSample("a", default_features(), TrainingOutcome(actual_performance=50.0))
                   for _ in range(151)]
        result = ml.train(samples)
        assert result["training_data_size"] == 120

    def test_model_metrics(self, ml):
        ml.train_with_outcome("a", TrainingOutcome(actual_performance=50))
        metrics = ml.get_model_metrics()
        assert metrics["training_data_size"] == 1
        assert metrics["tracked_agents"] == 1
        assert metrics["last_update"] is not None


class TestHelpers:
    def test_pearson(self):
        assert pearson([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)
        assert pearson([1, 2, 3], [3, 2, 1]) == pytest.approx(-1.0)
        assert pearson([1, 1, 1], [1, 2, 3]) == 0.0

    def test_time_of_day(self):
        assert time_of_day_factor(10) == 0.8
        assert time_of_day_factor(20) == 0.9
        assert time_of_day_factor(3) == 1.0

    def test_seasonal(self):
        assert seasonal_factor(4) == 0.9
        assert seasonal_factor(7) == 0.8
        assert seasonal_factor(10) == 1.0
        assert seasonal_factor(1) == 0.9

    def test_similarity_identical(self):
        features = default_features()
        assert MLAssistedStrategy._similarity(features, features, DEFAULT_FEATURE_WEIGHTS) == pytest.approx(1.0)

    def test_outcome_from_camel_case(self):
        outcome = TrainingOutcome.from_dict({"actualPerformance": 80, "actualCost": 0.01,
                                             "requestId": "r1", "userSatisfaction": 0.7})
        assert outcome.actual_performance == 80.0
        assert outcome.actual_cost == 0.01
        assert outcome.request_id == "r1"
        assert outcome.user_satisfaction == 0.7
