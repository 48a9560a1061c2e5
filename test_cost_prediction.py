"""
Tests for cost_prediction.py
Per-agent cost math, ranges, recommendations, budget analysis and the
actual-cost learning loop.
"""

import threading

import pytest

from cost_prediction import (
    CostPredictionInput,
    CostPredictionModel,
    HistoricalCostRecord,
    PricingFeed,
    default_demand_curve,
)
from routing_config import RoutingConfig
from routing_models import AgentSnapshot, Priority


def make_agent(agent_id, provider="acme", model="m1", cost_per_token=0.001):
    return AgentSnapshot(id=agent_id, provider=provider, model=model,
                         capabilities=frozenset({"text-generation"}), cost_per_token=cost_per_token)


@pytest.fixture
def model():
    m = CostPredictionModel(config=RoutingConfig(accuracy_recompute_every=2))
    yield m
    m.shutdown()


class TestTokenEstimate:
    def test_empty_prompt(self):
        assert CostPredictionModel.estimate_tokens("") == 1500

    def test_prompt_plus_response(self):
        """ceil(words * 1.3) plus a 1.5x response"""
        assert CostPredictionModel.estimate_tokens("one two three four five") == 18

    def test_complexity_scales(self):
        simple = CostPredictionModel.estimate_tokens("one two three four five")
        complex_ = CostPredictionModel.estimate_tokens("one two three four five", complexity=100)
        assert complex_ > simple


class TestPrediction:
    """Cost formula for one agent"""

    def test_unpriced_agent_uses_cost_per_token(self, model):
        """base + compute with no demand curve, discount or priority premium"""
        output = model.predict_costs(CostPredictionInput(
            agents=[make_agent("a")], estimated_tokens=1000, hour=3))
        prediction = output.predictions[0]
        assert prediction.cost_breakdown.input_tokens == 400
        assert prediction.cost_breakdown.output_tokens == 600
        assert prediction.cost_breakdown.base_token_cost == pytest.approx(1.0)
        assert prediction.cost_breakdown.compute_cost == pytest.approx(0.05)
        assert prediction.predicted_cost == pytest.approx(1.05)

    def test_priority_multiplier(self, model):
        normal = model.predict_costs(CostPredictionInput(
            agents=[make_agent("a")], estimated_tokens=1000, hour=3))
        critical = model.predict_costs(CostPredictionInput(
            agents=[make_agent("a")], estimated_tokens=1000, hour=3, priority="critical"))
        assert critical.predictions[0].predicted_cost == pytest.approx(
            normal.predictions[0].predicted_cost * 1.8)

    @pytest.mark.parametrize("lower,higher", [("low", "normal"), ("normal", "high"), ("high", "critical")])
    def test_priority_monotonic(self, model, lower, higher):
        """Raising priority never lowers the predicted cost"""
        def cost(priority):
            output = model.predict_costs(CostPredictionInput(
                agents=[make_agent("a")], estimated_tokens=1000, hour=3, priority=priority))
            return output.predictions[0].predicted_cost
        assert cost(higher) >= cost(lower)

    def test_priority_tiers_ordered(self, model):
        costs = [model.predict_costs(CostPredictionInput(
            agents=[make_agent("a")], estimated_tokens=1000, hour=3, priority=p)).predictions[0].predicted_cost
            for p in ("low", "normal", "high", "critical")]
        assert costs == pytest.approx([1.05 * 0.8, 1.05, 1.05 * 1.3, 1.05 * 1.8])

    def test_demand_surcharge(self, model):
        """gpt-4 at a business hour pays load * 0.3 on top"""
        agent = make_agent("gpt", provider="openai", model="gpt-4", cost_per_token=0.00003)
        output = model.predict_costs(CostPredictionInput(agents=[agent], estimated_tokens=1000, hour=12))
        assert output.predictions[0].cost_breakdown.demand_surcharge == pytest.approx(0.7 * 0.3)

    def test_sorted_cheapest_first(self, model):
        agents = [make_agent("pricey", cost_per_token=0.01), make_agent("cheap", cost_per_token=0.0001)]
        output = model.predict_costs(CostPredictionInput(agents=agents, estimated_tokens=1000, hour=3))
        assert [p.agent_id for p in output.predictions] == ["cheap", "pricey"]
        assert output.for_agent("pricey") is output.predictions[1]

    def test_cost_range(self, model):
        output = model.predict_costs(CostPredictionInput(
            agents=[make_agent("a")], estimated_tokens=1000, hour=3))
        cost_range = output.predictions[0].cost_range
        assert cost_range.minimum == pytest.approx(1.05 * 0.8)
        assert cost_range.maximum == pytest.approx(1.05 * 1.3)
        assert cost_range.confidence == pytest.approx(0.8)

    def test_pure_for_same_input(self, model):
        data = CostPredictionInput(agents=[make_agent("a"), make_agent("b", cost_per_token=0.002)],
                                   estimated_tokens=500, hour=10, complexity=40)
        assert model.predict_costs(data).to_dict() == model.predict_costs(data).to_dict()

    def test_broken_agent_gets_default(self, model):
        """A failing agent prediction falls back to 0.001 per token"""
        agent = AgentSnapshot(id="bad", provider="acme", model="m1", capabilities=frozenset(),
                              cost_per_token=None)
        output = model.predict_costs(CostPredictionInput(agents=[agent], estimated_tokens=1000, hour=3))
        assert output.predictions[0].predicted_cost == pytest.approx(1.0)


class TestRecommendations:
    def test_provider_switch(self, model):
        agents = [make_agent("pricey", cost_per_token=0.01), make_agent("cheap", cost_per_token=0.0001)]
        output = model.predict_costs(CostPredictionInput(agents=agents, estimated_tokens=1000, hour=3))
        assert output.recommendations[0].type == "provider_switch"
        assert output.recommendations[0].priority == 1

    def test_budget_adjustment(self, model):
        output = model.predict_costs(CostPredictionInput(
            agents=[make_agent("a")], estimated_tokens=1000, hour=3, max_cost=0.5))
        assert any(r.type == "budget_adjustment" for r in output.recommendations)
        assert any(f.factor == "Budget Overrun Risk" for f in output.risk_assessment.risk_factors)

    def test_peak_hours_timing(self, model):
        output = model.predict_costs(CostPredictionInput(
            agents=[make_agent("a")], estimated_tokens=1000, hour=10))
        assert any(r.type == "timing_optimization" for r in output.recommendations)


class TestBudget:
    def test_anonymous_is_on_track(self, model):
        output = model.predict_costs(CostPredictionInput(agents=[make_agent("a")], estimated_tokens=10, hour=3))
        assert output.budget_analysis.budget_status == "on_track"

    def test_critical_utilization(self, model):
        """Spend above 90% of the budget is critical"""
        model.learn_from_actual_cost(HistoricalCostRecord("acme", "m1", actual_cost=95.0,
                                                          predicted_cost=90.0, user_id="u1"))
        output = model.predict_costs(CostPredictionInput(
            agents=[make_agent("a")], estimated_tokens=10, hour=3, user_id="u1", monthly_budget=100.0))
        analysis = output.budget_analysis
        assert analysis.budget_status == "critical"
        assert analysis.remaining_budget == pytest.approx(5.0)
        assert analysis.alerts[0].type == "warning"


class TestLearning:
    """learn_from_actual_cost feedback loop"""

    def test_volume_discount_after_spend(self, model):
        """Trailing spend above $100 on a model earns 5%"""
        base = model.predict_costs(CostPredictionInput(
            agents=[make_agent("a")], estimated_tokens=1000, hour=3, user_id="u1"))
        model.learn_from_actual_cost(HistoricalCostRecord("acme", "m1", actual_cost=150.0,
                                                          predicted_cost=140.0, user_id="u1"))
        discounted = model.predict_costs(CostPredictionInput(
            agents=[make_agent("a")], estimated_tokens=1000, hour=3, user_id="u1"))
        assert discounted.predictions[0].cost_breakdown.volume_discount == 0.05
        assert discounted.predictions[0].predicted_cost == pytest.approx(
            base.predictions[0].predicted_cost * 0.95)

    def test_accuracy_recomputed_in_background(self, model):
        for _ in range(2):
            model.learn_from_actual_cost(HistoricalCostRecord("acme", "m1", actual_cost=1.0,
                                                              predicted_cost=0.9))
        model.wait_for_background(timeout=5)
        assert model.accuracy == pytest.approx(0.9)
        assert model.get_model_metrics()["predictions"] == 2

    def test_history_is_capped(self):
        m = CostPredictionModel(config=RoutingConfig(cost_history_cap=10, cost_history_trim=5))
        for _ in range(11):
            m.learn_from_actual_cost(HistoricalCostRecord("acme", "m1", 1.0, 1.0))
        assert m.history_size() == 5
        m.shutdown()

    def test_zero_cost_record_kept(self, model):
        model.learn_from_actual_cost(HistoricalCostRecord("acme", "m1", actual_cost=0.0,
                                                          predicted_cost=0.0))
        assert model.history_size() == 1

    def test_malformed_record_dropped(self, model):
        """A record without cost fields is logged and dropped, never raised"""
        model.learn_from_actual_cost(object())
        model.learn_from_actual_cost(None)
        assert model.history_size() == 0

    def test_concurrent_learners_keep_background_work(self):
        """Every scheduled recompute is visible to wait_for_background"""
        m = CostPredictionModel(config=RoutingConfig(accuracy_recompute_every=1))

        def learn():
            for _ in range(50):
                m.learn_from_actual_cost(HistoricalCostRecord("acme", "m1", actual_cost=1.0,
                                                              predicted_cost=0.9))

        threads = [threading.Thread(target=learn) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        m.wait_for_background(timeout=5)
        assert m.history_size() == 200
        assert m.accuracy == pytest.approx(0.9)
        m.shutdown()


class TestPricingFeed:
    def test_default_curve_shape(self):
        curve = default_demand_curve()
        assert len(curve) == 24
        assert curve[12] == 0.7
        assert curve[20] == 0.5
        assert curve[3] == 0.3

    def test_curve_length_validated(self):
        with pytest.raises(ValueError):
            PricingFeed().update_demand_curve("acme", [0.5] * 12)

    def test_update_prices(self, model):
        model.pricing.update_prices("acme", "m1", 0.002, 0.002, compute_rate=0.0)
        output = model.predict_costs(CostPredictionInput(
            agents=[make_agent("a")], estimated_tokens=1000, hour=3))
        assert output.predictions[0].predicted_cost == pytest.approx(2.0)
