"""
Cost Prediction Model for the routing engine.

For every candidate agent predicts a cost distribution for one request:

    base    = input_tokens * input_price + output_tokens * output_price
    compute = compute_rate * tokens * (1 + complexity / 100)
    final   = (base + compute) * priority_multiplier
              * (1 + demand_surcharge) * (1 - volume_discount)

plus a min/expected/max range, named cost factors, recommendations, a
budget analysis and a risk assessment.

Prices, compute rates and hourly demand curves come from a PricingFeed that
can be refreshed independently of requests. Given the same input and an
unchanged feed and cost history, predict_costs() is a pure function.

learn_from_actual_cost() feeds actual costs back; accuracy is recomputed on
a background worker every N records and the call itself never raises.
"""

import logging
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from routing_config import RoutingConfig, get_routing_config
from routing_models import AgentSnapshot, Priority

logger = logging.getLogger("routing.cost_model")

MODEL_VERSION = "v2.1"

# Per-token USD prices keyed by "provider:model"
DEFAULT_TOKEN_PRICES: Dict[str, Dict[str, float]] = {
    "openai:gpt-4": {"input": 0.00003, "output": 0.00006},
    "openai:gpt-3.5-turbo": {"input": 0.0000015, "output": 0.000002},
    "claude:claude-3-opus": {"input": 0.000015, "output": 0.000075},
    "claude:claude-3-sonnet": {"input": 0.000003, "output": 0.000015},
    "claude:claude-3-haiku": {"input": 0.00000025, "output": 0.00000125},
    "gemini:gemini-pro": {"input": 0.0000005, "output": 0.0000015},
    "ollama:llama2-7b": {"input": 0.0000001, "output": 0.0000001},
}

# Per-token compute cost keyed by model name
DEFAULT_COMPUTE_RATES: Dict[str, float] = {
    "gpt-4": 0.0001,
    "gpt-3.5-turbo": 0.00003,
    "claude-3-opus": 0.00008,
    "claude-3-sonnet": 0.00004,
    "claude-3-haiku": 0.00001,
    "gemini-pro": 0.00005,
    "llama2-7b": 0.00001,
}
DEFAULT_COMPUTE_RATE = 0.00005

PRIORITY_MULTIPLIERS: Dict[Priority, float] = {
    Priority.LOW: 0.8,
    Priority.NORMAL: 1.0,
    Priority.HIGH: 1.3,
    Priority.CRITICAL: 1.8,
}

PROVIDER_UNCERTAINTY: Dict[str, float] = {"openai": 0.15, "claude": 0.20, "gemini": 0.25, "ollama": 0.10}
DEFAULT_UNCERTAINTY = 0.20

PROVIDER_RELIABILITY: Dict[str, float] = {"openai": 0.95, "claude": 0.92, "gemini": 0.88, "ollama": 0.85}
DEFAULT_RELIABILITY = 0.80

# (trailing 30-day spend strictly above, discount)
VOLUME_TIERS: List[Tuple[float, float]] = [(1000.0, 0.15), (500.0, 0.10), (100.0, 0.05)]

PREMIUM_MODELS = {"gpt-4"}
OPEN_SOURCE_PROVIDERS = {"ollama"}

SEVERITY_SCORE = {"low": 1, "medium": 2, "high": 3}


def default_demand_curve() -> List[float]:
    """24-point hourly load curve: business hours peak, evening shoulder."""
    curve = []
    for hour in range(24):
        load = 0.3
        if 9 <= hour <= 17:
            load += 0.4
        if 19 <= hour <= 22:
            load += 0.2
        curve.append(round(max(0.1, min(0.9, load)), 2))
    return curve


# ═══════════════════════════════════════════════════════════════════════════
# DATA TYPES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class CostPredictionInput:
    agents: List[AgentSnapshot]
    prompt: str = ""
    estimated_tokens: Optional[int] = None
    priority: Priority = Priority.NORMAL
    complexity: Optional[float] = None  # 0-100
    user_id: Optional[str] = None
    max_cost: Optional[float] = None
    monthly_budget: Optional[float] = None
    hour: Optional[int] = None  # defaults to the current local hour

    def __post_init__(self):
        self.priority = Priority.parse(self.priority)


@dataclass
class CostBreakdown:
    input_tokens: int
    output_tokens: int
    base_token_cost: float
    compute_cost: float
    priority_multiplier: float
    demand_surcharge: float
    volume_discount: float
    final_cost: float


@dataclass
class CostRange:
    minimum: float
    expected: float
    maximum: float
    confidence: float


@dataclass
class CostFactor:
    name: str
    impact: float  # -1..1, negative lowers cost
    confidence: float
    description: str


@dataclass
class CostPrediction:
    agent_id: str
    provider: str
    model: str
    predicted_cost: float
    cost_breakdown: CostBreakdown
    cost_range: CostRange
    factors: List[CostFactor] = field(default_factory=list)


@dataclass
class CostRecommendation:
    type: str  # provider_switch | timing_optimization | request_optimization | budget_adjustment
    title: str
    description: str
    potential_savings: float
    implementation_effort: str
    tradeoffs: List[str]
    priority: int


@dataclass
class BudgetAlert:
    type: str  # info | warning | critical
    message: str
    threshold: float
    current_value: float
    recommended_action: str


@dataclass
class BudgetAnalysis:
    projected_spend: float
    burn_rate: float
    budget_utilization: float
    budget_status: str  # under_budget | on_track | over_budget | critical
    current_budget: Optional[float] = None
    remaining_budget: Optional[float] = None
    days_remaining: Optional[int] = None
    alerts: List[BudgetAlert] = field(default_factory=list)


@dataclass
class RiskFactor:
    factor: str
    severity: str  # low | medium | high
    probability: float
    impact: str
    mitigation: str


@dataclass
class RiskAssessment:
    overall_risk: str  # low | medium | high | critical
    risk_factors: List[RiskFactor]
    probability_distribution: Dict[str, float]


@dataclass
class CostPredictionOutput:
    predictions: List[CostPrediction]
    recommendations: List[CostRecommendation]
    budget_analysis: BudgetAnalysis
    risk_assessment: RiskAssessment
    confidence: float
    model_version: str = MODEL_VERSION

    def for_agent(self, agent_id: str) -> Optional[CostPrediction]:
        for prediction in self.predictions:
            if prediction.agent_id == agent_id:
                return prediction
        return None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HistoricalCostRecord:
    provider: str
    model: str
    actual_cost: float
    predicted_cost: float
    user_id: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    timestamp: datetime = field(default_factory=datetime.now)
    request_meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


# ═══════════════════════════════════════════════════════════════════════════
# PRICING FEED
# ═══════════════════════════════════════════════════════════════════════════

def _key(provider: str, model: str) -> str:
    return f"{provider.lower()}:{model}"


class PricingFeed:
    """Token prices, compute rates and hourly demand curves.

    Refreshable at any time; readers always see a consistent entry.
    """

    def __init__(self, token_prices: Optional[Dict[str, Dict[str, float]]] = None,
                 compute_rates: Optional[Dict[str, float]] = None,
                 demand_curves: Optional[Dict[str, List[float]]] = None):
        self._lock = threading.Lock()
        self._prices = dict(token_prices if token_prices is not None else DEFAULT_TOKEN_PRICES)
        self._compute = dict(compute_rates if compute_rates is not None else DEFAULT_COMPUTE_RATES)
        if demand_curves is None:
            demand_curves = {k: default_demand_curve() for k in
                             ("openai:gpt-4", "openai:gpt-3.5-turbo", "claude:claude-3-opus", "gemini:gemini-pro")}
        self._demand: Dict[str, List[float]] = {}
        for key, curve in demand_curves.items():
            self._demand[key] = self._validate_curve(key, curve)
        self.last_updated = datetime.now()

    @staticmethod
    def _validate_curve(key: str, curve: List[float]) -> List[float]:
        if len(curve) != 24:
            raise ValueError(f"Demand curve for {key} needs 24 hourly points, got {len(curve)}")
        return [float(v) for v in curve]

    def token_prices(self, provider: str, model: str) -> Optional[Dict[str, float]]:
        with self._lock:
            prices = self._prices.get(_key(provider, model))
            return dict(prices) if prices else None

    def compute_rate(self, model: str) -> float:
        with self._lock:
            return self._compute.get(model, DEFAULT_COMPUTE_RATE)

    def demand_load(self, provider: str, model: str, hour: int) -> Optional[float]:
        """Load at an hour from the model's curve, else the provider's, else None."""
        with self._lock:
            curve = self._demand.get(_key(provider, model)) or self._demand.get(provider.lower())
            if curve is None:
                return None
            return curve[hour % 24]

    def update_prices(self, provider: str, model: str, input_price: float, output_price: float,
                      compute_rate: Optional[float] = None) -> None:
        with self._lock:
            self._prices[_key(provider, model)] = {"input": input_price, "output": output_price}
            if compute_rate is not None:
                self._compute[model] = compute_rate
            self.last_updated = datetime.now()
        logger.info(f"Pricing updated for {_key(provider, model)}: in={input_price} out={output_price}")

    def update_demand_curve(self, key: str, curve: List[float]) -> None:
        """Replace the curve for "provider:model" or a bare provider."""
        validated = self._validate_curve(key, curve)
        with self._lock:
            self._demand[key] = validated
            self.last_updated = datetime.now()


# ═══════════════════════════════════════════════════════════════════════════
# COST PREDICTION MODEL
# ═══════════════════════════════════════════════════════════════════════════

class CostPredictionModel:
    """Predicts per-agent request cost and learns from actual costs"""

    def __init__(self, pricing: Optional[PricingFeed] = None,
                 config: Optional[RoutingConfig] = None):
        self.pricing = pricing or PricingFeed()
        self.config = config or get_routing_config()
        self._history: List[HistoricalCostRecord] = []
        self._history_lock = threading.Lock()
        self._records_seen = 0
        self.accuracy = 0.8
        self.last_model_update = datetime.now()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cost-model")
        self._pending: List[Future] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def predict_costs(self, data: CostPredictionInput) -> CostPredictionOutput:
        hour = data.hour if data.hour is not None else datetime.now().hour
        tokens = data.estimated_tokens or self.estimate_tokens(data.prompt, data.complexity)

        predictions = [self._predict_agent_cost(agent, tokens, data, hour) for agent in data.agents]
        predictions.sort(key=lambda p: p.predicted_cost)

        output = CostPredictionOutput(
            predictions=predictions,
            recommendations=self._recommendations(predictions, data, tokens, hour),
            budget_analysis=self._budget_analysis(predictions, data),
            risk_assessment=self._risk_assessment(predictions, data),
            confidence=self._overall_confidence(predictions),
        )
        if predictions:
            logger.info(
                f"Cost prediction for user={data.user_id}: {len(predictions)} agents, "
                f"best={predictions[0].agent_id} ${predictions[0].predicted_cost:.6f}"
            )
        return output

    @staticmethod
    def estimate_tokens(prompt: str, complexity: Optional[float] = None) -> int:
        """Prompt tokens scaled by complexity plus a 1.5x response."""
        words = len(prompt.split())
        if words == 0:
            return 1500
        base = math.ceil(words * 1.3)
        if complexity:
            base = math.ceil(base * (1 + complexity / 100 * 0.5))
        return base + math.ceil(base * 1.5)

    def learn_from_actual_cost(self, record: HistoricalCostRecord) -> None:
        """Append an actual-cost record. Never raises."""
        try:
            error = (abs(record.predicted_cost - record.actual_cost) / record.actual_cost
                     if record.actual_cost else None)
            with self._history_lock:
                self._history.append(record)
                if len(self._history) > self.config.cost_history_cap:
                    del self._history[:len(self._history) - self.config.cost_history_trim]
                self._records_seen += 1
                if self._records_seen % self.config.accuracy_recompute_every == 0:
                    self._pending = [f for f in self._pending if not f.done()]
                    self._pending.append(self._executor.submit(self._recompute_accuracy))

            logger.info(
                f"Cost learning record: user={record.user_id} {record.provider}:{record.model} "
                f"actual=${record.actual_cost:.6f} predicted=${record.predicted_cost:.6f} "
                f"rel_error={error if error is None else round(error, 4)}"
            )
        except Exception as e:
            logger.error(f"Failed to record actual cost for {getattr(record, 'provider', '?')}: {e}")

    def wait_for_background(self, timeout: Optional[float] = None) -> None:
        """Block until scheduled accuracy recomputes finish."""
        with self._history_lock:
            pending = list(self._pending)
        for future in pending:
            future.result(timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def history_size(self) -> int:
        with self._history_lock:
            return len(self._history)

    def get_model_metrics(self) -> Dict[str, Any]:
        with self._history_lock:
            recent = list(self._history[-1000:])
            total = len(self._history)

        errors: Dict[str, List[float]] = {}
        for rec in recent:
            if rec.actual_cost > 0 and rec.predicted_cost > 0:
                errors.setdefault(_key(rec.provider, rec.model), []).append(
                    abs(rec.actual_cost - rec.predicted_cost) / rec.actual_cost)

        all_errors = [e for errs in errors.values() for e in errs]
        return {
            "accuracy": 1 - sum(all_errors) / len(all_errors) if all_errors else 0.8,
            "model_accuracy": self.accuracy,
            "predictions": total,
            "last_update": self.last_model_update.isoformat(),
            "provider_accuracy": {k: 1 - sum(v) / len(v) for k, v in errors.items()},
            "model_version": MODEL_VERSION,
        }

    # ------------------------------------------------------------------
    # Per-agent prediction
    # ------------------------------------------------------------------

    def _predict_agent_cost(self, agent: AgentSnapshot, tokens: int,
                            data: CostPredictionInput, hour: int) -> CostPrediction:
        try:
            prices = self.pricing.token_prices(agent.provider, agent.model)
            if prices is None:
                prices = {"input": agent.cost_per_token, "output": agent.cost_per_token}

            input_tokens = math.ceil(tokens * 0.4)
            output_tokens = tokens - input_tokens
            base = input_tokens * prices["input"] + output_tokens * prices["output"]

            complexity_multiplier = 1 + (data.complexity or 0) / 100
            compute = self.pricing.compute_rate(agent.model) * tokens * complexity_multiplier

            priority_multiplier = PRIORITY_MULTIPLIERS[data.priority]
            surcharge = self._demand_surcharge(agent, hour)
            discount = self._volume_discount(data.user_id, agent.provider, agent.model)

            final = (base + compute) * priority_multiplier * (1 + surcharge) * (1 - discount)

            return CostPrediction(
                agent_id=agent.id,
                provider=agent.provider,
                model=agent.model,
                predicted_cost=final,
                cost_breakdown=CostBreakdown(
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    base_token_cost=base,
                    compute_cost=compute,
                    priority_multiplier=priority_multiplier,
                    demand_surcharge=surcharge,
                    volume_discount=discount,
                    final_cost=final,
                ),
                cost_range=self._cost_range(final, agent.provider, data),
                factors=self._cost_factors(agent, data, tokens, hour, discount),
            )
        except Exception as e:
            logger.error(f"Cost prediction failed for {agent.id} ({agent.provider}:{agent.model}): {e}")
            return self._default_prediction(agent, tokens)

    @staticmethod
    def _default_prediction(agent: AgentSnapshot, tokens: int) -> CostPrediction:
        cost = tokens * 0.001
        input_tokens = math.ceil(tokens * 0.4)
        return CostPrediction(
            agent_id=agent.id,
            provider=agent.provider,
            model=agent.model,
            predicted_cost=cost,
            cost_breakdown=CostBreakdown(input_tokens, tokens - input_tokens, cost, 0.0, 1.0, 0.0, 0.0, cost),
            cost_range=CostRange(tokens * 0.0008, cost, tokens * 0.0012, 0.6),
        )

    def _demand_surcharge(self, agent: AgentSnapshot, hour: int) -> float:
        try:
            load = self.pricing.demand_load(agent.provider, agent.model, hour)
            if load is None:
                return 0.0
            return min(0.5, load * 0.3)
        except Exception as e:
            logger.error(f"Demand surcharge lookup failed for {agent.id}: {e}")
            return 0.0

    def _trailing_spend(self, user_id: str, provider: Optional[str] = None,
                        model: Optional[str] = None, days: int = 30) -> float:
        cutoff = datetime.now() - timedelta(days=days)
        with self._history_lock:
            return sum(
                r.actual_cost for r in self._history
                if r.user_id == user_id and r.timestamp > cutoff
                and (provider is None or r.provider == provider)
                and (model is None or r.model == model)
            )

    def _volume_discount(self, user_id: Optional[str], provider: str, model: str) -> float:
        if not user_id:
            return 0.0
        try:
            spend = self._trailing_spend(user_id, provider, model)
        except Exception as e:
            logger.error(f"Volume discount lookup failed for user={user_id}: {e}")
            return 0.0
        for threshold, discount in VOLUME_TIERS:
            if spend > threshold:
                return discount
        return 0.0

    @staticmethod
    def _cost_range(expected: float, provider: str, data: CostPredictionInput) -> CostRange:
        uncertainty = PROVIDER_UNCERTAINTY.get(provider, DEFAULT_UNCERTAINTY)
        if data.complexity is not None and data.complexity > 80:
            uncertainty *= 1.3
        if data.priority == Priority.CRITICAL:
            uncertainty *= 0.8
        return CostRange(
            minimum=expected * (1 - uncertainty),
            expected=expected,
            maximum=expected * (1 + uncertainty * 1.5),
            confidence=max(0.6, 1 - uncertainty),
        )

    @staticmethod
    def _cost_factors(agent: AgentSnapshot, data: CostPredictionInput, tokens: int,
                      hour: int, volume_discount: float) -> List[CostFactor]:
        factors = []
        if tokens > 5000:
            factors.append(CostFactor("High Token Count", 0.3, 0.9,
                                      "Large request increases cost significantly"))
        if data.complexity is not None and data.complexity > 70:
            factors.append(CostFactor("High Complexity", 0.2, 0.8,
                                      "Complex requests require more compute resources"))
        if data.priority == Priority.CRITICAL:
            factors.append(CostFactor("Critical Priority", 0.8, 0.95,
                                      "Critical priority incurs premium pricing"))
        elif data.priority == Priority.LOW:
            factors.append(CostFactor("Low Priority", -0.2, 0.85,
                                      "Low priority requests get discounted rates"))
        if 9 <= hour <= 17:
            factors.append(CostFactor("Peak Hours", 0.15, 0.7,
                                      "Business hours have higher demand and pricing"))
        elif 0 <= hour <= 6:
            factors.append(CostFactor("Off-Peak Hours", -0.1, 0.6, "Night hours offer lower rates"))
        if agent.model in PREMIUM_MODELS:
            factors.append(CostFactor("Premium Model", 0.5, 0.9,
                                      f"{agent.model} is a premium model with higher costs"))
        if agent.provider in OPEN_SOURCE_PROVIDERS:
            factors.append(CostFactor("Open Source Model", -0.6, 0.85,
                                      "Open source models offer significant cost savings"))
        if volume_discount > 0:
            factors.append(CostFactor("Volume Discount", -volume_discount, 0.95,
                                      f"{round(volume_discount * 100)}% discount for high volume usage"))
        return factors

    # ------------------------------------------------------------------
    # Recommendations, budget, risk
    # ------------------------------------------------------------------

    def _recommendations(self, predictions: List[CostPrediction], data: CostPredictionInput,
                         tokens: int, hour: int) -> List[CostRecommendation]:
        recs: List[CostRecommendation] = []
        if not predictions:
            return recs
        try:
            cheapest, priciest = predictions[0], predictions[-1]

            savings = priciest.predicted_cost - cheapest.predicted_cost
            if len(predictions) > 1 and savings > 0.01:
                recs.append(CostRecommendation(
                    type="provider_switch",
                    title=f"Switch to {cheapest.provider} {cheapest.model}",
                    description=(f"Save up to ${savings:.4f} per request by using {cheapest.provider} "
                                 f"instead of {priciest.provider}"),
                    potential_savings=savings,
                    implementation_effort="low",
                    tradeoffs=["May have different response characteristics", "Ensure capability compatibility"],
                    priority=1 if savings > 0.1 else 2,
                ))

            if data.priority in (Priority.HIGH, Priority.CRITICAL):
                agent = next(a for a in data.agents if a.id == cheapest.agent_id)
                relaxed = CostPredictionInput(
                    agents=[agent], prompt=data.prompt, estimated_tokens=tokens,
                    priority=Priority.NORMAL, complexity=data.complexity, user_id=data.user_id,
                )
                normal = self._predict_agent_cost(agent, tokens, relaxed, hour)
                savings = cheapest.predicted_cost - normal.predicted_cost
                if savings > 0.005:
                    recs.append(CostRecommendation(
                        type="request_optimization",
                        title="Consider Normal Priority",
                        description=(f"Reducing priority from {data.priority.value} to normal "
                                     f"could save ${savings:.4f}"),
                        potential_savings=savings,
                        implementation_effort="low",
                        tradeoffs=["Longer response time", "Lower queue priority"],
                        priority=3,
                    ))

            if 9 <= hour <= 17:
                recs.append(CostRecommendation(
                    type="timing_optimization",
                    title="Schedule for Off-Peak Hours",
                    description="Non-urgent requests scheduled for night hours (11PM-6AM) can save 10-15%",
                    potential_savings=cheapest.predicted_cost * 0.125,
                    implementation_effort="medium",
                    tradeoffs=["Delayed results", "Requires request scheduling"],
                    priority=4,
                ))

            if data.max_cost is not None and cheapest.predicted_cost > data.max_cost:
                recs.append(CostRecommendation(
                    type="budget_adjustment",
                    title="Increase Budget or Simplify Request",
                    description=(f"Current request exceeds budget by "
                                 f"${cheapest.predicted_cost - data.max_cost:.4f}"),
                    potential_savings=0.0,
                    implementation_effort="high",
                    tradeoffs=["Higher costs", "Reduced request scope"],
                    priority=1,
                ))

            if data.user_id:
                spend = self._trailing_spend(data.user_id)
                for threshold, discount in reversed(VOLUME_TIERS):
                    if threshold - 20 < spend <= threshold:
                        recs.append(CostRecommendation(
                            type="request_optimization",
                            title="Volume Discount Opportunity",
                            description=(f"Spending ${threshold - spend:.2f} more this month unlocks "
                                         f"{round(discount * 100)}% volume discount"),
                            potential_savings=spend * discount,
                            implementation_effort="low",
                            tradeoffs=["Higher upfront cost", "Requires additional usage"],
                            priority=3,
                        ))
                        break
        except Exception as e:
            logger.error(f"Failed to build cost recommendations: {e}")

        recs.sort(key=lambda r: (r.priority, -r.potential_savings))
        return recs

    def _budget_analysis(self, predictions: List[CostPrediction],
                         data: CostPredictionInput) -> BudgetAnalysis:
        cheapest = predictions[0].predicted_cost if predictions else 0.0
        if not data.user_id:
            return BudgetAnalysis(projected_spend=cheapest, burn_rate=0.0,
                                  budget_utilization=0.0, budget_status="on_track")
        try:
            budget = data.monthly_budget if data.monthly_budget is not None else self.config.monthly_budget
            spend = self._trailing_spend(data.user_id)
            daily = spend / 30
            projected = daily * 30
            remaining = budget - spend
            utilization = spend / budget if budget > 0 else 1.0

            if utilization > 0.9:
                status = "critical"
            elif utilization > 0.8 or projected > budget:
                status = "over_budget"
            else:
                status = "on_track"

            alerts = []
            if utilization > 0.8:
                alerts.append(BudgetAlert(
                    type="warning",
                    message=f"You've used {round(utilization * 100)}% of your monthly budget",
                    threshold=0.8,
                    current_value=utilization,
                    recommended_action="Consider switching to lower-cost providers",
                ))
            if spend > 0 and remaining < daily * 7:
                alerts.append(BudgetAlert(
                    type="critical",
                    message="Budget may be exhausted within a week at current usage rate",
                    threshold=daily * 7,
                    current_value=remaining,
                    recommended_action="Reduce usage or increase budget",
                ))

            return BudgetAnalysis(
                projected_spend=projected,
                burn_rate=daily,
                budget_utilization=utilization,
                budget_status=status,
                current_budget=budget,
                remaining_budget=remaining,
                days_remaining=max(0, 30 - datetime.now().day),
                alerts=alerts,
            )
        except Exception as e:
            logger.error(f"Budget analysis failed for user={data.user_id}: {e}")
            return BudgetAnalysis(projected_spend=0.0, burn_rate=0.0,
                                  budget_utilization=0.0, budget_status="on_track")

    def _risk_assessment(self, predictions: List[CostPrediction],
                         data: CostPredictionInput) -> RiskAssessment:
        if not predictions:
            return RiskAssessment("low", [], {"p10": 0.0, "p50": 0.0, "p90": 0.0, "p99": 0.0})
        try:
            factors: List[RiskFactor] = []
            costs = [p.predicted_cost for p in predictions]
            avg = sum(costs) / len(costs)
            variance = sum((c - avg) ** 2 for c in costs) / len(costs)

            if variance > avg * 0.5:
                factors.append(RiskFactor("High Cost Variance", "medium", 0.7,
                                          "Actual costs may vary significantly from predictions",
                                          "Set stricter budget limits and monitor usage closely"))
            if data.max_cost is not None and predictions[0].predicted_cost > data.max_cost * 0.9:
                factors.append(RiskFactor("Budget Overrun Risk", "high", 0.8,
                                          "Request may exceed allocated budget",
                                          "Consider lower-cost providers or reduce request scope"))
            if data.complexity is not None and data.complexity > 80:
                factors.append(RiskFactor("High Complexity Processing", "medium", 0.6,
                                          "Complex requests may require multiple attempts or longer processing",
                                          "Allow for additional budget buffer and extended timeouts"))

            for p in predictions:
                reliability = PROVIDER_RELIABILITY.get(p.provider, DEFAULT_RELIABILITY)
                if reliability < 0.9:
                    factors.append(RiskFactor(f"{p.provider} Reliability", "low", 1 - reliability,
                                              "Provider may experience downtime or degraded performance",
                                              "Have fallback providers configured"))
                if p.cost_range.confidence < 0.7:
                    factors.append(RiskFactor(f"{p.provider} Cost Uncertainty", "medium",
                                              1 - p.cost_range.confidence,
                                              "Actual costs may differ significantly from predictions",
                                              "Monitor actual costs and adjust models"))

            avg_severity = (sum(SEVERITY_SCORE[f.severity] for f in factors) / len(factors)
                            if factors else 1)
            if avg_severity > 2.5:
                overall = "critical"
            elif avg_severity > 2:
                overall = "high"
            elif avg_severity > 1.5:
                overall = "medium"
            else:
                overall = "low"

            p90 = max(p.cost_range.maximum for p in predictions)
            return RiskAssessment(
                overall_risk=overall,
                risk_factors=factors,
                probability_distribution={
                    "p10": predictions[0].cost_range.minimum,
                    "p50": avg,
                    "p90": p90,
                    "p99": p90 * 1.2,
                },
            )
        except Exception as e:
            logger.error(f"Risk assessment failed: {e}")
            return RiskAssessment("medium", [], {"p10": 0.0, "p50": 0.0, "p90": 0.0, "p99": 0.0})

    @staticmethod
    def _overall_confidence(predictions: List[CostPrediction]) -> float:
        if not predictions:
            return 0.5
        avg = sum(p.cost_range.confidence for p in predictions) / len(predictions)
        return max(0.3, min(1.0, avg))

    # ------------------------------------------------------------------
    # Background accuracy recompute
    # ------------------------------------------------------------------

    def _recompute_accuracy(self) -> None:
        try:
            with self._history_lock:
                recent = list(self._history[-self.config.accuracy_window:])
            errors = [abs(r.actual_cost - r.predicted_cost) / r.actual_cost
                      for r in recent if r.actual_cost > 0 and r.predicted_cost > 0]
            self.accuracy = 1 - sum(errors) / len(errors) if errors else 0.8
            self.last_model_update = datetime.now()
            logger.info(f"Cost model accuracy recomputed: {round(self.accuracy * 100)}% "
                        f"over {len(errors)} records")
        except Exception as e:
            logger.error(f"Cost model accuracy recompute failed: {e}")
