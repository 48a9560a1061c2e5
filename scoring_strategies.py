"""
Scoring strategies - turn eligible agents into a ranked candidate list.

Two implementations, chosen per request by the experiment framework:

    StandardWeightedStrategy   capability/cost/load weighted sum x priority multiplier
    MLAssistedStrategy         ten-feature performance prediction blended with the
                               standard score: ml * performance * confidence + dynamic * standard

The ML strategy learns online from reported outcomes (per-agent performance
averages, per-user preferences and correlation-smoothed feature weights). It
is lightweight statistics, not a trained model.
"""

import logging
import math
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from capability_matcher import CapabilityMatcher, canonical
from cost_optimizer import CostOptimizer
from load_balancer import LoadBalancer
from routing_config import RoutingConfig, get_routing_config
from routing_models import AgentSnapshot, Priority, RequestContext, RoutingRequest, ScoredCandidate

logger = logging.getLogger("routing.strategies")

STANDARD = "standard"
ML_OPTIMIZED = "ml-optimized"

NEUTRAL_SCORE = 50.0

DEFAULT_FEATURE_WEIGHTS = {
    "request_complexity": 0.15,
    "historical_performance": 0.18,
    "provider_reliability": 0.12,
    "cost_efficiency": 0.14,
    "response_time_requirement": 0.10,
    "user_preference": 0.08,
    "context_similarity": 0.09,
    "load_pattern": 0.06,
    "time_of_day": 0.04,
    "seasonal_trend": 0.04,
}

CAPABILITY_COMPLEXITY = {
    "text-generation": 0.1,
    "code-generation": 0.3,
    "reasoning": 0.4,
    "math": 0.4,
    "analysis": 0.3,
    "creative": 0.2,
    "translation": 0.2,
    "summarization": 0.1,
}

PRIORITY_COMPLEXITY = {Priority.LOW: -0.1, Priority.NORMAL: 0.0, Priority.HIGH: 0.1, Priority.CRITICAL: 0.2}
RESPONSE_TIME_REQUIREMENT = {Priority.LOW: 0.2, Priority.NORMAL: 0.5, Priority.HIGH: 0.8, Priority.CRITICAL: 1.0}
PROVIDER_RELIABILITY = {"openai": 0.95, "claude": 0.92, "anthropic": 0.92, "gemini": 0.88, "ollama": 0.85}

DEFAULT_HISTORICAL_PERFORMANCE = 0.7
DEFAULT_USER_PREFERENCE = 0.6
MIN_SAMPLES_FOR_CONFIDENCE = 50
MIN_SAMPLES_FOR_WEIGHTS = 100
SIMILARITY_THRESHOLD = 0.8
CORRELATION_WINDOW = 1000
RECENT_PREDICTIONS = 1000


@dataclass
class ScoringInput:
    """Everything a strategy needs about the request being routed."""
    request: RoutingRequest
    context: RequestContext
    estimated_tokens: int
    required_capabilities: FrozenSet[str]
    predicted_costs: Dict[str, float] = field(default_factory=dict)
    variant_config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TrainingOutcome:
    actual_performance: float  # 0-100
    actual_cost: float = 0.0
    actual_response_time: float = 0.0  # ms
    user_satisfaction: Optional[float] = None  # 0-1
    success: bool = True
    request_id: Optional[str] = None
    user_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrainingOutcome":
        def pick(*keys, default=None):
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return default

        return cls(
            actual_performance=float(pick("actual_performance", "actualPerformance", "quality", default=0.0)),
            actual_cost=float(pick("actual_cost", "actualCost", "cost", default=0.0)),
            actual_response_time=float(pick("actual_response_time", "actualResponseTime",
                                            "response_time", default=0.0)),
            user_satisfaction=pick("user_satisfaction", "userSatisfaction"),
            success=bool(pick("success", default=True)),
            request_id=pick("request_id", "requestId"),
            user_id=pick("user_id", "userId"),
        )


@dataclass
class TrainingSample:
    agent_id: str
    features: Dict[str, float]
    outcome: TrainingOutcome
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class MLPrediction:
    agent_id: str
    features: Dict[str, float]
    predicted_performance: float  # 0-100
    confidence: float  # 0-1
    feature_importance: Dict[str, float] = field(default_factory=dict)


def default_features() -> Dict[str, float]:
    return {
        "request_complexity": 0.5,
        "historical_performance": DEFAULT_HISTORICAL_PERFORMANCE,
        "provider_reliability": 0.8,
        "cost_efficiency": 0.5,
        "response_time_requirement": 0.5,
        "user_preference": DEFAULT_USER_PREFERENCE,
        "context_similarity": 0.5,
        "load_pattern": 0.5,
        "time_of_day": 0.9,
        "seasonal_trend": 0.9,
    }


def pearson(x: Sequence[float], y: Sequence[float]) -> float:
    n = len(x)
    if n == 0 or n != len(y):
        return 0.0
    sum_x, sum_y = sum(x), sum(y)
    sum_xy = sum(a * b for a, b in zip(x, y))
    sum_xx = sum(a * a for a in x)
    sum_yy = sum(b * b for b in y)
    denominator = math.sqrt(max(0.0, (n * sum_xx - sum_x ** 2) * (n * sum_yy - sum_y ** 2)))
    return 0.0 if denominator == 0 else (n * sum_xy - sum_x * sum_y) / denominator


def time_of_day_factor(hour: int) -> float:
    if 9 <= hour <= 17:
        return 0.8
    if 18 <= hour <= 23:
        return 0.9
    return 1.0


def seasonal_factor(month: int) -> float:
    """month is 1-12"""
    if 3 <= month <= 5:
        return 0.9
    if 6 <= month <= 8:
        return 0.8
    if 9 <= month <= 11:
        return 1.0
    return 0.9


class ScoringStrategy:
    """score(candidates, scoring_input) -> candidates ranked best-first"""

    name = "base"

    def score(self, candidates: Sequence[AgentSnapshot], scoring_input: ScoringInput) -> List[ScoredCandidate]:
        raise NotImplementedError


# ═══════════════════════════════════════════════════════════════════════
# Standard weighted scoring
# ═══════════════════════════════════════════════════════════════════════

class StandardWeightedStrategy(ScoringStrategy):
    name = STANDARD

    def __init__(self, matcher: CapabilityMatcher, cost_optimizer: CostOptimizer,
                 load_balancer: LoadBalancer, config: Optional[RoutingConfig] = None):
        self.matcher = matcher
        self.cost_optimizer = cost_optimizer
        self.load_balancer = load_balancer
        self.config = config or get_routing_config()

    def weights(self, variant_config: Optional[Dict[str, Any]] = None) -> Tuple[float, float, float]:
        """(capability, cost, load) weights, overridable by an experiment variant."""
        overrides = (variant_config or {}).get("weight_adjustments") or {}
        return (
            float(overrides.get("capability", self.config.capability_weight)),
            float(overrides.get("cost", self.config.cost_weight)),
            float(overrides.get("load", self.config.load_weight)),
        )

    def multiplier(self, priority: Priority) -> float:
        return self.config.priority_multipliers.get(priority.value, 1.0)

    def score(self, candidates, scoring_input):
        if not candidates:
            return []
        request = scoring_input.request
        w_cap, w_cost, w_load = self.weights(scoring_input.variant_config)
        multiplier = self.multiplier(request.priority)

        scored = []
        # balanced order breaks ties between equal totals
        for agent, load_score in self.load_balancer.rank(candidates, request.priority):
            capability = self._capability_score(agent, scoring_input)
            cost = self.cost_optimizer.cost_score(agent, scoring_input.estimated_tokens,
                                                  request.max_cost, request.user_id)
            total = (capability * w_cap + cost * w_cost + load_score * w_load) * multiplier
            scored.append(ScoredCandidate(
                agent=agent,
                capability_score=round(capability, 2),
                cost_score=round(cost, 2),
                load_score=round(load_score, 2),
                total_score=round(total, 2),
                strategy=self.name,
            ))
        scored.sort(key=lambda c: c.total_score, reverse=True)
        return scored

    def _capability_score(self, agent: AgentSnapshot, scoring_input: ScoringInput) -> float:
        try:
            return self.matcher.score(agent, scoring_input.required_capabilities,
                                      scoring_input.request.preferred_capabilities,
                                      scoring_input.context).score
        except Exception as e:
            logger.error(f"Capability scoring failed for {agent.id}: {e}")
            return NEUTRAL_SCORE


# ═══════════════════════════════════════════════════════════════════════
# ML-assisted scoring
# ═══════════════════════════════════════════════════════════════════════

class MLAssistedStrategy(ScoringStrategy):
    """Feature-weighted performance prediction on top of the standard score"""

    name = ML_OPTIMIZED

    def __init__(self, standard: StandardWeightedStrategy, config: Optional[RoutingConfig] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.standard = standard
        self.config = config or get_routing_config()
        self.clock = clock
        self.weights: Dict[str, float] = dict(DEFAULT_FEATURE_WEIGHTS)
        self.accuracy = 0.0
        self.last_trained: Optional[datetime] = None
        self._training: List[TrainingSample] = []
        self._agent_performance: Dict[str, Tuple[float, int]] = {}  # agent -> (sum, count)
        self._user_preference: Dict[Tuple[str, str], Tuple[float, int]] = {}
        self._recent: "OrderedDict[Tuple[Optional[str], str], Dict[str, float]]" = OrderedDict()
        self._lock = threading.Lock()
        logger.info("ML routing strategy initialized")

    def score(self, candidates, scoring_input):
        dynamic = self.standard.score(candidates, scoring_input)
        if not dynamic:
            return dynamic
        try:
            predictions = {p.agent_id: p for p in self.predict(candidates, scoring_input)}
        except Exception as e:
            logger.error(f"ML prediction failed, using standard scores: {e}")
            return dynamic

        multiplier = self.standard.multiplier(scoring_input.request.priority)
        combined = []
        for candidate in dynamic:
            prediction = predictions.get(candidate.agent.id)
            if prediction is None:
                combined.append(candidate)
                continue
            normalized = min(100.0, candidate.total_score / multiplier)
            total = (prediction.predicted_performance * prediction.confidence * self.config.ml_weight
                     + normalized * self.config.dynamic_weight)
            combined.append(ScoredCandidate(
                agent=candidate.agent,
                capability_score=candidate.capability_score,
                cost_score=candidate.cost_score,
                load_score=candidate.load_score,
                total_score=round(total, 2),
                strategy=self.name,
                ml_confidence=round(prediction.confidence, 3),
                predicted_performance=round(prediction.predicted_performance, 2),
            ))
        combined.sort(key=lambda c: c.total_score, reverse=True)
        return combined

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict(self, candidates: Sequence[AgentSnapshot], scoring_input: ScoringInput) -> List[MLPrediction]:
        """Predictions ordered by performance x confidence."""
        with self._lock:
            weights = dict(self.weights)
        predictions = []
        for agent in candidates:
            features = self.extract_features(agent, scoring_input)
            predictions.append(self._predict(agent.id, features, weights))
            self._remember(scoring_input.request.request_id, agent.id, features)
        predictions.sort(key=lambda p: p.predicted_performance * p.confidence, reverse=True)
        return predictions

    def _predict(self, agent_id: str, features: Dict[str, float], weights: Dict[str, float]) -> MLPrediction:
        try:
            importance = {name: value * weights.get(name, 0.0) for name, value in features.items()}
            performance = max(0.0, min(100.0, sum(importance.values()) * 100))
            return MLPrediction(agent_id, features, performance,
                                self._confidence(features, weights), importance)
        except Exception as e:
            logger.error(f"ML prediction failed for {agent_id}: {e}")
            return MLPrediction(agent_id, features, NEUTRAL_SCORE, 0.5)

    def extract_features(self, agent: AgentSnapshot, scoring_input: ScoringInput) -> Dict[str, float]:
        try:
            request, context = scoring_input.request, scoring_input.context
            now = self.clock()
            return {
                "request_complexity": self._request_complexity(scoring_input),
                "historical_performance": self.historical_performance(agent.id),
                "provider_reliability": PROVIDER_RELIABILITY.get(agent.provider.lower(), 0.8),
                "cost_efficiency": self._cost_efficiency(agent, scoring_input.estimated_tokens),
                "response_time_requirement": RESPONSE_TIME_REQUIREMENT.get(request.priority, 0.5),
                "user_preference": self.user_preference(request.user_id, agent.id),
                "context_similarity": self._context_similarity(context, agent),
                "load_pattern": self._load_pattern(agent),
                "time_of_day": time_of_day_factor(now.hour),
                "seasonal_trend": seasonal_factor(now.month),
            }
        except Exception as e:
            logger.error(f"Feature extraction failed for {agent.id}: {e}")
            return default_features()

    @staticmethod
    def _request_complexity(scoring_input: ScoringInput) -> float:
        tokens = scoring_input.estimated_tokens or 1000
        complexity = 0.5 + min(0.3, (tokens - 100) / 10000)
        capabilities = scoring_input.context.capabilities
        if capabilities:
            complexity += sum(CAPABILITY_COMPLEXITY.get(c, 0.2) for c in capabilities) / len(capabilities) * 0.3
        complexity += PRIORITY_COMPLEXITY.get(scoring_input.request.priority, 0.0)
        return max(0.0, min(1.0, complexity))

    @staticmethod
    def _cost_efficiency(agent: AgentSnapshot, tokens: int) -> float:
        total = (agent.cost_per_token or 0.001) * (tokens or 1000)
        return min(1.0, max(0.1, 1 - total / 10))

    @staticmethod
    def _context_similarity(context: RequestContext, agent: AgentSnapshot) -> float:
        wanted = {canonical(c) for c in context.capabilities}
        offered = {canonical(c) for c in agent.capabilities}
        if not wanted or not offered:
            return 0.5
        return len(wanted & offered) / max(len(wanted), len(offered))

    @staticmethod
    def _load_pattern(agent: AgentSnapshot) -> float:
        if agent.load.max_concurrency <= 0:
            return 0.5
        return max(0.0, min(1.0, 1 - agent.load.current_load / agent.load.max_concurrency))

    def historical_performance(self, agent_id: str) -> float:
        total, count = self._agent_performance.get(agent_id, (0.0, 0))
        if count == 0:
            return DEFAULT_HISTORICAL_PERFORMANCE
        return max(0.0, min(1.0, total / count / 100))

    def user_preference(self, user_id: Optional[str], agent_id: str) -> float:
        if not user_id:
            return DEFAULT_USER_PREFERENCE
        total, count = self._user_preference.get((user_id, agent_id), (0.0, 0))
        if count == 0:
            return DEFAULT_USER_PREFERENCE
        return max(0.0, min(1.0, total / count))

    def _confidence(self, features: Dict[str, float], weights: Dict[str, float]) -> float:
        with self._lock:
            if len(self._training) < MIN_SAMPLES_FOR_CONFIDENCE:
                return 0.6
            window = self._training[-CORRELATION_WINDOW:]
        outcomes = [s.outcome.actual_performance for s in window
                    if self._similarity(features, s.features, weights) > SIMILARITY_THRESHOLD]
        if not outcomes:
            return 0.7
        m = sum(outcomes) / len(outcomes)
        variance = sum((o - m) ** 2 for o in outcomes) / len(outcomes)
        return max(0.5, min(1.0, 1 - variance / 1000))

    @staticmethod
    def _similarity(a: Dict[str, float], b: Dict[str, float], weights: Dict[str, float]) -> float:
        """Importance-weighted mean of per-feature closeness, 0-1."""
        total_weight = sum(weights.values())
        if total_weight <= 0:
            return 0.0
        closeness = sum(max(0.0, 1 - abs(a.get(k, 0.0) - b.get(k, 0.0))) * w for k, w in weights.items())
        return closeness / total_weight

    def _remember(self, request_id: Optional[str], agent_id: str, features: Dict[str, float]) -> None:
        with self._lock:
            self._recent[(request_id, agent_id)] = features
            self._recent[(None, agent_id)] = features
            while len(self._recent) > RECENT_PREDICTIONS:
                self._recent.popitem(last=False)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train_with_outcome(self, agent_id: str, outcome: TrainingOutcome) -> Dict[str, float]:
        """Train on one real outcome, using the features seen when the agent was scored."""
        with self._lock:
            features = (self._recent.pop((outcome.request_id, agent_id), None)
                        if outcome.request_id else None)
            if features is None:
                features = self._recent.get((None, agent_id))
        return self.train([TrainingSample(agent_id, dict(features or default_features()), outcome)])

    def train(self, samples: Sequence[TrainingSample]) -> Dict[str, float]:
        with self._lock:
            old_accuracy = self.accuracy
            for sample in samples:
                self._absorb(sample)
            self._training.extend(samples)
            if len(self._training) > self.config.training_history_cap:
                self._training = self._training[-self.config.training_history_trim:]
            self._update_weights()
            self.accuracy = self._compute_accuracy()
            self.last_trained = datetime.now()
            size = len(self._training)

        logger.info(f"ML model trained on {len(samples)} samples: accuracy {old_accuracy:.3f} -> "
                    f"{self.accuracy:.3f} ({size} total)")
        return {"accuracy_improvement": self.accuracy - old_accuracy,
                "new_accuracy": self.accuracy,
                "training_data_size": size}

    def _absorb(self, sample: TrainingSample) -> None:
        outcome = sample.outcome
        total, count = self._agent_performance.get(sample.agent_id, (0.0, 0))
        self._agent_performance[sample.agent_id] = (total + outcome.actual_performance, count + 1)
        if outcome.user_id:
            satisfaction = (outcome.user_satisfaction if outcome.user_satisfaction is not None
                            else outcome.actual_performance / 100)
            key = (outcome.user_id, sample.agent_id)
            total, count = self._user_preference.get(key, (0.0, 0))
            self._user_preference[key] = (total + satisfaction, count + 1)

    def _update_weights(self) -> None:
        if len(self._training) < MIN_SAMPLES_FOR_WEIGHTS:
            return
        window = self._training[-CORRELATION_WINDOW:]
        performance = [s.outcome.actual_performance for s in window]
        correlations = {
            name: abs(pearson([s.features.get(name, 0.0) for s in window], performance))
            for name in self.weights
        }
        total = sum(correlations.values())
        if total == 0:
            return
        for name, correlation in correlations.items():
            self.weights[name] = self.weights[name] * 0.7 + correlation / total * 0.3
        logger.debug(f"Feature weights updated: {self.weights}")

    def _compute_accuracy(self) -> float:
        """Share of recent samples predicted within 20 points, clamped to [0.5, 1]."""
        if len(self._training) < MIN_SAMPLES_FOR_CONFIDENCE:
            return 0.7
        test = self._training[-min(200, int(len(self._training) * 0.2)):]
        correct = 0
        for sample in test:
            predicted = sum(v * self.weights.get(k, 0.0) for k, v in sample.features.items())
            if abs(sample.outcome.actual_performance / 100 - predicted) < 0.2:
                correct += 1
        return max(0.5, min(1.0, correct / len(test)))

    def get_model_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "accuracy": self.accuracy,
                "training_data_size": len(self._training),
                "last_update": self.last_trained.isoformat() if self.last_trained else None,
                "weights": dict(self.weights),
                "tracked_agents": len(self._agent_performance),
            }
