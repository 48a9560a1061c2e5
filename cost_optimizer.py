"""
Cost Optimizer - 0-100 cost-efficiency score per agent.

    score = tier(adjusted cost per token) + efficiency + volume + loyalty, capped at 100
    score = 0 when the adjusted cost exceeds a supplied max_cost

Tracks per-agent actual costs (bounded) for trend and volatility analysis
and per-user monthly request counts for volume discounts.
"""

import logging
import math
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional, Sequence

from keyed_lock import KeyedLock
from routing_config import RoutingConfig, get_routing_config
from routing_models import AgentSnapshot

logger = logging.getLogger("routing.cost_optimizer")

# (max cost per token, score) - ultra-cheap through extremely expensive
COST_TIERS = [
    (0.0001, 95.0),
    (0.0005, 85.0),
    (0.001, 70.0),
    (0.005, 50.0),
    (0.01, 25.0),
    (math.inf, 0.0),
]

PEAK_HOURS = {9, 10, 11, 14, 15, 16}

# (monthly requests at least, discount)
REQUEST_VOLUME_TIERS = [(100, 0.15), (50, 0.10), (20, 0.05)]

MIN_TREND_SAMPLES = 5
TREND_THRESHOLD = 0.10


@dataclass
class CostEstimate:
    agent_id: str
    base_cost: float
    adjusted_cost: float
    tokens: int
    volume_discount: float = 0.0
    time_of_day_multiplier: float = 1.0
    loyalty_discount: float = 0.0


@dataclass
class CostTrend:
    agent_id: str
    samples: int
    average_cost: float
    trend: str  # increasing | decreasing | stable
    variance: float
    coefficient_of_variation: float
    volatility: str  # low | medium | high
    recommendations: List[str] = field(default_factory=list)


@dataclass
class _UserVolume:
    requests: int
    period: str  # "YYYY-MM"


class CostOptimizer:
    """Cost-efficiency scoring with rolling per-agent cost history"""

    def __init__(self, config: Optional[RoutingConfig] = None):
        self.config = config or get_routing_config()
        self._costs: Dict[str, Deque[float]] = {}
        self._volume: "OrderedDict[str, _UserVolume]" = OrderedDict()  # LRU, tracked_users_cap
        self._agent_locks = KeyedLock()
        self._volume_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def cost_score(self, agent: AgentSnapshot, estimated_tokens: int,
                   max_cost: Optional[float] = None, user_id: Optional[str] = None,
                   hour: Optional[int] = None) -> float:
        try:
            estimate = self.estimate(agent, estimated_tokens, user_id, hour)
            if max_cost is not None and estimate.adjusted_cost > max_cost:
                return 0.0

            total = (self.tier_score(estimate.adjusted_cost / max(1, estimated_tokens))
                     + self._efficiency_bonus(agent, estimate)
                     + estimate.volume_discount * 10
                     + estimate.loyalty_discount * 15)
            return round(min(100.0, total), 2)
        except Exception as e:
            logger.error(f"Cost score failed for {agent.id} ({estimated_tokens} tokens): {e}")
            return 50.0

    def estimate(self, agent: AgentSnapshot, estimated_tokens: int,
                 user_id: Optional[str] = None, hour: Optional[int] = None) -> CostEstimate:
        base = agent.cost_per_token * estimated_tokens
        volume = self.volume_discount(user_id) if user_id else 0.0
        time_factor = self.time_of_day_multiplier(datetime.now().hour if hour is None else hour)
        loyalty = self.loyalty_discount(user_id) if user_id else 0.0
        adjusted = base * (1 - volume) * time_factor * (1 - loyalty)
        return CostEstimate(agent.id, base, adjusted, estimated_tokens, volume, time_factor, loyalty)

    @staticmethod
    def tier_score(cost_per_token: float) -> float:
        for ceiling, score in COST_TIERS:
            if cost_per_token <= ceiling:
                return score
        return 0.0

    @staticmethod
    def _efficiency_bonus(agent: AgentSnapshot, estimate: CostEstimate) -> float:
        response_time = agent.load.average_response_time or 1000.0
        speed = max(0.0, 10 - response_time / 1000)
        cheap_for_speed = estimate.adjusted_cost <= 0 or response_time / estimate.adjusted_cost > 1000
        return min(15.0, speed + (5 if cheap_for_speed else 0))

    @staticmethod
    def time_of_day_multiplier(hour: int) -> float:
        if hour in PEAK_HOURS:
            return 1.1
        if hour < 6 or hour > 22:
            return 0.9
        return 1.0

    @staticmethod
    def loyalty_discount(user_id: str) -> float:
        # stand-in until subscription data is wired in
        return 0.05 if sum(ord(c) for c in user_id) % 10 == 0 else 0.0

    def volume_discount(self, user_id: str) -> float:
        requests = self.monthly_requests(user_id)
        for minimum, discount in REQUEST_VOLUME_TIERS:
            if requests >= minimum:
                return discount
        return 0.0

    def monthly_requests(self, user_id: str) -> int:
        period = datetime.now().strftime("%Y-%m")
        with self._volume_lock:
            volume = self._volume.get(user_id)
            if volume is None or volume.period != period:
                return 0
            return volume.requests

    # ------------------------------------------------------------------
    # Tracking & trends
    # ------------------------------------------------------------------

    def track_request(self, agent_id: str, actual_cost: float, user_id: Optional[str] = None) -> None:
        if user_id:
            period = datetime.now().strftime("%Y-%m")
            with self._volume_lock:
                volume = self._volume.get(user_id)
                if volume is None or volume.period != period:
                    volume = _UserVolume(0, period)
                    self._volume[user_id] = volume
                else:
                    self._volume.move_to_end(user_id)
                volume.requests += 1
                while len(self._volume) > self.config.tracked_users_cap:
                    self._volume.popitem(last=False)

        with self._agent_locks.hold(agent_id):
            history = self._costs.get(agent_id)
            if history is None:
                history = deque(maxlen=self.config.agent_cost_samples)
                self._costs[agent_id] = history
            history.append(float(actual_cost))
        logger.debug(f"Cost tracked for {agent_id}: ${actual_cost:.6f} (user={user_id})")

    def analyze_cost_trends(self, agent_id: str) -> CostTrend:
        with self._agent_locks.hold(agent_id):
            history = list(self._costs.get(agent_id, ()))

        if len(history) < MIN_TREND_SAMPLES:
            return CostTrend(agent_id, len(history), 0.0, "stable", 0.0, 0.0, "low",
                             ["Insufficient data for analysis - need more usage history"])

        average = sum(history) / len(history)
        recent = sum(history[-MIN_TREND_SAMPLES:]) / MIN_TREND_SAMPLES
        older = sum(history[:MIN_TREND_SAMPLES]) / MIN_TREND_SAMPLES
        if recent > older * (1 + TREND_THRESHOLD):
            trend = "increasing"
        elif recent < older * (1 - TREND_THRESHOLD):
            trend = "decreasing"
        else:
            trend = "stable"

        variance = sum((c - average) ** 2 for c in history) / len(history)
        cv = math.sqrt(variance) / average if average > 0 else 0.0
        if cv < 0.1:
            volatility = "low"
        elif cv < 0.3:
            volatility = "medium"
        else:
            volatility = "high"

        recommendations = []
        if trend == "increasing":
            recommendations.append("Costs are trending upward - consider alternative models")
        if volatility == "high":
            recommendations.append("High cost volatility detected - investigate usage patterns")
        if average > 0.01:
            recommendations.append("High average cost per request - consider cheaper alternatives for simple tasks")

        return CostTrend(agent_id, len(history), average, trend, variance, cv, volatility,
                         recommendations or ["Cost patterns look healthy"])

    def calculate_potential_savings(self, current: AgentSnapshot, alternatives: Sequence[AgentSnapshot],
                                    estimated_tokens: int, user_id: Optional[str] = None) -> Dict[str, object]:
        current_cost = self.estimate(current, estimated_tokens, user_id).adjusted_cost
        if not alternatives:
            return {"current_cost": current_cost, "best_alternative_cost": current_cost,
                    "potential_savings": 0.0, "savings_percentage": 0.0, "recommended_agent": None}

        best_agent, best_cost = min(
            ((a, self.estimate(a, estimated_tokens, user_id).adjusted_cost) for a in alternatives),
            key=lambda pair: pair[1],
        )
        savings = max(0.0, current_cost - best_cost)
        return {
            "current_cost": current_cost,
            "best_alternative_cost": best_cost,
            "potential_savings": savings,
            "savings_percentage": round(savings / current_cost * 100, 2) if current_cost > 0 else 0.0,
            "recommended_agent": best_agent.id if savings > 0 else None,
        }

    def optimization_strategies(self, user_id: str) -> List[Dict[str, object]]:
        strategies = []
        if self.monthly_requests(user_id) < 20:
            strategies.append({
                "name": "Batch Requests",
                "description": "Group similar requests together to reduce per-request overhead",
                "estimated_savings": 10,
                "applicable_scenarios": ["Multiple similar tasks", "Content generation batches"],
            })
        strategies.extend([
            {
                "name": "Off-Peak Usage",
                "description": "Schedule non-urgent requests before 6 AM or after 10 PM",
                "estimated_savings": 10,
                "applicable_scenarios": ["Batch processing", "Content generation", "Analysis tasks"],
            },
            {
                "name": "Right-Size Models",
                "description": "Use smaller models for simple tasks and reserve powerful models for complex requests",
                "estimated_savings": 25,
                "applicable_scenarios": ["Simple Q&A", "Basic text generation", "Classification tasks"],
            },
            {
                "name": "Optimize Prompts",
                "description": "Use concise prompts and limit response length to reduce token usage",
                "estimated_savings": 15,
                "applicable_scenarios": ["All request types"],
            },
        ])
        return strategies

    def get_optimization_metrics(self) -> Dict[str, object]:
        agent_ids = list(self._costs.keys())
        total_requests, total_cost, averages = 0, 0.0, {}
        for agent_id in agent_ids:
            with self._agent_locks.hold(agent_id):
                history = list(self._costs.get(agent_id, ()))
            if history:
                total_requests += len(history)
                total_cost += sum(history)
                averages[agent_id] = sum(history) / len(history)
        return {
            "tracked_agents": len(agent_ids),
            "tracked_users": len(self._volume),
            "total_requests": total_requests,
            "total_cost": round(total_cost, 6),
            "average_cost_per_request": total_cost / total_requests if total_requests else 0.0,
            "cheapest_agent": min(averages, key=averages.get) if averages else None,
        }
