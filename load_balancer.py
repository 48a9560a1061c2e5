"""
Load Balancer - ranks capable agents by current load.

Strategy is chosen per request from priority and pool size:
    critical            -> response-time
    high, or >10 agents -> adaptive
    otherwise           -> least-connections

Per-agent response-time samples (bounded) and success counters are kept
under one lock per agent so concurrent requests on different agents never
contend.
"""

import logging
import time
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Deque, Dict, List, Optional, Sequence, Tuple

from keyed_lock import KeyedLock
from routing_config import RoutingConfig, get_routing_config
from routing_models import AgentSnapshot, Priority

logger = logging.getLogger("routing.load_balancer")

NEUTRAL_SCORE = 50.0
OPTIMAL_RPM = 30

HEALTH_SCORES = {"healthy": 100.0, "degraded": 70.0, "unhealthy": 30.0}
HEALTH_WEIGHTS = {"healthy": 1.0, "degraded": 0.7}

ADAPTIVE_WEIGHTS = {
    "capacity": 0.30,
    "performance": 0.25,
    "health": 0.20,
    "queue": 0.15,
    "stability": 0.10,
}


class BalancingStrategy(str, Enum):
    ROUND_ROBIN = "round-robin"
    LEAST_CONNECTIONS = "least-connections"
    WEIGHTED_ROUND_ROBIN = "weighted-round-robin"
    RESPONSE_TIME = "response-time"
    ADAPTIVE = "adaptive"


@dataclass
class LoadMetrics:
    agent_id: str
    samples: int
    average_response_time: float
    p95_response_time: float
    success_rate: float
    last_updated: datetime


class LoadBalancer:
    """Re-ranks candidate agents according to a load strategy"""

    def __init__(self, config: Optional[RoutingConfig] = None):
        self.config = config or get_routing_config()
        self._response_times: Dict[str, Deque[float]] = {}
        self._outcomes: Dict[str, Counter] = {}
        self._last_used: Dict[str, float] = {}
        self._updated_at: Dict[str, datetime] = {}
        self._locks = KeyedLock()
        self._strategy_usage: Counter = Counter()

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    @staticmethod
    def select_strategy(priority: Priority, pool_size: int) -> BalancingStrategy:
        if priority == Priority.CRITICAL:
            return BalancingStrategy.RESPONSE_TIME
        if priority == Priority.HIGH or pool_size > 10:
            return BalancingStrategy.ADAPTIVE
        return BalancingStrategy.LEAST_CONNECTIONS

    def balance(self, agents: Sequence[AgentSnapshot], priority: Priority = Priority.NORMAL,
                strategy: Optional[BalancingStrategy] = None) -> List[AgentSnapshot]:
        """Return agents best-first for the chosen strategy."""
        if not agents:
            return []
        strategy = strategy or self.select_strategy(priority, len(agents))
        self._strategy_usage[strategy.value] += 1
        try:
            if strategy == BalancingStrategy.ROUND_ROBIN:
                return sorted(agents, key=lambda a: self._last_used.get(a.id, 0.0))
            if strategy == BalancingStrategy.WEIGHTED_ROUND_ROBIN:
                return sorted(agents, key=self.agent_weight, reverse=True)
            if strategy == BalancingStrategy.RESPONSE_TIME:
                return sorted(agents, key=self._effective_response_time)
            if strategy == BalancingStrategy.ADAPTIVE:
                return sorted(agents, key=self.adaptive_score, reverse=True)
            return self._least_connections(agents)
        except Exception as e:
            logger.error(f"Load balancing with {strategy.value} failed, using least-connections: {e}")
            return self._least_connections(agents)

    @staticmethod
    def _least_connections(agents: Sequence[AgentSnapshot]) -> List[AgentSnapshot]:
        return sorted(agents, key=lambda a: (a.load.current_load, a.load.queue_length))

    def rank(self, agents: Sequence[AgentSnapshot], priority: Priority = Priority.NORMAL,
             strategy: Optional[BalancingStrategy] = None) -> List[Tuple[AgentSnapshot, float]]:
        """Balanced order paired with each agent's load score."""
        return [(agent, self.load_score(agent)) for agent in self.balance(agents, priority, strategy)]

    # ------------------------------------------------------------------
    # Scores
    # ------------------------------------------------------------------

    def load_score(self, agent: AgentSnapshot) -> float:
        """0-100, higher means more headroom. Neutral 50 on bad data."""
        try:
            load = agent.load
            utilization = max(0.0, 100 - load.current_load / load.max_concurrency * 100)
            queue = max(0.0, 100 - load.queue_length * 10)
            response = max(0.0, 100 - self._effective_response_time(agent) / 100)
            rpm = max(0.0, 100 - abs(load.requests_per_minute - OPTIMAL_RPM) * 2)
            total = utilization * 0.4 + queue * 0.3 + response * 0.2 + rpm * 0.1
            return round(total, 2)
        except Exception as e:
            logger.error(f"Load score failed for {agent.id}: {e}")
            return NEUTRAL_SCORE

    def adaptive_score(self, agent: AgentSnapshot) -> float:
        try:
            load, health = agent.load, agent.health
            capacity = (load.max_concurrency - load.current_load) / load.max_concurrency * 100
            performance = max(0.0, 100 - self._effective_response_time(agent) / 50)
            health_score = HEALTH_SCORES.get(health.status, 0.0)
            queue = max(0.0, 100 - load.queue_length * 20)
            stability = max(0.0, 100 - health.error_rate * 100)
            return (capacity * ADAPTIVE_WEIGHTS["capacity"]
                    + performance * ADAPTIVE_WEIGHTS["performance"]
                    + health_score * ADAPTIVE_WEIGHTS["health"]
                    + queue * ADAPTIVE_WEIGHTS["queue"]
                    + stability * ADAPTIVE_WEIGHTS["stability"])
        except Exception as e:
            logger.error(f"Adaptive score failed for {agent.id}: {e}")
            return NEUTRAL_SCORE

    def agent_weight(self, agent: AgentSnapshot) -> float:
        load = agent.load
        capacity = max(0.0, (load.max_concurrency - load.current_load) / load.max_concurrency)
        speed = max(0.1, 1000 / max(1.0, self._effective_response_time(agent)))
        return capacity * speed * HEALTH_WEIGHTS.get(agent.health.status, 0.3)

    def _effective_response_time(self, agent: AgentSnapshot) -> float:
        """Observed average when we have samples, else the snapshot's figure."""
        with self._locks.hold(agent.id):
            samples = self._response_times.get(agent.id)
            if samples:
                return sum(samples) / len(samples)
        return agent.load.average_response_time or 1000.0

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def mark_selected(self, agent_id: str) -> None:
        with self._locks.hold(agent_id):
            self._last_used[agent_id] = time.monotonic()

    def track_request_completion(self, agent_id: str, response_time_ms: float, success: bool = True) -> None:
        with self._locks.hold(agent_id):
            samples = self._response_times.get(agent_id)
            if samples is None:
                samples = deque(maxlen=self.config.response_time_samples)
                self._response_times[agent_id] = samples
            samples.append(float(response_time_ms))
            self._outcomes.setdefault(agent_id, Counter())["success" if success else "failure"] += 1
            self._updated_at[agent_id] = datetime.now()
        logger.debug(f"Completion tracked for {agent_id}: {response_time_ms:.0f}ms success={success}")

    def get_load_metrics(self, agent_id: str) -> Optional[LoadMetrics]:
        """None until at least one completion has been tracked."""
        with self._locks.hold(agent_id):
            samples = list(self._response_times.get(agent_id, ()))
            outcomes = Counter(self._outcomes.get(agent_id, Counter()))
            updated = self._updated_at.get(agent_id)
        if not samples:
            return None
        ordered = sorted(samples)
        total = outcomes["success"] + outcomes["failure"]
        return LoadMetrics(
            agent_id=agent_id,
            samples=len(samples),
            average_response_time=sum(samples) / len(samples),
            p95_response_time=ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))],
            success_rate=outcomes["success"] / total if total else 1.0,
            last_updated=updated or datetime.now(),
        )

    def get_balancing_stats(self) -> Dict[str, object]:
        all_samples: List[float] = []
        for agent_id in list(self._response_times.keys()):
            with self._locks.hold(agent_id):
                all_samples.extend(self._response_times.get(agent_id, ()))
        uses = sum(self._strategy_usage.values())
        return {
            "tracked_agents": len(self._response_times),
            "total_samples": len(all_samples),
            "average_response_time": round(sum(all_samples) / len(all_samples), 2) if all_samples else 0.0,
            "strategy_usage": {k: v / uses for k, v in self._strategy_usage.items()} if uses else {},
        }

    def cleanup(self, max_age_seconds: float = 24 * 3600) -> int:
        """Drop history for agents not updated within max_age_seconds."""
        cutoff = datetime.now().timestamp() - max_age_seconds
        removed = 0
        for agent_id in list(self._updated_at.keys()):
            with self._locks.hold(agent_id):
                updated = self._updated_at.get(agent_id)
                if updated and updated.timestamp() < cutoff:
                    self._response_times.pop(agent_id, None)
                    self._outcomes.pop(agent_id, None)
                    self._updated_at.pop(agent_id, None)
                    self._last_used.pop(agent_id, None)
                    removed += 1
        logger.info(f"Load balancer cleanup removed {removed} stale agents")
        return removed
