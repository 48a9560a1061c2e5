"""
Shared data types for the routing decision engine.

RequestContext and AgentSnapshot are immutable: a context is built once per
request by the context analyzer, a snapshot is owned by the agent pool and
only ever read here.
"""

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


class Priority(str, Enum):
    """Request priority / urgency tier"""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def parse(cls, value: Any) -> "Priority":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.NORMAL


PRIORITY_ORDER = [Priority.LOW, Priority.NORMAL, Priority.HIGH, Priority.CRITICAL]


# ═══════════════════════════════════════════════════════════════════════════
# REQUEST CONTEXT
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class IntentAnalysis:
    primary: str
    confidence: float
    secondary: Tuple[str, ...] = ()
    reasoning: str = ""


@dataclass(frozen=True)
class ComplexityAnalysis:
    overall: int  # 0-100
    linguistic: int
    computational: int
    reasoning: int
    factors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PatternMatch:
    type: str
    confidence: float
    description: str


@dataclass(frozen=True)
class ContextPatterns:
    is_follow_up: bool = False
    has_personal_context: bool = False
    requires_external_data: bool = False
    is_creative_task: bool = False
    is_analytical_task: bool = False
    has_previous_context: bool = False
    patterns: Tuple[PatternMatch, ...] = ()


@dataclass(frozen=True)
class ContextMetadata:
    estimated_tokens: int = 100
    expected_response_length: int = 200
    language: str = "en"
    topic_tags: Tuple[str, ...] = ()
    sentiment: float = 0.0  # -1..1
    formality: float = 0.5  # 0..1
    technical_level: float = 0.0  # 0..1


@dataclass(frozen=True)
class RequestContext:
    """Structured analysis of a single prompt"""
    intent: IntentAnalysis
    complexity: ComplexityAnalysis
    capabilities: FrozenSet[str]
    domain: str
    urgency: Priority
    patterns: ContextPatterns
    metadata: ContextMetadata

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["capabilities"] = sorted(self.capabilities)
        data["urgency"] = self.urgency.value
        return data


# ═══════════════════════════════════════════════════════════════════════════
# AGENT SNAPSHOT
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AgentLoad:
    current_load: int = 0
    max_concurrency: int = 50
    queue_length: int = 0
    average_response_time: float = 1000.0  # ms
    requests_per_minute: float = 0.0


@dataclass(frozen=True)
class AgentHealth:
    status: str = "healthy"  # "healthy" | "degraded" | "unhealthy" | "offline"
    error_rate: float = 0.0
    uptime: Optional[float] = None
    accuracy: Optional[float] = None


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass(frozen=True)
class AgentSnapshot:
    """Read-only view of one routable provider/model endpoint"""
    id: str
    provider: str
    model: str
    capabilities: FrozenSet[str]
    cost_per_token: float
    load: AgentLoad = field(default_factory=AgentLoad)
    health: AgentHealth = field(default_factory=AgentHealth)
    name: str = ""
    tags: Tuple[str, ...] = ()
    languages: Tuple[str, ...] = ()
    formats: Tuple[str, ...] = ()
    data_types: Tuple[str, ...] = ("text",)

    @property
    def display_name(self) -> str:
        return self.name or f"{self.provider}:{self.model}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentSnapshot":
        """Build a snapshot from a registry payload (camelCase or snake_case)."""
        load = data.get("load") or {}
        health = data.get("health") or {}
        performance = data.get("performance") or {}
        return cls(
            id=str(data["id"]),
            provider=str(data.get("provider", "")).lower(),
            model=str(data.get("model", "")),
            capabilities=frozenset(data.get("capabilities") or ()),
            cost_per_token=float(_pick(data, "cost_per_token", "costPerToken", default=0.001)),
            load=AgentLoad(
                current_load=int(_pick(load, "current_load", "currentLoad", default=0)),
                max_concurrency=int(_pick(load, "max_concurrency", "maxConcurrency", default=50)),
                queue_length=int(_pick(load, "queue_length", "queueLength", default=0)),
                average_response_time=float(_pick(load, "average_response_time", "averageResponseTime", default=1000.0)),
                requests_per_minute=float(_pick(load, "requests_per_minute", "requestsPerMinute", default=0.0)),
            ),
            health=AgentHealth(
                status=str(health.get("status", "healthy")),
                error_rate=float(_pick(health, "error_rate", "errorRate", default=0.0)),
                uptime=_pick(performance, "uptime", default=health.get("uptime")),
                accuracy=_pick(performance, "accuracy", default=health.get("accuracy")),
            ),
            name=str(data.get("name", "")),
            tags=tuple(data.get("tags") or ()),
            languages=tuple(data.get("languages") or ()),
            formats=tuple(data.get("formats") or ()),
            data_types=tuple(_pick(data, "data_types", "dataTypes", default=("text",))),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["capabilities"] = sorted(self.capabilities)
        return data


# ═══════════════════════════════════════════════════════════════════════════
# ROUTING REQUEST / RESPONSE
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class RoutingRequest:
    prompt: str
    user_id: Optional[str] = None
    priority: Priority = Priority.NORMAL
    max_cost: Optional[float] = None
    monthly_budget: Optional[float] = None
    required_capabilities: Tuple[str, ...] = ()  # added to the detected set
    preferred_capabilities: Tuple[str, ...] = ()
    estimated_tokens: Optional[int] = None
    request_id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")

    def __post_init__(self):
        self.priority = Priority.parse(self.priority)


@dataclass
class ScoredCandidate:
    """One agent with its component scores (all 0-100)"""
    agent: AgentSnapshot
    capability_score: float
    cost_score: float
    load_score: float
    total_score: float
    strategy: str = "standard"
    ml_confidence: Optional[float] = None
    predicted_performance: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent.id,
            "name": self.agent.display_name,
            "provider": self.agent.provider,
            "model": self.agent.model,
            "capability_score": round(self.capability_score, 2),
            "cost_score": round(self.cost_score, 2),
            "load_score": round(self.load_score, 2),
            "total_score": round(self.total_score, 2),
            "strategy": self.strategy,
            "ml_confidence": self.ml_confidence,
            "predicted_performance": self.predicted_performance,
        }


@dataclass
class SelectedAgent:
    id: str
    name: str
    provider: str
    model: str
    capabilities: List[str]
    cost_per_token: float
    estimated_response_time: float

    @classmethod
    def from_snapshot(cls, agent: AgentSnapshot) -> "SelectedAgent":
        return cls(
            id=agent.id,
            name=agent.display_name,
            provider=agent.provider,
            model=agent.model,
            capabilities=sorted(agent.capabilities),
            cost_per_token=agent.cost_per_token,
            estimated_response_time=agent.load.average_response_time,
        )


@dataclass
class RoutingReasoning:
    capability_score: float
    cost_score: float
    load_score: float
    total_score: float
    explanation: str


@dataclass
class RoutingResponse:
    request_id: str
    selected_agent: SelectedAgent
    reasoning: RoutingReasoning
    alternatives: List[ScoredCandidate]
    context: RequestContext
    strategy: str
    experiment_assignments: Dict[str, str] = field(default_factory=dict)
    predicted_cost: Optional[float] = None
    routing_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "selected_agent": asdict(self.selected_agent),
            "reasoning": asdict(self.reasoning),
            "alternatives": [c.to_dict() for c in self.alternatives],
            "context": self.context.to_dict(),
            "strategy": self.strategy,
            "experiment_assignments": dict(self.experiment_assignments),
            "predicted_cost": self.predicted_cost,
            "routing_time_ms": round(self.routing_time_ms, 2),
        }
