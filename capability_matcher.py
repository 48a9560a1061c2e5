"""
Capability Matcher - eligibility filtering and capability-fit scoring.

An agent is eligible for a request only if it supports every required
capability, either by name or through the synonym table below
("text-generation" is the same skill as "content-generation").
No broader hierarchy is applied: an agent that only does text-generation is
never treated as able to do code-generation.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set

from routing_models import AgentSnapshot, RequestContext

logger = logging.getLogger("routing.capabilities")


CAPABILITY_SYNONYMS: Dict[str, List[str]] = {
    "text-generation": ["content-generation", "writing", "text-creation"],
    "code-generation": ["programming", "coding", "development"],
    "translation": ["language-translation", "localization"],
    "summarization": ["summary", "abstract", "condensation"],
    "question-answering": ["qa", "q&a", "question-response"],
    "sentiment-analysis": ["emotion-detection", "mood-analysis"],
    "image-generation": ["image-creation", "visual-generation"],
    "image-analysis": ["image-understanding", "visual-analysis", "computer-vision"],
    "conversation": ["chat", "dialogue", "discussion"],
    "reasoning": ["logic", "problem-solving", "inference"],
}

# Data types a capability consumes/produces
CAPABILITY_DATA_TYPES: Dict[str, List[str]] = {
    "code-generation": ["text", "code"],
    "debugging": ["text", "code"],
    "image-generation": ["text", "image"],
    "image-analysis": ["image"],
}

KNOWN_CAPABILITIES: FrozenSet[str] = frozenset(
    list(CAPABILITY_SYNONYMS)
    + [s for group in CAPABILITY_SYNONYMS.values() for s in group]
    + ["debugging", "analysis", "math", "calculation", "explanation", "creative",
       "research", "general-query"]
)

PROVIDER_BONUS = {"openai": 5, "claude": 4, "anthropic": 4, "gemini": 3, "ollama": 2}

TIERS = ["low", "medium", "high"]


def _canonical_map() -> Dict[str, str]:
    mapping = {}
    for canonical, synonyms in CAPABILITY_SYNONYMS.items():
        mapping[canonical] = canonical
        for synonym in synonyms:
            mapping[synonym] = canonical
    return mapping


_CANONICAL = _canonical_map()


def canonical(capability: str) -> str:
    """Normalize a capability name to its synonym group's canonical name."""
    name = capability.strip().lower()
    return _CANONICAL.get(name, name)


def supports(agent_capabilities: Iterable[str], capability: str) -> bool:
    """True if a capability set covers one capability (name or synonym)."""
    wanted = canonical(capability)
    return any(canonical(c) == wanted for c in agent_capabilities)


def capabilities_match(agent_capabilities: Iterable[str], required: Iterable[str]) -> bool:
    agent_caps = list(agent_capabilities)
    return all(supports(agent_caps, cap) for cap in required)


def model_tier(model: str) -> str:
    name = model.lower()
    if "gpt-4" in name or "claude-3" in name or "opus" in name:
        return "high"
    if "gpt-3.5" in name or "gemini-pro" in name or "sonnet" in name:
        return "medium"
    return "low"


def complexity_tier(overall: float) -> str:
    if overall < 30:
        return "low"
    if overall < 70:
        return "medium"
    return "high"


@dataclass
class MatchResult:
    agent_id: str
    score: float  # 0-100
    confidence: float  # 0-1
    matched: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    matched_preferred: List[str] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)


class CapabilityMatcher:
    """Filters agent pools by capability and scores capability fit"""

    def filter_by_capabilities(self, agents: Sequence[AgentSnapshot],
                               required: Iterable[str]) -> List[AgentSnapshot]:
        """Agents supporting every required capability, in input order.

        Pure: identical inputs always give identical output.
        """
        required = sorted(set(required))
        eligible = [a for a in agents if capabilities_match(a.capabilities, required)]
        logger.debug(f"Capability filter: {len(eligible)}/{len(agents)} agents support {required}")
        return eligible

    def score(self, agent: AgentSnapshot, required: Iterable[str],
              preferred: Iterable[str] = (),
              context: Optional[RequestContext] = None) -> MatchResult:
        """Score capability fit on a 0-100 scale."""
        required = sorted(set(required))
        preferred = sorted(set(preferred) - set(required))
        result = MatchResult(agent_id=agent.id, score=0.0, confidence=0.0)

        result.matched = [c for c in required if supports(agent.capabilities, c)]
        result.missing = [c for c in required if c not in result.matched]
        ratio = len(result.matched) / len(required) if required else 1.0

        score = 10.0 * len(result.matched)
        if ratio < 1:
            score *= ratio
            result.reasons.append(f"Missing {', '.join(result.missing)}")

        result.matched_preferred = [c for c in preferred if supports(agent.capabilities, c)]
        score += 5.0 * len(result.matched_preferred)

        needed_types: Set[str] = set()
        for cap in required:
            needed_types.update(CAPABILITY_DATA_TYPES.get(canonical(cap), ["text"]))
        if needed_types <= set(agent.data_types):
            score += 5
        else:
            score -= 5
            result.reasons.append(f"Partial data type support ({sorted(needed_types - set(agent.data_types))})")

        if context is not None:
            score += self._complexity_alignment(agent, context.complexity.overall)
            score += self._context_bonus(agent, context)

        score += PROVIDER_BONUS.get(agent.provider, 0)
        if agent.health.uptime is not None and agent.health.uptime > 0.99:
            score += 2
        if agent.health.accuracy is not None and agent.health.accuracy > 0.9:
            score += 2

        result.score = max(0.0, min(100.0, score))

        density = len(result.matched) / len(agent.capabilities) if agent.capabilities else 0.0
        uptime = agent.health.uptime if agent.health.uptime is not None else 0.5
        result.confidence = min(1.0, ratio * 0.4 + min(1.0, density) * 0.3 + uptime * 0.2
                                + min(1.0, result.score / 50) * 0.1)
        return result

    @staticmethod
    def _complexity_alignment(agent: AgentSnapshot, overall: float) -> float:
        distance = abs(TIERS.index(model_tier(agent.model)) - TIERS.index(complexity_tier(overall)))
        if distance == 0:
            return 3
        if distance == 1:
            return 1
        return -2

    @staticmethod
    def _context_bonus(agent: AgentSnapshot, context: RequestContext) -> float:
        bonus = 0.0
        if context.domain and context.domain in agent.tags:
            bonus += 3
        language = context.metadata.language
        if language == "en" or language in agent.languages or "multilingual" in agent.tags:
            bonus += 1
        # code requests expect a code-formatted answer
        if "code-generation" in context.capabilities and (
                "code" in agent.formats or "code" in agent.data_types):
            bonus += 2
        return bonus

    # ------------------------------------------------------------------
    # Discovery helpers
    # ------------------------------------------------------------------

    def analyze_capability_gaps(self, agents: Sequence[AgentSnapshot],
                                required: Iterable[str]) -> Dict[str, object]:
        """Which required capabilities the pool cannot cover, and how widely."""
        required = sorted(set(required))
        coverage = {cap: [a.id for a in agents if supports(a.capabilities, cap)] for cap in required}
        gaps = [cap for cap, ids in coverage.items() if not ids]
        return {
            "required": required,
            "coverage": {cap: len(ids) for cap, ids in coverage.items()},
            "gaps": gaps,
            "fully_capable_agents": [a.id for a in self.filter_by_capabilities(agents, required)],
        }

    @staticmethod
    def validate_capabilities(capabilities: Iterable[str]) -> Dict[str, List[str]]:
        valid, unknown = [], []
        for cap in capabilities:
            (valid if cap.strip().lower() in KNOWN_CAPABILITIES else unknown).append(cap)
        return {"valid": valid, "unknown": unknown}
