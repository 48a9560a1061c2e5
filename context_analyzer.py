"""
Context Analyzer for the routing engine.

Turns raw prompt text into a RequestContext: intent, complexity, required
capabilities, domain, urgency, contextual patterns and token/metadata
estimates. Everything is keyword and regex driven so analysis is cheap and
deterministic.

analyze() never raises. If any step fails the documented default context is
returned so routing can still proceed.
"""

import logging
import math
import re
import threading
import time
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

from routing_config import RoutingConfig, get_routing_config
from routing_models import (
    ComplexityAnalysis,
    ContextMetadata,
    ContextPatterns,
    IntentAnalysis,
    PatternMatch,
    Priority,
    RequestContext,
)

logger = logging.getLogger("routing.context")


def _rx(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


GENERAL_QUERY = "general-query"

# Order matters: ties on confidence keep this order.
INTENT_PATTERNS: Dict[str, List[re.Pattern]] = {
    "question-answering": [
        _rx(r"what\s+is|what\s+are|what\s+does"),
        _rx(r"who\s+is|who\s+are|who\s+was"),
        _rx(r"when\s+is|when\s+was|when\s+will"),
        _rx(r"where\s+is|where\s+are|where\s+can"),
        _rx(r"why\s+is|why\s+does|why\s+did"),
        _rx(r"how\s+to|how\s+do|how\s+can"),
    ],
    "content-generation": [
        _rx(r"write\s+a|create\s+a|generate\s+a"),
        _rx(r"help\s+me\s+write|help\s+me\s+create"),
        _rx(r"draft\s+a|compose\s+a"),
        _rx(r"make\s+a\s+list|create\s+a\s+list"),
    ],
    "code-assistance": [
        _rx(r"write\s+code|create\s+code|generate\s+code"),
        _rx(r"debug\s+this|fix\s+this\s+code|help\s+with\s+code"),
        _rx(r"function\s+to|class\s+to|script\s+to"),
        _rx(r"programming\s+help|coding\s+help"),
    ],
    "analysis-request": [
        _rx(r"analyz|evaluate|assess|review"),
        _rx(r"compare\s+and\s+contrast|compare\s+between"),
        _rx(r"pros\s+and\s+cons|advantages\s+and\s+disadvantages"),
        _rx(r"explain\s+the\s+difference|what.*difference"),
    ],
}

TECHNICAL_TERMS = [
    "algorithm", "database", "api", "framework", "architecture", "optimization",
    "integration", "authentication", "encryption", "protocol", "interface",
    "methodology", "implementation", "configuration", "infrastructure",
]

COMPUTATIONAL_INDICATORS = [
    _rx(r"calculat|compute|process|analyze|transform|generate"),
    _rx(r"data|dataset|statistics|analysis"),
    _rx(r"algorithm|model|optimization"),
    _rx(r"comparison|evaluation|ranking"),
]

REASONING_INDICATORS = [
    _rx(r"why|how|explain|reason|because|therefore"),
    _rx(r"compare|contrast|evaluate|judge|decide"),
    _rx(r"if.*then|when.*then|given.*find"),
    _rx(r"logic|proof|argument|evidence"),
]

# (pattern, capabilities added). Rules are additive.
CAPABILITY_RULES: List[Tuple[re.Pattern, Tuple[str, ...]]] = [
    (_rx(r"writ|generat|creat|compos"), ("text-generation",)),
    (_rx(r"code|program|script|function|class\b|debug"), ("code-generation",)),
    (_rx(r"debug|\bfix\b|\bbug|\berror"), ("debugging",)),
    (_rx(r"analyz|analys|evaluat|assess|review|examin"), ("analysis",)),
    (_rx(r"calculat|math|equation|formula|\bsolve|number"), ("math", "calculation")),
    (_rx(r"explain|reason|\bwhy\b|\bhow\b|logic|proof"), ("reasoning", "explanation")),
    (_rx(r"translat|convert.*language|from.*to.*language"), ("translation",)),
    (_rx(r"summar|\bbrief|concis|key.*point|main.*idea"), ("summarization",)),
    (_rx(r"creativ|story|poem|brainstorm|imaginat|fiction"), ("creative",)),
    (_rx(r"research|find.*information|search|lookup"), ("research",)),
    (_rx(r"\?|\b(what|when|where|who|which|how)\b"), ("question-answering",)),
]

DOMAIN_KEYWORDS: Dict[str, List[str]] = {
    "technology": [
        "software", "programming", "code", "algorithm", "database", "api", "framework",
        "computer", "digital", "internet", "web", "mobile", "app", "system",
    ],
    "business": [
        "marketing", "sales", "revenue", "profit", "customer", "client", "business",
        "strategy", "management", "finance", "budget", "investment", "market",
    ],
    "academic": [
        "research", "study", "analysis", "theory", "methodology", "academic",
        "scientific", "literature", "paper", "thesis", "education", "learning",
    ],
    "creative": [
        "creative", "art", "design", "story", "fiction", "poetry", "music",
        "artistic", "imagination", "brainstorm", "innovative", "original",
    ],
}

DOMAIN_FALLBACKS: List[Tuple[re.Pattern, str]] = [
    (_rx(r"code|programming|software|development"), "technology"),
    (_rx(r"business|market|sales|finance"), "business"),
    (_rx(r"science|research|study|academic"), "academic"),
    (_rx(r"creative|art|design|story"), "creative"),
]

# Checked in order, first match wins.
URGENCY_RULES: List[Tuple[re.Pattern, Priority]] = [
    (_rx(r"urgent|emergency|asap|immediately|critical|deadline"), Priority.CRITICAL),
    (_rx(r"quickly|fast|soon|priority|important|need.*now"), Priority.HIGH),
    (_rx(r"when.*convenient|no rush|eventually|sometime"), Priority.LOW),
]

FOLLOW_UP = [_rx(r"continue|also|addition|furthermore|moreover|follow.*up"),
             _rx(r"previous|earlier|before|above|\bthat\b")]
PERSONAL = _rx(r"\b(my|mine|i|me|personal|own)\b")
EXTERNAL_DATA = [_rx(r"current|latest|recent|today|news|real.*time"),
                 _rx(r"search|find|lookup|check")]
CREATIVE_TASK = _rx(r"creat|writ.*story|poem|fiction|imaginat|brainstorm")
ANALYTICAL_TASK = _rx(r"analyz|evaluat|compar|assess|statistics|data")

BRIEF_CUES = _rx(r"\b(brief|briefly|short|concise|summary)\b")
DETAILED_CUES = _rx(r"\b(detailed|comprehensive|thorough|complete|in-depth)\b")

LANGUAGE_INDICATORS = {
    "en": ["the", "and", "is", "in", "to", "of", "a", "that", "it", "with"],
    "es": ["el", "la", "de", "que", "y", "es", "en", "un", "se", "no"],
    "fr": ["le", "de", "et", "à", "un", "il", "être", "en", "avoir", "les"],
    "de": ["der", "die", "und", "in", "den", "von", "zu", "das", "mit", "sich"],
}

TOPIC_PATTERNS: Dict[str, re.Pattern] = {
    "technology": _rx(r"technology|software|computer|digital|programming|code"),
    "business": _rx(r"business|marketing|sales|finance|strategy|management"),
    "science": _rx(r"science|research|study|experiment|analysis|data"),
    "education": _rx(r"education|learning|teach|student|academic|school"),
    "health": _rx(r"health|medical|doctor|treatment|disease|wellness"),
    "entertainment": _rx(r"entertainment|movie|music|game|\bfun\b|leisure"),
}

POSITIVE_WORDS = {"good", "great", "excellent", "amazing", "wonderful", "fantastic",
                  "love", "like", "happy", "please"}
NEGATIVE_WORDS = {"bad", "terrible", "awful", "horrible", "hate", "dislike", "sad",
                  "angry", "problem", "issue"}
FORMAL_INDICATORS = ["please", "would", "could", "may", "shall", "furthermore",
                     "therefore", "consequently"]
INFORMAL_INDICATORS = ["don't", "can't", "won't", "it's", "that's", "gonna", "wanna",
                       "yeah", "ok", "cool"]


def default_context(prompt: str = "") -> RequestContext:
    """Conservative context used whenever analysis fails."""
    words = len(prompt.split()) if prompt else 0
    return RequestContext(
        intent=IntentAnalysis(primary=GENERAL_QUERY, confidence=0.5,
                              reasoning="Default classification"),
        complexity=ComplexityAnalysis(overall=50, linguistic=50, computational=50,
                                      reasoning=50, factors=("Default analysis",)),
        capabilities=frozenset({GENERAL_QUERY}),
        domain="general",
        urgency=Priority.NORMAL,
        patterns=ContextPatterns(),
        metadata=ContextMetadata(
            estimated_tokens=max(1, math.ceil(words * 1.3)) if words else 100,
            expected_response_length=200,
            technical_level=0.3,
        ),
    )


class ContextAnalyzer:
    """Keyword/regex request analysis with a bounded analysis history"""

    ANONYMOUS = "anonymous"

    def __init__(self, config: Optional[RoutingConfig] = None):
        self.config = config or get_routing_config()
        self._history: List[Tuple[str, float, RequestContext]] = []  # (user_id, ts, context)
        self._history_lock = threading.Lock()

    def analyze(self, prompt: str, user_id: Optional[str] = None,
                previous_context: Optional[Any] = None) -> RequestContext:
        """Analyze a prompt. Never raises."""
        started = time.time()
        try:
            context = RequestContext(
                intent=self._analyze_intent(prompt),
                complexity=self._analyze_complexity(prompt),
                capabilities=frozenset(self._detect_capabilities(prompt)),
                domain=self._classify_domain(prompt),
                urgency=self._assess_urgency(prompt),
                patterns=self._detect_patterns(prompt, previous_context),
                metadata=self._extract_metadata(prompt),
            )
        except Exception as e:
            logger.error(f"Context analysis failed for user={user_id} "
                         f"(prompt length {len(prompt or '')}): {e}")
            return default_context(prompt if isinstance(prompt, str) else "")

        self._remember(user_id or self.ANONYMOUS, context)
        logger.info(
            f"Context analyzed: intent={context.intent.primary} "
            f"complexity={context.complexity.overall} domain={context.domain} "
            f"caps={sorted(context.capabilities)} ({(time.time() - started) * 1000:.1f}ms)"
        )
        return context

    # ------------------------------------------------------------------
    # Intent
    # ------------------------------------------------------------------

    def _analyze_intent(self, prompt: str) -> IntentAnalysis:
        normalized = prompt.lower()
        found: List[Tuple[str, float, List[str]]] = []

        for intent, patterns in INTENT_PATTERNS.items():
            hits = [p.pattern[:20] for p in patterns if p.search(normalized)]
            if hits:
                confidence = min(0.95, len(hits) / len(patterns) * 0.8 + 0.2)
                found.append((intent, confidence, hits))

        # sorted() is stable so ties keep declaration order
        found = sorted(found, key=lambda item: item[1], reverse=True)
        if not found:
            return IntentAnalysis(primary=GENERAL_QUERY, confidence=0.6,
                                  reasoning="Detected based on: general conversation pattern")

        primary, confidence, indicators = found[0]
        return IntentAnalysis(
            primary=primary,
            confidence=confidence,
            secondary=tuple(item[0] for item in found[1:3]),
            reasoning=f"Detected based on: {', '.join(indicators)}",
        )

    # ------------------------------------------------------------------
    # Complexity
    # ------------------------------------------------------------------

    def _analyze_complexity(self, prompt: str) -> ComplexityAnalysis:
        factors: List[str] = []
        words = prompt.split()
        sentences = [s for s in re.split(r"[.!?]+", prompt) if s.strip()]

        linguistic = 0
        avg_sentence = len(words) / max(1, len(sentences))
        if avg_sentence > 20:
            linguistic += 25
            factors.append("Long sentences")
        if len(words) > 500:
            linguistic += 30
            factors.append("Long input")
        tech_terms = self.count_technical_terms(prompt)
        linguistic += min(40, tech_terms * 5)
        if tech_terms > 3:
            factors.append("Technical terminology")

        computational = 0
        for indicator in COMPUTATIONAL_INDICATORS:
            if indicator.search(prompt):
                computational += 20
                factors.append(f"Computational: {indicator.pattern.split('|')[0]}")

        question_marks = prompt.count("?")
        tasks = len(re.findall(r"\b(and|also|then|next|finally)\b", prompt, re.IGNORECASE))
        if question_marks > 1 or tasks > 2:
            computational += 20
            factors.append("Multiple tasks/questions")

        reasoning = 0
        for indicator in REASONING_INDICATORS:
            if indicator.search(prompt):
                reasoning += 25
                factors.append(f"Reasoning: {indicator.pattern.split('|')[0]}")

        linguistic = min(100, linguistic)
        computational = min(100, computational)
        reasoning = min(100, reasoning)
        overall = round(linguistic * 0.3 + computational * 0.4 + reasoning * 0.3)

        return ComplexityAnalysis(
            overall=overall,
            linguistic=linguistic,
            computational=computational,
            reasoning=reasoning,
            factors=tuple(factors),
        )

    @staticmethod
    def count_technical_terms(prompt: str) -> int:
        normalized = prompt.lower()
        return sum(1 for term in TECHNICAL_TERMS if term in normalized)

    # ------------------------------------------------------------------
    # Capabilities, domain, urgency
    # ------------------------------------------------------------------

    def _detect_capabilities(self, prompt: str) -> List[str]:
        capabilities: List[str] = []
        for pattern, caps in CAPABILITY_RULES:
            if pattern.search(prompt):
                for cap in caps:
                    if cap not in capabilities:
                        capabilities.append(cap)
        return capabilities or [GENERAL_QUERY]

    def _classify_domain(self, prompt: str) -> str:
        normalized = prompt.lower()
        for domain, keywords in DOMAIN_KEYWORDS.items():
            if sum(1 for kw in keywords if kw in normalized) >= 2:
                return domain
        for pattern, domain in DOMAIN_FALLBACKS:
            if pattern.search(prompt):
                return domain
        return "general"

    def _assess_urgency(self, prompt: str) -> Priority:
        for pattern, urgency in URGENCY_RULES:
            if pattern.search(prompt):
                return urgency
        return Priority.NORMAL

    # ------------------------------------------------------------------
    # Patterns & metadata
    # ------------------------------------------------------------------

    def _detect_patterns(self, prompt: str, previous_context: Optional[Any]) -> ContextPatterns:
        is_follow_up = any(p.search(prompt) for p in FOLLOW_UP)
        has_personal = bool(PERSONAL.search(prompt))
        needs_external = any(p.search(prompt) for p in EXTERNAL_DATA)

        patterns: List[PatternMatch] = []
        if is_follow_up:
            patterns.append(PatternMatch("follow-up", 0.8, "Continuation of an earlier exchange"))
        if has_personal:
            patterns.append(PatternMatch("personal-context", 0.7, "Personal pronouns present"))
        if needs_external:
            patterns.append(PatternMatch("external-data", 0.9, "Needs current or external information"))

        return ContextPatterns(
            is_follow_up=is_follow_up,
            has_personal_context=has_personal,
            requires_external_data=needs_external,
            is_creative_task=bool(CREATIVE_TASK.search(prompt)),
            is_analytical_task=bool(ANALYTICAL_TASK.search(prompt)),
            has_previous_context=bool(previous_context),
            patterns=tuple(patterns),
        )

    def _extract_metadata(self, prompt: str) -> ContextMetadata:
        words = prompt.split()
        estimated_tokens = math.ceil(len(words) * 1.3)

        expected = estimated_tokens * 2
        if BRIEF_CUES.search(prompt):
            expected = expected // 2
        elif DETAILED_CUES.search(prompt):
            expected *= 2

        return ContextMetadata(
            estimated_tokens=estimated_tokens,
            expected_response_length=expected,
            language=self._detect_language(words),
            topic_tags=tuple(t for t, p in TOPIC_PATTERNS.items() if p.search(prompt)),
            sentiment=self._sentiment(words),
            formality=self._formality(prompt),
            technical_level=min(1.0, self.count_technical_terms(prompt) / max(1, len(words)) * 10),
        )

    @staticmethod
    def _detect_language(words: List[str]) -> str:
        lowered = {w.lower().strip(".,!?;:") for w in words}
        scores = {lang: sum(1 for w in indicators if w in lowered)
                  for lang, indicators in LANGUAGE_INDICATORS.items()}
        best = max(scores, key=lambda lang: scores[lang])
        return best if scores[best] > 0 else "en"

    @staticmethod
    def _sentiment(words: List[str]) -> float:
        lowered = [w.lower().strip(".,!?;:") for w in words]
        positive = sum(1 for w in lowered if w in POSITIVE_WORDS)
        negative = sum(1 for w in lowered if w in NEGATIVE_WORDS)
        if positive + negative == 0:
            return 0.0
        return (positive - negative) / (positive + negative)

    @staticmethod
    def _formality(prompt: str) -> float:
        normalized = prompt.lower()
        formal = sum(1 for w in FORMAL_INDICATORS if w in normalized)
        informal = sum(1 for w in INFORMAL_INDICATORS if w in normalized)
        if formal + informal == 0:
            return 0.5
        return formal / (formal + informal)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _remember(self, user_id: str, context: RequestContext) -> None:
        with self._history_lock:
            self._history.append((user_id, time.time(), context))
            if len(self._history) > self.config.context_history_cap:
                del self._history[:len(self._history) - self.config.context_history_trim]

    def recent_contexts(self, user_id: str, limit: int = 5) -> List[RequestContext]:
        """Most recent retained analyses for a user, oldest first."""
        recent: List[RequestContext] = []
        with self._history_lock:
            for uid, _, ctx in reversed(self._history):
                if len(recent) >= limit:
                    break
                if uid == user_id:
                    recent.append(ctx)
        recent.reverse()
        return recent

    def get_analysis_metrics(self) -> Dict[str, Any]:
        """Aggregate statistics over the retained analyses"""
        with self._history_lock:
            contexts = [ctx for _, _, ctx in self._history]

        if not contexts:
            return {
                "total_analyses": 0,
                "average_complexity": 0.0,
                "most_common_intents": [],
                "domain_distribution": {},
                "urgency_distribution": {},
            }

        intents = Counter(c.intent.primary for c in contexts)
        return {
            "total_analyses": len(contexts),
            "average_complexity": sum(c.complexity.overall for c in contexts) / len(contexts),
            "most_common_intents": [{"intent": i, "count": n} for i, n in intents.most_common(5)],
            "domain_distribution": dict(Counter(c.domain for c in contexts)),
            "urgency_distribution": dict(Counter(c.urgency.value for c in contexts)),
        }


# Module-level convenience
_analyzer: Optional[ContextAnalyzer] = None


def analyze(prompt: str, user_id: Optional[str] = None,
            previous_context: Optional[Any] = None) -> RequestContext:
    """Analyze a prompt with the shared analyzer"""
    global _analyzer
    if _analyzer is None:
        _analyzer = ContextAnalyzer()
    return _analyzer.analyze(prompt, user_id, previous_context)
