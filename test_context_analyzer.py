"""
Tests for context_analyzer.py
Covers intent, capability detection, domain/urgency classification,
metadata estimates, failure fallback and bounded analysis history.
"""

import pytest

from context_analyzer import GENERAL_QUERY, ContextAnalyzer, default_context
from routing_config import RoutingConfig
from routing_models import Priority


@pytest.fixture
def analyzer():
    return ContextAnalyzer(RoutingConfig(context_history_cap=5, context_history_trim=3))


class TestIntent:
    """Intent classification"""

    def test_question(self, analyzer):
        """'What is' prompts are question-answering"""
        context = analyzer.analyze("What is the capital of France?")
        assert context.intent.primary == "question-answering"
        assert context.intent.confidence == pytest.approx(1 / 6 * 0.8 + 0.2)

    def test_tie_keeps_declaration_order(self, analyzer):
        """Equal confidence keeps content-generation ahead of code-assistance"""
        context = analyzer.analyze("Write a Python function to sort a list")
        assert context.intent.primary == "content-generation"
        assert "code-assistance" in context.intent.secondary

    def test_no_match_is_general_query(self, analyzer):
        """Unrecognized prompts default to general-query"""
        context = analyzer.analyze("hello there")
        assert context.intent.primary == GENERAL_QUERY
        assert context.intent.confidence == 0.6


class TestCapabilities:
    """Capability detection is additive"""

    def test_code_request(self, analyzer):
        """Write + function gives text and code generation only"""
        context = analyzer.analyze("Write a Python function to sort a list")
        assert context.capabilities == frozenset({"text-generation", "code-generation"})

    def test_question_mark(self, analyzer):
        """A question gets question-answering"""
        context = analyzer.analyze("What is the capital of France?")
        assert context.capabilities == frozenset({"question-answering"})

    def test_debugging(self, analyzer):
        """Fix/bug wording adds debugging"""
        context = analyzer.analyze("Please fix the bug in this code")
        assert {"debugging", "code-generation"} <= context.capabilities

    def test_math_adds_two(self, analyzer):
        """Math rules add math and calculation"""
        context = analyzer.analyze("Solve this equation")
        assert {"math", "calculation"} <= context.capabilities

    def test_fallback_general_query(self, analyzer):
        """Nothing detected yields general-query"""
        context = analyzer.analyze("hello there")
        assert context.capabilities == frozenset({GENERAL_QUERY})


class TestDomainAndUrgency:
    """Domain and urgency classification"""

    def test_technology_domain(self, analyzer):
        """Two technology keywords classify as technology"""
        assert analyzer.analyze("Design a database api").domain == "technology"

    def test_general_domain(self, analyzer):
        assert analyzer.analyze("hello there").domain == "general"

    @pytest.mark.parametrize("prompt,urgency", [
        ("This is urgent, help", Priority.CRITICAL),
        ("Can you do this quickly", Priority.HIGH),
        ("No rush on this one", Priority.LOW),
        ("Tell me a joke", Priority.NORMAL),
    ])
    def test_urgency(self, analyzer, prompt, urgency):
        """First matching urgency rule wins"""
        assert analyzer.analyze(prompt).urgency == urgency


class TestComplexity:
    """Complexity sub-scores"""

    def test_simple_prompt_is_low(self, analyzer):
        assert analyzer.analyze("hello there").complexity.overall == 0

    def test_reasoning_and_computation_detected(self, analyzer):
        """Why/compare/data wording raises reasoning and computational scores"""
        context = analyzer.analyze("Why does the algorithm compare the data?")
        assert context.complexity.reasoning >= 50
        assert context.complexity.computational >= 40
        assert 0 < context.complexity.overall <= 100

    def test_overall_is_weighted(self, analyzer):
        """overall = 0.3 linguistic + 0.4 computational + 0.3 reasoning"""
        c = analyzer.analyze("Explain the database algorithm and analyze the data").complexity
        assert c.overall == round(c.linguistic * 0.3 + c.computational * 0.4 + c.reasoning * 0.3)


class TestMetadata:
    """Token, length, language and tone estimates"""

    def test_brief_halves_expected_length(self, analyzer):
        """Brief cues halve the expected response length"""
        meta = analyzer.analyze("Please give a brief summary").metadata
        assert meta.estimated_tokens == 7
        assert meta.expected_response_length == 7

    def test_detailed_doubles_expected_length(self, analyzer):
        meta = analyzer.analyze("Give a detailed answer").metadata
        assert meta.estimated_tokens == 6
        assert meta.expected_response_length == 24

    def test_language_detection(self, analyzer):
        """Spanish stop words are recognized"""
        assert analyzer.analyze("el gato es de la casa").metadata.language == "es"

    def test_sentiment(self, analyzer):
        meta = analyzer.analyze("great amazing problem").metadata
        assert meta.sentiment == pytest.approx(1 / 3)

    def test_topic_tags(self, analyzer):
        meta = analyzer.analyze("software for medical research").metadata
        assert {"technology", "health", "science"} <= set(meta.topic_tags)


class TestFailureFallback:
    """analyze() never raises"""

    def test_non_string_prompt_returns_default(self, analyzer):
        """Broken input yields the documented default context"""
        context = analyzer.analyze(None)
        assert context == default_context("")
        assert context.complexity.overall == 50
        assert context.domain == "general"

    def test_default_context_tokens(self):
        assert default_context("one two three").metadata.estimated_tokens == 4
        assert default_context("").metadata.estimated_tokens == 100


class TestHistory:
    """Bounded history and metrics"""

    def test_recent_contexts(self, analyzer):
        analyzer.analyze("What is an API?", user_id="u1")
        analyzer.analyze("Write a poem", user_id="u1")
        analyzer.analyze("hello", user_id="u2")
        recent = analyzer.recent_contexts("u1")
        assert len(recent) == 2
        assert recent[-1].intent.primary == "content-generation"

    def test_history_trimmed(self, analyzer):
        """Past the cap the history is trimmed to the trim size"""
        for _ in range(6):
            analyzer.analyze("hello", user_id="u1")
        assert len(analyzer.recent_contexts("u1", limit=100)) == 3

    def test_previous_context_flag(self, analyzer):
        first = analyzer.analyze("What is an API?", user_id="u1")
        second = analyzer.analyze("And the protocol?", user_id="u1", previous_context=[first])
        assert second.patterns.has_previous_context
        assert not first.patterns.has_previous_context

    def test_empty_metrics(self, analyzer):
        metrics = analyzer.get_analysis_metrics()
        assert metrics["total_analyses"] == 0
        assert metrics["most_common_intents"] == []

    def test_metrics_aggregate(self, analyzer):
        analyzer.analyze("What is an API?", user_id="u1")
        analyzer.analyze("What is a protocol?", user_id="u2")
        metrics = analyzer.get_analysis_metrics()
        assert metrics["total_analyses"] == 2
        assert metrics["most_common_intents"][0] == {"intent": "question-answering", "count": 2}

    def test_history_bounded_across_users(self):
        """Distinct users share one cap, so retained analyses never exceed it"""
        config = RoutingConfig(context_history_cap=1000, context_history_trim=800)
        analyzer = ContextAnalyzer(config)
        for i in range(1500):
            analyzer.analyze("hello", user_id=f"user-{i}")
        assert analyzer.get_analysis_metrics()["total_analyses"] <= config.context_history_cap
        assert analyzer.recent_contexts("user-0") == []
        assert len(analyzer.recent_contexts("user-1499")) == 1
