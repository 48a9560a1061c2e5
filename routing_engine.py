"""
Routing Engine - picks one agent for each inbound AI request.

Pipeline per request:

    Analyze -> Eligibility-Filter -> Cost-Predict -> Experiment-Assign -> Score -> Select -> Record

Only NoAgentAvailableError leaves route_request(): the pool was empty, no agent
supports the required capabilities, or the pool did not answer before the
deadline. Every other step degrades to a documented default and reports it to
the observer.

Usage:
    from routing_engine import init_routing_engine

    engine = init_routing_engine(InMemoryAgentPool(agents))
    response = await engine.route_request(RoutingRequest(prompt="...", user_id="u1"))
"""

import asyncio
import logging
import threading
import time
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ab_testing import ABTest, ABTestAnalysis, ABTestingService, ABTestResult, VariantAssignment
from agent_pool import AgentPool
from capability_matcher import CapabilityMatcher
from context_analyzer import ContextAnalyzer
from cost_optimizer import CostOptimizer
from cost_prediction import CostPredictionInput, CostPredictionModel, CostPredictionOutput, HistoricalCostRecord
from load_balancer import LoadBalancer
from routing_config import RoutingConfig, get_routing_config
from routing_errors import NoAgentAvailableError
from routing_models import (
    AgentSnapshot,
    RequestContext,
    RoutingReasoning,
    RoutingRequest,
    RoutingResponse,
    ScoredCandidate,
    SelectedAgent,
)
from scoring_strategies import (
    ML_OPTIMIZED,
    MLAssistedStrategy,
    ScoringInput,
    ScoringStrategy,
    StandardWeightedStrategy,
    TrainingOutcome,
)

logger = logging.getLogger("routing.engine")

ANONYMOUS = "anonymous"
PREVIOUS_CONTEXTS = 5


# ═══════════════════════════════════════════════════════════════════════════
# OBSERVER
# ═══════════════════════════════════════════════════════════════════════════

class RoutingObserver:
    """Callbacks for routing outcomes. Subclass and override what you need."""

    def on_decision(self, request: RoutingRequest, response: RoutingResponse) -> None:
        pass

    def on_no_agent(self, request: RoutingRequest, error: NoAgentAvailableError) -> None:
        pass

    def on_degraded(self, component: str, request_id: str, error: Exception) -> None:
        pass


class LoggingObserver(RoutingObserver):
    def on_decision(self, request, response):
        logger.info(
            f"Routed {response.request_id} -> {response.selected_agent.id} "
            f"({response.strategy}, score={response.reasoning.total_score:.2f}, "
            f"{response.routing_time_ms:.1f}ms)"
        )

    def on_no_agent(self, request, error):
        logger.warning(f"No agent for {request.request_id}: {error.reason} ({error})")

    def on_degraded(self, component, request_id, error):
        logger.error(f"Degraded {component} for {request_id}: {error}")


# ═══════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════

class RoutingEngine:
    """Orchestrates analysis, filtering, cost prediction, experiments and scoring"""

    def __init__(
        self,
        pool: AgentPool,
        config: Optional[RoutingConfig] = None,
        observer: Optional[RoutingObserver] = None,
        analyzer: Optional[ContextAnalyzer] = None,
        matcher: Optional[CapabilityMatcher] = None,
        cost_model: Optional[CostPredictionModel] = None,
        load_balancer: Optional[LoadBalancer] = None,
        cost_optimizer: Optional[CostOptimizer] = None,
        ab_testing: Optional[ABTestingService] = None,
    ):
        self.pool = pool
        self.config = config or get_routing_config()
        self.observer = observer or LoggingObserver()
        self.analyzer = analyzer or ContextAnalyzer(self.config)
        self.matcher = matcher or CapabilityMatcher()
        self.cost_model = cost_model or CostPredictionModel(config=self.config)
        self.load_balancer = load_balancer or LoadBalancer(self.config)
        self.cost_optimizer = cost_optimizer or CostOptimizer(self.config)
        self.ab_testing = ab_testing or ABTestingService(self.config)

        self.standard = StandardWeightedStrategy(self.matcher, self.cost_optimizer,
                                                 self.load_balancer, self.config)
        self.ml = MLAssistedStrategy(self.standard, self.config)

        self._history: List[Dict[str, Any]] = []
        self._history_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats: Counter = Counter()
        self._routing_time_total = 0.0

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def route_request(self, request: RoutingRequest) -> RoutingResponse:
        started = time.time()
        user_id = request.user_id or ANONYMOUS

        previous = self.analyzer.recent_contexts(user_id, PREVIOUS_CONTEXTS)
        context = self.analyzer.analyze(request.prompt, user_id, previous or None)
        required = frozenset(context.capabilities) | frozenset(request.required_capabilities)

        try:
            agents = await self._fetch_agents(request)
            if not agents:
                raise NoAgentAvailableError(NoAgentAvailableError.EMPTY_POOL, required)
            candidates = self.matcher.filter_by_capabilities(agents, required)
            if not candidates:
                raise NoAgentAvailableError(NoAgentAvailableError.NO_CAPABILITY_MATCH, required)
        except NoAgentAvailableError as e:
            self._count("no_agent")
            self._count(f"no_agent.{e.reason}")
            self.observer.on_no_agent(request, e)
            raise

        tokens = request.estimated_tokens or CostPredictionModel.estimate_tokens(
            request.prompt, context.complexity.overall)
        costs = self._predict(request, context, candidates, tokens)
        assignments = self.ab_testing.get_user_assignments(user_id, self._assignment_context(context, request))

        strategy, variant_config = self._choose_strategy(assignments)
        scoring_input = ScoringInput(
            request=request,
            context=context,
            estimated_tokens=tokens,
            required_capabilities=required,
            predicted_costs={p.agent_id: p.predicted_cost for p in costs.predictions} if costs else {},
            variant_config=variant_config,
        )
        ranked = self._score(strategy, candidates, scoring_input)

        best = ranked[0]
        predicted_cost = scoring_input.predicted_costs.get(best.agent.id)
        response = RoutingResponse(
            request_id=request.request_id,
            selected_agent=SelectedAgent.from_snapshot(best.agent),
            reasoning=RoutingReasoning(
                capability_score=best.capability_score,
                cost_score=best.cost_score,
                load_score=best.load_score,
                total_score=best.total_score,
                explanation=self._explain(best, context, costs),
            ),
            alternatives=ranked[1:1 + self.config.max_alternatives],
            context=context,
            strategy=best.strategy,
            experiment_assignments={a.test_id: a.variant_id for a in assignments},
            predicted_cost=predicted_cost,
        )

        await self._record(request, user_id, response, best, assignments)
        response.routing_time_ms = (time.time() - started) * 1000
        with self._stats_lock:
            self._routing_time_total += response.routing_time_ms
        self.observer.on_decision(request, response)
        return response

    async def _fetch_agents(self, request: RoutingRequest) -> List[AgentSnapshot]:
        try:
            return await asyncio.wait_for(self.pool.get_available_agents(),
                                          timeout=self.config.pool_timeout_seconds)
        except asyncio.TimeoutError:
            raise NoAgentAvailableError(NoAgentAvailableError.POOL_TIMEOUT) from None
        except Exception as e:
            self.observer.on_degraded("agent_pool", request.request_id, e)
            return []

    def _predict(self, request: RoutingRequest, context: RequestContext,
                 candidates: List[AgentSnapshot], tokens: int) -> Optional[CostPredictionOutput]:
        try:
            return self.cost_model.predict_costs(CostPredictionInput(
                agents=candidates,
                prompt=request.prompt,
                estimated_tokens=tokens,
                priority=request.priority,
                complexity=context.complexity.overall,
                user_id=request.user_id,
                max_cost=request.max_cost,
                monthly_budget=request.monthly_budget,
            ))
        except Exception as e:
            self.observer.on_degraded("cost_prediction", request.request_id, e)
            return None

    @staticmethod
    def _assignment_context(context: RequestContext, request: RoutingRequest) -> Dict[str, Any]:
        return {
            "domain": context.domain,
            "intent": context.intent.primary,
            "urgency": context.urgency.value,
            "priority": request.priority.value,
        }

    def _choose_strategy(self, assignments: List[VariantAssignment]):
        for assignment in assignments:
            if assignment.config.get("routing_strategy") == ML_OPTIMIZED:
                return self.ml, assignment.config
        for assignment in assignments:
            if assignment.config.get("weight_adjustments"):
                return self.standard, assignment.config
        return self.standard, {}

    def _score(self, strategy: ScoringStrategy, candidates: List[AgentSnapshot],
               scoring_input: ScoringInput) -> List[ScoredCandidate]:
        request_id = scoring_input.request.request_id
        try:
            ranked = strategy.score(candidates, scoring_input)
            if ranked:
                return ranked
        except Exception as e:
            self.observer.on_degraded(f"scoring.{strategy.name}", request_id, e)

        if strategy is not self.standard:
            try:
                ranked = self.standard.score(candidates, scoring_input)
                if ranked:
                    return ranked
            except Exception as e:
                self.observer.on_degraded("scoring.standard", request_id, e)

        # last resort: eligible order with neutral scores
        return [ScoredCandidate(agent=a, capability_score=50.0, cost_score=50.0, load_score=50.0,
                                total_score=50.0, strategy="fallback") for a in candidates]

    @staticmethod
    def _explain(best: ScoredCandidate, context: RequestContext,
                 costs: Optional[CostPredictionOutput]) -> str:
        parts = []
        if best.strategy == ML_OPTIMIZED:
            parts.append("Selected using ML-optimized routing")
            if best.ml_confidence is not None and best.ml_confidence > 0.8:
                parts.append("High ML prediction confidence")
        else:
            parts.append("Selected using enhanced dynamic scoring")

        if context.intent.confidence > 0.8:
            parts.append(f"Strong intent match: {context.intent.primary}")

        if context.complexity.overall > 80:
            parts.append("Optimized for high complexity request")
        elif context.complexity.overall < 30:
            parts.append("Cost-efficient choice for simple request")

        if costs and costs.predictions:
            prediction = costs.for_agent(best.agent.id)
            cheapest = costs.predictions[0].predicted_cost
            if prediction and prediction.predicted_cost <= cheapest * 1.2:
                parts.append("Cost-effective option")

        if best.load_score > 80:
            parts.append("Low current load")
        return ", ".join(parts)

    async def _record(self, request: RoutingRequest, user_id: str, response: RoutingResponse,
                      best: ScoredCandidate, assignments: List[VariantAssignment]) -> None:
        agent = best.agent
        try:
            await self.pool.increment_agent_load(agent.id)
        except Exception as e:
            self.observer.on_degraded("agent_pool.increment", request.request_id, e)
        self.load_balancer.mark_selected(agent.id)

        entry = {
            "request_id": request.request_id,
            "user_id": user_id,
            "agent_id": agent.id,
            "capabilities": sorted(response.context.capabilities),
            "priority": request.priority.value,
            "max_cost": request.max_cost,
            "strategy": best.strategy,
            "total_score": best.total_score,
            "predicted_cost": response.predicted_cost,
            "experiments": dict(response.experiment_assignments),
            "timestamp": datetime.now().isoformat(),
        }
        with self._history_lock:
            self._history.append(entry)
            if len(self._history) > self.config.routing_history_cap:
                del self._history[:len(self._history) - self.config.routing_history_trim]

        for assignment in assignments:
            try:
                self.ab_testing.record_test_result(ABTestResult(
                    test_id=assignment.test_id,
                    variant_id=assignment.variant_id,
                    request_id=request.request_id,
                    response_time=agent.load.average_response_time,
                    cost=response.predicted_cost or 0.0,
                    quality=min(100.0, best.total_score),
                    success=True,
                    user_id=user_id,
                    provisional=True,
                ))
            except Exception as e:
                self.observer.on_degraded("ab_testing.record", request.request_id, e)

        self._count("routed")
        self._count(f"strategy.{best.strategy}")
        self._count(f"agent.{agent.id}")

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    # ------------------------------------------------------------------
    # Cost & experiments
    # ------------------------------------------------------------------

    def predict_costs(self, data: CostPredictionInput) -> CostPredictionOutput:
        return self.cost_model.predict_costs(data)

    def create_test(self, test: ABTest) -> str:
        return self.ab_testing.create_test(test)

    def start_test(self, test_id: str) -> ABTest:
        return self.ab_testing.start_test(test_id)

    def complete_test(self, test_id: str) -> ABTestAnalysis:
        return self.ab_testing.complete_test(test_id)

    def get_test_results(self, test_id: str) -> Dict[str, Any]:
        return self.ab_testing.get_test_results(test_id)

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def train_with_outcome(self, agent_id: str, outcome: Union[TrainingOutcome, Dict[str, Any]]) -> None:
        """Feed a real outcome back into every learner. Never raises."""
        try:
            if isinstance(outcome, dict):
                outcome = TrainingOutcome.from_dict(outcome)
            self.ml.train_with_outcome(agent_id, outcome)
            if outcome.actual_response_time:
                self.load_balancer.track_request_completion(agent_id, outcome.actual_response_time,
                                                            outcome.success)
            if outcome.actual_cost:
                self.cost_optimizer.track_request(agent_id, outcome.actual_cost, outcome.user_id)
            if outcome.request_id:
                self._complete_experiment_results(outcome)
        except Exception as e:
            logger.error(f"Training with outcome for {agent_id} failed: {e}")

    def _complete_experiment_results(self, outcome: TrainingOutcome) -> None:
        with self._history_lock:
            entry = next((h for h in reversed(self._history) if h["request_id"] == outcome.request_id), None)
        if entry is None:
            return
        for test_id in entry["experiments"]:
            self.ab_testing.update_test_result(
                test_id, outcome.request_id,
                response_time=outcome.actual_response_time or None,
                cost=outcome.actual_cost or None,
                quality=outcome.actual_performance,
                success=outcome.success,
                user_satisfaction=outcome.user_satisfaction,
            )

    def learn_from_actual_cost(self, record: HistoricalCostRecord) -> None:
        """Never raises."""
        try:
            self.cost_model.learn_from_actual_cost(record)
        except Exception as e:
            logger.error(f"Cost learning failed: {e}")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def routing_history(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._history_lock:
            history = list(self._history)
        if user_id is not None:
            history = [h for h in history if h["user_id"] == user_id]
        return history

    def get_routing_metrics(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = Counter(self._stats)
            time_total = self._routing_time_total
        routed = stats["routed"]
        return {
            "total_requests": routed + stats["no_agent"],
            "routed_requests": routed,
            "failed_requests": stats["no_agent"],
            "failure_reasons": {k.split(".", 1)[1]: v for k, v in stats.items() if k.startswith("no_agent.")},
            "average_routing_time_ms": round(time_total / routed, 2) if routed else 0.0,
            "strategy_distribution": {k.split(".", 1)[1]: v for k, v in stats.items() if k.startswith("strategy.")},
            "agent_distribution": {k.split(".", 1)[1]: v for k, v in stats.items() if k.startswith("agent.")},
            "history_size": len(self._history),
            "context": self.analyzer.get_analysis_metrics(),
            "load_balancing": self.load_balancer.get_balancing_stats(),
            "cost_model": self.cost_model.get_model_metrics(),
            "cost_optimization": self.cost_optimizer.get_optimization_metrics(),
            "ml_model": self.ml.get_model_metrics(),
            "active_tests": len(self.ab_testing.get_active_tests()),
        }

    async def health_check(self) -> Dict[str, Any]:
        try:
            agents = await asyncio.wait_for(self.pool.get_available_agents(),
                                            timeout=self.config.pool_timeout_seconds)
            pool_status = "healthy" if agents else "degraded"
            available = len(agents)
        except asyncio.TimeoutError:
            pool_status, available = "unhealthy", 0
        except Exception as e:
            logger.error(f"Health check pool fetch failed: {e}")
            pool_status, available = "unhealthy", 0

        status = "healthy" if pool_status == "healthy" else "degraded"
        return {
            "status": status,
            "timestamp": datetime.now().isoformat(),
            "available_agents": available,
            "components": {
                "agent_pool": pool_status,
                "cost_model": f"{self.cost_model.history_size()} records",
                "ab_testing": f"{len(self.ab_testing.get_active_tests())} active tests",
                "ml_model": f"accuracy {self.ml.accuracy:.2f}",
            },
        }


# Global instance
_engine: Optional[RoutingEngine] = None


def init_routing_engine(pool: AgentPool, **kwargs) -> RoutingEngine:
    """Initialize global routing engine"""
    global _engine
    _engine = RoutingEngine(pool, **kwargs)
    logger.info("Routing engine initialized")
    return _engine


def get_routing_engine() -> Optional[RoutingEngine]:
    """Get global routing engine"""
    return _engine
