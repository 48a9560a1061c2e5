"""
Routing API Routes

HTTP surface over a RoutingEngine:
- POST /api/routing/route                 - Route one request to an agent
- POST /api/routing/costs/predict         - Cost predictions for the pool (or given agents)
- GET  /api/routing/tests                 - Active A/B tests
- POST /api/routing/tests                 - Create a draft A/B test
- POST /api/routing/tests/{id}/start      - Start a draft test
- POST /api/routing/tests/{id}/complete   - Complete a test and return its analysis
- GET  /api/routing/tests/{id}/results    - Analysis plus raw results
- POST /api/routing/feedback/outcome      - Real outcome of a routed request
- POST /api/routing/feedback/cost         - Actual cost of a routed request
- GET  /api/routing/metrics               - Engine metrics
- GET  /api/routing/health                - Health check
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, HTTPException, Path
from pydantic import BaseModel, Field

from ab_testing import ABTest, ABTestVariant
from cost_prediction import CostPredictionInput, HistoricalCostRecord
from routing_engine import RoutingEngine
from routing_errors import ExperimentConfigError, NoAgentAvailableError, TestNotFoundError
from routing_models import AgentSnapshot, RoutingRequest
from scoring_strategies import TrainingOutcome

logger = logging.getLogger("routing.routes")

PriorityName = Literal["low", "normal", "high", "critical"]


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class RouteRequestModel(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=100_000)
    user_id: Optional[str] = Field(default=None, max_length=200)
    priority: PriorityName = "normal"
    max_cost: Optional[float] = Field(default=None, ge=0, description="Maximum cost in USD")
    monthly_budget: Optional[float] = Field(default=None, ge=0)
    required_capabilities: List[str] = Field(default_factory=list)
    preferred_capabilities: List[str] = Field(default_factory=list)
    estimated_tokens: Optional[int] = Field(default=None, ge=1)


class CostPredictRequest(BaseModel):
    prompt: str = ""
    agents: Optional[List[Dict[str, Any]]] = Field(
        default=None, description="Agent records; defaults to the currently available pool")
    estimated_tokens: Optional[int] = Field(default=None, ge=1)
    priority: PriorityName = "normal"
    complexity: Optional[float] = Field(default=None, ge=0, le=100)
    user_id: Optional[str] = None
    max_cost: Optional[float] = Field(default=None, ge=0)
    monthly_budget: Optional[float] = Field(default=None, ge=0)


class VariantModel(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    config: Dict[str, Any] = Field(default_factory=dict)
    is_control: bool = False
    description: str = ""


class CreateTestRequest(BaseModel):
    name: str
    description: str = ""
    variants: List[VariantModel]
    traffic_split: Dict[str, float]
    start_date: datetime
    end_date: Optional[datetime] = None
    success_metrics: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class OutcomeFeedback(BaseModel):
    agent_id: str
    actual_performance: float = Field(..., ge=0, le=100)
    actual_cost: float = Field(default=0.0, ge=0)
    actual_response_time: float = Field(default=0.0, ge=0, description="Milliseconds")
    user_satisfaction: Optional[float] = Field(default=None, ge=0, le=1)
    success: bool = True
    request_id: Optional[str] = None
    user_id: Optional[str] = None


class CostFeedback(BaseModel):
    provider: str
    model: str
    actual_cost: float = Field(..., ge=0)
    predicted_cost: float = Field(default=0.0, ge=0)
    user_id: Optional[str] = None
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    request_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

def create_routing_router(engine: RoutingEngine) -> APIRouter:
    """Create FastAPI routes bound to one engine instance."""
    router = APIRouter(prefix="/api/routing", tags=["routing"])

    @router.post("/route")
    async def route(req: RouteRequestModel) -> Dict[str, Any]:
        """Pick an agent. 503 when no agent can serve the request."""
        request = RoutingRequest(
            prompt=req.prompt,
            user_id=req.user_id,
            priority=req.priority,
            max_cost=req.max_cost,
            monthly_budget=req.monthly_budget,
            required_capabilities=tuple(req.required_capabilities),
            preferred_capabilities=tuple(req.preferred_capabilities),
            estimated_tokens=req.estimated_tokens,
        )
        try:
            response = await engine.route_request(request)
        except NoAgentAvailableError as e:
            raise HTTPException(status_code=503, detail={
                "error": "no_agent_available",
                "reason": e.reason,
                "message": str(e),
                "required_capabilities": e.required_capabilities,
            })
        return response.to_dict()

    @router.post("/costs/predict")
    async def predict_costs(req: CostPredictRequest) -> Dict[str, Any]:
        if req.agents is not None:
            try:
                agents = [AgentSnapshot.from_dict(a) for a in req.agents]
            except (KeyError, TypeError, ValueError) as e:
                raise HTTPException(status_code=422, detail=f"Invalid agent record: {e}")
        else:
            try:
                agents = await asyncio.wait_for(engine.pool.get_available_agents(),
                                                timeout=engine.config.pool_timeout_seconds)
            except asyncio.TimeoutError:
                raise HTTPException(status_code=503, detail={
                    "error": "no_agent_available",
                    "reason": NoAgentAvailableError.POOL_TIMEOUT,
                    "message": "Agent pool did not answer in time",
                })
        output = engine.predict_costs(CostPredictionInput(
            agents=agents,
            prompt=req.prompt,
            estimated_tokens=req.estimated_tokens,
            priority=req.priority,
            complexity=req.complexity,
            user_id=req.user_id,
            max_cost=req.max_cost,
            monthly_budget=req.monthly_budget,
        ))
        return output.to_dict()

    @router.get("/tests")
    async def list_tests() -> Dict[str, Any]:
        tests = engine.ab_testing.get_active_tests()
        return {"tests": tests, "count": len(tests)}

    @router.post("/tests", status_code=201)
    async def create_test(req: CreateTestRequest) -> Dict[str, Any]:
        test = ABTest(
            name=req.name,
            description=req.description,
            variants=[ABTestVariant(id=v.id, name=v.name, config=v.config, is_control=v.is_control,
                                    description=v.description) for v in req.variants],
            traffic_split=dict(req.traffic_split),
            start_date=req.start_date,
            end_date=req.end_date,
            success_metrics=list(req.success_metrics),
            metadata=dict(req.metadata),
        )
        try:
            test_id = engine.create_test(test)
        except ExperimentConfigError as e:
            raise HTTPException(status_code=422, detail={"message": str(e), "errors": e.errors})
        return {"test_id": test_id, "status": test.status.value}

    @router.post("/tests/{test_id}/start")
    async def start_test(test_id: str = Path(..., min_length=1)) -> Dict[str, Any]:
        try:
            test = engine.start_test(test_id)
        except TestNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ExperimentConfigError as e:
            raise HTTPException(status_code=409, detail={"message": str(e), "errors": e.errors})
        return test.to_dict()

    @router.post("/tests/{test_id}/complete")
    async def complete_test(test_id: str = Path(..., min_length=1)) -> Dict[str, Any]:
        try:
            analysis = engine.complete_test(test_id)
        except TestNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ExperimentConfigError as e:
            raise HTTPException(status_code=409, detail={"message": str(e), "errors": e.errors})
        return analysis.to_dict()

    @router.get("/tests/{test_id}/results")
    async def test_results(test_id: str = Path(..., min_length=1)) -> Dict[str, Any]:
        try:
            results = engine.get_test_results(test_id)
        except TestNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {
            "test": results["test"].to_dict(),
            "analysis": results["analysis"].to_dict(),
            "raw_results": [r.to_dict() for r in results["raw_results"]],
        }

    @router.post("/feedback/outcome", status_code=202)
    async def outcome_feedback(req: OutcomeFeedback) -> Dict[str, str]:
        engine.train_with_outcome(req.agent_id, TrainingOutcome(
            actual_performance=req.actual_performance,
            actual_cost=req.actual_cost,
            actual_response_time=req.actual_response_time,
            user_satisfaction=req.user_satisfaction,
            success=req.success,
            request_id=req.request_id,
            user_id=req.user_id,
        ))
        return {"status": "accepted"}

    @router.post("/feedback/cost", status_code=202)
    async def cost_feedback(req: CostFeedback) -> Dict[str, str]:
        engine.learn_from_actual_cost(HistoricalCostRecord(
            provider=req.provider.lower(),
            model=req.model,
            actual_cost=req.actual_cost,
            predicted_cost=req.predicted_cost,
            user_id=req.user_id,
            input_tokens=req.input_tokens,
            output_tokens=req.output_tokens,
            request_meta={"request_id": req.request_id} if req.request_id else {},
        ))
        return {"status": "accepted"}

    @router.get("/metrics")
    async def metrics() -> Dict[str, Any]:
        return engine.get_routing_metrics()

    @router.get("/health")
    async def health() -> Dict[str, Any]:
        return await engine.health_check()

    return router
