"""
A/B Testing - experiment framework for routing strategies.

Lifecycle per test:

    draft -> running -> paused -> running
                     -> completed   (explicitly, or once end_date passes)
                     -> cancelled

Users are assigned deterministically: md5(f"{user_id}_{test.name}") mod 100
is mapped over the cumulative traffic split in variant declaration order,
and the result is cached per (user, test) until the test completes.

Results are analyzed every `analysis_every` recordings and on demand. Fewer
than `min_sample_size` results always yields insufficient_data.
"""

import hashlib
import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ab_statistics import SignificanceResult, SignificanceTest, get_significance_test
from keyed_lock import KeyedLock
from routing_config import RoutingConfig, get_routing_config
from routing_errors import ExperimentConfigError, TestNotFoundError

logger = logging.getLogger("routing.ab_testing")

DEFAULT_TEST_ID = "default_ml_test"

# success metric name -> (result attribute, higher is better)
METRICS = {
    "quality": ("quality", True),
    "responseTime": ("response_time", False),
    "response_time": ("response_time", False),
    "cost": ("cost", False),
    "successRate": ("success", True),
    "success_rate": ("success", True),
}


class TestStatus(str, Enum):
    __test__ = False  # not a pytest test class

    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AnalysisStatus(str, Enum):
    INSUFFICIENT_DATA = "insufficient_data"
    NO_SIGNIFICANT_DIFFERENCE = "no_significant_difference"
    SIGNIFICANT_IMPROVEMENT = "significant_improvement"
    SIGNIFICANT_DEGRADATION = "significant_degradation"


@dataclass
class ABTestVariant:
    id: str
    name: str
    config: Dict[str, Any]
    is_control: bool = False
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "description": self.description,
                "config": self.config, "is_control": self.is_control}


@dataclass
class ABTest:
    name: str
    variants: List[ABTestVariant]
    traffic_split: Dict[str, float]
    start_date: datetime
    success_metrics: List[str]
    description: str = ""
    end_date: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    status: TestStatus = TestStatus.DRAFT
    id: str = ""

    @property
    def control(self) -> Optional[ABTestVariant]:
        return next((v for v in self.variants if v.is_control), None)

    def variant(self, variant_id: str) -> Optional[ABTestVariant]:
        return next((v for v in self.variants if v.id == variant_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "variants": [v.to_dict() for v in self.variants],
            "traffic_split": dict(self.traffic_split),
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "success_metrics": list(self.success_metrics),
            "metadata": dict(self.metadata),
        }


@dataclass
class ABTestResult:
    """One observation for a variant. Provisional until real metrics arrive."""
    __test__ = False

    test_id: str
    variant_id: str
    request_id: str
    response_time: float = 0.0
    cost: float = 0.0
    quality: float = 0.0
    success: bool = True
    user_id: Optional[str] = None
    user_satisfaction: Optional[float] = None
    error_rate: float = 0.0
    throughput: float = 0.0
    provisional: bool = False
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "variant_id": self.variant_id,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "response_time": self.response_time,
            "cost": self.cost,
            "quality": self.quality,
            "success": self.success,
            "user_satisfaction": self.user_satisfaction,
            "provisional": self.provisional,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class MetricImprovement:
    percentage: float
    significant: bool


@dataclass
class VariantAnalysis:
    variant_id: str
    name: str
    is_control: bool
    avg_response_time: float
    avg_cost: float
    avg_quality: float
    success_rate: float
    sample_size: int
    conversions: int
    improvement: Dict[str, MetricImprovement] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant_id": self.variant_id,
            "name": self.name,
            "is_control": self.is_control,
            "metrics": {
                "avg_response_time": self.avg_response_time,
                "avg_cost": self.avg_cost,
                "avg_quality": self.avg_quality,
                "success_rate": self.success_rate,
                "sample_size": self.sample_size,
                "conversions": self.conversions,
            },
            "improvement": {k: {"percentage": v.percentage, "significant": v.significant}
                            for k, v in self.improvement.items()},
        }


@dataclass
class ABTestAnalysis:
    test_id: str
    status: AnalysisStatus
    confidence: float
    results: List[VariantAnalysis]
    recommendations: List[str]
    sample_size: Dict[str, int]
    significance_level: float
    p_value: float
    effect_size: float
    confidence_interval: tuple = (0.0, 0.0)
    method: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "status": self.status.value,
            "confidence": self.confidence,
            "results": [r.to_dict() for r in self.results],
            "recommendations": list(self.recommendations),
            "statistical_data": {
                "sample_size": dict(self.sample_size),
                "significance_level": self.significance_level,
                "p_value": self.p_value,
                "effect_size": self.effect_size,
                "confidence_interval": list(self.confidence_interval),
                "method": self.method,
            },
        }


@dataclass
class VariantAssignment:
    test_id: str
    test_name: str
    variant_id: str
    variant_name: str
    config: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"test_id": self.test_id, "test_name": self.test_name, "variant_id": self.variant_id,
                "variant_name": self.variant_name, "config": self.config}


def bucket(user_id: str, test_name: str) -> int:
    """Stable 0-99 bucket for a (user, test) pair."""
    digest = hashlib.md5(f"{user_id}_{test_name}".encode()).hexdigest()
    return int(digest, 16) % 100


def _local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetimes become local naive ones, matching datetime.now()."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def improvement(control_value: float, test_value: float, higher_is_better: bool = True,
                threshold: float = 5.0) -> MetricImprovement:
    """Relative change vs control, signed so positive always means better."""
    if control_value == 0:
        return MetricImprovement(0.0, False)
    raw = (test_value - control_value) / control_value * 100
    percentage = raw if higher_is_better else -raw
    return MetricImprovement(percentage, abs(percentage) > threshold)


def default_experiment() -> ABTest:
    """ML routing vs the standard weighted routing, 50/50."""
    return ABTest(
        id=DEFAULT_TEST_ID,
        name="ML Routing vs Standard Routing",
        description="Compare ML-optimized routing with standard capability-based routing",
        variants=[
            ABTestVariant(
                id="control_standard",
                name="Standard Routing",
                description="Current capability-based routing algorithm",
                is_control=True,
                config={
                    "routing_strategy": "default",
                    "weight_adjustments": {"capability": 0.4, "cost": 0.35, "load": 0.25},
                    "fallback_behavior": "conservative",
                },
            ),
            ABTestVariant(
                id="test_ml_optimized",
                name="ML-Optimized Routing",
                description="Machine learning optimized routing with contextual analysis",
                config={
                    "routing_strategy": "ml-optimized",
                    "weight_adjustments": {"ml_prediction": 0.6, "dynamic": 0.4},
                    "algorithm_params": {"use_context_analysis": True, "adaptive_weights": True},
                    "fallback_behavior": "default",
                },
            ),
        ],
        traffic_split={"control_standard": 50, "test_ml_optimized": 50},
        start_date=datetime.now() + timedelta(days=1),
        success_metrics=["responseTime", "cost", "quality", "userSatisfaction"],
        metadata={"auto_start": True, "max_duration_days": 7},
    )


class ABTestingService:
    """Holds experiments, assignments and results in memory.

    Test state and results are guarded per test id. Cached assignments are an
    LRU bounded by tracked_users_cap; an evicted user hashes back to the same
    variant.
    """

    def __init__(self, config: Optional[RoutingConfig] = None,
                 significance: Optional[SignificanceTest] = None):
        self.config = config or get_routing_config()
        self.significance = significance or get_significance_test(self.config.significance_test)
        self._tests: Dict[str, ABTest] = {}
        self._results: Dict[str, List[ABTestResult]] = {}
        self._assignments: "OrderedDict[str, Dict[str, str]]" = OrderedDict()  # user -> test -> variant
        self._latest: Dict[str, ABTestAnalysis] = {}
        self._history: List[Dict[str, Any]] = []
        self._registry_lock = threading.Lock()
        self._test_locks = KeyedLock()
        self._assignment_lock = threading.Lock()

        if self.config.seed_default_experiment:
            self._register(default_experiment())
            logger.info("Default A/B test initialized: ML Routing vs Standard Routing")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _register(self, test: ABTest) -> None:
        with self._registry_lock:
            self._tests[test.id] = test
            self._results[test.id] = []

    def get_test(self, test_id: str) -> ABTest:
        with self._registry_lock:
            test = self._tests.get(test_id)
        if test is None:
            raise TestNotFoundError(test_id)
        return test

    def create_test(self, test: ABTest) -> str:
        """Validate and register a draft test. Returns its id."""
        test.start_date = _local_naive(test.start_date)
        test.end_date = _local_naive(test.end_date)
        errors = self._validate_definition(test)
        if errors:
            logger.warning(f"Rejected A/B test '{test.name}': {errors}")
            raise ExperimentConfigError(f"Invalid A/B test: {'; '.join(errors)}", errors)

        test.id = test.id or f"test_{uuid.uuid4().hex[:12]}"
        test.status = TestStatus.DRAFT
        self._register(test)
        logger.info(f"A/B test created: {test.id} '{test.name}' ({len(test.variants)} variants, "
                    f"starts {test.start_date.isoformat()})")
        return test.id

    @staticmethod
    def _validate_definition(test: ABTest) -> List[str]:
        errors = []
        if not test.name or not test.name.strip():
            errors.append("Test name is required")
        if len(test.variants) < 2:
            errors.append("At least 2 variants are required")
        controls = sum(1 for v in test.variants if v.is_control)
        if controls != 1:
            errors.append(f"Exactly one variant must be marked as control (found {controls})")
        variant_ids = [v.id for v in test.variants]
        if len(set(variant_ids)) != len(variant_ids):
            errors.append("Variant ids must be unique")
        if set(test.traffic_split) != set(variant_ids):
            errors.append("Traffic split must name every variant exactly once")
        out_of_range = sorted(k for k, w in test.traffic_split.items() if w < 0 or w > 100)
        if out_of_range:
            errors.append(f"Traffic weights must be between 0 and 100 (check: {', '.join(out_of_range)})")
        total = sum(test.traffic_split.values())
        if abs(total - 100) > 0.1:
            errors.append(f"Traffic split must sum to 100% (got {total:g})")
        if test.start_date <= datetime.now():
            errors.append("Start date must be in the future")
        return errors

    def start_test(self, test_id: str) -> ABTest:
        test = self.get_test(test_id)
        with self._test_locks.hold(test_id):
            if test.status != TestStatus.DRAFT:
                raise ExperimentConfigError(f"Cannot start test in status: {test.status.value}")

            errors = [f"Variant {v.id} has no configuration" for v in test.variants if not v.config]
            if not test.success_metrics:
                errors.append("No success metrics defined")
            if errors:
                raise ExperimentConfigError(f"Test {test_id} is not ready: {'; '.join(errors)}", errors)

            test.status = TestStatus.RUNNING
            test.start_date = datetime.now()
            max_days = test.metadata.get("max_duration_days")
            if test.end_date is None and max_days:
                test.end_date = test.start_date + timedelta(days=max_days)

        logger.info(f"A/B test started: {test_id} '{test.name}' variants={[v.name for v in test.variants]}")
        return test

    def _transition(self, test_id: str, allowed: Sequence[TestStatus], target: TestStatus) -> ABTest:
        test = self.get_test(test_id)
        with self._test_locks.hold(test_id):
            if test.status not in allowed:
                raise ExperimentConfigError(
                    f"Cannot move test {test_id} from {test.status.value} to {target.value}")
            test.status = target
        logger.info(f"A/B test {test_id} is now {target.value}")
        return test

    def pause_test(self, test_id: str) -> ABTest:
        return self._transition(test_id, [TestStatus.RUNNING], TestStatus.PAUSED)

    def resume_test(self, test_id: str) -> ABTest:
        return self._transition(test_id, [TestStatus.PAUSED], TestStatus.RUNNING)

    def cancel_test(self, test_id: str) -> ABTest:
        test = self._transition(test_id, [TestStatus.DRAFT, TestStatus.RUNNING, TestStatus.PAUSED],
                                TestStatus.CANCELLED)
        self._clear_assignments(test_id)
        return test

    def complete_test(self, test_id: str) -> ABTestAnalysis:
        test = self._transition(test_id, [TestStatus.RUNNING, TestStatus.PAUSED], TestStatus.COMPLETED)
        test.end_date = datetime.now()
        analysis = self.analyze_test(test_id)
        with self._registry_lock:
            self._history.append({"test": test.to_dict(), "analysis": analysis.to_dict(),
                                  "completed_at": datetime.now().isoformat()})
        self._clear_assignments(test_id)
        logger.info(f"A/B test completed: {test_id} '{test.name}' -> {analysis.status.value}")
        return analysis

    def get_active_tests(self) -> List[Dict[str, Any]]:
        with self._registry_lock:
            tests = [t for t in self._tests.values()
                     if t.status not in (TestStatus.COMPLETED, TestStatus.CANCELLED)]
        active = []
        for test in tests:
            with self._test_locks.hold(test.id):
                results = self._results.get(test.id, [])
                count = len(results)
                last = results[-1].timestamp if results else test.start_date
            active.append({"test_id": test.id, "config": test.to_dict(),
                           "result_count": count, "last_activity": last.isoformat()})
        return active

    def get_completed_tests(self) -> List[Dict[str, Any]]:
        with self._registry_lock:
            return list(self._history)

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def assign_user_to_variant(self, user_id: str, test_id: str,
                               context: Optional[Dict[str, Any]] = None) -> Optional[VariantAssignment]:
        """Variant for one user in one running test, or None if not participating."""
        test = self.get_test(test_id)
        if test.status != TestStatus.RUNNING:
            return None
        if test.end_date and datetime.now() > test.end_date:
            try:
                self.complete_test(test_id)
            except ExperimentConfigError:
                pass  # completed concurrently
            return None
        if not self._is_eligible(user_id, test, context or {}):
            return None

        with self._assignment_lock:
            user_tests = self._assignments.get(user_id)
            if user_tests is None:
                user_tests = self._assignments[user_id] = {}
            else:
                self._assignments.move_to_end(user_id)
            variant_id = user_tests.get(test_id)
            if variant_id is None:
                variant_id = self._pick_variant(user_id, test)
                user_tests[test_id] = variant_id
            while len(self._assignments) > self.config.tracked_users_cap:
                self._assignments.popitem(last=False)

        variant = test.variant(variant_id)
        if variant is None:
            return None
        return VariantAssignment(test.id, test.name, variant.id, variant.name, variant.config)

    def get_user_assignments(self, user_id: str,
                             context: Optional[Dict[str, Any]] = None) -> List[VariantAssignment]:
        """Assignments across every running test. Never raises."""
        with self._registry_lock:
            test_ids = [t.id for t in self._tests.values() if t.status == TestStatus.RUNNING]
        assignments = []
        for test_id in test_ids:
            try:
                assignment = self.assign_user_to_variant(user_id, test_id, context)
            except Exception as e:
                logger.error(f"Variant assignment failed for user={user_id} test={test_id}: {e}")
                continue
            if assignment is not None:
                assignments.append(assignment)
        return assignments

    @staticmethod
    def _pick_variant(user_id: str, test: ABTest) -> str:
        point = bucket(user_id, test.name)
        cumulative = 0.0
        for variant in test.variants:
            cumulative += test.traffic_split.get(variant.id, 0)
            if point < cumulative:
                return variant.id
        return test.variants[0].id

    @staticmethod
    def _is_eligible(user_id: str, test: ABTest, context: Dict[str, Any]) -> bool:
        meta = test.metadata
        if user_id in meta.get("exclude_users", ()):
            return False
        include_only = meta.get("include_only_users") or ()
        if include_only and user_id not in include_only:
            return False
        for key, expected in (meta.get("context_filters") or {}).items():
            if context.get(key) != expected:
                return False
        return True

    def tracked_users(self) -> int:
        with self._assignment_lock:
            return len(self._assignments)

    def _clear_assignments(self, test_id: str) -> None:
        with self._assignment_lock:
            for user_tests in self._assignments.values():
                user_tests.pop(test_id, None)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def record_test_result(self, result: ABTestResult) -> bool:
        """Append a result to a running test. Returns False if it was ignored."""
        try:
            test = self.get_test(result.test_id)
        except TestNotFoundError:
            logger.warning(f"Result for unknown test {result.test_id} ignored")
            return False
        if test.status != TestStatus.RUNNING:
            return False

        variant = test.variant(result.variant_id)
        result.metadata.setdefault("test_name", test.name)
        result.metadata.setdefault("variant_name", variant.name if variant else None)

        with self._test_locks.hold(test.id):
            results = self._results.setdefault(test.id, [])
            results.append(result)
            count = len(results)
        logger.debug(f"Result recorded: test={test.id} variant={result.variant_id} "
                     f"request={result.request_id} success={result.success}")

        if count % self.config.analysis_every == 0:
            try:
                self.analyze_test(test.id)
            except Exception as e:
                logger.error(f"Periodic analysis of {test.id} failed: {e}")
        return True

    def update_test_result(self, test_id: str, request_id: str, **metrics: Any) -> bool:
        """Replace a provisional result's metrics with the real outcome."""
        with self._test_locks.hold(test_id):
            for result in reversed(self._results.get(test_id, [])):
                if result.request_id == request_id:
                    for key, value in metrics.items():
                        if hasattr(result, key) and value is not None:
                            setattr(result, key, value)
                    result.provisional = False
                    return True
        return False

    def get_test_results(self, test_id: str) -> Dict[str, Any]:
        test = self.get_test(test_id)
        analysis = self.analyze_test(test_id)
        with self._test_locks.hold(test_id):
            raw = list(self._results.get(test_id, []))
        return {"test": test, "analysis": analysis, "raw_results": raw}

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_test(self, test_id: str) -> ABTestAnalysis:
        test = self.get_test(test_id)
        with self._test_locks.hold(test_id):
            results = list(self._results.get(test_id, []))

        alpha = self.config.significance_level
        if len(results) < self.config.min_sample_size:
            analysis = ABTestAnalysis(
                test_id=test_id,
                status=AnalysisStatus.INSUFFICIENT_DATA,
                confidence=0.0,
                results=[],
                recommendations=self._recommendations(AnalysisStatus.INSUFFICIENT_DATA, [], len(results)),
                sample_size={},
                significance_level=alpha,
                p_value=1.0,
                effect_size=0.0,
                method=self.significance.name,
            )
            self._latest[test_id] = analysis
            return analysis

        grouped = {v.id: [r for r in results if r.variant_id == v.id] for v in test.variants}
        control = test.control or test.variants[0]
        control_analysis = self._aggregate(control, grouped[control.id])
        analyses = [self._variant_analysis(v, grouped[v.id], control_analysis) for v in test.variants]

        stats = self._significance(test, grouped, control, len(results))
        status = self._status(analyses, stats.p_value, alpha)

        analysis = ABTestAnalysis(
            test_id=test_id,
            status=status,
            confidence=1 - alpha if stats.p_value < alpha else 0.0,
            results=analyses,
            recommendations=self._recommendations(status, analyses, len(results)),
            sample_size={a.variant_id: a.sample_size for a in analyses},
            significance_level=alpha,
            p_value=stats.p_value,
            effect_size=stats.effect_size,
            confidence_interval=stats.confidence_interval,
            method=stats.method,
        )
        self._latest[test_id] = analysis
        logger.info(f"A/B analysis {test_id}: {status.value} (n={len(results)}, p={stats.p_value:.4f}, "
                    f"method={stats.method})")
        return analysis

    def latest_analysis(self, test_id: str) -> Optional[ABTestAnalysis]:
        return self._latest.get(test_id)

    @staticmethod
    def _aggregate(variant: ABTestVariant, results: List[ABTestResult]) -> VariantAnalysis:
        n = len(results)
        if n == 0:
            return VariantAnalysis(variant.id, variant.name, variant.is_control, 0.0, 0.0, 0.0, 0.0, 0, 0)
        successes = sum(1 for r in results if r.success)
        return VariantAnalysis(
            variant_id=variant.id,
            name=variant.name,
            is_control=variant.is_control,
            avg_response_time=sum(r.response_time for r in results) / n,
            avg_cost=sum(r.cost for r in results) / n,
            avg_quality=sum(r.quality for r in results) / n,
            success_rate=successes / n,
            sample_size=n,
            conversions=successes,
        )

    def _variant_analysis(self, variant: ABTestVariant, results: List[ABTestResult],
                          control: VariantAnalysis) -> VariantAnalysis:
        analysis = self._aggregate(variant, results)
        analysis.improvement = {
            "response_time": improvement(control.avg_response_time, analysis.avg_response_time, False),
            "cost": improvement(control.avg_cost, analysis.avg_cost, False),
            "quality": improvement(control.avg_quality, analysis.avg_quality, True),
            "success_rate": improvement(control.success_rate, analysis.success_rate, True),
        }
        return analysis

    def _significance(self, test: ABTest, grouped: Dict[str, List[ABTestResult]],
                      control: ABTestVariant, total: int) -> SignificanceResult:
        """Strongest (lowest p) comparison of any variant against control on the primary metric."""
        attribute = "quality"
        for metric in test.success_metrics:
            if metric in METRICS:
                attribute = METRICS[metric][0]
                break

        def samples(results):
            return [float(getattr(r, attribute)) for r in results]

        control_samples = samples(grouped[control.id])
        best = None
        for variant in test.variants:
            if variant.id == control.id:
                continue
            stats = self.significance.evaluate(control_samples, samples(grouped[variant.id]), total)
            if best is None or stats.p_value < best.p_value:
                best = stats
        return best or SignificanceResult(1.0, 0.0, (0.0, 0.0), self.significance.name)

    @staticmethod
    def _status(analyses: List[VariantAnalysis], p_value: float, alpha: float) -> AnalysisStatus:
        if p_value >= alpha:
            return AnalysisStatus.NO_SIGNIFICANT_DIFFERENCE
        for a in analyses:
            if a.is_control:
                continue
            for metric in ("quality", "response_time", "cost"):
                change = a.improvement.get(metric)
                if change and change.significant and change.percentage > 0:
                    return AnalysisStatus.SIGNIFICANT_IMPROVEMENT
        return AnalysisStatus.SIGNIFICANT_DEGRADATION

    def _recommendations(self, status: AnalysisStatus, analyses: List[VariantAnalysis],
                         samples: int) -> List[str]:
        if status == AnalysisStatus.INSUFFICIENT_DATA:
            return ["Continue test to gather more data",
                    f"Need at least {self.config.min_sample_size} samples before drawing conclusions "
                    f"(have {samples})"]
        if status == AnalysisStatus.NO_SIGNIFICANT_DIFFERENCE:
            return ["No significant difference detected between variants",
                    "Consider testing more dramatic changes",
                    "May proceed with preferred variant based on other factors"]
        if status == AnalysisStatus.SIGNIFICANT_IMPROVEMENT:
            candidates = [a for a in analyses if not a.is_control]
            best = max(candidates, key=lambda a: sum(
                m.percentage for m in a.improvement.values() if m.significant))
            return [f"Roll out {best.name} as the new default",
                    "Monitor performance closely during rollout"]
        return ["Stop test and revert to control variant",
                "Investigate causes of performance degradation"]
