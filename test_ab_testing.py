"""
Tests for ab_testing.py
Covers test definition validation, lifecycle, deterministic assignment,
result recording and analysis.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ab_statistics import WelchSignificance
from ab_testing import (
    DEFAULT_TEST_ID,
    ABTest,
    ABTestingService,
    ABTestResult,
    ABTestVariant,
    AnalysisStatus,
    TestStatus,
    bucket,
    improvement,
)
from routing_config import RoutingConfig
from routing_errors import ExperimentConfigError, TestNotFoundError


def make_test(**overrides):
    fields = dict(
        name="Cheaper Routing",
        variants=[
            ABTestVariant(id="control", name="Control", config={"routing_strategy": "default"}, is_control=True),
            ABTestVariant(id="treatment", name="Treatment", config={"routing_strategy": "ml-optimized"}),
        ],
        traffic_split={"control": 50, "treatment": 50},
        start_date=datetime.now() + timedelta(days=1),
        success_metrics=["quality"],
    )
    fields.update(overrides)
    return ABTest(**fields)


def record(service, test_id, variant_id, n, **metrics):
    for i in range(n):
        service.record_test_result(ABTestResult(test_id=test_id, variant_id=variant_id,
                                                request_id=f"{variant_id}-{i}", **metrics))


@pytest.fixture
def config():
    return RoutingConfig(seed_default_experiment=False)


@pytest.fixture
def service(config):
    return ABTestingService(config)


@pytest.fixture
def running(service):
    test_id = service.create_test(make_test())
    service.start_test(test_id)
    return test_id


class TestDefaultExperiment:
    """Seeded ML vs standard experiment"""

    def test_seeded_as_draft(self):
        service = ABTestingService(RoutingConfig())
        test = service.get_test(DEFAULT_TEST_ID)
        assert test.status == TestStatus.DRAFT
        assert test.traffic_split == {"control_standard": 50, "test_ml_optimized": 50}
        assert test.control.id == "control_standard"

    def test_start_sets_end_date(self):
        service = ABTestingService(RoutingConfig())
        test = service.start_test(DEFAULT_TEST_ID)
        assert test.status == TestStatus.RUNNING
        assert test.end_date - test.start_date == timedelta(days=7)

    def test_not_seeded_when_disabled(self, service):
        with pytest.raises(TestNotFoundError):
            service.get_test(DEFAULT_TEST_ID)


class TestCreateValidation:
    """create_test reports every problem at once"""

    def test_valid_definition(self, service):
        test_id = service.create_test(make_test())
        assert test_id.startswith("test_")
        assert service.get_test(test_id).status == TestStatus.DRAFT

    def test_collects_all_errors(self, service):
        bad = make_test(
            variants=[ABTestVariant(id="only", name="Only", config={})],
            traffic_split={"only": 90},
            start_date=datetime.now() - timedelta(days=1),
        )
        with pytest.raises(ExperimentConfigError) as exc:
            service.create_test(bad)
        errors = exc.value.errors
        assert "At least 2 variants are required" in errors
        assert any("control" in e for e in errors)
        assert any("sum to 100" in e for e in errors)
        assert "Start date must be in the future" in errors

    def test_split_must_name_variants(self, service):
        with pytest.raises(ExperimentConfigError) as exc:
            service.create_test(make_test(traffic_split={"control": 50, "other": 50}))
        assert exc.value.errors == ["Traffic split must name every variant exactly once"]

    def test_two_controls_rejected(self, service):
        variants = [ABTestVariant(id="a", name="A", config={"x": 1}, is_control=True),
                    ABTestVariant(id="b", name="B", config={"x": 2}, is_control=True)]
        with pytest.raises(ExperimentConfigError):
            service.create_test(make_test(variants=variants, traffic_split={"a": 50, "b": 50}))

    def test_split_tolerance(self, service):
        split = {"control": 33.33, "treatment": 66.7}
        assert service.create_test(make_test(traffic_split=split))

    def test_weights_out_of_range_rejected(self, service):
        """Weights summing to 100 are still rejected if one is negative or over 100"""
        with pytest.raises(ExperimentConfigError) as exc:
            service.create_test(make_test(traffic_split={"control": 150, "treatment": -50}))
        assert exc.value.errors == ["Traffic weights must be between 0 and 100 (check: control, treatment)"]

    def test_aware_start_date_normalized(self, service):
        """Timezone-aware dates are converted to local time, not compared naively"""
        start = datetime.now(timezone.utc) + timedelta(days=1)
        test_id = service.create_test(make_test(start_date=start))
        stored = service.get_test(test_id).start_date
        assert stored.tzinfo is None
        assert stored == start.astimezone().replace(tzinfo=None)

    def test_aware_past_start_date_rejected(self, service):
        start = datetime.now(timezone.utc) - timedelta(days=1)
        with pytest.raises(ExperimentConfigError) as exc:
            service.create_test(make_test(start_date=start))
        assert exc.value.errors == ["Start date must be in the future"]


class TestLifecycle:
    def test_start_requires_config_and_metrics(self, service):
        variants = [ABTestVariant(id="control", name="Control", config={}, is_control=True),
                    ABTestVariant(id="treatment", name="Treatment", config={"a": 1})]
        test_id = service.create_test(make_test(variants=variants, success_metrics=[]))
        with pytest.raises(ExperimentConfigError) as exc:
            service.start_test(test_id)
        assert "Variant control has no configuration" in exc.value.errors
        assert "No success metrics defined" in exc.value.errors

    def test_cannot_start_twice(self, service, running):
        with pytest.raises(ExperimentConfigError):
            service.start_test(running)

    def test_pause_resume(self, service, running):
        assert service.pause_test(running).status == TestStatus.PAUSED
        assert service.assign_user_to_variant("u1", running) is None
        assert service.resume_test(running).status == TestStatus.RUNNING

    def test_cancel_completed_rejected(self, service, running):
        service.complete_test(running)
        with pytest.raises(ExperimentConfigError):
            service.cancel_test(running)

    def test_complete_moves_to_history(self, service, running):
        analysis = service.complete_test(running)
        assert analysis.status == AnalysisStatus.INSUFFICIENT_DATA
        assert service.get_test(running).status == TestStatus.COMPLETED
        assert service.get_active_tests() == []
        assert service.get_completed_tests()[0]["test"]["id"] == running

    def test_unknown_test(self, service):
        with pytest.raises(TestNotFoundError):
            service.start_test("nope")

    def test_expired_test_completes_on_assignment(self, service, running):
        service.get_test(running).end_date = datetime.now() - timedelta(seconds=1)
        assert service.assign_user_to_variant("u1", running) is None
        assert service.get_test(running).status == TestStatus.COMPLETED


class TestAssignment:
    """Deterministic hash-bucket assignment"""

    def test_bucket_range(self):
        assert all(0 <= bucket(f"user-{i}", "t") < 100 for i in range(500))

    def test_draft_test_assigns_nobody(self, service):
        test_id = service.create_test(make_test())
        assert service.assign_user_to_variant("u1", test_id) is None

    def test_assignment_is_stable(self, service, running):
        first = service.assign_user_to_variant("user-42", running)
        again = service.assign_user_to_variant("user-42", running)
        assert first.variant_id == again.variant_id

    def test_assignment_survives_new_service(self, config, running, service):
        """Same user and test name land in the same variant on any instance"""
        other = ABTestingService(config)
        other_id = other.create_test(make_test())
        other.start_test(other_id)
        for i in range(50):
            user = f"user-{i}"
            assert (service.assign_user_to_variant(user, running).variant_id
                    == other.assign_user_to_variant(user, other_id).variant_id)

    def test_split_within_tolerance(self, service, running):
        """10,000 users split 50/50 within 3 points"""
        counts = {"control": 0, "treatment": 0}
        for i in range(10_000):
            counts[service.assign_user_to_variant(f"user-{i}", running).variant_id] += 1
        assert abs(counts["control"] / 10_000 - 0.5) <= 0.03

    def test_uneven_split(self, service):
        test_id = service.create_test(make_test(traffic_split={"control": 90, "treatment": 10}))
        service.start_test(test_id)
        treatment = sum(1 for i in range(10_000)
                        if service.assign_user_to_variant(f"u{i}", test_id).variant_id == "treatment")
        assert abs(treatment / 10_000 - 0.10) <= 0.03

    def test_excluded_users(self, service):
        test_id = service.create_test(make_test(metadata={"exclude_users": ["blocked"]}))
        service.start_test(test_id)
        assert service.assign_user_to_variant("blocked", test_id) is None
        assert service.assign_user_to_variant("allowed", test_id) is not None

    def test_context_filters(self, service):
        test_id = service.create_test(make_test(metadata={"context_filters": {"domain": "technology"}}))
        service.start_test(test_id)
        assert service.assign_user_to_variant("u1", test_id, {"domain": "business"}) is None
        assert service.assign_user_to_variant("u1", test_id, {"domain": "technology"}) is not None

    def test_user_assignments_across_tests(self, service, running):
        second = service.create_test(make_test(name="Second"))
        service.start_test(second)
        assignments = service.get_user_assignments("u1")
        assert {a.test_id for a in assignments} == {running, second}

    def test_assignment_cache_bounded(self):
        """Thousands of users keep at most tracked_users_cap cached assignments"""
        service = ABTestingService(RoutingConfig(seed_default_experiment=False, tracked_users_cap=100))
        test_id = service.create_test(make_test())
        service.start_test(test_id)
        first = service.assign_user_to_variant("user-0", test_id).variant_id
        for i in range(1, 2000):
            service.get_user_assignments(f"user-{i}")
        assert service.tracked_users() == 100
        assert service.assign_user_to_variant("user-0", test_id).variant_id == first


class TestResults:
    def test_ignored_when_not_running(self, service):
        test_id = service.create_test(make_test())
        assert not service.record_test_result(ABTestResult(test_id, "control", "r1"))

    def test_unknown_test_ignored(self, service):
        assert not service.record_test_result(ABTestResult("missing", "control", "r1"))

    def test_update_provisional(self, service, running):
        service.record_test_result(ABTestResult(running, "control", "r1", quality=10, provisional=True))
        assert service.update_test_result(running, "r1", quality=90.0, cost=None)
        raw = service.get_test_results(running)["raw_results"][0]
        assert raw.quality == 90.0
        assert raw.cost == 0.0
        assert not raw.provisional

    def test_update_unknown_request(self, service, running):
        assert not service.update_test_result(running, "missing", quality=1.0)


class TestAnalysis:
    def test_insufficient_below_minimum(self, service, running):
        """29 results is never enough"""
        record(service, running, "control", 15, quality=50)
        record(service, running, "treatment", 14, quality=90)
        analysis = service.analyze_test(running)
        assert analysis.status == AnalysisStatus.INSUFFICIENT_DATA
        assert analysis.confidence == 0.0
        assert analysis.recommendations[0] == "Continue test to gather more data"

    def test_not_significant_below_threshold_total(self, service, running):
        """Threshold test gives p=0.15 at 100 or fewer samples"""
        record(service, running, "control", 20, quality=50)
        record(service, running, "treatment", 20, quality=90)
        analysis = service.analyze_test(running)
        assert analysis.status == AnalysisStatus.NO_SIGNIFICANT_DIFFERENCE
        assert analysis.p_value == 0.15

    def test_significant_improvement(self, service, running):
        record(service, running, "control", 60, quality=50)
        record(service, running, "treatment", 60, quality=80)
        analysis = service.analyze_test(running)
        assert analysis.status == AnalysisStatus.SIGNIFICANT_IMPROVEMENT
        assert analysis.confidence == pytest.approx(0.95)
        treatment = next(r for r in analysis.results if r.variant_id == "treatment")
        assert treatment.improvement["quality"].percentage == pytest.approx(60.0)
        assert analysis.recommendations[0] == "Roll out Treatment as the new default"

    def test_significant_degradation(self, service, running):
        record(service, running, "control", 60, quality=80)
        record(service, running, "treatment", 60, quality=50)
        assert service.analyze_test(running).status == AnalysisStatus.SIGNIFICANT_DEGRADATION

    def test_lower_cost_is_improvement(self, service, running):
        """Cost improvements are signed so lower is better"""
        record(service, running, "control", 60, quality=70, cost=0.02)
        record(service, running, "treatment", 60, quality=70, cost=0.01)
        analysis = service.analyze_test(running)
        treatment = next(r for r in analysis.results if r.variant_id == "treatment")
        assert treatment.improvement["cost"].percentage == pytest.approx(50.0)
        assert analysis.status == AnalysisStatus.SIGNIFICANT_IMPROVEMENT

    def test_welch_no_difference(self, config):
        service = ABTestingService(config, significance=WelchSignificance())
        test_id = service.create_test(make_test())
        service.start_test(test_id)
        record(service, test_id, "control", 60, quality=70)
        record(service, test_id, "treatment", 60, quality=70)
        analysis = service.analyze_test(test_id)
        assert analysis.status == AnalysisStatus.NO_SIGNIFICANT_DIFFERENCE
        assert analysis.method == "welch"

    def test_periodic_analysis(self, config):
        config.analysis_every = 40
        service = ABTestingService(config)
        test_id = service.create_test(make_test())
        service.start_test(test_id)
        record(service, test_id, "control", 20, quality=50)
        assert service.latest_analysis(test_id) is None
        record(service, test_id, "treatment", 20, quality=50)
        assert service.latest_analysis(test_id) is not None

    def test_analysis_to_dict(self, service, running):
        record(service, running, "control", 20, quality=50)
        record(service, running, "treatment", 20, quality=60)
        data = service.analyze_test(running).to_dict()
        assert data["statistical_data"]["sample_size"] == {"control": 20, "treatment": 20}
        assert data["status"] == "no_significant_difference"


class TestImprovement:
    def test_zero_control(self):
        assert improvement(0, 10).percentage == 0.0

    def test_threshold(self):
        assert not improvement(100, 104).significant
        assert improvement(100, 106).significant
