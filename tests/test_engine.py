import pytest
import requests

from adaptation.engine import AdaptationDecisionEngine, sort_by_priority
from adaptation.refinement import RefinerPrediction
from adaptation.simulation import SimulationRunner
from adaptation.weights import WeightRegistry
from config import BASELINE_RULE_SET_VERSION
from schemas.learning import Outcome, RuleSetVersion, RuleWeightState
from schemas.recommendation import (
    ChangeTarget,
    Priority,
    RecommendationType,
    RuleKind,
)
from schemas.snapshot import WorkoutPlan
from services import llm
from services.adaptation_store import InMemoryAdaptationStore

LOW_ENGAGEMENT = {"weekly_consistency": 0.3, "streak": 2}


class BrokenSimulation:
    def run(self, *args, **kwargs):
        raise RuntimeError("simulation backend exploded")


class FakeResponse:
    status_code = 200
    text = ""

    def __init__(self, payload):
        self._payload = payload

    def json(self):
        return self._payload

    def raise_for_status(self):
        pass


class FixedRefiner:
    def __init__(self, prediction):
        self.prediction = prediction

    def predict(self, scores, recommendation):
        return self.prediction


# ======================================================
# ANALYSE
# ======================================================


def test_neutral_user_gets_no_recommendation(engine, make_snapshot):
    assert engine.analyze(make_snapshot()) == []


def test_critical_user_gets_compound_recovery_first(engine, critical_snapshot):
    recs = engine.analyze(critical_snapshot)

    assert [(r.type, r.priority) for r in recs] == [
        (RecommendationType.recovery, Priority.critical),
        (RecommendationType.rest_day, Priority.medium),
    ]
    top = recs[0]
    assert set(top.source_rules) == {RuleKind.fatigue, RuleKind.stress, RuleKind.recovery}
    assert top.numeric_change(ChangeTarget.intensity) == -40
    assert "12%" in top.explanation


def test_analysis_is_deterministic(critical_snapshot, clock):
    first = AdaptationDecisionEngine(InMemoryAdaptationStore(), clock=clock).analyze(critical_snapshot)
    second = AdaptationDecisionEngine(InMemoryAdaptationStore(), clock=clock).analyze(critical_snapshot)
    assert first == second


def test_analysis_raises_profile_confidence(engine, store, make_snapshot):
    engine.analyze(make_snapshot())
    assert store.load_profile("u1").confidence_level == pytest.approx(0.15)


def test_recently_tried_type_is_skipped(engine, store, make_snapshot, make_record):
    snapshot = make_snapshot(progress=LOW_ENGAGEMENT)
    assert [r.type for r in engine.analyze(snapshot)] == [RecommendationType.frequency]

    store.append_record(make_record(RecommendationType.frequency, days_ago=3, effectiveness=0.6))
    assert engine.analyze(snapshot) == []


def test_learned_weight_promotes_priority(store, clock, make_snapshot):
    weights = WeightRegistry({
        RecommendationType.frequency: RuleWeightState(
            recommendation_type=RecommendationType.frequency, effectiveness_rate=0.9
        )
    })
    engine = AdaptationDecisionEngine(store, weights=weights, clock=clock)

    recs = engine.analyze(make_snapshot(progress=LOW_ENGAGEMENT))

    assert recs[0].priority == Priority.high


def test_rule_set_version_limits_rules(engine, critical_snapshot, make_snapshot):
    engine.learning.get_profile("u1")
    engine.deploy_rule_set_version(
        RuleSetVersion(version_id="v2", version_name="sleep_only", rules=[RuleKind.sleep]),
        test_group_percent=100,
    )

    recs = engine.analyze(critical_snapshot)

    assert [r.source_rules for r in recs] == [[RuleKind.sleep]]


def test_sort_is_stable(make_recommendation):
    a = make_recommendation(RecommendationType.volume, Priority.medium)
    b = make_recommendation(RecommendationType.frequency, Priority.critical)
    c = make_recommendation(RecommendationType.nutrition, Priority.medium)

    assert sort_by_priority([a, b, c]) == [b, a, c]


# ======================================================
# EXPLANATION / SIMULATION / NARRATIVE
# ======================================================


def test_explained_analysis_for_critical_user(store, clock, critical_snapshot):
    engine = AdaptationDecisionEngine(store, clock=clock, simulation=SimulationRunner(iterations=10))

    insight = engine.analyze_with_explanation(critical_snapshot, seed=4)

    assert insight.rule_set_version == BASELINE_RULE_SET_VERSION
    assert "12%" in insight.explanation.primary_reason
    assert insight.preemptive_plan.user_id == "u1"
    assert insight.simulation.iterations == 10
    assert insight.simulation.seed == 4
    assert insight.narrative.startswith(insight.recommendations[0].explanation)
    assert not insight.refined


def test_simulation_failure_leaves_field_empty(store, clock, critical_snapshot):
    engine = AdaptationDecisionEngine(store, clock=clock, simulation=BrokenSimulation())

    insight = engine.analyze_with_explanation(critical_snapshot)

    assert insight.simulation is None
    assert insight.explanation is not None
    assert len(insight.recommendations) == 2


def test_no_simulation_without_urgent_recommendation(store, clock, make_snapshot):
    engine = AdaptationDecisionEngine(store, clock=clock, simulation=BrokenSimulation())

    insight = engine.analyze_with_explanation(make_snapshot())

    assert insight.simulation is None
    assert insight.explanation.primary_reason == "Your current plan is working well"


def test_text_generator_output_is_used(store, clock, critical_snapshot):
    engine = AdaptationDecisionEngine(store, clock=clock, text_generator=lambda messages: " Rest up. ")
    assert engine.analyze_with_explanation(critical_snapshot).narrative == "Rest up."


def test_text_generator_failure_falls_back(store, clock, critical_snapshot):
    def offline(messages):
        raise requests.ConnectionError("no network")

    engine = AdaptationDecisionEngine(store, clock=clock, text_generator=offline)
    insight = engine.analyze_with_explanation(critical_snapshot)

    assert insight.narrative.startswith(insight.recommendations[0].explanation)
    assert "We'll also adjust" in insight.narrative


def test_confident_refiner_adjusts_top_recommendation(store, clock, critical_snapshot):
    refiner = FixedRefiner(RefinerPrediction(intensity_change=-30.0, duration_days=5.0, confidence=0.9))
    engine = AdaptationDecisionEngine(store, clock=clock, refiner=refiner)

    insight = engine.analyze_with_explanation(critical_snapshot)

    assert insight.refined
    assert insight.recommendations[0].numeric_change(ChangeTarget.intensity) == -30
    assert insight.recommendations[0].duration_days == 5


def test_unsure_refiner_is_ignored(store, clock, critical_snapshot):
    refiner = FixedRefiner(RefinerPrediction(intensity_change=-30.0, duration_days=5.0, confidence=0.4))
    engine = AdaptationDecisionEngine(store, clock=clock, refiner=refiner)

    insight = engine.analyze_with_explanation(critical_snapshot)

    assert not insight.refined
    assert insight.recommendations[0].numeric_change(ChangeTarget.intensity) == -40


# ======================================================
# APPLICATION / OUTCOMES / ADMIN
# ======================================================


def test_apply_changes_uses_urgent_numeric_changes(engine, critical_snapshot, make_recommendation):
    recs = engine.analyze(critical_snapshot) + [
        make_recommendation(RecommendationType.intensity, Priority.medium, intensity=50)
    ]
    plan = WorkoutPlan(intensity=5, volume=40, frequency=3)

    # une seule recovery critique (-40 %, -30 %, -1) ; le medium est ignoré
    new_plan = AdaptationDecisionEngine.apply_changes(plan, recs)

    assert new_plan.intensity == pytest.approx(3.0)
    assert new_plan.volume == pytest.approx(28.0)
    assert new_plan.frequency == 2
    assert plan.intensity == 5


def test_apply_changes_respects_bounds(make_recommendation):
    rec = make_recommendation(RecommendationType.intensity, Priority.critical, intensity=-95)
    plan = WorkoutPlan(intensity=2, frequency=1)

    new_plan = AdaptationDecisionEngine.apply_changes(plan, [rec])

    assert new_plan.intensity == 1


def test_apply_then_outcome_roundtrip(engine, critical_snapshot):
    rec = engine.analyze(critical_snapshot)[0]
    record = engine.apply_recommendation(critical_snapshot, rec)

    assert record.is_pending
    assert record.rule_set_version == BASELINE_RULE_SET_VERSION
    assert record.triggered_rules == rec.source_rules

    completed = engine.record_outcome(
        "u1",
        record.id,
        Outcome(adherence_change=0.8, motivation_change=0.6, performance_change=0.7, satisfaction_rating=9),
    )
    assert completed.effectiveness == pytest.approx(0.7)

    insights = engine.user_insights("u1")
    assert [h.id for h in insights.recent_history] == [record.id]
    assert insights.test_group is None
    assert insights.rule_set_version == BASELINE_RULE_SET_VERSION


def test_deploy_and_retire_through_engine(engine, store, now):
    for i in range(10):
        engine.learning.get_profile(f"user{i}")

    assigned = engine.deploy_rule_set_version(
        RuleSetVersion(
            version_id="v2", version_name="treatment", rules=list(RuleKind), test_group="treatment_a"
        ),
        test_group_percent=50,
        seed=0,
    )

    assert len(assigned) == 5
    assert store.load_assignments() == {user_id: "v2" for user_id in assigned}
    assert store.load_rule_sets()[0].activated_at == now
    assert engine.user_insights(assigned[0]).test_group == "treatment_a"

    engine.retire_rule_set_version("v2")

    assert store.load_assignments() == {}
    assert engine.user_insights(assigned[0]).rule_set_version == BASELINE_RULE_SET_VERSION


def test_unexpected_generator_error_falls_back(store, clock, critical_snapshot):
    def broken(messages):
        raise RuntimeError("provider exploded")

    engine = AdaptationDecisionEngine(store, clock=clock, text_generator=broken)
    insight = engine.analyze_with_explanation(critical_snapshot)

    assert insight.narrative.startswith(insight.recommendations[0].explanation)
    assert insight.explanation is not None


def test_empty_router_content_falls_back(monkeypatch, store, clock, critical_snapshot):
    monkeypatch.setattr(
        llm.requests,
        "post",
        lambda *args, **kwargs: FakeResponse({"choices": [{"message": {"content": None}}]}),
    )
    engine = AdaptationDecisionEngine(store, clock=clock, text_generator=llm.call_chat)

    insight = engine.analyze_with_explanation(critical_snapshot)

    assert insight.narrative.startswith(insight.recommendations[0].explanation)


def test_non_text_generator_output_falls_back(store, clock, critical_snapshot):
    engine = AdaptationDecisionEngine(store, clock=clock, text_generator=lambda messages: None)
    insight = engine.analyze_with_explanation(critical_snapshot)

    assert insight.narrative.startswith(insight.recommendations[0].explanation)
