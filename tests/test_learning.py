import logging

import pytest

from adaptation.errors import PersistenceError, StaleWriteError
from adaptation.learning import LearningStore, calculate_effectiveness, rule_combination
from adaptation.versions import RuleSetRegistry
from adaptation.weights import WeightRegistry
from schemas.learning import Outcome, RuleSetVersion
from schemas.recommendation import RecommendationType, RuleKind
from services.adaptation_store import InMemoryAdaptationStore


def _outcome(value, satisfaction=None):
    return Outcome(
        adherence_change=value,
        motivation_change=value,
        performance_change=value,
        satisfaction_rating=satisfaction,
    )


@pytest.fixture
def learning(store, clock):
    return LearningStore(store, WeightRegistry(), RuleSetRegistry(), clock=clock)


def _pending(store, make_record, **kwargs):
    record = make_record(**kwargs)
    store.append_record(record)
    return record


def test_effectiveness_is_mean_of_changes():
    outcome = Outcome(adherence_change=0.6, motivation_change=0.0, performance_change=-0.3)
    assert calculate_effectiveness(outcome) == pytest.approx(0.1)


def test_rule_combination_is_order_independent():
    assert rule_combination([RuleKind.stress, RuleKind.fatigue]) == "fatigue+stress"
    assert rule_combination([]) == "none"


def test_get_profile_creates_once(learning, store):
    first = learning.get_profile("u1")
    second = learning.get_profile("u1")

    assert first == second
    assert store.list_user_ids() == ["u1"]


def test_unknown_adaptation_is_ignored(learning, caplog):
    with caplog.at_level(logging.WARNING):
        assert learning.record_outcome("u1", "missing", _outcome(0.5)) is None

    assert "unknown adaptation" in caplog.text


def test_second_outcome_is_ignored(learning, store, make_record):
    record = _pending(store, make_record)

    assert learning.record_outcome("u1", record.id, _outcome(0.9)) is not None
    assert learning.record_outcome("u1", record.id, _outcome(-0.9)) is None

    stored = store.get_record("u1", record.id)
    assert stored.effectiveness == pytest.approx(0.9)


def test_outcome_moves_weight_by_ema(learning, store, make_record):
    record = _pending(store, make_record, rec_type=RecommendationType.frequency)

    learning.record_outcome("u1", record.id, _outcome(0.9))

    saved = store.load_weight(RecommendationType.frequency)
    assert saved.effectiveness_rate == pytest.approx(0.52)
    assert saved.samples == 1
    assert saved.version == 1
    assert learning.weights.snapshot().effectiveness_rate(RecommendationType.frequency) == pytest.approx(0.52)


class FlakyWeightStore(InMemoryAdaptationStore):
    """Perd la course une fois avant d'accepter l'écriture."""

    def __init__(self):
        super().__init__()
        self.stale_left = 1

    def save_weight(self, state, expected_version):
        if self.stale_left:
            self.stale_left -= 1
            raise StaleWriteError(f"rule_weights:{state.recommendation_type.value}", expected_version, 7)
        return super().save_weight(state, expected_version)


class BrokenWeightStore(InMemoryAdaptationStore):
    def save_weight(self, state, expected_version):
        raise PersistenceError("database down")


def test_stale_weight_write_is_retried(make_record, clock):
    store = FlakyWeightStore()
    learning = LearningStore(store, WeightRegistry(), RuleSetRegistry(), clock=clock)
    record = _pending(store, make_record)

    learning.record_outcome("u1", record.id, _outcome(0.9))

    assert store.stale_left == 0
    assert store.load_weight(RecommendationType.frequency).version == 1


def test_weight_persistence_failure_still_learns_in_memory(make_record, clock):
    store = BrokenWeightStore()
    learning = LearningStore(store, WeightRegistry(), RuleSetRegistry(), clock=clock)
    record = _pending(store, make_record)

    assert learning.record_outcome("u1", record.id, _outcome(0.9)) is not None

    assert store.load_weight(RecommendationType.frequency) is None
    assert learning.weights.snapshot().effectiveness_rate(RecommendationType.frequency) == pytest.approx(0.52)


def test_effective_strategies_enrich_profile(learning, store, make_record, make_recommendation):
    motivation = make_recommendation(
        RecommendationType.exercise_swap, named="variety_injection", source_rules=[RuleKind.motivation]
    )
    plateau = make_recommendation(
        RecommendationType.exercise_swap, named="tempo_sets", source_rules=[RuleKind.plateau]
    )
    for rec in (motivation, plateau):
        record = _pending(store, make_record, recommendation=rec)
        learning.record_outcome("u1", record.id, _outcome(0.8))

    profile = store.load_profile("u1")
    assert profile.motivational_triggers == ["variety"]
    assert profile.plateau_breakers == ["tempo_sets"]
    assert profile.confidence_level == pytest.approx(0.2)


def test_load_increase_followed_by_regression_is_a_fatigue_trigger(
    learning, store, make_record, make_recommendation
):
    rec = make_recommendation(RecommendationType.intensity, intensity=10)
    record = _pending(store, make_record, recommendation=rec)

    learning.record_outcome(
        "u1",
        record.id,
        Outcome(adherence_change=0.2, motivation_change=0.0, performance_change=-0.4),
    )

    assert store.load_profile("u1").common_fatigue_triggers == ["intensity_increase"]


def test_analytics_track_success_and_failures(learning, store, make_record):
    good = _pending(store, make_record, rec_type=RecommendationType.frequency)
    bad = _pending(store, make_record, rec_type=RecommendationType.volume)

    learning.record_outcome("u1", good.id, _outcome(0.9))
    learning.record_outcome("u1", bad.id, _outcome(0.1))

    analytics = learning.analytics()
    assert analytics.data_points == 2
    assert analytics.by_type["frequency"].success_rate == 1.0
    assert analytics.by_type["volume"].successes == 0
    assert analytics.by_segment["general"].count == 2
    assert analytics.common_failure_patterns == ["volume:none"]
    assert store.load_analytics() == analytics


def test_outcome_updates_rule_set_performance(store, make_record, clock):
    versions = RuleSetRegistry()
    versions.register(RuleSetVersion(version_id="v2", version_name="v2", rules=[RuleKind.fatigue]))
    learning = LearningStore(store, WeightRegistry(), versions, clock=clock)

    record = make_record().model_copy(update={"rule_set_version": "v2"})
    store.append_record(record)

    learning.record_outcome("u1", record.id, _outcome(0.5, satisfaction=8))

    performance = versions.get("v2").performance
    assert performance.outcomes == 1
    assert performance.avg_effectiveness == pytest.approx(0.5)
    assert performance.avg_satisfaction == pytest.approx(8)
    assert store.load_rule_sets()[0].performance == performance
