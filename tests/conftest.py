from datetime import datetime, timedelta, timezone

import pytest

from adaptation.engine import AdaptationDecisionEngine
from schemas.learning import AdaptationRecord, Outcome
from schemas.profile import CompositeScores
from schemas.recommendation import (
    ChangeTarget,
    PlanChange,
    Priority,
    Recommendation,
    RecommendationType,
)
from schemas.snapshot import (
    LifestyleData,
    MoodData,
    ProgressData,
    StateSnapshot,
    WorkoutPlan,
    WorkoutSession,
)
from services.adaptation_store import InMemoryAdaptationStore

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def store():
    return InMemoryAdaptationStore()


@pytest.fixture
def engine(store, clock):
    return AdaptationDecisionEngine(store, clock=clock)


@pytest.fixture
def make_snapshot():
    """
    Snapshot neutre par défaut ; chaque bloc peut être surchargé par un dict.
    sessions=[(fatigue, completion), ...]
    """

    def _make(
        user_id="u1",
        lifestyle=None,
        mood=None,
        progress=None,
        plan=None,
        sessions=(),
        segment="general",
    ):
        return StateSnapshot(
            user_id=user_id,
            segment=segment,
            current_plan=WorkoutPlan(**(plan or {})),
            recent_sessions=[
                WorkoutSession(
                    id=f"s{i}",
                    reported_fatigue=fatigue,
                    completion_rate=completion,
                    completed_at=NOW - timedelta(days=len(sessions) - i),
                )
                for i, (fatigue, completion) in enumerate(sessions)
            ],
            progress=ProgressData(**(progress or {})),
            lifestyle=LifestyleData(**(lifestyle or {})),
            mood=MoodData(**(mood or {})),
        )

    return _make


@pytest.fixture
def critical_snapshot(make_snapshot):
    # recovery index = 12
    return make_snapshot(
        lifestyle={"sleep_hours": 5, "sleep_quality": 4, "stress_level": 9, "workload": 9},
        sessions=[(9, 0.4), (9, 0.4), (9, 0.4)],
    )


@pytest.fixture
def make_recommendation():
    def _make(
        rec_type=RecommendationType.frequency,
        priority=Priority.medium,
        intensity=None,
        source_rules=(),
        named=None,
    ):
        changes = []
        if intensity is not None:
            changes.append(PlanChange(target=ChangeTarget.intensity, adjustment=intensity))
        if named is not None:
            changes.append(PlanChange(target=ChangeTarget.exercise, adjustment=named))
        return Recommendation(
            type=rec_type,
            priority=priority,
            reason="test",
            changes=changes,
            duration_days=7,
            explanation="test explanation",
            source_rules=list(source_rules),
        )

    return _make


@pytest.fixture
def neutral_scores():
    return CompositeScores(**{name: 50 for name in CompositeScores.model_fields})


@pytest.fixture
def make_record(make_recommendation, neutral_scores):
    counter = {"n": 0}

    def _make(
        rec_type=RecommendationType.frequency,
        days_ago=3,
        effectiveness=None,
        user_id="u1",
        recommendation=None,
        scores=None,
    ):
        counter["n"] += 1
        outcome = None
        if effectiveness is not None:
            outcome = Outcome(
                adherence_change=effectiveness,
                motivation_change=effectiveness,
                performance_change=effectiveness,
            )
        return AdaptationRecord(
            id=f"r{counter['n']}",
            user_id=user_id,
            timestamp=NOW - timedelta(days=days_ago),
            recommendation=recommendation or make_recommendation(rec_type),
            scores=scores or neutral_scores,
            outcome=outcome,
            effectiveness=effectiveness,
        )

    return _make
