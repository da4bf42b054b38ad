from schemas.profile import UserProfile
from schemas.recommendation import RecommendationType

from adaptation.metrics import (
    adaptation_efficiency,
    calculate_composite_scores,
    fatigue_resilience,
    plan_volatility,
)


def test_neutral_snapshot_gives_mid_range_scores(make_snapshot, now):
    scores = calculate_composite_scores(make_snapshot(), UserProfile(user_id="u1"), now=now)

    assert scores.recovery_index == 56
    assert scores.engagement_score == 56
    assert scores.motivation_momentum == 55
    assert scores.progress_velocity == 38
    assert scores.adherence_quality == 50
    assert scores.adaptation_efficiency == 50
    assert scores.plan_volatility == 0


def test_recovery_index_for_exhausted_user(critical_snapshot, now):
    scores = calculate_composite_scores(critical_snapshot, UserProfile(user_id="u1"), now=now)
    assert scores.recovery_index == 12


def test_fatigue_resilience_defaults_without_sessions():
    assert fatigue_resilience([]) == 0.5


def test_scores_stay_in_range_for_extreme_inputs(make_snapshot, now):
    snapshot = make_snapshot(
        lifestyle={"sleep_hours": 24, "sleep_quality": 10, "stress_level": 1, "workload": 1},
        mood={"motivation": 10, "confidence": 10},
        progress={"weekly_consistency": 1, "monthly_consistency": 1, "strength_gains": {"squat": 2.0}},
        sessions=[(1, 1.0)] * 12,
    )
    profile = UserProfile(user_id="u1", average_recovery_time=0, adaptation_responsiveness=1)

    scores = calculate_composite_scores(snapshot, profile, now=now)

    for value in scores.model_dump().values():
        assert 0 <= value <= 100


def test_plan_volatility_counts_recent_changes(make_record, make_recommendation, now):
    history = [
        make_record(recommendation=make_recommendation(RecommendationType.intensity, intensity=-50), days_ago=2),
        make_record(recommendation=make_recommendation(RecommendationType.intensity, intensity=-50), days_ago=5),
        # hors fenêtre de 30 jours
        make_record(recommendation=make_recommendation(RecommendationType.intensity, intensity=-50), days_ago=60),
    ]

    # 50 % * 2/8 + 50 % * 50/50
    assert plan_volatility(history, now) == 62


def test_adaptation_efficiency_ignores_pending_records(make_record):
    history = [
        make_record(effectiveness=1.0),
        make_record(effectiveness=1.0),
        make_record(effectiveness=None),
    ]
    assert adaptation_efficiency(history) == 100
