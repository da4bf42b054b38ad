# ============================================================
# Explainability & pre-emptive planning · Adaptation Engine
# ============================================================
# Tout est déterministe : seuils fixes sur les scores composites,
# aucune dépendance au LLM (le texte libre vit dans narrative.py).
import math
from collections import Counter
from datetime import datetime, timedelta
from typing import Sequence

from adaptation.rules import (
    ENGAGEMENT_CRITICAL,
    ENGAGEMENT_LOW,
    MOMENTUM_CRITICAL,
    MOMENTUM_LOW,
    RECOVERY_INDEX_CRITICAL,
    RECOVERY_INDEX_LOW,
    VELOCITY_LOW,
    VELOCITY_STALLED,
)
from schemas.insight import (
    AdaptationExplanation,
    AlternativeOption,
    ContingencyPlan,
    EarlyWarningSignal,
    ExplanationFactor,
    Impact,
    PredictedAdaptation,
    PreemptivePlan,
    RiskAssessment,
    Severity,
    TrajectoryPoint,
    Trend,
    WarningTrend,
)
from schemas.learning import AdaptationRecord
from schemas.profile import CompositeScores, UserProfile
from schemas.recommendation import (
    ChangeTarget,
    PlanChange,
    Priority,
    Recommendation,
    RecommendationType,
)
from schemas.snapshot import StateSnapshot

WARNING_BAND = 20  # un signal apparaît à moins de 20 points du seuil d'alerte
SUCCESS_EFFECTIVENESS = 0.7
PLAN_VALIDITY_DAYS = 7
TRAJECTORY_WEEKS = 4

# score -> (libellé, seuil d'alerte, seuil critique, action préventive)
WATCHED_SCORES = {
    "recovery_index": (
        "Recovery Index Decline",
        RECOVERY_INDEX_LOW,
        RECOVERY_INDEX_CRITICAL,
        "Schedule additional rest days and focus on sleep quality",
    ),
    "engagement_score": (
        "Engagement Drop",
        ENGAGEMENT_LOW,
        ENGAGEMENT_CRITICAL,
        "Shorten sessions and protect the easiest weekly slot",
    ),
    "motivation_momentum": (
        "Motivation Momentum Loss",
        MOMENTUM_LOW,
        MOMENTUM_CRITICAL,
        "Add variety and a short-term achievable goal",
    ),
    "progress_velocity": (
        "Progress Stall",
        VELOCITY_LOW,
        VELOCITY_STALLED,
        "Introduce exercise variation before the plateau sets in",
    ),
}


# ======================================================
# 🗣️ EXPLANATION
# ======================================================


def primary_reason(rec: Recommendation, scores: CompositeScores) -> str:
    if rec.type == RecommendationType.recovery:
        return f"Your recovery index ({scores.recovery_index}%) indicates you need focused recovery time"
    if rec.type == RecommendationType.intensity:
        return (
            f"Based on your fatigue patterns and engagement score ({scores.engagement_score}%), "
            "an intensity adjustment will optimize your progress"
        )
    if rec.type == RecommendationType.exercise_swap:
        return (
            f"Your motivation momentum ({scores.motivation_momentum}%) suggests exercise variety "
            "will reignite your enthusiasm"
        )
    return rec.reason


def contributing_factors(scores: CompositeScores) -> tuple[list[ExplanationFactor], list[str]]:
    factors, data_points = [], []

    if scores.recovery_index < RECOVERY_INDEX_LOW:
        factors.append(ExplanationFactor(
            metric="Recovery Index",
            value=scores.recovery_index,
            impact=Impact.high,
            description="Your recovery capacity is significantly compromised",
            trend=Trend.declining,
        ))
        data_points.append(f"Recovery index at {scores.recovery_index}% (critical threshold: {RECOVERY_INDEX_LOW}%)")

    if scores.engagement_score < ENGAGEMENT_LOW:
        factors.append(ExplanationFactor(
            metric="Engagement Score",
            value=scores.engagement_score,
            impact=Impact.high,
            description="Your motivation and consistency have dropped notably",
            trend=Trend.declining,
        ))
        data_points.append(f"Engagement at {scores.engagement_score}% (warning threshold: {ENGAGEMENT_LOW}%)")

    if scores.progress_velocity < VELOCITY_LOW:
        factors.append(ExplanationFactor(
            metric="Progress Velocity",
            value=scores.progress_velocity,
            impact=Impact.medium,
            description="Your rate of improvement has slowed",
            trend=Trend.declining,
        ))
        data_points.append(f"Progress velocity at {scores.progress_velocity}% (target: >50%)")

    return factors, data_points


def explanation_confidence(factors: Sequence[ExplanationFactor], profile: UserProfile) -> float:
    high_impact = len([f for f in factors if f.impact == Impact.high])
    return round(min(0.95, high_impact / max(len(factors), 1) * 0.7 + profile.confidence_level * 0.3), 3)


def expected_outcome(rec: Recommendation) -> str:
    timeframe = "within a few days" if rec.duration_days <= 3 else "over the next week"

    if rec.type == RecommendationType.recovery:
        return f"Your recovery index should improve by 20-30% {timeframe}, leading to better workout quality and motivation"
    if rec.type == RecommendationType.intensity:
        change = rec.numeric_change(ChangeTarget.intensity)
        direction = "reduction" if change is not None and change < 0 else "increase"
        return f"This {direction} should improve your adherence quality and engagement score {timeframe}"
    return f"You should see improvements in relevant metrics {timeframe}"


def timeline_expectation(rec: Recommendation) -> str:
    return (
        f"Initial improvements expected within {math.ceil(rec.duration_days / 2)} days, "
        f"full effect by day {rec.duration_days}"
    )


def build_explanation(
    recommendations: Sequence[Recommendation],
    scores: CompositeScores,
    profile: UserProfile,
    history: Sequence[AdaptationRecord] = (),
) -> AdaptationExplanation:
    if not recommendations:
        return AdaptationExplanation(
            primary_reason="Your current plan is working well",
            contributing_factors=[ExplanationFactor(
                metric="Recovery Index",
                value=scores.recovery_index,
                impact=Impact.low,
                description="Your recovery is on track",
                trend=Trend.stable,
            )],
            confidence=0.9,
            expected_outcome="Continue seeing steady progress with current approach",
            data_points=["No concerning metrics detected"],
            timeline_expectation="Keep monitoring for next 1-2 weeks",
        )

    primary = recommendations[0]
    factors, data_points = contributing_factors(scores)

    successes = [
        h for h in history
        if not h.is_pending and h.effectiveness > SUCCESS_EFFECTIVENESS
    ][-3:]
    historical_context = None
    if successes:
        historical_context = (
            f"Based on your history, {successes[0].recommendation.type.value} adaptations work well for you"
        )

    risk_factors = []
    if primary.priority == Priority.critical:
        risk_factors.append("Without intervention, you may experience motivation loss or potential burnout")
    intensity_change = primary.numeric_change(ChangeTarget.intensity)
    if primary.type == RecommendationType.intensity and intensity_change is not None and intensity_change < -20:
        risk_factors.append("Significant intensity reduction may temporarily slow visible progress")

    alternatives = []
    if primary.type == RecommendationType.recovery:
        alternatives.append(AlternativeOption(
            strategy="Continue current intensity with extra rest days",
            why_not_chosen="Your recovery index indicates you need focused recovery time",
            could_be_used_if="Your recovery index improves above 40% in the next few days",
        ))

    return AdaptationExplanation(
        primary_reason=primary_reason(primary, scores),
        contributing_factors=factors,
        confidence=explanation_confidence(factors, profile),
        risk_factors=risk_factors,
        expected_outcome=expected_outcome(primary),
        alternatives_considered=alternatives,
        data_points=data_points,
        historical_context=historical_context,
        timeline_expectation=timeline_expectation(primary),
    )


# ======================================================
# 🔮 PRE-EMPTIVE PLAN
# ======================================================


def plan_confidence(snapshot: StateSnapshot, profile: UserProfile, scores: CompositeScores) -> float:
    factors = [
        0.2 if scores.recovery_index > 50 else 0,
        0.2 if scores.engagement_score > 60 else 0,
        0.2 if scores.progress_velocity > 40 else 0,
        profile.confidence_level * 0.2,
        snapshot.progress.weekly_consistency * 0.2,
    ]
    return round(min(0.95, sum(factors)), 3)


def predict_future_adaptations(scores: CompositeScores, now: datetime) -> list[PredictedAdaptation]:
    predictions = []

    if scores.progress_velocity < 30:
        predictions.append(PredictedAdaptation(
            estimated_trigger_date=now + timedelta(days=14),
            probability=0.7,
            trigger_conditions=["Progress velocity remains below 20%", "No strength gains for 2 weeks"],
            recommendation_type=RecommendationType.exercise_swap,
            severity=Severity.moderate_adjustment,
            prevention_strategy="Introduce exercise variation now",
        ))

    if scores.motivation_momentum < 50:
        predictions.append(PredictedAdaptation(
            estimated_trigger_date=now + timedelta(days=7),
            probability=0.5,
            trigger_conditions=["Motivation score drops below 4", "Adherence falls below 60%"],
            recommendation_type=RecommendationType.exercise_swap,
            severity=Severity.minor_tweak,
            prevention_strategy="Incorporate variety and achievement opportunities",
        ))

    if scores.recovery_index < 40:
        predictions.append(PredictedAdaptation(
            estimated_trigger_date=now + timedelta(days=5),
            probability=0.6,
            trigger_conditions=["Recovery index falls below 30%", "Reported fatigue above 8"],
            recommendation_type=RecommendationType.recovery,
            severity=Severity.moderate_adjustment,
            prevention_strategy="Protect sleep and keep one extra easy day",
        ))

    return predictions


def early_warning_signals(scores: CompositeScores) -> list[EarlyWarningSignal]:
    signals = []

    for metric, (label, warning, critical, action) in WATCHED_SCORES.items():
        value = getattr(scores, metric)
        if value >= warning + WARNING_BAND:
            continue

        if value < critical:
            trend, days = WarningTrend.breached, 0
        elif value < warning:
            trend, days = WarningTrend.approaching, 1
        else:
            trend, days = WarningTrend.stable, max(1, (value - warning) // 5)

        signals.append(EarlyWarningSignal(
            signal=label,
            metric=metric,
            current_value=value,
            warning_threshold=warning,
            critical_threshold=critical,
            trend=trend,
            days_to_threshold=days,
            suggested_preventive_action=action,
        ))

    return signals


def contingency_plans(profile: UserProfile) -> list[ContingencyPlan]:
    variety = "fun_variety_focus"
    if profile.preferred_workout_types:
        variety = f"fun_{profile.preferred_workout_types[0]}_focus"

    return [
        ContingencyPlan(
            scenario="Motivation Crisis (score < 3)",
            trigger_conditions=["Motivation drops below 3", "Missed 3+ workouts in a week"],
            immediate_action=Recommendation(
                type=RecommendationType.exercise_swap,
                priority=Priority.critical,
                reason="Emergency motivation intervention",
                changes=[PlanChange(target=ChangeTarget.exercise, adjustment=variety)],
                duration_days=3,
                explanation="Switching to enjoyable exercises to rebuild enthusiasm",
            ),
            success_probability=0.75,
        ),
        ContingencyPlan(
            scenario="Recovery Collapse (recovery index < 15)",
            trigger_conditions=["Recovery index drops below 15", "Reported fatigue at 9 or more"],
            immediate_action=Recommendation(
                type=RecommendationType.recovery,
                priority=Priority.critical,
                reason="Emergency recovery protocol",
                changes=[
                    PlanChange(target=ChangeTarget.intensity, adjustment=-40),
                    PlanChange(target=ChangeTarget.rest, adjustment="+2 days"),
                ],
                duration_days=int(round(profile.average_recovery_time)) + 2,
                explanation="Cutting load sharply until recovery markers rebound",
            ),
            success_probability=0.8,
        ),
    ]


def project_trajectory(scores: CompositeScores) -> list[TrajectoryPoint]:
    return [
        TrajectoryPoint(
            week=week,
            predicted_scores={
                "recovery_index": min(90, scores.recovery_index + week * 10),
                "engagement_score": min(85, scores.engagement_score + week * 8),
                "progress_velocity": min(75, scores.progress_velocity + week * 5),
            },
            confidence_interval=round(0.8 - week * 0.1, 2),
            key_milestones=["Should see improved energy levels"] if week == 2 else [],
        )
        for week in range(1, TRAJECTORY_WEEKS + 1)
    ]


def assess_risks(snapshot: StateSnapshot, scores: CompositeScores) -> RiskAssessment:
    return RiskAssessment(
        plateau_risk=0.6 if scores.progress_velocity < 20 else 0.2,
        burnout_risk=0.4 if scores.recovery_index < 30 else 0.1,
        injury_risk=0.3 if snapshot.lifestyle.sleep_hours < 6 else 0.1,
        motivation_drop_risk=0.5 if scores.motivation_momentum < 30 else 0.2,
        adherence_risk=0.6 if scores.engagement_score < 40 else 0.2,
        mitigation_strategies=[
            "Regular check-ins on energy levels",
            "Flexible workout scheduling",
            "Backup exercise options for low-motivation days",
        ],
    )


def build_preemptive_plan(
    snapshot: StateSnapshot,
    profile: UserProfile,
    scores: CompositeScores,
    now: datetime,
) -> PreemptivePlan:
    return PreemptivePlan(
        user_id=snapshot.user_id,
        plan_confidence=plan_confidence(snapshot, profile, scores),
        predicted_adaptations=predict_future_adaptations(scores, now),
        early_warning_signals=early_warning_signals(scores),
        contingency_plans=contingency_plans(profile),
        trajectory=project_trajectory(scores),
        risk_assessment=assess_risks(snapshot, scores),
        generated_at=now,
        valid_until=now + timedelta(days=PLAN_VALIDITY_DAYS),
    )


# ======================================================
# 🧭 BESOINS FUTURS (insights utilisateur)
# ======================================================


def predict_future_needs(profile: UserProfile, history: Sequence[AdaptationRecord]) -> list[str]:
    completed = [h for h in history if not h.is_pending]
    if not completed:
        return ["Record adaptation outcomes to personalise future adjustments"]

    needs = []
    recent = Counter(h.recommendation.type for h in history[-10:])
    for rec_type, count in recent.most_common():
        if count >= 3:
            needs.append(f"Recurring {rec_type.value} adaptations: review the baseline plan")

    failing = sorted({h.recommendation.type.value for h in completed if h.effectiveness < 0})
    for rec_type in failing:
        needs.append(f"{rec_type} adjustments have backfired: prefer alternative strategies")

    if profile.plateau_breakers:
        needs.append(f"Keep {profile.plateau_breakers[0]} ready for the next plateau")
    if profile.common_fatigue_triggers:
        needs.append(f"Watch fatigue after {profile.common_fatigue_triggers[-1].replace('_', ' ')}")

    return needs
