# ============================================================
# Adaptation rules · Adaptation Engine
# ============================================================
# Chaque règle est une fonction pure (snapshot, profil, scores) -> recommandation
# ou None. Deux paliers : "critique" (grosse correction, courte durée) et
# "modéré" (correction plus légère, personnalisée par le profil).
from typing import Callable, NamedTuple, Optional, Sequence

from adaptation.metrics import mean
from schemas.profile import CompositeScores, UserProfile
from schemas.recommendation import (
    ChangeTarget,
    PlanChange,
    Priority,
    Recommendation,
    RecommendationType,
    RuleKind,
)
from schemas.snapshot import MoodTrend, StateSnapshot

RuleFn = Callable[[StateSnapshot, UserProfile, CompositeScores], Optional[Recommendation]]


class Rule(NamedTuple):
    kind: RuleKind
    evaluate: RuleFn


# ------------------------------------------------------------
# THRESHOLDS
# ------------------------------------------------------------

RECOVERY_INDEX_CRITICAL = 15
RECOVERY_INDEX_LOW = 30
ENGAGEMENT_CRITICAL = 25
ENGAGEMENT_LOW = 40
MOMENTUM_CRITICAL = 15
MOMENTUM_LOW = 30
VELOCITY_STALLED = 10
VELOCITY_LOW = 20

STAGNATION_GAIN = 0.02  # < 2 % de progression
FULL_STAGNATION_GAIN = 0.005

# déclencheur de motivation -> (stratégie d'urgence, phrase)
EMERGENCY_MOTIVATION_STRATEGIES = {
    "variety": ("variety_injection", "I'm adding exercise variety to reignite your interest."),
    "competition": ("competition_element", "I'm introducing competitive elements to boost engagement."),
    "PBs": ("personal_record_focus", "We're going to focus on achieving new personal records."),
}


def _changes(*pairs) -> list[PlanChange]:
    return [PlanChange(target=target, adjustment=adjustment) for target, adjustment in pairs]


# ------------------------------------------------------------
# RULES
# ------------------------------------------------------------


def evaluate_fatigue(snapshot, profile, scores):
    sessions = snapshot.recent_sessions
    recent_fatigue = mean([s.reported_fatigue for s in sessions[-3:]]) if sessions else None
    avg_completion = mean([s.completion_rate for s in sessions[-5:]]) if sessions else None

    ri = scores.recovery_index
    fatigue_threshold = 9 if profile.preferred_intensity_range[1] > 8 else 8
    tolerates_fatigue = len(profile.common_fatigue_triggers) < 3

    if (
        ri < RECOVERY_INDEX_CRITICAL
        or (recent_fatigue is not None and recent_fatigue >= 9)
        or (avg_completion is not None and avg_completion < 0.5)
    ):
        recovery_days = int(round(profile.average_recovery_time))
        return Recommendation(
            type=RecommendationType.recovery,
            priority=Priority.critical,
            reason=f"Critical fatigue detected (recovery index: {ri}) - immediate intervention required",
            changes=_changes(
                (ChangeTarget.intensity, -40),
                (ChangeTarget.volume, -30),
                (ChangeTarget.frequency, -1),
            ),
            duration_days=recovery_days + 2,
            explanation=(
                f"Your recovery index is critically low at {ri}%. I'm implementing a "
                f"comprehensive recovery protocol tailored to your {recovery_days}-day recovery pattern."
            ),
            source_rules=[RuleKind.fatigue],
        )

    if (
        ri < RECOVERY_INDEX_LOW
        or (recent_fatigue is not None and recent_fatigue >= fatigue_threshold)
        or (avg_completion is not None and avg_completion < 0.7)
    ):
        reduction = -15 if tolerates_fatigue else -25
        recovery_days = max(1, int(round(profile.average_recovery_time)))
        return Recommendation(
            type=RecommendationType.intensity,
            priority=Priority.high,
            reason=f"Elevated fatigue with recovery index at {ri}% - personalized recovery needed",
            changes=_changes((ChangeTarget.intensity, reduction), (ChangeTarget.volume, -15)),
            duration_days=recovery_days,
            explanation=(
                f"Based on your fatigue tolerance profile, I'm reducing intensity by "
                f"{abs(reduction)}% for {recovery_days} days to restore your recovery capacity."
            ),
            source_rules=[RuleKind.fatigue],
        )

    return None


def evaluate_consistency(snapshot, profile, scores):
    weekly_consistency = snapshot.progress.weekly_consistency
    streak = snapshot.progress.streak
    engagement = scores.engagement_score

    weekend_dropoff = "weekends low" in profile.plan_compliance_pattern

    if engagement < ENGAGEMENT_CRITICAL or (weekly_consistency < 0.3 and streak < 2):
        focus = (
            profile.preferred_workout_types[0]
            if profile.preferred_workout_types
            else snapshot.current_plan.type.value
        )
        return Recommendation(
            type=RecommendationType.frequency,
            priority=Priority.critical,
            reason=f"Critical engagement crisis (score: {engagement}) - emergency simplification",
            changes=_changes(
                (ChangeTarget.frequency, -2),
                (ChangeTarget.intensity, -30),
                (ChangeTarget.exercise, f"focus_{focus}"),
            ),
            duration_days=14,
            explanation=(
                f"Your engagement score has dropped to {engagement}%. I'm creating an ultra-simple "
                f"{focus}-focused routine to rebuild your momentum over 2 weeks."
            ),
            source_rules=[RuleKind.consistency],
        )

    if engagement < ENGAGEMENT_LOW or (weekly_consistency < 0.5 and streak < 3):
        if weekend_dropoff:
            changes = _changes((ChangeTarget.frequency, -1), (ChangeTarget.intensity, -20))
            explanation = (
                "I've noticed your weekend adherence pattern. Let's focus on weekday "
                "consistency first, then gradually add weekend sessions."
            )
        else:
            changes = _changes((ChangeTarget.frequency, -1), (ChangeTarget.intensity, -10))
            explanation = (
                f"Your engagement score is {engagement}%. I'm simplifying your routine to rebuild the habit."
            )
        return Recommendation(
            type=RecommendationType.frequency,
            priority=Priority.medium,
            reason=f"Low engagement detected (score: {engagement}) - rebuilding habits",
            changes=changes,
            duration_days=10 if weekend_dropoff else 7,
            explanation=explanation,
            source_rules=[RuleKind.consistency],
        )

    return None


def evaluate_progressive_overload(snapshot, profile, scores):
    gains = list(snapshot.progress.strength_gains.values())
    total_workouts = snapshot.progress.total_workouts

    # pas de données de force -> pas de plateau détectable
    if not gains:
        return None

    # déjà au plafond d'intensité toléré -> on progresse par le volume
    at_intensity_ceiling = snapshot.current_plan.intensity >= profile.preferred_intensity_range[1]

    if total_workouts > 24 and max(gains) < FULL_STAGNATION_GAIN:
        if at_intensity_ceiling:
            rec_type = RecommendationType.volume
            changes = _changes((ChangeTarget.volume, 20), (ChangeTarget.exercise, "variation"))
        else:
            rec_type = RecommendationType.intensity
            changes = _changes(
                (ChangeTarget.intensity, 15),
                (ChangeTarget.volume, 10),
                (ChangeTarget.exercise, "variation"),
            )
        return Recommendation(
            type=rec_type,
            priority=Priority.high,
            reason="Complete strength stagnation - progressive overload required",
            changes=changes,
            duration_days=14,
            explanation=(
                "Your strength numbers haven't moved for a long stretch. I'm raising the training "
                "stimulus and adding exercise variations to restart adaptation."
            ),
            source_rules=[RuleKind.progressive_overload],
        )

    if total_workouts > 12 and all(gain < STAGNATION_GAIN for gain in gains):
        if at_intensity_ceiling:
            rec_type = RecommendationType.volume
            changes = _changes((ChangeTarget.volume, 10), (ChangeTarget.exercise, "variation"))
        else:
            rec_type = RecommendationType.intensity
            changes = _changes((ChangeTarget.intensity, 10), (ChangeTarget.exercise, "variation"))
        return Recommendation(
            type=rec_type,
            priority=Priority.medium,
            reason="Strength plateau detected - need progressive overload",
            changes=changes,
            duration_days=14,
            explanation=(
                "I notice your strength gains have plateaued. I'm increasing the load and adding "
                "exercise variations to stimulate new growth."
            ),
            source_rules=[RuleKind.progressive_overload],
        )

    return None


def evaluate_recovery(snapshot, profile, scores):
    lifestyle = snapshot.lifestyle
    poor_recovery = (
        lifestyle.sleep_hours < 6
        or lifestyle.sleep_quality < 5
        or lifestyle.stress_level > 7
    )

    if not poor_recovery:
        return None

    if scores.recovery_index < RECOVERY_INDEX_CRITICAL:
        return Recommendation(
            type=RecommendationType.recovery,
            priority=Priority.critical,
            reason=f"Recovery collapse (recovery index: {scores.recovery_index}) with poor sleep or stress",
            changes=_changes((ChangeTarget.rest, "+2 days"), (ChangeTarget.intensity, -30)),
            duration_days=4,
            explanation=(
                f"Your recovery index is {scores.recovery_index}% and your sleep and stress markers are "
                "poor. I'm adding two rest days and cutting intensity while you recover."
            ),
            source_rules=[RuleKind.recovery],
        )

    return Recommendation(
        type=RecommendationType.recovery,
        priority=Priority.high,
        reason="Poor recovery indicators detected",
        changes=_changes((ChangeTarget.rest, "+1 day"), (ChangeTarget.intensity, -15)),
        duration_days=5,
        explanation=(
            "Your sleep and stress levels indicate you need more recovery. I'm adding an extra "
            "rest day and reducing intensity."
        ),
        source_rules=[RuleKind.recovery],
    )


def evaluate_motivation(snapshot, profile, scores):
    motivation = snapshot.mood.motivation
    trend = snapshot.mood.recent_trend
    momentum = scores.motivation_momentum
    triggers = profile.motivational_triggers

    if momentum < MOMENTUM_CRITICAL or (motivation <= 3 and trend == MoodTrend.declining):
        strategy = "basic_motivation_boost"
        explanation = "Your motivational momentum is critically low. "

        for trigger, (trigger_strategy, sentence) in EMERGENCY_MOTIVATION_STRATEGIES.items():
            if trigger in triggers:
                strategy = trigger_strategy
                explanation += sentence
                break
        else:
            explanation += "I'm implementing a comprehensive motivation recovery protocol."

        return Recommendation(
            type=RecommendationType.exercise_swap,
            priority=Priority.critical,
            reason=f"Critical motivational momentum ({momentum}%) - emergency intervention",
            changes=_changes((ChangeTarget.exercise, strategy), (ChangeTarget.intensity, -20)),
            duration_days=7,
            explanation=f"{explanation} Current momentum: {momentum}%",
            source_rules=[RuleKind.motivation],
        )

    if momentum < MOMENTUM_LOW or motivation <= 5:
        strategy = "general_motivation_boost"
        changes = _changes((ChangeTarget.exercise, "motivation_boost"))

        if "variety" in triggers and len(profile.preferred_workout_types) > 1:
            strategy = "workout_type_rotation"
            changes = _changes((ChangeTarget.exercise, "rotate_workout_types"))
        elif "PBs" in triggers:
            strategy = "personal_record_opportunities"
            changes = _changes((ChangeTarget.intensity, 5), (ChangeTarget.exercise, "pb_focus"))

        return Recommendation(
            type=RecommendationType.exercise_swap,
            priority=Priority.medium,
            reason=f"Declining motivational momentum ({momentum}%) - personalized boost needed",
            changes=changes,
            duration_days=5,
            explanation=f"Your motivation patterns suggest {strategy} will help. Current momentum: {momentum}%",
            source_rules=[RuleKind.motivation],
        )

    return None


def evaluate_plateau(snapshot, profile, scores):
    velocity = scores.progress_velocity
    gains = list(snapshot.progress.strength_gains.values())[-4:]
    proven = profile.plateau_breakers[0] if profile.plateau_breakers else None

    # gains présents mais nuls ou négatifs
    flat_gains = bool(gains) and mean(gains) <= 0

    if velocity < VELOCITY_STALLED or flat_gains:
        strategy = proven or "intensity_variation"
        explanation = "I've detected a plateau in your progress velocity. "
        if proven:
            explanation += f"Based on your history, {proven} has worked best for breaking your plateaus."
        else:
            explanation += "I'm implementing a multi-faceted plateau breakthrough protocol."

        return Recommendation(
            type=RecommendationType.exercise_swap,
            priority=Priority.high,
            reason=f"Plateau detected - progress velocity at {velocity}%",
            changes=_changes(
                (ChangeTarget.exercise, strategy),
                (ChangeTarget.intensity, 15),
                (ChangeTarget.volume, 10),
            ),
            duration_days=10,
            explanation=f"{explanation} Your progress velocity has dropped to {velocity}%.",
            source_rules=[RuleKind.plateau],
        )

    if velocity < VELOCITY_LOW or snapshot.progress.average_rating < 6:
        strategy = proven or "exercise_variation"
        return Recommendation(
            type=RecommendationType.exercise_swap,
            priority=Priority.medium,
            reason=f"Declining progress velocity ({velocity}%) - preemptive plateau prevention",
            changes=_changes((ChangeTarget.exercise, strategy), (ChangeTarget.intensity, 5)),
            duration_days=7,
            explanation=f"Your progress velocity suggests we should proactively prevent a plateau using {strategy}.",
            source_rules=[RuleKind.plateau],
        )

    return None


def evaluate_stress(snapshot, profile, scores):
    stress = snapshot.lifestyle.stress_level
    workload = snapshot.lifestyle.workload

    if stress > 8 or workload > 8:
        return Recommendation(
            type=RecommendationType.intensity,
            priority=Priority.critical,
            reason="High stress levels - prioritizing stress relief",
            changes=_changes((ChangeTarget.exercise, "stress_relief"), (ChangeTarget.intensity, -25)),
            duration_days=3,
            explanation=(
                "Your stress levels are very high. I'm switching to stress-relieving exercises "
                "like yoga and reducing intensity significantly."
            ),
            source_rules=[RuleKind.stress],
        )

    if stress >= 7 and workload >= 7:
        stress_sensitive = "stress" in profile.common_fatigue_triggers
        return Recommendation(
            type=RecommendationType.intensity,
            priority=Priority.high if stress_sensitive else Priority.medium,
            reason="Sustained stress and workload - easing training load",
            changes=_changes((ChangeTarget.exercise, "stress_relief"), (ChangeTarget.intensity, -10)),
            duration_days=3,
            explanation=(
                "Stress and workload are both elevated. I'm swapping in some lighter, "
                "stress-relieving sessions for a few days."
            ),
            source_rules=[RuleKind.stress],
        )

    return None


def evaluate_sleep(snapshot, profile, scores):
    sleep_hours = snapshot.lifestyle.sleep_hours
    sleep_quality = snapshot.lifestyle.sleep_quality

    if sleep_hours < 5 or sleep_quality < 3:
        return Recommendation(
            type=RecommendationType.rest_day,
            priority=Priority.critical,
            reason="Severely inadequate sleep - mandatory rest",
            changes=_changes((ChangeTarget.rest, "+2 days")),
            duration_days=2,
            explanation=(
                "Your sleep is critically low. I'm prescribing 2 rest days to prioritize "
                "recovery. Let's focus on sleep hygiene."
            ),
            source_rules=[RuleKind.sleep],
        )

    if sleep_hours < 6 and sleep_quality < 5:
        return Recommendation(
            type=RecommendationType.rest_day,
            priority=Priority.medium,
            reason="Short, poor-quality sleep - extra rest day",
            changes=_changes((ChangeTarget.rest, "+1 day")),
            duration_days=1,
            explanation="Your sleep has been short and restless. Take an extra rest day this week.",
            source_rules=[RuleKind.sleep],
        )

    return None


# ------------------------------------------------------------
# PUBLIC API
# ------------------------------------------------------------

RULES: tuple[Rule, ...] = (
    Rule(RuleKind.fatigue, evaluate_fatigue),
    Rule(RuleKind.consistency, evaluate_consistency),
    Rule(RuleKind.progressive_overload, evaluate_progressive_overload),
    Rule(RuleKind.recovery, evaluate_recovery),
    Rule(RuleKind.motivation, evaluate_motivation),
    Rule(RuleKind.plateau, evaluate_plateau),
    Rule(RuleKind.stress, evaluate_stress),
    Rule(RuleKind.sleep, evaluate_sleep),
)

RULES_BY_KIND = {rule.kind: rule for rule in RULES}


def rules_for(kinds: Sequence[RuleKind]) -> list[Rule]:
    """Rules of a rule-set version, in the canonical order."""
    wanted = set(kinds)
    return [rule for rule in RULES if rule.kind in wanted]


def evaluate_rules(
    rules: Sequence[Rule],
    snapshot: StateSnapshot,
    profile: UserProfile,
    scores: CompositeScores,
) -> list[tuple[RuleKind, Recommendation]]:
    fired = []
    for rule in rules:
        recommendation = rule.evaluate(snapshot, profile, scores)
        if recommendation is not None:
            fired.append((rule.kind, recommendation))
    return fired
