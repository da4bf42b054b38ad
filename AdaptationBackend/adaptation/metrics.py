# ============================================================
# Composite scores · Adaptation Engine
# ============================================================
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import numpy as np

from schemas.learning import AdaptationRecord
from schemas.profile import CompositeScores, UserProfile
from schemas.recommendation import ChangeTarget
from schemas.snapshot import MoodTrend, StateSnapshot, WorkoutSession

# ------------------------------------------------------------
# CONFIG
# ------------------------------------------------------------

NEUTRAL = 0.5
VOLATILITY_WINDOW_DAYS = 30
VOLATILITY_RECORDS_CAP = 8  # 8 adaptations en 30 jours = plan très instable
VOLATILITY_CHANGE_CAP = 50.0  # % de variation d'intensité
GAIN_TARGET = 0.05  # +5 % de progression moyenne = vitesse maximale
EFFECTIVE_THRESHOLD = 0.6

MOOD_TREND_VALUES = {
    MoodTrend.improving: 1.0,
    MoodTrend.stable: 0.5,
    MoodTrend.declining: 0.0,
}


# ------------------------------------------------------------
# INTERNAL HELPERS
# ------------------------------------------------------------


def mean(values):
    return float(np.mean(values)) if len(values) else 0.0


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def to_score(fraction: float) -> int:
    """0..1 -> entier 0..100, borné."""
    return int(round(clamp(fraction) * 100))


def _completed(history: Iterable[AdaptationRecord]) -> list[AdaptationRecord]:
    return [h for h in history if not h.is_pending]


def _as_utc(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


# ------------------------------------------------------------
# SCORES
# ------------------------------------------------------------


def fatigue_resilience(sessions: list[WorkoutSession]) -> float:
    """
    Complétion moyenne pondérée par l'inverse de la fatigue ressentie.
    Haute résilience = forte complétion malgré peu de fatigue.
    """
    if not sessions:
        return NEUTRAL

    avg_fatigue = mean([s.reported_fatigue for s in sessions])
    avg_completion = mean([s.completion_rate for s in sessions])

    return clamp(avg_completion * (1 - avg_fatigue / 10))


def recovery_index(snapshot: StateSnapshot) -> int:
    lifestyle = snapshot.lifestyle

    sleep_factor = clamp(lifestyle.sleep_hours / 8) * (lifestyle.sleep_quality / 10)
    stress_factor = (10 - lifestyle.stress_level) / 10
    workload_factor = (10 - lifestyle.workload) / 10
    resilience = fatigue_resilience(snapshot.recent_sessions)

    return to_score((sleep_factor + stress_factor + workload_factor + resilience) / 4)


def engagement_score(snapshot: StateSnapshot) -> int:
    progress = snapshot.progress

    return to_score(
        progress.weekly_consistency * 0.4
        + (snapshot.mood.motivation / 10) * 0.3
        + (progress.average_rating / 10) * 0.3
    )


def plan_volatility(history: list[AdaptationRecord], now: datetime) -> int:
    """
    Ampleur des changements de plan sur 30 jours.
    Sans historique : 0, le plan n'a pas bougé.
    """
    window_start = now - timedelta(days=VOLATILITY_WINDOW_DAYS)
    recent = [h for h in history if _as_utc(h.timestamp) >= window_start]

    if not recent:
        return 0

    intensity_changes = [
        abs(change)
        for h in recent
        if (change := h.recommendation.numeric_change(ChangeTarget.intensity))
        is not None
    ]

    frequency_part = clamp(len(recent) / VOLATILITY_RECORDS_CAP)
    magnitude_part = clamp(mean(intensity_changes) / VOLATILITY_CHANGE_CAP)

    return to_score(0.5 * frequency_part + 0.5 * magnitude_part)


def metabolic_adaptation_score(snapshot: StateSnapshot, profile: UserProfile) -> int:
    return to_score(
        0.5 * profile.adaptation_responsiveness
        + 0.25 * (snapshot.lifestyle.energy_level / 10)
        + 0.25 * snapshot.lifestyle.nutrition_compliance
    )


def rating_trend(sessions: list[WorkoutSession]) -> float:
    """Pente des notes sur les 5 dernières séances, ramenée sur 0..1 (0.5 = stable)."""
    ratings = [s.user_rating for s in sessions[-5:]]
    if len(ratings) < 2:
        return NEUTRAL

    slope = (ratings[-1] - ratings[0]) / len(ratings)
    return clamp(NEUTRAL + slope / 4)


def motivation_momentum(snapshot: StateSnapshot) -> int:
    mood = snapshot.mood

    return to_score(
        0.5 * (mood.motivation / 10)
        + 0.3 * rating_trend(snapshot.recent_sessions)
        + 0.2 * MOOD_TREND_VALUES[mood.recent_trend]
    )


def adherence_quality(snapshot: StateSnapshot) -> int:
    sessions = snapshot.recent_sessions
    if not sessions:
        return 50

    quality = [
        (s.completion_rate + (10 - s.reported_fatigue) / 10 + s.user_rating / 10) / 3
        for s in sessions
    ]
    return to_score(mean(quality))


def progress_velocity(snapshot: StateSnapshot) -> int:
    progress = snapshot.progress
    gains = list(progress.strength_gains.values()) + list(progress.cardio_gains.values())

    gain_level = clamp(mean(gains) / GAIN_TARGET) if gains else NEUTRAL
    session_volume = clamp(len(snapshot.recent_sessions[-10:]) / 10)

    return to_score(
        0.5 * gain_level
        + 0.25 * session_volume
        + 0.25 * progress.monthly_consistency
    )


def resilience_index(snapshot: StateSnapshot, profile: UserProfile) -> int:
    recovery_speed = clamp(1 - (profile.average_recovery_time - 1) / 6)

    return to_score(
        0.4 * recovery_speed
        + 0.3 * profile.adaptation_responsiveness
        + 0.3 * (snapshot.mood.confidence / 10)
    )


def adaptation_efficiency(history: list[AdaptationRecord]) -> int:
    completed = _completed(history)
    if not completed:
        return 50

    effective_share = len([h for h in completed if h.effectiveness > EFFECTIVE_THRESHOLD]) / len(completed)
    mean_effectiveness = mean([h.effectiveness for h in completed])

    return to_score(0.5 * effective_share + 0.5 * (mean_effectiveness + 1) / 2)


# ------------------------------------------------------------
# PUBLIC API
# ------------------------------------------------------------


def calculate_composite_scores(
    snapshot: StateSnapshot,
    profile: UserProfile,
    history: Iterable[AdaptationRecord] = (),
    now: Optional[datetime] = None,
) -> CompositeScores:
    """
    Dérive les scores composites d'un snapshot.
    Fonction pure : aucune entrée partielle ne la fait échouer,
    les données absentes retombent sur des valeurs neutres.
    """
    history = list(history)
    now = _as_utc(now or datetime.now(timezone.utc))

    return CompositeScores(
        recovery_index=recovery_index(snapshot),
        engagement_score=engagement_score(snapshot),
        plan_volatility=plan_volatility(history, now),
        metabolic_adaptation_score=metabolic_adaptation_score(snapshot, profile),
        motivation_momentum=motivation_momentum(snapshot),
        adherence_quality=adherence_quality(snapshot),
        progress_velocity=progress_velocity(snapshot),
        resilience_index=resilience_index(snapshot, profile),
        adaptation_efficiency=adaptation_efficiency(history),
    )
