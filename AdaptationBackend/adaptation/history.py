from datetime import datetime, timedelta, timezone
from typing import Iterable

from config import COOLDOWN_DAYS, FAILED_EFFECTIVENESS
from schemas.learning import AdaptationRecord
from schemas.recommendation import Priority, Recommendation, RecommendationType


def _as_utc(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def failed_types(history: Iterable[AdaptationRecord]) -> set[RecommendationType]:
    return {
        h.recommendation.type
        for h in history
        if not h.is_pending and h.effectiveness < FAILED_EFFECTIVENESS
    }


def recent_types(history: Iterable[AdaptationRecord], now: datetime) -> set[RecommendationType]:
    cutoff = _as_utc(now) - timedelta(days=COOLDOWN_DAYS)
    return {
        h.recommendation.type
        for h in history
        if not h.is_pending and _as_utc(h.timestamp) > cutoff
    }


def filter_by_history(
    recommendations: list[Recommendation],
    history: Iterable[AdaptationRecord],
    now: datetime,
) -> list[Recommendation]:
    """
    Écarte les types qui ont échoué (efficacité < 0.3) ou déjà essayés dans
    la fenêtre de cooldown. Une recommandation critique passe outre le cooldown,
    jamais l'échec. Les enregistrements sans outcome sont ignorés.
    """
    history = list(history)
    failed = failed_types(history)
    recent = recent_types(history, now)

    kept = []
    for rec in recommendations:
        if rec.type in failed:
            continue
        if rec.type in recent and rec.priority != Priority.critical:
            continue
        kept.append(rec)

    return kept
