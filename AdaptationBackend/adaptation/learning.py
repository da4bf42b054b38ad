# ============================================================
# Learning store · Adaptation Engine
# ============================================================
# Enregistre les recommandations appliquées, capte les outcomes et met à jour
# les poids globaux, le profil utilisateur et les analytics.
# L'apprentissage est "best effort" : une panne de persistance est loggée,
# jamais propagée au chemin de décision.
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from adaptation.errors import PersistenceError, StaleWriteError, UnknownRuleSetVersionError
from adaptation.metrics import EFFECTIVE_THRESHOLD, adaptation_efficiency, clamp, mean
from adaptation.versions import RuleSetRegistry
from adaptation.weights import WeightRegistry
from config import CONFIDENCE_STEP, FAILED_EFFECTIVENESS
from schemas.learning import (
    AdaptationAnalytics,
    AdaptationRecord,
    Outcome,
    RateAggregate,
    RuleSetVersion,
    RuleWeightState,
)
from schemas.profile import CompositeScores, UserProfile
from schemas.recommendation import ChangeTarget, Recommendation, RuleKind
from schemas.snapshot import StateSnapshot

logger = logging.getLogger(__name__)

WEIGHT_WRITE_ATTEMPTS = 3
RESPONSIVENESS_STEP = 0.1
RESPONSIVE_EFFICIENCY = 70
MAX_FAILURE_PATTERNS = 10

# stratégie de motivation qui a marché -> déclencheur du profil
STRATEGY_TRIGGERS = {
    "variety_injection": "variety",
    "rotate_workout_types": "variety",
    "competition_element": "competition",
    "personal_record_focus": "PBs",
    "pb_focus": "PBs",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def calculate_effectiveness(outcome: Outcome) -> float:
    return clamp(
        mean([outcome.adherence_change, outcome.motivation_change, outcome.performance_change]),
        -1.0,
        1.0,
    )


def ema_step(state: RuleWeightState, effectiveness: float, now: datetime) -> RuleWeightState:
    """Moyenne mobile exponentielle ; l'observation est ramenée dans 0..1."""
    observation = clamp(effectiveness, 0.0, 1.0)
    rate = state.effectiveness_rate + state.learning_rate * (observation - state.effectiveness_rate)
    return state.model_copy(
        update={
            "effectiveness_rate": clamp(rate, 0.0, 1.0),
            "samples": state.samples + 1,
            "updated_at": now,
        }
    )


def rule_combination(kinds: Iterable[RuleKind]) -> str:
    return "+".join(sorted({k.value for k in kinds})) or "none"


def _named_adjustments(rec: Recommendation) -> list[str]:
    return [c.adjustment for c in rec.changes if isinstance(c.adjustment, str)]


def _append_unique(values: list[str], value: str) -> list[str]:
    return values if value in values else [*values, value]


def _bump(aggregates: dict[str, RateAggregate], key: str, success: bool) -> dict[str, RateAggregate]:
    current = aggregates.get(key) or RateAggregate()
    count = current.count + 1
    successes = current.successes + int(success)
    updated = dict(aggregates)
    updated[key] = RateAggregate(count=count, successes=successes, success_rate=successes / count)
    return updated


class LearningStore:
    def __init__(
        self,
        store,
        weights: WeightRegistry,
        versions: RuleSetRegistry,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.weights = weights
        self.versions = versions
        self.clock = clock

        self._analytics_lock = threading.Lock()
        try:
            self._analytics = store.load_analytics() or AdaptationAnalytics()
        except PersistenceError:
            logger.warning("analytics unavailable at startup, starting empty", exc_info=True)
            self._analytics = AdaptationAnalytics()

    # ======================================================
    # 👤 PROFILS
    # ======================================================
    def get_profile(self, user_id: str) -> UserProfile:
        """Load-or-create : exactement un profil par utilisateur."""
        try:
            profile = self.store.load_profile(user_id)
        except PersistenceError:
            logger.warning("profile load failed for %s, using defaults", user_id, exc_info=True)
            return UserProfile(user_id=user_id)

        if profile is not None:
            return profile

        profile = UserProfile(user_id=user_id, updated_at=self.clock())
        self._save_profile(profile)
        logger.info("created profile for %s", user_id)
        return profile

    def _save_profile(self, profile: UserProfile) -> None:
        try:
            self.store.save_profile(profile)
        except PersistenceError:
            logger.warning("profile save failed for %s", profile.user_id, exc_info=True)

    def note_analysis(self, profile: UserProfile, scores: CompositeScores) -> UserProfile:
        updated = profile.model_copy(
            update={
                "confidence_level": min(1.0, profile.confidence_level + CONFIDENCE_STEP),
                "adaptation_responsiveness": self._responsiveness(profile, scores.adaptation_efficiency),
                "updated_at": self.clock(),
            }
        )
        self._save_profile(updated)
        return updated

    @staticmethod
    def _responsiveness(profile: UserProfile, efficiency: int) -> float:
        if efficiency > RESPONSIVE_EFFICIENCY:
            return min(1.0, profile.adaptation_responsiveness + RESPONSIVENESS_STEP)
        return profile.adaptation_responsiveness

    # ======================================================
    # 📝 HISTORIQUE
    # ======================================================
    def history(self, user_id: str) -> list[AdaptationRecord]:
        try:
            return self.store.load_records(user_id)
        except PersistenceError:
            logger.warning("history unavailable for %s, assuming none", user_id, exc_info=True)
            return []

    def record_application(
        self,
        snapshot: StateSnapshot,
        recommendation: Recommendation,
        scores: CompositeScores,
        rule_set_version: Optional[str] = None,
    ) -> AdaptationRecord:
        """Crée l'enregistrement "pending" ; l'outcome arrive plus tard."""
        record = AdaptationRecord(
            id=uuid.uuid4().hex,
            user_id=snapshot.user_id,
            timestamp=self.clock(),
            triggered_rules=list(recommendation.source_rules),
            recommendation=recommendation,
            scores=scores,
            rule_set_version=rule_set_version,
            segment=snapshot.segment,
        )
        self.store.append_record(record)
        logger.info(
            "adaptation %s applied for %s (%s)", record.id, record.user_id, recommendation.type.value
        )
        return record

    def record_outcome(
        self, user_id: str, adaptation_id: str, outcome: Outcome
    ) -> Optional[AdaptationRecord]:
        try:
            record = self.store.get_record(user_id, adaptation_id)
        except PersistenceError:
            logger.warning("cannot load adaptation %s", adaptation_id, exc_info=True)
            return None

        if record is None:
            logger.warning("outcome for unknown adaptation %s (user %s) ignored", adaptation_id, user_id)
            return None

        if not record.is_pending:
            logger.warning("outcome for adaptation %s already recorded, ignored", adaptation_id)
            return None

        effectiveness = calculate_effectiveness(outcome)
        completed = record.model_copy(update={"outcome": outcome, "effectiveness": effectiveness})

        try:
            self.store.complete_record(completed)
        except StaleWriteError:
            logger.warning("outcome for adaptation %s reported concurrently, ignored", adaptation_id)
            return None
        except PersistenceError:
            logger.error("cannot save outcome of adaptation %s", adaptation_id, exc_info=True)
            return None

        self._update_weights(completed)
        self._update_profile(completed)
        self._update_analytics(completed)
        self._update_version_performance(completed)

        logger.info(
            "outcome recorded for %s: %s effectiveness=%.2f",
            adaptation_id,
            completed.recommendation.type.value,
            effectiveness,
        )
        return completed

    # ======================================================
    # ⚖️ POIDS (EMA + écriture optimiste)
    # ======================================================
    def _update_weights(self, record: AdaptationRecord) -> None:
        rec_type = record.recommendation.type
        now = self.clock()

        for attempt in range(1, WEIGHT_WRITE_ATTEMPTS + 1):
            try:
                stored = self.store.load_weight(rec_type) or self.weights.snapshot().get(rec_type).model_copy(
                    update={"version": 0}
                )
                saved = self.store.save_weight(ema_step(stored, record.effectiveness, now), stored.version)
            except StaleWriteError:
                logger.info("stale weight write for %s (attempt %d), retrying", rec_type.value, attempt)
                continue
            except PersistenceError:
                logger.warning("weight persistence failed for %s", rec_type.value, exc_info=True)
                break

            self.weights.replace(saved)
            return

        # le processus continue d'apprendre même si la persistance échoue
        logger.warning("weight for %s updated in memory only", rec_type.value)
        self.weights.update(rec_type, lambda state: ema_step(state, record.effectiveness, now))

    # ======================================================
    # 👤 PROFIL (depuis l'outcome)
    # ======================================================
    def _update_profile(self, record: AdaptationRecord) -> None:
        profile = self.get_profile(record.user_id)
        rec = record.recommendation
        outcome = record.outcome
        effective = record.effectiveness > EFFECTIVE_THRESHOLD

        efficiency = adaptation_efficiency(self.history(record.user_id))

        motivational = list(profile.motivational_triggers)
        plateau_breakers = list(profile.plateau_breakers)
        fatigue_triggers = list(profile.common_fatigue_triggers)

        if effective:
            for adjustment in _named_adjustments(rec):
                trigger = STRATEGY_TRIGGERS.get(adjustment)
                if trigger:
                    motivational = _append_unique(motivational, trigger)
                if RuleKind.plateau in rec.source_rules:
                    plateau_breakers = _append_unique(plateau_breakers, adjustment)

        # une hausse de charge suivie d'une baisse de performance = déclencheur de fatigue
        if outcome.performance_change < 0:
            for target in (ChangeTarget.intensity, ChangeTarget.volume):
                change = rec.numeric_change(target)
                if change is not None and change > 0:
                    fatigue_triggers = _append_unique(fatigue_triggers, f"{target.value}_increase")

        updated = profile.model_copy(
            update={
                "confidence_level": min(1.0, profile.confidence_level + CONFIDENCE_STEP),
                "adaptation_responsiveness": self._responsiveness(profile, efficiency),
                "motivational_triggers": motivational,
                "plateau_breakers": plateau_breakers,
                "common_fatigue_triggers": fatigue_triggers,
                "updated_at": self.clock(),
            }
        )
        self._save_profile(updated)

    # ======================================================
    # 📊 ANALYTICS
    # ======================================================
    def analytics(self) -> AdaptationAnalytics:
        return self._analytics

    def _update_analytics(self, record: AdaptationRecord) -> None:
        success = record.effectiveness > EFFECTIVE_THRESHOLD
        failed = record.effectiveness < FAILED_EFFECTIVENESS
        rec_type = record.recommendation.type.value
        combination = rule_combination(record.triggered_rules or record.recommendation.source_rules)

        with self._analytics_lock:
            current = self._analytics
            patterns = list(current.common_failure_patterns)
            if failed:
                pattern = f"{rec_type}:{combination}"
                if pattern in patterns:
                    patterns.remove(pattern)
                patterns = [pattern, *patterns][:MAX_FAILURE_PATTERNS]

            self._analytics = current.model_copy(
                update={
                    "data_points": current.data_points + 1,
                    "by_type": _bump(current.by_type, rec_type, success),
                    "by_segment": _bump(current.by_segment, record.segment, success),
                    "by_rule_combination": _bump(current.by_rule_combination, combination, success),
                    "common_failure_patterns": patterns,
                    "updated_at": self.clock(),
                }
            )
            analytics = self._analytics

        try:
            self.store.save_analytics(analytics)
        except PersistenceError:
            logger.warning("analytics persistence failed", exc_info=True)

    def _update_version_performance(self, record: AdaptationRecord) -> None:
        if not record.rule_set_version:
            return

        satisfaction = record.outcome.satisfaction_rating

        def step(version: RuleSetVersion) -> RuleSetVersion:
            perf = version.performance
            outcomes = perf.outcomes + 1
            update = {
                "outcomes": outcomes,
                "avg_effectiveness": perf.avg_effectiveness + (record.effectiveness - perf.avg_effectiveness) / outcomes,
            }
            if satisfaction is not None:
                rated = perf.rated_outcomes + 1
                update["rated_outcomes"] = rated
                update["avg_satisfaction"] = perf.avg_satisfaction + (satisfaction - perf.avg_satisfaction) / rated
            return version.model_copy(update={"performance": perf.model_copy(update=update)})

        try:
            version = self.versions.update_version(record.rule_set_version, step)
        except UnknownRuleSetVersionError:
            logger.warning(
                "adaptation %s references unknown rule set %s", record.id, record.rule_set_version
            )
            return

        try:
            self.store.save_rule_set(version)
        except PersistenceError:
            logger.warning("rule set %s performance not persisted", version.version_id, exc_info=True)
