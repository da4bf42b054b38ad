# ============================================================
# Adaptation Decision Engine · orchestration
# ============================================================
# snapshot -> scores -> règles -> interactions/chaînage -> filtre historique
# -> poids -> tri stable par priorité -> mise à jour du profil
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from adaptation.errors import PersistenceError
from adaptation.explanation import build_explanation, build_preemptive_plan, predict_future_needs
from adaptation.history import filter_by_history
from adaptation.interactions import RuleContext, analyze_interactions, apply_rule_chaining
from adaptation.learning import LearningStore
from adaptation.metrics import calculate_composite_scores, clamp
from adaptation.narrative import TextGenerator, generate_narrative
from adaptation.refinement import apply_refinement
from adaptation.rules import evaluate_rules, rules_for
from adaptation.simulation import SimulationRunner
from adaptation.versions import RuleSetRegistry
from adaptation.weights import WeightRegistry, apply_weights
from config import REFINER_MIN_CONFIDENCE
from schemas.insight import AdaptationInsight, UserInsights
from schemas.learning import AdaptationRecord, Outcome, RuleSetVersion
from schemas.profile import CompositeScores, UserProfile
from schemas.recommendation import PRIORITY_RANK, ChangeTarget, Priority, Recommendation
from schemas.snapshot import StateSnapshot, WorkoutPlan

logger = logging.getLogger(__name__)

SIMULATED_PRIORITIES = {Priority.critical, Priority.high}
APPLIED_PRIORITIES = {Priority.critical, Priority.high}
RECENT_HISTORY_SIZE = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sort_by_priority(recommendations: Sequence[Recommendation]) -> list[Recommendation]:
    """Tri stable : l'ordre d'origine est conservé à priorité égale."""
    return sorted(recommendations, key=lambda rec: -PRIORITY_RANK[rec.priority])


@dataclass(frozen=True)
class Decision:
    profile: UserProfile
    scores: CompositeScores
    recommendations: list[Recommendation]
    rule_set_version: RuleSetVersion
    context: RuleContext
    history: list[AdaptationRecord]


class AdaptationDecisionEngine:
    def __init__(
        self,
        store,
        *,
        weights: Optional[WeightRegistry] = None,
        versions: Optional[RuleSetRegistry] = None,
        simulation: Optional[SimulationRunner] = None,
        refiner=None,
        text_generator: Optional[TextGenerator] = None,
        clock: Callable[[], datetime] = _utcnow,
        refiner_min_confidence: float = REFINER_MIN_CONFIDENCE,
    ):
        self.store = store
        self.clock = clock
        self.weights = weights if weights is not None else WeightRegistry()
        self.versions = versions if versions is not None else RuleSetRegistry()
        self.learning = LearningStore(store, self.weights, self.versions, clock)
        self.simulation = simulation
        self.refiner = refiner
        self.text_generator = text_generator
        self.refiner_min_confidence = refiner_min_confidence

    # ======================================================
    # 🧠 ANALYSE
    # ======================================================
    def _decide(self, snapshot: StateSnapshot) -> Decision:
        now = self.clock()
        user_id = snapshot.user_id

        profile = self.learning.get_profile(user_id)
        history = self.learning.history(user_id)
        version = self.versions.version_for_user(user_id)

        scores = calculate_composite_scores(snapshot, profile, history, now)

        fired = evaluate_rules(rules_for(version.rules), snapshot, profile, scores)
        context = analyze_interactions(fired)

        recommendations = apply_rule_chaining([rec for _, rec in fired], context)
        recommendations = filter_by_history(recommendations, history, now)
        recommendations = apply_weights(recommendations, self.weights.snapshot())
        recommendations = sort_by_priority(recommendations)

        profile = self.learning.note_analysis(profile, scores)

        logger.debug(
            "analyze %s: rules=%s strategies=%s -> %s",
            user_id,
            [kind.value for kind, _ in fired],
            context.emergent_strategies,
            [f"{r.type.value}/{r.priority.value}" for r in recommendations],
        )

        return Decision(
            profile=profile,
            scores=scores,
            recommendations=recommendations,
            rule_set_version=version,
            context=context,
            history=history,
        )

    def analyze(self, snapshot: StateSnapshot) -> list[Recommendation]:
        return self._decide(snapshot).recommendations

    def analyze_with_explanation(
        self, snapshot: StateSnapshot, seed: Optional[int] = None
    ) -> AdaptationInsight:
        decision = self._decide(snapshot)
        recommendations, refined = self._refine(decision)

        # chaque étape optionnelle échoue localement : le champ reste vide
        explanation = None
        try:
            explanation = build_explanation(recommendations, decision.scores, decision.profile, decision.history)
        except Exception:
            logger.exception("explanation failed for %s", snapshot.user_id)

        preemptive_plan = None
        try:
            preemptive_plan = build_preemptive_plan(snapshot, decision.profile, decision.scores, self.clock())
        except Exception:
            logger.exception("pre-emptive plan failed for %s", snapshot.user_id)

        simulation = None
        if self.simulation is not None and any(r.priority in SIMULATED_PRIORITIES for r in recommendations):
            try:
                simulation = self.simulation.run(snapshot, decision.profile, recommendations, seed=seed)
            except Exception:
                logger.exception("simulation failed for %s", snapshot.user_id)

        narrative = generate_narrative(recommendations, decision.scores, explanation, self.text_generator)

        return AdaptationInsight(
            user_id=snapshot.user_id,
            recommendations=recommendations,
            scores=decision.scores,
            rule_set_version=decision.rule_set_version.version_id,
            explanation=explanation,
            preemptive_plan=preemptive_plan,
            simulation=simulation,
            narrative=narrative,
            refined=refined,
        )

    def _refine(self, decision: Decision) -> tuple[list[Recommendation], bool]:
        recommendations = decision.recommendations
        if self.refiner is None or not recommendations:
            return recommendations, False

        try:
            prediction = self.refiner.predict(decision.scores, recommendations[0])
            return apply_refinement(recommendations, prediction, self.refiner_min_confidence)
        except Exception:
            logger.exception("ranking refinement failed, keeping rule output")
            return recommendations, False

    # ======================================================
    # 📝 APPLICATION & OUTCOMES
    # ======================================================
    def apply_recommendation(
        self, snapshot: StateSnapshot, recommendation: Recommendation
    ) -> AdaptationRecord:
        profile = self.learning.get_profile(snapshot.user_id)
        history = self.learning.history(snapshot.user_id)
        scores = calculate_composite_scores(snapshot, profile, history, self.clock())
        version = self.versions.version_for_user(snapshot.user_id)

        return self.learning.record_application(snapshot, recommendation, scores, version.version_id)

    def record_outcome(
        self, user_id: str, adaptation_id: str, outcome: Outcome
    ) -> Optional[AdaptationRecord]:
        return self.learning.record_outcome(user_id, adaptation_id, outcome)

    def user_insights(self, user_id: str) -> UserInsights:
        profile = self.learning.get_profile(user_id)
        history = self.learning.history(user_id)
        version = self.versions.version_for_user(user_id)

        return UserInsights(
            profile=profile,
            recent_history=history[-RECENT_HISTORY_SIZE:],
            rule_set_version=version.version_id,
            test_group=version.test_group if self.versions.test_group_for(user_id) else None,
            predicted_needs=predict_future_needs(profile, history),
        )

    @staticmethod
    def apply_changes(plan: WorkoutPlan, recommendations: Sequence[Recommendation]) -> WorkoutPlan:
        """Nouveau plan avec les changements numériques critiques/hauts appliqués et bornés."""
        intensity, volume, frequency = plan.intensity, plan.volume, plan.frequency

        for rec in recommendations:
            if rec.priority not in APPLIED_PRIORITIES:
                continue
            for change in rec.changes:
                if not isinstance(change.adjustment, (int, float)):
                    continue
                if change.target == ChangeTarget.intensity:
                    intensity = clamp(intensity * (1 + change.adjustment / 100), 1, 10)
                elif change.target == ChangeTarget.volume:
                    volume = max(1.0, volume * (1 + change.adjustment / 100))
                elif change.target == ChangeTarget.frequency:
                    frequency = int(clamp(round(frequency + change.adjustment), 1, 7))

        return plan.model_copy(
            update={"intensity": round(intensity, 2), "volume": round(volume, 2), "frequency": frequency}
        )

    # ======================================================
    # 🧪 ADMIN : VERSIONS DE RÈGLES
    # ======================================================
    def deploy_rule_set_version(
        self,
        version: RuleSetVersion,
        test_group_percent: float = 10,
        override: bool = False,
        seed: Optional[int] = None,
    ) -> list[str]:
        if version.activated_at is None:
            version = version.model_copy(update={"activated_at": self.clock()})

        user_ids = self.store.list_user_ids()
        assigned = self.versions.deploy(version, user_ids, test_group_percent, override=override, seed=seed)
        self._persist_rule_sets(version)
        return assigned

    def retire_rule_set_version(self, version_id: str) -> RuleSetVersion:
        retired = self.versions.retire(version_id, self.clock())
        self._persist_rule_sets(retired)
        return retired

    def _persist_rule_sets(self, version: RuleSetVersion) -> None:
        try:
            self.store.save_rule_set(version)
            self.store.save_assignments(self.versions.snapshot().assignments)
        except PersistenceError:
            logger.error("rule set %s not persisted", version.version_id, exc_info=True)
