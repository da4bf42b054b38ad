# ============================================================
# Rule interactions & chaining · Adaptation Engine
# ============================================================
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, NamedTuple, Optional

from schemas.recommendation import (
    ChangeTarget,
    PlanChange,
    Priority,
    Recommendation,
    RecommendationType,
    RuleKind,
    max_priority,
)

logger = logging.getLogger(__name__)


class InteractionType(str, Enum):
    amplify = "amplify"
    suppress = "suppress"
    redirect = "redirect"
    merge = "merge"


class InteractionEntry(NamedTuple):
    rules: frozenset
    interaction_type: InteractionType
    strategy: str
    target_priority: Priority
    priority_multiplier: float
    factor: str


INTERACTION_TABLE: tuple[InteractionEntry, ...] = (
    # stress + fatigue : intervention immédiate
    InteractionEntry(
        frozenset({RuleKind.fatigue, RuleKind.stress}),
        InteractionType.amplify,
        "comprehensive_recovery_protocol",
        Priority.critical,
        1.5,
        "high_stress_fatigue_compound",
    ),
    # plateau + régularité faible : approche plus simple
    InteractionEntry(
        frozenset({RuleKind.plateau, RuleKind.consistency}),
        InteractionType.redirect,
        "simplified_progression_plan",
        Priority.high,
        1.2,
        "plateau_consistency_issue",
    ),
    # motivation basse + besoin de progression : gamification
    InteractionEntry(
        frozenset({RuleKind.motivation, RuleKind.progressive_overload}),
        InteractionType.merge,
        "gamified_progression_system",
        Priority.medium,
        1.1,
        "motivation_progression_synergy",
    ),
)


@dataclass(frozen=True)
class InteractionMatch:
    entry: InteractionEntry
    compound_priority: Priority


@dataclass(frozen=True)
class RuleContext:
    triggered_rules: tuple
    matches: tuple = ()
    contextual_factors: tuple = ()
    compound_priority: Optional[Priority] = None

    @property
    def emergent_strategies(self) -> list[str]:
        return [m.entry.strategy for m in self.matches]

    @property
    def emergent_strategy(self) -> Optional[str]:
        return self.matches[0].entry.strategy if self.matches else None


# ------------------------------------------------------------
# DETECTION
# ------------------------------------------------------------


def analyze_interactions(fired: list[tuple[RuleKind, Recommendation]]) -> RuleContext:
    """
    Lookup pur dans la table : déterministe pour un ensemble de règles déclenchées.
    """
    priorities: dict[RuleKind, Priority] = {}
    for kind, rec in fired:
        previous = priorities.get(kind)
        priorities[kind] = rec.priority if previous is None else max_priority(previous, rec.priority)

    fired_kinds = set(priorities)
    matches = []

    for entry in INTERACTION_TABLE:
        if not entry.rules <= fired_kinds:
            continue
        compound = max_priority(entry.target_priority, *(priorities[k] for k in entry.rules))
        matches.append(InteractionMatch(entry=entry, compound_priority=compound))

    compound_priority = (
        max_priority(*(m.compound_priority for m in matches)) if matches else None
    )

    return RuleContext(
        triggered_rules=tuple(kind for kind, _ in fired),
        matches=tuple(matches),
        contextual_factors=tuple(m.entry.factor for m in matches),
        compound_priority=compound_priority,
    )


# ------------------------------------------------------------
# CHAINING
# ------------------------------------------------------------


def _merge_changes(change_lists, numeric_pick) -> list[PlanChange]:
    """
    Une seule directive numérique par cible (choisie par numeric_pick),
    directives nommées conservées dans l'ordre, sans doublon.
    """
    numeric: dict[ChangeTarget, list[float]] = {}
    order: list[ChangeTarget] = []
    named: list[PlanChange] = []

    for changes in change_lists:
        for change in changes:
            if isinstance(change.adjustment, (int, float)):
                if change.target not in numeric:
                    numeric[change.target] = []
                    order.append(change.target)
                numeric[change.target].append(float(change.adjustment))
            elif change not in named:
                named.append(change)

    merged = [PlanChange(target=t, adjustment=numeric_pick(numeric[t])) for t in order]
    return merged + named


def _union_rules(recs) -> list[RuleKind]:
    kinds = []
    for rec in recs:
        for kind in rec.source_rules:
            if kind not in kinds:
                kinds.append(kind)
    return kinds


def _replace(recommendations, consumed, compound):
    """Remplace les recommandations consommées par la recommandation composée, à la place de la première."""
    position = min(recommendations.index(rec) for rec in consumed)
    result = [rec for rec in recommendations if rec not in consumed]
    result.insert(min(position, len(result)), compound)
    return result


def _from_rules(recommendations, kinds) -> list[Recommendation]:
    return [rec for rec in recommendations if set(rec.source_rules) & set(kinds)]


def comprehensive_recovery_protocol(recommendations, match: InteractionMatch):
    consumed = _from_rules(recommendations, match.entry.rules)
    if len(consumed) < 2:
        return recommendations

    compound = Recommendation(
        type=RecommendationType.recovery,
        priority=match.compound_priority,
        reason="Comprehensive recovery protocol: " + "; ".join(rec.reason for rec in consumed),
        # la correction la plus prudente l'emporte
        changes=_merge_changes([rec.changes for rec in consumed], min),
        duration_days=max(rec.duration_days for rec in consumed),
        explanation=" ".join(rec.explanation for rec in consumed),
        source_rules=_union_rules(consumed),
    )
    return _replace(recommendations, consumed, compound)


def simplified_progression_plan(recommendations, match: InteractionMatch):
    consistency = _from_rules(recommendations, [RuleKind.consistency])
    plateau = _from_rules(recommendations, [RuleKind.plateau])
    if not consistency or not plateau:
        return recommendations

    # redirect : la surcharge du plateau est abandonnée au profit de la simplification
    base = consistency[0]
    compound = Recommendation(
        type=RecommendationType.frequency,
        priority=match.compound_priority,
        reason="Simplified progression plan: " + base.reason,
        changes=_merge_changes(
            [base.changes, [PlanChange(target=ChangeTarget.exercise, adjustment="simplified_progression")]],
            min,
        ),
        duration_days=max(base.duration_days, plateau[0].duration_days),
        explanation=(
            base.explanation
            + " Your progress has also stalled, so we'll rebuild consistency with a simpler "
            "progression before adding load again."
        ),
        source_rules=_union_rules(consistency + plateau),
    )
    return _replace(recommendations, consistency + plateau, compound)


def gamified_progression_system(recommendations, match: InteractionMatch):
    motivation = _from_rules(recommendations, [RuleKind.motivation])
    overload = _from_rules(recommendations, [RuleKind.progressive_overload])
    if not motivation or not overload:
        return recommendations

    consumed = motivation + overload
    compound = Recommendation(
        type=RecommendationType.exercise_swap,
        priority=match.compound_priority,
        reason="Gamified progression system: " + "; ".join(rec.reason for rec in consumed),
        # la progression (surcharge) fixe les valeurs numériques
        changes=_merge_changes(
            [
                overload[0].changes,
                motivation[0].changes,
                [PlanChange(target=ChangeTarget.exercise, adjustment="gamified_progression")],
            ],
            lambda values: values[0],
        ),
        duration_days=max(rec.duration_days for rec in consumed),
        explanation=(
            "We'll turn your next block into a series of progression challenges. "
            + " ".join(rec.explanation for rec in consumed)
        ),
        source_rules=_union_rules(consumed),
    )
    return _replace(recommendations, consumed, compound)


CHAINING_STRATEGIES: dict[str, Callable] = {
    "comprehensive_recovery_protocol": comprehensive_recovery_protocol,
    "simplified_progression_plan": simplified_progression_plan,
    "gamified_progression_system": gamified_progression_system,
}


def merge_critical_duplicates(recommendations: list[Recommendation]) -> list[Recommendation]:
    """
    Deux recommandations critiques du même type n'en font qu'une : la
    correction la plus prudente l'emporte, les règles sources sont réunies.
    """
    result: list[Recommendation] = []

    for rec in recommendations:
        position = next(
            (
                i for i, kept in enumerate(result)
                if rec.priority == Priority.critical
                and kept.priority == Priority.critical
                and kept.type == rec.type
            ),
            None,
        )
        if position is None:
            result.append(rec)
            continue

        kept = result[position]
        result[position] = kept.model_copy(
            update={
                "reason": f"{kept.reason}; {rec.reason}",
                "changes": _merge_changes([kept.changes, rec.changes], min),
                "duration_days": max(kept.duration_days, rec.duration_days),
                "explanation": f"{kept.explanation} {rec.explanation}",
                "source_rules": _union_rules([kept, rec]),
            }
        )
        logger.debug("merged duplicate critical %s recommendation", rec.type.value)

    return result


def apply_rule_chaining(
    recommendations: list[Recommendation], context: RuleContext
) -> list[Recommendation]:
    result = list(recommendations)

    for match in context.matches:
        handler = CHAINING_STRATEGIES.get(match.entry.strategy)
        if handler is None:
            continue
        result = handler(result, match)
        logger.debug("chaining applied: %s", match.entry.strategy)

    return merge_critical_duplicates(result)
