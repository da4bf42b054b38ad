# ============================================================
# Data-driven weights · Adaptation Engine
# ============================================================
import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping

from config import DEFAULT_LEARNING_RATE
from schemas.learning import RuleWeightState
from schemas.recommendation import (
    Recommendation,
    RecommendationType,
    downgrade_priority,
    upgrade_priority,
)

logger = logging.getLogger(__name__)

DEFAULT_EFFECTIVENESS_RATE = 0.5
PROMOTION_RATE = 0.8
DEMOTION_RATE = 0.3


def default_weight_state(rec_type: RecommendationType) -> RuleWeightState:
    return RuleWeightState(recommendation_type=rec_type, learning_rate=DEFAULT_LEARNING_RATE)


# ------------------------------------------------------------
# COPY-ON-WRITE REGISTRY
# ------------------------------------------------------------


@dataclass(frozen=True)
class WeightBook:
    """Snapshot immuable des poids globaux ; remplacé en bloc, jamais modifié."""

    version: int = 0
    states: Mapping[RecommendationType, RuleWeightState] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def get(self, rec_type: RecommendationType) -> RuleWeightState:
        return self.states.get(rec_type) or default_weight_state(rec_type)

    def effectiveness_rate(self, rec_type: RecommendationType) -> float:
        state = self.states.get(rec_type)
        return state.effectiveness_rate if state else DEFAULT_EFFECTIVENESS_RATE


class WeightRegistry:
    """
    Holds the current WeightBook. Readers take the reference without locking;
    writers build a new book and swap it in under a compare-and-swap loop.
    """

    def __init__(self, states: Mapping[RecommendationType, RuleWeightState] | None = None):
        self._lock = threading.Lock()
        self._book = WeightBook(version=0, states=MappingProxyType(dict(states or {})))

    def snapshot(self) -> WeightBook:
        return self._book

    def replace(self, state: RuleWeightState) -> WeightBook:
        """
        Installs a state read back from the store. A state whose version is not
        newer than the one already held is ignored, so a slow writer cannot
        roll the book back to an older save.
        """
        current = self._book
        if current.get(state.recommendation_type).version >= state.version:
            logger.debug(
                "ignoring weight %s v%d (holding v%d)",
                state.recommendation_type.value,
                state.version,
                current.get(state.recommendation_type).version,
            )
            return current

        return self.update(
            state.recommendation_type,
            lambda held: held if held.version >= state.version else state,
        )

    def update(
        self,
        rec_type: RecommendationType,
        fn: Callable[[RuleWeightState], RuleWeightState],
    ) -> WeightBook:
        while True:
            current = self._book
            new_state = fn(current.get(rec_type))
            states = dict(current.states)
            states[rec_type] = new_state
            candidate = WeightBook(version=current.version + 1, states=MappingProxyType(states))

            with self._lock:
                if self._book is current:
                    self._book = candidate
                    return candidate

            logger.debug("weight book changed during update of %s, retrying", rec_type.value)


# ------------------------------------------------------------
# WEIGHT ADJUSTER
# ------------------------------------------------------------


def apply_weights(
    recommendations: list[Recommendation], weights: WeightBook
) -> list[Recommendation]:
    """
    Promotion d'un palier si le type marche (> 0.8), rétrogradation si
    il échoue (< 0.3). Taux inconnu -> 0.5, aucune modification.
    """
    adjusted = []
    for rec in recommendations:
        rate = weights.effectiveness_rate(rec.type)

        if rate > PROMOTION_RATE:
            rec = rec.model_copy(update={"priority": upgrade_priority(rec.priority)})
        elif rate < DEMOTION_RATE:
            rec = rec.model_copy(update={"priority": downgrade_priority(rec.priority)})

        adjusted.append(rec)

    return adjusted
