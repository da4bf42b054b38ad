# ============================================================
# Versioned rule sets (A/B testing) · Adaptation Engine
# ============================================================
import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Sequence

import numpy as np

from adaptation.errors import UnknownRuleSetVersionError
from config import BASELINE_RULE_SET_VERSION
from schemas.learning import RuleSetVersion
from schemas.recommendation import RuleKind

logger = logging.getLogger(__name__)


def baseline_rule_set(activated_at: Optional[datetime] = None) -> RuleSetVersion:
    return RuleSetVersion(
        version_id=BASELINE_RULE_SET_VERSION,
        version_name="baseline_rule_set",
        rules=list(RuleKind),
        rule_weights={
            RuleKind.fatigue: 1.0,
            RuleKind.consistency: 0.8,
            RuleKind.progressive_overload: 0.7,
            RuleKind.recovery: 0.9,
            RuleKind.motivation: 0.6,
            RuleKind.plateau: 0.7,
            RuleKind.stress: 0.9,
            RuleKind.sleep: 0.8,
        },
        activated_at=activated_at,
        description="Initial production rule set with balanced weights",
        change_summary=["Initial release"],
    )


@dataclass(frozen=True)
class RuleSetState:
    version: int = 0
    versions: Mapping[str, RuleSetVersion] = field(default_factory=lambda: MappingProxyType({}))
    assignments: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


class RuleSetRegistry:
    """
    Versions + affectation utilisateur -> version, en copy-on-write.
    Lu à chaque appel, écrit rarement (opérations d'admin, performance).
    """

    def __init__(
        self,
        versions: Sequence[RuleSetVersion] = (),
        assignments: Mapping[str, str] | None = None,
        baseline_id: str = BASELINE_RULE_SET_VERSION,
    ):
        self._lock = threading.Lock()
        self.baseline_id = baseline_id

        known = {v.version_id: v for v in versions}
        if baseline_id not in known:
            known[baseline_id] = baseline_rule_set()

        self._state = RuleSetState(
            version=0,
            versions=MappingProxyType(known),
            assignments=MappingProxyType(dict(assignments or {})),
        )

    # --------------------------------------------------
    # lecture
    # --------------------------------------------------
    def snapshot(self) -> RuleSetState:
        return self._state

    def get(self, version_id: str) -> RuleSetVersion:
        version = self._state.versions.get(version_id)
        if version is None:
            raise UnknownRuleSetVersionError(version_id)
        return version

    def test_group_for(self, user_id: str) -> Optional[str]:
        return self._state.assignments.get(user_id)

    def version_for_user(self, user_id: str) -> RuleSetVersion:
        state = self._state
        pinned = state.assignments.get(user_id)
        version = state.versions.get(pinned) if pinned else None

        if version is None or not version.is_active:
            return state.versions[self.baseline_id]
        return version

    # --------------------------------------------------
    # écriture (compare-and-swap)
    # --------------------------------------------------
    def _swap(self, build: Callable[[RuleSetState], RuleSetState]) -> RuleSetState:
        while True:
            current = self._state
            candidate = build(current)
            with self._lock:
                if self._state is current:
                    self._state = candidate
                    return candidate

    def register(self, version: RuleSetVersion) -> None:
        def build(current):
            versions = dict(current.versions)
            versions[version.version_id] = version
            return RuleSetState(current.version + 1, MappingProxyType(versions), current.assignments)

        self._swap(build)

    def update_version(self, version_id: str, fn: Callable[[RuleSetVersion], RuleSetVersion]) -> RuleSetVersion:
        updated = {}

        def build(current):
            if version_id not in current.versions:
                raise UnknownRuleSetVersionError(version_id)
            versions = dict(current.versions)
            versions[version_id] = updated["version"] = fn(current.versions[version_id])
            return RuleSetState(current.version + 1, MappingProxyType(versions), current.assignments)

        self._swap(build)
        return updated["version"]

    def deploy(
        self,
        version: RuleSetVersion,
        user_ids: Sequence[str],
        test_group_percent: float = 10,
        override: bool = False,
        seed: Optional[int] = None,
    ) -> list[str]:
        """
        Enregistre la version et y affecte un sous-ensemble pseudo-aléatoire
        des utilisateurs connus. Un utilisateur déjà épinglé sur une autre
        expérience active n'est pas réaffecté sans override.
        """
        rng = np.random.default_rng(seed)
        user_ids = sorted(set(user_ids))
        target_size = math.floor(len(user_ids) * (test_group_percent / 100))
        assigned: list[str] = []

        def build(current):
            versions = dict(current.versions)
            versions[version.version_id] = version

            eligible = [u for u in user_ids if override or not self._pinned_elsewhere(current, u, version.version_id)]
            size = min(target_size, len(eligible))
            chosen = sorted(rng.choice(eligible, size=size, replace=False).tolist()) if size else []

            assignments = dict(current.assignments)
            for user_id in chosen:
                assignments[user_id] = version.version_id

            assigned[:] = chosen
            return RuleSetState(current.version + 1, MappingProxyType(versions), MappingProxyType(assignments))

        self._swap(build)
        logger.info(
            "rule set %s deployed to %d/%d users", version.version_id, len(assigned), len(user_ids)
        )
        return assigned

    def retire(self, version_id: str, retired_at: datetime) -> RuleSetVersion:
        if version_id == self.baseline_id:
            raise ValueError("the baseline rule set cannot be retired")

        retired = {}

        def build(current):
            if version_id not in current.versions:
                raise UnknownRuleSetVersionError(version_id)
            versions = dict(current.versions)
            versions[version_id] = retired["version"] = current.versions[version_id].model_copy(
                update={"retired_at": retired_at}
            )
            # les utilisateurs épinglés reviennent à la baseline
            assignments = {u: v for u, v in current.assignments.items() if v != version_id}
            return RuleSetState(current.version + 1, MappingProxyType(versions), MappingProxyType(assignments))

        self._swap(build)
        logger.info("rule set %s retired", version_id)
        return retired["version"]

    def _pinned_elsewhere(self, state: RuleSetState, user_id: str, version_id: str) -> bool:
        pinned = state.assignments.get(user_id)
        if pinned is None or pinned == version_id or pinned == self.baseline_id:
            return False
        other = state.versions.get(pinned)
        return other is not None and other.is_active
