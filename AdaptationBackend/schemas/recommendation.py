from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RecommendationType(str, Enum):
    intensity = "intensity"
    volume = "volume"
    frequency = "frequency"
    exercise_swap = "exercise_swap"
    rest_day = "rest_day"
    nutrition = "nutrition"
    recovery = "recovery"


class Priority(str, Enum):
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


class ChangeTarget(str, Enum):
    intensity = "intensity"
    volume = "volume"
    frequency = "frequency"
    exercise = "exercise"
    rest = "rest"


class RuleKind(str, Enum):
    """Stable identity of a rule, used by the interaction table and the weight store."""

    fatigue = "fatigue"
    consistency = "consistency"
    progressive_overload = "progressive_overload"
    recovery = "recovery"
    motivation = "motivation"
    plateau = "plateau"
    stress = "stress"
    sleep = "sleep"


PRIORITY_RANK = {
    Priority.critical: 4,
    Priority.high: 3,
    Priority.medium: 2,
    Priority.low: 1,
}

_UPGRADES = {
    Priority.low: Priority.medium,
    Priority.medium: Priority.high,
    Priority.high: Priority.critical,
    Priority.critical: Priority.critical,
}

_DOWNGRADES = {
    Priority.critical: Priority.high,
    Priority.high: Priority.medium,
    Priority.medium: Priority.low,
    Priority.low: Priority.low,
}


def upgrade_priority(priority: Priority) -> Priority:
    return _UPGRADES[priority]


def downgrade_priority(priority: Priority) -> Priority:
    return _DOWNGRADES[priority]


def max_priority(*priorities: Priority) -> Priority:
    return max(priorities, key=lambda p: PRIORITY_RANK[p])


class PlanChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: ChangeTarget
    # % de variation (intensité, volume), séances (fréquence) ou action nommée
    adjustment: float | str
    exercise_ids: Optional[list[str]] = None


class Recommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: RecommendationType
    priority: Priority
    reason: str
    changes: list[PlanChange] = Field(default_factory=list)
    duration_days: int = Field(ge=1)
    explanation: str
    source_rules: list[RuleKind] = Field(default_factory=list)

    def numeric_change(self, target: ChangeTarget) -> Optional[float]:
        for change in self.changes:
            if change.target == target and isinstance(change.adjustment, (int, float)):
                return float(change.adjustment)
        return None
