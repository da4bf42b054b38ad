from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from schemas.profile import CompositeScores
from schemas.recommendation import Recommendation, RecommendationType, RuleKind


# ======================================================
# 📝 ADAPTATION HISTORY
# ======================================================


class Outcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    adherence_change: float = Field(ge=-1, le=1)
    motivation_change: float = Field(ge=-1, le=1)
    performance_change: float = Field(ge=-1, le=1)
    satisfaction_rating: Optional[float] = Field(default=None, ge=1, le=10)
    notes: Optional[str] = None
    follow_up_required: bool = False
    unexpected_effects: list[str] = Field(default_factory=list)


class AdaptationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    timestamp: datetime
    triggered_rules: list[RuleKind] = Field(default_factory=list)
    recommendation: Recommendation
    scores: CompositeScores  # état au moment de la décision
    outcome: Optional[Outcome] = None
    effectiveness: Optional[float] = Field(default=None, ge=-1, le=1)
    rule_set_version: Optional[str] = None
    segment: str = "general"

    @property
    def is_pending(self) -> bool:
        return self.outcome is None or self.effectiveness is None


# ======================================================
# ⚖️ GLOBAL LEARNING STATE
# ======================================================


class RuleWeightState(BaseModel):
    model_config = ConfigDict(frozen=True)

    recommendation_type: RecommendationType
    base_weight: float = 1.0
    contextual_modifiers: dict[str, float] = Field(default_factory=dict)
    segment_modifiers: dict[str, float] = Field(default_factory=dict)
    learning_rate: float = Field(default=0.05, gt=0, le=1)
    effectiveness_rate: float = Field(default=0.5, ge=0, le=1)
    samples: int = 0
    version: int = 0  # contrôle de concurrence optimiste
    updated_at: Optional[datetime] = None


class VersionPerformance(BaseModel):
    model_config = ConfigDict(frozen=True)

    avg_effectiveness: float = 0.0
    avg_satisfaction: float = 0.0
    outcomes: int = 0
    rated_outcomes: int = 0  # outcomes avec une note de satisfaction


class RuleSetVersion(BaseModel):
    model_config = ConfigDict(frozen=True)

    version_id: str
    version_name: str
    rules: list[RuleKind]
    rule_weights: dict[RuleKind, float] = Field(default_factory=dict)
    activated_at: Optional[datetime] = None
    retired_at: Optional[datetime] = None
    test_group: Optional[str] = None  # "control", "treatment_a", ...
    description: str = ""
    change_summary: list[str] = Field(default_factory=list)
    performance: VersionPerformance = Field(default_factory=VersionPerformance)

    @property
    def is_active(self) -> bool:
        return self.retired_at is None


class RateAggregate(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int = 0
    successes: int = 0
    success_rate: float = 0.0


class AdaptationAnalytics(BaseModel):
    model_config = ConfigDict(frozen=True)

    data_points: int = 0
    by_type: dict[str, RateAggregate] = Field(default_factory=dict)
    by_segment: dict[str, RateAggregate] = Field(default_factory=dict)
    by_rule_combination: dict[str, RateAggregate] = Field(default_factory=dict)
    common_failure_patterns: list[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None
