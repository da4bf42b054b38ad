from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from schemas.learning import AdaptationRecord
from schemas.profile import CompositeScores, UserProfile
from schemas.recommendation import Recommendation, RecommendationType
from schemas.simulation import SimulationResult


# ======================================================
# 🗣️ EXPLAINABILITY
# ======================================================


class Impact(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


class Trend(str, Enum):
    improving = "improving"
    stable = "stable"
    declining = "declining"


class ExplanationFactor(BaseModel):
    metric: str
    value: float
    impact: Impact
    description: str
    trend: Trend


class AlternativeOption(BaseModel):
    strategy: str
    why_not_chosen: str
    could_be_used_if: str


class AdaptationExplanation(BaseModel):
    primary_reason: str
    contributing_factors: list[ExplanationFactor] = Field(default_factory=list)
    confidence: float
    risk_factors: list[str] = Field(default_factory=list)
    expected_outcome: str
    alternatives_considered: list[AlternativeOption] = Field(default_factory=list)
    data_points: list[str] = Field(default_factory=list)
    historical_context: Optional[str] = None
    timeline_expectation: str


# ======================================================
# 🔮 PRE-EMPTIVE PLANNING
# ======================================================


class Severity(str, Enum):
    minor_tweak = "minor_tweak"
    moderate_adjustment = "moderate_adjustment"
    major_overhaul = "major_overhaul"


class PredictedAdaptation(BaseModel):
    estimated_trigger_date: datetime
    probability: float
    trigger_conditions: list[str]
    recommendation_type: RecommendationType
    severity: Severity
    prevention_strategy: Optional[str] = None


class WarningTrend(str, Enum):
    approaching = "approaching"
    stable = "stable"
    breached = "breached"


class EarlyWarningSignal(BaseModel):
    signal: str
    metric: str
    current_value: float
    warning_threshold: float
    critical_threshold: float
    trend: WarningTrend
    days_to_threshold: int
    suggested_preventive_action: Optional[str] = None


class ContingencyPlan(BaseModel):
    scenario: str
    trigger_conditions: list[str]
    immediate_action: Recommendation
    follow_up_actions: list[Recommendation] = Field(default_factory=list)
    success_probability: float


class TrajectoryPoint(BaseModel):
    week: int
    predicted_scores: dict[str, float]
    confidence_interval: float
    key_milestones: list[str] = Field(default_factory=list)


class RiskAssessment(BaseModel):
    plateau_risk: float
    burnout_risk: float
    injury_risk: float
    motivation_drop_risk: float
    adherence_risk: float
    mitigation_strategies: list[str] = Field(default_factory=list)


class PreemptivePlan(BaseModel):
    user_id: str
    plan_confidence: float
    predicted_adaptations: list[PredictedAdaptation] = Field(default_factory=list)
    early_warning_signals: list[EarlyWarningSignal] = Field(default_factory=list)
    contingency_plans: list[ContingencyPlan] = Field(default_factory=list)
    trajectory: list[TrajectoryPoint] = Field(default_factory=list)
    risk_assessment: RiskAssessment
    generated_at: datetime
    valid_until: datetime


# ======================================================
# 📦 RÉPONSE COMPLÈTE
# ======================================================


class AdaptationInsight(BaseModel):
    user_id: str
    recommendations: list[Recommendation]
    scores: CompositeScores
    rule_set_version: str
    explanation: Optional[AdaptationExplanation] = None
    preemptive_plan: Optional[PreemptivePlan] = None
    simulation: Optional[SimulationResult] = None
    narrative: Optional[str] = None
    refined: bool = False


class UserInsights(BaseModel):
    profile: UserProfile
    recent_history: list[AdaptationRecord]
    rule_set_version: str
    test_group: Optional[str] = None
    predicted_needs: list[str] = Field(default_factory=list)
