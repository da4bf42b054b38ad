from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ======================================================
# 🧠 USER PROFILE ("SIGNATURE") : profil long-terme qui évolue
# ======================================================


class UserProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    preferred_intensity_range: tuple[float, float] = (5.0, 8.0)  # intensités (min, max) bien tolérées
    average_recovery_time: float = 2.0  # jours entre deux séances intenses
    common_fatigue_triggers: list[str] = Field(default_factory=list)
    motivational_triggers: list[str] = Field(default_factory=list)  # "variety", "competition", "PBs"
    plan_compliance_pattern: str = "unknown"  # ex. "weekends low"
    adaptation_responsiveness: float = Field(default=0.5, ge=0, le=1)
    preferred_workout_types: list[str] = Field(default_factory=list)
    injury_risk_factors: list[str] = Field(default_factory=list)
    plateau_breakers: list[str] = Field(default_factory=list)  # stratégies qui ont déjà marché
    confidence_level: float = Field(default=0.1, ge=0, le=1)  # volume de données (0-1)
    updated_at: Optional[datetime] = None


# ======================================================
# 📊 COMPOSITE SCORES (0-100, recalculés à chaque appel)
# ======================================================


class CompositeScores(BaseModel):
    model_config = ConfigDict(frozen=True)

    recovery_index: int  # sommeil, stress, charge de travail, résistance à la fatigue
    engagement_score: int  # régularité, motivation, notes des séances
    plan_volatility: int  # ampleur des changements de plan sur 30 jours
    metabolic_adaptation_score: int  # réponse aux changements d'intensité
    motivation_momentum: int  # tendance de la motivation
    adherence_quality: int  # qualité d'exécution, pas seulement la complétion
    progress_velocity: int  # vitesse de progression
    resilience_index: int  # capacité de rebond après un écart
    adaptation_efficiency: int  # réponse aux adaptations passées
