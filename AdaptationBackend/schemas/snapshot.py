from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ======================================================
# 📸 STATE SNAPSHOT (INPUT D'UN APPEL analyze())
# ======================================================
# Snapshot immuable construit par l'appelant à chaque analyse.
# Tous les champs ont une valeur neutre par défaut : une entrée partielle
# est valide et le moteur ne plante jamais dessus.


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class PlanType(str, Enum):
    strength = "strength"
    cardio = "cardio"
    hiit = "hiit"
    flexibility = "flexibility"
    hybrid = "hybrid"


class MoodTrend(str, Enum):
    improving = "improving"
    stable = "stable"
    declining = "declining"


class Exercise(FrozenModel):
    id: str
    name: str
    sets: int = 3
    reps: int | tuple[int, int] = 10  # nombre fixe ou plage (min, max)
    weight: Optional[float] = None
    duration: Optional[float] = None  # minutes, pour le cardio
    intensity: float = Field(default=5.0, ge=1, le=10)


class WorkoutPlan(FrozenModel):
    id: str = "default"
    type: PlanType = PlanType.hybrid
    intensity: float = Field(default=5.0, ge=1, le=10)  # échelle 1-10
    volume: float = Field(default=40.0, ge=1)  # séries hebdomadaires
    frequency: int = Field(default=3, ge=1, le=7)  # séances par semaine
    duration: float = Field(default=45.0, ge=15, le=180)  # minutes par séance
    exercises: list[Exercise] = Field(default_factory=list)
    progression_rate: float = 0.0  # % d'augmentation hebdomadaire


class ExerciseResult(FrozenModel):
    exercise_id: str
    completed_sets: int = 0
    completed_reps: list[int] = Field(default_factory=list)
    completed_weight: Optional[float] = None
    perceived_exertion: float = Field(default=5.0, ge=1, le=10)  # RPE
    form_rating: Optional[float] = None


class WorkoutSession(FrozenModel):
    id: str
    plan_id: str = "default"
    scheduled_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completion_rate: float = Field(default=1.0, ge=0, le=1)
    user_rating: float = Field(default=5.0, ge=1, le=10)
    reported_fatigue: float = Field(default=5.0, ge=1, le=10)
    exercise_results: list[ExerciseResult] = Field(default_factory=list)
    notes: Optional[str] = None


class ProgressData(FrozenModel):
    streak: int = 0  # jours consécutifs
    weekly_consistency: float = Field(default=0.5, ge=0, le=1)
    monthly_consistency: float = Field(default=0.5, ge=0, le=1)
    total_workouts: int = 0
    average_rating: float = Field(default=6.0, ge=0, le=10)
    # progression fractionnaire par exercice : 0.02 = +2 %
    strength_gains: dict[str, float] = Field(default_factory=dict)
    cardio_gains: dict[str, float] = Field(default_factory=dict)


class BloodPressure(FrozenModel):
    systolic: float
    diastolic: float


class BiometricData(FrozenModel):
    weight: Optional[float] = None
    body_fat: Optional[float] = None
    muscle_mass: Optional[float] = None
    resting_heart_rate: Optional[float] = None
    blood_pressure: Optional[BloodPressure] = None
    measurements: dict[str, float] = Field(default_factory=dict)
    last_updated: Optional[datetime] = None


class LifestyleData(FrozenModel):
    sleep_hours: float = Field(default=7.5, ge=0, le=24)
    sleep_quality: float = Field(default=7.0, ge=1, le=10)
    stress_level: float = Field(default=4.0, ge=1, le=10)
    energy_level: float = Field(default=6.0, ge=1, le=10)
    workload: float = Field(default=5.0, ge=1, le=10)
    nutrition_compliance: float = Field(default=0.7, ge=0, le=1)
    hydration: float = 2.0  # litres par jour


class MoodData(FrozenModel):
    score: float = Field(default=6.0, ge=1, le=10)
    motivation: float = Field(default=6.0, ge=1, le=10)
    confidence: float = Field(default=6.0, ge=1, le=10)
    anxiety: float = Field(default=4.0, ge=1, le=10)
    recent_trend: MoodTrend = MoodTrend.stable


class StateSnapshot(FrozenModel):
    user_id: str
    segment: str = "general"  # segment démographique pour les analytics
    current_plan: WorkoutPlan = Field(default_factory=WorkoutPlan)
    recent_sessions: list[WorkoutSession] = Field(default_factory=list)
    progress: ProgressData = Field(default_factory=ProgressData)
    biometrics: BiometricData = Field(default_factory=BiometricData)
    lifestyle: LifestyleData = Field(default_factory=LifestyleData)
    mood: MoodData = Field(default_factory=MoodData)
