from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from schemas.recommendation import RecommendationType


class StochasticFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    event: str  # "work_stress_spike", "vacation_week", ...
    probability: float = Field(ge=0, le=1)  # chance par semaine
    # champ de l'état simulé -> valeur imposée pendant l'événement
    impact: dict[str, float]
    duration_weeks: int = Field(default=1, ge=1)


class SimulationScenario(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "Adaptation Impact Simulation"
    duration_weeks: int = Field(default=4, ge=1, le=52)
    stochastic_factors: list[StochasticFactor] = Field(default_factory=list)
    max_adaptations_per_week: int = 2


class SimulationOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    rollout: int
    path: list[RecommendationType]
    progress_score: float  # 0-100
    adherence_score: float  # 0-100
    satisfaction_score: float  # 0-100
    events: list[str] = Field(default_factory=list)
    final_state: dict[str, float] = Field(default_factory=dict)
    total_cost: float = 0.0  # complexité imposée à l'utilisateur


class SimulationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    simulation_id: str
    scenario: SimulationScenario
    iterations: int
    outcomes: list[SimulationOutcome]
    best_path: SimulationOutcome
    worst_path: SimulationOutcome
    expected_value: float
    confidence: float = Field(ge=0.5, le=0.95)
    seed: Optional[int] = None
    from_cache: bool = False
