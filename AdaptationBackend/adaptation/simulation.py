# ============================================================
# What-if simulation · Adaptation Engine
# ============================================================
# Rollouts stochastiques indépendants : chaque rollout a son propre
# générateur numpy, dérivé d'une SeedSequence par appel. Même graine
# -> mêmes résultats, quel que soit le nombre de workers.
import hashlib
import json
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence

import numpy as np

from adaptation.metrics import clamp, mean
from config import (
    SIMULATION_CACHE_TTL,
    SIMULATION_ITERATIONS,
    SIMULATION_MAX_ROLLOUTS,
    SIMULATION_WORKERS,
)
from schemas.profile import UserProfile
from schemas.recommendation import ChangeTarget, Recommendation, RecommendationType
from schemas.simulation import (
    SimulationOutcome,
    SimulationResult,
    SimulationScenario,
    StochasticFactor,
)
from schemas.snapshot import StateSnapshot

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.5
MAX_CONFIDENCE = 0.95
VARIANCE_SCALE = 1000.0
COST_PER_CHANGE = 10.0
NOISE = 0.05

# effets directionnels connus d'un type de recommandation sur l'état simulé
RECOMMENDATION_EFFECTS: dict[RecommendationType, dict[str, float]] = {
    RecommendationType.recovery: {"sleep_quality": 1.0, "fatigue": -2.0, "stress_level": -0.5},
    RecommendationType.rest_day: {"fatigue": -1.5, "sleep_quality": 0.5},
    RecommendationType.exercise_swap: {"motivation": 1.0},
    RecommendationType.nutrition: {"energy_level": 0.5},
    RecommendationType.intensity: {},
    RecommendationType.volume: {},
    RecommendationType.frequency: {},
}

STATE_BOUNDS = {
    "sleep_hours": (0.0, 24.0),
    "sleep_quality": (1.0, 10.0),
    "stress_level": (1.0, 10.0),
    "energy_level": (1.0, 10.0),
    "motivation": (1.0, 10.0),
    "fatigue": (1.0, 10.0),
    "intensity": (1.0, 10.0),
    "volume": (1.0, 500.0),
    "frequency": (1.0, 7.0),
}


def default_scenario() -> SimulationScenario:
    return SimulationScenario(
        name="Adaptation Impact Simulation",
        duration_weeks=4,
        stochastic_factors=[
            StochasticFactor(event="work_stress_spike", probability=0.2, impact={"stress_level": 8}, duration_weeks=1),
            StochasticFactor(event="motivation_boost", probability=0.3, impact={"motivation": 8}, duration_weeks=2),
            StochasticFactor(event="life_disruption", probability=0.1, impact={"sleep_hours": 5}, duration_weeks=1),
        ],
        max_adaptations_per_week=2,
    )


def simulation_confidence(progress_scores: Sequence[float]) -> float:
    """Variance faible = confiance élevée ; bornée à [0.5, 0.95]."""
    if not len(progress_scores):
        return MIN_CONFIDENCE
    variance = float(np.var(progress_scores))
    return clamp(1 - variance / VARIANCE_SCALE, MIN_CONFIDENCE, MAX_CONFIDENCE)


def initial_state(snapshot: StateSnapshot) -> dict[str, float]:
    sessions = snapshot.recent_sessions
    lifestyle = snapshot.lifestyle
    plan = snapshot.current_plan
    return {
        "sleep_hours": lifestyle.sleep_hours,
        "sleep_quality": lifestyle.sleep_quality,
        "stress_level": lifestyle.stress_level,
        "energy_level": lifestyle.energy_level,
        "motivation": snapshot.mood.motivation,
        "fatigue": mean([s.reported_fatigue for s in sessions[-3:]]) if sessions else 5.0,
        "intensity": plan.intensity,
        "volume": plan.volume,
        "frequency": float(plan.frequency),
        "consistency": snapshot.progress.weekly_consistency,
    }


def _bounded(state: dict[str, float], key: str, value: float) -> None:
    low, high = STATE_BOUNDS.get(key, (0.0, 1.0))
    state[key] = clamp(value, low, high)


def apply_recommendation(state: dict[str, float], rec: Recommendation) -> None:
    """Effets connus + directives numériques du plan, sur un état de travail."""
    for key, delta in RECOMMENDATION_EFFECTS.get(rec.type, {}).items():
        _bounded(state, key, state[key] + delta)

    for change in rec.changes:
        if not isinstance(change.adjustment, (int, float)):
            continue
        if change.target == ChangeTarget.intensity:
            _bounded(state, "intensity", state["intensity"] * (1 + change.adjustment / 100))
        elif change.target == ChangeTarget.volume:
            _bounded(state, "volume", state["volume"] * (1 + change.adjustment / 100))
        elif change.target == ChangeTarget.frequency:
            _bounded(state, "frequency", state["frequency"] + change.adjustment)


def run_rollout(
    rollout: int,
    rng: np.random.Generator,
    base_state: dict[str, float],
    recommendations: Sequence[Recommendation],
    scenario: SimulationScenario,
    responsiveness: float = 0.5,
) -> SimulationOutcome:
    state = dict(base_state)
    path: list[RecommendationType] = []
    events: list[str] = []
    active: dict[str, int] = {}  # événement -> semaines restantes
    weekly_progress, weekly_adherence, weekly_satisfaction = [], [], []
    per_week = max(1, scenario.max_adaptations_per_week)

    for week in range(scenario.duration_weeks):
        # au plus N adaptations introduites par semaine
        introduced = recommendations[week * per_week:(week + 1) * per_week]
        for rec in introduced:
            apply_recommendation(state, rec)
            path.append(rec.type)

        for factor in scenario.stochastic_factors:
            if factor.event in active:
                continue
            if rng.random() < factor.probability:
                active[factor.event] = factor.duration_weeks
                events.append(factor.event)

        # état effectif de la semaine : impacts des événements actifs
        week_state = dict(state)
        for factor in scenario.stochastic_factors:
            if factor.event in active:
                for key, value in factor.impact.items():
                    _bounded(week_state, key, value)

        recovery = mean([
            min(week_state["sleep_hours"] / 8, 1) * week_state["sleep_quality"] / 10,
            (10 - week_state["stress_level"]) / 10,
            1 - week_state["fatigue"] / 10,
        ])
        load = (week_state["intensity"] / 10) * (week_state["frequency"] / 7)

        adherence = clamp(
            0.3 * week_state["motivation"] / 10
            + 0.2 * week_state["consistency"]
            + 0.25 * recovery
            + 0.25 * (1 - load)
            + rng.normal(0, NOISE)
        )
        stimulus = 0.5 * week_state["intensity"] / 10 + 0.5 * min(week_state["volume"] / 60, 1)
        progress = clamp(
            adherence * stimulus * (0.5 + 0.5 * recovery) * (0.75 + 0.5 * responsiveness)
            + rng.normal(0, NOISE)
        )
        satisfaction = clamp(
            0.5 * adherence
            + 0.3 * week_state["motivation"] / 10
            + 0.2 * (1 - week_state["fatigue"] / 10)
            - 0.02 * len(introduced)
        )

        weekly_progress.append(progress)
        weekly_adherence.append(adherence)
        weekly_satisfaction.append(satisfaction)

        # la charge non récupérée s'accumule en fatigue
        _bounded(state, "fatigue", state["fatigue"] + 2 * (load - recovery))

        for event in list(active):
            active[event] -= 1
            if active[event] <= 0:
                del active[event]

    final_state = {k: round(v, 3) for k, v in state.items()}
    return SimulationOutcome(
        rollout=rollout,
        path=path,
        progress_score=round(mean(weekly_progress) * 100, 2),
        adherence_score=round(mean(weekly_adherence) * 100, 2),
        satisfaction_score=round(mean(weekly_satisfaction) * 100, 2),
        events=events,
        final_state=final_state,
        total_cost=COST_PER_CHANGE * len(path),
    )


def simulation_cache_key(
    snapshot: StateSnapshot,
    recommendations: Sequence[Recommendation],
    scenario: SimulationScenario,
    iterations: int,
    seed: Optional[int],
) -> str:
    payload = {
        "user_id": snapshot.user_id,
        "state": initial_state(snapshot),
        "recommendations": [[r.type.value, r.priority.value, r.duration_days] for r in recommendations],
        "scenario": scenario.model_dump(mode="json"),
        "iterations": iterations,
        "seed": seed,
    }
    raw = json.dumps(payload, sort_keys=True)
    return "simulation:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()


class SimulationRunner:
    def __init__(
        self,
        cache=None,
        iterations: int = SIMULATION_ITERATIONS,
        max_rollouts: int = SIMULATION_MAX_ROLLOUTS,
        max_workers: int = SIMULATION_WORKERS,
        cache_ttl: float = SIMULATION_CACHE_TTL,
    ):
        self.cache = cache
        self.iterations = iterations
        self.max_rollouts = max_rollouts
        self.max_workers = max_workers
        self.cache_ttl = cache_ttl

    def run(
        self,
        snapshot: StateSnapshot,
        profile: UserProfile,
        recommendations: Sequence[Recommendation],
        scenario: Optional[SimulationScenario] = None,
        seed: Optional[int] = None,
        iterations: Optional[int] = None,
    ) -> SimulationResult:
        scenario = scenario or default_scenario()
        # budget fixe de rollouts, jamais de polling sur l'horloge
        iterations = int(clamp(iterations or self.iterations, 1, self.max_rollouts))
        key = simulation_cache_key(snapshot, recommendations, scenario, iterations, seed)

        cached = self._cache_get(key)
        if cached is not None:
            logger.debug("simulation cache hit for %s", snapshot.user_id)
            return cached.model_copy(update={"from_cache": True})

        sequence = np.random.SeedSequence(seed)
        generators = [np.random.default_rng(child) for child in sequence.spawn(iterations)]
        base_state = initial_state(snapshot)
        recommendations = list(recommendations)

        def rollout(index: int) -> SimulationOutcome:
            return run_rollout(
                index,
                generators[index],
                base_state,
                recommendations,
                scenario,
                profile.adaptation_responsiveness,
            )

        if self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                outcomes = list(pool.map(rollout, range(iterations)))
        else:
            outcomes = [rollout(i) for i in range(iterations)]

        progress = [o.progress_score for o in outcomes]
        expected = mean([
            0.4 * o.progress_score + 0.3 * o.adherence_score + 0.3 * o.satisfaction_score
            for o in outcomes
        ])

        result = SimulationResult(
            simulation_id=f"sim-{snapshot.user_id}-{uuid.uuid4().hex[:8]}",
            scenario=scenario,
            iterations=iterations,
            outcomes=outcomes,
            best_path=max(outcomes, key=lambda o: (o.progress_score, -o.rollout)),
            worst_path=min(outcomes, key=lambda o: (o.progress_score, o.rollout)),
            expected_value=round(expected, 2),
            confidence=simulation_confidence(progress),
            seed=sequence.entropy if seed is None else seed,
        )

        self._cache_set(key, result)
        logger.debug(
            "simulation %s: %d rollouts, ev=%.2f, confidence=%.2f",
            result.simulation_id,
            iterations,
            result.expected_value,
            result.confidence,
        )
        return result

    # le cache est optionnel : toute panne retombe sur un recalcul
    def _cache_get(self, key: str) -> Optional[SimulationResult]:
        if self.cache is None:
            return None
        try:
            return self.cache.get(key)
        except Exception as exc:
            logger.warning("simulation cache read failed: %s", exc)
            return None

    def _cache_set(self, key: str, result: SimulationResult) -> None:
        if self.cache is None:
            return
        try:
            self.cache.set(key, result, self.cache_ttl)
        except Exception as exc:
            logger.warning("simulation cache write failed: %s", exc)
