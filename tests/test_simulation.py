from adaptation.simulation import (
    SimulationRunner,
    default_scenario,
    initial_state,
    simulation_confidence,
)
from schemas.profile import UserProfile
from schemas.recommendation import Priority, RecommendationType
from schemas.simulation import SimulationScenario, StochasticFactor
from services.cache import InMemoryCache


class ExplodingCache:
    def get(self, key):
        raise ConnectionError("cache down")

    def set(self, key, value, ttl):
        raise ConnectionError("cache down")


def _recs(make_recommendation):
    return [
        make_recommendation(RecommendationType.recovery, Priority.critical, intensity=-40),
        make_recommendation(RecommendationType.rest_day, Priority.medium),
    ]


def test_confidence_bounds():
    assert simulation_confidence([]) == 0.5
    assert simulation_confidence([40.0] * 10) == 0.95
    assert simulation_confidence([0.0, 100.0]) == 0.5


def test_initial_state_defaults_fatigue_without_sessions(make_snapshot):
    assert initial_state(make_snapshot())["fatigue"] == 5.0


def test_same_seed_same_outcomes(critical_snapshot, make_recommendation):
    profile = UserProfile(user_id="u1")
    recs = _recs(make_recommendation)

    first = SimulationRunner(iterations=20).run(critical_snapshot, profile, recs, seed=7)
    second = SimulationRunner(iterations=20).run(critical_snapshot, profile, recs, seed=7)

    assert first.outcomes == second.outcomes
    assert first.expected_value == second.expected_value
    assert first.seed == 7


def test_worker_count_does_not_change_results(critical_snapshot, make_recommendation):
    profile = UserProfile(user_id="u1")
    recs = _recs(make_recommendation)

    sequential = SimulationRunner(iterations=30, max_workers=1).run(critical_snapshot, profile, recs, seed=11)
    parallel = SimulationRunner(iterations=30, max_workers=4).run(critical_snapshot, profile, recs, seed=11)

    assert sequential.outcomes == parallel.outcomes


def test_result_shape(critical_snapshot, make_recommendation):
    result = SimulationRunner(iterations=15).run(
        critical_snapshot, UserProfile(user_id="u1"), _recs(make_recommendation), seed=3
    )

    assert result.iterations == len(result.outcomes) == 15
    assert 0.5 <= result.confidence <= 0.95
    assert result.best_path.progress_score >= result.worst_path.progress_score
    for outcome in result.outcomes:
        assert 0 <= outcome.progress_score <= 100
        assert outcome.path == [RecommendationType.recovery, RecommendationType.rest_day]
        assert outcome.total_cost == 20.0


def test_adaptations_are_spread_over_weeks(make_snapshot, make_recommendation):
    recs = [make_recommendation(RecommendationType.frequency) for _ in range(5)]
    scenario = default_scenario().model_copy(update={"duration_weeks": 2, "max_adaptations_per_week": 2})

    result = SimulationRunner(iterations=3).run(
        make_snapshot(), UserProfile(user_id="u1"), recs, scenario=scenario, seed=0
    )

    # 2 semaines x 2 adaptations : la cinquième n'est jamais introduite
    assert all(len(o.path) == 4 for o in result.outcomes)


def test_rollouts_are_capped(make_snapshot, make_recommendation):
    runner = SimulationRunner(iterations=500, max_rollouts=25)
    result = runner.run(make_snapshot(), UserProfile(user_id="u1"), _recs(make_recommendation), seed=1)
    assert result.iterations == 25


def test_cache_hit_is_flagged(make_snapshot, make_recommendation):
    runner = SimulationRunner(cache=InMemoryCache(), iterations=10)
    args = (make_snapshot(), UserProfile(user_id="u1"), _recs(make_recommendation))

    fresh = runner.run(*args, seed=5)
    cached = runner.run(*args, seed=5)

    assert not fresh.from_cache
    assert cached.from_cache
    assert cached.simulation_id == fresh.simulation_id


def test_broken_cache_falls_back_to_computation(make_snapshot, make_recommendation):
    runner = SimulationRunner(cache=ExplodingCache(), iterations=5)
    result = runner.run(make_snapshot(), UserProfile(user_id="u1"), _recs(make_recommendation), seed=2)

    assert result.iterations == 5
    assert not result.from_cache


def test_cache_entries_expire():
    ticks = {"now": 0.0}
    cache = InMemoryCache(clock=lambda: ticks["now"])

    cache.set("k", "v", ttl=10)
    assert cache.get("k") == "v"

    ticks["now"] = 11.0
    assert cache.get("k") is None


def test_event_impacts_are_clamped_to_state_bounds(make_snapshot, make_recommendation):
    profile = UserProfile(user_id="u1")
    recs = _recs(make_recommendation)

    def scenario(fatigue):
        return SimulationScenario(
            duration_weeks=3,
            stochastic_factors=[StochasticFactor(event="holiday", probability=1.0, impact={"fatigue": fatigue})],
        )

    runner = SimulationRunner(iterations=5)
    overshoot = runner.run(make_snapshot(), profile, recs, scenario=scenario(-50), seed=2)
    floor = runner.run(make_snapshot(), profile, recs, scenario=scenario(1.0), seed=2)

    assert [o.satisfaction_score for o in overshoot.outcomes] == [o.satisfaction_score for o in floor.outcomes]
    assert all(0 <= o.satisfaction_score <= 100 for o in overshoot.outcomes)
