import logging
from functools import lru_cache

from adaptation.engine import AdaptationDecisionEngine
from adaptation.errors import PersistenceError
from adaptation.refinement import JoblibRankingRefiner
from adaptation.simulation import SimulationRunner
from adaptation.versions import RuleSetRegistry
from adaptation.weights import WeightRegistry
from config import HF_TOKEN, LLM_ENABLED, REFINER_MODEL_PATH
from database import SessionLocal
from services.adaptation_store import SqlAdaptationStore
from services.cache import InMemoryCache
from services.llm import call_chat

logger = logging.getLogger(__name__)


def load_registries(store) -> tuple[WeightRegistry, RuleSetRegistry]:
    """Recharge l'état global persisté ; en cas d'échec on démarre sur les valeurs par défaut."""
    try:
        weights = WeightRegistry(store.load_weights())
        versions = RuleSetRegistry(store.load_rule_sets(), store.load_assignments())
    except PersistenceError:
        logger.warning("learning state unavailable, starting from defaults", exc_info=True)
        return WeightRegistry(), RuleSetRegistry()

    return weights, versions


def build_engine(store, *, with_llm: bool = LLM_ENABLED, refiner_path: str | None = REFINER_MODEL_PATH):
    weights, versions = load_registries(store)

    refiner = None
    if refiner_path:
        try:
            refiner = JoblibRankingRefiner(refiner_path)
        except (OSError, KeyError) as exc:
            logger.warning("ranking refiner not loaded from %s: %s", refiner_path, exc)

    text_generator = call_chat if with_llm and HF_TOKEN else None

    return AdaptationDecisionEngine(
        store,
        weights=weights,
        versions=versions,
        simulation=SimulationRunner(cache=InMemoryCache()),
        refiner=refiner,
        text_generator=text_generator,
    )


@lru_cache(maxsize=1)
def get_engine() -> AdaptationDecisionEngine:
    return build_engine(SqlAdaptationStore(SessionLocal))
