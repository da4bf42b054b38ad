from typing import Optional

from fastapi import APIRouter, Depends

from adaptation.engine import AdaptationDecisionEngine
from schemas.insight import AdaptationInsight, UserInsights
from schemas.learning import AdaptationRecord
from schemas.recommendation import Recommendation
from schemas.requests import ApplyRequest, OutcomeRequest
from schemas.snapshot import StateSnapshot
from services.engine_factory import get_engine

router = APIRouter(prefix="/api/adaptation")


@router.post("/analyze", response_model=list[Recommendation])
def analyze(
    snapshot: StateSnapshot,
    engine: AdaptationDecisionEngine = Depends(get_engine),
):
    return engine.analyze(snapshot)


@router.post("/explain", response_model=AdaptationInsight)
def explain(
    snapshot: StateSnapshot,
    seed: Optional[int] = None,
    engine: AdaptationDecisionEngine = Depends(get_engine),
):
    return engine.analyze_with_explanation(snapshot, seed=seed)


@router.post("/apply", response_model=AdaptationRecord)
def apply_recommendation(
    payload: ApplyRequest,
    engine: AdaptationDecisionEngine = Depends(get_engine),
):
    return engine.apply_recommendation(payload.snapshot, payload.recommendation)


@router.post("/outcome")
def record_outcome(
    payload: OutcomeRequest,
    engine: AdaptationDecisionEngine = Depends(get_engine),
):
    record = engine.record_outcome(payload.user_id, payload.adaptation_id, payload.outcome)

    # id inconnu ou outcome déjà reçu : pas une erreur, la donnée peut être périmée
    if record is None:
        return {"status": "ignored"}

    return {
        "status": "recorded",
        "adaptation_id": record.id,
        "effectiveness": record.effectiveness,
    }


@router.get("/insights", response_model=UserInsights)
def user_insights(
    user_id: str,
    engine: AdaptationDecisionEngine = Depends(get_engine),
):
    return engine.user_insights(user_id)
