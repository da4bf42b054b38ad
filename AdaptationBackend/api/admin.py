from fastapi import APIRouter, Depends, HTTPException

from adaptation.engine import AdaptationDecisionEngine
from schemas.learning import RuleSetVersion
from schemas.requests import DeployRequest, DeployResponse
from services.engine_factory import get_engine

router = APIRouter(prefix="/api/admin")


@router.post("/rule-sets", response_model=DeployResponse)
def deploy_rule_set(
    payload: DeployRequest,
    engine: AdaptationDecisionEngine = Depends(get_engine),
):
    assigned = engine.deploy_rule_set_version(
        payload.version,
        test_group_percent=payload.test_group_percent,
        override=payload.override,
        seed=payload.seed,
    )
    return DeployResponse(version_id=payload.version.version_id, assigned_users=assigned)


@router.post("/rule-sets/{version_id}/retire", response_model=RuleSetVersion)
def retire_rule_set(
    version_id: str,
    engine: AdaptationDecisionEngine = Depends(get_engine),
):
    try:
        return engine.retire_rule_set_version(version_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
