from typing import Optional

from pydantic import BaseModel, Field

from schemas.learning import Outcome, RuleSetVersion
from schemas.recommendation import Recommendation
from schemas.snapshot import StateSnapshot


class ApplyRequest(BaseModel):
    snapshot: StateSnapshot
    recommendation: Recommendation


class OutcomeRequest(BaseModel):
    user_id: str
    adaptation_id: str
    outcome: Outcome


class DeployRequest(BaseModel):
    version: RuleSetVersion
    test_group_percent: float = Field(default=10, ge=0, le=100)
    override: bool = False
    seed: Optional[int] = None


class DeployResponse(BaseModel):
    version_id: str
    assigned_users: list[str]
