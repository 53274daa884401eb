"""Schemas for collaboration sessions and teams."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
    model_validator,
)

from .common_enums import ComplexityTier, SessionStatus, TeamStatus
from .messages import utc_now


class CollaborationContext(BaseModel):
    """Structured context of a collaboration session.

    Known keys are typed; any other key is kept as a JSON value.
    """
    model_config = ConfigDict(extra="allow")
    __pydantic_extra__: Dict[str, JsonValue]

    constraints: List[str] = Field(default_factory=list)
    targets: Dict[str, float] = Field(default_factory=dict)
    current_metrics: Dict[str, float] = Field(default_factory=dict)


class SessionDecision(BaseModel):
    decision: str
    consensus: float = Field(..., ge=0.0, le=1.0)
    participants: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)


class CollaborationSession(BaseModel):
    id: str
    initiator: str
    participants: List[str]
    goal: str
    context: CollaborationContext = Field(default_factory=CollaborationContext)
    status: SessionStatus = SessionStatus.PROPOSED
    invitations: Dict[str, str] = Field(default_factory=dict, description="participant -> invitation message id")
    acknowledged_by: List[str] = Field(default_factory=list)
    decisions: List[SessionDecision] = Field(default_factory=list)
    outcome: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    activated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class ResourceBudget(BaseModel):
    """Numeric resource budget of a team. Extra numeric fields are allowed."""
    model_config = ConfigDict(extra="allow")
    __pydantic_extra__: Dict[str, Any]

    budget: float = 0.0
    compute_credits: float = 0.0

    def fields(self) -> Dict[str, Any]:
        return self.model_dump()


class ProblemDefinition(BaseModel):
    """What a team is formed to solve. Unknown keys land in ``attributes``."""
    model_config = ConfigDict(populate_by_name=True)

    problem_type: str = Field(..., validation_alias=AliasChoices("problem_type", "type"))
    complexity: ComplexityTier = ComplexityTier.MEDIUM
    deadline: datetime
    resources: ResourceBudget = Field(default_factory=ResourceBudget)
    attributes: Dict[str, JsonValue] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_attributes(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        known = {"problem_type", "type", "complexity", "deadline", "resources", "attributes"}
        extras = {k: v for k, v in data.items() if k not in known}
        if not extras:
            return data
        merged = {k: v for k, v in data.items() if k in known}
        merged["attributes"] = {**extras, **dict(data.get("attributes") or {})}
        return merged


class Team(BaseModel):
    id: str
    purpose: str
    members: List[str]
    coordinator: str
    problem: ProblemDefinition
    status: TeamStatus = TeamStatus.FORMING
    invitations: Dict[str, str] = Field(default_factory=dict, description="member -> invitation message id")
    confirmed_members: List[str] = Field(default_factory=list)
    outcome: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    activated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
