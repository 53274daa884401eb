from datetime import datetime, timezone
from typing import List, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common_enums import AgentAvailability


class AgentCard(BaseModel):
    """Identity and capability tags of a participant agent."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique agent name, e.g. 'infrastructure'.")
    capabilities: List[str] = Field(default_factory=list, description="Capability tags used for discovery and applicability matching.")
    expertise: List[str] = Field(default_factory=list, description="Areas the agent is expert in.")
    specializations: List[str] = Field(default_factory=list)
    availability: AgentAvailability = Field(default=AgentAvailability.AVAILABLE)
    registered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("agent name must not be blank")
        return value

    @property
    def is_available(self) -> bool:
        return self.availability == AgentAvailability.AVAILABLE

    def capability_tags(self) -> Set[str]:
        return {*self.capabilities, *self.expertise, *self.specializations}

    def tags(self) -> Set[str]:
        """Name plus every capability tag; used for applicability matching."""
        return {self.name} | self.capability_tags()
