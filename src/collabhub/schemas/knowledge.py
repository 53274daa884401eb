"""Schemas for knowledge items shared through the knowledge exchange."""

from datetime import datetime
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator

from .common_enums import KnowledgeCategory
from .messages import utc_now

WILDCARD_APPLICABILITY = "*"


def clamp_confidence(value: float) -> float:
    """Clamp a confidence value into [0.0, 1.0]."""
    return max(0.0, min(1.0, float(value)))


class KnowledgeItem(BaseModel):
    """A piece of shared knowledge. Append-only: corrections are new items
    that reference the old one through ``related_knowledge``."""
    model_config = ConfigDict(frozen=True)

    id: str
    source: str = Field(..., description="Name of the agent that shared the item.")
    category: KnowledgeCategory
    title: str
    description: str = ""
    data: Dict[str, JsonValue] = Field(default_factory=dict)
    confidence: float = Field(..., description="Clamped to [0.0, 1.0].")
    applicability: Tuple[str, ...] = Field(..., description="Agent names or tags; '*' applies to every agent.")
    related_knowledge: Tuple[str, ...] = Field(default_factory=tuple)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return clamp_confidence(value)

    def applies_to(self, tags) -> bool:
        """True if any of ``tags`` is in the applicability set (or it is global)."""
        if WILDCARD_APPLICABILITY in self.applicability:
            return True
        return bool(set(self.applicability) & set(tags))

    def matches_text(self, needle: str) -> bool:
        needle = needle.lower()
        return needle in self.title.lower() or needle in self.description.lower()


class KnowledgeFilter(BaseModel):
    """Filter for knowledge queries. All given criteria must match."""
    model_config = ConfigDict(extra="forbid")

    category: Optional[KnowledgeCategory] = None
    min_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    applicability: Optional[str] = Field(None, description="Tag or agent name the item must apply to.")
    source: Optional[str] = None
    text: Optional[str] = Field(None, description="Case-insensitive match over title and description.")

    def matches(self, item: KnowledgeItem) -> bool:
        if self.category is not None and item.category != self.category:
            return False
        if self.min_confidence is not None and item.confidence < self.min_confidence:
            return False
        if self.applicability is not None and not item.applies_to({self.applicability}):
            return False
        if self.source is not None and item.source != self.source:
            return False
        if self.text and not item.matches_text(self.text):
            return False
        return True
