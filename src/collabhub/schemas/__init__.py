# collabhub.schemas
"""Pydantic models for collabhub data structures."""

from .common_enums import (
    ActivationPolicy,
    AgentAvailability,
    ComplexityTier,
    DeliveryStatus,
    InitStage,
    KnowledgeCategory,
    MessagePriority,
    MessageType,
    SessionStatus,
    TeamStatus,
)
from .agents import AgentCard
from .messages import BROADCAST, DeliveryRecord, Message, MessageContent
from .knowledge import KnowledgeFilter, KnowledgeItem, WILDCARD_APPLICABILITY
from .collaboration import (
    CollaborationContext,
    CollaborationSession,
    ProblemDefinition,
    ResourceBudget,
    SessionDecision,
    Team,
)

__all__ = [
    "ActivationPolicy",
    "AgentAvailability",
    "AgentCard",
    "BROADCAST",
    "CollaborationContext",
    "CollaborationSession",
    "ComplexityTier",
    "DeliveryRecord",
    "DeliveryStatus",
    "InitStage",
    "KnowledgeCategory",
    "KnowledgeFilter",
    "KnowledgeItem",
    "Message",
    "MessageContent",
    "MessagePriority",
    "MessageType",
    "ProblemDefinition",
    "ResourceBudget",
    "SessionDecision",
    "SessionStatus",
    "Team",
    "TeamStatus",
    "WILDCARD_APPLICABILITY",
]
