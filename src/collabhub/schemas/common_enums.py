from enum import Enum

"""Common enumerations used across the collabhub system."""


class AgentAvailability(str, Enum):
    """Current availability of a registered agent."""
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class MessageType(str, Enum):
    """Kinds of messages routed by the communication hub."""
    REQUEST = "request"
    RESPONSE = "response"
    NOTIFICATION = "notification"
    BROADCAST = "broadcast"


class MessagePriority(str, Enum):
    """Message priority, lowest to highest."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def weight(self) -> int:
        return _PRIORITY_WEIGHTS[self]


_PRIORITY_WEIGHTS = {
    MessagePriority.LOW: 1,
    MessagePriority.MEDIUM: 2,
    MessagePriority.HIGH: 3,
    MessagePriority.CRITICAL: 4,
}


class DeliveryStatus(str, Enum):
    """Per-recipient delivery state recorded in the delivery log."""
    QUEUED = "queued"
    DELIVERED = "delivered"
    FAILED = "failed"


class KnowledgeCategory(str, Enum):
    """Categories a shared knowledge item can belong to."""
    INSIGHT = "insight"
    PATTERN = "pattern"
    OPTIMIZATION = "optimization"
    WARNING = "warning"
    SOLUTION = "solution"
    PREDICTION = "prediction"


class SessionStatus(str, Enum):
    """Lifecycle of a collaboration session."""
    PROPOSED = "proposed"
    ACTIVE = "active"
    RESOLVED = "resolved"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.RESOLVED, SessionStatus.ABANDONED)


class TeamStatus(str, Enum):
    """Lifecycle of a team."""
    FORMING = "forming"
    ACTIVE = "active"
    COMPLETED = "completed"
    DISSOLVED = "dissolved"

    @property
    def is_terminal(self) -> bool:
        return self in (TeamStatus.COMPLETED, TeamStatus.DISSOLVED)


class ComplexityTier(str, Enum):
    """Complexity tier of a team's problem definition."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ActivationPolicy(str, Enum):
    """How proposed sessions and forming teams become active.

    EXPLICIT waits for an acknowledgment from a participant (an accept or
    confirm call, or a correlated response message). AUTO_ACCEPT additionally
    acknowledges on behalf of available participants once their invitation
    has been delivered.
    """
    EXPLICIT = "explicit"
    AUTO_ACCEPT = "auto_accept"


class InitStage(str, Enum):
    """Orchestrator initialization stages, in execution order."""
    REGISTRY = "registry"
    HUB = "hub"
    KNOWLEDGE = "knowledge"
    COLLABORATION = "collaboration"
