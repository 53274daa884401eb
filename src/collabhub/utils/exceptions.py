"""Custom exceptions for the collabhub coordination core."""

from typing import Any, Dict, Optional


class CollabHubError(Exception):
    """Base class for custom exceptions in collabhub."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Converts the error to a dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# --- Registry ---

class UnknownAgentError(CollabHubError):
    """Raised when an operation names an agent that is not registered."""

    def __init__(self, agent_name: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Unknown agent: {agent_name}", {"agent": agent_name})
        self.agent_name = agent_name


class DuplicateAgentError(CollabHubError):
    """Raised when registering a name that is already taken."""
    pass


# --- Messaging ---

class InvalidMessageError(CollabHubError):
    """Indicates a message that violates the message invariants."""
    pass


class DanglingCorrelationError(CollabHubError):
    """A response references a request that does not exist, does not expect
    a response, or has already been answered."""

    def __init__(self, correlation_id: Optional[str], reason: str) -> None:
        super().__init__(
            f"Response correlation {correlation_id!r} is dangling: {reason}",
            {"correlation_id": correlation_id, "reason": reason},
        )
        self.correlation_id = correlation_id


# --- Knowledge ---

class InvalidFilterError(CollabHubError):
    """Raised for knowledge queries with an unknown category or an
    out-of-range confidence bound."""
    pass


class InvalidKnowledgeError(CollabHubError):
    """Raised when a shared knowledge item fails validation."""
    pass


class UnknownKnowledgeError(CollabHubError):
    """Raised when a knowledge id is not in the exchange."""
    pass


# --- Collaboration ---

class DuplicateParticipantError(CollabHubError):
    """Raised when a participant list repeats a name or includes the initiator."""
    pass


class EmptyMembershipError(CollabHubError):
    """Raised when a session or team is requested without participants."""
    pass


class InvalidDeadlineError(CollabHubError):
    """Raised when a team deadline is not strictly in the future."""
    pass


class InvalidBudgetError(CollabHubError):
    """Raised when a resource budget field is negative or not numeric."""
    pass


class InvalidProblemDefinitionError(CollabHubError):
    """Raised when a team problem definition is malformed."""
    pass


class InvalidDecisionError(CollabHubError):
    """Raised when a session decision is malformed, e.g. consensus outside [0, 1]."""
    pass


class InvalidTransitionError(CollabHubError):
    """Raised for status transitions the lifecycle does not allow."""

    def __init__(self, entity: str, entity_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move {entity} {entity_id} from {current} to {target}",
            {"entity": entity, "id": entity_id, "current": current, "target": target},
        )


class UnknownSessionError(CollabHubError):
    """Raised when a collaboration session id is unknown."""
    pass


class UnknownTeamError(CollabHubError):
    """Raised when a team id is unknown."""
    pass


class PermissionDeniedError(CollabHubError):
    """Raised when an agent attempts an operation reserved to another agent."""
    pass


# --- Lifecycle ---

class DependencyNotReadyError(CollabHubError):
    """Raised when a component is used or initialized before its dependencies."""
    pass


class AlreadyInitializedError(CollabHubError):
    """Raised when initialization is re-entered while it is still running."""
    pass


class NotReadyError(CollabHubError):
    """Raised by the orchestrator when it is used before all stages are ready."""
    pass


class InitializationError(CollabHubError):
    """Orchestrator initialization failed at a given stage."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(
            f"Initialization failed at stage '{stage}': {cause}",
            {"stage": stage, "cause": cause.__class__.__name__},
        )
        self.stage = stage
        self.cause = cause
