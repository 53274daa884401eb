from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, JsonValue

from .common_enums import DeliveryStatus, MessagePriority, MessageType

BROADCAST = "broadcast"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MessageContent(BaseModel):
    """Payload of a message: a subject line plus structured JSON data."""
    model_config = ConfigDict(frozen=True)

    subject: str = Field(..., description="Short human-readable subject.")
    data: Dict[str, JsonValue] = Field(default_factory=dict, description="Structured payload; JSON-compatible values only.")
    context: Optional[str] = Field(None, description="Optional free-text context.")


class Message(BaseModel):
    """A routed message. Immutable once created by the hub."""
    model_config = ConfigDict(frozen=True)

    id: str
    sender: str
    recipients: Tuple[str, ...] = Field(..., description="Resolved recipient names at send time.")
    broadcast: bool = Field(default=False, description="True when addressed to every registered agent.")
    type: MessageType
    priority: MessagePriority = MessagePriority.MEDIUM
    content: MessageContent
    requires_response: bool = False
    timestamp: datetime = Field(default_factory=utc_now)
    correlation_id: Optional[str] = Field(None, description="For responses: id of the request being answered.")

    @property
    def is_group(self) -> bool:
        return self.broadcast or len(self.recipients) != 1


class DeliveryRecord(BaseModel):
    """Delivery outcome of one message for one recipient."""
    message_id: str
    recipient: str
    status: DeliveryStatus
    reason: Optional[str] = None
    recorded_at: datetime = Field(default_factory=utc_now)
