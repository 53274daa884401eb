"""Communication Hub

Routes typed messages between registered agents. ``send_message`` validates,
stores and enqueues, then returns the new message id; delivery happens in the
background through one channel per recipient drained by a worker task. A
channel keeps one FIFO lane per sender and always delivers the lane head with
the highest priority, so messages from one sender to one recipient arrive in
send order while urgent traffic from other senders goes first.

Critical messages are also copied to the escalation agent (the orchestrator
by default) unless it is already involved.

Every delivery outcome (including per-recipient failures of group sends) is
recorded in a queryable delivery log instead of failing the original call.
The hub is also the single ingress for cross-agent traffic: knowledge shares
and collaboration requests can be issued here and are delegated to the
attached components.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections import Counter, OrderedDict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Deque,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from pydantic import ValidationError

from ..registry import AgentRegistry
from ..schemas.common_enums import DeliveryStatus, MessagePriority, MessageType
from ..schemas.messages import BROADCAST, DeliveryRecord, Message, MessageContent, utc_now
from ..utils.config_manager import HubConfiguration, get_config
from ..utils.exceptions import (
    AlreadyInitializedError,
    DanglingCorrelationError,
    DependencyNotReadyError,
    InvalidMessageError,
    UnknownAgentError,
)
from ..utils.id_utils import MESSAGE_PREFIX, generate_id

if TYPE_CHECKING:
    from .collaboration_engine import CollaborationEngine
    from .knowledge_exchange import KnowledgeExchange

__all__ = ["CommunicationHub", "Recipients", "DeliveryCallback"]

logger = logging.getLogger(__name__)

Recipients = Union[str, Sequence[str]]
DeliveryCallback = Callable[[Message, str], Union[None, Awaitable[None]]]


@dataclass
class _Subscription:
    subscription_id: str
    callback: DeliveryCallback
    message_type: Optional[MessageType] = None
    recipient: Optional[str] = None

    def wants(self, message: Message, recipient: str) -> bool:
        if self.message_type is not None and message.type != self.message_type:
            return False
        if self.recipient is not None and recipient != self.recipient:
            return False
        return True



class _Channel:
    """Pending deliveries for one recipient, one FIFO lane per sender."""

    def __init__(self) -> None:
        self.lanes: Dict[str, Deque[Tuple[int, Message]]] = {}
        # one token per pending message; the worker blocks on it
        self.tokens: asyncio.Queue = asyncio.Queue()

    def push(self, sequence: int, message: Message) -> None:
        self.lanes.setdefault(message.sender, deque()).append((sequence, message))
        self.tokens.put_nowait(None)

    def pop(self) -> Message:
        """Head of the lane whose head has the highest priority; earliest wins ties."""
        sender = max(
            self.lanes,
            key=lambda name: (self.lanes[name][0][1].priority.weight, -self.lanes[name][0][0]),
        )
        lane = self.lanes[sender]
        _, message = lane.popleft()
        if not lane:
            del self.lanes[sender]
        return message

    def __len__(self) -> int:
        return sum(len(lane) for lane in self.lanes.values())


class CommunicationHub:
    """
    Routes point-to-point, group and broadcast messages between agents.

    Stores (messages, delivery log, inboxes, correlation state) are guarded by
    one re-entrant lock; reads take a snapshot under the same lock. Sending
    must happen on the event loop the hub's workers run on.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        config: Optional[HubConfiguration] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.registry = registry
        self.config = config or get_config().hub
        self._clock = clock or utc_now
        self._lock = threading.RLock()

        self._messages: Dict[str, Message] = {}
        self._history: Deque[str] = deque()
        self._pending_requests: Set[str] = set()
        self._answered: Dict[str, str] = {}
        self._delivery_log: "OrderedDict[Tuple[str, str], DeliveryRecord]" = OrderedDict()
        self._inboxes: Dict[str, Deque[Message]] = {}
        self._stats: Counter = Counter()

        self._channels: Dict[str, _Channel] = {}
        self._enqueued = 0
        self._withdrawn: Set[str] = set()
        self._workers: Dict[str, asyncio.Task] = {}
        self._in_flight = 0
        self._idle: Optional[asyncio.Event] = None

        self._subscriptions: Dict[str, _Subscription] = {}
        self._routing_table: Dict[str, List[str]] = {}

        self._knowledge_exchange: Optional["KnowledgeExchange"] = None
        self._collaboration_engine: Optional["CollaborationEngine"] = None

        self._initialized = False
        self._initializing = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def is_ready(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Set up routing state. A repeat call after success is a no-op."""
        if self._initialized:
            logger.debug("CommunicationHub already initialized")
            return
        if self._initializing:
            raise AlreadyInitializedError("CommunicationHub initialization is already in progress")

        self._initializing = True
        try:
            logger.info("Initializing CommunicationHub...")
            self._routing_table = {
                self._normalize_topic(topic): list(agents)
                for topic, agents in self.config.routing_table.items()
            }
            self._idle = asyncio.Event()
            self._idle.set()
            self._initialized = True
            logger.info(
                "CommunicationHub operational (%d agents, %d routing topics)",
                len(self.registry), len(self._routing_table),
            )
        finally:
            self._initializing = False

    async def shutdown(self) -> None:
        """Stop the delivery workers. Undelivered messages are dropped."""
        workers = list(self._workers.values())
        for task in workers:
            task.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

        dropped = sum(len(channel) for channel in self._channels.values())
        if dropped:
            logger.warning(f"CommunicationHub stopped with {dropped} undelivered messages")
        self._workers.clear()
        self._channels.clear()
        self._in_flight = 0
        if self._idle is not None:
            self._idle.set()
        self._initialized = False
        logger.info("CommunicationHub stopped")

    def attach_knowledge_exchange(self, exchange: "KnowledgeExchange") -> None:
        self._knowledge_exchange = exchange

    def attach_collaboration_engine(self, engine: "CollaborationEngine") -> None:
        self._collaboration_engine = engine

    def _require_ready(self) -> None:
        if not self._initialized:
            raise DependencyNotReadyError("CommunicationHub is not initialized")

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------
    async def send_message(
        self,
        sender: str,
        recipients: Recipients,
        message_type: Union[MessageType, str],
        priority: Union[MessagePriority, str] = MessagePriority.MEDIUM,
        content: Union[MessageContent, Dict[str, Any], None] = None,
        requires_response: bool = False,
        correlation_id: Optional[str] = None,
    ) -> str:
        """Validate, store and enqueue a message; return its id.

        ``recipients`` is a single agent name, a list of names (group) or
        ``"broadcast"`` for every registered agent except the sender.
        Returns once the message is enqueued, not once it is delivered.
        """
        self._require_ready()

        message_type = self._coerce(MessageType, message_type, "message type")
        priority = self._coerce(MessagePriority, priority, "priority")
        content = self._validate_content(content)

        if not self.registry.exists(sender):
            raise UnknownAgentError(sender)

        resolved, unknown, is_broadcast = self._resolve_recipients(sender, recipients)
        is_group = is_broadcast or not isinstance(recipients, str)
        self._validate_shape(message_type, is_group, requires_response, correlation_id)

        with self._lock:
            if message_type == MessageType.RESPONSE:
                self._check_correlation(sender, correlation_id)

            message = Message(
                id=generate_id(MESSAGE_PREFIX),
                sender=sender,
                recipients=tuple(resolved + unknown),
                broadcast=is_broadcast,
                type=message_type,
                priority=priority,
                content=content,
                requires_response=requires_response,
                timestamp=self._clock(),
                correlation_id=correlation_id,
            )
            self._store(message)
            for name in resolved:
                self._record(message.id, name, DeliveryStatus.QUEUED)
            for name in unknown:
                self._record(message.id, name, DeliveryStatus.FAILED, "unknown recipient")
                self._stats["failed"] += 1
            self._stats["sent"] += 1

        for name in resolved:
            self._enqueue(name, message)

        log = logger.warning if priority == MessagePriority.CRITICAL else logger.debug
        log(
            "Message queued: %s -> %s (%s, %s) id=%s",
            sender, BROADCAST if is_broadcast else ",".join(message.recipients),
            message_type.value, priority.value, message.id,
        )
        if priority == MessagePriority.CRITICAL:
            await self._escalate(message)
        return message.id

    async def broadcast_message(
        self,
        sender: str,
        content: Union[MessageContent, Dict[str, Any]],
        priority: Union[MessagePriority, str] = MessagePriority.MEDIUM,
    ) -> str:
        """Send a ``broadcast`` message to every agent except the sender."""
        return await self.send_message(sender, BROADCAST, MessageType.BROADCAST, priority, content)

    async def _escalate(self, message: Message) -> Optional[str]:
        """Copy a critical message to the escalation agent as a notification."""
        agent = self.config.escalation_agent
        if agent is None or agent == message.sender or agent in message.recipients:
            return None
        if not self.registry.exists(agent):
            logger.debug(f"Escalation agent {agent} is not registered; {message.id} not escalated")
            return None
        escalation_id = await self.send_message(
            agent,
            agent,
            MessageType.NOTIFICATION,
            MessagePriority.CRITICAL,
            MessageContent(
                subject=f"Escalated: {message.content.subject}",
                data={
                    "escalated_message_id": message.id,
                    "original_sender": message.sender,
                    "original_recipients": list(message.recipients),
                    "original_type": message.type.value,
                },
                context="Auto-escalated critical message",
            ),
        )
        with self._lock:
            self._stats["escalations"] += 1
        logger.warning(f"Critical message {message.id} from {message.sender} escalated to {agent}")
        return escalation_id

    @staticmethod
    def _coerce(enum_cls, value, label: str):
        try:
            return enum_cls(value)
        except ValueError as e:
            raise InvalidMessageError(f"Invalid {label}: {value!r}") from e

    @staticmethod
    def _validate_content(content: Union[MessageContent, Dict[str, Any], None]) -> MessageContent:
        if content is None:
            raise InvalidMessageError("Message content is required")
        if not isinstance(content, MessageContent):
            try:
                content = MessageContent.model_validate(content)
            except ValidationError as e:
                raise InvalidMessageError(f"Invalid message content: {e}") from e
        if not content.subject.strip():
            raise InvalidMessageError("Message subject must not be empty")
        return content

    def _resolve_recipients(self, sender: str, recipients: Recipients) -> Tuple[List[str], List[str], bool]:
        """Return (live recipients, unknown recipients, is_broadcast)."""
        if isinstance(recipients, str):
            if recipients == BROADCAST:
                return [name for name in self.registry.names() if name != sender], [], True
            if not self.registry.exists(recipients):
                raise UnknownAgentError(recipients)
            return [recipients], [], False

        names = list(dict.fromkeys(recipients))
        if not names:
            raise InvalidMessageError("Recipient group must not be empty")
        live = [name for name in names if self.registry.exists(name)]
        unknown = [name for name in names if name not in live]
        return live, unknown, False

    @staticmethod
    def _validate_shape(
        message_type: MessageType,
        is_group: bool,
        requires_response: bool,
        correlation_id: Optional[str],
    ) -> None:
        if message_type == MessageType.RESPONSE:
            if not correlation_id:
                raise InvalidMessageError("A response must carry a correlation id")
            if is_group:
                raise InvalidMessageError("A response must be addressed to a single agent")
            if requires_response:
                raise InvalidMessageError("A response cannot itself require a response")
            return
        if correlation_id is not None:
            raise InvalidMessageError("Only responses may carry a correlation id")
        if message_type == MessageType.BROADCAST and not is_group:
            raise InvalidMessageError("A broadcast must be addressed to a group or to 'broadcast'")
        if requires_response and is_group:
            raise InvalidMessageError("Only point-to-point messages can require a response")

    def _check_correlation(self, sender: str, correlation_id: Optional[str]) -> None:
        request = self._messages.get(correlation_id) if correlation_id else None
        if request is None:
            raise DanglingCorrelationError(correlation_id, "no such message")
        if not request.requires_response:
            raise DanglingCorrelationError(correlation_id, "message does not expect a response")
        if correlation_id in self._withdrawn:
            raise DanglingCorrelationError(correlation_id, "request was withdrawn")
        if correlation_id in self._answered:
            raise DanglingCorrelationError(correlation_id, "request already answered")
        if sender not in request.recipients:
            raise InvalidMessageError(
                f"Agent '{sender}' was not addressed by request {correlation_id}",
                {"correlation_id": correlation_id, "sender": sender},
            )

    def _store(self, message: Message) -> None:
        self._messages[message.id] = message
        self._history.append(message.id)
        if message.requires_response:
            self._pending_requests.add(message.id)
        if message.correlation_id:
            self._answered[message.correlation_id] = message.id
            self._pending_requests.discard(message.correlation_id)
        while len(self._history) > self.config.history_limit:
            self._forget(self._history.popleft())

    def _forget(self, message_id: str) -> None:
        self._messages.pop(message_id, None)
        self._pending_requests.discard(message_id)
        self._withdrawn.discard(message_id)
        self._answered.pop(message_id, None)

    def _record(self, message_id: str, recipient: str, status: DeliveryStatus, reason: Optional[str] = None) -> None:
        key = (message_id, recipient)
        self._delivery_log.pop(key, None)
        self._delivery_log[key] = DeliveryRecord(
            message_id=message_id,
            recipient=recipient,
            status=status,
            reason=reason,
            recorded_at=self._clock(),
        )
        while len(self._delivery_log) > self.config.delivery_log_limit:
            self._delivery_log.popitem(last=False)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    def _enqueue(self, recipient: str, message: Message) -> None:
        channel = self._channels.get(recipient)
        if channel is None:
            channel = _Channel()
            self._channels[recipient] = channel
            self._workers[recipient] = asyncio.get_running_loop().create_task(
                self._drain_channel(recipient, channel), name=f"collabhub-delivery-{recipient}"
            )
        self._enqueued += 1
        self._in_flight += 1
        self._idle.clear()
        channel.push(self._enqueued, message)

    async def _drain_channel(self, recipient: str, channel: _Channel) -> None:
        while True:
            await channel.tokens.get()
            message = channel.pop()
            try:
                await self._deliver(recipient, message)
            except Exception as e:
                logger.exception(f"Delivery of {message.id} to {recipient} failed")
                with self._lock:
                    self._record(message.id, recipient, DeliveryStatus.FAILED, f"delivery error: {e}")
                    self._stats["failed"] += 1
            finally:
                channel.tokens.task_done()
                self._in_flight -= 1
                if self._in_flight == 0:
                    self._idle.set()

    async def _deliver(self, recipient: str, message: Message) -> None:
        if message.id in self._withdrawn:
            with self._lock:
                self._record(message.id, recipient, DeliveryStatus.FAILED, "request withdrawn")
                self._stats["failed"] += 1
            logger.debug(f"Skipped withdrawn request {message.id} for {recipient}")
            return
        if not self.registry.exists(recipient):
            with self._lock:
                self._record(message.id, recipient, DeliveryStatus.FAILED, "recipient deregistered")
                self._stats["failed"] += 1
            logger.warning(f"Dropped {message.id}: recipient {recipient} is no longer registered")
            return

        with self._lock:
            inbox = self._inboxes.get(recipient)
            if inbox is None:
                inbox = deque(maxlen=self.config.inbox_limit)
                self._inboxes[recipient] = inbox
            inbox.append(message)
            self._record(message.id, recipient, DeliveryStatus.DELIVERED)
            self._stats["delivered"] += 1

        logger.debug(f"Delivered {message.id} ({message.type.value}) to {recipient}")
        await self._notify_subscribers(message, recipient)

    async def _notify_subscribers(self, message: Message, recipient: str) -> None:
        with self._lock:
            subscriptions = [s for s in self._subscriptions.values() if s.wants(message, recipient)]
        for subscription in subscriptions:
            try:
                result = subscription.callback(message, recipient)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self._stats["subscriber_errors"] += 1
                logger.exception(
                    f"Subscriber {subscription.subscription_id} failed on {message.id} for {recipient}"
                )

    async def drain(self) -> None:
        """Wait until every queued message (including ones sent while
        delivering) has been delivered or recorded as failed."""
        if self._idle is not None:
            await self._idle.wait()

    def subscribe(
        self,
        callback: DeliveryCallback,
        message_type: Union[MessageType, str, None] = None,
        recipient: Optional[str] = None,
    ) -> str:
        """Register ``callback(message, recipient)`` for deliveries; returns an id."""
        subscription = _Subscription(
            subscription_id=generate_id("sub"),
            callback=callback,
            message_type=MessageType(message_type) if message_type is not None else None,
            recipient=recipient,
        )
        with self._lock:
            self._subscriptions[subscription.subscription_id] = subscription
        return subscription.subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        with self._lock:
            return self._subscriptions.pop(subscription_id, None) is not None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_message(self, message_id: str) -> Optional[Message]:
        with self._lock:
            return self._messages.get(message_id)

    def is_answered(self, message_id: str) -> bool:
        with self._lock:
            return message_id in self._answered

    def get_response(self, request_id: str) -> Optional[Message]:
        with self._lock:
            response_id = self._answered.get(request_id)
            return self._messages.get(response_id) if response_id else None

    def withdraw_requests(self, message_ids: Iterable[str]) -> int:
        """Withdraw unanswered requests: they leave the pending set, queued
        deliveries are skipped and later responses are rejected as dangling.
        Returns the number withdrawn."""
        withdrawn = 0
        with self._lock:
            for message_id in message_ids:
                message = self._messages.get(message_id)
                if message is None or not message.requires_response:
                    continue
                if message_id in self._answered or message_id in self._withdrawn:
                    continue
                self._withdrawn.add(message_id)
                self._pending_requests.discard(message_id)
                withdrawn += 1
        if withdrawn:
            logger.info(f"Withdrew {withdrawn} pending requests")
        return withdrawn

    def get_pending_requests(self, recipient: Optional[str] = None) -> List[Message]:
        """Unanswered messages that require a response, oldest first."""
        with self._lock:
            pending = [self._messages[mid] for mid in self._history if mid in self._pending_requests]
        if recipient is not None:
            pending = [m for m in pending if recipient in m.recipients]
        return pending

    def get_inbox(self, agent: str, sender: Optional[str] = None) -> List[Message]:
        """Messages delivered to ``agent`` in delivery order."""
        with self._lock:
            inbox = list(self._inboxes.get(agent, ()))
        if sender is not None:
            inbox = [m for m in inbox if m.sender == sender]
        return inbox

    def get_history(
        self,
        sender: Optional[str] = None,
        recipient: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Message]:
        """Retained messages in send order, optionally filtered."""
        with self._lock:
            messages = [self._messages[mid] for mid in self._history]
        if sender is not None:
            messages = [m for m in messages if m.sender == sender]
        if recipient is not None:
            messages = [m for m in messages if recipient in m.recipients]
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    def get_delivery_log(
        self,
        message_id: Optional[str] = None,
        recipient: Optional[str] = None,
        status: Union[DeliveryStatus, str, None] = None,
    ) -> List[DeliveryRecord]:
        with self._lock:
            records = list(self._delivery_log.values())
        if message_id is not None:
            records = [r for r in records if r.message_id == message_id]
        if recipient is not None:
            records = [r for r in records if r.recipient == recipient]
        if status is not None:
            wanted = DeliveryStatus(status)
            records = [r for r in records if r.status == wanted]
        return records

    def prune_history(self, now: Optional[datetime] = None) -> int:
        """Drop messages older than the retention window; returns the count."""
        cutoff = (now or self._clock()) - timedelta(seconds=self.config.history_retention_seconds)
        removed = 0
        with self._lock:
            while self._history and self._messages[self._history[0]].timestamp < cutoff:
                self._forget(self._history.popleft())
                removed += 1
        if removed:
            logger.info(f"Pruned {removed} messages older than {cutoff.isoformat()}")
        return removed

    def suggest_recipients(self, topic: str, exclude: Iterable[str] = ()) -> List[str]:
        """Registered agents the routing table associates with ``topic``."""
        excluded = set(exclude)
        candidates = self._routing_table.get(self._normalize_topic(topic), [])
        return [name for name in candidates if name not in excluded and self.registry.exists(name)]

    @staticmethod
    def _normalize_topic(topic: str) -> str:
        return "_".join(topic.strip().lower().split())

    def get_stats(self) -> Dict[str, Any]:
        agents = self.registry.list_agents()
        online = sum(1 for card in agents if card.is_available)
        with self._lock:
            return {
                "total_messages": len(self._history),
                "messages_sent": self._stats["sent"],
                "deliveries": self._stats["delivered"],
                "failed_deliveries": self._stats["failed"],
                "subscriber_errors": self._stats["subscriber_errors"],
                "escalations": self._stats["escalations"],
                "in_flight": self._in_flight,
                "pending_requests": len(self._pending_requests),
                "agents_online": online,
                "communication_health": (online / len(agents) * 100.0) if agents else 0.0,
            }

    # ------------------------------------------------------------------
    # Unified ingress
    # ------------------------------------------------------------------
    async def share_knowledge(self, *args: Any, **kwargs: Any) -> str:
        """Delegate to the attached knowledge exchange."""
        exchange = self._knowledge_exchange
        if exchange is None or not exchange.is_ready:
            raise DependencyNotReadyError("Knowledge exchange is not initialized")
        return await exchange.share_knowledge(*args, **kwargs)

    async def request_collaboration(self, *args: Any, **kwargs: Any) -> str:
        """Delegate to the attached collaboration engine."""
        engine = self._collaboration_engine
        if engine is None or not engine.is_ready:
            raise DependencyNotReadyError("Collaboration engine is not initialized")
        return await engine.request_collaboration(*args, **kwargs)
