"""
Knowledge Exchange

Append-only store of knowledge items shared between agents. Sharing an item
notifies every agent the item applies to through the Communication Hub;
queries return lazy, restartable sequences ordered by confidence.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Union

from pydantic import ValidationError

from ..registry import AgentRegistry
from ..schemas.common_enums import KnowledgeCategory, MessagePriority, MessageType
from ..schemas.knowledge import WILDCARD_APPLICABILITY, KnowledgeFilter, KnowledgeItem
from ..schemas.messages import Message, MessageContent, utc_now
from ..utils.config_manager import KnowledgeConfiguration, get_config
from ..utils.exceptions import (
    AlreadyInitializedError,
    DependencyNotReadyError,
    InvalidFilterError,
    InvalidKnowledgeError,
    UnknownAgentError,
    UnknownKnowledgeError,
)
from ..utils.id_utils import KNOWLEDGE_PREFIX, generate_id
from .communication_hub import CommunicationHub

__all__ = ["KnowledgeExchange", "KnowledgeQuery"]

logger = logging.getLogger(__name__)

HIGH_PRIORITY_CONFIDENCE = 0.8


class KnowledgeQuery:
    """Lazy result of a knowledge query.

    Nothing is read until iteration starts. Every iteration takes a fresh
    snapshot of the store, so the same query object can be re-run and will
    see items shared since the previous pass.
    """

    def __init__(self, exchange: "KnowledgeExchange", knowledge_filter: KnowledgeFilter):
        self._exchange = exchange
        self.filter = knowledge_filter

    def __iter__(self) -> Iterator[KnowledgeItem]:
        for item in self._exchange._ranked_snapshot():
            if self.filter.matches(item):
                yield item

    def first(self) -> Optional[KnowledgeItem]:
        return next(iter(self), None)

    def ids(self) -> List[str]:
        return [item.id for item in self]

    def __repr__(self) -> str:
        criteria = self.filter.model_dump(exclude_none=True)
        return f"KnowledgeQuery({criteria})"


class KnowledgeExchange:
    """Stores shared knowledge and propagates it to applicable agents."""

    def __init__(
        self,
        registry: AgentRegistry,
        hub: CommunicationHub,
        config: Optional[KnowledgeConfiguration] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.registry = registry
        self.hub = hub
        self.config = config or get_config().knowledge
        self._clock = clock or utc_now
        self._lock = threading.RLock()

        # knowledge id -> (insertion sequence, item)
        self._items: Dict[str, tuple] = {}
        self._sequence = 0
        self._usage: Counter = Counter()

        self._subscription_id: Optional[str] = None
        self._initialized = False
        self._initializing = False

    @property
    def is_ready(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._initialized:
            logger.debug("KnowledgeExchange already initialized")
            return
        if self._initializing:
            raise AlreadyInitializedError("KnowledgeExchange initialization is already in progress")
        if not self.hub.is_ready:
            raise DependencyNotReadyError("KnowledgeExchange requires an initialized CommunicationHub")

        self._initializing = True
        try:
            self._subscription_id = self.hub.subscribe(self._on_notification_delivered, MessageType.NOTIFICATION)
            self.hub.attach_knowledge_exchange(self)
            self._initialized = True
            logger.info("KnowledgeExchange operational")
        finally:
            self._initializing = False

    async def shutdown(self) -> None:
        if self._subscription_id is not None:
            self.hub.unsubscribe(self._subscription_id)
            self._subscription_id = None
        self._initialized = False

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------
    async def share_knowledge(
        self,
        source: str,
        category: Union[KnowledgeCategory, str],
        title: str,
        description: str = "",
        data: Optional[Dict[str, Any]] = None,
        confidence: float = 1.0,
        applicability: Union[str, Sequence[str]] = (WILDCARD_APPLICABILITY,),
        related_knowledge: Iterable[str] = (),
    ) -> str:
        """Validate and store a knowledge item, notify applicable agents and
        return the new item's id.

        Confidence is clamped to [0, 1]. ``applicability`` holds agent names
        or capability tags; ``"*"`` makes the item relevant to every agent.
        """
        if not self._initialized:
            raise DependencyNotReadyError("KnowledgeExchange is not initialized")
        if not self.registry.exists(source):
            raise UnknownAgentError(source)

        try:
            category = KnowledgeCategory(category)
        except ValueError as e:
            raise InvalidKnowledgeError(f"Unknown knowledge category: {category!r}") from e
        if not title or not title.strip():
            raise InvalidKnowledgeError("Knowledge title must not be blank")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or math.isnan(confidence):
            raise InvalidKnowledgeError(f"Confidence must be a number, got {confidence!r}")

        if isinstance(applicability, str):
            applicability = [applicability]
        applicability = list(applicability)
        non_strings = [tag for tag in applicability if not isinstance(tag, str)]
        if non_strings:
            raise InvalidKnowledgeError(
                f"Applicability entries must be agent names or tags, got {non_strings!r}"
            )
        tags = tuple(dict.fromkeys(tag.strip() for tag in applicability if tag and tag.strip()))
        if not tags:
            raise InvalidKnowledgeError("Applicability must name at least one agent or tag")
        related = tuple(dict.fromkeys(related_knowledge))

        with self._lock:
            missing = [kid for kid in related if kid not in self._items]
            if missing:
                raise InvalidKnowledgeError(
                    f"Related knowledge not found: {', '.join(missing)}", {"missing": missing}
                )
            try:
                item = KnowledgeItem(
                    id=generate_id(KNOWLEDGE_PREFIX),
                    source=source,
                    category=category,
                    title=title.strip(),
                    description=description,
                    data=data or {},
                    confidence=confidence,
                    applicability=tags,
                    related_knowledge=related,
                    created_at=self._clock(),
                )
            except ValidationError as e:
                raise InvalidKnowledgeError(f"Invalid knowledge item: {e}") from e
            self._sequence += 1
            self._items[item.id] = (self._sequence, item)

        logger.info(
            f"Knowledge shared: {item.title} ({item.category.value}, confidence={item.confidence:.2f}) "
            f"by {source} id={item.id}"
        )

        if self.config.notify_on_share:
            try:
                await self._notify(item)
            except Exception:
                with self._lock:
                    self._items.pop(item.id, None)
                logger.error(f"Knowledge {item.id} rolled back: notification could not be sent")
                raise
        return item.id

    def _recipients_for(self, item: KnowledgeItem) -> List[str]:
        return [
            card.name
            for card in self.registry.list_agents()
            if card.name != item.source and item.applies_to(card.tags())
        ]

    async def _notify(self, item: KnowledgeItem) -> Optional[str]:
        recipients = self._recipients_for(item)
        if not recipients:
            logger.debug(f"No agents to notify about {item.id}")
            return None
        priority = MessagePriority.HIGH if item.confidence > HIGH_PRIORITY_CONFIDENCE else MessagePriority.MEDIUM
        content = MessageContent(
            subject=f"New Knowledge: {item.title}",
            data={
                "knowledge_id": item.id,
                "category": item.category.value,
                "confidence": item.confidence,
                "applicability": list(item.applicability),
            },
            context=item.description or None,
        )
        return await self.hub.send_message(item.source, recipients, MessageType.NOTIFICATION, priority, content)

    def _on_notification_delivered(self, message: Message, recipient: str) -> None:
        knowledge_id = message.content.data.get("knowledge_id")
        if not isinstance(knowledge_id, str):
            return
        with self._lock:
            entry = self._items.get(knowledge_id)
            if entry is None or entry[1].source != message.sender:
                return
            self._usage[knowledge_id] += 1

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, knowledge_id: str) -> KnowledgeItem:
        with self._lock:
            entry = self._items.get(knowledge_id)
        if entry is None:
            raise UnknownKnowledgeError(f"Unknown knowledge item: {knowledge_id}", {"knowledge_id": knowledge_id})
        return entry[1]

    def query(self, knowledge_filter: Union[KnowledgeFilter, Dict[str, Any], None] = None, **criteria: Any) -> KnowledgeQuery:
        """Build a lazy query. Accepts a ``KnowledgeFilter``, a dict or keywords."""
        if isinstance(knowledge_filter, KnowledgeFilter):
            if not criteria:
                return KnowledgeQuery(self, knowledge_filter)
            knowledge_filter = knowledge_filter.model_dump(exclude_none=True)
        return KnowledgeQuery(self, self._build_filter({**(knowledge_filter or {}), **criteria}))

    query_knowledge = query

    @staticmethod
    def _build_filter(raw: Dict[str, Any]) -> KnowledgeFilter:
        try:
            return KnowledgeFilter.model_validate(raw)
        except ValidationError as e:
            raise InvalidFilterError(f"Invalid knowledge filter: {e}", {"filter": repr(raw)}) from e

    def _ranked_snapshot(self) -> List[KnowledgeItem]:
        with self._lock:
            entries = list(self._items.values())
        entries.sort(key=lambda entry: (-entry[1].confidence, -entry[0]))
        return [item for _, item in entries]

    def related_to(self, knowledge_id: str, depth: Optional[int] = None) -> List[KnowledgeItem]:
        """Items reachable through related-knowledge references, breadth first.

        Bounded by ``depth`` (default from configuration). Cycles are safe;
        the starting item is not included and references to pruned items are
        skipped.
        """
        if depth is None:
            depth = self.config.related_depth
        if depth < 0:
            raise InvalidFilterError(f"Depth must not be negative, got {depth}")

        with self._lock:
            if knowledge_id not in self._items:
                raise UnknownKnowledgeError(f"Unknown knowledge item: {knowledge_id}", {"knowledge_id": knowledge_id})
            items = {kid: entry[1] for kid, entry in self._items.items()}

        visited = {knowledge_id}
        frontier = deque([(knowledge_id, 0)])
        related: List[KnowledgeItem] = []
        while frontier:
            current, level = frontier.popleft()
            if level >= depth:
                continue
            for ref in items[current].related_knowledge:
                if ref in visited or ref not in items:
                    continue
                visited.add(ref)
                related.append(items[ref])
                frontier.append((ref, level + 1))
        return related

    def usage_count(self, knowledge_id: str) -> int:
        self.get(knowledge_id)
        with self._lock:
            return self._usage[knowledge_id]

    def record_usage(self, knowledge_id: str) -> int:
        self.get(knowledge_id)
        with self._lock:
            self._usage[knowledge_id] += 1
            return self._usage[knowledge_id]

    def prune(
        self,
        max_age: Optional[timedelta] = None,
        only_unused: bool = True,
        now: Optional[datetime] = None,
    ) -> int:
        """Remove old items; by default only those that were never used."""
        if max_age is None:
            max_age = timedelta(days=self.config.retention_days)
        cutoff = (now or self._clock()) - max_age
        with self._lock:
            doomed = [
                kid for kid, (_, item) in self._items.items()
                if item.created_at < cutoff and not (only_unused and self._usage[kid] > 0)
            ]
            for kid in doomed:
                del self._items[kid]
                self._usage.pop(kid, None)
        if doomed:
            logger.info(f"Pruned {len(doomed)} knowledge items older than {cutoff.isoformat()}")
        return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def get_stats(self) -> Dict[str, Any]:
        items = self._ranked_snapshot()
        by_category = Counter(item.category.value for item in items)
        return {
            "total_items": len(items),
            "by_category": dict(by_category),
            "average_confidence": (sum(i.confidence for i in items) / len(items)) if items else 0.0,
            "total_usage": sum(self._usage.values()),
        }
