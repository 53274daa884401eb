from datetime import timedelta

import pytest

from collabhub.runtime import CommunicationHub, KnowledgeExchange
from collabhub.schemas import KnowledgeCategory, KnowledgeFilter, MessagePriority, MessageType
from collabhub.utils.config_manager import KnowledgeConfiguration
from collabhub.utils.exceptions import (
    DependencyNotReadyError,
    InvalidFilterError,
    InvalidKnowledgeError,
    UnknownAgentError,
    UnknownKnowledgeError,
)


async def _share(exchange, title="Cache Pattern", confidence=0.9, applicability=("infra", "quality"), **kwargs):
    params = {
        "category": "optimization",
        "description": "Cache hot keys close to the caller",
        "data": {"hit_rate": 0.93},
    }
    params.update(kwargs)
    source = params.pop("source", "infra")
    return await exchange.share_knowledge(
        source, params.pop("category"), title, confidence=confidence, applicability=list(applicability), **params
    )


@pytest.mark.asyncio
async def test_share_and_query_by_category(exchange):
    k1 = await _share(exchange)
    assert k1.startswith("knowledge_")

    results = list(exchange.query({"category": "optimization"}))
    assert [item.id for item in results] == [k1]
    item = exchange.get(k1)
    assert item.source == "infra"
    assert item.category == KnowledgeCategory.OPTIMIZATION
    assert item.data == {"hit_rate": 0.93}
    assert item.applicability == ("infra", "quality")


@pytest.mark.asyncio
@pytest.mark.parametrize("given,stored", [(1.4, 1.0), (-0.3, 0.0), (0.42, 0.42), (1, 1.0)])
async def test_confidence_is_clamped(exchange, given, stored):
    kid = await _share(exchange, confidence=given)
    assert exchange.get(kid).confidence == pytest.approx(stored)


@pytest.mark.asyncio
async def test_share_validation_leaves_store_unchanged(exchange):
    with pytest.raises(UnknownAgentError):
        await _share(exchange, source="ghost")
    with pytest.raises(InvalidKnowledgeError):
        await _share(exchange, category="rumour")
    with pytest.raises(InvalidKnowledgeError):
        await _share(exchange, title="  ")
    with pytest.raises(InvalidKnowledgeError):
        await _share(exchange, applicability=[])
    with pytest.raises(InvalidKnowledgeError):
        await _share(exchange, applicability=["", "  "])
    with pytest.raises(InvalidKnowledgeError):
        await _share(exchange, applicability=[5])
    with pytest.raises(InvalidKnowledgeError):
        await _share(exchange, confidence=float("nan"))
    with pytest.raises(InvalidKnowledgeError):
        await _share(exchange, related_knowledge=["knowledge_missing"])
    assert len(exchange) == 0


@pytest.mark.asyncio
async def test_share_notifies_applicable_agents(exchange, hub):
    kid = await _share(exchange, applicability=["infra", "quality", "ux"])
    await hub.drain()

    [message] = hub.get_history(sender="infra")
    assert message.type == MessageType.NOTIFICATION
    assert message.priority == MessagePriority.HIGH
    assert message.content.subject == "New Knowledge: Cache Pattern"
    assert message.content.data["knowledge_id"] == kid
    # the source is not notified about its own knowledge
    assert set(message.recipients) == {"quality", "ux"}
    assert exchange.usage_count(kid) == 2


@pytest.mark.asyncio
async def test_applicability_matches_capability_tags(exchange, hub):
    await _share(exchange, applicability=["testing"], confidence=0.5)
    await hub.drain()

    [message] = hub.get_history(sender="infra")
    assert message.recipients == ("quality",)
    assert message.priority == MessagePriority.MEDIUM


@pytest.mark.asyncio
async def test_wildcard_applicability_notifies_everyone(exchange, hub):
    await _share(exchange, applicability=["*"])
    [message] = hub.get_history(sender="infra")
    assert set(message.recipients) == {"quality", "ux", "orchestrator"}


@pytest.mark.asyncio
async def test_no_notification_without_audience(exchange, hub):
    kid = await _share(exchange, applicability=["infra"])
    assert hub.get_history() == []
    assert exchange.usage_count(kid) == 0


@pytest.mark.asyncio
async def test_notify_on_share_can_be_disabled(registry, hub, clock):
    exchange = KnowledgeExchange(registry, hub, KnowledgeConfiguration(notify_on_share=False), clock)
    await exchange.initialize()
    await _share(exchange)
    assert hub.get_history() == []


@pytest.mark.asyncio
async def test_failed_notification_rolls_back(exchange, hub):
    await hub.shutdown()
    with pytest.raises(DependencyNotReadyError):
        await _share(exchange)
    assert len(exchange) == 0


@pytest.mark.asyncio
async def test_query_ordering_confidence_then_recency(exchange, clock):
    low = await _share(exchange, title="low", confidence=0.5)
    clock.advance(seconds=1)
    first_high = await _share(exchange, title="high-1", confidence=0.9)
    clock.advance(seconds=1)
    mid = await _share(exchange, title="mid", confidence=0.7)
    clock.advance(seconds=1)
    second_high = await _share(exchange, title="high-2", confidence=0.9)

    assert exchange.query().ids() == [second_high, first_high, mid, low]


@pytest.mark.asyncio
async def test_query_filters(exchange):
    cache = await _share(exchange, title="Cache Pattern", confidence=0.9)
    warn = await _share(
        exchange, title="Disk filling up", category="warning", confidence=0.6,
        applicability=["ux"], source="quality", description="Logs are not rotated",
    )

    assert exchange.query(category="warning").ids() == [warn]
    assert exchange.query(min_confidence=0.7).ids() == [cache]
    assert exchange.query(applicability="ux").ids() == [warn]
    assert exchange.query(source="infra").ids() == [cache]
    assert exchange.query(text="ROTATED").ids() == [warn]
    assert exchange.query(KnowledgeFilter(category="optimization"), min_confidence=0.95).ids() == []
    assert exchange.query(text="nothing like this").ids() == []
    assert exchange.query_knowledge({"source": "quality"}).ids() == [warn]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "criteria",
    [{"min_confidence": 1.5}, {"min_confidence": -0.1}, {"category": "rumour"}, {"colour": "red"}],
)
async def test_invalid_filters(exchange, criteria):
    with pytest.raises(InvalidFilterError):
        exchange.query(criteria)


@pytest.mark.asyncio
async def test_query_is_lazy_and_restartable(exchange):
    query = exchange.query(category="insight")
    assert list(query) == []

    kid = await _share(exchange, category="insight")
    assert [item.id for item in query] == [kid]
    assert [item.id for item in query] == [kid]
    assert query.first().id == kid


@pytest.mark.asyncio
async def test_related_to_is_bounded_and_deduplicated(exchange):
    a = await _share(exchange, title="A")
    b = await _share(exchange, title="B", related_knowledge=[a])
    c = await _share(exchange, title="C", related_knowledge=[b])
    d = await _share(exchange, title="D", related_knowledge=[c])
    e = await _share(exchange, title="E", related_knowledge=[b, c, b])

    assert [i.id for i in exchange.related_to(d)] == [c, b]
    assert [i.id for i in exchange.related_to(d, depth=5)] == [c, b, a]
    assert [i.id for i in exchange.related_to(d, depth=0)] == []
    assert [i.id for i in exchange.related_to(e)] == [b, c, a]
    assert exchange.get(e).related_knowledge == (b, c)
    assert exchange.related_to(a) == []

    with pytest.raises(UnknownKnowledgeError):
        exchange.related_to("knowledge_missing")
    with pytest.raises(InvalidFilterError):
        exchange.related_to(a, depth=-1)


@pytest.mark.asyncio
async def test_prune_removes_old_unused_items(exchange, hub, clock):
    unused = await _share(exchange, title="unused", applicability=["infra"])
    used = await _share(exchange, title="used", applicability=["infra"])
    exchange.record_usage(used)
    clock.advance(days=31)
    fresh = await _share(exchange, title="fresh", applicability=["infra"])

    assert exchange.prune() == 1
    with pytest.raises(UnknownKnowledgeError):
        exchange.get(unused)
    assert exchange.get(used) and exchange.get(fresh)

    assert exchange.prune(max_age=timedelta(days=1), only_unused=False) == 1
    assert exchange.query().ids() == [fresh]


@pytest.mark.asyncio
async def test_hub_delegates_share_knowledge(exchange, hub):
    kid = await hub.share_knowledge("infra", "insight", "Via hub", applicability=["*"], confidence=0.3)
    assert exchange.get(kid).title == "Via hub"


@pytest.mark.asyncio
async def test_requires_initialized_hub(registry, config):
    hub = CommunicationHub(registry, config.hub)
    exchange = KnowledgeExchange(registry, hub, config.knowledge)
    with pytest.raises(DependencyNotReadyError):
        await exchange.initialize()
    with pytest.raises(DependencyNotReadyError):
        await exchange.share_knowledge("infra", "insight", "too early")

    await hub.initialize()
    await exchange.initialize()
    await exchange.initialize()
    assert exchange.is_ready
    await hub.shutdown()


@pytest.mark.asyncio
async def test_stats(exchange):
    await _share(exchange, confidence=0.8)
    await _share(exchange, category="warning", confidence=0.4)
    stats = exchange.get_stats()
    assert stats["total_items"] == 2
    assert stats["by_category"] == {"optimization": 1, "warning": 1}
    assert stats["average_confidence"] == pytest.approx(0.6)
