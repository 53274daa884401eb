from datetime import datetime, timedelta, timezone

import pytest

from collabhub.registry import AgentRegistry
from collabhub.runtime import MasterOrchestrator
from collabhub.schemas import AgentCard, DeliveryStatus, MessageType, SessionStatus, TeamStatus
from collabhub.utils.config_manager import SystemConfiguration
from collabhub.utils.exceptions import DanglingCorrelationError


@pytest.mark.asyncio
async def test_request_response_correlation():
    registry = AgentRegistry([AgentCard(name="infra"), AgentCard(name="quality")])
    orchestrator = MasterOrchestrator(
        config=SystemConfiguration(registry={"bootstrap_default_agents": False}), registry=registry
    )
    await orchestrator.initialize()
    try:
        m1 = await orchestrator.send_message("infra", "quality", "request", "medium", {"subject": "perf"}, True)
        await orchestrator.send_message(
            "quality", "infra", "response", "medium", {"subject": "re: perf"}, correlation_id=m1
        )
        with pytest.raises(DanglingCorrelationError):
            await orchestrator.send_message(
                "quality", "infra", "response", "medium", {"subject": "re: perf"}, correlation_id=m1
            )

        await orchestrator.drain()
        [request] = orchestrator.hub.get_inbox("quality")
        [response] = orchestrator.hub.get_inbox("infra")
        assert request.id == m1
        assert response.correlation_id == m1
    finally:
        await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_shared_knowledge_is_queryable():
    registry = AgentRegistry([AgentCard(name="infra"), AgentCard(name="quality")])
    orchestrator = MasterOrchestrator(
        config=SystemConfiguration(registry={"bootstrap_default_agents": False}), registry=registry
    )
    await orchestrator.initialize()
    try:
        k1 = await orchestrator.share_knowledge(
            "infra", "optimization", "Cache Pattern", "LRU cache in front of the DB",
            {"cache_size": "512MB"}, confidence=0.9, applicability=["infra", "quality"],
        )
        assert k1 in orchestrator.query_knowledge({"category": "optimization"}).ids()
    finally:
        await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_coordination_walkthrough_with_auto_accept():
    """Messaging, knowledge, a session and a team across the default roster."""
    config = SystemConfiguration(collaboration={"activation_policy": "auto_accept"})
    orchestrator = MasterOrchestrator(config=config)
    await orchestrator.initialize()
    try:
        message_id = await orchestrator.send_message(
            "infrastructure", "quality", "request", "medium",
            {
                "subject": "Performance Optimization Request",
                "data": {
                    "metrics": {"cpu": 75, "memory": 80, "response_time": 150},
                    "threshold_exceeded": ["memory", "response_time"],
                },
            },
            requires_response=True,
        )
        knowledge_id = await orchestrator.hub.share_knowledge(
            "infrastructure", "optimization", "Cache Performance Pattern",
            "Discovered optimal cache configuration for high-traffic scenarios",
            {"cache_size": "512MB", "eviction_policy": "LRU", "hit_ratio_improvement": 25},
            confidence=0.9, applicability=["infrastructure", "quality", "ux"],
        )
        session_id = await orchestrator.hub.request_collaboration(
            "infrastructure",
            ["quality", "ux", "security"],
            "Optimize system performance while maintaining security standards",
            {
                "current_metrics": {"performance": 75, "security": 85, "user_satisfaction": 80},
                "targets": {"performance": 90, "security": 90, "user_satisfaction": 85},
                "constraints": ["zero_downtime", "budget_limit_10k"],
            },
        )
        team_id = await orchestrator.form_team(
            "Complex Performance Optimization",
            ["infrastructure", "quality", "ux"],
            {
                "problem_type": "performance_optimization",
                "complexity": "high",
                "deadline": datetime.now(timezone.utc) + timedelta(hours=24),
                "resources": {"budget": 10000, "compute_credits": 1000},
            },
        )

        assert orchestrator.get_session_status(session_id) == SessionStatus.PROPOSED
        assert orchestrator.get_team_status(team_id) == TeamStatus.FORMING

        await orchestrator.drain()

        session = orchestrator.get_session(session_id)
        assert session.status == SessionStatus.ACTIVE
        assert sorted(session.acknowledged_by) == ["quality", "security", "ux"]
        assert orchestrator.get_team_status(team_id) == TeamStatus.ACTIVE

        # the plain request was not an invitation and stays unanswered
        assert not orchestrator.hub.is_answered(message_id)

        notification = next(
            m for m in orchestrator.hub.get_inbox("quality") if m.type == MessageType.NOTIFICATION
        )
        assert notification.content.data["knowledge_id"] == knowledge_id
        assert orchestrator.knowledge.usage_count(knowledge_id) == 2
        assert all(
            r.status == DeliveryStatus.DELIVERED for r in orchestrator.hub.get_delivery_log()
        )

        status = orchestrator.status()
        assert status["hub"]["agents_online"] == 7
        assert status["collaboration"]["sessions_by_status"] == {"active": 1}
    finally:
        await orchestrator.shutdown()
