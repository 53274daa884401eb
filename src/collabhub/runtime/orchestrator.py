"""MasterOrchestrator

Top-level façade of the coordination core. It constructs and owns the
registry, hub, knowledge exchange and collaboration engine, initializes them
in dependency order and re-exposes the boundary operations external callers
use. Until every stage is ready those operations raise ``NotReadyError``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..registry import AgentRegistry
from ..schemas.agents import AgentCard
from ..schemas.collaboration import CollaborationSession, Team
from ..schemas.common_enums import InitStage, SessionStatus, TeamStatus
from ..utils.config_manager import SystemConfiguration, get_config
from ..utils.exceptions import DependencyNotReadyError, InitializationError, NotReadyError
from .collaboration_engine import CollaborationEngine
from .communication_hub import CommunicationHub
from .knowledge_exchange import KnowledgeExchange, KnowledgeQuery

__all__ = ["MasterOrchestrator"]

STAGES = (InitStage.REGISTRY, InitStage.HUB, InitStage.KNOWLEDGE, InitStage.COLLABORATION)


class MasterOrchestrator:
    """
    Single lifecycle entry point for external callers.

    ``initialize()`` runs registry -> hub -> knowledge -> collaboration. A
    failure aborts with ``InitializationError`` naming the stage; calling
    ``initialize()`` again resumes from that stage.
    """

    def __init__(
        self,
        config: Optional[SystemConfiguration] = None,
        registry: Optional[AgentRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or get_config()
        self.registry = registry if registry is not None else AgentRegistry()
        self.hub = CommunicationHub(self.registry, self.config.hub, clock)
        self.knowledge = KnowledgeExchange(self.registry, self.hub, self.config.knowledge, clock)
        self.collaboration = CollaborationEngine(
            self.registry, self.hub, self.knowledge, self.config.collaboration, clock
        )
        self.logger = logging.getLogger(self.__class__.__name__)

        self._completed: List[InitStage] = []
        self._failed_stage: Optional[InitStage] = None

    @property
    def is_ready(self) -> bool:
        return len(self._completed) == len(STAGES)

    async def initialize(self) -> "MasterOrchestrator":
        """Bring every component up, skipping stages that already completed."""
        if self.is_ready:
            self.logger.debug("MasterOrchestrator already initialized")
            return self

        for stage in STAGES:
            if stage in self._completed:
                continue
            self.logger.info(f"Initializing stage: {stage.value}")
            try:
                await self._run_stage(stage)
            except Exception as e:
                self._failed_stage = stage
                self.logger.error(f"Initialization failed at stage '{stage.value}': {e}")
                raise InitializationError(stage.value, e) from e
            self._completed.append(stage)

        self._failed_stage = None
        self.logger.info(f"MasterOrchestrator ready with {len(self.registry)} agents")
        return self

    async def _run_stage(self, stage: InitStage) -> None:
        if stage == InitStage.REGISTRY:
            self._prepare_registry()
        elif stage == InitStage.HUB:
            await self.hub.initialize()
        elif stage == InitStage.KNOWLEDGE:
            await self.knowledge.initialize()
        elif stage == InitStage.COLLABORATION:
            await self.collaboration.initialize()

    def _prepare_registry(self) -> None:
        registry_config = self.config.registry
        if len(self.registry) == 0 and registry_config.bootstrap_default_agents:
            added = self.registry.bootstrap(registry_config.default_agents)
            self.logger.info(f"Bootstrapped {len(added)} default agents")
        if len(self.registry) == 0:
            raise DependencyNotReadyError("Agent registry is empty")

        coordinator = self.config.collaboration.coordinator_agent
        if not self.registry.exists(coordinator):
            self.registry.register(AgentCard(name=coordinator, capabilities=["coordination"]))
            self.logger.info(f"Registered coordinator agent '{coordinator}'")

    def status(self) -> Dict[str, Any]:
        """Per-stage readiness plus component statistics once ready."""
        report: Dict[str, Any] = {
            "ready": self.is_ready,
            "stages": {stage.value: stage in self._completed for stage in STAGES},
            "failed_stage": self._failed_stage.value if self._failed_stage else None,
            "agents": len(self.registry),
        }
        if self.is_ready:
            report["hub"] = self.hub.get_stats()
            report["knowledge"] = self.knowledge.get_stats()
            report["collaboration"] = self.collaboration.get_stats()
        return report

    def _require_ready(self) -> None:
        if not self.is_ready:
            raise NotReadyError(
                "MasterOrchestrator is not initialized",
                {"completed_stages": [s.value for s in self._completed]},
            )

    # Boundary operations -------------------------------------------------

    async def send_message(self, *args: Any, **kwargs: Any) -> str:
        self._require_ready()
        return await self.hub.send_message(*args, **kwargs)

    async def share_knowledge(self, *args: Any, **kwargs: Any) -> str:
        self._require_ready()
        return await self.knowledge.share_knowledge(*args, **kwargs)

    async def request_collaboration(self, *args: Any, **kwargs: Any) -> str:
        self._require_ready()
        return await self.collaboration.request_collaboration(*args, **kwargs)

    async def form_team(self, *args: Any, **kwargs: Any) -> str:
        self._require_ready()
        return await self.collaboration.form_team(*args, **kwargs)

    def query_knowledge(self, knowledge_filter: Any = None, **criteria: Any) -> KnowledgeQuery:
        self._require_ready()
        return self.knowledge.query(knowledge_filter, **criteria)

    def suggest_team(self, required_expertise: Any, size: Optional[int] = None) -> List[str]:
        self._require_ready()
        return self.collaboration.suggest_team(required_expertise, size)

    def get_session_status(self, session_id: str) -> SessionStatus:
        self._require_ready()
        return self.collaboration.get_session_status(session_id)

    def get_team_status(self, team_id: str) -> TeamStatus:
        self._require_ready()
        return self.collaboration.get_team_status(team_id)

    def get_session(self, session_id: str) -> CollaborationSession:
        self._require_ready()
        return self.collaboration.get_session(session_id)

    def get_team(self, team_id: str) -> Team:
        self._require_ready()
        return self.collaboration.get_team(team_id)

    async def drain(self) -> None:
        """Wait for all queued deliveries (and their side effects)."""
        await self.hub.drain()

    async def shutdown(self) -> None:
        await self.collaboration.shutdown()
        await self.knowledge.shutdown()
        await self.hub.shutdown()
        self._completed.clear()
        self.logger.info("MasterOrchestrator shut down")
