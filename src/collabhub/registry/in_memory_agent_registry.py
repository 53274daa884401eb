"""
In-Memory Agent Registry

The single source of truth for which named agents take part in coordination.
Every component reads it; only the orchestrator (or an explicit admin call)
changes membership.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional

from ..schemas.agents import AgentCard
from ..schemas.common_enums import AgentAvailability
from ..utils.config_manager import AgentProfile
from ..utils.exceptions import DuplicateAgentError, UnknownAgentError

logger = logging.getLogger(__name__)


class AgentRegistry:
    """
    Fast, thread-safe, in-memory registry of participant agents.

    Deregistering an agent does not touch message history, knowledge or
    sessions that mention it; later sends to the name simply fail.
    """

    def __init__(self, agents: Optional[Iterable[AgentCard]] = None):
        self._agents: Dict[str, AgentCard] = {}
        self._lock = threading.RLock()
        for card in agents or ():
            self.register(card)
        logger.debug("AgentRegistry initialized with %d agents", len(self._agents))

    def register(self, agent: AgentCard) -> AgentCard:
        """Register an agent. Names are unique."""
        with self._lock:
            if agent.name in self._agents:
                raise DuplicateAgentError(f"Agent '{agent.name}' is already registered", {"agent": agent.name})
            self._agents[agent.name] = agent
        logger.info(f"Registered agent: {agent.name} (capabilities={agent.capabilities})")
        return agent

    def deregister(self, name: str) -> AgentCard:
        """Remove an agent and return its last card."""
        with self._lock:
            card = self._agents.pop(name, None)
        if card is None:
            raise UnknownAgentError(name)
        logger.info(f"Deregistered agent: {name}")
        return card

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._agents

    def get(self, name: str) -> AgentCard:
        """Get an agent card by name."""
        with self._lock:
            card = self._agents.get(name)
        if card is None:
            raise UnknownAgentError(name)
        return card

    def names(self) -> List[str]:
        with self._lock:
            return list(self._agents)

    def list_agents(self) -> List[AgentCard]:
        """List all registered agents in registration order."""
        with self._lock:
            return list(self._agents.values())

    def list_by_capability(self, tag: str) -> List[AgentCard]:
        """List agents carrying ``tag`` as a capability, expertise or specialization."""
        with self._lock:
            matching = [card for card in self._agents.values() if tag in card.capability_tags()]
        logger.debug(f"Found {len(matching)} agents with capability '{tag}'")
        return matching

    def set_availability(self, name: str, availability: AgentAvailability) -> AgentCard:
        """Availability is the only mutable attribute; the card is replaced."""
        with self._lock:
            card = self._agents.get(name)
            if card is None:
                raise UnknownAgentError(name)
            updated = card.model_copy(update={"availability": AgentAvailability(availability)})
            self._agents[name] = updated
        logger.debug(f"Agent {name} availability -> {updated.availability.value}")
        return updated

    def bootstrap(self, profiles: Iterable[AgentProfile]) -> List[AgentCard]:
        """Register every profile whose name is not taken yet."""
        registered = []
        for profile in profiles:
            if self.exists(profile.name):
                continue
            registered.append(self.register(AgentCard(**profile.model_dump())))
        return registered

    def __len__(self) -> int:
        with self._lock:
            return len(self._agents)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.exists(name)
