"""Runtime components of the coordination core.

``MasterOrchestrator`` is the usual entry point; the components can also be
wired by hand for tests or embedding.
"""

from __future__ import annotations

from .communication_hub import CommunicationHub
from .knowledge_exchange import KnowledgeExchange, KnowledgeQuery
from .collaboration_engine import CollaborationEngine
from .orchestrator import MasterOrchestrator

__all__ = [
    "CommunicationHub",
    "KnowledgeExchange",
    "KnowledgeQuery",
    "CollaborationEngine",
    "MasterOrchestrator",
]
