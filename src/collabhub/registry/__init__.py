"""
Agent registry package.

The registry is shared-read by the hub, the knowledge exchange and the
collaboration engine.
"""

from .in_memory_agent_registry import AgentRegistry

__all__ = [
    'AgentRegistry',
]
