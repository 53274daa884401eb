"""Identifier helpers for messages, knowledge items, sessions and teams."""

import uuid

MESSAGE_PREFIX = "msg"
KNOWLEDGE_PREFIX = "knowledge"
SESSION_PREFIX = "collab"
TEAM_PREFIX = "team"


def generate_id(prefix: str) -> str:
    """Generates an opaque, JSON-safe identifier such as ``msg_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex}"
