"""
spacemind Schemas

Knowledge nodes, spaces and conversation turns.
"""

from .node import (
    Node,
    NodeType,
    NodeStatus,
    NodeSource,
    Space,
    ChatRole,
    ConversationTurn,
    ChatHistory,
)

__all__ = [
    "Node",
    "NodeType",
    "NodeStatus",
    "NodeSource",
    "Space",
    "ChatRole",
    "ConversationTurn",
    "ChatHistory",
]
