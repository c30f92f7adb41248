"""
Knowledge Node Schema

A node is one unit of captured knowledge (article, video, tweet, note,
image) that belongs to exactly one space. Nodes arrive already normalized
by the capture flow; retrieval only ever reads them.
"""

import time
from datetime import datetime, timezone
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# ============================================================================
# Enums
# ============================================================================

class NodeType(str, Enum):
    """Kind of captured content"""
    VIDEO = "VIDEO"
    ARTICLE = "ARTICLE"
    NOTE = "NOTE"
    IMAGE = "IMAGE"
    TWEET = "TWEET"
    CHAT_LOG = "CHAT_LOG"
    LINK = "LINK"


class NodeStatus(str, Enum):
    """Reading status"""
    NEW = "new"
    LEARNED = "learned"
    ARCHIVED = "archived"


class NodeSource(str, Enum):
    """Where the node was captured from"""
    EXTENSION = "extension"
    WEB = "web"
    CHAT = "chat"


class ChatRole(str, Enum):
    """Speaker of a conversation turn"""
    USER = "user"
    MODEL = "model"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Models
# ============================================================================

class _CamelModel(BaseModel):
    # Normalized documents from the capture flow use camelCase keys
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Space(_CamelModel):
    """A named collection of nodes. Pure grouping, no behavior."""
    id: str
    name: str
    description: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    icon: Optional[str] = None
    color: Optional[str] = None


class Node(_CamelModel):
    """
    A retrievable knowledge item.

    `title` is required and non-empty. Missing `summary` or `content`
    only reduces the signal available to scoring.
    """
    id: str = Field(..., description="Opaque id, stable for the node's lifetime")
    space_id: str = Field(..., description="Owning space")
    type: NodeType = Field(default=NodeType.NOTE)
    title: str = Field(..., description="Short title")
    summary: str = Field(default="")
    content: Optional[str] = Field(default=None, description="Full body text")
    url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    status: NodeStatus = Field(default=NodeStatus.NEW)
    pinned: bool = False
    source: Optional[NodeSource] = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("title must be a non-empty string")
        return value

    @field_validator("summary", mode="before")
    @classmethod
    def _summary_default(cls, value):
        return value or ""

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_default(cls, value):
        return value or []


class ConversationTurn(_CamelModel):
    """One turn of a chat session. Sessions are append-only."""
    role: ChatRole
    content: str
    timestamp: float = Field(default_factory=time.time)


class ChatHistory(_CamelModel):
    """A persisted chat session for a space."""
    id: str
    space_id: str
    title: str = ""
    messages: List[ConversationTurn] = Field(default_factory=list)
    summary: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
