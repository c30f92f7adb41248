"""
Context Assembly

Renders ranked nodes, web snippets and prior turns into the text blocks
that make up a generation prompt.
"""

from collections.abc import Mapping, Sequence as SequenceABC
from typing import List, Sequence

from pydantic import ValidationError as PydanticValidationError

from ..common.errors import ValidationError
from ..common.schemas import ChatRole, ConversationTurn, Node

NO_KNOWLEDGE_SENTINEL = "No relevant knowledge found."
ENTRY_SEPARATOR = "\n\n---\n\n"
DEFAULT_EXCERPT_CHARS = 500
AGENT_CONTEXT_LIMIT = 20


def format_node(
    position: int,
    node: Node,
    include_content: bool = False,
    excerpt_chars: int = DEFAULT_EXCERPT_CHARS,
) -> str:
    """Render one node as a numbered context entry."""
    lines = [f'[{position}] "{node.title}"']
    lines.append(f"Summary: {node.summary or 'No summary'}")
    if include_content and node.content:
        lines.append(f"Content: {node.content[:excerpt_chars]}")
    lines.append(f"Tags: {', '.join(node.tags) if node.tags else 'none'}")
    if node.url:
        lines.append(f"Source: {node.url}")
    return "\n".join(lines)


def build_context(
    nodes: Sequence[Node],
    include_content: bool = False,
    excerpt_chars: int = DEFAULT_EXCERPT_CHARS,
) -> str:
    """
    Render ranked nodes into a single context block.

    Args:
        nodes: Nodes in ranked order
        include_content: Add a truncated body excerpt per node
        excerpt_chars: Excerpt length cap

    Returns:
        Entries joined by ENTRY_SEPARATOR, or NO_KNOWLEDGE_SENTINEL when
        there are no nodes
    """
    if not nodes:
        return NO_KNOWLEDGE_SENTINEL

    return ENTRY_SEPARATOR.join(
        format_node(i, node, include_content, excerpt_chars)
        for i, node in enumerate(nodes, 1)
    )


def format_agent_context(nodes: Sequence[Node], limit: int = AGENT_CONTEXT_LIMIT) -> str:
    """One line per node for a tool-calling session, first `limit` nodes."""
    if not nodes:
        return NO_KNOWLEDGE_SENTINEL
    return "\n".join(
        f"- [{n.type.value}] {n.title}: {n.summary} (Tags: {', '.join(n.tags)})"
        for n in list(nodes)[:limit]
    )


def build_web_context(results: Sequence[str]) -> str:
    """Web search section, or "" when there are no results."""
    if not results:
        return ""
    return "\n\nWEB SEARCH RESULTS:\n" + "\n".join(results)


def require_turns(turns) -> List[ConversationTurn]:
    """
    Validate prior turns, coercing plain mappings to ConversationTurn.

    Raises:
        ValidationError: turns is not a sequence, or an entry is not a turn
    """
    if turns is None:
        return []
    if isinstance(turns, (str, bytes, Mapping)) or not isinstance(turns, SequenceABC):
        raise ValidationError(
            f"history must be a sequence of turns, got {type(turns).__name__}"
        )

    validated = []
    for i, turn in enumerate(turns):
        if isinstance(turn, ConversationTurn):
            validated.append(turn)
        elif isinstance(turn, Mapping):
            try:
                validated.append(ConversationTurn.model_validate(dict(turn)))
            except PydanticValidationError as e:
                raise ValidationError(f"history[{i}] is not a valid turn: {e}") from e
        else:
            raise ValidationError(
                f"history[{i}] must be a turn, got {type(turn).__name__}"
            )
    return validated


def _speaker(turn: ConversationTurn) -> str:
    return "User" if turn.role == ChatRole.USER else "AI"


def format_transcript(turns: Sequence[ConversationTurn]) -> str:
    return "\n\n".join(f"{_speaker(t)}: {t.content}" for t in turns)


def format_history(turns: Sequence[ConversationTurn]) -> str:
    """Prior conversation block, or "" for a fresh session."""
    if not turns:
        return ""
    return "\n\nPREVIOUS CONVERSATION:\n" + format_transcript(turns) + "\n\n---\n\n"
