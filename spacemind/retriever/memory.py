"""
Space Memory

Caches a short natural-language digest ("one-shot memory") of a space's
content so conversations can be grounded without re-summarizing on every
query.

Cache policy:
- key = space identity + content fingerprint (ids and edit timestamps)
- entries younger than the TTL (5 minutes) are reused as-is
- bounded LRU, so long-running processes do not grow without limit
- summarization failures are never cached; the next call retries
"""

import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

import numpy as np

from ..common.errors import ValidationError
from ..common.llm_client import LLMClient
from ..common.schemas import Node

logger = logging.getLogger("spacemind.retriever.memory")

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_MAX_SAMPLE = 20
DEFAULT_RECENT_COUNT = 5
DEFAULT_MAX_ENTRIES = 128
KEY_TOPIC_LIMIT = 10


MEMORY_PROMPT = """Analyze this knowledge base and create a concise memory summary (2-3 paragraphs) highlighting key themes, important topics, and connections. This will be used as context for future conversations.

SPACE: {space_name}
CONTENT ({total} total items, showing {shown}):
{content}

Create a comprehensive yet concise memory summary:"""


@dataclass
class SpaceMemory:
    """Cached digest for one (space, content fingerprint) key"""
    key: str
    summary: str
    sampled_titles: List[str] = field(default_factory=list)
    last_updated: float = 0.0


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _as_utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def content_fingerprint(nodes: Sequence[Node]) -> str:
    """
    Hash of a collection's membership and edit state.

    Changes when nodes are added, removed, or edited in place (as long as
    the edit bumps updated_at).
    """
    digest = hashlib.sha256()
    digest.update(str(len(nodes)).encode())
    for node in nodes:
        stamp = node.updated_at or node.created_at
        digest.update(f"|{node.id}:{stamp.isoformat() if stamp else ''}".encode())
    return digest.hexdigest()[:16]


def memory_key(space_name: str, nodes: Sequence[Node]) -> str:
    return f"{space_name}:{content_fingerprint(nodes)}"


def sample_nodes(
    nodes: Sequence[Node],
    max_nodes: int = DEFAULT_MAX_SAMPLE,
    recent_count: int = DEFAULT_RECENT_COUNT,
    rng: Optional[np.random.Generator] = None,
) -> List[Node]:
    """
    Pick a bounded subset of nodes to summarize.

    Collections within the ceiling are returned whole. Larger ones take
    all pinned nodes, then the most recent non-pinned nodes, then a random
    fill from the rest until the ceiling is reached.

    Args:
        nodes: Full collection
        max_nodes: Sample ceiling
        recent_count: How many recent non-pinned nodes to favor
        rng: numpy Generator; seed it for reproducible samples

    Returns:
        At most max_nodes nodes
    """
    if len(nodes) <= max_nodes:
        return list(nodes)

    rng = rng or np.random.default_rng()

    pinned = [n for n in nodes if n.pinned][:max_nodes]
    unpinned = [n for n in nodes if not n.pinned]

    budget = max_nodes - len(pinned)
    by_recency = sorted(
        range(len(unpinned)),
        key=lambda i: _as_utc(unpinned[i].created_at),
        reverse=True,
    )
    recent_idx = by_recency[:min(recent_count, budget)]
    recent = [unpinned[i] for i in recent_idx]
    budget -= len(recent)

    chosen = set(recent_idx)
    rest = [n for i, n in enumerate(unpinned) if i not in chosen]
    random_fill = []
    if budget > 0 and rest:
        order = rng.permutation(len(rest))[:budget]
        random_fill = [rest[int(i)] for i in order]

    return pinned + recent + random_fill


def _describe(node: Node) -> str:
    text = node.summary or (node.content or "")[:100] or "No description"
    return f'- "{node.title}": {text}'


class MemoryStore:
    """Bounded LRU map of cache key -> SpaceMemory."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._entries: "OrderedDict[str, SpaceMemory]" = OrderedDict()

    def get(self, key: str) -> Optional[SpaceMemory]:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    def put(self, entry: SpaceMemory) -> None:
        self._entries[entry.key] = entry
        self._entries.move_to_end(entry.key)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted space memory %s", evicted)

    def discard(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries


class SpaceMemoryCache:
    """
    Produces and caches space digests via the summarization collaborator.

    Concurrent misses on the same key may both regenerate; the last write
    wins. No locking is needed for correctness.
    """

    def __init__(
        self,
        llm: LLMClient,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        max_sample: int = DEFAULT_MAX_SAMPLE,
        recent_count: int = DEFAULT_RECENT_COUNT,
        seed: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize memory cache.

        Args:
            llm: Summarization collaborator
            ttl_seconds: Freshness window
            max_entries: LRU bound on cached spaces
            max_sample: Sample ceiling for summarization input
            recent_count: Recent non-pinned nodes favored by the sampler
            seed: Seed for the sampler's random fill (None = unseeded)
            clock: Monotonic time source in seconds
        """
        self._llm = llm
        self._ttl = ttl_seconds
        self._max_sample = max_sample
        self._recent_count = recent_count
        self._rng = np.random.default_rng(seed)
        self._clock = clock
        self._store = MemoryStore(max_entries)

    @classmethod
    def from_config(cls, llm: LLMClient, memory_config) -> "SpaceMemoryCache":
        return cls(
            llm,
            ttl_seconds=memory_config.ttl_seconds,
            max_entries=memory_config.max_entries,
            max_sample=memory_config.max_sample,
            recent_count=memory_config.recent_count,
            seed=memory_config.sample_seed,
        )

    @property
    def store(self) -> MemoryStore:
        return self._store

    def peek(self, space_name: str, nodes: Sequence[Node]) -> Optional[SpaceMemory]:
        """Return the cached entry for this content, fresh or not."""
        return self._store.get(memory_key(space_name, nodes))

    def _is_fresh(self, entry: SpaceMemory) -> bool:
        return self._clock() - entry.last_updated < self._ttl

    async def get_memory(self, space_name: str, nodes: Sequence[Node]) -> str:
        """
        Return the digest for a space, regenerating when stale.

        Args:
            space_name: Space identity used in the cache key and prompt
            nodes: Full collection for the space

        Returns:
            Summary text, or "" when the collection is empty or the
            summarization collaborator is unavailable
        """
        if nodes is None:
            raise ValidationError("nodes must be a sequence of Node, got None")
        if not nodes:
            return ""

        key = memory_key(space_name, nodes)
        cached = self._store.get(key)
        if cached is not None:
            if self._is_fresh(cached):
                return cached.summary
            self._store.discard(key)

        if not self._llm.is_available:
            logger.info("LLM unavailable, skipping memory for space %s", space_name)
            return ""

        selected = sample_nodes(
            nodes,
            max_nodes=self._max_sample,
            recent_count=self._recent_count,
            rng=self._rng,
        )
        prompt = MEMORY_PROMPT.format(
            space_name=space_name,
            total=len(nodes),
            shown=len(selected),
            content="\n".join(_describe(n) for n in selected),
        )

        try:
            summary = await self._llm.agenerate(prompt, temperature=0.3, max_tokens=500)
        except Exception as e:
            logger.warning("Memory generation failed for space %s: %s", space_name, e)
            return ""

        self._store.put(SpaceMemory(
            key=key,
            summary=summary,
            sampled_titles=[n.title for n in selected][:KEY_TOPIC_LIMIT],
            last_updated=self._clock(),
        ))
        logger.info(
            "Generated memory for space %s from %d of %d nodes",
            space_name, len(selected), len(nodes),
        )
        return summary
