"""
Relevance Scorer

Lexical scoring of knowledge nodes against a free-text query.
Pure functions: no randomness, no external calls, no mutation.

Signals (defaults in ScoringWeights):
- whole-query containment in title / summary / content
- per-word matches in title, summary and tags (words of 3+ chars)
- pinned and recency bonuses
- title-match bonus for nodes the user appears to be asking about
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from ..common.errors import ValidationError
from ..common.schemas import Node

MIN_WORD_LENGTH = 3
TITLE_MATCH_LIMIT = 5
UNKNOWN_AGE_DAYS = 999.0


@dataclass(frozen=True)
class ScoringWeights:
    """Empirical signal weights. Higher constant means a stronger signal."""
    title_containment: float = 15.0
    title_word_overlap: float = 5.0
    summary_containment: float = 8.0
    content_containment: float = 6.0
    title_word: float = 3.0
    summary_word: float = 1.0
    tag_word: float = 4.0
    pinned: float = 3.0
    recent_week: float = 2.0
    recent_month: float = 1.0
    title_match: float = 20.0


DEFAULT_WEIGHTS = ScoringWeights()


def normalize_query(query: str) -> str:
    """Lowercase and strip a query, rejecting empty input."""
    if not isinstance(query, str):
        raise ValidationError(f"query must be a string, got {type(query).__name__}")
    normalized = query.strip().lower()
    if not normalized:
        raise ValidationError("query must not be empty")
    return normalized


def tokenize_query(query: str) -> List[str]:
    """Split on whitespace, keeping words of at least 3 characters.

    Duplicates are kept; each occurrence counts as its own signal.
    """
    return [w for w in normalize_query(query).split() if len(w) >= MIN_WORD_LENGTH]


def find_title_matches(
    query: str,
    nodes: Iterable[Node],
    limit: int = TITLE_MATCH_LIMIT,
) -> List[Node]:
    """
    Find nodes the user is likely asking about by name.

    A node matches when its title contains the whole query or any query
    word of 3+ characters. Collection order is kept; at most `limit` nodes.
    """
    query_lower = normalize_query(query)
    words = tokenize_query(query)

    matches = []
    for node in nodes:
        title = (node.title or "").lower()
        if query_lower in title or any(word in title for word in words):
            matches.append(node)
            if len(matches) >= limit:
                break
    return matches


def _age_in_days(created_at: Optional[datetime], now: datetime) -> float:
    if created_at is None:
        return UNKNOWN_AGE_DAYS
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return (now - created_at).total_seconds() / 86400.0


class RelevanceScorer:
    """
    Scores a single node against a query.

    Same (query, node, title_matches, now) always gives the same score.
    A score of 0 means no detected relevance; nothing is filtered here.
    """

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        now: Optional[datetime] = None,
    ):
        """
        Initialize scorer.

        Args:
            weights: Signal weights (default: DEFAULT_WEIGHTS)
            now: Fixed reference time for recency; current UTC time if None
        """
        self.weights = weights or DEFAULT_WEIGHTS
        self._now = now

    def reference_time(self) -> datetime:
        """Reference time used for the recency bonus."""
        return self._now or datetime.now(timezone.utc)

    def score(
        self,
        query: str,
        node: Node,
        title_matches: Optional[Sequence[Node]] = None,
        now: Optional[datetime] = None,
    ) -> float:
        """
        Score one node.

        Args:
            query: Raw user query (non-empty)
            node: Node to score
            title_matches: Precomputed title-match set; computed from
                [node] alone when omitted
            now: Reference time override for recency

        Returns:
            Non-negative relevance score
        """
        w = self.weights
        query_lower = normalize_query(query)
        words = tokenize_query(query)

        title = (node.title or "").lower()
        summary = (node.summary or "").lower()
        content = (node.content or "").lower()
        tags = [t.lower() for t in (node.tags or [])]
        title_words = title.split()

        if title_matches is None:
            title_matches = find_title_matches(query, [node])
        match_ids = {m.id for m in title_matches}

        score = 0.0

        if node.id in match_ids:
            score += w.title_match

        # Whole-query containment
        if query_lower in title:
            score += w.title_containment
        if summary and query_lower in summary:
            score += w.summary_containment
        if content and query_lower in content:
            score += w.content_containment

        for word in words:
            # Partial overlap with individual title words, either direction
            if any(tw in word or word in tw for tw in title_words):
                score += w.title_word_overlap
            if word in title:
                score += w.title_word
            if word in summary:
                score += w.summary_word
            if any(word in tag for tag in tags):
                score += w.tag_word

        if node.pinned:
            score += w.pinned

        age = _age_in_days(node.created_at, now or self.reference_time())
        if age < 7:
            score += w.recent_week
        elif age < 30:
            score += w.recent_month

        return score
