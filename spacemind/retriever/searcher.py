"""
Searcher

Ranks a space's nodes against a query and returns the top-K.
Ranking is a stable sort on score: equal scores keep collection order.
"""

import logging
from collections.abc import Sequence as SequenceABC
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..common.errors import ValidationError
from ..common.schemas import Node
from .scorer import RelevanceScorer, find_title_matches

logger = logging.getLogger("spacemind.retriever.searcher")

DEFAULT_TOP_K = 5
SPECIFIC_ITEM_TOP_K = 3


@dataclass
class ScoredNode:
    """A node paired with its score for one query evaluation"""
    node: Node
    score: float
    position: int  # index in the caller's collection

    @property
    def title(self) -> str:
        return self.node.title or "Untitled"


def require_nodes(nodes) -> Sequence[Node]:
    if nodes is None:
        raise ValidationError("nodes must be a sequence of Node, got None")
    if isinstance(nodes, (str, bytes)) or not isinstance(nodes, SequenceABC):
        raise ValidationError(f"nodes must be a sequence of Node, got {type(nodes).__name__}")
    return nodes


class Retriever:
    """
    Lexical retriever over an in-memory node collection.

    Never mutates the collection it is given.
    """

    def __init__(self, scorer: Optional[RelevanceScorer] = None):
        self._scorer = scorer or RelevanceScorer()

    @property
    def scorer(self) -> RelevanceScorer:
        return self._scorer

    def rank(
        self,
        query: str,
        nodes: Sequence[Node],
        title_matches: Optional[Sequence[Node]] = None,
    ) -> List[ScoredNode]:
        """
        Score every node and sort by descending score.

        Args:
            query: Raw user query
            nodes: Collection in caller order
            title_matches: Precomputed title-match set (computed if omitted)

        Returns:
            All nodes as ScoredNode, best first
        """
        nodes = require_nodes(nodes)
        if not nodes:
            return []

        if title_matches is None:
            title_matches = find_title_matches(query, nodes)

        # One reference time per evaluation so recency is consistent
        now = self._scorer.reference_time()

        scored = [
            ScoredNode(
                node=node,
                score=self._scorer.score(query, node, title_matches=title_matches, now=now),
                position=i,
            )
            for i, node in enumerate(nodes)
        ]
        # sorted() is stable, so ties keep collection order
        return sorted(scored, key=lambda s: -s.score)

    def retrieve(
        self,
        query: str,
        nodes: Sequence[Node],
        top_k: int = DEFAULT_TOP_K,
        title_matches: Optional[Sequence[Node]] = None,
    ) -> List[Node]:
        """
        Return the top_k most relevant nodes.

        Result length is min(top_k, len(nodes)). An empty collection
        yields an empty list.
        """
        if not isinstance(top_k, int) or isinstance(top_k, bool) or top_k < 0:
            raise ValidationError(f"top_k must be a non-negative integer, got {top_k!r}")

        ranked = self.rank(query, nodes, title_matches=title_matches)
        top = ranked[:top_k]

        logger.debug(
            "Retrieved %d of %d nodes (top score %.1f)",
            len(top), len(ranked), top[0].score if top else 0.0,
        )
        return [s.node for s in top]
