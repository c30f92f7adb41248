"""
Retriever - Retrieval-Augmented Answers over a Space

Ranks saved nodes against a question and synthesizes an answer with an LLM.

Key Components:
- RelevanceScorer: Lexical multi-signal scoring of one node
- Retriever: Stable top-K ranking over a space
- SpaceMemoryCache: Cached one-shot digest of a space
- build_context: Bounded context block for the prompt
- Synthesizer: Orchestrates retrieval, memory, web search and generation
- ActionDispatcher: Typed dispatch of model-requested actions

Pipeline:
1. Detect title matches for the query
2. Rank nodes and keep the top-K
3. Load (or regenerate) space memory
4. Assemble context with optional web snippets and prior turns
5. Generate the answer and report source titles
"""

from .scorer import RelevanceScorer, ScoringWeights, find_title_matches, tokenize_query
from .searcher import Retriever, ScoredNode
from .memory import SpaceMemoryCache, SpaceMemory, MemoryStore, sample_nodes
from .context import build_context, NO_KNOWLEDGE_SENTINEL, ENTRY_SEPARATOR
from .web_search import WebSearchClient
from .synthesizer import Synthesizer, RAGResult, format_answer_for_display
from .actions import ActionDispatcher, ACTIONS, tool_declarations

__all__ = [
    "RelevanceScorer",
    "ScoringWeights",
    "find_title_matches",
    "tokenize_query",
    "Retriever",
    "ScoredNode",
    "SpaceMemoryCache",
    "SpaceMemory",
    "MemoryStore",
    "sample_nodes",
    "build_context",
    "NO_KNOWLEDGE_SENTINEL",
    "ENTRY_SEPARATOR",
    "WebSearchClient",
    "Synthesizer",
    "RAGResult",
    "format_answer_for_display",
    "ActionDispatcher",
    "ACTIONS",
    "tool_declarations",
]
