"""
spacemind

Retrieval-augmented answering over personal knowledge spaces.

Philosophy:
- Nodes are read-only inputs; retrieval never writes them
- Ranking is deterministic and stable for a fixed collection
- Space memory is a cheap, short-lived digest, never a source of truth
- The prompt is assembled locally and flattened, so it can be inspected

Usage:
    from spacemind.common import load_config, LLMClient, NodeStore
    from spacemind.retriever import Retriever, Synthesizer
"""

__version__ = "0.1.0"
