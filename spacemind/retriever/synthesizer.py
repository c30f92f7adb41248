"""
Synthesizer

Conversational retrieval-augmented answering over a space's nodes.

Pipeline for one query (order matters):
1. Detect title matches (is the user asking about a specific saved item?)
2. Pick top-3 with body excerpts in that case, otherwise top-5 summaries
3. Rank and retrieve nodes
4. Optionally fetch web snippets (failures give no snippets)
5. Load space memory unless the caller supplied one
6. Assemble the knowledge context
7. Build one flat prompt: framing, memory, context, web, notes,
   instructions, prior turns, current query
8. Generate (errors propagate, no retry)
9. Report sources in ranked order

chat_with_tools is the function-calling variant: the model gets a short
listing of the space and may run actions through an ActionDispatcher.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence
from dataclasses import dataclass, field

from ..common.errors import AssistantUnavailableError, UnknownActionError, ValidationError
from ..common.llm_client import LLMClient
from ..common.schemas import ConversationTurn, Node
from .actions import ActionDispatcher, tool_declarations
from .context import (
    DEFAULT_EXCERPT_CHARS,
    build_context,
    build_web_context,
    format_agent_context,
    format_history,
    format_transcript,
    require_turns,
)
from .memory import SpaceMemoryCache
from .scorer import find_title_matches, normalize_query
from .searcher import DEFAULT_TOP_K, SPECIFIC_ITEM_TOP_K, Retriever, require_nodes
from .web_search import WebSearchClient

logger = logging.getLogger("spacemind.retriever.synthesizer")


@dataclass
class RAGResult:
    """Answer with provenance"""
    answer: str
    sources: List[str] = field(default_factory=list)  # titles, ranked order
    matched_titles: List[str] = field(default_factory=list)

    @property
    def is_specific(self) -> bool:
        """True when the query referenced saved items by title"""
        return bool(self.matched_titles)


@dataclass
class ToolChatResult:
    """Answer from a tool-calling session with the actions it ran"""
    answer: str
    actions: List[Dict[str, Any]] = field(default_factory=list)  # {"name", "args", "result"}


RAG_PROMPT = """You are an intelligent AI assistant with deep knowledge of the user's personal knowledge base called "{space_name}".

{memory_block}YOUR KNOWLEDGE BASE ({total} total items):
{knowledge}
{web}

{specific_note}INSTRUCTIONS:
- Answer based on the knowledge base when possible
- When referencing items, cite them by title in quotes (e.g., "Article Title")
- If the user asks about something specific, check if it matches any saved item titles
- If knowledge is insufficient, say so clearly but offer to help with what you know
- Be conversational, helpful, and provide insights that connect different pieces of knowledge
- If you notice patterns or connections between saved items, mention them

Now help the user with their query."""

MEMORY_BLOCK = """ONE-SHOT MEMORY (Key insights from this space):
{memory}

"""

SPECIFIC_NOTE = """NOTE: User appears to be asking about specific item(s): {titles}. Provide detailed information about these items.

"""

RULE = "=" * 60

COMPARE_PROMPT = """You are a collaborative AI facilitating a conversation between two knowledge spaces. Each space has its own memory and expertise.

{rule}
AGENT 1: "{first_name}" Knowledge Expert
{rule}
{first_memory}RELEVANT KNOWLEDGE ({first_total} total items):
{first_context}

{rule}
AGENT 2: "{second_name}" Knowledge Expert
{rule}
{second_memory}RELEVANT KNOWLEDGE ({second_total} total items):
{second_context}

{rule}
USER QUESTION: {question}
{rule}

As a mediator between these two knowledge agents:
1. First, have Agent 1 share its perspective based on its knowledge
2. Then, have Agent 2 respond with its perspective
3. Identify connections, synergies, and differences between the spaces
4. Synthesize a comprehensive answer that leverages both knowledge bases
5. Suggest how these spaces could complement each other

Format your response as a dialogue between the agents, then provide a unified synthesis."""

SESSION_SUMMARY_PROMPT = """Summarize this conversation in 2-3 concise sentences. Focus on key topics and outcomes:

{transcript}"""

TOOL_CHAT_PROMPT = """You are a knowledge agent for the space "{space_name}".

CONTEXT:
{knowledge}

Use 'create_knowledge_node' to save new ideas. Be concise."""

MAX_TOOL_TURNS = 5

NO_RESPONSE = "No response generated."
NO_COMPARISON = "Comparison unavailable."
NO_SUMMARY = "Summary unavailable."
NO_TOOL_REPLY = "Processed."


class Synthesizer:
    """
    Answers questions over a space using retrieval plus an LLM.

    All collaborators are injected. Without a memory cache the memory
    step is skipped; without a web search client web augmentation is a
    no-op.
    """

    def __init__(
        self,
        llm: LLMClient,
        memory_cache: Optional[SpaceMemoryCache] = None,
        web_search: Optional[WebSearchClient] = None,
        retriever: Optional[Retriever] = None,
        topk: int = DEFAULT_TOP_K,
        specific_topk: int = SPECIFIC_ITEM_TOP_K,
        excerpt_chars: int = DEFAULT_EXCERPT_CHARS,
    ):
        """
        Initialize synthesizer.

        Args:
            llm: Generation collaborator
            memory_cache: Space memory cache (optional)
            web_search: Web search collaborator (optional)
            retriever: Node retriever (default: lexical Retriever)
            topk: Nodes retrieved for general questions
            specific_topk: Nodes retrieved when the query names saved items
            excerpt_chars: Body excerpt cap in specific-item mode
        """
        self._llm = llm
        self._memory = memory_cache
        self._web_search = web_search
        self._retriever = retriever or Retriever()
        self._topk = topk
        self._specific_topk = specific_topk
        self._excerpt_chars = excerpt_chars

    @classmethod
    def from_config(cls, config, llm: Optional[LLMClient] = None) -> "Synthesizer":
        """Wire a synthesizer from a SpacemindConfig."""
        llm = llm or LLMClient.from_config(config.llm)
        return cls(
            llm,
            memory_cache=SpaceMemoryCache.from_config(llm, config.memory),
            web_search=WebSearchClient.from_config(config.search),
            topk=config.retriever.topk,
            specific_topk=config.retriever.specific_topk,
            excerpt_chars=config.retriever.excerpt_chars,
        )

    @property
    def has_llm(self) -> bool:
        """Check if LLM is available"""
        return self._llm.is_available

    @property
    def retriever(self) -> Retriever:
        return self._retriever

    @property
    def memory_cache(self) -> Optional[SpaceMemoryCache]:
        return self._memory

    def _require_llm(self) -> None:
        if not self._llm.is_available:
            raise AssistantUnavailableError()

    async def _web_results(self, query: str) -> List[str]:
        if self._web_search is None:
            return []
        try:
            return list(await self._web_search.search(query))
        except Exception as e:
            logger.warning("Web search collaborator failed: %s", e)
            return []

    async def _space_memory(self, space_name: str, nodes: Sequence[Node]) -> str:
        if self._memory is None:
            return ""
        return await self._memory.get_memory(space_name, nodes)

    async def chat_with_rag(
        self,
        query: str,
        nodes: Sequence[Node],
        history: Sequence[ConversationTurn] = (),
        use_web_search: bool = False,
        space_name: str = "Current Space",
        space_memory: Optional[str] = None,
    ) -> RAGResult:
        """
        Answer a query over a space's nodes.

        Args:
            query: User question
            nodes: Full collection of the active space
            history: Prior turns, oldest first (not modified)
            use_web_search: Add web snippets to the prompt
            space_name: Space name shown to the model and used for memory
            space_memory: Precomputed memory; skips memory generation

        Returns:
            RAGResult with answer, source titles and matched titles

        Raises:
            ValidationError: Empty query, malformed node collection or history
            AssistantUnavailableError: No usable generation collaborator
        """
        normalize_query(query)
        nodes = require_nodes(nodes)
        history = require_turns(history)
        self._require_llm()

        title_matches = find_title_matches(query, nodes)
        specific = bool(title_matches)
        topk = self._specific_topk if specific else self._topk

        relevant = self._retriever.retrieve(query, nodes, top_k=topk, title_matches=title_matches)

        web_results = await self._web_results(query) if use_web_search else []

        if space_memory is None:
            space_memory = await self._space_memory(space_name, nodes)

        knowledge = build_context(
            relevant,
            include_content=specific,
            excerpt_chars=self._excerpt_chars,
        )
        matched_titles = [n.title for n in title_matches]

        prompt = RAG_PROMPT.format(
            space_name=space_name,
            memory_block=MEMORY_BLOCK.format(memory=space_memory) if space_memory else "",
            total=len(nodes),
            knowledge=knowledge,
            web=build_web_context(web_results),
            specific_note=(
                SPECIFIC_NOTE.format(titles=", ".join(matched_titles)) if specific else ""
            ),
        )
        prompt += format_history(history) + "Current user query: " + query

        logger.info(
            "Answering over %d nodes in %s (retrieved=%d, specific=%s, web=%d)",
            len(nodes), space_name, len(relevant), specific, len(web_results),
        )
        answer = await self._llm.agenerate(prompt, temperature=0.7, max_tokens=2048)

        return RAGResult(
            answer=answer or NO_RESPONSE,
            sources=[n.title or "Untitled" for n in relevant],
            matched_titles=matched_titles,
        )

    async def compare_spaces(
        self,
        first_nodes: Sequence[Node],
        second_nodes: Sequence[Node],
        first_name: str,
        second_name: str,
        question: str,
    ) -> str:
        """
        Answer a question as a dialogue between two spaces.

        Both space memories are produced concurrently; they write to
        distinct cache keys.
        """
        normalize_query(question)
        first_nodes = require_nodes(first_nodes)
        second_nodes = require_nodes(second_nodes)
        self._require_llm()

        first_memory, second_memory = await asyncio.gather(
            self._space_memory(first_name, first_nodes),
            self._space_memory(second_name, second_nodes),
        )

        first_relevant = self._retriever.retrieve(question, first_nodes, top_k=self._topk)
        second_relevant = self._retriever.retrieve(question, second_nodes, top_k=self._topk)

        prompt = COMPARE_PROMPT.format(
            rule=RULE,
            first_name=first_name,
            first_memory=f"MEMORY SUMMARY:\n{first_memory}\n\n" if first_memory else "",
            first_total=len(first_nodes),
            first_context=build_context(first_relevant, True, self._excerpt_chars),
            second_name=second_name,
            second_memory=f"MEMORY SUMMARY:\n{second_memory}\n\n" if second_memory else "",
            second_total=len(second_nodes),
            second_context=build_context(second_relevant, True, self._excerpt_chars),
            question=question,
        )

        answer = await self._llm.agenerate(prompt, temperature=0.8, max_tokens=3000)
        return answer or NO_COMPARISON

    async def summarize_session(self, turns: Sequence[ConversationTurn]) -> str:
        """Summarize a chat session in 2-3 sentences."""
        turns = require_turns(turns)
        self._require_llm()
        if not turns:
            return NO_SUMMARY

        prompt = SESSION_SUMMARY_PROMPT.format(transcript=format_transcript(turns))
        summary = await self._llm.agenerate(prompt, temperature=0.3, max_tokens=200)
        return summary or NO_SUMMARY

    async def chat_with_tools(
        self,
        message: str,
        dispatcher: ActionDispatcher,
        history: Sequence[ConversationTurn] = (),
        space_name: Optional[str] = None,
    ) -> ToolChatResult:
        """
        Chat with a model that may search or write the space through actions.

        The model sees the first nodes of the space as one-line entries and
        the declared actions. Each requested call runs through the
        dispatcher and its result is sent back, for at most MAX_TOOL_TURNS
        calls. An unknown action name ends the loop.

        Raises:
            ValidationError: Empty message or malformed history
            AssistantUnavailableError: No usable generation collaborator
        """
        normalize_query(message)
        history = require_turns(history)
        self._require_llm()

        nodes = dispatcher.store.get_nodes_for_space(dispatcher.space_id)
        system = TOOL_CHAT_PROMPT.format(
            space_name=space_name or dispatcher.space_id,
            knowledge=format_agent_context(nodes),
        )
        chat = self._llm.start_tool_chat(
            system=system, tools=tool_declarations(), history=history,
        )

        actions = []
        reply = await chat.asend(message)
        while reply.function_calls and len(actions) < MAX_TOOL_TURNS:
            call = reply.function_calls[0]
            try:
                result = dispatcher.dispatch(call.name, call.args)
            except UnknownActionError as e:
                logger.warning("Model requested %s; ending tool loop", e)
                break
            except ValidationError as e:
                result = {"error": str(e)}
            actions.append({"name": call.name, "args": call.args, "result": result})
            reply = await chat.asend_function_response(call.name, result)

        logger.info(
            "Tool chat over %d nodes in %s ran %d action(s)",
            len(nodes), dispatcher.space_id, len(actions),
        )
        return ToolChatResult(answer=reply.text or NO_TOOL_REPLY, actions=actions)


def format_answer_for_display(result: RAGResult) -> str:
    """Format a RAG answer for CLI/UI display"""
    lines = [result.answer]

    if result.matched_titles:
        lines.append("")
        lines.append("**Matched items**:")
        for title in result.matched_titles:
            lines.append(f'  - "{title}"')

    if result.sources:
        lines.append("")
        lines.append("**Sources**:")
        for i, title in enumerate(result.sources, 1):
            lines.append(f'  {i}. "{title}"')

    return "\n".join(lines)
