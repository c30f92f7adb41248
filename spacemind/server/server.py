"""
spacemind MCP Server.

Exposes retrieval-augmented answering over saved spaces as MCP tools.

Transport: stdio only.

Expected MCP Tool Return Format:
{
    "ok": bool,
    ...                      # tool-specific fields if ok is True
    "error": str             # Present if ok is False
}
"""

import argparse
import logging
import os
import signal
import sys
import uuid
from typing import Any, Annotated, Dict, List, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from mcp.types import ToolAnnotations
from pydantic import Field

from ..common.config import LOGS_DIR, ensure_directories, load_config
from ..common.errors import (
    AssistantUnavailableError,
    StoreError,
    UnknownActionError,
    ValidationError,
)
from ..common.llm_client import LLMClient
from ..common.node_store import NodeStore
from ..common.schemas import ChatHistory, ConversationTurn
from ..retriever.actions import ActionDispatcher
from ..retriever.context import require_turns
from ..retriever.synthesizer import Synthesizer, format_answer_for_display

logger = logging.getLogger("spacemind.server")


class MCPServerApp:
    """
    Main application class for the MCP server.

    Reads nodes from the NodeStore, answers through the Synthesizer.
    The LLM client and synthesizer are constructed once and injected.
    """

    def __init__(
            self,
            synthesizer: Synthesizer,
            store: NodeStore,
            mcp_server_name: str = "spacemind",
        ) -> None:
        """
        Initializes the MCPServerApp.

        Args:
            synthesizer (Synthesizer): Configured answer synthesizer.
            store (NodeStore): Source of spaces and nodes.
            mcp_server_name (str): The name of the MCP server.
        """
        self.synthesizer = synthesizer
        self.store = store
        self.mcp = FastMCP(name=mcp_server_name)

        def _space(space_id: str):
            space = self.store.get_space(space_id)
            if space is None:
                raise ToolError(f"Unknown space: {space_id}")
            return space

        def _turns(raw: Optional[List[Dict[str, Any]]]) -> List[ConversationTurn]:
            try:
                return require_turns(raw)
            except ValidationError as exc:
                raise ToolError(f"Invalid history: {exc}") from exc

        # ---------- MCP Tools: Ask Space ---------- #
        @self.mcp.tool(
            name="ask_space",
            description=(
                "Answer a question using the items saved in a space. "
                "Ranks saved items, adds the space's memory digest and prior turns, "
                "and returns the answer with the titles of the items it used."
            ),
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_ask_space(
            space_id: Annotated[str, Field(description="id of the space to ask")],
            query: Annotated[str, Field(description="the user's question")],
            history: Annotated[Optional[List[Dict[str, Any]]], Field(
                description="prior turns, oldest first: [{'role': 'user'|'model', 'content': str}]"
            )] = None,
            use_web_search: Annotated[bool, Field(description="augment with web search results")] = False,
            space_memory: Annotated[Optional[str], Field(
                description="precomputed memory digest; skips memory generation"
            )] = None,
        ) -> Dict[str, Any]:
            space = _space(space_id)
            turns = _turns(history)
            nodes = self.store.get_nodes_for_space(space_id)
            try:
                result = await self.synthesizer.chat_with_rag(
                    query,
                    nodes,
                    history=turns,
                    use_web_search=use_web_search,
                    space_name=space.name,
                    space_memory=space_memory,
                )
            except AssistantUnavailableError as e:
                return {"ok": False, "error": str(e)}
            except ValidationError as e:
                raise ToolError(f"Invalid input: {e}") from e
            except Exception as e:
                logger.error("ask_space failed: %s", e, exc_info=True)
                return {"ok": False, "error": str(e)}

            return {
                "ok": True,
                "answer": result.answer,
                "sources": result.sources,
                "matched_titles": result.matched_titles,
                "display": format_answer_for_display(result),
            }

        # ---------- MCP Tools: Search Space ---------- #
        @self.mcp.tool(
            name="search_space",
            description="Rank the items of a space against a query without calling an LLM.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_search_space(
            space_id: Annotated[str, Field(description="id of the space to search")],
            query: Annotated[str, Field(description="search query")],
            topk: Annotated[int, Field(description="number of items to return", ge=0)] = 5,
        ) -> Dict[str, Any]:
            _space(space_id)
            nodes = self.store.get_nodes_for_space(space_id)
            try:
                ranked = self.synthesizer.retriever.rank(query, nodes)[:topk]
            except ValidationError as e:
                raise ToolError(f"Invalid input: {e}") from e
            return {
                "ok": True,
                "results": [
                    {"id": s.node.id, "title": s.title, "score": s.score, "url": s.node.url}
                    for s in ranked
                ],
            }

        # ---------- MCP Tools: Space Memory ---------- #
        @self.mcp.tool(
            name="space_memory",
            description="Return the cached memory digest of a space, regenerating it when stale.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_space_memory(
            space_id: Annotated[str, Field(description="id of the space")],
        ) -> Dict[str, Any]:
            space = _space(space_id)
            cache = self.synthesizer.memory_cache
            if cache is None:
                return {"ok": False, "error": "Space memory is not enabled."}
            nodes = self.store.get_nodes_for_space(space_id)
            summary = await cache.get_memory(space.name, nodes)
            entry = cache.peek(space.name, nodes)
            return {
                "ok": True,
                "memory": summary,
                "sampled_titles": entry.sampled_titles if entry else [],
            }

        # ---------- MCP Tools: Compare Spaces ---------- #
        @self.mcp.tool(
            name="compare_spaces",
            description="Answer a question as a dialogue between two spaces, then synthesize.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_compare_spaces(
            first_space_id: Annotated[str, Field(description="id of the first space")],
            second_space_id: Annotated[str, Field(description="id of the second space")],
            question: Annotated[str, Field(description="the question to discuss")],
        ) -> Dict[str, Any]:
            first = _space(first_space_id)
            second = _space(second_space_id)
            try:
                answer = await self.synthesizer.compare_spaces(
                    self.store.get_nodes_for_space(first.id),
                    self.store.get_nodes_for_space(second.id),
                    first.name,
                    second.name,
                    question,
                )
            except AssistantUnavailableError as e:
                return {"ok": False, "error": str(e)}
            except ValidationError as e:
                raise ToolError(f"Invalid input: {e}") from e
            except Exception as e:
                logger.error("compare_spaces failed: %s", e, exc_info=True)
                return {"ok": False, "error": str(e)}
            return {"ok": True, "answer": answer}

        # ---------- MCP Tools: Summarize Session ---------- #
        @self.mcp.tool(
            name="summarize_session",
            description="Summarize a chat session in 2-3 sentences.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_summarize_session(
            turns: Annotated[List[Dict[str, Any]], Field(
                description="session turns: [{'role': 'user'|'model', 'content': str}]"
            )],
        ) -> Dict[str, Any]:
            session = _turns(turns)
            try:
                summary = await self.synthesizer.summarize_session(session)
            except AssistantUnavailableError as e:
                return {"ok": False, "error": str(e)}
            except Exception as e:
                logger.error("summarize_session failed: %s", e, exc_info=True)
                return {"ok": False, "error": str(e)}
            return {"ok": True, "summary": summary}

        # ---------- MCP Tools: Run Action ---------- #
        @self.mcp.tool(
            name="run_action",
            description=(
                "Run a knowledge-base action by name: "
                "'search_knowledge_base' {query} or 'create_knowledge_node' {title, summary, tags}."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_run_action(
            space_id: Annotated[str, Field(description="id of the space to act on")],
            name: Annotated[str, Field(description="action name")],
            arguments: Annotated[Dict[str, Any], Field(description="action arguments")],
        ) -> Dict[str, Any]:
            _space(space_id)
            dispatcher = ActionDispatcher(self.store, space_id, retriever=self.synthesizer.retriever)
            try:
                result = dispatcher.dispatch(name, arguments)
            except (UnknownActionError, ValidationError, StoreError) as e:
                return {"ok": False, "error": str(e)}
            return {"ok": True, **result}

        # ---------- MCP Tools: Chat With Space ---------- #
        @self.mcp.tool(
            name="chat_with_space",
            description=(
                "Chat with an agent that can search the space and save new notes to it "
                "through function calls. Returns the reply and the actions it ran."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_chat_with_space(
            space_id: Annotated[str, Field(description="id of the space to chat with")],
            message: Annotated[str, Field(description="the user's message")],
            history: Annotated[Optional[List[Dict[str, Any]]], Field(
                description="prior turns, oldest first: [{'role': 'user'|'model', 'content': str}]"
            )] = None,
        ) -> Dict[str, Any]:
            space = _space(space_id)
            turns = _turns(history)
            dispatcher = ActionDispatcher(self.store, space_id, retriever=self.synthesizer.retriever)
            try:
                result = await self.synthesizer.chat_with_tools(
                    message, dispatcher, history=turns, space_name=space.name,
                )
            except AssistantUnavailableError as e:
                return {"ok": False, "error": str(e)}
            except ValidationError as e:
                raise ToolError(f"Invalid input: {e}") from e
            except Exception as e:
                logger.error("chat_with_space failed: %s", e, exc_info=True)
                return {"ok": False, "error": str(e)}
            return {"ok": True, "answer": result.answer, "actions": result.actions}

        # ---------- MCP Tools: Chat Sessions ---------- #
        @self.mcp.tool(
            name="save_chat_session",
            description=(
                "Save a chat session to a space. The summary is generated when the "
                "assistant is available and none is given."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False)
        )
        async def tool_save_chat_session(
            space_id: Annotated[str, Field(description="id of the space the session belongs to")],
            turns: Annotated[List[Dict[str, Any]], Field(
                description="session turns: [{'role': 'user'|'model', 'content': str}]"
            )],
            title: Annotated[str, Field(description="session title")] = "",
            summary: Annotated[Optional[str], Field(
                description="session summary; generated when omitted"
            )] = None,
            session_id: Annotated[Optional[str], Field(
                description="id of an existing session to replace"
            )] = None,
        ) -> Dict[str, Any]:
            _space(space_id)
            messages = _turns(turns)
            if summary is None:
                summary = ""
                if self.synthesizer.has_llm and messages:
                    try:
                        summary = await self.synthesizer.summarize_session(messages)
                    except Exception as e:
                        logger.warning("Session summary failed, saving without one: %s", e)

            chat = ChatHistory(
                id=session_id or uuid.uuid4().hex,
                space_id=space_id,
                title=title or (messages[0].content[:60] if messages else ""),
                messages=messages,
                summary=summary,
            )
            try:
                self.store.save_chat_history(chat)
            except StoreError as e:
                return {"ok": False, "error": str(e)}
            return {"ok": True, "id": chat.id, "title": chat.title, "summary": chat.summary}

        @self.mcp.tool(
            name="list_chat_sessions",
            description="List the saved chat sessions of a space, oldest first.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_list_chat_sessions(
            space_id: Annotated[str, Field(description="id of the space")],
            include_messages: Annotated[bool, Field(description="include the turns of each session")] = False,
        ) -> Dict[str, Any]:
            _space(space_id)
            sessions = []
            for chat in self.store.get_chat_histories(space_id):
                entry = {
                    "id": chat.id,
                    "title": chat.title,
                    "summary": chat.summary,
                    "created_at": chat.created_at.isoformat(),
                    "turn_count": len(chat.messages),
                }
                if include_messages:
                    entry["messages"] = [
                        t.model_dump(mode="json") for t in chat.messages
                    ]
                sessions.append(entry)
            return {"ok": True, "sessions": sessions}

        @self.mcp.tool(
            name="delete_chat_session",
            description="Delete a saved chat session.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True)
        )
        async def tool_delete_chat_session(
            session_id: Annotated[str, Field(description="id of the session to delete")],
        ) -> Dict[str, Any]:
            if self.store.get_chat_history(session_id) is None:
                raise ToolError(f"Unknown chat session: {session_id}")
            try:
                self.store.delete_chat_history(session_id)
            except StoreError as e:
                return {"ok": False, "error": str(e)}
            return {"ok": True, "deleted": session_id}

        # ---------- MCP Tools: Assistant Status ---------- #
        @self.mcp.tool(
            name="assistant_status",
            description="Report whether the LLM assistant is configured.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False)
        )
        async def tool_assistant_status() -> Dict[str, Any]:
            if not self.synthesizer.has_llm:
                return {
                    "ok": True,
                    "assistant_available": False,
                    "warning": AssistantUnavailableError.DEFAULT_MESSAGE,
                }
            return {"ok": True, "assistant_available": True}

    def run(self) -> None:
        """Runs the MCP server using stdio transport."""
        self.mcp.run(transport="stdio")


def main() -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Run the spacemind MCP server (stdio).")
    parser.add_argument(
        "--server-name",
        default=os.getenv("MCP_SERVER_NAME", "spacemind"),
        help="Advertised MCP server name.",
    )
    parser.add_argument(
        "--store-path",
        default=None,
        help="Path to the node store JSON file (overrides config).",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("SPACEMIND_LOG_LEVEL", "INFO"),
        help="Logging level.",
    )
    args = parser.parse_args()

    ensure_directories()

    # stdout carries the stdio transport
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(LOGS_DIR / "server.log"),
        ],
    )

    config = load_config()
    store = NodeStore(args.store_path or config.store.path)
    if store.skipped_records:
        logger.warning("%d invalid store records skipped; they stay on disk", store.skipped_records)
    llm = LLMClient.from_config(config.llm)
    if not llm.is_available:
        logger.warning("LLM not configured - ask_space will report the assistant as unavailable")

    app = MCPServerApp(
        synthesizer=Synthesizer.from_config(config, llm=llm),
        store=store,
        mcp_server_name=args.server_name,
    )

    def _handle_shutdown(signum, frame):
        raise SystemExit(0)
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is not None:
            signal.signal(sig, _handle_shutdown)

    app.run()


if __name__ == "__main__":
    main()
