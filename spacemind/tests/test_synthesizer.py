"""
Tests for Synthesizer

Covers the answer pipeline: mode selection, retrieval size, web and
memory augmentation, history, and failure behavior.
"""

import pytest
from unittest.mock import AsyncMock, Mock

from spacemind.common.schemas import ChatRole, ConversationTurn, Node


def make_node(node_id, title, **kwargs):
    return Node(id=node_id, space_id="s1", title=title, **kwargs)


@pytest.fixture
def llm():
    client = Mock()
    client.is_available = True
    client.agenerate = AsyncMock(return_value="Here is what you saved.")
    return client


@pytest.fixture
def memory_cache():
    cache = Mock()
    cache.get_memory = AsyncMock(return_value="")
    return cache


@pytest.fixture
def web_search():
    client = Mock()
    client.search = AsyncMock(return_value=["Result - snippet (https://example.com)"])
    return client


@pytest.fixture
def synthesizer(llm, memory_cache, web_search):
    from spacemind.retriever.synthesizer import Synthesizer
    return Synthesizer(llm, memory_cache=memory_cache, web_search=web_search)


@pytest.fixture
def nodes():
    return [
        make_node("a", "Attention is All You Need", summary="Transformer paper",
                  content="Self-attention replaces recurrence.", tags=["AI", "Transformers"]),
        make_node("b", "Startup Ideas 2024", summary="Business brainstorm",
                  content="Idea one: tooling.", tags=["Business"]),
        make_node("c", "Sourdough Bread", summary="Baking notes"),
        make_node("d", "Weekly Groceries", summary="Shopping list"),
        make_node("e", "Quarterly Goals", summary="Planning"),
        make_node("f", "Rust Ownership", summary="Borrow checker"),
        make_node("g", "Travel Packing", summary="Checklist"),
    ]


def sent_prompt(llm):
    return llm.agenerate.await_args.args[0]


class TestChatWithRag:
    @pytest.mark.asyncio
    async def test_general_mode_uses_top_five_without_content(self, synthesizer, llm, nodes):
        result = await synthesizer.chat_with_rag("what should I cook", nodes)

        prompt = sent_prompt(llm)
        assert len(result.sources) == 5
        assert not result.is_specific
        assert "Content:" not in prompt
        assert "NOTE: User appears to be asking" not in prompt
        assert "YOUR KNOWLEDGE BASE (7 total items)" in prompt

    @pytest.mark.asyncio
    async def test_specific_mode_uses_top_three_with_content(self, synthesizer, llm, nodes):
        result = await synthesizer.chat_with_rag("Startup Ideas 2024", nodes)

        prompt = sent_prompt(llm)
        assert result.matched_titles == ["Startup Ideas 2024"]
        assert result.is_specific
        assert len(result.sources) == 3
        assert result.sources[0] == "Startup Ideas 2024"
        assert "Content: Idea one: tooling." in prompt
        assert "NOTE: User appears to be asking about specific item(s): Startup Ideas 2024." in prompt

    @pytest.mark.asyncio
    async def test_sources_in_ranked_order(self, synthesizer, nodes):
        result = await synthesizer.chat_with_rag("tell me about transformers", nodes)
        assert result.sources[0] == "Attention is All You Need"

    @pytest.mark.asyncio
    async def test_generation_options(self, synthesizer, llm, nodes):
        await synthesizer.chat_with_rag("anything here", nodes)
        assert llm.agenerate.await_args.kwargs == {"temperature": 0.7, "max_tokens": 2048}

    @pytest.mark.asyncio
    async def test_query_appended_last(self, synthesizer, llm, nodes):
        await synthesizer.chat_with_rag("what about bread?", nodes)
        assert sent_prompt(llm).endswith("Current user query: what about bread?")

    @pytest.mark.asyncio
    async def test_space_name_in_prompt(self, synthesizer, llm, nodes):
        await synthesizer.chat_with_rag("hello there", nodes, space_name="Research")
        assert 'knowledge base called "Research"' in sent_prompt(llm)

    @pytest.mark.asyncio
    async def test_web_disabled_never_calls_search(self, synthesizer, llm, web_search, nodes):
        await synthesizer.chat_with_rag("transformers", nodes, use_web_search=False)

        web_search.search.assert_not_awaited()
        assert "WEB SEARCH RESULTS" not in sent_prompt(llm)

    @pytest.mark.asyncio
    async def test_web_enabled_adds_results(self, synthesizer, llm, web_search, nodes):
        await synthesizer.chat_with_rag("transformers", nodes, use_web_search=True)

        web_search.search.assert_awaited_once_with("transformers")
        prompt = sent_prompt(llm)
        assert "WEB SEARCH RESULTS:\nResult - snippet (https://example.com)" in prompt

    @pytest.mark.asyncio
    async def test_web_failure_degrades_to_no_results(self, synthesizer, llm, web_search, nodes):
        web_search.search.side_effect = RuntimeError("network down")

        result = await synthesizer.chat_with_rag("transformers", nodes, use_web_search=True)

        assert result.answer == "Here is what you saved."
        assert "WEB SEARCH RESULTS" not in sent_prompt(llm)

    @pytest.mark.asyncio
    async def test_memory_included(self, synthesizer, llm, memory_cache, nodes):
        memory_cache.get_memory.return_value = "Mostly AI papers and recipes."

        await synthesizer.chat_with_rag("summary please", nodes, space_name="Research")

        memory_cache.get_memory.assert_awaited_once_with("Research", nodes)
        assert "ONE-SHOT MEMORY (Key insights from this space):\nMostly AI papers and recipes." in sent_prompt(llm)

    @pytest.mark.asyncio
    async def test_empty_memory_omits_block(self, synthesizer, llm, nodes):
        await synthesizer.chat_with_rag("summary please", nodes)
        assert "ONE-SHOT MEMORY" not in sent_prompt(llm)

    @pytest.mark.asyncio
    async def test_memory_override_skips_cache(self, synthesizer, llm, memory_cache, nodes):
        await synthesizer.chat_with_rag("summary please", nodes, space_memory="Provided digest.")

        memory_cache.get_memory.assert_not_awaited()
        assert "Provided digest." in sent_prompt(llm)

    @pytest.mark.asyncio
    async def test_history_serialized_before_query(self, synthesizer, llm, nodes):
        history = [
            ConversationTurn(role=ChatRole.USER, content="What did I save about AI?"),
            ConversationTurn(role=ChatRole.MODEL, content="A transformer paper."),
        ]

        await synthesizer.chat_with_rag("and business?", nodes, history=history)

        prompt = sent_prompt(llm)
        block = "PREVIOUS CONVERSATION:\nUser: What did I save about AI?\n\nAI: A transformer paper.\n\n---\n\n"
        assert block + "Current user query: and business?" in prompt
        assert len(history) == 2

    @pytest.mark.asyncio
    async def test_history_mappings_coerced(self, synthesizer, llm, nodes):
        history = [{"role": "user", "content": "hi"}, {"role": "model", "content": "hello"}]

        await synthesizer.chat_with_rag("attention", nodes, history=history)

        assert "PREVIOUS CONVERSATION:\nUser: hi\n\nAI: hello" in sent_prompt(llm)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("history", [
        ["just a string"],
        [{"role": "narrator", "content": "hi"}],
        [{"content": "no role"}],
        "user: hi",
        {"role": "user", "content": "hi"},
        42,
    ])
    async def test_malformed_history_rejected_before_collaborators(
        self, synthesizer, llm, memory_cache, web_search, nodes, history
    ):
        from spacemind.common.errors import ValidationError

        with pytest.raises(ValidationError):
            await synthesizer.chat_with_rag(
                "attention", nodes, history=history, use_web_search=True,
            )

        web_search.search.assert_not_awaited()
        memory_cache.get_memory.assert_not_awaited()
        llm.agenerate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_space(self, synthesizer, llm):
        result = await synthesizer.chat_with_rag("anything", [])

        assert result.sources == []
        assert "No relevant knowledge found." in sent_prompt(llm)

    @pytest.mark.asyncio
    async def test_empty_answer_placeholder(self, synthesizer, llm, nodes):
        llm.agenerate.return_value = ""
        result = await synthesizer.chat_with_rag("anything", nodes)
        assert result.answer == "No response generated."

    @pytest.mark.asyncio
    async def test_generation_error_propagates(self, synthesizer, llm, nodes):
        llm.agenerate.side_effect = RuntimeError("quota exceeded")
        with pytest.raises(RuntimeError, match="quota"):
            await synthesizer.chat_with_rag("anything", nodes)

    @pytest.mark.asyncio
    async def test_unavailable_llm(self, synthesizer, llm, memory_cache, nodes):
        from spacemind.common.errors import AssistantUnavailableError
        llm.is_available = False

        with pytest.raises(AssistantUnavailableError):
            await synthesizer.chat_with_rag("anything", nodes)

        memory_cache.get_memory.assert_not_awaited()
        llm.agenerate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_blank_query_rejected(self, synthesizer, nodes):
        from spacemind.common.errors import ValidationError
        with pytest.raises(ValidationError):
            await synthesizer.chat_with_rag("  ", nodes)

    @pytest.mark.asyncio
    async def test_nodes_not_mutated(self, synthesizer, nodes):
        order = [n.id for n in nodes]
        await synthesizer.chat_with_rag("transformers", nodes)
        assert [n.id for n in nodes] == order

    @pytest.mark.asyncio
    async def test_without_optional_collaborators(self, llm, nodes):
        from spacemind.retriever.synthesizer import Synthesizer
        synthesizer = Synthesizer(llm)

        result = await synthesizer.chat_with_rag("transformers", nodes, use_web_search=True)

        assert result.answer == "Here is what you saved."
        assert "WEB SEARCH RESULTS" not in sent_prompt(llm)


class TestCompareSpaces:
    @pytest.mark.asyncio
    async def test_both_memories_and_contexts(self, synthesizer, llm, memory_cache, nodes):
        memory_cache.get_memory.side_effect = ["AI memory", "Cooking memory"]
        cooking = [make_node("x", "Pasta Recipes", summary="Carbonara", content="Eggs and pecorino")]

        answer = await synthesizer.compare_spaces(nodes, cooking, "Research", "Kitchen", "What connects them?")

        assert answer == "Here is what you saved."
        assert memory_cache.get_memory.await_count == 2
        prompt = sent_prompt(llm)
        assert 'AGENT 1: "Research" Knowledge Expert' in prompt
        assert 'AGENT 2: "Kitchen" Knowledge Expert' in prompt
        assert "MEMORY SUMMARY:\nAI memory" in prompt
        assert "MEMORY SUMMARY:\nCooking memory" in prompt
        assert "Content: Eggs and pecorino" in prompt
        assert "USER QUESTION: What connects them?" in prompt
        assert llm.agenerate.await_args.kwargs == {"temperature": 0.8, "max_tokens": 3000}

    @pytest.mark.asyncio
    async def test_empty_answer_placeholder(self, synthesizer, llm, nodes):
        llm.agenerate.return_value = ""
        answer = await synthesizer.compare_spaces(nodes, [], "A", "B", "question")
        assert answer == "Comparison unavailable."


class TestSummarizeSession:
    @pytest.mark.asyncio
    async def test_summary(self, synthesizer, llm):
        turns = [
            ConversationTurn(role="user", content="Plan my week"),
            ConversationTurn(role="model", content="Sure, here is a plan."),
        ]
        llm.agenerate.return_value = "The user planned their week."

        summary = await synthesizer.summarize_session(turns)

        assert summary == "The user planned their week."
        assert "User: Plan my week\n\nAI: Sure, here is a plan." in sent_prompt(llm)
        assert llm.agenerate.await_args.kwargs == {"temperature": 0.3, "max_tokens": 200}

    @pytest.mark.asyncio
    async def test_no_turns(self, synthesizer, llm):
        assert await synthesizer.summarize_session([]) == "Summary unavailable."
        llm.agenerate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_turn_rejected(self, synthesizer, llm):
        from spacemind.common.errors import ValidationError
        with pytest.raises(ValidationError, match=r"history\[1\]"):
            await synthesizer.summarize_session([
                ConversationTurn(role="user", content="Plan my week"),
                "Sure, here is a plan.",
            ])
        llm.agenerate.assert_not_awaited()


class TestChatWithTools:
    @pytest.fixture
    def dispatcher(self, tmp_path):
        from spacemind.common.node_store import NodeStore
        from spacemind.retriever.actions import ActionDispatcher
        store = NodeStore(tmp_path / "store.json")
        store.create_node(make_node("a", "Attention is All You Need",
                                    summary="Transformer paper", tags=["AI"]))
        return ActionDispatcher(store, "s1")

    @pytest.fixture
    def chat(self, llm):
        from spacemind.common.llm_client import ToolReply
        session = Mock()
        session.asend = AsyncMock(return_value=ToolReply(text="Nothing to do."))
        session.asend_function_response = AsyncMock(return_value=ToolReply(text="Done."))
        llm.start_tool_chat.return_value = session
        return session

    @pytest.mark.asyncio
    async def test_dispatches_call_and_feeds_result_back(self, synthesizer, llm, chat, dispatcher):
        from spacemind.common.llm_client import FunctionCall, ToolReply
        chat.asend.return_value = ToolReply(function_calls=[
            FunctionCall("create_knowledge_node", {"title": "Idea", "summary": "Ship it", "tags": ["Plans"]}),
        ])
        chat.asend_function_response.return_value = ToolReply(text="Saved.")

        result = await synthesizer.chat_with_tools("save: ship it", dispatcher, space_name="Research")

        assert result.answer == "Saved."
        assert [a["name"] for a in result.actions] == ["create_knowledge_node"]
        created = dispatcher.store.get_nodes_for_space("s1")[-1]
        assert (created.title, created.tags) == ("Idea", ["Plans"])
        name, response = chat.asend_function_response.await_args.args
        assert name == "create_knowledge_node"
        assert response == {"result": "Successfully saved memory.", "id": created.id}

    @pytest.mark.asyncio
    async def test_session_setup(self, synthesizer, llm, chat, dispatcher):
        history = [{"role": "user", "content": "hi"}]

        result = await synthesizer.chat_with_tools("hello", dispatcher, history=history)

        assert result.answer == "Nothing to do."
        assert result.actions == []
        kwargs = llm.start_tool_chat.call_args.kwargs
        assert "- [NOTE] Attention is All You Need: Transformer paper (Tags: AI)" in kwargs["system"]
        assert kwargs["system"].endswith("Use 'create_knowledge_node' to save new ideas. Be concise.")
        assert {t["name"] for t in kwargs["tools"]} == {"search_knowledge_base", "create_knowledge_node"}
        assert kwargs["history"][0].role == ChatRole.USER
        chat.asend.assert_awaited_once_with("hello")

    @pytest.mark.asyncio
    async def test_loop_capped_at_five_calls(self, synthesizer, chat, dispatcher):
        from spacemind.common.llm_client import FunctionCall, ToolReply
        searching = ToolReply(function_calls=[FunctionCall("search_knowledge_base", {"query": "attention"})])
        chat.asend.return_value = searching
        chat.asend_function_response.return_value = searching

        result = await synthesizer.chat_with_tools("keep searching", dispatcher)

        assert chat.asend_function_response.await_count == 5
        assert len(result.actions) == 5
        assert result.answer == "Processed."

    @pytest.mark.asyncio
    async def test_unknown_action_ends_loop(self, synthesizer, chat, dispatcher):
        from spacemind.common.llm_client import FunctionCall, ToolReply
        chat.asend.return_value = ToolReply(
            text="Let me try.", function_calls=[FunctionCall("drop_tables", {})],
        )

        result = await synthesizer.chat_with_tools("clean up", dispatcher)

        assert result.answer == "Let me try."
        assert result.actions == []
        chat.asend_function_response.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bad_arguments_reported_to_model(self, synthesizer, chat, dispatcher):
        from spacemind.common.llm_client import FunctionCall, ToolReply
        chat.asend.return_value = ToolReply(function_calls=[
            FunctionCall("create_knowledge_node", {"summary": "no title"}),
        ])

        result = await synthesizer.chat_with_tools("save this", dispatcher)

        _, response = chat.asend_function_response.await_args.args
        assert "Invalid arguments for create_knowledge_node" in response["error"]
        assert result.answer == "Done."
        assert len(dispatcher.store.get_nodes_for_space("s1")) == 1

    @pytest.mark.asyncio
    async def test_unavailable_llm(self, synthesizer, llm, dispatcher):
        from spacemind.common.errors import AssistantUnavailableError
        llm.is_available = False
        with pytest.raises(AssistantUnavailableError):
            await synthesizer.chat_with_tools("hello", dispatcher)
        llm.start_tool_chat.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_history_rejected(self, synthesizer, llm, dispatcher):
        from spacemind.common.errors import ValidationError
        with pytest.raises(ValidationError):
            await synthesizer.chat_with_tools("hello", dispatcher, history=[42])
        llm.start_tool_chat.assert_not_called()


class TestDisplay:
    def test_format_answer_for_display(self):
        from spacemind.retriever.synthesizer import RAGResult, format_answer_for_display
        text = format_answer_for_display(RAGResult(
            answer="Answer.",
            sources=["One", "Two"],
            matched_titles=["One"],
        ))
        assert text.startswith("Answer.")
        assert '  - "One"' in text
        assert '  2. "Two"' in text
