"""Tests for LLMClient provider abstraction."""

import logging
import pytest
from unittest.mock import Mock, patch

from spacemind.common.config import LLMConfig
from spacemind.common.errors import AssistantUnavailableError
from spacemind.common.llm_client import LLMClient


class TestLLMClientInit:
    def test_missing_google_key_logs_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="spacemind.common.llm_client"):
            client = LLMClient(provider="google")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_missing_anthropic_key_logs_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="spacemind.common.llm_client"):
            client = LLMClient(provider="anthropic")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_missing_openai_key_logs_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="spacemind.common.llm_client"):
            client = LLMClient(provider="openai")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_auto_provider_raises(self):
        with pytest.raises(ValueError, match="auto"):
            LLMClient(provider="auto")

    def test_unsupported_provider_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="spacemind.common.llm_client"):
            client = LLMClient(provider="unsupported_xyz")
        assert not client.is_available
        assert "Unsupported" in caplog.text


class TestLLMClientFromConfig:
    def test_auto_resolves_to_first_provider_with_key(self):
        cfg = LLMConfig(provider="auto", anthropic_api_key="sk-ant")
        with patch.object(LLMClient, "__init__", return_value=None) as init:
            LLMClient.from_config(cfg)
        assert init.call_args.kwargs["provider"] == "anthropic"
        assert init.call_args.kwargs["model"] == cfg.anthropic_model

    def test_default_provider_is_google(self):
        with patch.object(LLMClient, "__init__", return_value=None) as init:
            LLMClient.from_config(LLMConfig(google_api_key="g-key"))
        assert init.call_args.kwargs["provider"] == "google"
        assert init.call_args.kwargs["model"] == "gemini-2.5-flash"
        assert init.call_args.kwargs["google_api_key"] == "g-key"

    def test_empty_keys_passed_as_none(self):
        with patch.object(LLMClient, "__init__", return_value=None) as init:
            LLMClient.from_config(LLMConfig())
        assert init.call_args.kwargs["google_api_key"] is None
        assert init.call_args.kwargs["openai_api_key"] is None


class TestLLMClientGenerate:
    def test_generate_raises_when_unavailable(self):
        client = LLMClient(provider="google")
        with pytest.raises(AssistantUnavailableError, match="configure"):
            client.generate("test")

    def test_unavailable_error_is_runtime_error(self):
        client = LLMClient(provider="google")
        with pytest.raises(RuntimeError):
            client.generate("test")

    @pytest.mark.asyncio
    async def test_agenerate_raises_when_unavailable(self):
        client = LLMClient(provider="openai")
        with pytest.raises(AssistantUnavailableError):
            await client.agenerate("test")

    def test_openai_generate_passes_temperature(self):
        client = LLMClient(provider="openai")
        fake = Mock()
        fake.chat.completions.create.return_value.choices = [
            Mock(message=Mock(content="  hello  "))
        ]
        client._client = fake
        client.model = "gpt-4o-mini"

        result = client.generate("hi", system="be brief", temperature=0.3, max_tokens=50)

        assert result == "hello"
        kwargs = fake.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 50
        assert kwargs["messages"][0] == {"role": "system", "content": "be brief"}

    def test_anthropic_generate_omits_empty_system(self):
        client = LLMClient(provider="anthropic")
        fake = Mock()
        fake.messages.create.return_value.content = [Mock(text="answer")]
        client._client = fake

        assert client.generate("hi") == "answer"
        assert "system" not in fake.messages.create.call_args.kwargs

    def test_google_generate_caches_model(self):
        client = LLMClient(provider="google")
        genai = Mock()
        genai.GenerativeModel.return_value.generate_content.return_value = Mock(text="ok ")
        client._client = genai
        client._google_models = {}
        client.model = "gemini-2.5-flash"

        assert client.generate("one", temperature=0.7, max_tokens=2048) == "ok"
        client.generate("two")

        assert genai.GenerativeModel.call_count == 1
        config = genai.GenerativeModel.return_value.generate_content.call_args_list[0].kwargs[
            "generation_config"
        ]
        assert config == {"temperature": 0.7, "max_output_tokens": 2048}

    @pytest.mark.asyncio
    async def test_agenerate_runs_generate(self):
        client = LLMClient(provider="openai")
        client._client = Mock()
        with patch.object(client, "generate", return_value="threaded") as gen:
            result = await client.agenerate("prompt", temperature=0.1)
        assert result == "threaded"
        gen.assert_called_once_with("prompt", temperature=0.1)


class TestToolChat:
    def make_client(self):
        client = LLMClient(provider="google")
        client._client = Mock()
        client.model = "gemini-2.5-flash"
        return client

    def test_start_tool_chat_builds_session(self):
        from spacemind.common.schemas import ConversationTurn
        client = self.make_client()
        tools = [{"name": "search_knowledge_base", "description": "Search", "parameters": {}}]

        client.start_tool_chat(
            system="be brief", tools=tools,
            history=[ConversationTurn(role="user", content="hi")],
        )

        client._client.GenerativeModel.assert_called_once_with(
            model_name="gemini-2.5-flash",
            system_instruction="be brief",
            tools=[{"function_declarations": tools}],
        )
        client._client.GenerativeModel.return_value.start_chat.assert_called_once_with(
            history=[{"role": "user", "parts": ["hi"]}]
        )

    def test_start_tool_chat_requires_google(self):
        client = LLMClient(provider="openai")
        client._client = Mock()
        assert not client.supports_tools
        with pytest.raises(RuntimeError, match="not supported"):
            client.start_tool_chat(system="", tools=[])

    def test_start_tool_chat_unavailable(self):
        with pytest.raises(AssistantUnavailableError):
            LLMClient(provider="google").start_tool_chat(system="", tools=[])

    def test_reply_parses_calls_and_text(self):
        from types import SimpleNamespace
        from spacemind.common.llm_client import FunctionCall, GoogleToolChat

        parts = [
            SimpleNamespace(function_call=SimpleNamespace(name="", args={}), text="Saving "),
            SimpleNamespace(
                function_call=SimpleNamespace(
                    name="create_knowledge_node",
                    args={"title": "Idea", "tags": ("a", "b")},
                ),
                text="",
            ),
            SimpleNamespace(function_call=None, text="now."),
        ]
        session = Mock()
        session.send_message.return_value = SimpleNamespace(
            candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))]
        )

        reply = GoogleToolChat(session, Mock(), timeout=5).send("save my idea")

        assert reply.text == "Saving now."
        assert reply.function_calls == [
            FunctionCall("create_knowledge_node", {"title": "Idea", "tags": ["a", "b"]})
        ]
        session.send_message.assert_called_once_with(
            "save my idea", request_options={"timeout": 5}
        )

    def test_function_response_wrapped_in_content(self):
        from types import SimpleNamespace
        from spacemind.common.llm_client import GoogleToolChat

        session = Mock()
        session.send_message.return_value = SimpleNamespace(candidates=[])
        protos = Mock()

        reply = GoogleToolChat(session, protos).send_function_response(
            "search_knowledge_base", {"result": "No matching notes found."}
        )

        assert reply.text == "" and reply.function_calls == []
        protos.FunctionResponse.assert_called_once_with(
            name="search_knowledge_base", response={"result": "No matching notes found."}
        )
        protos.Part.assert_called_once_with(function_response=protos.FunctionResponse.return_value)
        protos.Content.assert_called_once_with(parts=[protos.Part.return_value])
        assert session.send_message.call_args.args[0] is protos.Content.return_value
