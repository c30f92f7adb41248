"""
Provider-agnostic LLM client for spacemind.

Supports Google Gemini, Anthropic, and OpenAI with a shared single-shot
text-generation interface. Conversation state is flattened into the prompt
by the caller, so the client never holds session history.

Function calling goes through a separate chat session (Gemini only),
where the model may request declared actions by name.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .config import LLMConfig, resolve_provider
from .errors import AssistantUnavailableError

logger = logging.getLogger("spacemind.common.llm_client")

# Distribution name reported when a provider SDK is missing
_SDK_PACKAGES = {
    "google": "google-generativeai",
    "anthropic": "anthropic",
    "openai": "openai",
}


TOOL_CALLING_PROVIDERS = ("google",)


@dataclass
class FunctionCall:
    """An action the model asked to run."""
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolReply:
    """One model turn in a tool chat: text, requested calls, or both."""
    text: str = ""
    function_calls: List[FunctionCall] = field(default_factory=list)


def _plain(value: Any) -> Any:
    # Gemini returns args as proto map/repeated composites
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return [_plain(v) for v in value]
    return value


class GoogleToolChat:
    """Gemini chat session with function declarations attached."""

    def __init__(self, session, protos, timeout: float = 60.0) -> None:
        self._session = session
        self._protos = protos
        self._timeout = timeout

    def _reply(self, response) -> ToolReply:
        reply = ToolReply()
        texts = []
        candidates = list(response.candidates or [])
        for part in (candidates[0].content.parts if candidates else []):
            call = getattr(part, "function_call", None)
            if call is not None and call.name:
                reply.function_calls.append(FunctionCall(call.name, _plain(call.args or {})))
            elif getattr(part, "text", ""):
                texts.append(part.text)
        reply.text = "".join(texts).strip()
        return reply

    def send(self, message: str) -> ToolReply:
        response = self._session.send_message(
            message, request_options={"timeout": self._timeout}
        )
        return self._reply(response)

    def send_function_response(self, name: str, response: Dict[str, Any]) -> ToolReply:
        content = self._protos.Content(parts=[
            self._protos.Part(function_response=self._protos.FunctionResponse(
                name=name, response=response,
            ))
        ])
        return self._reply(self._session.send_message(
            content, request_options={"timeout": self._timeout}
        ))

    async def asend(self, message: str) -> ToolReply:
        return await asyncio.to_thread(self.send, message)

    async def asend_function_response(self, name: str, response: Dict[str, Any]) -> ToolReply:
        return await asyncio.to_thread(self.send_function_response, name, response)


class LLMClient:
    """Unified text generation client across LLM providers."""

    def __init__(
        self,
        provider: str = "google",
        model: str = "",
        anthropic_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
    ) -> None:
        self.provider = (provider or "google").lower()
        self.model = model
        self._client = None
        self._google_models: Dict[str, Any] = {}  # keyed by system prompt hash

        if self.provider == "auto":
            raise ValueError(
                '"auto" provider must be resolved before creating LLMClient. '
                'Use LLMClient.from_config() or resolve_provider().'
            )

        keys = {
            "google": google_api_key,
            "anthropic": anthropic_api_key,
            "openai": openai_api_key,
        }
        if self.provider not in keys:
            logger.warning("Unsupported LLM provider: %s", self.provider)
            return

        api_key = keys[self.provider]
        if not api_key:
            logger.info("%s API key not provided, LLM client unavailable", self.provider)
            return

        connect = getattr(self, f"_connect_{self.provider}")
        try:
            self._client = connect(api_key)
        except ImportError:
            logger.warning("%s package not installed", _SDK_PACKAGES[self.provider])
        except Exception as e:
            logger.warning("Failed to initialize %s client: %s", self.provider, e)

    @staticmethod
    def _connect_google(api_key: str):
        import google.generativeai as genai

        genai.configure(api_key=api_key)
        return genai  # the module; models are built per system prompt

    @staticmethod
    def _connect_anthropic(api_key: str):
        import anthropic

        return anthropic.Anthropic(api_key=api_key)

    @staticmethod
    def _connect_openai(api_key: str):
        from openai import OpenAI

        return OpenAI(api_key=api_key)

    @classmethod
    def from_config(cls, llm: LLMConfig) -> "LLMClient":
        """Build a client for the configured (or auto-resolved) provider.

        Construct once at startup and inject; call again after a
        configuration change to pick up new credentials.
        """
        provider = resolve_provider(llm)
        model = {
            "google": llm.google_model,
            "anthropic": llm.anthropic_model,
            "openai": llm.openai_model,
        }.get(provider, "")
        return cls(
            provider=provider,
            model=model,
            anthropic_api_key=llm.anthropic_api_key or None,
            openai_api_key=llm.openai_api_key or None,
            google_api_key=llm.google_api_key or None,
        )

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 512,
        timeout: float = 60.0,
    ) -> str:
        """
        Generate a completion for a flattened prompt.

        Raises:
            AssistantUnavailableError: No usable provider client
            Exception: Provider SDK errors propagate unchanged
        """
        if not self.is_available:
            raise AssistantUnavailableError()

        call = getattr(self, f"_generate_{self.provider}", None)
        if call is None:
            raise RuntimeError(f"Unsupported LLM provider: {self.provider}")
        return call(prompt, system, temperature, max_tokens, timeout)

    def _generate_google(self, prompt, system, temperature, max_tokens, timeout) -> str:
        cache_key = hashlib.md5((system or "").encode()).hexdigest()
        model = self._google_models.get(cache_key)
        if model is None:
            kwargs = {"model_name": self.model}
            if system:
                kwargs["system_instruction"] = system
            model = self._google_models[cache_key] = self._client.GenerativeModel(**kwargs)
        response = model.generate_content(
            prompt,
            generation_config={
                "temperature": temperature,
                "max_output_tokens": max_tokens,
            },
            request_options={"timeout": timeout},
        )
        return response.text.strip()

    def _generate_anthropic(self, prompt, system, temperature, max_tokens, timeout) -> str:
        extra = {"system": system} if system else {}
        response = self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
            timeout=timeout,
            **extra,
        )
        return response.content[0].text.strip()

    def _generate_openai(self, prompt, system, temperature, max_tokens, timeout) -> str:
        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})
        response = self._client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=messages,
            timeout=timeout,
        )
        return (response.choices[0].message.content or "").strip()

    async def agenerate(self, prompt: str, **kwargs) -> str:
        """Run generate() in a worker thread so the event loop stays free."""
        if not self.is_available:
            raise AssistantUnavailableError()
        return await asyncio.to_thread(self.generate, prompt, **kwargs)

    @property
    def supports_tools(self) -> bool:
        return self.is_available and self.provider in TOOL_CALLING_PROVIDERS

    def start_tool_chat(
        self,
        *,
        system: str,
        tools: List[Dict[str, Any]],
        history: Iterable[Any] = (),
        timeout: float = 60.0,
    ) -> GoogleToolChat:
        """
        Open a chat session in which the model may call the given functions.

        Args:
            system: System instruction for the session
            tools: Function declarations (name, description, parameters)
            history: Prior turns with `role` ("user"/"model") and `content`

        Raises:
            AssistantUnavailableError: No usable provider client
            RuntimeError: Provider does not support function calling here
        """
        if not self.is_available:
            raise AssistantUnavailableError()
        if self.provider not in TOOL_CALLING_PROVIDERS:
            raise RuntimeError(f"Function calling is not supported for provider: {self.provider}")

        model = self._client.GenerativeModel(
            model_name=self.model,
            system_instruction=system,
            tools=[{"function_declarations": list(tools)}],
        )
        session = model.start_chat(history=[
            {"role": getattr(t.role, "value", t.role), "parts": [t.content]}
            for t in history
        ])
        return GoogleToolChat(session, self._client.protos, timeout=timeout)
