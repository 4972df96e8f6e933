"""
LLM Executor Module

This module provides the language model clients used by the round-trip
loop: a streaming OpenAI-compatible client, a scripted mock client, and a
registry that resolves the client named by a prompt stage.
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple, Union

import structlog

from .base import AgentExecutionError, Message, Role, ToolCall, ToolSchema

logger = structlog.get_logger(__name__)


@dataclass
class GenerationRequest:
    """Everything a model needs for one call."""

    model: str
    system_prompt: str = ""
    messages: List[Message] = field(default_factory=list)
    prompt: Optional[Message] = None
    tools: List[ToolSchema] = field(default_factory=list)
    follow_up: List[Message] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)

    def build_messages(self) -> List[Message]:
        """Full ordered message list sent to the model."""
        messages: List[Message] = []
        if self.system_prompt:
            messages.append(Message(role=Role.SYSTEM, content=self.system_prompt))
        messages.extend(self.messages)
        if self.prompt is not None:
            messages.append(self.prompt)
        messages.extend(self.follow_up)
        return messages


@dataclass
class GenerationResult:
    """Aggregate result of one model call."""

    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: str = ""

    # Metadata
    model: str = ""
    provider: str = ""
    latency_ms: float = 0.0
    prompt_tokens: int = 0
    completion_tokens: int = 0


class LLMClient(ABC):
    """Abstract base class for language model clients."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Client name."""
        pass

    @abstractmethod
    def stream(
        self,
        request: GenerationRequest,
    ) -> AsyncIterator[Tuple[str, Optional[GenerationResult]]]:
        """
        Stream a response.

        Yields:
            ``(token, None)`` while text arrives, then ``("", result)``
        """
        pass

    @abstractmethod
    async def generate_object(
        self,
        request: GenerationRequest,
        schema: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Generate a JSON object following ``schema``."""
        pass


class OpenAIClient(LLMClient):
    """Client for the OpenAI chat completions API and compatible providers."""

    def __init__(
        self,
        api_key: str = "",
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        provider: str = "openai",
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.provider = provider
        self._client: Optional[Any] = None

    @property
    def name(self) -> str:
        return self.provider

    def _get_client(self) -> Any:
        """Get or create the OpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    def _build_kwargs(self, request: GenerationRequest) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": request.model,
            "messages": [m.to_openai_format() for m in request.build_messages()],
        }
        kwargs.update(request.options)
        if request.tools:
            kwargs["tools"] = [tool.to_openai_format() for tool in request.tools]
            kwargs.setdefault("tool_choice", "auto")
        else:
            kwargs.pop("tool_choice", None)
        return kwargs

    async def stream(
        self,
        request: GenerationRequest,
    ) -> AsyncIterator[Tuple[str, Optional[GenerationResult]]]:
        """Stream response."""
        client = self._get_client()
        start_time = time.perf_counter()

        try:
            kwargs = self._build_kwargs(request)
            kwargs["stream"] = True
            stream = await client.chat.completions.create(**kwargs)

            full_content = ""
            tool_calls_data: Dict[int, Dict[str, str]] = {}
            finish_reason = ""

            async for chunk in stream:
                delta = chunk.choices[0].delta if chunk.choices else None
                if chunk.choices and chunk.choices[0].finish_reason:
                    finish_reason = chunk.choices[0].finish_reason

                if not delta:
                    continue

                if delta.content:
                    full_content += delta.content
                    yield delta.content, None

                # Tool call fragments arrive keyed by index
                for tool_call in delta.tool_calls or []:
                    data = tool_calls_data.setdefault(
                        tool_call.index, {"id": "", "name": "", "arguments": ""}
                    )
                    if tool_call.id:
                        data["id"] = tool_call.id
                    if tool_call.function:
                        if tool_call.function.name:
                            data["name"] = tool_call.function.name
                        if tool_call.function.arguments:
                            data["arguments"] += tool_call.function.arguments

        except Exception as e:
            logger.exception("llm_stream_failed", provider=self.name, model=request.model)
            raise AgentExecutionError(f"{self.name} stream failed: {e}") from e

        result = GenerationResult(
            content=full_content,
            finish_reason=finish_reason,
            model=request.model,
            provider=self.name,
            latency_ms=(time.perf_counter() - start_time) * 1000,
        )
        for index in sorted(tool_calls_data):
            data = tool_calls_data[index]
            if data["name"]:
                result.tool_calls.append(
                    ToolCall(id=data["id"], name=data["name"], arguments=data["arguments"])
                )

        yield "", result

    async def generate_object(
        self,
        request: GenerationRequest,
        schema: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Generate a JSON object using JSON mode."""
        client = self._get_client()
        instructions = (
            "Respond only with a JSON object that follows this JSON schema:\n"
            f"{json.dumps(schema)}"
        )
        system_prompt = f"{request.system_prompt}\n\n{instructions}".strip()
        object_request = GenerationRequest(
            model=request.model,
            system_prompt=system_prompt,
            messages=request.messages,
            prompt=request.prompt,
            options=dict(request.options),
        )

        try:
            kwargs = self._build_kwargs(object_request)
            kwargs["response_format"] = {"type": "json_object"}
            response = await client.chat.completions.create(**kwargs)
        except Exception as e:
            logger.exception("llm_object_failed", provider=self.name, model=request.model)
            raise AgentExecutionError(f"{self.name} request failed: {e}") from e

        content = response.choices[0].message.content or "{}"
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise AgentExecutionError(f"{self.name} returned invalid JSON") from e
        if not isinstance(parsed, dict):
            raise AgentExecutionError(f"{self.name} returned a non-object JSON value")
        return parsed


ScriptItem = Union[str, GenerationResult]


class MockLLMClient(LLMClient):
    """Scripted client for tests and local development."""

    def __init__(
        self,
        responses: Optional[List[ScriptItem]] = None,
        objects: Optional[List[Dict[str, Any]]] = None,
        delay_ms: float = 0,
    ):
        """
        Initialize mock client.

        Args:
            responses: Responses returned by successive ``stream`` calls
            objects: Objects returned by successive ``generate_object`` calls
            delay_ms: Simulated delay per token
        """
        self.responses: List[ScriptItem] = list(responses or [])
        self.objects: List[Dict[str, Any]] = list(objects or [])
        self.delay_ms = delay_ms
        self.requests: List[GenerationRequest] = []
        self.object_requests: List[Tuple[GenerationRequest, Dict[str, Any]]] = []

    @property
    def name(self) -> str:
        return "mock"

    def _next_response(self) -> GenerationResult:
        if not self.responses:
            raise AgentExecutionError("Mock client has no scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, str):
            return GenerationResult(content=item, model="mock-model", provider=self.name)
        return item

    async def stream(
        self,
        request: GenerationRequest,
    ) -> AsyncIterator[Tuple[str, Optional[GenerationResult]]]:
        """Stream mock response word by word."""
        self.requests.append(
            replace(request, tools=list(request.tools), follow_up=list(request.follow_up))
        )
        response = self._next_response()

        words = response.content.split(" ") if response.content else []
        for i, word in enumerate(words):
            if self.delay_ms:
                await asyncio.sleep(self.delay_ms / 1000)
            yield (word + " " if i < len(words) - 1 else word), None

        yield "", GenerationResult(
            content=response.content,
            tool_calls=list(response.tool_calls),
            finish_reason="tool_calls" if response.tool_calls else "stop",
            model=request.model,
            provider=self.name,
        )

    async def generate_object(
        self,
        request: GenerationRequest,
        schema: Dict[str, Any],
    ) -> Dict[str, Any]:
        self.object_requests.append((request, schema))
        if not self.objects:
            return {}
        return self.objects.pop(0)


# OpenAI-compatible providers
PROVIDER_URLS: Dict[str, Optional[str]] = {
    "openai": None,
    "together": "https://api.together.xyz/v1",
    "fireworks": "https://api.fireworks.ai/inference/v1",
    "groq": "https://api.groq.com/openai/v1",
    "perplexity": "https://api.perplexity.ai",
}


class ClientRegistry:
    """
    Resolves the language model client named by a prompt stage.

    Clients are either registered directly or created lazily from a
    factory the first time they are requested.
    """

    def __init__(self, default_client: str = "openai"):
        self.default_client = default_client
        self._clients: Dict[str, LLMClient] = {}
        self._factories: Dict[str, Callable[[], LLMClient]] = {}

    def register(self, name: str, client: LLMClient) -> None:
        self._clients[name] = client

    def register_factory(self, name: str, factory: Callable[[], LLMClient]) -> None:
        self._factories[name] = factory

    def connect_provider(
        self,
        provider: str,
        api_key: str,
        timeout: float = 60.0,
    ) -> LLMClient:
        """Register an OpenAI-compatible provider by name."""
        if provider not in PROVIDER_URLS:
            raise AgentExecutionError(f"Unknown provider: {provider}")
        client = OpenAIClient(
            api_key=api_key,
            base_url=PROVIDER_URLS[provider],
            timeout=timeout,
            provider=provider,
        )
        self.register(provider, client)
        return client

    def get(self, name: Optional[str] = None) -> LLMClient:
        """
        Get a client by name.

        Raises:
            AgentExecutionError: If no client or factory is registered
        """
        key = name or self.default_client
        if key not in self._clients:
            factory = self._factories.get(key)
            if factory is None:
                raise AgentExecutionError(f"Unknown LLM client: {key}")
            self._clients[key] = factory()
        return self._clients[key]

    @classmethod
    def from_settings(cls, settings: Any) -> "ClientRegistry":
        """Registry with the OpenAI client configured from settings."""
        registry = cls(default_client=settings.default_llm_client)
        registry.register_factory(
            "openai",
            lambda: OpenAIClient(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout=settings.llm_timeout_seconds,
            ),
        )
        return registry


__all__ = [
    "GenerationRequest",
    "GenerationResult",
    "LLMClient",
    "OpenAIClient",
    "MockLLMClient",
    "PROVIDER_URLS",
    "ClientRegistry",
]
