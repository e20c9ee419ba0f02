"""
Provider interface, concrete LLM backends and the provider registry.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Union

import anthropic
import requests
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_ollama import ChatOllama
from openai import AsyncOpenAI

from ..models import CallOptions, Message, ProviderResponse, Role, Usage
from ..models.config import ProviderConfig, SystemConfig
from ..utils import get_logger
from ..utils.error_handling import APIError, ConfigurationError

StreamChunk = Union[str, Usage]

TEXT_ONLY_IMAGE_NOTE = (
    " [Note: Images were included but this model does not support image analysis. "
    "Please describe the image in text if needed.]"
)


def to_data_url(payload: str) -> Optional[str]:
    """Normalise an image payload to a data URL or http(s) URL; None if unusable."""
    payload = (payload or "").strip()
    if not payload:
        return None
    if payload.startswith("data:image/") or payload.startswith(("http://", "https://")):
        return payload
    if payload.startswith("data:"):
        return None
    if "://" not in payload:
        return f"data:image/png;base64,{payload}"
    return None


def split_data_url(url: str) -> Tuple[str, str]:
    """Return (media_type, base64 data) for a data URL."""
    header, _, data = url.partition(",")
    media_type = header[len("data:"):].split(";")[0] or "image/png"
    return media_type, data


class ResourceStatus:
    """Status information for a provider probe."""
    def __init__(self, available: bool = True, response_time: float = 0.0,
                 error_message: Optional[str] = None):
        self.available = available
        self.response_time = response_time
        self.error_message = error_message
        self.last_check = datetime.now()


class LLMProvider(ABC):
    """
    Contract every backend implements: availability, a buffered call and a
    streaming call. Stream chunks are text, optionally followed by one Usage.
    """

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.logger = get_logger(__name__)

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def display_name(self) -> str:
        return self.config.display_name

    @property
    def supports_vision(self) -> bool:
        return self.config.supports_vision

    @property
    def credential_name(self) -> str:
        return self.config.env_key_name

    @abstractmethod
    def is_available(self) -> bool:
        """True when the backend is configured and reachable enough to try."""

    @abstractmethod
    async def call(self, messages: List[Message], options: CallOptions) -> ProviderResponse:
        """Make a buffered (non-streaming) call."""

    @abstractmethod
    def stream_call(self, messages: List[Message], options: CallOptions) -> AsyncIterator[StreamChunk]:
        """Make a streaming call; yields text chunks and at most one final Usage."""

    def _require_credentials(self) -> None:
        if not self.config.enabled:
            raise ConfigurationError(f"Provider {self.name} is disabled", config_key=f"providers.{self.name}.enabled")
        if not self.config.api_key:
            raise ConfigurationError(
                f"Provider {self.name} is not configured. Please add {self.credential_name} to your environment variables.",
                config_key=self.credential_name,
            )


class OpenAICompatibleProvider(LLMProvider):
    """
    Backend for any OpenAI-compatible chat completions API
    (OpenAI, Groq, Perplexity, OpenRouter).
    """

    def __init__(self, config: ProviderConfig, client: Optional[AsyncOpenAI] = None):
        super().__init__(config)
        self._client = client

    def is_available(self) -> bool:
        return self.config.enabled and bool(self.config.api_key)

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._require_credentials()
            self._client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout_seconds,
                max_retries=0,
            )
        return self._client

    def format_messages(self, messages: List[Message]) -> List[Dict[str, Any]]:
        """Convert messages to the chat completions wire shape."""
        formatted = []
        for message in messages:
            text = message.text().strip()
            images = [url for url in (to_data_url(p) for p in message.image_payloads()) if url]
            if not images:
                formatted.append({"role": message.role.value, "content": text or " "})
            elif not self.supports_vision:
                formatted.append({"role": message.role.value, "content": (text + TEXT_ONLY_IMAGE_NOTE).strip()})
            else:
                parts: List[Dict[str, Any]] = []
                if text:
                    parts.append({"type": "text", "text": text})
                parts.extend({"type": "image_url", "image_url": {"url": url}} for url in images)
                formatted.append({"role": message.role.value, "content": parts})
        return formatted

    async def call(self, messages: List[Message], options: CallOptions) -> ProviderResponse:
        self._require_credentials()
        response = await self.client.chat.completions.create(
            model=options.model,
            messages=self.format_messages(messages),
            temperature=options.temperature,
            max_tokens=options.max_tokens,
        )
        content = ""
        if response.choices and response.choices[0].message:
            content = response.choices[0].message.content or ""
        usage = None
        if response.usage:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )
        return ProviderResponse(content=content, usage=usage)

    async def stream_call(self, messages: List[Message], options: CallOptions) -> AsyncIterator[StreamChunk]:
        self._require_credentials()
        stream = await self.client.chat.completions.create(
            model=options.model,
            messages=self.format_messages(messages),
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            stream=True,
            stream_options={"include_usage": True},
        )
        usage = None
        try:
            async for chunk in stream:
                # Usage is attached to the final chunk when include_usage is enabled
                if getattr(chunk, "usage", None):
                    usage = Usage(
                        prompt_tokens=chunk.usage.prompt_tokens or 0,
                        completion_tokens=chunk.usage.completion_tokens or 0,
                        total_tokens=chunk.usage.total_tokens or 0,
                    )
                if chunk.choices and chunk.choices[0].delta and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        finally:
            await stream.close()
        if usage:
            yield usage


class AnthropicProvider(LLMProvider):
    """Backend for the Anthropic Messages API."""

    def __init__(self, config: ProviderConfig, client: Optional[anthropic.AsyncAnthropic] = None):
        super().__init__(config)
        self._client = client

    def is_available(self) -> bool:
        return self.config.enabled and bool(self.config.api_key)

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._require_credentials()
            self._client = anthropic.AsyncAnthropic(
                api_key=self.config.api_key,
                timeout=self.config.timeout_seconds,
                max_retries=0,
            )
        return self._client

    def format_messages(self, messages: List[Message]) -> Tuple[str, List[Dict[str, Any]]]:
        """Split out the system prompt and convert the rest to content blocks."""
        system_parts: List[str] = []
        formatted: List[Dict[str, Any]] = []
        for message in messages:
            if message.role is Role.SYSTEM:
                system_parts.append(message.text())
                continue
            text = message.text().strip()
            images = [url for url in (to_data_url(p) for p in message.image_payloads()) if url]
            if not images:
                formatted.append({"role": message.role.value, "content": text or " "})
                continue
            blocks: List[Dict[str, Any]] = []
            for url in images:
                if url.startswith("data:"):
                    media_type, data = split_data_url(url)
                    blocks.append({"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}})
                else:
                    blocks.append({"type": "image", "source": {"type": "url", "url": url}})
            if text:
                blocks.append({"type": "text", "text": text})
            formatted.append({"role": message.role.value, "content": blocks})
        return "\n\n".join(p for p in system_parts if p).strip(), formatted

    def _request_kwargs(self, messages: List[Message], options: CallOptions) -> Dict[str, Any]:
        system, formatted = self.format_messages(messages)
        kwargs: Dict[str, Any] = {
            "model": options.model,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
            "messages": formatted,
        }
        if system:
            kwargs["system"] = system
        return kwargs

    async def call(self, messages: List[Message], options: CallOptions) -> ProviderResponse:
        self._require_credentials()
        response = await self.client.messages.create(**self._request_kwargs(messages, options))
        content = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        usage = None
        if response.usage:
            usage = Usage(
                prompt_tokens=response.usage.input_tokens or 0,
                completion_tokens=response.usage.output_tokens or 0,
                total_tokens=(response.usage.input_tokens or 0) + (response.usage.output_tokens or 0),
            )
        return ProviderResponse(content=content, usage=usage)

    async def stream_call(self, messages: List[Message], options: CallOptions) -> AsyncIterator[StreamChunk]:
        self._require_credentials()
        async with self.client.messages.stream(**self._request_kwargs(messages, options)) as stream:
            async for text in stream.text_stream:
                if text:
                    yield text
            final_message = await stream.get_final_message()
        if final_message is not None and final_message.usage:
            input_tokens = final_message.usage.input_tokens or 0
            output_tokens = final_message.usage.output_tokens or 0
            yield Usage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            )


class OllamaProvider(LLMProvider):
    """
    Backend for a local Ollama server through langchain-ollama.

    Availability is probed over HTTP and cached for the configured TTL so the
    availability snapshot stays cheap to recompute.
    """

    def __init__(self, config: ProviderConfig, llm_factory=None):
        super().__init__(config)
        self._llm_factory = llm_factory or self._default_llm
        self._availability_status = ResourceStatus(available=False, error_message="not checked")
        self._last_availability_check: Optional[float] = None

    def _default_llm(self, options: CallOptions) -> ChatOllama:
        return ChatOllama(
            model=options.model,
            base_url=self.config.base_url,
            temperature=options.temperature,
            num_predict=options.max_tokens,
        )

    def check_availability(self) -> ResourceStatus:
        """
        Check if the Ollama server answers.

        Returns:
            ResourceStatus: Current availability status
        """
        try:
            start_time = time.time()
            response = requests.get(f"{self.config.base_url}/api/tags", timeout=2)
            if response.status_code == 200:
                self._availability_status = ResourceStatus(
                    available=True,
                    response_time=time.time() - start_time
                )
            else:
                self._availability_status = ResourceStatus(
                    available=False,
                    error_message=f"Server returned {response.status_code}"
                )
        except requests.RequestException as e:
            self._availability_status = ResourceStatus(available=False, error_message=str(e))

        self._last_availability_check = time.monotonic()
        return self._availability_status

    def is_available(self) -> bool:
        if not self.config.enabled:
            return False
        stale = (
            self._last_availability_check is None
            or time.monotonic() - self._last_availability_check > self.config.availability_ttl_seconds
        )
        if stale:
            self.check_availability()
        return self._availability_status.available

    def format_messages(self, messages: List[Message]) -> List[BaseMessage]:
        """Convert messages to langchain message objects."""
        formatted: List[BaseMessage] = []
        for message in messages:
            text = message.text()
            images = [url for url in (to_data_url(p) for p in message.image_payloads()) if url]
            if message.role is Role.SYSTEM:
                formatted.append(SystemMessage(content=text))
            elif message.role is Role.ASSISTANT:
                formatted.append(AIMessage(content=text))
            elif images and self.supports_vision:
                parts: List[Any] = [{"type": "text", "text": text}] if text else []
                parts.extend({"type": "image_url", "image_url": url} for url in images)
                formatted.append(HumanMessage(content=parts))
            elif images:
                formatted.append(HumanMessage(content=(text + TEXT_ONLY_IMAGE_NOTE).strip()))
            else:
                formatted.append(HumanMessage(content=text or " "))
        return formatted

    @staticmethod
    def _usage(metadata: Optional[Dict[str, int]]) -> Optional[Usage]:
        if not metadata:
            return None
        return Usage(
            prompt_tokens=metadata.get("input_tokens", 0),
            completion_tokens=metadata.get("output_tokens", 0),
            total_tokens=metadata.get("total_tokens", 0),
        )

    def _require_server(self) -> None:
        if not self.config.enabled:
            raise ConfigurationError("Local Ollama provider is disabled. Set OLLAMA_BASE_URL to enable it.",
                                     config_key="OLLAMA_BASE_URL")

    async def call(self, messages: List[Message], options: CallOptions) -> ProviderResponse:
        self._require_server()
        llm = self._llm_factory(options)
        try:
            result = await llm.ainvoke(self.format_messages(messages))
        except (ConnectionError, requests.RequestException) as e:
            raise APIError(f"Ollama request failed: {e}", api_name=self.name) from e
        content = result.content if isinstance(result.content, str) else str(result.content)
        return ProviderResponse(content=content, usage=self._usage(getattr(result, "usage_metadata", None)))

    async def stream_call(self, messages: List[Message], options: CallOptions) -> AsyncIterator[StreamChunk]:
        self._require_server()
        llm = self._llm_factory(options)
        usage = None
        async for chunk in llm.astream(self.format_messages(messages)):
            chunk_usage = self._usage(getattr(chunk, "usage_metadata", None))
            if chunk_usage:
                usage = chunk_usage
            if chunk.content:
                yield chunk.content if isinstance(chunk.content, str) else str(chunk.content)
        if usage:
            yield usage


PROVIDER_KINDS = {
    "openai_compatible": OpenAICompatibleProvider,
    "anthropic": AnthropicProvider,
    "ollama": OllamaProvider,
}


class ProviderRegistry:
    """
    Explicit registry of provider clients, built once at process start and
    passed by reference to the router and executor.
    """

    def __init__(self, providers: Dict[str, LLMProvider]):
        self._providers = dict(providers)
        self.logger = get_logger(__name__)

    @classmethod
    def from_config(cls, config: SystemConfig) -> "ProviderRegistry":
        providers = {}
        for name, provider_config in config.providers.items():
            provider_cls = PROVIDER_KINDS[provider_config.kind]
            providers[name] = provider_cls(provider_config)
        return cls(providers)

    def __contains__(self, name: str) -> bool:
        return name in self._providers

    def names(self) -> List[str]:
        return list(self._providers)

    def get(self, name: str) -> LLMProvider:
        """
        Look up a provider by name.

        Raises:
            ConfigurationError: If no provider with that name is registered
        """
        provider = self._providers.get(name)
        if provider is None:
            raise ConfigurationError(f"Provider {name} not found", config_key=f"providers.{name}")
        return provider

    def availability_snapshot(self) -> Dict[str, bool]:
        """Which providers can currently be tried, keyed by name."""
        snapshot = {}
        for name, provider in self._providers.items():
            try:
                snapshot[name] = provider.is_available()
            except Exception as e:
                self.logger.warning(f"Availability check for {name} failed: {e}")
                snapshot[name] = False
        return snapshot

    def available_names(self) -> List[str]:
        return [name for name, ok in self.availability_snapshot().items() if ok]

    def vision_capable(self) -> Dict[str, bool]:
        return {name: provider.supports_vision for name, provider in self._providers.items()}

    def credential_names(self) -> Dict[str, str]:
        return {name: provider.credential_name for name, provider in self._providers.items()}
