"""
Pytest configuration and shared fakes for the Chat Orchestrator test suite.

Async tests run under pytest-asyncio (auto mode is set in pyproject.toml).
"""
import asyncio
import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest

from chat_orchestrator.core.executor import EventStream
from chat_orchestrator.core.interfaces import LLMProvider, ProviderRegistry
from chat_orchestrator.models import ProviderConfig, ProviderResponse, Usage

STANDARD_PROVIDERS = ("openai", "anthropic", "groq", "perplexity", "openrouter", "ollama")
VISION_PROVIDERS = ("openai", "anthropic", "openrouter")


class FakeProvider(LLMProvider):
    """Scripted provider used in place of a real backend."""

    def __init__(self, name, supports_vision=False, available=True, content="", chunks=None,
                 usage=None, call_error=None, stream_error=None, fail_after=None, default_model=None):
        super().__init__(ProviderConfig(
            name=name,
            display_name=name.title(),
            env_key_name=f"{name.upper()}_API_KEY",
            api_key="test-key",
            default_model=default_model or f"{name}-default",
            supports_vision=supports_vision,
        ))
        self.available = available
        self.content = content
        self.chunks = list(chunks or [])
        self.usage = usage
        self.call_error = call_error
        self.stream_error = stream_error
        self.fail_after = fail_after
        self.calls = []
        self.stream_calls = []
        self.received_messages = []

    def is_available(self):
        return self.available

    async def call(self, messages, options):
        self.calls.append(options)
        self.received_messages.append(list(messages))
        if self.call_error is not None:
            raise self.call_error
        return ProviderResponse(content=self.content, usage=self.usage)

    async def stream_call(self, messages, options):
        self.stream_calls.append(options)
        self.received_messages.append(list(messages))
        if self.stream_error is not None and self.fail_after is None:
            raise self.stream_error
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index == self.fail_after:
                raise self.stream_error
            yield chunk
        if self.usage is not None:
            yield self.usage


class SlowProvider(FakeProvider):
    """Yields one chunk, then blocks until cancelled."""

    def __init__(self, name, **kwargs):
        super().__init__(name, **kwargs)
        self.cancelled = False

    async def stream_call(self, messages, options):
        self.stream_calls.append(options)
        yield "first"
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        yield "never"


def build_registry(available=("openai", "anthropic", "groq", "perplexity", "openrouter"), **overrides):
    """Registry of fakes for every standard provider; overrides replace individual fakes."""
    providers = {}
    for name in STANDARD_PROVIDERS:
        providers[name] = overrides.get(name) or FakeProvider(
            name, supports_vision=name in VISION_PROVIDERS, available=name in available
        )
    return ProviderRegistry(providers)


async def collect_events(executor, plan):
    """Run an executor plan through an EventStream and return every event."""
    async def produce(channel):
        await executor.execute(plan, channel)

    return await EventStream(produce).collect()


@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def usage():
    return Usage(prompt_tokens=12, completion_tokens=8, total_tokens=20)
