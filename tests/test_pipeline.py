"""
Tests for chat_orchestrator/core/pipeline.py
End-to-end request flows over fake providers and stub tools.
"""

import pytest

from conftest import FakeProvider, build_registry

from chat_orchestrator.core.context import ContextOptimizer
from chat_orchestrator.core.pipeline import ChatPipeline, Retriever
from chat_orchestrator.core.tools import WEB_SEARCH, Tool, ToolOrchestrator
from chat_orchestrator.models import (
    ChatRequest, FileAttachment, Message, RetrievedChunk, Role, StreamEventType, SystemConfig, TaskType
)
from chat_orchestrator.utils.error_handling import RequestValidationError, VisionUnavailableError

REASONING_QUESTION = "Why is the vacation allowance 25 days?"


class StubSearchTool(Tool):
    name = WEB_SEARCH

    async def run(self, context):
        return {"results": [{"title": "Forecast", "url": "https://weather.example", "description": "Sunny, 21C"}]}


class StubRetriever(Retriever):
    def __init__(self, chunks=None, error=None):
        self.chunks = chunks or []
        self.error = error
        self.queries = []

    async def search(self, query, k=5, min_score=0.5):
        self.queries.append((query, k, min_score))
        if self.error is not None:
            raise self.error
        return self.chunks


def make_pipeline(registry, retriever=None):
    config = SystemConfig()
    tools = ToolOrchestrator(config.tools, tools=[StubSearchTool(config.tools)])
    return ChatPipeline(config, registry, tools=tools, retriever=retriever)


def user_request(text, **kwargs):
    return ChatRequest(messages=[Message(role=Role.USER, content=text)], **kwargs)


def system_messages(messages):
    return [m for m in messages if m.role is Role.SYSTEM]


class TestWebSearchFlow:
    """Test a search-backed question from request to events."""

    async def test_search_results_reach_research_provider(self):
        perplexity = FakeProvider("perplexity", chunks=["Sunny ", "and warm."])
        pipeline = make_pipeline(build_registry(perplexity=perplexity))
        events = await pipeline.stream(user_request("What's today's weather in Paris?")).collect()

        metadata = events[0]
        assert metadata.type is StreamEventType.METADATA
        assert metadata.data["provider"] == "perplexity"
        assert metadata.data["taskType"] == "web_search"
        assert metadata.data["toolsUsed"] == [WEB_SEARCH]
        assert metadata.data["context"]["hot"] == 1
        assert events[-1].type is StreamEventType.DONE

        sent = perplexity.received_messages[0]
        assert len(system_messages(sent)) == 1
        assert sent[0].role is Role.SYSTEM
        assert "[Tool Results]" in sent[0].content
        assert "Forecast" in sent[0].content
        assert sent[-1].content == "What's today's weather in Paris?"


class TestPlanning:
    """Test rejections and decisions made before streaming."""

    def test_images_without_vision_provider_are_rejected(self):
        groq = FakeProvider("groq")
        pipeline = make_pipeline(build_registry(available=("groq",), groq=groq))
        request = ChatRequest(messages=[
            Message(role=Role.USER, content="What is in this photo?", images=("data:image/png;base64,iVBORw0KGgo=",)),
        ])

        with pytest.raises(VisionUnavailableError) as exc_info:
            pipeline.plan(request)
        assert "OPENAI_API_KEY" in exc_info.value.required_credentials
        assert groq.calls == [] and groq.stream_calls == []

    def test_image_files_are_attached_to_last_user_message(self):
        pipeline = make_pipeline(build_registry())
        request = user_request(
            "Describe this",
            files=[FileAttachment(name="cat.png", type="image/png", data="data:image/png;base64,AAAA")],
        )
        plan = pipeline.plan(request)

        assert plan.task_type is TaskType.VISION
        assert plan.capability_flags.has_images
        assert plan.conversation[-1].images == ("data:image/png;base64,AAAA",)
        assert plan.primary.provider in ("openai", "anthropic", "openrouter")

    def test_empty_conversation_is_rejected(self):
        pipeline = make_pipeline(build_registry())
        with pytest.raises(RequestValidationError):
            pipeline.plan(ChatRequest(messages=[]))
        with pytest.raises(RequestValidationError):
            pipeline.plan(ChatRequest(messages=[Message(role=Role.SYSTEM, content="be terse")]))

    def test_task_override_is_respected(self):
        pipeline = make_pipeline(build_registry())
        plan = pipeline.plan(user_request("hello", task_override=TaskType.DATA_ANALYSIS))
        assert plan.task_type is TaskType.DATA_ANALYSIS
        assert plan.primary.provider == "openai"

    def test_providers_status(self):
        pipeline = make_pipeline(build_registry(available=("openai",)))
        status = {entry["name"]: entry for entry in pipeline.providers_status()}
        assert status["openai"]["available"] is True
        assert status["openai"]["supportsVision"] is True
        assert status["groq"]["available"] is False
        assert status["groq"]["credential"] == "GROQ_API_KEY"


class TestPromptAssembly:
    """Test what the provider receives."""

    async def test_client_system_messages_are_replaced(self):
        openai = FakeProvider("openai", supports_vision=True, chunks=["ok"])
        pipeline = make_pipeline(build_registry(openai=openai))
        request = ChatRequest(messages=[
            Message(role=Role.SYSTEM, content="You are a pirate"),
            Message(role=Role.USER, content=REASONING_QUESTION),
        ], personal_info_context="\n\nUser name: Sam")
        await pipeline.stream(request).collect()

        sent = openai.received_messages[0]
        assert len(system_messages(sent)) == 1
        assert "pirate" not in sent[0].content
        assert sent[0].content.endswith("User name: Sam")

    async def test_large_image_reaches_vision_provider(self):
        openai = FakeProvider("openai", supports_vision=True, chunks=["A cat."])
        pipeline = make_pipeline(build_registry(available=("openai",), openai=openai))
        photo = "data:image/jpeg;base64," + "A" * 60000
        request = ChatRequest(
            messages=[
                Message(role=Role.USER, content="Earlier question " + "q" * 3000),
                Message(role=Role.ASSISTANT, content="Earlier answer " + "a" * 3000),
                Message(role=Role.USER, content="What is in this picture?"),
            ],
            files=[FileAttachment(name="photo.jpg", type="image/jpeg", data=photo)],
        )
        events = await pipeline.stream(request).collect()

        sent = openai.received_messages[0]
        assert sent[-1].has_images
        assert sent[-1].images == (photo,)
        assert sent[-1].content == "What is in this picture?"
        assert events[0].data["provider"] == "openai"
        assert events[-1].type is StreamEventType.DONE

    async def test_retrieved_chunks_are_included(self):
        openai = FakeProvider("openai", supports_vision=True, chunks=["ok"])
        retriever = StubRetriever([RetrievedChunk("handbook.pdf", "Vacation allowance is 25 days.", 0.91)])
        pipeline = make_pipeline(build_registry(openai=openai), retriever=retriever)
        events = await pipeline.stream(user_request(REASONING_QUESTION, use_rag=True)).collect()

        assert events[0].data["ragChunks"] == 1
        assert retriever.queries == [(REASONING_QUESTION, 5, 0.5)]
        system = openai.received_messages[0][0].content
        assert "Relevant context from uploaded documents:" in system
        assert "[Document 1: handbook.pdf]" in system

    async def test_retrieval_failure_is_ignored(self):
        openai = FakeProvider("openai", supports_vision=True, chunks=["ok"])
        retriever = StubRetriever(error=ConnectionError("vector store down"))
        pipeline = make_pipeline(build_registry(openai=openai), retriever=retriever)
        events = await pipeline.stream(user_request(REASONING_QUESTION, use_rag=True)).collect()

        assert "ragChunks" not in events[0].data
        assert [e.type for e in events][-2:] == [StreamEventType.CONTENT, StreamEventType.DONE]

    async def test_retriever_not_called_without_rag(self):
        openai = FakeProvider("openai", supports_vision=True, chunks=["ok"])
        retriever = StubRetriever()
        pipeline = make_pipeline(build_registry(openai=openai), retriever=retriever)
        await pipeline.stream(user_request(REASONING_QUESTION)).collect()
        assert retriever.queries == []


class BrokenOptimizer(ContextOptimizer):
    def optimize_turn(self, messages, budget):
        raise RuntimeError("optimizer crashed")


class TestEarlyFailure:
    """Test failures before the executor starts."""

    async def test_stream_still_opens_with_metadata(self):
        openai = FakeProvider("openai", supports_vision=True, chunks=["ok"])
        registry = build_registry(openai=openai)
        pipeline = ChatPipeline(SystemConfig(), registry, optimizer=BrokenOptimizer())
        events = await pipeline.stream(user_request(REASONING_QUESTION)).collect()

        assert [e.type for e in events] == [StreamEventType.METADATA, StreamEventType.ERROR, StreamEventType.DONE]
        assert events[0].data["provider"] == "openai"
        assert events[0].data["fallbackUsed"] is False
        assert events[1].data["error"] == "optimizer crashed"
        assert openai.stream_calls == []
