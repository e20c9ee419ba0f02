"""
Chat pipeline: composes classification, tool dispatch, routing, context
optimization and response execution for one request.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from ..models import (
    AgentType, CapabilityFlags, ChatRequest, ClassificationFlags, FallbackChain, Message,
    OperatingMode, RetrievedChunk, Role, RouteDecision, SystemConfig, TaskType, ToolResult
)
from ..utils import get_logger
from ..utils.error_handling import RequestValidationError
from .classifier import TaskClassifier, estimate_coding_complexity, has_code_fence, last_user_text
from .context import ContextOptimizer, compute_budget, conversation_has_images
from .executor import EventChannel, EventStream, ExecutionPlan, ResponseExecutor
from .interfaces import ProviderRegistry
from .prompts import build_system_prompt
from .quality import QualityAssessor, QualityGate
from .router import ModelRouter
from .tools import ToolContext, ToolOrchestrator

RAG_RESULTS = 5
RAG_MIN_SCORE = 0.5


class Retriever(ABC):
    """Embedding-based retrieval of relevant document chunks."""

    @abstractmethod
    async def search(self, query: str, k: int = RAG_RESULTS, min_score: float = RAG_MIN_SCORE) -> List[RetrievedChunk]:
        """Return up to k chunks scoring at least min_score, best first."""


@dataclass
class RequestPlan:
    """Decisions made for a request before any I/O."""
    request: ChatRequest
    conversation: List[Message]
    query: str
    task_type: TaskType
    capability_flags: CapabilityFlags
    tools: List[str]
    primary: RouteDecision
    chain: FallbackChain
    availability: Dict[str, bool] = field(default_factory=dict)


class ChatPipeline:
    """
    Per-request orchestration.

    ``plan`` is synchronous; its only I/O is the cached provider availability
    probe. Rejections (invalid input, missing vision capability, no provider)
    surface here as OrchestratorError subclasses before any stream is opened.
    ``stream`` returns an EventStream whose producer runs tools, retrieval,
    context optimization and the executor.
    """

    def __init__(self, config: SystemConfig, registry: ProviderRegistry,
                 classifier: Optional[TaskClassifier] = None,
                 router: Optional[ModelRouter] = None,
                 optimizer: Optional[ContextOptimizer] = None,
                 tools: Optional[ToolOrchestrator] = None,
                 executor: Optional[ResponseExecutor] = None,
                 retriever: Optional[Retriever] = None):
        self.config = config
        self.registry = registry
        self.classifier = classifier or TaskClassifier()
        self.router = router or ModelRouter(registry)
        self.optimizer = optimizer or ContextOptimizer(config.context)
        self.tools = tools or ToolOrchestrator(config.tools)
        if executor is None:
            gate = QualityGate(config.quality_gate)
            executor = ResponseExecutor(registry, gate, QualityAssessor(gate.policy()))
        self.executor = executor
        self.retriever = retriever
        self.logger = get_logger(__name__)

    def plan(self, request: ChatRequest) -> RequestPlan:
        """
        Classify, detect tools and route a request.

        Args:
            request: Inbound chat request

        Returns:
            RequestPlan for the request

        Raises:
            RequestValidationError: If the request carries no conversation
            VisionUnavailableError: If images are attached and no vision-capable provider is available
            ResourceUnavailableError: If no provider is available
        """
        conversation = [m for m in request.messages if m.role is not Role.SYSTEM]
        if not conversation:
            raise RequestValidationError("Messages are required", field_name="messages")

        conversation = self._attach_image_files(conversation, request)
        query = last_user_text(conversation)
        has_images = conversation_has_images(conversation)
        has_code = has_code_fence(query)
        file_count = len(request.files)

        task_type = self.classifier.classify(conversation, ClassificationFlags(
            has_images=has_images,
            has_code=has_code,
            file_count=file_count,
            user_override=request.task_override,
            mode=request.mode,
            deep_web_search=request.deep_web_search,
        ))
        tools = self.tools.detect(query, request.files)

        complexity = 0.0
        if request.agent is AgentType.CODE or request.mode is OperatingMode.CODING:
            complexity = estimate_coding_complexity(query, has_code, file_count)
        capability_flags = CapabilityFlags(
            has_images=has_images,
            has_code=has_code,
            file_count=file_count,
            mode=request.mode,
            deep_web_search=request.deep_web_search,
            complexity=complexity,
        )

        availability = self.registry.availability_snapshot()
        primary, chain = self.router.route(
            task_type, capability_flags, override=request.user_override,
            agent=request.agent, availability=availability,
        )
        self.logger.info(
            f"Planned {task_type.value} request -> {primary.provider}/{primary.model} "
            f"(tools: {', '.join(tools) or 'none'}, fallbacks: {len(chain)})"
        )
        return RequestPlan(
            request=request,
            conversation=conversation,
            query=query,
            task_type=task_type,
            capability_flags=capability_flags,
            tools=tools,
            primary=primary,
            chain=chain,
            availability=availability,
        )

    def stream(self, request: ChatRequest, plan: Optional[RequestPlan] = None) -> EventStream:
        """
        Open the response stream for a request.

        Planning happens immediately so rejections raise here; everything
        else runs in the stream's producer task.
        """
        plan = plan or self.plan(request)

        async def produce(channel: EventChannel) -> None:
            await self.run(plan, channel)

        return EventStream(produce, channel_size=self.config.streaming.channel_size, metadata={
            "provider": plan.primary.provider,
            "model": plan.primary.model,
            "taskType": plan.task_type.value,
            "toolsUsed": list(plan.tools),
            "fallbackUsed": False,
        })

    async def run(self, plan: RequestPlan, channel: EventChannel) -> None:
        """Run tools, retrieval and optimization, then hand off to the executor."""
        request = plan.request

        tool_result = ToolResult()
        if plan.tools:
            tool_result = await self.tools.execute(
                plan.tools, ToolContext(user_message=plan.query, files=list(request.files))
            )
            for name, error in tool_result.failed().items():
                self.logger.warning(f"Tool {name} failed: {error.error}")

        chunks = await self._retrieve(plan.query) if request.use_rag else []

        budget = compute_budget(plan.primary, plan.capability_flags.has_images, self.config.context)
        optimized = self.optimizer.optimize_turn(plan.conversation, budget)

        system_prompt = build_system_prompt(
            plan.task_type,
            mode=request.mode,
            chunks=chunks,
            tool_result=tool_result,
            personal_info_context=request.personal_info_context,
            memory_context=request.memory_context,
            summary=optimized.summary,
        )
        messages = [Message(role=Role.SYSTEM, content=system_prompt)] + optimized.messages

        metadata: Dict[str, Any] = {
            "context": {
                "hot": optimized.hot_count,
                "warm": optimized.warm_count,
                "cold": optimized.cold_count,
                "dropped": optimized.dropped_count,
                "estimatedTokens": optimized.estimated_tokens,
                "budget": budget.tokens,
            },
        }
        if tool_result.failed():
            metadata["toolErrors"] = {name: e.to_dict() for name, e in tool_result.failed().items()}
        if chunks:
            metadata["ragChunks"] = len(chunks)

        await self.executor.execute(ExecutionPlan(
            primary=plan.primary,
            chain=plan.chain,
            task_type=plan.task_type,
            messages=messages,
            query=plan.query,
            tools_used=list(plan.tools),
            metadata=metadata,
        ), channel)

    def providers_status(self) -> List[Dict[str, Any]]:
        """Availability and capabilities of every registered provider."""
        snapshot = self.registry.availability_snapshot()
        status = []
        for name in self.registry.names():
            provider = self.registry.get(name)
            status.append({
                "name": name,
                "displayName": provider.display_name,
                "available": snapshot.get(name, False),
                "supportsVision": provider.supports_vision,
                "defaultModel": provider.config.default_model,
                "credential": provider.credential_name,
            })
        return status

    async def _retrieve(self, query: str) -> List[RetrievedChunk]:
        if self.retriever is None or not query:
            return []
        try:
            return list(await self.retriever.search(query, k=RAG_RESULTS, min_score=RAG_MIN_SCORE))
        except Exception as e:
            self.logger.warning(f"Document retrieval failed, continuing without it: {e}")
            return []

    @staticmethod
    def _attach_image_files(conversation: List[Message], request: ChatRequest) -> List[Message]:
        """Move attached image files onto the last user message."""
        payloads = tuple(f.payload for f in request.files if f.is_image and f.payload)
        if not payloads:
            return conversation
        for index in range(len(conversation) - 1, -1, -1):
            if conversation[index].role is Role.USER:
                message = conversation[index]
                updated = list(conversation)
                updated[index] = replace(message, images=message.images + payloads)
                return updated
        return conversation
