"""
Response Executor: drives the provider call for a routed request, applies the
quality gate and the fallback chain, and writes StreamEvents to a bounded
channel read by the transport.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from ..models import (
    CallOptions, ExecutorState, FallbackChain, Message, RouteDecision, StreamEvent,
    StreamEventType, TaskType, Usage
)
from ..utils import RoutingLogger, get_logger
from ..utils.error_handling import FallbackError, handle_error, is_recoverable_provider_error
from .interfaces import ProviderRegistry
from .quality import QualityAssessor, QualityGate

REPLAY_SEGMENT = re.compile(r"\S+\s*|\s+")

_CLOSE = object()


class EventChannel:
    """
    Bounded single-producer/single-consumer channel of StreamEvents.

    ``send`` blocks while the channel is full, so a slow client slows the
    producer down instead of growing a buffer.
    """

    def __init__(self, maxsize: int = 64):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._closed = False
        self.sent_count = 0
        self.metadata_sent = False
        self.error_sent = False
        self.done_sent = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: StreamEvent) -> None:
        if self._closed:
            raise RuntimeError("Cannot send on a closed channel")
        if event.type is StreamEventType.METADATA:
            self.metadata_sent = True
        elif event.type is StreamEventType.ERROR:
            self.error_sent = True
        elif event.type is StreamEventType.DONE:
            self.done_sent = True
        self.sent_count += 1
        await self._queue.put(event)

    def close(self) -> None:
        """Mark the channel closed; the consumer drains what is queued, then stops."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSE)
        except asyncio.QueueFull:
            pass

    async def receive(self) -> Optional[StreamEvent]:
        """Next event, or None once the channel is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSE:
            return None
        return item


Producer = Callable[[EventChannel], Awaitable[None]]


class EventStream:
    """
    Async iterator over the events written by a producer task.

    The producer starts on first iteration. ``aclose()`` from the consumer
    side cancels the producer, which cancels any tool or provider call it is
    awaiting. If the producer fails before sending anything, ``metadata`` is
    sent ahead of the error so the stream still opens with a metadata event.
    """

    def __init__(self, producer: Producer, channel_size: int = 64,
                 metadata: Optional[Dict[str, Any]] = None):
        self._producer = producer
        self._metadata = dict(metadata or {})
        self._channel = EventChannel(channel_size)
        self._task: Optional[asyncio.Task] = None
        self._finished = False
        self.logger = get_logger(__name__)

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._finished:
            raise StopAsyncIteration
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        event = await self._channel.receive()
        if event is None:
            self._finished = True
            await self._task
            raise StopAsyncIteration
        return event

    async def _run(self) -> None:
        try:
            await self._producer(self._channel)
        except Exception as e:
            # The producer must always finish with error + done
            self.logger.error(f"Event producer failed: {e}", exc_info=e)
            if not self._channel.done_sent:
                if self._channel.sent_count == 0:
                    await self._channel.send(StreamEvent.metadata(**self._metadata))
                if not self._channel.error_sent:
                    error = handle_error(e)
                    await self._channel.send(StreamEvent.error(error.message, code=error.error_code))
                await self._channel.send(StreamEvent.done())
        finally:
            self._channel.close()

    async def aclose(self) -> None:
        """Stop consuming and cancel the producer."""
        self._finished = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def collect(self) -> List[StreamEvent]:
        """Drain the stream into a list."""
        return [event async for event in self]


@dataclass
class ExecutionPlan:
    """Everything the executor needs for one request."""
    primary: RouteDecision
    chain: FallbackChain
    task_type: TaskType
    messages: List[Message]
    query: str = ""
    tools_used: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def candidates(self) -> List[RouteDecision]:
        """Primary followed by the chain, without repeated provider/model pairs."""
        return list(FallbackChain([self.primary, *self.chain]))


class _Attempt:
    """Per-request bookkeeping for one executor run."""

    def __init__(self, plan: ExecutionPlan):
        self.plan = plan
        self.state = ExecutorState.ROUTE_SELECTED
        self.attempted: Set[Tuple[str, str]] = set()
        self.last_decision: RouteDecision = plan.primary
        self.fallback_used = False
        self.discarded_usage: Optional[Tuple[RouteDecision, Usage]] = None
        self.quality: Optional[Dict[str, Any]] = None


class ResponseExecutor:
    """
    Runs the ROUTE_SELECTED -> PRIMARY_ATTEMPT -> QUALITY_CHECK -> STREAMING -> DONE
    state machine for one request, with ERROR reachable from any state.

    Guarantees on the events written to the channel: exactly one metadata
    event first, at most one error event, and a final done event. Each
    provider/model pair is attempted at most once, strictly in chain order.
    """

    def __init__(self, registry: ProviderRegistry, quality_gate: Optional[QualityGate] = None,
                 assessor: Optional[QualityAssessor] = None, replay_delay: Optional[float] = None):
        self.registry = registry
        self.quality_gate = quality_gate or QualityGate()
        self.assessor = assessor or QualityAssessor(self.quality_gate.policy())
        self.replay_delay = self.quality_gate.config.replay_delay_seconds if replay_delay is None else replay_delay
        self.logger = get_logger(__name__)
        self.routing_logger = RoutingLogger()

    async def execute(self, plan: ExecutionPlan, channel: EventChannel) -> None:
        """
        Produce the response events for a plan.

        Args:
            plan: Routed request with its final message list
            channel: Channel read by the transport
        """
        attempt = _Attempt(plan)
        try:
            remaining = plan.candidates()
            replayed = False
            if self.quality_gate.applies(plan.task_type, plan.primary.provider):
                replayed = await self._quality_gated_attempt(attempt, channel)
                remaining = remaining[1:]
            if not replayed:
                await self._stream_chain(attempt, remaining, channel)
        except Exception as e:
            self._transition(attempt, ExecutorState.ERROR)
            decision = attempt.last_decision
            error = handle_error(e, self.routing_logger, {"provider": decision.provider, "model": decision.model})
            if not channel.metadata_sent:
                await channel.send(self._metadata(attempt, decision))
            if not channel.error_sent:
                await channel.send(StreamEvent.error(
                    error.message,
                    code=error.error_code,
                    provider=decision.provider,
                    model=decision.model,
                ))

        await channel.send(StreamEvent.done())
        self._transition(attempt, ExecutorState.DONE)

    async def _quality_gated_attempt(self, attempt: _Attempt, channel: EventChannel) -> bool:
        """
        Buffered call to the primary plus assessment.

        Returns True when the buffered response was accepted and replayed.
        """
        plan = attempt.plan
        decision = self.quality_gate.reduced(plan.primary)
        attempt.attempted.add(plan.primary.key)
        attempt.last_decision = plan.primary
        self._transition(attempt, ExecutorState.PRIMARY_ATTEMPT)

        try:
            provider = self.registry.get(decision.provider)
            response = await provider.call(plan.messages, CallOptions.from_decision(decision))
        except Exception as e:
            if not is_recoverable_provider_error(e):
                raise
            self.routing_logger.log_attempt_abandoned(f"{decision.provider}/{decision.model}", str(e))
            attempt.fallback_used = True
            return False

        self._transition(attempt, ExecutorState.QUALITY_CHECK)
        assessment = self.assessor.assess(plan.query, response.content, plan.task_type)
        attempt.quality = {
            "score": assessment.score,
            "confidence": assessment.confidence,
            "reasons": list(assessment.reasons),
        }

        if not assessment.should_fallback:
            await channel.send(self._metadata(attempt, plan.primary))
            self._transition(attempt, ExecutorState.STREAMING)
            await self._replay(response.content, channel)
            if response.usage:
                await channel.send(StreamEvent.usage(response.usage))
            return True

        next_target = next((d for d in plan.chain if d.key not in attempt.attempted), None)
        self.routing_logger.log_fallback(
            f"{plan.primary.provider}/{plan.primary.model}",
            f"{next_target.provider}/{next_target.model}" if next_target else "none",
            f"quality score {assessment.score} below threshold: {'; '.join(assessment.reasons)}",
        )
        attempt.fallback_used = True
        if response.usage:
            attempt.discarded_usage = (plan.primary, response.usage)
        return False

    async def _stream_chain(self, attempt: _Attempt, decisions: List[RouteDecision],
                            channel: EventChannel) -> None:
        """Walk the decisions in order until one starts streaming."""
        last_error: Optional[BaseException] = None
        for decision in decisions:
            if decision.key in attempt.attempted:
                continue
            attempt.attempted.add(decision.key)
            if decision.key != attempt.plan.primary.key:
                attempt.fallback_used = True
            attempt.last_decision = decision
            self._transition(attempt, ExecutorState.PRIMARY_ATTEMPT)

            stream: Optional[AsyncIterator] = None
            try:
                provider = self.registry.get(decision.provider)
                stream = provider.stream_call(attempt.plan.messages, CallOptions.from_decision(decision))
                first = await stream.__anext__()
            except StopAsyncIteration:
                first = None
            except asyncio.CancelledError:
                if stream is not None:
                    await stream.aclose()
                raise
            except Exception as e:
                if stream is not None:
                    await stream.aclose()
                if not is_recoverable_provider_error(e):
                    raise
                self.routing_logger.log_attempt_abandoned(f"{decision.provider}/{decision.model}", str(e))
                last_error = e
                continue

            try:
                await self._relay(attempt, decision, first, stream, channel)
            finally:
                await stream.aclose()
            return

        targets = [f"{d.provider}/{d.model}" for d in decisions if d.key in attempt.attempted]
        message = "All providers failed"
        if last_error is not None:
            message = f"{message}. Last error: {last_error}"
        raise FallbackError(message, attempted_targets=targets)

    async def _relay(self, attempt: _Attempt, decision: RouteDecision, first: Any,
                     stream: AsyncIterator, channel: EventChannel) -> None:
        await channel.send(self._metadata(attempt, decision))
        if attempt.discarded_usage is not None:
            discarded_decision, usage = attempt.discarded_usage
            await channel.send(StreamEvent.fallback_usage(usage, discarded_decision.provider, discarded_decision.model))
        self._transition(attempt, ExecutorState.STREAMING)

        usage: Optional[Usage] = None
        try:
            chunk = first
            while chunk is not None:
                if isinstance(chunk, Usage):
                    usage = chunk
                elif chunk:
                    await channel.send(StreamEvent.content(chunk))
                try:
                    chunk = await stream.__anext__()
                except StopAsyncIteration:
                    chunk = None
        except Exception as e:
            # Content already delivered stays delivered; no fallback once streaming began
            self.logger.error(f"Stream from {decision.provider}/{decision.model} failed mid-response: {e}")
            await channel.send(StreamEvent.error(
                f"Stream interrupted: {e}", provider=decision.provider, model=decision.model
            ))
            self._transition(attempt, ExecutorState.ERROR)
            return

        if usage is not None:
            await channel.send(StreamEvent.usage(usage))

    async def _replay(self, content: str, channel: EventChannel) -> None:
        """Deliver buffered text as incremental content events."""
        for segment in REPLAY_SEGMENT.findall(content):
            await channel.send(StreamEvent.content(segment))
            if self.replay_delay > 0:
                await asyncio.sleep(self.replay_delay)

    def _metadata(self, attempt: _Attempt, decision: RouteDecision) -> StreamEvent:
        plan = attempt.plan
        data: Dict[str, Any] = {
            "provider": decision.provider,
            "model": decision.model,
            "taskType": plan.task_type.value,
            "toolsUsed": list(plan.tools_used),
            "fallbackUsed": attempt.fallback_used,
            "costPer1M": decision.cost_per_1m,
        }
        if attempt.fallback_used:
            data["originalProvider"] = plan.primary.provider
            data["originalModel"] = plan.primary.model
        if attempt.quality is not None:
            data["quality"] = attempt.quality
        data.update(plan.metadata)
        return StreamEvent.metadata(**data)

    def _transition(self, attempt: _Attempt, state: ExecutorState) -> None:
        self.logger.debug(f"Executor state {attempt.state.value} -> {state.value}")
        attempt.state = state
