"""
Core data models for request processing, routing and streaming.
"""

import json
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from .enums import AgentType, OperatingMode, Role, StreamEventType, TaskType


@dataclass(frozen=True)
class ContentPart:
    """One part of a multimodal message: either text or an image payload."""
    type: str
    text: str = ""
    image_url: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContentPart":
        part_type = data.get("type", "text")
        if part_type in ("image_url", "image"):
            url = data.get("image_url") or ""
            if isinstance(url, dict):
                url = url.get("url", "")
            source = data.get("source")
            if not url and isinstance(source, dict) and source.get("data"):
                url = f"data:{source.get('media_type', 'image/png')};base64,{source['data']}"
            return cls(type="image", image_url=url)
        return cls(type="text", text=data.get("text") or "")


@dataclass(frozen=True)
class Message:
    """A conversation message. Immutable once appended to a conversation."""
    role: Role
    content: Union[str, Tuple[ContentPart, ...]] = ""
    timestamp: float = field(default_factory=time.time)
    images: Tuple[str, ...] = ()

    def text(self) -> str:
        """Text of the message with image parts removed."""
        if isinstance(self.content, str):
            return self.content
        return " ".join(part.text for part in self.content if part.type == "text" and part.text)

    def image_payloads(self) -> List[str]:
        """All image payloads carried by the message (parts first, then attachments)."""
        payloads: List[str] = []
        if not isinstance(self.content, str):
            payloads.extend(part.image_url for part in self.content if part.type == "image" and part.image_url)
        payloads.extend(img for img in self.images if img and img.strip())
        return payloads

    @property
    def has_images(self) -> bool:
        return bool(self.image_payloads())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        role = Role(data.get("role", "user"))
        raw_content = data.get("content", "")
        if isinstance(raw_content, list):
            content: Union[str, Tuple[ContentPart, ...]] = tuple(
                ContentPart.from_dict(part) for part in raw_content if isinstance(part, dict)
            )
        else:
            content = "" if raw_content is None else str(raw_content)

        timestamp = data.get("timestamp")
        if timestamp is None:
            timestamp = time.time()
        else:
            timestamp = float(timestamp)
            if timestamp > 1e11:  # milliseconds
                timestamp = timestamp / 1000.0

        images = tuple(img for img in (data.get("images") or []) if isinstance(img, str))
        return cls(role=role, content=content, timestamp=timestamp, images=images)


@dataclass(frozen=True)
class FileAttachment:
    """A file attached to the inbound request."""
    name: str = "file"
    type: str = "application/octet-stream"
    data: Optional[str] = None
    content: Optional[str] = None
    path: Optional[str] = None
    url: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return (self.type or "").startswith("image/")

    @property
    def payload(self) -> Optional[str]:
        return self.data or self.content

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileAttachment":
        return cls(
            name=data.get("name") or "file",
            type=data.get("type") or "application/octet-stream",
            data=data.get("data"),
            content=data.get("content"),
            path=data.get("path"),
            url=data.get("url"),
        )


@dataclass
class ChatRequest:
    """Inbound chat request handed to the pipeline by the transport."""
    messages: List[Message]
    files: List[FileAttachment] = field(default_factory=list)
    user_override: Optional[str] = None
    use_rag: bool = False
    mode: OperatingMode = OperatingMode.PRIMARY
    deep_web_search: bool = False
    personal_info_context: str = ""
    memory_context: str = ""
    agent: AgentType = AgentType.CHAT
    task_override: Optional[TaskType] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatRequest":
        """Build a request from a camelCase or snake_case payload."""
        def pick(*keys, default=None):
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        task_override = pick("taskType", "task_type")
        return cls(
            messages=[Message.from_dict(m) for m in pick("messages", default=[])],
            files=[FileAttachment.from_dict(f) for f in pick("files", default=[])],
            user_override=pick("userOverride", "user_override"),
            use_rag=bool(pick("useRAG", "use_rag", default=False)),
            mode=OperatingMode(pick("mode", default="primary")),
            deep_web_search=bool(pick("deepWebSearch", "deep_web_search", default=False)),
            personal_info_context=pick("personalInfoContext", "personal_info_context", default=""),
            memory_context=pick("memoryContext", "memory_context", default=""),
            agent=AgentType(str(pick("agent", default="chat")).replace("-", "_")),
            task_override=TaskType.parse(task_override) if task_override else None,
        )


@dataclass(frozen=True)
class ClassificationFlags:
    """Signals handed to the task classifier alongside the messages."""
    has_images: bool = False
    has_code: bool = False
    file_count: int = 0
    user_override: Optional[TaskType] = None
    mode: OperatingMode = OperatingMode.PRIMARY
    deep_web_search: bool = False


@dataclass(frozen=True)
class CapabilityFlags:
    """Capability requirements the router must satisfy."""
    has_images: bool = False
    has_code: bool = False
    file_count: int = 0
    mode: OperatingMode = OperatingMode.PRIMARY
    deep_web_search: bool = False
    complexity: float = 0.0


@dataclass(frozen=True)
class RouteDecision:
    """Provider and model configuration for one request attempt."""
    provider: str
    model: str
    temperature: float = 0.7
    max_tokens: int = 4096
    cost_per_1m: float = 0.0

    @property
    def key(self) -> Tuple[str, str]:
        return (self.provider, self.model)

    def with_max_tokens(self, max_tokens: int) -> "RouteDecision":
        return replace(self, max_tokens=max_tokens)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "temperature": self.temperature,
            "maxTokens": self.max_tokens,
            "costPer1M": self.cost_per_1m,
        }


class FallbackChain:
    """Ordered alternatives tried after the primary; never holds a provider/model pair twice."""

    def __init__(self, decisions: Iterable[RouteDecision] = ()):
        self._decisions: List[RouteDecision] = []
        seen = set()
        for decision in decisions:
            if decision.key in seen:
                continue
            seen.add(decision.key)
            self._decisions.append(decision)

    def __iter__(self) -> Iterator[RouteDecision]:
        return iter(self._decisions)

    def __len__(self) -> int:
        return len(self._decisions)

    def __getitem__(self, index: int) -> RouteDecision:
        return self._decisions[index]

    def __repr__(self) -> str:
        return f"FallbackChain({[f'{d.provider}/{d.model}' for d in self._decisions]})"

    def keys(self) -> List[Tuple[str, str]]:
        return [d.key for d in self._decisions]


@dataclass(frozen=True)
class ToolError:
    """Marker recorded in a ToolResult slot when the tool was invoked and failed."""
    error: str
    error_type: str = "Exception"

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.error, "error_type": self.error_type}


class ToolResult:
    """
    Outputs of the tools that ran for one request.

    A missing key means the tool was not invoked; a ToolError value means it was
    invoked and failed.
    """

    def __init__(self, outputs: Optional[Dict[str, Any]] = None):
        self._outputs: Dict[str, Any] = dict(outputs or {})

    def __contains__(self, name: str) -> bool:
        return name in self._outputs

    def __getitem__(self, name: str) -> Any:
        return self._outputs[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self._outputs[name] = value

    def __len__(self) -> int:
        return len(self._outputs)

    def __iter__(self) -> Iterator[str]:
        return iter(self._outputs)

    def get(self, name: str, default: Any = None) -> Any:
        return self._outputs.get(name, default)

    def names(self) -> List[str]:
        return list(self._outputs)

    def succeeded(self) -> Dict[str, Any]:
        return {k: v for k, v in self._outputs.items() if not isinstance(v, ToolError)}

    def failed(self) -> Dict[str, ToolError]:
        return {k: v for k, v in self._outputs.items() if isinstance(v, ToolError)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            name: value.to_dict() if isinstance(value, ToolError) else value
            for name, value in self._outputs.items()
        }


@dataclass
class QualityAssessment:
    """Heuristic verdict on a buffered response."""
    score: float
    should_fallback: bool
    reasons: List[str] = field(default_factory=list)
    confidence: str = "medium"


@dataclass(frozen=True)
class Usage:
    """Token usage reported by a provider."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens or self.prompt_tokens + self.completion_tokens,
        }


@dataclass
class ProviderResponse:
    """Buffered response from a provider call."""
    content: str
    usage: Optional[Usage] = None


@dataclass(frozen=True)
class CallOptions:
    """Per-call options passed to a provider."""
    model: str
    temperature: float = 0.7
    max_tokens: int = 4096

    @classmethod
    def from_decision(cls, decision: RouteDecision) -> "CallOptions":
        return cls(model=decision.model, temperature=decision.temperature, max_tokens=decision.max_tokens)


@dataclass(frozen=True)
class RetrievedChunk:
    """A document chunk returned by the retrieval collaborator."""
    document_name: str
    text: str
    score: float = 0.0


DONE_SENTINEL = "data: [DONE]\n\n"


@dataclass(frozen=True)
class StreamEvent:
    """One unit of the server-to-client streaming protocol."""
    type: StreamEventType
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def metadata(cls, **data: Any) -> "StreamEvent":
        return cls(StreamEventType.METADATA, data)

    @classmethod
    def content(cls, text: str) -> "StreamEvent":
        return cls(StreamEventType.CONTENT, {"content": text})

    @classmethod
    def usage(cls, usage: Usage) -> "StreamEvent":
        return cls(StreamEventType.USAGE, {"usage": usage.to_dict()})

    @classmethod
    def fallback_usage(cls, usage: Usage, provider: str, model: str) -> "StreamEvent":
        return cls(StreamEventType.FALLBACK_USAGE, {"usage": usage.to_dict(), "provider": provider, "model": model})

    @classmethod
    def error(cls, message: str, **data: Any) -> "StreamEvent":
        return cls(StreamEventType.ERROR, {"error": message, **data})

    @classmethod
    def done(cls) -> "StreamEvent":
        return cls(StreamEventType.DONE)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, **self.data}

    def to_sse(self) -> str:
        """Frame the event as one server-sent-events record."""
        if self.type is StreamEventType.DONE:
            return DONE_SENTINEL
        return f"data: {json.dumps(self.to_dict(), default=str)}\n\n"
