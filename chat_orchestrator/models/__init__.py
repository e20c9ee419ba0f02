"""
Core data models for the Chat Orchestrator.
"""

from .core import (
    ContentPart,
    Message,
    FileAttachment,
    ChatRequest,
    ClassificationFlags,
    CapabilityFlags,
    RouteDecision,
    FallbackChain,
    ToolError,
    ToolResult,
    QualityAssessment,
    Usage,
    ProviderResponse,
    CallOptions,
    RetrievedChunk,
    StreamEvent,
    DONE_SENTINEL,
)

from .config import (
    SystemConfig,
    ProviderConfig,
    ContextConfig,
    ImageBudget,
    QualityGateConfig,
    ToolConfig,
    StreamingConfig,
    LoggingConfig,
)

from .enums import (
    TaskType,
    AgentType,
    OperatingMode,
    Role,
    StreamEventType,
    ExecutorState,
)

__all__ = [
    # Core models
    "ContentPart",
    "Message",
    "FileAttachment",
    "ChatRequest",
    "ClassificationFlags",
    "CapabilityFlags",
    "RouteDecision",
    "FallbackChain",
    "ToolError",
    "ToolResult",
    "QualityAssessment",
    "Usage",
    "ProviderResponse",
    "CallOptions",
    "RetrievedChunk",
    "StreamEvent",
    "DONE_SENTINEL",
    # Configuration models
    "SystemConfig",
    "ProviderConfig",
    "ContextConfig",
    "ImageBudget",
    "QualityGateConfig",
    "ToolConfig",
    "StreamingConfig",
    "LoggingConfig",
    # Enums
    "TaskType",
    "AgentType",
    "OperatingMode",
    "Role",
    "StreamEventType",
    "ExecutorState",
]
