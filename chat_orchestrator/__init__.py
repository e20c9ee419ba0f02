"""
Chat Orchestrator

A request-orchestration pipeline that classifies chat requests, routes them
to the best available LLM provider with fallback chains, fits history into
the provider's token budget, runs auxiliary tools and streams the response.
"""

__version__ = "0.1.0"
__author__ = "Chat Orchestrator"

from .models import (
    ChatRequest,
    Message,
    RouteDecision,
    StreamEvent,
    SystemConfig,
    TaskType,
)
from .core import ChatPipeline, ProviderRegistry

__all__ = [
    "ChatRequest",
    "Message",
    "RouteDecision",
    "StreamEvent",
    "SystemConfig",
    "TaskType",
    "ChatPipeline",
    "ProviderRegistry",
]
