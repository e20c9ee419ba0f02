"""
Core components of the Chat Orchestrator.
"""

from .classifier import TaskClassifier, ClassificationRule
from .interfaces import (
    LLMProvider,
    OpenAICompatibleProvider,
    AnthropicProvider,
    OllamaProvider,
    ProviderRegistry,
)
from .router import ModelRouter
from .context import ContextOptimizer, ContextBudget, OptimizedContext, compute_budget
from .tools import ToolOrchestrator, ToolContext
from .quality import QualityAssessor, QualityGate, QualityPolicy, QualityRule
from .executor import EventChannel, EventStream, ExecutionPlan, ResponseExecutor
from .pipeline import ChatPipeline, RequestPlan, Retriever

__all__ = [
    "TaskClassifier",
    "ClassificationRule",
    "LLMProvider",
    "OpenAICompatibleProvider",
    "AnthropicProvider",
    "OllamaProvider",
    "ProviderRegistry",
    "ModelRouter",
    "ContextOptimizer",
    "ContextBudget",
    "OptimizedContext",
    "compute_budget",
    "ToolOrchestrator",
    "ToolContext",
    "QualityAssessor",
    "QualityGate",
    "QualityPolicy",
    "QualityRule",
    "EventChannel",
    "EventStream",
    "ExecutionPlan",
    "ResponseExecutor",
    "ChatPipeline",
    "RequestPlan",
    "Retriever",
]
