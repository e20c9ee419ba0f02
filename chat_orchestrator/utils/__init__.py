"""
Utility modules for the Chat Orchestrator.
"""

from .logging import setup_logging, get_logger, RoutingLogger
from .config_manager import ConfigManager
from .error_handling import (
    OrchestratorError,
    ConfigurationError,
    RequestValidationError,
    VisionUnavailableError,
    ResourceUnavailableError,
    APIError,
    ToolExecutionError,
    UnsupportedFileTypeError,
    FallbackError,
    handle_error,
    is_recoverable_provider_error,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "RoutingLogger",
    "ConfigManager",
    "OrchestratorError",
    "ConfigurationError",
    "RequestValidationError",
    "VisionUnavailableError",
    "ResourceUnavailableError",
    "APIError",
    "ToolExecutionError",
    "UnsupportedFileTypeError",
    "FallbackError",
    "handle_error",
    "is_recoverable_provider_error",
]
