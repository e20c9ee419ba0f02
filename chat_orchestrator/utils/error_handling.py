"""
Error handling utilities and custom exceptions for the Chat Orchestrator.
"""

from typing import Optional, Dict, Any, List

import anthropic
import httpx
import openai


# Provider HTTP statuses that mean "abandon this model, try the next one"
RECOVERABLE_STATUS_CODES = {401, 402, 403, 404, 408, 409, 429, 500, 502, 503, 504, 529}


class OrchestratorError(Exception):
    """Base exception for all Chat Orchestrator errors."""

    status_code: int = 500

    def __init__(self, message: str, error_code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}

    def to_payload(self) -> Dict[str, Any]:
        """Structured error body returned to the client."""
        payload = {"error": self.message, "code": self.error_code}
        payload.update(self.context)
        return payload


class ConfigurationError(OrchestratorError):
    """Raised when configuration or provider credentials are missing or invalid."""

    status_code = 400

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="CONFIG_ERROR", **kwargs)
        self.config_key = config_key
        if config_key:
            self.context.setdefault("missingCredential", config_key)


class RequestValidationError(OrchestratorError):
    """Raised when an inbound request is malformed."""

    status_code = 400

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="INVALID_REQUEST", **kwargs)
        self.field_name = field_name
        if field_name:
            self.context.setdefault("field", field_name)


class VisionUnavailableError(ConfigurationError):
    """Raised when images are attached but no vision-capable provider is configured."""

    def __init__(self, message: str, required_credentials: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.error_code = "VISION_UNAVAILABLE"
        self.required_credentials = required_credentials or []
        self.context.setdefault("missingCapability", "vision")
        self.context.setdefault("requiredCredentials", self.required_credentials)


class ResourceUnavailableError(OrchestratorError):
    """Raised when a required resource is unavailable."""

    status_code = 503

    def __init__(self, message: str, resource_type: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="RESOURCE_UNAVAILABLE", **kwargs)
        self.resource_type = resource_type


class APIError(OrchestratorError):
    """Raised when an external provider call fails."""

    status_code = 502

    def __init__(self, message: str, api_name: Optional[str] = None, status_code: Optional[int] = None,
                 transient: bool = True, **kwargs):
        super().__init__(message, error_code="API_ERROR", **kwargs)
        self.api_name = api_name
        self.http_status = status_code
        self.transient = transient


class ToolExecutionError(OrchestratorError):
    """Raised by a tool adapter when its external call fails."""

    def __init__(self, message: str, tool_name: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="TOOL_ERROR", **kwargs)
        self.tool_name = tool_name


class UnsupportedFileTypeError(ToolExecutionError):
    """Raised when no extractor handles a file's MIME type."""

    def __init__(self, message: str, file_type: Optional[str] = None, **kwargs):
        super().__init__(message, tool_name="parse_file", **kwargs)
        self.file_type = file_type


class FallbackError(OrchestratorError):
    """Raised when every entry of a fallback chain has failed."""

    def __init__(self, message: str, attempted_targets: Optional[list] = None, **kwargs):
        super().__init__(message, error_code="FALLBACK_ERROR", **kwargs)
        self.attempted_targets = attempted_targets or []


def is_recoverable_provider_error(error: BaseException) -> bool:
    """
    Decide whether a provider failure should advance the fallback chain.

    Rate limits, quota exhaustion, credential problems, timeouts and upstream
    outages are recoverable by trying another model. Malformed requests are not.
    """
    if isinstance(error, APIError):
        return error.transient
    if isinstance(error, (ConfigurationError, ResourceUnavailableError)):
        return True
    if isinstance(error, (openai.APIConnectionError, anthropic.APIConnectionError)):
        return True
    if isinstance(error, (openai.APIStatusError, anthropic.APIStatusError)):
        return error.status_code in RECOVERABLE_STATUS_CODES or "quota" in str(error).lower()
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RECOVERABLE_STATUS_CODES
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    return False


def handle_error(error: Exception, logger=None, context: Optional[Dict[str, Any]] = None) -> OrchestratorError:
    """
    Convert generic exceptions to OrchestratorError instances.

    Args:
        error: The original exception
        logger: Optional RoutingLogger for error reporting
        context: Additional context information

    Returns:
        OrchestratorError instance
    """
    if isinstance(error, OrchestratorError):
        return error

    if isinstance(error, ValueError):
        converted = ConfigurationError(str(error), context=context)
    elif isinstance(error, (ConnectionError, TimeoutError)):
        converted = ResourceUnavailableError(str(error), context=context)
    elif isinstance(error, (openai.APIError, anthropic.APIError, httpx.HTTPError)):
        status = getattr(error, "status_code", None)
        converted = APIError(
            str(error),
            status_code=status,
            transient=is_recoverable_provider_error(error),
            context=context,
        )
    else:
        converted = OrchestratorError(str(error), context=context)

    if logger:
        logger.log_error(converted, context)

    return converted
