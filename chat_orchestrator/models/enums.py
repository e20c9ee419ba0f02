"""
Enumerations for the Chat Orchestrator.
"""

from enum import Enum


class TaskType(Enum):
    """Classification label driving prompt selection and routing."""
    GENERAL = "general"
    CODE_GENERATION = "code_generation"
    CODE_EDITING = "code_editing"
    DEEP_RESEARCH = "deep_research"
    WEB_SEARCH = "web_search"
    QUICK_QA = "quick_qa"
    REASONING = "reasoning"
    CREATIVE_WRITING = "creative_writing"
    DATA_ANALYSIS = "data_analysis"
    LONG_CONTEXT = "long_context"
    VISION = "vision"

    @classmethod
    def parse(cls, value) -> "TaskType":
        """Resolve a TaskType from its value or name, case-insensitive."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if member.value == text or member.name.lower() == text:
                return member
        raise ValueError(f"Unknown task type: {value}")


class AgentType(Enum):
    """Specialised agents that own a routing table."""
    CHAT = "chat"
    CODE = "code"
    STUDY = "study"
    RESUME = "resume"
    COVER_LETTER = "cover_letter"
    EXTRACT = "extract"


class OperatingMode(Enum):
    """Chat operating modes selected by the client."""
    PRIMARY = "primary"
    CODING = "coding"
    STUDY = "study"


class Role(Enum):
    """Message author roles."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class StreamEventType(Enum):
    """Units of the server-to-client streaming protocol."""
    METADATA = "metadata"
    CONTENT = "content"
    USAGE = "usage"
    FALLBACK_USAGE = "fallback_usage"
    ERROR = "error"
    DONE = "done"


class ExecutorState(Enum):
    """States of the response executor for one request."""
    ROUTE_SELECTED = "route_selected"
    PRIMARY_ATTEMPT = "primary_attempt"
    QUALITY_CHECK = "quality_check"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"
