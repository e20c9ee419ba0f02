"""
Configuration models for the Chat Orchestrator.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional
import logging


@dataclass
class ProviderConfig:
    """Configuration for one LLM backend."""
    name: str
    display_name: str
    kind: str = "openai_compatible"  # openai_compatible | anthropic | ollama
    env_key_name: str = ""
    api_key: str = ""
    base_url: Optional[str] = None
    default_model: str = ""
    cost_per_1m: float = 0.0
    supports_vision: bool = False
    enabled: bool = True
    timeout_seconds: float = 60.0
    availability_ttl_seconds: float = 30.0


def _default_providers() -> Dict[str, ProviderConfig]:
    return {
        "openai": ProviderConfig(
            name="openai", display_name="OpenAI", env_key_name="OPENAI_API_KEY",
            default_model="gpt-4o", cost_per_1m=5.0, supports_vision=True,
        ),
        "anthropic": ProviderConfig(
            name="anthropic", display_name="Anthropic", kind="anthropic",
            env_key_name="ANTHROPIC_API_KEY", default_model="claude-3-5-sonnet-20241022",
            cost_per_1m=3.0, supports_vision=True,
        ),
        "groq": ProviderConfig(
            name="groq", display_name="Groq", env_key_name="GROQ_API_KEY",
            base_url="https://api.groq.com/openai/v1", default_model="llama-3.3-70b-versatile",
            cost_per_1m=0.27,
        ),
        "perplexity": ProviderConfig(
            name="perplexity", display_name="Perplexity", env_key_name="PERPLEXITY_API_KEY",
            base_url="https://api.perplexity.ai", default_model="sonar-pro", cost_per_1m=1.0,
        ),
        "openrouter": ProviderConfig(
            name="openrouter", display_name="OpenRouter", env_key_name="OPEN_ROUTER_KEY",
            base_url="https://openrouter.ai/api/v1", default_model="anthropic/claude-3.5-sonnet",
            cost_per_1m=3.0, supports_vision=True,
        ),
        "ollama": ProviderConfig(
            name="ollama", display_name="Ollama (local)", kind="ollama",
            base_url="http://localhost:11434", default_model="qwen2.5:7b", enabled=False,
            timeout_seconds=120.0,
        ),
    }


@dataclass
class ImageBudget:
    """History budget applied when images are present for a given provider."""
    history_fraction: float = 0.4
    max_messages: int = 6


@dataclass
class ContextConfig:
    """Configuration for context budgeting and hot/warm/cold tiering."""
    history_fraction: float = 0.8
    image_budgets: Dict[str, ImageBudget] = field(default_factory=lambda: {
        "openai": ImageBudget(history_fraction=0.5, max_messages=10),
        "anthropic": ImageBudget(history_fraction=0.6, max_messages=12),
        "openrouter": ImageBudget(history_fraction=0.5, max_messages=8),
    })
    default_image_budget: ImageBudget = field(default_factory=ImageBudget)
    warm_window: int = 20
    compressed_chars: int = 200
    min_placeholder_length: int = 50
    summary_keywords: int = 10
    text_chars_per_token: float = 4.0
    image_chars_per_token: float = 11.76
    image_reference_tokens: int = 85
    message_overhead_tokens: int = 4


@dataclass
class QualityGateConfig:
    """Which (task type, provider) pairs buffer and score before streaming."""
    enabled: bool = True
    pairs: Dict[str, List[str]] = field(default_factory=lambda: {
        "quick_qa": ["groq"],
        "general": ["groq"],
    })
    reduced_max_tokens: int = 1024
    fallback_threshold: float = 7.0
    replay_delay_seconds: float = 0.01


@dataclass
class ToolConfig:
    """Configuration for the auxiliary tools."""
    brave_api_key: str = ""
    e2b_api_key: str = ""
    search_results: int = 5
    fetch_max_chars: int = 10000
    csv_preview_rows: int = 10
    timeout_seconds: float = 20.0
    concurrent: bool = True
    brave_search_url: str = "https://api.search.brave.com/res/v1/web/search"
    e2b_url: str = "https://api.e2b.dev/v1/sandboxes"
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


@dataclass
class StreamingConfig:
    """Configuration for the event channel between executor and transport."""
    channel_size: int = 64


@dataclass
class LoggingConfig:
    """Configuration for system logging."""
    level: int = logging.INFO
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = "chat_orchestrator.log"
    max_file_size_mb: int = 100
    backup_count: int = 5
    enable_console: bool = True
    enable_file: bool = True


@dataclass
class SystemConfig:
    """Main system configuration."""
    providers: Dict[str, ProviderConfig] = field(default_factory=_default_providers)
    context: ContextConfig = field(default_factory=ContextConfig)
    quality_gate: QualityGateConfig = field(default_factory=QualityGateConfig)
    tools: ToolConfig = field(default_factory=ToolConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    logging_config: LoggingConfig = field(default_factory=LoggingConfig)
    debug_mode: bool = False
    enable_fallback: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)
