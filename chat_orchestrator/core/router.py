"""
Model Router implementation: picks a provider/model for a classified request
and the ordered fallback chain tried after it.
"""

from typing import Dict, List, Optional, Tuple

from ..models import (
    AgentType, CapabilityFlags, FallbackChain, OperatingMode, RouteDecision, TaskType
)
from ..utils import RoutingLogger, get_logger
from ..utils.error_handling import ResourceUnavailableError, VisionUnavailableError
from .interfaces import ProviderRegistry

CLAUDE_SONNET = "claude-3-5-sonnet-20241022"
CLAUDE_OPUS = "claude-opus-4-1-20250805"

# Preferred configuration per task type
TASK_ROUTING_TABLE: Dict[TaskType, RouteDecision] = {
    TaskType.WEB_SEARCH: RouteDecision("perplexity", "sonar-pro", 0.7, 4096, 1.0),
    TaskType.DEEP_RESEARCH: RouteDecision("perplexity", "sonar-deep-research", 0.3, 8192, 5.0),
    TaskType.CODE_GENERATION: RouteDecision("groq", "llama-3.3-70b-versatile", 0.3, 8192, 0.27),
    TaskType.CODE_EDITING: RouteDecision("anthropic", CLAUDE_SONNET, 0.5, 8192, 3.0),
    TaskType.REASONING: RouteDecision("openai", "gpt-4o", 0.8, 4096, 5.0),
    TaskType.QUICK_QA: RouteDecision("groq", "llama-3.1-8b-instant", 0.7, 2048, 0.05),
    TaskType.CREATIVE_WRITING: RouteDecision("anthropic", CLAUDE_SONNET, 1.0, 8192, 3.0),
    TaskType.DATA_ANALYSIS: RouteDecision("openai", "gpt-4o", 0.3, 4096, 5.0),
    TaskType.LONG_CONTEXT: RouteDecision("anthropic", CLAUDE_SONNET, 0.7, 8192, 3.0),
    TaskType.VISION: RouteDecision("openai", "gpt-4o", 0.7, 4096, 5.0),
    TaskType.GENERAL: RouteDecision("groq", "llama-3.3-70b-versatile", 0.7, 4096, 0.27),
}

# Per-agent preferences keyed by (agent, task); a None task applies to every task
AGENT_ROUTING_TABLE: Dict[Tuple[AgentType, Optional[TaskType]], List[RouteDecision]] = {
    (AgentType.CHAT, TaskType.WEB_SEARCH): [
        RouteDecision("perplexity", "sonar-pro", 0.7, 4096, 1.0),
        RouteDecision("openrouter", "perplexity/sonar-pro", 0.7, 4096, 1.0),
    ],
    (AgentType.CHAT, TaskType.DEEP_RESEARCH): [
        RouteDecision("perplexity", "sonar-deep-research", 0.3, 8192, 5.0),
        RouteDecision("openrouter", "perplexity/sonar-deep-research", 0.3, 8192, 5.0),
        RouteDecision("perplexity", "sonar-pro", 0.3, 8192, 1.0),
    ],
    (AgentType.RESUME, None): [
        RouteDecision("anthropic", CLAUDE_SONNET, 0.3, 8192, 3.0),
        RouteDecision("openrouter", "anthropic/claude-3.5-sonnet", 0.3, 8192, 3.0),
        RouteDecision("openai", "gpt-4o", 0.3, 8192, 2.5),
    ],
    (AgentType.COVER_LETTER, None): [
        RouteDecision("anthropic", CLAUDE_SONNET, 0.7, 8192, 3.0),
        RouteDecision("openrouter", "anthropic/claude-3.5-sonnet", 0.7, 8192, 3.0),
        RouteDecision("openai", "gpt-4o", 0.7, 8192, 2.5),
    ],
    (AgentType.EXTRACT, None): [
        RouteDecision("openai", "gpt-4o", 0.1, 4096, 2.5),
        RouteDecision("openrouter", "openai/gpt-4o", 0.1, 4096, 2.5),
        RouteDecision("anthropic", CLAUDE_SONNET, 0.1, 4096, 3.0),
    ],
    (AgentType.CODE, None): [
        RouteDecision("anthropic", CLAUDE_SONNET, 0.3, 8192, 3.0),
        RouteDecision("openrouter", "anthropic/claude-3.5-sonnet", 0.3, 8192, 3.0),
        RouteDecision("openai", "gpt-4o", 0.3, 8192, 2.5),
    ],
    (AgentType.STUDY, None): [
        RouteDecision("anthropic", CLAUDE_SONNET, 0.7, 8192, 3.0),
        RouteDecision("openrouter", "anthropic/claude-3.5-sonnet", 0.7, 8192, 3.0),
        RouteDecision("openai", "gpt-4o", 0.7, 8192, 2.5),
    ],
}

CODING_MODE_DECISION = RouteDecision("anthropic", CLAUDE_SONNET, 0.3, 8192, 3.0)
HEAVY_CODING_DECISION = RouteDecision("anthropic", CLAUDE_OPUS, 0.3, 8192, 15.0)
HEAVY_CODING_THRESHOLD = 0.7

# Order in which any configured provider is tried once the tables are exhausted
GENERIC_PROVIDER_ORDER = ["groq", "anthropic", "openai", "perplexity", "openrouter", "ollama"]

CODE_TASKS = (TaskType.CODE_GENERATION, TaskType.CODE_EDITING)

OVERRIDE_TEMPERATURE = 0.7
OVERRIDE_MAX_TOKENS = 4096


def parse_override(override: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a "provider/model" override. The model part may itself contain
    slashes (OpenRouter ids), and may be omitted.
    """
    if not override or not override.strip():
        return None, None
    provider, _, model = override.strip().partition("/")
    return provider.lower() or None, model or None


class ModelRouter:
    """
    Routes a classified request to a provider/model and builds its fallback chain.

    Routing is pure given the task type, capability flags, override and the
    availability snapshot: the router reads the registry's static provider
    metadata and never calls a provider.
    """

    def __init__(self, registry: ProviderRegistry,
                 task_table: Optional[Dict[TaskType, RouteDecision]] = None,
                 agent_table: Optional[Dict[Tuple[AgentType, Optional[TaskType]], List[RouteDecision]]] = None,
                 generic_order: Optional[List[str]] = None):
        self.logger = get_logger(__name__)
        self.routing_logger = RoutingLogger()
        self.registry = registry
        self.task_table = task_table or TASK_ROUTING_TABLE
        self.agent_table = agent_table or AGENT_ROUTING_TABLE
        self.generic_order = generic_order or GENERIC_PROVIDER_ORDER

    def route(self, task_type: TaskType, capability_flags: Optional[CapabilityFlags] = None,
              override: Optional[str] = None, agent: AgentType = AgentType.CHAT,
              availability: Optional[Dict[str, bool]] = None) -> Tuple[RouteDecision, FallbackChain]:
        """
        Select the primary route and the fallback chain.

        Args:
            task_type: Classified task type
            capability_flags: Capability requirements (images, mode, complexity)
            override: Optional "provider/model" or "provider" chosen by the user
            agent: Agent the request is addressed to
            availability: Provider availability snapshot; taken from the registry if None

        Returns:
            Tuple of (primary RouteDecision, FallbackChain of the remaining alternatives)

        Raises:
            VisionUnavailableError: If images are present and no vision-capable provider is available
            ResourceUnavailableError: If no provider is available at all
        """
        flags = capability_flags or CapabilityFlags()
        if availability is None:
            availability = self.registry.availability_snapshot()

        candidates = self.candidates(task_type, flags, agent)
        candidates = [d for d in candidates if availability.get(d.provider, False)]
        if flags.has_images:
            candidates = [d for d in candidates if self._supports_vision(d.provider)]
        chain = FallbackChain(candidates)

        if not len(chain):
            self._raise_unavailable(flags)

        override_decision = self._resolve_override(override, flags, availability)
        if override_decision is not None:
            primary = override_decision
            alternatives = FallbackChain(d for d in chain if d.key != primary.key)
        else:
            primary = chain[0]
            alternatives = FallbackChain(list(chain)[1:])

        self.log_routing_decision(primary, alternatives, task_type, agent, flags, override)
        return primary, alternatives

    def candidates(self, task_type: TaskType, flags: CapabilityFlags,
                   agent: AgentType = AgentType.CHAT) -> List[RouteDecision]:
        """
        Ranked candidate routes before availability filtering.

        Table entries come first, then every provider in the generic order with
        the task's temperature and token ceiling.
        """
        preferred: List[RouteDecision] = []

        if agent is AgentType.CODE and flags.complexity > HEAVY_CODING_THRESHOLD:
            preferred.append(HEAVY_CODING_DECISION)
        if flags.mode is OperatingMode.CODING and task_type in CODE_TASKS:
            preferred.append(CODING_MODE_DECISION)

        agent_entries = self.agent_table.get((agent, task_type)) or self.agent_table.get((agent, None))
        if agent_entries:
            preferred.extend(agent_entries)
        preferred.append(self.task_table.get(task_type, self.task_table[TaskType.GENERAL]))

        template = preferred[0]
        generic = [
            self._default_decision(name, template.temperature, template.max_tokens)
            for name in self.generic_order
            if name in self.registry
        ]
        return preferred + generic

    def log_routing_decision(self, primary: RouteDecision, chain: FallbackChain, task_type: TaskType,
                             agent: AgentType, flags: CapabilityFlags, override: Optional[str]) -> None:
        """Log the routing decision for audit purposes."""
        self.routing_logger.log_routing_decision({
            "provider": primary.provider,
            "model": primary.model,
            "task_type": task_type.value,
            "agent": agent.value,
            "has_images": flags.has_images,
            "override": override,
            "fallback_chain": [f"{d.provider}/{d.model}" for d in chain],
            "reasoning": self._generate_routing_reasoning(primary, task_type, flags, override),
        })

    def _resolve_override(self, override: Optional[str], flags: CapabilityFlags,
                          availability: Dict[str, bool]) -> Optional[RouteDecision]:
        provider, model = parse_override(override)
        if provider is None:
            return None
        if provider not in self.registry or not availability.get(provider, False):
            self.logger.warning(f"Override provider {provider} is not available, using best available provider")
            return None
        if flags.has_images and not self._supports_vision(provider):
            self.logger.warning(f"Override provider {provider} cannot read images, re-resolving to a vision-capable provider")
            return None

        config = self.registry.get(provider).config
        return RouteDecision(
            provider=provider,
            model=model or config.default_model,
            temperature=OVERRIDE_TEMPERATURE,
            max_tokens=OVERRIDE_MAX_TOKENS,
            cost_per_1m=config.cost_per_1m,
        )

    def _default_decision(self, provider: str, temperature: float, max_tokens: int) -> RouteDecision:
        config = self.registry.get(provider).config
        return RouteDecision(provider, config.default_model, temperature, max_tokens, config.cost_per_1m)

    def _supports_vision(self, provider: str) -> bool:
        return provider in self.registry and self.registry.get(provider).supports_vision

    def _raise_unavailable(self, flags: CapabilityFlags) -> None:
        if flags.has_images:
            credentials = [
                self.registry.get(name).credential_name
                for name in self.registry.names()
                if self._supports_vision(name) and self.registry.get(name).credential_name
            ]
            raise VisionUnavailableError(
                "Images detected but no vision-capable model is available. "
                f"Please add one of {', '.join(credentials)} to use image analysis.",
                required_credentials=credentials,
            )
        raise ResourceUnavailableError(
            "No LLM providers are configured. Please add at least one API key to your environment.",
            resource_type="provider",
            context={"requiredCredentials": [c for c in self.registry.credential_names().values() if c]},
        )

    def _generate_routing_reasoning(self, primary: RouteDecision, task_type: TaskType,
                                    flags: CapabilityFlags, override: Optional[str]) -> str:
        """Generate human-readable reasoning for a routing decision."""
        reasoning_parts = [f"task type {task_type.value}"]
        if override and parse_override(override)[0] == primary.provider:
            reasoning_parts.append("user override")
        if flags.has_images:
            reasoning_parts.append("requires vision")
        if flags.mode is OperatingMode.CODING:
            reasoning_parts.append("coding mode")
        if flags.complexity > HEAVY_CODING_THRESHOLD:
            reasoning_parts.append(f"high coding complexity ({flags.complexity:.2f})")
        return f"Routed to {primary.provider}/{primary.model} based on: {', '.join(reasoning_parts)}"
