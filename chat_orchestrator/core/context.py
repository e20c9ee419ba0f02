"""
Context Optimizer: fits conversation history into a token budget using
hot (verbatim), warm (compressed) and cold (synopsis) tiers.
"""

import math
import re
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence, Union

from ..models import ContextConfig, Message, Role, RouteDecision
from ..utils import get_logger

COMPRESSED_MARKER = "[compressed]"
TRUNCATED_MARKER = "[truncated]"

BASE64_PAYLOAD = re.compile(r"base64,([A-Za-z0-9+/=]+)")
COMMON_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "is", "are", "was", "were", "about", "would", "could", "should",
    "there", "their", "which", "these", "those", "please",
}


@dataclass(frozen=True)
class ContextBudget:
    """Token budget for history plus an optional cap on retained messages."""
    tokens: int
    max_messages: Optional[int] = None


@dataclass
class OptimizedContext:
    """Result of one optimization pass."""
    messages: List[Message] = field(default_factory=list)
    summary: Optional[str] = None
    hot_count: int = 0
    warm_count: int = 0
    cold_count: int = 0
    dropped_count: int = 0
    estimated_tokens: int = 0


def estimate_tokens(text: str, chars_per_token: float = 4.0) -> int:
    """Rough token estimate for plain text."""
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def estimate_image_tokens(payload: str, config: Optional[ContextConfig] = None) -> int:
    """
    Token estimate for one image payload.

    Inline base64 payloads dominate the cost of a request and are weighted by
    their encoded length; a remote URL reference costs a flat amount.
    """
    config = config or ContextConfig()
    payload = (payload or "").strip()
    if not payload:
        return 0
    match = BASE64_PAYLOAD.search(payload)
    if match:
        return math.ceil(len(match.group(1)) / config.image_chars_per_token)
    if payload.startswith(("http://", "https://")):
        return config.image_reference_tokens
    # Bare base64 without a data URL header
    return math.ceil(len(payload) / config.image_chars_per_token)


def estimate_message_tokens(message: Message, config: Optional[ContextConfig] = None) -> int:
    """Estimated cost of a message: framing overhead, text and every image."""
    config = config or ContextConfig()
    tokens = config.message_overhead_tokens
    tokens += estimate_tokens(message.text(), config.text_chars_per_token)
    tokens += sum(estimate_image_tokens(p, config) for p in message.image_payloads())
    return tokens


def conversation_has_images(messages: Sequence[Message]) -> bool:
    return any(m.has_images for m in messages)


def compute_budget(decision: RouteDecision, has_images: bool,
                   config: Optional[ContextConfig] = None) -> ContextBudget:
    """
    Derive the history budget from the selected model's token ceiling.

    Without images a fixed fraction of the window is reserved for history.
    With images the fraction and the message cap depend on the provider.
    """
    config = config or ContextConfig()
    if not has_images:
        return ContextBudget(tokens=int(decision.max_tokens * config.history_fraction))

    image_budget = config.image_budgets.get(decision.provider, config.default_image_budget)
    return ContextBudget(
        tokens=int(decision.max_tokens * image_budget.history_fraction),
        max_messages=image_budget.max_messages,
    )


class ContextOptimizer:
    """
    Bounds a conversation to a token budget.

    The newest messages that fit are kept verbatim (hot). Up to
    ``warm_window`` older messages are compressed to short placeholders and
    admitted newest-first while they fit (warm). Everything older is reduced
    to a keyword synopsis (cold) that is kept only if it still fits. The
    estimated cost of the result never exceeds the budget, and retained
    messages keep their original order.
    """

    def __init__(self, config: Optional[ContextConfig] = None):
        self.config = config or ContextConfig()
        self.logger = get_logger(__name__)

    def optimize(self, messages: Sequence[Message], budget: Union[int, ContextBudget]) -> OptimizedContext:
        """
        Fit messages into the budget.

        Args:
            messages: Conversation in chronological order; system messages are ignored
            budget: Token budget, or a ContextBudget carrying a message cap

        Returns:
            OptimizedContext with the bounded message list and optional synopsis
        """
        if not isinstance(budget, ContextBudget):
            budget = ContextBudget(tokens=int(budget))

        conversation = [m for m in messages if m.role is not Role.SYSTEM]
        if budget.tokens <= 0 or not conversation or budget.max_messages == 0:
            return OptimizedContext(cold_count=len(conversation), dropped_count=len(conversation))

        hot, used = self._select_hot(conversation, budget)
        if not hot:
            truncated = self._truncate(conversation[-1], budget.tokens)
            if truncated is None:
                return OptimizedContext(cold_count=len(conversation), dropped_count=len(conversation))
            hot = [truncated]
            used = estimate_message_tokens(truncated, self.config)

        older = conversation[:len(conversation) - len(hot)]
        split = max(len(older) - self.config.warm_window, 0)
        cold = older[:split]
        warm_candidates = older[split:]

        warm: List[Message] = []
        rejected: List[Message] = []
        short_dropped = 0
        cap_left = None if budget.max_messages is None else budget.max_messages - len(hot)
        exhausted = False
        for message in reversed(warm_candidates):
            if exhausted:
                rejected.append(message)
                continue
            placeholder = self.compress(message)
            if placeholder is None:
                short_dropped += 1
                continue
            cost = estimate_message_tokens(placeholder, self.config)
            if used + cost > budget.tokens or (cap_left is not None and len(warm) >= cap_left):
                exhausted = True
                rejected.append(message)
                continue
            warm.append(placeholder)
            used += cost
        warm.reverse()

        cold_messages = cold + list(reversed(rejected))
        summary = self.summarize(cold_messages)
        if summary is not None:
            summary_cost = estimate_tokens(summary, self.config.text_chars_per_token)
            if used + summary_cost <= budget.tokens:
                used += summary_cost
            else:
                summary = None

        result = OptimizedContext(
            messages=warm + hot,
            summary=summary,
            hot_count=len(hot),
            warm_count=len(warm),
            cold_count=len(cold_messages),
            dropped_count=len(conversation) - len(hot) - len(warm),
            estimated_tokens=used,
        )
        self.logger.debug(
            f"Context optimized: {result.hot_count} hot, {result.warm_count} warm, "
            f"{result.cold_count} cold, {short_dropped} short placeholders dropped, "
            f"{result.estimated_tokens}/{budget.tokens} tokens"
        )
        return result

    def optimize_turn(self, messages: Sequence[Message], budget: Union[int, ContextBudget]) -> OptimizedContext:
        """
        Fit a conversation whose newest message is the turn being answered.

        The current turn is always kept with its images and is charged against
        the budget first; only the older history is tiered, within what is
        left of the budget and the message cap. When the turn's text alone
        outgrows the budget the text is truncated, but its images are never
        removed, so the estimate may exceed the budget by the image cost.
        """
        if not isinstance(budget, ContextBudget):
            budget = ContextBudget(tokens=int(budget))

        conversation = [m for m in messages if m.role is not Role.SYSTEM]
        if not conversation:
            return OptimizedContext()

        current = conversation[-1]
        image_cost = sum(estimate_image_tokens(p, self.config) for p in current.image_payloads())
        if estimate_message_tokens(current, self.config) - image_cost > budget.tokens:
            current = self._truncate(current, budget.tokens, keep_images=True) or current
        current_cost = estimate_message_tokens(current, self.config)

        max_messages = None if budget.max_messages is None else max(budget.max_messages - 1, 0)
        history = self.optimize(
            conversation[:-1],
            ContextBudget(tokens=max(budget.tokens - current_cost, 0), max_messages=max_messages),
        )
        history.messages.append(current)
        history.hot_count += 1
        history.estimated_tokens += current_cost
        return history

    def compress(self, message: Message) -> Optional[Message]:
        """
        Compress a message into a ``[compressed]`` placeholder.

        Returns None when the placeholder would be shorter than the minimum
        useful length.
        """
        text = " ".join(message.text().split())
        if not text:
            return None
        if len(text) > self.config.compressed_chars:
            placeholder = f"{text[:self.config.compressed_chars]}... {COMPRESSED_MARKER}"
        else:
            placeholder = f"{text} {COMPRESSED_MARKER}"
        if len(placeholder) < self.config.min_placeholder_length:
            return None
        return replace(message, content=placeholder, images=())

    def summarize(self, messages: Sequence[Message]) -> Optional[str]:
        """Keyword synopsis of the user messages in the cold tier."""
        if not messages:
            return None
        words = " ".join(m.text() for m in messages if m.role is Role.USER).lower().split()
        keywords: List[str] = []
        for word in words:
            word = word.strip(".,;:!?\"'()[]{}")
            if len(word) > 4 and word not in COMMON_WORDS and word not in keywords:
                keywords.append(word)
            if len(keywords) >= self.config.summary_keywords:
                break
        if not keywords:
            return None
        return (
            f"[Conversation summary - {len(messages)} earlier messages]: "
            f"Previous conversation covered: {', '.join(keywords)}"
        )

    def _select_hot(self, conversation: List[Message], budget: ContextBudget):
        hot: List[Message] = []
        used = 0
        for message in reversed(conversation):
            if budget.max_messages is not None and len(hot) >= budget.max_messages:
                break
            cost = estimate_message_tokens(message, self.config)
            if used + cost > budget.tokens:
                break
            hot.append(message)
            used += cost
        hot.reverse()
        return hot, used

    def _truncate(self, message: Message, tokens: int, keep_images: bool = False) -> Optional[Message]:
        available = tokens - self.config.message_overhead_tokens
        if available <= 0:
            return None
        marker = f" {TRUNCATED_MARKER}"
        max_chars = int(available * self.config.text_chars_per_token) - len(marker)
        text = message.text()
        if max_chars <= 0 or not text:
            return None
        self.logger.warning(f"Newest message exceeds the context budget and was truncated to {max_chars} characters")
        if keep_images:
            # Image parts of structured content move onto the images tuple
            return replace(message, content=text[:max_chars] + marker, images=tuple(message.image_payloads()))
        return replace(message, content=text[:max_chars] + marker, images=())
