"""
Task Classifier implementation: maps a request to exactly one TaskType.
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from ..models import ClassificationFlags, Message, Role, TaskType
from ..utils import get_logger


CODE_FENCE_PATTERN = re.compile(r"```")
LONG_MESSAGE_CHARS = 15000
LONG_CONTEXT_FILE_COUNT = 3
QUICK_QA_MAX_CHARS = 100


def _keywords(*words: str) -> re.Pattern:
    """Compile a case-insensitive word-boundary alternation."""
    return re.compile(r"\b(?:" + "|".join(re.escape(w) for w in words) + r")\b", re.IGNORECASE)


EDITING_CUES = _keywords(
    "fix", "debug", "refactor", "improve", "optimize", "error", "bug", "broken",
    "this code", "my code", "existing", "rewrite", "modify", "change this",
)
CODE_GENERATION_CUES = _keywords(
    "write code", "generate code", "implement", "build", "function", "class",
    "component", "script", "write a program", "create a function", "create a script",
    "create an app", "create a component",
)
SEARCH_TRIGGERS = _keywords(
    "search", "look up", "find", "latest", "current", "news", "today", "what is happening",
    "recent", "update", "price of", "weather", "stock", "trending", "happening now",
)
CREATIVE_CUES = _keywords("write", "story", "poem", "essay", "article", "blog", "creative", "narrative")
DATA_ANALYSIS_CUES = _keywords("analyze", "data", "csv", "chart", "graph", "statistics", "calculate", "dataset")
QUICK_QA_CUES = _keywords("what is", "who is", "define", "explain briefly")
REASONING_CUES = _keywords(
    "why", "how does", "compare", "analyze", "reasoning", "logic", "proof", "theorem", "explain why",
)
COMPLEX_CODING_KEYWORDS = (
    "architecture", "refactor", "multi-file", "system design", "optimize performance",
    "scalability", "distributed", "microservices", "database migration", "legacy code",
    "complex algorithm",
)


@dataclass(frozen=True)
class ClassificationRule:
    """
    One entry of the ordered rule table.

    A matching rule yields its fixed ``task_type``, or, when a ``resolver`` is
    given, whatever the resolver derives from the flags.
    """
    name: str
    task_type: Optional[TaskType]
    predicate: Callable[[str, ClassificationFlags], bool]
    resolver: Optional[Callable[[ClassificationFlags], TaskType]] = None

    def resolve(self, flags: ClassificationFlags) -> TaskType:
        if self.resolver is not None:
            return self.resolver(flags)
        return self.task_type


def has_code_fence(text: str) -> bool:
    """True when the text contains a fenced code marker."""
    return bool(CODE_FENCE_PATTERN.search(text or ""))


def last_user_text(messages: Sequence[Message]) -> str:
    """Text of the most recent user message, or '' if there is none."""
    for message in reversed(messages):
        if message.role is Role.USER:
            return message.text()
    return ""


def estimate_coding_complexity(message: str, has_code: bool, file_count: int) -> float:
    """
    Estimate how demanding a coding request is, on a 0-1 scale.

    Used by the code agent to decide whether the heavier model is warranted.
    """
    complexity = 0.0
    if len(message) > 500:
        complexity += 0.2
    if len(message) > 1500:
        complexity += 0.2

    lowered = message.lower()
    complexity += 0.1 * sum(1 for keyword in COMPLEX_CODING_KEYWORDS if keyword in lowered)

    if file_count > 3:
        complexity += 0.2
    if file_count > 5:
        complexity += 0.2

    if has_code and re.search(r"refactor|debug|fix|optimize|improve", message, re.IGNORECASE):
        complexity += 0.2

    return min(complexity, 1.0)


DEFAULT_RULES: List[ClassificationRule] = [
    ClassificationRule(
        "explicit_override", None,
        lambda text, flags: flags.user_override is not None,
        resolver=lambda flags: flags.user_override,
    ),
    ClassificationRule(
        "deep_web_search", TaskType.DEEP_RESEARCH,
        lambda text, flags: flags.deep_web_search,
    ),
    ClassificationRule(
        "images", TaskType.VISION,
        lambda text, flags: flags.has_images,
    ),
    ClassificationRule(
        "long_context", TaskType.LONG_CONTEXT,
        lambda text, flags: flags.file_count > LONG_CONTEXT_FILE_COUNT or len(text) > LONG_MESSAGE_CHARS,
    ),
    ClassificationRule(
        "code_editing", TaskType.CODE_EDITING,
        lambda text, flags: flags.has_code and bool(EDITING_CUES.search(text)),
    ),
    ClassificationRule(
        "code_generation", TaskType.CODE_GENERATION,
        lambda text, flags: bool(CODE_GENERATION_CUES.search(text)),
    ),
    ClassificationRule(
        "web_search", TaskType.WEB_SEARCH,
        lambda text, flags: bool(SEARCH_TRIGGERS.search(text)),
    ),
    ClassificationRule(
        "creative_writing", TaskType.CREATIVE_WRITING,
        lambda text, flags: bool(CREATIVE_CUES.search(text)),
    ),
    ClassificationRule(
        "data_analysis", TaskType.DATA_ANALYSIS,
        lambda text, flags: bool(DATA_ANALYSIS_CUES.search(text)),
    ),
    ClassificationRule(
        "quick_qa", TaskType.QUICK_QA,
        lambda text, flags: len(text) < QUICK_QA_MAX_CHARS and bool(QUICK_QA_CUES.search(text)),
    ),
    ClassificationRule(
        "reasoning", TaskType.REASONING,
        lambda text, flags: bool(REASONING_CUES.search(text)),
    ),
]


class TaskClassifier:
    """
    Rule-based task classifier.

    Walks an ordered rule table against the last user message and the request
    flags; the first matching rule decides the TaskType. The classifier is
    total: a rule that raises is logged and skipped, and GENERAL is returned
    when nothing matches.
    """

    def __init__(self, rules: Optional[List[ClassificationRule]] = None,
                 default: TaskType = TaskType.GENERAL):
        self.logger = get_logger(__name__)
        self.rules = list(rules) if rules is not None else list(DEFAULT_RULES)
        self.default = default

    def classify(self, messages: Sequence[Message], flags: Optional[ClassificationFlags] = None) -> TaskType:
        """
        Classify a request.

        Args:
            messages: Conversation messages; the last user message is inspected
            flags: Request flags (images, code, files, overrides, mode)

        Returns:
            Exactly one TaskType
        """
        flags = flags or ClassificationFlags()
        try:
            text = last_user_text(messages)
        except Exception as e:
            self.logger.warning(f"Could not read last user message, defaulting to {self.default.value}: {e}")
            return self.default

        rule = self.match(text, flags)
        if rule is None:
            return self.default
        try:
            task_type = TaskType.parse(rule.resolve(flags))
        except Exception as e:
            self.logger.warning(f"Rule {rule.name} could not resolve a task type, defaulting to {self.default.value}: {e}")
            return self.default
        self.logger.debug(f"Rule {rule.name} classified request as {task_type.value}")
        return task_type

    def match(self, text: str, flags: ClassificationFlags) -> Optional[ClassificationRule]:
        """Return the first rule whose predicate holds, or None."""
        for rule in self.rules:
            try:
                if rule.predicate(text, flags):
                    return rule
            except Exception as e:
                self.logger.warning(f"Classification rule {rule.name} failed and was skipped: {e}")
        return None
