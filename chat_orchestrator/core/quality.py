"""
Quality assessment for buffered responses and the table of (task type,
provider) pairs that are quality-gated.
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from ..models import QualityAssessment, QualityGateConfig, RouteDecision, TaskType
from ..utils import get_logger

# A check returns a reason string when it fires, None otherwise
QualityCheck = Callable[[str, str, TaskType], Optional[str]]

INCAPACITY_PATTERN = re.compile(
    r"i don't know|i can't|i'm unable|i cannot|i'm not sure|i'm uncertain|i don't have|"
    r"i don't understand|unable to|cannot help|sorry, i",
    re.IGNORECASE,
)
HEDGING_PATTERN = re.compile(r"\b(?:might|possibly|perhaps|maybe|uncertain|not sure|probably)\b", re.IGNORECASE)
QUESTION_PATTERN = re.compile(
    r"\b(?:what|why|how|when|where|who|which|explain|describe|tell me|show me)\b", re.IGNORECASE
)
CODE_BLOCK_PATTERN = re.compile(r"```[\s\S]*?```")
INCOMPLETE_CODE_PATTERN = re.compile(r"//\s*TODO|//\s*FIXME|#\s*TODO|#\s*FIXME|^\s*pass\s*$|\.\.\.", re.IGNORECASE | re.MULTILINE)
CODE_REQUEST_PATTERN = re.compile(r"code|function|class|implement|write", re.IGNORECASE)
EXPLANATION_PATTERN = re.compile(
    r"because|since|therefore|thus|hence|as a result|due to|reason|explanation", re.IGNORECASE
)
ANALYSIS_PATTERN = re.compile(r"analy[sz]e|analysis|examine|evaluate|consider|compare|contrast", re.IGNORECASE)
SOURCE_PATTERN = re.compile(r"source|reference|citation|according to|from|https?://", re.IGNORECASE)

CODE_TASKS = (TaskType.CODE_GENERATION, TaskType.CODE_EDITING)


@dataclass(frozen=True)
class QualityRule:
    """A named penalty applied when its check fires."""
    name: str
    penalty: float
    check: QualityCheck


def too_short(query: str, response: str, task_type: TaskType) -> Optional[str]:
    if len(response.strip()) < 50:
        return "Response too short (< 50 chars)"
    return None


def disproportionately_short(query: str, response: str, task_type: TaskType) -> Optional[str]:
    response_length = len(response.strip())
    query_length = len(query.strip())
    if response_length >= 50 and query_length > 100 and response_length < query_length * 0.5:
        return "Response disproportionately short"
    return None


def incapacity(query: str, response: str, task_type: TaskType) -> Optional[str]:
    if INCAPACITY_PATTERN.search(response):
        return "Contains uncertainty/incapacity statements"
    return None


def hedging(query: str, response: str, task_type: TaskType) -> Optional[str]:
    count = len(HEDGING_PATTERN.findall(response))
    if count > 3:
        return f"Too many uncertainty words ({count})"
    return None


def unaddressed_query(query: str, response: str, task_type: TaskType) -> Optional[str]:
    if not QUESTION_PATTERN.search(query):
        return None
    keywords = [w for w in query.lower().split() if len(w) > 4]
    if not keywords:
        return None
    response_lower = response.lower()
    matched = sum(1 for keyword in keywords if keyword in response_lower)
    if matched / len(keywords) < 0.3:
        return "Response doesn't address key query terms"
    return None


def incomplete_code(query: str, response: str, task_type: TaskType) -> Optional[str]:
    if task_type not in CODE_TASKS:
        return None
    blocks = CODE_BLOCK_PATTERN.findall(response)
    if blocks and any(INCOMPLETE_CODE_PATTERN.search(block) for block in blocks):
        return "Code contains TODO/FIXME or incomplete sections"
    return None


def missing_code(query: str, response: str, task_type: TaskType) -> Optional[str]:
    if task_type is TaskType.CODE_GENERATION and not CODE_BLOCK_PATTERN.search(response) \
            and CODE_REQUEST_PATTERN.search(query):
        return "Code requested but no code blocks in response"
    return None


def shallow_reasoning(query: str, response: str, task_type: TaskType) -> Optional[str]:
    if task_type not in (TaskType.REASONING, TaskType.DATA_ANALYSIS):
        return None
    if not EXPLANATION_PATTERN.search(response) and not ANALYSIS_PATTERN.search(response) \
            and len(response.strip()) < 200:
        return "Reasoning task lacks depth or explanation"
    return None


def missing_sources(query: str, response: str, task_type: TaskType) -> Optional[str]:
    if task_type not in (TaskType.WEB_SEARCH, TaskType.DEEP_RESEARCH):
        return None
    if not SOURCE_PATTERN.search(response) and len(response.strip()) > 100:
        return "Research response lacks source citations"
    return None


def repetition(query: str, response: str, task_type: TaskType) -> Optional[str]:
    sentences = [s.strip() for s in re.split(r"[.!?]+", response) if len(s.strip()) > 10]
    if len(sentences) <= 3:
        return None
    unique = {s.lower()[:50] for s in sentences}
    if 1 - len(unique) / len(sentences) > 0.3:
        return "Response contains significant repetition"
    return None


DEFAULT_QUALITY_RULES: List[QualityRule] = [
    QualityRule("too_short", 4, too_short),
    QualityRule("disproportionately_short", 2, disproportionately_short),
    QualityRule("incapacity", 3, incapacity),
    QualityRule("hedging", 2, hedging),
    QualityRule("unaddressed_query", 3, unaddressed_query),
    QualityRule("incomplete_code", 2, incomplete_code),
    QualityRule("missing_code", 4, missing_code),
    QualityRule("shallow_reasoning", 3, shallow_reasoning),
    QualityRule("missing_sources", 1, missing_sources),
    QualityRule("repetition", 2, repetition),
]


@dataclass
class QualityPolicy:
    """Scoring policy: start at max_score, subtract each fired rule's penalty."""
    rules: Sequence[QualityRule] = tuple(DEFAULT_QUALITY_RULES)
    max_score: float = 10.0
    fallback_threshold: float = 7.0


class QualityAssessor:
    """Heuristic scorer for a buffered response."""

    def __init__(self, policy: Optional[QualityPolicy] = None):
        self.policy = policy or QualityPolicy()
        self.logger = get_logger(__name__)

    def assess(self, query: str, response: str, task_type: TaskType) -> QualityAssessment:
        """
        Score a response against the query it answers.

        Args:
            query: The user's last message
            response: The buffered response text
            task_type: Classified task type

        Returns:
            QualityAssessment with score, fallback verdict and reasons
        """
        if not response or not response.strip():
            return QualityAssessment(score=0, should_fallback=True, reasons=["Empty response"], confidence="high")

        score = self.policy.max_score
        reasons: List[str] = []
        for rule in self.policy.rules:
            try:
                reason = rule.check(query or "", response, task_type)
            except Exception as e:
                self.logger.warning(f"Quality rule {rule.name} failed and was skipped: {e}")
                continue
            if reason:
                score -= rule.penalty
                reasons.append(reason)

        if score <= 4 or len(reasons) >= 3:
            confidence = "high"
        elif score >= 8 and not reasons:
            confidence = "high"
        else:
            confidence = "medium"

        return QualityAssessment(
            score=max(0.0, min(self.policy.max_score, score)),
            should_fallback=score < self.policy.fallback_threshold,
            reasons=reasons or ["Quality acceptable"],
            confidence=confidence,
        )


class QualityGate:
    """Which (task type, provider) pairs buffer, score and possibly fall back."""

    def __init__(self, config: Optional[QualityGateConfig] = None):
        self.config = config or QualityGateConfig()

    def applies(self, task_type: TaskType, provider: str) -> bool:
        if not self.config.enabled:
            return False
        return provider in self.config.pairs.get(task_type.value, [])

    def reduced(self, decision: RouteDecision) -> RouteDecision:
        """The primary decision with the buffered call's lower token ceiling."""
        return decision.with_max_tokens(min(decision.max_tokens, self.config.reduced_max_tokens))

    def policy(self) -> QualityPolicy:
        return QualityPolicy(fallback_threshold=self.config.fallback_threshold)
