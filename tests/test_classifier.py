"""
Tests for chat_orchestrator/core/classifier.py
Rule-table task classification and coding complexity.
"""

import pytest

from chat_orchestrator.core.classifier import (
    DEFAULT_RULES,
    ClassificationRule,
    TaskClassifier,
    estimate_coding_complexity,
    has_code_fence,
    last_user_text,
)
from chat_orchestrator.models import ClassificationFlags, Message, OperatingMode, Role, TaskType


def user(text):
    return [Message(role=Role.USER, content=text)]


class TestRuleTable:
    """Test individual rules of the default table."""

    @pytest.mark.parametrize("text,expected", [
        ("What's today's weather in Paris?", TaskType.WEB_SEARCH),
        ("Write a function that reverses a string", TaskType.CODE_GENERATION),
        ("Write a poem about autumn leaves", TaskType.CREATIVE_WRITING),
        ("Analyze this dataset for seasonal patterns", TaskType.DATA_ANALYSIS),
        ("What is a closure?", TaskType.QUICK_QA),
        ("Why does ice float on water?", TaskType.REASONING),
        ("hello there", TaskType.GENERAL),
    ])
    def test_keyword_rules(self, text, expected):
        assert TaskClassifier().classify(user(text)) is expected

    def test_code_fence_with_editing_cue_is_code_editing(self):
        text = "Please fix this bug:\n```python\nprint('hi'\n```"
        flags = ClassificationFlags(has_code=has_code_fence(text))
        assert TaskClassifier().classify(user(text), flags) is TaskType.CODE_EDITING

    def test_editing_cue_without_code_is_not_code_editing(self):
        result = TaskClassifier().classify(user("fix my bike chain"), ClassificationFlags(has_code=False))
        assert result is not TaskType.CODE_EDITING

    def test_explicit_override_short_circuits(self):
        flags = ClassificationFlags(user_override=TaskType.REASONING, has_images=True)
        assert TaskClassifier().classify(user("What's the news today?"), flags) is TaskType.REASONING

    def test_deep_web_search_forces_research(self):
        flags = ClassificationFlags(deep_web_search=True)
        assert TaskClassifier().classify(user("hello"), flags) is TaskType.DEEP_RESEARCH

    def test_images_select_vision(self):
        flags = ClassificationFlags(has_images=True)
        assert TaskClassifier().classify(user("what is in this picture"), flags) is TaskType.VISION

    def test_many_files_select_long_context(self):
        flags = ClassificationFlags(file_count=4)
        assert TaskClassifier().classify(user("summarise these"), flags) is TaskType.LONG_CONTEXT

    def test_very_long_message_selects_long_context(self):
        assert TaskClassifier().classify(user("a " * 8000)) is TaskType.LONG_CONTEXT

    def test_rule_order_starts_with_override(self):
        assert DEFAULT_RULES[0].name == "explicit_override"
        assert [r.name for r in DEFAULT_RULES].index("code_editing") < \
            [r.name for r in DEFAULT_RULES].index("code_generation")


class TestClassifierTotality:
    """Test that classification never fails."""

    def test_empty_conversation_is_general(self):
        assert TaskClassifier().classify([]) is TaskType.GENERAL

    def test_only_assistant_messages_is_general(self):
        messages = [Message(role=Role.ASSISTANT, content="How can I help?")]
        assert TaskClassifier().classify(messages) is TaskType.GENERAL

    def test_failing_rule_is_skipped(self):
        def explode(text, flags):
            raise RuntimeError("broken rule")

        rules = [
            ClassificationRule("broken", TaskType.VISION, explode),
            ClassificationRule("always", TaskType.REASONING, lambda text, flags: True),
        ]
        assert TaskClassifier(rules=rules).classify(user("anything")) is TaskType.REASONING

    def test_override_rule_resolves_from_flags(self):
        rule = DEFAULT_RULES[0]
        flags = ClassificationFlags(user_override=TaskType.CREATIVE_WRITING)
        assert rule.predicate("anything", flags)
        assert rule.resolve(flags) is TaskType.CREATIVE_WRITING
        assert not rule.predicate("anything", ClassificationFlags())

    def test_fixed_rule_resolves_to_its_task_type(self):
        rule = ClassificationRule("always", TaskType.REASONING, lambda text, flags: True)
        assert rule.resolve(ClassificationFlags()) is TaskType.REASONING

    def test_custom_resolver_rule(self):
        rules = [ClassificationRule(
            "coding_mode", None,
            lambda text, flags: flags.mode is OperatingMode.CODING,
            resolver=lambda flags: TaskType.CODE_EDITING if flags.has_code else TaskType.CODE_GENERATION,
        )]
        classifier = TaskClassifier(rules=rules)
        assert classifier.classify(user("hi"), ClassificationFlags(mode=OperatingMode.CODING)) is TaskType.CODE_GENERATION
        assert classifier.classify(user("hi"), ClassificationFlags(mode=OperatingMode.CODING, has_code=True)) is TaskType.CODE_EDITING

    def test_failing_resolver_falls_back_to_default(self):
        def explode(flags):
            raise RuntimeError("broken resolver")

        rules = [ClassificationRule("broken", None, lambda text, flags: True, resolver=explode)]
        assert TaskClassifier(rules=rules).classify(user("anything")) is TaskType.GENERAL

    def test_classification_is_idempotent(self):
        classifier = TaskClassifier()
        messages = user("Compare merge sort and quicksort")
        first = classifier.classify(messages)
        assert all(classifier.classify(messages) is first for _ in range(5))

    def test_last_user_text_uses_most_recent_user_message(self):
        messages = [
            Message(role=Role.USER, content="first"),
            Message(role=Role.ASSISTANT, content="reply"),
            Message(role=Role.USER, content="second"),
            Message(role=Role.ASSISTANT, content="reply again"),
        ]
        assert last_user_text(messages) == "second"


class TestCodingComplexity:
    """Test coding complexity estimation."""

    def test_short_request_is_simple(self):
        assert estimate_coding_complexity("add a print statement", False, 0) == 0.0

    def test_complex_request_exceeds_heavy_threshold(self):
        message = "architecture refactor microservices distributed scalability " + "x" * 1600
        assert estimate_coding_complexity(message, False, 0) > 0.7

    def test_complexity_is_capped(self):
        message = "architecture refactor multi-file system design " * 50
        assert estimate_coding_complexity(message, True, 10) == 1.0

    def test_has_code_fence(self):
        assert has_code_fence("look:\n```js\nx()\n```")
        assert not has_code_fence("no code here")
