"""
Tests for chat_orchestrator/core/quality.py
"""

from chat_orchestrator.core.quality import (
    QualityAssessor,
    QualityGate,
    QualityPolicy,
    QualityRule,
)
from chat_orchestrator.models import QualityGateConfig, RouteDecision, TaskType

CAPITAL_QUERY = "What is the capital of France?"


class TestQualityAssessor:
    """Test heuristic scoring."""

    def test_empty_response_scores_zero(self):
        assessment = QualityAssessor().assess(CAPITAL_QUERY, "   ", TaskType.QUICK_QA)
        assert assessment.score == 0
        assert assessment.should_fallback
        assert assessment.reasons == ["Empty response"]
        assert assessment.confidence == "high"

    def test_terse_answer_falls_back(self):
        assessment = QualityAssessor().assess(CAPITAL_QUERY, "Paris.", TaskType.QUICK_QA)
        assert assessment.should_fallback
        assert assessment.score < 7
        assert "Response too short (< 50 chars)" in assessment.reasons

    def test_good_answer_is_accepted(self):
        response = ("The capital of France is Paris, which has served as the "
                    "country's political centre for centuries.")
        assessment = QualityAssessor().assess(CAPITAL_QUERY, response, TaskType.QUICK_QA)
        assert assessment.score == 10
        assert not assessment.should_fallback
        assert assessment.reasons == ["Quality acceptable"]
        assert assessment.confidence == "high"

    def test_code_request_without_code_block(self):
        response = "You can reverse a string by slicing it with a negative step in most languages."
        assessment = QualityAssessor().assess(
            "Write a function to reverse a string", response, TaskType.CODE_GENERATION
        )
        assert "Code requested but no code blocks in response" in assessment.reasons
        assert assessment.score == 6

    def test_incapacity_statement_is_penalised(self):
        response = "I'm sorry, I cannot help with that request because it is outside my knowledge today."
        assessment = QualityAssessor().assess("Tell a joke", response, TaskType.GENERAL)
        assert "Contains uncertainty/incapacity statements" in assessment.reasons

    def test_score_is_clamped_at_zero(self):
        rules = [QualityRule(f"r{i}", 5, lambda q, r, t: "bad") for i in range(5)]
        assessment = QualityAssessor(QualityPolicy(rules=rules)).assess("q", "some response", TaskType.GENERAL)
        assert assessment.score == 0
        assert len(assessment.reasons) == 5

    def test_custom_policy_rule(self):
        def mentions_competitor(query, response, task_type):
            return "Mentions a competitor" if "acme" in response.lower() else None

        policy = QualityPolicy(rules=[QualityRule("competitor", 8, mentions_competitor)])
        assessor = QualityAssessor(policy)
        assert assessor.assess("q", "Try Acme instead", TaskType.GENERAL).should_fallback
        assert not assessor.assess("q", "Try ours", TaskType.GENERAL).should_fallback

    def test_failing_rule_is_skipped(self):
        def explode(query, response, task_type):
            raise ValueError("bad rule")

        policy = QualityPolicy(rules=[QualityRule("explode", 10, explode)])
        assessment = QualityAssessor(policy).assess("q", "fine", TaskType.GENERAL)
        assert assessment.score == 10
        assert not assessment.should_fallback


class TestQualityGate:
    """Test the gated pair table."""

    def test_applies_to_configured_pairs(self):
        gate = QualityGate()
        assert gate.applies(TaskType.QUICK_QA, "groq")
        assert gate.applies(TaskType.GENERAL, "groq")
        assert not gate.applies(TaskType.QUICK_QA, "openai")
        assert not gate.applies(TaskType.CODE_GENERATION, "groq")

    def test_disabled_gate_never_applies(self):
        gate = QualityGate(QualityGateConfig(enabled=False))
        assert not gate.applies(TaskType.QUICK_QA, "groq")

    def test_reduced_caps_token_ceiling(self):
        gate = QualityGate()
        assert gate.reduced(RouteDecision("groq", "m", 0.7, 2048)).max_tokens == 1024
        assert gate.reduced(RouteDecision("groq", "m", 0.7, 512)).max_tokens == 512

    def test_policy_uses_configured_threshold(self):
        assert QualityGate(QualityGateConfig(fallback_threshold=5)).policy().fallback_threshold == 5
