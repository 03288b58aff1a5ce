import pytest

from conftest import ScriptedModelClient
from recall_agent.domain.errors import ReflectionError
from recall_agent.domain.reflection.reflection_evaluator import (
    ModelReflectionStrategy,
    ReflectionEvaluator,
    ReflectionMode,
    ReflectionOutcome,
    ReflectionStrategy,
    StaticReflectionStrategy,
    build_reflection_strategy,
    parse_evaluation,
)
from recall_agent.infrastructure.config.settings import ReflectionSettings


class FixedStrategy(ReflectionStrategy):
    def __init__(self, outcome):
        self.outcome = outcome

    async def evaluate(self, user_text, reply):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def test_parse_full_evaluation():
    outcome = parse_evaluation(
        "Score: 4\nCritique: Too vague.\nImproved Response: Paris is the capital.",
        expect_improvement=True
    )

    assert outcome.score == 4
    assert outcome.critique == "Too vague."
    assert outcome.improved_text == "Paris is the capital."


def test_parse_missing_score_defaults_to_five():
    outcome = parse_evaluation("Critique: fine")

    assert outcome.score == 5
    assert outcome.improved_text is None


class TestPolicy:

    @pytest.mark.asyncio
    async def test_low_score_with_improvement_replaces_reply(self):
        evaluator = ReflectionEvaluator(FixedStrategy(ReflectionOutcome(score=3, critique="weak", improved_text="better")))

        result, text = await evaluator.reflect("q", "original")

        assert result.improved is True
        assert text == "better"

    @pytest.mark.asyncio
    async def test_score_at_threshold_keeps_reply(self):
        evaluator = ReflectionEvaluator(FixedStrategy(ReflectionOutcome(score=7, critique="ok", improved_text="better")))

        result, text = await evaluator.reflect("q", "original")

        assert result.improved is False
        assert text == "original"

    @pytest.mark.asyncio
    async def test_low_score_without_improvement_keeps_reply(self):
        evaluator = ReflectionEvaluator(FixedStrategy(ReflectionOutcome(score=2, critique="bad")))

        result, text = await evaluator.reflect("q", "original")

        assert result.improved is False
        assert result.score == 2
        assert text == "original"

    @pytest.mark.asyncio
    async def test_strategy_error_yields_neutral_default(self):
        evaluator = ReflectionEvaluator(FixedStrategy(RuntimeError("model down")))

        result, text = await evaluator.reflect("q", "original")

        assert result.score == 0
        assert result.critique == "evaluation failed"
        assert result.improved is False
        assert text == "original"

    @pytest.mark.asyncio
    async def test_static_strategy_never_rewrites(self):
        evaluator = ReflectionEvaluator(StaticReflectionStrategy())

        result, text = await evaluator.reflect("q", "original")

        assert result.score == 10
        assert text == "original"


class TestModelStrategy:

    def test_mode_selection_thresholds(self):
        strategy = ModelReflectionStrategy(ScriptedModelClient())

        assert strategy.select_mode("x" * 100, "y" * 500) == ReflectionMode.QUICK
        assert strategy.select_mode("x" * 101, "short") == ReflectionMode.THOROUGH
        assert strategy.select_mode("short", "y" * 501) == ReflectionMode.THOROUGH

    @pytest.mark.asyncio
    async def test_quick_mode_is_one_call(self):
        client = ScriptedModelClient(["Score: 3\nCritique: thin\nImproved Response: richer answer"])
        strategy = ModelReflectionStrategy(client)

        outcome = await strategy.evaluate("What is RAG?", "A thing.")

        assert len(client.calls) == 1
        assert outcome.score == 3
        assert outcome.improved_text == "richer answer"

    @pytest.mark.asyncio
    async def test_thorough_mode_analyses_evaluates_and_improves(self):
        client = ScriptedModelClient(["analysis", "Score: 6\nCritique: misses detail", "improved answer"])
        strategy = ModelReflectionStrategy(client)

        outcome = await strategy.evaluate("q" * 150, "reply")

        assert len(client.calls) == 3
        assert outcome.score == 6
        assert outcome.critique == "misses detail"
        assert outcome.improved_text == "improved answer"


def test_build_strategy_from_settings():
    assert isinstance(build_reflection_strategy(ReflectionSettings(strategy="static"), None), StaticReflectionStrategy)
    assert isinstance(
        build_reflection_strategy(ReflectionSettings(), ScriptedModelClient()), ModelReflectionStrategy
    )
    with pytest.raises(ReflectionError):
        build_reflection_strategy(ReflectionSettings(strategy="model"), None)
