"""
Self-reflection over an assistant reply.

A strategy scores the reply and may propose a rewrite; the evaluator applies
the quality policy and never lets a strategy failure reach the turn.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, Tuple
import re

import structlog
from langchain_core.messages import HumanMessage
from pydantic import BaseModel, Field

from recall_agent.domain.errors import ReflectionError
from recall_agent.domain.models.turn_state import ReflectionResult
from recall_agent.infrastructure.config.settings import ReflectionSettings
from recall_agent.infrastructure.llm.model_client import ModelClient

logger = structlog.get_logger(__name__)


EVALUATION_FAILED = "evaluation failed"


class ReflectionMode(str, Enum):
    QUICK = "quick"
    THOROUGH = "thorough"


class ReflectionOutcome(BaseModel):
    """Raw strategy output before the quality policy is applied"""
    score: float = Field(ge=0, le=10)
    critique: str
    improved_text: Optional[str] = None


class ReflectionStrategy(ABC):
    """Scores an assistant reply"""

    @abstractmethod
    async def evaluate(self, user_text: str, reply: str) -> ReflectionOutcome:
        pass


class StaticReflectionStrategy(ReflectionStrategy):
    """Always reports a fixed score and never rewrites"""

    def __init__(self, score: float = 10.0):
        self.score = score

    async def evaluate(self, user_text: str, reply: str) -> ReflectionOutcome:
        return ReflectionOutcome(score=self.score, critique="Reflection disabled; reply accepted as is")


QUICK_PROMPT = """You are an AI assistant evaluating the quality of a response to a user query.

User Query: "{user_text}"

AI Response: "{reply}"

Please evaluate the response on a scale of 1-10 and provide a brief critique.
Focus on:
1. Accuracy and relevance to the query
2. Completeness of the answer
3. Clarity and helpfulness
4. Tone and professionalism

Format your response as:
Score: [1-10]
Critique: [Your critique]
{improvement_line}"""

ANALYSIS_PROMPT = """You are an AI assistant analyzing a user query to identify key aspects that need to be addressed.

User Query: "{user_text}"

Please identify:
1. The main question or request
2. Any specific constraints or requirements
3. The implied knowledge level of the user
4. The expected format or depth of the response

Format your response as a concise analysis of what an ideal response should address."""

EVALUATION_PROMPT = """You are an AI assistant evaluating the quality of a response to a user query.

User Query: "{user_text}"

Query Analysis: "{analysis}"

AI Response: "{reply}"

Please evaluate the response on a scale of 1-10 and provide a detailed critique.
Focus on accuracy, completeness, clarity, tone, logical structure and level of detail.

Format your response as:
Score: [1-10]
Critique: [Your detailed critique with specific examples]"""

IMPROVEMENT_PROMPT = """You are an AI assistant tasked with improving a response to a user query.

User Query: "{user_text}"

Original Response: "{reply}"

Critique of Original Response: "{critique}"

Please provide an improved version of the response that addresses the critique."""

_SCORE = re.compile(r"Score:\s*(\d+(?:\.\d+)?)", re.IGNORECASE)
_CRITIQUE = re.compile(r"Critique:\s*(.*?)(?:Improved Response:|$)", re.IGNORECASE | re.DOTALL)
_IMPROVED = re.compile(r"Improved Response:\s*(.*)$", re.IGNORECASE | re.DOTALL)

DEFAULT_SCORE = 5.0


def parse_evaluation(text: str, expect_improvement: bool = False) -> ReflectionOutcome:
    """Read Score/Critique/Improved Response sections; a missing score means 5"""

    score_match = _SCORE.search(text)
    critique_match = _CRITIQUE.search(text)
    improved_match = _IMPROVED.search(text) if expect_improvement else None

    score = float(score_match.group(1)) if score_match else DEFAULT_SCORE
    critique = critique_match.group(1).strip() if critique_match else "No critique provided"
    improved = improved_match.group(1).strip() if improved_match else None

    return ReflectionOutcome(
        score=max(0.0, min(10.0, score)),
        critique=critique or "No critique provided",
        improved_text=improved or None
    )


class ModelReflectionStrategy(ReflectionStrategy):
    """Asks the model to critique its own reply.

    Short exchanges get a single-prompt QUICK pass; long ones get a THOROUGH
    pass that analyses the query, evaluates against the analysis and then
    writes an improvement.
    """

    def __init__(
        self,
        model_client: ModelClient,
        generate_improvement: bool = True,
        query_length_threshold: int = 100,
        response_length_threshold: int = 500
    ):
        self.model_client = model_client
        self.generate_improvement = generate_improvement
        self.query_length_threshold = query_length_threshold
        self.response_length_threshold = response_length_threshold

    def select_mode(self, user_text: str, reply: str) -> ReflectionMode:
        if len(user_text) > self.query_length_threshold or len(reply) > self.response_length_threshold:
            return ReflectionMode.THOROUGH
        return ReflectionMode.QUICK

    async def _ask(self, prompt: str) -> str:
        return await self.model_client.generate([HumanMessage(content=prompt)])

    async def evaluate(self, user_text: str, reply: str) -> ReflectionOutcome:
        mode = self.select_mode(user_text, reply)
        logger.debug("Reflecting on reply", mode=mode.value, query_length=len(user_text), reply_length=len(reply))

        if mode == ReflectionMode.QUICK:
            improvement_line = (
                "Improved Response: [Your improved version of the response]"
                if self.generate_improvement else ""
            )
            raw = await self._ask(QUICK_PROMPT.format(
                user_text=user_text, reply=reply, improvement_line=improvement_line
            ))
            return parse_evaluation(raw, expect_improvement=self.generate_improvement)

        analysis = await self._ask(ANALYSIS_PROMPT.format(user_text=user_text))
        raw = await self._ask(EVALUATION_PROMPT.format(user_text=user_text, analysis=analysis, reply=reply))
        outcome = parse_evaluation(raw)

        if self.generate_improvement:
            improved = await self._ask(IMPROVEMENT_PROMPT.format(
                user_text=user_text, reply=reply, critique=outcome.critique
            ))
            outcome.improved_text = improved.strip() or None
        return outcome


class ReflectionEvaluator:
    """Applies the quality policy to a strategy's evaluation"""

    def __init__(self, strategy: ReflectionStrategy, quality_threshold: float = 7.0):
        self.strategy = strategy
        self.quality_threshold = quality_threshold

    async def reflect(self, user_text: str, reply: str) -> Tuple[ReflectionResult, str]:
        """Return the reflection and the reply to keep.

        The reply is replaced only when an improvement exists and the score is
        below the quality threshold. Strategy errors yield score 0 and leave
        the reply unchanged.
        """

        try:
            outcome = await self.strategy.evaluate(user_text, reply)
        except Exception as e:
            logger.warning("Reflection failed", error=str(e), exc_info=True)
            return ReflectionResult(score=0, critique=EVALUATION_FAILED, improved=False), reply

        if outcome.improved_text and outcome.score < self.quality_threshold:
            logger.info(
                "Reply replaced by reflection",
                score=outcome.score,
                threshold=self.quality_threshold
            )
            return ReflectionResult(score=outcome.score, critique=outcome.critique, improved=True), outcome.improved_text

        return ReflectionResult(score=outcome.score, critique=outcome.critique, improved=False), reply


def build_reflection_strategy(settings: ReflectionSettings, model_client: Optional[ModelClient]) -> ReflectionStrategy:
    """Pick the configured strategy"""

    if settings.strategy == "static":
        return StaticReflectionStrategy(settings.static_score)
    if model_client is None:
        raise ReflectionError("Model reflection needs a model client")
    return ModelReflectionStrategy(
        model_client,
        generate_improvement=settings.generate_improvement,
        query_length_threshold=settings.query_length_threshold,
        response_length_threshold=settings.response_length_threshold
    )
