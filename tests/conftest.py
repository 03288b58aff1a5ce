"""
Shared fixtures: isolated settings, a scripted model client and a store
whose semantic hits are fixed by the test.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Union
import asyncio

import pytest
from langchain_core.messages import BaseMessage

from recall_agent.domain.context.memory.vector_memory_store import InMemoryMemoryStore, MemoryStore
from recall_agent.domain.context.memory_retriever import MemoryRetriever
from recall_agent.domain.models.memory import MemoryRecord, SearchResult
from recall_agent.domain.orchestration.core.turn_controller import TurnController
from recall_agent.domain.reflection.reflection_evaluator import ReflectionEvaluator, StaticReflectionStrategy
from recall_agent.domain.tool.tool_gateway import ToolGateway
from recall_agent.infrastructure.config.settings import AgentSettings, load_settings
from recall_agent.infrastructure.llm.model_client import ModelClient
from recall_agent.infrastructure.observability.logging import metrics


Reply = Union[str, Exception, Callable[[List[BaseMessage], Optional[str]], str]]


class ScriptedModelClient(ModelClient):
    """Returns queued replies in order and records every call"""

    def __init__(self, replies: Sequence[Reply] = (), default: str = "OK"):
        self.replies = list(replies)
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, messages: List[BaseMessage], system_prompt: Optional[str] = None) -> str:
        self.calls.append({"messages": list(messages), "system_prompt": system_prompt})
        # Yield so concurrent turns interleave
        await asyncio.sleep(0)

        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(messages, system_prompt)
        return reply


class FixedSemanticStore(MemoryStore):
    """Store whose semantic search returns a fixed list"""

    def __init__(self, semantic: Sequence[SearchResult] = (), records: Sequence[MemoryRecord] = ()):
        self.semantic = list(semantic)
        self.records = list(records)
        self.get_all_calls = 0

    async def store(self, text: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        record = MemoryRecord(id=f"m{len(self.records)}", text=text, metadata=dict(metadata or {}))
        self.records.append(record)
        return record.id

    async def search(self, query, limit=5, session_id=None, min_score=None) -> List[SearchResult]:
        return list(self.semantic[:limit])

    async def get_all(self, session_id=None, limit=None) -> List[MemoryRecord]:
        self.get_all_calls += 1
        return list(self.records)

    async def get(self, memory_id):
        return next((record for record in self.records if record.id == memory_id), None)

    async def delete(self, memory_id):
        before = len(self.records)
        self.records = [record for record in self.records if record.id != memory_id]
        return len(self.records) != before

    async def count(self):
        return len(self.records)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Keep developer RECALL_* variables out of settings and reset metrics"""
    import os
    for key in list(os.environ):
        if key.startswith("RECALL_"):
            monkeypatch.delenv(key, raising=False)
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def settings() -> AgentSettings:
    return load_settings(_env_file=None)


@pytest.fixture
def memory_store() -> InMemoryMemoryStore:
    return InMemoryMemoryStore()


@pytest.fixture
def retriever(memory_store, settings) -> MemoryRetriever:
    return MemoryRetriever(memory_store, settings.retrieval)


@pytest.fixture
def gateway() -> ToolGateway:
    return ToolGateway()


@pytest.fixture
def model_client() -> ScriptedModelClient:
    return ScriptedModelClient()


@pytest.fixture
def make_controller(memory_store, retriever, gateway, settings):
    """Build a TurnController around a scripted model client"""

    def _make(client: ModelClient, evaluator: Optional[ReflectionEvaluator] = None, **overrides) -> TurnController:
        return TurnController(
            model_client=client,
            tool_gateway=gateway,
            retriever=retriever,
            memory_store=memory_store,
            settings=overrides.pop("turn_settings", settings),
            reflection_evaluator=evaluator or ReflectionEvaluator(StaticReflectionStrategy()),
            **overrides
        )
    return _make
