from typing import Iterable, Optional

import structlog
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel

from recall_agent.domain.context.memory.conscious_memory import ConsciousMemoryService
from recall_agent.domain.context.memory.vector_memory_store import InMemoryMemoryStore, MemoryStore
from recall_agent.domain.context.memory_retriever import MemoryRetriever
from recall_agent.domain.orchestration.core.turn_controller import TurnController
from recall_agent.domain.reflection.reflection_evaluator import ReflectionEvaluator, build_reflection_strategy
from recall_agent.domain.tool.conscious_memory_tools import ConsciousMemoryToolProvider
from recall_agent.domain.tool.tool_gateway import ToolGateway
from recall_agent.domain.tool.tool_provider import ToolProvider
from recall_agent.infrastructure.config.settings import AgentSettings
from recall_agent.infrastructure.llm.model_client import ChatModelClient, ModelClient
from recall_agent.infrastructure.observability.langfuse_tracing import TurnTracer

logger = structlog.get_logger(__name__)


def build_turn_controller(
    chat_model: Optional[BaseChatModel] = None,
    settings: Optional[AgentSettings] = None,
    model_client: Optional[ModelClient] = None,
    memory_store: Optional[MemoryStore] = None,
    embeddings: Optional[Embeddings] = None,
    providers: Iterable[ToolProvider] = (),
    enable_conscious_memory_tools: bool = True
) -> TurnController:
    """Wire a TurnController from settings and a chat model"""

    settings = settings or AgentSettings()
    if model_client is None:
        if chat_model is None:
            raise ValueError("Either chat_model or model_client is required")
        model_client = ChatModelClient(chat_model, native_tools=settings.tools.native_tool_calls)

    memory_store = memory_store or InMemoryMemoryStore(embeddings=embeddings)
    retriever = MemoryRetriever(memory_store, settings.retrieval)

    gateway = ToolGateway(validate_arguments=settings.tools.validate_arguments)
    if enable_conscious_memory_tools:
        gateway.register_provider(ConsciousMemoryToolProvider(ConsciousMemoryService(memory_store, retriever)))
    for provider in providers:
        gateway.register_provider(provider)

    evaluator = None
    if settings.reflection.enabled:
        evaluator = ReflectionEvaluator(
            build_reflection_strategy(settings.reflection, model_client),
            quality_threshold=settings.reflection.quality_threshold
        )

    logger.info(
        "Turn controller built",
        providers=list(gateway.providers),
        reflection=settings.reflection.strategy if evaluator else "disabled"
    )
    return TurnController(
        model_client=model_client,
        tool_gateway=gateway,
        retriever=retriever,
        memory_store=memory_store,
        settings=settings,
        reflection_evaluator=evaluator,
        tracer=TurnTracer(settings.tracing)
    )
