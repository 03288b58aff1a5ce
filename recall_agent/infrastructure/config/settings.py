"""
Runtime settings for the turn engine.

Values come from the environment (prefix ``RECALL_``, nested sections split by
``__``) or an optional ``.env`` file, e.g. ``RECALL_RETRIEVAL__TOP_K=5``.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Respond to the user's queries "
    "in a helpful and informative way."
)

DEFAULT_CONTEXT_TEMPLATE = (
    "Based on previous conversations:\n\n{memories}\n\n"
    "Now respond to the current message."
)

DEFAULT_APOLOGY = (
    "I apologize, but I encountered an error while processing your message. "
    "Please try again."
)


class RetrievalSettings(BaseModel):
    """Hybrid memory retrieval tuning"""
    enabled: bool = True
    session_scoped: bool = True
    top_k: int = Field(default=3, ge=1)
    min_score: float = Field(default=0.15, description="Semantic similarity floor")
    keyword_fallback_threshold: int = Field(
        default=2, ge=0, description="Run keyword search when semantic hits are fewer than this"
    )
    keyword_base_increment: float = 0.3
    keyword_boundary_bonus: float = 0.2
    keyword_min_length: int = Field(default=3, ge=1, description="Shortest keyword considered")
    keyword_corpus_limit: int = Field(default=1000, ge=1)
    tie_break_epsilon: float = Field(default=0.1, ge=0)
    min_query_length: int = 3
    important_short_terms: List[str] = Field(
        default_factory=lambda: ["rag", "api", "llm", "mcp", "kg", "ui", "db", "cli", "app"]
    )
    context_template: str = DEFAULT_CONTEXT_TEMPLATE


class ReflectionSettings(BaseModel):
    """Self-reflection policy"""
    enabled: bool = True
    strategy: Literal["model", "static"] = "model"
    quality_threshold: float = Field(default=7.0, ge=0, le=10)
    generate_improvement: bool = True
    query_length_threshold: int = Field(default=100, description="User text length that triggers thorough mode")
    response_length_threshold: int = Field(default=500, description="Reply length that triggers thorough mode")
    static_score: float = Field(default=10.0, ge=0, le=10)


class ToolSettings(BaseModel):
    """Tool invocation protocol"""
    parse_text_tool_calls: bool = Field(
        default=True, description="Scrape JSON tool calls from free-form replies"
    )
    native_tool_calls: bool = Field(
        default=False, description="Ask the model client for structured tool calls"
    )
    validate_arguments: bool = True


class ModelSettings(BaseModel):
    """Chat model passed to langchain's init_chat_model"""
    name: str = Field(default="openai:gpt-4o-mini", description="provider:model identifier")
    temperature: float = 0.7


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: Literal["json", "console"] = "json"
    service_name: str = "recall-agent"


class TracingSettings(BaseModel):
    """Langfuse tracing of turn runs"""
    langfuse_enabled: bool = False
    public_key: Optional[str] = None
    secret_key: Optional[str] = None
    host: Optional[str] = None


class AgentSettings(BaseSettings):
    """Top-level settings"""

    model_config = SettingsConfigDict(
        env_prefix="RECALL_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    apology_message: str = DEFAULT_APOLOGY
    history_limit: int = Field(default=20, ge=0, description="Prior messages carried into a turn")
    store_memories: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    model: ModelSettings = Field(default_factory=ModelSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    reflection: ReflectionSettings = Field(default_factory=ReflectionSettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    tracing: TracingSettings = Field(default_factory=TracingSettings)


def load_settings(**overrides) -> AgentSettings:
    """Build settings from the environment, applying keyword overrides last"""
    return AgentSettings(**overrides)
