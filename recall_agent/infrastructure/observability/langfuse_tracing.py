# Langfuse integration
from typing import Any, Dict, Optional

import structlog
from langfuse import Langfuse
from langfuse.langchain import CallbackHandler

from recall_agent.infrastructure.config.settings import TracingSettings

logger = structlog.get_logger(__name__)


class TurnTracer:
    """Attaches Langfuse tracing to turn graph runs when enabled"""

    def __init__(self, settings: Optional[TracingSettings] = None):
        self.settings = settings or TracingSettings()
        self.client: Optional[Langfuse] = None

        if self.settings.langfuse_enabled:
            self.client = Langfuse(
                public_key=self.settings.public_key,
                secret_key=self.settings.secret_key,
                host=self.settings.host
            )
            logger.info("Langfuse tracing enabled", host=self.settings.host)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def run_config(self, session_id: str, turn_id: str) -> Dict[str, Any]:
        """Callbacks and metadata to merge into a graph run config"""

        if not self.enabled:
            return {}

        return {
            "callbacks": [CallbackHandler(public_key=self.settings.public_key)],
            "metadata": {
                "langfuse_session_id": session_id,
                "langfuse_tags": ["turn"],
                "turn_id": turn_id,
            },
            "run_name": "turn",
        }

    def flush(self):
        if self.client is not None:
            self.client.flush()
