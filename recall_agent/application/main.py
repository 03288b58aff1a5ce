from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI
from langchain.chat_models import init_chat_model

from recall_agent.application.api.api_server import create_app
from recall_agent.application.bootstrap import build_turn_controller
from recall_agent.infrastructure.config.settings import AgentSettings, load_settings
from recall_agent.infrastructure.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def create_default_app(settings: Optional[AgentSettings] = None) -> FastAPI:
    """Turn API backed by the configured chat model"""

    settings = settings or load_settings()
    setup_logging(settings.logging)

    chat_model = init_chat_model(settings.model.name, temperature=settings.model.temperature)
    controller = build_turn_controller(chat_model, settings)
    logger.info("Turn API ready", model=settings.model.name)
    return create_app(controller)


def main():
    settings = load_settings()
    uvicorn.run(create_default_app(settings), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
