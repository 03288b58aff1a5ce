import time
import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from recall_agent.domain.orchestration.core.turn_controller import TurnController
from recall_agent.infrastructure.observability.logging import metrics
from .route.turn import router as turn_router

logger = structlog.get_logger(__name__)


def create_app(turn_controller: TurnController) -> FastAPI:
    """HTTP surface for the turn engine"""

    app = FastAPI(title="Recall Agent Turn API")
    app.state.turn_controller = turn_controller

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        started = time.perf_counter()
        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response = await call_next(request)
            duration_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2)
            )
        metrics.record_latency("http_request", duration_ms, tags={"path": request.url.path})
        response.headers["X-Request-ID"] = request_id
        return response

    @app.on_event("shutdown")
    async def shutdown_event():
        if turn_controller.tracer is not None:
            turn_controller.tracer.flush()
        logger.info("Turn API shutdown")

    app.include_router(turn_router)
    return app
