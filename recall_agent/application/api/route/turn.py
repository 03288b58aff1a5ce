from typing import Annotated, Any, Dict, List

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from langchain_core.messages import BaseMessage

from recall_agent.domain.models.turn_state import TurnRequest, TurnResponse
from recall_agent.domain.orchestration.core.turn_controller import TurnController
from recall_agent.infrastructure.llm.model_client import content_to_text
from recall_agent.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_turn_controller(request: Request) -> TurnController:
    return request.app.state.turn_controller


def _serialize_message(message: BaseMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "role": message.type,
        "content": content_to_text(message.content),
    }


@router.post("/api/v1/turn", response_model=TurnResponse)
async def run_turn(
    request: TurnRequest,
    controller: Annotated[TurnController, Depends(get_turn_controller)]
):
    return await controller.run_turn(request.session_id, request.user_text)


@router.get("/api/v1/sessions/{session_id}/messages")
async def get_session_messages(
    session_id: str,
    controller: Annotated[TurnController, Depends(get_turn_controller)]
) -> List[Dict[str, Any]]:
    messages = await controller.get_messages(session_id)
    return [_serialize_message(message) for message in messages]


@router.delete("/api/v1/sessions/{session_id}")
async def delete_session(
    session_id: str,
    controller: Annotated[TurnController, Depends(get_turn_controller)]
):
    if not await controller.reset_session(session_id):
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    logger.info("Session deleted", session_id=session_id)
    return {"session_id": session_id, "deleted": True}


@router.get("/health")
async def health(controller: Annotated[TurnController, Depends(get_turn_controller)]):
    return {
        "status": "ok",
        "memories": await controller.memory_store.count(),
        "tool_providers": controller.tool_gateway.describe_providers(),
        "metrics": metrics.get_metrics_summary(),
    }
