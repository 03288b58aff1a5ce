from typing import Dict, Any, List, Optional
from datetime import datetime, timezone
import copy

import structlog

from recall_agent.domain.models.turn_state import TurnState

logger = structlog.get_logger(__name__)


class ConversationStore:
    """Holds the accumulated turn state of each session between turns.

    One writer per session is assumed; sessions never share entries, so no
    locking is done across sessions.
    """

    def __init__(self):
        self.states: Dict[str, TurnState] = {}
        self.updated_at: Dict[str, datetime] = {}

    async def get(self, session_id: str) -> Optional[TurnState]:
        """Get a copy of the stored state for a session"""

        state = self.states.get(session_id)
        return copy.deepcopy(state) if state is not None else None

    async def put(self, session_id: str, state: TurnState) -> None:
        """Replace the stored state for a session"""

        self.states[session_id] = copy.deepcopy(state)
        self.updated_at[session_id] = datetime.now(timezone.utc)

    async def delete(self, session_id: str) -> bool:
        """Forget a session"""

        self.updated_at.pop(session_id, None)
        return self.states.pop(session_id, None) is not None

    async def list_sessions(self) -> List[Dict[str, Any]]:
        """Summaries of all known sessions, most recently updated first"""

        sessions = [
            {
                "session_id": session_id,
                "message_count": len(state.get("messages", [])),
                "last_updated": self.updated_at[session_id].isoformat(),
            }
            for session_id, state in self.states.items()
        ]
        sessions.sort(key=lambda s: s["last_updated"], reverse=True)
        return sessions
