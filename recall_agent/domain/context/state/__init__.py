# Conversation state is "the NOW" of a session: the transcript so far, the
# last retrieval, tool and reflection outcomes, and the id of the last stored
# memory. It is snapshotted after every turn stage.

from .conversation_store import ConversationStore

__all__ = ["ConversationStore"]
