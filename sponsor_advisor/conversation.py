"""Per-session conversation state.

Holds any number of conversations addressable by id plus a single active
pointer. Conversations are immutable snapshots; every operation installs a new
snapshot, so a Conversation handed to a caller never changes underneath it.
"""

import logging
import uuid
from dataclasses import replace
from typing import Dict, List, Optional

from .errors import ConversationNotFoundError
from .models import Conversation, ConversationMessage, SavedPreferences, utcnow

logger = logging.getLogger(__name__)


class ConversationStore:
    def __init__(self) -> None:
        self._conversations: Dict[str, Conversation] = {}
        self._active_id: Optional[str] = None

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    def create_conversation(self, title: str = "New Conversation") -> str:
        conversation_id = str(uuid.uuid4())
        self._conversations[conversation_id] = Conversation(id=conversation_id, title=title)
        self._active_id = conversation_id
        logger.debug("Created conversation %s", conversation_id)
        return conversation_id

    def restore(self, conversation: Conversation) -> None:
        """Install a conversation reloaded from persistence, replacing any local copy."""
        self._conversations[conversation.id] = conversation

    def set_active(self, conversation_id: str) -> None:
        self._require(conversation_id)
        self._active_id = conversation_id

    def add_message(self, conversation_id: str, message: ConversationMessage) -> None:
        conversation = self._require(conversation_id)
        if conversation.messages and message.timestamp < conversation.messages[-1].timestamp:
            raise ValueError("Messages must be appended in chronological order")
        self._conversations[conversation_id] = replace(
            conversation,
            messages=conversation.messages + (message,),
            last_activity=utcnow(),
        )

    def remove_message(self, conversation_id: str, message_id: str) -> bool:
        """Reverse a tentative append. Only the most recent message can be removed."""
        conversation = self._conversations.get(conversation_id)
        if conversation is None or not conversation.messages:
            return False
        if conversation.messages[-1].id != message_id:
            logger.warning("Refusing to remove message %s: not the latest in %s", message_id, conversation_id)
            return False
        self._conversations[conversation_id] = replace(conversation, messages=conversation.messages[:-1])
        return True

    def update_preferences(self, conversation_id: str, preferences: SavedPreferences) -> None:
        conversation = self._require(conversation_id)
        current = conversation.preferences or SavedPreferences()
        self._conversations[conversation_id] = replace(conversation, preferences=current.merge(preferences))

    def set_server_conversation_id(self, conversation_id: str, server_id: str) -> None:
        conversation = self._require(conversation_id)
        self._conversations[conversation_id] = replace(conversation, server_conversation_id=server_id)

    def delete_conversation(self, conversation_id: str) -> None:
        self._require(conversation_id)
        del self._conversations[conversation_id]
        if self._active_id == conversation_id:
            self._active_id = None

    def get_active(self) -> Optional[Conversation]:
        if self._active_id is None:
            return None
        return self._conversations.get(self._active_id)

    def get_by_id(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    def list_all(self) -> List[Conversation]:
        return sorted(self._conversations.values(), key=lambda c: c.last_activity, reverse=True)

    def _require(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError()
        return conversation
