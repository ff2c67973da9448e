"""Conversation persistence for in-memory storage."""

from typing import Any, Protocol

from chathub.errors import ConversationNotFoundError
from chathub.models.conversation import Conversation


class ConversationStore(Protocol):
    """Storage boundary. Conversations cross it as plain JSON-compatible records."""

    def create_conversation(self, conversation: Conversation) -> Conversation: ...

    def get_conversation(self, conversation_id: str) -> Conversation:
        """Raises ConversationNotFoundError if the id is unknown."""
        ...

    def update_conversation(self, conversation: Conversation) -> None: ...

    def delete_conversation(self, conversation_id: str) -> bool: ...

    def list_conversations(self) -> list[Conversation]: ...


class InMemoryConversationStore:
    """In-memory conversation store.

    Holds serialized records rather than model instances, so everything
    read back has been through the same round trip a durable store would
    apply.
    """

    def __init__(self) -> None:
        self.records: dict[str, dict[str, Any]] = {}

    def create_conversation(self, conversation: Conversation) -> Conversation:
        """Store a new conversation.

        Args:
            conversation: Conversation to store

        Returns:
            The stored conversation
        """
        if conversation.id in self.records:
            raise ValueError(f"Conversation already exists: {conversation.id}")
        self.records[conversation.id] = conversation.to_record()
        return conversation

    def get_conversation(self, conversation_id: str) -> Conversation:
        """Get a conversation by ID.

        Raises:
            ConversationNotFoundError: If no conversation has this ID
        """
        record = self.records.get(conversation_id)
        if record is None:
            raise ConversationNotFoundError(conversation_id)
        return Conversation.from_record(record)

    def update_conversation(self, conversation: Conversation) -> None:
        """Persist the latest messages and flags of a conversation.

        Raises:
            ConversationNotFoundError: If the conversation was deleted meanwhile
        """
        if conversation.id not in self.records:
            raise ConversationNotFoundError(conversation.id)
        self.records[conversation.id] = conversation.to_record()

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation.

        Returns:
            True if the conversation was deleted, False if not found
        """
        return self.records.pop(conversation_id, None) is not None

    def list_conversations(self) -> list[Conversation]:
        """All conversations, most recently updated first."""
        conversations = [Conversation.from_record(record) for record in self.records.values()]
        return sorted(conversations, key=lambda c: c.updated_at, reverse=True)

    def get_conversation_count(self) -> int:
        return len(self.records)


conversation_store = InMemoryConversationStore()
