"""Message store — clients, conversations, and their persisted turns."""

from living_library.store.messages import ClientNotFound, ConversationNotFound, MessageStore
from living_library.store.models import Client, Conversation, Message

__all__ = [
    "Client",
    "ClientNotFound",
    "Conversation",
    "ConversationNotFound",
    "Message",
    "MessageStore",
]
