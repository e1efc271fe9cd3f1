from .conversation_store import Conversation, ConversationStore, InMemoryConversationStore, Message
from .keyed_lock import KeyedLock

__all__ = ["Conversation", "ConversationStore", "InMemoryConversationStore", "Message", "KeyedLock"]
