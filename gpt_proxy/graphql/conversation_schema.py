"""GraphQL schema for the conversation history query API."""
from typing import Optional

import strawberry

from ..conversation_manager import ConversationManager


@strawberry.type
class Turn:
    """A single conversation turn."""
    role: str
    content: str

    @classmethod
    def from_message(cls, message) -> "Turn":
        return cls(role=message.role, content=message.content)


@strawberry.type
class Conversation:
    """Stored history for a user."""
    user_id: str
    turns: list[Turn]


@strawberry.type
class Query:
    """Conversation history queries."""

    @strawberry.field
    def conversation(self, info: strawberry.Info, user_id: str) -> Optional[Conversation]:
        """Get the stored history for a user. Returns null when there is none (never used, reset or expired)."""
        manager: ConversationManager = info.context["conversation_manager"]
        messages = manager.history(user_id)
        if not messages:
            return None
        return Conversation(
            user_id=user_id.strip(),
            turns=[Turn.from_message(m) for m in messages],
        )
