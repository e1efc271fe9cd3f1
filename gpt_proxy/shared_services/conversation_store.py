"""Conversation store for short-term per-user chat history. In-process, expires idle entries."""
import asyncio
import copy
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Literal, Optional

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class Message:
    """A single chat turn."""
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class Conversation:
    """Ordered chat history for one user plus the system prompt it was started with."""
    messages: list[Message] = field(default_factory=list)
    last_system_prompt: str = ""
    created_at: float = 0.0
    updated_at: float = 0.0


class ConversationStore(ABC):
    """
    Interface for per-user conversation history.
    Reads hand out copies; mutating a returned Conversation never touches the stored one.
    Implementations raise StoreError when the backing storage fails.
    """

    @abstractmethod
    def get(self, user_id: str) -> Optional[Conversation]:
        """Return a copy of the user's conversation, or None when absent or expired."""

    @abstractmethod
    def set(self, user_id: str, conversation: Conversation) -> None:
        """Replace the user's conversation and restart its TTL clock."""

    @abstractmethod
    def delete(self, user_id: str) -> bool:
        """Remove the user's conversation. Returns whether an entry existed."""

    @abstractmethod
    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""


@dataclass
class _Entry:
    conversation: Conversation
    written_at: float


class InMemoryConversationStore(ConversationStore):
    """
    Process-local store with time-to-live expiry.
    Expiry is checked in one place: lazily on get() and eagerly by sweep(), which
    run_sweeper() calls on a fixed interval. State is not persisted anywhere.
    """

    def __init__(self, ttl_seconds: float = 7200.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    @staticmethod
    def _key(user_id: str) -> str:
        return f"conversation:{user_id}"

    def _is_expired(self, entry: _Entry, now: float) -> bool:
        if self.ttl_seconds <= 0:
            return False
        return now - entry.written_at >= self.ttl_seconds

    def get(self, user_id: str) -> Optional[Conversation]:
        key = self._key(user_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry, self._clock()):
            del self._entries[key]
            return None
        return copy.deepcopy(entry.conversation)

    def set(self, user_id: str, conversation: Conversation) -> None:
        self._entries[self._key(user_id)] = _Entry(
            conversation=copy.deepcopy(conversation),
            written_at=self._clock(),
        )

    def delete(self, user_id: str) -> bool:
        return self._entries.pop(self._key(user_id), None) is not None

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept %d expired conversation(s)", len(expired))
        return len(expired)

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for entry in self._entries.values() if not self._is_expired(entry, now))

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Call sweep() every interval until cancelled."""
        interval = max(1.0, interval_seconds)
        while True:
            await asyncio.sleep(interval)
            self.sweep()
