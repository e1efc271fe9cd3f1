"""Conversation manager: builds the message list for each request and keeps per-user history in the store."""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .config import config
from .errors import ProviderError, ProxyError, StoreError, ValidationError
from .inference.backend import LlmBackend, Reply
from .result import Failure, Result, Success
from .shared_services.conversation_store import Conversation, ConversationStore, Message
from .shared_services.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


@dataclass
class ExchangeRequest:
    """One prompt to forward. user_id is only required in memory mode."""
    system_prompt: str
    user_prompt: str
    use_memory: bool = False
    user_id: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None


@dataclass
class ExchangeOutcome:
    """Assistant reply plus, in memory mode, the history persisted after this turn."""
    reply: Reply
    history: Optional[list[Message]] = None


class ConversationManager:
    """
    Sole owner of store mutations. Every call returns a Result (exchange) or a bool (reset);
    nothing is raised to the caller.

    Requests for the same user id are serialized with a per-user lock held from the
    store read until the final write, so concurrent turns are never lost.
    """

    def __init__(
        self,
        store: ConversationStore,
        backend: LlmBackend,
        history_limit: int = 20,
        default_model: str = "gpt-4o-mini",
        default_temperature: float = 0.6,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.backend = backend
        self.history_limit = max(1, history_limit)
        self.default_model = default_model
        self.default_temperature = default_temperature
        self._clock = clock
        self._locks = KeyedLock()

    @classmethod
    def from_config(cls, store: ConversationStore, backend: LlmBackend) -> "ConversationManager":
        return cls(
            store=store,
            backend=backend,
            history_limit=config.history_limit,
            default_model=config.default_model,
            default_temperature=config.default_temperature,
        )

    async def exchange(self, request: ExchangeRequest) -> Result[ExchangeOutcome, ProxyError]:
        if not request.user_prompt:
            return Failure(ValidationError("userPrompt is required"))
        system_prompt = request.system_prompt or ""

        if not request.use_memory:
            messages = [
                Message(role="system", content=system_prompt),
                Message(role="user", content=request.user_prompt),
            ]
            result = await self._complete(messages, request, user_id=(request.user_id or "").strip())
            if isinstance(result, Failure):
                return result
            return Success(ExchangeOutcome(reply=result.value))

        user_id = (request.user_id or "").strip()
        if not user_id:
            return Failure(ValidationError("userId is required"))

        try:
            return await self._exchange_with_memory(user_id, system_prompt, request)
        except Exception as e:
            error = e if isinstance(e, StoreError) else StoreError(str(e) or "Conversation store failure")
            logger.error("Conversation store failed for user %s: %s", user_id, error.message)
            return Failure(error)

    async def _exchange_with_memory(
        self, user_id: str, system_prompt: str, request: ExchangeRequest
    ) -> Result[ExchangeOutcome, ProxyError]:
        async with self._locks.hold(user_id):
            conversation = self.store.get(user_id)
            if conversation is None or conversation.last_system_prompt != system_prompt:
                conversation = self._initialize(user_id, system_prompt)

            messages = list(conversation.messages)
            messages.append(Message(role="user", content=request.user_prompt))

            result = await self._complete(messages, request, user_id=user_id)
            if isinstance(result, Failure):
                return result

            reply = result.value
            messages.append(Message(role="assistant", content=reply.content))
            history = messages[-self.history_limit:]
            self.store.set(
                user_id,
                Conversation(
                    messages=history,
                    last_system_prompt=system_prompt,
                    created_at=conversation.created_at or self._clock(),
                    updated_at=self._clock(),
                ),
            )
            return Success(ExchangeOutcome(reply=reply, history=list(history)))

    def _initialize(self, user_id: str, system_prompt: str) -> Conversation:
        """Start a fresh conversation. Written immediately so a prompt change survives a failed call."""
        now = self._clock()
        conversation = Conversation(
            messages=[Message(role="system", content=system_prompt)],
            last_system_prompt=system_prompt,
            created_at=now,
            updated_at=now,
        )
        self.store.set(user_id, conversation)
        return conversation

    async def _complete(
        self, messages: list[Message], request: ExchangeRequest, user_id: str
    ) -> Result[Reply, ProviderError]:
        model = request.model or self.default_model
        temperature = request.temperature if request.temperature is not None else self.default_temperature
        try:
            reply = await self.backend.complete(messages, model=model, temperature=temperature)
        except Exception as e:
            error = e if isinstance(e, ProviderError) else ProviderError(str(e) or "Unknown error occurred")
            logger.error("Completion failed for user %s: %s", user_id or "(anonymous)", error.message)
            return Failure(error)
        return Success(reply)

    async def reset(self, user_id: Optional[str]) -> bool:
        """
        Drop the user's history. False for a blank id or a store failure; True otherwise.
        Waits for any in-flight exchange for the same user so its write cannot restore the history.
        """
        if not user_id or not user_id.strip():
            logger.warning("Cannot reset history: valid userId is required")
            return False
        user_id = user_id.strip()
        try:
            async with self._locks.hold(user_id):
                existed = self.store.delete(user_id)
        except Exception:
            logger.exception("Failed to reset history for user %s", user_id)
            return False
        logger.info("History reset for user %s (existed=%s)", user_id, existed)
        return True

    def history(self, user_id: Optional[str]) -> Optional[list[Message]]:
        """Snapshot of the stored history, or None when there is none."""
        if not user_id or not user_id.strip():
            return None
        try:
            conversation = self.store.get(user_id.strip())
        except Exception:
            logger.exception("Failed to read history for user %s", user_id)
            return None
        if conversation is None:
            return None
        return list(conversation.messages)
