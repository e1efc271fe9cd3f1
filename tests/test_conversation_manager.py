import asyncio
from typing import Any

from langchain_core.messages import AIMessage

from gpt_proxy.conversation_manager import ConversationManager, ExchangeRequest
from gpt_proxy.errors import ProviderError, StoreError, ValidationError
from gpt_proxy.inference.backend import LlmBackend
from gpt_proxy.result import Failure, Success
from gpt_proxy.shared_services.conversation_store import InMemoryConversationStore, Message


class FakeLLM:
    def __init__(self, backend: "FakeBackend") -> None:
        self.backend = backend

    async def ainvoke(self, messages):
        self.backend.calls.append([(m.type, m.content) for m in messages])
        if self.backend.pause:
            await asyncio.sleep(0.01)
        if self.backend.error is not None:
            raise self.backend.error
        self.backend.replies += 1
        return AIMessage(content=f"reply {self.backend.replies}")


class FakeBackend(LlmBackend):
    """Records every submitted message list; replies "reply 1", "reply 2", ..."""

    def __init__(self, error: Exception | None = None, pause: bool = False) -> None:
        self.error = error
        self.pause = pause
        self.calls: list[list[tuple[str, Any]]] = []
        self.models: list[tuple[str, float]] = []
        self.replies = 0

    def create_chat_llm(self, model: str, *, temperature: float) -> Any:
        self.models.append((model, temperature))
        return FakeLLM(self)


class SpyStore(InMemoryConversationStore):
    def __init__(self) -> None:
        super().__init__()
        self.reads = 0
        self.writes = 0

    def get(self, user_id):
        self.reads += 1
        return super().get(user_id)

    def set(self, user_id, conversation):
        self.writes += 1
        super().set(user_id, conversation)


def _build_manager(backend=None, store=None, history_limit: int = 20) -> ConversationManager:
    return ConversationManager(
        store=store if store is not None else InMemoryConversationStore(),
        backend=backend or FakeBackend(),
        history_limit=history_limit,
    )


def _memory_request(user_prompt: str, system_prompt: str = "be terse", user_id: str = "u1") -> ExchangeRequest:
    return ExchangeRequest(system_prompt=system_prompt, user_prompt=user_prompt, use_memory=True, user_id=user_id)


def _contents(messages):
    return [(m.role, m.content) for m in messages]


def test_stateless_request_submits_system_and_user_only():
    backend = FakeBackend()
    store = SpyStore()
    manager = _build_manager(backend=backend, store=store)

    result = asyncio.run(manager.exchange(ExchangeRequest(system_prompt="sys", user_prompt="hi")))

    assert isinstance(result, Success)
    assert result.value.reply.content == "reply 1"
    assert result.value.reply.role == "assistant"
    assert result.value.history is None
    assert backend.calls == [[("system", "sys"), ("human", "hi")]]
    assert store.reads == 0
    assert store.writes == 0


def test_defaults_model_and_temperature():
    backend = FakeBackend()
    manager = ConversationManager(
        store=InMemoryConversationStore(), backend=backend, default_model="base-model", default_temperature=0.6
    )

    asyncio.run(manager.exchange(ExchangeRequest(system_prompt="sys", user_prompt="hi")))
    asyncio.run(manager.exchange(ExchangeRequest(system_prompt="sys", user_prompt="hi", model="other", temperature=0.2)))

    assert backend.models == [("base-model", 0.6), ("other", 0.2)]


def test_memory_mode_requires_user_id():
    backend = FakeBackend()
    manager = _build_manager(backend=backend)

    result = asyncio.run(manager.exchange(_memory_request("hi", user_id="   ")))

    assert isinstance(result, Failure)
    assert isinstance(result.error, ValidationError)
    assert result.error.message == "userId is required"
    assert backend.calls == []


def test_empty_user_prompt_is_rejected_without_network_call():
    backend = FakeBackend()
    manager = _build_manager(backend=backend)

    result = asyncio.run(manager.exchange(_memory_request("")))

    assert isinstance(result, Failure)
    assert isinstance(result.error, ValidationError)
    assert backend.calls == []


def test_first_memory_turn_persists_three_messages():
    backend = FakeBackend()
    store = InMemoryConversationStore()
    manager = _build_manager(backend=backend, store=store)

    result = asyncio.run(manager.exchange(_memory_request("hi")))

    assert backend.calls == [[("system", "be terse"), ("human", "hi")]]
    expected = [("system", "be terse"), ("user", "hi"), ("assistant", "reply 1")]
    assert _contents(store.get("u1").messages) == expected
    assert _contents(result.value.history) == expected


def test_second_memory_turn_sends_prior_history():
    backend = FakeBackend()
    store = InMemoryConversationStore()
    manager = _build_manager(backend=backend, store=store)

    asyncio.run(manager.exchange(_memory_request("hi")))
    result = asyncio.run(manager.exchange(_memory_request("again")))

    assert backend.calls[1] == [
        ("system", "be terse"),
        ("human", "hi"),
        ("ai", "reply 1"),
        ("human", "again"),
    ]
    assert len(store.get("u1").messages) == 5
    assert _contents(result.value.history)[-1] == ("assistant", "reply 2")


def test_user_id_is_trimmed():
    store = InMemoryConversationStore()
    manager = _build_manager(store=store)

    asyncio.run(manager.exchange(_memory_request("hi", user_id="  u1  ")))

    assert store.get("u1") is not None


def test_created_at_preserved_and_updated_at_advances():
    ticks = iter(range(100, 200))
    store = InMemoryConversationStore()
    manager = ConversationManager(store=store, backend=FakeBackend(), clock=lambda: float(next(ticks)))

    asyncio.run(manager.exchange(_memory_request("hi")))
    first = store.get("u1")
    asyncio.run(manager.exchange(_memory_request("again")))
    second = store.get("u1")

    assert second.created_at == first.created_at
    assert second.updated_at > first.updated_at


def test_system_prompt_change_starts_new_conversation():
    backend = FakeBackend()
    store = InMemoryConversationStore()
    manager = _build_manager(backend=backend, store=store)

    asyncio.run(manager.exchange(_memory_request("hi", system_prompt="P1")))
    asyncio.run(manager.exchange(_memory_request("more", system_prompt="P1")))
    asyncio.run(manager.exchange(_memory_request("switch", system_prompt="P2")))

    assert backend.calls[-1] == [("system", "P2"), ("human", "switch")]
    stored = store.get("u1")
    assert stored.last_system_prompt == "P2"
    assert _contents(stored.messages) == [("system", "P2"), ("user", "switch"), ("assistant", "reply 3")]


def test_empty_system_prompt_differs_from_non_empty():
    backend = FakeBackend()
    manager = _build_manager(backend=backend)

    asyncio.run(manager.exchange(_memory_request("hi", system_prompt="P1")))
    asyncio.run(manager.exchange(_memory_request("hi", system_prompt="")))

    assert backend.calls[-1] == [("system", ""), ("human", "hi")]


def test_provider_failure_keeps_store_unchanged():
    store = InMemoryConversationStore()
    backend = FakeBackend()
    manager = _build_manager(backend=backend, store=store)
    asyncio.run(manager.exchange(_memory_request("hi")))
    before = _contents(store.get("u1").messages)

    backend.error = RuntimeError("connection reset")
    result = asyncio.run(manager.exchange(_memory_request("lost turn")))

    assert isinstance(result, Failure)
    assert isinstance(result.error, ProviderError)
    assert result.error.message == "connection reset"
    assert _contents(store.get("u1").messages) == before


def test_provider_failure_after_prompt_change_keeps_reset():
    store = InMemoryConversationStore()
    backend = FakeBackend()
    manager = _build_manager(backend=backend, store=store)
    asyncio.run(manager.exchange(_memory_request("hi", system_prompt="P1")))

    backend.error = RuntimeError("timeout")
    result = asyncio.run(manager.exchange(_memory_request("hello", system_prompt="P2")))

    assert isinstance(result, Failure)
    stored = store.get("u1")
    assert stored.last_system_prompt == "P2"
    assert _contents(stored.messages) == [("system", "P2")]


def test_history_is_bounded_suffix_of_all_turns():
    store = InMemoryConversationStore()
    manager = _build_manager(store=store, history_limit=3)

    for i in range(5):
        result = asyncio.run(manager.exchange(_memory_request(f"turn {i}")))
        assert len(result.value.history) <= 3

    # the system message is evicted by recency trimming
    assert _contents(store.get("u1").messages) == [
        ("assistant", "reply 4"),
        ("user", "turn 4"),
        ("assistant", "reply 5"),
    ]


def test_history_limit_counts_system_message():
    store = InMemoryConversationStore()
    manager = _build_manager(store=store, history_limit=5)

    asyncio.run(manager.exchange(_memory_request("a")))
    asyncio.run(manager.exchange(_memory_request("b")))
    asyncio.run(manager.exchange(_memory_request("c")))

    messages = store.get("u1").messages
    assert len(messages) == 5
    assert messages[0] == Message(role="assistant", content="reply 1")
    assert messages[-1] == Message(role="assistant", content="reply 3")


def test_concurrent_turns_for_same_user_are_not_lost():
    store = InMemoryConversationStore()
    backend = FakeBackend(pause=True)
    manager = _build_manager(backend=backend, store=store)

    async def scenario():
        await asyncio.gather(
            manager.exchange(_memory_request("first")),
            manager.exchange(_memory_request("second")),
        )

    asyncio.run(scenario())

    user_turns = [m.content for m in store.get("u1").messages if m.role == "user"]
    assert sorted(user_turns) == ["first", "second"]
    assert len(store.get("u1").messages) == 5
    assert len(manager._locks) == 0


def test_reset_removes_history():
    store = InMemoryConversationStore()
    manager = _build_manager(store=store)
    asyncio.run(manager.exchange(_memory_request("hi")))

    assert asyncio.run(manager.reset("u1")) is True
    assert store.get("u1") is None


def test_reset_twice_is_consistent():
    manager = _build_manager()
    asyncio.run(manager.exchange(_memory_request("hi")))

    assert asyncio.run(manager.reset("u1")) is True
    assert asyncio.run(manager.reset("u1")) is True
    assert manager.history("u1") is None


def test_reset_rejects_blank_user_id():
    manager = _build_manager()
    assert asyncio.run(manager.reset("")) is False
    assert asyncio.run(manager.reset("   ")) is False
    assert asyncio.run(manager.reset(None)) is False


def test_reset_returns_false_when_store_fails():
    class BrokenStore(InMemoryConversationStore):
        def delete(self, user_id):
            raise StoreError("backend down")

    manager = _build_manager(store=BrokenStore())
    assert asyncio.run(manager.reset("u1")) is False


def test_store_failure_during_exchange_becomes_failure():
    class BrokenStore(InMemoryConversationStore):
        def get(self, user_id):
            raise StoreError("corrupt entry")

    backend = FakeBackend()
    manager = _build_manager(backend=backend, store=BrokenStore())

    result = asyncio.run(manager.exchange(_memory_request("hi")))

    assert isinstance(result, Failure)
    assert isinstance(result.error, StoreError)
    assert backend.calls == []


def test_reset_during_in_flight_exchange_is_not_undone():
    store = InMemoryConversationStore()
    backend = FakeBackend(pause=True)
    manager = _build_manager(backend=backend, store=store)

    async def scenario():
        exchange = asyncio.create_task(manager.exchange(_memory_request("hi")))
        while not backend.calls:
            await asyncio.sleep(0)
        reset = await manager.reset("u1")
        await exchange
        return reset, exchange.result()

    reset, result = asyncio.run(scenario())

    assert reset is True
    assert isinstance(result, Success)
    assert store.get("u1") is None


def test_unexpected_store_exception_becomes_store_failure():
    class FlakyStore(InMemoryConversationStore):
        def get(self, user_id):
            raise KeyError("bad payload")

    backend = FakeBackend()
    manager = _build_manager(backend=backend, store=FlakyStore())

    result = asyncio.run(manager.exchange(_memory_request("hi")))

    assert isinstance(result, Failure)
    assert isinstance(result.error, StoreError)
    assert "bad payload" in result.error.message
    assert backend.calls == []


def test_history_snapshot_is_a_copy():
    store = InMemoryConversationStore()
    manager = _build_manager(store=store)
    asyncio.run(manager.exchange(_memory_request("hi")))

    snapshot = manager.history("u1")
    snapshot.clear()

    assert len(manager.history("u1")) == 3
