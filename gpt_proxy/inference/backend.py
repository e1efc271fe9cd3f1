"""Completion client adapter for chat-completion calls.

- OpenAIBackend: uses OpenAI API via langchain_openai.ChatOpenAI.
- SelfHostedBackend: uses an OpenAI-compatible HTTP API (e.g. vLLM, TensorRT-LLM)
  by pointing ChatOpenAI at base_url=INFERENCE_URL. Set INFERENCE_BACKEND=self_hosted
  and INFERENCE_URL=http://your-server:8000 to use it.

Only one backend is active per process. Timeouts and client-side retries come from config.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from ..config import config
from ..errors import ProviderError
from ..shared_services.conversation_store import Message

EMPTY_RESPONSE_ERROR = "No response received from OpenAI API"


@dataclass
class Reply:
    """Assistant message returned by the completion API."""
    role: str
    content: str
    refusal: Optional[str] = None
    annotations: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "refusal": self.refusal,
            "annotations": self.annotations,
        }


def to_langchain_messages(messages: Sequence[Message]) -> list[BaseMessage]:
    out: list[BaseMessage] = []
    for m in messages:
        if m.role == "system":
            out.append(SystemMessage(content=m.content))
        elif m.role == "assistant":
            out.append(AIMessage(content=m.content))
        else:
            out.append(HumanMessage(content=m.content))
    return out


def _text_content(content: Any) -> Optional[str]:
    """ChatOpenAI may return content blocks instead of a string; keep only the text parts."""
    if content is None or isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def to_reply(message: Any) -> Reply:
    """Convert a ChatOpenAI response message into a Reply. Raises ProviderError when empty."""
    if message is None:
        raise ProviderError(EMPTY_RESPONSE_ERROR)
    extra = getattr(message, "additional_kwargs", None) or {}
    return Reply(
        role="assistant",
        content=_text_content(getattr(message, "content", None)) or "",
        refusal=extra.get("refusal"),
        annotations=extra.get("annotations") or [],
    )


class LlmBackend(ABC):
    """Abstract backend for chat completions."""

    @abstractmethod
    def create_chat_llm(self, model: str, *, temperature: float) -> Any:
        """Return an object with .ainvoke(messages) that takes/returns plain messages."""

    async def complete(self, messages: Sequence[Message], model: str, temperature: float) -> Reply:
        """Send the message list and return the assistant reply. Every failure surfaces as ProviderError."""
        try:
            llm = self.create_chat_llm(model, temperature=temperature)
            response = await llm.ainvoke(to_langchain_messages(messages))
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(str(e) or "Unknown error occurred") from e
        return to_reply(response)


class OpenAIBackend(LlmBackend):
    """Default backend using OpenAI's ChatCompletion via langchain_openai."""

    def __init__(self, api_key: str | None = None) -> None:
        self.api_key = api_key if api_key is not None else (config.openai_api_key or None)

    def create_chat_llm(self, model: str, *, temperature: float) -> Any:
        return ChatOpenAI(
            api_key=self.api_key,
            model=model,
            temperature=temperature,
            streaming=False,
            timeout=config.request_timeout_seconds,
            max_retries=config.openai_max_retries,
        )


class SelfHostedBackend(LlmBackend):
    """Self-hosted inference via an OpenAI-compatible API (vLLM, TensorRT-LLM, etc.).

    Requires INFERENCE_URL (e.g. http://vllm:8000). Requests go to
    {base_url}/v1/chat/completions. Use INFERENCE_API_KEY if your server expects one.
    """

    def __init__(self, api_url: str | None = None, api_key: str | None = None) -> None:
        self.api_url = (api_url or config.inference_url or "").rstrip("/")
        self.api_key = api_key if api_key is not None else config.inference_api_key
        if not self.api_url:
            raise ValueError(
                "Self-hosted inference requires INFERENCE_URL (e.g. http://vllm:8000). "
                "Set it in env or use INFERENCE_BACKEND=openai."
            )
        self.base_url = f"{self.api_url}/v1"

    def create_chat_llm(self, model: str, *, temperature: float) -> Any:
        return ChatOpenAI(
            base_url=self.base_url,
            api_key=self.api_key,
            model=model,
            temperature=temperature,
            streaming=False,
            timeout=config.request_timeout_seconds,
            max_retries=config.openai_max_retries,
        )


_backend_singleton: LlmBackend | None = None


def get_llm_backend() -> LlmBackend:
    """Return a singleton LlmBackend based on config.inference_backend."""
    global _backend_singleton
    if _backend_singleton is not None:
        return _backend_singleton

    backend_name = (config.inference_backend or "openai").strip().lower()

    if backend_name in ("self_hosted", "self-hosted", "local"):
        _backend_singleton = SelfHostedBackend()
    else:
        _backend_singleton = OpenAIBackend()
    return _backend_singleton
