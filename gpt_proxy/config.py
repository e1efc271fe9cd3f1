"""Configuration for the GPT proxy."""
import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

load_dotenv()


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Config:
    """App configuration from environment. Read once at startup."""
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    # Static shared secret expected in the apiKey query parameter.
    app_api_key: str = os.getenv("APP_API_KEY", "")

    default_model: str = os.getenv("DEFAULT_MODEL", "gpt-4o-mini")
    default_temperature: float = float(os.getenv("DEFAULT_TEMPERATURE", "0.6"))

    # Conversation memory: messages kept per user (system message included).
    history_limit: int = max(1, int(os.getenv("HISTORY_LIMIT", "20")))
    # Idle conversations expire this long after their last write (2h).
    conversation_ttl_seconds: float = float(os.getenv("CONVERSATION_TTL_SECONDS", str(60 * 60 * 2)))
    # How often the background sweep drops expired conversations (10 min).
    sweep_interval_seconds: float = float(os.getenv("SWEEP_INTERVAL_SECONDS", str(60 * 10)))

    # Completion client deadline and the client's own retry budget.
    request_timeout_seconds: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", str(2 * 60)))
    openai_max_retries: int = int(os.getenv("OPENAI_MAX_RETRIES", "2"))

    # Inference backend: "openai" (default) = OpenAI API; "self_hosted" = OpenAI-compatible server (vLLM etc.).
    inference_backend: str = os.getenv("INFERENCE_BACKEND", "openai").strip().lower()
    # When inference_backend is self_hosted: chat completions go to {inference_url}/v1/chat/completions.
    inference_url: str = os.getenv("INFERENCE_URL", "").strip()
    inference_api_key: str = os.getenv("INFERENCE_API_KEY", "dummy").strip()

    cors_origins: list[str] = field(default_factory=lambda: _csv(os.getenv("CORS_ORIGINS", "*")))
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()


config = Config()
