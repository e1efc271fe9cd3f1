"""Request models for the HTTP layer. JSON uses camelCase field names."""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .conversation_manager import ExchangeRequest


class GptRequest(BaseModel):
    """Incoming prompt."""
    model_config = ConfigDict(populate_by_name=True)

    system_prompt: str = Field(alias="systemPrompt", min_length=1)
    user_prompt: str = Field(alias="userPrompt", min_length=1)
    model: Optional[str] = Field(default=None, min_length=1)
    temperature: Optional[float] = Field(default=None, gt=0, le=1)
    use_memory: bool = Field(default=False, alias="useMemory")
    user_id: Optional[str] = Field(default=None, alias="userId")
    # Drop the stored history before this exchange.
    reset_history: bool = Field(default=False, alias="resetHistory")

    def to_exchange_request(self) -> ExchangeRequest:
        return ExchangeRequest(
            system_prompt=self.system_prompt,
            user_prompt=self.user_prompt,
            use_memory=self.use_memory,
            user_id=self.user_id,
            model=self.model,
            temperature=self.temperature,
        )
