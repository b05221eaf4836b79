"""Wire schemas for the external generation provider (Addis AI)."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from src.companion.schemas.conversation import ConversationEntry, Language


class GenerationConfig(BaseModel):
    """Sampling parameters forwarded to the provider."""

    model_config = ConfigDict(populate_by_name=True)

    temperature: float | None = Field(default=None, ge=0, le=2)
    max_output_tokens: int | None = Field(default=None, ge=1, alias="maxOutputTokens")
    stream: bool | None = None


class GenerationRequest(BaseModel):
    """POST /chat_generate body."""

    prompt: str
    target_language: Language
    conversation_history: list[ConversationEntry] = Field(default_factory=list)
    generation_config: GenerationConfig | None = None

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class UsageMetadata(BaseModel):
    prompt_token_count: int = 0
    candidates_token_count: int = 0
    total_token_count: int = 0


class GenerationResponse(BaseModel):
    """Provider generation result."""

    model_config = ConfigDict(populate_by_name=True)

    response_text: str
    finish_reason: str | None = None
    usage_metadata: UsageMetadata = Field(default_factory=UsageMetadata)
    model_version: str | None = Field(default=None, alias="modelVersion")


class SpeechRequest(BaseModel):
    """POST /audio body."""

    text: str = Field(..., min_length=1)
    language: Language
    voice_id: str | None = None
    output_format: str | None = None
    speed: float | None = Field(default=None, gt=0)
    pitch: float | None = None

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class SpeechResponse(BaseModel):
    """Base64-encoded audio returned by the provider."""

    audio: str
