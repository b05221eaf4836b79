"""Text-to-speech endpoint with an in-memory result cache."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from src.companion.api.deps import get_current_user, get_generation_client, get_tts_cache
from src.companion.core.cache import TtsCache
from src.companion.core.security import AuthenticatedUser
from src.companion.schemas.chat import SpeechSynthesisRequest, SpeechSynthesisResponse
from src.companion.schemas.generation import SpeechRequest
from src.companion.services.generation import GenerationClient

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/speech", tags=["speech"])


@router.post("", response_model=SpeechSynthesisResponse)
async def synthesize(
    body: SpeechSynthesisRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    client: GenerationClient = Depends(get_generation_client),
    cache: TtsCache = Depends(get_tts_cache),
):
    """Return base64 audio for the text, served from cache when possible."""
    cached = cache.get_audio(body.language, body.text)
    if cached is not None:
        logger.debug("speech.cache_hit", language=body.language.value)
        return SpeechSynthesisResponse(audio=cached, cached=True)

    result = await client.synthesize_speech(
        SpeechRequest(text=body.text, language=body.language)
    )
    cache.set_audio(body.language, body.text, result.audio)
    return SpeechSynthesisResponse(audio=result.audio, cached=False)
