"""Chat endpoints.

POST /api/v1/chat runs one turn through the TurnPipeline. Crisis messages
are answered with the fixed safety response before any generation call.
POST /api/v1/chat/end persists session metadata and frees the session.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.companion.api.deps import get_current_user, get_pipeline
from src.companion.chat.pipeline import TurnPipeline
from src.companion.core.security import AuthenticatedUser
from src.companion.schemas.chat import (
    ChatRequest,
    SessionEndRequest,
    SessionEndResponse,
    TurnResult,
)

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])


@router.post("", response_model=TurnResult, response_model_exclude_none=True)
async def submit_turn(
    body: ChatRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    pipeline: TurnPipeline = Depends(get_pipeline),
):
    """Process one user message and return the companion reply."""
    return await pipeline.submit_turn(
        user_id=current_user.id,
        message=body.message,
        session_id=body.session_id,
        language=body.language,
        mood_before=body.mood_before,
    )


@router.post("/end", response_model=SessionEndResponse)
async def end_session(
    body: SessionEndRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    pipeline: TurnPipeline = Depends(get_pipeline),
):
    """End a session. Unknown or already ended sessions still return ended."""
    result = await pipeline.end_session(
        user_id=current_user.id,
        session_id=body.session_id,
        mood_after=body.mood_after,
    )
    return SessionEndResponse(ended=result["ended"], session_id=body.session_id)
