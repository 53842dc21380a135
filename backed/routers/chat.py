"""Chat Router - the donor-facing AI assistant."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backed.core.config import settings
from backed.core.deps import get_ai_provider, get_db, get_scorer, require_alumni
from backed.core.rate_limit import limiter
from backed.db.models import AlumniProfile
from backed.schemas.ai import ChatReplyRead, ChatRequest
from backed.services import ai_chat_service
from backed.services.ai_provider import AIProvider, ChatMessage
from backed.services.relevance_service import Scorer

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=ChatReplyRead)
@limiter.limit(settings.RATE_LIMIT_CHAT)
async def chat(
    request: Request,
    data: ChatRequest,
    donor: AlumniProfile = Depends(require_alumni),
    provider: AIProvider | None = Depends(get_ai_provider),
    scorer: Scorer = Depends(get_scorer),
    db: Session = Depends(get_db),
):
    """Answer the donor's latest message. Falls back to a canned reply, never 5xx."""
    try:
        context = ai_chat_service.load_chat_context(db, donor)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Chat context could not be loaded")
        context = ai_chat_service.ChatContext(
            user_name=donor.full_name or "Alumni",
            user_school=donor.school_name,
            interests=list(donor.niches or []),
            home_school_id=donor.school_id,
        )

    messages = [
        ChatMessage(role="assistant" if m.role in ("assistant", "model") else "user", content=m.content)
        for m in data.messages
    ]
    reply = await ai_chat_service.chat_with_assistant(messages, context, provider, scorer)
    return ChatReplyRead(
        message=reply.message,
        source=reply.source,
        recommended_project_ids=reply.recommended_project_ids,
    )
