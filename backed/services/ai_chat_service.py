"""
AI Chat Service - the donor-facing assistant.

Builds the assistant's context from the donor's profile and the active
projects (ranked with the relevance scorer), calls the AI provider with
retries, and falls back to an intent-aware canned reply on any failure.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Literal, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from backed.core.config import settings
from backed.core.retry import call_with_backoff
from backed.db.enums import ProjectStatus
from backed.db.models import AlumniProfile, Project
from backed.services.ai_provider import AIProvider, ChatMessage, is_retryable_ai_error
from backed.services.ai_summary_service import format_amount
from backed.services.relevance_service import RelevanceProfile, Scorer

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 3
# Scores above the no-signal baselines (30 rules / 45 keyword fallback)
RECOMMENDATION_THRESHOLD = 55

ASSISTANT_ACK = (
    "Understood! I'm the BackED AI Assistant, ready to help alumni discover "
    "and support school projects. How can I help?"
)

GENERIC_FALLBACK = (
    "I'm temporarily unavailable. Please try again in a moment, or browse the "
    "feed to discover projects."
)
DONATE_FALLBACK = (
    "I'm temporarily unavailable, but you can donate by clicking any project "
    "card, then tapping 'Back This Project' at the bottom. All donations are "
    "processed securely."
)
HOW_TO_FALLBACK = (
    "I'm having technical difficulties right now. For help using BackED, you "
    "can browse active projects in the feed, save projects you like, follow "
    "schools, and donate directly to campaigns. Need more help? Contact support."
)


@dataclass
class ChatContext:
    """What the assistant knows about the donor and the platform."""

    user_name: str
    user_school: Optional[str] = None
    interests: list[str] = field(default_factory=list)
    home_school_id: Optional[UUID] = None
    available_projects: list[Project] = field(default_factory=list)


@dataclass
class RankedProject:
    project: Project
    relevance_score: int


@dataclass
class ChatReply:
    message: str
    source: Literal["ai", "fallback"]
    recommended_project_ids: list[UUID] = field(default_factory=list)


def load_chat_context(db: Session, donor: AlumniProfile) -> ChatContext:
    """Donor profile plus the most recent feed-visible projects."""
    projects = list(
        db.execute(
            select(Project)
            .options(selectinload(Project.school))
            .where(Project.status.in_(ProjectStatus.feed_visible()))
            .order_by(Project.created_at.desc())
            .limit(settings.CHAT_CONTEXT_PROJECT_LIMIT)
        ).scalars()
    )
    return ChatContext(
        user_name=donor.full_name or "Alumni",
        user_school=donor.school_name,
        interests=list(donor.niches or []),
        home_school_id=donor.school_id,
        available_projects=projects,
    )


async def rank_context_projects(context: ChatContext, scorer: Scorer) -> list[RankedProject]:
    """Score the context projects, best match first."""
    profile = RelevanceProfile.from_interests(context.interests, context.home_school_id)
    projects = context.available_projects[: settings.CHAT_CONTEXT_PROJECT_LIMIT]
    scores = await asyncio.gather(*(scorer.score(profile, p) for p in projects))
    ranked = [RankedProject(project=p, relevance_score=s) for p, s in zip(projects, scores)]
    ranked.sort(key=lambda r: r.relevance_score, reverse=True)
    return ranked


def _recommendations(ranked: list[RankedProject], context: ChatContext) -> list[RankedProject]:
    if not context.interests:
        return []
    return [r for r in ranked if r.relevance_score >= RECOMMENDATION_THRESHOLD][:MAX_RECOMMENDATIONS]


def _project_line(ranked: RankedProject) -> str:
    p = ranked.project
    school_name = p.school.school_name if p.school else "School"
    categories = ", ".join(p.category or []) or "General"
    target = format_amount(p.target_amount) if p.target_amount else "N/A"
    return (
        f'- "{p.title}" by {school_name} [{categories}] - '
        f"{format_amount(p.current_amount or 0)}/{target} raised "
        f"({p.status}, match {ranked.relevance_score}/100)"
    )


def build_system_prompt(context: ChatContext, ranked: list[RankedProject]) -> str:
    projects_block = "\n".join(_project_line(r) for r in ranked) or "- No active projects right now"
    return f"""You are the BackED AI Assistant, a friendly, helpful chatbot for the BackED alumni platform. BackED connects school alumni with their alma maters' fundraising projects in Ghana.

USER CONTEXT:
- Name: {context.user_name}
- School: {context.user_school or "Not specified"}
- Interests: {", ".join(context.interests) or "Not specified"}

ACTIVE PROJECTS ON PLATFORM (best match first):
{projects_block}

GUIDELINES:
- Be warm, conversational, and concise (max 150 words per response).
- Help users discover projects that match their interests.
- Answer questions about the platform (donations, bookmarks, following schools, etc.).
- If asked to recommend projects, consider their school affiliation and interests.
- Encourage donations but never pressure. Be authentic and empathetic.
- Use currency format {settings.CURRENCY_SYMBOL} (Ghana Cedis).
- If you don't know something specific, say so honestly.
- Do NOT generate any links or URLs. Just mention project names and let the user find them in the feed."""


def fallback_reply(
    messages: list[ChatMessage],
    context: ChatContext,
    recommendations: list[RankedProject],
) -> str:
    """Canned reply chosen by the intent of the last user message."""
    question = messages[-1].content.lower() if messages else ""

    if "interest" in question or "match" in question or "recommend" in question:
        interests = ", ".join(context.interests) or "your selected topics"
        reply = (
            "I'm having trouble processing your request right now. To find "
            f"projects matching your interests ({interests}), check out the "
            '"For You" tab in the feed!'
        )
        if recommendations:
            titles = ", ".join(f'"{r.project.title}"' for r in recommendations)
            reply += f" You might start with {titles}."
        return reply

    if "donat" in question or "contribute" in question or "give" in question:
        return DONATE_FALLBACK

    if "how" in question or "what" in question or "work" in question:
        return HOW_TO_FALLBACK

    return GENERIC_FALLBACK


async def chat_with_assistant(
    messages: list[ChatMessage],
    context: ChatContext,
    provider: AIProvider | None,
    scorer: Scorer,
) -> ChatReply:
    """Answer the donor's latest message. Never raises."""
    try:
        ranked = await rank_context_projects(context, scorer)
    except Exception as exc:
        logger.warning(f"Chat project ranking failed: {exc}")
        ranked = []
    recommendations = _recommendations(ranked, context)
    recommended_ids = [r.project.id for r in recommendations]

    def _fallback() -> ChatReply:
        return ChatReply(
            message=fallback_reply(messages, context, recommendations),
            source="fallback",
            recommended_project_ids=recommended_ids,
        )

    if provider is None or not messages:
        return _fallback()

    conversation = [
        ChatMessage(role="system", content=build_system_prompt(context, ranked)),
        ChatMessage(role="assistant", content=ASSISTANT_ACK),
        *messages,
    ]
    try:
        response = await call_with_backoff(
            lambda: provider.chat(conversation, temperature=0.7, max_tokens=400),
            max_retries=settings.AI_MAX_RETRIES,
            base_delay=settings.AI_RETRY_BASE_DELAY,
            should_retry=is_retryable_ai_error,
            label="AI chat",
        )
    except Exception as exc:
        logger.error(f"Chat error: {exc}")
        return _fallback()

    content = (response.content or "").strip()
    if not content:
        logger.warning("Empty response from AI chat, using fallback")
        return _fallback()

    return ChatReply(message=content, source="ai", recommended_project_ids=recommended_ids)
