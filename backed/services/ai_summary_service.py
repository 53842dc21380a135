"""
AI Project Summary Service.

Generates a donor-facing summary for a project. Falls back to a summary
built from the project's own fields whenever the AI service is not
configured, fails, or returns something unusable.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from backed.core.config import settings
from backed.core.retry import call_with_backoff
from backed.db.models import Project
from backed.services.ai_provider import AIProvider, ChatMessage, is_retryable_ai_error
from backed.services.ai_response_validation import parse_json_object, validate_model
from backed.services.funding_ledger_service import funding_progress

logger = logging.getLogger(__name__)

MAX_HIGHLIGHTS = 4
QUICK_SUMMARY_LIMIT = 250

DEFAULT_IMPACT_STATEMENT = (
    "Your donation directly supports educational infrastructure and student "
    "development at this school."
)

SYSTEM_PROMPT = (
    "You are an AI assistant for BackED, a platform connecting alumni with "
    "their schools' fundraising projects in Ghana. Generate a concise, "
    "engaging summary for an alumni reading about a project they might "
    "donate to."
)


class ProjectSummary(BaseModel):
    """Structured project summary."""

    quick_summary: str = Field(..., min_length=1)
    key_highlights: list[str] = Field(..., min_length=1)
    impact_statement: str = Field(..., min_length=1)
    funding_insight: str = Field(..., min_length=1)
    source: Literal["ai", "fallback"] = "ai"


def format_amount(amount: Decimal | int | None) -> str:
    """Money with thousands separators; cents only when present."""
    if amount is None:
        return "N/A"
    value = Decimal(amount)
    if value == value.to_integral_value():
        return f"{settings.CURRENCY_SYMBOL}{int(value):,}"
    return f"{settings.CURRENCY_SYMBOL}{value:,.2f}"


def _school_parts(project: Project) -> tuple[str, str]:
    school = project.school
    if school is None:
        return "School", ""
    return school.school_name or "School", school.location or ""


def build_fallback_summary(project: Project) -> ProjectSummary:
    """Deterministic summary from description, amounts and backers."""
    description = project.description or ""
    quick_summary = description[:QUICK_SUMMARY_LIMIT]
    if len(description) > QUICK_SUMMARY_LIMIT:
        quick_summary += "..."
    if not quick_summary.strip():
        quick_summary = project.title

    school_name, school_location = _school_parts(project)
    progress = funding_progress(project.current_amount, project.target_amount)
    by_line = f"Project by {school_name}"
    if school_location:
        by_line += f", {school_location}"

    highlights = [
        by_line,
        f"Goal: {format_amount(project.target_amount)}",
        f"{progress}% funded with {project.backers_count or 0} backers",
    ]
    if project.category:
        highlights.append(f"Categories: {', '.join(project.category[:2])}")

    raised = format_amount(project.current_amount or 0)
    if project.target_amount:
        funding_insight = (
            f"This project has raised {raised} of its "
            f"{format_amount(project.target_amount)} goal."
        )
    else:
        funding_insight = f"This project has raised {raised} so far."
    if project.days_remaining:
        funding_insight += f" {project.days_remaining} days remaining."

    return ProjectSummary(
        quick_summary=quick_summary,
        key_highlights=highlights[:MAX_HIGHLIGHTS],
        impact_statement=DEFAULT_IMPACT_STATEMENT,
        funding_insight=funding_insight,
        source="fallback",
    )


def build_summary_prompt(project: Project) -> str:
    school_name, school_location = _school_parts(project)
    progress = funding_progress(project.current_amount, project.target_amount)
    days = project.days_remaining if project.days_remaining is not None else "N/A"

    lines = [
        "PROJECT DETAILS:",
        f"- Title: {project.title}",
        f"- School: {school_name}, {school_location}",
        f"- Categories: {', '.join(project.category or []) or 'General'}",
        f"- Funding Goal: {format_amount(project.target_amount)}",
        f"- Raised So Far: {format_amount(project.current_amount or 0)} ({progress}%)",
        f"- Backers: {project.backers_count or 0}",
        f"- Days Remaining: {days}",
        "",
        f"DESCRIPTION: {project.description}",
    ]
    for label, value in (
        ("OVERVIEW", project.overview),
        ("MOTIVATION", project.motivation),
        ("OBJECTIVES", project.objectives),
        ("SCOPE", project.scope),
    ):
        if value:
            lines.append(f"{label}: {value}")

    lines.extend(
        [
            "",
            "Respond ONLY with valid JSON in this exact format (no markdown, no code fences):",
            "{",
            '  "quick_summary": "A clear 2-3 sentence overview of what this project is about and why it matters.",',
            '  "key_highlights": ["highlight 1", "highlight 2", "highlight 3"],',
            '  "impact_statement": "One sentence about the real-world impact of supporting this project.",',
            '  "funding_insight": "A brief note about the funding status and what a donation could help achieve."',
            "}",
        ]
    )
    return "\n".join(lines)


async def generate_project_summary(project: Project, provider: AIProvider | None) -> ProjectSummary:
    """Generate a project summary. Never raises."""
    fallback = build_fallback_summary(project)
    if provider is None:
        logger.info("AI not configured, returning fallback summary")
        return fallback

    messages = [
        ChatMessage(role="system", content=SYSTEM_PROMPT),
        ChatMessage(role="user", content=build_summary_prompt(project)),
    ]
    try:
        response = await call_with_backoff(
            lambda: provider.chat(messages, temperature=0.4, max_tokens=800),
            max_retries=settings.AI_MAX_RETRIES,
            base_delay=settings.AI_RETRY_BASE_DELAY,
            should_retry=is_retryable_ai_error,
            label="AI project summary",
        )
    except Exception as exc:
        logger.error(f"Failed to generate AI summary, using fallback: {exc}")
        return fallback

    summary = validate_model(ProjectSummary, parse_json_object(response.content))
    if summary is None:
        logger.warning("AI summary response was not a valid summary, using fallback")
        return fallback

    highlights = [h.strip() for h in summary.key_highlights if h and h.strip()]
    if not highlights:
        return fallback
    summary.key_highlights = highlights[:MAX_HIGHLIGHTS]
    summary.source = "ai"
    return summary
