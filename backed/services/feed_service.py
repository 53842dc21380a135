"""
Feed Service - personalized project feed for alumni.

Ranks a bounded window of recent active/funded projects with the
rule-based relevance tiers. The feed never calls the AI service and never
raises: failures come back as a flagged, degraded result.
"""

import logging
from dataclasses import dataclass, field
from datetime import timezone
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from backed.core.config import settings
from backed.core.structured_logging import build_log_context
from backed.db.enums import ProjectStatus
from backed.db.models import AlumniProfile, Project
from backed.services.relevance_service import RelevanceProfile, RuleBasedScorer

logger = logging.getLogger(__name__)

UNPERSONALIZED_SCORE = 50

NO_INTERESTS_MESSAGE = "Add interests to your profile to personalize your feed"
FETCH_FAILED_MESSAGE = "Projects could not be loaded right now. Please try again shortly"
SCORING_FAILED_MESSAGE = "Showing all projects (personalization temporarily unavailable)"


@dataclass
class ScoredProject:
    project: Project
    relevance_score: int


@dataclass
class FeedResult:
    projects: list[ScoredProject]
    personalized: bool
    degraded: bool = False
    message: Optional[str] = None
    matched_interests: list[str] = field(default_factory=list)


def _created_at_key(project: Project) -> float:
    created_at = project.created_at
    if created_at is None:
        return 0.0
    if created_at.tzinfo is None:
        # SQLite drops tzinfo; stored values are UTC
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at.timestamp()


def rank_feed(
    candidates: Iterable[Project],
    interests: Iterable[str] | None,
    *,
    home_school_id: Optional[UUID] = None,
) -> list[ScoredProject]:
    """
    Order candidates for a donor.

    Without interests: newest first, every score the flat baseline.
    With interests: score descending, then newest first. Both sorts are
    stable, so exact ties keep candidate order.
    """
    candidates = list(candidates)
    profile = RelevanceProfile.from_interests(interests, home_school_id)

    if not profile.has_interests:
        ordered = sorted(candidates, key=_created_at_key, reverse=True)
        return [ScoredProject(project=p, relevance_score=UNPERSONALIZED_SCORE) for p in ordered]

    scorer = RuleBasedScorer()
    scored = [
        ScoredProject(project=p, relevance_score=scorer.evaluate(profile, p))
        for p in candidates
    ]
    scored.sort(key=lambda s: (s.relevance_score, _created_at_key(s.project)), reverse=True)
    return scored


def fetch_feed_candidates(db: Session, limit: int) -> list[Project]:
    """Most recent active/funded projects, capped at ``limit``."""
    return list(
        db.execute(
            select(Project)
            .options(selectinload(Project.school))
            .where(Project.status.in_(ProjectStatus.feed_visible()))
            .order_by(Project.created_at.desc())
            .limit(limit)
        ).scalars()
    )


def build_personalized_feed(
    db: Session,
    donor: AlumniProfile,
    *,
    candidate_limit: Optional[int] = None,
    page_size: Optional[int] = None,
) -> FeedResult:
    """Build the donor's feed. Never raises."""
    candidate_limit = candidate_limit or settings.FEED_CANDIDATE_LIMIT
    page_size = page_size or settings.FEED_PAGE_SIZE
    interests = [n for n in (donor.niches or []) if n and n.strip()]
    context = build_log_context(donor_id=donor.id)

    try:
        candidates = fetch_feed_candidates(db, candidate_limit)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Feed candidate fetch failed", extra=context)
        return FeedResult(
            projects=[],
            personalized=False,
            degraded=True,
            message=FETCH_FAILED_MESSAGE,
        )

    if not interests:
        ranked = rank_feed(candidates, None)
        return FeedResult(
            projects=ranked[:page_size],
            personalized=False,
            message=NO_INTERESTS_MESSAGE,
        )

    try:
        ranked = rank_feed(candidates, interests, home_school_id=donor.school_id)
    except Exception:
        logger.warning("Feed scoring failed, falling back to latest projects", exc_info=True, extra=context)
        ranked = rank_feed(candidates, None)
        return FeedResult(
            projects=ranked[:page_size],
            personalized=False,
            degraded=True,
            message=SCORING_FAILED_MESSAGE,
        )

    return FeedResult(
        projects=ranked[:page_size],
        personalized=True,
        matched_interests=interests,
    )
