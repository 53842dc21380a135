"""
Relevance Service - scores how well a project matches a donor's interests.

Three tiers, each with a deterministic fallback:

1. Direct category match (casefolded, substring containment either way)
2. Partial text match against the title and description
3. Semantic score from the generative text service (chat path only)

Tiers 1-2 are pure and exactly reproducible; the feed never goes further.
"""

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional
from uuid import UUID

from backed.core.config import settings
from backed.core.retry import call_with_backoff
from backed.db.enums import ProjectStatus
from backed.db.models import Project
from backed.services.ai_provider import AIProvider, is_retryable_ai_error
from backed.services.ai_response_validation import parse_score

logger = logging.getLogger(__name__)

MAX_SCORE = 100
DIRECT_MATCH_BASE = 60
DIRECT_MATCH_STEP = 15
DIRECT_MATCH_BONUS_CAP = 35
TEXT_MATCH_SCORE = 55
BASELINE_SCORE = 30
HOME_SCHOOL_BOOST = 10
ACTIVE_BOOST = 5

# Keyword fallback when the semantic tier fails
KEYWORD_MULTI_HIT_SCORE = 65
KEYWORD_SINGLE_HIT_SCORE = 55
KEYWORD_NO_HIT_SCORE = 45

PROMPT_FIELD_LIMIT = 200


@dataclass(frozen=True)
class RelevanceProfile:
    """Per-request view of a donor's interests. Never persisted."""

    interests: tuple[str, ...] = ()
    home_school_id: Optional[UUID] = None

    @classmethod
    def from_interests(
        cls, interests: Iterable[str] | None, home_school_id: Optional[UUID] = None
    ) -> "RelevanceProfile":
        normalized: dict[str, None] = {}
        for interest in interests or ():
            value = (interest or "").strip().casefold()
            if value:
                normalized[value] = None
        return cls(interests=tuple(normalized), home_school_id=home_school_id)

    @property
    def has_interests(self) -> bool:
        return bool(self.interests)


# =============================================================================
# Deterministic tiers
# =============================================================================


def _normalized_categories(project: Project) -> list[str]:
    return [c.strip().casefold() for c in (project.category or []) if c and c.strip()]


def count_category_matches(profile: RelevanceProfile, project: Project) -> int:
    """Number of interests contained in, or containing, some category tag."""
    categories = _normalized_categories(project)
    return sum(
        1
        for interest in profile.interests
        if any(cat in interest or interest in cat for cat in categories)
    )


def _project_text(project: Project, *, include_overview: bool = False) -> str:
    parts = [project.title or "", project.description or ""]
    if include_overview:
        parts.append(project.overview or "")
    return " ".join(parts).casefold()


def has_text_match(profile: RelevanceProfile, project: Project) -> bool:
    text = _project_text(project)
    return any(interest in text for interest in profile.interests)


def direct_match_score(match_count: int) -> int:
    return min(DIRECT_MATCH_BASE + min(DIRECT_MATCH_STEP * match_count, DIRECT_MATCH_BONUS_CAP), MAX_SCORE)


def apply_boosts(score: int, project: Project, home_school_id: Optional[UUID]) -> int:
    """Home-school then active boosts, capped at 100 after each."""
    if home_school_id is not None and project.school_id == home_school_id:
        score = min(score + HOME_SCHOOL_BOOST, MAX_SCORE)
    if (
        project.status == ProjectStatus.ACTIVE.value
        and project.days_remaining is not None
        and project.days_remaining > 0
    ):
        score = min(score + ACTIVE_BOOST, MAX_SCORE)
    return score


def keyword_fallback_score(profile: RelevanceProfile, project: Project) -> int:
    text = _project_text(project, include_overview=True)
    hits = sum(1 for interest in profile.interests if interest in text)
    if hits >= 2:
        return KEYWORD_MULTI_HIT_SCORE
    if hits == 1:
        return KEYWORD_SINGLE_HIT_SCORE
    return KEYWORD_NO_HIT_SCORE


def score_relevance(
    interests: Iterable[str] | None,
    project: Project,
    *,
    home_school_id: Optional[UUID] = None,
) -> int:
    """Deterministic 0-100 relevance score (tiers 1-2 plus boosts)."""
    profile = RelevanceProfile.from_interests(interests, home_school_id)
    return RuleBasedScorer().evaluate(profile, project)


# =============================================================================
# Scorer strategies
# =============================================================================


class Scorer(ABC):
    """Scores a project for a relevance profile."""

    @abstractmethod
    async def score(self, profile: RelevanceProfile, project: Project) -> int:
        pass


class RuleBasedScorer(Scorer):
    """Tiers 1-2. Always available, never touches the network."""

    def evaluate(self, profile: RelevanceProfile, project: Project) -> int:
        matches = count_category_matches(profile, project)
        if matches:
            base = direct_match_score(matches)
        elif has_text_match(profile, project):
            base = TEXT_MATCH_SCORE
        else:
            base = BASELINE_SCORE
        return apply_boosts(base, project, profile.home_school_id)

    async def score(self, profile: RelevanceProfile, project: Project) -> int:
        return self.evaluate(profile, project)


class AIScorer(Scorer):
    """
    Adds the semantic tier on top of the rule-based tiers.

    Direct matches get a small random jitter so equally matched projects
    do not always surface in the same order in chat recommendations.
    Any provider failure or unparsable reply falls back to keyword counting.
    """

    def __init__(
        self,
        provider: AIProvider,
        *,
        rng: Optional[random.Random] = None,
        jitter: Optional[int] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
    ):
        self.provider = provider
        self.rng = rng or random.Random()
        self.jitter = settings.CHAT_SCORING_JITTER if jitter is None else jitter
        self.max_retries = settings.AI_SCORING_MAX_RETRIES if max_retries is None else max_retries
        self.base_delay = settings.AI_SCORING_RETRY_DELAY if base_delay is None else base_delay

    async def score(self, profile: RelevanceProfile, project: Project) -> int:
        matches = count_category_matches(profile, project)
        if matches:
            base = min(direct_match_score(matches) + self.rng.randint(0, self.jitter), MAX_SCORE)
        elif has_text_match(profile, project):
            base = TEXT_MATCH_SCORE
        else:
            base = await self._semantic_score(profile, project)
        return apply_boosts(base, project, profile.home_school_id)

    async def _semantic_score(self, profile: RelevanceProfile, project: Project) -> int:
        if not profile.has_interests:
            return BASELINE_SCORE

        prompt = build_scoring_prompt(profile, project)
        try:
            text = await call_with_backoff(
                lambda: self.provider.complete(prompt, temperature=0.0, max_tokens=10),
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                should_retry=is_retryable_ai_error,
                label="AI relevance scoring",
            )
        except Exception as e:
            logger.warning(f"Relevance scoring failed, using keyword fallback: {e}")
            return keyword_fallback_score(profile, project)

        score = parse_score(text)
        if score is None:
            return keyword_fallback_score(profile, project)
        return score


def build_scoring_prompt(profile: RelevanceProfile, project: Project) -> str:
    categories = ", ".join(project.category or []) or "None"
    lines = [
        "Rate how relevant this school project is to a user with these interests "
        "on a scale of 0-100. Respond with ONLY a number.",
        "",
        f"User interests: {', '.join(profile.interests)}",
        "",
        f'Project: "{project.title}"',
        f"Categories: {categories}",
        f"Description: {(project.description or '')[:PROMPT_FIELD_LIMIT]}",
    ]
    if project.overview:
        lines.append(f"Overview: {project.overview[:PROMPT_FIELD_LIMIT]}")
    lines.extend(["", "Score (0-100):"])
    return "\n".join(lines)


def build_scorer(provider: Optional[AIProvider]) -> Scorer:
    """AI-backed scorer when a provider is configured, rule-based otherwise."""
    if provider is None:
        return RuleBasedScorer()
    return AIScorer(provider)
