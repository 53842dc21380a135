"""Pydantic schemas for the personalized feed."""

from pydantic import BaseModel, Field

from backed.schemas.project import ProjectRead
from backed.services.feed_service import FeedResult, ScoredProject


class FeedProjectRead(ProjectRead):
    relevance_score: int

    @classmethod
    def from_scored(cls, scored: ScoredProject) -> "FeedProjectRead":
        base = ProjectRead.from_project(scored.project)
        return cls(**base.model_dump(), relevance_score=scored.relevance_score)


class FeedResponse(BaseModel):
    """
    Ranked feed page.

    ``personalized`` is false for the newest-first fallback; ``degraded``
    marks results produced after a failure.
    """

    projects: list[FeedProjectRead]
    personalized: bool
    degraded: bool = False
    message: str | None = None
    matched_interests: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: FeedResult) -> "FeedResponse":
        return cls(
            projects=[FeedProjectRead.from_scored(s) for s in result.projects],
            personalized=result.personalized,
            degraded=result.degraded,
            message=result.message,
            matched_interests=result.matched_interests,
        )
