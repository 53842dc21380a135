"""Tests for relevance scoring tiers and scorer strategies."""

import random
import uuid

import httpx
import pytest

from backed.core.config import settings
from backed.db.enums import ProjectStatus
from backed.db.models import Project
from backed.services.relevance_service import (
    AIScorer,
    BASELINE_SCORE,
    RelevanceProfile,
    RuleBasedScorer,
    build_scorer,
    build_scoring_prompt,
    direct_match_score,
    keyword_fallback_score,
    score_relevance,
)


def _project(**kwargs) -> Project:
    """Unsaved project; scoring never touches the database."""
    return Project(
        id=uuid.uuid4(),
        school_id=kwargs.pop("school_id", uuid.uuid4()),
        title=kwargs.pop("title", "Library Renovation"),
        description=kwargs.pop("description", "Refurbish the school library."),
        overview=kwargs.pop("overview", None),
        category=kwargs.pop("category", []),
        status=kwargs.pop("status", ProjectStatus.ACTIVE.value),
        days_remaining=kwargs.pop("days_remaining", None),
        **kwargs,
    )


# =============================================================================
# Deterministic tiers
# =============================================================================


def test_direct_category_match():
    project = _project(category=["technology", "arts"])

    assert score_relevance(["Technology"], project) == 75


def test_text_match_scores_55():
    project = _project(category=["Music"], description="Build a technology lab for the music wing.")

    assert score_relevance(["Technology"], project) == 55


def test_no_match_is_baseline():
    project = _project(category=["Sports"])

    assert score_relevance(["Technology"], project) == BASELINE_SCORE


def test_category_match_is_substring_either_way():
    assert score_relevance(["tech"], _project(category=["Technology"])) == 75
    assert score_relevance(["science and technology"], _project(category=["Technology"])) == 75


def test_multiple_matches_cap_bonus():
    assert direct_match_score(1) == 75
    assert direct_match_score(2) == 90
    assert direct_match_score(3) == 95
    assert direct_match_score(10) == 95


def test_boosts_are_capped_at_100():
    home = uuid.uuid4()
    project = _project(
        school_id=home,
        category=["STEM", "Science", "Technology"],
        days_remaining=10,
    )

    score = score_relevance(["stem", "science", "technology"], project, home_school_id=home)

    assert score == 100


def test_active_boost_requires_days_remaining():
    assert score_relevance(["Sports"], _project(category=["Sports"], days_remaining=3)) == 80
    assert score_relevance(["Sports"], _project(category=["Sports"], days_remaining=0)) == 75
    assert score_relevance(
        ["Sports"], _project(category=["Sports"], days_remaining=3, status=ProjectStatus.FUNDED.value)
    ) == 75


def test_home_school_boost():
    home = uuid.uuid4()
    project = _project(school_id=home, category=["Arts"])

    assert score_relevance(["Technology"], project, home_school_id=home) == BASELINE_SCORE + 10


def test_interests_are_normalized():
    profile = RelevanceProfile.from_interests([" Technology ", "technology", "", None, "ARTS"])

    assert profile.interests == ("technology", "arts")
    assert not RelevanceProfile.from_interests([]).has_interests


def test_rule_based_scoring_is_deterministic():
    project = _project(category=["Technology"], days_remaining=5)
    scorer = RuleBasedScorer()
    profile = RelevanceProfile.from_interests(["Technology", "Arts"])

    scores = {scorer.evaluate(profile, project) for _ in range(20)}

    assert len(scores) == 1


def test_keyword_fallback_score():
    profile = RelevanceProfile.from_interests(["library", "books"])

    assert keyword_fallback_score(profile, _project(overview="Books for every class.")) == 65
    assert keyword_fallback_score(profile, _project()) == 55
    assert keyword_fallback_score(profile, _project(title="Bus", description="A school bus.")) == 45


def test_scoring_prompt_truncates_long_fields():
    profile = RelevanceProfile.from_interests(["Technology"])
    project = _project(description="x" * 500, overview="y" * 500)

    prompt = build_scoring_prompt(profile, project)

    assert "x" * 200 in prompt
    assert "x" * 201 not in prompt
    assert "User interests: technology" in prompt


# =============================================================================
# AI scorer
# =============================================================================


@pytest.mark.asyncio
async def test_ai_scorer_uses_semantic_score(make_provider):
    provider = make_provider("82")
    scorer = AIScorer(provider, max_retries=0)
    profile = RelevanceProfile.from_interests(["robotics"])

    score = await scorer.score(profile, _project(category=["Sports"]))

    assert score == 82
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_ai_scorer_skips_ai_on_direct_match(make_provider):
    provider = make_provider("10")
    scorer = AIScorer(provider, rng=random.Random(7), jitter=5)
    profile = RelevanceProfile.from_interests(["Technology"])

    scores = [await scorer.score(profile, _project(category=["Technology"])) for _ in range(30)]

    assert all(75 <= s <= 80 for s in scores)
    assert provider.calls == []


@pytest.mark.asyncio
async def test_ai_scorer_text_match_is_55(make_provider):
    provider = make_provider("99")
    scorer = AIScorer(provider)
    profile = RelevanceProfile.from_interests(["library"])

    assert await scorer.score(profile, _project(category=["Arts"])) == 55
    assert provider.calls == []


@pytest.mark.asyncio
async def test_ai_scorer_garbage_reply_falls_back_to_keywords(make_provider):
    scorer = AIScorer(make_provider("I think it is quite relevant!"), max_retries=0)
    profile = RelevanceProfile.from_interests(["robotics"])

    score = await scorer.score(profile, _project(category=["Sports"]))

    assert score == 45


@pytest.mark.asyncio
async def test_ai_scorer_provider_error_falls_back(make_provider):
    provider = make_provider(httpx.ConnectError("unreachable"))
    scorer = AIScorer(provider, max_retries=1, base_delay=0)
    profile = RelevanceProfile.from_interests(["robotics"])

    score = await scorer.score(profile, _project(category=["Sports"]))

    assert 0 <= score <= 100
    assert score == 45
    assert len(provider.calls) == 2


def test_ai_scorer_retry_policy_comes_from_settings(make_provider, monkeypatch):
    monkeypatch.setattr(settings, "AI_SCORING_RETRY_DELAY", 0.25)
    monkeypatch.setattr(settings, "AI_SCORING_MAX_RETRIES", 2)

    scorer = AIScorer(make_provider("50"))

    assert scorer.base_delay == 0.25
    assert scorer.max_retries == 2


@pytest.mark.asyncio
async def test_ai_scorer_does_not_retry_auth_errors(make_provider):
    provider = make_provider(RuntimeError("Invalid API key"))
    scorer = AIScorer(provider, max_retries=3, base_delay=0)
    profile = RelevanceProfile.from_interests(["robotics"])

    await scorer.score(profile, _project(category=["Sports"]))

    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_ai_scorer_clamps_out_of_range_reply(make_provider):
    scorer = AIScorer(make_provider("250"), max_retries=0)
    profile = RelevanceProfile.from_interests(["robotics"])

    assert await scorer.score(profile, _project(category=["Sports"])) == 100


@pytest.mark.asyncio
async def test_ai_scorer_without_interests_is_baseline(make_provider):
    provider = make_provider("90")
    scorer = AIScorer(provider)

    assert await scorer.score(RelevanceProfile(), _project(category=["Sports"])) == BASELINE_SCORE
    assert provider.calls == []


def test_build_scorer_without_provider_is_rule_based(make_provider):
    assert isinstance(build_scorer(None), RuleBasedScorer)
    assert isinstance(build_scorer(make_provider("1")), AIScorer)
