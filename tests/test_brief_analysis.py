"""Tests for brief analysis -- heuristic fallback, normalization, LLM service.

Remote calls are never made: ``_request_completion`` is patched with an
AsyncMock returning the raw message content (or raising).
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.dealflow.deals.schemas import Brief
from src.dealflow.services.brief_analysis import (
    BriefAnalysis,
    BriefAnalysisService,
    BriefIncompleteError,
    augment_goal,
    brief_hash,
    fallback_analyze,
    normalize_analysis,
)

FULL = Brief(goal="Launch the spring line", budget=50000, deadline="2025-12-01")


# ── Heuristic ───────────────────────────────────────────────────────────────


class TestFallbackAnalyze:
    """Tests for fallback_analyze."""

    def test_complete_brief_scores_high(self) -> None:
        result = fallback_analyze(FULL)
        assert result.score == 95
        assert result.issues == []
        assert len(result.suggestions) == 3
        assert len(result.questions) == 3
        assert result.source == "heuristic"

    def test_empty_brief_lists_every_issue(self) -> None:
        result = fallback_analyze(Brief())
        assert result.score == 50
        assert result.issues == [
            "Campaign goal is not specified.",
            "Budget is not specified.",
            "Deadline is not specified.",
        ]

    def test_partial_brief(self) -> None:
        result = fallback_analyze(Brief(goal="Launch", deadline="2025-12-01"))
        assert result.score == 80
        assert result.issues == ["Budget is not specified."]


class TestAugmentGoal:
    """Tests for augment_goal."""

    def test_appends_bullets(self) -> None:
        analysis = BriefAnalysis(suggestions=["Add a CTA", "Set KPIs"])
        assert augment_goal("Launch", analysis) == (
            "Launch\n\nAI recommendations:\n- Add a CTA\n- Set KPIs"
        )

    def test_no_suggestions_returns_goal(self) -> None:
        assert augment_goal("Launch", BriefAnalysis()) == "Launch"


class TestNormalizeAnalysis:
    """Loosely shaped model output is coerced into BriefAnalysis."""

    def test_clamps_and_filters(self) -> None:
        result = normalize_analysis(
            {
                "score": 140,
                "issues": ["  no KPI ", "", None, 3],
                "suggestions": "not a list",
                "ideas": ["Challenge"],
            },
            source="openai",
        )
        assert result.score == 100
        assert result.issues == ["no KPI", "3"]
        assert result.suggestions == []
        assert result.ideas == ["Challenge"]
        assert result.formats == []
        assert result.source == "openai"

    def test_bad_score_uses_default(self) -> None:
        assert normalize_analysis({"score": "n/a"}, source="openai").score == 60
        assert normalize_analysis({"score": -5.4}, source="openai").score == 0


def test_brief_hash_depends_on_content() -> None:
    assert brief_hash(FULL) == brief_hash(FULL.model_copy())
    assert brief_hash(FULL) != brief_hash(FULL.model_copy(update={"goal": "Other"}))


# ── Service ─────────────────────────────────────────────────────────────────


class TestBriefAnalysisService:
    """Tests for BriefAnalysisService.analyze."""

    @pytest.mark.asyncio
    async def test_incomplete_brief_rejected(self) -> None:
        service = BriefAnalysisService()
        with pytest.raises(BriefIncompleteError):
            await service.analyze(Brief(goal="Launch", budget=1000))

    @pytest.mark.asyncio
    async def test_offline_without_api_key(self) -> None:
        service = BriefAnalysisService(api_key="")
        with patch.object(service, "_request_completion", AsyncMock()) as mock_request:
            result = await service.analyze(FULL)
        assert result.source == "offline-fallback"
        mock_request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remote_result_normalized(self) -> None:
        service = BriefAnalysisService(api_key="sk-test")
        content = json.dumps(
            {
                "score": 72,
                "issues": ["No KPI"],
                "questions": ["Audience?"],
                "suggestions": ["Add UTM tags"],
                "ideas": [],
                "formats": ["Shorts"],
            }
        )
        with patch.object(service, "_request_completion", AsyncMock(return_value=content)):
            result = await service.analyze(FULL)

        assert result.source == "openai"
        assert result.score == 72
        assert result.suggestions == ["Add UTM tags"]

    @pytest.mark.asyncio
    async def test_unparsable_content_falls_back(self) -> None:
        service = BriefAnalysisService(api_key="sk-test")
        with patch.object(service, "_request_completion", AsyncMock(return_value="not json")):
            result = await service.analyze(FULL)
        assert result.source == "parse-fallback"
        assert len(result.suggestions) == 3

    @pytest.mark.asyncio
    async def test_non_object_content_falls_back(self) -> None:
        service = BriefAnalysisService(api_key="sk-test")
        with patch.object(service, "_request_completion", AsyncMock(return_value="[1, 2]")):
            result = await service.analyze(FULL)
        assert result.source == "parse-fallback"

    @pytest.mark.asyncio
    async def test_http_error_falls_back(self) -> None:
        service = BriefAnalysisService(api_key="sk-test")
        failing = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        with patch.object(service, "_request_completion", failing):
            result = await service.analyze(FULL)
        assert result.source == "api-fallback"

    @pytest.mark.asyncio
    async def test_result_cached_per_brief(self) -> None:
        service = BriefAnalysisService(api_key="sk-test")
        mock_request = AsyncMock(return_value=json.dumps({"score": 70}))
        with patch.object(service, "_request_completion", mock_request):
            first = await service.analyze(FULL)
            second = await service.analyze(FULL.model_copy())
            await service.analyze(FULL.model_copy(update={"goal": "Other goal"}))

        assert first is second
        assert mock_request.await_count == 2

    @pytest.mark.asyncio
    async def test_cache_evicts_least_recently_used(self) -> None:
        service = BriefAnalysisService(api_key="sk-test", max_cache_size=2)
        other = FULL.model_copy(update={"goal": "Other goal"})
        third = FULL.model_copy(update={"goal": "Third goal"})
        mock_request = AsyncMock(return_value=json.dumps({"score": 70}))
        with patch.object(service, "_request_completion", mock_request):
            await service.analyze(FULL)
            await service.analyze(other)
            await service.analyze(FULL)  # hit, FULL becomes most recent
            await service.analyze(third)  # evicts other
            assert mock_request.await_count == 3

            await service.analyze(FULL)
            assert mock_request.await_count == 3
            await service.analyze(other)
            assert mock_request.await_count == 4
