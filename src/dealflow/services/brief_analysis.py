"""Brief analysis -- LLM review of a campaign brief with an offline fallback.

BriefAnalysisService posts the brief to an OpenAI-compatible chat completions
endpoint (httpx, tenacity retries: 3 attempts, exponential backoff) and
normalizes the JSON answer into BriefAnalysis. Any failure -- no API key,
HTTP error after retries, unparsable content -- degrades to the heuristic
``fallback_analyze`` result, which has the same shape. Analysis is optional:
the stage gate never waits on it.

Results are cached per brief content hash for the lifetime of the service.
"""

from __future__ import annotations

import hashlib
import json
from collections import OrderedDict
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.dealflow.deals.schemas import Brief

logger = structlog.get_logger(__name__)

_analysis_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.ConnectError, httpx.TimeoutException)),
)

SYSTEM_PROMPT = (
    "You are a producer of creative integrations and an influencer marketing strategist. "
    "Analyse the brief, find gaps, suggest improvements, ideas and formats. "
    "Answer STRICTLY in JSON with the schema "
    "{score, issues[], questions[], suggestions[], ideas[], formats[]}. "
    "score is an integer 0..100."
)


class BriefAnalysis(BaseModel):
    """Normalized analysis result. Same shape for LLM and heuristic sources."""

    score: int = Field(default=60, ge=0, le=100)
    issues: list[str] = Field(default_factory=list)
    questions: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    ideas: list[str] = Field(default_factory=list)
    formats: list[str] = Field(default_factory=list)
    source: str = "heuristic"


class BriefIncompleteError(ValueError):
    """Raised when the brief lacks the minimum (goal, budget, deadline) for analysis."""


# ── Heuristic fallback ──────────────────────────────────────────────────────


def fallback_analyze(brief: Brief, source: str = "heuristic") -> BriefAnalysis:
    """Offline review: flag missing basics and offer stock suggestions."""
    goal = brief.goal.strip()
    budget = brief.budget or 0
    deadline = brief.deadline.strip()

    issues: list[str] = []
    if not goal:
        issues.append("Campaign goal is not specified.")
    if not budget:
        issues.append("Budget is not specified.")
    if not deadline:
        issues.append("Deadline is not specified.")

    score = 50
    if goal:
        score += 20
    if budget:
        score += 15
    if deadline:
        score += 10

    return BriefAnalysis(
        score=max(0, min(100, score)),
        issues=issues,
        questions=[
            "Who is the target audience and what is the key insight?",
            "What is the call to action and where does the traffic go?",
            "Which KPIs and creative constraints apply?",
        ],
        suggestions=[
            "Describe the target audience: age, geography, interests, pains.",
            "Define a clear CTA and landing page (UTM tags or promo code).",
            "Set KPIs: CPA/CPL/ROAS, views, CTR.",
        ],
        ideas=[
            "7-day product usage challenge",
            "Honest before/after case study",
            "Series of short UGC reviews",
        ],
        formats=["60-90 s integration", "3x Shorts/Reels", "20-40 min stream/AMA"],
        source=source,
    )


def augment_goal(goal: str, analysis: BriefAnalysis) -> str:
    """Append the analysis suggestions to the brief goal text."""
    if not analysis.suggestions:
        return goal
    addendum = "\n\nAI recommendations:\n- " + "\n- ".join(analysis.suggestions)
    return (goal or "") + addendum


def brief_hash(brief: Brief) -> str:
    payload = json.dumps(brief.model_dump(mode="json"), sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def _clamp_score(value: Any, default: int = 60) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(0, min(100, round(number)))


def normalize_analysis(data: dict[str, Any], source: str) -> BriefAnalysis:
    """Coerce a loosely shaped LLM answer into BriefAnalysis."""
    return BriefAnalysis(
        score=_clamp_score(data.get("score")),
        issues=_string_list(data.get("issues")),
        questions=_string_list(data.get("questions")),
        suggestions=_string_list(data.get("suggestions")),
        ideas=_string_list(data.get("ideas")),
        formats=_string_list(data.get("formats")),
        source=source,
    )


# ── Service ─────────────────────────────────────────────────────────────────


class BriefAnalysisService:
    """Analyses briefs via the LLM API, falling back to the heuristic.

    Args:
        api_key: API key; empty disables remote calls entirely.
        model: Chat model name.
        base_url: API base URL (OpenAI-compatible).
        timeout: Request timeout in seconds.
        max_cache_size: Results kept per process; least recently used go first.
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        max_cache_size: int = 256,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_cache_size = max(1, max_cache_size)
        self._cache: OrderedDict[str, BriefAnalysis] = OrderedDict()

    async def analyze(self, brief: Brief) -> BriefAnalysis:
        """Analyse ``brief``. Never raises for remote failures.

        Raises:
            BriefIncompleteError: If goal, budget or deadline is missing.
        """
        if not brief.goal.strip() or not brief.budget or not brief.deadline.strip():
            raise BriefIncompleteError("Fill in at least the goal, budget and deadline.")

        key = brief_hash(brief)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            logger.debug("brief_analysis.cache_hit", key=key)
            return cached

        if not self._api_key:
            result = fallback_analyze(brief, source="offline-fallback")
        else:
            result = await self._analyze_remote(brief)

        self._cache[key] = result
        if len(self._cache) > self._max_cache_size:
            self._cache.popitem(last=False)
        return result

    async def _analyze_remote(self, brief: Brief) -> BriefAnalysis:
        try:
            content = await self._request_completion(brief)
        except (RetryError, httpx.HTTPError) as exc:
            logger.warning("brief_analysis.api_failed", error=str(exc))
            return fallback_analyze(brief, source="api-fallback")

        try:
            parsed = json.loads(content or "{}")
        except json.JSONDecodeError:
            parsed = None
        if not isinstance(parsed, dict):
            logger.warning("brief_analysis.parse_failed")
            return fallback_analyze(brief, source="parse-fallback")

        result = normalize_analysis(parsed, source="openai")
        logger.info("brief_analysis.completed", score=result.score, source=result.source)
        return result

    @_analysis_retry
    async def _request_completion(self, brief: Brief) -> str:
        payload = {
            "model": self._model,
            "response_format": {"type": "json_object"},
            "temperature": 0.2,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": json.dumps({"brief": brief.model_dump(mode="json")})},
            ],
        }
        async with httpx.AsyncClient(
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=self._timeout,
        ) as client:
            response = await client.post(f"{self._base_url}/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        choices = data.get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content") or ""
