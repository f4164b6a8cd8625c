"""Tests for the Gemini-backed enricher.

The remote call is always replaced through the ``generate`` constructor
argument (an ``AsyncMock`` or a small coroutine), so no test touches the
network or needs a real key.  Deadlines are shortened to keep the suite fast.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock

import pytest

from healthscan_agent.ai_consultant import (
    EmptyRemoteResponse,
    Enricher,
    EnrichmentState,
    MalformedRemotePayload,
    build_prompt,
    clean_text,
    enrich,
    parse_remote_analysis,
)
from healthscan_agent.config import Settings
from healthscan_agent.models import ScanMetrics
from healthscan_agent.scoring import simulate_analysis


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

METRICS = ScanMetrics(
    url="https://ok.example",
    status_code=200,
    response_time_ms=87,
    headers={"server": "nginx"},
    html_snippet="<head><title>Shop</title></head>" + "y" * 5000,
)

BLOCKED = ScanMetrics(url="http://blocked.example", fetch_error="Connection Timeout")


def _remote_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "healthScore": 92,
        "seo": {"summary": "Google can find you easily.", "details": ["Title is set"]},
        "accessibility": {"summary": "Readable for everyone.", "details": ["Language is set"]},
        "privacy": {
            "summary": "Nothing worrying.",
            "details": ["Policy link found"],
            "level": "Low concern",
        },
        "jsErrors": {"summary": "No problems.", "details": []},
        "recommendations": ["Keep your certificate up to date."],
    }
    payload.update(overrides)
    return payload


def _enricher(generate: Any, timeout_s: float = 1.0) -> Enricher:
    return Enricher("test-key", timeout_s=timeout_s, simulated_delay_s=0, generate=generate)


# ---------------------------------------------------------------------------
# Prompt / parsing
# ---------------------------------------------------------------------------

class TestBuildPrompt:
    def test_includes_scan_data(self) -> None:
        prompt = build_prompt(METRICS, "TypeError: boom")
        assert "Target URL: https://ok.example" in prompt
        assert "Fetch Status: Success" in prompt
        assert "HTTP Status Code: 200" in prompt
        assert "Response Time: 87ms" in prompt
        assert "Browser Console Logs: TypeError: boom" in prompt

    def test_snippet_is_bounded(self) -> None:
        prompt = build_prompt(METRICS, "")
        assert "y" * 3968 in prompt
        assert "y" * 3969 not in prompt

    def test_blocked_probe_wording(self) -> None:
        prompt = build_prompt(BLOCKED, "")
        assert "Blocked by Browser Security (CORS)" in prompt
        assert "HTTP Status Code: N/A (Hidden by Security)" in prompt
        assert "Response Time: N/Ams" in prompt
        assert "Not available (Security Blocked)" in prompt
        assert "Browser Console Logs: None provided" in prompt

    def test_carries_scoring_rubric(self) -> None:
        prompt = build_prompt(METRICS, "")
        for rule in ("Deduct 20", "Deduct 40", "Deduct 15", "Deduct 10"):
            assert rule in prompt


class TestParseRemoteAnalysis:
    def test_valid_payload(self) -> None:
        analysis = parse_remote_analysis(json.dumps(_remote_payload()))
        assert analysis.health_score == 92
        assert analysis.privacy.level == "Low concern"
        assert analysis.recommendations == ["Keep your certificate up to date."]

    def test_fenced_payload(self) -> None:
        text = "```json\n" + json.dumps(_remote_payload()) + "\n```"
        assert parse_remote_analysis(text).health_score == 92

    def test_markdown_is_removed(self) -> None:
        payload = _remote_payload(recommendations=["**Fix** the `title` *now*"])
        analysis = parse_remote_analysis(json.dumps(payload))
        assert analysis.recommendations == ["Fix the title now"]

    def test_missing_js_errors_is_allowed(self) -> None:
        payload = _remote_payload()
        del payload["jsErrors"]
        assert parse_remote_analysis(json.dumps(payload)).js_errors is None

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty(self, text: str | None) -> None:
        with pytest.raises(EmptyRemoteResponse):
            parse_remote_analysis(text)

    @pytest.mark.parametrize(
        "text",
        [
            "not json at all",
            "[1, 2, 3]",
            json.dumps(_remote_payload(healthScore=150)),
            json.dumps(_remote_payload(healthScore="high")),
            json.dumps(_remote_payload(privacy={"summary": "s", "details": [], "level": "Fine"})),
            json.dumps({"healthScore": 50}),
        ],
    )
    def test_malformed(self, text: str) -> None:
        with pytest.raises(MalformedRemotePayload):
            parse_remote_analysis(text)


@pytest.mark.parametrize("value", [b"{}", {"healthScore": 90}, 42])
def test_non_text_response_is_malformed(value: object) -> None:
    with pytest.raises(MalformedRemotePayload):
        parse_remote_analysis(value)  # type: ignore[arg-type]


def test_clean_text() -> None:
    assert clean_text("  **Bold** and *soft* `code`  ") == "Bold and soft code"


# ---------------------------------------------------------------------------
# Enricher
# ---------------------------------------------------------------------------

class TestEnricherSimulated:
    async def test_no_credential_skips_remote(self) -> None:
        generate = AsyncMock()
        enricher = Enricher(None, simulated_delay_s=0, generate=generate)

        outcome = await enricher.run(METRICS, "")

        generate.assert_not_called()
        assert outcome.state is EnrichmentState.SIMULATED
        assert outcome.source == "simulated"
        assert outcome.analysis == simulate_analysis(METRICS, "")

    async def test_simulated_path_waits_for_delay(self) -> None:
        enricher = Enricher("", simulated_delay_s=0.05)
        loop = asyncio.get_running_loop()
        start = loop.time()
        await enricher.enrich(METRICS, "")
        assert loop.time() - start >= 0.04

    def test_from_settings(self) -> None:
        s = Settings(gemini_api_key="k", gemini_model="m", enrich_timeout_ms=2500, simulated_delay_ms=100)
        enricher = Enricher.from_settings(s)
        assert enricher.api_key == "k"
        assert enricher.model == "m"
        assert enricher.timeout_s == 2.5
        assert enricher.simulated_delay_s == 0.1
        assert enricher.state is EnrichmentState.IDLE


class TestEnricherRemote:
    async def test_remote_success(self) -> None:
        generate = AsyncMock(return_value=json.dumps(_remote_payload()))
        enricher = _enricher(generate)

        outcome = await enricher.run(METRICS, "some log")

        generate.assert_awaited_once()
        prompt = generate.await_args.args[0]
        assert "Browser Console Logs: some log" in prompt
        assert outcome.state is EnrichmentState.REMOTE_SUCCESS
        assert enricher.state is EnrichmentState.REMOTE_SUCCESS
        assert outcome.analysis.health_score == 92
        assert outcome.reason is None

    @pytest.mark.parametrize(
        "generate",
        [
            AsyncMock(side_effect=RuntimeError("API key not valid")),
            AsyncMock(return_value=None),
            AsyncMock(return_value=""),
            AsyncMock(return_value="{oops"),
            AsyncMock(return_value=json.dumps({"healthScore": 10})),
            AsyncMock(return_value=b'{"healthScore": 90}'),
            AsyncMock(return_value={"healthScore": 90}),
        ],
        ids=["rejects", "none", "empty", "not-json", "wrong-shape", "bytes", "dict"],
    )
    async def test_failures_fall_back(self, generate: AsyncMock) -> None:
        enricher = _enricher(generate)

        outcome = await enricher.run(BLOCKED, "err")

        assert outcome.state is EnrichmentState.REMOTE_FALLBACK
        assert outcome.reason
        assert outcome.analysis == simulate_analysis(BLOCKED, "err")
        assert 0 <= outcome.analysis.health_score <= 100

    async def test_timeout_falls_back(self) -> None:
        async def slow(prompt: str) -> str:
            await asyncio.sleep(0.3)
            return json.dumps(_remote_payload())

        enricher = _enricher(slow, timeout_s=0.05)
        outcome = await enricher.run(METRICS, "")

        assert outcome.state is EnrichmentState.REMOTE_FALLBACK
        assert outcome.reason == "AI Analysis Timed Out"
        assert outcome.analysis == simulate_analysis(METRICS, "")

    async def test_late_result_is_discarded(self) -> None:
        finished = asyncio.Event()

        async def slow(prompt: str) -> str:
            await asyncio.sleep(0.15)
            finished.set()
            return json.dumps(_remote_payload(healthScore=1))

        enricher = _enricher(slow, timeout_s=0.05)
        outcome = await enricher.run(METRICS, "")
        fallback = outcome.analysis

        await asyncio.wait_for(finished.wait(), timeout=2)
        await asyncio.sleep(0.01)

        assert enricher.state is EnrichmentState.REMOTE_FALLBACK
        assert outcome.analysis is fallback
        assert outcome.analysis.health_score == 100
        assert not enricher._stragglers

    async def test_late_failure_is_swallowed(self) -> None:
        async def slow_fail(prompt: str) -> str:
            await asyncio.sleep(0.1)
            raise RuntimeError("late boom")

        enricher = _enricher(slow_fail, timeout_s=0.02)
        outcome = await enricher.run(METRICS, "")
        await asyncio.sleep(0.2)

        assert outcome.state is EnrichmentState.REMOTE_FALLBACK
        assert not enricher._stragglers

    async def test_fast_remote_beats_timer(self) -> None:
        async def quick(prompt: str) -> str:
            await asyncio.sleep(0.01)
            return json.dumps(_remote_payload(healthScore=77))

        outcome = await _enricher(quick, timeout_s=0.5).run(METRICS, "")

        assert outcome.state is EnrichmentState.REMOTE_SUCCESS
        assert outcome.analysis.health_score == 77

    async def test_module_level_enrich_uses_given_enricher(self) -> None:
        generate = AsyncMock(return_value=json.dumps(_remote_payload(healthScore=64)))
        analysis = await enrich(METRICS, "", enricher=_enricher(generate))
        assert analysis.health_score == 64
