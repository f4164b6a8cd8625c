"""
Plain-language website health analysis using Google Gemini.

The remote model is raced against a timer.  Whatever goes wrong on the remote
side (no key, SDK error, timeout, empty or malformed JSON) the caller still
gets a complete report from the deterministic scorer.
"""
from __future__ import annotations

import asyncio
import enum
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from google import genai
from google.genai import types
from pydantic import ValidationError

from .config import Settings, settings
from .models import AIAnalysis, EnrichmentSource, ScanMetrics
from .scoring import simulate_analysis

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
ENRICH_TIMEOUT_S = 15.0
SIMULATED_DELAY_S = 0.4
PROMPT_SNIPPET_CHARS = 4000

RemoteCall = Callable[[str], Awaitable[str | None]]


class EnrichmentState(str, enum.Enum):
    IDLE = "idle"
    SIMULATED = "simulated"
    REMOTE_PENDING = "remote_pending"
    REMOTE_SUCCESS = "remote_success"
    REMOTE_FALLBACK = "remote_fallback"


class EnrichmentError(Exception):
    """Remote analysis could not be used; the caller falls back."""


class RemoteTimeout(EnrichmentError):
    pass


class RemoteCallError(EnrichmentError):
    pass


class EmptyRemoteResponse(EnrichmentError):
    pass


class MalformedRemotePayload(EnrichmentError):
    pass


_SECTION_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "summary": {"type": "STRING"},
        "details": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
}

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "healthScore": {"type": "INTEGER"},
        "seo": _SECTION_SCHEMA,
        "accessibility": _SECTION_SCHEMA,
        "privacy": {
            "type": "OBJECT",
            "properties": {
                "summary": {"type": "STRING"},
                "details": {"type": "ARRAY", "items": {"type": "STRING"}},
                "level": {
                    "type": "STRING",
                    "enum": ["Low concern", "Needs attention", "High concern"],
                },
            },
        },
        "jsErrors": _SECTION_SCHEMA,
        "recommendations": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
}


def build_prompt(metrics: ScanMetrics, logs: str) -> str:
    """Build the consultant prompt for one scan."""
    fetch_status = (
        "Blocked by Browser Security (CORS) - This is normal for big sites"
        if metrics.fetch_error
        else "Success"
    )
    status = metrics.status_code if metrics.status_code is not None else "N/A (Hidden by Security)"
    elapsed = metrics.response_time_ms if metrics.response_time_ms is not None else "N/A"
    snippet = (
        metrics.html_snippet[:PROMPT_SNIPPET_CHARS]
        if metrics.html_snippet
        else "Not available (Security Blocked)"
    )

    return f"""Act as a friendly Website Consultant for a small business owner who is NOT technical.
Your job is to explain website health in plain English.

Target URL: {metrics.url}
Fetch Status: {fetch_status}
HTTP Status Code: {status}
Response Time: {elapsed}ms
HTML Snippet (Partial): {snippet}
Browser Console Logs: {logs or "None provided"}

INSTRUCTIONS:
1. NO JARGON: Do not use words like "DOM", "Canonical", "Viewport Meta", "Stack Trace". Use words like "Page Structure", "Google Ranking", "Mobile Sizing", "Background Code".
2. NO MARKDOWN: Do NOT use bold, italics, or code blocks. Return PLAIN TEXT only.
3. BE HELPFUL: Explain WHY a fix matters (e.g., "Fixing this helps you rank higher on Google").
4. SCORING:
   - Start at 100.
   - IF HTTP (not HTTPS): Deduct 20 points.
   - IF Status Code 4xx/5xx: Deduct 40 points.
   - IF CORS Blocked (Status Null): Deduct 15 points.
   - IF Console Errors: Deduct 15 points.
   - IF HTML Missing: Deduct 10 points.
5. CORS HANDLING: If HTML is missing due to blocking, be polite. Say "Your site is secure against automated scanners, which is good, but limits what we can see."

Return JSON matching the schema provided."""


_MARKDOWN_RE = re.compile(r"\*\*|\*|`")


def clean_text(text: str) -> str:
    """Drop markdown emphasis the model sometimes emits despite instructions."""
    return _MARKDOWN_RE.sub("", text).strip()


def _clean_strings(value: Any) -> Any:
    if isinstance(value, str):
        return clean_text(value)
    if isinstance(value, list):
        return [_clean_strings(v) for v in value]
    if isinstance(value, dict):
        # Enum values must survive untouched for validation.
        return {k: (v if k == "level" else _clean_strings(v)) for k, v in value.items()}
    return value


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_remote_analysis(text: str | None) -> AIAnalysis:
    """Turn the model's JSON text into an :class:`AIAnalysis`.

    Raises:
        EmptyRemoteResponse: no text came back.
        MalformedRemotePayload: not text, not JSON, or not the expected shape.
    """
    if text is not None and not isinstance(text, str):
        raise MalformedRemotePayload(f"AI response is not text: {type(text).__name__}")
    if not text or not text.strip():
        raise EmptyRemoteResponse("Empty response from AI")
    try:
        raw = json.loads(_strip_fences(text))
    except json.JSONDecodeError as e:
        raise MalformedRemotePayload(f"AI response is not JSON: {e}") from e
    if not isinstance(raw, dict):
        raise MalformedRemotePayload("AI response is not a JSON object")
    try:
        return AIAnalysis.model_validate(_clean_strings(raw))
    except ValidationError as e:
        raise MalformedRemotePayload(f"AI response does not match schema: {e.error_count()} error(s)") from e


@dataclass(frozen=True)
class EnrichmentOutcome:
    state: EnrichmentState
    analysis: AIAnalysis
    reason: str | None = None

    @property
    def source(self) -> EnrichmentSource:
        return self.state.value  # type: ignore[return-value]


class Enricher:
    """Chooses between the Gemini report and the deterministic one.

    The credential is passed in explicitly; an empty key means every run takes
    the simulated path without touching the network.  ``generate`` replaces
    the Gemini call (it receives the prompt and returns the response text).
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str = DEFAULT_MODEL,
        timeout_s: float = ENRICH_TIMEOUT_S,
        simulated_delay_s: float = SIMULATED_DELAY_S,
        generate: RemoteCall | None = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model
        self.timeout_s = timeout_s
        self.simulated_delay_s = simulated_delay_s
        self._generate: RemoteCall = generate or self._gemini_generate
        self.state = EnrichmentState.IDLE
        # Remote calls that lost the race; kept referenced until they finish.
        self._stragglers: set[asyncio.Future] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Enricher":
        return cls(
            settings.gemini_api_key,
            model=settings.gemini_model,
            timeout_s=settings.enrich_timeout_ms / 1000,
            simulated_delay_s=settings.simulated_delay_ms / 1000,
        )

    async def _gemini_generate(self, prompt: str) -> str | None:
        client = genai.Client(api_key=self.api_key)
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=RESPONSE_SCHEMA,
            temperature=0.2,
        )
        resp = await client.aio.models.generate_content(
            model=self.model,
            contents=prompt,
            config=config,
        )
        return getattr(resp, "text", None)

    async def _race(self, prompt: str) -> str | None:
        """Run the remote call against the timer; first to settle wins."""
        loop = asyncio.get_running_loop()
        slot: asyncio.Future = loop.create_future()
        task = asyncio.ensure_future(self._generate(prompt))

        def _remote_done(fut: asyncio.Future) -> None:
            self._stragglers.discard(fut)
            if fut.cancelled():
                if not slot.done():
                    slot.set_exception(RemoteCallError("AI call was cancelled"))
                return
            exc = fut.exception()
            if slot.done():
                if exc is not None:
                    logger.debug("ignoring late AI failure: %r", exc)
                else:
                    logger.debug("ignoring late AI response")
                return
            if exc is not None:
                err = RemoteCallError(f"{type(exc).__name__}: {exc}")
                err.__cause__ = exc
                slot.set_exception(err)
            else:
                slot.set_result(fut.result())

        def _expire() -> None:
            if not slot.done():
                slot.set_exception(RemoteTimeout("AI Analysis Timed Out"))

        self._stragglers.add(task)
        task.add_done_callback(_remote_done)
        timer = loop.call_later(self.timeout_s, _expire)
        try:
            return await slot
        finally:
            timer.cancel()

    async def run(self, metrics: ScanMetrics, logs: str = "") -> EnrichmentOutcome:
        if not self.api_key:
            logger.warning("No Gemini API key configured, using simulated analysis.")
            self.state = EnrichmentState.SIMULATED
            await asyncio.sleep(self.simulated_delay_s)
            return EnrichmentOutcome(self.state, simulate_analysis(metrics, logs))

        self.state = EnrichmentState.REMOTE_PENDING
        try:
            text = await self._race(build_prompt(metrics, logs))
            analysis = parse_remote_analysis(text)
        except EnrichmentError as e:
            logger.warning("Gemini analysis failed for %s: %s", metrics.url, e)
            self.state = EnrichmentState.REMOTE_FALLBACK
            return EnrichmentOutcome(self.state, simulate_analysis(metrics, logs), reason=str(e))

        self.state = EnrichmentState.REMOTE_SUCCESS
        return EnrichmentOutcome(self.state, analysis)

    async def enrich(self, metrics: ScanMetrics, logs: str = "") -> AIAnalysis:
        outcome = await self.run(metrics, logs)
        return outcome.analysis


async def enrich(metrics: ScanMetrics, logs: str = "", *, enricher: Enricher | None = None) -> AIAnalysis:
    if enricher is None:
        enricher = Enricher.from_settings(settings)
    return await enricher.enrich(metrics, logs)
