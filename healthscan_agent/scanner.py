"""Single-page probe: URL normalization, one bounded GET, snippet extraction.

Nothing in here raises for network trouble.  Timeouts, DNS failures, refused
connections and TLS problems are ordinary outcomes and come back as a
:class:`ProbeResult` with ``ok=False``.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field

import httpx

from .config import settings
from .models import ScanMetrics

logger = logging.getLogger(__name__)

CONNECTION_TIMEOUT = "Connection Timeout"
GENERIC_NETWORK_ERROR = "Network/CORS Error"

PROBE_TIMEOUT_S = 4.0
BODY_SNIPPET_CHARS = 1500
RAW_FALLBACK_CHARS = 2000

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_HEAD_RE = re.compile(r"<head>([\s\S]*?)</head>", re.IGNORECASE)
_BODY_RE = re.compile(r"<body[^>]*>([\s\S]*?)</body>", re.IGNORECASE)


def normalize_url(raw: str) -> str:
    value = raw.strip()
    if not _SCHEME_RE.match(value):
        value = "https://" + value
    return value


def extract_snippet(body: str | None) -> str | None:
    """Return the ``<head>`` block plus the start of ``<body>``.

    Pages without either tag fall back to a raw prefix of the document, so
    any non-empty body yields a non-empty snippet.
    """
    if not body:
        return None

    snippet = ""
    head = _HEAD_RE.search(body)
    if head:
        snippet += head.group(0)
    main = _BODY_RE.search(body)
    if main:
        snippet += main.group(1)[:BODY_SNIPPET_CHARS]

    if not snippet:
        snippet = body[:RAW_FALLBACK_CHARS]
    return snippet


@dataclass(frozen=True)
class ProbeResult:
    ok: bool
    status_code: int | None = None
    elapsed_ms: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""
    error: str | None = None

    @classmethod
    def success(cls, status_code: int, elapsed_ms: int, headers: dict[str, str], body: str) -> "ProbeResult":
        return cls(ok=True, status_code=status_code, elapsed_ms=elapsed_ms, headers=dict(headers), body=body)

    @classmethod
    def failure(cls, reason: str) -> "ProbeResult":
        return cls(ok=False, error=reason or GENERIC_NETWORK_ERROR)

    def to_metrics(self, url: str) -> ScanMetrics:
        if not self.ok:
            return ScanMetrics(url=url, fetch_error=self.error or GENERIC_NETWORK_ERROR)
        return ScanMetrics(
            url=url,
            status_code=self.status_code,
            response_time_ms=self.elapsed_ms,
            headers=self.headers,
            html_snippet=extract_snippet(self.body),
        )


async def _get(client: httpx.AsyncClient, url: str, user_agent: str) -> tuple[httpx.Response, int]:
    start = time.perf_counter()
    res = await client.get(
        url,
        headers={
            "user-agent": user_agent,
            "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        },
    )
    elapsed_ms = round((time.perf_counter() - start) * 1000)
    return res, elapsed_ms


async def probe(
    url: str,
    *,
    timeout_s: float = PROBE_TIMEOUT_S,
    client: httpx.AsyncClient | None = None,
    user_agent: str | None = None,
) -> ProbeResult:
    """Issue exactly one GET against ``url`` and classify the outcome.

    The whole exchange (connect, headers, body) shares one deadline.  When it
    expires the request task is cancelled and the result is a
    ``Connection Timeout`` failure.
    """
    ua = user_agent or settings.user_agent
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=timeout_s, follow_redirects=True)

    try:
        res, elapsed_ms = await asyncio.wait_for(_get(client, url, ua), timeout=timeout_s)
    except (asyncio.TimeoutError, httpx.TimeoutException):
        logger.info("probe timed out after %.1fs: %s", timeout_s, url)
        return ProbeResult.failure(CONNECTION_TIMEOUT)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.info("probe failed for %s: %r", url, e)
        return ProbeResult.failure(str(e))
    except ValueError as e:
        # Hosts httpx cannot encode (bad IDNA labels) fail while the request is built.
        logger.info("probe could not build request for %s: %r", url, e)
        return ProbeResult.failure(str(e))
    finally:
        if owns_client:
            await client.aclose()

    return ProbeResult.success(
        status_code=res.status_code,
        elapsed_ms=elapsed_ms,
        headers={k: v for k, v in res.headers.items()},
        body=res.text,
    )


async def run_scan(
    raw_url: str,
    *,
    timeout_s: float | None = None,
    client: httpx.AsyncClient | None = None,
) -> ScanMetrics:
    url = normalize_url(raw_url)
    if timeout_s is None:
        timeout_s = settings.probe_timeout_ms / 1000
    result = await probe(url, timeout_s=timeout_s, client=client)
    return result.to_metrics(url)
