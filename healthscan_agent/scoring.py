"""Deterministic health scoring.

This is both the primary analysis when no Gemini key is configured and the
fallback whenever the remote call fails.  It must stay total: any
:class:`ScanMetrics` plus any log string yields a complete report.
"""
from __future__ import annotations

from .models import AIAnalysis, Finding, PrivacyFinding, ScanMetrics, ScoreTier

INSECURE_SCHEME_PENALTY = 20
HTTP_ERROR_PENALTY = 40
BLOCKED_PENALTY = 15
CONSOLE_ERRORS_PENALTY = 15
MISSING_HTML_PENALTY = 10

LOW_CONCERN_THRESHOLD = 80


def _clamp_score(score: int) -> int:
    return max(0, min(100, int(score)))


def is_secure(url: str) -> bool:
    """True for https URLs, ignoring case.

    Unlike a plain ``startswith("https")`` check, ``HTTPS://example.com`` counts
    as secure, since the normalizer keeps the scheme casing the user typed.
    """
    return url.lower().startswith("https")


def score_deductions(metrics: ScanMetrics, logs: str) -> list[tuple[str, int]]:
    """List the (reason, points) deductions that apply, in table order."""
    out: list[tuple[str, int]] = []
    if not is_secure(metrics.url):
        out.append(("insecure_scheme", INSECURE_SCHEME_PENALTY))
    if metrics.status_code is None:
        out.append(("blocked", BLOCKED_PENALTY))
    elif metrics.status_code >= 400:
        out.append(("http_error", HTTP_ERROR_PENALTY))
    if logs:
        out.append(("console_errors", CONSOLE_ERRORS_PENALTY))
    if not metrics.html_snippet:
        out.append(("missing_html", MISSING_HTML_PENALTY))
    return out


def compute_health_score(metrics: ScanMetrics, logs: str = "") -> int:
    return _clamp_score(100 - sum(points for _, points in score_deductions(metrics, logs)))


def simulate_analysis(metrics: ScanMetrics, logs: str = "") -> AIAnalysis:
    """Build the templated report for ``metrics``.

    Narrative branches only on HTML presence, the secure-scheme flag, log
    presence and the score tier, so equal inputs give equal reports.
    """
    score = compute_health_score(metrics, logs)
    snippet = metrics.html_snippet or ""
    has_html = bool(snippet)
    has_logs = bool(logs)
    secure = is_secure(metrics.url)

    seo = Finding(
        summary=(
            "The basic setup for Google Search looks correct."
            if has_html
            else "We couldn't read the page details because the site is blocking automated scans. "
            "This usually means security is active."
        ),
        details=[
            "Page title is visible to search engines" if "<title>" in snippet else "Page title check skipped",
            "Summary description found for search results" if "description" in snippet else "Search summary check skipped",
            "Connection is secure (HTTPS)" if secure else "Connection is insecure (HTTP)",
            "Search engines understand this is the main page",
        ],
    )

    accessibility = Finding(
        summary=(
            "The code allows screen readers to read the page."
            if has_html
            else "Visual accessibility check skipped due to security blocks."
        ),
        details=[
            "Browser knows which language to display",
            "Page structure is readable by machines",
            "Images have descriptions for the blind",
        ],
    )

    privacy = PrivacyFinding(
        summary="Privacy basics appear to be in place.",
        details=[
            "Privacy policy is mentioned on the page",
            "No invasive tracking codes found",
            "Cookie popup not immediately visible",
        ],
        level="Low concern" if score > LOW_CONCERN_THRESHOLD else "Needs attention",
    )

    if has_logs:
        js_errors = Finding(
            summary="Some background scripts are failing.",
            details=["A feature might be broken", "A file failed to load"],
        )
    else:
        js_errors = Finding(
            summary="No background errors detected.",
            details=["Website code is running smoothly"],
        )

    recommendations = [
        "Double-check that your SSL security certificate renews automatically."
        if secure
        else "Switch to HTTPS to protect user passwords and improve Google ranking.",
        "Your site is secure against bots, which is good! Use a server-tool for deeper analysis."
        if metrics.fetch_error
        else "Add 'Schema' info so Google can show stars or prices in search results.",
        "Ensure your cookie banner is easy to read on mobile phones.",
    ]

    return AIAnalysis(
        health_score=score,
        seo=seo,
        accessibility=accessibility,
        privacy=privacy,
        js_errors=js_errors,
        recommendations=recommendations,
    )


def score_tier(score: int) -> ScoreTier:
    if score < 50:
        return "poor"
    if score < 80:
        return "fair"
    return "good"


def status_label(metrics: ScanMetrics) -> str:
    if metrics.status_code == 200:
        return "OK"
    if metrics.fetch_error:
        return "Fetch Failed"
    return "Unknown"


def fetch_mode(metrics: ScanMetrics) -> str:
    return "Restricted" if metrics.fetch_error else "Direct"
