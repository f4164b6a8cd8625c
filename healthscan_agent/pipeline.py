from __future__ import annotations

import logging

from .ai_consultant import Enricher, EnrichmentOutcome
from .models import AIAnalysis, ScanMetrics, ScanStatus
from .scanner import run_scan

logger = logging.getLogger(__name__)

EMPTY_URL_MESSAGE = "Please enter a valid URL."
ANALYSIS_FAILED_MESSAGE = "AI Analysis failed. Please try again."


class ScanSession:
    """Holds the state of one user's diagnosis: scan, then analysis.

    A new ``run`` replaces the previous results; ``reset`` clears everything.
    Starting a second run while one is in flight is left to the caller.
    """

    def __init__(self, enricher: Enricher, *, probe_timeout_s: float | None = None) -> None:
        self.enricher = enricher
        self.probe_timeout_s = probe_timeout_s
        self.reset()

    def reset(self) -> None:
        self.url = ""
        self.logs = ""
        self.status: ScanStatus = "idle"
        self.metrics: ScanMetrics | None = None
        self.analysis: AIAnalysis | None = None
        self.outcome: EnrichmentOutcome | None = None
        self.error_message: str | None = None

    @property
    def busy(self) -> bool:
        return self.status in ("scanning", "analyzing")

    async def run(self, url: str, logs: str = "") -> AIAnalysis | None:
        if not url or not url.strip():
            self.error_message = EMPTY_URL_MESSAGE
            return None

        self.url = url
        self.logs = logs
        self.status = "scanning"
        self.error_message = None
        self.metrics = None
        self.analysis = None
        self.outcome = None

        self.metrics = await run_scan(url, timeout_s=self.probe_timeout_s)

        self.status = "analyzing"
        try:
            self.outcome = await self.enricher.run(self.metrics, logs)
        except Exception:
            # The enricher already falls back on every remote failure, so this
            # is a bug in the deterministic path.
            logger.exception("analysis failed for %s", self.metrics.url)
            self.status = "error"
            self.error_message = ANALYSIS_FAILED_MESSAGE
            return None

        self.analysis = self.outcome.analysis
        self.status = "complete"
        return self.analysis
