"""Runtime settings for the health-scan agent.

Values come from environment variables, optionally seeded from a `.env` file
at the repository root.  The Gemini credential is the only secret; leaving it
empty is a supported mode (deterministic analysis only).
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

_HERE = Path(__file__).resolve()
load_dotenv(_HERE.parents[1] / ".env", override=False)


def _api_key_from_env() -> str:
    return (os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY") or "").strip()


def _cors_origins_from_env() -> list[str]:
    raw = os.getenv("HEALTHSCAN_CORS_ORIGINS", "").strip()
    if not raw:
        return ["http://localhost:3000"]
    return [o.strip() for o in raw.split(",") if o.strip()]


@dataclass
class Settings:
    # Remote analysis
    gemini_api_key: str = field(default_factory=_api_key_from_env)
    gemini_model: str = field(
        default_factory=lambda: os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
    )
    enrich_timeout_ms: int = field(
        default_factory=lambda: int(os.environ.get("ENRICH_TIMEOUT_MS", "15000"))
    )
    simulated_delay_ms: int = field(
        default_factory=lambda: int(os.environ.get("SIMULATED_DELAY_MS", "400"))
    )

    # Probe
    probe_timeout_ms: int = field(
        default_factory=lambda: int(os.environ.get("PROBE_TIMEOUT_MS", "4000"))
    )
    user_agent: str = field(
        default_factory=lambda: os.environ.get(
            "HEALTHSCAN_USER_AGENT",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 HealthScanAgent/1.0",
        )
    )

    # HTTP surface
    cors_origins: list[str] = field(default_factory=_cors_origins_from_env)

    @property
    def has_credential(self) -> bool:
        return bool(self.gemini_api_key)


# Process-wide instance used by the HTTP surface.  Library callers should build
# their own Enricher with an explicit key instead of reading this.
settings = Settings()
