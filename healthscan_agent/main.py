from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi import HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .ai_consultant import Enricher
from .config import settings
from .models import (
    AIAnalysis,
    DiagnoseRequest,
    DiagnoseResponse,
    EnrichRequest,
    ScanMetrics,
    ScanRequest,
)
from .pipeline import EMPTY_URL_MESSAGE
from .scanner import run_scan
from .scoring import fetch_mode, score_tier, status_label

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="HealthScan Python Agent", version="0.1.0")

# For local dev, this defaults to allowing http://localhost:3000.
# In production, set HEALTHSCAN_CORS_ORIGINS to your deployed frontend origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_enricher() -> Enricher:
    return Enricher.from_settings(settings)


def _require_url(url: str) -> str:
    if not url.strip():
        raise HTTPException(status_code=400, detail=EMPTY_URL_MESSAGE)
    return url


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.post("/scan", response_model=ScanMetrics)
async def scan_endpoint(req: ScanRequest):
    return await run_scan(_require_url(req.url))


@app.post("/enrich", response_model=AIAnalysis)
async def enrich_endpoint(req: EnrichRequest):
    return await get_enricher().enrich(req.metrics, req.logs)


@app.post("/diagnose", response_model=DiagnoseResponse)
async def diagnose_endpoint(req: DiagnoseRequest):
    metrics = await run_scan(_require_url(req.url))
    outcome = await get_enricher().run(metrics, req.logs)
    return DiagnoseResponse(
        metrics=metrics,
        analysis=outcome.analysis,
        tier=score_tier(outcome.analysis.health_score),
        status_label=status_label(metrics),
        fetch_mode=fetch_mode(metrics),
        source=outcome.source,
    )
