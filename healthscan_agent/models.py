from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

PrivacyLevel = Literal["Low concern", "Needs attention", "High concern"]
ScanStatus = Literal["idle", "scanning", "analyzing", "complete", "error"]
ScoreTier = Literal["good", "fair", "poor"]
EnrichmentSource = Literal["simulated", "remote_success", "remote_fallback"]


class _WireModel(BaseModel):
    # Snake_case in Python, camelCase on the wire.
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ScanMetrics(_WireModel):
    url: str
    status_code: int | None = Field(None, alias="statusCode")
    response_time_ms: int | None = Field(None, alias="responseTimeMs")
    headers: dict[str, str] = Field(default_factory=dict)
    html_snippet: str | None = Field(None, alias="htmlSnippet")
    fetch_error: str | None = Field(None, alias="fetchError")

    @model_validator(mode="after")
    def _probe_fields_gated_by_error(self) -> "ScanMetrics":
        if self.fetch_error is not None:
            if self.status_code is not None or self.response_time_ms is not None:
                raise ValueError("statusCode/responseTimeMs must be absent when fetchError is set")
            if self.headers or self.html_snippet is not None:
                raise ValueError("headers/htmlSnippet must be empty when fetchError is set")
        elif self.status_code is None or self.response_time_ms is None:
            raise ValueError("statusCode and responseTimeMs are required unless fetchError is set")
        return self


class Finding(_WireModel):
    summary: str
    details: list[str]


class PrivacyFinding(Finding):
    level: PrivacyLevel


class AIAnalysis(_WireModel):
    health_score: int = Field(..., alias="healthScore", ge=0, le=100)
    seo: Finding
    accessibility: Finding
    privacy: PrivacyFinding
    js_errors: Finding | None = Field(None, alias="jsErrors")
    recommendations: list[str]


class ScanRequest(BaseModel):
    url: str


class EnrichRequest(BaseModel):
    metrics: ScanMetrics
    logs: str = ""


class DiagnoseRequest(BaseModel):
    url: str
    logs: str = ""


class DiagnoseResponse(_WireModel):
    metrics: ScanMetrics
    analysis: AIAnalysis
    tier: ScoreTier
    status_label: str = Field(..., alias="statusLabel")
    fetch_mode: Literal["Direct", "Restricted"] = Field(..., alias="fetchMode")
    source: EnrichmentSource
