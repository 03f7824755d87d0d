"""
api/schemas.py — Pydantic request/response models for the HTTP API.

These are the API contract, separate from ORM models and from the core's
dataclasses, so we control exactly what is accepted and exposed over HTTP.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from lead_ml.db.models import PredictionStatus
from lead_ml.services.prediction_service import PredictionOptions


# ── Predictions ───────────────────────────────────────────────────────────────

class PredictRequest(BaseModel):
    force_refresh: bool = Field(default=False, description="Ignore a still-valid stored prediction")
    rule_based_only: bool = Field(default=False, description="Skip the LLM entirely")
    include_explanation: bool = Field(default=True)

    def to_options(self) -> PredictionOptions:
        return PredictionOptions(
            force_refresh=self.force_refresh,
            rule_based_only=self.rule_based_only,
            include_explanation=self.include_explanation,
        )


class BulkPredictRequest(BaseModel):
    limit: int = Field(default=50, ge=1, le=100, description="Max leads to process")
    min_score: int = Field(default=0, ge=0, le=100)
    force_refresh: bool = False
    rule_based_only: bool = False

    def to_options(self) -> PredictionOptions:
        return PredictionOptions(force_refresh=self.force_refresh, rule_based_only=self.rule_based_only)


class ValidatePredictionRequest(BaseModel):
    was_accurate: bool = Field(..., description="Did the prediction turn out to be right?")


class PredictionStatusOut(BaseModel):
    id: int
    status: PredictionStatus
    was_accurate: Optional[bool] = None
    validated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ── Reference data ────────────────────────────────────────────────────────────

class FeatureImportanceOut(BaseModel):
    name: str
    importance: float
    category: str

    model_config = {"from_attributes": True}
