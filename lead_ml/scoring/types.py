"""
lead_ml/scoring/types.py — Prediction result shapes shared by every predictor.

Rule-based and LLM-backed predictors both return a PredictionResult, so a
caller cannot tell which path produced an answer except through
llm_metadata.model.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Literal, Optional

from lead_ml.db.models import PredictionType

FactorImpact = Literal["high", "medium", "low"]
FactorTrend = Literal["improving", "stable", "declining"]
RecommendationPriority = Literal["urgent", "high", "medium", "low"]
PriorityTier = Literal["top", "high", "medium", "low"]

RULE_BASED_MODEL = "rule-based-fallback"


@dataclass
class RiskFactor:
    factor: str
    impact: FactorImpact
    current_value: str | int | float
    trend: FactorTrend
    description: str


@dataclass
class Recommendation:
    priority: RecommendationPriority
    action: str
    rationale: str
    expected_impact: str
    timeframe: str


@dataclass
class LLMMetadata:
    model: str
    tokens_used: int = 0
    latency_ms: int = 0
    estimated_cost: float = 0.0

    @classmethod
    def rule_based(cls) -> "LLMMetadata":
        return cls(model=RULE_BASED_MODEL)


@dataclass
class ConfidenceInterval:
    low: float
    high: float


@dataclass
class ScoreBreakdown:
    demographic: int
    behavioral: int
    temporal: int
    engagement: int

    @property
    def total(self) -> int:
        return min(100, self.demographic + self.behavioral + self.temporal + self.engagement)


@dataclass
class PredictionResult:
    prediction_type: PredictionType
    probability: float
    confidence: float
    predicted_value: Optional[float]
    predicted_days: Optional[int]
    risk_factors: list[RiskFactor]
    explanation: str
    recommendations: list[Recommendation]
    llm_metadata: LLMMetadata

    # Type-specific extras
    predicted_score_level: Optional[str] = None           # CONVERSION
    confidence_interval: Optional[ConfidenceInterval] = None  # TIME_TO_CLOSE
    predicted_score: Optional[int] = None                 # SCORE
    score_breakdown: Optional[ScoreBreakdown] = None      # SCORE
    priority_score: Optional[int] = None                  # PRIORITY
    priority_tier: Optional[PriorityTier] = None          # PRIORITY

    def details(self) -> dict[str, Any]:
        """Type-specific extras as a JSON-ready dict (only fields that are set)."""
        extras = {
            "predicted_score_level": self.predicted_score_level,
            "confidence_interval": asdict(self.confidence_interval) if self.confidence_interval else None,
            "predicted_score": self.predicted_score,
            "score_breakdown": asdict(self.score_breakdown) if self.score_breakdown else None,
            "priority_score": self.priority_score,
            "priority_tier": self.priority_tier,
        }
        return {key: value for key, value in extras.items() if value is not None}

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["prediction_type"] = self.prediction_type.value
        return data


@dataclass
class FeatureImportance:
    name: str
    importance: float
    category: Literal["demographic", "behavioral", "temporal", "engagement", "text"]


@dataclass
class StoredPrediction:
    """A persisted prediction as returned from the repository."""

    id: int
    lead_id: int
    result: PredictionResult
    status: str
    was_accurate: Optional[bool]
    is_expired: bool
    valid_until: Optional[datetime] = None
    predicted_at: Optional[datetime] = None
