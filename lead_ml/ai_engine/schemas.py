"""
lead_ml/ai_engine/schemas.py — Pydantic models for the JSON the LLM must return.

Field names follow the camelCase keys requested in the prompts. Anything that
fails validation raises LLMResponseError, which sends the caller down the
rule-based path.
"""

from typing import Literal, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError

from lead_ml.exceptions import LLMResponseError

_CAMEL = {"populate_by_name": True, "extra": "ignore"}


class LLMRiskFactor(BaseModel):
    model_config = _CAMEL

    factor: str
    impact: Literal["high", "medium", "low"]
    current_value: str | int | float = Field(default="", alias="currentValue")
    trend: Literal["improving", "stable", "declining"] = "stable"
    description: str = ""


class LLMRecommendation(BaseModel):
    model_config = _CAMEL

    priority: Literal["urgent", "high", "medium", "low"]
    action: str
    rationale: str = ""
    expected_impact: str = Field(default="", alias="expectedImpact")
    timeframe: str = ""


class ConversionResponse(BaseModel):
    model_config = _CAMEL

    conversion_probability: float = Field(alias="conversionProbability")
    confidence: float
    predicted_score_level: Optional[Literal["HOT", "WARM", "COLD", "DEAD"]] = Field(
        default=None, alias="predictedScoreLevel"
    )
    predicted_days_to_close: Optional[float] = Field(default=None, alias="predictedDaysToClose")
    predicted_value: Optional[float] = Field(default=None, alias="predictedValue")
    risk_factors: list[LLMRiskFactor] = Field(default_factory=list, alias="riskFactors")
    explanation: str = ""
    recommendations: list[LLMRecommendation] = Field(default_factory=list)


class LLMInterval(BaseModel):
    low: float
    high: float


class Accelerator(BaseModel):
    model_config = _CAMEL

    factor: str
    potential_impact: str = Field(default="", alias="potentialImpact")
    action: str = ""


class Blocker(BaseModel):
    factor: str
    severity: Literal["high", "medium", "low"] = "medium"
    mitigation: str = ""


class TimeToCloseResponse(BaseModel):
    model_config = _CAMEL

    predicted_days: float = Field(alias="predictedDays")
    confidence_interval: Optional[LLMInterval] = Field(default=None, alias="confidenceInterval")
    confidence: float
    velocity: Optional[Literal["fast", "normal", "slow"]] = None
    accelerators: list[Accelerator] = Field(default_factory=list)
    blockers: list[Blocker] = Field(default_factory=list)
    explanation: str = ""


class RankingEntry(BaseModel):
    model_config = _CAMEL

    lead_id: int = Field(alias="leadId")
    priority_rank: Optional[int] = Field(default=None, alias="priorityRank")
    priority_tier: Optional[str] = Field(default=None, alias="priorityTier")
    priority_score: float = Field(alias="priorityScore")
    conversion_probability: float = Field(alias="conversionProbability")
    reasoning: str = ""


class RankingInsights(BaseModel):
    model_config = _CAMEL

    top_lead_count: Optional[int] = Field(default=None, alias="topLeadCount")
    avg_conversion_probability: Optional[float] = Field(default=None, alias="avgConversionProbability")
    common_patterns: list[str] = Field(default_factory=list, alias="commonPatterns")


class RankingResponse(BaseModel):
    rankings: list[RankingEntry]
    insights: RankingInsights = Field(default_factory=RankingInsights)


M = TypeVar("M", bound=BaseModel)


def validate_response(model: type[M], data: dict) -> M:
    """Validate parsed LLM JSON against a response model."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise LLMResponseError(f"{model.__name__} validation failed: {exc.error_count()} error(s)") from exc
