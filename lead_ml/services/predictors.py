"""
lead_ml/services/predictors.py — Predictor implementations and the fallback combinator.

  RuleBasedPredictor : deterministic, supports every prediction type
  LLMPredictor       : LangChain/OpenRouter backed, CONVERSION and TIME_TO_CLOSE
  FallbackPredictor  : tries a primary predictor, answers with the fallback on
                       any failure; callers only see llm_metadata.model change
"""

import logging
from typing import Optional, Protocol

from lead_ml.ai_engine.client import LLMClient, LLMResult
from lead_ml.ai_engine.prompt_templates import build_conversion_messages, build_time_to_close_messages
from lead_ml.ai_engine.schemas import ConversionResponse, TimeToCloseResponse, validate_response
from lead_ml.config import settings
from lead_ml.db.models import PredictionType
from lead_ml.scoring.rule_based import MAX_DAYS_TO_CLOSE, MIN_DAYS_TO_CLOSE, RuleBasedScorer, score_level
from lead_ml.scoring.types import (
    ConfidenceInterval,
    LLMMetadata,
    PredictionResult,
    Recommendation,
    RiskFactor,
)
from lead_ml.services.context import NEVER_ENGAGED_DAYS, LeadContext, LeadForRanking
from lead_ml.services.ranking import calculate_priority_score, generate_reasoning, priority_tier
from lead_ml.utils import clamp, round_half_up, whole_days_between

logger = logging.getLogger(__name__)


class Predictor(Protocol):
    name: str

    def available(self) -> bool: ...

    def supports(self, prediction_type: PredictionType) -> bool: ...

    def predict(self, context: LeadContext, prediction_type: PredictionType) -> PredictionResult: ...


# ── Rule-based ────────────────────────────────────────────────────────────────

def ranking_view_from_context(context: LeadContext) -> LeadForRanking:
    last = context.engagement.last_engagement_at
    return LeadForRanking(
        id=context.lead.id,
        email=context.lead.email,
        name=context.lead.name,
        company=context.lead.company,
        title=context.lead.title,
        score=context.lead.score,
        score_level=context.lead.score_level,
        days_since_last_activity=(
            whole_days_between(last, context.generated_at) if last else NEVER_ENGAGED_DAYS
        ),
        total_activities=context.features.behavioral.total_activities,
        email_open_rate=context.features.engagement.email_open_rate,
    )


class RuleBasedPredictor:
    name = "rule-based"

    def __init__(self, scorer: Optional[RuleBasedScorer] = None):
        self.scorer = scorer or RuleBasedScorer()

    def available(self) -> bool:
        return True

    def supports(self, prediction_type: PredictionType) -> bool:
        return True

    def predict(self, context: LeadContext, prediction_type: PredictionType) -> PredictionResult:
        features = context.features
        if prediction_type == PredictionType.CONVERSION:
            return self.scorer.predict_conversion(features)
        if prediction_type == PredictionType.TIME_TO_CLOSE:
            return self.scorer.predict_time_to_close(features)
        if prediction_type == PredictionType.SCORE:
            return self.scorer.predict_score(features)

        view = ranking_view_from_context(context)
        score = calculate_priority_score(view)
        return self.scorer.predict_priority(
            features,
            priority_score=score,
            priority_tier=priority_tier(score),
            reasoning=generate_reasoning(view),
        )


# ── LLM-backed ────────────────────────────────────────────────────────────────

def _metadata(result: LLMResult) -> LLMMetadata:
    return LLMMetadata(
        model=result.usage.model,
        tokens_used=result.usage.total_tokens,
        latency_ms=result.latency_ms,
        estimated_cost=result.usage.estimated_cost,
    )


def _days(value: float) -> int:
    return int(clamp(round_half_up(value), MIN_DAYS_TO_CLOSE, MAX_DAYS_TO_CLOSE))


class LLMPredictor:
    name = "llm"
    SUPPORTED = frozenset({PredictionType.CONVERSION, PredictionType.TIME_TO_CLOSE})

    def __init__(self, client: Optional[LLMClient] = None, scorer: Optional[RuleBasedScorer] = None):
        self.client = client or LLMClient()
        self.scorer = scorer or RuleBasedScorer()

    def available(self) -> bool:
        return self.client.available()

    def supports(self, prediction_type: PredictionType) -> bool:
        return prediction_type in self.SUPPORTED

    def predict(self, context: LeadContext, prediction_type: PredictionType) -> PredictionResult:
        if prediction_type == PredictionType.CONVERSION:
            return self._predict_conversion(context)
        if prediction_type == PredictionType.TIME_TO_CLOSE:
            return self._predict_time_to_close(context)
        raise ValueError(f"LLM predictor does not handle {prediction_type.value}")

    def _predict_conversion(self, context: LeadContext) -> PredictionResult:
        result = self.client.complete_json(
            build_conversion_messages(context),
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )
        data = validate_response(ConversionResponse, result.data)
        probability = clamp(data.conversion_probability, 0.0, 1.0)

        return PredictionResult(
            prediction_type=PredictionType.CONVERSION,
            probability=probability,
            confidence=clamp(data.confidence, 0.0, 1.0),
            predicted_value=data.predicted_value,
            predicted_days=(
                _days(data.predicted_days_to_close) if data.predicted_days_to_close is not None else None
            ),
            risk_factors=[
                RiskFactor(f.factor, f.impact, f.current_value, f.trend, f.description)
                for f in data.risk_factors
            ],
            explanation=data.explanation,
            recommendations=[
                Recommendation(r.priority, r.action, r.rationale, r.expected_impact, r.timeframe)
                for r in data.recommendations
            ],
            llm_metadata=_metadata(result),
            predicted_score_level=data.predicted_score_level or score_level(probability).value,
        )

    def _predict_time_to_close(self, context: LeadContext) -> PredictionResult:
        result = self.client.complete_json(
            build_time_to_close_messages(context),
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )
        data = validate_response(TimeToCloseResponse, result.data)

        predicted_days = _days(data.predicted_days)
        confidence = clamp(data.confidence, 0.0, 1.0)
        interval = self.scorer.confidence_interval(predicted_days, confidence)
        llm_interval = data.confidence_interval
        if llm_interval and llm_interval.low < llm_interval.high and (
            llm_interval.low <= predicted_days <= llm_interval.high
        ):
            interval = ConfidenceInterval(
                low=max(float(MIN_DAYS_TO_CLOSE), llm_interval.low),
                high=max(float(MIN_DAYS_TO_CLOSE) + 1, llm_interval.high),
            )

        return PredictionResult(
            prediction_type=PredictionType.TIME_TO_CLOSE,
            probability=self.scorer.conversion_probability(context.features),
            confidence=confidence,
            predicted_value=None,
            predicted_days=predicted_days,
            risk_factors=[
                RiskFactor(b.factor, b.severity, b.mitigation or "Unmitigated", "declining", b.mitigation)
                for b in data.blockers
            ],
            explanation=data.explanation,
            recommendations=[
                Recommendation(
                    priority="medium",
                    action=a.action or a.factor,
                    rationale=a.factor,
                    expected_impact=a.potential_impact,
                    timeframe="This week",
                )
                for a in data.accelerators
            ],
            llm_metadata=_metadata(result),
            confidence_interval=interval,
        )


# ── Combinator ────────────────────────────────────────────────────────────────

class FallbackPredictor:
    """Try `primary`; on unavailability, unsupported type or any error, answer with `fallback`."""

    name = "fallback"

    def __init__(self, primary: Predictor, fallback: Predictor):
        self.primary = primary
        self.fallback = fallback

    def available(self) -> bool:
        return True

    def supports(self, prediction_type: PredictionType) -> bool:
        return self.fallback.supports(prediction_type)

    def predict(self, context: LeadContext, prediction_type: PredictionType) -> PredictionResult:
        if self.primary.available() and self.primary.supports(prediction_type):
            try:
                return self.primary.predict(context, prediction_type)
            except Exception as exc:
                logger.warning(
                    "%s %s prediction failed for lead %d, falling back to %s: %s",
                    self.primary.name, prediction_type.value, context.lead.id, self.fallback.name, exc,
                )
        return self.fallback.predict(context, prediction_type)
