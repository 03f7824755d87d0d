"""
lead_ml/db/repository.py — All database read/write operations.

Business logic never writes ORM queries directly; everything goes through
this module. Tenant isolation is enforced here: a lead belongs to a tenant
through its ScoringConfig.
"""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from lead_ml.db.models import (
    EnrollmentStatus,
    Lead,
    LeadActivity,
    LeadPrediction,
    NurtureEnrollment,
    PredictionStatus,
    PredictionType,
    ScoringConfig,
)
from lead_ml.exceptions import LeadNotFoundError, PredictionNotFoundError
from lead_ml.scoring.types import (
    ConfidenceInterval,
    LLMMetadata,
    PredictionResult,
    Recommendation,
    RiskFactor,
    ScoreBreakdown,
    StoredPrediction,
)

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_LIMIT = 100


# ── Leads ─────────────────────────────────────────────────────────────────────

def find_lead(db: Session, lead_id: int, tenant_id: str) -> Lead:
    """
    Return the lead if it exists and belongs to the tenant.

    Raises:
        LeadNotFoundError: missing lead, or lead owned by another tenant.
    """
    lead = (
        db.query(Lead)
        .join(ScoringConfig, Lead.config_id == ScoringConfig.id)
        .filter(Lead.id == lead_id, ScoringConfig.tenant_id == tenant_id)
        .first()
    )
    if lead is None:
        raise LeadNotFoundError(lead_id, tenant_id)
    return lead


def list_recent_activities(
    db: Session, lead_id: int, limit: int = DEFAULT_ACTIVITY_LIMIT
) -> list[LeadActivity]:
    """Most recent activities first."""
    return (
        db.query(LeadActivity)
        .filter(LeadActivity.lead_id == lead_id)
        .order_by(LeadActivity.created_at.desc(), LeadActivity.id.desc())
        .limit(limit)
        .all()
    )


def find_active_enrollment(db: Session, lead_id: int) -> Optional[NurtureEnrollment]:
    return (
        db.query(NurtureEnrollment)
        .filter(
            NurtureEnrollment.lead_id == lead_id,
            NurtureEnrollment.status == EnrollmentStatus.ACTIVE,
        )
        .order_by(NurtureEnrollment.enrolled_at.desc())
        .first()
    )


def update_lead_conversion_fields(
    db: Session,
    lead_id: int,
    probability: float,
    predicted_close_date: Optional[datetime],
) -> None:
    db.query(Lead).filter(Lead.id == lead_id).update(
        {
            "conversion_probability": probability,
            "predicted_close_date": predicted_close_date,
        },
        synchronize_session="fetch",
    )
    logger.debug("Lead %d conversion fields updated (p=%.3f)", lead_id, probability)


def _active_leads_query(db: Session, config_id: int, tenant_id: str, min_score: int):
    return (
        db.query(Lead)
        .join(ScoringConfig, Lead.config_id == ScoringConfig.id)
        .filter(
            Lead.config_id == config_id,
            ScoringConfig.tenant_id == tenant_id,
            Lead.is_active == True,  # noqa: E712
            Lead.score >= min_score,
        )
    )


def list_active_leads_for_config(
    db: Session,
    config_id: int,
    tenant_id: str,
    min_score: int = 0,
    limit: int = 50,
) -> list[Lead]:
    """Top-scored active leads for a config (score desc, then id asc)."""
    return (
        _active_leads_query(db, config_id, tenant_id, min_score)
        .order_by(Lead.score.desc(), Lead.id.asc())
        .limit(limit)
        .all()
    )


def list_leads_for_ranking(
    db: Session,
    config_id: int,
    tenant_id: str,
    min_score: int = 0,
    limit: int = 50,
) -> list[tuple[Lead, int]]:
    """Same selection as list_active_leads_for_config, paired with each lead's total activity count."""
    activity_counts = (
        db.query(LeadActivity.lead_id, func.count(LeadActivity.id).label("total"))
        .group_by(LeadActivity.lead_id)
        .subquery()
    )
    rows = (
        _active_leads_query(db, config_id, tenant_id, min_score)
        .outerjoin(activity_counts, activity_counts.c.lead_id == Lead.id)
        .add_columns(func.coalesce(activity_counts.c.total, 0))
        .order_by(Lead.score.desc(), Lead.id.asc())
        .limit(limit)
        .all()
    )
    return [(lead, int(total)) for lead, total in rows]


# ── Predictions ───────────────────────────────────────────────────────────────

def create_prediction(
    db: Session,
    lead_id: int,
    tenant_id: Optional[str],
    result: PredictionResult,
    predicted_at: datetime,
    valid_until: datetime,
) -> LeadPrediction:
    """Append a prediction row. Rows are never updated except by validation."""
    row = LeadPrediction(
        tenant_id=tenant_id,
        lead_id=lead_id,
        prediction_type=result.prediction_type,
        probability=result.probability,
        confidence=result.confidence,
        predicted_value=result.predicted_value,
        predicted_days=result.predicted_days,
        risk_factors=[asdict(f) for f in result.risk_factors],
        explanation=result.explanation,
        recommendations=[asdict(r) for r in result.recommendations],
        details=result.details() or None,
        llm_model=result.llm_metadata.model,
        llm_tokens_used=result.llm_metadata.tokens_used,
        llm_latency_ms=result.llm_metadata.latency_ms,
        llm_cost=result.llm_metadata.estimated_cost,
        status=PredictionStatus.ACTIVE,
        predicted_at=predicted_at,
        valid_until=valid_until,
    )
    db.add(row)
    db.flush()  # get the ID without committing
    logger.debug("Stored %s prediction %d for lead %d", result.prediction_type.value, row.id, lead_id)
    return row


def find_latest_prediction(
    db: Session,
    lead_id: int,
    tenant_id: str,
    prediction_type: PredictionType,
) -> Optional[LeadPrediction]:
    """Newest ACTIVE prediction of the given type (ties on predicted_at go to the higher id)."""
    return (
        db.query(LeadPrediction)
        .filter(
            LeadPrediction.lead_id == lead_id,
            LeadPrediction.tenant_id == tenant_id,
            LeadPrediction.prediction_type == prediction_type,
            LeadPrediction.status == PredictionStatus.ACTIVE,
        )
        .order_by(LeadPrediction.predicted_at.desc(), LeadPrediction.id.desc())
        .first()
    )


def get_prediction(db: Session, prediction_id: int, tenant_id: Optional[str] = None) -> LeadPrediction:
    query = db.query(LeadPrediction).filter(LeadPrediction.id == prediction_id)
    if tenant_id is not None:
        query = query.filter(LeadPrediction.tenant_id == tenant_id)
    row = query.first()
    if row is None:
        raise PredictionNotFoundError(prediction_id)
    return row


def update_prediction_status(
    db: Session,
    prediction_id: int,
    status: PredictionStatus,
    was_accurate: bool,
    validated_at: datetime,
    tenant_id: Optional[str] = None,
) -> LeadPrediction:
    """Last write wins; repeated validation simply overwrites."""
    row = get_prediction(db, prediction_id, tenant_id)
    row.status = status
    row.was_accurate = was_accurate
    row.validated_at = validated_at
    db.flush()
    return row


def list_predictions_for_config(
    db: Session,
    config_id: int,
    tenant_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[LeadPrediction]:
    """All predictions for leads under the config; the date range on predicted_at is inclusive."""
    query = (
        db.query(LeadPrediction)
        .join(Lead, LeadPrediction.lead_id == Lead.id)
        .join(ScoringConfig, Lead.config_id == ScoringConfig.id)
        .filter(Lead.config_id == config_id, ScoringConfig.tenant_id == tenant_id)
    )
    if start is not None:
        query = query.filter(LeadPrediction.predicted_at >= start)
    if end is not None:
        query = query.filter(LeadPrediction.predicted_at <= end)
    return query.order_by(LeadPrediction.predicted_at.asc(), LeadPrediction.id.asc()).all()


# ── Row → domain mapping ──────────────────────────────────────────────────────

def _build_list(cls, items: Optional[list[Any]]) -> list:
    fields = set(cls.__dataclass_fields__)
    return [
        cls(**{k: v for k, v in item.items() if k in fields})
        for item in (items or [])
        if isinstance(item, dict)
    ]


def result_from_row(row: LeadPrediction) -> PredictionResult:
    """Rebuild the full result shape, type-specific extras included, from a stored row."""
    details = row.details or {}
    interval = details.get("confidence_interval")
    breakdown = details.get("score_breakdown")

    return PredictionResult(
        prediction_type=row.prediction_type,
        probability=row.probability,
        confidence=row.confidence,
        predicted_value=float(row.predicted_value) if row.predicted_value is not None else None,
        predicted_days=row.predicted_days,
        risk_factors=_build_list(RiskFactor, row.risk_factors),
        explanation=row.explanation or "",
        recommendations=_build_list(Recommendation, row.recommendations),
        llm_metadata=LLMMetadata(
            model=row.llm_model or "unknown",
            tokens_used=row.llm_tokens_used or 0,
            latency_ms=row.llm_latency_ms or 0,
            estimated_cost=float(row.llm_cost) if row.llm_cost else 0.0,
        ),
        predicted_score_level=details.get("predicted_score_level"),
        confidence_interval=ConfidenceInterval(**interval) if interval else None,
        predicted_score=details.get("predicted_score"),
        score_breakdown=ScoreBreakdown(**breakdown) if breakdown else None,
        priority_score=details.get("priority_score"),
        priority_tier=details.get("priority_tier"),
    )


def to_stored_prediction(row: LeadPrediction, now: datetime) -> StoredPrediction:
    return StoredPrediction(
        id=row.id,
        lead_id=row.lead_id,
        result=result_from_row(row),
        status=row.status.value,
        was_accurate=row.was_accurate,
        is_expired=row.valid_until <= now,
        valid_until=row.valid_until,
        predicted_at=row.predicted_at,
    )
