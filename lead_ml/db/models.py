"""
lead_ml/db/models.py — SQLAlchemy ORM models for lead scoring and ML predictions.

Tables:
  - ScoringConfig       → a tenant's lead-scoring configuration (owns leads)
  - Lead                → a scored lead with profile and engagement counters
  - LeadActivity        → one tracked interaction (email open, page view, ...)
  - NurtureSequence     → an automated multi-step nurture campaign
  - NurtureEnrollment   → a lead's enrollment in a sequence
  - LeadPrediction      → one generated prediction (append-only, audited)
"""

import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, relationship


# ── Base ─────────────────────────────────────────────────────────────────────

class Base(DeclarativeBase):
    pass


# ── Enums ────────────────────────────────────────────────────────────────────

class ScoreLevel(str, enum.Enum):
    HOT = "HOT"
    WARM = "WARM"
    COLD = "COLD"
    DEAD = "DEAD"


class PredictionType(str, enum.Enum):
    CONVERSION = "CONVERSION"
    TIME_TO_CLOSE = "TIME_TO_CLOSE"
    SCORE = "SCORE"
    PRIORITY = "PRIORITY"


class PredictionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    VALIDATED = "VALIDATED"
    INVALIDATED = "INVALIDATED"


class EnrollmentStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    EXITED = "EXITED"


# ── Models ───────────────────────────────────────────────────────────────────

class ScoringConfig(Base):
    __tablename__ = "lead_scoring_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    # Relationships
    leads = relationship("Lead", back_populates="config", cascade="all, delete-orphan")
    sequences = relationship("NurtureSequence", back_populates="config", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<ScoringConfig id={self.id} tenant={self.tenant_id!r}>"


class Lead(Base):
    __tablename__ = "scored_leads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    config_id = Column(Integer, ForeignKey("lead_scoring_configs.id", ondelete="CASCADE"), nullable=False)

    email = Column(String(254), nullable=False)
    name = Column(String(255), nullable=True)
    company = Column(String(255), nullable=True)
    title = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    message = Column(Text, nullable=True)                 # inbound form message, if any

    score = Column(Integer, default=0, nullable=False)     # 0 – 100
    score_level = Column(Enum(ScoreLevel), default=ScoreLevel.COLD, nullable=False)
    score_history = Column(JSON, nullable=True)           # [{score, level, scoredAt, reason}]
    pipeline_stage = Column(String(100), nullable=True)
    pipeline_value = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    total_emails_sent = Column(Integer, default=0, nullable=False)
    total_emails_opened = Column(Integer, default=0, nullable=False)
    total_emails_clicked = Column(Integer, default=0, nullable=False)
    total_website_visits = Column(Integer, default=0, nullable=False)
    last_engagement_at = Column(DateTime, nullable=True)
    sequence_step_index = Column(Integer, nullable=True)

    conversion_probability = Column(Float, nullable=True)  # written by CONVERSION predictions
    predicted_close_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relationships
    config = relationship("ScoringConfig", back_populates="leads")
    activities = relationship("LeadActivity", back_populates="lead", cascade="all, delete-orphan")
    enrollments = relationship("NurtureEnrollment", back_populates="lead", cascade="all, delete-orphan")
    predictions = relationship("LeadPrediction", back_populates="lead", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Lead id={self.id} email={self.email!r} score={self.score}>"


class LeadActivity(Base):
    __tablename__ = "lead_activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lead_id = Column(Integer, ForeignKey("scored_leads.id", ondelete="CASCADE"), nullable=False, index=True)
    activity_type = Column(String(100), nullable=False)   # e.g. "email_open", "page_view"
    activity_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    # Relationships
    lead = relationship("Lead", back_populates="activities")

    def __repr__(self) -> str:
        return f"<LeadActivity id={self.id} lead_id={self.lead_id} type={self.activity_type!r}>"


class NurtureSequence(Base):
    __tablename__ = "nurture_sequences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    config_id = Column(Integer, ForeignKey("lead_scoring_configs.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    steps = Column(JSON, nullable=True)                   # list of step definitions

    # Relationships
    config = relationship("ScoringConfig", back_populates="sequences")
    enrollments = relationship("NurtureEnrollment", back_populates="sequence", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<NurtureSequence id={self.id} name={self.name!r}>"


class NurtureEnrollment(Base):
    __tablename__ = "nurture_enrollments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lead_id = Column(Integer, ForeignKey("scored_leads.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence_id = Column(Integer, ForeignKey("nurture_sequences.id", ondelete="CASCADE"), nullable=False)
    status = Column(Enum(EnrollmentStatus), default=EnrollmentStatus.ACTIVE, nullable=False)
    enrolled_at = Column(DateTime, server_default=func.now(), nullable=False)

    # Relationships
    lead = relationship("Lead", back_populates="enrollments")
    sequence = relationship("NurtureSequence", back_populates="enrollments")

    def __repr__(self) -> str:
        return f"<NurtureEnrollment id={self.id} lead_id={self.lead_id} status={self.status}>"


class LeadPrediction(Base):
    __tablename__ = "lead_ml_predictions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=True, index=True)
    lead_id = Column(Integer, ForeignKey("scored_leads.id", ondelete="CASCADE"), nullable=False, index=True)
    prediction_type = Column(Enum(PredictionType), nullable=False)

    probability = Column(Float, nullable=False)            # 0.0 – 1.0
    confidence = Column(Float, nullable=False)             # 0.0 – 1.0
    predicted_value = Column(Float, nullable=True)         # deal value, currency
    predicted_days = Column(Integer, nullable=True)
    risk_factors = Column(JSON, nullable=True)
    explanation = Column(Text, nullable=True)
    recommendations = Column(JSON, nullable=True)
    details = Column(JSON, nullable=True)                  # type-specific extras

    llm_model = Column(String(100), nullable=True)
    llm_tokens_used = Column(Integer, nullable=True)
    llm_latency_ms = Column(Integer, nullable=True)
    llm_cost = Column(Float, nullable=True)

    status = Column(Enum(PredictionStatus), default=PredictionStatus.ACTIVE, nullable=False)
    was_accurate = Column(Boolean, nullable=True)
    validated_at = Column(DateTime, nullable=True)
    predicted_at = Column(DateTime, server_default=func.now(), nullable=False)
    valid_until = Column(DateTime, nullable=False)

    # Relationships
    lead = relationship("Lead", back_populates="predictions")

    def __repr__(self) -> str:
        return (
            f"<LeadPrediction id={self.id} lead_id={self.lead_id} "
            f"type={self.prediction_type} p={self.probability:.2f}>"
        )
