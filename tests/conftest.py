"""
tests/conftest.py — Shared pytest configuration and fixtures.

Sets dummy environment variables BEFORE any lead_ml module is imported,
so that pydantic-settings doesn't fail on missing required fields.
LLM use is switched off globally; tests that exercise the LLM path build
their own LLMClient with a mocked factory.
"""

import os
from datetime import datetime, timedelta

import pytest

# ── Set dummy env vars before any lead_ml module is imported ─────────────────
# This runs at collection time, before tests execute.
os.environ.setdefault("OPENROUTER_API_KEY", "test-key")
os.environ.setdefault("OPENROUTER_MODEL", "test-model")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("USE_LLM_PREDICTIONS", "false")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lead_ml.db.models import (
    Base,
    EnrollmentStatus,
    Lead,
    LeadActivity,
    NurtureEnrollment,
    NurtureSequence,
    ScoreLevel,
    ScoringConfig,
)

# Fixed reference time shared by every test (a Tuesday, mid-morning UTC)
NOW = datetime(2026, 3, 10, 10, 0, 0)


# ── In-memory DB Fixture ──────────────────────────────────────────────────────

@pytest.fixture
def engine():
    """One in-memory SQLite database per test, shared across connections."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def db(engine):
    """Provide a fresh session bound to the per-test in-memory database."""
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def now():
    return NOW


# ── Seed helpers ──────────────────────────────────────────────────────────────

class Seeder:
    """Small factory for configs, leads, activities and enrollments."""

    def __init__(self, db):
        self.db = db

    def config(self, tenant_id: str = "acme", name: str = "Default scoring") -> ScoringConfig:
        config = ScoringConfig(tenant_id=tenant_id, name=name, created_at=NOW - timedelta(days=90))
        self.db.add(config)
        self.db.flush()
        return config

    def lead(self, config: ScoringConfig, **overrides) -> Lead:
        values = {
            "email": "jane@acme-industries.com",
            "name": "Jane Doe",
            "company": "Acme Industries",
            "title": "Engineering Manager",
            "score": 50,
            "score_level": ScoreLevel.WARM,
            "total_emails_sent": 10,
            "total_emails_opened": 4,
            "total_emails_clicked": 1,
            "total_website_visits": 2,
            "last_engagement_at": NOW - timedelta(days=2),
            "created_at": NOW - timedelta(days=20),
            "updated_at": NOW - timedelta(days=2),
        }
        values.update(overrides)
        lead = Lead(config_id=config.id, **values)
        self.db.add(lead)
        self.db.flush()
        return lead

    def activities(self, lead: Lead, *entries: tuple[str, datetime]) -> list[LeadActivity]:
        rows = [
            LeadActivity(lead_id=lead.id, activity_type=activity_type, created_at=created_at)
            for activity_type, created_at in entries
        ]
        self.db.add_all(rows)
        self.db.flush()
        return rows

    def enrollment(
        self,
        lead: Lead,
        steps: int = 5,
        status: EnrollmentStatus = EnrollmentStatus.ACTIVE,
        name: str = "Welcome series",
    ) -> NurtureEnrollment:
        sequence = NurtureSequence(
            config_id=lead.config_id,
            name=name,
            steps=[{"step": i} for i in range(steps)],
        )
        self.db.add(sequence)
        self.db.flush()
        enrollment = NurtureEnrollment(
            lead_id=lead.id,
            sequence_id=sequence.id,
            status=status,
            enrolled_at=NOW - timedelta(days=5),
        )
        self.db.add(enrollment)
        self.db.flush()
        return enrollment


@pytest.fixture
def seed(db):
    return Seeder(db)
