"""
lead_ml/services/context.py — Gathers everything a prediction needs about one lead.

gather_lead_context() is the only place that turns ORM rows into the plain
inputs of feature extraction, so predictors and prompt builders never touch
the database.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from lead_ml.db import repository
from lead_ml.db.models import Lead, LeadActivity, NurtureEnrollment
from lead_ml.exceptions import LeadMLError
from lead_ml.features.extraction import extract_features
from lead_ml.features.types import ActivityRecord, EnrollmentInfo, LeadFeatures, LeadProfile
from lead_ml.utils import as_naive_utc, utcnow, whole_days_between

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_COUNT = 30


# ── Context types ─────────────────────────────────────────────────────────────

@dataclass
class LeadInfo:
    id: int
    email: str
    name: Optional[str]
    company: Optional[str]
    phone: Optional[str]
    title: Optional[str]
    score: int
    score_level: str
    pipeline_stage: Optional[str]
    pipeline_value: Optional[float]
    created_at: datetime


@dataclass
class EngagementCounters:
    total_emails_sent: int
    total_emails_opened: int
    total_emails_clicked: int
    total_website_visits: int
    last_engagement_at: Optional[datetime]


@dataclass
class ActivitySummary:
    activity_type: str
    count: int
    last_occurred: Optional[datetime]


@dataclass
class RecentActivity:
    activity_type: str
    created_at: datetime
    data: Optional[dict[str, Any]] = None


@dataclass
class ScoreHistoryEntry:
    score: int
    level: str
    scored_at: datetime
    reason: Optional[str] = None


@dataclass
class SequenceInfo:
    is_enrolled: bool
    sequence_name: Optional[str]
    current_step: Optional[int]
    total_steps: Optional[int]


@dataclass
class LeadContext:
    lead: LeadInfo
    engagement: EngagementCounters
    features: LeadFeatures
    activity_summary: list[ActivitySummary] = field(default_factory=list)
    recent_activities: list[RecentActivity] = field(default_factory=list)
    score_history: list[ScoreHistoryEntry] = field(default_factory=list)
    sequence_info: Optional[SequenceInfo] = None
    generated_at: datetime = field(default_factory=utcnow)


@dataclass
class LeadForRanking:
    """The coarse per-lead view the priority ranker works from."""

    id: int
    email: str
    name: Optional[str]
    company: Optional[str]
    title: Optional[str]
    score: int
    score_level: str
    days_since_last_activity: int
    total_activities: int
    email_open_rate: float


# ── ORM → plain inputs ────────────────────────────────────────────────────────

def profile_from_lead(lead: Lead) -> LeadProfile:
    return LeadProfile(
        email=lead.email,
        created_at=as_naive_utc(lead.created_at),
        name=lead.name,
        company=lead.company,
        title=lead.title,
        phone=lead.phone,
        message=lead.message,
        last_engagement_at=as_naive_utc(lead.last_engagement_at),
        total_emails_sent=lead.total_emails_sent or 0,
        total_emails_opened=lead.total_emails_opened or 0,
        total_emails_clicked=lead.total_emails_clicked or 0,
        total_website_visits=lead.total_website_visits or 0,
        sequence_step_index=lead.sequence_step_index,
    )


def activity_records(activities: Iterable[LeadActivity]) -> list[ActivityRecord]:
    return [ActivityRecord(a.activity_type, as_naive_utc(a.created_at)) for a in activities]


def _total_steps(enrollment: NurtureEnrollment) -> Optional[int]:
    steps = enrollment.sequence.steps if enrollment.sequence else None
    return len(steps) if isinstance(steps, list) else None


def enrollment_info(enrollment: Optional[NurtureEnrollment]) -> Optional[EnrollmentInfo]:
    if enrollment is None:
        return None
    return EnrollmentInfo(is_enrolled=True, total_steps=_total_steps(enrollment))


def summarize_activities(activities: Iterable[LeadActivity]) -> list[ActivitySummary]:
    """Count and latest timestamp per raw activity type, in first-seen order."""
    summary: dict[str, ActivitySummary] = {}
    for activity in activities:
        created_at = as_naive_utc(activity.created_at)
        entry = summary.get(activity.activity_type)
        if entry is None:
            summary[activity.activity_type] = ActivitySummary(activity.activity_type, 1, created_at)
            continue
        entry.count += 1
        if entry.last_occurred is None or created_at > entry.last_occurred:
            entry.last_occurred = created_at
    return list(summary.values())


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return as_naive_utc(value)
    if isinstance(value, str):
        try:
            return as_naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def parse_score_history(raw: Any) -> list[ScoreHistoryEntry]:
    """Tolerant parse of the lead's score_history JSON; malformed entries are skipped."""
    if not isinstance(raw, list):
        return []

    entries = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        scored_at = _parse_timestamp(item.get("scoredAt") or item.get("scored_at"))
        if scored_at is None or item.get("score") is None:
            continue
        entries.append(ScoreHistoryEntry(
            score=int(item["score"]),
            level=str(item.get("level", "")),
            scored_at=scored_at,
            reason=item.get("reason") or None,
        ))
    return entries


def sequence_info(lead: Lead, enrollment: Optional[NurtureEnrollment]) -> Optional[SequenceInfo]:
    if enrollment is None:
        return None
    return SequenceInfo(
        is_enrolled=True,
        sequence_name=enrollment.sequence.name if enrollment.sequence else None,
        current_step=lead.sequence_step_index,
        total_steps=_total_steps(enrollment),
    )


# ── Public API ────────────────────────────────────────────────────────────────

def gather_lead_context(
    db: Session,
    lead_id: int,
    tenant_id: str,
    now: Optional[datetime] = None,
) -> LeadContext:
    """
    Load a lead with its recent activities and active enrollment, scoped to the tenant.

    Raises:
        LeadNotFoundError: the lead does not exist or belongs to another tenant.
    """
    now = as_naive_utc(now) if now else utcnow()

    lead = repository.find_lead(db, lead_id, tenant_id)
    activities = repository.list_recent_activities(db, lead_id)
    enrollment = repository.find_active_enrollment(db, lead_id)

    features = extract_features(
        profile_from_lead(lead),
        activity_records(activities),
        enrollment_info(enrollment),
        now=now,
    )

    return LeadContext(
        lead=LeadInfo(
            id=lead.id,
            email=lead.email,
            name=lead.name,
            company=lead.company,
            phone=lead.phone,
            title=lead.title,
            score=lead.score or 0,
            score_level=lead.score_level.value if lead.score_level else "COLD",
            pipeline_stage=lead.pipeline_stage,
            pipeline_value=float(lead.pipeline_value) if lead.pipeline_value else None,
            created_at=as_naive_utc(lead.created_at),
        ),
        engagement=EngagementCounters(
            total_emails_sent=lead.total_emails_sent or 0,
            total_emails_opened=lead.total_emails_opened or 0,
            total_emails_clicked=lead.total_emails_clicked or 0,
            total_website_visits=lead.total_website_visits or 0,
            last_engagement_at=as_naive_utc(lead.last_engagement_at),
        ),
        features=features,
        activity_summary=summarize_activities(activities),
        recent_activities=[
            RecentActivity(a.activity_type, as_naive_utc(a.created_at), a.activity_data)
            for a in activities[:RECENT_ACTIVITY_COUNT]
        ],
        score_history=parse_score_history(lead.score_history),
        sequence_info=sequence_info(lead, enrollment),
        generated_at=now,
    )


NEVER_ENGAGED_DAYS = 30


def ranking_view(lead: Lead, total_activities: int, now: datetime) -> LeadForRanking:
    last_engagement = as_naive_utc(lead.last_engagement_at)
    days = whole_days_between(last_engagement, now) if last_engagement else NEVER_ENGAGED_DAYS
    sent = lead.total_emails_sent or 0
    return LeadForRanking(
        id=lead.id,
        email=lead.email,
        name=lead.name,
        company=lead.company,
        title=lead.title,
        score=lead.score or 0,
        score_level=lead.score_level.value if lead.score_level else "COLD",
        days_since_last_activity=days,
        total_activities=total_activities,
        email_open_rate=(lead.total_emails_opened or 0) / sent if sent > 0 else 0.0,
    )


def extract_features_batch(
    db: Session,
    lead_ids: Iterable[int],
    tenant_id: str,
    now: Optional[datetime] = None,
) -> dict[int, LeadFeatures]:
    """Features for several leads; leads that fail are logged and left out."""
    features: dict[int, LeadFeatures] = {}
    for lead_id in lead_ids:
        try:
            features[lead_id] = gather_lead_context(db, lead_id, tenant_id, now).features
        except LeadMLError as exc:
            logger.warning("Skipping feature extraction for lead %d: %s", lead_id, exc)
    return features
