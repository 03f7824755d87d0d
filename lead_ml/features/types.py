"""
lead_ml/features/types.py — Typed inputs and outputs of feature extraction.

LeadFeatures is immutable and recomputed on every request; it is never
stored on its own.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional

EmailDomainType = Literal["corporate", "free", "edu", "government", "unknown"]
TitleSeniority = Literal["c_level", "vp", "director", "manager", "individual", "unknown"]
CompanySizeEstimate = Literal["enterprise", "mid_market", "smb", "startup", "unknown"]
TimePattern = Literal["business_hours", "after_hours", "mixed"]
DayPattern = Literal["weekday", "weekend", "mixed"]
Sentiment = Literal["positive", "neutral", "negative"]
Intent = Literal["demo_request", "pricing", "support", "partnership", "inquiry"]
Urgency = Literal["high", "medium", "low"]


# ── Raw inputs ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LeadProfile:
    email: str
    created_at: datetime
    name: Optional[str] = None
    company: Optional[str] = None
    title: Optional[str] = None
    phone: Optional[str] = None
    message: Optional[str] = None
    last_engagement_at: Optional[datetime] = None
    total_emails_sent: int = 0
    total_emails_opened: int = 0
    total_emails_clicked: int = 0
    total_website_visits: int = 0
    sequence_step_index: Optional[int] = None


@dataclass(frozen=True)
class ActivityRecord:
    activity_type: str
    created_at: datetime


@dataclass(frozen=True)
class EnrollmentInfo:
    is_enrolled: bool
    total_steps: Optional[int]


# ── Feature groups ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DemographicFeatures:
    has_company: bool
    has_title: bool
    has_phone: bool
    email_domain_type: EmailDomainType
    title_seniority: TitleSeniority
    company_size_estimate: CompanySizeEstimate
    email_domain: Optional[str]


@dataclass(frozen=True)
class BehavioralFeatures:
    email_open_count: int
    email_click_count: int
    page_view_count: int
    form_submit_count: int
    meeting_count: int
    call_count: int
    activity_velocity: float
    channel_diversity: int
    high_value_action_count: int
    total_activities: int


@dataclass(frozen=True)
class TemporalFeatures:
    days_since_created: int
    days_since_last_activity: int
    recency_score: int
    activity_burst: bool
    day_pattern: DayPattern
    time_pattern: TimePattern
    lead_age_weeks: int


@dataclass(frozen=True)
class EngagementFeatures:
    total_engagement_score: int
    email_open_rate: float
    email_click_rate: float
    sequence_engagement: float
    is_in_active_sequence: bool
    current_sequence_step: Optional[int]
    avg_response_time: Optional[float] = None


@dataclass(frozen=True)
class TextFeatures:
    message_sentiment: Optional[Sentiment] = None
    message_intent: Optional[Intent] = None
    urgency_level: Optional[Urgency] = None
    topic_tags: tuple[str, ...] = field(default_factory=tuple)
    has_message: bool = False
    message_length: int = 0


@dataclass(frozen=True)
class LeadFeatures:
    demographic: DemographicFeatures
    behavioral: BehavioralFeatures
    temporal: TemporalFeatures
    engagement: EngagementFeatures
    text: TextFeatures = field(default_factory=TextFeatures)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
