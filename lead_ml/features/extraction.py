"""
lead_ml/features/extraction.py — Turns raw lead data into LeadFeatures.

Four feature groups (demographic, behavioral, temporal, engagement) plus a
heuristic text group. Everything here is pure: given the same inputs and the
same `now`, the output is identical. Missing inputs are defaulted, never raised.
"""

import logging
import re
from collections import Counter
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence, TypeVar

from lead_ml.features.types import (
    ActivityRecord,
    BehavioralFeatures,
    CompanySizeEstimate,
    DayPattern,
    DemographicFeatures,
    EmailDomainType,
    EngagementFeatures,
    EnrollmentInfo,
    LeadFeatures,
    LeadProfile,
    TemporalFeatures,
    TextFeatures,
    TimePattern,
    TitleSeniority,
)
from lead_ml.utils import as_naive_utc, round_half_up, utcnow, whole_days_between

logger = logging.getLogger(__name__)

MAX_ACTIVITIES = 100
RECENCY_HALF_LIFE_DAYS = 7
BURST_THRESHOLD = 3


# ── Constants ────────────────────────────────────────────────────────────────

FREE_EMAIL_DOMAINS = frozenset({
    "gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "aol.com",
    "icloud.com", "mail.com", "protonmail.com", "zoho.com", "yandex.com",
    "gmx.com", "live.com",
})

# Checked in this order; first match wins
SENIORITY_PATTERNS: tuple[tuple[TitleSeniority, re.Pattern], ...] = (
    ("c_level", re.compile(r"\b(ceo|cto|cfo|cio|coo|cmo|chief|founder|president)\b", re.IGNORECASE)),
    ("vp", re.compile(r"\b(vp|vice president|svp|evp)\b", re.IGNORECASE)),
    ("director", re.compile(r"\b(director|head of)\b", re.IGNORECASE)),
    ("manager", re.compile(r"\b(manager|lead|supervisor|team lead)\b", re.IGNORECASE)),
)

ENTERPRISE_KEYWORDS = re.compile(
    r"\b(enterprise|corporation|holdings|international|global)\b|\b(inc|corp)\.", re.IGNORECASE
)
SMB_KEYWORDS = re.compile(r"\b(llc|studio|shop|consulting|freelance|solo)\b", re.IGNORECASE)

# (bucket, substring) pairs; an activity increments the first bucket it matches
ACTIVITY_BUCKETS: tuple[tuple[str, str], ...] = (
    ("email_open", "open"),
    ("email_click", "click"),
    ("page_view", "view"),
    ("form_submit", "submit"),
    ("meeting", "meeting"),
    ("call", "call"),
)


# ── Demographic ──────────────────────────────────────────────────────────────

def _email_domain(email: Optional[str]) -> Optional[str]:
    if not email or "@" not in email:
        return None
    domain = email.split("@", 1)[1].strip().lower()
    return domain or None


def classify_email_domain(email: Optional[str]) -> EmailDomainType:
    domain = _email_domain(email)
    if not domain:
        return "unknown"
    if domain in FREE_EMAIL_DOMAINS:
        return "free"
    if domain.endswith(".edu"):
        return "edu"
    if domain.endswith(".gov"):
        return "government"
    return "corporate"


def classify_title_seniority(title: Optional[str]) -> TitleSeniority:
    if not title or not title.strip():
        return "unknown"
    for seniority, pattern in SENIORITY_PATTERNS:
        if pattern.search(title):
            return seniority
    return "individual"


def estimate_company_size(company: Optional[str]) -> CompanySizeEstimate:
    if not company or not company.strip():
        return "unknown"
    if ENTERPRISE_KEYWORDS.search(company):
        return "enterprise"
    if SMB_KEYWORDS.search(company):
        return "smb"
    # Longer names skew toward larger organisations
    if len(company) > 30:
        return "mid_market"
    if len(company) < 10:
        return "startup"
    return "mid_market"


def _present(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def extract_demographic_features(profile: LeadProfile) -> DemographicFeatures:
    return DemographicFeatures(
        has_company=_present(profile.company),
        has_title=_present(profile.title),
        has_phone=_present(profile.phone),
        email_domain_type=classify_email_domain(profile.email),
        title_seniority=classify_title_seniority(profile.title),
        company_size_estimate=estimate_company_size(profile.company),
        email_domain=_email_domain(profile.email),
    )


# ── Behavioral ───────────────────────────────────────────────────────────────

def _bucket_for(activity_type: str) -> Optional[str]:
    for bucket, needle in ACTIVITY_BUCKETS:
        if needle in activity_type:
            return bucket
    return None


def extract_behavioral_features(
    activities: Sequence[ActivityRecord],
    days_since_created: int,
) -> BehavioralFeatures:
    counts: Counter[str] = Counter()
    seen_types: set[str] = set()

    for activity in activities:
        activity_type = (activity.activity_type or "").lower()
        seen_types.add(activity_type)
        bucket = _bucket_for(activity_type)
        if bucket:
            counts[bucket] += 1

    total = len(activities)
    return BehavioralFeatures(
        email_open_count=counts["email_open"],
        email_click_count=counts["email_click"],
        page_view_count=counts["page_view"],
        form_submit_count=counts["form_submit"],
        meeting_count=counts["meeting"],
        call_count=counts["call"],
        activity_velocity=total / max(1, days_since_created),
        channel_diversity=len(seen_types),
        high_value_action_count=counts["form_submit"] + counts["email_click"] + counts["meeting"],
        total_activities=total,
    )


# ── Temporal ─────────────────────────────────────────────────────────────────

def recency_score(days_since_last_activity: float) -> int:
    """Exponential decay with a 7-day half-life: 0 days → 100, 7 days → 50."""
    return round_half_up(100 * 0.5 ** (days_since_last_activity / RECENCY_HALF_LIFE_DAYS))


def detect_activity_burst(activities: Iterable[ActivityRecord]) -> bool:
    """True when any single UTC calendar day holds 3 or more activities."""
    per_day = Counter(as_naive_utc(a.created_at).date() for a in activities)
    return any(count >= BURST_THRESHOLD for count in per_day.values())


T = TypeVar("T", bound=str)


def _ratio_pattern(
    activities: Sequence[ActivityRecord],
    is_primary: Callable[[datetime], bool],
    high: float,
    low: float,
    labels: tuple[T, T, T],
) -> T:
    primary_label, secondary_label, mixed_label = labels
    if not activities:
        return mixed_label
    primary = sum(1 for a in activities if is_primary(as_naive_utc(a.created_at)))
    ratio = primary / len(activities)
    if ratio > high:
        return primary_label
    if ratio < low:
        return secondary_label
    return mixed_label


def detect_time_pattern(activities: Sequence[ActivityRecord]) -> TimePattern:
    return _ratio_pattern(
        activities,
        lambda ts: 9 <= ts.hour <= 17,
        high=0.7,
        low=0.3,
        labels=("business_hours", "after_hours", "mixed"),
    )


def detect_day_pattern(activities: Sequence[ActivityRecord]) -> DayPattern:
    return _ratio_pattern(
        activities,
        lambda ts: ts.weekday() < 5,
        high=0.8,
        low=0.2,
        labels=("weekday", "weekend", "mixed"),
    )


def _last_activity_at(
    profile: LeadProfile,
    activities: Sequence[ActivityRecord],
) -> Optional[datetime]:
    if profile.last_engagement_at:
        return profile.last_engagement_at
    if activities:
        return max(as_naive_utc(a.created_at) for a in activities)
    return None


def extract_temporal_features(
    profile: LeadProfile,
    activities: Sequence[ActivityRecord],
    now: datetime,
) -> TemporalFeatures:
    days_since_created = whole_days_between(profile.created_at, now)
    last_activity_at = _last_activity_at(profile, activities)
    days_since_last_activity = (
        whole_days_between(last_activity_at, now) if last_activity_at else days_since_created
    )

    return TemporalFeatures(
        days_since_created=days_since_created,
        days_since_last_activity=days_since_last_activity,
        recency_score=recency_score(days_since_last_activity),
        activity_burst=detect_activity_burst(activities),
        day_pattern=detect_day_pattern(activities),
        time_pattern=detect_time_pattern(activities),
        lead_age_weeks=days_since_created // 7,
    )


# ── Engagement ───────────────────────────────────────────────────────────────

def extract_engagement_features(
    profile: LeadProfile,
    enrollment: Optional[EnrollmentInfo],
) -> EngagementFeatures:
    sent = profile.total_emails_sent or 0
    opened = profile.total_emails_opened or 0
    clicked = profile.total_emails_clicked or 0

    open_rate = opened / sent if sent > 0 else 0.0
    click_rate = clicked / opened if opened > 0 else 0.0

    sequence_engagement = 0.0
    if (
        enrollment is not None
        and enrollment.is_enrolled
        and enrollment.total_steps
        and profile.sequence_step_index is not None
    ):
        sequence_engagement = min(1.0, (profile.sequence_step_index + 1) / enrollment.total_steps)

    visited = 1 if (profile.total_website_visits or 0) > 0 else 0
    total_score = min(
        100,
        round_half_up(open_rate * 30 + click_rate * 40 + sequence_engagement * 20 + visited * 10),
    )

    return EngagementFeatures(
        total_engagement_score=total_score,
        email_open_rate=open_rate,
        email_click_rate=click_rate,
        sequence_engagement=sequence_engagement,
        is_in_active_sequence=bool(enrollment and enrollment.is_enrolled),
        current_sequence_step=profile.sequence_step_index,
    )


# ── Text ─────────────────────────────────────────────────────────────────────

_POSITIVE = re.compile(r"excited|interested|love|great|amazing|thank", re.IGNORECASE)
_NEGATIVE = re.compile(r"issue|problem|frustrated|disappointed|cancel", re.IGNORECASE)

_INTENTS = (
    ("demo_request", re.compile(r"demo|demonstration|see it in action", re.IGNORECASE)),
    ("pricing", re.compile(r"price|pricing|cost|quote|budget", re.IGNORECASE)),
    ("support", re.compile(r"help|support|issue|problem|bug", re.IGNORECASE)),
    ("partnership", re.compile(r"partner|integrate|collaboration", re.IGNORECASE)),
)

_HIGH_URGENCY = re.compile(r"urgent|asap|immediately|right away|today", re.IGNORECASE)
_MEDIUM_URGENCY = re.compile(r"soon|this week|next week", re.IGNORECASE)


def extract_text_features(message: Optional[str]) -> TextFeatures:
    """Keyword heuristics over an inbound message; all fields None without one."""
    if not message or not message.strip():
        return TextFeatures()

    if _POSITIVE.search(message):
        sentiment = "positive"
    elif _NEGATIVE.search(message):
        sentiment = "negative"
    else:
        sentiment = "neutral"

    intent = next((name for name, pattern in _INTENTS if pattern.search(message)), "inquiry")

    if _HIGH_URGENCY.search(message):
        urgency = "high"
    elif _MEDIUM_URGENCY.search(message):
        urgency = "medium"
    else:
        urgency = "low"

    return TextFeatures(
        message_sentiment=sentiment,
        message_intent=intent,
        urgency_level=urgency,
        has_message=True,
        message_length=len(message.strip()),
    )


# ── Complete extraction ──────────────────────────────────────────────────────

def most_recent(activities: Iterable[ActivityRecord], limit: int = MAX_ACTIVITIES) -> list[ActivityRecord]:
    ordered = sorted(activities, key=lambda a: as_naive_utc(a.created_at), reverse=True)
    return ordered[:limit]


def extract_features(
    profile: LeadProfile,
    activities: Iterable[ActivityRecord],
    enrollment: Optional[EnrollmentInfo] = None,
    now: Optional[datetime] = None,
) -> LeadFeatures:
    """
    Extract every feature group for one lead.

    Args:
        profile:    The lead's profile and engagement counters.
        activities: Activity log; only the most recent 100 are considered.
        enrollment: Active nurture enrollment, if any.
        now:        Reference time (naive UTC). Defaults to the current time.

    Returns:
        An immutable LeadFeatures value.
    """
    now = as_naive_utc(now) if now else utcnow()
    recent = most_recent(activities)

    temporal = extract_temporal_features(profile, recent, now)
    return LeadFeatures(
        demographic=extract_demographic_features(profile),
        behavioral=extract_behavioral_features(recent, temporal.days_since_created),
        temporal=temporal,
        engagement=extract_engagement_features(profile, enrollment),
        text=extract_text_features(profile.message),
    )
