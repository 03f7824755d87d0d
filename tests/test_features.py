"""
tests/test_features.py — Unit tests for feature extraction.

Everything here is pure: a fixed `now` and literal inputs, no database.
"""

from datetime import datetime, timedelta, timezone

import pytest

from lead_ml.features.extraction import (
    classify_email_domain,
    classify_title_seniority,
    detect_activity_burst,
    detect_day_pattern,
    detect_time_pattern,
    estimate_company_size,
    extract_behavioral_features,
    extract_engagement_features,
    extract_features,
    extract_temporal_features,
    extract_text_features,
    recency_score,
)
from lead_ml.features.types import ActivityRecord, EnrollmentInfo, LeadProfile

NOW = datetime(2026, 3, 10, 10, 0, 0)  # Tuesday


def _activity(activity_type: str, days_ago: float = 0, hour: int = 10) -> ActivityRecord:
    ts = (NOW - timedelta(days=days_ago)).replace(hour=hour, minute=0)
    return ActivityRecord(activity_type, ts)


def _profile(**overrides) -> LeadProfile:
    values = {"email": "jane@acme.com", "created_at": NOW - timedelta(days=10)}
    values.update(overrides)
    return LeadProfile(**values)


# ── Demographic ───────────────────────────────────────────────────────────────

class TestEmailDomain:
    @pytest.mark.parametrize("email,expected", [
        ("jane@gmail.com", "free"),
        ("JANE@GMAIL.COM", "free"),
        ("prof@mit.edu", "edu"),
        ("agent@irs.gov", "government"),
        ("jane@acme.com", "corporate"),
        ("not-an-email", "unknown"),
        ("", "unknown"),
        (None, "unknown"),
    ])
    def test_classification(self, email, expected):
        assert classify_email_domain(email) == expected


class TestTitleSeniority:
    @pytest.mark.parametrize("title,expected", [
        ("CEO", "c_level"),
        ("Chief Revenue Officer", "c_level"),
        ("Co-Founder", "c_level"),
        ("VP of Sales", "vp"),
        ("Director of Engineering", "director"),
        ("Head of Growth", "director"),
        ("Engineering Manager", "manager"),
        ("Team Lead", "manager"),
        ("Software Engineer", "individual"),
        ("   ", "unknown"),
        (None, "unknown"),
    ])
    def test_classification(self, title, expected):
        assert classify_title_seniority(title) == expected

    def test_first_matching_pattern_wins(self):
        # "founder" (c_level) is checked before "head of" (director)
        assert classify_title_seniority("Founder & Head of Product") == "c_level"


class TestCompanySize:
    @pytest.mark.parametrize("company,expected", [
        ("Globex Corporation", "enterprise"),
        ("Initech Inc.", "enterprise"),
        ("Umbrella Global", "enterprise"),
        ("Pixel Studio", "smb"),
        ("Smith Consulting LLC", "smb"),
        ("Tiny", "startup"),
        ("Acme Industries", "mid_market"),
        ("Northwind Traders and Logistics Partners", "mid_market"),
        ("", "unknown"),
        (None, "unknown"),
    ])
    def test_estimate(self, company, expected):
        assert estimate_company_size(company) == expected


# ── Behavioral ────────────────────────────────────────────────────────────────

class TestBehavioralFeatures:
    def test_buckets_by_substring(self):
        activities = [
            _activity("email_open"),
            _activity("email_open"),
            _activity("email_click"),
            _activity("page_view"),
            _activity("form_submit"),
            _activity("meeting_scheduled"),
            _activity("phone_call"),
        ]
        b = extract_behavioral_features(activities, days_since_created=7)

        assert b.email_open_count == 2
        assert b.email_click_count == 1
        assert b.page_view_count == 1
        assert b.form_submit_count == 1
        assert b.meeting_count == 1
        assert b.call_count == 1
        assert b.high_value_action_count == 3
        assert b.total_activities == 7
        assert b.channel_diversity == 6
        assert b.activity_velocity == pytest.approx(1.0)

    def test_unknown_types_count_toward_totals_only(self):
        b = extract_behavioral_features([_activity("webinar_registration")], days_since_created=2)
        assert b.total_activities == 1
        assert b.channel_diversity == 1
        assert b.high_value_action_count == 0
        assert b.email_open_count == 0

    def test_velocity_uses_at_least_one_day(self):
        b = extract_behavioral_features([_activity("page_view")] * 3, days_since_created=0)
        assert b.activity_velocity == pytest.approx(3.0)

    def test_empty(self):
        b = extract_behavioral_features([], days_since_created=10)
        assert b.total_activities == 0
        assert b.activity_velocity == 0.0
        assert b.channel_diversity == 0


# ── Temporal ──────────────────────────────────────────────────────────────────

class TestRecencyScore:
    @pytest.mark.parametrize("days,expected", [(0, 100), (7, 50), (14, 25), (10, 37)])
    def test_half_life(self, days, expected):
        assert recency_score(days) == expected

    def test_never_negative(self):
        assert recency_score(365) >= 0


class TestPatterns:
    def test_burst_needs_three_on_one_day(self):
        same_day = [_activity("page_view", 1, hour=h) for h in (9, 11, 15)]
        assert detect_activity_burst(same_day) is True
        spread = [_activity("page_view", d) for d in (1, 1, 2)]
        assert detect_activity_burst(spread) is False

    def test_time_pattern(self):
        assert detect_time_pattern([_activity("x", d, hour=10) for d in range(5)]) == "business_hours"
        assert detect_time_pattern([_activity("x", d, hour=22) for d in range(5)]) == "after_hours"
        mixed = [_activity("x", 1, hour=10), _activity("x", 2, hour=22)]
        assert detect_time_pattern(mixed) == "mixed"
        assert detect_time_pattern([]) == "mixed"

    def test_day_pattern(self):
        weekdays = [_activity("x", d) for d in (0, 1, 6, 7, 8)]  # Mon 2nd to Tue 10th, no weekend
        assert detect_day_pattern(weekdays) == "weekday"
        weekend = [_activity("x", 2), _activity("x", 3)]  # Sun 8th, Sat 7th
        assert detect_day_pattern(weekend) == "weekend"
        assert detect_day_pattern([]) == "mixed"


class TestTemporalFeatures:
    def test_last_engagement_takes_precedence_over_activities(self):
        profile = _profile(last_engagement_at=NOW - timedelta(days=3))
        t = extract_temporal_features(profile, [_activity("page_view", 1)], NOW)
        assert t.days_since_last_activity == 3

    def test_falls_back_to_latest_activity(self):
        t = extract_temporal_features(_profile(), [_activity("page_view", 4), _activity("page_view", 2)], NOW)
        assert t.days_since_last_activity == 2

    def test_no_activity_uses_lead_age(self):
        t = extract_temporal_features(_profile(created_at=NOW - timedelta(days=15)), [], NOW)
        assert t.days_since_created == 15
        assert t.days_since_last_activity == 15
        assert t.lead_age_weeks == 2

    def test_partial_days_are_floored(self):
        t = extract_temporal_features(_profile(created_at=NOW - timedelta(days=6, hours=23)), [], NOW)
        assert t.days_since_created == 6


# ── Engagement ────────────────────────────────────────────────────────────────

class TestEngagementFeatures:
    def test_rates_and_total_score(self):
        profile = _profile(
            total_emails_sent=10,
            total_emails_opened=4,
            total_emails_clicked=1,
            total_website_visits=2,
            sequence_step_index=1,
        )
        e = extract_engagement_features(profile, EnrollmentInfo(is_enrolled=True, total_steps=5))

        assert e.email_open_rate == pytest.approx(0.4)
        assert e.email_click_rate == pytest.approx(0.25)
        assert e.sequence_engagement == pytest.approx(0.4)
        assert e.is_in_active_sequence is True
        assert e.current_sequence_step == 1
        # 0.4*30 + 0.25*40 + 0.4*20 + 10
        assert e.total_engagement_score == 40

    def test_zero_denominators(self):
        e = extract_engagement_features(_profile(total_emails_clicked=3), None)
        assert e.email_open_rate == 0.0
        assert e.email_click_rate == 0.0
        assert e.total_engagement_score == 0
        assert e.is_in_active_sequence is False

    def test_sequence_engagement_capped_at_one(self):
        profile = _profile(sequence_step_index=9)
        e = extract_engagement_features(profile, EnrollmentInfo(is_enrolled=True, total_steps=5))
        assert e.sequence_engagement == 1.0

    def test_score_never_exceeds_100(self):
        profile = _profile(
            total_emails_sent=1,
            total_emails_opened=5,
            total_emails_clicked=10,
            total_website_visits=1,
            sequence_step_index=4,
        )
        e = extract_engagement_features(profile, EnrollmentInfo(is_enrolled=True, total_steps=5))
        assert e.total_engagement_score == 100


# ── Text ──────────────────────────────────────────────────────────────────────

class TestTextFeatures:
    def test_no_message(self):
        t = extract_text_features(None)
        assert t.has_message is False
        assert t.message_sentiment is None
        assert t.message_intent is None
        assert t.urgency_level is None

    def test_positive_demo_request(self):
        t = extract_text_features("We're excited and would like a demo ASAP")
        assert t.message_sentiment == "positive"
        assert t.message_intent == "demo_request"
        assert t.urgency_level == "high"
        assert t.has_message is True

    def test_negative_support(self):
        t = extract_text_features("Having a problem with the export")
        assert t.message_sentiment == "negative"
        assert t.message_intent == "support"
        assert t.urgency_level == "low"

    def test_neutral_pricing(self):
        t = extract_text_features("Can you send a quote next week?")
        assert t.message_sentiment == "neutral"
        assert t.message_intent == "pricing"
        assert t.urgency_level == "medium"


# ── Complete extraction ───────────────────────────────────────────────────────

class TestExtractFeatures:
    def test_bare_profile_gets_defaults(self):
        features = extract_features(_profile(email="someone@gmail.com"), [], None, now=NOW)

        assert features.demographic.has_company is False
        assert features.demographic.email_domain_type == "free"
        assert features.demographic.email_domain == "gmail.com"
        assert features.behavioral.total_activities == 0
        assert features.temporal.days_since_last_activity == 10
        assert features.engagement.total_engagement_score == 0
        assert features.text.has_message is False

    def test_only_most_recent_hundred_activities(self):
        activities = [_activity("page_view", days_ago=i / 10) for i in range(150)]
        features = extract_features(_profile(), activities, None, now=NOW)
        assert features.behavioral.total_activities == 100

    def test_deterministic_for_fixed_now(self):
        activities = [_activity("email_open", 1), _activity("form_submit", 2)]
        first = extract_features(_profile(title="CTO"), activities, None, now=NOW)
        second = extract_features(_profile(title="CTO"), list(reversed(activities)), None, now=NOW)
        assert first == second

    def test_aware_datetimes_are_normalized(self):
        aware_now = NOW.replace(tzinfo=timezone.utc)
        naive = extract_features(_profile(), [_activity("page_view", 1)], None, now=NOW)
        aware = extract_features(_profile(), [_activity("page_view", 1)], None, now=aware_now)
        assert naive == aware

    def test_to_dict_groups(self):
        data = extract_features(_profile(), [], None, now=NOW).to_dict()
        assert set(data) == {"demographic", "behavioral", "temporal", "engagement", "text"}
