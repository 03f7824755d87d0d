"""
lead_ml/scoring/weights.py — Hand-authored weight tables for the rule-based scorer.

The tables are frozen dataclasses passed into RuleBasedScorer, so tests and
experiments can substitute an alternative set with dataclasses.replace().
They are fixed constants, not learned parameters.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from lead_ml.scoring.types import FeatureImportance


def _frozen(mapping: dict[str, float]) -> Mapping[str, float]:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class DemographicWeights:
    has_company: float = 0.08
    has_title: float = 0.08
    has_phone: float = 0.04
    email_domain_type: Mapping[str, float] = field(default_factory=lambda: _frozen({
        "corporate": 0.10,
        "free": -0.05,
        "edu": 0.05,
        "government": 0.08,
        "unknown": 0.0,
    }))
    title_seniority: Mapping[str, float] = field(default_factory=lambda: _frozen({
        "c_level": 0.15,
        "vp": 0.12,
        "director": 0.10,
        "manager": 0.05,
        "individual": 0.0,
        "unknown": 0.0,
    }))
    company_size_estimate: Mapping[str, float] = field(default_factory=lambda: _frozen({
        "enterprise": 0.08,
        "mid_market": 0.05,
        "smb": 0.02,
        "startup": 0.03,
        "unknown": 0.0,
    }))


@dataclass(frozen=True)
class BehavioralWeights:
    email_open: float = 0.02
    email_click: float = 0.05
    page_view: float = 0.01
    form_submit: float = 0.08
    meeting: float = 0.10
    call: float = 0.06
    contribution_cap: float = 0.25
    velocity_threshold: float = 0.5
    velocity_bonus: float = 0.10
    diversity_threshold: int = 3
    diversity_bonus: float = 0.08


@dataclass(frozen=True)
class TemporalWeights:
    recency_max_bonus: float = 0.15
    activity_burst_bonus: float = 0.10
    stale_threshold_days: int = 14
    stale_penalty: float = -0.15
    very_stale_threshold_days: int = 30
    very_stale_penalty: float = -0.25


@dataclass(frozen=True)
class EngagementWeights:
    open_rate_threshold: float = 0.3
    open_rate_bonus: float = 0.08
    click_rate_threshold: float = 0.1
    click_rate_bonus: float = 0.10
    sequence_engagement_weight: float = 0.12
    active_sequence_bonus: float = 0.05


@dataclass(frozen=True)
class ScoringWeights:
    base_probability: float = 0.15
    min_probability: float = 0.01
    max_probability: float = 0.99
    demographic: DemographicWeights = field(default_factory=DemographicWeights)
    behavioral: BehavioralWeights = field(default_factory=BehavioralWeights)
    temporal: TemporalWeights = field(default_factory=TemporalWeights)
    engagement: EngagementWeights = field(default_factory=EngagementWeights)


DEFAULT_WEIGHTS = ScoringWeights()


# Static importance table served to clients; mirrors the relative weights above.
FEATURE_IMPORTANCE: tuple[FeatureImportance, ...] = (
    FeatureImportance("Email Clicks", 0.15, "behavioral"),
    FeatureImportance("Form Submissions", 0.14, "behavioral"),
    FeatureImportance("Title Seniority", 0.12, "demographic"),
    FeatureImportance("Meetings", 0.11, "behavioral"),
    FeatureImportance("Activity Velocity", 0.10, "behavioral"),
    FeatureImportance("Recency Score", 0.09, "temporal"),
    FeatureImportance("Email Open Rate", 0.08, "engagement"),
    FeatureImportance("Company Identified", 0.07, "demographic"),
    FeatureImportance("Channel Diversity", 0.06, "behavioral"),
    FeatureImportance("Email Domain Type", 0.05, "demographic"),
    FeatureImportance("Sequence Engagement", 0.03, "engagement"),
)
