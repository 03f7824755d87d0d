"""
lead_ml/scoring/rule_based.py — Deterministic weighted-sum lead scoring.

RuleBasedScorer maps LeadFeatures to a conversion probability and the derived
outputs (confidence, risk factors, recommendations, time-to-close, score
breakdown). It never calls out to anything, which makes it the fallback that
keeps predictions available when the LLM is down.

Every method is side-effect free, so tests can pin literal input/output pairs.
"""

import logging
from typing import Optional

from lead_ml.db.models import PredictionType, ScoreLevel
from lead_ml.features.types import LeadFeatures
from lead_ml.scoring.types import (
    ConfidenceInterval,
    LLMMetadata,
    PredictionResult,
    Recommendation,
    RiskFactor,
    ScoreBreakdown,
)
from lead_ml.scoring.weights import DEFAULT_WEIGHTS, ScoringWeights
from lead_ml.utils import clamp, round_half_up

logger = logging.getLogger(__name__)

MAX_RISK_FACTORS = 6
MAX_RECOMMENDATIONS = 5

MIN_DAYS_TO_CLOSE = 7
MAX_DAYS_TO_CLOSE = 180


def score_level(probability: float) -> ScoreLevel:
    """HOT ≥ 0.7, WARM ≥ 0.4, COLD ≥ 0.15, else DEAD."""
    if probability >= 0.7:
        return ScoreLevel.HOT
    if probability >= 0.4:
        return ScoreLevel.WARM
    if probability >= 0.15:
        return ScoreLevel.COLD
    return ScoreLevel.DEAD


def risk_category(probability: float) -> str:
    if probability >= 0.8:
        return "critical"
    if probability >= 0.6:
        return "high"
    if probability > 0.3:
        return "medium"
    return "low"


class RuleBasedScorer:
    """Weighted scoring over extracted features, parameterised by a ScoringWeights table."""

    def __init__(self, weights: ScoringWeights = DEFAULT_WEIGHTS):
        self.weights = weights

    # ── Probability ──────────────────────────────────────────────────────────

    def _demographic_contribution(self, features: LeadFeatures) -> float:
        w = self.weights.demographic
        d = features.demographic
        total = 0.0
        if d.has_company:
            total += w.has_company
        if d.has_title:
            total += w.has_title
        if d.has_phone:
            total += w.has_phone
        total += w.email_domain_type.get(d.email_domain_type, 0.0)
        total += w.title_seniority.get(d.title_seniority, 0.0)
        total += w.company_size_estimate.get(d.company_size_estimate, 0.0)
        return total

    def _behavioral_contribution(self, features: LeadFeatures) -> float:
        w = self.weights.behavioral
        b = features.behavioral
        weighted = (
            b.email_open_count * w.email_open
            + b.email_click_count * w.email_click
            + b.page_view_count * w.page_view
            + b.form_submit_count * w.form_submit
            + b.meeting_count * w.meeting
            + b.call_count * w.call
        )
        total = min(w.contribution_cap, weighted)
        if b.activity_velocity >= w.velocity_threshold:
            total += w.velocity_bonus
        if b.channel_diversity >= w.diversity_threshold:
            total += w.diversity_bonus
        return total

    def _temporal_contribution(self, features: LeadFeatures) -> float:
        w = self.weights.temporal
        t = features.temporal
        total = (t.recency_score / 100) * w.recency_max_bonus
        if t.activity_burst:
            total += w.activity_burst_bonus
        # Only the larger staleness penalty applies
        if t.days_since_last_activity > w.very_stale_threshold_days:
            total += w.very_stale_penalty
        elif t.days_since_last_activity > w.stale_threshold_days:
            total += w.stale_penalty
        return total

    def _engagement_contribution(self, features: LeadFeatures) -> float:
        w = self.weights.engagement
        e = features.engagement
        total = 0.0
        if e.email_open_rate >= w.open_rate_threshold:
            total += w.open_rate_bonus
        if e.email_click_rate >= w.click_rate_threshold:
            total += w.click_rate_bonus
        total += e.sequence_engagement * w.sequence_engagement_weight
        if e.is_in_active_sequence:
            total += w.active_sequence_bonus
        return total

    def conversion_probability(self, features: LeadFeatures) -> float:
        """Probability of conversion, always inside [0.01, 0.99]."""
        probability = (
            self.weights.base_probability
            + self._demographic_contribution(features)
            + self._behavioral_contribution(features)
            + self._temporal_contribution(features)
            + self._engagement_contribution(features)
        )
        return clamp(probability, self.weights.min_probability, self.weights.max_probability)

    # ── Derived outputs ──────────────────────────────────────────────────────

    def confidence(self, features: LeadFeatures) -> float:
        confidence = 0.5

        total = features.behavioral.total_activities
        if total > 10:
            confidence += 0.15
        elif total > 5:
            confidence += 0.10
        elif total > 0:
            confidence += 0.05

        if features.demographic.has_company:
            confidence += 0.05
        if features.demographic.has_title:
            confidence += 0.05
        if features.demographic.has_phone:
            confidence += 0.03

        idle_days = features.temporal.days_since_last_activity
        if idle_days < 7:
            confidence += 0.10
        elif idle_days < 14:
            confidence += 0.05

        return min(0.95, confidence)

    def risk_factors(self, features: LeadFeatures) -> list[RiskFactor]:
        """Fixed checklist, in check order (not sorted by severity), at most 6."""
        d, b, t, e = features.demographic, features.behavioral, features.temporal, features.engagement
        factors: list[RiskFactor] = []

        # Positive signals
        if d.title_seniority in ("c_level", "vp"):
            factors.append(RiskFactor(
                factor="Decision Maker",
                impact="high",
                current_value=d.title_seniority.replace("_", "-").upper(),
                trend="stable",
                description="Lead has decision-making authority based on title seniority",
            ))

        if b.high_value_action_count > 0:
            factors.append(RiskFactor(
                factor="High-Value Engagement",
                impact="high",
                current_value=b.high_value_action_count,
                trend="improving" if t.recency_score > 50 else "stable",
                description=(
                    f"{b.high_value_action_count} high-value actions "
                    "(form submissions, meetings, clicks)"
                ),
            ))

        if e.email_click_rate > 0.1:
            factors.append(RiskFactor(
                factor="Email Engagement",
                impact="medium",
                current_value=f"{e.email_click_rate * 100:.1f}%",
                trend="stable",
                description="Strong email click-through rate indicates active interest",
            ))

        if t.activity_burst:
            factors.append(RiskFactor(
                factor="Activity Burst",
                impact="high",
                current_value="Yes",
                trend="improving",
                description="Multiple activities in 24-hour period shows heightened interest",
            ))

        # Negative signals
        if t.days_since_last_activity > 14:
            factors.append(RiskFactor(
                factor="Stale Lead",
                impact="high" if t.days_since_last_activity > 30 else "medium",
                current_value=f"{t.days_since_last_activity} days",
                trend="declining",
                description=(
                    f"No activity in {t.days_since_last_activity} days indicates cooling interest"
                ),
            ))

        if d.email_domain_type == "free":
            factors.append(RiskFactor(
                factor="Personal Email",
                impact="medium",
                current_value="Free email provider",
                trend="stable",
                description="Personal email addresses have lower B2B conversion rates",
            ))

        if not d.has_company:
            factors.append(RiskFactor(
                factor="Unknown Company",
                impact="medium",
                current_value="Not provided",
                trend="stable",
                description="No company information limits qualification ability",
            ))

        if b.total_activities == 0:
            factors.append(RiskFactor(
                factor="No Engagement",
                impact="high",
                current_value="0 activities",
                trend="stable",
                description="Lead has not engaged with any content or emails",
            ))

        return factors[:MAX_RISK_FACTORS]

    def recommendations(self, features: LeadFeatures, probability: float) -> list[Recommendation]:
        """Fixed checklist of next actions, in check order, at most 5."""
        d, b, t, e = features.demographic, features.behavioral, features.temporal, features.engagement
        recommendations: list[Recommendation] = []

        if probability >= 0.7:
            recommendations.append(Recommendation(
                priority="urgent",
                action="Schedule a demo or discovery call",
                rationale="Lead shows strong buying signals and high engagement",
                expected_impact="Move lead to pipeline within 1 week",
                timeframe="Within 24 hours",
            ))

        if t.days_since_last_activity > 14:
            recommendations.append(Recommendation(
                priority="high" if t.days_since_last_activity > 30 else "medium",
                action="Send re-engagement email with new value proposition",
                rationale=f"Lead has been inactive for {t.days_since_last_activity} days",
                expected_impact="Rekindle interest and trigger engagement",
                timeframe="This week",
            ))

        if not d.has_company:
            recommendations.append(Recommendation(
                priority="medium",
                action="Research lead to identify company and qualify",
                rationale="Company information is missing, limiting qualification",
                expected_impact="Better targeting and personalization",
                timeframe="Before next outreach",
            ))

        if not e.is_in_active_sequence and probability < 0.5:
            recommendations.append(Recommendation(
                priority="medium",
                action="Enroll in nurture sequence",
                rationale="Lead needs consistent touchpoints to build engagement",
                expected_impact="Automated nurturing to warm up lead",
                timeframe="This week",
            ))

        if e.email_open_rate < 0.2 and b.total_activities < 3:
            recommendations.append(Recommendation(
                priority="low",
                action="Try different email subject lines or content format",
                rationale="Current emails are not resonating with this lead",
                expected_impact="Improved open and click rates",
                timeframe="Next email campaign",
            ))

        if d.has_company and d.title_seniority != "unknown" and b.total_activities < 2:
            recommendations.append(Recommendation(
                priority="high",
                action="Direct outreach via LinkedIn or phone",
                rationale="Good profile match but email engagement is low",
                expected_impact="Personal touch may be more effective",
                timeframe="Within 48 hours",
            ))

        return recommendations[:MAX_RECOMMENDATIONS]

    def days_to_close(self, features: LeadFeatures, probability: float) -> int:
        """Estimated days until conversion, an integer in [7, 180]."""
        days = 60.0
        days -= probability * 30

        seniority = features.demographic.title_seniority
        if seniority == "c_level":
            days -= 10
        elif seniority == "vp":
            days -= 7
        elif seniority == "director":
            days -= 5

        velocity = features.behavioral.activity_velocity
        if velocity > 1:
            days -= 10
        elif velocity > 0.5:
            days -= 5

        if features.temporal.days_since_last_activity > 14:
            days += 15

        return int(clamp(round_half_up(days), MIN_DAYS_TO_CLOSE, MAX_DAYS_TO_CLOSE))

    @staticmethod
    def confidence_interval(predicted_days: int, confidence: float) -> ConfidenceInterval:
        variance = (1 - confidence) * predicted_days * 0.5
        return ConfidenceInterval(
            low=max(float(MIN_DAYS_TO_CLOSE), predicted_days - variance),
            high=predicted_days + variance,
        )

    @staticmethod
    def score_breakdown(features: LeadFeatures) -> ScoreBreakdown:
        d, b = features.demographic, features.behavioral
        return ScoreBreakdown(
            demographic=(10 if d.has_company else 0) + (10 if d.has_title else 0) + (5 if d.has_phone else 0),
            behavioral=min(40, b.email_click_count * 10 + b.form_submit_count * 15 + b.meeting_count * 20),
            temporal=round_half_up(features.temporal.recency_score * 0.2),
            engagement=round_half_up(features.engagement.total_engagement_score * 0.15),
        )

    # ── Full predictions ─────────────────────────────────────────────────────

    def predict_conversion(self, features: LeadFeatures) -> PredictionResult:
        probability = self.conversion_probability(features)
        risk_factors = self.risk_factors(features)

        positives = [f for f in risk_factors if f.trend == "improving" or f.impact == "high"][:2]
        negatives = [f for f in risk_factors if f.trend == "declining"][:2]

        explanation = f"This lead has a {round_half_up(probability * 100)}% probability of conversion. "
        if positives:
            explanation += (
                "Key positive signals include "
                + " and ".join(f.factor.lower() for f in positives)
                + ". "
            )
        if negatives:
            explanation += "Areas of concern: " + ", ".join(f.factor.lower() for f in negatives) + "."

        return PredictionResult(
            prediction_type=PredictionType.CONVERSION,
            probability=probability,
            confidence=self.confidence(features),
            predicted_value=None,
            predicted_days=self.days_to_close(features, probability),
            risk_factors=risk_factors,
            explanation=explanation.strip(),
            recommendations=self.recommendations(features, probability),
            llm_metadata=LLMMetadata.rule_based(),
            predicted_score_level=score_level(probability).value,
        )

    def predict_time_to_close(self, features: LeadFeatures) -> PredictionResult:
        probability = self.conversion_probability(features)
        confidence = self.confidence(features)
        predicted_days = self.days_to_close(features, probability)
        interval = self.confidence_interval(predicted_days, confidence)

        pace = (
            "Active engagement suggests potential for faster close."
            if features.behavioral.activity_velocity > 0.5
            else "Increasing engagement could accelerate timeline."
        )
        explanation = (
            f"Based on current engagement patterns, this lead is estimated to convert in "
            f"{predicted_days} days (range: {interval.low:.0f}-{interval.high:.0f} days). {pace}"
        )

        return PredictionResult(
            prediction_type=PredictionType.TIME_TO_CLOSE,
            probability=probability,
            confidence=confidence,
            predicted_value=None,
            predicted_days=predicted_days,
            risk_factors=self.risk_factors(features),
            explanation=explanation,
            recommendations=self.recommendations(features, probability),
            llm_metadata=LLMMetadata.rule_based(),
            confidence_interval=interval,
        )

    def predict_score(self, features: LeadFeatures) -> PredictionResult:
        probability = self.conversion_probability(features)
        breakdown = self.score_breakdown(features)
        predicted_score = breakdown.total

        explanation = (
            f"Lead score of {predicted_score} is composed of: demographic signals "
            f"({breakdown.demographic}), behavioral engagement ({breakdown.behavioral}), "
            f"recency ({breakdown.temporal}), and engagement quality ({breakdown.engagement})."
        )

        return PredictionResult(
            prediction_type=PredictionType.SCORE,
            probability=probability,
            confidence=self.confidence(features),
            predicted_value=None,
            predicted_days=None,
            risk_factors=self.risk_factors(features),
            explanation=explanation,
            recommendations=self.recommendations(features, probability),
            llm_metadata=LLMMetadata.rule_based(),
            predicted_score=predicted_score,
            score_breakdown=breakdown,
        )

    def predict_priority(
        self,
        features: LeadFeatures,
        priority_score: float,
        priority_tier: str,
        reasoning: Optional[str] = None,
    ) -> PredictionResult:
        probability = self.conversion_probability(features)
        rounded = round_half_up(priority_score)
        explanation = f"Priority score {rounded}/100 places this lead in the {priority_tier} tier."
        if reasoning:
            explanation += f" {reasoning}."

        return PredictionResult(
            prediction_type=PredictionType.PRIORITY,
            probability=probability,
            confidence=self.confidence(features),
            predicted_value=None,
            predicted_days=None,
            risk_factors=self.risk_factors(features),
            explanation=explanation,
            recommendations=self.recommendations(features, probability),
            llm_metadata=LLMMetadata.rule_based(),
            priority_score=rounded,
            priority_tier=priority_tier,
        )


_default_scorer = RuleBasedScorer()


def calculate_conversion_probability(features: LeadFeatures) -> float:
    """Conversion probability under the default weight table."""
    return _default_scorer.conversion_probability(features)
