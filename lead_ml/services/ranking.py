"""
lead_ml/services/ranking.py — Priority ranking of a config's leads for sales outreach.

Two paths produce the same RankingResult shape:
  - rule-based : priority score from lead score, recency, activity volume and
                 email engagement (always available)
  - LLM batch  : one prompt for up to llm_ranking_batch_size leads; any failure
                 or malformed answer drops back to the rule-based path

Ordering guarantees hold on both paths: descending priority score, ties kept
in fetch order, dense ranks 1..N.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy.orm import Session

from lead_ml.ai_engine.client import LLMClient
from lead_ml.ai_engine.prompt_templates import build_priority_ranking_messages
from lead_ml.ai_engine.schemas import RankingResponse, validate_response
from lead_ml.config import settings
from lead_ml.db import repository
from lead_ml.exceptions import InvalidInputError, LLMResponseError
from lead_ml.features.types import (
    BehavioralFeatures,
    DemographicFeatures,
    EngagementFeatures,
    LeadFeatures,
    TemporalFeatures,
)
from lead_ml.scoring.rule_based import RuleBasedScorer
from lead_ml.scoring.types import LLMMetadata, PriorityTier
from lead_ml.services.context import LeadForRanking, ranking_view
from lead_ml.utils import as_naive_utc, clamp, round_half_up, utcnow

logger = logging.getLogger(__name__)

PRIORITY_TIERS: tuple[str, ...] = ("top", "high", "medium", "low")
TIER_FETCH_LIMIT = 100


# ── Result types ──────────────────────────────────────────────────────────────

@dataclass
class RankedLead:
    lead_id: int
    email: str
    name: Optional[str]
    company: Optional[str]
    title: Optional[str]
    score: int
    score_level: str
    priority_rank: int
    priority_tier: PriorityTier
    priority_score: int
    conversion_probability: float
    reasoning: str


@dataclass
class RankingInsights:
    top_lead_count: int = 0
    avg_conversion_probability: float = 0.0
    common_patterns: list[str] = field(default_factory=list)


@dataclass
class RankingResult:
    rankings: list[RankedLead]
    insights: RankingInsights
    llm_metadata: LLMMetadata

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _Scored:
    lead: LeadForRanking
    priority_score: float
    conversion_probability: float
    reasoning: str


# ── Rule-based pieces ─────────────────────────────────────────────────────────

def calculate_priority_score(lead: LeadForRanking) -> float:
    """Unrounded priority score in [0, 100]."""
    score = lead.score * 0.5

    days = lead.days_since_last_activity
    if days < 3:
        score += 20
    elif days < 7:
        score += 15
    elif days < 14:
        score += 10
    elif days > 30:
        score -= 15

    if lead.total_activities > 10:
        score += 15
    elif lead.total_activities > 5:
        score += 10
    elif lead.total_activities > 0:
        score += 5

    if lead.email_open_rate > 0.5:
        score += 15
    elif lead.email_open_rate > 0.3:
        score += 10
    elif lead.email_open_rate > 0.1:
        score += 5

    return clamp(score, 0, 100)


def priority_tier(score: float) -> PriorityTier:
    if score >= 75:
        return "top"
    if score >= 50:
        return "high"
    if score >= 25:
        return "medium"
    return "low"


def generate_reasoning(lead: LeadForRanking) -> str:
    reasons = []

    if lead.days_since_last_activity < 7:
        reasons.append("recent activity")
    elif lead.days_since_last_activity > 14:
        reasons.append("needs re-engagement")

    if lead.email_open_rate > 0.3:
        reasons.append("strong email engagement")
    if lead.total_activities > 10:
        reasons.append("highly active")

    if lead.score >= 80:
        reasons.append("high score (HOT)")
    elif lead.score >= 50:
        reasons.append("warm prospect")

    if lead.company:
        reasons.append("company identified")

    if not reasons:
        return "Standard lead requiring nurturing"
    text = ", ".join(reasons)
    return text[0].upper() + text[1:]


def proxy_features(lead: LeadForRanking) -> LeadFeatures:
    """Coarse feature set for a ranked lead, built without loading its activity log."""
    days = lead.days_since_last_activity
    domain = lead.email.split("@", 1)[1] if "@" in lead.email else None
    return LeadFeatures(
        demographic=DemographicFeatures(
            has_company=bool(lead.company),
            has_title=bool(lead.title),
            has_phone=False,
            email_domain_type="corporate",
            title_seniority="unknown",
            company_size_estimate="unknown",
            email_domain=domain or None,
        ),
        behavioral=BehavioralFeatures(
            email_open_count=round_half_up(lead.email_open_rate * 10),
            email_click_count=0,
            page_view_count=0,
            form_submit_count=0,
            meeting_count=0,
            call_count=0,
            activity_velocity=lead.total_activities / max(1, days),
            channel_diversity=1,
            high_value_action_count=0,
            total_activities=lead.total_activities,
        ),
        temporal=TemporalFeatures(
            days_since_created=30,
            days_since_last_activity=days,
            recency_score=max(0, 100 - days * 5),
            activity_burst=False,
            day_pattern="mixed",
            time_pattern="mixed",
            lead_age_weeks=4,
        ),
        engagement=EngagementFeatures(
            total_engagement_score=lead.score,
            email_open_rate=lead.email_open_rate,
            email_click_rate=0.0,
            sequence_engagement=0.0,
            is_in_active_sequence=False,
            current_sequence_step=None,
        ),
    )


def common_patterns(leads: Sequence[LeadForRanking]) -> list[str]:
    patterns = []
    recent = sum(1 for lead in leads if lead.days_since_last_activity < 7)
    if recent > len(leads) * 0.5:
        patterns.append("Majority of leads have recent activity")
    warm = sum(1 for lead in leads if lead.score >= 50)
    if warm > len(leads) * 0.3:
        patterns.append("Good proportion of warm/hot leads")
    return patterns


def _assign_ranks(scored: list[_Scored]) -> list[RankedLead]:
    # sorted() is stable, so equal scores keep their fetch order
    ordered = sorted(scored, key=lambda s: -s.priority_score)
    return [
        RankedLead(
            lead_id=s.lead.id,
            email=s.lead.email,
            name=s.lead.name,
            company=s.lead.company,
            title=s.lead.title,
            score=s.lead.score,
            score_level=s.lead.score_level,
            priority_rank=rank,
            priority_tier=priority_tier(s.priority_score),
            priority_score=round_half_up(s.priority_score),
            conversion_probability=s.conversion_probability,
            reasoning=s.reasoning,
        )
        for rank, s in enumerate(ordered, start=1)
    ]


def _average_probability(rankings: Sequence[RankedLead]) -> float:
    if not rankings:
        return 0.0
    avg = sum(r.conversion_probability for r in rankings) / len(rankings)
    return round_half_up(avg * 100) / 100


def _top_count(rankings: Sequence[RankedLead]) -> int:
    return sum(1 for r in rankings if r.priority_tier == "top")


# ── Ranker ────────────────────────────────────────────────────────────────────

class PriorityRanker:
    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        scorer: Optional[RuleBasedScorer] = None,
        batch_size: Optional[int] = None,
        fetch_cap: Optional[int] = None,
    ):
        self.llm_client = llm_client or LLMClient()
        self.scorer = scorer or RuleBasedScorer()
        self.batch_size = batch_size or settings.llm_ranking_batch_size
        self.fetch_cap = fetch_cap or settings.ranking_fetch_cap

    # ── Paths ────────────────────────────────────────────────────────────────

    def rank_rule_based(self, leads: Sequence[LeadForRanking]) -> RankingResult:
        scored = [
            _Scored(
                lead=lead,
                priority_score=calculate_priority_score(lead),
                conversion_probability=self.scorer.conversion_probability(proxy_features(lead)),
                reasoning=generate_reasoning(lead),
            )
            for lead in leads
        ]
        rankings = _assign_ranks(scored)
        return RankingResult(
            rankings=rankings,
            insights=RankingInsights(
                top_lead_count=_top_count(rankings),
                avg_conversion_probability=_average_probability(rankings),
                common_patterns=common_patterns(leads),
            ),
            llm_metadata=LLMMetadata.rule_based(),
        )

    def rank_with_llm(self, leads: Sequence[LeadForRanking]) -> RankingResult:
        """
        Rank a batch through the LLM.

        Raises:
            LLMResponseError: the answer is malformed or does not cover exactly the input leads.
            LLMUnavailableError / transport errors from the client.
        """
        result = self.llm_client.complete_json(
            build_priority_ranking_messages(leads),
            temperature=settings.llm_ranking_temperature,
            max_tokens=settings.llm_ranking_max_tokens,
        )
        response = validate_response(RankingResponse, result.data)

        by_id = {entry.lead_id: entry for entry in response.rankings}
        if len(by_id) != len(response.rankings) or set(by_id) != {lead.id for lead in leads}:
            raise LLMResponseError("Ranking does not cover exactly the requested leads")

        scored = []
        for lead in leads:
            entry = by_id[lead.id]
            scored.append(_Scored(
                lead=lead,
                priority_score=clamp(entry.priority_score, 0, 100),
                conversion_probability=clamp(entry.conversion_probability, 0.0, 1.0),
                reasoning=entry.reasoning or generate_reasoning(lead),
            ))
        rankings = _assign_ranks(scored)

        return RankingResult(
            rankings=rankings,
            insights=RankingInsights(
                top_lead_count=_top_count(rankings),
                avg_conversion_probability=_average_probability(rankings),
                common_patterns=response.insights.common_patterns or common_patterns(leads),
            ),
            llm_metadata=LLMMetadata(
                model=result.usage.model,
                tokens_used=result.usage.total_tokens,
                latency_ms=result.latency_ms,
                estimated_cost=result.usage.estimated_cost,
            ),
        )

    def rank_leads(self, leads: Sequence[LeadForRanking], use_llm: bool = True) -> RankingResult:
        if not leads:
            return RankingResult(rankings=[], insights=RankingInsights(), llm_metadata=LLMMetadata(model="none"))

        if use_llm and self.llm_client.available():
            if len(leads) > self.batch_size:
                logger.info("Ranking %d leads rule-based (LLM batch cap is %d)", len(leads), self.batch_size)
            else:
                try:
                    return self.rank_with_llm(leads)
                except Exception as exc:
                    logger.warning("LLM ranking failed, falling back to rule-based: %s", exc)

        return self.rank_rule_based(leads)

    # ── Views ────────────────────────────────────────────────────────────────

    def get_ranked_leads(
        self,
        db: Session,
        config_id: int,
        tenant_id: str,
        limit: int = 20,
        min_score: int = 0,
        min_probability: Optional[float] = None,
        use_llm: bool = True,
        now: Optional[datetime] = None,
    ) -> RankingResult:
        if config_id <= 0:
            raise InvalidInputError(f"Invalid config ID: {config_id}")
        if limit <= 0:
            raise InvalidInputError(f"Invalid limit: {limit}")
        now = as_naive_utc(now) if now else utcnow()

        rows = repository.list_leads_for_ranking(
            db, config_id, tenant_id, min_score=min_score, limit=min(limit, self.fetch_cap)
        )
        leads = [ranking_view(lead, total, now) for lead, total in rows]
        result = self.rank_leads(leads, use_llm=use_llm)

        if min_probability is not None:
            # Ranks are left as assigned before filtering
            result.rankings = [r for r in result.rankings if r.conversion_probability >= min_probability]
            result.insights.top_lead_count = _top_count(result.rankings)

        return result

    def top_leads(
        self, db: Session, config_id: int, tenant_id: str, n: int = 10, now: Optional[datetime] = None
    ) -> list[RankedLead]:
        result = self.get_ranked_leads(db, config_id, tenant_id, limit=n, now=now)
        return result.rankings[:n]

    def leads_by_tier(
        self, db: Session, config_id: int, tenant_id: str, tier: str, now: Optional[datetime] = None
    ) -> list[RankedLead]:
        if tier not in PRIORITY_TIERS:
            raise InvalidInputError(f"Invalid tier: {tier}")
        result = self.get_ranked_leads(db, config_id, tenant_id, limit=TIER_FETCH_LIMIT, now=now)
        return [r for r in result.rankings if r.priority_tier == tier]
