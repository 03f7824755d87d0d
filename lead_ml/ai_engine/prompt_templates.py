"""
lead_ml/ai_engine/prompt_templates.py — LangChain prompt templates for lead predictions.

Three prompts, each with a builder that fills it from gathered lead data:
  1. CONVERSION_PREDICTION  — full lead context → conversion probability JSON
  2. TIME_TO_CLOSE          — lead + velocity + pipeline → days-to-close JSON
  3. PRIORITY_RANKING       — batch of leads → ranked list JSON

All interpolated user data goes through lead_ml.ai_engine.sanitizer.
"""

from datetime import datetime
from typing import Optional, Sequence

from langchain_core.messages import BaseMessage
from langchain_core.prompts import ChatPromptTemplate

from lead_ml.ai_engine.sanitizer import (
    safe_company,
    safe_email,
    safe_event_type,
    safe_free_text,
    safe_name,
    safe_phone,
    safe_pipeline_stage,
    safe_score_level,
    safe_title,
)
from lead_ml.features.types import LeadFeatures
from lead_ml.services.context import (
    ActivitySummary,
    EngagementCounters,
    LeadContext,
    LeadForRanking,
    LeadInfo,
    ScoreHistoryEntry,
    SequenceInfo,
)
from lead_ml.utils import whole_days_between

MAX_SCORE_HISTORY_ENTRIES = 10


# ── System prompt ─────────────────────────────────────────────────────────────

LEAD_ML_SYSTEM_PROMPT = (
    "You are an expert lead scoring and conversion analyst specializing in B2B sales. "
    "You analyze lead behavior, engagement patterns, and demographic data to predict "
    "conversion likelihood and prioritize leads.\n\n"
    "Your analysis should be:\n"
    "- Data-driven: Base conclusions on the metrics provided\n"
    "- Specific: Reference actual engagement values and patterns\n"
    "- Actionable: Provide clear recommendations for sales follow-up\n"
    "- Balanced: Consider both positive signals and risk factors\n\n"
    "Always respond with valid JSON matching the requested schema."
)


# ── 1. Conversion Prediction ──────────────────────────────────────────────────

CONVERSION_PREDICTION_PROMPT = ChatPromptTemplate.from_messages([
    ("system", LEAD_ML_SYSTEM_PROMPT),
    (
        "human",
        """Analyze the following lead data and predict conversion probability.

LEAD PROFILE:
{lead_profile}

ENGAGEMENT METRICS:
{engagement_metrics}

ACTIVITY SUMMARY:
{activity_summary}

FEATURE ANALYSIS:
{feature_analysis}

SCORE HISTORY:
{score_history}

NURTURE SEQUENCE STATUS:
{sequence_status}

TASK:
Predict the probability of conversion (becoming a paying customer) in the next 90 days.

Return ONLY a valid JSON object with exactly these fields:
{{
  "conversionProbability": <number 0-1>,
  "confidence": <number 0-1, your confidence in this prediction>,
  "predictedScoreLevel": "HOT" | "WARM" | "COLD" | "DEAD",
  "predictedDaysToClose": <estimated days to conversion, or null if unlikely>,
  "predictedValue": <estimated deal value in dollars, or null if unknown>,
  "riskFactors": [
    {{
      "factor": "<name of the factor>",
      "impact": "high" | "medium" | "low",
      "currentValue": "<current state or value>",
      "trend": "improving" | "stable" | "declining",
      "description": "<1-2 sentence explanation>"
    }}
  ],
  "explanation": "<2-3 sentence summary of the conversion assessment>",
  "recommendations": [
    {{
      "priority": "urgent" | "high" | "medium" | "low",
      "action": "<specific action to take>",
      "rationale": "<why this action helps>",
      "expectedImpact": "<expected outcome>",
      "timeframe": "<when to do this>"
    }}
  ]
}}

GUIDELINES:
- Probability thresholds: HOT >= 0.7, WARM >= 0.4, COLD >= 0.15, DEAD < 0.15
- Weight recent activity (last 7 days) more heavily
- Multiple activity types (channel diversity) indicate genuine interest
- High-value actions: form submissions, email clicks, meeting attendance
- Email opens without clicks may indicate passive interest
- Long time since last activity is a negative signal
- Corporate email domains convert better than free email
- C-level or VP titles indicate higher conversion potential
- Consider score trajectory (improving vs declining)
- Provide at least 3 risk factors and 3 recommendations
""",
    ),
])


# ── 2. Time to Close ──────────────────────────────────────────────────────────

TIME_TO_CLOSE_PROMPT = ChatPromptTemplate.from_messages([
    ("system", LEAD_ML_SYSTEM_PROMPT),
    (
        "human",
        """Predict time-to-close (days until conversion) for this lead.

LEAD PROFILE:
{lead_profile}

ENGAGEMENT METRICS:
{engagement_metrics}

ACTIVITY VELOCITY:
{activity_velocity}

PIPELINE STAGE:
{pipeline_info}

Return ONLY a valid JSON object with exactly these fields:
{{
  "predictedDays": <days until likely conversion>,
  "confidenceInterval": {{"low": <optimistic days>, "high": <conservative days>}},
  "confidence": <number 0-1>,
  "velocity": "fast" | "normal" | "slow",
  "accelerators": [
    {{"factor": "<what could speed up conversion>", "potentialImpact": "<days saved>", "action": "<how to leverage this>"}}
  ],
  "blockers": [
    {{"factor": "<what is slowing conversion>", "severity": "high" | "medium" | "low", "mitigation": "<how to address>"}}
  ],
  "explanation": "<2-3 sentence summary>"
}}

GUIDELINES:
- Fast velocity: consistent daily/weekly engagement; slow: sporadic, declining
- Corporate email plus a senior title typically closes faster
- Active nurture sequence participation shortens the cycle
- Long gaps between activities extend the timeline
- Typical B2B sales cycles run 30-90 days
""",
    ),
])


# ── 3. Priority Ranking ───────────────────────────────────────────────────────

PRIORITY_RANKING_PROMPT = ChatPromptTemplate.from_messages([
    ("system", LEAD_ML_SYSTEM_PROMPT),
    (
        "human",
        """Rank this batch of leads by priority for immediate sales outreach.

LEADS TO RANK:
{leads_data}

Return ONLY a valid JSON object with exactly these fields:
{{
  "rankings": [
    {{
      "leadId": <lead ID>,
      "priorityRank": <1 = highest priority>,
      "priorityTier": "top" | "high" | "medium" | "low",
      "priorityScore": <number 0-100>,
      "conversionProbability": <number 0-1>,
      "reasoning": "<why this lead is ranked here>"
    }}
  ],
  "insights": {{
    "topLeadCount": <number of leads in the top tier>,
    "avgConversionProbability": <average probability across all leads>,
    "commonPatterns": ["<pattern 1>", "<pattern 2>"]
  }}
}}

GUIDELINES:
- Include every lead above exactly once
- top: immediate outreach; high: within 24-48 hours; medium: this week; low: keep nurturing
- Prioritize recent activity, multiple engagement types, senior titles
- Deprioritize stale engagement, free email, unknown company
""",
    ),
])


# ── Formatters ────────────────────────────────────────────────────────────────

def _money(value: Optional[float]) -> str:
    return f"${value:,.2f}" if value else "Not set"


def format_lead_profile(lead: LeadInfo, now: datetime) -> str:
    return "\n".join([
        f"Lead ID: {lead.id}",
        f"Email: {safe_email(lead.email)}",
        f"Name: {safe_name(lead.name)}",
        f"Company: {safe_company(lead.company)}",
        f"Phone: {safe_phone(lead.phone)}",
        f"Title: {safe_title(lead.title)}",
        f"Current Score: {lead.score}",
        f"Score Level: {safe_score_level(lead.score_level)}",
        f"Pipeline Stage: {safe_pipeline_stage(lead.pipeline_stage)}",
        f"Pipeline Value: {_money(lead.pipeline_value)}",
        f"Lead Age: {whole_days_between(lead.created_at, now)} days",
    ])


def format_engagement_metrics(engagement: EngagementCounters, now: datetime) -> str:
    sent = engagement.total_emails_sent
    opened = engagement.total_emails_opened
    open_rate = f"{opened / sent * 100:.1f}" if sent > 0 else "0"
    click_rate = f"{engagement.total_emails_clicked / opened * 100:.1f}" if opened > 0 else "0"
    since = (
        whole_days_between(engagement.last_engagement_at, now)
        if engagement.last_engagement_at
        else "Never engaged"
    )
    return "\n".join([
        f"Emails Sent: {sent}",
        f"Emails Opened: {opened} ({open_rate}% open rate)",
        f"Emails Clicked: {engagement.total_emails_clicked} ({click_rate}% click rate)",
        f"Website Visits: {engagement.total_website_visits}",
        f"Days Since Last Engagement: {since}",
    ])


def format_activity_summary(summary: Sequence[ActivitySummary]) -> str:
    if not summary:
        return "No activity recorded"
    lines = []
    for item in summary:
        line = f"{safe_event_type(item.activity_type)}: {item.count} occurrences"
        if item.last_occurred:
            line += f", last: {item.last_occurred.date().isoformat()}"
        lines.append(line)
    return "\n".join(lines)


def format_feature_analysis(features: LeadFeatures) -> str:
    d, b, t, e = features.demographic, features.behavioral, features.temporal, features.engagement
    return f"""Demographic Features
- Has Company: {d.has_company}
- Has Title: {d.has_title}
- Has Phone: {d.has_phone}
- Email Domain Type: {d.email_domain_type}
- Title Seniority: {d.title_seniority}
- Company Size Estimate: {d.company_size_estimate}

Behavioral Features
- Total Activities: {b.total_activities}
- Email Opens: {b.email_open_count}
- Email Clicks: {b.email_click_count}
- Page Views: {b.page_view_count}
- Form Submissions: {b.form_submit_count}
- Activity Velocity: {b.activity_velocity:.2f}/day
- Channel Diversity: {b.channel_diversity} types

Temporal Features
- Days Since Created: {t.days_since_created}
- Days Since Last Activity: {t.days_since_last_activity}
- Recency Score: {t.recency_score}
- Activity Burst: {t.activity_burst}

Engagement Features
- Engagement Score: {e.total_engagement_score}
- Email Open Rate: {e.email_open_rate * 100:.1f}%
- Email Click Rate: {e.email_click_rate * 100:.1f}%
- In Active Sequence: {e.is_in_active_sequence}"""


def format_score_history(history: Sequence[ScoreHistoryEntry]) -> str:
    if not history:
        return "No score history available"
    lines = []
    for entry in history[:MAX_SCORE_HISTORY_ENTRIES]:
        line = f"{entry.scored_at.date().isoformat()}: Score={entry.score} ({safe_score_level(entry.level)})"
        reason = safe_free_text(entry.reason)
        if reason:
            line += f" - {reason}"
        lines.append(line)
    return "\n".join(lines)


def format_sequence_status(info: Optional[SequenceInfo]) -> str:
    if info is None or not info.is_enrolled:
        return "Not enrolled in any nurture sequence"
    name = safe_free_text(info.sequence_name or "Unknown Sequence")
    current = info.current_step if info.current_step is not None else "?"
    total = info.total_steps if info.total_steps is not None else "?"
    return f"Enrolled in: {name}\nProgress: Step {current} of {total}"


# ── Builders ──────────────────────────────────────────────────────────────────

def build_conversion_messages(context: LeadContext) -> list[BaseMessage]:
    now = context.generated_at
    return CONVERSION_PREDICTION_PROMPT.format_messages(
        lead_profile=format_lead_profile(context.lead, now),
        engagement_metrics=format_engagement_metrics(context.engagement, now),
        activity_summary=format_activity_summary(context.activity_summary),
        feature_analysis=format_feature_analysis(context.features),
        score_history=format_score_history(context.score_history),
        sequence_status=format_sequence_status(context.sequence_info),
    )


def build_time_to_close_messages(context: LeadContext) -> list[BaseMessage]:
    now = context.generated_at
    features = context.features
    activity_velocity = "\n".join([
        f"Activities per day: {features.behavioral.activity_velocity:.2f}",
        f"Total activities: {features.behavioral.total_activities}",
        f"Days since last activity: {features.temporal.days_since_last_activity}",
        f"Activity burst detected: {features.temporal.activity_burst}",
    ])
    pipeline_info = "\n".join([
        f"Stage: {safe_pipeline_stage(context.lead.pipeline_stage)}",
        f"Value: {_money(context.lead.pipeline_value)}",
    ])
    return TIME_TO_CLOSE_PROMPT.format_messages(
        lead_profile=format_lead_profile(context.lead, now),
        engagement_metrics=format_engagement_metrics(context.engagement, now),
        activity_velocity=activity_velocity,
        pipeline_info=pipeline_info,
    )


def build_priority_ranking_messages(leads: Sequence[LeadForRanking]) -> list[BaseMessage]:
    blocks = []
    for i, lead in enumerate(leads, start=1):
        blocks.append("\n".join([
            f"{i}. ID: {lead.id}",
            f"   Email: {safe_email(lead.email)}",
            f"   Name: {safe_name(lead.name)}",
            f"   Company: {safe_company(lead.company)}",
            f"   Title: {safe_title(lead.title)}",
            f"   Score: {lead.score} ({safe_score_level(lead.score_level)})",
            f"   Days Since Activity: {lead.days_since_last_activity}",
            f"   Total Activities: {lead.total_activities}",
            f"   Email Open Rate: {lead.email_open_rate * 100:.1f}%",
        ]))
    return PRIORITY_RANKING_PROMPT.format_messages(leads_data="\n\n".join(blocks))
