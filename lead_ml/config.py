"""
lead_ml/config.py — Central configuration loaded from environment variables.
All modules import settings from here; never read os.environ directly elsewhere.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Database ──────────────────────────────────────────────────────────────
    database_url: str = Field(..., description="SQLAlchemy connection URI")

    # ── LLM ──────────────────────────────────────────────────────────────────
    openrouter_api_key: Optional[str] = Field(
        default=None,
        description="OpenRouter API key. Without it, predictions are rule-based only.",
    )
    openrouter_model: str = Field(
        default="openai/gpt-4o-mini",
        description="OpenRouter model identifier",
    )
    use_llm_predictions: bool = Field(
        default=True,
        description="Global switch for LLM-backed predictions and rankings",
    )
    llm_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    llm_ranking_temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=2000, gt=0)
    llm_ranking_max_tokens: int = Field(default=2500, gt=0)
    llm_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Hard timeout for a single LLM request",
    )
    llm_max_attempts: int = Field(
        default=2,
        ge=1,
        le=5,
        description="Attempts per LLM call on transient transport errors",
    )
    llm_cost_per_1k_tokens: float = Field(
        default=0.0006,
        ge=0.0,
        description="Blended USD cost per 1k tokens, used for estimatedCost",
    )

    # ── Predictions ───────────────────────────────────────────────────────────
    prediction_validity_days: int = Field(
        default=7,
        gt=0,
        description="How long a stored prediction is reused before recomputation",
    )
    bulk_prediction_limit: int = Field(default=50, ge=1, le=100)

    # ── Ranking ───────────────────────────────────────────────────────────────
    llm_ranking_batch_size: int = Field(
        default=20,
        ge=1,
        description="Max leads sent in a single LLM ranking prompt",
    )
    ranking_fetch_cap: int = Field(
        default=50,
        ge=1,
        description="Max leads fetched for one ranking call",
    )


# Singleton, import this everywhere
settings = Settings()
