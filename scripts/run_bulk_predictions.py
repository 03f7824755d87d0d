"""
scripts/run_bulk_predictions.py — CLI to refresh conversion predictions for a config.

Steps:
  1. Fetch the config's top-scored active leads (optionally above a min score)
  2. Predict each lead in turn (cached predictions are reused unless --force-refresh)
  3. Print a processed / successful / failed summary plus per-lead errors

Usage:
    python scripts/run_bulk_predictions.py --config-id 1 [--tenant acme] [--limit N]
        [--min-score N] [--force-refresh] [--rule-based-only]
"""

import argparse
import logging
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ── Imports ───────────────────────────────────────────────────────────────────

from lead_ml.config import settings
from lead_ml.db.session import get_session
from lead_ml.services.prediction_service import (
    BulkPredictionResult,
    Failure,
    PredictionOptions,
    PredictionOrchestrator,
)


# ── Main pipeline ─────────────────────────────────────────────────────────────

def run_bulk_predictions(
    config_id: int,
    tenant_id: str,
    limit: int,
    min_score: int,
    force_refresh: bool,
    rule_based_only: bool,
) -> BulkPredictionResult:
    orchestrator = PredictionOrchestrator()
    options = PredictionOptions(force_refresh=force_refresh, rule_based_only=rule_based_only)

    with get_session() as db:
        return orchestrator.bulk_predict(
            db,
            config_id,
            tenant_id,
            limit=limit,
            min_score=min_score,
            options=options,
        )


# ── Entry point ───────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(description="Lead ML — Bulk Conversion Predictions")
    parser.add_argument("--config-id", type=int, required=True, help="Scoring config to process")
    parser.add_argument("--tenant", default="system", help="Tenant owning the config (default: system)")
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.bulk_prediction_limit,
        help=f"Max leads to process (default: {settings.bulk_prediction_limit})",
    )
    parser.add_argument("--min-score", type=int, default=0, help="Only leads scoring at least this")
    parser.add_argument("--force-refresh", action="store_true", help="Ignore cached predictions")
    parser.add_argument("--rule-based-only", action="store_true", help="Do not call the LLM")
    args = parser.parse_args(argv)

    print("\n" + "=" * 55)
    print("  📈  Lead ML — Bulk Conversion Predictions")
    if args.rule_based_only or not (settings.use_llm_predictions and settings.openrouter_api_key):
        print("  ⚠️   RULE-BASED MODE — no LLM calls will be made")
    print("=" * 55 + "\n")

    result = run_bulk_predictions(
        config_id=args.config_id,
        tenant_id=args.tenant,
        limit=args.limit,
        min_score=args.min_score,
        force_refresh=args.force_refresh,
        rule_based_only=args.rule_based_only,
    )

    print("\n" + "=" * 55)
    print("  ✅  Bulk prediction complete!")
    print(f"     Processed  : {result.processed}")
    print(f"     Successful : {result.successful}")
    print(f"     Failed     : {result.failed}")
    for item in result.predictions:
        if isinstance(item, Failure):
            print(f"       lead {item.lead_id}: {item.error}")
    print("=" * 55 + "\n")
    return result


if __name__ == "__main__":
    main()
