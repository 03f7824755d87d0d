"""
lead_ml/services/prediction_service.py — Cache-or-compute orchestration of lead predictions.

A single prediction request walks a fixed sequence of stages:

    CHECK_CACHE ──(valid hit)──────────────────────────────► DONE
         │
         └─► GATHER_CONTEXT ─► PREDICT ─► PERSIST ─────────► DONE

Bulk prediction runs the same flow for each lead sequentially and folds
per-lead Success / Failure values into one BulkPredictionResult, so one
lead's failure never aborts the batch.
"""

import enum
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from functools import reduce
from typing import Any, Callable, Optional, Union

from sqlalchemy.orm import Session

from lead_ml.config import settings
from lead_ml.db import repository
from lead_ml.db.models import LeadPrediction, PredictionType
from lead_ml.exceptions import InvalidInputError
from lead_ml.features.types import LeadFeatures
from lead_ml.scoring.types import PredictionResult, StoredPrediction
from lead_ml.services.context import LeadContext, gather_lead_context
from lead_ml.services.predictors import FallbackPredictor, LLMPredictor, Predictor, RuleBasedPredictor
from lead_ml.utils import utcnow

logger = logging.getLogger(__name__)

MAX_BULK_LIMIT = 100


# ── Request / response types ──────────────────────────────────────────────────

@dataclass(frozen=True)
class PredictionOptions:
    force_refresh: bool = False
    rule_based_only: bool = False
    include_explanation: bool = True


@dataclass
class PredictionOutcome:
    prediction_id: int
    result: PredictionResult
    from_cache: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = self.result.to_dict()
        data["prediction_id"] = self.prediction_id
        return data


@dataclass(frozen=True)
class Success:
    lead_id: int
    outcome: PredictionOutcome


@dataclass(frozen=True)
class Failure:
    lead_id: int
    error: str


BulkItem = Union[Success, Failure]


@dataclass
class BulkPredictionResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    predictions: list[BulkItem] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "predictions": [
                {
                    "lead_id": item.lead_id,
                    "result": item.outcome.to_dict() if isinstance(item, Success) else None,
                    "error": item.error if isinstance(item, Failure) else None,
                }
                for item in self.predictions
            ],
        }


def fold_bulk_item(acc: BulkPredictionResult, item: BulkItem) -> BulkPredictionResult:
    """Accumulate one per-lead outcome; returns a new result and leaves `acc` untouched."""
    ok = isinstance(item, Success)
    return BulkPredictionResult(
        processed=acc.processed + 1,
        successful=acc.successful + (1 if ok else 0),
        failed=acc.failed + (0 if ok else 1),
        predictions=[*acc.predictions, item],
    )


# ── Stage machine ─────────────────────────────────────────────────────────────

class Stage(enum.Enum):
    CHECK_CACHE = "check_cache"
    GATHER_CONTEXT = "gather_context"
    PREDICT = "predict"
    PERSIST = "persist"
    DONE = "done"


def should_use_cached(existing: Optional[LeadPrediction], force_refresh: bool, now: datetime) -> bool:
    """A stored prediction is reused only without force_refresh and while now < valid_until."""
    return not force_refresh and existing is not None and existing.valid_until > now


@dataclass
class _Run:
    lead_id: int
    tenant_id: str
    prediction_type: PredictionType
    options: PredictionOptions
    now: datetime
    context: Optional[LeadContext] = None
    result: Optional[PredictionResult] = None
    outcome: Optional[PredictionOutcome] = None


def _coerce_type(prediction_type: Union[PredictionType, str]) -> PredictionType:
    try:
        return PredictionType(prediction_type)
    except ValueError:
        raise InvalidInputError(f"Invalid prediction type: {prediction_type}") from None


def _require_id(value: int, label: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise InvalidInputError(f"Invalid {label} ID: {value}")


def _require_tenant(tenant_id: str) -> None:
    if not tenant_id or not str(tenant_id).strip():
        raise InvalidInputError("Tenant ID is required")


class PredictionOrchestrator:
    """
    Generates, caches and retrieves lead predictions.

    Args:
        predictor:     Used for normal requests. Defaults to LLM with rule-based fallback.
        rule_based:    Used when rule_based_only is requested.
        validity_days: Cache window for stored predictions.
        clock:         Returns the current naive-UTC time.
    """

    def __init__(
        self,
        predictor: Optional[Predictor] = None,
        rule_based: Optional[Predictor] = None,
        validity_days: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.rule_based = rule_based or RuleBasedPredictor()
        self.predictor = predictor or FallbackPredictor(LLMPredictor(), self.rule_based)
        self.validity_days = validity_days or settings.prediction_validity_days
        self.clock = clock

    # ── Stages ───────────────────────────────────────────────────────────────

    def _check_cache(self, db: Session, run: _Run) -> Stage:
        if run.options.force_refresh:
            return Stage.GATHER_CONTEXT
        existing = repository.find_latest_prediction(db, run.lead_id, run.tenant_id, run.prediction_type)
        if not should_use_cached(existing, run.options.force_refresh, run.now):
            return Stage.GATHER_CONTEXT
        logger.info("Cache hit: %s prediction %d for lead %d", run.prediction_type.value, existing.id, run.lead_id)
        run.outcome = PredictionOutcome(existing.id, repository.result_from_row(existing), from_cache=True)
        return Stage.DONE

    def _gather_context(self, db: Session, run: _Run) -> Stage:
        run.context = gather_lead_context(db, run.lead_id, run.tenant_id, now=run.now)
        return Stage.PREDICT

    def _predict(self, db: Session, run: _Run) -> Stage:
        predictor = self.rule_based if run.options.rule_based_only else self.predictor
        run.result = predictor.predict(run.context, run.prediction_type)
        return Stage.PERSIST

    def _persist(self, db: Session, run: _Run) -> Stage:
        result = run.result
        row = repository.create_prediction(
            db,
            lead_id=run.lead_id,
            tenant_id=run.tenant_id,
            result=result,
            predicted_at=run.now,
            valid_until=run.now + timedelta(days=self.validity_days),
        )
        if result.prediction_type == PredictionType.CONVERSION:
            close_date = run.now + timedelta(days=result.predicted_days) if result.predicted_days else None
            repository.update_lead_conversion_fields(db, run.lead_id, result.probability, close_date)

        logger.info(
            "Stored %s prediction %d for lead %d (p=%.3f, model=%s)",
            result.prediction_type.value, row.id, run.lead_id, result.probability, result.llm_metadata.model,
        )
        run.outcome = PredictionOutcome(row.id, result)
        return Stage.DONE

    # ── Public API ───────────────────────────────────────────────────────────

    def predict(
        self,
        db: Session,
        lead_id: int,
        tenant_id: str,
        prediction_type: Union[PredictionType, str] = PredictionType.CONVERSION,
        options: Optional[PredictionOptions] = None,
    ) -> PredictionOutcome:
        """
        Return a fresh-enough prediction for the lead, computing and storing one if needed.

        Raises:
            InvalidInputError: bad ids, tenant or prediction type.
            LeadNotFoundError: the lead is missing or outside the tenant.
        """
        _require_id(lead_id, "lead")
        _require_tenant(tenant_id)
        run = _Run(
            lead_id=lead_id,
            tenant_id=tenant_id,
            prediction_type=_coerce_type(prediction_type),
            options=options or PredictionOptions(),
            now=self.clock(),
        )

        handlers = {
            Stage.CHECK_CACHE: self._check_cache,
            Stage.GATHER_CONTEXT: self._gather_context,
            Stage.PREDICT: self._predict,
            Stage.PERSIST: self._persist,
        }
        stage = Stage.CHECK_CACHE
        while stage is not Stage.DONE:
            stage = handlers[stage](db, run)

        outcome = run.outcome
        if not run.options.include_explanation:
            outcome = replace(outcome, result=replace(outcome.result, explanation=""))
        return outcome

    def get_latest(
        self,
        db: Session,
        lead_id: int,
        tenant_id: str,
        prediction_type: Union[PredictionType, str],
    ) -> Optional[StoredPrediction]:
        """Latest ACTIVE prediction of a type, expired or not; None if there is none."""
        _require_id(lead_id, "lead")
        _require_tenant(tenant_id)
        row = repository.find_latest_prediction(db, lead_id, tenant_id, _coerce_type(prediction_type))
        return repository.to_stored_prediction(row, self.clock()) if row else None

    def lead_features(self, db: Session, lead_id: int, tenant_id: str) -> LeadFeatures:
        _require_id(lead_id, "lead")
        _require_tenant(tenant_id)
        return gather_lead_context(db, lead_id, tenant_id, now=self.clock()).features

    def _predict_one(
        self,
        db: Session,
        lead_id: int,
        tenant_id: str,
        prediction_type: PredictionType,
        options: Optional[PredictionOptions],
    ) -> BulkItem:
        try:
            # Savepoint per lead: a failure rolls back only this lead's writes
            with db.begin_nested():
                outcome = self.predict(db, lead_id, tenant_id, prediction_type, options)
            return Success(lead_id, outcome)
        except Exception as exc:
            logger.error("Bulk prediction failed for lead %d: %s", lead_id, exc)
            return Failure(lead_id, str(exc) or exc.__class__.__name__)

    def bulk_predict(
        self,
        db: Session,
        config_id: int,
        tenant_id: str,
        prediction_type: Union[PredictionType, str] = PredictionType.CONVERSION,
        limit: Optional[int] = None,
        min_score: int = 0,
        options: Optional[PredictionOptions] = None,
    ) -> BulkPredictionResult:
        """Predict for a config's top-scored active leads, one at a time."""
        _require_id(config_id, "config")
        _require_tenant(tenant_id)
        prediction_type = _coerce_type(prediction_type)
        limit = settings.bulk_prediction_limit if limit is None else limit
        if not 1 <= limit <= MAX_BULK_LIMIT:
            raise InvalidInputError(f"limit must be between 1 and {MAX_BULK_LIMIT}")
        if not 0 <= min_score <= 100:
            raise InvalidInputError("min_score must be between 0 and 100")

        lead_ids = [
            lead.id
            for lead in repository.list_active_leads_for_config(
                db, config_id, tenant_id, min_score=min_score, limit=limit
            )
        ]
        logger.info("Bulk %s prediction for config %d: %d leads", prediction_type.value, config_id, len(lead_ids))

        items = (self._predict_one(db, lead_id, tenant_id, prediction_type, options) for lead_id in lead_ids)
        return reduce(fold_bulk_item, items, BulkPredictionResult())
