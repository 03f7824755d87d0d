"""
lead_ml/services/accuracy.py — Human validation of predictions and accuracy metrics.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.orm import Session

from lead_ml.db import repository
from lead_ml.db.models import LeadPrediction, PredictionStatus
from lead_ml.exceptions import InvalidInputError
from lead_ml.utils import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

_VALIDATED_STATUSES = (PredictionStatus.VALIDATED, PredictionStatus.INVALIDATED)


@dataclass
class TypeAccuracy:
    total: int = 0
    validated: int = 0
    accurate: int = 0
    accuracy: float = 0.0


@dataclass
class AccuracyReport:
    total_predictions: int
    validated_count: int
    accurate_count: int
    accuracy: float
    by_type: dict[str, TypeAccuracy] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _ratio(accurate: int, validated: int) -> float:
    return accurate / validated if validated > 0 else 0.0


def summarize(predictions: Iterable[LeadPrediction]) -> AccuracyReport:
    """Aggregate stored predictions; a prediction counts as validated once a human has judged it."""
    total = validated = accurate = 0
    by_type: dict[str, TypeAccuracy] = {}

    for prediction in predictions:
        bucket = by_type.setdefault(prediction.prediction_type.value, TypeAccuracy())
        total += 1
        bucket.total += 1
        if prediction.status in _VALIDATED_STATUSES:
            validated += 1
            bucket.validated += 1
            if prediction.was_accurate is True:
                accurate += 1
                bucket.accurate += 1

    for bucket in by_type.values():
        bucket.accuracy = _ratio(bucket.accurate, bucket.validated)

    return AccuracyReport(
        total_predictions=total,
        validated_count=validated,
        accurate_count=accurate,
        accuracy=_ratio(accurate, validated),
        by_type=by_type,
    )


class AccuracyTracker:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def validate(
        self,
        db: Session,
        prediction_id: int,
        was_accurate: bool,
        tenant_id: Optional[str] = None,
    ) -> LeadPrediction:
        """
        Record whether a prediction turned out to be right.

        Repeated calls overwrite the previous verdict.

        Raises:
            PredictionNotFoundError: unknown id, or not visible to the tenant.
        """
        if prediction_id <= 0:
            raise InvalidInputError(f"Invalid prediction ID: {prediction_id}")

        status = PredictionStatus.VALIDATED if was_accurate else PredictionStatus.INVALIDATED
        row = repository.update_prediction_status(
            db, prediction_id, status, was_accurate, self.clock(), tenant_id=tenant_id
        )
        logger.info("Prediction %d marked %s", prediction_id, status.value)
        return row

    def accuracy(
        self,
        db: Session,
        config_id: int,
        tenant_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> AccuracyReport:
        if config_id <= 0:
            raise InvalidInputError(f"Invalid config ID: {config_id}")
        start_date, end_date = as_naive_utc(start_date), as_naive_utc(end_date)
        if start_date and end_date and start_date > end_date:
            raise InvalidInputError("start_date must not be after end_date")

        predictions = repository.list_predictions_for_config(db, config_id, tenant_id, start_date, end_date)
        return summarize(predictions)
