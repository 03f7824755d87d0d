"""
api/endpoints/prediction_routes.py — Routes for generating and auditing lead predictions.

POST /leads/{id}/ml/predict            — Conversion prediction
POST /leads/{id}/ml/predict-time       — Time-to-close prediction
POST /leads/{id}/ml/predict-score      — Score prediction with breakdown
POST /leads/{id}/ml/predict-priority   — Single-lead priority prediction
GET  /leads/{id}/ml/prediction         — Latest stored prediction of a type
GET  /leads/{id}/ml/features           — Extracted feature breakdown
POST /configs/{id}/ml/bulk-predict     — Predict for a config's top leads
POST /predictions/{id}/validate        — Record whether a prediction was right
GET  /configs/{id}/ml/accuracy         — Accuracy metrics for a config
GET  /ml/feature-importance            — Static feature-importance table
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.dependencies import get_accuracy_tracker, get_orchestrator, get_tenant_id
from api.schemas import (
    BulkPredictRequest,
    FeatureImportanceOut,
    PredictionStatusOut,
    PredictRequest,
    ValidatePredictionRequest,
)
from lead_ml.db.models import PredictionType
from lead_ml.db.session import get_db
from lead_ml.scoring.weights import FEATURE_IMPORTANCE
from lead_ml.services.accuracy import AccuracyTracker
from lead_ml.services.prediction_service import PredictionOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter()


def _predict(
    prediction_type: PredictionType,
    lead_id: int,
    request: Optional[PredictRequest],
    db: Session,
    tenant_id: str,
    orchestrator: PredictionOrchestrator,
) -> dict:
    options = (request or PredictRequest()).to_options()
    outcome = orchestrator.predict(db, lead_id, tenant_id, prediction_type, options)
    return outcome.to_dict()


@router.post("/leads/{lead_id}/ml/predict", summary="Predict conversion")
def predict_conversion(
    lead_id: int,
    request: Optional[PredictRequest] = None,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: PredictionOrchestrator = Depends(get_orchestrator),
):
    """Conversion probability, score level, risk factors and recommendations for a lead."""
    return _predict(PredictionType.CONVERSION, lead_id, request, db, tenant_id, orchestrator)


@router.post("/leads/{lead_id}/ml/predict-time", summary="Predict time to close")
def predict_time_to_close(
    lead_id: int,
    request: Optional[PredictRequest] = None,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: PredictionOrchestrator = Depends(get_orchestrator),
):
    return _predict(PredictionType.TIME_TO_CLOSE, lead_id, request, db, tenant_id, orchestrator)


@router.post("/leads/{lead_id}/ml/predict-score", summary="Predict lead score")
def predict_score(
    lead_id: int,
    request: Optional[PredictRequest] = None,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: PredictionOrchestrator = Depends(get_orchestrator),
):
    return _predict(PredictionType.SCORE, lead_id, request, db, tenant_id, orchestrator)


@router.post("/leads/{lead_id}/ml/predict-priority", summary="Predict lead priority")
def predict_priority(
    lead_id: int,
    request: Optional[PredictRequest] = None,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: PredictionOrchestrator = Depends(get_orchestrator),
):
    return _predict(PredictionType.PRIORITY, lead_id, request, db, tenant_id, orchestrator)


@router.get("/leads/{lead_id}/ml/prediction", summary="Get latest prediction")
def get_prediction(
    lead_id: int,
    type: PredictionType = Query(default=PredictionType.CONVERSION),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: PredictionOrchestrator = Depends(get_orchestrator),
):
    """Most recent stored prediction of the type, flagged if it has expired."""
    stored = orchestrator.get_latest(db, lead_id, tenant_id, type)
    if stored is None:
        raise HTTPException(status_code=404, detail="No prediction found")

    payload = stored.result.to_dict()
    payload.update(
        prediction_id=stored.id,
        status=stored.status,
        was_accurate=stored.was_accurate,
        is_expired=stored.is_expired,
        valid_until=stored.valid_until,
        predicted_at=stored.predicted_at,
    )
    return payload


@router.get("/leads/{lead_id}/ml/features", summary="Get lead features")
def get_features(
    lead_id: int,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: PredictionOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.lead_features(db, lead_id, tenant_id).to_dict()


@router.post("/configs/{config_id}/ml/bulk-predict", summary="Bulk conversion predictions")
def bulk_predict(
    config_id: int,
    request: Optional[BulkPredictRequest] = None,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: PredictionOrchestrator = Depends(get_orchestrator),
):
    """Run conversion predictions for the config's top-scored active leads, one at a time."""
    request = request or BulkPredictRequest()
    result = orchestrator.bulk_predict(
        db,
        config_id,
        tenant_id,
        limit=request.limit,
        min_score=request.min_score,
        options=request.to_options(),
    )
    return result.to_dict()


@router.post(
    "/predictions/{prediction_id}/validate",
    response_model=PredictionStatusOut,
    summary="Validate a prediction",
)
def validate_prediction(
    prediction_id: int,
    request: ValidatePredictionRequest,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    tracker: AccuracyTracker = Depends(get_accuracy_tracker),
):
    return tracker.validate(db, prediction_id, request.was_accurate, tenant_id=tenant_id)


@router.get("/configs/{config_id}/ml/accuracy", summary="Prediction accuracy")
def get_accuracy(
    config_id: int,
    start_date: Optional[datetime] = Query(default=None),
    end_date: Optional[datetime] = Query(default=None),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    tracker: AccuracyTracker = Depends(get_accuracy_tracker),
):
    return tracker.accuracy(db, config_id, tenant_id, start_date, end_date).to_dict()


@router.get(
    "/ml/feature-importance",
    response_model=list[FeatureImportanceOut],
    summary="Feature importance",
)
def feature_importance():
    """Static relative importance of the features behind rule-based scoring."""
    return list(FEATURE_IMPORTANCE)
