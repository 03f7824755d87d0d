"""
api/dependencies.py — Shared FastAPI dependencies.

Services are module-level singletons exposed through getters so tests can
swap them with app.dependency_overrides.
"""

from typing import Optional

from fastapi import Header

from lead_ml.services.accuracy import AccuracyTracker
from lead_ml.services.prediction_service import PredictionOrchestrator
from lead_ml.services.ranking import PriorityRanker

DEFAULT_TENANT = "system"

_orchestrator: Optional[PredictionOrchestrator] = None
_ranker: Optional[PriorityRanker] = None
_tracker: Optional[AccuracyTracker] = None


def get_tenant_id(x_tenant_id: Optional[str] = Header(default=None)) -> str:
    """Tenant from the X-Tenant-ID header, or the shared "system" tenant."""
    return x_tenant_id or DEFAULT_TENANT


def get_orchestrator() -> PredictionOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = PredictionOrchestrator()
    return _orchestrator


def get_ranker() -> PriorityRanker:
    global _ranker
    if _ranker is None:
        _ranker = PriorityRanker()
    return _ranker


def get_accuracy_tracker() -> AccuracyTracker:
    global _tracker
    if _tracker is None:
        _tracker = AccuracyTracker()
    return _tracker
