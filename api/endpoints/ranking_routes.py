"""
api/endpoints/ranking_routes.py — Priority ranking views for a scoring config.

GET /configs/{id}/ml/ranked-leads   — Full ranking with insights
GET /configs/{id}/ml/top-leads      — Top N leads
GET /configs/{id}/ml/leads-by-tier  — Leads in one priority tier
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.dependencies import get_ranker, get_tenant_id
from lead_ml.db.session import get_db
from lead_ml.services.ranking import PriorityRanker

router = APIRouter()


@router.get("/configs/{config_id}/ml/ranked-leads", summary="Priority-ranked leads")
def ranked_leads(
    config_id: int,
    limit: int = Query(default=20, ge=1, le=100),
    min_score: int = Query(default=0, ge=0, le=100),
    min_probability: Optional[float] = Query(default=None, ge=0.0, le=1.0),
    use_llm: bool = Query(default=True),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    ranker: PriorityRanker = Depends(get_ranker),
):
    result = ranker.get_ranked_leads(
        db,
        config_id,
        tenant_id,
        limit=limit,
        min_score=min_score,
        min_probability=min_probability,
        use_llm=use_llm,
    )
    return result.to_dict()


@router.get("/configs/{config_id}/ml/top-leads", summary="Top priority leads")
def top_leads(
    config_id: int,
    n: int = Query(default=10, ge=1, le=50),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    ranker: PriorityRanker = Depends(get_ranker),
):
    return [asdict(r) for r in ranker.top_leads(db, config_id, tenant_id, n=n)]


@router.get("/configs/{config_id}/ml/leads-by-tier", summary="Leads in a priority tier")
def leads_by_tier(
    config_id: int,
    tier: str = Query(..., description="top, high, medium or low"),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id),
    ranker: PriorityRanker = Depends(get_ranker),
):
    return [asdict(r) for r in ranker.leads_by_tier(db, config_id, tenant_id, tier)]
