"""
api/main.py — FastAPI application entry point.

Run with:
    uvicorn api.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from api.endpoints.prediction_routes import router as prediction_router
from api.endpoints.ranking_routes import router as ranking_router
from lead_ml.config import settings
from lead_ml.db.session import engine
from lead_ml.exceptions import InvalidInputError, LeadNotFoundError, PredictionNotFoundError

logger = logging.getLogger(__name__)


# ── Lifespan ─────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown logic."""
    # Verify DB is reachable on startup
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    logger.info("Database connection verified.")
    yield
    logger.info("Application shutting down.")


# ── App ───────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Lead ML Predictor",
    description=(
        "Lead conversion prediction, time-to-close estimation and priority "
        "ranking, LLM-assisted with a deterministic rule-based fallback."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error mapping ─────────────────────────────────────────────────────────────

@app.exception_handler(LeadNotFoundError)
@app.exception_handler(PredictionNotFoundError)
async def not_found_handler(request: Request, exc: Exception):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# ── Routers ──────────────────────────────────────────────────────────────────

app.include_router(prediction_router, tags=["Predictions"])
app.include_router(ranking_router, tags=["Ranking"])


# ── Health check ─────────────────────────────────────────────────────────────

@app.get("/health", tags=["System"])
def health_check():
    """Returns service liveness status."""
    return {
        "status": "ok",
        "service": "lead-ml-predictor",
        "llm_enabled": bool(settings.use_llm_predictions and settings.openrouter_api_key),
    }
