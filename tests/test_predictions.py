"""
tests/test_predictions.py — Tests for predictors and the prediction orchestrator.

LLM calls are mocked at the chat-model factory; everything else (features,
scoring, persistence) runs for real against in-memory SQLite.
"""

import json
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from tenacity import wait_none

from lead_ml.ai_engine.client import LLMClient
from lead_ml.db.models import Lead, LeadPrediction, PredictionType
from lead_ml.exceptions import InvalidInputError, LeadNotFoundError
from lead_ml.scoring.rule_based import RuleBasedScorer
from lead_ml.scoring.types import RULE_BASED_MODEL
from lead_ml.services import prediction_service
from lead_ml.services.context import gather_lead_context
from lead_ml.services.prediction_service import (
    BulkPredictionResult,
    Failure,
    PredictionOptions,
    PredictionOrchestrator,
    Success,
    fold_bulk_item,
    should_use_cached,
)
from lead_ml.services.predictors import FallbackPredictor, LLMPredictor, RuleBasedPredictor


# ── Helpers ───────────────────────────────────────────────────────────────────

def _llm_client(payload=None, error: Exception = None) -> tuple[LLMClient, MagicMock]:
    response = MagicMock()
    response.content = payload if isinstance(payload, str) else json.dumps(payload)
    response.usage_metadata = {"total_tokens": 1500}
    response.response_metadata = {"model_name": "openai/gpt-4o-mini"}

    llm = MagicMock()
    if error is not None:
        llm.invoke.side_effect = error
    else:
        llm.invoke.return_value = response
    factory = MagicMock(return_value=llm)
    client = LLMClient(api_key="test-key", enabled=True, max_attempts=1, llm_factory=factory, wait=wait_none())
    return client, factory


def _orchestrator(now, client: LLMClient = None, clock=None) -> PredictionOrchestrator:
    client = client or LLMClient(enabled=False)
    rule_based = RuleBasedPredictor()
    return PredictionOrchestrator(
        predictor=FallbackPredictor(LLMPredictor(client=client), rule_based),
        rule_based=rule_based,
        validity_days=7,
        clock=clock or MagicMock(return_value=now),
    )


CONVERSION_PAYLOAD = {
    "conversionProbability": 1.3,
    "confidence": 0.82,
    "predictedScoreLevel": "HOT",
    "predictedDaysToClose": 400,
    "predictedValue": 25000,
    "riskFactors": [
        {"factor": "Decision Maker", "impact": "high", "currentValue": "VP",
         "trend": "stable", "description": "Senior buyer"},
    ],
    "explanation": "Strong buying signals from a senior contact.",
    "recommendations": [
        {"priority": "urgent", "action": "Book a demo", "rationale": "Hot lead",
         "expectedImpact": "Pipeline entry", "timeframe": "Within 24 hours"},
    ],
}

TIME_PAYLOAD = {
    "predictedDays": 25,
    "confidenceInterval": {"low": 18, "high": 35},
    "confidence": 0.7,
    "velocity": "fast",
    "accelerators": [{"factor": "Active sequence", "potentialImpact": "5 days", "action": "Send case study"}],
    "blockers": [{"factor": "Budget approval", "severity": "high", "mitigation": "Offer pilot"}],
    "explanation": "Engaged senior contact; budget is the main blocker.",
}


@pytest.fixture
def lead(seed, now):
    lead = seed.lead(seed.config("acme"), title="VP Sales")
    seed.activities(
        lead,
        ("email_open", now - timedelta(days=1)),
        ("email_click", now - timedelta(days=1)),
        ("form_submit", now - timedelta(days=2)),
    )
    return lead


# ── Pure helpers ──────────────────────────────────────────────────────────────

class TestPureHelpers:
    def test_should_use_cached(self, now):
        row = LeadPrediction(valid_until=now + timedelta(hours=1))
        assert should_use_cached(row, force_refresh=False, now=now) is True
        assert should_use_cached(row, force_refresh=True, now=now) is False
        assert should_use_cached(None, force_refresh=False, now=now) is False
        assert should_use_cached(row, force_refresh=False, now=now + timedelta(hours=1)) is False

    def test_fold_bulk_item_leaves_accumulator_untouched(self):
        start = BulkPredictionResult()
        after = fold_bulk_item(start, Failure(lead_id=3, error="boom"))
        assert (start.processed, start.failed, start.predictions) == (0, 0, [])
        assert (after.processed, after.successful, after.failed) == (1, 0, 1)


# ── Predictors ────────────────────────────────────────────────────────────────

class TestLLMPredictor:
    def test_conversion_values_are_clamped(self, db, lead, now):
        client, _ = _llm_client(CONVERSION_PAYLOAD)
        result = LLMPredictor(client=client).predict(
            gather_lead_context(db, lead.id, "acme", now=now), PredictionType.CONVERSION
        )

        assert result.probability == 1.0
        assert result.predicted_days == 180
        assert result.predicted_value == 25000
        assert result.predicted_score_level == "HOT"
        assert result.risk_factors[0].current_value == "VP"
        assert result.recommendations[0].expected_impact == "Pipeline entry"
        assert result.llm_metadata.model == "openai/gpt-4o-mini"
        assert result.llm_metadata.tokens_used == 1500

    def test_time_to_close_maps_blockers_and_accelerators(self, db, lead, now):
        client, _ = _llm_client(TIME_PAYLOAD)
        context = gather_lead_context(db, lead.id, "acme", now=now)
        result = LLMPredictor(client=client).predict(context, PredictionType.TIME_TO_CLOSE)

        assert result.predicted_days == 25
        assert (result.confidence_interval.low, result.confidence_interval.high) == (18, 35)
        assert result.probability == RuleBasedScorer().conversion_probability(context.features)
        assert result.risk_factors[0].factor == "Budget approval"
        assert result.risk_factors[0].impact == "high"
        assert result.risk_factors[0].trend == "declining"
        assert result.recommendations[0].action == "Send case study"
        assert result.recommendations[0].timeframe == "This week"

    @pytest.mark.parametrize("interval", [
        {"low": 40, "high": 20},    # inverted
        {"low": 100, "high": 200},  # above the predicted days
        {"low": 5, "high": 24},     # below the predicted days
    ])
    def test_unusable_interval_is_recomputed(self, db, lead, now, interval):
        payload = dict(TIME_PAYLOAD, confidenceInterval=interval)
        client, _ = _llm_client(payload)
        result = LLMPredictor(client=client).predict(
            gather_lead_context(db, lead.id, "acme", now=now), PredictionType.TIME_TO_CLOSE
        )
        # (1 - 0.7) * 25 * 0.5 either side
        assert result.confidence_interval.low == pytest.approx(21.25)
        assert result.confidence_interval.high == pytest.approx(28.75)

    def test_supports_only_conversion_and_time(self):
        predictor = LLMPredictor(client=LLMClient(enabled=False))
        assert predictor.supports(PredictionType.CONVERSION)
        assert predictor.supports(PredictionType.TIME_TO_CLOSE)
        assert not predictor.supports(PredictionType.SCORE)
        assert not predictor.supports(PredictionType.PRIORITY)


class TestFallbackPredictor:
    def test_primary_error_falls_back(self, db, lead, now):
        client, _ = _llm_client("I'd rather not answer in JSON.")
        predictor = FallbackPredictor(LLMPredictor(client=client), RuleBasedPredictor())
        result = predictor.predict(gather_lead_context(db, lead.id, "acme", now=now), PredictionType.CONVERSION)
        assert result.llm_metadata.model == RULE_BASED_MODEL

    def test_unavailable_primary_is_not_called(self, db, lead, now):
        primary = MagicMock()
        primary.available.return_value = False
        predictor = FallbackPredictor(primary, RuleBasedPredictor())
        predictor.predict(gather_lead_context(db, lead.id, "acme", now=now), PredictionType.CONVERSION)
        primary.predict.assert_not_called()

    def test_unsupported_type_goes_straight_to_fallback(self, db, lead, now):
        client, factory = _llm_client(CONVERSION_PAYLOAD)
        predictor = FallbackPredictor(LLMPredictor(client=client), RuleBasedPredictor())
        result = predictor.predict(gather_lead_context(db, lead.id, "acme", now=now), PredictionType.SCORE)
        assert result.predicted_score is not None
        factory.assert_not_called()


# ── Orchestrator: single prediction ───────────────────────────────────────────

class TestPredict:
    def test_rule_based_conversion_updates_lead(self, db, lead, now):
        outcome = _orchestrator(now).predict(db, lead.id, "acme")

        result = outcome.result
        assert outcome.from_cache is False
        assert result.llm_metadata.model == RULE_BASED_MODEL
        assert 0.01 <= result.probability <= 0.99
        assert result.predicted_score_level in ("HOT", "WARM", "COLD", "DEAD")

        stored = db.get(Lead, lead.id)
        assert stored.conversion_probability == result.probability
        assert stored.predicted_close_date == now + timedelta(days=result.predicted_days)

    def test_llm_conversion_is_persisted_with_metadata(self, db, lead, now):
        client, _ = _llm_client(CONVERSION_PAYLOAD)
        outcome = _orchestrator(now, client=client).predict(db, lead.id, "acme")

        row = db.get(LeadPrediction, outcome.prediction_id)
        assert row.llm_model == "openai/gpt-4o-mini"
        assert row.llm_tokens_used == 1500
        assert row.tenant_id == "acme"
        assert row.valid_until == now + timedelta(days=7)
        assert row.details == {"predicted_score_level": "HOT"}

    def test_llm_failure_still_answers(self, db, lead, now):
        client, _ = _llm_client(error=RuntimeError("provider outage"))
        outcome = _orchestrator(now, client=client).predict(db, lead.id, "acme")
        assert outcome.result.llm_metadata.model == RULE_BASED_MODEL

    def test_rule_based_only_skips_llm(self, db, lead, now):
        client, factory = _llm_client(CONVERSION_PAYLOAD)
        outcome = _orchestrator(now, client=client).predict(
            db, lead.id, "acme", options=PredictionOptions(rule_based_only=True)
        )
        assert outcome.result.llm_metadata.model == RULE_BASED_MODEL
        factory.assert_not_called()

    def test_cached_prediction_is_reused(self, db, lead, now):
        orchestrator = _orchestrator(now)
        first = orchestrator.predict(db, lead.id, "acme")
        second = orchestrator.predict(db, lead.id, "acme")

        assert second.from_cache is True
        assert second.prediction_id == first.prediction_id
        assert second.result == first.result
        assert db.query(LeadPrediction).count() == 1

    def test_force_refresh_recomputes(self, db, lead, now):
        orchestrator = _orchestrator(now)
        first = orchestrator.predict(db, lead.id, "acme")
        second = orchestrator.predict(db, lead.id, "acme", options=PredictionOptions(force_refresh=True))

        assert second.from_cache is False
        assert second.prediction_id != first.prediction_id
        assert db.query(LeadPrediction).count() == 2

    def test_expired_prediction_is_recomputed(self, db, lead, now):
        clock = MagicMock(return_value=now)
        orchestrator = _orchestrator(now, clock=clock)
        first = orchestrator.predict(db, lead.id, "acme")

        clock.return_value = now + timedelta(days=7)  # exactly valid_until
        second = orchestrator.predict(db, lead.id, "acme")
        assert second.prediction_id != first.prediction_id

    def test_cache_is_per_type(self, db, lead, now):
        orchestrator = _orchestrator(now)
        conversion = orchestrator.predict(db, lead.id, "acme", PredictionType.CONVERSION)
        time_to_close = orchestrator.predict(db, lead.id, "acme", "TIME_TO_CLOSE")
        assert time_to_close.from_cache is False
        assert time_to_close.prediction_id != conversion.prediction_id
        assert time_to_close.result.confidence_interval is not None

    def test_explanation_can_be_omitted(self, db, lead, now):
        outcome = _orchestrator(now).predict(
            db, lead.id, "acme", options=PredictionOptions(include_explanation=False)
        )
        assert outcome.result.explanation == ""
        assert db.get(LeadPrediction, outcome.prediction_id).explanation != ""

    def test_score_and_priority_types(self, db, lead, now):
        orchestrator = _orchestrator(now)
        score = orchestrator.predict(db, lead.id, "acme", PredictionType.SCORE).result
        priority = orchestrator.predict(db, lead.id, "acme", PredictionType.PRIORITY).result

        assert score.predicted_score == score.score_breakdown.total
        assert priority.priority_tier in ("top", "high", "medium", "low")
        assert priority.explanation.startswith(f"Priority score {priority.priority_score}/100")

    def test_cache_hit_restores_type_specific_fields(self, db, lead, now):
        orchestrator = _orchestrator(now)
        orchestrator.predict(db, lead.id, "acme", PredictionType.SCORE)
        cached = orchestrator.predict(db, lead.id, "acme", PredictionType.SCORE)
        assert cached.from_cache is True
        assert cached.result.score_breakdown is not None

    def test_wrong_tenant_is_not_found(self, db, lead, now):
        with pytest.raises(LeadNotFoundError):
            _orchestrator(now).predict(db, lead.id, "globex")

    @pytest.mark.parametrize("lead_id,tenant,prediction_type", [
        (0, "acme", PredictionType.CONVERSION),
        (-4, "acme", PredictionType.CONVERSION),
        (1, "", PredictionType.CONVERSION),
        (1, "acme", "BOGUS"),
    ])
    def test_invalid_input(self, db, now, lead_id, tenant, prediction_type):
        with pytest.raises(InvalidInputError):
            _orchestrator(now).predict(db, lead_id, tenant, prediction_type)


class TestLatestAndFeatures:
    def test_no_prediction_yet(self, db, lead, now):
        assert _orchestrator(now).get_latest(db, lead.id, "acme", PredictionType.CONVERSION) is None

    def test_latest_flags_expiry(self, db, lead, now):
        clock = MagicMock(return_value=now)
        orchestrator = _orchestrator(now, clock=clock)
        outcome = orchestrator.predict(db, lead.id, "acme")

        latest = orchestrator.get_latest(db, lead.id, "acme", "CONVERSION")
        assert latest.id == outcome.prediction_id
        assert latest.is_expired is False
        assert latest.status == "ACTIVE"

        clock.return_value = now + timedelta(days=8)
        assert orchestrator.get_latest(db, lead.id, "acme", "CONVERSION").is_expired is True

    def test_lead_features(self, db, lead, now):
        features = _orchestrator(now).lead_features(db, lead.id, "acme")
        assert features.behavioral.total_activities == 3
        assert features.demographic.title_seniority == "vp"


# ── Orchestrator: bulk ────────────────────────────────────────────────────────

class TestBulkPredict:
    @pytest.fixture
    def leads(self, seed):
        config = seed.config("acme")
        return config, [
            seed.lead(config, email="first@acme.com", score=90),
            seed.lead(config, email="second@acme.com", score=70),
            seed.lead(config, email="third@acme.com", score=50),
        ]

    def test_one_failure_does_not_abort_the_batch(self, db, leads, now):
        config, (first, second, third) = leads
        real_gather = prediction_service.gather_lead_context

        def flaky(db, lead_id, tenant_id, now=None):
            if lead_id == second.id:
                raise RuntimeError("feature store offline")
            return real_gather(db, lead_id, tenant_id, now=now)

        with patch("lead_ml.services.prediction_service.gather_lead_context", side_effect=flaky):
            result = _orchestrator(now).bulk_predict(db, config.id, "acme")

        assert (result.processed, result.successful, result.failed) == (3, 2, 1)
        assert [item.lead_id for item in result.predictions] == [first.id, second.id, third.id]
        assert isinstance(result.predictions[0], Success)
        assert result.predictions[1] == Failure(lead_id=second.id, error="feature store offline")

        payload = result.to_dict()
        assert payload["predictions"][1]["result"] is None
        assert payload["predictions"][0]["result"]["prediction_id"] == result.predictions[0].outcome.prediction_id

    def test_failed_lead_leaves_no_prediction_behind(self, db, leads, now):
        config, (first, second, third) = leads
        real_update = prediction_service.repository.update_lead_conversion_fields

        def failing_update(db, lead_id, probability, predicted_close_date):
            if lead_id == second.id:
                raise RuntimeError("lead row locked")
            return real_update(db, lead_id, probability, predicted_close_date)

        orchestrator = _orchestrator(now)
        with patch.object(prediction_service.repository, "update_lead_conversion_fields", side_effect=failing_update):
            result = orchestrator.bulk_predict(db, config.id, "acme")

        assert (result.processed, result.successful, result.failed) == (3, 2, 1)
        assert result.predictions[1] == Failure(lead_id=second.id, error="lead row locked")

        def stored(lead):
            return db.query(LeadPrediction).filter(LeadPrediction.lead_id == lead.id).count()

        assert (stored(first), stored(second), stored(third)) == (1, 0, 1)
        assert orchestrator.predict(db, second.id, "acme").from_cache is False
        assert orchestrator.predict(db, first.id, "acme").from_cache is True

    def test_limit_and_min_score(self, db, leads, now):
        config, (first, second, _) = leads
        result = _orchestrator(now).bulk_predict(db, config.id, "acme", limit=2, min_score=60)
        assert [item.lead_id for item in result.predictions] == [first.id, second.id]

    def test_second_run_uses_cache(self, db, leads, now):
        config, _ = leads
        orchestrator = _orchestrator(now)
        orchestrator.bulk_predict(db, config.id, "acme")
        again = orchestrator.bulk_predict(db, config.id, "acme")
        assert all(item.outcome.from_cache for item in again.predictions)

    def test_other_tenant_gets_nothing(self, db, leads, now):
        config, _ = leads
        result = _orchestrator(now).bulk_predict(db, config.id, "globex")
        assert (result.processed, result.predictions) == (0, [])

    @pytest.mark.parametrize("kwargs", [{"limit": 0}, {"limit": 101}, {"min_score": -1}, {"min_score": 101}])
    def test_invalid_bounds(self, db, leads, now, kwargs):
        config, _ = leads
        with pytest.raises(InvalidInputError):
            _orchestrator(now).bulk_predict(db, config.id, "acme", **kwargs)
