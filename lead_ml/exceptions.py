"""
lead_ml/exceptions.py — Error types raised by the prediction core.

NotFound and InvalidInput errors surface to callers (the API maps them to
404 / 400). LLM errors are recovered inside the predictor fallback and never
reach a prediction caller.
"""


class LeadMLError(Exception):
    """Base class for all lead-ml errors."""


class LeadNotFoundError(LeadMLError, LookupError):
    def __init__(self, lead_id: int, tenant_id: str | None = None):
        self.lead_id = lead_id
        self.tenant_id = tenant_id
        super().__init__(f"Lead not found or access denied: {lead_id}")


class PredictionNotFoundError(LeadMLError, LookupError):
    def __init__(self, prediction_id: int):
        self.prediction_id = prediction_id
        super().__init__(f"Prediction not found: {prediction_id}")


class InvalidInputError(LeadMLError, ValueError):
    """Rejected request parameters, raised before any computation."""


class LLMUnavailableError(LeadMLError):
    """No LLM credentials configured, or LLM use disabled."""


class LLMResponseError(LeadMLError):
    """The LLM answered, but not with JSON matching the requested schema."""
