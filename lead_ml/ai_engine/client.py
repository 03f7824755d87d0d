"""
lead_ml/ai_engine/client.py — The LLM capability used by predictors and the ranker.

LLMClient wraps a LangChain chat model with:
  - an availability check (credentials present and LLM use enabled)
  - a bounded per-request timeout
  - tenacity retries on transient transport errors only
  - JSON extraction and usage/cost accounting

Every failure mode surfaces as an exception; callers decide whether to fall back.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

import openai
from langchain_core.messages import BaseMessage
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from lead_ml.ai_engine.utils import build_openrouter_llm, parse_json_safely, truncate_for_context
from lead_ml.config import settings
from lead_ml.exceptions import LLMResponseError, LLMUnavailableError

logger = logging.getLogger(__name__)

# APITimeoutError subclasses APIConnectionError
TRANSIENT_ERRORS = (openai.APIConnectionError, openai.RateLimitError)


@dataclass
class LLMUsage:
    model: str
    total_tokens: int
    estimated_cost: float


@dataclass
class LLMResult:
    data: dict[str, Any]
    usage: LLMUsage
    latency_ms: int


class LLMClient:
    """Chat-completion capability returning parsed JSON objects."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        enabled: Optional[bool] = None,
        timeout_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        cost_per_1k_tokens: Optional[float] = None,
        llm_factory: Callable[..., Any] = build_openrouter_llm,
        wait: Any = None,
    ):
        self.api_key = api_key if api_key is not None else settings.openrouter_api_key
        self.model = model or settings.openrouter_model
        self.enabled = settings.use_llm_predictions if enabled is None else enabled
        self.timeout_seconds = timeout_seconds or settings.llm_timeout_seconds
        self.max_attempts = max_attempts or settings.llm_max_attempts
        self.cost_per_1k_tokens = (
            settings.llm_cost_per_1k_tokens if cost_per_1k_tokens is None else cost_per_1k_tokens
        )
        self._llm_factory = llm_factory
        self._wait = wait if wait is not None else wait_exponential(multiplier=0.5, min=0.5, max=4)

    def available(self) -> bool:
        return bool(self.enabled and self.api_key)

    def _invoke(self, llm: Any, messages: Sequence[BaseMessage]) -> Any:
        retryer = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        )
        return retryer(llm.invoke, list(messages))

    def estimate_cost(self, total_tokens: int) -> float:
        return round(total_tokens / 1000 * self.cost_per_1k_tokens, 6)

    def complete_json(
        self,
        messages: Sequence[BaseMessage],
        temperature: float,
        max_tokens: int,
    ) -> LLMResult:
        """
        Send the messages and parse the reply as a JSON object.

        Raises:
            LLMUnavailableError: no credentials, or LLM use disabled.
            LLMResponseError:    the reply is not a JSON object.
            openai.OpenAIError:  transport failure after the last attempt (including timeouts).
        """
        if not self.available():
            raise LLMUnavailableError("LLM capability is not configured")

        llm = self._llm_factory(
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=self.timeout_seconds,
            model=self.model,
            api_key=self.api_key,
        )

        started = time.monotonic()
        response = self._invoke(llm, messages)
        latency_ms = int((time.monotonic() - started) * 1000)

        raw_text = response.content if hasattr(response, "content") else str(response)
        parsed = parse_json_safely(raw_text)
        if not isinstance(parsed, dict):
            raise LLMResponseError(
                f"Expected a JSON object, got: {truncate_for_context(str(raw_text), max_chars=200)}"
            )

        usage_metadata = getattr(response, "usage_metadata", None) or {}
        total_tokens = int(usage_metadata.get("total_tokens", 0) or 0)
        response_metadata = getattr(response, "response_metadata", None) or {}
        model_name = response_metadata.get("model_name") or self.model

        logger.debug("LLM call to %s: %d tokens in %dms", model_name, total_tokens, latency_ms)
        return LLMResult(
            data=parsed,
            usage=LLMUsage(
                model=model_name,
                total_tokens=total_tokens,
                estimated_cost=self.estimate_cost(total_tokens),
            ),
            latency_ms=latency_ms,
        )
