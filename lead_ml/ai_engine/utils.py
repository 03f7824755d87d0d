"""
lead_ml/ai_engine/utils.py — Shared AI helper utilities.

Provides:
  - build_openrouter_llm()  : factory for the LangChain-compatible OpenRouter LLM
  - parse_json_safely()     : robust JSON extraction from messy LLM text
  - truncate_for_context()  : trim long strings to fit the LLM context window
"""

import json
import logging
import re
from typing import Any, Optional

from langchain_openai import ChatOpenAI

from lead_ml.config import settings

logger = logging.getLogger(__name__)

# OpenRouter's base URL (drop-in OpenAI-compatible API)
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def build_openrouter_llm(
    temperature: float = 0.3,
    max_tokens: Optional[int] = None,
    timeout: Optional[float] = None,
    model: Optional[str] = None,
    api_key: Optional[str] = None,
) -> ChatOpenAI:
    """
    Build a LangChain ChatOpenAI client pointed at OpenRouter.

    Args:
        model, api_key: Override settings.openrouter_model / openrouter_api_key.
        temperature: Low values (0.1–0.3) keep structured JSON output stable.
        max_tokens:  Completion budget; defaults to settings.llm_max_tokens.
        timeout:     Hard per-request timeout in seconds; defaults to
                     settings.llm_timeout_seconds.

    Returns:
        A LangChain-compatible chat model. Retries are disabled here because
        LLMClient owns the retry policy.
    """
    return ChatOpenAI(
        model=model or settings.openrouter_model,
        api_key=api_key or settings.openrouter_api_key,
        base_url=OPENROUTER_BASE_URL,
        temperature=temperature,
        max_tokens=max_tokens or settings.llm_max_tokens,
        timeout=timeout or settings.llm_timeout_seconds,
        max_retries=0,
        default_headers={
            "HTTP-Referer": "https://github.com/lead-ml/lead-ml-predictor",
            "X-Title": "Lead ML Predictor",
        },
    )


def parse_json_safely(text: str) -> dict[str, Any] | list[Any] | None:
    """
    Robustly extract and parse a JSON object or array from LLM output.

    Handles cases where the LLM wraps JSON in markdown code fences like:
        ```json
        { ... }
        ```

    Returns the parsed Python object, or None if parsing fails.
    """
    if not text:
        return None

    # Strip markdown code fences (```json ... ``` or ``` ... ```)
    cleaned = re.sub(r"```(?:json)?\s*([\s\S]*?)```", r"\1", text.strip())
    cleaned = cleaned.strip()

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Fall back to the outermost {...} or [...]
    for pattern in (r"\{[\s\S]*\}", r"\[[\s\S]*\]"):
        match = re.search(pattern, cleaned)
        if match:
            try:
                return json.loads(match.group())
            except json.JSONDecodeError:
                continue

    logger.warning("Could not parse JSON from LLM output: %s", text[:200])
    return None


def truncate_for_context(text: Optional[str], max_chars: int = 2000) -> str:
    """
    Trim a string to max_chars to avoid exceeding the LLM context window.
    Appends '...' if truncated.
    """
    if not text or len(text) <= max_chars:
        return text or ""
    return text[:max_chars] + "..."
