"""
lead_ml/ai_engine/sanitizer.py — Prompt-injection defence for interpolated lead data.

Every piece of user-supplied text that ends up inside an LLM prompt passes
through one of the safe_* functions below. Nothing else in the codebase
escapes prompt content.
"""

import re
from typing import Optional

# C0 controls except \t \n \r (those are escaped, not dropped), plus DEL
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

_JSON_ESCAPES = (
    ("\\", "\\\\"),
    ('"', '\\"'),
    ("\n", "\\n"),
    ("\r", "\\r"),
    ("\t", "\\t"),
)

# Sequences models tend to treat as section or role delimiters
_DELIMITERS = (
    ("```", "'''"),
    ('"""', "'''"),
    ("###", "---"),
    ("<|", "< |"),
    ("|>", "| >"),
    ("[[", "[ ["),
    ("]]", "] ]"),
    ("<<", "< <"),
    (">>", "> >"),
)


def escape_prompt_content(value: Optional[str], max_length: int = 1000) -> str:
    """
    Make arbitrary text safe to interpolate into a prompt.

    Control characters are removed, quotes/backslashes/whitespace escapes are
    JSON-escaped, delimiter sequences are broken up, and the result is cut to
    max_length characters (no ellipsis).
    """
    if not value:
        return ""

    text = _CONTROL_CHARS.sub("", str(value))
    for raw, escaped in _JSON_ESCAPES:
        text = text.replace(raw, escaped)
    for raw, neutral in _DELIMITERS:
        text = text.replace(raw, neutral)

    return text[:max_length]


def safe_email(value: Optional[str]) -> str:
    return escape_prompt_content(value, max_length=254)


def safe_name(value: Optional[str], default: str = "Unknown") -> str:
    return escape_prompt_content(value or default, max_length=200)


def safe_company(value: Optional[str], default: str = "Unknown") -> str:
    return escape_prompt_content(value or default, max_length=200)


def safe_title(value: Optional[str], default: str = "Unknown") -> str:
    return escape_prompt_content(value or default, max_length=200)


def safe_phone(value: Optional[str], default: str = "Not provided") -> str:
    return escape_prompt_content(value or default, max_length=50)


def safe_pipeline_stage(value: Optional[str], default: str = "Not in pipeline") -> str:
    return escape_prompt_content(value or default, max_length=100)


def safe_event_type(value: Optional[str]) -> str:
    """Activity types can be user-defined event names."""
    return escape_prompt_content(value, max_length=100)


def safe_free_text(value: Optional[str]) -> str:
    """Score-history reasons, sequence names and similar short free text."""
    return escape_prompt_content(value, max_length=200)


def safe_score_level(value: Optional[str], default: str = "UNKNOWN") -> str:
    """Score levels can arrive from stored score-history JSON."""
    return escape_prompt_content(value or default, max_length=20)
