"""
json_repair.py — Salvage JSON from free-text Gemini responses.

Gemini is asked for "ONLY valid JSON" but regularly answers with markdown
fences, smart quotes, stray control characters, trailing commas, or a
response cut off at the token limit. repair_and_parse_json() runs a fixed
sequence of small cleanup passes, each aimed at one of those failure
modes, and stops at the first one that yields parseable JSON.

The result is all-or-nothing: a parsed value, or None. No schema checks
happen here; routes validate the shape they expect.

Not handled: unescaped double quotes inside string values. Fixing those
safely needs a real tokenizer.
"""

import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

_FENCE_LANG_RE = re.compile(r"```json\s*", re.IGNORECASE)
_FENCE_RE = re.compile(r"```\s*")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
# Only the curly glyphs: a plain ASCII apostrophe inside a word is valid JSON text
_SMART_DOUBLE_RE = re.compile("[“”„‟]")
_SMART_SINGLE_RE = re.compile("[‚‛‘’]")
_LINE_BREAKS_RE = re.compile(r"[\r\n\t]+")
_MULTI_SPACE_RE = re.compile(r"  +")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


# ── Repair passes ─────────────────────────────────────────────────────────────

def strip_code_fences(text: str) -> str:
    """Remove ``` fences (with or without a json tag) and stray backticks."""
    text = _FENCE_LANG_RE.sub("", text)
    text = _FENCE_RE.sub("", text)
    return text.replace("`", "")


def isolate_object(text: str) -> Optional[str]:
    """Slice from the first '{' to the last '}'; None if there is no such span."""
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last == -1 or last < first:
        return None
    return text[first : last + 1]


def strip_control_chars(text: str) -> str:
    return _CONTROL_CHARS_RE.sub("", text)


def normalize_quotes(text: str) -> str:
    """Map curly double quotes to '"' and curly single quotes to "'"."""
    text = _SMART_DOUBLE_RE.sub('"', text)
    return _SMART_SINGLE_RE.sub("'", text)


def normalize_whitespace(text: str) -> str:
    """Collapse newlines and tabs to spaces, then squeeze repeated spaces."""
    text = _LINE_BREAKS_RE.sub(" ", text)
    return _MULTI_SPACE_RE.sub(" ", text)


def strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def close_truncated(text: str) -> str:
    """
    Balance a response that was cut off mid-structure.

    Appends the missing ']' first, then the missing '}', and drops any
    comma left dangling in front of the new closers.
    """
    missing_brackets = text.count("[") - text.count("]")
    missing_braces = text.count("{") - text.count("}")
    fixed = text + "]" * max(missing_brackets, 0) + "}" * max(missing_braces, 0)
    return strip_trailing_commas(fixed)


# ── Pipeline ──────────────────────────────────────────────────────────────────

def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant: {name}")


def _try_parse(text: str) -> tuple[bool, Any]:
    try:
        # NaN / Infinity are not JSON and cannot be sent back to clients
        return True, json.loads(text, parse_constant=_reject_constant)
    except (json.JSONDecodeError, TypeError, ValueError, RecursionError):
        return False, None


def repair_and_parse_json(text: str) -> Any:
    """
    Parse *text* as JSON, repairing common LLM output damage on the way.

    Returns the parsed value, or None when nothing JSON-shaped can be
    recovered. Never raises.
    """
    if not isinstance(text, str):
        logger.warning("Expected str for JSON repair, got %s", type(text).__name__)
        return None

    ok, value = _try_parse(text)
    if ok:
        return value

    body = isolate_object(strip_code_fences(text))
    if body is None:
        logger.error("No JSON object found in response")
        return None

    cleaned = strip_control_chars(body)
    cleaned = normalize_quotes(cleaned)
    cleaned = normalize_whitespace(cleaned)
    cleaned = strip_trailing_commas(cleaned)

    ok, value = _try_parse(cleaned)
    if ok:
        return value

    logger.debug("Cleaned JSON still invalid, assuming truncation")
    ok, value = _try_parse(close_truncated(cleaned))
    if ok:
        return value

    logger.error("JSON repair failed after all attempts (cleaned length: %d)", len(cleaned))
    return None
