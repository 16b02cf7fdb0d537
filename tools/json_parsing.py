"""Tolerant JSON extraction from generation-call responses.

Extraction answers are supposed to be a bare JSON object but routinely come
back wrapped in markdown fences, preceded by chatter, or with raw newlines
inside string values. Parsing tries, in order: the whole text, the first
fenced block, then the span from the first "{" to the last "}".
"""

import json
import re

from config.exceptions import LLMResponseParseError

# Precompiled regex for JSON extraction
_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)

# Lenient decoder that allows control characters (raw newlines, tabs) inside
# JSON strings.
_LENIENT_DECODER = json.JSONDecoder(strict=False)


def _try_loads(text: str):
    """Try parsing JSON, first strictly then leniently."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    return _LENIENT_DECODER.decode(text)


def _candidates(text: str):
    yield text
    match = _JSON_FENCE_RE.search(text)
    if match:
        yield match.group(1).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        yield text[start:end + 1]


def parse_json_object(text: str) -> dict:
    """Extract and parse a JSON object from response text.

    Raises:
        LLMResponseParseError: If no candidate span decodes to a JSON object.
    """
    if not text or not text.strip():
        raise LLMResponseParseError("Empty response", raw_response=text or "")

    text = text.strip()
    for candidate in _candidates(text):
        try:
            result = _try_loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(result, dict):
            return result

    raise LLMResponseParseError(
        f"Failed to parse JSON object from response: {text[:200]}...",
        raw_response=text,
    )
