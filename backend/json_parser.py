"""
Timewise - JSON extraction from LLM text
Multi-strategy parsing for models that answer in prose instead of a tool call
"""

import json
import re
from typing import Any, Optional

from json_repair import repair_json

from logger import get_logger

logger = get_logger("json_parser")

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_SPAN_RE = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")

_QUOTE_MAP = str.maketrans({
    "“": '"', "”": '"', "‘": "'", "’": "'",
})


def parse_json_from_response(response: Any) -> Optional[Any]:
    """
    Parse a JSON value out of an LLM text response.

    Strategies, in order: direct parse, fenced code block, first {...} or [...]
    span, then json-repair on the best candidate.

    Returns:
        The parsed value, or None if nothing could be recovered
    """
    if not isinstance(response, str):
        logger.warning(f"Response is not string type: {type(response)}")
        return None

    response = response.strip().translate(_QUOTE_MAP)
    if not response:
        return None

    try:
        return json.loads(response)
    except json.JSONDecodeError:
        pass

    candidate = response
    match = _FENCE_RE.search(response)
    if match:
        candidate = match.group(1).strip()
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            logger.debug("Fenced block is not valid JSON")

    match = _SPAN_RE.search(candidate)
    if match:
        candidate = match.group(0)
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            logger.debug("Bracketed span is not valid JSON")

    # json-repair returns "" when there is nothing JSON-like to repair
    try:
        repaired = repair_json(candidate, return_objects=True)
    except Exception as e:
        logger.debug(f"json-repair failed: {e}")
        repaired = None
    if repaired not in (None, "", [], {}):
        logger.warning("Recovered JSON with json-repair (may be incomplete)")
        return repaired

    logger.error(f"Unable to parse JSON from response: {response[:500]}")
    return None
