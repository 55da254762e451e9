"""
QuizMaster - Response Parser
Turns the extraction service's raw text into a validated ExtractedResult.

Tolerated noise, tried in order:
  1. a fenced code block (```json ... ```), or the bare trimmed text
  2. the span from the first '{' to the last '}'
Anything else is a MalformedResponseError. Missing or mistyped fields are a
ValidationError; no defaults are substituted here.
"""

import json
import logging
import math
import re
from typing import Optional

from quizmaster.exceptions import MalformedResponseError, ValidationError
from quizmaster.models import ExtractedResult

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[A-Za-z0-9_+-]*[ \t]*\r?\n?(.*?)\r?\n?```$", re.DOTALL)


def parse_response(raw_text: str) -> ExtractedResult:
    data = extract_json_object(raw_text)
    return validate_result(data)


def extract_json_object(raw_text: str) -> dict:
    text = (raw_text or "").strip()

    fenced = _FENCE_RE.match(text)
    candidate = fenced.group(1).strip() if fenced else text
    data = _loads_object(candidate)
    if data is not None:
        return data

    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        data = _loads_object(text[first:last + 1])
        if data is not None:
            return data

    logger.warning("Could not recover JSON from AI response. Raw: %s", (raw_text or "")[:200])
    raise MalformedResponseError(raw_text)


def validate_result(data: dict) -> ExtractedResult:
    for key in ("studentName", "score", "totalMarks", "subject"):
        if key not in data or data[key] is None:
            raise ValidationError(f"Missing required field '{key}'", field=key)

    for key in ("studentName", "subject"):
        if not isinstance(data[key], str):
            raise ValidationError(f"Field '{key}' must be a string", field=key)

    for key in ("score", "totalMarks"):
        if not _is_number(data[key]):
            raise ValidationError(f"Field '{key}' must be numeric, got {data[key]!r}", field=key)

    return ExtractedResult(
        student_name=data["studentName"],
        score=data["score"],
        total_marks=data["totalMarks"],
        subject=data["subject"],
    )


def _loads_object(text: str) -> Optional[dict]:
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _is_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)
