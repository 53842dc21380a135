"""Helpers for parsing and validating untrusted AI responses."""

from __future__ import annotations

import json
import logging
import re
from typing import TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_INTEGER_RE = re.compile(r"-?\d+")


def strip_code_fences(text: str) -> str:
    content = text.strip()
    if content.startswith("```"):
        lines = content.splitlines()
        if lines:
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        content = "\n".join(lines).strip()
    return content


def parse_json_object(text: str) -> dict | None:
    content = strip_code_fences(text)
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        match = re.search(r"\{[\s\S]*\}", content)
        if not match:
            logger.warning(f"Failed to parse JSON object: {exc}")
            return None
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as inner_exc:
            logger.warning(f"Failed to parse JSON object: {inner_exc}")
            return None
    return data if isinstance(data, dict) else None


def parse_score(text: str | None, *, lower: int = 0, upper: int = 100) -> int | None:
    """
    Extract a bounded integer score from free text.

    Takes the first integer found (so "85/100" reads as 85) and clamps it
    into ``[lower, upper]``. Returns None when no digits are present.
    """
    if not text:
        return None
    content = strip_code_fences(text)
    match = _INTEGER_RE.search(content)
    if not match:
        logger.warning("AI score response contained no integer")
        return None
    return min(max(int(match.group(0)), lower), upper)


def validate_model(model_cls: type[ModelT], data: dict | None) -> ModelT | None:
    if data is None:
        return None
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        logger.warning(f"Model validation failed: {exc}")
        return None
