# SPDX-License-Identifier: Apache-2.0
"""
Tolerant JSON extraction from free-form oracle text.

Oracles wrap JSON in prose and markdown fences. Extraction never raises; it
returns an :class:`Extracted` whose ``ok`` flag tells the caller whether a
value was recovered, and whose ``reason`` names the failure otherwise.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Type, TypeVar

from pydantic import BaseModel, ValidationError

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class Extracted:
    ok: bool
    value: Any = None
    reason: str = ""

    @classmethod
    def success(cls, value: Any) -> "Extracted":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: str) -> "Extracted":
        return cls(ok=False, reason=reason)


def _candidate_texts(text: str) -> list[str]:
    texts = [match.strip() for match in _FENCE_RE.findall(text)]
    texts.append(text.strip())
    return [item for item in texts if item]


def _scan(text: str, opener: str, expected: type) -> Any:
    decoder = json.JSONDecoder()
    index = text.find(opener)
    while index != -1:
        try:
            value, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, expected):
            return value
        index = text.find(opener, index + 1)
    return None


def _extract(text: str | None, opener: str, expected: type, label: str) -> Extracted:
    if not isinstance(text, str) or not text.strip():
        return Extracted.failure("empty_response")
    for candidate in _candidate_texts(text):
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            value = None
        if not isinstance(value, expected):
            value = _scan(candidate, opener, expected)
        if isinstance(value, expected):
            return Extracted.success(value)
    return Extracted.failure(f"no_json_{label}")


def extract_json_object(text: str | None) -> Extracted:
    return _extract(text, "{", dict, "object")


def extract_json_array(text: str | None) -> Extracted:
    return _extract(text, "[", list, "array")


def parse_model(text: str | None, model: Type[ModelT]) -> Extracted:
    """Extract a JSON object and validate it against ``model``."""
    extracted = extract_json_object(text)
    if not extracted.ok:
        return extracted
    try:
        return Extracted.success(model.model_validate(extracted.value))
    except ValidationError as exc:
        fields = sorted({".".join(str(part) for part in err["loc"]) or "<root>" for err in exc.errors()})
        return Extracted.failure(f"schema_invalid:{','.join(fields)}")


__all__ = ["Extracted", "extract_json_array", "extract_json_object", "parse_model"]
