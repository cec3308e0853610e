# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from seedforge.runtime.evolution.dual_review import EvaluatorVerdictModel
from seedforge.runtime.intelligence.json_extract import extract_json_array, extract_json_object, parse_model


def test_fenced_object() -> None:
    result = extract_json_object('Here you go:\n```json\n{"a": 1}\n```\nAnything else?')

    assert result.ok
    assert result.value == {"a": 1}


def test_object_embedded_in_prose() -> None:
    result = extract_json_object('Sure! use {x} first, then {"a": {"b": 2}} and done')

    assert result.value == {"a": {"b": 2}}


def test_object_inside_array() -> None:
    assert extract_json_object('[{"a": 1}]').value == {"a": 1}


def test_failures_are_named() -> None:
    assert extract_json_object("").reason == "empty_response"
    assert extract_json_object(None).reason == "empty_response"
    assert extract_json_object("no structure here").reason == "no_json_object"
    assert extract_json_array('{"a": 1}').reason == "no_json_array"


def test_array_extraction() -> None:
    result = extract_json_array('Findings:\n[{"category": "performance"}, {"category": "learning"}]')

    assert result.ok
    assert [item["category"] for item in result.value] == ["performance", "learning"]


def test_parse_model_reports_invalid_fields() -> None:
    result = parse_model('{"score": 11, "approve": "true"}', EvaluatorVerdictModel)

    assert not result.ok
    assert result.reason == "schema_invalid:approve,score"


def test_parse_model_success() -> None:
    result = parse_model('```\n{"risks": ["none"], "score": 9, "approve": true}\n```', EvaluatorVerdictModel)

    assert result.ok
    assert result.value.approve is True
    assert result.value.score == 9
