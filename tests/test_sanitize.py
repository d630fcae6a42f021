import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from toolmanager.core.errors import ParseFatal
from toolmanager.core.sanitize import parse_sanitized, sanitize


def test_nan_value_becomes_null():
    assert sanitize('{"a": NaN, "b": 3}') == '{"a": null, "b": 3}'


def test_infinity_variants_in_arrays_and_objects():
    assert sanitize("[Infinity, -Infinity]") == "[null, null]"
    assert sanitize('{"x": -Infinity }') == '{"x": null }'
    assert sanitize('{"x": NaN\n}') == '{"x": null\n}'


def test_text_inside_strings_is_left_alone():
    raw = '{"note": "NaN, Infinity]", "v": NaN}'
    assert sanitize(raw) == '{"note": "NaN, Infinity]", "v": null}'

    escaped = '{"note": "say \\"NaN\\", ok", "v": 1}'
    assert sanitize(escaped) == escaped


def test_clean_text_is_returned_unchanged():
    raw = '{"operations": [{"toolName": "RT-1", "operationTime": 5}]}'
    assert sanitize(raw) is raw
    assert sanitize("") == ""


def test_tokens_outside_value_position_are_not_touched():
    raw = '{"a": NaNx, "b": xNaN}'
    assert sanitize(raw) == raw


@pytest.mark.parametrize(
    "raw",
    [
        '{"a": NaN, "b": [Infinity, 1, -Infinity]}',
        '{"s": "NaN,", "t": NaN}',
        "[]",
        "not json at all NaN",
    ],
)
def test_sanitize_is_idempotent(raw):
    once = sanitize(raw)
    assert sanitize(once) == once


def test_parse_sanitized_returns_python_values():
    parsed = parse_sanitized('{"machine": "DMU", "operations": [{"maxFeed": NaN, "operationTime": 4}]}')
    assert parsed["operations"][0]["maxFeed"] is None
    assert parsed["operations"][0]["operationTime"] == 4


def test_parse_sanitized_raises_parse_fatal_with_position():
    with pytest.raises(ParseFatal) as excinfo:
        parse_sanitized('{"a": 1,\n "b": }')
    assert excinfo.value.line == 2


def test_leftover_literal_is_fatal():
    with pytest.raises(ParseFatal):
        parse_sanitized('{"a": NaNx}')
