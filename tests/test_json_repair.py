import json

import pytest

from regextract.errors import MalformedOutputError
from regextract.utils.json_repair import (
    parse_json,
    parse_json_array,
    repair_json,
    repair_json_array,
    repair_json_object,
    salvage_objects,
    strip_code_fences,
)

SAMPLES = [
    '{"a": 1}',
    '```json\n{"a": 1}\n```',
    "```\n[1, 2, 3]\n```",
    '{"a": [1, 2,], "b": {"c": 3,},}',
    'Here is the result: {"title": "Doc", "sections": []} Hope this helps!',
    '[{"a": 1}, {"a": 2}, {"a": 3',
    '{"title": "X", "sections": [{"section_number": "1"}, {"section_number": "2", "ti',
    "no json here at all",
    '{"broken": "unterminated',
    "",
]


def test_strip_code_fences_handles_language_tags():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences("```\n[]\n```") == "[]"
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


@pytest.mark.parametrize("text", SAMPLES)
def test_repair_is_idempotent(text):
    once = repair_json(text)
    assert repair_json(once) == once


@pytest.mark.parametrize("text", SAMPLES)
def test_repair_is_sound(text):
    repaired = repair_json(text)
    try:
        json.loads(repaired)
    except ValueError:
        assert repaired == text


def test_trailing_commas_are_removed():
    assert json.loads(repair_json('{"a": [1, 2,], "b": {"c": 3,},}')) == {"a": [1, 2], "b": {"c": 3}}


def test_prose_around_the_payload_is_dropped():
    data = json.loads(repair_json_object('Sure! {"title": "Doc", "sections": []} Done.'))
    assert data == {"title": "Doc", "sections": []}


def test_truncated_array_keeps_complete_elements():
    data = json.loads(repair_json_array('[{"a": 1}, {"a": 2}, {"a": 3'))
    assert data[:2] == [{"a": 1}, {"a": 2}]


def test_truncated_object_keeps_first_complete_section():
    text = '{"title": "X", "sections": [{"section_number": "1", "title": "A"}, {"section_number": "2", "ti'
    data = json.loads(repair_json_object(text))
    assert data["title"] == "X"
    assert data["sections"][0] == {"section_number": "1", "title": "A"}


def test_brackets_inside_strings_do_not_confuse_truncation_repair():
    text = '[{"text": "see clause [3] {draft}"}, {"text": "cut'
    assert json.loads(repair_json_array(text)) == [{"text": "see clause [3] {draft}"}]


def test_salvage_collects_independent_objects():
    text = 'first {"a": 1} then "quoted" prose {"b": 2} and {"broken": }'
    assert json.loads(salvage_objects(text)) == [{"a": 1}, {"b": 2}]


def test_unrepairable_text_is_returned_unchanged():
    assert repair_json("no json here at all") == "no json here at all"


def test_parse_json_raises_with_preview():
    with pytest.raises(MalformedOutputError) as info:
        parse_json("x" * 800)
    assert info.value.preview == "x" * 500


def test_parse_json_array_unwraps_envelopes():
    assert parse_json_array('{"obligations": [{"a": 1}]}', key="obligations") == [{"a": 1}]
    assert parse_json_array('{"a": 1}') == [{"a": 1}]
    assert parse_json_array("[]") == []
