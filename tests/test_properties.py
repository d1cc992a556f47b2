"""Tests for typed property extraction from document metadata."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from astral.config import default_object_types
from astral.models import (
    BooleanValue,
    DateValue,
    NumberValue,
    RelationValue,
    StringListValue,
    TextValue,
)
from astral.properties import coerce_value, extract_properties, infer_property_type, parse_date


def _type(type_id: str):
    return next(t for t in default_object_types() if t.id == type_id)


class TestInference:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (True, "boolean"),
            (3, "number"),
            (2.5, "number"),
            ("2024-01-15", "date"),
            ("2024-01-15T10:30:00Z", "date"),
            (date(2024, 1, 15), "date"),
            ("https://example.com", "url"),
            ("ada@example.com", "email"),
            (["a", "b"], "multiselect"),
            ("hello", "text"),
            ("2024-13-45", "text"),
        ],
    )
    def test_infer_property_type(self, value, expected):
        assert infer_property_type(value) == expected

    def test_parse_date_rejects_impossible_dates(self):
        assert parse_date("2024-02-30") is None
        assert parse_date("2024-02-28") == date(2024, 2, 28)
        assert isinstance(parse_date("2024-02-28 08:00"), datetime)


class TestCoercion:
    def test_unparseable_date_stays_text(self):
        assert coerce_value("2024-13-45", "date") == TextValue(value="2024-13-45")

    def test_arrays_become_string_lists(self):
        assert coerce_value([1, 2.5, None, "x"], "multiselect") == StringListValue(value=["1", "2.5", "x"])

    def test_number_from_string(self):
        assert coerce_value("4", "rating") == NumberValue(value=4)
        assert coerce_value("four", "rating") == TextValue(value="four")

    def test_boolean_from_string(self):
        assert coerce_value("yes", "boolean") == BooleanValue(value=True)

    def test_relation_strips_wikilinks(self):
        value = coerce_value(["[[Frank Herbert]]", "Brian Herbert"], "relation")

        assert isinstance(value, RelationValue)
        assert [(ref.id, ref.title) for ref in value.value] == [("", "Frank Herbert"), ("", "Brian Herbert")]


class TestExtractProperties:
    def test_reserved_and_null_keys_are_skipped(self):
        metadata = {"type": "book", "title": "Dune", "tags": ["x"], "id": "42", "notes": None}

        extraction = extract_properties(metadata, _type("book"))

        assert extraction.values == {}
        assert extraction.new_properties == []

    def test_existing_property_matched_by_name_ignoring_case(self):
        extraction = extract_properties({"RATING": "5", "Status": "Read"}, _type("book"))

        assert extraction.values["rating"] == NumberValue(value=5)
        assert extraction.values["status"] == TextValue(value="Read")
        assert extraction.new_properties == []

    def test_unknown_keys_create_definitions(self):
        metadata = {"Pages": 412, "Started": "2024-03-01", "Website": "https://dune.com", "Genres": ["scifi"]}

        extraction = extract_properties(metadata, _type("book"))

        assert [(p.id, p.name, p.type) for p in extraction.new_properties] == [
            ("pages", "Pages", "number"),
            ("started", "Started", "date"),
            ("website", "Website", "url"),
            ("genres", "Genres", "multiselect"),
        ]
        assert extraction.values["started"] == DateValue(value=date(2024, 3, 1))
        assert extraction.values["genres"] == StringListValue(value=["scifi"])

    def test_each_new_key_defined_once(self):
        extraction = extract_properties({"Mood": "calm", "mood": "busy"}, None)

        assert [p.id for p in extraction.new_properties] == ["mood"]
        assert extraction.values["mood"] == TextValue(value="busy")
