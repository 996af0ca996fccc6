"""Tests for claims_backend.analysis.normalizer."""
from __future__ import annotations

import pytest

from claims_backend.analysis.normalizer import (
    UNLIMITED_COVERAGE,
    clean_json_response,
    coverage_amount,
    normalize_damage_type,
    normalize_repair_complexity,
    normalize_severity,
    parse_cost,
)


class TestCleanJsonResponse:

    def test_strips_json_fence(self):
        assert clean_json_response('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_strips_bare_fence(self):
        assert clean_json_response('```\n[1, 2]\n```') == "[1, 2]"

    def test_plain_text_unchanged(self):
        assert clean_json_response('  {"a": 1}  ') == '{"a": 1}'

    def test_none(self):
        assert clean_json_response(None) == ""


@pytest.mark.parametrize("raw, expected", [
    ("minor", "minor"),
    ("Light", "minor"),
    ("medium", "moderate"),
    ("HEAVY", "severe"),
    ("major", "severe"),
    ("totaled", "total_loss"),
    ("Total Loss", "total_loss"),
    ("write-off", "total_loss"),
    (None, "moderate"),
    ("", "moderate"),
    ("catastrophic-ish", "moderate"),
])
def test_normalize_severity(raw, expected):
    assert normalize_severity(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("collision", "collision"),
    ("Rear-End", "collision"),
    ("rear collision with barrier", "collision"),
    ("hail", "weather"),
    ("severe storm damage", "weather"),
    ("fire", "comprehensive"),
    ("keyed by vandals", "vandalism"),
    ("theft", "unknown"),
    ("alien abduction", "unknown"),
    (None, "unknown"),
])
def test_normalize_damage_type(raw, expected):
    assert normalize_damage_type(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("easy", "simple"),
    ("Complicated", "complex"),
    ("significant", "extensive"),
    ("requires major bodywork", "extensive"),
    ("hard to say", "moderate"),
    (None, "moderate"),
])
def test_normalize_repair_complexity(raw, expected):
    assert normalize_repair_complexity(raw) == expected


class TestParseCost:

    @pytest.mark.parametrize("raw, expected", [
        (1200, 1200.0),
        (99.5, 99.5),
        ("$1,200", 1200.0),
        ("$500 - $800", 650.0),
        ("about 300 dollars", 300.0),
        (-50, 0.0),
    ])
    def test_values(self, raw, expected):
        assert parse_cost(raw) == expected

    @pytest.mark.parametrize("raw", [None, True, "unknown", ""])
    def test_nothing_numeric(self, raw):
        assert parse_cost(raw) is None


class TestCoverageAmount:

    @pytest.mark.parametrize("raw", ["Unlimited", "Actual Cash Value", "ACV", "market value", "None"])
    def test_unlimited_terms(self, raw):
        assert coverage_amount(raw) == UNLIMITED_COVERAGE

    @pytest.mark.parametrize("raw, expected", [
        ("N/A", 0.0),
        ("", 0.0),
        (None, 0.0),
        ("$25,000", 25000.0),
        (50000, 50000.0),
    ])
    def test_amounts(self, raw, expected):
        assert coverage_amount(raw) == expected
