"""
Tests for free-text intake parsing.
"""

from vitaltrend.intake.parser import IntakeParser, parse_date_phrase, parse_query
from vitaltrend.models.params import DEFAULT_COUNT, DEFAULT_MAX_ITEMS
from vitaltrend.models.state import Route

SYSTOLIC = "http://loinc.org|8480-6"
DIASTOLIC = "http://loinc.org|8462-4"
HEART_RATE = "http://loinc.org|8867-4"


class TestIntakeParser:
    """Test parameter extraction from query text."""

    def test_patient_codes_and_since(self):
        """Test the canonical fetch query."""
        result = parse_query("patient abc-1 blood pressure since 2024-01-01")

        assert result.params.patient_id == "abc-1"
        assert result.params.codes == {SYSTOLIC, DIASTOLIC}
        assert result.params.since == "2024-01-01T00:00:00.000Z"
        assert result.route_hint == Route.FETCH

    def test_defaults_always_present(self):
        result = parse_query("hello")

        assert result.params.count == DEFAULT_COUNT
        assert result.params.max_items == DEFAULT_MAX_ITEMS
        assert result.params.patient_id is None
        assert result.params.codes is None
        assert result.route_hint == Route.UNKNOWN

    def test_explicit_count_and_max_items(self):
        result = parse_query("patient p1 pulse count=50 max items 75")

        assert result.params.count == 50
        assert result.params.max_items == 75

    def test_zero_count_falls_back_to_default(self):
        result = parse_query("patient p1 pulse count=0")
        assert result.params.count == DEFAULT_COUNT

    def test_pid_prefix(self):
        result = parse_query("pid: 42 heart rate")

        assert result.params.patient_id == "42"
        assert result.params.codes == {HEART_RATE}

    def test_patient_token_trailing_punctuation(self):
        result = parse_query("show spo2 for patient xyz-9.")
        assert result.params.patient_id == "xyz-9"

    def test_literal_loinc_code(self):
        result = parse_query("patient p1 code 8310-5")
        assert result.params.codes == {"http://loinc.org|8310-5"}

    def test_loinc_not_matched_inside_dates(self):
        """Test that date fragments are never read as codes."""
        result = parse_query("patient p1 since 2024-01-01 until 2024-02-15")

        assert result.params.codes is None
        assert result.params.since == "2024-01-01T00:00:00.000Z"
        assert result.params.until == "2024-02-15T00:00:00.000Z"

    def test_month_phrase_dates(self):
        result = parse_query("patient p1 heart rate after March 3, 2024")
        assert result.params.since == "2024-03-03T00:00:00.000Z"

    def test_month_and_year_without_day(self):
        """Test that the year is not read as a day of the month."""
        result = parse_query("patient p1 bp since March 2024 until Jun 2024")

        assert result.params.since == "2024-03-01T00:00:00.000Z"
        assert result.params.until == "2024-06-01T00:00:00.000Z"

    def test_day_month_year(self):
        result = parse_query("patient p1 bp since 5th March 2024")
        assert result.params.since == "2024-03-05T00:00:00.000Z"

    def test_slash_dates(self):
        result = parse_query("patient p1 bp before 2024/05/06")
        assert result.params.until == "2024-05-06T00:00:00.000Z"

    def test_summarize_hint_with_dates_only(self):
        result = parse_query("summarize everything since 2024-01-01")
        assert result.route_hint == Route.SUMMARIZE

    def test_codes_without_patient_is_unknown(self):
        result = parse_query("blood pressure since 2024-01-01")
        assert result.route_hint == Route.UNKNOWN

    def test_custom_synonyms(self):
        parser = IntakeParser(synonyms={"glucose": ("2339-0",)})
        result = parser.parse("patient p1 glucose")

        assert result.params.codes == {"http://loinc.org|2339-0"}

    def test_empty_and_none_text(self):
        assert parse_query("").route_hint == Route.UNKNOWN
        assert parse_query(None).params.count == DEFAULT_COUNT


def test_parse_date_phrase_invalid_is_none():
    assert parse_date_phrase("2024-02-30") is None


def test_parse_date_phrase_with_time():
    assert parse_date_phrase("2024-01-05T10:30:00Z") == "2024-01-05T10:30:00.000Z"


def test_bad_since_date_is_not_present():
    result = parse_query("patient p1 bp since 2024-02-30")

    assert result.params.since is None
    assert result.route_hint == Route.FETCH
