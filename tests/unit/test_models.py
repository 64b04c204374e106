"""Tests for CASS domain models and lenient coercion."""

from datetime import datetime, timezone

import pytest

from cass.errors import FatalPipelineError, PipelineIssue, SourceFailure, WriteFailure
from cass.models import Category, RawRecord, RecordAttributes, RecordKind, RouteResult, category_for
from cass.models.base import coerce_bool, coerce_datetime, coerce_number, coerce_str_list


class TestCoercion:
    """Tests for lenient value coercion."""

    def test_number_formats(self):
        """Test currency strings and suffixes are parsed."""
        assert coerce_number(50000) == 50000.0
        assert coerce_number("50,000") == 50000.0
        assert coerce_number("$1.5M") == 1_500_000.0
        assert coerce_number("250k") == 250_000.0

    def test_number_rejects_garbage(self):
        """Test unparseable values become None."""
        assert coerce_number("lots") is None
        assert coerce_number(True) is None
        assert coerce_number(None) is None

    @pytest.mark.parametrize("value", ["nan", "inf", "-Infinity", "1e400", float("nan"), float("inf"), 10**400])
    def test_number_rejects_non_finite(self, value):
        """Test NaN, infinities and overflowing values become None."""
        assert coerce_number(value) is None

    def test_date_only_string(self):
        """Test ISO dates become aware midnight datetimes."""
        parsed = coerce_datetime("2024-03-15")
        assert parsed == datetime(2024, 3, 15, tzinfo=timezone.utc)

    def test_naive_datetime_assumed_utc(self):
        """Test naive timestamps are made UTC-aware."""
        parsed = coerce_datetime(datetime(2024, 1, 1, 8, 30))
        assert parsed.tzinfo is not None

    def test_bad_date(self):
        assert coerce_datetime("not a date") is None
        assert coerce_datetime("") is None

    def test_bool_and_lists(self):
        assert coerce_bool("yes") is True
        assert coerce_bool("0") is False
        assert coerce_bool("maybe") is None
        assert coerce_str_list("ai, web3 ,") == ["ai", "web3"]
        assert coerce_str_list([]) is None


class TestRecordAttributes:
    """Tests for typed attributes with a residual map."""

    def test_malformed_values_degrade_to_none(self):
        """Test a bad field does not reject the record."""
        attrs = RecordAttributes(funding_amount="unknown", team_size="two", launch_date="someday")

        assert attrs.funding_amount is None
        assert attrs.team_size is None
        assert attrs.launch_date is None

    def test_unknown_fields_kept_as_residual(self):
        """Test source-specific fields survive in the residual map."""
        attrs = RecordAttributes(funding_amount=100, stars=250, points=12)

        assert attrs.funding_amount == 100.0
        assert attrs.residual == {"stars": 250, "points": 12}

    def test_observed_skips_empty_values(self):
        attrs = RecordAttributes(location="", categories=[], team_size=3)
        assert attrs.observed() == {"team_size": 3}


class TestRawRecord:
    """Tests for RawRecord."""

    def test_none_text_fields_become_empty(self):
        record = RawRecord(source="GitHub", kind=RecordKind.PROJECT, title=None, description=None, url=None)

        assert record.title == ""
        assert record.description == ""
        assert record.url == ""

    def test_record_ids_are_unique(self):
        a = RawRecord(source="GitHub", kind=RecordKind.PROJECT, title="A")
        b = RawRecord(source="GitHub", kind=RecordKind.PROJECT, title="A")
        assert a.record_id != b.record_id

    def test_text_falls_back_to_content(self):
        record = RawRecord(
            source="Dev.to",
            kind=RecordKind.RESOURCE,
            title="Launch Guide",
            attributes={"content": "How to find a Founder"},
        )
        assert record.text == "launch guide how to find a founder"

    def test_non_finite_attributes_do_not_raise(self):
        record = RawRecord(
            source="GitHub",
            kind=RecordKind.PROJECT,
            title="A",
            attributes={"team_size": "inf", "founded_year": "nan", "funding_amount": float("inf")},
        )

        assert record.attributes.team_size is None
        assert record.attributes.founded_year is None
        assert record.attributes.funding_amount is None

    def test_records_are_immutable(self):
        record = RawRecord(source="GitHub", kind=RecordKind.PROJECT, title="A")
        with pytest.raises(Exception):
            record.title = "B"


class TestCategories:
    """Tests for kind to category mapping."""

    def test_every_kind_has_a_category(self):
        assert category_for(RecordKind.PROJECT) == Category.PROJECTS
        assert category_for("funding_program") == Category.FUNDING_PROGRAMS
        assert category_for(RecordKind.RESOURCE) == Category.RESOURCES

    def test_unknown_kind_is_fatal(self):
        with pytest.raises(FatalPipelineError):
            category_for("newsletter")


class TestIssues:
    """Tests for recoverable issue rendering."""

    def test_timeout_is_marked(self):
        failure = SourceFailure("ProductHunt", "fetch", "no response within 10s", timed_out=True)
        issue = PipelineIssue.from_source_failure("fetch", failure)

        assert str(issue) == "[fetch] ProductHunt: no response within 10s (timeout)"

    def test_write_failure(self):
        issue = PipelineIssue.from_write_failure(WriteFailure("projects", "https://acme.io", "boom"))
        assert str(issue) == "[staging] projects: https://acme.io: boom"

    def test_route_result_staged_counts_inserts_and_updates(self):
        result = RouteResult(
            inserted_by_category={"projects": 2, "resources": 1},
            updated_by_category={"projects": 1},
        )
        assert result.staged == 4
