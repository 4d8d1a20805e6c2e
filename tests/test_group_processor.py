"""Tests for the group processor."""

import pytest

from banded_reports.definitions import GroupDefinition, ResetScope, VariableDefinition
from banded_reports.group_processor import GroupProcessor, GroupResult
from banded_reports.scope import DetailChange, GroupChange, PageChange


@pytest.fixture
def processor():
    return GroupProcessor([
        GroupDefinition(name="region", level=1, key_expression="region"),
        GroupDefinition(name="category", level=2, key_expression="category"),
    ])


@pytest.fixture
def records():
    return [
        {"region": "West", "category": "Electronics", "amount": 100},
        {"region": "West", "category": "Electronics", "amount": 200},
        {"region": "West", "category": "Books", "amount": 50},
        {"region": "East", "category": "Electronics", "amount": 75},
    ]


class TestProcessRecord:
    """Tests for per-record group results."""

    def test_change_sequence(self, processor, records):
        changes = [processor.process_record(r).group_changes for r in records]
        assert changes == [[], [DetailChange()], [GroupChange(level=2)], [GroupChange(level=1)]]

    def test_should_reset_only_on_group_change(self, processor, records):
        flags = [processor.process_record(r).should_reset_variables for r in records]
        assert flags == [False, False, True, True]

    def test_result_fields(self, processor, records):
        result = processor.process_record(records[0])
        assert isinstance(result, GroupResult)
        assert result.record is records[0]
        assert result.group_values == {1: "West", 2: "Electronics"}
        assert isinstance(result.processed_at, float)

    def test_repeated_record_is_detail_change(self, processor, records):
        processor.process_record(records[0])
        assert processor.process_record(records[0]).group_changes == [DetailChange()]

    def test_identical_keys_never_break(self, processor):
        first = {"region": "West", "category": "Books", "amount": 1}
        second = {"region": "West", "category": "Books", "amount": 2}
        processor.process_record(first)
        result = processor.process_record(second)
        assert not any(isinstance(c, GroupChange) for c in result.group_changes)
        assert result.should_reset_variables is False

    def test_check_group_break_is_pure(self, processor, records):
        processor.process_record(records[0])
        assert processor.check_group_break(records[3]) == GroupChange(level=1)
        assert processor.check_group_break(records[3]) == GroupChange(level=1)
        assert processor.all_group_values() == {1: "West", 2: "Electronics"}


class TestStream:
    """Tests for stream processing."""

    def test_process_stream_is_lazy(self, processor, records):
        stream = processor.process_stream(iter(records))
        first = next(stream)
        assert first.group_changes == []
        assert processor.scope.detail_count == 1
        rest = list(stream)
        assert len(rest) == 3

    def test_timestamps_are_monotonic(self, processor, records):
        stamps = [r.processed_at for r in processor.process_stream(records)]
        assert stamps == sorted(stamps)


class TestCountsAndValues:
    """Tests for break counters and group value accessors."""

    def test_group_counts(self, processor, records):
        list(processor.process_stream(records))
        # Books break at level 2; East break at level 1 also breaks level 2
        assert processor.group_count(1) == 1
        assert processor.group_count(2) == 2

    def test_extract_group_values_does_not_consume(self, processor, records):
        assert processor.extract_group_values(records[3]) == {1: "East", 2: "Electronics"}
        assert processor.all_group_values() == {}

    def test_accessors(self, processor, records):
        processor.process_record(records[2])
        assert processor.group_value(2) == "Books"
        assert processor.has_groups()
        assert processor.group_levels() == [1, 2]

    def test_reset(self, processor, records):
        list(processor.process_stream(records))
        processor.reset()
        assert processor.group_count(1) == 0
        assert processor.all_group_values() == {}
        assert processor.process_record(records[0]).group_changes == []

    def test_page_break(self, processor):
        assert processor.page_break() == PageChange()
        assert processor.scope.current_page == 2


class TestVariablesToReset:
    """Tests for resolving resets from a list of changes."""

    def test_union_in_declaration_order(self, processor):
        variables = [
            VariableDefinition(name="page", aggregate_kind="sum", expression="amount", reset_on=ResetScope.PAGE),
            VariableDefinition(name="line", aggregate_kind="sum", expression="amount", reset_on=ResetScope.DETAIL),
            VariableDefinition(name="cat", aggregate_kind="sum", expression="amount",
                               reset_on=ResetScope.GROUP, reset_group=2),
        ]
        names = processor.variables_to_reset(variables, [GroupChange(level=2), PageChange()])
        assert names == ["page", "line", "cat"]

    def test_empty_changes(self, processor):
        variables = [VariableDefinition(name="line", aggregate_kind="sum", reset_on=ResetScope.DETAIL)]
        assert processor.variables_to_reset(variables, []) == []


class TestSummarize:
    """Tests for group summaries."""

    def test_summarize(self, processor, records):
        summaries = processor.summarize(records)
        assert list(summaries) == [
            ("West", "Electronics"),
            ("West", "Books"),
            ("East", "Electronics"),
        ]
        west = summaries[("West", "Electronics")]
        assert west.record_count == 2
        assert west.first_record is records[0]
        assert west.last_record is records[1]
        assert west.group_values == {1: "West", 2: "Electronics"}

    def test_summarize_leaves_state(self, processor, records):
        processor.summarize(records)
        assert processor.scope.detail_count == 0
