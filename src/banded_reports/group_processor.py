"""Group processor: per-record group break results over a sorted stream."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from banded_reports.calculation import CalculationEngine
from banded_reports.definitions import GroupDefinition, VariableDefinition
from banded_reports.scope import (
    BreakClassification,
    DetailChange,
    GroupChange,
    NoChange,
    PageChange,
    ScopeManager,
    variables_to_reset,
)

logger = logging.getLogger(__name__)


@dataclass
class GroupResult:
    """What happened when one record was consumed."""

    record: Any
    group_changes: list[BreakClassification] = field(default_factory=list)
    group_values: dict[int, Any] = field(default_factory=dict)
    should_reset_variables: bool = False
    processed_at: float | None = None


@dataclass
class GroupSummary:
    """Aggregate view of the records sharing one full key tuple."""

    record_count: int
    first_record: Any
    last_record: Any
    group_values: dict[int, Any]


class GroupProcessor:
    """Consumes records in order, reporting group breaks for each one."""

    def __init__(
        self,
        group_definitions: Iterable[GroupDefinition],
        engine: CalculationEngine | None = None,
    ) -> None:
        self.scope = ScopeManager(group_definitions, engine)
        self._break_counts: dict[int, int] = {}

    @property
    def group_definitions(self) -> list[GroupDefinition]:
        return self.scope.group_definitions

    def process_record(self, record: Any) -> GroupResult:
        """Consume one record.

        The first record yields no changes. Later records yield
        ``[DetailChange()]`` when the keys hold, else ``[GroupChange(level)]``
        for the outermost level whose key differs.
        """
        change = self.scope.check_scope_change(record)
        if change is None:
            changes: list[BreakClassification] = []
        elif isinstance(change, NoChange):
            # A repeated record is still a new detail row
            changes = [DetailChange()]
        else:
            changes = [change]

        if isinstance(change, GroupChange):
            self._count_break(change.level)
            logger.debug("Group break at level %d", change.level)

        values = self.scope.update_detail(record)
        return GroupResult(
            record=record,
            group_changes=changes,
            group_values=values,
            should_reset_variables=any(isinstance(c, GroupChange) for c in changes),
            processed_at=time.monotonic(),
        )

    def check_group_break(self, next_record: Any) -> BreakClassification | None:
        """Classify a record without consuming it."""
        return self.scope.check_scope_change(next_record)

    def process_stream(self, records: Iterable[Any]) -> Iterator[GroupResult]:
        """Lazily process records one at a time, in order."""
        for record in records:
            yield self.process_record(record)

    def _count_break(self, level: int) -> None:
        for configured in self.scope.group_levels():
            if configured >= level:
                self._break_counts[configured] = self._break_counts.get(configured, 0) + 1

    def group_count(self, level: int) -> int:
        """Number of breaks seen at ``level`` (enclosing breaks included)."""
        return self._break_counts.get(level, 0)

    # ---- Group values ----

    def extract_group_values(self, record: Any) -> dict[int, Any]:
        """Key values a record would have, without consuming it."""
        return self.scope.key_values_by_level(self.scope.evaluate_keys(record))

    def group_value(self, level: int) -> Any:
        return self.scope.group_value(level)

    def all_group_values(self) -> dict[int, Any]:
        return self.scope.current_group_values()

    def has_groups(self) -> bool:
        return self.scope.has_groups()

    def group_levels(self) -> list[int]:
        return self.scope.group_levels()

    # ---- Resets ----

    def variables_to_reset(
        self, variables: Iterable[VariableDefinition], changes: Iterable[BreakClassification]
    ) -> list[str]:
        """Union of the variables invalidated by ``changes``, in declaration order."""
        variables = list(variables)
        names: dict[str, None] = {}
        for change in changes:
            names.update(dict.fromkeys(variables_to_reset(variables, change)))
        return [var.name for var in variables if var.name in names]

    def page_break(self) -> PageChange:
        return self.scope.page_break()

    def reset(self) -> None:
        self.scope.reset()
        self._break_counts = {}

    # ---- Summaries ----

    def summarize(self, records: Iterable[Any]) -> dict[tuple, GroupSummary]:
        """Summarize records by their full key tuple. Does not touch scope state."""
        summaries: dict[tuple, GroupSummary] = {}
        for record in records:
            keys = self.scope.evaluate_keys(record)
            key = tuple(keys)
            summary = summaries.get(key)
            if summary is None:
                summaries[key] = GroupSummary(
                    record_count=1,
                    first_record=record,
                    last_record=record,
                    group_values=self.scope.key_values_by_level(keys),
                )
            else:
                summary.record_count += 1
                summary.last_record = record
        return summaries
