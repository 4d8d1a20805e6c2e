"""Scope manager: tracks group keys and classifies each incoming record.

Records arrive pre-sorted by the group keys. For each one the manager
decides whether nothing changed, a new detail row started, a group broke
(and at which level), or a page broke; the reset table then says which
variables that classification invalidates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from banded_reports.calculation import CalculationEngine
from banded_reports.definitions import GroupDefinition, ResetScope, VariableDefinition

logger = logging.getLogger(__name__)


# ---- Break classifications ----


@dataclass(frozen=True)
class BreakClassification:
    """Base for break classifications.

    ``record_changed`` is False only for NoChange; ``group_level`` is the
    level that broke, for GroupChange only.
    """

    @property
    def record_changed(self) -> bool:
        return True

    @property
    def group_level(self) -> int | None:
        return None


@dataclass(frozen=True)
class NoChange(BreakClassification):
    """The same record was seen again."""

    @property
    def record_changed(self) -> bool:
        return False


@dataclass(frozen=True)
class DetailChange(BreakClassification):
    """A new record with unchanged group keys."""


@dataclass(frozen=True)
class GroupChange(BreakClassification):
    """The key at ``level`` changed; every deeper level breaks with it."""

    level: int = 1

    @property
    def group_level(self) -> int | None:
        return self.level


@dataclass(frozen=True)
class PageChange(BreakClassification):
    """A page break requested by the renderer."""


def variables_to_reset(
    variables: Iterable[VariableDefinition], classification: BreakClassification | None
) -> list[str]:
    """Names of the variables a classification invalidates, in declaration order.

    REPORT variables are never reset implicitly.
    """
    if classification is None or isinstance(classification, NoChange):
        return []

    names = []
    for var in variables:
        if var.reset_on is ResetScope.DETAIL:
            names.append(var.name)
        elif var.reset_on is ResetScope.GROUP:
            if isinstance(classification, PageChange):
                names.append(var.name)
            elif isinstance(classification, GroupChange):
                if var.reset_group is None or var.reset_group >= classification.level:
                    names.append(var.name)
        elif var.reset_on is ResetScope.PAGE:
            if isinstance(classification, PageChange):
                names.append(var.name)
    return names


# ---- Scope manager ----


class ScopeManager:
    """Holds the group key values of the last consumed record."""

    def __init__(
        self,
        group_definitions: Iterable[GroupDefinition],
        engine: CalculationEngine | None = None,
    ) -> None:
        # sorted() is stable: equal levels keep declaration order
        self.group_definitions: list[GroupDefinition] = sorted(group_definitions, key=lambda g: g.level)
        self.engine = engine if engine is not None else CalculationEngine()
        self.current_group_key_values: dict[int, Any] = {}
        self.previous_record: Any = None
        self.page_number = 1
        self.detail_count = 0
        self._current_keys: list[Any] = []

    # ---- Key evaluation ----

    def _evaluate_key(self, group: GroupDefinition, record: Any) -> Any:
        result = self.engine.evaluate(group.key_expression, record)
        if not result.ok:
            logger.debug(
                "Group '%s' key could not be evaluated (%s); using nil",
                group.name,
                result.error.describe(),
            )
        return result.value_or(None)

    def evaluate_keys(self, record: Any) -> list[Any]:
        """Key values for a record, one per definition in level order."""
        return [self._evaluate_key(group, record) for group in self.group_definitions]

    def key_values_by_level(self, keys: list[Any]) -> dict[int, Any]:
        """Map keys to their levels.

        Groups sharing a level collapse to the last declared key. Break
        detection still compares every key, so this only affects the
        reported values.
        """
        return {group.level: key for group, key in zip(self.group_definitions, keys)}

    # ---- Record flow ----

    def check_scope_change(self, next_record: Any) -> BreakClassification | None:
        """Classify ``next_record`` against the current state without consuming it.

        Returns None before any record has been consumed.
        """
        if self.detail_count == 0:
            return None

        keys = self.evaluate_keys(next_record)
        for group, old, new in zip(self.group_definitions, self._current_keys, keys):
            if old != new:
                return GroupChange(level=group.level)

        if next_record == self.previous_record:
            return NoChange()
        return DetailChange()

    def update_detail(self, record: Any) -> dict[int, Any]:
        """Consume a record: store its keys and count it."""
        keys = self.evaluate_keys(record)
        self._current_keys = keys
        self.current_group_key_values = self.key_values_by_level(keys)
        self.previous_record = record
        self.detail_count += 1
        return dict(self.current_group_key_values)

    def page_break(self) -> PageChange:
        self.page_number += 1
        logger.debug("Page break; now on page %d", self.page_number)
        return PageChange()

    def reset(self) -> None:
        """Forget all consumed records. Definitions are kept."""
        self.current_group_key_values = {}
        self._current_keys = []
        self.previous_record = None
        self.page_number = 1
        self.detail_count = 0

    # ---- Accessors ----

    @property
    def current_page(self) -> int:
        return self.page_number

    def current_group_values(self) -> dict[int, Any]:
        return dict(self.current_group_key_values)

    def group_value(self, level: int) -> Any:
        return self.current_group_key_values.get(level)

    def has_groups(self) -> bool:
        return bool(self.group_definitions)

    def group_levels(self) -> list[int]:
        return list(dict.fromkeys(group.level for group in self.group_definitions))
