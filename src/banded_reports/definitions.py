"""Group and variable definitions supplied by the configuration compiler."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AggregateKind(Enum):
    """How a variable folds each record's value into its running value."""

    SUM = "sum"
    COUNT = "count"
    AVERAGE = "average"
    MIN = "min"
    MAX = "max"
    CUSTOM = "custom"

    @property
    def default_initial_value(self) -> Any:
        """Initial value used when a definition does not give one."""
        if self in (AggregateKind.SUM, AggregateKind.COUNT, AggregateKind.AVERAGE):
            return 0
        return None


class ResetScope(Enum):
    """Granularity at which a variable returns to its initial value."""

    DETAIL = "detail"
    GROUP = "group"
    PAGE = "page"
    REPORT = "report"


SORT_DIRECTIONS = ("asc", "desc")

_UNSET = object()


@dataclass
class GroupDefinition:
    """One grouping level. Level 1 is the outermost group."""

    name: str
    level: int
    key_expression: Any
    sort_direction: str = "asc"

    def __post_init__(self) -> None:
        if not isinstance(self.level, int) or isinstance(self.level, bool) or self.level < 1:
            raise ValueError(f"Group '{self.name}' level must be a positive integer, got {self.level!r}")
        if self.sort_direction not in SORT_DIRECTIONS:
            raise ValueError(f"Group '{self.name}' sort direction must be 'asc' or 'desc', got {self.sort_direction!r}")


@dataclass
class VariableDefinition:
    """A running aggregate maintained over the record stream.

    ``reset_on=GROUP`` with ``reset_group=L`` resets whenever level L or an
    enclosing level breaks; ``reset_group=None`` resets on any group break.
    ``condition``, when set, gates which records contribute (count_where).
    """

    name: str
    aggregate_kind: AggregateKind
    expression: Any = None
    reset_on: ResetScope = ResetScope.REPORT
    reset_group: int | None = None
    initial_value: Any = field(default=_UNSET)
    condition: Any = None

    def __post_init__(self) -> None:
        if isinstance(self.aggregate_kind, str):
            self.aggregate_kind = AggregateKind(self.aggregate_kind)
        if isinstance(self.reset_on, str):
            self.reset_on = ResetScope(self.reset_on)
        if self.initial_value is _UNSET:
            self.initial_value = self.aggregate_kind.default_initial_value
        if self.reset_group is not None and (
            not isinstance(self.reset_group, int) or isinstance(self.reset_group, bool) or self.reset_group < 1
        ):
            raise ValueError(f"Variable '{self.name}' reset_group must be a positive integer, got {self.reset_group!r}")

    def should_reset(self, scope: ResetScope, group_level: int | None = None) -> bool:
        """True if an explicit reset of ``scope`` (at ``group_level``) targets this variable."""
        if self.reset_on != scope:
            return False
        if scope is ResetScope.GROUP and group_level is not None and self.reset_group is not None:
            return self.reset_group >= group_level
        return True
