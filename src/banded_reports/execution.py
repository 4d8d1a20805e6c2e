"""Report execution: drives group breaks and variables for one run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from banded_reports.calculation import CalculationEngine
from banded_reports.config import EngineConfig
from banded_reports.definitions import GroupDefinition, VariableDefinition
from banded_reports.errors import EvalError
from banded_reports.group_processor import GroupProcessor, GroupResult
from banded_reports.variables import VariableRuntime

logger = logging.getLogger(__name__)


@dataclass
class ExecutionStep:
    """One consumed record: its group result plus a variable snapshot."""

    result: GroupResult
    variables: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, EvalError] = field(default_factory=dict)


class ReportExecution:
    """Owns the group processor and variable runtime of a single run.

    Both components share one calculation engine. Separate runs use
    separate ReportExecution objects.
    """

    def __init__(
        self,
        groups: Iterable[GroupDefinition],
        variables: Iterable[VariableDefinition],
        engine: CalculationEngine | None = None,
        config: EngineConfig | None = None,
        known_fields: Iterable[str] | None = None,
    ) -> None:
        self.config = config if config is not None else EngineConfig()
        self.engine = engine if engine is not None else CalculationEngine()
        self.groups = GroupProcessor(groups, self.engine)
        self.variables = VariableRuntime(variables, self.engine, self.config, known_fields)

    def process_record(self, record: Any) -> ExecutionStep:
        result = self.groups.process_record(record)
        errors = self.variables.process_record(record, result.group_changes)
        for name, error in errors.items():
            logger.debug("Variable '%s' not updated: %s", name, error.describe())
        return ExecutionStep(result=result, variables=self.variables.variable_context(), errors=errors)

    def run(self, records: Iterable[Any]) -> Iterator[ExecutionStep]:
        """Process a sorted record stream lazily, one step per record."""
        for record in records:
            yield self.process_record(record)

    def page_break(self) -> None:
        change = self.groups.page_break()
        self.variables.handle_scope_change(change)

    def group_break(self, level: int) -> None:
        """Force a break at ``level`` outside the record flow."""
        self.variables.handle_group_break(level)

    def reset(self) -> None:
        """Start over: scope state, break counts and every variable."""
        self.groups.reset()
        self.variables.reset_all()

    def get_variable_value(self, name: str) -> Any:
        return self.variables.get_value(name)

    def get_all_group_values(self) -> dict[int, Any]:
        return self.groups.all_group_values()

    def variable_context(self) -> dict[str, Any]:
        return self.variables.variable_context()
