"""Variable runtime: running aggregates over the record stream.

Variables are evaluated in dependency order so a variable whose expression
reads another variable sees that variable's value for the current record.
Every state change for a record is staged and committed in one step; a
failed evaluation leaves its own variable untouched and is reported back.
"""

from __future__ import annotations

import logging
from collections import ChainMap
from dataclasses import dataclass
from typing import Any, Iterable

from banded_reports.calculation import CalculationEngine, RecordView, apply_arithmetic, is_truthy
from banded_reports.config import EngineConfig
from banded_reports.definitions import AggregateKind, ResetScope, VariableDefinition
from banded_reports.dependency import (
    DependencyGraph,
    build_graph,
    resolve_order,
    restrict_graph,
    validate_dependencies,
)
from banded_reports.errors import (
    DependencyResolutionError,
    EvalError,
    FieldNotFound,
    InvalidArithmetic,
)
from banded_reports.results import Result
from banded_reports.scope import BreakClassification, GroupChange, PageChange, variables_to_reset

logger = logging.getLogger(__name__)


@dataclass
class VariableState:
    """Running state. For Average, ``value`` is the running sum."""

    value: Any
    count: int = 0


def initial_state(definition: VariableDefinition) -> VariableState:
    return VariableState(value=definition.initial_value, count=0)


def display_value(definition: VariableDefinition, state: VariableState) -> Any:
    """The value a renderer shows: Average divides, everything else is as stored."""
    if definition.aggregate_kind is AggregateKind.AVERAGE:
        if state.count > 0:
            return state.value / state.count
        return 0
    return state.value


def accumulate(definition: VariableDefinition, state: VariableState, value: Any) -> Result:
    """Fold one record's value into a state, returning the new state."""
    kind = definition.aggregate_kind

    if kind is AggregateKind.COUNT:
        return Result.success(VariableState(value=(state.value or 0) + 1, count=state.count + 1))

    if kind is AggregateKind.CUSTOM:
        return Result.success(VariableState(value=value, count=state.count + 1))

    if kind in (AggregateKind.SUM, AggregateKind.AVERAGE):
        if value is None:
            return Result.success(state)
        if state.value is None:
            total = Result.success(value)
        else:
            total = apply_arithmetic("+", state.value, value)
        if not total.ok:
            return total
        return Result.success(VariableState(value=total.value, count=state.count + 1))

    # Min / Max
    if value is None:
        return Result.success(state)
    if state.value is None:
        return Result.success(VariableState(value=value, count=state.count + 1))
    try:
        if kind is AggregateKind.MIN:
            chosen = value if value < state.value else state.value
        else:
            chosen = value if value > state.value else state.value
    except TypeError:
        return Result.failure(InvalidArithmetic(op=kind.value, left=state.value, right=value))
    return Result.success(VariableState(value=chosen, count=state.count + 1))


class VariableRuntime:
    """Holds the state of every report variable for one run."""

    def __init__(
        self,
        variables: Iterable[VariableDefinition],
        engine: CalculationEngine | None = None,
        config: EngineConfig | None = None,
        known_fields: Iterable[str] | None = None,
    ) -> None:
        self.config = config if config is not None else EngineConfig()
        self.engine = engine if engine is not None else CalculationEngine()

        self.definitions: dict[str, VariableDefinition] = {}
        for definition in variables:
            if definition.name in self.definitions:
                raise ValueError(f"Duplicate variable name: {definition.name}")
            self.definitions[definition.name] = definition

        self.dependencies: DependencyGraph = build_graph(
            self.definitions.values(),
            conservative=self.config.conservative_dependencies,
        )
        if known_fields is not None:
            check = validate_dependencies(self.dependencies, set(known_fields) | set(self.definitions))
            if not check.ok:
                raise DependencyResolutionError(check.error)

        ordered = resolve_order(restrict_graph(self.dependencies, self.definitions))
        if not ordered.ok:
            raise DependencyResolutionError(ordered.error)
        self.evaluation_order: list[str] = ordered.value
        logger.debug("Variable evaluation order: %s", self.evaluation_order)

        self.states: dict[str, VariableState] = {
            name: initial_state(definition) for name, definition in self.definitions.items()
        }

    # ---- Record processing ----

    def process_record(
        self, record: Any, changes: Iterable[BreakClassification] = ()
    ) -> dict[str, EvalError]:
        """Apply the resets ``changes`` call for, then accumulate ``record``.

        Returns the evaluation errors by variable name (empty on success).
        """
        changes = list(changes)
        invalidated: set[str] = set()
        for change in changes:
            invalidated.update(variables_to_reset(self.definitions.values(), change))
        if invalidated:
            logger.debug("Resetting variables %s", sorted(invalidated))

        staged = dict(self.states)
        errors: dict[str, EvalError] = {}
        for name in self.evaluation_order:
            definition = self.definitions[name]
            if name in invalidated:
                staged[name] = initial_state(definition)
            updated = self._evaluate(definition, staged, record)
            if updated.ok:
                staged[name] = updated.value
            else:
                errors[name] = updated.error

        self.states = staged
        return errors

    def _context(self, states: dict[str, VariableState], record: Any) -> ChainMap:
        values = {name: display_value(self.definitions[name], state) for name, state in states.items()}
        return ChainMap(values, RecordView(record))

    def _value_of(self, expression: Any, context: ChainMap) -> Result:
        result = self.engine.evaluate(expression, context)
        if not result.ok and isinstance(result.error, FieldNotFound) and self.config.missing_fields_as_nil:
            return Result.success(None)
        return result

    def _evaluate(
        self, definition: VariableDefinition, states: dict[str, VariableState], record: Any
    ) -> Result:
        state = states[definition.name]
        context = self._context(states, record)

        if definition.condition is not None:
            gate = self._value_of(definition.condition, context)
            if not gate.ok:
                return gate
            if not is_truthy(gate.value):
                return Result.success(state)

        value = self._value_of(definition.expression, context)
        if not value.ok:
            return value
        return accumulate(definition, state, value.value)

    def update_variable(self, name: str, record: Any) -> Result:
        """Accumulate ``record`` into a single variable; no resets are applied."""
        definition = self._definition(name)
        updated = self._evaluate(definition, self.states, record)
        if not updated.ok:
            return updated
        self.states = {**self.states, name: updated.value}
        return Result.success(display_value(definition, updated.value))

    def update_variables_ordered(self, record: Any) -> dict[str, EvalError]:
        """Accumulate ``record`` into every variable without any resets."""
        return self.process_record(record, [])

    # ---- Explicit resets ----

    def _reset(self, names: Iterable[str]) -> None:
        names = list(names)
        if not names:
            return
        logger.debug("Resetting variables %s", names)
        states = dict(self.states)
        for name in names:
            states[name] = initial_state(self.definitions[name])
        self.states = states

    def handle_page_break(self) -> None:
        self.handle_scope_change(PageChange())

    def handle_group_break(self, level: int) -> None:
        self.handle_scope_change(GroupChange(level=level))

    def handle_scope_change(self, classification: BreakClassification) -> None:
        """Reset the variables a break classification invalidates."""
        self._reset(variables_to_reset(self.definitions.values(), classification))

    def reset_scope(self, scope: ResetScope | str, level: int | None = None) -> None:
        """Reset variables declared with ``reset_on=scope`` (GROUP filtered by level)."""
        if isinstance(scope, str):
            scope = ResetScope(scope)
        self._reset(name for name, d in self.definitions.items() if d.should_reset(scope, level))

    def reset_variable(self, name: str) -> None:
        self._definition(name)
        self._reset([name])

    def reset_all(self) -> None:
        """Report-level reset: every variable back to its initial value."""
        self._reset(self.definitions)

    # ---- Snapshots ----

    def _definition(self, name: str) -> VariableDefinition:
        definition = self.definitions.get(name)
        if definition is None:
            raise ValueError(f"Unknown variable: {name}")
        return definition

    def has_variable(self, name: str) -> bool:
        return name in self.definitions

    def get_value(self, name: str, default: Any = None) -> Any:
        """Display value of a variable, or ``default`` when it is not declared."""
        if name not in self.definitions:
            return default
        return display_value(self.definitions[name], self.states[name])

    def get_all_values(self) -> dict[str, Any]:
        return {name: display_value(d, self.states[name]) for name, d in self.definitions.items()}

    def variable_context(self) -> dict[str, Any]:
        """Snapshot of display values for renderers; later updates do not leak in."""
        return self.get_all_values()
