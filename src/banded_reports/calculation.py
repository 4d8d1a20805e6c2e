"""Calculation engine: evaluates scalar expressions against records."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from numbers import Number
from typing import Any, Callable, Iterator

from banded_reports.errors import (
    DivisionByZero,
    EvalError,
    EvaluationError,
    EvaluationFailed,
    FieldNotFound,
    InvalidArithmetic,
    InvalidRelationship,
    ProcessExit,
    RelationshipNotFound,
    ThrownError,
    ThrownValue,
    UnknownFunction,
    UnsupportedExpression,
)
from banded_reports.expressions import (
    Call,
    ExplicitFieldRef,
    Expression,
    FieldRef,
    Literal,
    NativeFunction,
    Nil,
    RelationshipFieldRef,
    UnrecognizedShape,
    coerce_expression,
)
from banded_reports.functions import FunctionRegistry, default_registry
from banded_reports.results import Result

logger = logging.getLogger(__name__)

ARITHMETIC_OPS = ("+", "-", "*", "/")

_MISSING = object()


# ---- Record access ----


def is_record_like(value: Any) -> bool:
    """A record is a mapping or an object carrying attributes."""
    if isinstance(value, Mapping):
        return True
    if isinstance(value, (str, bytes, Number, list, tuple, set, frozenset)):
        return False
    return hasattr(value, "__dict__")


def lookup(record: Any, name: str) -> Any:
    """Return record[name] (or record.name), or _MISSING when absent."""
    if isinstance(record, Mapping):
        if name in record:
            return record[name]
        return _MISSING
    return getattr(record, name, _MISSING)


class RecordView(Mapping):
    """Read-only mapping over a record, resolved the same way as field lookups.

    Works for mappings, plain objects, properties, ``__slots__`` classes and
    namedtuples alike.
    """

    def __init__(self, record: Any) -> None:
        self.record = record

    def __getitem__(self, name: str) -> Any:
        value = lookup(self.record, name)
        if value is _MISSING:
            raise KeyError(name)
        return value

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and lookup(self.record, name) is not _MISSING

    def _names(self) -> list[str]:
        record = self.record
        if isinstance(record, Mapping):
            return list(record)
        if hasattr(record, "_fields"):
            return list(record._fields)
        names = list(getattr(record, "__dict__", {}))
        for cls in type(record).__mro__:
            slots = getattr(cls, "__slots__", ())
            if isinstance(slots, str):
                slots = (slots,)
            names.extend(slot for slot in slots if hasattr(record, slot))
        return list(dict.fromkeys(names))

    def __iter__(self) -> Iterator[str]:
        return iter(self._names())

    def __len__(self) -> int:
        return len(self._names())


# ---- Static analysis ----


def _unique(names: list[str]) -> list[str]:
    return list(dict.fromkeys(names))


def extract_field_references(expression: Any) -> list[str]:
    """Return the flat field names an expression reads, in first-seen order."""
    try:
        node = coerce_expression(expression)
    except UnrecognizedShape:
        return []
    if isinstance(node, FieldRef):
        return [node.name]
    if isinstance(node, RelationshipFieldRef):
        return _unique(list(node.path) + [node.field])
    if isinstance(node, ExplicitFieldRef):
        return _unique([node.relationship, node.field])
    if isinstance(node, Call):
        names: list[str] = []
        for arg in node.args:
            names.extend(extract_field_references(arg))
        return _unique(names)
    return []


def extract_relationship_paths(expression: Any) -> list[list[str]]:
    """Return the relationship paths a loader must preload for an expression."""
    try:
        node = coerce_expression(expression)
    except UnrecognizedShape:
        return []
    if isinstance(node, RelationshipFieldRef):
        return [list(node.path)]
    if isinstance(node, ExplicitFieldRef):
        return [[node.relationship]]
    if isinstance(node, Call):
        paths: list[list[str]] = []
        for arg in node.args:
            for path in extract_relationship_paths(arg):
                if path not in paths:
                    paths.append(path)
        return paths
    return []


def contains_native_function(expression: Any) -> bool:
    """True if the expression is, or calls into, a host callable."""
    try:
        node = coerce_expression(expression)
    except UnrecognizedShape:
        return False
    if isinstance(node, NativeFunction):
        return True
    if isinstance(node, Call):
        return any(contains_native_function(arg) for arg in node.args)
    return False


# ---- Arithmetic ----


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def apply_arithmetic(op: str, left: Any, right: Any) -> Result:
    """Apply +, -, *, / to two resolved operands."""
    if op == "+" and isinstance(left, str) and isinstance(right, str):
        return Result.success(left + right)
    if not _is_number(left) or not _is_number(right):
        return Result.failure(InvalidArithmetic(op=op, left=left, right=right))
    if op == "/" and right == 0:
        return Result.failure(DivisionByZero())
    try:
        if op == "+":
            return Result.success(left + right)
        if op == "-":
            return Result.success(left - right)
        if op == "*":
            return Result.success(left * right)
        if op == "/":
            return Result.success(left / right)
    except (TypeError, ArithmeticError):
        # e.g. Decimal mixed with float
        return Result.failure(InvalidArithmetic(op=op, left=left, right=right))
    raise ValueError(f"Unknown arithmetic operator: {op}")


def is_truthy(value: Any) -> bool:
    """Only False and None are falsy."""
    return value is not None and value is not False


# ---- Capture boundary ----


def guarded_call(function: Callable[..., Any], *args: Any) -> Result:
    """Invoke host code, converting any fault into a typed error value."""
    try:
        return Result.success(function(*args))
    except ThrownValue as exc:
        return Result.failure(ThrownError(payload=exc.payload))
    except (SystemExit, GeneratorExit) as exc:
        reason = exc.code if isinstance(exc, SystemExit) else "generator_exit"
        return Result.failure(ProcessExit(reason=reason))
    except Exception as exc:
        logger.debug("Function %r raised %r", function, exc)
        return Result.failure(EvaluationError(exception=exc))


class CalculationEngine:
    """Evaluates Expression trees against records.

    Evaluation never raises: every outcome is a Result holding either the
    value or an EvalError. Use evaluate_or_raise to fail fast instead.
    """

    def __init__(self, registry: FunctionRegistry | None = None) -> None:
        self.registry = registry if registry is not None else default_registry
        self._formula_parser: Any = None

    # ---- Public API ----

    def evaluate(self, expression: Any, record: Any) -> Result:
        """Evaluate an expression against a record."""
        try:
            node = coerce_expression(expression)
        except UnrecognizedShape:
            return Result.failure(UnsupportedExpression(expression=expression))
        return self._evaluate(node, record)

    def evaluate_or_raise(self, expression: Any, record: Any) -> Any:
        """Evaluate an expression, raising EvaluationFailed on any error."""
        result = self.evaluate(expression, record)
        if not result.ok:
            raise EvaluationFailed(result.error)
        return result.value

    def evaluate_formula(self, text: str, record: Any) -> Result:
        """Parse a formula string and evaluate it. Raises SyntaxError on bad input."""
        return self.evaluate(self.parse_formula(text), record)

    def parse_formula(self, text: str) -> Expression:
        if self._formula_parser is None:
            from banded_reports.parsing import FormulaParser

            self._formula_parser = FormulaParser()
        return self._formula_parser.parse(text)

    def validate(self, expression: Any) -> Result:
        """Check an expression is well formed, without a record."""
        try:
            node = coerce_expression(expression)
        except UnrecognizedShape:
            return Result.failure(UnsupportedExpression(expression=expression))
        error = self._validate_node(node)
        if error is not None:
            return Result.failure(error)
        return Result.success(None)

    def extract_field_references(self, expression: Any) -> list[str]:
        return extract_field_references(expression)

    def extract_relationship_paths(self, expression: Any) -> list[list[str]]:
        return extract_relationship_paths(expression)

    def register_function(self, name: str, function: Callable[..., Any]) -> None:
        self.registry.register_function(name, function)

    def get_function(self, name: str) -> Callable[..., Any] | None:
        return self.registry.get_function(name)

    def list_functions(self) -> list[str]:
        return self.registry.list_functions()

    # ---- Evaluation ----

    def _evaluate(self, node: Expression, record: Any) -> Result:
        if isinstance(node, Nil):
            return Result.success(None)
        if isinstance(node, Literal):
            return Result.success(node.value)
        if isinstance(node, FieldRef):
            return self._evaluate_field(record, node.name)
        if isinstance(node, RelationshipFieldRef):
            return self._evaluate_path(record, node.path, node.field)
        if isinstance(node, ExplicitFieldRef):
            return self._evaluate_path(record, [node.relationship], node.field)
        if isinstance(node, NativeFunction):
            return guarded_call(node.function, record)
        if isinstance(node, Call):
            return self._evaluate_call(node, record)
        return Result.failure(UnsupportedExpression(expression=node))

    def _evaluate_operand(self, operand: Any, record: Any) -> Result:
        return self.evaluate(operand, record)

    def _evaluate_field(self, record: Any, name: str) -> Result:
        value = lookup(record, name)
        if value is _MISSING:
            return Result.failure(FieldNotFound(name=name))
        return Result.success(value)

    def _evaluate_path(self, record: Any, path: list[str], field: str) -> Result:
        current = record
        for relationship in path:
            related = lookup(current, relationship)
            if related is _MISSING or related is None:
                return Result.failure(RelationshipNotFound(relationship=relationship))
            if not is_record_like(related):
                return Result.failure(InvalidRelationship(relationship=relationship))
            current = related
        return self._evaluate_field(current, field)

    def _evaluate_call(self, node: Call, record: Any) -> Result:
        if node.op in ARITHMETIC_OPS:
            if len(node.args) != 2:
                return Result.failure(UnsupportedExpression(expression=node))
            left = self._evaluate_operand(node.args[0], record)
            if not left.ok:
                return left
            right = self._evaluate_operand(node.args[1], record)
            if not right.ok:
                return right
            return apply_arithmetic(node.op, left.value, right.value)

        if node.op == "if":
            if len(node.args) != 3:
                return Result.failure(UnsupportedExpression(expression=node))
            condition = self._evaluate_operand(node.args[0], record)
            if not condition.ok:
                return condition
            branch = node.args[1] if is_truthy(condition.value) else node.args[2]
            return self._evaluate_operand(branch, record)

        function = self.registry.get_function(node.op)
        if function is None:
            return Result.failure(UnknownFunction(name=node.op))
        values = []
        for arg in node.args:
            evaluated = self._evaluate_operand(arg, record)
            if not evaluated.ok:
                return evaluated
            values.append(evaluated.value)
        return guarded_call(function, *values)

    # ---- Validation ----

    def _validate_node(self, node: Expression) -> EvalError | None:
        if isinstance(node, FieldRef):
            if not isinstance(node.name, str) or not node.name:
                return UnsupportedExpression(expression=node)
            return None
        if isinstance(node, RelationshipFieldRef):
            steps = list(node.path) + [node.field]
            if not node.path or not all(isinstance(s, str) and s for s in steps):
                return UnsupportedExpression(expression=node)
            return None
        if isinstance(node, ExplicitFieldRef):
            if not all(isinstance(s, str) and s for s in (node.relationship, node.field)):
                return UnsupportedExpression(expression=node)
            return None
        if isinstance(node, NativeFunction):
            if not callable(node.function):
                return UnsupportedExpression(expression=node)
            return None
        if isinstance(node, Call):
            return self._validate_call(node)
        return None

    def _validate_call(self, node: Call) -> EvalError | None:
        if not isinstance(node.op, str) or not node.op:
            return UnsupportedExpression(expression=node)
        if node.op in ARITHMETIC_OPS and len(node.args) != 2:
            return UnsupportedExpression(expression=node)
        if node.op == "if" and len(node.args) != 3:
            return UnsupportedExpression(expression=node)
        for arg in node.args:
            try:
                child = coerce_expression(arg)
            except UnrecognizedShape:
                return UnsupportedExpression(expression=arg)
            error = self._validate_node(child)
            if error is not None:
                return error
        return None


# ---- Module-level conveniences over the process-wide registry ----

_default_engine = CalculationEngine()


def evaluate(expression: Any, record: Any) -> Result:
    return _default_engine.evaluate(expression, record)


def evaluate_or_raise(expression: Any, record: Any) -> Any:
    return _default_engine.evaluate_or_raise(expression, record)


def validate_expression(expression: Any) -> Result:
    return _default_engine.validate(expression)


def register_function(name: str, function: Callable[..., Any]) -> None:
    default_registry.register_function(name, function)


def get_function(name: str) -> Callable[..., Any] | None:
    return default_registry.get_function(name)


def list_functions() -> list[str]:
    return default_registry.list_functions()
