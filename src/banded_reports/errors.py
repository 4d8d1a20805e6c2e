"""Typed error values and exception classes for the report engine.

Evaluation and dependency errors are plain dataclass values returned inside a
Result. Exceptions are reserved for callers that opt into fail-fast behavior
and for runs that would start with an invalid dependency graph.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


# ---- Evaluation errors ----


@dataclass
class EvalError:
    """Base class for evaluation error values."""

    kind: ClassVar[str] = "eval_error"

    def describe(self) -> str:
        return self.kind


@dataclass
class FieldNotFound(EvalError):
    kind: ClassVar[str] = "field_not_found"
    name: str = ""

    def describe(self) -> str:
        return f"Field '{self.name}' not found"


@dataclass
class RelationshipNotFound(EvalError):
    kind: ClassVar[str] = "relationship_not_found"
    relationship: str = ""

    def describe(self) -> str:
        return f"Relationship '{self.relationship}' not found"


@dataclass
class InvalidRelationship(EvalError):
    kind: ClassVar[str] = "invalid_relationship"
    relationship: str = ""

    def describe(self) -> str:
        return f"Relationship '{self.relationship}' is not a record"


@dataclass
class InvalidArithmetic(EvalError):
    kind: ClassVar[str] = "invalid_arithmetic"
    op: str = ""
    left: Any = None
    right: Any = None

    def describe(self) -> str:
        return f"Cannot apply '{self.op}' to {self.left!r} and {self.right!r}"


@dataclass
class DivisionByZero(EvalError):
    kind: ClassVar[str] = "division_by_zero"

    def describe(self) -> str:
        return "Division by zero"


@dataclass
class UnknownFunction(EvalError):
    kind: ClassVar[str] = "unknown_function"
    name: str = ""

    def describe(self) -> str:
        return f"Unknown function: {self.name}()"


@dataclass
class EvaluationError(EvalError):
    """An exception raised inside a native or registered function."""
    kind: ClassVar[str] = "evaluation_error"
    exception: BaseException | None = None

    def describe(self) -> str:
        return f"Evaluation failed: {self.exception!r}"


@dataclass
class ThrownError(EvalError):
    """A payload thrown out of a function via ThrownValue."""
    kind: ClassVar[str] = "thrown_error"
    payload: Any = None

    def describe(self) -> str:
        return f"Function threw {self.payload!r}"


@dataclass
class ProcessExit(EvalError):
    """A function tried to exit the process or generator."""
    kind: ClassVar[str] = "process_exit"
    reason: Any = None

    def describe(self) -> str:
        return f"Function exited with {self.reason!r}"


@dataclass
class UnsupportedExpression(EvalError):
    kind: ClassVar[str] = "unsupported_expression"
    expression: Any = None

    def describe(self) -> str:
        return f"Unsupported expression: {self.expression!r}"


# ---- Dependency errors ----


@dataclass
class DependencyError:
    """Base class for dependency graph error values."""

    kind: ClassVar[str] = "dependency_error"

    def describe(self) -> str:
        return self.kind


@dataclass
class CircularDependency(DependencyError):
    kind: ClassVar[str] = "circular_dependency"
    cycle: list[str] = field(default_factory=list)

    def describe(self) -> str:
        return f"Circular dependency: {' -> '.join(self.cycle)}"


@dataclass
class MissingDependencies(DependencyError):
    kind: ClassVar[str] = "missing_dependencies"
    names: list[str] = field(default_factory=list)

    def describe(self) -> str:
        return f"Missing dependencies: {', '.join(self.names)}"


# ---- Exceptions ----


class ReportEngineError(Exception):
    """Base class for exceptions raised by the engine."""


class EvaluationFailed(ReportEngineError):
    """Raised by evaluate_or_raise when evaluation returns an error."""

    def __init__(self, error: EvalError) -> None:
        super().__init__(f"Expression evaluation failed: {error.describe()}")
        self.error = error


class DependencyResolutionError(ReportEngineError):
    """Raised when a variable runtime would start with an invalid graph."""

    def __init__(self, error: DependencyError) -> None:
        super().__init__(error.describe())
        self.error = error


class ThrownValue(Exception):
    """Raise from a native function to abort evaluation with a payload."""

    def __init__(self, payload: Any) -> None:
        super().__init__(payload)
        self.payload = payload
