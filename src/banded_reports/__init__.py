"""Banded Reports - execution engine for grouped, banded reports."""

import logging

from banded_reports.calculation import CalculationEngine
from banded_reports.config import EngineConfig
from banded_reports.definitions import (
    AggregateKind,
    GroupDefinition,
    ResetScope,
    VariableDefinition,
)
from banded_reports.errors import (
    CircularDependency,
    DependencyResolutionError,
    DivisionByZero,
    EvalError,
    EvaluationError,
    EvaluationFailed,
    FieldNotFound,
    InvalidArithmetic,
    InvalidRelationship,
    MissingDependencies,
    ProcessExit,
    RelationshipNotFound,
    ReportEngineError,
    ThrownError,
    ThrownValue,
    UnknownFunction,
    UnsupportedExpression,
)
from banded_reports.execution import ExecutionStep, ReportExecution
from banded_reports.expressions import (
    Call,
    ExplicitFieldRef,
    FieldRef,
    Literal,
    NativeFunction,
    Nil,
    RelationshipFieldRef,
)
from banded_reports.functions import FunctionRegistry, default_registry
from banded_reports.group_processor import GroupProcessor, GroupResult, GroupSummary
from banded_reports.parsing import FormulaParser
from banded_reports.results import Result
from banded_reports.scope import (
    BreakClassification,
    DetailChange,
    GroupChange,
    NoChange,
    PageChange,
    ScopeManager,
)
from banded_reports.variables import VariableRuntime

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Main API
    "ReportExecution",
    "ExecutionStep",
    "CalculationEngine",
    "GroupProcessor",
    "VariableRuntime",
    "ScopeManager",
    "FormulaParser",
    "EngineConfig",
    # Definitions
    "GroupDefinition",
    "VariableDefinition",
    "AggregateKind",
    "ResetScope",
    # Expressions
    "FieldRef",
    "RelationshipFieldRef",
    "ExplicitFieldRef",
    "Literal",
    "Call",
    "NativeFunction",
    "Nil",
    # Results and breaks
    "Result",
    "GroupResult",
    "GroupSummary",
    "BreakClassification",
    "NoChange",
    "DetailChange",
    "GroupChange",
    "PageChange",
    # Functions
    "FunctionRegistry",
    "default_registry",
    # Errors
    "EvalError",
    "FieldNotFound",
    "RelationshipNotFound",
    "InvalidRelationship",
    "InvalidArithmetic",
    "DivisionByZero",
    "UnknownFunction",
    "EvaluationError",
    "ThrownError",
    "ProcessExit",
    "UnsupportedExpression",
    "CircularDependency",
    "MissingDependencies",
    "ReportEngineError",
    "EvaluationFailed",
    "DependencyResolutionError",
    "ThrownValue",
]

__version__ = "0.1.0"
