"""Expression AST nodes and structural coercion of host expression shapes."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from decimal import Decimal
from fractions import Fraction
from typing import Any, Callable, Union


# ---- Expression AST nodes ----


@dataclass
class FieldRef:
    """Direct field access on the record: record.name."""
    name: str


@dataclass
class RelationshipFieldRef:
    """Relationship traversal: record.path[0]...path[-1].field."""
    path: list[str]
    field: str


@dataclass
class ExplicitFieldRef:
    """Explicit single-hop relationship field: record.relationship.field."""
    relationship: str
    field: str


@dataclass
class Literal:
    """A constant value, returned unchanged."""
    value: Any


@dataclass
class Call:
    """An operator or function call: +, -, *, /, if, or a registered function."""
    op: str
    args: list[Any] = field(default_factory=list)


@dataclass
class NativeFunction:
    """A host callable invoked with the record."""
    function: Callable[[Any], Any]


@dataclass
class Nil:
    """The absent value."""
    pass


# Union of all expression types
Expression = Union[
    FieldRef, RelationshipFieldRef, ExplicitFieldRef,
    Literal, Call, NativeFunction, Nil,
]

EXPRESSION_TYPES = (
    FieldRef, RelationshipFieldRef, ExplicitFieldRef,
    Literal, Call, NativeFunction, Nil,
)

# Scalar Python values accepted as literals without an explicit Literal wrapper
LITERAL_TYPES = (bool, int, float, Decimal, Fraction, datetime.date, datetime.time, datetime.timedelta)


class UnrecognizedShape(Exception):
    """Raised by coerce_expression for shapes it cannot map to a node."""

    def __init__(self, shape: Any) -> None:
        super().__init__(f"Unsupported expression shape: {shape!r}")
        self.shape = shape


def is_expression(obj: Any) -> bool:
    """Return True if obj is already an Expression node."""
    return isinstance(obj, EXPRESSION_TYPES)


def coerce_expression(obj: Any) -> Expression:
    """Map a host expression shape onto an Expression node.

    Recognition is structural so callers are not tied to any framework's
    node classes:

    - None → Nil, str → FieldRef
    - (name,) → FieldRef
    - (relationship, field) → RelationshipFieldRef
    - ("field", relationship, field) → ExplicitFieldRef
    - ("field", rel1, rel2, ..., field) → RelationshipFieldRef
    - numbers, bools, dates → Literal
    - objects with ``attribute.name`` (and optionally ``relationship_path``)
      → FieldRef / RelationshipFieldRef
    - objects with ``name`` and ``args`` → Call
    - any other callable → NativeFunction

    Raises UnrecognizedShape for anything else.
    """
    if is_expression(obj):
        return obj
    if obj is None:
        return Nil()
    if isinstance(obj, str):
        return FieldRef(name=obj)
    if isinstance(obj, LITERAL_TYPES):
        return Literal(value=obj)
    if isinstance(obj, tuple):
        return _coerce_tuple(obj)

    ref = _coerce_ref_shape(obj)
    if ref is not None:
        return ref
    call = _coerce_call_shape(obj)
    if call is not None:
        return call

    if callable(obj):
        return NativeFunction(function=obj)
    raise UnrecognizedShape(obj)


def _coerce_tuple(shape: tuple) -> Expression:
    if not shape or not all(isinstance(part, str) for part in shape):
        raise UnrecognizedShape(shape)
    if len(shape) == 1:
        return FieldRef(name=shape[0])
    if len(shape) == 2:
        return RelationshipFieldRef(path=[shape[0]], field=shape[1])
    if shape[0] == "field":
        if len(shape) == 3:
            return ExplicitFieldRef(relationship=shape[1], field=shape[2])
        return RelationshipFieldRef(path=list(shape[1:-1]), field=shape[-1])
    raise UnrecognizedShape(shape)


def _coerce_ref_shape(obj: Any) -> Expression | None:
    """Recognize query-builder reference nodes (attribute + relationship_path)."""
    attribute = getattr(obj, "attribute", None)
    if attribute is None:
        return None
    name = getattr(attribute, "name", attribute)
    if not isinstance(name, str):
        return None
    path = list(getattr(obj, "relationship_path", None) or [])
    if not all(isinstance(step, str) for step in path):
        return None
    if not path:
        return FieldRef(name=name)
    return RelationshipFieldRef(path=path, field=name)


def _coerce_call_shape(obj: Any) -> Expression | None:
    """Recognize query-builder call nodes (name + args)."""
    name = getattr(obj, "name", None)
    args = getattr(obj, "args", None)
    if not isinstance(name, str) or not isinstance(args, (list, tuple)):
        return None
    return Call(op=name, args=list(args))


# ---- Convenience constructors ----


def field_ref(name: str) -> FieldRef:
    return FieldRef(name=name)


def related(*steps: str) -> RelationshipFieldRef:
    """related("customer", "address", "city") → customer.address.city"""
    if len(steps) < 2:
        raise ValueError("related() requires a relationship and a field")
    return RelationshipFieldRef(path=list(steps[:-1]), field=steps[-1])


def call(op: str, *args: Any) -> Call:
    return Call(op=op, args=list(args))


def literal(value: Any) -> Literal:
    return Literal(value=value)
