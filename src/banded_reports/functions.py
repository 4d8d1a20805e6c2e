"""Function registry for Call expressions."""

from __future__ import annotations

import logging
import operator
from numbers import Number
from typing import Any, Callable

logger = logging.getLogger(__name__)


def _truthy(value: Any) -> bool:
    """Only False and None are falsy in report expressions."""
    return value is not None and value is not False


def _fn_abs(value: Any) -> Any:
    if not _is_number(value):
        raise RuntimeError(f"abs() requires a numeric argument, got {value!r}")
    return abs(value)


def _fn_round(value: Any, digits: int = 0) -> Any:
    if not _is_number(value):
        raise RuntimeError(f"round() requires a numeric argument, got {value!r}")
    if not isinstance(digits, int) or isinstance(digits, bool):
        raise RuntimeError(f"round() digits must be an integer, got {digits!r}")
    return round(value, digits)


def _fn_min(*args: Any) -> Any:
    values = [a for a in args if a is not None]
    if not values:
        return None
    return min(values)


def _fn_max(*args: Any) -> Any:
    values = [a for a in args if a is not None]
    if not values:
        return None
    return max(values)


def _fn_coalesce(*args: Any) -> Any:
    for arg in args:
        if arg is not None:
            return arg
    return None


def _fn_concat(*args: Any) -> str:
    return "".join("" if a is None else str(a) for a in args)


def _fn_upper(value: Any) -> Any:
    if value is None:
        return None
    if not isinstance(value, str):
        raise RuntimeError(f"upper() requires a string argument, got {value!r}")
    return value.upper()


def _fn_lower(value: Any) -> Any:
    if value is None:
        return None
    if not isinstance(value, str):
        raise RuntimeError(f"lower() requires a string argument, got {value!r}")
    return value.lower()


def _fn_length(value: Any) -> int:
    if value is None:
        return 0
    return len(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


BUILTIN_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "and": lambda left, right: _truthy(left) and _truthy(right),
    "or": lambda left, right: _truthy(left) or _truthy(right),
    "not": lambda value: not _truthy(value),
    "abs": _fn_abs,
    "round": _fn_round,
    "min": _fn_min,
    "max": _fn_max,
    "coalesce": _fn_coalesce,
    "concat": _fn_concat,
    "upper": _fn_upper,
    "lower": _fn_lower,
    "length": _fn_length,
}


class FunctionRegistry:
    """Named functions callable from Call expressions.

    A registry is injected into each CalculationEngine, so a report run can
    own its functions. Registration creates or replaces; there is no removal.
    """

    def __init__(self, builtins: bool = True) -> None:
        self._functions: dict[str, Callable[..., Any]] = {}
        if builtins:
            self._functions.update(BUILTIN_FUNCTIONS)

    def register_function(self, name: str, function: Callable[..., Any]) -> None:
        """Register a function, replacing any previous one with the same name."""
        if not isinstance(name, str) or not name:
            raise ValueError(f"Function name must be a non-empty string, got {name!r}")
        if not callable(function):
            raise ValueError(f"Function '{name}' is not callable")
        if name in self._functions:
            logger.debug("Replacing registered function '%s'", name)
        self._functions[name] = function

    def get_function(self, name: str) -> Callable[..., Any] | None:
        """Get a function by name."""
        return self._functions.get(name)

    def list_functions(self) -> list[str]:
        """Return registered function names in registration order."""
        return list(self._functions)

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def copy(self) -> FunctionRegistry:
        """Return an independent registry with the same functions."""
        clone = FunctionRegistry(builtins=False)
        clone._functions = dict(self._functions)
        return clone


# Process-wide registry used when an engine is built without one
default_registry = FunctionRegistry()
