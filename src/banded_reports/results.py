"""Result value returned by evaluation and dependency operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class Result:
    """Either a value (ok) or an error value."""

    value: Any = None
    error: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> Result:
        return cls(value=value)

    @classmethod
    def failure(cls, error: Any) -> Result:
        if error is None:
            raise ValueError("failure() requires an error value")
        return cls(error=error)

    def value_or(self, default: Any) -> Any:
        """Return the value, or default when this is a failure."""
        return self.value if self.error is None else default
