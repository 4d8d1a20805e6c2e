"""Engine configuration, with environment variable support."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

DEFAULT_LOG_LEVEL = "WARNING"

ENV_CONSERVATIVE_DEPS = "BANDED_REPORTS_CONSERVATIVE_DEPS"
ENV_MISSING_AS_NIL = "BANDED_REPORTS_MISSING_AS_NIL"
ENV_LOG_LEVEL = "BANDED_REPORTS_LOG_LEVEL"

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class EngineConfig:
    """Behavior switches for a report run.

    conservative_dependencies: a variable whose expression calls a native
        function is treated as depending on every other variable.
    missing_fields_as_nil: a field absent from the record contributes nil
        to aggregates instead of surfacing FieldNotFound.
    """

    conservative_dependencies: bool = False
    missing_fields_as_nil: bool = True
    log_level: str = DEFAULT_LOG_LEVEL

    def validate(self) -> list[str]:
        """Return a list of configuration problems (empty when valid)."""
        errors = []
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            errors.append(f"Unknown log level: {self.log_level}")
        return errors

    @property
    def numeric_log_level(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {self.log_level}")
        return level

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Create config from BANDED_REPORTS_* environment variables."""
        return cls(
            conservative_dependencies=_env_flag(ENV_CONSERVATIVE_DEPS, False),
            missing_fields_as_nil=_env_flag(ENV_MISSING_AS_NIL, True),
            log_level=os.getenv(ENV_LOG_LEVEL) or DEFAULT_LOG_LEVEL,
        )
