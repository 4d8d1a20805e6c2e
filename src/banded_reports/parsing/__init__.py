"""Parsing module for report formula strings."""

from banded_reports.parsing.formula_lexer import FormulaLexer
from banded_reports.parsing.formula_parser import FormulaParser

__all__ = [
    "FormulaLexer",
    "FormulaParser",
]
