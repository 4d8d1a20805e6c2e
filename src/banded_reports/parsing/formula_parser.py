"""Parser for report formula strings, producing Expression trees."""

from __future__ import annotations

from typing import Any

import ply.yacc as yacc

from banded_reports.expressions import (
    Call,
    Expression,
    FieldRef,
    Literal,
    Nil,
    RelationshipFieldRef,
)
from banded_reports.parsing.formula_lexer import FormulaLexer


class FormulaParser:
    """Parser for formulas such as ``if(status == "active", price * qty, 0)``.

    Identifiers become FieldRef, dotted paths become RelationshipFieldRef,
    ``name(args)`` becomes a Call resolved against the function registry.
    """

    tokens = FormulaLexer.tokens

    # Operator precedence: loosest to tightest
    precedence = (
        ("left", "OR"),
        ("left", "AND"),
        ("right", "NOT"),
        ("nonassoc", "EQ", "NEQ", "LT", "LTE", "GT", "GTE"),
        ("left", "PLUS", "MINUS"),
        ("left", "STAR", "SLASH"),
        ("right", "UMINUS"),
    )

    def __init__(self) -> None:
        self.lexer = FormulaLexer()
        self.lexer.build(debug=False, errorlog=yacc.NullLogger())
        self.parser: yacc.LRParser = None  # type: ignore

    def p_formula(self, p: yacc.YaccProduction) -> None:
        """formula : expression"""
        p[0] = p[1]

    # ---- Operators ----

    def p_expression_arithmetic(self, p: yacc.YaccProduction) -> None:
        """expression : expression PLUS expression
                      | expression MINUS expression
                      | expression STAR expression
                      | expression SLASH expression
                      | expression EQ expression
                      | expression NEQ expression
                      | expression LT expression
                      | expression LTE expression
                      | expression GT expression
                      | expression GTE expression"""
        p[0] = Call(op=p[2], args=[p[1], p[3]])

    def p_expression_and(self, p: yacc.YaccProduction) -> None:
        """expression : expression AND expression"""
        p[0] = Call(op="and", args=[p[1], p[3]])

    def p_expression_or(self, p: yacc.YaccProduction) -> None:
        """expression : expression OR expression"""
        p[0] = Call(op="or", args=[p[1], p[3]])

    def p_expression_not(self, p: yacc.YaccProduction) -> None:
        """expression : NOT expression"""
        p[0] = Call(op="not", args=[p[2]])

    def p_expression_negate(self, p: yacc.YaccProduction) -> None:
        """expression : MINUS expression %prec UMINUS"""
        operand = p[2]
        if isinstance(operand, Literal) and isinstance(operand.value, (int, float)):
            p[0] = Literal(value=-operand.value)
        else:
            p[0] = Call(op="-", args=[Literal(value=0), operand])

    def p_expression_group(self, p: yacc.YaccProduction) -> None:
        """expression : LPAREN expression RPAREN"""
        p[0] = p[2]

    # ---- Atoms ----

    def p_expression_literal(self, p: yacc.YaccProduction) -> None:
        """expression : INTEGER
                      | FLOAT
                      | STRING"""
        p[0] = Literal(value=p[1])

    def p_expression_true(self, p: yacc.YaccProduction) -> None:
        """expression : TRUE"""
        p[0] = Literal(value=True)

    def p_expression_false(self, p: yacc.YaccProduction) -> None:
        """expression : FALSE"""
        p[0] = Literal(value=False)

    def p_expression_nil(self, p: yacc.YaccProduction) -> None:
        """expression : NIL"""
        p[0] = Nil()

    def p_expression_field(self, p: yacc.YaccProduction) -> None:
        """expression : IDENTIFIER"""
        p[0] = FieldRef(name=p[1])

    def p_expression_path(self, p: yacc.YaccProduction) -> None:
        """expression : IDENTIFIER DOT path"""
        steps = [p[1]] + p[3]
        p[0] = RelationshipFieldRef(path=steps[:-1], field=steps[-1])

    def p_path_single(self, p: yacc.YaccProduction) -> None:
        """path : IDENTIFIER"""
        p[0] = [p[1]]

    def p_path_multiple(self, p: yacc.YaccProduction) -> None:
        """path : path DOT IDENTIFIER"""
        p[0] = p[1] + [p[3]]

    def p_expression_call_empty(self, p: yacc.YaccProduction) -> None:
        """expression : IDENTIFIER LPAREN RPAREN"""
        p[0] = Call(op=p[1], args=[])

    def p_expression_call(self, p: yacc.YaccProduction) -> None:
        """expression : IDENTIFIER LPAREN arg_list RPAREN"""
        p[0] = Call(op=p[1], args=p[3])

    def p_arg_list_single(self, p: yacc.YaccProduction) -> None:
        """arg_list : expression"""
        p[0] = [p[1]]

    def p_arg_list_multiple(self, p: yacc.YaccProduction) -> None:
        """arg_list : arg_list COMMA expression"""
        p[0] = p[1] + [p[3]]

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise SyntaxError(f"Syntax error at '{p.value}' (position {p.lexpos})")
        else:
            raise SyntaxError("Syntax error at end of input")

    def build(self, **kwargs: Any) -> None:
        """Build the parser."""
        kwargs.setdefault("debug", False)
        kwargs.setdefault("write_tables", False)
        kwargs.setdefault("errorlog", yacc.NullLogger())
        self.parser = yacc.yacc(module=self, start="formula", **kwargs)

    def parse(self, data: str) -> Expression:
        """Parse a formula string."""
        if self.parser is None:
            self.build()
        if not data or not data.strip():
            raise SyntaxError("Empty formula")
        return self.parser.parse(data, lexer=self.lexer.lexer)
