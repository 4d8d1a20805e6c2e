"""Tests for the calculation engine."""

import sys
from collections import namedtuple
from dataclasses import dataclass
from decimal import Decimal
from types import SimpleNamespace

import pytest

from banded_reports.calculation import (
    CalculationEngine,
    RecordView,
    apply_arithmetic,
    extract_field_references,
    extract_relationship_paths,
    guarded_call,
)
from banded_reports.errors import (
    DivisionByZero,
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
    FieldRef,
    Literal,
    NativeFunction,
    Nil,
    RelationshipFieldRef,
    coerce_expression,
    related,
)
from banded_reports.functions import FunctionRegistry
from banded_reports.results import Result


@pytest.fixture
def engine():
    return CalculationEngine(FunctionRegistry())


class TestFieldAccess:
    """Tests for field and relationship lookups."""

    def test_field_from_mapping(self, engine):
        result = engine.evaluate(FieldRef("amount"), {"amount": 100})
        assert result.ok
        assert result.value == 100

    def test_field_from_object(self, engine):
        record = SimpleNamespace(amount=42)
        assert engine.evaluate("amount", record).value == 42

    def test_missing_field(self, engine):
        result = engine.evaluate(FieldRef("missing"), {"amount": 100})
        assert not result.ok
        assert result.error == FieldNotFound(name="missing")

    def test_present_none_is_a_value(self, engine):
        result = engine.evaluate(FieldRef("amount"), {"amount": None})
        assert result.ok
        assert result.value is None

    def test_explicit_relationship_field(self, engine):
        result = engine.evaluate(("field", "order", "total"), {"order": {"total": 250}})
        assert result.ok
        assert result.value == 250

    def test_missing_relationship(self, engine):
        result = engine.evaluate(("customer", "name"), {"amount": 100})
        assert result.error == RelationshipNotFound(relationship="customer")

    def test_none_relationship_is_not_found(self, engine):
        result = engine.evaluate(("customer", "name"), {"customer": None})
        assert result.error == RelationshipNotFound(relationship="customer")

    def test_relationship_must_be_record(self, engine):
        result = engine.evaluate(("customer", "name"), {"customer": 7})
        assert result.error == InvalidRelationship(relationship="customer")

    def test_missing_nested_field(self, engine):
        result = engine.evaluate(("customer", "name"), {"customer": {"id": 1}})
        assert result.error == FieldNotFound(name="name")

    def test_multi_hop_path(self, engine):
        record = {"customer": {"address": SimpleNamespace(city="Oslo")}}
        assert engine.evaluate(related("customer", "address", "city"), record).value == "Oslo"


class TestRecordView:
    """Tests for the read-only record mapping."""

    def test_namedtuple(self):
        Row = namedtuple("Row", ["region", "amount"])
        view = RecordView(Row("West", 5))
        assert view["amount"] == 5
        assert list(view) == ["region", "amount"]
        assert dict(view) == {"region": "West", "amount": 5}

    def test_property_and_slots(self):
        class Line:
            __slots__ = ("price", "qty")

            def __init__(self, price, qty):
                self.price = price
                self.qty = qty

            @property
            def amount(self):
                return self.price * self.qty

        view = RecordView(Line(3, 2))
        assert "amount" in view
        assert view["amount"] == 6
        assert len(view) == 2

    def test_missing_name(self):
        view = RecordView({"amount": None})
        assert view["amount"] is None
        assert "region" not in view
        with pytest.raises(KeyError):
            view["region"]

    def test_missing_value_default(self):
        assert Result.failure(FieldNotFound(name="x")).value_or(0) == 0
        assert Result.success(None).value_or(0) is None


class TestLiterals:
    """Tests for constants."""

    def test_literal_returned_unchanged(self, engine):
        assert engine.evaluate(Literal("West"), {}).value == "West"

    def test_nil(self, engine):
        result = engine.evaluate(Nil(), {})
        assert result.ok
        assert result.value is None

    def test_raw_number(self, engine):
        assert engine.evaluate(5, {}).value == 5

    def test_none_is_nil(self, engine):
        assert engine.evaluate(None, {}).ok


class TestArithmetic:
    """Tests for +, -, *, /."""

    def test_add_fields(self, engine):
        expr = Call("+", ["a", "b"])
        assert engine.evaluate(expr, {"a": 2, "b": 3}).value == 5

    def test_multiply_with_raw_scalar(self, engine):
        expr = Call("*", ["price", 2])
        assert engine.evaluate(expr, {"price": 10}).value == 20

    def test_division_is_true_division(self, engine):
        assert engine.evaluate(Call("/", [7, 2]), {}).value == 3.5

    def test_decimal_division_keeps_type(self):
        result = apply_arithmetic("/", Decimal("1"), Decimal("4"))
        assert result.value == Decimal("0.25")

    def test_division_by_zero(self, engine):
        assert engine.evaluate(Call("/", [1, 0]), {}).error == DivisionByZero()

    def test_string_concatenation(self, engine):
        expr = Call("+", [Literal("a"), Literal("b")])
        assert engine.evaluate(expr, {}).value == "ab"

    def test_bool_is_not_a_number(self, engine):
        result = engine.evaluate(Call("+", [Literal(True), 1]), {})
        assert result.error == InvalidArithmetic(op="+", left=True, right=1)

    def test_string_and_number_mismatch(self, engine):
        result = engine.evaluate(Call("*", [Literal("x"), 2]), {})
        assert isinstance(result.error, InvalidArithmetic)

    def test_first_failing_operand_wins(self, engine):
        result = engine.evaluate(Call("+", ["missing", "also_missing"]), {})
        assert result.error == FieldNotFound(name="missing")

    def test_wrong_arity(self, engine):
        result = engine.evaluate(Call("+", [1]), {})
        assert isinstance(result.error, UnsupportedExpression)


class TestConditional:
    """Tests for if(cond, then, else)."""

    def test_true_branch(self, engine):
        expr = Call("if", ["flag", Literal("yes"), Literal("no")])
        assert engine.evaluate(expr, {"flag": True}).value == "yes"

    def test_only_false_and_none_are_falsy(self, engine):
        expr = Call("if", ["flag", Literal("yes"), Literal("no")])
        assert engine.evaluate(expr, {"flag": 0}).value == "yes"
        assert engine.evaluate(expr, {"flag": None}).value == "no"
        assert engine.evaluate(expr, {"flag": False}).value == "no"

    def test_unselected_branch_not_evaluated(self, engine):
        expr = Call("if", [Literal(True), 1, Call("/", [1, 0])])
        assert engine.evaluate(expr, {}).value == 1


class TestFunctions:
    """Tests for registered and native functions."""

    def test_builtin_comparison(self, engine):
        assert engine.evaluate(Call(">", ["amount", 50]), {"amount": 100}).value is True

    def test_unknown_function(self, engine):
        assert engine.evaluate(Call("nope", []), {}).error == UnknownFunction(name="nope")

    def test_registered_function(self, engine):
        engine.register_function("double", lambda x: x * 2)
        assert engine.evaluate(Call("double", ["amount"]), {"amount": 4}).value == 8
        assert "double" in engine.list_functions()
        assert engine.get_function("double") is not None

    def test_registry_is_per_engine(self):
        first = CalculationEngine(FunctionRegistry())
        second = CalculationEngine(FunctionRegistry())
        first.register_function("only_here", lambda: 1)
        assert second.get_function("only_here") is None

    def test_arguments_evaluated_first(self, engine):
        engine.register_function("double", lambda x: x * 2)
        result = engine.evaluate(Call("double", ["missing"]), {})
        assert result.error == FieldNotFound(name="missing")

    def test_native_function_receives_record(self, engine):
        expr = NativeFunction(lambda record: record["amount"] + 1)
        assert engine.evaluate(expr, {"amount": 1}).value == 2

    def test_raw_callable_is_native(self, engine):
        assert engine.evaluate(lambda record: "hi", {}).value == "hi"


class TestCaptureBoundary:
    """Faults inside host code become error values."""

    def test_exception(self, engine):
        def boom(record):
            raise RuntimeError("bad")

        result = engine.evaluate(NativeFunction(boom), {})
        assert isinstance(result.error, EvaluationError)
        assert isinstance(result.error.exception, RuntimeError)

    def test_thrown_value(self, engine):
        def throw(record):
            raise ThrownValue({"code": 7})

        result = engine.evaluate(NativeFunction(throw), {})
        assert result.error == ThrownError(payload={"code": 7})

    def test_system_exit(self, engine):
        result = engine.evaluate(NativeFunction(lambda record: sys.exit("stop")), {})
        assert result.error == ProcessExit(reason="stop")

    def test_registered_function_fault(self, engine):
        engine.register_function("explode", lambda: 1 / 0)
        result = engine.evaluate(Call("explode", []), {})
        assert isinstance(result.error, EvaluationError)

    def test_keyboard_interrupt_propagates(self):
        def interrupt():
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            guarded_call(interrupt)


class TestShapes:
    """Tests for structural coercion of host shapes."""

    def test_unsupported_shape(self, engine):
        result = engine.evaluate(object(), {})
        assert isinstance(result.error, UnsupportedExpression)

    def test_tuple_shapes(self):
        assert coerce_expression(("amount",)) == FieldRef("amount")
        assert coerce_expression(("customer", "name")) == RelationshipFieldRef(["customer"], "name")
        assert coerce_expression(("field", "order", "total")) == ExplicitFieldRef("order", "total")
        assert coerce_expression(("field", "a", "b", "c")) == RelationshipFieldRef(["a", "b"], "c")

    def test_query_builder_ref(self, engine):
        @dataclass
        class Attribute:
            name: str

        @dataclass
        class Ref:
            attribute: Attribute
            relationship_path: list

        node = Ref(Attribute("name"), ["customer"])
        assert coerce_expression(node) == RelationshipFieldRef(["customer"], "name")
        assert engine.evaluate(node, {"customer": {"name": "Ada"}}).value == "Ada"

    def test_query_builder_call(self):
        node = SimpleNamespace(name="upper", args=["name"])
        assert coerce_expression(node) == Call("upper", ["name"])


class TestValidate:
    """Tests for structural validation."""

    def test_valid_expression(self, engine):
        assert engine.validate(Call("+", ["a", Call("*", ["b", 2])])).ok

    def test_bad_arity_nested(self, engine):
        result = engine.validate(Call("+", ["a", Call("if", [Literal(True), 1])]))
        assert isinstance(result.error, UnsupportedExpression)

    def test_unrecognized_arg(self, engine):
        assert not engine.validate(Call("max", [object()])).ok


class TestStaticAnalysis:
    """Tests for field and relationship extraction."""

    def test_field_references(self):
        expr = Call("+", [related("customer", "address", "city"), Call("*", ["qty", "qty"])])
        assert extract_field_references(expr) == ["customer", "address", "city", "qty"]

    def test_explicit_ref(self):
        assert extract_field_references(("field", "order", "total")) == ["order", "total"]

    def test_native_and_literal_have_no_references(self):
        assert extract_field_references(NativeFunction(len)) == []
        assert extract_field_references(Literal(1)) == []

    def test_relationship_paths(self):
        expr = Call("+", [("customer", "name"), related("customer", "address", "city")])
        assert extract_relationship_paths(expr) == [["customer"], ["customer", "address"]]


class TestEvaluateOrRaise:
    """Tests for the fail-fast variant."""

    def test_returns_value(self, engine):
        assert engine.evaluate_or_raise("amount", {"amount": 3}) == 3

    def test_raises_with_error(self, engine):
        with pytest.raises(EvaluationFailed) as exc_info:
            engine.evaluate_or_raise("missing", {})
        assert exc_info.value.error == FieldNotFound(name="missing")


class TestFormulaEvaluation:
    """Tests for evaluating formula strings."""

    def test_evaluate_formula(self, engine):
        result = engine.evaluate_formula("price * qty + 1", {"price": 5, "qty": 2})
        assert result.value == 11

    def test_formula_with_function(self, engine):
        result = engine.evaluate_formula('if(status == "active", amount, 0)', {"status": "active", "amount": 9})
        assert result.value == 9


class TestModuleFunctions:
    """Tests for the process-wide conveniences."""

    def test_evaluate_and_validate(self):
        from banded_reports import calculation
        from banded_reports.expressions import call, field_ref, literal

        expr = call("+", field_ref("a"), literal(1))
        assert calculation.evaluate(expr, {"a": 1}).value == 2
        assert calculation.validate_expression(expr).ok
        assert calculation.evaluate_or_raise(expr, {"a": 2}) == 3
        assert "coalesce" in calculation.list_functions()

    def test_registry_copy_is_independent(self):
        registry = FunctionRegistry()
        clone = registry.copy()
        clone.register_function("extra", lambda: 1)
        assert "extra" in clone
        assert "extra" not in registry
        assert registry.list_functions() == clone.list_functions()[:-1]

    def test_registry_rejects_bad_registration(self):
        registry = FunctionRegistry(builtins=False)
        assert registry.list_functions() == []
        with pytest.raises(ValueError):
            registry.register_function("", len)
        with pytest.raises(ValueError):
            registry.register_function("x", 42)
