"""Tests for the attribute value model."""

from decimal import Decimal

import pytest

from convstore.dynamo.values import (
    AttributeKind,
    AttributeValue,
    format_number,
    item_from_wire,
    item_to_wire,
    parse_number,
)


class TestFormatNumber:
    """Tests for locale-invariant number formatting."""

    def test_int(self):
        assert format_number(42) == "42"
        assert format_number(-7) == "-7"

    def test_float_uses_shortest_repr(self):
        assert format_number(0.1) == "0.1"
        assert format_number(2.5) == "2.5"

    def test_integral_float_has_no_fraction(self):
        assert format_number(3.0) == "3"

    def test_decimal_is_normalized(self):
        assert format_number(Decimal("1.500")) == "1.5"
        assert format_number(Decimal("1E+3")) == "1000"

    def test_numeric_text(self):
        assert format_number(" 12.50 ") == "12.5"

    def test_rejects_bool(self):
        with pytest.raises(TypeError):
            format_number(True)

    def test_rejects_non_finite(self):
        with pytest.raises(ValueError):
            format_number(float("nan"))
        with pytest.raises(ValueError):
            format_number(Decimal("Infinity"))

    def test_rejects_garbage_text(self):
        with pytest.raises(ValueError):
            format_number("twelve")

    def test_parse_number(self):
        assert parse_number("10") == 10
        assert isinstance(parse_number("10"), int)
        assert parse_number("1.25") == Decimal("1.25")


class TestAttributeValueConstructors:
    """Tests for variant constructors and validation."""

    def test_string(self):
        value = AttributeValue.string("hello")
        assert value.kind is AttributeKind.S
        assert value.s == "hello"
        assert value.n is None

    def test_number_stores_text(self):
        value = AttributeValue.number(5)
        assert value.kind is AttributeKind.N
        assert value.n == "5"

    def test_empty_sets_rejected(self):
        with pytest.raises(ValueError):
            AttributeValue.string_set([])
        with pytest.raises(ValueError):
            AttributeValue.number_set([])

    def test_invalid_payload_rejected(self):
        with pytest.raises(ValueError):
            AttributeValue(AttributeKind.S, 5)
        with pytest.raises(ValueError):
            AttributeValue(AttributeKind.N, "abc")

    def test_of_converts_plain_values(self):
        assert AttributeValue.of("x").kind is AttributeKind.S
        assert AttributeValue.of(1).kind is AttributeKind.N
        assert AttributeValue.of(True).kind is AttributeKind.BOOL
        assert AttributeValue.of(None).kind is AttributeKind.NULL
        assert AttributeValue.of(b"raw").kind is AttributeKind.B
        assert AttributeValue.of({"a", "b"}).kind is AttributeKind.SS
        assert AttributeValue.of({1, 2}).kind is AttributeKind.NS
        assert AttributeValue.of([1, "a"]).kind is AttributeKind.L
        assert AttributeValue.of({"k": 1}).kind is AttributeKind.M

    def test_of_passes_through_attribute_values(self):
        value = AttributeValue.string("x")
        assert AttributeValue.of(value) is value

    def test_of_rejects_mixed_sets(self):
        with pytest.raises(TypeError):
            AttributeValue.of({1, "a"})

    def test_of_rejects_unknown_types(self):
        with pytest.raises(TypeError):
            AttributeValue.of(object())

    def test_map_values_are_hashable(self):
        first = AttributeValue.map({"a": AttributeValue.string("x")})
        second = AttributeValue.map({"a": AttributeValue.string("x")})
        assert first == second
        assert hash(first) == hash(second)


class TestWireFormat:
    """Tests for DynamoDB JSON conversion."""

    def test_from_wire_requires_one_variant(self):
        with pytest.raises(ValueError):
            AttributeValue.from_wire({})
        with pytest.raises(ValueError):
            AttributeValue.from_wire({"S": "a", "N": "1"})

    def test_from_wire_ignores_null_members(self):
        value = AttributeValue.from_wire({"S": "a", "N": None})
        assert value.s == "a"

    def test_from_wire_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown attribute type"):
            AttributeValue.from_wire({"X": "a"})

    def test_number_must_be_text(self):
        with pytest.raises(ValueError):
            AttributeValue.from_wire({"N": 5})

    def test_nested_structures(self):
        wire = {
            "M": {
                "tags": {"SS": ["b", "a"]},
                "items": {"L": [{"N": "1"}, {"BOOL": True}, {"NULL": True}]},
            }
        }
        value = AttributeValue.from_wire(wire)
        assert value.m["tags"].value == frozenset({"a", "b"})
        assert value.m["items"].l[0].n == "1"
        # Sets render sorted
        assert value.to_wire()["M"]["tags"] == {"SS": ["a", "b"]}

    def test_binary_is_base64_on_the_wire(self):
        value = AttributeValue.binary(b"\x00\x01")
        assert value.to_wire() == {"B": "AAE="}
        assert AttributeValue.from_wire({"B": "AAE="}) == value

    def test_invalid_base64_rejected(self):
        with pytest.raises(ValueError):
            AttributeValue.from_wire({"B": "not base64!"})

    def test_item_helpers(self):
        item = {"PK": AttributeValue.string("Conversation#1"), "Count": AttributeValue.number(3)}
        wire = item_to_wire(item)
        assert wire == {"PK": {"S": "Conversation#1"}, "Count": {"N": "3"}}
        assert item_from_wire(wire) == item

    def test_to_python(self):
        value = AttributeValue.of({"n": 2, "f": Decimal("1.5"), "l": ["x"], "z": None})
        assert value.to_python() == {"n": 2, "f": Decimal("1.5"), "l": ["x"], "z": None}
