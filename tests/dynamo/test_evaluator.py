"""Tests for the expression evaluator used by the in-memory store."""

import pytest

from convstore.dynamo.evaluator import (
    ExpressionError,
    TokenType,
    apply_update,
    evaluate_condition,
    iter_paths,
    tokenize,
)
from convstore.dynamo.values import AttributeValue as AV


@pytest.fixture
def item():
    return {
        "PK": AV.string("Conversation#1"),
        "SK": AV.string("Message#0000000003"),
        "Count": AV.number(5),
        "Tags": AV.string_set(["a", "b"]),
        "Log": AV.list([AV.string("x"), AV.string("y"), AV.string("z")]),
        "Meta": AV.map({"title": AV.string("hello")}),
    }


def check(expr, item, names=None, values=None):
    return evaluate_condition(expr, item, names or {}, values or {})


class TestTokenize:
    """Tests for the lexer."""

    def test_token_types(self):
        tokens = tokenize("#a <= :v AND size(b[0]) > :w")
        types = [t.type for t in tokens]
        assert types[:3] == [TokenType.NAME_REF, TokenType.OP, TokenType.VALUE_REF]
        assert types[-1] is TokenType.END
        assert [t.text for t in tokens if t.type is TokenType.NUMBER] == ["0"]

    def test_rejects_unknown_characters(self):
        with pytest.raises(ExpressionError):
            tokenize("#a = :v ; drop")


class TestConditions:
    """Tests for condition evaluation."""

    def test_equality(self, item):
        assert check("#c = :v", item, {"#c": "Count"}, {":v": AV.number("5.0")})
        assert not check("#c = :v", item, {"#c": "Count"}, {":v": AV.string("5")})

    def test_ordering(self, item):
        names = {"#c": "Count"}
        assert check("#c > :v", item, names, {":v": AV.number(4)})
        assert check("#c <= :v", item, names, {":v": AV.number(5)})
        assert not check("#c < :v", item, names, {":v": AV.number(5)})

    def test_ordering_across_types_is_false(self, item):
        assert not check("#c > :v", item, {"#c": "Count"}, {":v": AV.string("1")})

    def test_missing_attribute(self, item):
        names = {"#m": "Missing"}
        values = {":v": AV.number(1)}
        assert not check("#m = :v", item, names, values)
        assert check("#m <> :v", item, names, values)

    def test_between_and_in(self, item):
        names = {"#c": "Count"}
        values = {":lo": AV.number(1), ":hi": AV.number(5), ":x": AV.number(9)}
        assert check("#c BETWEEN :lo AND :hi", item, names, values)
        assert check("#c IN (:x, :hi)", item, names, values)
        assert not check("#c IN (:x)", item, names, values)

    def test_boolean_operators_and_precedence(self, item):
        names = {"#c": "Count"}
        values = {":a": AV.number(1), ":b": AV.number(5)}
        assert check("#c = :a OR #c = :b AND NOT #c = :a", item, names, values)
        assert not check("(#c = :a OR #c = :b) AND #c = :a", item, names, values)

    def test_functions(self, item):
        names = {"#pk": "PK", "#sk": "SK", "#t": "Tags", "#x": "Nope", "#l": "Log"}
        values = {":p": AV.string("Message#"), ":a": AV.string("a"), ":y": AV.string("y"), ":ty": AV.string("SS")}
        assert check("attribute_exists(#pk)", item, names)
        assert check("attribute_not_exists(#x)", item, names)
        assert check("begins_with(#sk, :p)", item, names, values)
        assert check("contains(#t, :a)", item, names, values)
        assert check("contains(#l, :y)", item, names, values)
        assert check("attribute_type(#t, :ty)", item, names, values)

    def test_size(self, item):
        assert check("size(#l) = :n", item, {"#l": "Log"}, {":n": AV.number(3)})

    def test_nested_paths(self, item):
        names = {"#m": "Meta", "#l": "Log"}
        values = {":t": AV.string("hello"), ":z": AV.string("z")}
        assert check("#m.title = :t", item, names, values)
        assert check("#l[2] = :z", item, names, values)
        assert not check("#l[7] = :z", item, names, values)

    def test_absent_item(self):
        assert check("attribute_not_exists(#pk)", None, {"#pk": "PK"})

    def test_undefined_placeholder(self, item):
        with pytest.raises(ExpressionError, match="not defined"):
            check("#c = :v", item, {}, {":v": AV.number(1)})

    def test_syntax_error(self, item):
        with pytest.raises(ExpressionError, match="Syntax error"):
            check("#c = ", item, {"#c": "Count"})
        with pytest.raises(ExpressionError):
            check("#c = :v extra", item, {"#c": "Count"}, {":v": AV.number(1)})


class TestUpdates:
    """Tests for update application."""

    def test_set_and_arithmetic(self, item):
        result = apply_update(
            "SET #c = #c + :one, #t = :title",
            item,
            {"#c": "Count", "#t": "Title"},
            {":one": AV.number(1), ":title": AV.string("new")},
        )
        assert result["Count"] == AV.number(6)
        assert result["Title"] == AV.string("new")
        # Input item untouched
        assert item["Count"] == AV.number(5)

    def test_increment_missing_attribute_fails(self, item):
        with pytest.raises(ExpressionError, match="does not exist"):
            apply_update("SET #m = #m + :one", item, {"#m": "Missing"}, {":one": AV.number(1)})

    def test_if_not_exists_accumulates(self, item):
        expr = "SET #m = if_not_exists(#m, :zero) + :n"
        values = {":zero": AV.number(0), ":n": AV.number(7)}
        first = apply_update(expr, item, {"#m": "Tokens"}, values)
        assert first["Tokens"] == AV.number(7)
        second = apply_update(expr, first, {"#m": "Tokens"}, values)
        assert second["Tokens"] == AV.number(14)

    def test_right_hand_sides_see_item_before_update(self):
        result = apply_update(
            "SET #a = #b, #b = #a",
            {"A": AV.number(1), "B": AV.number(2)},
            {"#a": "A", "#b": "B"},
            {},
        )
        assert result == {"A": AV.number(2), "B": AV.number(1)}

    def test_list_append(self, item):
        result = apply_update(
            "SET #l = list_append(#l, :more)",
            item,
            {"#l": "Log"},
            {":more": AV.list([AV.string("w")])},
        )
        assert [v.s for v in result["Log"].l] == ["x", "y", "z", "w"]

    def test_remove_list_indices_from_the_end(self, item):
        result = apply_update("REMOVE #l[0], #l[2]", item, {"#l": "Log"}, {})
        assert [v.s for v in result["Log"].l] == ["y"]

    def test_set_nested_map_entry(self, item):
        result = apply_update(
            "SET #m.#k = :v", item, {"#m": "Meta", "#k": "model"}, {":v": AV.string("m1")}
        )
        assert result["Meta"].m == {"title": AV.string("hello"), "model": AV.string("m1")}

    def test_add_and_delete_sets(self, item):
        result = apply_update(
            "ADD #t :new, #c :n DELETE #x :gone",
            {**item, "Other": AV.string_set(["q"])},
            {"#t": "Tags", "#c": "Count", "#x": "Other"},
            {":new": AV.string_set(["c"]), ":n": AV.number(2), ":gone": AV.string_set(["q"])},
        )
        assert result["Tags"].value == frozenset({"a", "b", "c"})
        assert result["Count"] == AV.number(7)
        assert "Other" not in result

    def test_add_creates_missing_number(self):
        result = apply_update("ADD #c :n", {}, {"#c": "C"}, {":n": AV.number(3)})
        assert result == {"C": AV.number(3)}

    def test_overlapping_paths_rejected(self, item):
        with pytest.raises(ExpressionError, match="overlap"):
            apply_update("SET #m.#k = :v REMOVE #m", item, {"#m": "Meta", "#k": "k"}, {":v": AV.number(1)})

    def test_repeated_clause_rejected(self, item):
        with pytest.raises(ExpressionError, match="repeated"):
            apply_update("SET #a = :v SET #b = :v", item, {"#a": "A", "#b": "B"}, {":v": AV.number(1)})

    def test_empty_update_rejected(self, item):
        with pytest.raises(ExpressionError):
            apply_update("", item, {}, {})

    def test_iter_paths(self):
        paths = list(iter_paths("SET #a = :v REMOVE b[1] ADD #c :n"))
        assert paths == [("#a",), ("b", 1), ("#c",)]
