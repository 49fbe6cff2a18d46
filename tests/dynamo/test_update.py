"""Tests for the update expression builder."""

from decimal import Decimal

import pytest

from convstore.dynamo.expressions import Condition, ExpressionSession
from convstore.dynamo.update import PathSegment, UpdateClauseSet, parse_path
from convstore.dynamo.values import AttributeValue


class TestParsePath:
    """Tests for document path parsing."""

    def test_simple_name(self):
        assert parse_path("Title") == [PathSegment(name="Title")]

    def test_nested_with_index(self):
        assert parse_path("a.b[2].c") == [
            PathSegment(name="a"),
            PathSegment(name="b"),
            PathSegment(index=2),
            PathSegment(name="c"),
        ]

    def test_consecutive_indices(self):
        segments = parse_path("grid[1][3]")
        assert [s.index for s in segments[1:]] == [1, 3]

    @pytest.mark.parametrize("path", ["", "a.", "a..b", "[0]", "a[x]", "a[1", "a]"])
    def test_malformed(self, path):
        with pytest.raises(ValueError):
            parse_path(path)


class TestClauses:
    """Tests for individual clause builders."""

    def test_set(self):
        update = UpdateClauseSet().set("Title", "hello")
        assert update.build() == "SET #n0 = :v0"
        assert update.names == {"#n0": "Title"}
        assert update.values == {":v0": AttributeValue.string("hello")}

    def test_increment_and_decrement(self):
        update = UpdateClauseSet().increment("Count", 2).decrement("Left")
        assert update.build() == "SET #n0 = #n0 + :v0, #n1 = #n1 - :v1"
        assert update.values[":v1"].n == "1"

    def test_increment_rejects_bool(self):
        with pytest.raises(TypeError):
            UpdateClauseSet().increment("Count", True)

    def test_increment_rejects_text(self):
        with pytest.raises(TypeError):
            UpdateClauseSet().increment("Count", "5")

    def test_accumulate(self):
        update = UpdateClauseSet().accumulate("Tokens", Decimal("2.5"))
        assert update.build() == "SET #n0 = if_not_exists(#n0, :v0) + :v1"
        assert update.values[":v0"].n == "0"
        assert update.values[":v1"].n == "2.5"

    def test_set_if_not_exists(self):
        update = UpdateClauseSet().set_if_not_exists("CreatedAt", 10)
        assert update.build() == "SET #n0 = if_not_exists(#n0, :v0)"

    def test_list_append_both_ends(self):
        end = UpdateClauseSet().set_list_append("Log", ["a"])
        assert end.build() == "SET #n0 = list_append(#n0, :v0)"
        assert end.values[":v0"] == AttributeValue.list([AttributeValue.string("a")])

        front = UpdateClauseSet().set_list_append("Log", ["a"], append_to_end=False)
        assert front.build() == "SET #n0 = list_append(:v0, #n0)"

    def test_list_element(self):
        update = UpdateClauseSet().set_list_element("Log", 3, "x").remove_list_element("Log", 0)
        assert update.build() == "SET #n0[3] = :v0 REMOVE #n0[0]"

    def test_negative_index_rejected(self):
        with pytest.raises(ValueError):
            UpdateClauseSet().set_list_element("Log", -1, "x")
        with pytest.raises(ValueError):
            UpdateClauseSet().remove_list_element("Log", -1)

    def test_path_segments_get_fresh_tokens(self):
        update = UpdateClauseSet().set_path("a.a[1].b", 5)
        assert update.build() == "SET #n0.#n1[1].#n2 = :v0"
        assert update.names == {"#n0": "a", "#n1": "a", "#n2": "b"}

    def test_remove_multiple(self):
        update = UpdateClauseSet().remove("A", "B")
        assert update.build() == "REMOVE #n0, #n1"

    def test_remove_nothing_is_noop(self):
        assert UpdateClauseSet().remove().is_empty

    def test_remove_path(self):
        assert UpdateClauseSet().remove_path("m.k").build() == "REMOVE #n0.#n1"

    def test_add_and_delete(self):
        update = UpdateClauseSet().add("Tags", {"x"}).delete("Tags", {"y"})
        assert update.build() == "ADD #n0 :v0 DELETE #n0 :v1"

    def test_raw_expressions_strip_keyword(self):
        update = (
            UpdateClauseSet()
            .set_expression("SET #a = :a")
            .add_expression("ADD #b :b")
            .delete_expression("#c :c")
        )
        assert update.build() == "SET #a = :a ADD #b :b DELETE #c :c"

    def test_empty_raw_expression_rejected(self):
        with pytest.raises(ValueError):
            UpdateClauseSet().set_expression("SET ")


class TestBuild:
    """Tests for rendering and guards."""

    def test_clause_order_is_fixed(self):
        update = (
            UpdateClauseSet()
            .delete("Tags", {"old"})
            .add("Count", 1)
            .remove("Draft")
            .set("Title", "t")
        )
        assert update.build() == "SET #n3 = :v2 REMOVE #n2 ADD #n1 :v1 DELETE #n0 :v0"

    def test_empty_update_rejected(self):
        update = UpdateClauseSet()
        assert update.is_empty
        with pytest.raises(ValueError, match="Update has no clauses"):
            update.build()

    def test_where_with_session_condition(self):
        session = ExpressionSession()
        update = UpdateClauseSet(session).increment("Count").where(session.attribute_exists("PK"))
        assert update.build() == "SET #n0 = #n0 + :v0"
        assert update.condition.expression == "attribute_exists(#n1)"
        assert update.names == {"#n0": "Count", "#n1": "PK"}

    def test_where_merges_name_derived_condition(self):
        update = UpdateClauseSet().set("Title", "t").where(Condition.attribute_exists("PK"))
        assert update.names == {"#n0": "Title", "#PK": "PK"}

    def test_where_twice_ands_conditions(self):
        update = (
            UpdateClauseSet()
            .set("Title", "t")
            .where(Condition.attribute_exists("PK"))
            .where(Condition.equals("Status", "open"))
        )
        assert update.condition.expression == "attribute_exists(#PK) AND #Status = :Status"
        assert ":Status" in update.values

    def test_where_rebinds_clashing_name_token(self):
        update = UpdateClauseSet().set("Title", "t")
        update.where(Condition("attribute_exists(#n0)", {"#n0": "Other"}))
        assert update.build() == "SET #n0 = :v0"
        assert update.condition.expression == "attribute_exists(#n1)"
        assert update.names == {"#n0": "Title", "#n1": "Other"}

    def test_where_rebinds_clashing_value_token(self):
        update = UpdateClauseSet().set("A", 1).where(Condition.equals("v0", 5))
        assert update.build() == "SET #n0 = :v0"
        assert update.condition.expression == "#v0 = :v1"
        assert update.names == {"#n0": "A", "#v0": "v0"}
        assert update.values == {":v0": AttributeValue.number(1), ":v1": AttributeValue.number(5)}

    def test_where_shares_identical_tokens(self):
        session = ExpressionSession()
        update = UpdateClauseSet(session).set("PK", "x")
        update.where(Condition("attribute_exists(#n0)", {"#n0": "PK"}))
        assert update.condition.expression == "attribute_exists(#n0)"
        assert update.names == {"#n0": "PK"}

    def test_tokens_after_merge_do_not_collide(self):
        update = UpdateClauseSet().where(Condition("attribute_exists(#n0)", {"#n0": "PK"}))
        update.set("Title", "t")
        assert update.build() == "SET #n1 = :v0"
