"""Tests for the selector engine: descend, union and filter-derived selectors."""

import itertools

import pytest

from cargo_db.schema.selector import (
    ALL,
    DEEP,
    descend,
    filter_paths,
    is_structured,
    selector_from_filter,
    union,
)


# ============================================================================
# descend
# ============================================================================


class TestDescend:
    """Verify how each selector form moves one field down."""

    @pytest.mark.parametrize(
        "selector, field, expected",
        [
            (DEEP, "anything", DEEP),
            (ALL, "name", True),
            ("name,price", "price", True),
            ("name, price", "price", True),
            ("name,price", "rating", None),
            ({"reviews": "*"}, "reviews", "*"),
            ({"reviews": "*"}, "name", None),
            ({"name": False}, "name", None),
            ({"name": None}, "name", None),
            (True, "name", None),
            (False, "name", None),
            (None, "name", None),
        ],
    )
    def test_descend(self, selector, field, expected) -> None:
        """Each selector form yields the documented sub-selector."""
        assert descend(selector, field) == expected

    def test_list_is_union_of_members(self) -> None:
        """A list selector descends every member and combines the results."""
        assert descend(["name", {"reviews": "*"}], "reviews") == "*"
        assert descend(["name", {"reviews": "*"}], "name") is True

    def test_list_with_deep_member(self) -> None:
        """A "**" member wins over every other member."""
        assert descend(["name", DEEP], "name") == DEEP

    def test_list_of_excluding_members(self) -> None:
        """A field no member selects stays excluded."""
        assert descend(["name", {"reviews": "*"}], "rating") is None


# ============================================================================
# union
# ============================================================================


class TestUnion:
    """Verify the combination of descended selectors."""

    def test_ignores_none(self) -> None:
        assert union([None, True, "name"]) == "name"

    def test_all_none(self) -> None:
        assert union([None, None]) is None

    def test_true_only(self) -> None:
        assert union([True, None, True]) is True

    def test_deep_absorbs(self) -> None:
        """"**" absorbs plain and structured selectors."""
        assert union([True, {"a": True}, DEEP, "b"]) == DEEP

    def test_deep_inside_list_absorbs(self) -> None:
        assert union([["a", DEEP]]) == DEEP

    def test_order_independent(self) -> None:
        """Every ordering of the same inputs produces the same selector."""
        members = ["name", {"reviews": "*"}, {"reviews": "text"}, True]
        results = [union(p) for p in itertools.permutations(members)]
        assert all(r == results[0] for r in results)

    def test_grouping_independent(self) -> None:
        """Union of unions equals the flat union."""
        flat = union(["a", {"b": "*"}, "c"])
        grouped = union([union(["a", {"b": "*"}]), "c"])
        assert flat == grouped

    def test_duplicates_collapse(self) -> None:
        assert union(["a", "a"]) == "a"


# ============================================================================
# is_structured
# ============================================================================


class TestIsStructured:
    """Only selectors naming sub-fields follow relations."""

    @pytest.mark.parametrize("selector", [ALL, "name", ["name"], {"name": True}])
    def test_structured(self, selector) -> None:
        assert is_structured(selector)

    @pytest.mark.parametrize("selector", [True, DEEP, None])
    def test_not_structured(self, selector) -> None:
        assert not is_structured(selector)


# ============================================================================
# Filter-derived selectors
# ============================================================================


class TestSelectorFromFilter:
    """Verify that filtered and sorted paths are compiled."""

    def test_combinators_and_dotted_paths(self) -> None:
        selector = selector_from_filter(
            {"!or": [{"name": {"!eq": "A"}}, {"author.name": {"!eq": "B"}}]}
        )
        assert selector == {"name": True, "author": {"name": True}}

    def test_nested_form(self) -> None:
        """``{"author": {"name": ...}}`` is the nested form of ``author.name``."""
        assert filter_paths({"author": {"name": {"!eq": "Ann"}}}) == [("author", "name")]

    def test_not_combinator(self) -> None:
        assert filter_paths({"!not": [{"rating": {"!lt": 3}}]}) == [("rating",)]

    def test_sort_paths(self) -> None:
        selector = selector_from_filter(None, ["name", {"field": "owner.name", "desc": True}])
        assert selector == {"name": True, "owner": {"name": True}}

    def test_single_sort_item(self) -> None:
        """A sort given as a single item is treated as a one-item list."""
        assert selector_from_filter(None, {"field": "rating"}) == {"rating": True}

    def test_deeper_path_extends_leaf(self) -> None:
        """A leaf on a path becomes an object when a longer path follows."""
        selector = selector_from_filter({"owner": {"!null": True}, "owner.name": {"!eq": "A"}})
        assert selector == {"owner": {"name": True}}

    def test_no_filter(self) -> None:
        assert selector_from_filter(None) == {}
