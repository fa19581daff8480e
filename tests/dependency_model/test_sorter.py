"""Tests for the deterministic topological sorter."""

from __future__ import annotations

import logging

import pytest

from src.dependency_model.items import DependentItem, ItemKind
from src.dependency_model.sorter import EntryRole, SortResult, sort_items


def _names(result: SortResult) -> list[str]:
    return [s.full_name for s in result.items]


def _position(result: SortResult, name: str, role: EntryRole | None = None) -> int:
    for s in result.sorted_items:
        if s.full_name == name and (role is None or s.role is role):
            return s.index
    raise AssertionError(f"{name} not sorted")


# ---------------------------------------------------------------------------
# Plain requirements
# ---------------------------------------------------------------------------


class TestRequirements:
    def test_required_item_comes_first(self) -> None:
        b = DependentItem("b")
        a = DependentItem("a", requires=[b])
        result = sort_items([a])
        assert result.is_complete
        assert _names(result) == ["b", "a"]

    def test_string_reference_is_resolved_by_name(self) -> None:
        a = DependentItem("a", requires=["b"])
        b = DependentItem("b")
        result = sort_items([a, b])
        assert result.is_complete
        assert _names(result) == ["b", "a"]

    def test_independent_items_keep_discovery_order(self) -> None:
        items = [DependentItem(n) for n in ("c", "a", "b")]
        result = sort_items(items)
        assert _names(result) == ["c", "a", "b"]

    def test_repeated_runs_are_identical(self) -> None:
        def build() -> list[DependentItem]:
            z = DependentItem("z")
            y = DependentItem("y", requires=[z])
            x = DependentItem("x", requires=[y, z])
            w = DependentItem("w", requires=[z])
            return [x, w]

        first = [str(s) for s in sort_items(build()).sorted_items]
        second = [str(s) for s in sort_items(build()).sorted_items]
        assert first == second

    def test_every_item_follows_its_requirements(self) -> None:
        e = DependentItem("e")
        d = DependentItem("d", requires=[e])
        c = DependentItem("c", requires=[d])
        b = DependentItem("b", requires=[e, c])
        a = DependentItem("a", requires=[b, d])
        result = sort_items([a])
        assert result.is_complete
        for item in (a, b, c, d, e):
            for required in item.requires:
                assert _position(result, required.full_name) < _position(result, item.full_name)

    def test_ranks_follow_longest_path(self) -> None:
        c = DependentItem("c")
        b = DependentItem("b", requires=[c])
        a = DependentItem("a", requires=[b, c])
        result = sort_items([a])
        ranks = {s.full_name: s.rank for s in result.items}
        assert ranks == {"c": 0, "b": 1, "a": 2}

    def test_find_returns_sorted_entry(self) -> None:
        payload = object()
        result = sort_items([DependentItem("a", payload=payload)])
        found = result.find("a")
        assert found is not None
        assert found.payload is payload
        assert result.find("missing") is None


# ---------------------------------------------------------------------------
# Containers, generalizations and groups
# ---------------------------------------------------------------------------


class TestContainers:
    def test_container_head_precedes_children_and_end_follows(self) -> None:
        container = DependentItem("C", kind=ItemKind.CONTAINER)
        c1 = DependentItem("c1", container=container)
        c2 = DependentItem("c2", container=container)
        container.children.extend([c1, c2])
        result = sort_items([container])
        assert result.is_complete
        head = _position(result, "C", EntryRole.HEAD)
        end = _position(result, "C", EntryRole.END)
        assert head < _position(result, "c1") < end
        assert head < _position(result, "c2") < end

    def test_heads_are_excluded_from_items(self) -> None:
        container = DependentItem("C", kind=ItemKind.CONTAINER)
        container.children.append(DependentItem("c1"))
        result = sort_items([container])
        assert _names(result) == ["c1", "C"]
        assert len(result.sorted_items) == 3

    def test_requiring_a_container_follows_all_its_children(self) -> None:
        container = DependentItem("C", kind=ItemKind.CONTAINER)
        c1 = DependentItem("c1", container=container)
        container.children.append(c1)
        d = DependentItem("d", requires=[container])
        result = sort_items([d])
        assert result.is_complete
        assert _position(result, "c1") < _position(result, "d")
        assert _position(result, "C", EntryRole.END) < _position(result, "d")

    def test_container_declared_by_child_only(self) -> None:
        container = DependentItem("C", kind=ItemKind.CONTAINER)
        child = DependentItem("child", container=container)
        result = sort_items([child])
        assert result.is_complete
        assert _position(result, "C", EntryRole.HEAD) < _position(result, "child")

    def test_generalization_is_required_and_supplies_container(self) -> None:
        container = DependentItem("C", kind=ItemKind.CONTAINER)
        general = DependentItem("general", container=container)
        special = DependentItem("special", generalization=general)
        container.children.append(general)
        result = sort_items([container, special])
        assert result.is_complete
        assert _position(result, "general") < _position(result, "special")
        assert _position(result, "special") < _position(result, "C", EntryRole.END)

    def test_group_gathers_members_without_owning_them(self) -> None:
        container = DependentItem("C", kind=ItemKind.CONTAINER)
        x = DependentItem("x", container=container)
        y = DependentItem("y")
        container.children.append(x)
        group = DependentItem("G", kind=ItemKind.GROUP, children=[x, y])
        z = DependentItem("z", requires=[group])
        result = sort_items([container, z])
        assert result.is_complete
        assert _position(result, "x") < _position(result, "z")
        assert _position(result, "y") < _position(result, "z")

    def test_item_declaring_a_group_membership(self) -> None:
        group = DependentItem("G", kind=ItemKind.GROUP)
        member = DependentItem("m", groups=[group])
        after = DependentItem("after", requires=[group])
        result = sort_items([after, member])
        assert result.is_complete
        assert _position(result, "m") < _position(result, "after")

    def test_two_containers_claiming_a_child_conflict(self) -> None:
        child = DependentItem("child")
        c1 = DependentItem("C1", kind=ItemKind.CONTAINER, children=[child])
        c2 = DependentItem("C2", kind=ItemKind.CONTAINER, children=[child])
        result = sort_items([c1, c2])
        assert not result.is_complete
        assert result.has_structure_error
        assert result.container_conflicts
        assert result.sorted_items == []

    def test_plain_item_as_container_conflicts(self) -> None:
        plain = DependentItem("plain")
        child = DependentItem("child", container=plain)
        result = sort_items([child])
        assert not result.is_complete
        assert "plain" in result.container_conflicts[0]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestSortErrors:
    def test_missing_requirement_fails_the_sort(self) -> None:
        a = DependentItem("a", requires=["ghost"])
        result = sort_items([a])
        assert not result.is_complete
        assert [m.reference for m in result.missing] == ["ghost"]
        assert result.sorted_items == []
        assert "ghost" in result.describe()

    def test_optional_item_ignores_missing_requirement(self) -> None:
        a = DependentItem("a", requires=["ghost"], optional=True)
        result = sort_items([a])
        assert result.is_complete
        assert _names(result) == ["a"]

    def test_missing_requirement_is_reported_once(self) -> None:
        a = DependentItem("a", requires=["ghost", "ghost"])
        result = sort_items([a])
        assert len(result.missing) == 1

    def test_homonyms_fail_the_sort(self) -> None:
        result = sort_items([DependentItem("a"), DependentItem("a")])
        assert not result.is_complete
        assert len(result.homonyms) == 1

    def test_two_item_cycle_is_reported(self) -> None:
        a = DependentItem("a")
        b = DependentItem("b", requires=[a])
        a.requires.append(b)
        result = sort_items([a])
        assert not result.is_complete
        assert not result.has_structure_error
        assert result.sorted_items == []
        assert len(result.cycles) == 1
        assert str(result.cycles[0]) == "a -> b -> a"

    def test_cycle_never_yields_an_order(self) -> None:
        c = DependentItem("c")
        b = DependentItem("b", requires=[c])
        a = DependentItem("a", requires=[b])
        c.requires.append(a)
        d = DependentItem("d")
        result = sort_items([a, d])
        assert not result.is_complete
        assert result.items == []
        assert set(result.cycles[0].names) == {"a", "b", "c"}

    def test_shortest_cycle_through_the_first_item(self) -> None:
        a = DependentItem("a")
        b = DependentItem("b")
        c = DependentItem("c")
        a.requires.append(b)
        b.requires.append(c)
        c.requires.extend([a, b])
        result = sort_items([a])
        assert len(result.cycles) == 1
        assert result.cycles[0].names[0] == "a"
        assert len(result.cycles[0].names) == 3

    def test_self_requirement_is_a_cycle(self) -> None:
        a = DependentItem("a")
        a.requires.append(a)
        result = sort_items([a])
        assert [c.names for c in result.cycles] == [["a"]]

    def test_cycle_through_a_container(self) -> None:
        container = DependentItem("C", kind=ItemKind.CONTAINER)
        child = DependentItem("child", container=container, requires=[container])
        container.children.append(child)
        result = sort_items([container])
        assert not result.is_complete
        assert set(result.cycles[0].names) == {"C", "child"}

    def test_describe_complete_result(self) -> None:
        result = sort_items([DependentItem("a")])
        assert result.describe() == "Sort succeeded with 1 entries."

    def test_log_error_uses_given_logger(self, caplog: pytest.LogCaptureFixture) -> None:
        a = DependentItem("a", requires=["ghost"])
        result = sort_items([a])
        with caplog.at_level(logging.ERROR, logger="tests.sorter"):
            result.log_error(logging.getLogger("tests.sorter"))
        assert "ghost" in caplog.text
