"""Deterministic topological sort of dependent items using NetworkX.

Containers and groups are expanded into a *head* entry and an *end* entry:
the head precedes every child and the end follows every child, so an item
requiring a container is ordered after everything the container holds.

Ties are broken by discovery order (breadth-first from the roots, in the
order references are declared), which makes the output of repeated runs on
the same input identical.

The result is all or nothing: when a requirement is missing, a name is
ambiguous or the graph is cyclic, no sequence is returned and the result
describes why.
"""
from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import networkx as nx

from src.dependency_model.items import DependentItem, ItemKind, ItemRef
from src.world_shared.constants import MAX_REPORTED_CYCLES

logger = logging.getLogger(__name__)


class EntryRole(str, Enum):
    HEAD = "head"
    ITEM = "item"
    END = "end"


_ROLE_ORDER: dict[EntryRole, int] = {
    EntryRole.HEAD: 0,
    EntryRole.ITEM: 1,
    EntryRole.END: 2,
}

# Graph nodes are (discovery index, role order): naturally ordered by the
# tie-breaking rule.
_Node = tuple[int, int]


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SortedItem:
    """One entry of a complete sort."""

    item: DependentItem
    role: EntryRole
    index: int
    rank: int

    @property
    def full_name(self) -> str:
        return self.item.full_name

    @property
    def is_head(self) -> bool:
        return self.role is EntryRole.HEAD

    @property
    def payload(self) -> Any:
        return self.item.payload

    def __str__(self) -> str:
        suffix = ".Head" if self.is_head else ""
        return f"{self.index}:{self.item.full_name}{suffix}"


@dataclass(frozen=True)
class MissingRequirement:
    """A reference that could not be resolved to a discovered item."""

    item: DependentItem
    reference: str
    relation: str

    def __str__(self) -> str:
        return f"'{self.item.full_name}' {self.relation} missing '{self.reference}'"


@dataclass(frozen=True)
class DependencyCycle:
    """A minimal cycle: each item requires the next one, the last the first."""

    items: tuple[DependentItem, ...]

    @property
    def names(self) -> list[str]:
        return [i.full_name for i in self.items]

    def __str__(self) -> str:
        names = self.names
        return " -> ".join(names + names[:1])


@dataclass
class SortResult:
    """Outcome of :func:`sort_items`.

    ``sorted_items`` is only filled when the sort is complete.
    """

    sorted_items: list[SortedItem] = field(default_factory=list)
    cycles: list[DependencyCycle] = field(default_factory=list)
    missing: list[MissingRequirement] = field(default_factory=list)
    homonyms: list[tuple[DependentItem, DependentItem]] = field(default_factory=list)
    container_conflicts: list[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not (
            self.cycles or self.missing or self.homonyms or self.container_conflicts
        )

    @property
    def has_structure_error(self) -> bool:
        return bool(self.missing or self.homonyms or self.container_conflicts)

    @property
    def items(self) -> list[SortedItem]:
        """Sorted entries without container and group heads."""
        return [s for s in self.sorted_items if not s.is_head]

    def find(self, full_name: str) -> SortedItem | None:
        for s in self.sorted_items:
            if not s.is_head and s.item.full_name == full_name:
                return s
        return None

    def describe(self) -> str:
        """Human readable summary of why the sort is incomplete."""
        if self.is_complete:
            return f"Sort succeeded with {len(self.sorted_items)} entries."
        lines: list[str] = []
        for m in self.missing:
            lines.append(f"Missing requirement: {m}.")
        for first, second in self.homonyms:
            lines.append(
                f"Homonym: '{first.full_name}' names two distinct items "
                f"({first.kind.value} and {second.kind.value})."
            )
        for conflict in self.container_conflicts:
            lines.append(f"Container conflict: {conflict}.")
        for cycle in self.cycles[:MAX_REPORTED_CYCLES]:
            lines.append(f"Cycle: {cycle}.")
        if len(self.cycles) > MAX_REPORTED_CYCLES:
            lines.append(f"... and {len(self.cycles) - MAX_REPORTED_CYCLES} more cycles.")
        return "\n".join(lines)

    def log_error(self, log: logging.Logger | None = None) -> None:
        (log or logger).error("Dependency sort failed:\n%s", self.describe())


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


def sort_items(roots: Iterable[DependentItem]) -> SortResult:
    """Sort *roots* and every item they reference.

    Args:
        roots: Items to sort. Their containers, generalizations,
            requirements, groups and children are discovered transitively.

    Returns:
        A complete :class:`SortResult`, or an incomplete one describing the
        missing references, homonyms, container conflicts or cycles.
    """
    sorter = _Sorter()
    sorter.discover(roots)
    return sorter.run()


def _references(item: DependentItem) -> Iterator[ItemRef]:
    if item.container is not None:
        yield item.container
    if item.generalization is not None:
        yield item.generalization
    yield from item.requires
    yield from item.groups
    yield from item.children


class _Sorter:
    def __init__(self) -> None:
        self._items: list[DependentItem] = []
        self._index: dict[int, int] = {}
        self._by_name: dict[str, DependentItem] = {}
        self._result = SortResult()
        self._owner: dict[int, DependentItem] = {}

    # -- discovery ---------------------------------------------------------

    def discover(self, roots: Iterable[DependentItem]) -> None:
        queue: deque[DependentItem] = deque(roots)
        while queue:
            item = queue.popleft()
            if not self._register(item):
                continue
            for ref in _references(item):
                if isinstance(ref, DependentItem):
                    queue.append(ref)

    def _register(self, item: DependentItem) -> bool:
        if id(item) in self._index:
            return False
        existing = self._by_name.get(item.full_name)
        if existing is not None:
            self._result.homonyms.append((existing, item))
            return False
        self._index[id(item)] = len(self._items)
        self._items.append(item)
        self._by_name[item.full_name] = item
        return True

    def _resolve(self, item: DependentItem, ref: ItemRef, relation: str) -> DependentItem | None:
        if isinstance(ref, DependentItem):
            if id(ref) in self._index:
                return ref
            # Shadowed by a homonym: already reported.
            return None
        found = self._by_name.get(ref)
        if found is None and not (item.optional and relation == "requires"):
            missing = MissingRequirement(item, ref, relation)
            if missing not in self._result.missing:
                self._result.missing.append(missing)
        return found

    # -- graph -------------------------------------------------------------

    def _start(self, item: DependentItem) -> _Node:
        i = self._index[id(item)]
        return (i, 0) if item.is_group else (i, 1)

    def _finish(self, item: DependentItem) -> _Node:
        i = self._index[id(item)]
        return (i, 2) if item.is_group else (i, 1)

    def _bind_owner(self, child: DependentItem, container: DependentItem) -> None:
        current = self._owner.get(id(child))
        if current is not None and current is not container:
            self._result.container_conflicts.append(
                f"'{child.full_name}' is claimed by '{current.full_name}' "
                f"and '{container.full_name}'"
            )
            return
        self._owner[id(child)] = container

    def _resolve_containers(self) -> None:
        for item in self._items:
            if item.container is None:
                continue
            container = self._resolve(item, item.container, "container")
            if container is None:
                continue
            if container.kind is not ItemKind.CONTAINER:
                self._result.container_conflicts.append(
                    f"'{item.full_name}' declares '{container.full_name}' as its "
                    f"container but it is a {container.kind.value}"
                )
                continue
            self._bind_owner(item, container)
        for item in self._items:
            if item.kind is not ItemKind.CONTAINER:
                continue
            for ref in item.children:
                child = self._resolve(item, ref, "child")
                if child is not None:
                    self._bind_owner(child, item)
        # Generalizations supply the container of items that have none.
        for item in self._items:
            if id(item) in self._owner:
                continue
            seen: set[int] = {id(item)}
            gen_ref = item.generalization
            while gen_ref is not None:
                gen = self._resolve(item, gen_ref, "generalization")
                if gen is None or id(gen) in seen:
                    break
                seen.add(id(gen))
                owner = self._owner.get(id(gen))
                if owner is not None:
                    self._owner[id(item)] = owner
                    break
                gen_ref = gen.generalization

    def _build_graph(self) -> nx.DiGraph:
        graph = nx.DiGraph()
        for item in self._items:
            graph.add_node(self._start(item))
            graph.add_node(self._finish(item))
            if item.is_group:
                graph.add_edge(self._start(item), self._finish(item))

        def member_of(member: DependentItem, group: DependentItem) -> None:
            graph.add_edge(self._start(group), self._start(member))
            graph.add_edge(self._finish(member), self._finish(group))

        for item in self._items:
            owner = self._owner.get(id(item))
            if owner is not None:
                member_of(item, owner)
            if item.generalization is not None:
                gen = self._resolve(item, item.generalization, "generalization")
                if gen is not None:
                    graph.add_edge(self._finish(gen), self._start(item))
            for ref in item.requires:
                required = self._resolve(item, ref, "requires")
                if required is not None:
                    graph.add_edge(self._finish(required), self._start(item))
            for ref in item.groups:
                group = self._resolve(item, ref, "group")
                if group is None:
                    continue
                if not group.is_group:
                    self._result.container_conflicts.append(
                        f"'{item.full_name}' declares '{group.full_name}' as a group "
                        f"but it is a plain item"
                    )
                    continue
                member_of(item, group)
            if item.kind is ItemKind.GROUP:
                for ref in item.children:
                    member = self._resolve(item, ref, "child")
                    if member is not None:
                        member_of(member, item)
        return graph

    def _find_cycles(self, graph: nx.DiGraph) -> list[DependencyCycle]:
        cycles: list[DependencyCycle] = []
        components = sorted(
            (sorted(c) for c in nx.strongly_connected_components(graph)),
            key=lambda c: c[0],
        )
        for component in components:
            start = component[0]
            if len(component) == 1 and not graph.has_edge(start, start):
                continue
            sub = graph.subgraph(component)
            best: list[_Node] | None = None
            for succ in sorted(sub.successors(start)):
                path = nx.shortest_path(sub, succ, start)
                candidate = [start] + path[:-1]
                if best is None or len(candidate) < len(best):
                    best = candidate
            assert best is not None
            cycles.append(DependencyCycle(self._collapse(best)))
        return cycles

    def _collapse(self, nodes: list[_Node]) -> tuple[DependentItem, ...]:
        """Map graph nodes to items, merging the head and end of one container."""
        items: list[DependentItem] = []
        for index, _role in nodes:
            item = self._items[index]
            if not items or items[-1] is not item:
                items.append(item)
        if len(items) > 1 and items[0] is items[-1]:
            items.pop()
        return tuple(items)

    def run(self) -> SortResult:
        self._resolve_containers()
        graph = self._build_graph()
        result = self._result
        if result.has_structure_error:
            logger.debug("Sort aborted: %s", result.describe())
            return result
        if not nx.is_directed_acyclic_graph(graph):
            result.cycles = self._find_cycles(graph)
            logger.debug("Sort found %d cycle(s)", len(result.cycles))
            return result

        ranks: dict[_Node, int] = {}
        for position, node in enumerate(nx.lexicographical_topological_sort(graph)):
            preds = [ranks[p] for p in graph.predecessors(node)]
            ranks[node] = max(preds) + 1 if preds else 0
            index, role_order = node
            role = next(r for r, o in _ROLE_ORDER.items() if o == role_order)
            result.sorted_items.append(
                SortedItem(
                    item=self._items[index],
                    role=role,
                    index=position,
                    rank=ranks[node],
                )
            )
        return result
