"""
Dependency resolution for shipyard.

Turns the workspace graph into batches that can be built in order, with
every workspace of a batch buildable concurrently.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from shipyard.build.config import WorkspaceGraph
from shipyard.errors import CyclicDependencyError, UnknownDependencyError


@dataclass(frozen=True)
class BuildPlan:
    """Ordered batches of workspace names."""

    batches: tuple[tuple[str, ...], ...]

    def __iter__(self) -> Iterator[tuple[str, ...]]:
        return iter(self.batches)

    def __len__(self) -> int:
        return len(self.batches)

    @property
    def workspaces(self) -> list[str]:
        """All planned workspaces, batch by batch."""
        return [name for batch in self.batches for name in batch]

    def as_lists(self) -> list[list[str]]:
        return [list(batch) for batch in self.batches]


def check_dependencies(graph: WorkspaceGraph) -> None:
    """Raise UnknownDependencyError for the first undeclared dependency."""
    for ws in graph:
        for dep in sorted(ws.depends_on):
            if dep not in graph:
                raise UnknownDependencyError(ws.name, dep)


def _find_cycle(graph: WorkspaceGraph, remaining: list[str]) -> list[str]:
    """Walk unscheduled dependencies from a stuck workspace until one repeats.

    Every remaining workspace has at least one remaining dependency, so the
    walk always closes a cycle.
    """
    remaining_set = set(remaining)
    path: list[str] = []
    position: dict[str, int] = {}
    current = remaining[0]

    while current not in position:
        position[current] = len(path)
        path.append(current)
        current = min(d for d in graph[current].depends_on if d in remaining_set)

    return path[position[current]:] + [current]


def resolve_build_plan(
    graph: WorkspaceGraph,
    only: Optional[Iterable[str]] = None,
) -> BuildPlan:
    """Compute the topological layering of the workspace graph.

    Args:
        graph: The workspace graph.
        only: Restrict the plan to these workspaces; dependencies outside
            the subset are treated as already built.

    Raises:
        UnknownDependencyError: A workspace depends on an undeclared name.
        CyclicDependencyError: The dependency relation has a cycle.
    """
    check_dependencies(graph)

    if only is None:
        selected = graph.names()
    else:
        wanted = set(only)
        for name in wanted:
            if name not in graph:
                raise UnknownDependencyError("<selection>", name)
        selected = [name for name in graph.names() if name in wanted]

    scheduled = {name for name in graph.names() if name not in selected}
    remaining = list(selected)
    batches: list[tuple[str, ...]] = []

    while remaining:
        batch = tuple(
            name for name in remaining
            if graph[name].depends_on <= scheduled
        )
        if not batch:
            raise CyclicDependencyError(_find_cycle(graph, remaining))

        batches.append(batch)
        scheduled.update(batch)
        remaining = [name for name in remaining if name not in batch]

    return BuildPlan(tuple(batches))


def dependents_closure(graph: WorkspaceGraph, names: Iterable[str]) -> set[str]:
    """Return names plus every workspace that transitively depends on them."""
    result = set(names)
    changed = True
    while changed:
        changed = False
        for ws in graph:
            if ws.name not in result and ws.depends_on & result:
                result.add(ws.name)
                changed = True
    return result
