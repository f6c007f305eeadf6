"""
Step graph algorithms shared by both engines.

StepGraph is a pure, immutable view over a set of steps and their
references. It answers the questions the validators and the workflow
coordinator ask: does the graph have a cycle (and where), which steps are
orphaned, which steps are ready given a set of completed ones, and in which
levels could the graph run.

Edges used for cycle detection:
    - flow edges: step -> each id in `next`, `branches`, `otherwise`
    - dependency edges: dependency -> dependent (B depends on A gives A -> B)

Error-handler references count for orphan detection but are not edges of
the execution order.

Example:
    >>> graph = StepGraph.from_workflow(definition)
    >>> graph.find_cycle()
    ['step1', 'step2', 'step1']
    >>> graph.ready_set(completed={"step1"})
    ['step2']
"""

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from sagaflow.core.exceptions import CircularDependencyError

if TYPE_CHECKING:  # pragma: no cover
    from sagaflow.core.models import SagaDefinition, WorkflowDefinition

_WHITE, _GREY, _BLACK = 0, 1, 2


class StepGraph:
    """
    Deterministic graph over step ids.

    Args:
        order: Step ids in definition order (duplicates are kept and reported)
        flow: Successor ids per step (`next`, `branches`, `otherwise`)
        dependencies: Dependency ids per step
        error_handlers: Error-handler id per step
        entry_points: Step ids that triggers start from
    """

    def __init__(
        self,
        order: Iterable[str],
        flow: Mapping[str, Iterable[str]] | None = None,
        dependencies: Mapping[str, Iterable[str]] | None = None,
        error_handlers: Mapping[str, str | None] | None = None,
        entry_points: Iterable[str] = (),
    ):
        self._declared = list(order)
        self.order: list[str] = list(dict.fromkeys(self._declared))
        self._ids = set(self.order)
        self.flow = {step: list((flow or {}).get(step, ())) for step in self.order}
        self.dependencies = {step: list((dependencies or {}).get(step, ())) for step in self.order}
        self.error_handlers = {
            step: handler for step, handler in (error_handlers or {}).items() if handler
        }
        self.entry_points = list(dict.fromkeys(entry_points))

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_workflow(cls, definition: "WorkflowDefinition") -> "StepGraph":
        return cls(
            order=[step.id for step in definition.steps],
            flow={
                step.id: [*step.next, *step.branches, *step.otherwise] for step in definition.steps
            },
            dependencies={step.id: step.dependencies for step in definition.steps},
            error_handlers={step.id: step.error_handler for step in definition.steps},
            entry_points=[trigger.step for trigger in definition.triggers if trigger.step],
        )

    @classmethod
    def from_saga(cls, definition: "SagaDefinition") -> "StepGraph":
        """Saga steps run in declaration order, so every step is an entry point."""
        ids = [step.id for step in definition.steps]
        return cls(
            order=ids,
            dependencies={step.id: step.dependencies for step in definition.steps},
            entry_points=ids,
        )

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._ids

    def __len__(self) -> int:
        return len(self.order)

    def duplicate_ids(self) -> list[str]:
        seen: set[str] = set()
        duplicates: list[str] = []
        for step_id in self._declared:
            if step_id in seen and step_id not in duplicates:
                duplicates.append(step_id)
            seen.add(step_id)
        return duplicates

    def successors(self, step_id: str) -> list[str]:
        return list(self.flow.get(step_id, ()))

    def dependents(self, step_id: str) -> list[str]:
        return [step for step in self.order if step_id in self.dependencies[step]]

    def _edges(self) -> dict[str, list[str]]:
        """Adjacency used for cycle detection and ordering, unknown ids dropped."""
        edges: dict[str, list[str]] = {step: [] for step in self.order}
        for step in self.order:
            for target in self.flow[step]:
                if target in self._ids and target not in edges[step]:
                    edges[step].append(target)
            for dependency in self.dependencies[step]:
                if dependency in self._ids and step not in edges[dependency]:
                    edges[dependency].append(step)
        return edges

    def dangling_references(self) -> list[tuple[str, str, str]]:
        """(step_id, kind, missing_id) for every reference that does not resolve."""
        dangling: list[tuple[str, str, str]] = []
        for step in self.order:
            for target in self.flow[step]:
                if target not in self._ids:
                    dangling.append((step, "next", target))
            for dependency in self.dependencies[step]:
                if dependency not in self._ids:
                    dangling.append((step, "dependency", dependency))
            handler = self.error_handlers.get(step)
            if handler and handler not in self._ids:
                dangling.append((step, "error_handler", handler))
        for entry in self.entry_points:
            if entry not in self._ids:
                dangling.append(("<trigger>", "entry", entry))
        return dangling

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def find_cycle(self) -> list[str] | None:
        """
        Depth-first search with white/grey/black colouring.

        Returns the ids along the first cycle found, with the closing id
        repeated at the end, or None for an acyclic graph.
        """
        edges = self._edges()
        color = dict.fromkeys(self.order, _WHITE)

        for root in self.order:
            if color[root] != _WHITE:
                continue
            color[root] = _GREY
            path = [root]
            stack = [iter(edges[root])]

            while stack:
                for target in stack[-1]:
                    if color[target] == _GREY:
                        return [*path[path.index(target) :], target]
                    if color[target] == _WHITE:
                        color[target] = _GREY
                        path.append(target)
                        stack.append(iter(edges[target]))
                        break
                else:
                    color[path.pop()] = _BLACK
                    stack.pop()

        return None

    def has_cycle(self) -> bool:
        return self.find_cycle() is not None

    # ------------------------------------------------------------------
    # Orphans and readiness
    # ------------------------------------------------------------------

    def referenced_ids(self) -> set[str]:
        """Ids referenced by another step or by a trigger."""
        referenced = set(self.entry_points)
        for step in self.order:
            targets = [*self.flow[step], *self.dependencies[step]]
            handler = self.error_handlers.get(step)
            if handler:
                targets.append(handler)
            referenced.update(target for target in targets if target != step)
        return referenced

    def orphans(self) -> list[str]:
        referenced = self.referenced_ids()
        return [step for step in self.order if step not in referenced]

    def missing_dependencies(self, step_id: str, completed: Iterable[str]) -> list[str]:
        done = set(completed)
        return [dep for dep in self.dependencies.get(step_id, ()) if dep not in done]

    def dependencies_met(self, step_id: str, completed: Iterable[str]) -> bool:
        return not self.missing_dependencies(step_id, completed)

    def ready_set(
        self, completed: Iterable[str], candidates: Iterable[str] | None = None
    ) -> list[str]:
        """
        Steps that have not run yet and whose dependencies all completed.

        Results follow definition order. `candidates` restricts the answer to
        a subset of steps (the coordinator passes the steps activated so far).
        """
        done = set(completed)
        pool = self._ids if candidates is None else set(candidates)
        return [
            step
            for step in self.order
            if step in pool and step not in done and self.dependencies_met(step, done)
        ]

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def topological_levels(self) -> list[list[str]]:
        """
        Kahn levels: every step of a level only waits on earlier levels.

        Raises:
            CircularDependencyError: The graph has a cycle.
        """
        edges = self._edges()
        in_degree = dict.fromkeys(self.order, 0)
        for targets in edges.values():
            for target in targets:
                in_degree[target] += 1

        levels: list[list[str]] = []
        remaining = set(self.order)
        while remaining:
            level = [step for step in self.order if step in remaining and in_degree[step] == 0]
            if not level:
                raise CircularDependencyError(self.find_cycle() or sorted(remaining))
            levels.append(level)
            for step in level:
                remaining.discard(step)
                for target in edges[step]:
                    in_degree[target] -= 1
        return levels

    def __repr__(self) -> str:
        return f"StepGraph(steps={len(self.order)}, entry_points={self.entry_points})"
