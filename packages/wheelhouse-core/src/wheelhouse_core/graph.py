"""Typed task graph for a pipeline run.

The run is an explicit DAG: every matrix cell is a CellNode, and the
aggregation and release steps depend on all of them.

    cell, cell, ... -> collect -> gate -> publish
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from graphlib import CycleError, TopologicalSorter

from wheelhouse_core.errors import GraphError
from wheelhouse_core.models import BuildJob

COLLECT = "collect"
GATE = "gate"
PUBLISH = "publish"


@dataclass(frozen=True)
class TaskNode:
    """A node in the task graph.

    Attributes:
        name: Unique node name.
        needs: Names of the nodes that must finish first.
    """

    name: str
    needs: tuple[str, ...] = ()


@dataclass(frozen=True)
class CellNode(TaskNode):
    """Build, then verify, one matrix cell."""

    job: BuildJob | None = None


@dataclass(frozen=True)
class CollectNode(TaskNode):
    """Aggregate artifacts of verified cells."""


@dataclass(frozen=True)
class GateNode(TaskNode):
    """Decide whether the artifact set may be published."""


@dataclass(frozen=True)
class PublishNode(TaskNode):
    """Upload the artifact set."""


@dataclass
class TaskGraph:
    """Dependency graph of a pipeline run.

    Example:
        >>> graph = TaskGraph.for_jobs(jobs)
        >>> [[node.name for node in stage] for stage in graph.stages()][-3:]
        [['collect'], ['gate'], ['publish']]
    """

    nodes: dict[str, TaskNode] = field(default_factory=dict)

    def add(self, node: TaskNode) -> None:
        """Add a node.

        Raises:
            GraphError: If a node with the same name exists.
        """
        if node.name in self.nodes:
            raise GraphError(f"Duplicate task '{node.name}'")
        self.nodes[node.name] = node

    @classmethod
    def for_jobs(cls, jobs: Iterable[BuildJob]) -> TaskGraph:
        """Build the standard cells -> collect -> gate -> publish graph."""
        graph = cls()
        cell_names: list[str] = []
        for job in jobs:
            graph.add(CellNode(name=job.cell_id, job=job))
            cell_names.append(job.cell_id)
        graph.add(CollectNode(name=COLLECT, needs=tuple(cell_names)))
        graph.add(GateNode(name=GATE, needs=(COLLECT,)))
        graph.add(PublishNode(name=PUBLISH, needs=(GATE,)))
        return graph

    @property
    def cells(self) -> list[CellNode]:
        """Cell nodes in insertion order."""
        return [n for n in self.nodes.values() if isinstance(n, CellNode)]

    def validate(self) -> None:
        """Check every dependency exists.

        Raises:
            GraphError: If a node needs an unknown node.
        """
        for node in self.nodes.values():
            for dependency in node.needs:
                if dependency not in self.nodes:
                    raise GraphError(f"Task '{node.name}' needs unknown task '{dependency}'")

    def stages(self) -> Iterator[list[TaskNode]]:
        """Yield topological layers; nodes within a layer are independent.

        Raises:
            GraphError: If the graph has a cycle or an unknown dependency.
        """
        self.validate()
        sorter: TopologicalSorter[str] = TopologicalSorter(
            {name: node.needs for name, node in self.nodes.items()}
        )
        try:
            sorter.prepare()
        except CycleError as e:
            raise GraphError("Task graph has a cycle", internal_details=str(e.args[1])) from e

        while sorter.is_active():
            ready = sorted(sorter.get_ready(), key=list(self.nodes).index)
            yield [self.nodes[name] for name in ready]
            sorter.done(*ready)
