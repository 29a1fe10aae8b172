"""Explicit construct dependency graph applied in topological order."""

from graphlib import TopologicalSorter
from typing import Iterable, List, Mapping

from constructs import IConstruct


def apply_dependencies(
    graph: Mapping[IConstruct, Iterable[IConstruct]],
) -> List[IConstruct]:
    """Declare every dependency edge in the graph on the construct tree.

    Args:
        graph: Mapping of each dependent construct to the constructs that must
            be created before it.

    Returns:
        The constructs in the order their edges were applied (prerequisites first).

    Raises:
        graphlib.CycleError: If the graph contains a dependency cycle.
    """
    edges = {node: tuple(deps) for node, deps in graph.items()}
    order = list(TopologicalSorter(edges).static_order())

    for node in order:
        for prerequisite in edges.get(node, ()):
            node.node.add_dependency(prerequisite)

    return order
