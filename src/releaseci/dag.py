# dag.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set, Tuple

from .model import Job


@dataclass
class Graph:
    """
    Explicit job graph.

    nodes: job names (stable ids) in declaration order
    edges: (dep, dependent) pairs; dep must succeed before dependent starts
    """
    nodes: List[str]
    edges: List[Tuple[str, str]] = field(default_factory=list)
    jobs: Dict[str, Job] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._order = {n: i for i, n in enumerate(self.nodes)}

    @property
    def adj(self) -> Dict[str, List[str]]:
        """dep -> dependents, in declaration order."""
        out: Dict[str, List[str]] = {n: [] for n in self.nodes}
        for dep, child in self.edges:
            out[dep].append(child)
        for children in out.values():
            children.sort(key=self._order.__getitem__)
        return out

    @property
    def indeg(self) -> Dict[str, int]:
        out = {n: 0 for n in self.nodes}
        for _dep, child in self.edges:
            out[child] += 1
        return out

    def needs(self, name: str) -> List[str]:
        return [dep for dep, child in self.edges if child == name]

    def order(self, names: Iterable[str]) -> List[str]:
        return sorted(names, key=self._order.__getitem__)


def build_dag(jobs: List[Job]) -> Graph:
    """
    Build a DAG from Job objects.

    Requires:
      - job.name: str (unique)
      - job.needs: iterable[str] (names of jobs that must succeed BEFORE this job)

    Raises ValueError on duplicate names, unknown dependencies or cycles.
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ValueError(f"Duplicate job names found: {dupes}")

    name_set = set(names)
    edges: List[Tuple[str, str]] = []
    seen: Set[Tuple[str, str]] = set()

    for job in jobs:
        for dep in job.needs:
            if dep not in name_set:
                raise ValueError(
                    f"Job '{job.name}' depends on missing job '{dep}'. "
                    f"Known jobs: {sorted(name_set)}"
                )
            if dep == job.name:
                raise ValueError(f"Job '{job.name}' depends on itself")
            # edge dep -> job.name
            if (dep, job.name) not in seen:
                seen.add((dep, job.name))
                edges.append((dep, job.name))

    graph = Graph(nodes=names, edges=edges, jobs={j.name: j for j in jobs})
    topo_levels(graph)  # cycle check
    return graph


def topo_levels(graph: Graph) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Each level can run in parallel; order inside a level is declaration order.
    """
    adj = graph.adj
    indeg = graph.indeg  # fresh copy, we mutate it
    q = deque(n for n in graph.nodes if indeg[n] == 0)

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in adj[node]:
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(graph.order(level))
        q = deque(graph.order(q))

    if processed != len(indeg):
        remaining = graph.order(n for n, d in indeg.items() if d > 0)
        raise ValueError(f"DAG has a cycle (or unresolved deps). Stuck nodes: {remaining}")

    return levels


def topo_order(graph: Graph) -> List[str]:
    return [n for level in topo_levels(graph) for n in level]


def dependents(graph: Graph, name: str) -> List[str]:
    """All jobs that transitively need `name`."""
    adj = graph.adj
    out: Set[str] = set()
    stack = list(adj[name])
    while stack:
        n = stack.pop()
        if n not in out:
            out.add(n)
            stack.extend(adj[n])
    return graph.order(out)


def requirements(graph: Graph, name: str) -> List[str]:
    """`name` plus every job it transitively needs."""
    if name not in graph.jobs:
        raise ValueError(f"Unknown job '{name}'. Known jobs: {graph.nodes}")
    out: Set[str] = set()
    stack = [name]
    while stack:
        n = stack.pop()
        if n not in out:
            out.add(n)
            stack.extend(graph.needs(n))
    return graph.order(out)
