# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Set, Tuple

from .errors import CyclicDependency, DefinitionError
from .model import Stage


def build_dag(stages: Iterable[Stage]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from Stage objects.

    Requires:
      - stage.name: str (unique)
      - stage.needs: names of stages that must succeed BEFORE this stage

    Returns (adj, indeg) where adj maps a stage to the stages that need it.
    """
    stages = list(stages)
    names = [s.name for s in stages]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise DefinitionError(f"Duplicate stage names found: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in name_set}
    indeg: Dict[str, int] = {n: 0 for n in name_set}

    for stage in stages:
        for need in stage.needs:
            if need not in name_set:
                raise DefinitionError(
                    f"Stage '{stage.name}' needs missing stage '{need}'. "
                    f"Known stages: {sorted(name_set)}",
                    stage=stage.name,
                )
            # Edge need -> stage.name (need must run before stage)
            if stage.name not in adj[need]:
                adj[need].add(stage.name)
                indeg[stage.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert the DAG into topological "levels".
    Every stage in a level only depends on stages in earlier levels.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    current = sorted(n for n, d in indeg.items() if d == 0)

    levels: List[List[str]] = []
    processed = 0

    while current:
        levels.append(current)
        processed += len(current)
        nxt: List[str] = []
        for node in current:
            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    nxt.append(child)
        current = sorted(nxt)

    if processed != len(indeg):
        raise CyclicDependency(sorted(n for n, d in indeg.items() if d > 0))

    return levels


def validate(stages: Iterable[Stage]) -> List[List[str]]:
    """Full structural check of a stage graph; returns its levels."""
    adj, indeg = build_dag(stages)
    return topo_levels(adj, indeg)


def dependents(adj: Dict[str, Set[str]], name: str) -> Set[str]:
    """Every stage that transitively needs `name`."""
    seen: Set[str] = set()
    queue = deque(adj.get(name, ()))
    while queue:
        node = queue.popleft()
        if node in seen:
            continue
        seen.add(node)
        queue.extend(adj.get(node, ()))
    return seen
