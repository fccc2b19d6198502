from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Callable


logger = logging.getLogger(__name__)

NodeFn = Callable[[dict[str, Any]], dict[str, Any]]
Guard = Callable[[dict[str, Any]], bool]


@dataclass
class Node:
    name: str
    fn: NodeFn
    depends_on: list[str] = field(default_factory=list)
    # Optional guard; a node whose guard is false outputs {"skipped": True}.
    when: Guard | None = None


class DAG:
    def __init__(self, nodes: list[Node]) -> None:
        self._nodes = {n.name: n for n in nodes}
        self._order = self._topological_order()

    @property
    def order(self) -> list[str]:
        return list(self._order)

    def run(self, seed: dict[str, Any]) -> dict[str, Any]:
        context = dict(seed)
        outputs: dict[str, dict[str, Any]] = {}
        node_durations_ms: dict[str, float] = {}
        skipped: list[str] = []

        for name in self._order:
            node = self._nodes[name]
            merged = dict(context)
            for dep in node.depends_on:
                merged[dep] = outputs[dep]

            if node.when is not None and not node.when(merged):
                out: dict[str, Any] = {"skipped": True}
                skipped.append(name)
                logger.debug("node %s skipped", name)
            else:
                t0 = time.perf_counter()
                out = node.fn(merged)
                node_durations_ms[name] = round((time.perf_counter() - t0) * 1000, 3)
                logger.debug("node %s finished in %.1f ms", name, node_durations_ms[name])

            outputs[name] = out
            context[name] = out

        context["node_outputs"] = outputs
        context["node_durations_ms"] = node_durations_ms
        context["execution_order"] = list(self._order)
        context["skipped_nodes"] = skipped
        return context

    def _topological_order(self) -> list[str]:
        indegree = {name: 0 for name in self._nodes}
        adj: dict[str, list[str]] = defaultdict(list)

        for node in self._nodes.values():
            for dep in node.depends_on:
                if dep not in self._nodes:
                    raise ValueError(f"Node '{node.name}' depends on unknown node '{dep}'")
                indegree[node.name] += 1
                adj[dep].append(node.name)

        q = deque([name for name, deg in indegree.items() if deg == 0])
        order: list[str] = []

        while q:
            cur = q.popleft()
            order.append(cur)
            for nxt in adj[cur]:
                indegree[nxt] -= 1
                if indegree[nxt] == 0:
                    q.append(nxt)

        if len(order) != len(self._nodes):
            raise ValueError("DAG has cycle")
        return order
