"""
CycleGuard - Keeps the flow graph a DAG at edge-insertion time.
CycleGuard —— 在插入边时保证流程图始终是有向无环图。

A candidate edge source -> target closes a cycle exactly when `source` is
already reachable from `target`. We answer that with an iterative DFS that
carries its own visited set, so the check is a pure function of its inputs.
候选边 source -> target 会形成环，当且仅当从 target 出发已能到达 source。
使用自带 visited 集合的迭代 DFS 判断，函数无副作用、便于单元测试。
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from schema import FlowEdge


def build_adjacency(node_ids: Iterable[str], edges: Iterable[FlowEdge]) -> dict[str, list[str]]:
    """
    Out-neighbour lists keyed by node ID, in edge insertion order.
    构建邻接表（出边），保留边的插入顺序。
    """
    adjacency: dict[str, list[str]] = {nid: [] for nid in node_ids}
    for e in edges:
        adjacency.setdefault(e.source, []).append(e.target)
    return adjacency


def is_reachable(
    start: str,
    goal: str,
    adjacency: Mapping[str, list[str]],
    visited: set[str] | None = None,
) -> tuple[bool, set[str]]:
    """
    Depth-first search from `start`; True if `goal` can be reached.
    从 `start` 深度优先搜索，判断能否到达 `goal`。

    Returns the visited set alongside the answer. Each node is expanded at most
    once, which keeps diamond-shaped graphs linear instead of exponential.
    同时返回 visited 集合。每个节点最多展开一次，菱形图上也保持线性复杂度。
    """
    seen = set(visited) if visited else set()
    stack = [start]
    while stack:
        nid = stack.pop()
        if nid == goal:
            return True, seen
        if nid in seen:
            continue
        seen.add(nid)
        stack.extend(n for n in adjacency.get(nid, ()) if n not in seen)
    return False, seen


def would_create_cycle(
    source: str,
    target: str,
    node_ids: Iterable[str],
    edges: Iterable[FlowEdge],
) -> bool:
    """
    True if adding `source -> target` would break the DAG invariant.
    若添加 `source -> target` 会破坏 DAG 不变量则返回 True。

    Self-loops are rejected up front; otherwise we look for a path
    target ~> source among the existing edges.
    自环直接拒绝；否则在现有边中查找 target ~> source 的路径。
    """
    if source == target:
        return True
    adjacency = build_adjacency(node_ids, edges)
    found, _ = is_reachable(target, source, adjacency)
    return found
