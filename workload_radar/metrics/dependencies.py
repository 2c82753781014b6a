"""
Task dependency graph for one project.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from workload_radar.config import AppConfig, config as default_config
from workload_radar.data.loader import WorkloadSource
from workload_radar.data.semantic import filter_ids, scope_to_source

LABEL_LENGTH = 30


def _scoped_dependencies(dependencies: pd.DataFrame, source_system: str) -> pd.DataFrame:
    # Untagged dependency rows are treated as belonging to the configured origin
    deps = dependencies[dependencies["source_system"].isin([source_system, ""])]
    return deps.dropna(subset=["parent_task_id", "child_task_id"])


def get_project_dependencies(source: WorkloadSource,
                             project_id: int,
                             app_config: Optional[AppConfig] = None) -> pd.DataFrame:
    """Dependency rows where the parent or the child task belongs to the project."""
    cfg = app_config or default_config
    tables = source.load_tables(("task_dependencies", "tasks"))

    deps = _scoped_dependencies(tables["task_dependencies"], cfg.source_system)
    tasks = scope_to_source(tables["tasks"], cfg.source_system)
    tasks = tasks[["task_id", "summary", "status", "project_id"]].drop_duplicates("task_id")

    parents = tasks.add_prefix("parent_")
    children = tasks.add_prefix("child_")

    merged = deps.merge(parents, on="parent_task_id", how="left").merge(
        children, on="child_task_id", how="left"
    )
    in_project = (
        filter_ids(merged["parent_project_id"], [project_id])
        | filter_ids(merged["child_project_id"], [project_id])
    )
    return merged[in_project].reset_index(drop=True)


def get_dependency_graph(source: WorkloadSource,
                         project_id: int,
                         app_config: Optional[AppConfig] = None) -> Dict[str, List[Dict]]:
    """
    Nodes for every task of the project; edges only where both ends are in it.

    Node ids are task ids as strings; labels are the first 30 characters of
    the summary, or "Task <id>".
    """
    cfg = app_config or default_config
    tables = source.load_tables(("tasks", "task_dependencies"))

    tasks = scope_to_source(tables["tasks"], cfg.source_system)
    tasks = tasks[filter_ids(tasks["project_id"], [project_id])].drop_duplicates("task_id")

    nodes = []
    for task in tasks.to_dict("records"):
        task_id = int(task["task_id"])
        summary = task.get("summary")
        has_summary = isinstance(summary, str) and summary != ""
        nodes.append({
            "id": str(task_id),
            "label": summary[:LABEL_LENGTH] if has_summary else f"Task {task_id}",
            "status": None if pd.isna(task["status"]) else int(task["status"]),
        })

    task_ids = set(tasks["task_id"].dropna().astype(int))
    deps = _scoped_dependencies(tables["task_dependencies"], cfg.source_system)
    edges = []
    for dep in deps.to_dict("records"):
        parent, child = int(dep["parent_task_id"]), int(dep["child_task_id"])
        if parent in task_ids and child in task_ids:
            edges.append({
                "source": str(parent),
                "target": str(child),
                "type": dep.get("dependency_type"),
            })

    return {"nodes": nodes, "edges": edges}


def longest_chain(node_ids: Sequence[str], edges: Sequence[Tuple[str, str]]) -> List[str]:
    """
    Longest parent -> child chain starting at a node with no incoming edge.

    A child already on the current chain ends the chain, so cycles terminate.
    Ties keep the first chain found.
    """
    adjacency: Dict[str, List[str]] = {}
    for parent, child in edges:
        adjacency.setdefault(parent, []).append(child)

    has_incoming = {child for _, child in edges}
    longest: List[str] = []

    def walk(node: str, path: List[str], on_path: set) -> None:
        nonlocal longest
        path.append(node)
        on_path.add(node)
        children = [child for child in adjacency.get(node, []) if child not in on_path]
        if not children:
            if len(path) > len(longest):
                longest = list(path)
        else:
            for child in children:
                walk(child, path, on_path)
        path.pop()
        on_path.discard(node)

    for node in node_ids:
        if node not in has_incoming:
            walk(node, [], set())

    return longest


def get_critical_path(source: WorkloadSource,
                      project_id: int,
                      app_config: Optional[AppConfig] = None) -> Dict:
    graph = get_dependency_graph(source, project_id, app_config)
    node_ids = [node["id"] for node in graph["nodes"]]
    path = longest_chain(node_ids, [(edge["source"], edge["target"]) for edge in graph["edges"]])

    by_id = {node["id"]: node for node in graph["nodes"]}
    return {
        "critical_path": path,
        "length": len(path),
        "tasks": [by_id[node_id] for node_id in path],
    }
