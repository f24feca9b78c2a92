import logging
import re

import networkx as nx
import pandas as pd

from utils import TYPE_GROUP, get_val, normalize_task_id

logger = logging.getLogger(__name__)

# Predecessor lists may arrive as "T1;T2" or "T1, T2"
PREDECESSOR_SPLIT_REGEX = re.compile(r"[;,]")


def parse_predecessors(value):
    """
    Normalizes a predecessors cell into an ordered list of task id strings.
    Accepts list/tuple/set or a ';'/',' separated string. Duplicates are dropped.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        parts = [(normalize_task_id(v) or "").strip() for v in value]
    elif isinstance(value, str):
        parts = [p.strip() for p in PREDECESSOR_SPLIT_REGEX.split(value)]
    else:
        try:
            if pd.isna(value):
                return []
        except (TypeError, ValueError):
            pass
        parts = [normalize_task_id(value).strip()]

    seen = set()
    result = []
    for p in parts:
        if p and p not in seen:
            seen.add(p)
            result.append(p)
    return result


class TaskGraph:
    """
    Adjacency index over a flat task frame, built once per computation pass.

    - `hierarchy`: parent -> child edges from `parent_task_id`
    - `dependencies`: predecessor -> successor edges from `predecessors`

    Edge insertion follows row order, so children and successors come back in
    collection order. Every traversal carries a visited set; malformed chains
    (cycles) end the walk instead of looping.
    """

    def __init__(self, df):
        self.tasks = {}
        self.order = []
        self.parent_of = {}
        self.hierarchy = nx.DiGraph()
        self.dependencies = nx.DiGraph()

        # First pass: nodes
        for _, row in df.iterrows():
            task_id = normalize_task_id(row["id"])
            if task_id is None:
                logger.warning("Task row without id ignored")
                continue
            if task_id in self.tasks:
                logger.warning("Duplicate task id %s ignored", task_id)
                continue
            self.tasks[task_id] = row
            self.order.append(task_id)
            self.hierarchy.add_node(task_id)
            self.dependencies.add_node(task_id)

        # Second pass: edges
        for task_id in self.order:
            row = self.tasks[task_id]

            parent_id = normalize_task_id(get_val(row, "parent_task_id"))
            if parent_id is not None:
                self.parent_of[task_id] = parent_id
                if parent_id in self.tasks and parent_id != task_id:
                    self.hierarchy.add_edge(parent_id, task_id)

            for pred_id in parse_predecessors(get_val(row, "predecessors")):
                if pred_id in self.tasks and pred_id != task_id:
                    self.dependencies.add_edge(pred_id, task_id)

        logger.debug(
            "Task graph: %d tasks, %d hierarchy edges, %d dependency edges",
            len(self.order), self.hierarchy.number_of_edges(), self.dependencies.number_of_edges(),
        )

    def __contains__(self, task_id):
        return normalize_task_id(task_id) in self.tasks

    def get_task(self, task_id):
        return self.tasks.get(normalize_task_id(task_id))

    def is_group(self, task_id):
        row = self.get_task(task_id)
        return row is not None and get_val(row, "type") == TYPE_GROUP

    def children_of(self, task_id):
        """Direct children ids in collection order."""
        task_id = normalize_task_id(task_id)
        if task_id not in self.hierarchy:
            return []
        return list(self.hierarchy.successors(task_id))

    def is_leaf(self, task_id):
        """A task with no children in the current collection."""
        return not self.children_of(task_id)

    def leaf_tasks(self):
        return [self.tasks[t] for t in self.order if self.is_leaf(t)]

    def descendants_of(self, group_id, deep=True):
        """
        deep=True: leaf tasks under the group; child groups are expanded, not included.
        deep=False: direct children only.
        Returns rows in collection order.
        """
        if not deep:
            return [self.tasks[c] for c in self.children_of(group_id)]

        result = []
        visited = {normalize_task_id(group_id)}

        def expand(parent_id):
            for child_id in self.children_of(parent_id):
                if child_id in visited:
                    logger.warning("Parent cycle at task %s; expansion stopped", child_id)
                    continue
                visited.add(child_id)
                if self.is_group(child_id):
                    expand(child_id)
                else:
                    result.append(self.tasks[child_id])

        expand(normalize_task_id(group_id))
        return result

    def descendant_ids(self, task_id):
        """
        Every direct and indirect child id (groups included).
        Children first, then each child's own subtree.
        """
        task_id = normalize_task_id(task_id)
        result = []
        visited = {task_id}

        def collect(parent_id):
            children = [c for c in self.children_of(parent_id) if c not in visited]
            visited.update(children)
            result.extend(children)
            for child_id in children:
                collect(child_id)

        collect(task_id)
        return result

    def successors_of(self, task_id):
        """Rows of tasks listing `task_id` among their predecessors."""
        task_id = normalize_task_id(task_id)
        if task_id not in self.dependencies:
            return []
        return [self.tasks[s] for s in self.dependencies.successors(task_id)]

    def is_descendant(self, candidate_id, ancestor_id):
        """
        Walks the parent chain of `candidate_id` upward looking for `ancestor_id`.
        A cyclic chain reads as "not a descendant".
        """
        current = normalize_task_id(candidate_id)
        ancestor_id = normalize_task_id(ancestor_id)
        visited = {current}
        while True:
            parent_id = self.parent_of.get(current)
            if parent_id is None:
                return False
            if parent_id == ancestor_id:
                return True
            if parent_id in visited or parent_id not in self.tasks:
                return False
            visited.add(parent_id)
            current = parent_id


def build_task_graph(df):
    return TaskGraph(df)


def is_task_descendant(candidate_id, ancestor_id, df):
    """
    Guard for re-parenting: True when `candidate_id` sits somewhere under `ancestor_id`.
    """
    return TaskGraph(df).is_descendant(candidate_id, ancestor_id)


def validate_task_graph(df, graph=None):
    """
    Validates references in the task frame:
    - Self-dependency
    - Missing predecessor references
    - Missing parent references
    - Dependency cycles
    - Parent cycles

    Returns a dict mapping task id -> status string ("OK" or "ERROR: ...").
    """
    if graph is None:
        graph = TaskGraph(df)

    validation_results = {}

    for task_id in graph.order:
        row = graph.tasks[task_id]
        status = "OK"

        for pred_id in parse_predecessors(get_val(row, "predecessors")):
            if pred_id == task_id:
                status = f"ERROR: Self-dependency on {pred_id}"
                break
            if pred_id not in graph.tasks:
                status = f"ERROR: Missing predecessor ID {pred_id}"
                break

        parent_id = graph.parent_of.get(task_id)
        if status == "OK" and parent_id is not None:
            if parent_id == task_id:
                status = "ERROR: Task is its own parent"
            elif parent_id not in graph.tasks:
                status = f"ERROR: Missing parent ID {parent_id}"

        validation_results[task_id] = status

    def mark_cycles(g, label):
        for cycle in nx.simple_cycles(g):
            cycle_str = "->".join(map(str, cycle))
            logger.warning("%s cycle detected: %s", label, cycle_str)
            for node in cycle:
                if validation_results.get(node, "OK") == "OK":
                    validation_results[node] = f"ERROR: {label} cycle detected ({cycle_str})"
                else:
                    validation_results[node] += f"; {label} cycle detected"

    mark_cycles(graph.dependencies, "Dependency")
    mark_cycles(graph.hierarchy, "Parent")

    return validation_results
