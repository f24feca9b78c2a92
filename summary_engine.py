"""
Group and category rollups.
Group tasks never author their own dates or progress; both are derived here from
descendant leaf tasks every time they are read.
"""

import logging

import date_engine
from dag_engine import TaskGraph
from geometry_engine import progress_end_date
from utils import TYPE_GROUP, get_val, round_half_up

logger = logging.getLogger(__name__)


def _num(row, col):
    try:
        return float(get_val(row, col, 0) or 0)
    except (TypeError, ValueError):
        return 0.0


def group_summary(group_id, df, graph=None):
    """
    Rolls up a group's descendant leaves.

    Returns a dict:
    - count: number of leaves
    - min_start_date / max_end_date: plan range (dates), falling back to the group's own
    - min_actual_date / max_actual_date: actual range; the end of a started task
      without an actual end is derived from its progress
    - progress: cost-weighted progress, rounded (tasks without cost weigh 1)
    - total_cost, total_weight
    """
    if graph is None:
        graph = TaskGraph(df)

    group = graph.get_task(group_id)
    leaves = [t for t in graph.descendants_of(group_id, deep=True) if get_val(t, "type") != TYPE_GROUP]

    if not leaves:
        return {
            "count": 0,
            "min_start_date": date_engine.to_local_date(get_val(group, "plan_start_date")) if group is not None else None,
            "max_end_date": date_engine.to_local_date(get_val(group, "plan_end_date")) if group is not None else None,
            "min_actual_date": None,
            "max_actual_date": None,
            "progress": 0,
            "total_cost": 0.0,
            "total_weight": 0.0,
        }

    min_date = None
    max_date = None
    min_actual = None
    max_actual = None
    total_cost = 0.0
    weighted_progress = 0.0
    total_weight = 0.0

    for task in leaves:
        p_start = date_engine.to_local_date(get_val(task, "plan_start_date"))
        p_end = date_engine.to_local_date(get_val(task, "plan_end_date"))
        if p_start is not None and (min_date is None or p_start < min_date):
            min_date = p_start
        if p_end is not None and (max_date is None or p_end > max_date):
            max_date = p_end

        a_start = date_engine.to_local_date(get_val(task, "actual_start_date"))
        progress = _num(task, "progress")
        if a_start is not None:
            if min_actual is None or a_start < min_actual:
                min_actual = a_start

            effective_end = date_engine.to_local_date(get_val(task, "actual_end_date"))
            if effective_end is None:
                if progress > 0:
                    effective_end = progress_end_date(a_start, p_start, p_end, progress)
                else:
                    effective_end = a_start

            if max_actual is None or effective_end > max_actual:
                max_actual = effective_end

        cost = _num(task, "cost")
        total_cost += cost
        weight = cost or 1
        weighted_progress += progress * weight
        total_weight += weight

    if min_date is None and group is not None:
        min_date = date_engine.to_local_date(get_val(group, "plan_start_date"))
    if max_date is None and group is not None:
        max_date = date_engine.to_local_date(get_val(group, "plan_end_date"))

    return {
        "count": len(leaves),
        "min_start_date": min_date,
        "max_end_date": max_date,
        "min_actual_date": min_actual,
        "max_actual_date": max_actual,
        "progress": round_half_up(weighted_progress / total_weight) if total_weight > 0 else 0,
        "total_cost": total_cost,
        "total_weight": total_weight,
    }


def category_summary(tasks, get_task_weight=None):
    """
    Summary over the tasks of one category (rows).
    Returns total cost, total weight, mean progress, count and the plan range of
    non-group tasks as {"start", "end", "days"} (None when no task has dates).
    """
    tasks = list(tasks)
    total_cost = sum(_num(t, "cost") for t in tasks)
    total_weight = sum(get_task_weight(t) for t in tasks) if get_task_weight else 0
    avg_progress = sum(_num(t, "progress") for t in tasks) / len(tasks) if tasks else 0

    min_date = None
    max_date = None
    for t in tasks:
        if get_val(t, "type") == TYPE_GROUP:
            continue
        start = date_engine.to_local_date(get_val(t, "plan_start_date"))
        end = date_engine.to_local_date(get_val(t, "plan_end_date"))
        if start is None or end is None:
            continue
        if min_date is None or start < min_date:
            min_date = start
        if max_date is None or end > max_date:
            max_date = end

    date_range = None
    if min_date is not None and max_date is not None:
        date_range = {
            "start": min_date,
            "end": max_date,
            "days": date_engine.days_between(min_date, max_date) + 1,
        }

    return {
        "total_cost": total_cost,
        "total_weight": total_weight,
        "avg_progress": avg_progress,
        "count": len(tasks),
        "date_range": date_range,
    }


def derive_group_rows(df, graph=None):
    """
    Copy of the frame with every group row's plan range and progress replaced by
    its rollup. Leaf rows are untouched.
    """
    if graph is None:
        graph = TaskGraph(df)

    derived = df.copy(deep=True)
    updated = 0
    for idx, row in derived.iterrows():
        if get_val(row, "type") != TYPE_GROUP:
            continue
        summary = group_summary(row["id"], df, graph=graph)
        if summary["count"] == 0:
            continue
        updated += 1
        derived.at[idx, "plan_start_date"] = date_engine.format_iso(summary["min_start_date"])
        derived.at[idx, "plan_end_date"] = date_engine.format_iso(summary["max_end_date"])
        derived.at[idx, "progress"] = summary["progress"]

    logger.debug("Derived %d group rows", updated)
    return derived
