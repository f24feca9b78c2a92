"""
Cumulative plan/actual progress curve (S-curve).

Each leaf task carries a scope weight (plan days or cost). The weight, as a percentage
of total scope, is spread evenly over the task's plan days and, scaled by progress,
over its actual days. Prefix sums of the two daily buffers give the curves.
"""

import bisect
import logging

import numpy as np
import pandas as pd

import date_engine
from dag_engine import build_task_graph
from utils import (
    MODE_FINANCIAL,
    MODE_PHYSICAL,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    get_val,
)

logger = logging.getLogger(__name__)


def get_leaf_tasks(df, graph=None):
    """Task rows with no children in the frame."""
    if graph is None:
        graph = build_task_graph(df)
    return graph.leaf_tasks()


def get_task_scope(task, mode):
    """
    financial: cost (0 when absent)
    physical: inclusive plan duration in days, never negative
    """
    if mode == MODE_FINANCIAL:
        try:
            return float(get_val(task, "cost", 0) or 0)
        except (TypeError, ValueError):
            return 0.0
    if mode != MODE_PHYSICAL:
        raise ValueError(f"Unknown S-curve mode: '{mode}'")
    return float(date_engine.calc_duration_days(
        get_val(task, "plan_start_date"), get_val(task, "plan_end_date")
    ))


def get_total_scope(tasks, mode):
    return sum(get_task_scope(t, mode) for t in tasks)


def _spread(buffer, start_idx, n_days, daily):
    """Adds `daily` to buffer[start_idx : start_idx + n_days], dropping days outside."""
    lo = max(0, start_idx)
    hi = min(len(buffer), start_idx + n_days)
    if lo < hi:
        buffer[lo:hi] += daily


def max_actual_date(tasks, today=None):
    """
    One day past the latest actual end (completed tasks without an end count their
    actual start), moved up to today when any task is in progress.
    None when no task carries actual data.
    """
    if today is None:
        today = date_engine.today_local()

    latest = None
    for task in tasks:
        d = None
        if get_val(task, "actual_end_date") is not None:
            d = date_engine.to_local_date(get_val(task, "actual_end_date"))
        elif get_val(task, "status") == STATUS_COMPLETED:
            d = date_engine.to_local_date(get_val(task, "actual_start_date"))
        if d is not None and (latest is None or d > latest):
            latest = d

    if latest is not None:
        latest = date_engine.add_days(latest, 1)

    if any(get_val(t, "status") == STATUS_IN_PROGRESS for t in tasks):
        if latest is None or today > latest:
            latest = today

    return latest


def compute_scurve(df, time_range, mode=MODE_PHYSICAL, today=None):
    """
    Computes the plan vs. actual cumulative percentage series.

    Args:
        df: task frame
        time_range: TimeRange(start, end) window, inclusive
        mode: "physical" (duration weight) or "financial" (cost weight)
        today: reference date for open-ended actuals (defaults to the local date)

    Returns:
        dict with
        - points: [{"date", "plan", "actual"}], a {start, 0, 0} origin plus one per day
        - max_actual_date: where the actual series should stop (or None)
        - total_scope: sum of leaf weights
    """
    if today is None:
        today = date_engine.today_local()

    project_start = time_range.start
    total_days = max(1, date_engine.days_between(project_start, time_range.end) + 1)

    # Fixed-size buffers, one slot per window day
    plan_daily = np.zeros(total_days, dtype=np.float64)
    actual_daily = np.zeros(total_days, dtype=np.float64)

    leaves = get_leaf_tasks(df)
    total_scope = get_total_scope(leaves, mode)

    for task in leaves:
        weight = get_task_scope(task, mode)
        if total_scope <= 0 or weight <= 0:
            continue

        weight_percent = (weight / total_scope) * 100

        p_start = date_engine.to_local_date(get_val(task, "plan_start_date"))
        p_end = date_engine.to_local_date(get_val(task, "plan_end_date"))

        # Plan distribution
        if p_start is not None and p_end is not None and p_start <= p_end:
            p_duration = date_engine.days_between(p_start, p_end) + 1
            daily = weight_percent / max(1, p_duration)
            _spread(plan_daily, date_engine.days_between(project_start, p_start), p_duration, daily)
        else:
            logger.debug("Task %s has no valid plan range; plan weight skipped", task["id"])

        try:
            progress = float(get_val(task, "progress", 0) or 0)
        except (TypeError, ValueError):
            progress = 0.0
        if progress <= 0:
            continue

        # Actual distribution
        a_start = date_engine.to_local_date(get_val(task, "actual_start_date")) or p_start
        if a_start is None:
            logger.warning("Task %s has progress but no usable start date; skipped", task["id"])
            continue
        a_end = date_engine.to_local_date(get_val(task, "actual_end_date")) or today
        if a_end < a_start:
            a_end = a_start

        a_days = date_engine.days_between(a_start, a_end) + 1
        daily = (weight_percent * (progress / 100)) / max(1, a_days)
        start_idx = date_engine.days_between(project_start, a_start)

        # Days before the window fold into day 0
        days_before = min(a_days, max(0, -start_idx))
        if days_before:
            actual_daily[0] += daily * days_before
        _spread(actual_daily, start_idx, a_days, daily)

    cum_plan = np.minimum(100.0, np.cumsum(plan_daily))
    cum_actual = np.minimum(100.0, np.cumsum(actual_daily))

    points = [{"date": project_start, "plan": 0.0, "actual": 0.0}]
    for i in range(total_days):
        points.append({
            "date": date_engine.add_days(project_start, i + 1),
            "plan": float(cum_plan[i]),
            "actual": float(cum_actual[i]),
        })

    logger.debug("S-curve (%s): %d leaves, %d days, total scope %.2f", mode, len(leaves), total_days, total_scope)

    return {
        "points": points,
        "max_actual_date": max_actual_date(leaves, today=today),
        "total_scope": total_scope,
    }


def scurve_to_frame(result, decimals=2):
    """Tabulates curve points for display: date, plan, actual, gap (actual - plan)."""
    frame = pd.DataFrame(result["points"], columns=["date", "plan", "actual"])
    frame["gap"] = frame["actual"] - frame["plan"]
    return frame.round({"plan": decimals, "actual": decimals, "gap": decimals})


def progress_at(result, d):
    """
    Cumulative plan/actual at date `d` (the figures logged per reporting week).
    The actual value is read no later than max_actual_date.
    """
    points = result["points"]
    dates = [p["date"] for p in points]

    def value_at(when, key):
        idx = bisect.bisect_right(dates, when) - 1
        if idx < 0:
            return 0.0
        return points[idx][key]

    plan = value_at(d, "plan")
    limit = result.get("max_actual_date")
    actual = value_at(d if limit is None or d < limit else limit, "actual")

    return {"date": d, "plan": plan, "actual": actual, "gap": actual - plan}
