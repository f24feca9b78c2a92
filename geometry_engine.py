from datetime import date
from typing import NamedTuple

import pandas as pd
from dateutil.relativedelta import relativedelta

import date_engine
from utils import (
    AVG_DAYS_PER_MONTH,
    DAYS_PER_WEEK,
    DATE_COLUMNS,
    DEFAULT_CELL_WIDTHS,
    DEFAULT_RANGE_MONTHS_AHEAD,
    DEFAULT_RANGE_PADDING_DAYS,
    VIEW_DAY,
    VIEW_MONTH,
    VIEW_WEEK,
    get_val,
    normalize_task_id,
    round_half_up,
)


class TimeRange(NamedTuple):
    """Inclusive visible window."""
    start: date
    end: date


class BarGeometry(NamedTuple):
    left: float
    width: float


# Bar entirely outside the window. Distinct from a zero-width box.
HIDDEN = None

VIEW_LABELS = {
    VIEW_DAY: "วัน",
    VIEW_WEEK: "สัปดาห์",
    VIEW_MONTH: "เดือน",
}


def days_per_unit(granularity):
    if granularity == VIEW_DAY:
        return 1
    if granularity == VIEW_WEEK:
        return DAYS_PER_WEEK
    if granularity == VIEW_MONTH:
        return AVG_DAYS_PER_MONTH
    raise ValueError(f"Unknown granularity: '{granularity}'")


def scale_days(days, granularity):
    """Converts a day count into timeline cells for the granularity."""
    unit = days_per_unit(granularity)
    if unit == 1:
        return days
    return days / unit


def pixels_to_days(delta_px, cell_width, granularity):
    """Inverse of the scale: pixel delta -> (fractional) day delta."""
    return (delta_px / cell_width) * days_per_unit(granularity)


def coordinate_x(d, window_start, cell_width, granularity):
    """Pixel x of `d`, signed, relative to the window start."""
    diff = date_engine.days_between(window_start, d)
    return scale_days(diff, granularity) * cell_width


def window_width(window, cell_width, granularity):
    total_days = max(1, date_engine.days_between(window.start, window.end) + 1)
    return scale_days(total_days, granularity) * cell_width


def _clamp(left_px, width_px, chart_width_px):
    raw_end_px = left_px + width_px
    clamped_left_px = max(0, left_px)
    clamped_end_px = min(chart_width_px, raw_end_px)
    clamped_width_px = clamped_end_px - clamped_left_px

    if clamped_width_px <= 0:
        return HIDDEN

    # Keep sub-pixel ranges clickable
    return BarGeometry(left=clamped_left_px, width=max(1, clamped_width_px))


def bar_geometry(start, end, granularity, cell_width, window):
    """
    Geometry of an inclusive [start, end] range against the visible window.
    Returns BarGeometry(left, width) or HIDDEN when nothing of it is visible.
    """
    if start is None or end is None:
        return HIDDEN
    duration = date_engine.days_between(start, end) + 1
    left_px = coordinate_x(start, window.start, cell_width, granularity)
    width_px = scale_days(duration, granularity) * cell_width
    return _clamp(left_px, width_px, window_width(window, cell_width, granularity))


def category_bar_geometry(date_range, granularity, cell_width, window):
    """
    Same as bar_geometry for a precomputed summary range {start, end, days}.
    """
    if not date_range:
        return HIDDEN
    left_px = coordinate_x(date_range["start"], window.start, cell_width, granularity)
    width_px = scale_days(date_range["days"], granularity) * cell_width
    return _clamp(left_px, width_px, window_width(window, cell_width, granularity))


def progress_end_date(start, plan_start, plan_end, progress):
    """
    End of the actual range implied by progress over the plan duration:
    start + max(0, round(planDays * progress / 100) - 1).
    """
    if plan_start is None or plan_end is None:
        return start
    planned_duration = date_engine.days_between(plan_start, plan_end) + 1
    progress_days = round_half_up(planned_duration * (progress / 100))
    return date_engine.add_days(start, max(0, progress_days - 1))


def actual_dates(task, drag_state=None, is_updating=False):
    """
    Resolves the actual-bar range of a task row.
    Returns (start, end) or None when the task has neither an actual start nor progress.
    While the task's actual bar is being dragged, the drag's current range wins.
    """
    task_id = normalize_task_id(task["id"])
    plan_start = date_engine.to_local_date(get_val(task, "plan_start_date"))
    plan_end = date_engine.to_local_date(get_val(task, "plan_end_date"))

    if (not is_updating and drag_state is not None
            and drag_state.task_id == task_id and drag_state.bar_type == "actual"):
        start = drag_state.current_start
        if start is None:
            start = date_engine.to_local_date(get_val(task, "actual_start_date")) or plan_start
        end = drag_state.current_end or start
        if start is None:
            return None
        return start, end

    raw_actual_start = get_val(task, "actual_start_date")
    raw_actual_end = get_val(task, "actual_end_date")
    progress = float(get_val(task, "progress", 0) or 0)

    if raw_actual_start is None and progress <= 0:
        return None

    start = date_engine.to_local_date(raw_actual_start) or plan_start
    if start is None:
        return None

    actual_end = date_engine.to_local_date(raw_actual_end)
    if actual_end is not None:
        end = actual_end
    elif progress > 0:
        end = progress_end_date(start, plan_start, plan_end, progress)
    else:
        end = start

    return start, end


def task_bar_geometry(task, bar_type, granularity, cell_width, window, drag_state=None, is_updating=False):
    """
    Geometry for a task's plan or actual bar, including live drag preview:
    - the dragged task renders its current drag range
    - descendants of a task being moved render shifted by the drag delta
    """
    task_id = normalize_task_id(task["id"])
    active = drag_state is not None and not is_updating

    if active and drag_state.task_id == task_id and drag_state.bar_type == bar_type:
        if bar_type == "plan":
            start = drag_state.current_start or date_engine.to_local_date(get_val(task, "plan_start_date"))
            end = drag_state.current_end or date_engine.to_local_date(get_val(task, "plan_end_date"))
        else:
            dates = actual_dates(task, drag_state, is_updating)
            if dates is None:
                return HIDDEN
            start, end = dates
        return bar_geometry(start, end, granularity, cell_width, window)

    if bar_type == "plan":
        start = date_engine.to_local_date(get_val(task, "plan_start_date"))
        end = date_engine.to_local_date(get_val(task, "plan_end_date"))
        if start is None or end is None:
            return HIDDEN

        if (active and drag_state.type == "move" and drag_state.bar_type == bar_type
                and task_id in drag_state.affected_task_ids):
            delta = date_engine.days_between(
                drag_state.original_start, drag_state.current_start or drag_state.original_start
            )
            if delta != 0:
                start = date_engine.add_days(start, delta)
                end = date_engine.add_days(end, delta)

        return bar_geometry(start, end, granularity, cell_width, window)

    dates = actual_dates(task, drag_state, is_updating)
    if dates is None:
        return HIDDEN
    return bar_geometry(dates[0], dates[1], granularity, cell_width, window)


# --- Time window ---

def default_time_range(today=None):
    """First day of this month through the last day of the month 12 months ahead."""
    if today is None:
        today = date_engine.today_local()
    start = today.replace(day=1)
    end = start + relativedelta(months=DEFAULT_RANGE_MONTHS_AHEAD + 1, days=-1)
    return TimeRange(start, end)


def derive_time_range(df, padding_days=DEFAULT_RANGE_PADDING_DAYS, today=None):
    """
    Window covering every plan/actual date in the frame, padded on both sides.
    Falls back to default_time_range when the frame carries no valid date.
    """
    starts = []
    ends = []
    for col in DATE_COLUMNS:
        if col not in df.columns:
            continue
        parsed = df[col].map(date_engine.to_local_date).dropna()
        if parsed.empty:
            continue
        if col.endswith("start_date"):
            starts.append(parsed.min())
        else:
            ends.append(parsed.max())

    # An end-only or start-only collection still yields a window
    candidates = starts + ends
    if not candidates:
        return default_time_range(today=today)

    start = min(starts) if starts else min(candidates)
    end = max(ends) if ends else max(candidates)
    if end < start:
        start, end = end, start

    return TimeRange(
        date_engine.add_days(start, -padding_days),
        date_engine.add_days(end, padding_days),
    )


def timeline_items(window, granularity):
    """
    Axis cells across the window: every day, every Monday-starting week,
    or every month start.
    """
    if granularity == VIEW_DAY:
        rng = pd.date_range(window.start, window.end, freq="D")
    elif granularity == VIEW_WEEK:
        week_start = date_engine.add_days(window.start, -window.start.weekday())
        rng = pd.date_range(week_start, window.end, freq="W-MON")
    elif granularity == VIEW_MONTH:
        rng = pd.date_range(window.start.replace(day=1), window.end, freq="MS")
    else:
        raise ValueError(f"Unknown granularity: '{granularity}'")
    return [date(ts.year, ts.month, ts.day) for ts in rng]


def timeline_config(granularity, container_width=0, n_items=0):
    """
    Cell width for the granularity, widened to fill the container when
    the default width would leave it partly empty.
    """
    base = {
        "cell_width": DEFAULT_CELL_WIDTHS.get(granularity, DEFAULT_CELL_WIDTHS[VIEW_WEEK]),
        "label": VIEW_LABELS.get(granularity, VIEW_LABELS[VIEW_WEEK]),
    }
    if container_width > 0 and n_items > 0:
        total_required = n_items * base["cell_width"]
        if total_required < container_width:
            fit_width = (container_width - 2) / n_items
            base["cell_width"] = max(base["cell_width"], fit_width)
    return base
