"""
Interactive date editing with cascade.

A drag goes idle -> dragging -> committing -> idle. Pointer moves turn into a whole-day
delta using the timeline scale; on release the new range is written for the dragged task,
plus:
- every descendant, when a plan bar is moved (hierarchy cascade)
- every transitive successor, by the same delta, when a plan bar is moved or
  resized on the right (dependency cascade)

`compute_commit` is pure. `DragSession` wires it to the caller's optimistic mirror and
update sink.
"""

import logging
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Set

import date_engine
from dag_engine import TaskGraph
from geometry_engine import pixels_to_days, progress_end_date
from summary_engine import group_summary
from utils import CASCADE_PAUSE_SECONDS, VIEW_MODES, get_val, normalize_task_id, round_half_up

logger = logging.getLogger(__name__)

# Drag types
DRAG_MOVE = "move"
DRAG_RESIZE_LEFT = "resize-left"
DRAG_RESIZE_RIGHT = "resize-right"
DRAG_TYPES = (DRAG_MOVE, DRAG_RESIZE_LEFT, DRAG_RESIZE_RIGHT)

# Bar types
BAR_PLAN = "plan"
BAR_ACTUAL = "actual"
BAR_TYPES = (BAR_PLAN, BAR_ACTUAL)

# Session states
STATE_IDLE = "idle"
STATE_DRAGGING = "dragging"
STATE_COMMITTING = "committing"


@dataclass
class DragState:
    """Transient state of one interaction, discarded on release."""

    task_id: str
    type: str
    bar_type: str
    start_x: float
    original_start: date
    original_end: date
    current_start: date
    current_end: date
    affected_task_ids: Set[str] = field(default_factory=set)

    def has_moved(self) -> bool:
        return self.current_start != self.original_start or self.current_end != self.original_end


@dataclass
class CommitPlan:
    """Result of a release: field updates keyed by task id, in computation order."""

    updates: Dict[str, dict] = field(default_factory=dict)
    has_dependency_updates: bool = False
    pause_seconds: float = 0.0
    conflicts: List[str] = field(default_factory=list)
    outcome: Optional[object] = None

    def is_empty(self) -> bool:
        return not self.updates

    def as_batch(self) -> List[dict]:
        return [{"task_id": task_id, "fields": fields} for task_id, fields in self.updates.items()]


class CommitError(Exception):
    """The update sink rejected a batch. The optimistic mirror is left as the caller's policy dictates."""

    def __init__(self, batch, cause):
        super().__init__(f"Failed to apply {len(batch)} task update(s): {cause}")
        self.batch = batch
        self.cause = cause


# --- Pure helpers ---

def resolve_original_range(task, bar_type):
    """
    Range a drag starts from.
    plan: the plan dates (must be valid).
    actual: actual start or plan start; end is the actual end, else the progress-derived
    end when progress > 0, else the start.
    """
    if bar_type == BAR_PLAN:
        return (
            date_engine.require_date(get_val(task, "plan_start_date"), "plan_start_date"),
            date_engine.require_date(get_val(task, "plan_end_date"), "plan_end_date"),
        )
    if bar_type != BAR_ACTUAL:
        raise ValueError(f"Unknown bar type: '{bar_type}'")

    plan_start = date_engine.to_local_date(get_val(task, "plan_start_date"))
    plan_end = date_engine.to_local_date(get_val(task, "plan_end_date"))
    start = date_engine.to_local_date(get_val(task, "actual_start_date")) or plan_start
    if start is None:
        raise ValueError(f"Invalid or missing actual_start_date and plan_start_date for task {task['id']}")

    progress = float(get_val(task, "progress", 0) or 0)
    if progress > 0:
        end = date_engine.to_local_date(get_val(task, "actual_end_date"))
        if end is None:
            end = progress_end_date(start, plan_start, plan_end, progress)
    else:
        end = start
    return start, end


def days_delta_from_pixels(delta_px, cell_width, granularity):
    """Pointer delta -> nearest whole-day delta (day 1:1, week x7, month x30.44)."""
    return round_half_up(pixels_to_days(delta_px, cell_width, granularity))


def apply_drag_delta(drag_type, original_start, original_end, days_delta):
    """
    New (start, end) for a drag.
    A resize never inverts the range: the moving end is pinned to the fixed one.
    """
    new_start = original_start
    new_end = original_end

    if drag_type == DRAG_MOVE:
        new_start = date_engine.add_days(original_start, days_delta)
        new_end = date_engine.add_days(original_end, days_delta)
    elif drag_type == DRAG_RESIZE_LEFT:
        new_start = date_engine.add_days(original_start, days_delta)
        if new_start > new_end:
            new_start = new_end
    elif drag_type == DRAG_RESIZE_RIGHT:
        new_end = date_engine.add_days(original_end, days_delta)
        if new_end < new_start:
            new_end = new_start
    else:
        raise ValueError(f"Unknown drag type: '{drag_type}'")

    return new_start, new_end


def recompute_progress(task, actual_start, actual_end):
    """
    Progress implied by an actual range: round(100 * actualDays / planDays) in [0, 100].
    None when the plan duration is not positive.
    """
    plan_start = date_engine.to_local_date(get_val(task, "plan_start_date"))
    plan_end = date_engine.to_local_date(get_val(task, "plan_end_date"))
    if plan_start is None or plan_end is None:
        return None

    plan_duration = date_engine.days_between(plan_start, plan_end) + 1
    if plan_duration <= 0:
        return None

    actual_duration = date_engine.days_between(actual_start, actual_end) + 1
    progress = round_half_up((actual_duration / plan_duration) * 100)
    return max(0, min(100, progress))


def _shifted_plan(task, delta):
    start = date_engine.to_local_date(get_val(task, "plan_start_date"))
    end = date_engine.to_local_date(get_val(task, "plan_end_date"))
    if start is None or end is None:
        logger.warning("Task %s has no valid plan range; not shifted", task["id"])
        return None
    return {
        "plan_start_date": date_engine.format_iso(date_engine.add_days(start, delta)),
        "plan_end_date": date_engine.format_iso(date_engine.add_days(end, delta)),
    }


def hierarchy_cascade(graph, task_id, days_delta, descendant_ids=None):
    """
    Shifts the plan range of every descendant of `task_id` by `days_delta`.
    `descendant_ids` is the set captured at drag start (applied in collection order);
    when omitted the subtree is walked again.
    Returns {task_id: fields}.
    """
    updates = {}
    if days_delta == 0:
        return updates

    if descendant_ids is None:
        ordered = graph.descendant_ids(task_id)
    else:
        wanted = {normalize_task_id(i) for i in descendant_ids}
        ordered = [t for t in graph.order if t in wanted]

    for desc_id in ordered:
        task = graph.get_task(desc_id)
        if task is None:
            continue
        fields = _shifted_plan(task, days_delta)
        if fields is not None:
            updates[desc_id] = fields
    return updates


def dependency_cascade(graph, task_id, shift):
    """
    Breadth-first walk of successors from `task_id`. Every reached task moves by the
    same `shift` (no compounding across hops); each task is visited once and the
    origin is never rewritten.
    Returns {task_id: fields} in visit order.
    """
    updates = {}
    if shift == 0:
        return updates

    origin = normalize_task_id(task_id)
    queue = deque([origin])
    processed = set()

    while queue:
        current_id = queue.popleft()
        if current_id in processed:
            continue
        processed.add(current_id)

        for succ in graph.successors_of(current_id):
            succ_id = normalize_task_id(succ["id"])
            if succ_id == origin:
                logger.warning("Dependency cycle back to task %s; origin left as dragged", origin)
                continue
            if succ_id not in updates:
                fields = _shifted_plan(succ, shift)
                if fields is not None:
                    updates[succ_id] = fields
            queue.append(succ_id)

    return updates


def compute_commit(graph, drag_state):
    """
    Turns a finished drag into a CommitPlan. Empty when the range did not change.
    """
    plan = CommitPlan()
    if not drag_state.has_moved():
        return plan

    task = graph.get_task(drag_state.task_id)
    if task is None:
        logger.warning("Dragged task %s no longer exists; nothing to commit", drag_state.task_id)
        return plan

    new_start = drag_state.current_start
    new_end = drag_state.current_end

    if drag_state.bar_type == BAR_ACTUAL:
        fields = {
            "actual_start_date": date_engine.format_iso(new_start),
            "actual_end_date": date_engine.format_iso(new_end),
        }
        progress = recompute_progress(task, new_start, new_end)
        if progress is not None:
            fields["progress"] = progress
        plan.updates[drag_state.task_id] = fields
        return plan

    plan.updates[drag_state.task_id] = {
        "plan_start_date": date_engine.format_iso(new_start),
        "plan_end_date": date_engine.format_iso(new_end),
    }

    # 1. Hierarchy (moves only)
    move_delta = date_engine.days_between(drag_state.original_start, new_start)
    if drag_state.type == DRAG_MOVE and move_delta != 0:
        descendants = drag_state.affected_task_ids or None
        plan.updates.update(hierarchy_cascade(graph, drag_state.task_id, move_delta, descendants))

    # 2. Dependencies (move: full delta, resize-right: end delta, resize-left: none)
    effective_shift = 0
    if drag_state.type == DRAG_MOVE:
        effective_shift = move_delta
    elif drag_state.type == DRAG_RESIZE_RIGHT:
        effective_shift = date_engine.days_between(drag_state.original_end, new_end)

    dep_updates = dependency_cascade(graph, drag_state.task_id, effective_shift)
    for dep_id, fields in dep_updates.items():
        if dep_id in plan.updates:
            # Reached by both cascades. Last write wins: the dependency value is kept.
            plan.conflicts.append(dep_id)
            logger.info("Task %s shifted by both hierarchy and dependency cascade; dependency value kept", dep_id)
        plan.updates[dep_id] = fields

    if dep_updates:
        plan.has_dependency_updates = True
        plan.pause_seconds = CASCADE_PAUSE_SECONDS

    logger.debug(
        "Commit for %s: %d update(s), dependency cascade=%s",
        drag_state.task_id, len(plan.updates), plan.has_dependency_updates,
    )
    return plan


def apply_updates_to_frame(df, updates):
    """
    Mutates df in place applying {task_id: fields}.
    Returns the ids that were not found.
    """
    missing = []
    ids = df["id"].map(normalize_task_id)
    for task_id, fields in updates.items():
        mask = ids == normalize_task_id(task_id)
        if not mask.any():
            missing.append(task_id)
            continue
        idx = df[mask].index[0]
        for col, val in fields.items():
            if col not in df.columns:
                df[col] = None
            elif df[col].dtype != object:
                # Avoid incompatible-dtype writes (e.g. None into an int column)
                df[col] = df[col].astype(object)
            df.at[idx, col] = val
    return missing


# --- Session ---

class DragSession:
    """
    One drag interaction at a time over a caller-owned task collection.

    Args:
        tasks: task DataFrame, or a zero-argument callable returning the current one
        granularity: "day" / "week" / "month"
        cell_width: timeline cell width in pixels
        update_sink: callable(batch) persisting [{"task_id", "fields"}]; its return value
            is kept as the plan's outcome
        optimistic_sink: callable(updates) reflecting {task_id: fields} in the caller's
            in-memory mirror, called before the update sink
        rollback_on_failure: on a failed batch, re-apply the previous field values
            through the optimistic sink
        on_cascade_pause: callable(seconds) invoked before a batch that includes a
            dependency cascade
    """

    def __init__(self, tasks, granularity, cell_width, update_sink,
                 optimistic_sink=None, rollback_on_failure=False, on_cascade_pause=None):
        if granularity not in VIEW_MODES:
            raise ValueError(f"Unknown granularity: '{granularity}'")
        self._get_tasks = tasks if callable(tasks) else (lambda: tasks)
        self.granularity = granularity
        self.cell_width = cell_width
        self.update_sink = update_sink
        self.optimistic_sink = optimistic_sink
        self.rollback_on_failure = rollback_on_failure
        self.on_cascade_pause = on_cascade_pause

        self.state = STATE_IDLE
        self.drag_state = None
        self._pending_x = None

    @property
    def is_updating(self):
        return self.state == STATE_COMMITTING

    def _graph(self):
        return TaskGraph(self._get_tasks())

    def start(self, task_id, drag_type, bar_type, pointer_x):
        if self.state != STATE_IDLE:
            raise RuntimeError(f"Cannot start a drag while {self.state}")
        if drag_type not in DRAG_TYPES:
            raise ValueError(f"Unknown drag type: '{drag_type}'")
        if bar_type not in BAR_TYPES:
            raise ValueError(f"Unknown bar type: '{bar_type}'")

        graph = self._graph()
        task = graph.get_task(task_id)
        if task is None:
            raise KeyError(f"Unknown task id: {task_id}")

        if bar_type == BAR_PLAN and graph.is_group(task_id):
            # Group ranges are derived from their leaves
            summary = group_summary(task_id, None, graph=graph)
            start, end = summary["min_start_date"], summary["max_end_date"]
            if start is None or end is None:
                raise ValueError(f"Group {task_id} has no plan range to drag")
        else:
            start, end = resolve_original_range(task, bar_type)

        affected = set()
        if drag_type == DRAG_MOVE and bar_type == BAR_PLAN:
            # Captured once for the whole drag
            affected = set(graph.descendant_ids(task_id))

        self.drag_state = DragState(
            task_id=normalize_task_id(task_id),
            type=drag_type,
            bar_type=bar_type,
            start_x=pointer_x,
            original_start=start,
            original_end=end,
            current_start=start,
            current_end=end,
            affected_task_ids=affected,
        )
        self._pending_x = None
        self.state = STATE_DRAGGING
        logger.debug("Drag started: %s %s on %s (%d affected)", drag_type, bar_type, task_id, len(affected))
        return self.drag_state

    def move(self, pointer_x):
        """Processes one pointer position immediately."""
        if self.state != STATE_DRAGGING:
            raise RuntimeError("No drag in progress")
        ds = self.drag_state
        delta = days_delta_from_pixels(pointer_x - ds.start_x, self.cell_width, self.granularity)
        ds.current_start, ds.current_end = apply_drag_delta(ds.type, ds.original_start, ds.original_end, delta)
        return ds

    def queue_move(self, pointer_x):
        """Records the latest pointer position; only the last one is processed by flush()."""
        if self.state != STATE_DRAGGING:
            raise RuntimeError("No drag in progress")
        self._pending_x = pointer_x

    def flush(self):
        """Processes the coalesced pointer position, if any (one per scheduling tick)."""
        if self._pending_x is None or self.state != STATE_DRAGGING:
            return self.drag_state
        pointer_x, self._pending_x = self._pending_x, None
        return self.move(pointer_x)

    def cancel(self):
        """Returns to idle without writing anything. Safe in any state."""
        if self.drag_state is not None:
            logger.debug("Drag on %s cancelled", self.drag_state.task_id)
        self.drag_state = None
        self._pending_x = None
        self.state = STATE_IDLE

    def end(self):
        """
        Releases the drag and commits. Returns the CommitPlan (empty for a no-op).
        Raises CommitError when the update sink fails; the session is idle either way.
        """
        if self.state != STATE_DRAGGING:
            raise RuntimeError("No drag in progress")
        self.flush()
        self.state = STATE_COMMITTING

        try:
            graph = self._graph()
            plan = compute_commit(graph, self.drag_state)
            if plan.is_empty():
                return plan

            previous = self._snapshot(graph, plan.updates)

            if self.optimistic_sink is not None:
                self.optimistic_sink(plan.updates)

            if plan.has_dependency_updates and self.on_cascade_pause is not None:
                self.on_cascade_pause(plan.pause_seconds)

            batch = plan.as_batch()
            try:
                plan.outcome = self.update_sink(batch)
            except Exception as e:
                logger.warning("Update batch of %d task(s) failed: %s", len(batch), e)
                if self.rollback_on_failure and self.optimistic_sink is not None:
                    self.optimistic_sink(previous)
                raise CommitError(batch, e) from e

            return plan
        finally:
            self.drag_state = None
            self._pending_x = None
            self.state = STATE_IDLE

    @contextmanager
    def interaction(self, task_id, drag_type, bar_type, pointer_x):
        """
        Starts a drag and guarantees the session is idle again when the block exits,
        whether or not end() was reached.
        """
        drag_state = self.start(task_id, drag_type, bar_type, pointer_x)
        try:
            yield drag_state
        finally:
            if self.state != STATE_IDLE:
                self.cancel()

    @staticmethod
    def _snapshot(graph, updates):
        previous = {}
        for task_id, fields in updates.items():
            task = graph.get_task(task_id)
            if task is None:
                continue
            previous[task_id] = {col: get_val(task, col) for col in fields}
        return previous


def frame_mirror(df):
    """Optimistic sink writing straight into a caller-held DataFrame."""
    def sink(updates):
        missing = apply_updates_to_frame(df, updates)
        if missing:
            logger.warning("Mirror is missing task(s): %s", ", ".join(missing))
    return sink
