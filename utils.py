import logging
import math
import os

import pandas as pd
import dateutil.parser

# --- Constants ---

REQUIRED_TASK_COLUMNS = [
    "id",
    "plan_start_date",
    "plan_end_date",
]

OPTIONAL_TASK_COLUMNS = [
    "parent_task_id",
    "type",
    "name",
    "category",
    "actual_start_date",
    "actual_end_date",
    "progress",
    "status",
    "predecessors",
    "cost",
    "order",
]

DATE_COLUMNS = [
    "plan_start_date",
    "plan_end_date",
    "actual_start_date",
    "actual_end_date",
]

TYPE_TASK = "task"
TYPE_GROUP = "group"

STATUS_IN_PROGRESS = "in-progress"
STATUS_COMPLETED = "completed"

# Timeline granularity
VIEW_DAY = "day"
VIEW_WEEK = "week"
VIEW_MONTH = "month"
VIEW_MODES = (VIEW_DAY, VIEW_WEEK, VIEW_MONTH)

DAYS_PER_WEEK = 7
# Average month length used by the timeline scale. Not calendar-accurate on purpose.
AVG_DAYS_PER_MONTH = 30.44

DEFAULT_CELL_WIDTHS = {
    VIEW_DAY: 30,
    VIEW_WEEK: 40,
    VIEW_MONTH: 100,
}

DEFAULT_RANGE_PADDING_DAYS = 7
DEFAULT_RANGE_MONTHS_AHEAD = 12

# S-curve weighting
MODE_PHYSICAL = "physical"
MODE_FINANCIAL = "financial"

# Suggested presentation pause after a successor cascade. Honored by the caller, not the engine.
CASCADE_PAUSE_SECONDS = 0.6

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL_ENV = "SCHEDULE_LOG_LEVEL"


# --- Logging ---

def configure_logging(level=None):
    """
    Attaches a single console handler to the root logger.
    Level defaults to $SCHEDULE_LOG_LEVEL (INFO when unset).
    """
    if level is None:
        level = os.getenv(LOG_LEVEL_ENV, "INFO")

    root = logging.getLogger()
    root.setLevel(level)

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

    return root


# --- Numeric helpers ---

def round_half_up(value):
    """Rounds .5 toward +inf (round() would use banker's rounding)."""
    return int(math.floor(value + 0.5))


# --- Frame helpers ---

def get_val(row, col, default=None):
    """
    Null-safe cell lookup on a row (Series or dict).
    NaN, None and empty strings all read as `default`.
    """
    val = row.get(col) if hasattr(row, "get") else None
    if val is None:
        return default
    if isinstance(val, (list, tuple, set)):
        return val
    if isinstance(val, str):
        return val if val.strip() != "" else default
    try:
        if pd.isna(val):
            return default
    except (TypeError, ValueError):
        pass
    return val


def normalize_task_id(v):
    """
    Task id as str; None for nulls.
    Integral floats lose the '.0' (read_csv upcasts numeric id columns holding blanks).
    """
    v = get_val({"v": v}, "v")
    if v is None:
        return None
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def tasks_to_frame(records):
    """
    Builds the task DataFrame from a list of dicts.
    Missing optional columns are added as nulls; ids are normalized to str.
    """
    df = pd.DataFrame(list(records))

    for col in REQUIRED_TASK_COLUMNS + OPTIONAL_TASK_COLUMNS:
        if col not in df.columns:
            df[col] = None

    # Keep list-valued predecessors intact
    df = df.astype({"predecessors": object})

    if not df.empty:
        # Built as object columns so missing parents stay None
        for col in ("id", "parent_task_id"):
            df[col] = pd.Series([normalize_task_id(v) for v in df[col]], index=df.index, dtype=object)
        df["type"] = df["type"].map(lambda v: v if isinstance(v, str) and v else TYPE_TASK)

    return df


# --- Validation Functions ---

def validate_columns(df, required_columns=None, name="tasks"):
    """
    Checks if all required columns are present in the dataframe.
    Returns a list of error strings.
    """
    if required_columns is None:
        required_columns = REQUIRED_TASK_COLUMNS
    errors = []
    missing = [col for col in required_columns if col not in df.columns]
    if missing:
        errors.append(f"{name}: Missing required columns: {', '.join(missing)}")
    return errors


def validate_iso_dates(df, date_cols=None, name="tasks"):
    """
    Checks that date columns hold canonical YYYY-MM-DD strings.
    Returns a list of error strings.
    """
    if date_cols is None:
        date_cols = DATE_COLUMNS
    errors = []
    for col in date_cols:
        if col not in df.columns:
            continue
        for idx, val in df[col].items():
            val = get_val({col: val}, col)
            if val is None:
                continue
            s = str(val)
            try:
                parsed = dateutil.parser.isoparse(s)
            except (ValueError, OverflowError):
                errors.append(f"{name} (Row {idx}): Invalid ISO date in '{col}': '{s}'")
                continue
            # isoparse also accepts week dates and timestamps; canonical form only
            if parsed.strftime("%Y-%m-%d") != s:
                errors.append(f"{name} (Row {idx}): Non-canonical date in '{col}': '{s}'")

    # Cap errors to avoid flooding the caller
    if len(errors) > 10:
        errors = errors[:10] + [f"... and {len(errors)-10} more date errors."]
    return errors
