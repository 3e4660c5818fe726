"""
Resource Workload Heatmap
Reads scheduled work assignments from Excel, spreads each resource's hours across the
working days of every assignment, and buckets them into weeks counted from today.
Outputs a resource x week heatmap PNG, a long-form CSV, and a console summary.

Features:
  - Working-day aware windows (explicit end date or duration in working days)
  - Explicit per-resource hours, with an allocation-percentage fallback
  - Fixed one-week buckets relative to a reference date, over a configurable horizon
  - Severity bands (none / low / medium / high / critical) for display
  - Excel template with example data
"""

import argparse
import io
import math
import os
import sys
from collections import namedtuple
from datetime import date, datetime, timedelta

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
from matplotlib.colors import ListedColormap
import numpy as np
import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment, Border, Side
from openpyxl.worksheet.datavalidation import DataValidation


# ── Constants ────────────────────────────────────────────────────────────────

_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_INPUT = os.path.join(_DIR, "workload_data.xlsx")
DEFAULT_OUTDIR = os.path.join(_DIR, "output")

DEFAULT_HORIZON_WEEKS = 12
HOURS_PER_DAY = 8
DEFAULT_ALLOCATION_PERCENTAGE = 100
WEEKLY_CAPACITY_HOURS = 40

STRATEGY_EXPLICIT_HOURS = "explicit"
STRATEGY_ALLOCATION = "allocation"

# (upper bound on rounded hours, band); anything above the last bound is critical
BAND_THRESHOLDS = [
    (0, "none"),
    (10, "low"),
    (20, "medium"),
    (30, "high"),
]
BAND_CRITICAL = "critical"
BAND_ORDER = ["none", "low", "medium", "high", "critical"]

BAND_COLORS = {
    "none": "#F3F4F6",
    "low": "#BBF7D0",
    "medium": "#FEF08A",
    "high": "#FDBA74",
    "critical": "#F87171",
}

BAND_LEGEND = {
    "none": "0h",
    "low": "1-10h",
    "medium": "11-20h",
    "high": "21-30h",
    "critical": "31h+",
}

OUTPUT_CHOICES = ["all", "heatmap", "csv", "summary"]

STYLE = {
    "font_family": "DejaVu Sans",
    "title_size": 18,
    "subtitle_size": 13,
    "label_size": 9.5,
    "tick_size": 8.5,
    "small_size": 7.5,
    "bg_color": "#FAFAFA",
    "panel_bg": "#FFFFFF",
    "text_primary": "#1A1A2E",
    "text_secondary": "#555555",
    "text_muted": "#999999",
    "grid_color": "#E0E0E0",
    "over_capacity_color": "#E53935",
    "cell_edge_color": "#FFFFFF",
    "dpi": 180,
    "fig_width": 16,
    "row_height": 0.55,
}


# ── Value Types ──────────────────────────────────────────────────────────────

ResolvedWindow = namedtuple("ResolvedWindow", ["start", "end"])
ResourceContribution = namedtuple("ResourceContribution", ["resource_id", "date", "hours"])
BucketKey = namedtuple("BucketKey", ["resource_id", "bucket"])


# ── Helpers ──────────────────────────────────────────────────────────────────

def norm_date(d):
    """Normalise a datetime, Timestamp or date to a plain date."""
    if isinstance(d, pd.Timestamp):
        if pd.isna(d):
            raise TypeError(f"norm_date expected a date, got NaT: {d!r}")
        d = d.to_pydatetime()
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, date):
        return d
    raise TypeError(f"norm_date expected date or datetime, got {type(d).__name__}: {d!r}")


def is_blank(val):
    """True for None, NaN/NaT and whitespace-only strings."""
    if val is None:
        return True
    if isinstance(val, str):
        return not val.strip()
    return bool(pd.api.types.is_scalar(val) and pd.isna(val))


def clean_str(val):
    """Return stripped string or empty string for NaN/None."""
    if is_blank(val):
        return ""
    return str(val).strip()


def clean_id(val):
    """Identifier cell as a string; whole-number floats (pandas NaN upcasting) lose their '.0'."""
    if isinstance(val, float) and not math.isnan(val) and val.is_integer():
        return str(int(val))
    return clean_str(val)


def parse_date(val, context=""):
    """Parse a date from a cell or record: handles date, datetime, Timestamp and string."""
    ctx = f" ({context})" if context else ""
    if is_blank(val):
        raise ValueError(f"Date is blank{ctx}")
    if isinstance(val, (date, datetime, pd.Timestamp)):
        return norm_date(val)
    if isinstance(val, str):
        # "2024-01-01 09:00" and "2024-01-01T09:00:00" carry a time part we ignore
        head = val.strip().replace("T", " ").split(" ")[0]
        for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y"):
            try:
                return datetime.strptime(head, fmt).date()
            except ValueError:
                pass
        raise ValueError(f"Cannot parse date{ctx}: {val!r}. Expected YYYY-MM-DD or DD/MM/YYYY")
    raise ValueError(f"Cannot parse date{ctx}: {val!r}")


def parse_number(val):
    """Float value of a numeric cell, or None when blank or not a number."""
    if is_blank(val) or isinstance(val, bool):
        return None
    try:
        number = float(val)
    except (ValueError, TypeError):
        return None
    if math.isnan(number):
        return None
    return number


def split_ids(val):
    """Split an 'Assigned To' cell ('r1, r2; r3') or a list into distinct ids, order kept."""
    if isinstance(val, (list, tuple, set)):
        parts = [clean_id(v) for v in val]
    else:
        text = clean_id(val)
        parts = [p.strip() for p in text.replace(";", ",").split(",")]
    return list(dict.fromkeys(p for p in parts if p))


class _TeeWriter:
    """Write to two streams simultaneously (for summary.txt capture)."""
    def __init__(self, a, b):
        self.a, self.b = a, b
    def write(self, data):
        self.a.write(data)
        self.b.write(data)
    def flush(self):
        self.a.flush()
        self.b.flush()


# ── Calendar Arithmetic ──────────────────────────────────────────────────────

def is_working_day(day):
    """Monday to Friday. No holiday calendar."""
    return day.weekday() < 5


def advance_by_working_days(start, n):
    """Date of the nth working day strictly after start; start itself when n <= 0.

    A fractional n occupies part of its last day, so 2.5 lands on the third working
    day. Fallback hours still use the stated 2.5 days.
    """
    current = norm_date(start)
    if n <= 0:
        return current
    counted = 0
    while counted < n:
        current += timedelta(days=1)
        if is_working_day(current):
            counted += 1
    return current


def count_working_days(start, end):
    """Count working days between start and end (inclusive)."""
    d, end_d = norm_date(start), norm_date(end)
    count = 0
    while d <= end_d:
        if is_working_day(d):
            count += 1
        d += timedelta(days=1)
    return count


def iter_working_days(start, end):
    d, end_d = norm_date(start), norm_date(end)
    while d <= end_d:
        if is_working_day(d):
            yield d
        d += timedelta(days=1)


# ── Task Window Resolution ───────────────────────────────────────────────────

def assignment_label(assignment):
    ident = clean_str(assignment.get("id")) or "?"
    task = clean_str(assignment.get("task"))
    row = assignment.get("_row")
    label = f"'{task}' ({ident})" if task else ident
    if row:
        label += f" [row {row}]"
    return label


def resolve_window(assignment, warnings=None):
    """Derive the inclusive (start, end) window of an assignment.

    An explicit end date wins and is used as-is; otherwise the end is the start advanced
    by the duration in working days. Returns None when the assignment cannot be placed
    on the calendar (no/unparsable start, neither end nor duration, negative duration,
    end before start). The reason is appended to ``warnings`` when a list is given.
    """
    label = assignment_label(assignment)

    def skip(reason):
        if warnings is not None:
            warnings.append(f"Assignment {label}: {reason}. Skipping.")
        return None

    try:
        start = parse_date(assignment.get("start_date"), context="Start Date")
    except ValueError as e:
        return skip(str(e))

    raw_duration = assignment.get("duration")
    duration = parse_number(raw_duration)
    if duration is not None and duration < 0:
        return skip(f"invalid Duration {raw_duration!r}")

    end = None
    raw_end = assignment.get("end_date")
    if not is_blank(raw_end):
        try:
            end = parse_date(raw_end, context="End Date")
        except ValueError as e:
            if warnings is not None:
                warnings.append(f"Assignment {label}: {e}. Ignoring End Date.")

    if end is None:
        if duration is None:
            if not is_blank(raw_duration):
                return skip(f"invalid Duration {raw_duration!r}")
            return skip("has neither End Date nor Duration")
        end = advance_by_working_days(start, duration)

    if end < start:
        return skip(f"End Date {end.isoformat()} is before Start Date {start.isoformat()}")
    return ResolvedWindow(start, end)


# ── Hours Distribution ───────────────────────────────────────────────────────

def explicit_hours(assignment, resource_id):
    """Recorded hours for this resource on this assignment, or None."""
    work_hours = {clean_id(k): v for k, v in (assignment.get("resource_work_hours") or {}).items()}
    resource_id = clean_id(resource_id)
    if resource_id not in work_hours:
        return None
    return parse_number(work_hours[resource_id])


def choose_hours_strategy(assignment, resource_id):
    """STRATEGY_EXPLICIT_HOURS when hours are recorded for the resource, else STRATEGY_ALLOCATION."""
    if explicit_hours(assignment, resource_id) is not None:
        return STRATEGY_EXPLICIT_HOURS
    return STRATEGY_ALLOCATION


def _explicit_total(assignment, resource_id, working_days, allocation_percentage):
    return explicit_hours(assignment, resource_id)


def _allocation_total(assignment, resource_id, working_days, allocation_percentage):
    duration = parse_number(assignment.get("duration"))
    effective_days = duration if duration is not None else working_days
    if parse_number(allocation_percentage) is None:
        allocation_percentage = DEFAULT_ALLOCATION_PERCENTAGE
    return effective_days * HOURS_PER_DAY * (float(allocation_percentage) / 100)


_HOURS_STRATEGIES = {
    STRATEGY_EXPLICIT_HOURS: _explicit_total,
    STRATEGY_ALLOCATION: _allocation_total,
}


def total_hours_for(assignment, resource_id, working_days, allocation_percentage=None):
    """Total hours a resource carries on an assignment. Returns (strategy, hours)."""
    strategy = choose_hours_strategy(assignment, resource_id)
    hours = _HOURS_STRATEGIES[strategy](assignment, resource_id, working_days, allocation_percentage)
    return strategy, hours


def distribute_hours(window, resource_id, assignment, allocation_percentage=None):
    """Spread a resource's hours evenly over the working days of the window.
    Returns a list of ResourceContribution, empty when the window has no working days."""
    working_days = count_working_days(window.start, window.end)
    if working_days == 0:
        return []
    _, total = total_hours_for(assignment, resource_id, working_days, allocation_percentage)
    per_day = total / working_days
    return [ResourceContribution(resource_id, day, per_day)
            for day in iter_working_days(window.start, window.end)]


# ── Week Buckets ─────────────────────────────────────────────────────────────

def bucket_index(day, reference_date, horizon_weeks=DEFAULT_HORIZON_WEEKS):
    """Week offset of day from reference_date, or None outside [0, horizon_weeks)."""
    offset = (norm_date(day) - norm_date(reference_date)).days // 7
    if offset < 0 or offset >= horizon_weeks:
        return None
    return offset


def bucket_label(index):
    return f"Week {index + 1}"


def format_week_range(start, end):
    """'Jan 1-7' within a month, 'Jan 29 - Feb 4' across months."""
    if start.month == end.month:
        return f"{start.strftime('%b')} {start.day}-{end.day}"
    return f"{start.strftime('%b')} {start.day} - {end.strftime('%b')} {end.day}"


def build_buckets(reference_date, horizon_weeks=DEFAULT_HORIZON_WEEKS):
    """Column descriptors for every bucket in the horizon."""
    reference_date = norm_date(reference_date)
    buckets = []
    for i in range(horizon_weeks):
        week_start = reference_date + timedelta(days=7 * i)
        week_end = week_start + timedelta(days=6)
        buckets.append({
            "index": i,
            "label": bucket_label(i),
            "week_start": week_start,
            "week_end": week_end,
            "range": format_week_range(week_start, week_end),
        })
    return buckets


# ── Aggregation ──────────────────────────────────────────────────────────────

def empty_totals(roster_ids, horizon_weeks=DEFAULT_HORIZON_WEEKS):
    """Zero hours for every (resource, bucket) so the grid is always dense."""
    return {BucketKey(rid, b): 0.0 for rid in roster_ids for b in range(horizon_weeks)}


def merge_totals(*partials):
    """Key-wise sum of partial totals. Order of partials does not matter."""
    merged = {}
    for partial in partials:
        for key, hours in partial.items():
            merged[key] = merged.get(key, 0.0) + hours
    return merged


def aggregate_workload(assignments, roster_ids, reference_date,
                       horizon_weeks=DEFAULT_HORIZON_WEEKS, allocation_lookup=None):
    """Fold every assignment's contributions into hours per (resource, bucket).

    allocation_lookup(project_id, resource_id) supplies the allocation percentage and is
    only consulted for resources without explicit hours on an assignment.
    Returns (totals, skipped, warnings).
    """
    reference_date = norm_date(reference_date)
    totals = empty_totals(roster_ids, horizon_weeks)
    warnings = []
    skipped = 0

    for assignment in assignments:
        window = resolve_window(assignment, warnings)
        if window is None:
            skipped += 1
            continue
        for resource_id in split_ids(assignment.get("resource_ids") or []):
            allocation = None
            if (allocation_lookup is not None
                    and choose_hours_strategy(assignment, resource_id) == STRATEGY_ALLOCATION):
                allocation = allocation_lookup(assignment.get("project_id"), resource_id)
            for contribution in distribute_hours(window, resource_id, assignment, allocation):
                bucket = bucket_index(contribution.date, reference_date, horizon_weeks)
                if bucket is None:
                    continue
                key = BucketKey(contribution.resource_id, bucket)
                totals[key] = totals.get(key, 0.0) + contribution.hours

    return totals, skipped, warnings


# ── Heatmap Presentation ─────────────────────────────────────────────────────

def round_half_up(hours):
    return int(math.floor(hours + 0.5))


def classify_hours(hours):
    """Severity band for an hour total, using the rounded value."""
    rounded = round_half_up(hours)
    for upper, band in BAND_THRESHOLDS:
        if rounded <= upper:
            return band
    return BAND_CRITICAL


def present_heatmap(totals, roster_ids, horizon_weeks=DEFAULT_HORIZON_WEEKS):
    """Dense display cells keyed by BucketKey. Does not modify totals."""
    cells = {}
    for rid in roster_ids:
        for b in range(horizon_weeks):
            key = BucketKey(rid, b)
            hours = totals.get(key, 0.0)
            cells[key] = {
                "hours": hours,
                "display_hours": round_half_up(hours),
                "band": classify_hours(hours),
            }
    return cells


def build_grid(assignments, roster, reference_date, horizon_weeks=DEFAULT_HORIZON_WEEKS,
               allocation_lookup=None):
    """Run the whole pipeline over an in-memory snapshot."""
    if horizon_weeks < 1:
        raise ValueError(f"horizon_weeks must be at least 1, got {horizon_weeks}")
    reference_date = norm_date(reference_date)
    resources = [_roster_entry(r) for r in roster]
    roster_ids = [r["id"] for r in resources]

    totals, skipped, warnings = aggregate_workload(
        assignments, roster_ids, reference_date, horizon_weeks, allocation_lookup)

    return {
        "reference_date": reference_date,
        "horizon_weeks": horizon_weeks,
        "resources": resources,
        "buckets": build_buckets(reference_date, horizon_weeks),
        "totals": totals,
        "cells": present_heatmap(totals, roster_ids, horizon_weeks),
        "skipped": skipped,
        "warnings": warnings,
    }


def compute_heatmap(store, reference_date=None, horizon_weeks=DEFAULT_HORIZON_WEEKS):
    """Fetch a snapshot from the store and compute the heatmap grid.

    reference_date defaults to today. Errors raised by the store propagate unchanged,
    in which case no grid is produced.
    """
    if reference_date is None:
        reference_date = date.today()
    roster = store.fetch_resource_roster()
    assignments = store.fetch_assignments()
    return build_grid(assignments, roster, reference_date, horizon_weeks,
                      allocation_lookup=store.fetch_allocation_percentage)


def resource_total(grid, resource_id):
    return sum(grid["totals"].get(BucketKey(resource_id, b), 0.0)
               for b in range(grid["horizon_weeks"]))


# ── Workload Stores ──────────────────────────────────────────────────────────

def _roster_entry(entry):
    if isinstance(entry, dict):
        rid = clean_id(entry.get("id"))
        return {"id": rid, "name": clean_str(entry.get("name")) or rid}
    rid = clean_id(entry)
    return {"id": rid, "name": rid}


class InMemoryWorkloadStore:
    """Snapshot held in memory. allocations maps (project_id, resource_id) -> percentage."""

    def __init__(self, assignments, roster, allocations=None):
        self._assignments = list(assignments)
        self._roster = [_roster_entry(r) for r in roster]
        self._allocations = {(clean_id(p), clean_id(r)): pct
                             for (p, r), pct in (allocations or {}).items()}

    def fetch_assignments(self):
        return list(self._assignments)

    def fetch_allocation_percentage(self, project_id, resource_id):
        pct = parse_number(self._allocations.get((clean_id(project_id), clean_id(resource_id))))
        return DEFAULT_ALLOCATION_PERCENTAGE if pct is None else pct

    def fetch_resource_roster(self):
        return [dict(r) for r in self._roster]


class ExcelWorkloadStore(InMemoryWorkloadStore):
    """Snapshot loaded once from a workbook (see generate_template for the layout)."""

    def __init__(self, filepath):
        roster, assignments, allocations = load_data(filepath)
        super().__init__(assignments, roster, allocations)
        self.filepath = filepath


# ── Template Generation ─────────────────────────────────────────────────────

def generate_template(output_path):
    """Create an Excel template with Resources, Assignments, Work Hours and Allocations
    sheets filled with example data."""
    wb = Workbook()

    header_font = Font(bold=True, color="FFFFFF", size=11)
    header_fill = PatternFill(start_color="2E3B4E", end_color="2E3B4E", fill_type="solid")
    header_alignment = Alignment(horizontal="center", vertical="center")
    thin_border = Border(
        left=Side(style="thin"), right=Side(style="thin"),
        top=Side(style="thin"), bottom=Side(style="thin"),
    )

    def style_sheet(ws, widths):
        for cell in ws[1]:
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = header_alignment
            cell.border = thin_border
        for row in ws.iter_rows(min_row=2, max_row=ws.max_row):
            for cell in row:
                cell.border = thin_border
                cell.alignment = Alignment(vertical="center")
        for col, width in widths.items():
            ws.column_dimensions[col].width = width
        ws.freeze_panes = "A2"

    # ── Sheet 1: Resources ──
    ws_res = wb.active
    ws_res.title = "Resources"
    ws_res.append(["ID", "Name", "Status"])
    for row in [["r1", "Dana Analyst", "active"],
                ["r2", "Sam Developer", "active"],
                ["r3", "Lee Designer", "active"],
                ["r4", "Former Contractor", "inactive"]]:
        ws_res.append(row)
    style_sheet(ws_res, {"A": 10, "B": 24, "C": 12})

    # ── Sheet 2: Assignments ──
    ws_asg = wb.create_sheet("Assignments")
    ws_asg.append(["ID", "Task", "Project", "Start Date", "End Date", "Duration", "Assigned To"])
    example_assignments = [
        ["a1", "Requirements Workshop", "P-100", "2026-11-02", "2026-11-13", None, "r1"],
        ["a2", "API Build", "P-100", "2026-11-09", None, 15, "r2"],
        ["a3", "Design System Refresh", "P-200", "2026-11-16", None, 10, "r3, r1"],
        ["a4", "Data Migration", "P-200", "2026-12-07", "2026-12-18", None, "r2; r3"],
        ["a5", "Unscheduled Spike", "P-300", "2026-11-23", None, None, "r1"],
    ]
    for row in example_assignments:
        ws_asg.append(row)
    style_sheet(ws_asg, {"A": 8, "B": 30, "C": 12, "D": 14, "E": 14, "F": 11, "G": 16})
    for row_idx in range(2, ws_asg.max_row + 1):
        for col in (4, 5):
            ws_asg.cell(row=row_idx, column=col).alignment = Alignment(horizontal="center",
                                                                       vertical="center")

    # ── Sheet 3: Work Hours ──
    ws_wh = wb.create_sheet("Work Hours")
    ws_wh.append(["Assignment ID", "Resource ID", "Hours"])
    for row in [["a1", "r1", 60], ["a4", "r2", 50], ["a4", "r3", 30]]:
        ws_wh.append(row)
    style_sheet(ws_wh, {"A": 16, "B": 14, "C": 10})

    # ── Sheet 4: Allocations ──
    ws_alloc = wb.create_sheet("Allocations")
    ws_alloc.append(["Project", "Resource ID", "Allocation %"])
    for row in [["P-100", "r2", 80], ["P-200", "r3", 50], ["P-200", "r1", 25]]:
        ws_alloc.append(row)
    style_sheet(ws_alloc, {"A": 12, "B": 14, "C": 14})

    dv_pct = DataValidation(type="whole", operator="between", formula1="0", formula2="100",
                            allow_blank=True)
    dv_pct.error = "Allocation % must be a whole number between 0 and 100"
    dv_pct.errorTitle = "Invalid Allocation"
    ws_alloc.add_data_validation(dv_pct)
    dv_pct.add("C2:C200")

    wb.save(output_path)
    print(f"Template created: {output_path}")
    print("  - Sheet 'Resources': resource ids and display names (inactive rows are ignored)")
    print("  - Sheet 'Assignments': Start Date plus End Date or Duration (working days)")
    print("  - Sheet 'Work Hours': explicit hours per assignment and resource (optional)")
    print("  - Sheet 'Allocations': allocation % per project and resource (default 100)")
    print(f"\nEdit the file, then run again without --template to generate the heatmap.")


# ── Data Loading ─────────────────────────────────────────────────────────────

def normalize_columns(df, required, optional=()):
    """Strip headers and match them case-insensitively to the expected names.
    Renames df columns in place; returns the set of required columns still missing."""
    df.columns = [str(c).strip() for c in df.columns]
    lookup = {name.lower(): name for name in set(required) | set(optional)}
    df.rename(columns={c: lookup[c.lower()] for c in df.columns if c.lower() in lookup},
              inplace=True)
    return {name for name in required if name not in df.columns}


def _cell(row, column):
    """Raw cell value, None for blanks and absent columns."""
    val = row.get(column)
    return None if is_blank(val) else val


def load_resources(filepath):
    """Load the roster from the 'Resources' sheet. Inactive resources are left out."""
    try:
        df = pd.read_excel(filepath, sheet_name="Resources")
    except Exception as e:
        print(f"  WARNING: Could not read Resources sheet: {e}")
        return []
    if df.empty:
        return []
    missing = normalize_columns(df, {"ID", "Name"}, {"Status"})
    if missing:
        print(f"  ERROR: Resources sheet is missing column(s): {', '.join(sorted(missing))}. "
              f"Found: {', '.join(df.columns)}")
        return []
    roster = []
    seen = set()
    for idx, row in df.iterrows():
        rid = clean_id(row["ID"])
        if not rid:
            continue
        status = clean_str(row.get("Status", "")).lower()
        if status and status != "active":
            continue
        if rid in seen:
            print(f"  WARNING: Resources row {idx + 2}: duplicate ID '{rid}', skipping.")
            continue
        seen.add(rid)
        roster.append({"id": rid, "name": clean_str(row["Name"]) or rid})
    return roster


def load_work_hours(filepath):
    """Load explicit hours from the optional 'Work Hours' sheet.
    Returns dict[assignment_id, dict[resource_id, hours]]."""
    try:
        df = pd.read_excel(filepath, sheet_name="Work Hours")
    except ValueError:
        # Sheet doesn't exist
        return {}
    if df.empty:
        return {}
    missing = normalize_columns(df, {"Assignment ID", "Resource ID", "Hours"})
    if missing:
        print(f"  WARNING: Work Hours sheet is missing column(s): {', '.join(sorted(missing))}. Skipping.")
        return {}
    work_hours = {}
    for idx, row in df.iterrows():
        aid = clean_id(row["Assignment ID"])
        rid = clean_id(row["Resource ID"])
        if not aid or not rid:
            continue
        hours = parse_number(row["Hours"])
        if hours is None:
            print(f"  WARNING: Work Hours row {idx + 2}: invalid Hours {row['Hours']!r}, skipping.")
            continue
        per_resource = work_hours.setdefault(aid, {})
        per_resource[rid] = per_resource.get(rid, 0.0) + hours
    return work_hours


def load_allocations(filepath):
    """Load allocation percentages from the optional 'Allocations' sheet.
    Returns dict[(project_id, resource_id), percentage]."""
    try:
        df = pd.read_excel(filepath, sheet_name="Allocations")
    except ValueError:
        return {}
    if df.empty:
        return {}
    missing = normalize_columns(df, {"Project", "Resource ID", "Allocation %"})
    if missing:
        print(f"  WARNING: Allocations sheet is missing column(s): {', '.join(sorted(missing))}. Skipping.")
        return {}
    allocations = {}
    for idx, row in df.iterrows():
        project = clean_id(row["Project"])
        rid = clean_id(row["Resource ID"])
        if not project or not rid:
            continue
        pct = parse_number(row["Allocation %"])
        if pct is None or pct < 0:
            print(f"  WARNING: Allocations row {idx + 2}: invalid Allocation % "
                  f"{row['Allocation %']!r}, skipping.")
            continue
        allocations[(project, rid)] = pct
    return allocations


def load_assignments(filepath, work_hours=None):
    """Load assignments from the 'Assignments' sheet.

    Dates and durations are passed through raw; unplaceable rows are reported by
    resolve_window during aggregation rather than dropped here.
    """
    try:
        df = pd.read_excel(filepath, sheet_name="Assignments")
    except Exception as e:
        print(f"  WARNING: Could not read Assignments sheet: {e}")
        return []
    if df.empty:
        return []
    missing = normalize_columns(df, {"ID", "Start Date", "Assigned To"},
                                {"Task", "Project", "End Date", "Duration"})
    if missing:
        print(f"  ERROR: Assignments sheet is missing column(s): {', '.join(sorted(missing))}. "
              f"Found: {', '.join(df.columns)}")
        return []
    work_hours = work_hours or {}
    assignments = []
    for idx, row in df.iterrows():
        row_num = idx + 2
        aid = clean_id(row["ID"])
        if not aid:
            continue
        resource_ids = split_ids(row["Assigned To"])
        if not resource_ids:
            print(f"  WARNING: Assignments row {row_num}: '{aid}' has no Assigned To, skipping.")
            continue
        assignments.append({
            "id": aid,
            "task": clean_str(row.get("Task", "")),
            "project_id": clean_id(row.get("Project", "")),
            "start_date": _cell(row, "Start Date"),
            "end_date": _cell(row, "End Date"),
            "duration": _cell(row, "Duration"),
            "resource_ids": resource_ids,
            "resource_work_hours": dict(work_hours.get(aid, {})),
            "_row": row_num,
        })
    return assignments


def load_data(filepath):
    """Load roster, assignments and allocations from the workbook."""
    roster = load_resources(filepath)
    work_hours = load_work_hours(filepath)
    assignments = load_assignments(filepath, work_hours=work_hours)
    allocations = load_allocations(filepath)

    if work_hours:
        entries = sum(len(v) for v in work_hours.values())
        print(f"  Explicit work hours: {entries} entr{'y' if entries == 1 else 'ies'} "
              f"across {len(work_hours)} assignment{'s' if len(work_hours) != 1 else ''}")
    if allocations:
        print(f"  Allocation overrides: {len(allocations)}")

    return roster, assignments, allocations


# ── Tabular Export ───────────────────────────────────────────────────────────

GRID_COLUMNS = ["Resource ID", "Resource", "Bucket", "Week", "Week Start", "Week End",
                "Hours", "Display Hours", "Band"]


def grid_to_dataframe(grid):
    """Long-form table of the grid: one row per resource and week, roster order."""
    rows = []
    for resource in grid["resources"]:
        for bucket in grid["buckets"]:
            cell = grid["cells"][BucketKey(resource["id"], bucket["index"])]
            rows.append([
                resource["id"], resource["name"], bucket["index"], bucket["label"],
                bucket["week_start"], bucket["week_end"],
                cell["hours"], cell["display_hours"], cell["band"],
            ])
    return pd.DataFrame(rows, columns=GRID_COLUMNS)


def export_csv(grid, output_path):
    directory = os.path.dirname(output_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    df = grid_to_dataframe(grid)
    df["Hours"] = df["Hours"].round(2)
    df.to_csv(output_path, index=False)
    print(f"  Heatmap CSV saved: {output_path}")


# ── Chart Helpers ────────────────────────────────────────────────────────────

def apply_style():
    """Configure matplotlib rcParams for consistent styling."""
    plt.rcParams.update({
        "font.family": STYLE["font_family"],
        "font.size": STYLE["label_size"],
        "axes.facecolor": STYLE["panel_bg"],
        "figure.facecolor": STYLE["bg_color"],
        "axes.edgecolor": STYLE["grid_color"],
        "axes.linewidth": 0.8,
        "axes.grid": False,
        "xtick.color": STYLE["text_secondary"],
        "ytick.color": STYLE["text_secondary"],
        "text.color": STYLE["text_primary"],
    })


def style_axes(ax, title=""):
    if title:
        ax.set_title(title, fontsize=STYLE["subtitle_size"], fontweight="bold",
                     color=STYLE["text_primary"], pad=12, loc="left")
    for side in ("top", "right", "left", "bottom"):
        ax.spines[side].set_visible(False)
    ax.tick_params(length=0)


def add_header_footer(fig, title, subtitle=""):
    """Title block plus generation timestamp footer."""
    fig.suptitle(title, fontsize=STYLE["title_size"], fontweight="bold",
                 color=STYLE["text_primary"], y=0.98, x=0.04, ha="left")
    if subtitle:
        fig.text(0.04, 0.935, subtitle, fontsize=STYLE["small_size"] + 1,
                 color=STYLE["text_muted"], ha="left")
    fig.text(0.98, 0.008, f"Generated {datetime.now().strftime('%d %b %Y %H:%M')}",
             ha="right", fontsize=STYLE["small_size"], color=STYLE["text_muted"])
    fig.text(0.04, 0.008, "Resource Workload Heatmap",
             ha="left", fontsize=STYLE["small_size"], color=STYLE["text_muted"])


# ── Chart: Heatmap ───────────────────────────────────────────────────────────

def render_heatmap(grid, output_path):
    """Render the resource x week heatmap as a PNG."""
    apply_style()

    resources = grid["resources"]
    buckets = grid["buckets"]
    if not resources:
        print("  No heatmap data. Check: the Resources sheet lists at least one active resource.")
        return

    band_matrix = np.zeros((len(resources), len(buckets)), dtype=int)
    for r_idx, resource in enumerate(resources):
        for bucket in buckets:
            cell = grid["cells"][BucketKey(resource["id"], bucket["index"])]
            band_matrix[r_idx, bucket["index"]] = BAND_ORDER.index(cell["band"])

    fig_height = max(4, len(resources) * STYLE["row_height"] + 2.5)
    fig = plt.figure(figsize=(STYLE["fig_width"], fig_height), facecolor=STYLE["bg_color"])
    ax = fig.add_axes([0.16, 0.16, 0.80, 0.66])

    cmap = ListedColormap([BAND_COLORS[b] for b in BAND_ORDER])
    ax.imshow(band_matrix, cmap=cmap, vmin=-0.5, vmax=len(BAND_ORDER) - 0.5, aspect="auto")

    # Cell separators
    ax.set_xticks(np.arange(-0.5, len(buckets), 1), minor=True)
    ax.set_yticks(np.arange(-0.5, len(resources), 1), minor=True)
    ax.grid(which="minor", color=STYLE["cell_edge_color"], linewidth=2)
    ax.tick_params(which="minor", length=0)

    for r_idx, resource in enumerate(resources):
        for bucket in buckets:
            cell = grid["cells"][BucketKey(resource["id"], bucket["index"])]
            if cell["display_hours"] == 0:
                continue
            over = cell["hours"] > WEEKLY_CAPACITY_HOURS
            ax.text(bucket["index"], r_idx, f"{cell['display_hours']}h",
                    ha="center", va="center", fontsize=STYLE["small_size"],
                    color=STYLE["over_capacity_color"] if over else STYLE["text_primary"],
                    fontweight="bold" if over else "normal")

    ax.set_xticks(np.arange(len(buckets)))
    ax.set_xticklabels([f"{b['label']}\n{b['range']}" for b in buckets],
                       fontsize=STYLE["tick_size"])
    ax.set_yticks(np.arange(len(resources)))
    ax.set_yticklabels([r["name"] for r in resources], fontsize=STYLE["label_size"])

    legend_handles = [
        mpatches.Patch(facecolor=BAND_COLORS[b], edgecolor=STYLE["grid_color"],
                       label=BAND_LEGEND[b])
        for b in BAND_ORDER
    ]
    ax.legend(handles=legend_handles, loc="upper center", bbox_to_anchor=(0.5, -0.12),
              ncol=len(legend_handles), fontsize=STYLE["small_size"], frameon=False)

    style_axes(ax, title="Hours Assigned per Week")

    start = grid["reference_date"]
    end = buckets[-1]["week_end"]
    subtitle = f"{len(buckets)} weeks from {start.strftime('%d %b %Y')}"
    if grid["skipped"]:
        subtitle += f"  ·  {grid['skipped']} assignment(s) skipped"
    add_header_footer(fig, f"Resource Workload: {start.strftime('%d %b')} \u2014 "
                           f"{end.strftime('%d %b %Y')}", subtitle)

    directory = os.path.dirname(output_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    fig.savefig(output_path, dpi=STYLE["dpi"], bbox_inches="tight", facecolor=STYLE["bg_color"])
    plt.close(fig)
    print(f"  Heatmap saved: {output_path}")


# ── Summary ──────────────────────────────────────────────────────────────────

def over_capacity_weeks(grid, resource_id):
    """Buckets where the resource carries more than WEEKLY_CAPACITY_HOURS."""
    return [b for b in grid["buckets"]
            if grid["totals"].get(BucketKey(resource_id, b["index"]), 0.0) > WEEKLY_CAPACITY_HOURS]


def print_summary(grid):
    resources = grid["resources"]
    totals = {r["id"]: resource_total(grid, r["id"]) for r in resources}

    print()
    print("=" * 60)
    print("  WORKLOAD SUMMARY")
    print("=" * 60)
    print(f"  Horizon:       {grid['horizon_weeks']} weeks from "
          f"{grid['reference_date'].strftime('%d %b %Y')}")
    print(f"  Resources:     {len(resources)}")
    print(f"  Skipped:       {grid['skipped']} assignment{'s' if grid['skipped'] != 1 else ''}")
    print(f"  Total hours:   {sum(totals.values()):.1f}")
    for resource in resources:
        print(f"    {resource['name']}: {totals[resource['id']]:.1f}h")
    if resources and any(totals.values()):
        busiest = max(resources, key=lambda r: totals[r["id"]])
        print(f"  Busiest:       {busiest['name']} ({totals[busiest['id']]:.1f}h)")

    over = {r["id"]: over_capacity_weeks(grid, r["id"]) for r in resources}
    if any(over.values()):
        print()
        print(f"  Over {WEEKLY_CAPACITY_HOURS}h/week:")
        for resource in resources:
            weeks = over[resource["id"]]
            if not weeks:
                continue
            detail = ", ".join(
                f"{b['label']} ({grid['totals'][BucketKey(resource['id'], b['index'])]:.0f}h)"
                for b in weeks)
            print(f"    {resource['name']}: {detail}")

    if grid["warnings"]:
        print()
        print("  Warnings:")
        for w in grid["warnings"]:
            print(f"    {w}")
    print("=" * 60)
    print()


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Resource Workload Heatmap \u2014 weekly hours per resource from Excel assignments"
    )
    parser.add_argument(
        "--template", action="store_true",
        help="Generate an Excel template with example data"
    )
    parser.add_argument(
        "--input", default=DEFAULT_INPUT,
        help="Path to Excel input file (default: workload_data.xlsx)"
    )
    parser.add_argument(
        "--outdir", default=DEFAULT_OUTDIR,
        help="Output directory (default: output/)"
    )
    parser.add_argument(
        "--weeks", type=int, default=DEFAULT_HORIZON_WEEKS,
        help=f"Number of weeks to report (default: {DEFAULT_HORIZON_WEEKS})"
    )
    parser.add_argument(
        "--today", default=None,
        help="Reference date for Week 1 (YYYY-MM-DD, default: today)"
    )
    parser.add_argument(
        "--outputs", default=["all"], nargs="+", choices=OUTPUT_CHOICES,
        help="Which outputs to write (default: all)"
    )
    args = parser.parse_args(argv)

    if args.template:
        generate_template(args.input)
        return

    if not os.path.exists(args.input):
        print(f"Error: Input file not found: {args.input}")
        print("Run with --template first to create a template.")
        sys.exit(1)

    if args.weeks < 1:
        print(f"  ERROR: --weeks must be at least 1, got {args.weeks}.")
        sys.exit(1)

    reference_date = date.today()
    if args.today:
        try:
            reference_date = datetime.strptime(args.today, "%Y-%m-%d").date()
        except ValueError:
            print(f"  ERROR: Invalid --today date '{args.today}'. Use YYYY-MM-DD format.")
            sys.exit(1)

    print(f"Loading data from: {args.input}")
    store = ExcelWorkloadStore(args.input)
    roster = store.fetch_resource_roster()
    print(f"  Resources: {', '.join(r['name'] for r in roster) or '(none)'}")
    print(f"  Assignments: {len(store.fetch_assignments())}")
    if not roster:
        print("  ERROR: Resources sheet is empty. Add at least one active resource.")
        sys.exit(1)

    grid = compute_heatmap(store, reference_date, args.weeks)
    for w in grid["warnings"]:
        print(f"  WARNING: {w}")

    outputs = args.outputs
    gen_all = "all" in outputs
    output_files = []

    summary_capture = io.StringIO()
    _orig_stdout = sys.stdout
    sys.stdout = _TeeWriter(_orig_stdout, summary_capture)
    try:
        print_summary(grid)
    finally:
        sys.stdout = _orig_stdout

    if gen_all or "heatmap" in outputs:
        heatmap_path = os.path.join(args.outdir, "workload_heatmap.png")
        render_heatmap(grid, heatmap_path)
        output_files.append(heatmap_path)

    if gen_all or "csv" in outputs:
        csv_path = os.path.join(args.outdir, "workload_heatmap.csv")
        export_csv(grid, csv_path)
        output_files.append(csv_path)

    if gen_all or "summary" in outputs:
        os.makedirs(args.outdir, exist_ok=True)
        summary_path = os.path.join(args.outdir, "summary.txt")
        with open(summary_path, "w", encoding="utf-8") as sf:
            sf.write(summary_capture.getvalue())
        output_files.append(summary_path)

    if output_files:
        print()
        print("  Output:")
        for f in output_files:
            print(f"    {os.path.abspath(f)}")
    print("\nDone.")


if __name__ == "__main__":
    main()
