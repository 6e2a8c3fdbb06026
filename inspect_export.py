#!/usr/bin/env python3
"""
inspect_export.py

Lightweight introspection of an Apple Health export before building reports.

Usage:
    inspect-health-export /path/to/export.xml [--limit N] [--debug]

Prints one line per record type: count, first and last day, and the report
(heart, sleep, medication) that picks it up.
"""

import sys
import pathlib

import pandas as pd

from health_export import ExportError, load_records, parse_timestamps, short_type
from heart_rate import HEART_TYPES
from medication import is_medication_type
from sleep import SLEEP_ANALYSIS


def covering_report(identifier):
    if identifier in HEART_TYPES:
        return "heart"
    if identifier == SLEEP_ANALYSIS:
        return "sleep"
    if is_medication_type(identifier):
        return "medication"
    return "-"


def summarize_types(df):
    if df.empty:
        return pd.DataFrame(columns=["count", "first", "last", "report"])
    df = df.copy()
    df["day"] = parse_timestamps(df["start"]).dt.normalize()
    summary = df.groupby("type").agg(
        count=pd.NamedAgg(column="start", aggfunc="size"),
        first=pd.NamedAgg(column="day", aggfunc="min"),
        last=pd.NamedAgg(column="day", aggfunc="max"),
    )
    summary["report"] = [covering_report(t) for t in summary.index]
    return summary.sort_values("count", ascending=False)


def _fmt_day(x):
    return "?" if pd.isna(x) else x.strftime("%Y-%m-%d")


def format_summary(summary, limit=None):
    if summary.empty:
        return "No records found.\n"
    rows = summary if limit is None else summary.head(limit)
    lines = [f"{'Record type':<40} {'Count':>10}  {'First':<10}  {'Last':<10}  Report"]
    for rec_type, r in rows.iterrows():
        lines.append(
            f"{short_type(rec_type):<40} {int(r['count']):>10,}  "
            f"{_fmt_day(r['first']):<10}  {_fmt_day(r['last']):<10}  {r['report']}"
        )
    if limit is not None and len(summary) > limit:
        lines.append(f"... {len(summary) - limit} more type(s)")
    return "\n".join(lines) + "\n"


def main(argv=None):
    argv = sys.argv[1:] if argv is None else list(argv)
    args = [a for a in argv if not a.startswith("--")]
    if not args:
        print("Usage: inspect-health-export /path/to/export.xml [--limit N] [--debug]")
        return 1

    limit = None
    if "--limit" in argv:
        idx = argv.index("--limit")
        try:
            limit = int(argv[idx + 1])
            args.remove(argv[idx + 1])
        except (IndexError, ValueError):
            print("Error: --limit needs a number")
            return 1

    path = pathlib.Path(args[0])
    if not path.is_file():
        print(f"Error: {path} is not a file.")
        return 1

    debug = "--debug" in argv
    try:
        df = load_records(path, lambda t: True, debug=debug)
    except ExportError as e:
        print(f"Error: {e}")
        return 1

    print(f"Inspecting {path}\n")
    print(format_summary(summarize_types(df), limit=limit))
    return 0


if __name__ == "__main__":
    sys.exit(main())
