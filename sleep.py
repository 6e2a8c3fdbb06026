# sleep.py
import pandas as pd

import pdf_report as pdf
from health_export import NoDataError, load_records, prepare_records

SLEEP_ANALYSIS = "HKCategoryTypeIdentifierSleepAnalysis"
SLEEP_STAGES = {
    "HKCategoryValueSleepAnalysisInBed": "In bed",
    "HKCategoryValueSleepAnalysisAsleep": "Asleep",
    "HKCategoryValueSleepAnalysisAsleepUnspecified": "Asleep",
    "HKCategoryValueSleepAnalysisAsleepCore": "Core",
    "HKCategoryValueSleepAnalysisAsleepDeep": "Deep",
    "HKCategoryValueSleepAnalysisAsleepREM": "REM",
    "HKCategoryValueSleepAnalysisAwake": "Awake",
}
ASLEEP_STAGES = ("Asleep", "Core", "Deep", "REM")
STAGE_COLORS = {"Deep": "#1f3b73", "Core": "#3f7fbf", "REM": "#8fb8e0", "Asleep": "#9e9e9e"}
NIGHT_OFFSET = pd.Timedelta(hours=12)

NIGHTLY_COLUMNS = [
    "bedtime", "wake_time", "in_bed_min", "asleep_min", "awake_min",
    "deep_min", "core_min", "rem_min", "efficiency_pct",
]
REPORT_TITLE = "Sleep Report"


# ---------- helpers ----------
def union_minutes(starts, ends):
    """Total minutes covered by the intervals; overlaps count once."""
    pairs = sorted(zip(starts, ends))
    total = pd.Timedelta(0)
    cur_start = cur_end = None
    for s, e in pairs:
        if cur_end is None or s > cur_end:
            if cur_end is not None:
                total += cur_end - cur_start
            cur_start, cur_end = s, e
        elif e > cur_end:
            cur_end = e
    if cur_end is not None:
        total += cur_end - cur_start
    return round(total.total_seconds() / 60, 1)


def night_of(ts):
    """Sessions starting before noon belong to the previous evening's night."""
    return (ts - NIGHT_OFFSET).dt.normalize()


def _stage_minutes(night_df, stages):
    sub = night_df[night_df["stage"].isin(stages)]
    return union_minutes(sub["start_utc"], sub["end_utc"])


# ---------- aggregators ----------
def aggregate_nightly(df):
    if df.empty:
        return pd.DataFrame(columns=NIGHTLY_COLUMNS)
    rows = {}
    for night, g in df.groupby("night"):
        asleep = g[g["stage"].isin(ASLEEP_STAGES)]
        in_bed = union_minutes(g["start_utc"], g["end_utc"])
        asleep_min = union_minutes(asleep["start_utc"], asleep["end_utc"])
        rows[night] = {
            "bedtime": g["start_ts"].min(),
            "wake_time": asleep["end_ts"].max() if not asleep.empty else pd.NaT,
            "in_bed_min": in_bed,
            "asleep_min": asleep_min,
            "awake_min": _stage_minutes(g, ["Awake"]),
            "deep_min": _stage_minutes(g, ["Deep"]),
            "core_min": _stage_minutes(g, ["Core"]),
            "rem_min": _stage_minutes(g, ["REM"]),
            "efficiency_pct": round(100 * asleep_min / in_bed, 1) if in_bed else float("nan"),
        }
    nightly = pd.DataFrame.from_dict(rows, orient="index")
    nightly.index = pd.DatetimeIndex(nightly.index, name="night")
    return nightly.sort_index()[NIGHTLY_COLUMNS]


def aggregate_monthly(nightly):
    if nightly.empty:
        return pd.DataFrame()
    n = nightly.copy()
    n["month"] = n.index.to_period("M")
    monthly = n.groupby("month").agg(
        avg_asleep_h=pd.NamedAgg(column="asleep_min", aggfunc=lambda x: x.mean() / 60),
        avg_in_bed_h=pd.NamedAgg(column="in_bed_min", aggfunc=lambda x: x.mean() / 60),
        avg_efficiency_pct=pd.NamedAgg(column="efficiency_pct", aggfunc="mean"),
        nights=pd.NamedAgg(column="asleep_min", aggfunc="size"),
    )
    return monthly.round(2)


def overall_stats(nightly):
    slept = nightly[nightly["asleep_min"] > 0]
    return {
        "nights": len(nightly),
        "avg_asleep_h": round(slept["asleep_min"].mean() / 60, 2) if not slept.empty else None,
        "avg_in_bed_h": round(nightly["in_bed_min"].mean() / 60, 2),
        "avg_efficiency_pct": round(nightly["efficiency_pct"].mean(), 1),
        "shortest_h": round(slept["asleep_min"].min() / 60, 2) if not slept.empty else None,
        "longest_h": round(slept["asleep_min"].max() / 60, 2) if not slept.empty else None,
        "has_stages": bool(nightly[["deep_min", "core_min", "rem_min"]].to_numpy().sum() > 0),
        "period": (nightly.index.min(), nightly.index.max()),
    }


# ---------- public interface ----------
def summarize_sleep(input_path, debug=False):
    raw = load_records(input_path, [SLEEP_ANALYSIS], debug=debug)
    df = prepare_records(raw, "sleep", numeric=False, debug=debug)
    if not df.empty:
        df["stage"] = df["value"].map(SLEEP_STAGES)
        unknown = df["stage"].isna().sum()
        df = df[df["stage"].notna() & (df["end_utc"] > df["start_utc"])].copy()
        df["night"] = night_of(df["start_ts"])
        if debug and unknown:
            print(f"[sleep] [DEBUG] ignored {unknown} record(s) with an unknown sleep value")
    if df.empty:
        raise NoDataError(f"No sleep records found in {input_path}")

    nightly = aggregate_nightly(df)
    monthly = aggregate_monthly(nightly)
    if debug:
        print(f"[sleep] [DEBUG] {len(df):,} interval(s) over {len(nightly)} night(s)")
        print(f"[sleep] [DEBUG] stages: {df['stage'].value_counts().to_dict()}")
    return {"nightly": nightly, "monthly": monthly, "overall": overall_stats(nightly)}


def _nightly_chart(nightly, has_stages):
    fig, ax = pdf.new_chart()
    x = nightly.index
    if has_stages:
        bottom = pd.Series(0.0, index=x)
        staged = nightly[["deep_min", "core_min", "rem_min"]].sum(axis=1)
        parts = {
            "Deep": nightly["deep_min"],
            "Core": nightly["core_min"],
            "REM": nightly["rem_min"],
            "Asleep": (nightly["asleep_min"] - staged).clip(lower=0),
        }
        for label, minutes in parts.items():
            hours = minutes / 60
            ax.bar(x, hours, bottom=bottom, width=0.8, color=STAGE_COLORS[label], label=label)
            bottom += hours
        ax.legend(loc="upper right", fontsize=8, ncol=4)
    else:
        ax.bar(x, nightly["asleep_min"] / 60, width=0.8, color=STAGE_COLORS["Core"])
    ax.set_ylabel("hours")
    ax.set_title("Sleep per night", fontsize=11)
    fig.autofmt_xdate()
    return fig


def build_story(summary, input_path, include_daily_table=True):
    nightly = summary["nightly"]
    monthly = summary["monthly"]
    o = summary["overall"]

    story = pdf.header_block(REPORT_TITLE, input_path, o["period"])
    story.append(pdf.heading("Summary"))
    story.append(pdf.kpi_table([
        ("Nights recorded", pdf.fmt_int(o["nights"])),
        ("Average sleep", f"{pdf.fmt_num(o['avg_asleep_h'], 2)} h"),
        ("Average time in bed", f"{pdf.fmt_num(o['avg_in_bed_h'], 2)} h"),
        ("Sleep efficiency", pdf.fmt_pct(o["avg_efficiency_pct"])),
        ("Shortest / longest night", f"{pdf.fmt_num(o['shortest_h'], 2)} / {pdf.fmt_num(o['longest_h'], 2)} h"),
    ]))

    story.append(pdf.heading("Nights"))
    story.append(pdf.chart_image(_nightly_chart(nightly, o["has_stages"])))

    story.append(pdf.heading("Monthly overview"))
    rows = [["Month", "Avg sleep (h)", "Avg in bed (h)", "Efficiency", "Nights"]]
    for month, r in monthly.iterrows():
        rows.append([
            str(month),
            pdf.fmt_num(r["avg_asleep_h"], 2),
            pdf.fmt_num(r["avg_in_bed_h"], 2),
            pdf.fmt_pct(r["avg_efficiency_pct"]),
            pdf.fmt_int(r["nights"]),
        ])
    story.append(pdf.make_table(rows))

    if include_daily_table:
        rows = [["Night of", "Bedtime", "Wake", "In bed (h)", "Asleep (h)", "Deep", "Core", "REM", "Awake"]]
        for night, r in nightly.iterrows():
            rows.append([
                pdf.fmt_date(night),
                pdf.fmt_time(r["bedtime"]),
                pdf.fmt_time(r["wake_time"]),
                pdf.fmt_num(r["in_bed_min"] / 60, 2),
                pdf.fmt_num(r["asleep_min"] / 60, 2),
                pdf.fmt_int(r["deep_min"]),
                pdf.fmt_int(r["core_min"]),
                pdf.fmt_int(r["rem_min"]),
                pdf.fmt_int(r["awake_min"]),
            ])
        story.extend(pdf.daily_section(rows, col_fracs=[1.4, 1, 1, 1, 1, 0.8, 0.8, 0.8, 0.8]))
        story.append(pdf.paragraph("Stage and awake columns are in minutes."))
    return story


def export_sleep(input_path, output_path, include_daily_table=True, debug=False):
    summary = summarize_sleep(input_path, debug=debug)
    story = build_story(summary, input_path, include_daily_table)
    pdf.write_pdf(output_path, story, REPORT_TITLE)
    if debug:
        print(f"[sleep] [DEBUG] wrote {output_path}")
