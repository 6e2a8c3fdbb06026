# medication.py
import pandas as pd

import pdf_report as pdf
from health_export import NoDataError, load_records, prepare_records, short_type

TAKEN = "Taken"
SKIPPED = "Skipped"
NOT_LOGGED = "Not logged"
STATUSES = (TAKEN, SKIPPED, NOT_LOGGED)
MAX_CHART_MEDICATIONS = 8
REPORT_TITLE = "Medication Report"


# ---------- helpers ----------
def is_medication_type(identifier):
    return "medication" in identifier.lower()


def normalize_status(value):
    text = str(value or "").lower().replace("_", "").replace(" ", "")
    # "...NotTaken" contains "taken"; a dose that was not taken counts as skipped
    if "nottaken" in text or "skipped" in text:
        return SKIPPED
    if "taken" in text:
        return TAKEN
    return NOT_LOGGED


def medication_name(metadata, fallback):
    """Prefer a key naming the medication over any other *Name key (device, source)."""
    named = [(k.lower(), v) for k, v in metadata.items() if v and v.strip() and "name" in k.lower()]
    for key, value in named:
        if "medication" in key:
            return value.strip()
    if named:
        return named[0][1].strip()
    return fallback or "Unknown medication"


def dose_amount(metadata):
    for key, value in metadata.items():
        k = key.lower()
        if "dose" in k or "quantity" in k:
            try:
                return float(value)
            except (TypeError, ValueError):
                continue
    return None


# ---------- aggregators ----------
def build_events(df):
    if df.empty:
        return pd.DataFrame(columns=["ts", "day", "medication", "status", "dose", "unit", "source", "kind"])
    events = pd.DataFrame(
        {
            "ts": df["start_ts"],
            "day": df["start_ts"].dt.normalize(),
            "medication": [
                medication_name(m, s) for m, s in zip(df["metadata"], df["source"])
            ],
            "status": df["value"].map(normalize_status),
            "dose": pd.to_numeric(df["metadata"].map(dose_amount), errors="coerce"),
            "unit": df["unit"],
            "source": df["source"],
            "kind": df["type"].map(short_type),
        }
    )
    # the same dose event is often written by phone and watch
    events = events.drop_duplicates(subset=["ts", "medication", "status"])
    return events.sort_values("ts").reset_index(drop=True)


def aggregate_per_medication(events):
    counts = pd.crosstab(events["medication"], events["status"])
    for status in STATUSES:
        if status not in counts.columns:
            counts[status] = 0
    per_med = pd.DataFrame(
        {
            "taken": counts[TAKEN],
            "skipped": counts[SKIPPED],
            "not_logged": counts[NOT_LOGGED],
        }
    )
    total = per_med.sum(axis=1)
    per_med["adherence_pct"] = (100 * per_med["taken"] / total).round(1)
    grouped = events.groupby("medication")
    per_med["first"] = grouped["day"].min()
    per_med["last"] = grouped["day"].max()
    per_med["total_dose"] = grouped["dose"].sum(min_count=1)
    return per_med.sort_values(["taken", "skipped"], ascending=False)


def aggregate_daily(events):
    daily = (
        events.groupby(["day", "medication"])
        .agg(
            taken=pd.NamedAgg(column="status", aggfunc=lambda s: int((s == TAKEN).sum())),
            skipped=pd.NamedAgg(column="status", aggfunc=lambda s: int((s == SKIPPED).sum())),
            times=pd.NamedAgg(
                column="ts",
                aggfunc=lambda t: ", ".join(sorted({x.strftime("%H:%M") for x in t})),
            ),
        )
        .sort_index()
    )
    return daily


def overall_stats(events, per_med):
    logged = len(events)
    taken = int((events["status"] == TAKEN).sum())
    return {
        "events": logged,
        "medications": len(per_med),
        "taken": taken,
        "skipped": int((events["status"] == SKIPPED).sum()),
        "adherence_pct": round(100 * taken / logged, 1) if logged else None,
        "days": events["day"].nunique(),
        "period": (events["day"].min(), events["day"].max()),
    }


# ---------- public interface ----------
def summarize_medication(input_path, debug=False):
    raw = load_records(input_path, is_medication_type, debug=debug)
    df = prepare_records(raw, "medication", numeric=False, debug=debug)
    events = build_events(df)
    if events.empty:
        raise NoDataError(f"No medication records found in {input_path}")

    per_med = aggregate_per_medication(events)
    daily = aggregate_daily(events)
    if debug:
        print(f"[medication] [DEBUG] {len(events):,} dose event(s) for {len(per_med)} medication(s)")
        print(f"[medication] [DEBUG] record kinds: {events['kind'].value_counts().to_dict()}")
    return {
        "events": events,
        "per_medication": per_med,
        "daily": daily,
        "overall": overall_stats(events, per_med),
    }


def _taken_chart(daily, per_med):
    fig, ax = pdf.new_chart()
    taken = daily["taken"].unstack("medication", fill_value=0)
    names = [m for m in per_med.index if m in taken.columns][:MAX_CHART_MEDICATIONS]
    bottom = pd.Series(0, index=taken.index)
    for name in names:
        ax.bar(taken.index, taken[name], bottom=bottom, width=0.8, label=name)
        bottom += taken[name]
    ax.set_ylabel("doses taken")
    ax.set_title("Doses taken per day", fontsize=11)
    if names:
        ax.legend(loc="upper right", fontsize=8)
    fig.autofmt_xdate()
    return fig


def build_story(summary, input_path, include_daily_table=True):
    per_med = summary["per_medication"]
    daily = summary["daily"]
    o = summary["overall"]

    story = pdf.header_block(REPORT_TITLE, input_path, o["period"])
    story.append(pdf.heading("Summary"))
    story.append(pdf.kpi_table([
        ("Medications", pdf.fmt_int(o["medications"])),
        ("Logged dose events", pdf.fmt_int(o["events"])),
        ("Taken / skipped", f"{pdf.fmt_int(o['taken'])} / {pdf.fmt_int(o['skipped'])}"),
        ("Share taken", pdf.fmt_pct(o["adherence_pct"])),
        ("Days with entries", pdf.fmt_int(o["days"])),
    ]))

    story.append(pdf.heading("Medications"))
    rows = [["Medication", "Taken", "Skipped", "Not logged", "Taken %", "First", "Last"]]
    for name, r in per_med.iterrows():
        rows.append([
            name,
            pdf.fmt_int(r["taken"]),
            pdf.fmt_int(r["skipped"]),
            pdf.fmt_int(r["not_logged"]),
            pdf.fmt_pct(r["adherence_pct"]),
            pdf.fmt_date(r["first"]),
            pdf.fmt_date(r["last"]),
        ])
    story.append(pdf.make_table(rows, col_fracs=[2.4, 0.8, 0.8, 0.9, 0.9, 1.2, 1.2]))

    story.append(pdf.heading("Trend"))
    story.append(pdf.chart_image(_taken_chart(daily, per_med)))

    if include_daily_table:
        rows = [["Date", "Medication", "Taken", "Skipped", "Times"]]
        for (day, name), r in daily.iterrows():
            rows.append([
                pdf.fmt_date(day),
                name,
                pdf.fmt_int(r["taken"]),
                pdf.fmt_int(r["skipped"]),
                r["times"],
            ])
        story.extend(pdf.daily_section(rows, col_fracs=[1.2, 2.4, 0.8, 0.8, 2]))
    return story


def export_medication(input_path, output_path, include_daily_table=True, debug=False):
    summary = summarize_medication(input_path, debug=debug)
    story = build_story(summary, input_path, include_daily_table)
    pdf.write_pdf(output_path, story, REPORT_TITLE)
    if debug:
        print(f"[medication] [DEBUG] wrote {output_path}")
