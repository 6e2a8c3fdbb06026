# heart_rate.py
import pandas as pd

import pdf_report as pdf
from health_export import NoDataError, load_records, prepare_records

HEART_RATE = "HKQuantityTypeIdentifierHeartRate"
RESTING_HEART_RATE = "HKQuantityTypeIdentifierRestingHeartRate"
WALKING_HEART_RATE = "HKQuantityTypeIdentifierWalkingHeartRateAverage"
HRV_SDNN = "HKQuantityTypeIdentifierHeartRateVariabilitySDNN"
HEART_TYPES = (HEART_RATE, RESTING_HEART_RATE, WALKING_HEART_RATE, HRV_SDNN)

DAILY_COLUMNS = ["min_bpm", "avg_bpm", "max_bpm", "samples", "resting_bpm", "walking_bpm", "hrv_sdnn_ms"]
REPORT_TITLE = "Heart Rate Report"


# ---------- aggregators ----------
def _daily_mean(df, rec_type, name):
    sub = df[df["type"] == rec_type]
    if sub.empty:
        return pd.Series(dtype=float, name=name, index=pd.DatetimeIndex([], name="day"))
    return sub.groupby("day")["value"].mean().round(1).rename(name)


def aggregate_daily(df):
    if df.empty:
        return pd.DataFrame(columns=DAILY_COLUMNS)
    df = df.copy()
    df["day"] = df["start_ts"].dt.normalize()

    hr = df[df["type"] == HEART_RATE]
    if hr.empty:
        daily = pd.DataFrame(
            {c: pd.Series(dtype=float) for c in ["min_bpm", "avg_bpm", "max_bpm", "samples"]},
            index=pd.DatetimeIndex([], name="day"),
        )
    else:
        daily = hr.groupby("day")["value"].agg(
            min_bpm="min", avg_bpm="mean", max_bpm="max", samples="count"
        )
        daily["avg_bpm"] = daily["avg_bpm"].round(1)

    extras = [
        _daily_mean(df, RESTING_HEART_RATE, "resting_bpm"),
        _daily_mean(df, WALKING_HEART_RATE, "walking_bpm"),
        _daily_mean(df, HRV_SDNN, "hrv_sdnn_ms"),
    ]
    daily = pd.concat([daily] + extras, axis=1).sort_index()
    daily["samples"] = daily["samples"].fillna(0).astype(int)
    daily.index = pd.DatetimeIndex(daily.index, name="day")
    return daily[DAILY_COLUMNS]


def aggregate_monthly(daily):
    if daily.empty:
        return pd.DataFrame()
    d = daily.copy()
    d["month"] = d.index.to_period("M")
    monthly = d.groupby("month").agg(
        avg_bpm=pd.NamedAgg(column="avg_bpm", aggfunc="mean"),
        min_bpm=pd.NamedAgg(column="min_bpm", aggfunc="min"),
        max_bpm=pd.NamedAgg(column="max_bpm", aggfunc="max"),
        avg_resting_bpm=pd.NamedAgg(column="resting_bpm", aggfunc="mean"),
        avg_hrv_sdnn_ms=pd.NamedAgg(column="hrv_sdnn_ms", aggfunc="mean"),
        days_with_data=pd.NamedAgg(column="samples", aggfunc="size"),
    )
    return monthly.round(1)


def overall_stats(df, daily):
    hr = df.loc[df["type"] == HEART_RATE, "value"]
    resting = daily["resting_bpm"].dropna()
    hrv = daily["hrv_sdnn_ms"].dropna()
    return {
        "days": len(daily),
        "samples": int(hr.count()),
        "avg_bpm": round(hr.mean(), 1) if not hr.empty else None,
        "min_bpm": hr.min() if not hr.empty else None,
        "max_bpm": hr.max() if not hr.empty else None,
        "avg_resting_bpm": round(resting.mean(), 1) if not resting.empty else None,
        "avg_hrv_sdnn_ms": round(hrv.mean(), 1) if not hrv.empty else None,
        "period": (daily.index.min(), daily.index.max()),
    }


# ---------- public interface ----------
def summarize_heart_rate(input_path, debug=False):
    raw = load_records(input_path, HEART_TYPES, debug=debug)
    df = prepare_records(raw, "heart", debug=debug)
    if df.empty:
        raise NoDataError(f"No heart rate records found in {input_path}")

    daily = aggregate_daily(df)
    monthly = aggregate_monthly(daily)
    if debug:
        counts = df["type"].value_counts()
        for rec_type, n in counts.items():
            print(f"[heart] [DEBUG] {rec_type}: {n:,} record(s)")
        print(f"[heart] [DEBUG] {len(daily)} day(s), {len(monthly)} month(s)")
    return {"daily": daily, "monthly": monthly, "overall": overall_stats(df, daily)}


def _daily_chart(daily):
    fig, ax = pdf.new_chart()
    x = daily.index
    if daily["avg_bpm"].notna().any():
        ax.fill_between(x, daily["min_bpm"], daily["max_bpm"], alpha=0.2, color="tab:red", label="Min-max")
        ax.plot(x, daily["avg_bpm"], color="tab:red", linewidth=1.2, label="Average")
    if daily["resting_bpm"].notna().any():
        ax.plot(x, daily["resting_bpm"], color="tab:blue", marker=".", linewidth=1, label="Resting")
    ax.set_ylabel("bpm")
    ax.set_title("Heart rate per day", fontsize=11)
    ax.legend(loc="upper right", fontsize=8)
    fig.autofmt_xdate()
    return fig


def _hrv_chart(daily):
    fig, ax = pdf.new_chart(figsize=(10, 2.8))
    ax.plot(daily.index, daily["hrv_sdnn_ms"], color="tab:green", marker=".", linewidth=1)
    ax.set_ylabel("ms")
    ax.set_title("Heart rate variability (SDNN)", fontsize=11)
    fig.autofmt_xdate()
    return fig


def build_story(summary, input_path, include_daily_table=True):
    daily = summary["daily"]
    monthly = summary["monthly"]
    o = summary["overall"]

    story = pdf.header_block(REPORT_TITLE, input_path, o["period"])
    story.append(pdf.heading("Summary"))
    story.append(pdf.kpi_table([
        ("Days with data", pdf.fmt_int(o["days"])),
        ("Heart rate samples", pdf.fmt_int(o["samples"])),
        ("Average heart rate", f"{pdf.fmt_num(o['avg_bpm'])} bpm"),
        ("Lowest / highest", f"{pdf.fmt_int(o['min_bpm'])} / {pdf.fmt_int(o['max_bpm'])} bpm"),
        ("Average resting heart rate", f"{pdf.fmt_num(o['avg_resting_bpm'])} bpm"),
        ("Average HRV (SDNN)", f"{pdf.fmt_num(o['avg_hrv_sdnn_ms'])} ms"),
    ]))

    if daily["avg_bpm"].notna().any() or daily["resting_bpm"].notna().any():
        story.append(pdf.heading("Trend"))
        story.append(pdf.chart_image(_daily_chart(daily)))
    if daily["hrv_sdnn_ms"].notna().any():
        story.append(pdf.chart_image(_hrv_chart(daily)))

    story.append(pdf.heading("Monthly overview"))
    rows = [["Month", "Avg", "Min", "Max", "Resting", "HRV (ms)", "Days"]]
    for month, r in monthly.iterrows():
        rows.append([
            str(month),
            pdf.fmt_num(r["avg_bpm"]),
            pdf.fmt_int(r["min_bpm"]),
            pdf.fmt_int(r["max_bpm"]),
            pdf.fmt_num(r["avg_resting_bpm"]),
            pdf.fmt_num(r["avg_hrv_sdnn_ms"]),
            pdf.fmt_int(r["days_with_data"]),
        ])
    story.append(pdf.make_table(rows))

    if include_daily_table:
        rows = [["Date", "Min", "Avg", "Max", "Resting", "Walking", "HRV (ms)", "Samples"]]
        for day, r in daily.iterrows():
            rows.append([
                pdf.fmt_date(day),
                pdf.fmt_int(r["min_bpm"]),
                pdf.fmt_num(r["avg_bpm"]),
                pdf.fmt_int(r["max_bpm"]),
                pdf.fmt_num(r["resting_bpm"]),
                pdf.fmt_num(r["walking_bpm"]),
                pdf.fmt_num(r["hrv_sdnn_ms"]),
                pdf.fmt_int(r["samples"]),
            ])
        story.extend(pdf.daily_section(rows, col_fracs=[1.4, 1, 1, 1, 1, 1, 1, 1]))
    return story


def export_heart_rate(input_path, output_path, include_daily_table=True, debug=False):
    summary = summarize_heart_rate(input_path, debug=debug)
    story = build_story(summary, input_path, include_daily_table)
    pdf.write_pdf(output_path, story, REPORT_TITLE)
    if debug:
        print(f"[heart] [DEBUG] wrote {output_path}")
