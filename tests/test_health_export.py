import tracemalloc
import zipfile

import pandas as pd
import pytest

from health_export import (
    ExportError,
    load_records,
    parse_timestamps,
    parse_utc_timestamps,
    prepare_records,
    short_type,
)

from conftest import HEART_RECORDS, HR, MED, MEDICATION_RECORDS, render_export


def test_load_records_keeps_requested_types(full_export):
    df = load_records(full_export, [HR])
    assert set(df["type"]) == {HR}
    assert len(df) == sum(1 for r in HEART_RECORDS if r["type"] == HR)
    assert list(df.columns) == ["type", "source", "unit", "value", "start", "end", "creation", "metadata"]


def test_load_records_accepts_predicate(full_export):
    df = load_records(full_export, lambda t: t.startswith("HKMedication"))
    assert len(df) == len(MEDICATION_RECORDS)
    assert set(df["type"]) == {MED}


def test_load_records_reads_metadata(medication_export):
    df = load_records(medication_export, [MED])
    assert df.loc[0, "metadata"] == {"HKMedicationName": "Ibuprofen", "HKMedicationDoseQuantity": "400"}
    assert df.loc[5, "metadata"] == {}


def test_load_records_no_match_returns_empty_frame(heart_export):
    df = load_records(heart_export, ["HKQuantityTypeIdentifierBodyMass"])
    assert df.empty
    assert "start" in df.columns


def test_load_records_from_zip(tmp_path):
    archive = tmp_path / "export.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("apple_health_export/export_cda.xml", "<ClinicalDocument/>")
        zf.writestr("apple_health_export/export.xml", render_export(HEART_RECORDS))
    df = load_records(archive, [HR])
    assert len(df) == 6


def test_zip_without_export_xml(tmp_path):
    archive = tmp_path / "export.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("readme.txt", "nothing here")
    with pytest.raises(ExportError, match="No export.xml"):
        load_records(archive, [HR])


def test_malformed_xml(tmp_path):
    path = tmp_path / "export.xml"
    path.write_text('<HealthData><Record type="x"', encoding="utf-8")
    with pytest.raises(ExportError, match="Invalid XML"):
        load_records(path, [HR])


def test_missing_file(tmp_path):
    with pytest.raises(ExportError, match="not found"):
        load_records(tmp_path / "nope.xml", [HR])


def test_debug_output(heart_export, capsys):
    load_records(heart_export, [HR], debug=True)
    out = capsys.readouterr().out
    assert "[export] [DEBUG]" in out
    assert "6 kept" in out


def test_parse_timestamps_keeps_wall_clock_across_offsets():
    s = pd.Series(["2024-03-31 01:30:00 +0100", "2024-03-31 03:30:00 +0200", "garbage"])
    parsed = parse_timestamps(s)
    assert parsed[0] == pd.Timestamp("2024-03-31 01:30:00")
    assert parsed[1] == pd.Timestamp("2024-03-31 03:30:00")
    assert pd.isna(parsed[2])


def test_short_type():
    assert short_type("HKQuantityTypeIdentifierHeartRate") == "HeartRate"
    assert short_type("HKCategoryTypeIdentifierSleepAnalysis") == "SleepAnalysis"
    assert short_type("HKMedicationDoseEvent") == "HKMedicationDoseEvent"


def test_prepare_records_drops_bad_rows(write_export, capsys):
    from conftest import record

    path = write_export([
        record(HR, "2024-03-01 08:00:00 +0100", value=60),
        record(HR, "2024-03-01 09:00:00 +0100", value="n/a"),
        record(HR, "not a date", value=70),
    ])
    df = prepare_records(load_records(path, [HR]), "heart", debug=True)
    assert df["value"].tolist() == [60.0]
    assert "[heart] [DEBUG] dropped 2 unparseable row(s)" in capsys.readouterr().out


def test_prepare_records_non_numeric_keeps_values(sleep_export):
    df = prepare_records(load_records(sleep_export, ["HKCategoryTypeIdentifierSleepAnalysis"]), "sleep", numeric=False)
    assert df["value"].str.startswith("HKCategoryValueSleepAnalysis").all()
    assert (df["end_ts"] >= df["start_ts"]).all()


def test_parse_utc_timestamps_measures_real_time_across_offsets():
    s = pd.Series(["2024-03-30 23:00:00 +0100", "2024-03-31 07:00:00 +0200", "garbage"])
    parsed = parse_utc_timestamps(s)
    assert parsed[1] - parsed[0] == pd.Timedelta(hours=7)
    assert pd.isna(parsed[2])


def test_prepare_records_adds_utc_columns(write_export):
    from conftest import record

    path = write_export([
        record(HR, "2024-10-27 02:30:00 +0200", "2024-10-27 02:10:00 +0100", value=60),
    ])
    df = prepare_records(load_records(path, [HR]), "heart")
    assert df.loc[0, "end_ts"] < df.loc[0, "start_ts"]
    assert df.loc[0, "end_utc"] - df.loc[0, "start_utc"] == pd.Timedelta(minutes=40)


def test_load_records_reads_records_nested_in_correlations(tmp_path):
    path = tmp_path / "export.xml"
    path.write_text(
        '<HealthData>\n'
        ' <Correlation type="HKCorrelationTypeIdentifierBloodPressure">\n'
        f'  <Record type="{HR}" startDate="2024-03-01 08:00:00 +0100" value="61">\n'
        '   <MetadataEntry key="HKWasUserEntered" value="1"/>\n'
        '  </Record>\n'
        ' </Correlation>\n'
        f' <Record type="{HR}" startDate="2024-03-01 09:00:00 +0100" value="62"/>\n'
        '</HealthData>\n',
        encoding="utf-8",
    )
    df = load_records(path, [HR])
    assert df["value"].tolist() == ["61", "62"]
    assert df.loc[0, "metadata"] == {"HKWasUserEntered": "1"}


def test_load_records_memory_stays_flat_on_unrelated_elements(tmp_path):
    path = tmp_path / "export.xml"
    summary = '<ActivitySummary dateComponents="2024-03-01" activeEnergyBurned="512.3" appleExerciseTime="42"/>\n'
    with open(path, "w", encoding="utf-8") as fh:
        fh.write("<HealthData>\n")
        for _ in range(50_000):
            fh.write(summary)
        fh.write("</HealthData>\n")

    tracemalloc.start()
    try:
        df = load_records(path, [HR])
        _current, peak = tracemalloc.get_traced_memory()
    finally:
        tracemalloc.stop()
    assert df.empty
    assert peak < 5 * 1024 * 1024
