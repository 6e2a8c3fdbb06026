"""Shared fixtures: small synthetic Apple Health exports written to tmp_path."""
from xml.sax.saxutils import quoteattr

import pytest

HR = "HKQuantityTypeIdentifierHeartRate"
RESTING = "HKQuantityTypeIdentifierRestingHeartRate"
WALKING = "HKQuantityTypeIdentifierWalkingHeartRateAverage"
HRV = "HKQuantityTypeIdentifierHeartRateVariabilitySDNN"
STEPS = "HKQuantityTypeIdentifierStepCount"
SLEEP = "HKCategoryTypeIdentifierSleepAnalysis"
MED = "HKMedicationDoseEvent"


def record(rec_type, start, end=None, value=None, unit=None, source="Apple Watch", metadata=None):
    return {
        "type": rec_type,
        "start": start,
        "end": end or start,
        "value": value,
        "unit": unit,
        "source": source,
        "metadata": metadata or {},
    }


def render_export(records):
    lines = ['<?xml version="1.0" encoding="UTF-8"?>', '<HealthData locale="en_US">',
             ' <ExportDate value="2024-04-10 10:00:00 +0200"/>']
    for r in records:
        attrs = {
            "type": r["type"],
            "sourceName": r["source"],
            "creationDate": r["end"],
            "startDate": r["start"],
            "endDate": r["end"],
        }
        if r["unit"] is not None:
            attrs["unit"] = r["unit"]
        if r["value"] is not None:
            attrs["value"] = str(r["value"])
        attr_text = " ".join(f"{k}={quoteattr(v)}" for k, v in attrs.items())
        if r["metadata"]:
            lines.append(f" <Record {attr_text}>")
            for k, v in r["metadata"].items():
                lines.append(f"  <MetadataEntry key={quoteattr(k)} value={quoteattr(str(v))}/>")
            lines.append(" </Record>")
        else:
            lines.append(f" <Record {attr_text}/>")
    lines.append("</HealthData>")
    return "\n".join(lines) + "\n"


HEART_RECORDS = [
    record(HR, "2024-03-01 08:00:00 +0100", value=60, unit="count/min"),
    record(HR, "2024-03-01 12:00:00 +0100", value=80, unit="count/min"),
    record(HR, "2024-03-01 18:00:00 +0100", value=100, unit="count/min"),
    record(RESTING, "2024-03-01 00:00:00 +0100", "2024-03-01 23:59:00 +0100", value=55, unit="count/min"),
    record(HRV, "2024-03-01 07:00:00 +0100", value=40, unit="ms"),
    record(HRV, "2024-03-01 22:00:00 +0100", value=50, unit="ms"),
    record(HR, "2024-03-02 09:00:00 +0100", value=70, unit="count/min"),
    record(HR, "2024-03-02 23:30:00 +0100", value=90, unit="count/min"),
    record(WALKING, "2024-03-02 10:00:00 +0100", value=95, unit="count/min"),
    record(HR, "2024-04-01 07:15:00 +0200", value=65, unit="count/min"),
]

SLEEP_RECORDS = [
    record(SLEEP, "2024-03-01 23:00:00 +0100", "2024-03-02 07:00:00 +0100",
           value="HKCategoryValueSleepAnalysisInBed", source="iPhone"),
    record(SLEEP, "2024-03-01 23:30:00 +0100", "2024-03-02 01:30:00 +0100",
           value="HKCategoryValueSleepAnalysisAsleepCore"),
    record(SLEEP, "2024-03-02 01:30:00 +0100", "2024-03-02 02:30:00 +0100",
           value="HKCategoryValueSleepAnalysisAsleepDeep"),
    record(SLEEP, "2024-03-02 02:30:00 +0100", "2024-03-02 03:30:00 +0100",
           value="HKCategoryValueSleepAnalysisAsleepREM"),
    record(SLEEP, "2024-03-02 03:30:00 +0100", "2024-03-02 03:45:00 +0100",
           value="HKCategoryValueSleepAnalysisAwake"),
    record(SLEEP, "2024-03-02 03:45:00 +0100", "2024-03-02 06:45:00 +0100",
           value="HKCategoryValueSleepAnalysisAsleepCore"),
    # phone estimate overlapping the watch stages
    record(SLEEP, "2024-03-02 00:00:00 +0100", "2024-03-02 03:00:00 +0100",
           value="HKCategoryValueSleepAnalysisAsleepUnspecified", source="iPhone"),
    # after midnight: still the night of 2024-03-02
    record(SLEEP, "2024-03-03 00:30:00 +0100", "2024-03-03 06:30:00 +0100",
           value="HKCategoryValueSleepAnalysisAsleep", source="iPhone"),
    record(SLEEP, "2024-03-03 12:00:00 +0100", "2024-03-03 12:30:00 +0100",
           value="HKCategoryValueSleepAnalysisSomethingNew"),
]

MEDICATION_RECORDS = [
    record(MED, "2024-03-01 08:00:00 +0100", value="HKMedicationDoseEventLogStatusTaken", source="Health",
           metadata={"HKMedicationName": "Ibuprofen", "HKMedicationDoseQuantity": "400"}),
    record(MED, "2024-03-01 08:00:00 +0100", value="HKMedicationDoseEventLogStatusTaken", source="Apple Watch",
           metadata={"HKMedicationName": "Ibuprofen", "HKMedicationDoseQuantity": "400"}),
    record(MED, "2024-03-01 20:00:00 +0100", value="HKMedicationDoseEventLogStatusSkipped", source="Health",
           metadata={"HKMedicationName": "Ibuprofen"}),
    record(MED, "2024-03-02 08:00:00 +0100", value="HKMedicationDoseEventLogStatusTaken", source="Health",
           metadata={"HKMedicationName": "Ibuprofen", "HKMedicationDoseQuantity": "400"}),
    record(MED, "2024-03-02 09:00:00 +0100", value="HKMedicationDoseEventLogStatusTaken", source="Health",
           metadata={"HKMedicationName": "Vitamin D"}),
    record(MED, "2024-03-02 21:00:00 +0100", value="HKMedicationDoseEventLogStatusNotInteracted",
           source="MyMeds"),
]

OTHER_RECORDS = [
    record(STEPS, "2024-03-01 10:00:00 +0100", value=1200, unit="count", source="iPhone"),
    record(STEPS, "2024-03-02 10:00:00 +0100", value=800, unit="count", source="iPhone"),
]


@pytest.fixture
def write_export(tmp_path):
    def _write(records, name="export.xml"):
        path = tmp_path / name
        path.write_text(render_export(records), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def heart_export(write_export):
    return write_export(HEART_RECORDS)


@pytest.fixture
def sleep_export(write_export):
    return write_export(SLEEP_RECORDS)


@pytest.fixture
def medication_export(write_export):
    return write_export(MEDICATION_RECORDS)


@pytest.fixture
def full_export(write_export):
    return write_export(HEART_RECORDS + SLEEP_RECORDS + MEDICATION_RECORDS + OTHER_RECORDS)


@pytest.fixture
def empty_export(write_export):
    return write_export(OTHER_RECORDS)
