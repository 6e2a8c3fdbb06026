# health_export.py
import zipfile
from contextlib import contextmanager
from pathlib import Path
from xml.etree.ElementTree import ParseError, iterparse

import pandas as pd

RECORD_COLUMNS = ["type", "source", "unit", "value", "start", "end", "creation", "metadata"]
TYPE_PREFIXES = ("HKQuantityTypeIdentifier", "HKCategoryTypeIdentifier", "HKDataType")
APPLE_TS_FORMAT = "%Y-%m-%d %H:%M:%S"
APPLE_TS_FORMAT_TZ = "%Y-%m-%d %H:%M:%S %z"
ROOT_CLEAR_EVERY = 1000


class ExportError(Exception):
    """The health export could not be read."""


class NoDataError(ExportError):
    """The export holds no records for the requested report."""


# ---------- helpers ----------
def short_type(identifier):
    for prefix in TYPE_PREFIXES:
        if identifier.startswith(prefix):
            return identifier[len(prefix):]
    return identifier


def parse_timestamps(series):
    """
    Apple writes '2024-03-01 07:12:33 +0100'. Keep the local wall-clock part;
    mixed offsets (DST) would otherwise leave an object column.
    """
    if series.empty:
        return pd.to_datetime(series, errors="coerce")
    text = series.astype(str).str.slice(0, 19)
    return pd.to_datetime(text, format=APPLE_TS_FORMAT, errors="coerce")


def parse_utc_timestamps(series):
    """Offset-aware parse in UTC. Use for durations; clocks jump at DST."""
    if series.empty:
        return pd.to_datetime(series, errors="coerce", utc=True)
    return pd.to_datetime(series.astype(str), format=APPLE_TS_FORMAT_TZ, utc=True, errors="coerce")


def _find_xml_member(archive):
    names = sorted(
        (n for n in archive.namelist() if n.lower().endswith("export.xml")),
        key=len,
    )
    return names[0] if names else None


@contextmanager
def open_export(path):
    path = Path(path)
    if not path.is_file():
        raise ExportError(f"Export file not found: {path}")
    if zipfile.is_zipfile(path):
        with zipfile.ZipFile(path) as archive:
            member = _find_xml_member(archive)
            if member is None:
                raise ExportError(f"No export.xml inside {path.name}")
            with archive.open(member) as stream:
                yield stream
    else:
        with open(path, "rb") as stream:
            yield stream


# ---------- public interface ----------
def load_records(path, types, debug=False) -> pd.DataFrame:
    """
    Stream Record elements out of an Apple Health export.

    `types` is either a collection of HealthKit identifiers or a predicate
    taking the identifier. Returns a DataFrame with RECORD_COLUMNS, values
    left as strings.
    """
    wanted = types if callable(types) else set(types).__contains__
    rows = []
    seen = 0
    root = None
    depth = 0
    top_level = 0
    try:
        with open_export(path) as stream:
            for event, elem in iterparse(stream, events=("start", "end")):
                if event == "start":
                    if root is None:
                        root = elem
                    depth += 1
                    continue
                depth -= 1

                # Records nested in a Correlation are read before their parent is cleared
                if elem.tag == "Record":
                    seen += 1
                    rec_type = elem.get("type", "")
                    if wanted(rec_type):
                        metadata = {
                            m.get("key"): m.get("value")
                            for m in elem.iter("MetadataEntry")
                            if m.get("key")
                        }
                        rows.append(
                            {
                                "type": rec_type,
                                "source": elem.get("sourceName"),
                                "unit": elem.get("unit"),
                                "value": elem.get("value"),
                                "start": elem.get("startDate"),
                                "end": elem.get("endDate"),
                                "creation": elem.get("creationDate"),
                                "metadata": metadata,
                            }
                        )

                # children of <HealthData>: Record, Workout, ActivitySummary, ...
                if depth == 1:
                    elem.clear()
                    top_level += 1
                    if top_level % ROOT_CLEAR_EVERY == 0:
                        root.clear()
    except ParseError as e:
        raise ExportError(f"Invalid XML in {Path(path).name}: {e}") from e
    except (OSError, zipfile.BadZipFile) as e:
        raise ExportError(f"Could not read {path}: {e}") from e

    if debug:
        print(f"[export] [DEBUG] {Path(path).name}: {seen:,} records scanned, {len(rows):,} kept")
    if not rows:
        return pd.DataFrame(columns=RECORD_COLUMNS)
    return pd.DataFrame.from_records(rows, columns=RECORD_COLUMNS)


def prepare_records(df, name, numeric=True, debug=False):
    """
    Parse start/end timestamps (and values when `numeric`) and drop rows that
    fail. `name` tags the debug output.
    """
    if df.empty:
        return df.assign(start_ts=pd.Series(dtype="datetime64[ns]"),
                         end_ts=pd.Series(dtype="datetime64[ns]"),
                         start_utc=pd.Series(dtype="datetime64[ns, UTC]"),
                         end_utc=pd.Series(dtype="datetime64[ns, UTC]"))
    df = df.copy()
    # local wall clock decides the day, UTC gives the durations
    df["start_ts"] = parse_timestamps(df["start"])
    df["end_ts"] = parse_timestamps(df["end"])
    df["end_ts"] = df["end_ts"].fillna(df["start_ts"])
    df["start_utc"] = parse_utc_timestamps(df["start"]).fillna(df["start_ts"].dt.tz_localize("UTC"))
    df["end_utc"] = parse_utc_timestamps(df["end"]).fillna(df["end_ts"].dt.tz_localize("UTC"))
    required = ["start_ts"]
    if numeric:
        df["value"] = pd.to_numeric(df["value"], errors="coerce")
        required.append("value")
    before = len(df)
    df = df.dropna(subset=required)
    if debug and len(df) < before:
        print(f"[{name}] [DEBUG] dropped {before - len(df)} unparseable row(s)")
    return df.reset_index(drop=True)
