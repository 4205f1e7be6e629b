# backend/lib/volt_core/io.py
"""
CSV import/export of cumulative meter readings.

Expected header: meter_id,timestamp,reading
    meter-home-1,2025-11-01T08:00:00Z,1000
    meter-home-1,2025-11-15T08:00:00Z,1150
"""
import csv
from datetime import datetime, timezone
from io import StringIO
from pathlib import Path
from typing import Iterable, List

from .models import MeterReading

REQUIRED_COLUMNS = ("meter_id", "timestamp", "reading")


def to_naive_utc(ts: datetime) -> datetime:
    """Readings are compared as naive UTC; offsets are converted, naive values kept."""
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(text: str) -> datetime:
    # fromisoformat() before 3.11 does not accept a trailing Z
    return to_naive_utc(datetime.fromisoformat(text.strip().replace("Z", "+00:00")))


def parse_csv_string(csv_text: str) -> List[MeterReading]:
    """Parse CSV text into MeterReadings. Raises ValueError naming the bad line."""
    reader = csv.DictReader(StringIO(csv_text.strip()))
    missing = [c for c in REQUIRED_COLUMNS if c not in (reader.fieldnames or [])]
    if missing:
        raise ValueError(f"CSV is missing column(s): {', '.join(missing)}")

    readings = []
    # line 1 is the header
    for line_no, row in enumerate(reader, start=2):
        if not all((row.get(c) or "").strip() for c in REQUIRED_COLUMNS):
            raise ValueError(f"Line {line_no}: missing field in row {row}")
        try:
            timestamp = parse_timestamp(row["timestamp"])
            value = float(row["reading"])
        except ValueError as e:
            raise ValueError(f"Line {line_no}: {e}") from e
        if value < 0:
            raise ValueError(f"Line {line_no}: reading must be >= 0")
        readings.append(MeterReading(
            meter_id=row["meter_id"].strip(),
            timestamp=timestamp,
            reading=value,
        ))
    return readings


def parse_csv_file(path) -> List[MeterReading]:
    return parse_csv_string(Path(path).read_text(encoding="utf-8"))


def readings_to_csv(readings: Iterable[MeterReading]) -> str:
    out = StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(REQUIRED_COLUMNS)
    for r in readings:
        writer.writerow([r.meter_id, r.timestamp.isoformat(), r.reading])
    return out.getvalue()
