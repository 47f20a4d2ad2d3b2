"""
Analytics over stored visit records.

Everything here is a pure function of the documents handed in, except
``load_dashboard`` (reads the store) and ``locate_areas`` (calls the
geocoder). The Analytics page composes them.
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional

from core.errors import ServiceError
from core.normalizers import normalize_name, parse_date
from core.time_utils import months_back, today_local
from services.document_store import PATIENTS, RECORDS, DocumentStore

logger = logging.getLogger(__name__)

MIN_WINDOW_MONTHS = 1
MAX_WINDOW_MONTHS = 120
MAX_SERIES_BUCKETS = 60

# Keys under which records from older form versions carry the patient reference
PATIENT_REFERENCE_KEYS = (
    "patientsid",
    "patientid",
    "patient",
    "patientId",
    "patientsID",
    "patient_id",
    "patients_id",
    "patientsId",
)

_SYMPTOM_SPLIT_KEYS = (("symptom1", "symptom_1"), ("symptom2", "symptom_2"), ("symptom3", "symptom_3"))


@dataclass
class JoinedRecord:
    record: dict
    patient: Optional[dict] = None


@dataclass
class MonthCount:
    month: date
    count: int = 0


@dataclass
class AreaCount:
    place: str
    count: int


@dataclass
class Hotspot:
    place: str
    count: int
    lat: float
    lng: float


@dataclass
class DashboardSnapshot:
    months: int
    patients: List[dict] = field(default_factory=list)
    records: List[JoinedRecord] = field(default_factory=list)
    symptoms: List[tuple] = field(default_factory=list)
    selected: Optional[str] = None
    series: List[MonthCount] = field(default_factory=list)
    areas: List[AreaCount] = field(default_factory=list)


# -----------------------------
# Record field helpers
# -----------------------------
def parse_record_date(raw) -> Optional[date]:
    return parse_date(raw)


def extract_symptoms(record: dict) -> List[str]:
    """Symptoms named on a record, first occurrence order, no duplicates."""
    if not record:
        return []
    out = []
    listed = record.get("symptoms")
    if isinstance(listed, (list, tuple)):
        out.extend(str(s).strip() for s in listed if s is not None)
    elif isinstance(listed, str):
        out.extend(part.strip() for part in listed.replace(";", ",").split(","))

    for keys in _SYMPTOM_SPLIT_KEYS:
        value = next((record.get(k) for k in keys if record.get(k)), None)
        if value is not None:
            out.append(str(value).strip())

    seen = []
    for s in out:
        if s and s not in seen:
            seen.append(s)
    return seen


def extract_patient_id(record: dict) -> Optional[str]:
    for key in PATIENT_REFERENCE_KEYS:
        if record.get(key):
            return str(record[key])
    return None


# -----------------------------
# Joins and filters
# -----------------------------
def _patients_by_id(patients: Iterable[dict]) -> Dict[str, dict]:
    index = {}
    for p in patients:
        for key in ("$id", "id", "recordid", "recordId", "email"):
            if p.get(key):
                index[str(p[key])] = p
    return index


def join_records_to_patients(records: Iterable[dict], patients: Iterable[dict]) -> List[JoinedRecord]:
    """Attach the owning patient to each record.

    Tried in order: the patient reference, the exact normalized name, then
    a patient whose normalized name contains every token of the record's.
    """
    patients = list(patients)
    by_id = _patients_by_id(patients)
    by_name: Dict[str, dict] = {}
    for p in patients:
        n = normalize_name(p.get("name"))
        if n:
            by_name.setdefault(n, p)

    joined = []
    for record in records:
        patient = None
        pid = extract_patient_id(record)
        if pid and pid in by_id:
            patient = by_id[pid]
        elif record.get("name"):
            rn = normalize_name(record["name"])
            patient = by_name.get(rn) if rn else None
            if patient is None and rn:
                tokens = rn.split(" ")
                patient = next(
                    (p for p in patients if all(t in normalize_name(p.get("name")) for t in tokens)),
                    None,
                )
        joined.append(JoinedRecord(record=record, patient=patient))
    return joined


def clamp_months(months) -> int:
    try:
        months = int(months)
    except (TypeError, ValueError):
        months = 12
    return max(MIN_WINDOW_MONTHS, min(MAX_WINDOW_MONTHS, months))


def window_start(months: int, today: Optional[date] = None) -> date:
    """First day of the earliest month in a ``months``-long window ending this month."""
    return months_back(today or today_local(), clamp_months(months) - 1)


def filter_by_window(records: Iterable[dict], months: int, today: Optional[date] = None) -> List[dict]:
    """Records dated inside the window. Undated records are left out."""
    start = window_start(months, today)
    kept = []
    for record in records:
        d = parse_record_date(record.get("recorddate"))
        if d is not None and d >= start:
            kept.append(record)
    return kept


# -----------------------------
# Aggregations
# -----------------------------
def symptom_frequency(records: Iterable) -> List[tuple]:
    """``[(symptom, count), ...]`` most frequent first, ties alphabetical."""
    counts = Counter()
    for item in records:
        counts.update(extract_symptoms(_record_of(item)))
    return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))


def _record_of(item) -> dict:
    return item.record if isinstance(item, JoinedRecord) else item


def _mentions(record: dict, symptom: Optional[str]) -> bool:
    needle = (symptom or "").lower()
    return any(needle in s.lower() for s in extract_symptoms(record))


def monthly_series(records: Iterable, symptom: Optional[str], months: int,
                   today: Optional[date] = None) -> List[MonthCount]:
    """Per-month count of records mentioning ``symptom`` (substring, any case)."""
    today = today or today_local()
    months = clamp_months(months)
    series = [MonthCount(months_back(today, i)) for i in range(months - 1, -1, -1)]
    slots = {(m.month.year, m.month.month): m for m in series}
    for item in records:
        record = _record_of(item)
        if not _mentions(record, symptom):
            continue
        d = parse_record_date(record.get("recorddate"))
        if d is None:
            continue
        slot = slots.get((d.year, d.month))
        if slot is not None:
            slot.count += 1
    return series


def aggregate_time_series(series: List[MonthCount], max_buckets: int = MAX_SERIES_BUCKETS):
    """Sum consecutive months so at most ``max_buckets`` points remain.

    Returns ``(counts, labels)``; each label is the middle month of its bucket.
    """
    if not series:
        return [], []
    if len(series) <= max_buckets:
        return [m.count for m in series], [m.month for m in series]
    size = math.ceil(len(series) / max_buckets)
    counts, labels = [], []
    for i in range(0, len(series), size):
        chunk = series[i:i + size]
        counts.append(sum(m.count for m in chunk))
        labels.append(chunk[len(chunk) // 2].month)
    return counts, labels


def _place_of(item: JoinedRecord) -> Optional[str]:
    for source in (item.patient or {}, item.record):
        for key in ("place", "city", "location"):
            if source.get(key):
                return str(source[key]).strip() or None
    return None


def affected_areas(records: Iterable[JoinedRecord], symptom: Optional[str]) -> List[AreaCount]:
    """Places of records mentioning ``symptom``, busiest first.

    The patient's place wins over the place written on the record.
    """
    counts = Counter()
    for item in records:
        if not _mentions(item.record, symptom):
            continue
        place = _place_of(item)
        if place:
            counts[place] += 1
    return [AreaCount(place, n) for place, n in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))]


def locate_areas(areas: Iterable[AreaCount], geocoder) -> List[Hotspot]:
    """Geocode each area; places the geocoder can't place are skipped."""
    spots = []
    for area in areas:
        coords = geocoder.geocode(area.place)
        if coords is None:
            logger.debug("No coordinates for an affected area")
            continue
        spots.append(Hotspot(area.place, area.count, coords["lat"], coords["lng"]))
    return spots


# -----------------------------
# Dashboard load
# -----------------------------
def load_dashboard(store: DocumentStore, months: int = 12, today: Optional[date] = None,
                   symptom: Optional[str] = None) -> DashboardSnapshot:
    """Read patients and records and compute every panel of the dashboard.

    ``symptom`` defaults to the most frequent one in the window. Store
    failures propagate as ``ServiceError``.
    """
    today = today or today_local()
    months = clamp_months(months)
    try:
        patients = store.list_documents(PATIENTS)
        records = store.list_documents(RECORDS)
    except ServiceError:
        logger.exception("Loading dashboard data failed")
        raise

    joined = join_records_to_patients(filter_by_window(records, months, today), patients)
    symptoms = symptom_frequency(joined)
    selected = symptom or (symptoms[0][0] if symptoms else None)

    snapshot = DashboardSnapshot(
        months=months,
        patients=patients,
        records=joined,
        symptoms=symptoms,
        selected=selected,
    )
    if selected:
        snapshot.series = monthly_series(joined, selected, months, today)
        snapshot.areas = affected_areas(joined, selected)
    else:
        snapshot.series = monthly_series([], None, months, today)
    logger.info("Dashboard loaded: %d patients, %d records in %d months", len(patients), len(joined), months)
    return snapshot
