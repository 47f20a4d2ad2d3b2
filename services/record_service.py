import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional

from core.errors import ServiceError, Stage
from core.normalizers import canonicalize_date, format_date, normalize_name, parse_date
from core.time_utils import today_local
from models.extraction import ExtractionResult
from services.document_store import PATIENTS, RECORDS, DocumentStore, equal

logger = logging.getLogger(__name__)

DEFAULT_LINK_ATTEMPTS = 6
DEFAULT_LINK_DELAY = 0.3


@dataclass
class LinkResult:
    linked: bool
    attempts: int
    error: Optional[ServiceError] = None


# -----------------------------
# Create a visit record
# -----------------------------
def record_payload(patient: dict, extraction: ExtractionResult, image_url: str,
                   today: Optional[date] = None) -> dict:
    visit_date = canonicalize_date(extraction.visited)
    if not visit_date:
        visit_date = format_date(today or today_local())
    payload = {
        "name": patient.get("name"),
        "image": image_url,
        "symptom1": extraction.symptom1,
        "symptom2": extraction.symptom2,
        "symptom3": extraction.symptom3,
        "recorddate": visit_date,
        "summary": extraction.summary,
        "patientsid": patient["$id"],
    }
    return {k: v for k, v in payload.items() if v is not None}


def create_visit_record(store: DocumentStore, patient: dict, extraction: ExtractionResult,
                        image_url: str, today: Optional[date] = None) -> dict:
    try:
        record = store.create_document(RECORDS, None, record_payload(patient, extraction, image_url, today))
    except ServiceError as e:
        raise e.with_stage(Stage.RECORD_CREATE)
    logger.info("Created visit record %s for patient %s", record["$id"], patient["$id"])
    return record


# -----------------------------
# Link record id into patient.recordsid
# -----------------------------
def link_record(
    store: DocumentStore,
    patient_id: str,
    record_id: str,
    attempts: int = DEFAULT_LINK_ATTEMPTS,
    delay: float = DEFAULT_LINK_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> LinkResult:
    """Add ``record_id`` to the patient's record list.

    Each attempt re-reads the patient, appends the id if it is missing and
    writes back against the version it read, so a concurrent writer makes
    the attempt fail and retry instead of being overwritten.
    """
    last_error: Optional[ServiceError] = None
    for attempt in range(1, attempts + 1):
        try:
            patient = store.get_document(PATIENTS, patient_id)
            current = list(patient.get("recordsid") or [])
            if record_id in current:
                return LinkResult(linked=True, attempts=attempt)
            store.update_document(
                PATIENTS,
                patient_id,
                {"recordsid": current + [record_id]},
                expected_version=patient.get("$version"),
            )
            logger.info("Linked record %s to patient %s (attempt %d)", record_id, patient_id, attempt)
            return LinkResult(linked=True, attempts=attempt)
        except ServiceError as e:
            last_error = e.with_stage(Stage.LINK)
            logger.warning(
                "Linking record %s to patient %s failed (attempt %d/%d): %s",
                record_id, patient_id, attempt, attempts, e,
            )
            if attempt < attempts:
                sleep(delay)

    logger.error("Gave up linking record %s to patient %s after %d attempts", record_id, patient_id, attempts)
    return LinkResult(linked=False, attempts=attempts, error=last_error)


def ensure_record_reference(store: DocumentStore, record_id: str, patient_id: str) -> bool:
    """Re-point the record at ``patient_id`` if its reference is wrong.

    Returns True when a corrective update was written.
    """
    try:
        record = store.get_document(RECORDS, record_id)
        if record.get("patientsid") == patient_id:
            return False
        store.update_document(RECORDS, record_id, {"patientsid": patient_id})
    except ServiceError as e:
        raise e.with_stage(Stage.REFERENCE_CHECK)
    logger.warning("Record %s pointed at the wrong patient; corrected to %s", record_id, patient_id)
    return True


# -----------------------------
# Get all visit records for a patient
# -----------------------------
def _sort_key(record: dict):
    d = parse_date(record.get("recorddate"))
    return (d is not None, d or date.min)


def records_for_patient(store: DocumentStore, patient: dict) -> List[dict]:
    """All visit records belonging to ``patient``, newest first.

    Records are found by their patient reference, by the patient's own
    record list, and by the copied name for records with no reference.
    """
    patient_id = patient["$id"]
    found = {}
    for record in store.list_documents(RECORDS, [equal("patientsid", patient_id)]):
        found[record["$id"]] = record

    for record_id in patient.get("recordsid") or []:
        if record_id in found:
            continue
        try:
            record = store.get_document(RECORDS, record_id)
        except ServiceError as e:
            logger.warning("Linked record %s of patient %s unreadable: %s", record_id, patient_id, e)
            continue
        # A record that names another patient belongs to that patient
        if record.get("patientsid") in (None, "", patient_id):
            found[record_id] = record

    target = normalize_name(patient.get("name"))
    if target:
        for record in store.list_documents(RECORDS):
            if record["$id"] in found or record.get("patientsid"):
                continue
            if normalize_name(record.get("name")) == target:
                found[record["$id"]] = record

    return sorted(found.values(), key=_sort_key, reverse=True)
