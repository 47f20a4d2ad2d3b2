import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from core.errors import IntakeWarning, ServiceError, Stage, ValidationError
from core.normalizers import (
    canonicalize_date,
    clean_phone_digits,
    digits_only,
    name_tokens,
    normalize_name,
    parse_date,
)
from models.extraction import ExtractionResult
from services.document_store import PATIENTS, DocumentStore

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"

# Shortest digit string a DOB prefix/suffix comparison is allowed on
MIN_DOB_DIGITS = 4


class MatchTier(str, Enum):
    EMAIL = "email"
    NAME = "name"
    DATE_OF_BIRTH = "date_of_birth"
    PHONE = "phone"
    FUZZY_NAME = "fuzzy_name"
    TOKENS = "tokens"


@dataclass
class Resolution:
    patient: dict
    created: bool
    matched_by: Optional[MatchTier] = None
    warnings: List[IntakeWarning] = field(default_factory=list)

    @property
    def patient_id(self) -> str:
        return self.patient["$id"]


# ------------------------------------------
# Individual match rules
# ------------------------------------------
def _email_key(value) -> str:
    return str(value).strip().lower() if value else ""


def _dob_digits_match(extracted: str, stored: str) -> bool:
    if not extracted or not stored:
        return False
    if extracted == stored:
        return True
    if min(len(extracted), len(stored)) < MIN_DOB_DIGITS:
        return False
    return (
        extracted.endswith(stored)
        or stored.endswith(extracted)
        or extracted.startswith(stored)
        or stored.startswith(extracted)
    )


def _dob_match(extracted, stored) -> bool:
    a, b = parse_date(extracted), parse_date(stored)
    if a is not None and b is not None:
        # Two-digit years read as 20YY, so compare the century-free date
        return (a.month, a.day, a.year % 100) == (b.month, b.day, b.year % 100)
    return _dob_digits_match(digits_only(canonicalize_date(extracted)), digits_only(canonicalize_date(stored)))


def _fuzzy_name_match(tokens: List[str], candidate_tokens: List[str]) -> bool:
    """First initial and last name agree ("J. Dela Cruz" ~ "Juan Dela Cruz")."""
    if len(tokens) < 2 or len(candidate_tokens) < 2:
        return False
    return tokens[0][0] == candidate_tokens[0][0] and tokens[-1] == candidate_tokens[-1]


def _tokens_contained(tokens: List[str], candidate_name: str) -> bool:
    return bool(tokens) and bool(candidate_name) and all(t in candidate_name for t in tokens)


# ------------------------------------------
# Resolution
# ------------------------------------------
def find_matching_patient(
    extraction: ExtractionResult, candidates: Iterable[dict]
) -> Optional[Tuple[dict, MatchTier]]:
    """Pick the existing patient a scanned form belongs to.

    Each tier scans every candidate before the next, weaker tier is tried;
    within a tier the first candidate wins.
    """
    candidates = list(candidates)
    if not candidates:
        return None

    email = _email_key(extraction.email)
    name = normalize_name(extraction.name)
    tokens = name_tokens(extraction.name)
    dob = extraction.dateofbirth
    phone = extraction.phone_digits or ""

    rules = (
        (MatchTier.EMAIL, lambda p: bool(email) and _email_key(p.get("email")) == email),
        (MatchTier.NAME, lambda p: bool(name) and normalize_name(p.get("name")) == name),
        (
            MatchTier.DATE_OF_BIRTH,
            lambda p: bool(name) and _dob_match(dob, p.get("dateofbirth")),
        ),
        (MatchTier.PHONE, lambda p: bool(phone) and digits_only(p.get("phonenumber")) == phone),
        (MatchTier.FUZZY_NAME, lambda p: _fuzzy_name_match(tokens, name_tokens(p.get("name")))),
        (MatchTier.TOKENS, lambda p: _tokens_contained(tokens, normalize_name(p.get("name")))),
    )
    for tier, rule in rules:
        for candidate in candidates:
            if rule(candidate):
                return candidate, tier
    return None


def field_fill_updates(patient: dict, extraction: ExtractionResult) -> dict:
    """Attributes the form can fill in without overwriting stored values."""
    offered = {
        "phonenumber": extraction.phone_digits,
        "email": extraction.email,
        "place": extraction.place,
        "gender": extraction.gender,
        "bloodtype": extraction.bloodtype,
    }
    return {k: v for k, v in offered.items() if v and not patient.get(k)}


def new_patient_payload(extraction: ExtractionResult) -> dict:
    payload = {
        "name": extraction.name or UNKNOWN_NAME,
        "dateofbirth": canonicalize_date(extraction.dateofbirth),
        "lastvisited": canonicalize_date(extraction.visited),
        "phonenumber": extraction.phone_digits,
        "email": extraction.email,
        "place": extraction.place,
        "gender": extraction.gender,
        "bloodtype": extraction.bloodtype,
    }
    payload = {k: v for k, v in payload.items() if v is not None}
    payload["recordsid"] = []
    return payload


def list_patients(store: DocumentStore) -> List[dict]:
    return store.list_documents(PATIENTS)


def resolve_patient(store: DocumentStore, extraction: ExtractionResult) -> Resolution:
    """Find (and enrich) or create the patient for a scanned form.

    A failed patient listing degrades to "no match" and is reported as a
    warning. Failures of the enrichment update or of the creation propagate
    as ``ServiceError`` tagged with their stage.
    """
    warnings: List[IntakeWarning] = []
    try:
        candidates = list_patients(store)
    except ServiceError as e:
        logger.warning("Patient listing failed, creating a new patient: %s", e)
        warnings.append(
            IntakeWarning(
                Stage.RESOLUTION,
                "Existing patients could not be checked; a new patient record was created.",
                details={"error": str(e)},
            )
        )
        candidates = []

    match = find_matching_patient(extraction, candidates)
    if match is not None:
        patient, tier = match
        updates = field_fill_updates(patient, extraction)
        if updates:
            try:
                patient = store.update_document(PATIENTS, patient["$id"], updates)
            except ServiceError as e:
                raise e.with_stage(Stage.PATIENT_UPDATE)
            logger.info("Filled %s on patient %s", ", ".join(sorted(updates)), patient["$id"])
        logger.info("Form matched patient %s by %s", patient["$id"], tier.value)
        return Resolution(patient=patient, created=False, matched_by=tier, warnings=warnings)

    try:
        patient = store.create_document(PATIENTS, None, new_patient_payload(extraction))
    except ServiceError as e:
        raise e.with_stage(Stage.PATIENT_CREATE)
    logger.info("Created patient %s", patient["$id"])
    return Resolution(patient=patient, created=True, matched_by=None, warnings=warnings)


# ------------------------------------------
# Explicit profile edits (lookup screen)
# ------------------------------------------
EDITABLE_FIELDS = ("name", "dateofbirth", "lastvisited", "phonenumber", "email", "place", "gender", "bloodtype", "profile")


def profile_changes(changes: dict) -> dict:
    """Validate and normalize a profile edit. Values may overwrite stored ones."""
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    payload = {}
    for key, value in changes.items():
        if isinstance(value, str):
            value = value.strip() or None
        payload[key] = value

    if "name" in payload and not payload["name"]:
        raise ValidationError("Name cannot be empty.")
    if payload.get("phonenumber") is not None:
        phone = clean_phone_digits(payload["phonenumber"])
        if phone is None:
            raise ValidationError("Phone number contains invalid characters. Please enter digits only.")
        payload["phonenumber"] = phone
    for key in ("dateofbirth", "lastvisited"):
        if payload.get(key):
            payload[key] = canonicalize_date(payload[key])
    return payload


def update_profile(store: DocumentStore, patient_id: str, changes: dict) -> dict:
    payload = profile_changes(changes)
    if not payload:
        return store.get_document(PATIENTS, patient_id)
    updated = store.update_document(PATIENTS, patient_id, payload)
    logger.info("Updated profile of patient %s (%s)", patient_id, ", ".join(sorted(payload)))
    return updated
