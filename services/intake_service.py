"""
Intake Orchestrator

Drives one scanned form from file selection to a stored, linked visit
record:

    IDLE -> FILE_SELECTED -> EXTRACTING -> REVIEWING -> SAVING
         -> COMPLETED | PARTIALLY_COMPLETED | FAILED

Four kinds of result reach the caller and must stay distinguishable:

- ``IntakeValidationError`` is raised for bad input; nothing is called and
  the state does not change.
- OCR/extraction failures raise ``ServiceError`` and return the session to
  FILE_SELECTED so the user can retry or type the fields in.
- ``save()`` returns an ``IntakeOutcome``: FAILED keeps the file and the
  extracted fields for another attempt, PARTIALLY_COMPLETED means the record
  exists but the patient's record list could not be updated.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from core.config import Settings
from core.errors import IntakeValidationError, IntakeWarning, InvalidTransition, ServiceError, Stage
from core.events import RECORDS_UPDATED, EventBus
from models.extraction import ExtractionResult
from services.ai_service import normalize_extraction, parse_raw_extraction
from services.patient_service import MatchTier, resolve_patient
from services.record_service import create_visit_record, ensure_record_reference, link_record

logger = logging.getLogger(__name__)


class IntakeState(str, Enum):
    IDLE = "idle"
    FILE_SELECTED = "file_selected"
    EXTRACTING = "extracting"
    REVIEWING = "reviewing"
    SAVING = "saving"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"


_BUSY = (IntakeState.EXTRACTING, IntakeState.SAVING)


@dataclass(frozen=True)
class UploadedForm:
    filename: str
    content: bytes
    content_type: Optional[str] = None

    @classmethod
    def from_upload(cls, uploaded) -> "UploadedForm":
        """Build from a Streamlit ``UploadedFile``."""
        return cls(uploaded.name, uploaded.getvalue(), getattr(uploaded, "type", None))


@dataclass
class IntakeOutcome:
    status: IntakeState
    patient_id: Optional[str] = None
    record_id: Optional[str] = None
    image_url: Optional[str] = None
    created_patient: bool = False
    matched_by: Optional[MatchTier] = None
    warnings: List[IntakeWarning] = field(default_factory=list)
    error: Optional[ServiceError] = None

    @property
    def ok(self) -> bool:
        return self.status is IntakeState.COMPLETED

    @property
    def needs_reconciliation(self) -> bool:
        return self.status is IntakeState.PARTIALLY_COMPLETED


class IntakeSession:
    def __init__(
        self,
        services,
        settings: Optional[Settings] = None,
        events: Optional[EventBus] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.services = services
        self.settings = settings or Settings()
        self.events = events
        self._sleep = sleep

        self.state = IntakeState.IDLE
        self.form: Optional[UploadedForm] = None
        self.text: Optional[str] = None
        self.extraction: Optional[ExtractionResult] = None
        self.last_error: Optional[ServiceError] = None
        self.outcome: Optional[IntakeOutcome] = None

    def _ensure_not_busy(self, action: str) -> None:
        if self.state in _BUSY:
            raise InvalidTransition(f"Cannot {action} while {self.state.value}")

    # -----------------------------
    # File selection and extraction
    # -----------------------------
    def select_file(self, form: Optional[UploadedForm]) -> IntakeState:
        self._ensure_not_busy("select a file")
        if form is None or not form.content:
            raise IntakeValidationError("Select a non-empty file first.")
        self.form = form
        self.text = None
        self.extraction = None
        self.last_error = None
        self.outcome = None
        self.state = IntakeState.FILE_SELECTED
        return self.state

    def process(self) -> ExtractionResult:
        """Run OCR then field extraction on the selected file."""
        self._ensure_not_busy("process")
        if self.form is None:
            raise IntakeValidationError("Select a file first.")

        self.state = IntakeState.EXTRACTING
        self.last_error = None
        try:
            text = self.services.ocr.extract_text(self.form.content, self.form.filename)
            if not text:
                logger.info("OCR found no text; extraction will come back empty")
            raw = self.services.extractor.extract_fields(text)
            extraction = normalize_extraction(parse_raw_extraction(raw))
        except ServiceError as e:
            self._extraction_failed(e)
            raise
        except Exception as e:
            logger.exception("Unexpected error while reading the form")
            error = ServiceError(f"Extraction failed: {e}", stage=Stage.EXTRACTION)
            self._extraction_failed(error)
            raise error from e

        self.text = text
        self.extraction = extraction
        self.state = IntakeState.REVIEWING
        logger.info("Extracted %d field(s) from the form", sum(v is not None for v in self.extraction.to_dict().values()))
        return self.extraction

    def _extraction_failed(self, error: ServiceError) -> None:
        self.last_error = error
        self.state = IntakeState.FILE_SELECTED
        logger.warning("Extraction failed at %s: %s", error.stage.value if error.stage else "unknown stage", error)

    def edit(self, **fields) -> ExtractionResult:
        """Change extracted fields by hand. Makes no backend call."""
        if self.state not in (IntakeState.FILE_SELECTED, IntakeState.REVIEWING, IntakeState.FAILED):
            raise InvalidTransition(f"Cannot edit fields while {self.state.value}")
        base = self.extraction or ExtractionResult()
        try:
            self.extraction = normalize_extraction(base.with_changes(**fields))
        except ValueError as e:
            raise IntakeValidationError(str(e)) from e
        self.state = IntakeState.REVIEWING
        return self.extraction

    def reset(self) -> IntakeState:
        self._ensure_not_busy("reset")
        self.form = None
        self.text = None
        self.extraction = None
        self.last_error = None
        self.outcome = None
        self.state = IntakeState.IDLE
        return self.state

    # -----------------------------
    # Save
    # -----------------------------
    def save(self) -> IntakeOutcome:
        self._ensure_not_busy("save")
        if self.form is None:
            raise IntakeValidationError("No file to upload. Select a file first.")
        if self.extraction is None:
            raise IntakeValidationError("No extracted data. Process the form first.")

        self.state = IntakeState.SAVING
        try:
            outcome = self._store_form()
        except Exception as e:
            logger.exception("Unexpected error while saving the form")
            return self._fail(ServiceError(f"Saving failed: {e}"), None, [])
        if outcome.status is not IntakeState.FAILED:
            self._finish(outcome)
        return outcome

    def _store_form(self) -> IntakeOutcome:
        """Steps of ``save``; returns the FAILED outcome for a fatal ``ServiceError``."""
        warnings: List[IntakeWarning] = []
        patient_id = None
        try:
            resolution = resolve_patient(self.services.store, self.extraction)
            warnings.extend(resolution.warnings)
            patient_id = resolution.patient_id

            try:
                stored = self.services.storage.upload_file(
                    None, self.form.content, self.form.filename, self.form.content_type
                )
            except ServiceError as e:
                raise e.with_stage(Stage.UPLOAD)

            record = create_visit_record(self.services.store, resolution.patient, self.extraction, stored.url)
        except ServiceError as e:
            return self._fail(e, patient_id, warnings)

        link = link_record(
            self.services.store,
            patient_id,
            record["$id"],
            attempts=self.settings.link_attempts,
            delay=self.settings.link_delay,
            sleep=self._sleep,
        )
        status = IntakeState.COMPLETED
        if not link.linked:
            status = IntakeState.PARTIALLY_COMPLETED
            warnings.append(
                IntakeWarning(
                    Stage.LINK,
                    "Record saved, but it could not be added to the patient's record list. "
                    "It can still be found by name; reconcile manually.",
                    details={"attempts": link.attempts, "error": str(link.error) if link.error else None},
                )
            )

        try:
            ensure_record_reference(self.services.store, record["$id"], patient_id)
        except ServiceError as e:
            logger.warning("Reference check of record %s failed: %s", record["$id"], e)
            warnings.append(IntakeWarning(Stage.REFERENCE_CHECK, "Record reference could not be verified.",
                                          details={"error": str(e)}))

        return IntakeOutcome(
            status=status,
            patient_id=patient_id,
            record_id=record["$id"],
            image_url=stored.url,
            created_patient=resolution.created,
            matched_by=resolution.matched_by,
            warnings=warnings,
        )

    def _fail(self, error: ServiceError, patient_id: Optional[str], warnings: List[IntakeWarning]) -> IntakeOutcome:
        logger.error("Intake failed at %s: %s", error.stage.value if error.stage else "unknown stage", error)
        self.last_error = error
        self.state = IntakeState.FAILED
        self.outcome = IntakeOutcome(status=IntakeState.FAILED, patient_id=patient_id, warnings=warnings, error=error)
        return self.outcome

    def _finish(self, outcome: IntakeOutcome) -> None:
        self.form = None
        self.text = None
        self.extraction = None
        self.last_error = None
        self.outcome = outcome
        self.state = outcome.status
        logger.info("Intake %s: record %s, patient %s", outcome.status.value, outcome.record_id, outcome.patient_id)
        if self.events is not None:
            self.events.emit(RECORDS_UPDATED, patient_id=outcome.patient_id, record_id=outcome.record_id)
