"""
Patient lookup and profile maintenance.

Each patient card on the lookup screen owns one ``PatientPanel``; its
``ViewState`` replaces the separate expanded/editing/saving flags a card
would otherwise juggle.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from core.errors import InvalidTransition, ServiceError, Stage, ValidationError
from services.document_store import PATIENTS, DocumentStore
from services.patient_service import update_profile
from services.storage_service import ObjectStorage

logger = logging.getLogger(__name__)


def search_patients(store: DocumentStore, query: Optional[str]) -> List[dict]:
    """Patients whose name contains ``query`` (any case). Blank query finds nothing."""
    needle = (query or "").strip().lower()
    if not needle:
        return []
    patients = store.list_documents(PATIENTS)
    return [p for p in patients if needle in (p.get("name") or "").lower()]


# -----------------------------
# Per-patient view state
# -----------------------------
class ViewState(str, Enum):
    COLLAPSED = "collapsed"
    EXPANDED = "expanded"
    EDITING = "editing"
    SAVING = "saving"


_EDGES = {
    ("toggle", ViewState.COLLAPSED): ViewState.EXPANDED,
    ("toggle", ViewState.EXPANDED): ViewState.COLLAPSED,
    ("start_edit", ViewState.EXPANDED): ViewState.EDITING,
    ("cancel_edit", ViewState.EDITING): ViewState.EXPANDED,
    ("begin_save", ViewState.EDITING): ViewState.SAVING,
}


@dataclass
class PatientPanel:
    patient_id: str
    state: ViewState = ViewState.COLLAPSED
    error: Optional[str] = None

    def _move(self, action: str) -> ViewState:
        target = _EDGES.get((action, self.state))
        if target is None:
            raise InvalidTransition(f"Cannot {action.replace('_', ' ')} while {self.state.value}")
        self.state = target
        return target

    def toggle(self) -> ViewState:
        return self._move("toggle")

    def start_edit(self) -> ViewState:
        self.error = None
        return self._move("start_edit")

    def cancel_edit(self) -> ViewState:
        self.error = None
        return self._move("cancel_edit")

    def begin_save(self) -> ViewState:
        return self._move("begin_save")

    def finish_save(self, ok: bool, error: Optional[str] = None) -> ViewState:
        """Leave SAVING: back to EXPANDED on success, EDITING (input kept) on failure."""
        if self.state is not ViewState.SAVING:
            raise InvalidTransition(f"Cannot finish save while {self.state.value}")
        self.state = ViewState.EXPANDED if ok else ViewState.EDITING
        self.error = None if ok else error
        return self.state

    @property
    def expanded(self) -> bool:
        return self.state is not ViewState.COLLAPSED

    @property
    def editing(self) -> bool:
        return self.state in (ViewState.EDITING, ViewState.SAVING)


def save_profile(store: DocumentStore, panel: PatientPanel, changes: dict) -> dict:
    """Write a profile edit for the panel's patient.

    Validation and store failures leave the panel in EDITING with the
    message on ``panel.error`` and are re-raised.
    """
    panel.begin_save()
    try:
        updated = update_profile(store, panel.patient_id, changes)
    except (ValidationError, ServiceError) as e:
        panel.finish_save(False, str(e))
        raise
    panel.finish_save(True)
    return updated


def upload_profile_image(store: DocumentStore, storage: ObjectStorage, patient_id: str, upload) -> dict:
    """Store a profile picture and point the patient's ``profile`` at it.

    ``upload`` is anything with ``name``, ``type`` and ``getvalue()``
    (Streamlit's ``UploadedFile``).
    """
    content = upload.getvalue()
    if not content:
        raise ValidationError("Choose an image to upload.")
    try:
        stored = storage.upload_file(None, content, upload.name, getattr(upload, "type", None))
    except ServiceError as e:
        raise e.with_stage(Stage.UPLOAD)
    patient = store.update_document(PATIENTS, patient_id, {"profile": stored.url})
    logger.info("Profile image %s set on patient %s", stored.file_id, patient_id)
    return patient
