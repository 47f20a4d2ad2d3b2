from unittest.mock import MagicMock

import pytest

from core.errors import IntakeValidationError, InvalidTransition, ServiceError, Stage
from core.events import RECORDS_UPDATED, EventBus
from services.document_store import PATIENTS, RECORDS
from services.intake_service import IntakeSession, IntakeState, UploadedForm
from services.patient_service import MatchTier
from services.storage_service import LocalFileStorage

FORM = UploadedForm("form.png", b"\x89PNG fake image bytes", "image/png")


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def received(events):
    got = []
    events.subscribe(RECORDS_UPDATED, lambda **payload: got.append(payload))
    return got


def run_intake(services, settings, events, form=FORM):
    session = IntakeSession(services, settings, events, sleep=lambda s: None)
    session.select_file(form)
    session.process()
    return session, session.save()


# -----------------------------
# End to end
# -----------------------------
def test_first_upload_creates_patient_and_linked_record(store, make_services, settings, events, received):
    services = make_services(store, raw={"name": "Juan Dela Cruz", "dateofbirth": "03/04/1990", "symptom1": "Fever"})

    session, outcome = run_intake(services, settings, events)

    assert outcome.status is IntakeState.COMPLETED
    assert outcome.created_patient is True
    patients = store.list_documents(PATIENTS)
    records = store.list_documents(RECORDS)
    assert len(patients) == 1 and len(records) == 1
    assert patients[0]["name"] == "Juan Dela Cruz"
    assert patients[0]["dateofbirth"] == "03-04-1990"
    assert patients[0]["recordsid"] == [records[0]["$id"]]
    assert records[0]["patientsid"] == patients[0]["$id"]
    assert records[0]["symptom1"] == "Fever"
    assert records[0]["name"] == "Juan Dela Cruz"
    assert received == [{"patient_id": patients[0]["$id"], "record_id": records[0]["$id"]}]


def test_second_upload_of_same_person_reuses_patient(store, make_services, settings, events):
    run_intake(make_services(store, raw={"name": "Juan Dela Cruz", "dateofbirth": "03/04/1990"}), settings, events)

    _, outcome = run_intake(
        make_services(store, raw={"name": "juan dela cruz", "dateofbirth": "3/4/1990"}), settings, events
    )

    assert outcome.status is IntakeState.COMPLETED
    assert outcome.created_patient is False
    assert outcome.matched_by in (MatchTier.NAME, MatchTier.DATE_OF_BIRTH)
    patients = store.list_documents(PATIENTS)
    assert len(patients) == 1
    assert len(patients[0]["recordsid"]) == 2
    assert len(store.list_documents(RECORDS)) == 2


def test_completed_intake_clears_state(store, make_services, settings, events):
    session, _ = run_intake(make_services(store, raw={"name": "Ana"}), settings, events)

    assert session.state is IntakeState.COMPLETED
    assert session.form is None and session.extraction is None
    with pytest.raises(IntakeValidationError):
        session.save()


# -----------------------------
# Extraction step
# -----------------------------
def test_empty_ocr_text_still_runs_extraction(store, make_services, settings, events):
    services = make_services(store, raw={}, text="")
    session = IntakeSession(services, settings, events)
    session.select_file(FORM)

    result = session.process()

    assert services.extractor.seen_text == [""]
    assert result.is_empty()
    assert session.state is IntakeState.REVIEWING


def test_ocr_failure_returns_to_file_selected(store, make_services, settings, events, ocr_failure):
    services = make_services(store, ocr_error=ocr_failure)
    session = IntakeSession(services, settings, events)
    session.select_file(FORM)

    with pytest.raises(ServiceError) as exc:
        session.process()

    assert exc.value.stage is Stage.OCR
    assert session.state is IntakeState.FILE_SELECTED
    assert session.form == FORM
    assert services.extractor.seen_text == []


def test_unexpected_extractor_error_returns_to_file_selected(store, make_services, settings, events):
    services = make_services(store, extract_error=IndexError("list index out of range"))
    session = IntakeSession(services, settings, events)
    session.select_file(FORM)

    with pytest.raises(ServiceError) as exc:
        session.process()

    assert exc.value.stage is Stage.EXTRACTION
    assert session.state is IntakeState.FILE_SELECTED
    assert session.form == FORM


def test_fields_can_be_typed_in_after_extraction_failure(store, make_services, settings, events):
    services = make_services(store, extract_error=ServiceError("AI down", stage=Stage.EXTRACTION))
    session = IntakeSession(services, settings, events, sleep=lambda s: None)
    session.select_file(FORM)
    with pytest.raises(ServiceError):
        session.process()

    session.edit(name="Pedro Santos", symptom1="Cough")
    outcome = session.save()

    assert outcome.status is IntakeState.COMPLETED
    assert store.list_documents(PATIENTS)[0]["name"] == "Pedro Santos"


def test_review_edits_make_no_backend_calls(wrapped_store, make_services, settings, events):
    session = IntakeSession(make_services(wrapped_store, raw={"name": "Juan"}), settings, events)
    session.select_file(FORM)
    session.process()

    session.edit(name="Juan Dela Cruz", place="Cebu")

    assert wrapped_store.calls == []
    assert session.extraction.name == "Juan Dela Cruz"
    assert session.state is IntakeState.REVIEWING


def test_hand_typed_dates_are_canonicalized(store, make_services, settings, events):
    session = IntakeSession(make_services(store), settings, events)
    session.select_file(FORM)

    edited = session.edit(name="Juan", visited="3/4/2024", dateofbirth="12/25/1980")

    assert edited.visited == "03-04-2024"
    assert edited.dateofbirth == "12-25-1980"


def test_edit_rejects_unknown_fields(store, make_services, settings, events):
    session = IntakeSession(make_services(store, raw={"name": "Juan"}), settings, events)
    session.select_file(FORM)
    session.process()

    with pytest.raises(IntakeValidationError):
        session.edit(password="secret")


# -----------------------------
# Validation
# -----------------------------
def test_save_without_file_is_rejected(wrapped_store, make_services, settings, events):
    session = IntakeSession(make_services(wrapped_store), settings, events)

    with pytest.raises(IntakeValidationError):
        session.save()

    assert session.state is IntakeState.IDLE
    assert wrapped_store.calls == []


def test_save_before_processing_is_rejected(wrapped_store, make_services, settings, events):
    session = IntakeSession(make_services(wrapped_store), settings, events)
    session.select_file(FORM)

    with pytest.raises(IntakeValidationError):
        session.save()

    assert session.state is IntakeState.FILE_SELECTED
    assert wrapped_store.calls == []


def test_empty_file_is_rejected(store, make_services, settings, events):
    session = IntakeSession(make_services(store), settings, events)
    with pytest.raises(IntakeValidationError):
        session.select_file(UploadedForm("empty.png", b""))
    assert session.state is IntakeState.IDLE


def test_process_without_file_is_rejected(store, make_services, settings, events):
    session = IntakeSession(make_services(store), settings, events)
    with pytest.raises(IntakeValidationError):
        session.process()


def test_edit_while_idle_is_invalid(store, make_services, settings, events):
    session = IntakeSession(make_services(store), settings, events)
    with pytest.raises(InvalidTransition):
        session.edit(name="Juan")


# -----------------------------
# Failures during save
# -----------------------------
def test_upload_failure_fails_and_keeps_input(store, make_services, settings, events, received, failing_storage):
    services = make_services(store, raw={"name": "Juan"}, storage_override=failing_storage)
    session = IntakeSession(services, settings, events)
    session.select_file(FORM)
    session.process()

    outcome = session.save()

    assert outcome.status is IntakeState.FAILED
    assert outcome.error.stage is Stage.UPLOAD
    assert session.state is IntakeState.FAILED
    assert session.form == FORM
    assert session.extraction.name == "Juan"
    assert store.list_documents(RECORDS) == []
    assert received == []


def test_unwritable_upload_folder_fails_and_keeps_input(store, make_services, settings, events, tmp_path):
    blocker = tmp_path / "not-a-folder"
    blocker.write_bytes(b"")
    services = make_services(store, raw={"name": "Juan"}, storage_override=LocalFileStorage(blocker / "uploads"))
    session = IntakeSession(services, settings, events)
    session.select_file(FORM)
    session.edit(name="Juan")

    outcome = session.save()

    assert outcome.status is IntakeState.FAILED
    assert outcome.error.stage is Stage.UPLOAD
    assert session.form == FORM
    assert session.reset() is IntakeState.IDLE


def test_unexpected_save_error_does_not_leave_session_saving(store, make_services, settings, events, received):
    broken = MagicMock()
    broken.upload_file.side_effect = RuntimeError("disk vanished")
    session = IntakeSession(make_services(store, raw={"name": "Juan"}, storage_override=broken), settings, events)
    session.select_file(FORM)
    session.process()

    outcome = session.save()

    assert outcome.status is IntakeState.FAILED
    assert session.state is IntakeState.FAILED
    assert "disk vanished" in str(outcome.error)
    assert session.extraction.name == "Juan"
    assert received == []
    session.select_file(FORM)
    assert session.state is IntakeState.FILE_SELECTED


def test_retry_after_failure_reuses_patient(store, storage, make_services, settings, events, failing_storage):
    services = make_services(store, raw={"name": "Juan"}, storage_override=failing_storage)
    session = IntakeSession(services, settings, events)
    session.select_file(FORM)
    session.process()
    session.save()

    services.storage = storage
    outcome = session.save()

    assert outcome.status is IntakeState.COMPLETED
    assert len(store.list_documents(PATIENTS)) == 1


def test_patient_creation_failure_is_fatal(wrapped_store, make_services, settings, events):
    wrapped_store.fail_patient_create = True
    session = IntakeSession(make_services(wrapped_store, raw={"name": "Juan"}), settings, events)
    session.select_file(FORM)
    session.process()

    outcome = session.save()

    assert outcome.status is IntakeState.FAILED
    assert outcome.error.stage is Stage.PATIENT_CREATE
    assert outcome.patient_id is None


def test_exhausted_linking_is_partial_not_failed(wrapped_store, make_services, settings, events, received):
    wrapped_store.link_conflicts = 100
    session = IntakeSession(make_services(wrapped_store, raw={"name": "Juan", "symptom1": "Fever"}), settings, events,
                            sleep=lambda s: None)
    session.select_file(FORM)
    session.process()

    outcome = session.save()

    assert outcome.status is IntakeState.PARTIALLY_COMPLETED
    assert outcome.needs_reconciliation
    assert Stage.LINK in [w.stage for w in outcome.warnings]
    record = wrapped_store.get_document(RECORDS, outcome.record_id)
    assert record["patientsid"] == outcome.patient_id
    assert session.form is None
    assert len(received) == 1


def test_listing_failure_is_a_warning(wrapped_store, make_services, settings, events):
    wrapped_store.fail_listing = True

    _, outcome = run_intake(make_services(wrapped_store, raw={"name": "Juan"}), settings, events)

    assert outcome.status is IntakeState.COMPLETED
    assert [w.stage for w in outcome.warnings] == [Stage.RESOLUTION]
    assert outcome.warnings[0].to_dict()["stage"] == "RESOLUTION"


def test_reset_returns_to_idle(store, make_services, settings, events):
    session = IntakeSession(make_services(store, raw={"name": "Juan"}), settings, events)
    session.select_file(FORM)
    session.process()

    assert session.reset() is IntakeState.IDLE
    assert session.form is None and session.extraction is None
