import pytest

from core.config import Settings
from core.database import create_db_engine, init_db, make_session_factory
from core.errors import ConflictError, ServiceError, Stage
from services.document_store import PATIENTS, SqlDocumentStore
from services.factory import Services
from services.storage_service import LocalFileStorage


@pytest.fixture
def session_factory():
    """Fresh in-memory database per test."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlDocumentStore(session_factory)


@pytest.fixture
def storage(tmp_path):
    return LocalFileStorage(tmp_path / "uploads")


@pytest.fixture
def settings():
    return Settings(link_attempts=6, link_delay=0.0)


# -----------------------------
# Fake collaborators
# -----------------------------
class FakeOcr:
    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.calls = 0

    def extract_text(self, content, filename="form.png"):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


class FakeExtractor:
    def __init__(self, raw=None, error=None):
        self.raw = raw if raw is not None else {}
        self.error = error
        self.seen_text = []

    def extract_fields(self, text):
        self.seen_text.append(text)
        if self.error is not None:
            raise self.error
        return self.raw


class FailingStorage:
    def __init__(self):
        self.calls = 0

    def upload_file(self, file_id, content, filename, content_type=None):
        self.calls += 1
        raise ServiceError("bucket unavailable", status_code=503)

    def view_url(self, file_id):
        return f"missing://{file_id}"


class StoreWrapper:
    """Delegates to a real store; individual calls can be made to fail."""

    def __init__(self, inner):
        self.inner = inner
        self.fail_listing = False
        self.fail_patient_create = False
        self.fail_patient_update = False
        self.link_conflicts = 0
        self.link_updates = 0
        self.calls = []

    def list_documents(self, collection, queries=None):
        self.calls.append(("list", collection))
        if self.fail_listing and collection == PATIENTS:
            raise ServiceError("listing timed out")
        return self.inner.list_documents(collection, queries)

    def create_document(self, collection, document_id, data):
        self.calls.append(("create", collection))
        if self.fail_patient_create and collection == PATIENTS:
            raise ServiceError("create rejected", status_code=500)
        return self.inner.create_document(collection, document_id, data)

    def update_document(self, collection, document_id, data, expected_version=None):
        self.calls.append(("update", collection))
        if collection == PATIENTS and "recordsid" in data:
            self.link_updates += 1
            if self.link_updates <= self.link_conflicts:
                raise ConflictError("document changed", status_code=409)
        elif self.fail_patient_update and collection == PATIENTS:
            raise ServiceError("update rejected", status_code=500)
        return self.inner.update_document(collection, document_id, data, expected_version)

    def get_document(self, collection, document_id):
        self.calls.append(("get", collection))
        return self.inner.get_document(collection, document_id)


@pytest.fixture
def wrapped_store(store):
    return StoreWrapper(store)


@pytest.fixture
def make_services(storage):
    def _make(store, raw=None, text="OCR TEXT", ocr_error=None, extract_error=None, storage_override=None):
        return Services(
            store=store,
            storage=storage_override or storage,
            ocr=FakeOcr(text=text, error=ocr_error),
            extractor=FakeExtractor(raw=raw, error=extract_error),
            geocoder=None,
        )

    return _make


@pytest.fixture
def ocr_failure():
    return ServiceError("OCR request failed: 502", stage=Stage.OCR)


@pytest.fixture
def failing_storage():
    return FailingStorage()
