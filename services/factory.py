import logging
from dataclasses import dataclass
from typing import Optional

from core.config import Settings
from core.database import create_db_engine, init_db, make_session_factory
from services.ai_service import OpenAIFieldExtractor, PromptApiFieldExtractor
from services.document_store import (
    PATIENTS,
    RECORDS,
    AppwriteClient,
    AppwriteDocumentStore,
    DocumentStore,
    SqlDocumentStore,
)
from services.geocoding_service import NominatimGeocoder
from services.ocr_service import HttpOcrClient
from services.storage_service import AppwriteStorage, LocalFileStorage, ObjectStorage

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: DocumentStore
    storage: ObjectStorage
    ocr: object
    extractor: object
    geocoder: NominatimGeocoder


def build_services(settings: Settings, session_factory=None) -> Services:
    """Wire the adapters picked by ``settings``.

    With the local backend a ``session_factory`` may be passed in; otherwise
    the database at ``settings.database_url`` is opened and its tables created.
    """
    if settings.uses_appwrite:
        client = AppwriteClient(
            settings.appwrite_endpoint,
            settings.appwrite_project_id,
            settings.appwrite_api_key,
            timeout=settings.http_timeout,
        )
        store = AppwriteDocumentStore(
            client,
            settings.appwrite_database_id,
            {PATIENTS: settings.patients_collection_id, RECORDS: settings.records_collection_id},
        )
        storage = AppwriteStorage(client, settings.bucket_id)
    else:
        if session_factory is None:
            engine = create_db_engine(settings.database_url)
            init_db(engine)
            session_factory = make_session_factory(engine)
        store = SqlDocumentStore(session_factory)
        storage = LocalFileStorage(settings.upload_dir)

    if settings.extraction_provider == "prompt_api":
        extractor = PromptApiFieldExtractor(settings.prompt_url, settings.ocr_api_key, timeout=settings.http_timeout)
    else:
        extractor = OpenAIFieldExtractor(settings.openai_api_key, settings.openai_model, timeout=settings.http_timeout)

    logger.info("Services ready (backend=%s, extraction=%s)", settings.backend, settings.extraction_provider)
    return Services(
        store=store,
        storage=storage,
        ocr=HttpOcrClient(settings.ocr_url, settings.ocr_api_key, timeout=settings.http_timeout),
        extractor=extractor,
        geocoder=NominatimGeocoder(
            settings.geocoder_url,
            settings.geocoder_user_agent,
            region=settings.geocode_region,
            timeout=settings.http_timeout,
        ),
    )
