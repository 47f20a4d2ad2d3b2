"""
Document store adapters.

The intake and lookup flows only see plain dict documents with the stored
attributes plus ``$id``, ``$version``, ``$createdAt`` and ``$updatedAt``.
Two backends implement the same four calls:

- ``SqlDocumentStore``: local SQLAlchemy database (default)
- ``AppwriteDocumentStore``: hosted Appwrite project over its REST API
"""

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import requests
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from core.database import session_scope
from core.errors import ConflictError, NotFoundError, ServiceError
from models.patient import Patient, PATIENT_FIELDS
from models.record import VisitRecord, RECORD_FIELDS

logger = logging.getLogger(__name__)

PATIENTS = "patients"
RECORDS = "records"


def new_document_id() -> str:
    return uuid.uuid4().hex


# -----------------------------
# Queries
# -----------------------------
@dataclass(frozen=True)
class Query:
    method: str
    attribute: Optional[str]
    values: tuple

    def to_dict(self) -> Dict[str, Any]:
        out = {"method": self.method, "values": list(self.values)}
        if self.attribute is not None:
            out["attribute"] = self.attribute
        return out


def equal(attribute: str, value) -> Query:
    return Query("equal", attribute, (value,))


def contains(attribute: str, value: str) -> Query:
    return Query("contains", attribute, (value,))


def limit(n: int) -> Query:
    return Query("limit", None, (int(n),))


class DocumentStore:
    """Interface shared by the backends."""

    def list_documents(self, collection: str, queries: Optional[Iterable[Query]] = None) -> List[dict]:
        raise NotImplementedError

    def create_document(self, collection: str, document_id: Optional[str], data: dict) -> dict:
        raise NotImplementedError

    def update_document(
        self, collection: str, document_id: str, data: dict, expected_version=None
    ) -> dict:
        raise NotImplementedError

    def get_document(self, collection: str, document_id: str) -> dict:
        raise NotImplementedError


# -----------------------------
# Local SQLAlchemy backend
# -----------------------------
class SqlDocumentStore(DocumentStore):
    _COLLECTIONS = {
        PATIENTS: (Patient, PATIENT_FIELDS),
        RECORDS: (VisitRecord, RECORD_FIELDS),
    }

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def _model(self, collection: str):
        try:
            return self._COLLECTIONS[collection]
        except KeyError:
            raise ServiceError(f"Unknown collection '{collection}'", status_code=404) from None

    @staticmethod
    def _check_fields(allowed, data: dict) -> dict:
        payload = {k: v for k, v in data.items() if not k.startswith("$")}
        unknown = set(payload) - set(allowed)
        if unknown:
            raise ServiceError(
                f"Invalid document structure: unknown attribute(s) {', '.join(sorted(unknown))}",
                status_code=400,
            )
        if "recordsid" in payload:
            payload["recordsid"] = [str(r) for r in (payload["recordsid"] or [])]
        return payload

    @staticmethod
    def _to_document(obj, allowed) -> dict:
        doc = {
            "$id": obj.id,
            "$version": obj.version,
            "$createdAt": obj.created_at.isoformat() if obj.created_at else None,
            "$updatedAt": obj.updated_at.isoformat() if obj.updated_at else None,
        }
        for name in allowed:
            value = getattr(obj, name)
            doc[name] = list(value) if isinstance(value, list) else value
        return doc

    def list_documents(self, collection, queries=None):
        model, allowed = self._model(collection)
        try:
            with session_scope(self._session_factory) as db:
                q = db.query(model)
                limit = None
                for query in queries or ():
                    if query.method == "limit":
                        limit = query.values[0]
                        continue
                    if query.attribute not in allowed:
                        raise ServiceError(f"Invalid query attribute '{query.attribute}'", status_code=400)
                    column = getattr(model, query.attribute)
                    if query.method == "equal":
                        q = q.filter(column == query.values[0])
                    elif query.method == "contains":
                        q = q.filter(func.lower(column).contains(str(query.values[0]).lower()))
                    else:
                        raise ServiceError(f"Unsupported query method '{query.method}'", status_code=400)
                # LIMIT has to follow ORDER BY
                q = q.order_by(model.created_at)
                if limit is not None:
                    q = q.limit(limit)
                return [self._to_document(o, allowed) for o in q.all()]
        except SQLAlchemyError as e:
            raise ServiceError(f"Listing {collection} failed: {e}") from e

    def create_document(self, collection, document_id, data):
        model, allowed = self._model(collection)
        payload = self._check_fields(allowed, data)
        document_id = document_id or new_document_id()
        try:
            with session_scope(self._session_factory) as db:
                if db.get(model, document_id) is not None:
                    raise ConflictError(f"Document {document_id} already exists", status_code=409)
                if model is Patient and payload.get("recordsid") is None:
                    payload["recordsid"] = []
                obj = model(id=document_id, **payload)
                db.add(obj)
                db.flush()
                doc = self._to_document(obj, allowed)
        except SQLAlchemyError as e:
            raise ServiceError(f"Creating {collection} document failed: {e}") from e
        logger.debug("Created %s document %s", collection, document_id)
        return doc

    def update_document(self, collection, document_id, data, expected_version=None):
        model, allowed = self._model(collection)
        payload = self._check_fields(allowed, data)
        try:
            with session_scope(self._session_factory) as db:
                obj = db.get(model, document_id)
                if obj is None:
                    raise NotFoundError(f"{collection} document {document_id} not found", status_code=404)
                if expected_version is not None and obj.version != expected_version:
                    raise ConflictError(
                        f"{collection} document {document_id} changed (version {obj.version}, "
                        f"expected {expected_version})",
                        status_code=409,
                    )
                for key, value in payload.items():
                    setattr(obj, key, value)
                db.flush()
                doc = self._to_document(obj, allowed)
        except StaleDataError as e:
            raise ConflictError(f"{collection} document {document_id} was modified concurrently", status_code=409) from e
        except SQLAlchemyError as e:
            raise ServiceError(f"Updating {collection} document failed: {e}") from e
        return doc

    def get_document(self, collection, document_id):
        model, allowed = self._model(collection)
        try:
            with session_scope(self._session_factory) as db:
                obj = db.get(model, document_id)
                if obj is None:
                    raise NotFoundError(f"{collection} document {document_id} not found", status_code=404)
                return self._to_document(obj, allowed)
        except SQLAlchemyError as e:
            raise ServiceError(f"Reading {collection} document failed: {e}") from e


# -----------------------------
# Appwrite REST backend
# -----------------------------
def _raise_for_response(resp, action: str) -> None:
    if resp.status_code < 400:
        return
    try:
        message = resp.json().get("message") or resp.text
    except ValueError:
        message = resp.text
    text = f"{action} failed ({resp.status_code}): {message}"
    if resp.status_code == 404:
        raise NotFoundError(text, status_code=404)
    if resp.status_code in (409, 412):
        raise ConflictError(text, status_code=resp.status_code)
    raise ServiceError(text, status_code=resp.status_code)


class AppwriteClient:
    """Shared HTTP plumbing for the Appwrite adapters."""

    def __init__(self, endpoint: str, project_id: str, api_key: Optional[str] = None,
                 timeout: float = 15.0, session: Optional[requests.Session] = None):
        self.endpoint = endpoint.rstrip("/")
        self.project_id = project_id
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {"X-Appwrite-Project": project_id}
        if api_key:
            self.headers["X-Appwrite-Key"] = api_key

    def request(self, method: str, path: str, action: str, **kwargs) -> dict:
        headers = dict(self.headers)
        headers.update(kwargs.pop("headers", {}))
        try:
            resp = self.session.request(
                method, f"{self.endpoint}{path}", headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            raise ServiceError(f"{action} failed: {e}") from e
        _raise_for_response(resp, action)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise ServiceError(f"{action} returned invalid JSON") from e


class AppwriteDocumentStore(DocumentStore):
    def __init__(self, client: AppwriteClient, database_id: str, collection_ids: Dict[str, str]):
        self.client = client
        self.database_id = database_id
        self.collection_ids = collection_ids

    def _path(self, collection: str, document_id: Optional[str] = None) -> str:
        try:
            col = self.collection_ids[collection]
        except KeyError:
            raise ServiceError(f"Unknown collection '{collection}'", status_code=404) from None
        path = f"/databases/{self.database_id}/collections/{col}/documents"
        return f"{path}/{document_id}" if document_id else path

    @staticmethod
    def _to_document(raw: dict) -> dict:
        doc = {k: v for k, v in raw.items() if not k.startswith("$")}
        for meta in ("$id", "$createdAt", "$updatedAt"):
            doc[meta] = raw.get(meta)
        # Appwrite has no version counter; the update timestamp plays that role
        doc["$version"] = raw.get("$updatedAt")
        return doc

    @staticmethod
    def _clean(data: dict) -> dict:
        return {k: v for k, v in data.items() if not k.startswith("$")}

    def list_documents(self, collection, queries=None):
        params = [("queries[]", json.dumps(q.to_dict())) for q in (queries or ())]
        body = self.client.request("GET", self._path(collection), f"Listing {collection}", params=params)
        return [self._to_document(d) for d in body.get("documents", [])]

    def create_document(self, collection, document_id, data):
        body = {
            "documentId": document_id or new_document_id(),
            "data": self._clean(data),
            "permissions": ['read("any")'],
        }
        raw = self.client.request("POST", self._path(collection), f"Creating {collection} document", json=body)
        return self._to_document(raw)

    def update_document(self, collection, document_id, data, expected_version=None):
        if expected_version is not None:
            current = self.get_document(collection, document_id)
            if current.get("$version") != expected_version:
                raise ConflictError(f"{collection} document {document_id} changed since it was read", status_code=409)
        raw = self.client.request(
            "PATCH",
            self._path(collection, document_id),
            f"Updating {collection} document",
            json={"data": self._clean(data)},
        )
        return self._to_document(raw)

    def get_document(self, collection, document_id):
        raw = self.client.request("GET", self._path(collection, document_id), f"Reading {collection} document")
        return self._to_document(raw)
