from .document_store import PATIENTS, RECORDS, DocumentStore

# Avoid importing the HTTP/AI adapters (openai, requests sessions)
# at package import time. Import submodules directly where needed instead.

__all__ = ["PATIENTS", "RECORDS", "DocumentStore"]
