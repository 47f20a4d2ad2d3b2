from .patient import Patient, PATIENT_FIELDS
from .record import VisitRecord, RECORD_FIELDS
from .extraction import ExtractionResult

__all__ = [
    "Patient",
    "PATIENT_FIELDS",
    "VisitRecord",
    "RECORD_FIELDS",
    "ExtractionResult",
]
