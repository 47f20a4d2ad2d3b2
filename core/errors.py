from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Stage(str, Enum):
    OCR = "OCR"
    EXTRACTION = "EXTRACTION"
    RESOLUTION = "RESOLUTION"
    PATIENT_UPDATE = "PATIENT_UPDATE"
    PATIENT_CREATE = "PATIENT_CREATE"
    UPLOAD = "UPLOAD"
    RECORD_CREATE = "RECORD_CREATE"
    LINK = "LINK"
    REFERENCE_CHECK = "REFERENCE_CHECK"


class IntakeError(Exception):
    """Base error for the intake dashboard."""


class ConfigurationError(IntakeError):
    pass


class ValidationError(IntakeError):
    """Bad input caught before any backend call was made."""


# The intake screen reports these separately from backend failures.
IntakeValidationError = ValidationError


class InvalidTransition(IntakeError):
    """A state machine was asked to move along an edge it doesn't have."""


class ServiceError(IntakeError):
    """An external collaborator (store, storage, OCR, AI) failed."""

    def __init__(self, message: str, stage: Optional[Stage] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.stage = stage
        self.status_code = status_code

    def with_stage(self, stage: Stage) -> "ServiceError":
        if self.stage is None:
            self.stage = stage
        return self


class NotFoundError(ServiceError):
    pass


class ConflictError(ServiceError):
    """The document changed between read and write."""


@dataclass
class IntakeWarning:
    stage: Stage
    message: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "details": self.details,
        }
