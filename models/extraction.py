from dataclasses import asdict, dataclass, fields, replace
from typing import Optional

from core.normalizers import clean_phone_digits


@dataclass(frozen=True)
class ExtractionResult:
    """Structured fields pulled from one scanned form.

    Lives only for the duration of one intake; every field may be missing.
    """

    name: Optional[str] = None
    dateofbirth: Optional[str] = None
    visited: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    bloodtype: Optional[str] = None
    gender: Optional[str] = None
    place: Optional[str] = None
    symptom1: Optional[str] = None
    symptom2: Optional[str] = None
    symptom3: Optional[str] = None
    summary: Optional[str] = None

    @classmethod
    def field_names(cls) -> tuple:
        return tuple(f.name for f in fields(cls))

    @property
    def phone_digits(self) -> Optional[str]:
        return clean_phone_digits(self.phone)

    @property
    def symptoms(self) -> list:
        return [s for s in (self.symptom1, self.symptom2, self.symptom3) if s]

    def is_empty(self) -> bool:
        return all(getattr(self, n) is None for n in self.field_names())

    def with_changes(self, **changes) -> "ExtractionResult":
        unknown = set(changes) - set(self.field_names())
        if unknown:
            raise ValueError(f"Unknown extraction fields: {', '.join(sorted(unknown))}")
        cleaned = {}
        for key, value in changes.items():
            if isinstance(value, str):
                value = value.strip() or None
            cleaned[key] = value
        return replace(self, **cleaned)

    def to_dict(self) -> dict:
        return asdict(self)
