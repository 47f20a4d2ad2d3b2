from .database import Base, create_db_engine, init_db, make_session_factory, session_scope
from .errors import ConflictError, IntakeError, NotFoundError, ServiceError, Stage, ValidationError
from .normalizers import canonicalize_date, clean_phone_digits, normalize_name

__all__ = [
    "Base",
    "create_db_engine",
    "init_db",
    "make_session_factory",
    "session_scope",
    "ConflictError",
    "IntakeError",
    "NotFoundError",
    "ServiceError",
    "Stage",
    "ValidationError",
    "canonicalize_date",
    "clean_phone_digits",
    "normalize_name",
]
