import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from core.errors import ConfigurationError

# Path: project_root/data/...
BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DB_PATH = BASE_DIR / "data" / "intake.db"
DEFAULT_UPLOAD_DIR = BASE_DIR / "data" / "uploads"

DEFAULT_OCR_URL = "https://ai-tools.rev21labs.com/api/v1/vision/ocr"
DEFAULT_PROMPT_URL = "https://ai-tools.rev21labs.com/api/v1/ai/prompt"
DEFAULT_GEOCODER_URL = "https://nominatim.openstreetmap.org/search"


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, built once at startup and passed down."""

    backend: str = "local"
    database_url: str = f"sqlite:///{DEFAULT_DB_PATH}"
    upload_dir: str = str(DEFAULT_UPLOAD_DIR)

    appwrite_endpoint: str = "https://cloud.appwrite.io/v1"
    appwrite_project_id: Optional[str] = None
    appwrite_api_key: Optional[str] = None
    appwrite_database_id: Optional[str] = None
    patients_collection_id: str = "patients"
    records_collection_id: str = "records"
    bucket_id: Optional[str] = None

    ocr_url: str = DEFAULT_OCR_URL
    ocr_api_key: Optional[str] = None
    extraction_provider: str = "openai"
    prompt_url: str = DEFAULT_PROMPT_URL
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    geocoder_url: str = DEFAULT_GEOCODER_URL
    geocoder_user_agent: str = "medform-intake/1.0"
    geocode_region: Optional[str] = "Philippines"

    http_timeout: float = 15.0
    link_attempts: int = 6
    link_delay: float = 0.3
    poll_interval: float = 30.0
    log_level: str = "INFO"

    @property
    def uses_appwrite(self) -> bool:
        return self.backend == "appwrite"

    def validate(self) -> "Settings":
        if self.backend not in {"local", "appwrite"}:
            raise ConfigurationError(f"Unknown INTAKE_BACKEND '{self.backend}'. Expected local or appwrite.")
        if self.extraction_provider not in {"openai", "prompt_api"}:
            raise ConfigurationError(
                f"Unknown EXTRACTION_PROVIDER '{self.extraction_provider}'. Expected openai or prompt_api."
            )
        if self.uses_appwrite:
            missing = [
                name
                for name, value in (
                    ("APPWRITE_PROJECT_ID", self.appwrite_project_id),
                    ("APPWRITE_DATABASE_ID", self.appwrite_database_id),
                    ("BUCKET_ID", self.bucket_id),
                )
                if not value
            ]
            if missing:
                raise ConfigurationError(f"Appwrite backend needs: {', '.join(missing)}")
        if self.link_attempts < 1:
            raise ConfigurationError("LINK_ATTEMPTS must be at least 1.")
        return self


def _number(env: Mapping[str, str], key: str, default, cast):
    raw = env.get(key)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from None


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from the environment (``.env`` included).

    Passing ``environ`` skips the ``.env`` file; tests use that.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ
    env = environ
    defaults = Settings()

    settings = Settings(
        backend=env.get("INTAKE_BACKEND", defaults.backend).strip().lower(),
        database_url=env.get("DATABASE_URL", defaults.database_url),
        upload_dir=env.get("UPLOAD_DIR", defaults.upload_dir),
        appwrite_endpoint=env.get("APPWRITE_ENDPOINT", defaults.appwrite_endpoint).rstrip("/"),
        appwrite_project_id=env.get("APPWRITE_PROJECT_ID") or None,
        appwrite_api_key=env.get("APPWRITE_API_KEY") or None,
        appwrite_database_id=env.get("APPWRITE_DATABASE_ID") or None,
        patients_collection_id=env.get("PATIENTS_COLLECTION_ID", defaults.patients_collection_id),
        records_collection_id=env.get("RECORDS_COLLECTION_ID", defaults.records_collection_id),
        bucket_id=env.get("BUCKET_ID") or None,
        ocr_url=env.get("OCR_URL", defaults.ocr_url),
        ocr_api_key=env.get("OCR_API_KEY") or None,
        extraction_provider=env.get("EXTRACTION_PROVIDER", defaults.extraction_provider).strip().lower(),
        prompt_url=env.get("PROMPT_URL", defaults.prompt_url),
        openai_api_key=env.get("OPENAI_API_KEY") or None,
        openai_model=env.get("OPENAI_MODEL", defaults.openai_model),
        geocoder_url=env.get("GEOCODER_URL", defaults.geocoder_url),
        geocoder_user_agent=env.get("GEOCODER_USER_AGENT", defaults.geocoder_user_agent),
        geocode_region=env.get("GEOCODE_REGION", defaults.geocode_region) or None,
        http_timeout=_number(env, "HTTP_TIMEOUT", defaults.http_timeout, float),
        link_attempts=_number(env, "LINK_ATTEMPTS", defaults.link_attempts, int),
        link_delay=_number(env, "LINK_DELAY", defaults.link_delay, float),
        poll_interval=_number(env, "POLL_INTERVAL", defaults.poll_interval, float),
        log_level=env.get("LOG_LEVEL", defaults.log_level).upper(),
    )
    return settings.validate()
