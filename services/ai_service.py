"""
AI Field Extraction

Turns OCR text from a scanned intake form into structured patient and visit
fields. The provider (OpenAI, or the hosted prompt API) returns a loosely
shaped key/value bag; ``parse_raw_extraction`` maps it onto
``ExtractionResult``.
"""

import json
import logging
import re
from typing import Any, Optional

import requests
from openai import OpenAI, OpenAIError

from core.errors import ServiceError, Stage
from core.normalizers import canonicalize_date
from models.extraction import ExtractionResult

logger = logging.getLogger(__name__)


EXTRACTION_PROMPT = (
    "Extract patient information from the medical form text and return VALID JSON ONLY with these keys: "
    "`name`, `dateofbirth` (MM/DD/YYYY or ISO or null), `visited` (MM/DD/YYYY or ISO or null), "
    "`phone`, `email`, `bloodtype`, `gender`, `place`, `symptom1`, `symptom2`, `symptom3`, `summary`. "
    "If a field is missing, set it to null. Phone should contain digits (you may return formatted), "
    "email as a string if present, gender as 'Male'/'Female'/'Other' or null. Return JSON only."
)

EXPECTED_OUTPUT = {name: None for name in ExtractionResult.field_names()}

# Spellings providers have been seen to use, compared after _key() folding
FIELD_ALIASES = {
    "name": ("name", "fullname", "patientname"),
    "dateofbirth": ("dateofbirth", "dob", "birthdate", "birthday"),
    "visited": ("visited", "lastvisited", "visitdate", "recorddate", "date"),
    "phone": ("phone", "phonenumber", "contactnumber", "mobile"),
    "email": ("email", "contactemail", "emailaddress"),
    "bloodtype": ("bloodtype", "bloodgroup"),
    "gender": ("gender", "sex"),
    "place": ("place", "hospital", "location", "address", "city"),
    "symptom1": ("symptom1", "s1"),
    "symptom2": ("symptom2", "s2"),
    "symptom3": ("symptom3", "s3"),
    "summary": ("summary", "notes", "diagnosis"),
}

_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")


def _key(raw_key: Any) -> str:
    return re.sub(r"[\s_\-]+", "", str(raw_key)).lower()


def _decode(payload: Any) -> dict:
    """Best-effort conversion of a provider payload to a dict."""
    if isinstance(payload, dict):
        for wrapper in ("output", "result"):
            if wrapper in payload and payload[wrapper] is not None:
                return _decode(payload[wrapper])
        return payload
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="ignore")
    if isinstance(payload, str):
        try:
            return _decode(json.loads(payload))
        except ValueError:
            m = _JSON_BLOCK_RE.search(payload)
            if m:
                try:
                    return _decode(json.loads(m.group(0)))
                except ValueError:
                    pass
    return {}


def _value(v: Any) -> Optional[str]:
    if v is None:
        return None
    if isinstance(v, (list, tuple)):
        v = ", ".join(str(x) for x in v if x is not None)
    s = str(v).strip()
    if not s or s.lower() in {"null", "none", "n/a"}:
        return None
    return s


def parse_raw_extraction(raw: Any) -> ExtractionResult:
    """Map a provider response onto ``ExtractionResult``.

    ``raw`` may be a dict, a JSON string, or text with a JSON object embedded
    in it. Anything unreadable yields an all-empty result.
    """
    data = _decode(raw)
    folded = {}
    for k, v in data.items():
        folded.setdefault(_key(k), v)

    values = {}
    for field_name, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            found = _value(folded.get(alias))
            if found is not None:
                values[field_name] = found
                break
    return ExtractionResult(**values)


def normalize_extraction(result: ExtractionResult) -> ExtractionResult:
    """Canonicalize the date fields to MM-DD-YYYY where they parse."""
    return ExtractionResult(
        **{
            **result.to_dict(),
            "dateofbirth": canonicalize_date(result.dateofbirth),
            "visited": canonicalize_date(result.visited),
        }
    )


class OpenAIFieldExtractor:
    """Field extraction through an OpenAI chat completion in JSON mode."""

    def __init__(self, api_key: Optional[str], model: str = "gpt-4o-mini", timeout: float = 30.0, client=None):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> OpenAI:
        # Built on first use: OpenAI() refuses to construct without a key
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    def extract_fields(self, text: str) -> Any:
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": EXTRACTION_PROMPT},
                    {"role": "user", "content": text or ""},
                ],
                response_format={"type": "json_object"},
                temperature=0,
            )
        except OpenAIError as e:
            raise ServiceError(f"AI extraction failed: {e}", stage=Stage.EXTRACTION) from e
        content = completion.choices[0].message.content
        logger.debug("AI extraction returned %d characters", len(content or ""))
        return content or "{}"


class PromptApiFieldExtractor:
    """Field extraction through the hosted prompt endpoint."""

    def __init__(self, url: str, api_key: Optional[str] = None, timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def extract_fields(self, text: str) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        body = {"prompt": EXTRACTION_PROMPT, "content": text or "", "expected_output": EXPECTED_OUTPUT}
        try:
            response = self.session.post(self.url, headers=headers, json=body, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ServiceError(f"AI extraction failed: {e}", stage=Stage.EXTRACTION) from e
        # requests' JSONDecodeError is also a RequestException
        try:
            return response.json()
        except ValueError:
            # Some deployments answer with bare text; the parser copes with it
            return response.text
