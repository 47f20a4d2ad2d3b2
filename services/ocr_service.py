"""
OCR adapter for scanned intake forms.

Posts the image to the vision OCR endpoint and returns the recognised text
with whitespace collapsed. An empty string is a valid answer.
"""

import logging
from typing import Optional

import requests

from core.errors import ServiceError, Stage
from core.normalizers import clean_text

logger = logging.getLogger(__name__)


class HttpOcrClient:
    def __init__(self, url: str, api_key: Optional[str] = None, timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def extract_text(self, content: bytes, filename: str = "form.png") -> str:
        headers = {"x-api-key": self.api_key} if self.api_key else {}
        try:
            response = self.session.post(
                self.url,
                headers=headers,
                files={"file": (filename, content)},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise ServiceError(f"OCR request failed: {e}", stage=Stage.OCR) from e
        try:
            body = response.json()
        except ValueError as e:
            raise ServiceError("OCR service returned invalid JSON", stage=Stage.OCR) from e

        if not isinstance(body, dict):
            return ""
        text = clean_text(body.get("text") or body.get("ocrText") or "")
        logger.info("OCR returned %d characters", len(text))
        return text
