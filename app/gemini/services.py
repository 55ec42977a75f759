import logging
import random
import time
from typing import Any, Callable, Dict, Optional, Protocol

from google.api_core import exceptions
from google.genai import errors as genai_errors
from google.genai import types

from app.core.config import settings
from app.core.observability import log_outbound_call
from app.services.exceptions import ExtractionModelError
from .client import get_client

logger = logging.getLogger("app.gemini")

# 503 (overloaded) and 429 (rate limit / quota) are worth waiting out
_RETRYABLE_CODES = {429, 503}


class ExtractionModel(Protocol):
    def generate(
        self,
        instruction: str,
        data: bytes,
        mime_type: str,
        response_schema: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
    ) -> str:
        ...


def _is_retryable(e: Exception) -> bool:
    if isinstance(e, (exceptions.ServiceUnavailable, exceptions.ResourceExhausted)):
        return True
    if isinstance(e, genai_errors.APIError):
        return getattr(e, "code", None) in _RETRYABLE_CODES
    return False


class GeminiExtractionModel:
    """Document-to-JSON extraction with Gemini in JSON mode."""

    def __init__(
        self,
        model: Optional[str] = None,
        max_retries: Optional[int] = None,
        client: Any = None,
        sleep: Callable[[float], None] = time.sleep,
        correlation_id: Optional[str] = None,
    ):
        self.model = model or settings.GEMINI_MODEL
        self.max_retries = max_retries if max_retries is not None else settings.GEMINI_MAX_RETRIES
        self._client = client
        self._sleep = sleep
        self.correlation_id = correlation_id

    @property
    def client(self):
        if self._client is None:
            self._client = get_client()
        return self._client

    def generate(
        self,
        instruction: str,
        data: bytes,
        mime_type: str,
        response_schema: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
    ) -> str:
        """Send the document and instruction; return the raw response text."""
        config = types.GenerateContentConfig(
            system_instruction=instruction,
            response_mime_type="application/json",
            **({"response_schema": response_schema} if response_schema else {}),
        )
        contents = [
            types.Part.from_bytes(data=data, mime_type=mime_type),
            "Extract the fields described in the instructions from this document.",
        ]

        for attempt in range(self.max_retries):
            try:
                response = log_outbound_call(
                    "gemini", self.model, "generate_content", self.correlation_id,
                    lambda: self.client.models.generate_content(model=self.model, contents=contents, config=config),
                    job_id=job_id,
                )
                return response.text or ""

            except Exception as e:
                if not _is_retryable(e):
                    logger.error(
                        "Gemini call failed",
                        extra={"correlation_id": self.correlation_id, "job_id": job_id, "model": self.model, "error": str(e)}
                    )
                    raise
                wait = (2 ** attempt) + random.random()
                logger.warning(
                    f"Gemini unavailable or rate limited, retrying in {wait:.1f}s ({attempt + 1}/{self.max_retries})",
                    extra={"correlation_id": self.correlation_id, "job_id": job_id, "model": self.model, "error": str(e)}
                )
                self._sleep(wait)

        raise ExtractionModelError(self.model, "max retries reached, model still unavailable", correlation_id=self.correlation_id)
