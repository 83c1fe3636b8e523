"""HTTP transport for the Gemini ``generateContent`` endpoint.

Errors are classified from the structured error body the API returns
(HTTP status, ``error.status`` and ``error.details[].reason``) rather than by
searching the message text.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from panorama.services.errors import ConfigError, GenerationError

logger = logging.getLogger(__name__)

_CREDENTIAL_STATUSES = {"UNAUTHENTICATED", "PERMISSION_DENIED"}
_CREDENTIAL_REASONS = {"API_KEY_INVALID", "API_KEY_SERVICE_BLOCKED", "API_KEY_HTTP_REFERRER_BLOCKED"}


@dataclass(slots=True)
class InlineImage:
    """Image part of a model reply."""

    mime_type: str
    data: bytes


@dataclass(slots=True)
class GeminiResponse:
    """Parsed reply: every image part plus the concatenated text parts."""

    images: List[InlineImage] = field(default_factory=list)
    text: Optional[str] = None


def inline_part(data: bytes, mime_type: str) -> Dict[str, Any]:
    """Build an inline image part for a request payload."""
    return {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(data).decode("ascii")}}


def text_part(text: str) -> Dict[str, Any]:
    return {"text": text}


class GeminiImageClient:
    """Thin wrapper around ``requests`` for image-capable Gemini models."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def generate_content(
        self,
        model: str,
        parts: List[Dict[str, Any]],
        api_key: Optional[str],
    ) -> GeminiResponse:
        """Send one request and return the parsed reply."""
        if not api_key:
            raise ConfigError("API key was not provided.")

        url = f"{self.base_url}/models/{model}:generateContent"
        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"responseModalities": ["IMAGE", "TEXT"]},
        }
        headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}

        logger.info("Calling %s with %d part(s)", model, len(parts))
        try:
            response = self._session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise GenerationError(f"Request to {model} failed: {exc}") from exc

        if response.status_code != 200:
            raise self._classify_error(response)

        try:
            body = response.json()
        except ValueError as exc:
            raise GenerationError("Model reply is not valid JSON", status_code=response.status_code) from exc

        return self._parse_response(body)

    # Internal helpers ---------------------------------------------------------
    def _classify_error(self, response: requests.Response) -> Exception:
        status_code = response.status_code
        try:
            error = response.json().get("error", {})
        except (ValueError, AttributeError):
            error = {}
        if not isinstance(error, dict):
            error = {}

        status = str(error.get("status") or "")
        reasons = {
            str(detail.get("reason"))
            for detail in error.get("details") or []
            if isinstance(detail, dict) and detail.get("reason")
        }
        message = str(error.get("message") or response.text[:512])

        if status_code in (401, 403) or status in _CREDENTIAL_STATUSES or reasons & _CREDENTIAL_REASONS:
            return ConfigError(f"Credential rejected ({status_code} {status}): {message}")
        return GenerationError(f"Model call failed ({status_code} {status}): {message}", status_code=status_code)

    def _parse_response(self, body: Dict[str, Any]) -> GeminiResponse:
        feedback = body.get("promptFeedback") or {}
        block_reason = feedback.get("blockReason")
        if block_reason:
            raise GenerationError(f"Prompt was blocked: {block_reason}")

        result = GeminiResponse()
        texts: List[str] = []
        candidates = body.get("candidates") or []
        if not candidates:
            return result

        content = candidates[0].get("content") or {}
        for part in content.get("parts") or []:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                try:
                    data = base64.b64decode(inline["data"])
                except (binascii.Error, ValueError) as exc:
                    raise GenerationError(f"Model returned corrupt image data: {exc}") from exc
                result.images.append(InlineImage(mime_type=mime_type, data=data))
            elif part.get("text"):
                texts.append(part["text"])

        if texts:
            result.text = "\n".join(texts)
        return result
