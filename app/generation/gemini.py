"""Gemini generateContent client for image synthesis."""

import json
import logging
import time
from typing import Any, Dict, List, Literal, Optional, Union

import httpx
from pydantic import BaseModel, Field

from app.config import Settings
from app.errors import (
    InvalidRequestError,
    PayloadTooLargeError,
    UpstreamEmptyResultError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_MIME_TYPE = "image/png"


class InlineData(BaseModel):
    mime_type: str = Field(alias="mimeType")
    data: str

    model_config = {"populate_by_name": True}

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class InlineImagePart(BaseModel):
    type: Literal["inlineData"] = "inlineData"
    inline_data: InlineData = Field(alias="inlineData")

    model_config = {"populate_by_name": True}


Part = Union[TextPart, InlineImagePart]


def image_part(mime_type: str, data: str) -> InlineImagePart:
    return InlineImagePart(inline_data=InlineData(mime_type=mime_type, data=data))


def _to_wire(part: Part) -> Dict[str, Any]:
    if isinstance(part, TextPart):
        return {"text": part.text}
    if isinstance(part, InlineImagePart):
        return {
            "inlineData": {
                "mimeType": part.inline_data.mime_type,
                "data": part.inline_data.data,
            }
        }
    raise InvalidRequestError(f"Unsupported part type: {type(part).__name__}")


def extract_inline_image(body: Any) -> Optional[InlineData]:
    """First inline image found across all candidates, or None."""
    if not isinstance(body, dict):
        return None
    for candidate in body.get("candidates") or []:
        content = candidate.get("content") if isinstance(candidate, dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            continue
        for part in parts:
            if not isinstance(part, dict):
                continue
            inline = part.get("inlineData") or part.get("inline_data")
            if not isinstance(inline, dict):
                continue
            mime_type = inline.get("mimeType") or inline.get("mime_type")
            data = inline.get("data")
            if mime_type and data:
                return InlineData(mime_type=mime_type, data=data)
    return None


def extract_error_message(body: Any) -> str:
    if not isinstance(body, dict):
        return ""
    error = body.get("error")
    if isinstance(error, str):
        return error
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    feedback = body.get("promptFeedback")
    entries = feedback if isinstance(feedback, list) else [feedback]
    for entry in entries:
        if isinstance(entry, dict) and entry.get("blockReason"):
            return (
                f"Request was blocked. Reason: {entry['blockReason']}. "
                f"{entry.get('blockReasonMessage') or ''}"
            ).strip()
    return ""


def estimate_image_job_cost(parts: List[Part], cost_per_image: float) -> float:
    images = sum(1 for part in parts if isinstance(part, InlineImagePart))
    return round(images * cost_per_image, 4)


class GeminiImageClient:
    """Issues one generateContent call and returns the image as a data URL.

    No retries happen here: an error response, a transport failure, or a
    response without an inline image all raise.
    """

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient,
        default_model: str = "gemini-2.5-flash-image-preview",
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        max_request_bytes: int = 20 * 1024 * 1024,
        timeout: float = 120.0,
    ):
        self._api_key = api_key
        self._client = client
        self.default_model = default_model
        self._api_base = api_base.rstrip("/")
        self._max_request_bytes = max_request_bytes
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient) -> "GeminiImageClient":
        return cls(
            api_key=settings.gemini_api_key or "",
            client=client,
            default_model=settings.gemini_model,
            api_base=settings.gemini_api_base,
            max_request_bytes=settings.gemini_max_request_bytes,
            timeout=settings.gemini_timeout_seconds,
        )

    def build_request_body(
        self,
        parts: List[Part],
        generation_config: Optional[Dict[str, Any]] = None,
        safety_settings: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """Validate parts and assemble the request body.

        Raises InvalidRequestError for an empty part list and
        PayloadTooLargeError when the serialized body exceeds the ceiling.
        Nothing is sent over the network here.
        """
        if not parts:
            raise InvalidRequestError("Request must include at least one content part.")

        body: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [_to_wire(p) for p in parts]}],
            "generationConfig": {
                "responseMimeType": DEFAULT_RESPONSE_MIME_TYPE,
                **(generation_config or {}),
            },
        }
        if safety_settings is not None:
            body["safetySettings"] = safety_settings

        size = len(json.dumps(body).encode("utf-8"))
        if size > self._max_request_bytes:
            max_mb = self._max_request_bytes // (1024 * 1024)
            raise PayloadTooLargeError(
                f"Request payload too large. Maximum size is {max_mb}MB."
            )
        return body

    async def generate_image(
        self,
        parts: List[Part],
        model: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
        safety_settings: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        model = model or self.default_model
        body = self.build_request_body(parts, generation_config, safety_settings)
        url = f"{self._api_base}/models/{model}:generateContent"

        text_preview = [p.text[:80] for p in parts if isinstance(p, TextPart)][:5]
        logger.info(
            "Starting Gemini generateContent (model=%s, parts=%d, text=%s)",
            model,
            len(parts),
            text_preview,
        )

        started = time.monotonic()
        try:
            response = await self._client.post(
                url,
                params={"key": self._api_key},
                json=body,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            logger.error("Gemini request failed before a response: %s", exc)
            raise UpstreamError(f"Gemini request failed: {exc}") from exc
        latency_ms = int((time.monotonic() - started) * 1000)

        try:
            response_body = response.json()
        except ValueError:
            response_body = {}

        if not response.is_success:
            message = (
                extract_error_message(response_body)
                or f"Gemini API returned status {response.status_code}."
            )
            logger.error(
                "Gemini returned %d after %dms: %s",
                response.status_code,
                latency_ms,
                message,
            )
            raise UpstreamError(message, status_code=response.status_code)

        image = extract_inline_image(response_body)
        if image is None:
            logger.error(
                "Gemini response had no image payload (model=%s, %dms)",
                model,
                latency_ms,
            )
            raise UpstreamEmptyResultError("Gemini API did not return an image result.")

        logger.info("Gemini generateContent succeeded in %dms", latency_ms)
        return image.to_data_url()
