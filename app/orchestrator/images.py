"""Resolve image references into inline (MIME type + base64) payloads."""

import base64
import binascii
import io
import logging
import re
from typing import List, Optional

import httpx
from PIL import Image, UnidentifiedImageError

from app.errors import UpstreamError
from app.generation.gemini import InlineData

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/png"
_DATA_URL = re.compile(r"^data:(?P<mime>[^;,]+);base64,(?P<data>.*)$", re.IGNORECASE | re.DOTALL)
_BASE64 = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")
_SNIFF_CHARS = 64 * 1024


class ImageResolutionError(UpstreamError):
    pass


def is_data_url(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.strip().lower().startswith("data:")


def is_remote_url(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(re.match(r"^https?://", value.strip(), re.IGNORECASE))


def is_probably_base64(value: Optional[str]) -> bool:
    if not isinstance(value, str) or not value:
        return False
    compact = re.sub(r"\s+", "", value)
    return len(compact) % 4 == 0 and bool(_BASE64.match(compact))


def sniff_mime_type(content: bytes, fallback: str = DEFAULT_MIME_TYPE) -> str:
    try:
        with Image.open(io.BytesIO(content)) as img:
            return Image.MIME.get(img.format, fallback)
    except (UnidentifiedImageError, OSError, ValueError):
        return fallback


def _sniff_base64(data: str) -> str:
    head = re.sub(r"\s+", "", data)[:_SNIFF_CHARS]
    head = head[: len(head) - len(head) % 4]
    try:
        return sniff_mime_type(base64.b64decode(head))
    except (binascii.Error, ValueError):
        return DEFAULT_MIME_TYPE


def parse_inline(value: Optional[str]) -> Optional[InlineData]:
    """Inline payload from a data URL or bare base64 string, else None."""
    if not isinstance(value, str) or not value.strip():
        return None
    trimmed = value.strip()
    match = _DATA_URL.match(trimmed)
    if match:
        return InlineData(mime_type=match.group("mime"), data=match.group("data"))
    if is_probably_base64(trimmed):
        return InlineData(mime_type=_sniff_base64(trimmed), data=re.sub(r"\s+", "", trimmed))
    return None


def _content_type(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    mime = header.split(";", 1)[0].strip()
    return mime if "/" in mime else None


class ImageResolver:
    def __init__(self, client: httpx.AsyncClient, timeout: float = 15.0):
        self._client = client
        self._timeout = timeout

    async def fetch(self, url: str) -> InlineData:
        try:
            response = await self._client.get(url, follow_redirects=True, timeout=self._timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ImageResolutionError(
                f"Image server returned {exc.response.status_code} for {url}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ImageResolutionError(f"Failed to fetch image {url}: {exc}") from exc

        content = response.content
        if not content:
            raise ImageResolutionError(f"Image at {url} is empty")
        mime_type = _content_type(response.headers.get("content-type"))
        if not mime_type or not mime_type.startswith("image/"):
            mime_type = sniff_mime_type(content)
        return InlineData(mime_type=mime_type, data=base64.b64encode(content).decode("ascii"))

    async def resolve(
        self,
        primary: Optional[str],
        fallback_url: Optional[str] = None,
        label: str = "image",
    ) -> InlineData:
        """Prefer an inline payload, then try each remote source in order.

        Raises ImageResolutionError naming every failed source when nothing
        yields an image.
        """
        inline = parse_inline(primary)
        if inline is not None:
            return inline

        sources: List[str] = []
        if is_remote_url(primary):
            sources.append(primary.strip())
        if is_remote_url(fallback_url) and fallback_url.strip() not in sources:
            sources.append(fallback_url.strip())

        failures = []
        for source in sources:
            try:
                fetched = await self.fetch(source)
            except ImageResolutionError as exc:
                logger.warning("Could not fetch %s from %s: %s", label, source, exc)
                failures.append(str(exc))
                continue
            logger.info("Fetched %s from %s (%s)", label, source, fetched.mime_type)
            return fetched

        if not failures:
            raise ImageResolutionError(f"No usable source for {label}")
        raise ImageResolutionError(f"Unable to resolve {label}: {'; '.join(failures)}")
