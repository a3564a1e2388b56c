"""
MIT License — Try-On image generation (FastAPI)
Inline image helpers: user photo parsing and product image fetching.
"""

import io
import base64
import binascii
import logging
from typing import Optional

import httpx
from PIL import Image, UnidentifiedImageError

from tryonapi.types import InlineImage

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"


class ImageFetchError(Exception):
    pass


def sniff_mime_type(raw: bytes) -> Optional[str]:
    """Identify the image format of raw bytes, or None if Pillow can't."""
    try:
        with Image.open(io.BytesIO(raw)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError):
        return None
    if not fmt:
        return None
    return Image.MIME.get(fmt)


def parse_user_photo(value: str) -> InlineImage:
    """Accept either a data URL (data:image/png;base64,...) or raw base64."""
    value = value.strip()
    if value.startswith("data:") and "," in value:
        header, data = value.split(",", 1)
        mime_type = header[len("data:"):].split(";", 1)[0].strip()
        return InlineImage(mime_type=mime_type or DEFAULT_MIME_TYPE, data=data)

    try:
        raw = base64.b64decode(value)
    except (binascii.Error, ValueError):
        # Left to the provider to reject
        logger.warning("User photo is not valid base64, sending as-is")
        return InlineImage(mime_type=DEFAULT_MIME_TYPE, data=value)

    return InlineImage(mime_type=sniff_mime_type(raw) or DEFAULT_MIME_TYPE, data=value)


def _header_mime_type(response: httpx.Response) -> Optional[str]:
    content_type = response.headers.get("content-type", "")
    mime_type = content_type.split(";", 1)[0].strip().lower()
    if mime_type.startswith("image/"):
        return mime_type
    return None


async def fetch_product_image(client: httpx.AsyncClient, url: str) -> InlineImage:
    logger.info(f"Fetching product image: {url}")
    response = await client.get(url, follow_redirects=True)

    if not response.is_success:
        raise ImageFetchError(
            f"Failed to fetch product image: {response.status_code} {response.reason_phrase}"
        )

    content = response.content
    mime_type = _header_mime_type(response) or sniff_mime_type(content) or DEFAULT_MIME_TYPE
    logger.info(f"Fetched product image: {len(content)} bytes, {mime_type}")

    return InlineImage(
        mime_type=mime_type,
        data=base64.b64encode(content).decode("ascii"),
    )
