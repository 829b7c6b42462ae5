"""Image encoding for inline display.

Images are embedded in event records as ``data:`` URIs so a record is
self-contained and needs no external storage.
"""

import base64
import binascii
import mimetypes
from pathlib import Path
from typing import Optional, Tuple, Union

import structlog

from bhandara.exceptions import ImageEncodingError


logger = structlog.get_logger(__name__)

DEFAULT_MAX_IMAGE_BYTES = 10 * 1024 * 1024

# (prefix, offset, mime type)
_SIGNATURES = [
    (b"\x89PNG\r\n\x1a\n", 0, "image/png"),
    (b"\xff\xd8\xff", 0, "image/jpeg"),
    (b"GIF87a", 0, "image/gif"),
    (b"GIF89a", 0, "image/gif"),
    (b"BM", 0, "image/bmp"),
]


def detect_image_type(data: bytes) -> Optional[str]:
    """Guess an image mime type from its leading bytes."""
    for signature, offset, mime_type in _SIGNATURES:
        if data[offset:offset + len(signature)] == signature:
            return mime_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def encode_image(
    data: bytes,
    mime_type: Optional[str] = None,
    max_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
) -> str:
    """Encode raw image bytes as a base64 data URI.

    Args:
        data: Image content
        mime_type: Declared type; detected from the content when omitted
        max_bytes: Largest accepted payload

    Returns:
        A ``data:<mime>;base64,<payload>`` string

    Raises:
        ImageEncodingError: if the payload is empty, too large or not an image
    """
    if not data:
        raise ImageEncodingError("Image is empty")
    if len(data) > max_bytes:
        raise ImageEncodingError(f"Image is {len(data)} bytes, limit is {max_bytes} bytes")

    mime_type = mime_type or detect_image_type(data)
    if mime_type is None:
        raise ImageEncodingError("Unrecognized image format")
    if not mime_type.startswith("image/"):
        raise ImageEncodingError(f"Not an image type: {mime_type}")

    payload = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{payload}"


def encode_image_file(path: Union[str, Path], max_bytes: int = DEFAULT_MAX_IMAGE_BYTES) -> str:
    """Read an image file and encode it as a data URI."""
    path = Path(path)
    try:
        size = path.stat().st_size
        if size > max_bytes:
            raise ImageEncodingError(f"Image is {size} bytes, limit is {max_bytes} bytes")
        data = path.read_bytes()
    except OSError as e:
        raise ImageEncodingError(f"Cannot read image {path}: {e}") from e

    guessed, _ = mimetypes.guess_type(path.name)
    if guessed is None or not guessed.startswith("image/"):
        guessed = detect_image_type(data)

    logger.debug("Encoding image file", path=str(path), size=len(data), mime_type=guessed)
    return encode_image(data, guessed, max_bytes=max_bytes)


def decode_data_uri(uri: str) -> Tuple[str, bytes]:
    """Split a base64 data URI into its mime type and raw bytes.

    Raises:
        ImageEncodingError: if the URI is not a base64 data URI
    """
    if not uri.startswith("data:") or "," not in uri:
        raise ImageEncodingError("Not a data URI")

    header, payload = uri[len("data:"):].split(",", 1)
    parts = header.split(";")
    if "base64" not in parts[1:]:
        raise ImageEncodingError("Only base64 data URIs are supported")

    mime_type = parts[0] or "text/plain"
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageEncodingError(f"Invalid base64 payload: {e}") from e
    return mime_type, data


def is_image_data_uri(uri: str) -> bool:
    return uri.startswith("data:image/") and ";base64," in uri
