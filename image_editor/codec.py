"""Conversions between raw image bytes and ``data:`` URIs.

Images move through the session either as :class:`ImageArtifact` objects
(bytes plus MIME type, as stored in history and sent to the model) or as
self-describing data URIs (as returned by the model and shown to clients).
"""
from __future__ import annotations

import base64
import binascii
import io
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .config import DEFAULT_MIME_TYPE
from .errors import MalformedDataUri, UnsupportedImage

_DATA_URI_RE = re.compile(
    r"^data:(?P<mime>image/[A-Za-z0-9._+-]+)(?P<params>(?:;[A-Za-z0-9.+-]+=[^;,]*)*);base64,(?P<data>.*)$",
    re.DOTALL | re.IGNORECASE,
)

EXT_TO_MIME = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
}


@dataclass(frozen=True)
class ImageArtifact:
    """A binary image payload with its MIME type."""
    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE
    filename: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")


def infer_extension(mime_type: str = DEFAULT_MIME_TYPE) -> str:
    """Get file extension from MIME type."""
    mapping = {
        "image/png": ".png",
        "image/jpeg": ".jpg",
        "image/webp": ".webp",
        "image/gif": ".gif",
    }
    return mapping.get(mime_type.lower(), ".png")


def encode(artifact: ImageArtifact) -> str:
    """Return ``artifact`` as a ``data:<mime>;base64,<payload>`` URI."""
    if not isinstance(artifact.data, (bytes, bytearray)):
        raise TypeError("Expected bytes for image buffer.")
    return f"data:{artifact.mime_type};base64,{artifact.to_base64()}"


def decode(data_uri: str, suggested_filename: Optional[str] = None) -> ImageArtifact:
    """Parse a data URI back into an :class:`ImageArtifact`.

    Args:
        data_uri: A ``data:image/<subtype>;base64,...`` string.
        suggested_filename: Name hint for the artifact. When it has no
            extension, one is derived from the MIME type.

    Raises:
        MalformedDataUri: If the string is not a base64 image data URI or the
            payload is empty or not valid base64.
    """
    if not data_uri or not isinstance(data_uri, str):
        raise MalformedDataUri("Data URI is required and must be a string.")

    match = _DATA_URI_RE.match(data_uri.strip())
    if not match:
        raise MalformedDataUri(f"Not a base64 image data URI: {data_uri[:40]!r}")

    payload = match.group("data")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedDataUri(f"Unable to decode image data: {exc}") from exc
    if not data:
        raise MalformedDataUri("Data URI carries an empty payload.")

    mime_type = match.group("mime")
    filename = None
    if suggested_filename:
        filename = suggested_filename
        if not Path(suggested_filename).suffix:
            filename += infer_extension(mime_type)
    return ImageArtifact(data=data, mime_type=mime_type, filename=filename)


def sniff_mime_type(data: bytes) -> str:
    """Identify the image format of ``data`` using Pillow."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            fmt = image.format
    except (UnidentifiedImageError, OSError) as exc:
        raise UnsupportedImage(f"Unable to identify image data: {exc}") from exc
    mime = Image.MIME.get(fmt or "")
    if not mime:
        raise UnsupportedImage(f"Unsupported image format: {fmt}")
    return mime


def read_upload(data: bytes, filename: Optional[str] = None) -> ImageArtifact:
    """Turn an uploaded blob into an artifact, detecting its MIME type."""
    if not isinstance(data, (bytes, bytearray)) or not data:
        raise UnsupportedImage("Uploaded image is empty.")
    return ImageArtifact(data=bytes(data), mime_type=sniff_mime_type(data), filename=filename)


def read_image_file(image_path: "Path | str") -> ImageArtifact:
    """Read an image file from disk.

    Raises:
        FileNotFoundError: If the image file doesn't exist.
        UnsupportedImage: If the file type is not supported.
    """
    path = Path(image_path)
    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {path}")

    ext = path.suffix.lower()
    if ext not in EXT_TO_MIME:
        raise UnsupportedImage(f"Unsupported image format: {ext}. Supported: {', '.join(EXT_TO_MIME.keys())}")

    return ImageArtifact(data=path.read_bytes(), mime_type=EXT_TO_MIME[ext], filename=path.name)


__all__ = [
    "EXT_TO_MIME",
    "ImageArtifact",
    "decode",
    "encode",
    "infer_extension",
    "read_image_file",
    "read_upload",
    "sniff_mime_type",
]
