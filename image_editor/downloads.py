"""Saving images from the session to disk."""
from __future__ import annotations

from pathlib import Path

from .codec import decode, infer_extension


def version_filename(index: int, mime_type: str) -> str:
    """``edited-original.png`` for index 0, ``edited-v<index+1>.<ext>`` after."""
    version = "original" if index == 0 else f"v{index + 1}"
    return f"edited-{version}{infer_extension(mime_type)}"


def result_filename(mime_type: str) -> str:
    return f"edited-image{infer_extension(mime_type)}"


def write_image_to_file(buffer: bytes, target_path: "Path | str") -> Path:
    """Write image bytes to a file, creating directories as needed."""
    if not isinstance(buffer, (bytes, bytearray)):
        raise TypeError("Expected bytes for image buffer.")
    path = Path(target_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(buffer)
    return path


def download(data_uri: str, directory: "Path | str", suggested_name: str) -> Path:
    """Decode ``data_uri`` and save it as ``directory/suggested_name``."""
    artifact = decode(data_uri, suggested_name)
    return write_image_to_file(artifact.data, Path(directory) / (artifact.filename or suggested_name))


__all__ = ["download", "result_filename", "version_filename", "write_image_to_file"]
