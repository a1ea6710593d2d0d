"""Error taxonomy for the edit session.

Each error also derives from the builtin exception that describes the same
situation, so callers that only know about ``ValueError``/``RuntimeError``
keep working.
"""
from __future__ import annotations

from typing import Optional


class EditorError(Exception):
    """Base class for every error raised by the image editor."""


class MissingCredential(EditorError, ValueError):
    """No API key is configured."""

    def __init__(self, message: str = "Missing API key. Set an API key before editing images.") -> None:
        super().__init__(message)


class MissingPrompt(EditorError, ValueError):
    """The edit instruction is empty."""

    def __init__(self, message: str = "Please provide an editing prompt.") -> None:
        super().__init__(message)


class ContentBlocked(EditorError, RuntimeError):
    """The model refused the request on safety grounds."""

    def __init__(self, reason: str = "SAFETY") -> None:
        self.reason = reason
        super().__init__(
            f"The request was blocked due to safety settings ({reason}). Please modify your prompt."
        )


class NoImageReturned(EditorError, RuntimeError):
    """The model answered without an image part."""

    def __init__(self, message: str = "The API did not return an image.") -> None:
        super().__init__(message)


class GatewayFailure(EditorError, RuntimeError):
    """Transport, HTTP or authentication failure talking to the model."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        self.status = status
        super().__init__(message)


class MalformedDataUri(EditorError, ValueError):
    """A string is not a base64 ``data:image/...`` URI."""


class UnsupportedImage(EditorError, ValueError):
    """Uploaded bytes or file could not be recognised as an image."""


class IndexOutOfRange(EditorError, IndexError):
    """A version or image index does not address an existing entry."""


class NoCurrentVersion(EditorError, LookupError):
    """An operation needs a selected version but history is empty."""

    def __init__(self, message: str = "No version is currently selected for editing.") -> None:
        super().__init__(message)


class StaleResult(EditorError, RuntimeError):
    """History changed while an edit request was in flight."""

    def __init__(
        self,
        message: str = "History changed while the request was in progress; the result was discarded.",
    ) -> None:
        super().__init__(message)


__all__ = [
    "ContentBlocked",
    "EditorError",
    "GatewayFailure",
    "IndexOutOfRange",
    "MalformedDataUri",
    "MissingCredential",
    "MissingPrompt",
    "NoCurrentVersion",
    "NoImageReturned",
    "StaleResult",
    "UnsupportedImage",
]
