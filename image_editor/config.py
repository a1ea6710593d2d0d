"""Configuration for the image editor session.

Settings come from module constants and environment variables. For local
development, ``.env`` and ``.env.local`` in the project root are read once at
import time; variables already present in the environment win.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

# Environment variable name for the Google AI API key
API_KEY_ENV = "GOOGLE_AI_API_KEY"
MODEL_ENV = "IMAGEN_MODEL_ID"
KEYRING_SERVICE_ENV = "IMAGE_EDITOR_KEYRING_SERVICE"
KEYRING_ACCOUNT_ENV = "IMAGE_EDITOR_KEYRING_ACCOUNT"

DEFAULT_KEYRING_SERVICE = "image-editor-mcp"
DEFAULT_KEYRING_ACCOUNT = "GOOGLE_AI_API_KEY"

# Developer overrides, read from the project root
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
DOTENV_CANDIDATES = [
    _PROJECT_ROOT / ".env",
    _PROJECT_ROOT / ".env.local",
]

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MIME_TYPE = "image/png"
DEFAULT_MODEL_ID = "gemini-2.5-flash-image-preview"

REQUEST_TIMEOUT_SECONDS = 120
LIST_TIMEOUT_SECONDS = 30
DOWNLOAD_TIMEOUT_SECONDS = 60

# Name fragments of models that can return images
IMAGE_GENERATION_MODEL_PATTERNS = [
    "gemini-2.0-flash-exp-image",
    "gemini-2.0-flash-preview-image",
    "gemini-2.5-flash-preview-image",
    "gemini-2.5-flash-image",
    "gemini-3-pro-image",
    "image-generation",
]

# finishReason values that mean the model refused to produce content
BLOCKING_FINISH_REASONS = frozenset(
    {"SAFETY", "IMAGE_SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"}
)


class _ModelSelection:  # pylint: disable=too-few-public-methods
    """Model chosen at runtime with ``set_image_model``; unset until then."""

    __slots__ = ("model_id",)

    def __init__(self) -> None:
        self.model_id: Optional[str] = None

    def resolve(self) -> str:
        return self.model_id or os.getenv(MODEL_ENV) or DEFAULT_MODEL_ID


_state = _ModelSelection()


def get_current_model() -> str:
    """Model used for requests: runtime choice, then ``IMAGEN_MODEL_ID``, then the default."""
    return _state.resolve()


def set_current_model(model_id: str) -> None:
    """Pin the model for subsequent edit and generate requests."""
    if not isinstance(model_id, str) or not model_id.strip():
        raise ValueError("Model name is required and must be a string.")
    _state.model_id = model_id.strip()


def keyring_service() -> str:
    return os.getenv(KEYRING_SERVICE_ENV) or DEFAULT_KEYRING_SERVICE


def keyring_account() -> str:
    return os.getenv(KEYRING_ACCOUNT_ENV) or DEFAULT_KEYRING_ACCOUNT


def _parse_env_line(raw: str) -> Optional[tuple]:
    line = raw.strip()
    if line.startswith("export "):
        line = line[len("export "):].lstrip()
    if not line or line.startswith("#") or "=" not in line:
        return None
    name, value = (part.strip() for part in line.split("=", 1))
    value = value.strip('"').strip("'")
    if not name or not value:
        return None
    return name, value


def load_dotenv_files(paths=DOTENV_CANDIDATES) -> list:
    """Copy ``NAME=value`` pairs from ``paths`` into ``os.environ``.

    Files that do not exist or cannot be read are skipped. Variables that are
    already set are left alone, so the real environment always wins.

    Returns:
        The names that were set.
    """
    loaded = []
    for path in paths:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError:
            continue
        for raw in text.splitlines():
            entry = _parse_env_line(raw)
            if entry is None or entry[0] in os.environ:
                continue
            os.environ[entry[0]] = entry[1]
            loaded.append(entry[0])
    return loaded


load_dotenv_files()

__all__ = [name for name in globals() if not name.startswith("_")]
__all__.append("_state")
