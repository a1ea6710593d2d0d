"""Image Editor MCP Server - conversational image editing with Gemini.

This package provides an edit session (version history, branch-on-edit,
multi-image versions) over Google's Gemini image models, and an MCP server
that exposes it to AI assistants.
"""

from .codec import ImageArtifact, decode, encode, infer_extension, read_image_file, read_upload
from .config import API_KEY_ENV, DEFAULT_MODEL_ID, get_current_model, set_current_model
from .credentials import KeyringCredentialStore, MemoryCredentialStore
from .errors import (
    ContentBlocked,
    EditorError,
    GatewayFailure,
    IndexOutOfRange,
    MalformedDataUri,
    MissingCredential,
    MissingPrompt,
    NoCurrentVersion,
    NoImageReturned,
    StaleResult,
    UnsupportedImage,
)
from .gateway import EditResult, GeminiGateway, list_available_models, validate_api_key
from .history import EditHistory, Version
from .session import DisplayState, EditSession, SessionPhase, derive_display_state

__all__ = [name for name in locals() if not name.startswith("_")]

__version__ = "1.0.0"
