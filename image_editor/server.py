"""MCP server for conversational image editing with Google's Gemini models.

This server exposes one edit session to AI agents via MCP. Images are
uploaded (or generated from a prompt), edited with natural-language
instructions, and every result is kept in a version history that can be
reverted, trimmed and downloaded.
"""
from __future__ import annotations

import base64
import binascii
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastmcp import FastMCP

from .codec import ImageArtifact, read_image_file, read_upload
from .config import API_KEY_ENV, get_current_model, set_current_model
from .credentials import KeyringCredentialStore
from .errors import EditorError
from .gateway import list_available_models, validate_api_key
from .session import DisplayState, EditSession

# Log level and banner are set by run_server.main
mcp = FastMCP("Image Editor - Gemini Edit Session")

# Single process-wide session, created on first use
_session: Optional[EditSession] = None


def get_session() -> EditSession:
    global _session  # pylint: disable=global-statement
    if _session is None:
        _session = EditSession(credential_store=KeyringCredentialStore())
    return _session


def _state_payload(state: DisplayState, *, include_images: bool = False) -> Dict[str, Any]:
    history = get_session().history
    versions = [
        {
            "index": index,
            "label": state.version_labels[index],
            "id": version.id,
            "image_count": len(version.images),
            "prompt_used": version.prompt_used,
            "mime_types": [image.mime_type for image in version.images],
        }
        for index, version in enumerate(history.versions)
    ]
    payload: Dict[str, Any] = {
        "success": state.last_error is None,
        "current_index": state.current_index,
        "version_count": state.version_count,
        "versions": versions,
        "pending_prompt": state.pending_prompt,
        "busy": state.busy,
        "api_key_configured": state.has_credential,
        "note": state.note_after,
        "has_result": state.image_after is not None,
        "model": get_current_model(),
    }
    if state.last_error is not None:
        payload["error"] = state.last_error
    if include_images:
        payload["images_before"] = list(state.images_before)
        payload["image_after"] = state.image_after
    return payload


def _wrap_tool(fn: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
    """Execute a tool handler and normalize common error handling."""
    try:
        return fn()
    except (EditorError, ValueError, RuntimeError, OSError) as exc:  # noqa: PERF203 safe surface errors
        return {"success": False, "error": str(exc)}


@mcp.tool()
def upload_images(paths: List[str]) -> dict:
    """Upload one or more image files into the edit session.

    With no version selected, the files start a new version (the
    "Original"). When a version is selected, the files are added to it so
    the next edit sees all of them together.

    Args:
        paths: Image file paths. Supported formats: PNG, JPEG, WebP, GIF.

    Returns:
        The session state (see get_session_state).
    """
    def _run():
        if not paths or not isinstance(paths, list):
            raise ValueError("paths must be a non-empty list of image paths.")
        artifacts: List[ImageArtifact] = [read_image_file(p) for p in paths]
        return _state_payload(get_session().upload(artifacts))

    return _wrap_tool(_run)


@mcp.tool()
def upload_image_base64(image_base64: str, filename: Optional[str] = None) -> dict:
    """Upload a base64-encoded image into the edit session.

    Args:
        image_base64: Base64-encoded image bytes (no data: prefix).
        filename: Optional original file name.
    """
    def _run():
        try:
            data = base64.b64decode(image_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"Unable to decode image data: {exc}") from exc
        return _state_payload(get_session().upload([read_upload(data, filename)]))

    return _wrap_tool(_run)


@mcp.tool()
async def submit_prompt(prompt: Optional[str] = None) -> dict:
    """Apply an edit instruction to the selected version.

    With a version selected, all of its images are sent with the prompt and
    the result becomes a new version. If an earlier version was selected,
    later versions are discarded first. With nothing uploaded, the prompt
    generates a brand new image which becomes the Original.

    Args:
        prompt: The edit instruction. Defaults to the pending prompt
                (see set_prompt and revert_to_version).

    Returns:
        The session state; "note" carries any text the model returned.
    """
    state = await get_session().submit(prompt)
    return _state_payload(state)


@mcp.tool()
def set_prompt(prompt: str) -> dict:
    """Set the pending prompt without submitting it."""
    return _state_payload(get_session().set_pending_prompt(prompt))


@mcp.tool()
def revert_to_version(index: int) -> dict:
    """Select an earlier version for editing.

    The pending prompt is pre-filled with the prompt previously applied to
    that version. Nothing is discarded until the next successful edit.
    """
    return _state_payload(get_session().revert_to(index))


@mcp.tool()
def reset_to_original() -> dict:
    """Discard every version except the Original and select it."""
    return _state_payload(get_session().reset_to_original())


@mcp.tool()
def remove_version(index: int) -> dict:
    """Remove one version from history."""
    return _state_payload(get_session().remove_version(index))


@mcp.tool()
def remove_image_from_version(version_index: int, image_index: int) -> dict:
    """Remove one image from a version; removing its last image removes the version."""
    return _state_payload(get_session().remove_image_from_version(version_index, image_index))


@mcp.tool()
def clear_session() -> dict:
    """Empty the history."""
    return _state_payload(get_session().clear_all())


@mcp.tool()
def get_session_state(include_images: bool = False) -> dict:
    """Describe the edit session.

    Args:
        include_images: Also return the "before" images and the latest result
                        as data URIs. These can be large.

    Returns:
        A dictionary containing:
        - success: False when the last action failed
        - current_index: Index of the selected version (-1 when empty)
        - versions: index, label, image count and prompt of each version
        - pending_prompt: Text that submit_prompt will use by default
        - note: Text returned by the model with the latest result
        - error: Message of the last failure (if any)
    """
    session = get_session()
    return _state_payload(session.display_state, include_images=include_images)


@mcp.tool()
def download_version(index: int, output_dir: str, image_index: int = 0) -> dict:
    """Save an image of a version to disk.

    Files are named edited-original.<ext> for the Original and
    edited-v<N>.<ext> for later versions.
    """
    session = get_session()
    saved = session.download_version(index, output_dir, image_index)
    if saved is None:
        return {"success": False, "error": session.last_error}
    return {"success": True, "saved_path": str(Path(saved).absolute())}


@mcp.tool()
def download_result(output_dir: str) -> dict:
    """Save the latest edited image to disk as edited-image.<ext>."""
    session = get_session()
    saved = session.download_result(output_dir)
    if saved is None:
        return {"success": False, "error": session.last_error}
    return {"success": True, "saved_path": str(Path(saved).absolute())}


@mcp.tool()
def set_api_key(api_key: str) -> dict:
    """Set (or replace) the Google AI API key and store it in the OS keychain."""
    return _state_payload(get_session().set_credential(api_key))


@mcp.tool()
def clear_api_key() -> dict:
    """Forget the stored API key. The edit history is cleared as well."""
    return _state_payload(get_session().clear_credential())


@mcp.tool()
def check_api_status() -> dict:
    """Report whether an API key is configured and accepted by the API.

    Returns:
        success, api_key_configured, api_key_valid and current_model; for a
        valid key also total_models and image_models, otherwise an error or
        a hint on how to configure one.
    """
    session = get_session()
    status: Dict[str, Any] = {
        "success": True,
        "api_key_configured": session.has_credential,
        "api_key_valid": False,
        "current_model": get_current_model(),
    }
    if not session.has_credential:
        status["message"] = f"No API key configured. Use set_api_key or set the {API_KEY_ENV} environment variable."
        return status

    validation = validate_api_key(session.credential)
    if not validation.get("valid"):
        status["error"] = validation.get("error", "Unknown validation error")
        return status
    status.update(
        api_key_valid=True,
        total_models=validation.get("total_models", 0),
        image_models=validation.get("image_models", 0),
        message="API key is valid and working.",
    )
    return status



@mcp.tool()
def list_image_models() -> dict:
    """List image generation models available to the configured API key."""
    def _run():
        models = list_available_models(get_session().credential, image_only=True)
        model_list = [
            {
                "name": m.name,
                "display_name": m.display_name,
                "description": m.description[:200] + "..." if len(m.description) > 200 else m.description,
            }
            for m in models
        ]
        return {
            "success": True,
            "models": model_list,
            "current_model": get_current_model(),
            "count": len(model_list),
        }

    return _wrap_tool(_run)


@mcp.tool()
def set_image_model(model_name: str) -> dict:
    """Set the model used for subsequent edits (see list_image_models)."""
    def _run():
        set_current_model(model_name)
        current = get_current_model()
        return {
            "success": True,
            "model": current,
            "message": f"Model set to '{current}'.",
        }

    return _wrap_tool(_run)


if __name__ == "__main__":
    mcp.run(show_banner=False, log_level="WARNING")


__all__ = [name for name in globals() if not name.startswith("_")]
