"""Gateway to Google's Gemini image models.

This module provides:
- Request bodies for text-to-image generation and multi-image editing
- Response parsing into a normalized :class:`EditResult`
- An asyncio-friendly :class:`GeminiGateway` used by the edit session
- Model discovery and API key validation

HTTP is done with the standard library; blocking calls are moved off the
event loop with :func:`asyncio.to_thread`.
"""
from __future__ import annotations

import asyncio
import http.client
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib import error, request

from .codec import ImageArtifact
from .config import (
    BLOCKING_FINISH_REASONS,
    DEFAULT_BASE_URL,
    DEFAULT_MIME_TYPE,
    DOWNLOAD_TIMEOUT_SECONDS,
    IMAGE_GENERATION_MODEL_PATTERNS,
    LIST_TIMEOUT_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    get_current_model,
)
from .errors import ContentBlocked, GatewayFailure, MissingCredential, MissingPrompt, NoImageReturned

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EditResult:
    """Normalized outcome of a generate or edit call."""
    image: Optional[str] = None
    note: Optional[str] = None


@dataclass
class ModelInfo:
    """Information about an available model."""
    name: str
    display_name: str
    description: str
    supported_generation_methods: List[str] = field(default_factory=list)
    input_token_limit: Optional[int] = None
    output_token_limit: Optional[int] = None


def require_api_key(api_key: Optional[str]) -> str:
    """Return the stripped key, or raise :class:`MissingCredential`."""
    key = api_key.strip() if isinstance(api_key, str) else ""
    if not key:
        raise MissingCredential()
    return key


def _require_prompt(prompt: Optional[str]) -> str:
    if not prompt or not isinstance(prompt, str) or not prompt.strip():
        raise MissingPrompt()
    return prompt


def build_url(*, base_url: str = DEFAULT_BASE_URL, model_id: str, stream: bool = False) -> str:
    """Build the API endpoint URL."""
    action = "streamGenerateContent" if stream else "generateContent"
    base = base_url.rstrip("/")
    return f"{base}/{model_id}:{action}"


def _build_generation_config(
    *,
    aspect_ratio: Optional[str] = None,
    generation_config: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    cfg: Dict[str, Any] = {
        **(generation_config or {}),
        "responseModalities": ["TEXT", "IMAGE"],
    }

    if aspect_ratio:
        image_cfg = cfg.setdefault("imageConfig", {})
        image_cfg["aspectRatio"] = aspect_ratio

    return cfg


def build_request_body(
    prompt: str,
    *,
    aspect_ratio: Optional[str] = None,
    generation_config: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build the request body for a text-to-image call."""
    _require_prompt(prompt)
    return {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": _build_generation_config(
            aspect_ratio=aspect_ratio,
            generation_config=generation_config,
        ),
    }


def build_edit_request_body(
    prompt: str,
    images: Sequence[ImageArtifact],
    *,
    aspect_ratio: Optional[str] = None,
    generation_config: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build the request body for editing one or more images.

    Args:
        prompt: Text description of the edit to make.
        images: Every image of the version being edited, in display order.
        aspect_ratio: Optional aspect ratio for the output image.
        generation_config: Optional additional generation configuration.

    Returns:
        Dictionary containing the request body for the API.
    """
    _require_prompt(prompt)
    if not images:
        raise ValueError("At least one image is required for an edit.")

    # Images first, in order, then the instruction that applies to all of them
    parts: List[Dict[str, Any]] = []
    for image in images:
        if not image.data:
            raise ValueError("Image data must not be empty.")
        parts.append(
            {
                "inlineData": {
                    "mimeType": image.mime_type or DEFAULT_MIME_TYPE,
                    "data": image.to_base64(),
                }
            }
        )
    parts.append({"text": prompt})

    return {
        "contents": [{"parts": parts}],
        "generationConfig": _build_generation_config(
            aspect_ratio=aspect_ratio,
            generation_config=generation_config,
        ),
    }


def _http_request_json(*, url: str, api_key: str, method: str, payload: Optional[Dict[str, Any]] = None,
                       timeout: int = LIST_TIMEOUT_SECONDS) -> Dict[str, Any]:
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    req = request.Request(
        url,
        data=data,
        headers={
            "Content-Type": "application/json",
            "x-goog-api-key": api_key,
        },
        method=method,
    )
    try:
        with request.urlopen(req, timeout=timeout) as resp:
            content = resp.read()
            return json.loads(content.decode("utf-8"))
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="ignore") if hasattr(exc, "read") else ""
        raise GatewayFailure(f"API error {exc.code}: {detail[:400]}", status=exc.code) from exc
    except error.URLError as exc:
        raise GatewayFailure(f"Network error: {exc}") from exc
    except (http.client.HTTPException, OSError, ValueError) as exc:
        raise GatewayFailure(f"Failed to read API response: {exc}") from exc


def _http_get_json(url: str, api_key: str) -> Dict[str, Any]:
    """Make an HTTP GET request and return JSON response."""
    return _http_request_json(url=url, api_key=api_key, method="GET", timeout=LIST_TIMEOUT_SECONDS)


def _http_post_json(url: str, payload: Dict[str, Any], api_key: str) -> Dict[str, Any]:
    """Make an HTTP POST request and return JSON response."""
    return _http_request_json(url=url, api_key=api_key, method="POST", payload=payload,
                              timeout=REQUEST_TIMEOUT_SECONDS)


def _http_get_bytes(url: str) -> Tuple[bytes, str]:
    """Download bytes from a URL."""
    req = request.Request(url, method="GET")
    try:
        with request.urlopen(req, timeout=DOWNLOAD_TIMEOUT_SECONDS) as resp:
            content_type = resp.headers.get("content-type", DEFAULT_MIME_TYPE)
            return resp.read(), content_type
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="ignore") if hasattr(exc, "read") else ""
        raise GatewayFailure(f"Download error {exc.code}: {detail[:200]}", status=exc.code) from exc
    except error.URLError as exc:
        raise GatewayFailure(f"Network error downloading: {exc}") from exc
    except (http.client.HTTPException, OSError) as exc:
        raise GatewayFailure(f"Failed to download image: {exc}") from exc


def _data_uri(mime_type: str, data_b64: str) -> str:
    return f"data:{mime_type};base64,{data_b64}"


def _as_dict(value: Any, what: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise GatewayFailure(f"Unexpected API response: {what} is not an object.")
    return value


def _as_list(value: Any, what: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise GatewayFailure(f"Unexpected API response: {what} is not a list.")
    return value


def _first_candidate(payload: Dict[str, Any]) -> Dict[str, Any]:
    candidates = _as_list(payload.get("candidates"), "candidates")
    return _as_dict(candidates[0], "candidate") if candidates else {}


def _blocked_reason(payload: Dict[str, Any]) -> Optional[str]:
    """Return the reason the model refused to answer, if it did."""
    feedback = _as_dict(payload.get("promptFeedback"), "promptFeedback")
    if feedback.get("blockReason"):
        return str(feedback["blockReason"])
    reason = _first_candidate(payload).get("finishReason")
    if reason in BLOCKING_FINISH_REASONS:
        return reason
    return None


def parse_response(payload: Dict[str, Any]) -> EditResult:
    """Turn a ``generateContent`` response into an :class:`EditResult`.

    The parts of the first candidate are scanned in order: a text part sets
    the note (the last one wins) and an image part sets the image.

    Raises:
        ContentBlocked: No image and the model reported a safety block.
        NoImageReturned: No image for any other reason.
        GatewayFailure: The response is not shaped like a ``generateContent``
            reply, or a referenced image could not be downloaded.
    """
    image: Optional[str] = None
    note: Optional[str] = None

    payload = _as_dict(payload, "response body")
    content = _as_dict(_first_candidate(payload).get("content"), "content")
    for part in _as_list(content.get("parts"), "parts"):
        part = _as_dict(part, "part")
        if part.get("text"):
            note = part["text"]
            continue
        inline = _as_dict(part.get("inlineData"), "inlineData")
        if inline.get("data"):
            image = _data_uri(inline.get("mimeType", DEFAULT_MIME_TYPE), inline["data"])
            continue
        file_data = _as_dict(part.get("fileData"), "fileData")
        target_url = file_data.get("fileUri") or part.get("url")
        if target_url:
            buffer, downloaded_mime = _http_get_bytes(target_url)
            image = _data_uri(
                file_data.get("mimeType") or downloaded_mime,
                ImageArtifact(data=buffer).to_base64(),
            )

    if image is None:
        reason = _blocked_reason(payload)
        if reason:
            raise ContentBlocked(reason)
        raise NoImageReturned()

    return EditResult(image=image, note=note)


class GeminiGateway:
    """Single-attempt generate/edit calls against the Gemini API."""

    def __init__(
        self,
        *,
        model_id: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        aspect_ratio: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._model_id = model_id
        self.base_url = base_url
        self.aspect_ratio = aspect_ratio
        self.generation_config = generation_config

    @property
    def model_id(self) -> str:
        """The pinned model, or the process-wide current model."""
        return self._model_id or get_current_model()

    def _post(self, body: Dict[str, Any], api_key: str) -> EditResult:
        url = build_url(base_url=self.base_url, model_id=self.model_id)
        logger.debug("POST %s", url)
        return parse_response(_http_post_json(url, body, api_key))

    def generate_sync(self, prompt: str, credential: Optional[str]) -> EditResult:
        """Blocking text-to-image call."""
        key = require_api_key(credential)
        body = build_request_body(
            prompt,
            aspect_ratio=self.aspect_ratio,
            generation_config=self.generation_config,
        )
        return self._post(body, key)

    def edit_sync(self, images: Sequence[ImageArtifact], prompt: str, credential: Optional[str]) -> EditResult:
        """Blocking image(s)+text-to-image call."""
        key = require_api_key(credential)
        body = build_edit_request_body(
            prompt,
            images,
            aspect_ratio=self.aspect_ratio,
            generation_config=self.generation_config,
        )
        return self._post(body, key)

    async def generate(self, prompt: str, credential: Optional[str]) -> EditResult:
        """Generate a new image from ``prompt``."""
        require_api_key(credential)
        return await asyncio.to_thread(self.generate_sync, prompt, credential)

    async def edit(self, images: Sequence[ImageArtifact], prompt: str, credential: Optional[str]) -> EditResult:
        """Edit ``images`` according to ``prompt``."""
        require_api_key(credential)
        return await asyncio.to_thread(self.edit_sync, list(images), prompt, credential)


def _is_image_generation_model(model: Dict[str, Any]) -> bool:
    """Check if a model supports image generation based on its properties."""
    name = model.get("name", "").lower()

    for pattern in IMAGE_GENERATION_MODEL_PATTERNS:
        if pattern.lower() in name:
            return True

    methods = model.get("supportedGenerationMethods", [])
    return "generateContent" in methods and "image" in name


def list_available_models(
    api_key: Optional[str],
    image_only: bool = True,
    *,
    base_url: str = DEFAULT_BASE_URL,
) -> List[ModelInfo]:
    """List available models from the Google AI API.

    Args:
        api_key: The API key to query with.
        image_only: If True, only return models that support image generation.
        base_url: Models endpoint.

    Returns:
        List of ModelInfo objects describing available models.
    """
    key = require_api_key(api_key)

    all_models: List[ModelInfo] = []
    page_token: Optional[str] = None

    while True:
        full_url = f"{base_url.rstrip('/')}?pageSize=100"
        if page_token:
            full_url += f"&pageToken={page_token}"

        response = _http_get_json(full_url, key)

        for model in response.get("models", []):
            if image_only and not _is_image_generation_model(model):
                continue

            # "models/gemini-2.5-flash-image" -> "gemini-2.5-flash-image"
            full_name = model.get("name", "")
            model_id = full_name.replace("models/", "") if full_name.startswith("models/") else full_name

            all_models.append(
                ModelInfo(
                    name=model_id,
                    display_name=model.get("displayName", model_id),
                    description=model.get("description", ""),
                    supported_generation_methods=model.get("supportedGenerationMethods", []),
                    input_token_limit=model.get("inputTokenLimit"),
                    output_token_limit=model.get("outputTokenLimit"),
                )
            )

        page_token = response.get("nextPageToken")
        if not page_token:
            break

    return all_models


def validate_api_key(api_key: Optional[str]) -> Dict[str, Any]:
    """Validate an API key by attempting to list models.

    Returns:
        Dictionary with validation result and available models count.
    """
    try:
        models = list_available_models(api_key, image_only=False)
    except MissingCredential as e:
        return {"valid": False, "error": str(e)}
    except GatewayFailure as e:
        return {"valid": False, "error": f"API validation failed: {e}"}

    image_models = [m for m in models if _is_image_generation_model({"name": f"models/{m.name}"})]
    return {
        "valid": True,
        "total_models": len(models),
        "image_models": len(image_models),
    }


__all__ = [
    "EditResult",
    "GeminiGateway",
    "ModelInfo",
    "build_edit_request_body",
    "build_request_body",
    "build_url",
    "list_available_models",
    "parse_response",
    "require_api_key",
    "validate_api_key",
]
