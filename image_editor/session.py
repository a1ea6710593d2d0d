"""Edit session controller.

:class:`EditSession` mediates between a front end (the MCP tools in
:mod:`image_editor.server`, or tests) and the pieces doing the work: the
version history, the Gemini gateway, the image codec and the credential
store. Every user action goes through one method which returns the
resulting :class:`DisplayState`. Errors never escape these methods; they are
recorded and shown through ``DisplayState.last_error``.

What a client shows is never stored directly. It is recomputed by
:func:`derive_display_state` from the history, the outcome of the last
successful request and the few raw inputs (prompt text, busy flag, error).
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Tuple, Union

from . import codec
from .codec import ImageArtifact
from .credentials import CredentialStore, MemoryCredentialStore, resolve_initial_credential
from .downloads import download, result_filename, version_filename
from .errors import (
    EditorError,
    GatewayFailure,
    IndexOutOfRange,
    MissingCredential,
    MissingPrompt,
    NoImageReturned,
    StaleResult,
)
from .gateway import EditResult, GeminiGateway
from .history import EditHistory, Version

logger = logging.getLogger(__name__)

Upload = Union[bytes, bytearray, ImageArtifact]


class SessionPhase(enum.Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"


@dataclass(frozen=True)
class EditOutcome:
    """The last successful request and the version it produced."""
    source_version_id: Optional[str]
    produced_version_id: str
    image: str
    note: Optional[str] = None


@dataclass(frozen=True)
class DisplayState:
    """What a client should show; derived, never edited in place."""
    images_before: Tuple[str, ...]
    image_after: Optional[str]
    note_after: Optional[str]
    pending_prompt: str
    busy: bool
    last_error: Optional[str]
    current_index: int
    version_labels: Tuple[str, ...]
    has_credential: bool

    @property
    def version_count(self) -> int:
        return len(self.version_labels)


def version_label(index: int) -> str:
    return "Original" if index == 0 else f"V{index + 1}"


def _encoded(version: Optional[Version]) -> Tuple[str, ...]:
    if version is None:
        return ()
    return tuple(codec.encode(image) for image in version.images)


def derive_display_state(
    history: EditHistory,
    outcome: Optional[EditOutcome],
    *,
    pending_prompt: str = "",
    busy: bool = False,
    error: Optional[str] = None,
    has_credential: bool = False,
) -> DisplayState:
    """Compute the display from history and the last outcome.

    While the selected version is the product of ``outcome`` the display
    compares the edited version ("before") with the result ("after").
    Otherwise it shows the selected version alone.
    """
    current = history.current_version
    before = current
    image_after = None
    note_after = None
    if outcome is not None and current is not None and current.id == outcome.produced_version_id:
        image_after = outcome.image
        note_after = outcome.note
        if outcome.source_version_id is None:
            before = None
        else:
            before = history.find(outcome.source_version_id) or current

    return DisplayState(
        images_before=_encoded(before),
        image_after=image_after,
        note_after=note_after,
        pending_prompt=pending_prompt,
        busy=busy,
        last_error=error,
        current_index=history.current_index,
        version_labels=tuple(version_label(i) for i in range(len(history))),
        has_credential=has_credential,
    )


class EditSession:
    """Single-user edit session over one :class:`EditHistory`."""

    def __init__(
        self,
        gateway: Optional[GeminiGateway] = None,
        credential_store: Optional[CredentialStore] = None,
        *,
        history: Optional[EditHistory] = None,
    ) -> None:
        self._gateway = gateway or GeminiGateway()
        self._store: CredentialStore = credential_store or MemoryCredentialStore()
        self.history = history or EditHistory()
        self._credential = resolve_initial_credential(self._store)
        self._phase = SessionPhase.IDLE
        self._outcome: Optional[EditOutcome] = None
        self._error: Optional[str] = None
        self._pending_prompt = ""

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def busy(self) -> bool:
        return self._phase is SessionPhase.SUBMITTING

    @property
    def has_credential(self) -> bool:
        return bool(self._credential)

    @property
    def credential(self) -> Optional[str]:
        return self._credential

    @property
    def last_error(self) -> Optional[str]:
        return self._error

    @property
    def pending_prompt(self) -> str:
        return self._pending_prompt

    @property
    def last_outcome(self) -> Optional[EditOutcome]:
        return self._outcome

    @property
    def display_state(self) -> DisplayState:
        return derive_display_state(
            self.history,
            self._outcome,
            pending_prompt=self._pending_prompt,
            busy=self.busy,
            error=self._error,
            has_credential=self.has_credential,
        )

    def _record_error(self, exc: Exception, prefix: str = "") -> None:
        self._error = f"{prefix}{exc}"
        logger.info("Session error: %s", self._error)

    def _run(self, action: Callable[[], None]) -> bool:
        """Run a history action, resetting the derived display on success."""
        try:
            action()
        except (EditorError, ValueError) as exc:
            self._record_error(exc)
            return False
        self._outcome = None
        self._error = None
        return True

    # Credential lifecycle

    def set_credential(self, api_key: str) -> DisplayState:
        """Set or replace the API key and persist it."""
        key = api_key.strip() if isinstance(api_key, str) else ""
        if not key:
            self._record_error(MissingCredential())
            return self.display_state
        self._store.save(key)
        self._credential = key
        self._error = None
        return self.display_state

    def clear_credential(self) -> DisplayState:
        """Forget the API key; history cannot be trusted without it."""
        self._store.clear()
        self._credential = None
        self.history.clear()
        self._outcome = None
        self._error = None
        self._pending_prompt = ""
        return self.display_state

    # User actions

    def set_pending_prompt(self, text: str) -> DisplayState:
        self._pending_prompt = text or ""
        return self.display_state

    def upload(self, files: Iterable[Upload]) -> DisplayState:
        """Add uploaded images.

        With no version selected the files become a new version; otherwise
        they are added to the selected version.
        """
        def _action() -> None:
            artifacts = [
                item if isinstance(item, ImageArtifact) else codec.read_upload(item)
                for item in files
            ]
            self.history.append_initial(artifacts)

        self._run(_action)
        return self.display_state

    async def submit(self, prompt: Optional[str] = None) -> DisplayState:
        """Send the selected version (or just the prompt) to the model.

        ``prompt`` replaces the pending prompt text when given. Only one
        request can be in flight; a call made while one is running is
        ignored.
        """
        if self._phase is SessionPhase.SUBMITTING:
            logger.warning("Submit ignored: a request is already in progress")
            return self.display_state

        if prompt is not None:
            self._pending_prompt = prompt
        text = self._pending_prompt

        if not self._credential:
            self._record_error(MissingCredential())
            return self.display_state
        if not text or not text.strip():
            self._record_error(MissingPrompt())
            return self.display_state

        self._phase = SessionPhase.SUBMITTING
        self._outcome = None
        self._error = None
        source = self.history.current_version
        revision = self.history.revision
        try:
            if source is not None and source.images:
                result = await self._gateway.edit(list(source.images), text, self._credential)
            else:
                result = await self._gateway.generate(text, self._credential)
            self._commit(result, source, text, revision)
        except EditorError as exc:
            self._record_error(exc, prefix="Failed to generate image: ")
        except (ValueError, RuntimeError, OSError) as exc:
            logger.exception("Unexpected gateway error")
            self._record_error(GatewayFailure(str(exc)), prefix="Failed to generate image: ")
        finally:
            self._phase = SessionPhase.IDLE
        return self.display_state

    def _commit(self, result: EditResult, source: Optional[Version], text: str, revision: int) -> None:
        if self.history.revision != revision:
            raise StaleResult()
        if not result.image:
            raise NoImageReturned()

        if source is None:
            produced = codec.decode(result.image, "edited-original")
            version = self.history.commit_fresh_generation(produced, text)
        else:
            index = self.history.current_index + 1
            produced = codec.decode(result.image, f"edited-v{index + 1}")
            version = self.history.commit_edit(produced, text)

        self._outcome = EditOutcome(
            source_version_id=source.id if source is not None else None,
            produced_version_id=version.id,
            image=result.image,
            note=result.note,
        )
        self._pending_prompt = ""
        logger.info("Committed version %d of %d", self.history.current_index + 1, len(self.history))

    def revert_to(self, index: int) -> DisplayState:
        """Select an earlier version and pre-fill the prompt used on it."""
        if self._run(lambda: self.history.revert(index)):
            self._pending_prompt = self.history.versions[index].prompt_used or ""
        return self.display_state

    def reset_to_original(self) -> DisplayState:
        if self._run(self.history.reset_to_original):
            self._pending_prompt = ""
        return self.display_state

    def remove_version(self, index: int) -> DisplayState:
        self._run(lambda: self.history.remove_version(index))
        return self.display_state

    def remove_image_from_version(self, version_index: int, image_index: int) -> DisplayState:
        self._run(lambda: self.history.remove_image_from_version(version_index, image_index))
        return self.display_state

    def clear_all(self) -> DisplayState:
        if self._run(self.history.clear):
            self._pending_prompt = ""
        return self.display_state

    # Downloads

    def download_version(self, index: int, directory: "Path | str", image_index: int = 0) -> Optional[Path]:
        """Save one image of a version, named after its position in history."""
        try:
            if not 0 <= index < len(self.history):
                raise IndexOutOfRange(f"Version index {index} is out of range.")
            version = self.history.versions[index]
            if not 0 <= image_index < len(version.images):
                raise IndexOutOfRange(
                    f"Image index {image_index} is out of range (version has {len(version.images)} images)."
                )
            image = version.images[image_index]
            return download(codec.encode(image), directory, version_filename(index, image.mime_type))
        except EditorError as exc:
            self._record_error(exc)
        except OSError as exc:
            self._record_error(exc, prefix="Failed to save image: ")
        return None

    def download_result(self, directory: "Path | str") -> Optional[Path]:
        """Save the image produced by the last successful request."""
        try:
            if self._outcome is None:
                raise NoImageReturned("No edited image is available to download.")
            artifact = codec.decode(self._outcome.image)
            return download(self._outcome.image, directory, result_filename(artifact.mime_type))
        except EditorError as exc:
            self._record_error(exc)
        except OSError as exc:
            self._record_error(exc, prefix="Failed to save image: ")
        return None


__all__ = [
    "DisplayState",
    "EditOutcome",
    "EditSession",
    "SessionPhase",
    "derive_display_state",
    "version_label",
]
