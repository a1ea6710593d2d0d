"""Version history for an edit session.

:class:`EditHistory` keeps every version of the image being edited in one
flat list with a cursor pointing at the version currently selected. Editing
from an earlier version discards everything after the cursor before the new
result is appended, so history stays linear; there is no tree to maintain.

Index 0 is always the original. ``current_index`` is ``-1`` only while the
history is empty and is a valid index after every operation otherwise.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from .codec import ImageArtifact
from .errors import IndexOutOfRange, NoCurrentVersion

logger = logging.getLogger(__name__)


def _new_version_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Version:
    """One node of edit history.

    ``prompt_used`` is the prompt that was applied to *this* version to
    produce the next one; it stays ``None`` until such an edit succeeds.
    """
    images: List[ImageArtifact]
    prompt_used: Optional[str] = None
    id: str = field(default_factory=_new_version_id)


def _as_image_list(images: Iterable[ImageArtifact]) -> List[ImageArtifact]:
    items = list(images)
    if not items:
        raise ValueError("A version needs at least one image.")
    return items


class EditHistory:
    """Ordered, branch-on-edit version history with a cursor."""

    def __init__(self) -> None:
        self._versions: List[Version] = []
        self._current_index = -1
        self._revision = 0

    def __len__(self) -> int:
        return len(self._versions)

    @property
    def versions(self) -> Tuple[Version, ...]:
        return tuple(self._versions)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def revision(self) -> int:
        """Counter bumped by every mutation; used to detect stale results."""
        return self._revision

    @property
    def is_empty(self) -> bool:
        return not self._versions

    @property
    def current_version(self) -> Optional[Version]:
        if self._current_index < 0:
            return None
        return self._versions[self._current_index]

    @property
    def original(self) -> Optional[Version]:
        return self._versions[0] if self._versions else None

    def find(self, version_id: str) -> Optional[Version]:
        return next((v for v in self._versions if v.id == version_id), None)

    def _touch(self) -> None:
        self._revision += 1

    def _check_index(self, index: int) -> None:
        if not isinstance(index, int) or not 0 <= index < len(self._versions):
            raise IndexOutOfRange(
                f"Version index {index} is out of range (history has {len(self._versions)} versions)."
            )

    def append_initial(self, images: Iterable[ImageArtifact]) -> Version:
        """Start a new version, or add to the selected one.

        With no version selected, the images become a new version which is
        then selected. Otherwise they are appended to the selected version
        (see :meth:`extend_current`).
        """
        items = _as_image_list(images)
        if self._current_index != -1:
            return self.extend_current(items)

        version = Version(images=items)
        self._versions.append(version)
        self._current_index = len(self._versions) - 1
        self._touch()
        logger.debug("Appended version %s at index %d", version.id, self._current_index)
        return version

    def extend_current(self, images: Iterable[ImageArtifact]) -> Version:
        """Append ``images`` to the selected version."""
        version = self.current_version
        if version is None:
            raise NoCurrentVersion()
        version.images.extend(_as_image_list(images))
        self._touch()
        return version

    def commit_edit(self, produced_image: ImageArtifact, prompt_text: str) -> Version:
        """Record a successful edit of the selected version.

        Versions after the cursor are discarded, ``prompt_text`` is stamped on
        the edited version and the produced image becomes a new, selected
        version at the end of history.
        """
        edited = self.current_version
        if edited is None:
            raise NoCurrentVersion()

        dropped = len(self._versions) - (self._current_index + 1)
        del self._versions[self._current_index + 1:]
        edited.prompt_used = prompt_text

        version = Version(images=[produced_image])
        self._versions.append(version)
        self._current_index = len(self._versions) - 1
        self._touch()
        if dropped:
            logger.debug("Edit branched from index %d, discarded %d version(s)", self._current_index - 1, dropped)
        return version

    def commit_fresh_generation(self, produced_image: ImageArtifact, prompt_text: str) -> Version:
        """Replace all history with a single generated version."""
        version = Version(images=[produced_image], prompt_used=prompt_text)
        self._versions = [version]
        self._current_index = 0
        self._touch()
        return version

    def revert(self, index: int) -> Version:
        """Select the version at ``index`` without changing history."""
        self._check_index(index)
        if index != self._current_index:
            self._current_index = index
            self._touch()
        return self._versions[index]

    def reset_to_original(self) -> None:
        """Keep only the original version and select it; no-op when empty."""
        if not self._versions:
            return
        del self._versions[1:]
        self._current_index = 0
        self._touch()

    def remove_version(self, index: int) -> Version:
        """Remove the version at ``index`` and repair the cursor."""
        self._check_index(index)
        removed = self._versions.pop(index)
        if not self._versions:
            self._current_index = -1
        elif self._current_index >= index:
            self._current_index = max(0, self._current_index - 1)
        self._touch()
        return removed

    def remove_image_from_version(self, version_index: int, image_index: int) -> None:
        """Remove one image; removing a version's last image removes the version."""
        self._check_index(version_index)
        images = self._versions[version_index].images
        if not isinstance(image_index, int) or not 0 <= image_index < len(images):
            raise IndexOutOfRange(
                f"Image index {image_index} is out of range (version has {len(images)} images)."
            )
        if len(images) == 1:
            self.remove_version(version_index)
            return
        del images[image_index]
        self._touch()

    def clear(self) -> None:
        self._versions = []
        self._current_index = -1
        self._touch()


__all__ = ["EditHistory", "Version"]
