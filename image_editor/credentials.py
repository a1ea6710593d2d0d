"""API key persistence.

The key is the only state that outlives a session. It is kept in the OS
keychain through ``keyring``; an environment variable (or ``.env`` entry)
takes precedence when present.
"""
from __future__ import annotations

import logging
import os
from typing import Optional, Protocol

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .config import API_KEY_ENV, keyring_account, keyring_service

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Flat string persistence for the API key."""

    def load(self) -> Optional[str]: ...

    def save(self, value: str) -> None: ...

    def clear(self) -> None: ...


class KeyringCredentialStore:
    """Store the key in the OS keychain."""

    def __init__(self, service: Optional[str] = None, account: Optional[str] = None) -> None:
        self.service = service or keyring_service()
        self.account = account or keyring_account()

    def load(self) -> Optional[str]:
        try:
            stored = keyring.get_password(self.service, self.account)
        except KeyringError as exc:
            logger.warning("Unable to read API key from keychain: %s", exc)
            return None
        if stored and stored.strip():
            return stored.strip()
        return None

    def save(self, value: str) -> None:
        try:
            keyring.set_password(self.service, self.account, value)
        except KeyringError as exc:
            # the key still lives in the session, it just won't survive a restart
            logger.warning("Unable to store API key in keychain: %s", exc)

    def clear(self) -> None:
        try:
            keyring.delete_password(self.service, self.account)
        except PasswordDeleteError:
            # nothing stored
            pass
        except KeyringError as exc:
            logger.warning("Unable to remove API key from keychain: %s", exc)


class MemoryCredentialStore:
    """Keep the key in process memory only."""

    def __init__(self, value: Optional[str] = None) -> None:
        self._value = value

    def load(self) -> Optional[str]:
        return self._value

    def save(self, value: str) -> None:
        self._value = value

    def clear(self) -> None:
        self._value = None


def resolve_initial_credential(store: CredentialStore) -> Optional[str]:
    """Get the startup API key from the environment, then from ``store``."""
    key = os.getenv(API_KEY_ENV)
    if key and key.strip():
        return key.strip()
    return store.load()


__all__ = [
    "CredentialStore",
    "KeyringCredentialStore",
    "MemoryCredentialStore",
    "resolve_initial_credential",
]
