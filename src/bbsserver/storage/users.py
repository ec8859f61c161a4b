"""
User credential storage.

Credentials are kept as ``{"username": "salt$hash"}`` in a small JSON file.
The whole file is rewritten after each registration; with a handful of BBS
users that is simpler than any incremental format.
"""

import hashlib
import hmac
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

from ..errors import RegistrationError


logger = logging.getLogger(__name__)

HASH_ITERATIONS = 100_000


def hash_password(password: str, salt: Optional[bytes] = None) -> str:
    """Return ``"<salt hex>$<pbkdf2-sha256 hex>"`` for a password."""
    salt = salt if salt is not None else os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, HASH_ITERATIONS)
    return f"{salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    salt_hex, sep, _ = stored.partition("$")
    if not sep:
        return False
    try:
        salt = bytes.fromhex(salt_hex)
    except ValueError:
        return False
    return hmac.compare_digest(hash_password(password, salt), stored)


def validate_username(username: str) -> None:
    """Raise RegistrationError if the name cannot be used on the board."""
    if not username or not username.strip():
        raise RegistrationError("username must not be blank")
    if any(ch.isspace() for ch in username) or ":" in username:
        raise RegistrationError("username must not contain spaces or ':'")
    if username.lower() == "register":
        raise RegistrationError("'register' is reserved")


class UserStore(ABC):
    """Interface the login phase uses to check and create accounts."""

    @abstractmethod
    def authenticate(self, username: str, password: str) -> bool:
        """True if the username exists and the password matches."""

    @abstractmethod
    def register(self, username: str, password: str) -> None:
        """Create an account. Raises RegistrationError on failure."""

    @abstractmethod
    def exists(self, username: str) -> bool:
        """True if the account exists."""


class MemoryUserStore(UserStore):
    """User store held in memory only."""

    def __init__(self):
        self._lock = threading.Lock()
        self._users: Dict[str, str] = {}

    def authenticate(self, username: str, password: str) -> bool:
        with self._lock:
            stored = self._users.get(username)
        return stored is not None and verify_password(password, stored)

    def register(self, username: str, password: str) -> None:
        validate_username(username)
        if not password:
            raise RegistrationError("password must not be blank")
        hashed = hash_password(password)
        with self._lock:
            if username in self._users:
                raise RegistrationError(f"username {username!r} is taken")
            self._users[username] = hashed
            self._persist(dict(self._users))
        logger.info(f"Registered user {username}")

    def exists(self, username: str) -> bool:
        with self._lock:
            return username in self._users

    def _persist(self, users: Dict[str, str]) -> None:
        """Hook called with the lock held after an account is added."""


class JsonUserStore(MemoryUserStore):
    """User store persisted to a JSON file."""

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read user store {self.path}: {e}")
            return
        if not isinstance(data, dict):
            logger.warning(f"Ignoring user store {self.path}: expected a JSON object")
            return
        with self._lock:
            self._users = {str(k): str(v) for k, v in data.items()}
        logger.info(f"Loaded {len(self._users)} users from {self.path}")

    def _persist(self, users: Dict[str, str]) -> None:
        try:
            self.path.write_text(json.dumps(users, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not save user store {self.path}: {e}")
