# =============================================================================
# Instant Python Client -- Refresh Token Storage
# =============================================================================
#
# The client reads the refresh token once per session (sent with ``init``)
# and hands the user back after ``init-ok``.  It never looks inside the
# token.
# =============================================================================

from __future__ import annotations

import json
import os
import tempfile

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from ._logging import logger
from .errors import DecodingError
from .types import User


@runtime_checkable
class AuthProvider(Protocol):
    """Where the client gets and stores the session's refresh token."""

    def current_refresh_token(self) -> str | None: ...

    def persist(self, user: User) -> None: ...

    def clear(self) -> None: ...


class MemoryTokenStore:
    """Keeps the token for the life of the process."""

    def __init__(self, refresh_token: str | None = None) -> None:
        self._refresh_token = refresh_token
        self.user: User | None = None

    def current_refresh_token(self) -> str | None:
        return self._refresh_token

    def persist(self, user: User) -> None:
        self.user = user
        if user.refresh_token:
            self._refresh_token = user.refresh_token

    def clear(self) -> None:
        self._refresh_token = None
        self.user = None


class FileTokenStore:
    """Keeps the token and user in a JSON file across runs.

    File layout: ``{"refresh_token": "...", "user": {...}}``.  Writes go
    through a temp file and ``os.replace`` so a crash never leaves a
    truncated file behind.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise DecodingError(f"token file {self._path} is not valid JSON") from exc
        if not isinstance(data, dict):
            raise DecodingError(f"token file {self._path} must hold an object")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".instant-token-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def current_refresh_token(self) -> str | None:
        token = self._read().get("refresh_token")
        return token if isinstance(token, str) and token else None

    def load_user(self) -> User | None:
        raw = self._read().get("user")
        return User.from_wire(raw) if raw else None

    def persist(self, user: User) -> None:
        data = self._read()
        data["user"] = user.to_wire()
        if user.refresh_token:
            data["refresh_token"] = user.refresh_token
        self._write(data)
        logger.debug("Stored refresh token for user %s in %s", user.id, self._path)

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
