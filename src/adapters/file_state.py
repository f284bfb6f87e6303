"""File-backed state medium.

Implements the core StateMediumPort with an atomic replace so a crash during
a save never leaves a half-written state file behind.
"""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timezone
from typing import Optional


class FileStateMedium:
    """Reads and writes the serialized state file on local disk."""

    def __init__(self, path: str) -> None:
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    def read(self) -> Optional[bytes]:
        """Return the file contents, or None if the file does not exist yet."""

        try:
            with open(self._path, "rb") as handle:
                return handle.read()
        except FileNotFoundError:
            return None

    def modified_at(self) -> Optional[datetime]:
        try:
            return datetime.fromtimestamp(os.path.getmtime(self._path), tz=timezone.utc)
        except FileNotFoundError:
            return None

    def write(self, data: bytes) -> None:
        """Write to a temp file in the same directory, then swap it in."""

        directory = os.path.dirname(os.path.abspath(self._path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".state-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self._path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
