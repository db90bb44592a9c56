"""
Plist-backed key-value store for deferral state.

Each deferral domain lives in its own preferences plist, the same file
``defaults read``/``defaults write`` would address, so admins can inspect it
on the Mac. Writes replace the whole file atomically so readers never see a
half-updated record.
"""

from __future__ import annotations

import fcntl
import logging
import os
import plistlib
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional
from xml.parsers.expat import ExpatError


class PersistenceError(Exception):
    """Raised when the backing plist cannot be read or written."""


class PlistStore:
    """
    Key-value store over a single plist file.

    Supported value types are int and str (epoch timestamps are stored as int).
    """

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None):
        self.path = Path(path)
        self.logger = logger or logging.getLogger(__name__)

    def read_all(self) -> Dict[str, Any]:
        """
        Return the full contents of the plist.

        A missing file is an empty store.

        Raises:
            PersistenceError: if the file exists but cannot be parsed
        """
        if not self.path.exists():
            return {}
        try:
            with self.path.open("rb") as handle:
                data = plistlib.load(handle)
        except (OSError, plistlib.InvalidFileException, ExpatError, ValueError) as exc:
            raise PersistenceError(f"Failed to read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise PersistenceError(f"{self.path} does not contain a dictionary")
        return data

    def read(self, key: str) -> Optional[Any]:
        return self.read_all().get(key)

    def write(self, key: str, value: Any) -> None:
        self.update({key: value})

    def delete(self, key: str) -> None:
        self.update({}, deletions=[key])

    def update(self, values: Mapping[str, Any], deletions: Optional[list] = None) -> None:
        """
        Set and delete several keys in one atomic file replacement.

        Keys not mentioned are preserved; an unreadable file is replaced outright.
        """
        try:
            data = self.read_all()
        except PersistenceError as exc:
            self.logger.warning("Replacing unreadable store: %s", exc)
            data = {}
        data.update(values)
        for key in deletions or []:
            data.pop(key, None)
        self._replace(data)

    def _replace(self, data: Dict[str, Any]) -> None:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
            with os.fdopen(fd, "wb") as handle:
                plistlib.dump(data, handle, fmt=plistlib.FMT_BINARY)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, self.path)
            tmp_name = None
            self.logger.debug(f"Wrote {sorted(data)} to {self.path}")
        except (OSError, TypeError, OverflowError) as exc:
            raise PersistenceError(f"Failed to write {self.path}: {exc}") from exc
        finally:
            if tmp_name:
                Path(tmp_name).unlink(missing_ok=True)

    @contextmanager
    def locked(self) -> Iterator[None]:
        """
        Hold an exclusive lock on ``<plist>.lock`` for the duration of the block.
        """
        lock_path = self.path.with_name(self.path.name + ".lock")
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = lock_path.open("a")
        except OSError as exc:
            raise PersistenceError(f"Failed to open lock file {lock_path}: {exc}") from exc
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            self.logger.debug(f"Acquired lock {lock_path}")
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            handle.close()
