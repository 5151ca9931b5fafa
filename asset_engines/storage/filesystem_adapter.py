"""Filesystem-backed storage backend for ``local`` stores.

Provides durable blob storage under a configured root directory.
Location: {root_path}/{namespace}/{key}
"""
from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import Protocol, Union

from asset_engines.common.errors import (
    InvalidKey,
    ObjectNotFound,
    StoragePermissionDenied,
    TransientStorageError,
)

logger = logging.getLogger(__name__)

Content = Union[bytes, bytearray, memoryview]


class StorageBackend(Protocol):
    """Uniform blob read/write/delete over one physical medium."""

    def put(self, key: str, content: Content) -> None:
        """Store a blob under key, replacing any previous blob."""
        ...

    def get(self, key: str) -> bytes:
        """Return the blob stored under key; raise ObjectNotFound if absent."""
        ...

    def delete(self, key: str) -> None:
        """Delete the blob stored under key; raise ObjectNotFound if absent."""
        ...


def validate_key(key: str) -> PurePosixPath:
    """Reject keys that are empty, absolute, or contain traversal segments.

    Pure string checks; never touches the filesystem.
    """
    if not isinstance(key, str) or not key.strip():
        raise InvalidKey("storage key must be a non-empty string", details={"key": key})
    if "\x00" in key or "\\" in key:
        raise InvalidKey(f"storage key {key!r} contains forbidden characters", details={"key": key})
    path = PurePosixPath(key)
    if path.is_absolute() or key.startswith("~"):
        raise InvalidKey(f"storage key {key!r} must be relative", details={"key": key})
    if any(part == ".." for part in path.parts):
        raise InvalidKey(f"storage key {key!r} escapes the store root", details={"key": key})
    return path


class FileSystemStorageBackend:
    """Filesystem-backed blob store rooted at one directory.

    Key format: relative POSIX path; sub-directories are created on demand.
    """

    def __init__(self, root_path: Union[str, Path], namespace: str = "") -> None:
        root = Path(root_path).expanduser().resolve()
        if namespace:
            validate_key(namespace)
            root = root / namespace
        self._root = root
        self._root_str = os.path.normpath(str(root))

    @property
    def root(self) -> Path:
        return self._root

    def _blob_path(self, key: str) -> Path:
        """Full path to a blob file; rejects anything escaping the root."""
        validate_key(key)
        candidate = os.path.normpath(os.path.join(self._root_str, key))
        if candidate == self._root_str or os.path.commonpath([candidate, self._root_str]) != self._root_str:
            raise InvalidKey(f"storage key {key!r} escapes the store root", details={"key": key})
        return Path(candidate)

    def put(self, key: str, content: Content) -> None:
        blob_path = self._blob_path(key)
        tmp_name = None
        try:
            blob_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".upload-", dir=str(blob_path.parent))
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp_name, blob_path)
            tmp_name = None
        except PermissionError as exc:
            raise StoragePermissionDenied(
                f"permission denied writing {key!r}", details={"key": key}
            ) from exc
        except OSError as exc:
            logger.error("Failed to store blob %s: %s", key, exc)
            raise TransientStorageError(f"local store PUT failed for {key!r}: {exc}", details={"key": key}) from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning("Failed to remove temp file %s", tmp_name)

    def get(self, key: str) -> bytes:
        blob_path = self._blob_path(key)
        try:
            with open(blob_path, "rb") as f:
                return f.read()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
            raise ObjectNotFound(f"no object stored under {key!r}", details={"key": key}) from exc
        except PermissionError as exc:
            raise StoragePermissionDenied(
                f"permission denied reading {key!r}", details={"key": key}
            ) from exc
        except OSError as exc:
            logger.error("Failed to retrieve blob %s: %s", key, exc)
            raise TransientStorageError(f"local store GET failed for {key!r}: {exc}", details={"key": key}) from exc

    def delete(self, key: str) -> None:
        blob_path = self._blob_path(key)
        try:
            blob_path.unlink()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
            raise ObjectNotFound(f"no object stored under {key!r}", details={"key": key}) from exc
        except PermissionError as exc:
            raise StoragePermissionDenied(
                f"permission denied deleting {key!r}", details={"key": key}
            ) from exc
        except OSError as exc:
            logger.warning("Failed to delete blob %s: %s", key, exc)
            raise TransientStorageError(f"local store DELETE failed for {key!r}: {exc}", details={"key": key}) from exc
