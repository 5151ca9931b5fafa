from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from asset_engines.common.errors import (
    InvalidKey,
    ObjectNotFound,
    StoragePermissionDenied,
    TransientStorageError,
)
from asset_engines.storage.filesystem_adapter import FileSystemStorageBackend, validate_key


@pytest.fixture
def backend(tmp_path):
    return FileSystemStorageBackend(tmp_path, namespace="gallery")


def test_put_then_get_returns_identical_bytes(backend):
    payload = bytes(range(256)) * 4
    backend.put("ab/cdef.png", payload)
    assert backend.get("ab/cdef.png") == payload


def test_put_accepts_bytearray_and_overwrites(backend):
    backend.put("a.bin", bytearray(b"first"))
    backend.put("a.bin", b"second")
    assert backend.get("a.bin") == b"second"


def test_blobs_live_under_namespace(tmp_path, backend):
    backend.put("nested/dir/file.txt", b"x")
    assert (tmp_path / "gallery" / "nested" / "dir" / "file.txt").read_bytes() == b"x"
    assert backend.root == (tmp_path / "gallery").resolve()


def test_put_leaves_no_temp_files(tmp_path, backend):
    backend.put("k.bin", b"data")
    leftovers = [name for name in os.listdir(tmp_path / "gallery") if name.startswith(".upload-")]
    assert leftovers == []


def test_get_of_never_put_key_is_not_found(backend):
    with pytest.raises(ObjectNotFound) as exc_info:
        backend.get("missing.png")
    assert exc_info.value.details["key"] == "missing.png"
    assert exc_info.value.http_status == 404


def test_delete_removes_blob_and_second_delete_is_not_found(backend):
    backend.put("gone.bin", b"bye")
    backend.delete("gone.bin")
    with pytest.raises(ObjectNotFound):
        backend.get("gone.bin")
    with pytest.raises(ObjectNotFound):
        backend.delete("gone.bin")


@pytest.mark.parametrize(
    "key",
    ["../escape.png", "a/../../escape.png", "/etc/passwd", "~/secret", "", "  ", "a\\b", "a\x00b"],
)
def test_invalid_keys_rejected_before_filesystem_access(backend, key):
    with patch("builtins.open") as mock_open, patch("tempfile.mkstemp") as mock_mkstemp:
        with pytest.raises(InvalidKey):
            backend.get(key)
        with pytest.raises(InvalidKey):
            backend.put(key, b"x")
        mock_open.assert_not_called()
        mock_mkstemp.assert_not_called()


def test_validate_key_accepts_nested_relative_keys():
    assert str(validate_key("ab/cd/ef.png")) == "ab/cd/ef.png"


def test_namespace_with_traversal_is_rejected(tmp_path):
    with pytest.raises(InvalidKey):
        FileSystemStorageBackend(tmp_path, namespace="../other")


def test_permission_error_maps_to_permission_denied(backend):
    with patch("builtins.open", side_effect=PermissionError("denied")):
        with pytest.raises(StoragePermissionDenied):
            backend.get("locked.bin")


def test_other_os_errors_are_transient_and_retryable(backend):
    with patch("builtins.open", side_effect=OSError(5, "I/O error")):
        with pytest.raises(TransientStorageError) as exc_info:
            backend.get("flaky.bin")
    assert exc_info.value.retryable is True
    assert exc_info.value.http_status == 503
