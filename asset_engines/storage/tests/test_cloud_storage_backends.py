from __future__ import annotations

import unittest
from unittest.mock import MagicMock

import pytest
from azure.core import exceptions as azure_exceptions
from botocore.exceptions import ClientError, EndpointConnectionError
from google.api_core import exceptions as gcs_exceptions

from asset_engines.common.errors import (
    ConfigurationError,
    InvalidKey,
    ObjectNotFound,
    StoragePermissionDenied,
    TransientStorageError,
)
from asset_engines.storage.cloud_adapters import (
    AzureBlobStorageBackend,
    GCSStorageBackend,
    S3StorageBackend,
)


def _client_error(code: str, status: int, op: str = "GetObject") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        op,
    )


class TestS3StorageBackend(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.backend = S3StorageBackend(bucket="assets", prefix="prod", namespace="images", client=self.client)

    def test_put_writes_prefixed_object(self):
        self.backend.put("ab/cd.png", bytearray(b"png"))
        self.client.put_object.assert_called_once_with(Bucket="assets", Key="prod/images/ab/cd.png", Body=b"png")

    def test_get_reads_and_closes_body(self):
        body = MagicMock()
        body.read.return_value = b"bytes"
        self.client.get_object.return_value = {"Body": body}
        self.assertEqual(self.backend.get("ab/cd.png"), b"bytes")
        self.client.get_object.assert_called_once_with(Bucket="assets", Key="prod/images/ab/cd.png")
        body.close.assert_called_once()

    def test_missing_key_maps_to_object_not_found(self):
        self.client.get_object.side_effect = _client_error("NoSuchKey", 404)
        with self.assertRaises(ObjectNotFound):
            self.backend.get("missing.png")

    def test_access_denied_maps_to_permission_denied(self):
        self.client.get_object.side_effect = _client_error("AccessDenied", 403)
        with self.assertRaises(StoragePermissionDenied):
            self.backend.get("secret.png")

    def test_throttling_is_transient(self):
        self.client.put_object.side_effect = _client_error("SlowDown", 503, "PutObject")
        with self.assertRaises(TransientStorageError) as ctx:
            self.backend.put("a.png", b"x")
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(self.client.put_object.call_count, 1)

    def test_connection_failure_is_transient(self):
        self.client.get_object.side_effect = EndpointConnectionError(endpoint_url="https://s3.example")
        with self.assertRaises(TransientStorageError):
            self.backend.get("a.png")

    def test_delete_of_missing_key_is_not_found(self):
        self.client.head_object.side_effect = _client_error("404", 404, "HeadObject")
        with self.assertRaises(ObjectNotFound):
            self.backend.delete("missing.png")
        self.client.delete_object.assert_not_called()

    def test_delete_existing_key(self):
        self.backend.delete("a.png")
        self.client.delete_object.assert_called_once_with(Bucket="assets", Key="prod/images/a.png")

    def test_traversal_key_rejected_without_sdk_call(self):
        with self.assertRaises(InvalidKey):
            self.backend.get("../other/a.png")
        self.client.get_object.assert_not_called()

    def test_bucket_required(self):
        with self.assertRaises(ConfigurationError):
            S3StorageBackend(bucket="", client=self.client)


def test_gcs_round_trip_through_blob_api():
    client = MagicMock()
    blob = client.bucket.return_value.blob.return_value
    blob.download_as_bytes.return_value = b"gcs-bytes"
    backend = GCSStorageBackend(bucket="assets", namespace="images", client=client)

    backend.put("a.png", b"gcs-bytes")
    assert backend.get("a.png") == b"gcs-bytes"

    client.bucket.assert_called_once_with("assets")
    client.bucket.return_value.blob.assert_called_with("images/a.png")
    blob.upload_from_string.assert_called_once_with(b"gcs-bytes")


def test_gcs_errors_are_translated():
    client = MagicMock()
    blob = client.bucket.return_value.blob.return_value
    backend = GCSStorageBackend(bucket="assets", client=client)

    blob.download_as_bytes.side_effect = gcs_exceptions.NotFound("nope")
    with pytest.raises(ObjectNotFound):
        backend.get("a.png")

    blob.download_as_bytes.side_effect = gcs_exceptions.Forbidden("nope")
    with pytest.raises(StoragePermissionDenied):
        backend.get("a.png")

    blob.delete.side_effect = gcs_exceptions.ServiceUnavailable("later")
    with pytest.raises(TransientStorageError):
        backend.delete("a.png")


def test_azure_round_trip_through_container_client():
    client = MagicMock()
    blob_client = client.get_container_client.return_value.get_blob_client.return_value
    blob_client.download_blob.return_value.readall.return_value = b"azure-bytes"
    backend = AzureBlobStorageBackend(container="assets", prefix="media", client=client)

    backend.put("a.png", b"azure-bytes")
    assert backend.get("a.png") == b"azure-bytes"

    client.get_container_client.assert_called_once_with("assets")
    client.get_container_client.return_value.get_blob_client.assert_called_with("media/a.png")
    blob_client.upload_blob.assert_called_once_with(b"azure-bytes", overwrite=True)


def test_azure_errors_are_translated():
    client = MagicMock()
    blob_client = client.get_container_client.return_value.get_blob_client.return_value
    backend = AzureBlobStorageBackend(container="assets", client=client)

    blob_client.download_blob.side_effect = azure_exceptions.ResourceNotFoundError("missing")
    with pytest.raises(ObjectNotFound):
        backend.get("a.png")

    blob_client.delete_blob.side_effect = azure_exceptions.ClientAuthenticationError("bad key")
    with pytest.raises(StoragePermissionDenied):
        backend.delete("a.png")

    blob_client.upload_blob.side_effect = azure_exceptions.ServiceRequestError("timeout")
    with pytest.raises(TransientStorageError):
        backend.put("a.png", b"x")


def test_azure_without_connection_string_is_configuration_error(monkeypatch):
    monkeypatch.delenv("AZURE_STORAGE_CONNECTION_STRING", raising=False)
    with pytest.raises(ConfigurationError):
        AzureBlobStorageBackend(container="assets")
