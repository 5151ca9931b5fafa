"""Object store cloud backends: S3, GCS, Azure Blob.

Each backend maps a key to an object name ``{prefix}/{namespace}/{key}`` inside one
configured bucket or container. One SDK client per backend instance, reused across
requests; SDK exceptions are translated into the storage error taxonomy and never
retried here.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

try:  # pragma: no cover
    from google.api_core import exceptions as gcs_exceptions  # type: ignore
    from google.cloud import storage as gcs_storage  # type: ignore
except Exception:  # pragma: no cover
    gcs_exceptions = None
    gcs_storage = None

try:  # pragma: no cover
    from azure.core import exceptions as azure_exceptions  # type: ignore
    from azure.storage.blob import BlobServiceClient  # type: ignore
except Exception:  # pragma: no cover
    azure_exceptions = None
    BlobServiceClient = None

from asset_engines.common.errors import (
    AssetEngineError,
    ConfigurationError,
    ObjectNotFound,
    StoragePermissionDenied,
    TransientStorageError,
)
from asset_engines.config import runtime_config
from asset_engines.storage.filesystem_adapter import Content, validate_key

logger = logging.getLogger(__name__)

_S3_NOT_FOUND = {"NoSuchKey", "NotFound", "404"}
_S3_DENIED = {"AccessDenied", "Forbidden", "403", "AllAccessDisabled", "InvalidAccessKeyId", "SignatureDoesNotMatch"}


class ObjectStoreBackend:
    """Shared key-to-object-name mapping for bucket/container backends."""

    provider = "cloud"

    def __init__(self, prefix: str = "", namespace: str = "") -> None:
        if namespace:
            validate_key(namespace)
        parts = [p.strip("/") for p in (prefix, namespace) if p and p.strip("/")]
        self._prefix = "/".join(parts)

    @property
    def prefix(self) -> str:
        return self._prefix

    def object_name(self, key: str) -> str:
        validate_key(key)
        return f"{self._prefix}/{key}" if self._prefix else key

    def _unavailable(self, op: str, key: str, exc: Exception) -> TransientStorageError:
        logger.warning("%s %s failed for %s: %s", self.provider, op, key, exc)
        return TransientStorageError(
            f"{self.provider} {op} failed for {key!r}: {exc}",
            details={"key": key, "provider": self.provider},
        )


class S3StorageBackend(ObjectStoreBackend):
    """Amazon S3 (or S3-compatible endpoint) backend."""

    provider = "s3"

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        namespace: str = "",
        client: Any = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
    ) -> None:
        super().__init__(prefix, namespace)
        if not bucket:
            raise ConfigurationError("S3 store requires a bucket")
        self.bucket = bucket
        self._client = client or self._default_client(region, endpoint_url, access_key_id, secret_access_key)

    def _default_client(
        self,
        region: Optional[str],
        endpoint_url: Optional[str],
        access_key_id: Optional[str],
        secret_access_key: Optional[str],
    ) -> Any:
        timeout = runtime_config.get_storage_timeout_seconds()
        config = Config(
            max_pool_connections=runtime_config.get_s3_max_pool_connections(),
            retries={"total_max_attempts": 1},
            connect_timeout=timeout,
            read_timeout=timeout,
        )
        return boto3.client(
            "s3",
            region_name=region or runtime_config.get_aws_region(),
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=config,
        )

    def _translate(self, op: str, key: str, exc: Exception) -> AssetEngineError:
        if isinstance(exc, ClientError):
            error = exc.response.get("Error", {})
            code = str(error.get("Code", ""))
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if code in _S3_NOT_FOUND or status == 404:
                return ObjectNotFound(f"no object stored under {key!r}", details={"key": key})
            if code in _S3_DENIED or status == 403:
                return StoragePermissionDenied(
                    f"s3 denied {op} on {key!r}", details={"key": key, "provider": self.provider}
                )
        return self._unavailable(op, key, exc)

    def put(self, key: str, content: Content) -> None:
        name = self.object_name(key)
        try:
            self._client.put_object(Bucket=self.bucket, Key=name, Body=bytes(content))
        except (ClientError, BotoCoreError) as exc:
            raise self._translate("PUT", key, exc) from exc

    def get(self, key: str) -> bytes:
        name = self.object_name(key)
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=name)
            body = response["Body"]
            try:
                return body.read()
            finally:
                body.close()
        except (ClientError, BotoCoreError) as exc:
            raise self._translate("GET", key, exc) from exc

    def delete(self, key: str) -> None:
        name = self.object_name(key)
        try:
            # S3 DELETE is idempotent; check first so a missing key surfaces as not-found.
            self._client.head_object(Bucket=self.bucket, Key=name)
            self._client.delete_object(Bucket=self.bucket, Key=name)
        except (ClientError, BotoCoreError) as exc:
            raise self._translate("DELETE", key, exc) from exc


class GCSStorageBackend(ObjectStoreBackend):
    """Google Cloud Storage backend."""

    provider = "gcs"

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        namespace: str = "",
        client: Any = None,
        project: Optional[str] = None,
    ) -> None:
        super().__init__(prefix, namespace)
        if not bucket:
            raise ConfigurationError("GCS store requires a bucket")
        if client is None:
            if gcs_storage is None:
                raise ConfigurationError("google-cloud-storage is required for GCS stores")
            client = gcs_storage.Client(project=project or runtime_config.get_gcs_project())  # type: ignore
        self.bucket = bucket
        self._client = client
        self._bucket = client.bucket(bucket)

    def _translate(self, op: str, key: str, exc: Exception) -> AssetEngineError:
        if gcs_exceptions is not None:
            if isinstance(exc, gcs_exceptions.NotFound):
                return ObjectNotFound(f"no object stored under {key!r}", details={"key": key})
            if isinstance(exc, (gcs_exceptions.Forbidden, gcs_exceptions.Unauthorized)):
                return StoragePermissionDenied(
                    f"gcs denied {op} on {key!r}", details={"key": key, "provider": self.provider}
                )
        return self._unavailable(op, key, exc)

    def _errors(self) -> tuple:
        if gcs_exceptions is None:
            return (OSError,)
        return (gcs_exceptions.GoogleAPIError, OSError)

    def put(self, key: str, content: Content) -> None:
        blob = self._bucket.blob(self.object_name(key))
        try:
            blob.upload_from_string(bytes(content))
        except self._errors() as exc:
            raise self._translate("PUT", key, exc) from exc

    def get(self, key: str) -> bytes:
        blob = self._bucket.blob(self.object_name(key))
        try:
            return blob.download_as_bytes()
        except self._errors() as exc:
            raise self._translate("GET", key, exc) from exc

    def delete(self, key: str) -> None:
        blob = self._bucket.blob(self.object_name(key))
        try:
            blob.delete()
        except self._errors() as exc:
            raise self._translate("DELETE", key, exc) from exc

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if callable(close):
            close()


class AzureBlobStorageBackend(ObjectStoreBackend):
    """Azure Blob Storage backend."""

    provider = "azure"

    def __init__(
        self,
        container: str,
        prefix: str = "",
        namespace: str = "",
        client: Any = None,
        connection_string: Optional[str] = None,
    ) -> None:
        super().__init__(prefix, namespace)
        if not container:
            raise ConfigurationError("Azure store requires a container")
        if client is None:
            if BlobServiceClient is None:
                raise ConfigurationError("azure-storage-blob is required for Azure Blob stores")
            connection_string = connection_string or runtime_config.get_azure_connection_string()
            if not connection_string:
                raise ConfigurationError("AZURE_STORAGE_CONNECTION_STRING required for Azure Blob stores")
            client = BlobServiceClient.from_connection_string(connection_string)
        self.container = container
        self._client = client
        self._container_client = client.get_container_client(container)

    def _translate(self, op: str, key: str, exc: Exception) -> AssetEngineError:
        if azure_exceptions is not None:
            if isinstance(exc, azure_exceptions.ResourceNotFoundError):
                return ObjectNotFound(f"no object stored under {key!r}", details={"key": key})
            denied = isinstance(exc, azure_exceptions.ClientAuthenticationError) or (
                isinstance(exc, azure_exceptions.HttpResponseError) and getattr(exc, "status_code", None) == 403
            )
            if denied:
                return StoragePermissionDenied(
                    f"azure denied {op} on {key!r}", details={"key": key, "provider": self.provider}
                )
        return self._unavailable(op, key, exc)

    def _errors(self) -> tuple:
        if azure_exceptions is None:
            return (OSError,)
        return (azure_exceptions.AzureError, OSError)

    def put(self, key: str, content: Content) -> None:
        blob_client = self._container_client.get_blob_client(self.object_name(key))
        try:
            blob_client.upload_blob(bytes(content), overwrite=True)
        except self._errors() as exc:
            raise self._translate("PUT", key, exc) from exc

    def get(self, key: str) -> bytes:
        blob_client = self._container_client.get_blob_client(self.object_name(key))
        try:
            return blob_client.download_blob().readall()
        except self._errors() as exc:
            raise self._translate("GET", key, exc) from exc

    def delete(self, key: str) -> None:
        blob_client = self._container_client.get_blob_client(self.object_name(key))
        try:
            blob_client.delete_blob()
        except self._errors() as exc:
            raise self._translate("DELETE", key, exc) from exc

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if callable(close):
            close()
