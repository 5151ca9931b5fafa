from __future__ import annotations

import json

import pytest
from fastapi import HTTPException

from asset_engines.common import errors
from asset_engines.common.error_envelope import asset_error_response, envelope_for, error_response


@pytest.mark.parametrize(
    "exc, status",
    [
        (errors.EntityNotFound("x"), 404),
        (errors.ColumnNotFound("x"), 404),
        (errors.DescriptorNotFound("x"), 404),
        (errors.ObjectNotFound("x"), 404),
        (errors.StoreNotFound("x"), 404),
        (errors.InvalidFilterArgument("sepia", "abc"), 400),
        (errors.MalformedDescriptor("x"), 400),
        (errors.InvalidPayload("x"), 400),
        (errors.InvalidKey("x"), 400),
        (errors.UnsupportedFormatError("x"), 415),
        (errors.StorageWriteFailed("x"), 503),
        (errors.TransientStorageError("x"), 503),
        (errors.StoragePermissionDenied("x"), 403),
        (errors.ConfigurationError("x"), 500),
        (errors.PipelineCancelled("x"), 499),
    ],
)
def test_status_mapping(exc, status):
    response = asset_error_response(exc)
    assert response.status_code == status
    body = json.loads(response.body)
    assert body["error"]["http_status"] == status
    assert body["error"]["code"] == exc.code


def test_retryable_errors_flag_details():
    envelope = envelope_for(errors.TransientStorageError("slow", details={"key": "k"}))
    assert envelope.error.details == {"key": "k", "retryable": True}
    assert "retryable" not in envelope_for(errors.ObjectNotFound("gone")).error.details


def test_invalid_filter_argument_message_and_details():
    exc = errors.InvalidFilterArgument("gaussianblur", "abc", "expected a number")
    assert str(exc) == "invalid argument 'abc' for filter 'gaussianblur': expected a number"
    assert exc.details == {"filter": "gaussianblur", "token": "abc"}


def test_error_response_raises_http_exception_with_envelope():
    with pytest.raises(HTTPException) as exc_info:
        error_response("asset.bad", "bad thing", status_code=422, resource_kind="upload")
    assert exc_info.value.status_code == 422
    assert exc_info.value.detail["error"]["resource_kind"] == "upload"
