"""Tests for error handling and response envelopes.

Verifies:
- Error envelope shape is correct
- Every error code maps to correct HTTP status
- Unknown exceptions return E_INTERNAL with 500
- Malformed JSON returns E_INVALID_REQUEST
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from parley.errors import (
    ERROR_CODE_TO_STATUS,
    ApiError,
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
    UnauthenticatedError,
    UnavailableError,
)
from parley.responses import (
    error_frame,
    error_response,
    page_response,
    success_response,
    unhandled_exception_handler,
)
from tests.helpers import auth_headers


class TestErrorResponse:
    """Tests for error response envelope format."""

    def test_error_response_has_correct_shape(self):
        """Error response contains error object with code and message."""
        response = error_response(ApiErrorCode.E_MESSAGE_NOT_FOUND, "Message not found")

        assert response["error"]["code"] == "E_MESSAGE_NOT_FOUND"
        assert response["error"]["message"] == "Message not found"

    def test_error_response_includes_explicit_request_id(self):
        response = error_response(ApiErrorCode.E_FORBIDDEN, "Access denied", request_id="req-1")

        assert response["error"]["request_id"] == "req-1"

    def test_error_frame_is_typed(self):
        frame = error_frame(ApiErrorCode.E_NOT_PARTICIPANT, "Not a participant")

        assert frame["type"] == "error"
        assert frame["error"]["code"] == "E_NOT_PARTICIPANT"


class TestSuccessResponse:
    """Tests for success response envelope format."""

    def test_success_response_has_data_key(self):
        response = success_response({"id": "123"})

        assert response == {"data": {"id": "123"}}

    def test_page_response(self):
        response = page_response([{"id": "1"}], "abc")

        assert response == {"data": [{"id": "1"}], "page": {"next_cursor": "abc"}}

    def test_last_page_has_null_cursor(self):
        assert page_response([], None)["page"] == {"next_cursor": None}


class TestErrorCodeToStatus:
    """Tests for error code to HTTP status mapping."""

    def test_all_error_codes_have_status_mapping(self):
        """Every ApiErrorCode has a corresponding HTTP status."""
        for code in ApiErrorCode:
            assert code in ERROR_CODE_TO_STATUS, f"Missing status mapping for {code}"

    @pytest.mark.parametrize(
        "code,expected_status",
        [
            (ApiErrorCode.E_UNAUTHENTICATED, 401),
            (ApiErrorCode.E_FORBIDDEN, 403),
            (ApiErrorCode.E_INTERNAL_ONLY, 403),
            (ApiErrorCode.E_NOT_PARTICIPANT, 403),
            (ApiErrorCode.E_NOT_MESSAGE_SENDER, 403),
            (ApiErrorCode.E_CONNECTION_REQUIRED, 403),
            (ApiErrorCode.E_CONVERSATION_NOT_FOUND, 404),
            (ApiErrorCode.E_MESSAGE_NOT_FOUND, 404),
            (ApiErrorCode.E_CONTENT_EMPTY, 400),
            (ApiErrorCode.E_CONTENT_TOO_LONG, 400),
            (ApiErrorCode.E_SELF_MESSAGE, 400),
            (ApiErrorCode.E_INVALID_REACTION, 400),
            (ApiErrorCode.E_INVALID_ACTION, 400),
            (ApiErrorCode.E_INVALID_CURSOR, 400),
            (ApiErrorCode.E_MESSAGE_DELETED, 409),
            (ApiErrorCode.E_STORAGE_UNAVAILABLE, 503),
            (ApiErrorCode.E_GATE_UNAVAILABLE, 503),
            (ApiErrorCode.E_AUTH_UNAVAILABLE, 503),
            (ApiErrorCode.E_INTERNAL, 500),
        ],
    )
    def test_error_code_maps_to_correct_status(self, code: ApiErrorCode, expected_status: int):
        """Each error code maps to the expected HTTP status."""
        assert ERROR_CODE_TO_STATUS[code] == expected_status


class TestApiErrorClass:
    """Tests for ApiError exception class and its category subclasses."""

    def test_api_error_derives_status_code(self):
        error = ApiError(ApiErrorCode.E_CONNECTION_REQUIRED, "Not connected")

        assert error.code == ApiErrorCode.E_CONNECTION_REQUIRED
        assert error.message == "Not connected"
        assert error.status_code == 403

    @pytest.mark.parametrize(
        "error_class,code,status",
        [
            (UnauthenticatedError, ApiErrorCode.E_UNAUTHENTICATED, 401),
            (ForbiddenError, ApiErrorCode.E_FORBIDDEN, 403),
            (NotFoundError, ApiErrorCode.E_NOT_FOUND, 404),
            (InvalidRequestError, ApiErrorCode.E_INVALID_REQUEST, 400),
            (InvalidStateError, ApiErrorCode.E_MESSAGE_DELETED, 409),
            (UnavailableError, ApiErrorCode.E_STORAGE_UNAVAILABLE, 503),
        ],
    )
    def test_category_defaults(self, error_class, code, status):
        error = error_class()

        assert error.code == code
        assert error.status_code == status
        assert isinstance(error, ApiError)

    def test_category_with_specific_code(self):
        error = NotFoundError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found")

        assert error.status_code == 404
        assert error.code == ApiErrorCode.E_CONVERSATION_NOT_FOUND


class TestMalformedJsonHandling:
    """Tests for malformed JSON body handling."""

    def test_malformed_json_returns_400(self, client: TestClient, alice):
        response = client.post(
            "/messages",
            content="{invalid json",
            headers={**auth_headers(alice), "content-type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"

    def test_schema_violation_returns_400(self, client: TestClient, alice):
        response = client.post("/messages", json={"content": 42}, headers=auth_headers(alice))

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"

    def test_unknown_route_uses_error_envelope(self, client: TestClient, alice):
        response = client.get("/nope", headers=auth_headers(alice))

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_NOT_FOUND"


class TestUnhandledExceptionHandling:
    """Tests for unhandled exception handling."""

    def test_unhandled_exception_returns_500_with_e_internal(self):
        test_app = FastAPI()

        @test_app.get("/crash")
        def crash_endpoint():
            raise RuntimeError("SECRET_INTERNAL_DETAIL")

        test_app.add_exception_handler(Exception, unhandled_exception_handler)

        client = TestClient(test_app, raise_server_exceptions=False)
        response = client.get("/crash")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "E_INTERNAL"
        assert "SECRET_INTERNAL_DETAIL" not in response.text
