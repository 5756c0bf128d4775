"""Tests for error normalization."""

import json

import httpx
import pytest

from jasper_reports_mcp.core.errors import (
    ErrorCode,
    JasperHTTPError,
    NormalizedError,
    create_configuration_error,
    create_connection_error,
    create_timeout_error,
    create_validation_error,
    field_error,
    map_exception,
    map_http_status_to_mcp_error,
    map_jasper_error_to_mcp_error,
)
from jasper_reports_mcp.core.models import (
    ErrorCategory,
    ErrorSeverity,
    FieldValidationError,
    JasperErrorResponse,
    NetworkErrorDetails,
)


class TestHttpStatusMapping:
    """map_http_status_to_mcp_error."""

    @pytest.mark.parametrize("status,code,category", [
        (400, ErrorCode.INVALID_REQUEST, ErrorCategory.VALIDATION),
        (401, ErrorCode.AUTHENTICATION_REQUIRED, ErrorCategory.AUTHENTICATION),
        (403, ErrorCode.PERMISSION_DENIED, ErrorCategory.AUTHORIZATION),
        (404, ErrorCode.RESOURCE_NOT_FOUND, ErrorCategory.RESOURCE),
        (408, ErrorCode.TIMEOUT_ERROR, ErrorCategory.NETWORK),
        (409, ErrorCode.RESOURCE_CONFLICT, ErrorCategory.RESOURCE),
        (500, ErrorCode.INTERNAL_ERROR, ErrorCategory.INTERNAL),
        (503, ErrorCode.SERVICE_UNAVAILABLE, ErrorCategory.INTERNAL),
    ])
    def test_table(self, status, code, category):
        error = map_http_status_to_mcp_error(status, "x")
        assert error.code == code
        assert error.category == category
        assert error.status_code == status
        assert error.message == "x"

    def test_unlisted_status_keeps_code(self):
        error = map_http_status_to_mcp_error(418, "teapot")
        assert error.code == ErrorCode.UNKNOWN_ERROR
        assert error.category == ErrorCategory.INTERNAL
        assert error.status_code == 418

    def test_default_message(self):
        assert map_http_status_to_mcp_error(404).message == "Resource not found"


class TestJasperErrorMapping:
    """map_jasper_error_to_mcp_error."""

    def test_not_found_agrees_with_http_mapping(self):
        from_status = map_http_status_to_mcp_error(404, "x")
        from_jasper = map_jasper_error_to_mcp_error({"errorCode": "resource.not.found", "message": "x"})
        assert from_jasper.category == from_status.category == ErrorCategory.RESOURCE
        assert from_jasper.code == from_status.code
        assert from_jasper.status_code == from_status.status_code == 404

    @pytest.mark.parametrize("jasper_code,code", [
        ("access.denied", ErrorCode.PERMISSION_DENIED),
        ("invalid.credentials", ErrorCode.AUTHENTICATION_REQUIRED),
        ("resource.already.exists", ErrorCode.RESOURCE_CONFLICT),
        ("parameter.error", ErrorCode.INVALID_REQUEST),
        ("job.not.found", ErrorCode.RESOURCE_NOT_FOUND),
        ("domain.not.found", ErrorCode.RESOURCE_NOT_FOUND),
    ])
    def test_exact_table(self, jasper_code, code):
        assert map_jasper_error_to_mcp_error({"errorCode": jasper_code, "message": "m"}).code == code

    def test_execution_category_codes(self):
        for jasper_code in ("compilation.error", "datasource.error", "export.error"):
            error = map_jasper_error_to_mcp_error({"errorCode": jasper_code, "message": "boom"})
            assert error.category == ErrorCategory.EXECUTION

    def test_validation_error_carries_field_errors(self):
        error = map_jasper_error_to_mcp_error({
            "errorCode": "validation.error",
            "message": "Bad input",
            "parameters": ["StartDate", {"field": "Country", "message": "required"}],
        })
        assert error.code == ErrorCode.INVALID_PARAMS
        fields = [r["field"] for r in error.details["validationResults"]]
        assert fields == ["StartDate", "Country"]

    def test_pattern_order_not_found_beats_access(self):
        error = map_jasper_error_to_mcp_error({"errorCode": "access.rule.not.found"})
        assert error.code == ErrorCode.RESOURCE_NOT_FOUND

    def test_pattern_order_access_beats_invalid(self):
        error = map_jasper_error_to_mcp_error({"errorCode": "invalid.access.token"})
        assert error.code == ErrorCode.PERMISSION_DENIED

    def test_pattern_order_invalid_beats_credentials(self):
        error = map_jasper_error_to_mcp_error({"errorCode": "invalid.credentials.format"})
        assert error.code == ErrorCode.INVALID_REQUEST

    def test_pattern_authentication(self):
        error = map_jasper_error_to_mcp_error({"errorCode": "authentication.expired"})
        assert error.code == ErrorCode.AUTHENTICATION_REQUIRED

    def test_unknown_code_falls_back_to_internal(self):
        raw = {"errorCode": "something.odd", "message": "??", "errorUid": "abc"}
        error = map_jasper_error_to_mcp_error(raw)
        assert error.code == ErrorCode.INTERNAL_ERROR
        assert error.category == ErrorCategory.INTERNAL
        assert error.severity == ErrorSeverity.HIGH
        assert error.details["jasperError"]["errorUid"] == "abc"

    def test_raw_error_always_retained(self):
        error = map_jasper_error_to_mcp_error({"errorCode": "access.denied", "message": "no"})
        assert error.details["jasperError"]["errorCode"] == "access.denied"

    def test_accepts_model(self):
        raw = JasperErrorResponse(error_code="resource.not.found", message="gone")
        error = map_jasper_error_to_mcp_error(raw)
        assert error.code == ErrorCode.RESOURCE_NOT_FOUND
        assert error.details["jasperError"]["errorCode"] == "resource.not.found"

    def test_empty_payload_never_raises(self):
        assert map_jasper_error_to_mcp_error({}).code == ErrorCode.INTERNAL_ERROR

    def test_null_message_keeps_error_code(self):
        error = map_jasper_error_to_mcp_error({"errorCode": "resource.not.found", "message": None})
        assert error.code == ErrorCode.RESOURCE_NOT_FOUND
        assert error.status_code == 404

    def test_null_parameters_keep_error_code(self):
        error = map_jasper_error_to_mcp_error({"errorCode": "access.denied", "message": "x", "parameters": None})
        assert error.code == ErrorCode.PERMISSION_DENIED

    def test_single_parameter_is_wrapped(self):
        error = map_jasper_error_to_mcp_error({"errorCode": "validation.error", "message": "Bad", "parameters": "StartDate"})
        assert error.code == ErrorCode.INVALID_PARAMS
        assert error.details["validationResults"][0]["field"] == "StartDate"

    def test_malformed_payload_keeps_error_code(self):
        raw = {"errorCode": "access.denied", "message": None, "errorUid": ["not", "a", "string"]}
        error = map_jasper_error_to_mcp_error(raw)
        assert error.code == ErrorCode.PERMISSION_DENIED
        assert error.details["jasperError"]["errorUid"] == ["not", "a", "string"]


class TestFactories:
    def test_validation_error_message_counts_fields(self):
        error = create_validation_error([
            FieldValidationError(field="a", message="bad"),
            FieldValidationError(field="b", message="bad"),
        ])
        assert error.message == "Validation failed for 2 field(s)"
        assert error.status_code == 400

    def test_field_error(self):
        error = field_error("pages", "bad range", value="5-1")
        assert error.details["validationResults"][0]["value"] == "5-1"

    def test_connection_error_has_no_status(self):
        error = create_connection_error("ECONNREFUSED", NetworkErrorDetails(url="http://x", cause="connection_refused"))
        assert error.category == ErrorCategory.NETWORK
        assert error.status_code is None
        assert error.message == "Connection failed: ECONNREFUSED"
        assert error.is_retryable()

    def test_timeout_error(self):
        error = create_timeout_error("Report execution")
        assert error.code == ErrorCode.TIMEOUT_ERROR
        assert error.status_code == 408

    def test_configuration_error(self):
        error = create_configuration_error("JASPER_URL", "missing", {"expected_type": "url"})
        assert error.code == ErrorCode.INVALID_REQUEST
        assert error.category == ErrorCategory.CONFIGURATION
        assert error.details["configDetails"]["config_key"] == "JASPER_URL"
        assert error.details["configDetails"]["expected_type"] == "url"
        assert not error.is_retryable()

    def test_to_dict_is_json_serializable(self):
        error = map_http_status_to_mcp_error(401, "login please")
        data = json.loads(json.dumps(error.to_dict()))
        assert data["code"] == "AuthenticationRequired"
        assert data["category"] == "authentication"
        assert data["severity"] == "high"
        assert data["timestamp"].endswith("Z")
        assert error.requires_authentication()


class TestMapException:
    """The single funnel used by the engine."""

    def test_normalized_error_passes_through(self):
        original = field_error("x", "bad")
        assert map_exception(original) is original

    def test_http_error_with_jasper_body(self):
        exc = JasperHTTPError(400, {"errorCode": "access.denied", "message": "nope"}, "/rest_v2/x", "GET")
        error = map_exception(exc)
        assert error.code == ErrorCode.PERMISSION_DENIED
        assert error.status_code == 400

    def test_http_error_without_jasper_body(self):
        exc = JasperHTTPError(503, "Service Unavailable", "/rest_v2/x", "GET")
        error = map_exception(exc, "Report execution")
        assert error.code == ErrorCode.SERVICE_UNAVAILABLE
        assert error.message == "Report execution: Service Unavailable"

    def test_timeout(self):
        request = httpx.Request("GET", "http://jasper.test/rest_v2/resources/x")
        error = map_exception(httpx.ReadTimeout("timed out", request=request), "Resource lookup")
        assert error.code == ErrorCode.TIMEOUT_ERROR
        assert error.details["networkDetails"]["url"] == "http://jasper.test/rest_v2/resources/x"

    def test_connect_error(self):
        request = httpx.Request("GET", "http://jasper.test/")
        error = map_exception(httpx.ConnectError("refused", request=request))
        assert error.code == ErrorCode.CONNECTION_ERROR
        assert error.status_code is None
        assert error.details["cause"] == "refused"

    def test_network_details_drop_password(self):
        request = httpx.Request("GET", "http://jasper.test/rest_v2/resources/x?j_username=jasperadmin&j_password=S3cretPw")
        error = map_exception(httpx.ConnectError("refused", request=request))
        url = error.details["networkDetails"]["url"]
        assert "S3cretPw" not in json.dumps(error.to_dict())
        assert url.startswith("http://jasper.test/rest_v2/resources/x")
        assert "j_username=jasperadmin" in url

    def test_unexpected_exception_is_internal(self):
        error = map_exception(KeyError("boom"), "Packaging")
        assert error.code == ErrorCode.INTERNAL_ERROR
        assert error.details["originalError"] == "KeyError"

    def test_is_raisable(self):
        with pytest.raises(NormalizedError):
            raise map_http_status_to_mcp_error(500)
