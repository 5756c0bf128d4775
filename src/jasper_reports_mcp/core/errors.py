"""Error normalization. Every failure leaves the core as a NormalizedError.

Two mapping entry points (HTTP status and JasperReports error payloads),
factory helpers for locally detected failures, and ``map_exception``, the
single funnel the engine routes every caught exception through.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping, Optional, Union

import httpx

from .models import (
    ConfigurationErrorDetails,
    ErrorCategory,
    ErrorSeverity,
    FieldValidationError,
    JasperErrorResponse,
    NetworkErrorDetails,
    utcnow,
)

logger = logging.getLogger(__name__)


class ErrorCode:
    """Stable taxonomy keys surfaced to protocol clients."""

    INVALID_REQUEST = "InvalidRequest"
    INVALID_PARAMS = "InvalidParams"
    AUTHENTICATION_REQUIRED = "AuthenticationRequired"
    PERMISSION_DENIED = "PermissionDenied"
    RESOURCE_NOT_FOUND = "ResourceNotFound"
    RESOURCE_CONFLICT = "ResourceConflict"
    INTERNAL_ERROR = "InternalError"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    TIMEOUT_ERROR = "TimeoutError"
    CONNECTION_ERROR = "ConnectionError"
    CANCELLED = "Cancelled"
    UNKNOWN_ERROR = "UnknownError"


# code -> (category, severity, default message, default status code)
ERROR_TAXONOMY: dict[str, tuple[ErrorCategory, ErrorSeverity, str, Optional[int]]] = {
    ErrorCode.INVALID_REQUEST: (ErrorCategory.VALIDATION, ErrorSeverity.LOW, "Invalid request", 400),
    ErrorCode.INVALID_PARAMS: (ErrorCategory.VALIDATION, ErrorSeverity.LOW, "Invalid parameters", 400),
    ErrorCode.AUTHENTICATION_REQUIRED: (ErrorCategory.AUTHENTICATION, ErrorSeverity.HIGH, "Authentication required", 401),
    ErrorCode.PERMISSION_DENIED: (ErrorCategory.AUTHORIZATION, ErrorSeverity.HIGH, "Permission denied", 403),
    ErrorCode.RESOURCE_NOT_FOUND: (ErrorCategory.RESOURCE, ErrorSeverity.MEDIUM, "Resource not found", 404),
    ErrorCode.RESOURCE_CONFLICT: (ErrorCategory.RESOURCE, ErrorSeverity.MEDIUM, "Resource conflict", 409),
    ErrorCode.INTERNAL_ERROR: (ErrorCategory.INTERNAL, ErrorSeverity.HIGH, "Internal server error", 500),
    ErrorCode.SERVICE_UNAVAILABLE: (ErrorCategory.INTERNAL, ErrorSeverity.CRITICAL, "Service unavailable", 503),
    ErrorCode.TIMEOUT_ERROR: (ErrorCategory.NETWORK, ErrorSeverity.MEDIUM, "Request timeout", 408),
    ErrorCode.CONNECTION_ERROR: (ErrorCategory.NETWORK, ErrorSeverity.HIGH, "Connection error", None),
    ErrorCode.CANCELLED: (ErrorCategory.EXECUTION, ErrorSeverity.LOW, "Execution cancelled", None),
    ErrorCode.UNKNOWN_ERROR: (ErrorCategory.INTERNAL, ErrorSeverity.MEDIUM, "Unknown error", None),
}


class NormalizedError(Exception):
    """A taxonomy-tagged error, decoupled from the transport or server shape.

    One class for every category; ``category`` is the discriminant and the
    defaults for severity, message and status code come from ERROR_TAXONOMY.
    """

    def __init__(
        self,
        code: str,
        message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        status_code: Optional[int] = None,
        *,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None,
        use_default_status: bool = True,
    ):
        default_category, default_severity, default_message, default_status = ERROR_TAXONOMY.get(
            code, ERROR_TAXONOMY[ErrorCode.UNKNOWN_ERROR]
        )
        self.code = code
        self.category = category or default_category
        self.severity = severity or default_severity
        self.message = message or default_message
        self.details = details
        if status_code is None and use_default_status:
            status_code = default_status
        self.status_code = status_code
        self.timestamp = utcnow().isoformat(timespec="milliseconds").replace("+00:00", "Z")
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"NormalizedError(code={self.code!r}, category={self.category.value!r}, message={self.message!r})"

    def is_retryable(self) -> bool:
        return self.category == ErrorCategory.NETWORK or self.code == ErrorCode.SERVICE_UNAVAILABLE

    def requires_authentication(self) -> bool:
        return self.category == ErrorCategory.AUTHENTICATION

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "details": _jsonable(self.details),
            "status_code": self.status_code,
            "timestamp": self.timestamp,
        }


def _jsonable(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


# ─── HTTP status mapping ─────────────────────────────────────────────────────

HTTP_STATUS_CODES: dict[int, str] = {
    400: ErrorCode.INVALID_REQUEST,
    401: ErrorCode.AUTHENTICATION_REQUIRED,
    403: ErrorCode.PERMISSION_DENIED,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    408: ErrorCode.TIMEOUT_ERROR,
    409: ErrorCode.RESOURCE_CONFLICT,
    500: ErrorCode.INTERNAL_ERROR,
    503: ErrorCode.SERVICE_UNAVAILABLE,
}


def map_http_status_to_mcp_error(
    status_code: int,
    message: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> NormalizedError:
    """Map an HTTP status code to a normalized error.

    Unlisted codes become ``UnknownError`` with the original status code kept.
    """
    code = HTTP_STATUS_CODES.get(status_code, ErrorCode.UNKNOWN_ERROR)
    return NormalizedError(code, message, details, status_code)


# ─── JasperReports error mapping ─────────────────────────────────────────────


def _validation_from_jasper(raw: JasperErrorResponse, payload: dict[str, Any]) -> NormalizedError:
    field_errors = [_field_error_from_parameter(p) for p in raw.parameters]
    return NormalizedError(
        ErrorCode.INVALID_PARAMS,
        raw.message or None,
        {"jasperError": payload, "validationResults": [f.model_dump(mode="json") for f in field_errors]},
    )


def _field_error_from_parameter(parameter: Any) -> FieldValidationError:
    if isinstance(parameter, Mapping):
        return FieldValidationError(
            field=str(parameter.get("field") or parameter.get("name") or "unknown"),
            value=parameter.get("value"),
            constraint=parameter.get("constraint"),
            message=str(parameter.get("message") or parameter.get("value") or "invalid value"),
        )
    return FieldValidationError(field=str(parameter), message=str(parameter))


def _simple(code: str, category: Optional[ErrorCategory] = None) -> Callable[[JasperErrorResponse, dict], NormalizedError]:
    def factory(raw: JasperErrorResponse, payload: dict[str, Any]) -> NormalizedError:
        return NormalizedError(code, raw.message or None, {"jasperError": payload}, category=category)

    return factory


JASPER_ERROR_CODES: dict[str, Callable[[JasperErrorResponse, dict], NormalizedError]] = {
    "resource.not.found": _simple(ErrorCode.RESOURCE_NOT_FOUND),
    "access.denied": _simple(ErrorCode.PERMISSION_DENIED),
    "invalid.credentials": _simple(ErrorCode.AUTHENTICATION_REQUIRED),
    "resource.already.exists": _simple(ErrorCode.RESOURCE_CONFLICT),
    "validation.error": _validation_from_jasper,
    "compilation.error": _simple(ErrorCode.INVALID_REQUEST, ErrorCategory.EXECUTION),
    "parameter.error": _simple(ErrorCode.INVALID_REQUEST),
    "datasource.error": _simple(ErrorCode.INTERNAL_ERROR, ErrorCategory.EXECUTION),
    "export.error": _simple(ErrorCode.INTERNAL_ERROR, ErrorCategory.EXECUTION),
    "job.not.found": _simple(ErrorCode.RESOURCE_NOT_FOUND),
    "user.not.found": _simple(ErrorCode.RESOURCE_NOT_FOUND),
    "role.not.found": _simple(ErrorCode.RESOURCE_NOT_FOUND),
    "domain.not.found": _simple(ErrorCode.RESOURCE_NOT_FOUND),
}

# Checked in order; the first rule whose substrings occur in the error code wins.
JASPER_ERROR_PATTERNS: list[tuple[tuple[str, ...], str]] = [
    (("not.found",), ErrorCode.RESOURCE_NOT_FOUND),
    (("access", "permission"), ErrorCode.PERMISSION_DENIED),
    (("validation", "invalid"), ErrorCode.INVALID_REQUEST),
    (("authentication", "credentials"), ErrorCode.AUTHENTICATION_REQUIRED),
]


def map_jasper_error_to_mcp_error(raw_error: Union[JasperErrorResponse, Mapping[str, Any]]) -> NormalizedError:
    """Classify a JasperReports error payload.

    Exact error-code table first, then the ordered substring rules, then an
    internal error. Never raises; the raw payload is kept in
    ``details["jasperError"]``.
    """
    if isinstance(raw_error, JasperErrorResponse):
        raw = raw_error
        payload = raw_error.model_dump(by_alias=True)
    else:
        payload = dict(raw_error or {})
        try:
            raw = JasperErrorResponse.model_validate(payload)
        except ValueError:
            raw = JasperErrorResponse(
                error_code=str(payload.get("errorCode") or ""),
                message=str(payload.get("message") or ""),
            )

    error_code = raw.error_code or ""

    factory = JASPER_ERROR_CODES.get(error_code)
    if factory is not None:
        return factory(raw, payload)

    lowered = error_code.lower()
    for needles, code in JASPER_ERROR_PATTERNS:
        if any(needle in lowered for needle in needles):
            return NormalizedError(code, raw.message or None, {"jasperError": payload})

    return NormalizedError(
        ErrorCode.INTERNAL_ERROR,
        raw.message or f"Unrecognized server error '{error_code or 'unknown'}'",
        {"jasperError": payload},
        category=ErrorCategory.INTERNAL,
        severity=ErrorSeverity.HIGH,
    )


# ─── Factories ───────────────────────────────────────────────────────────────


def create_validation_error(field_errors: Iterable[FieldValidationError]) -> NormalizedError:
    field_errors = list(field_errors)
    return NormalizedError(
        ErrorCode.INVALID_PARAMS,
        f"Validation failed for {len(field_errors)} field(s)",
        {"validationResults": [f.model_dump(mode="json") for f in field_errors]},
    )


def field_error(field: str, message: str, value: Any = None, constraint: Optional[str] = None) -> NormalizedError:
    """Shorthand for a single-field validation error."""
    return create_validation_error([FieldValidationError(field=field, value=value, constraint=constraint, message=message)])


def create_connection_error(cause: str, network_details: Optional[NetworkErrorDetails] = None) -> NormalizedError:
    return NormalizedError(
        ErrorCode.CONNECTION_ERROR,
        f"Connection failed: {cause}",
        {"networkDetails": network_details.model_dump(mode="json") if network_details else None, "cause": cause},
        None,
        use_default_status=False,
    )


def create_timeout_error(operation: str, network_details: Optional[NetworkErrorDetails] = None) -> NormalizedError:
    return NormalizedError(
        ErrorCode.TIMEOUT_ERROR,
        f"{operation} timed out",
        {"networkDetails": network_details.model_dump(mode="json") if network_details else None, "cause": "timeout"},
    )


def create_configuration_error(
    config_key: str,
    reason: str,
    extra_details: Optional[dict[str, Any]] = None,
) -> NormalizedError:
    config_details = ConfigurationErrorDetails(config_key=config_key, reason=reason, **(extra_details or {}))
    return NormalizedError(
        ErrorCode.INVALID_REQUEST,
        f"Configuration error for {config_key}: {reason}",
        {"configDetails": config_details.model_dump(mode="json")},
        category=ErrorCategory.CONFIGURATION,
        severity=ErrorSeverity.CRITICAL,
    )


def create_internal_error(message: str, details: Optional[dict[str, Any]] = None) -> NormalizedError:
    return NormalizedError(ErrorCode.INTERNAL_ERROR, message, details)


# ─── Exception funnel ────────────────────────────────────────────────────────


class JasperHTTPError(Exception):
    """Non-2xx response from JasperReports Server, raised by the transport client."""

    def __init__(self, status_code: int, body: Any = None, url: Optional[str] = None, method: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        self.url = url
        self.method = method
        super().__init__(f"HTTP {status_code} from {method or 'request'} {url or ''}".strip())

    @property
    def server_message(self) -> Optional[str]:
        if isinstance(self.body, Mapping):
            for key in ("message", "errorMessage", "error"):
                if self.body.get(key):
                    return str(self.body[key])
            return None
        if isinstance(self.body, str) and self.body.strip():
            return self.body.strip()
        return None


def map_exception(exc: BaseException, context: Optional[str] = None) -> NormalizedError:
    """Convert any exception raised while talking to the server."""
    if isinstance(exc, NormalizedError):
        return exc

    if isinstance(exc, JasperHTTPError):
        if isinstance(exc.body, Mapping) and exc.body.get("errorCode"):
            mapped = map_jasper_error_to_mcp_error(exc.body)
            # keep the taxonomy entry but report the status the server actually sent
            return NormalizedError(
                mapped.code,
                mapped.message,
                mapped.details,
                exc.status_code,
                category=mapped.category,
                severity=mapped.severity,
            )
        message = exc.server_message or f"HTTP {exc.status_code} error"
        if context:
            message = f"{context}: {message}"
        return map_http_status_to_mcp_error(exc.status_code, message, {"response": exc.body, "url": exc.url})

    if isinstance(exc, httpx.TimeoutException):
        return create_timeout_error(context or "Request", _network_details(exc, "timeout"))

    if isinstance(exc, httpx.TransportError):
        cause = "connection_refused" if isinstance(exc, httpx.ConnectError) else type(exc).__name__
        return create_connection_error(str(exc) or cause, _network_details(exc, cause))

    logger.error("Unexpected error%s: %s", f" during {context}" if context else "", exc, exc_info=exc)
    message = f"{context} failed: {exc}" if context else str(exc) or type(exc).__name__
    return create_internal_error(message, {"originalError": type(exc).__name__})


def _network_details(exc: httpx.TransportError, cause: str) -> NetworkErrorDetails:
    try:
        request = exc.request
    except RuntimeError:
        return NetworkErrorDetails(cause=cause)
    # argument auth puts the password in the query string
    url = request.url.copy_remove_param("j_password")
    return NetworkErrorDetails(url=str(url), method=request.method, cause=cause)
