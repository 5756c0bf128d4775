"""Pydantic data models.

The engine, tracker, and MCP server all exchange these models. Records
handed out by the tracker are copies; the tracker owns the originals.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionMode(str, Enum):
    """How a report execution was issued."""

    SYNC = "sync"
    ASYNC = "async"


class ExecutionStatus(str, Enum):
    """Lifecycle state of one execution."""

    VALIDATING = "validating"
    RESOLVING_RESOURCE = "resolving_resource"
    TRANSFORMING_PARAMS = "transforming_params"
    INVOKING = "invoking"
    PENDING = "pending"
    POLLING = "polling"
    READY = "ready"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({ExecutionStatus.READY, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED})


class ErrorCategory(str, Enum):
    """Classification of a normalized error."""

    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    RESOURCE = "resource"
    EXECUTION = "execution"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"


class ErrorSeverity(str, Enum):
    """How serious a normalized error is."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class OutputFormatDescriptor(BaseModel):
    """A report output representation supported by the server."""

    model_config = ConfigDict(frozen=True)

    format: str
    mime_type: str
    extension: str
    binary: bool


class ExecutionRequest(BaseModel):
    """A report-run request. Validation happens in the engine, not here."""

    model_config = ConfigDict(frozen=True)

    report_uri: str = ""
    output_format: str = "pdf"
    parameters: dict[str, Any] = Field(default_factory=dict)
    pages: Optional[str] = Field(None, description="Page range, e.g. '1-5', '1,3,5' or '1-3,7-10'")
    locale: Optional[str] = None
    timezone: Optional[str] = None
    ignore_pagination: bool = False
    fresh_data: bool = False


class ExecutionRecord(BaseModel):
    """One execution as seen by the tracker."""

    execution_id: str
    mode: ExecutionMode
    status: ExecutionStatus = ExecutionStatus.VALIDATING
    report_uri: str
    output_format: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    success: bool = False
    file_name: Optional[str] = None
    content_type: Optional[str] = None
    file_size: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    remote_id: Optional[str] = Field(None, description="Server-side request id of an async execution")
    export_id: Optional[str] = None
    duration_ms: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class FormatStats(BaseModel):
    """Per-format execution counters."""

    executions: int = 0
    successes: int = 0
    failures: int = 0


class ExecutionStatistics(BaseModel):
    """Aggregated counters over all terminal executions."""

    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    cancelled_executions: int = Field(0, description="Subset of failed_executions")
    total_execution_time_ms: float = 0.0
    average_execution_time_ms: float = 0.0
    format_stats: dict[str, FormatStats] = Field(default_factory=dict)


class ExecutionResult(BaseModel):
    """Rendered report content plus packaging metadata."""

    success: bool = True
    status: ExecutionStatus = ExecutionStatus.READY
    execution_id: str
    report_uri: str
    output_format: str
    content: Union[bytes, str]
    content_type: str
    file_name: str
    file_size: int
    generation_time_ms: Optional[float] = None


class AsyncExecutionHandle(BaseModel):
    """Returned when an async execution has been accepted."""

    execution_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    report_uri: str
    output_format: str


class JasperErrorResponse(BaseModel):
    """Untouched error payload returned by JasperReports Server."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    error_code: str = Field("", alias="errorCode")
    message: str = ""
    parameters: list[Any] = Field(default_factory=list)
    error_uid: Optional[str] = Field(None, alias="errorUid")
    properties: Any = Field(default_factory=dict)

    @field_validator("error_code", "message", mode="before")
    @classmethod
    def _text_or_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("parameters", mode="before")
    @classmethod
    def _list_or_empty(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (str, dict)):
            return [value]
        return value


class FieldValidationError(BaseModel):
    """A single field that failed validation."""

    field: str
    value: Any = None
    constraint: Optional[str] = None
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class NetworkErrorDetails(BaseModel):
    """Context about a failed round trip to the server."""

    url: Optional[str] = None
    method: Optional[str] = None
    status_code: Optional[int] = None
    response_time_ms: Optional[float] = None
    retry_attempt: int = 0
    max_retries: int = 0
    cause: Optional[str] = Field(None, description="timeout, connection_refused, dns_error, ...")


class ConfigurationErrorDetails(BaseModel):
    """Context about an invalid configuration value."""

    config_key: str
    config_value: Any = None
    expected_type: Optional[str] = None
    valid_values: list[Any] = Field(default_factory=list)
    reason: str


class ReportMetadata(BaseModel):
    """Resource descriptor of a report unit combined with its input controls."""

    uri: str
    label: Optional[str] = None
    description: Optional[str] = None
    resource_type: Optional[str] = None
    creation_date: Optional[str] = None
    update_date: Optional[str] = None
    version: Optional[int] = None
    input_controls: list[dict[str, Any]] = Field(default_factory=list)
    supported_formats: list[OutputFormatDescriptor] = Field(default_factory=list)


class ReportValidation(BaseModel):
    """Outcome of a pre-flight report check."""

    valid: bool
    resource: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    message: Optional[str] = None
