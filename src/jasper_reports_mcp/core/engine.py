"""Report execution engine.

Validates requests, resolves the report unit, transforms parameters, runs
the report synchronously or as a server-side async job, and records every
outcome in the ExecutionTracker. Anything that goes wrong after local
validation leaves here as a NormalizedError.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import time
from typing import Any, Optional

import httpx

from .clients.jasper import JasperClient
from .errors import (
    ErrorCode,
    NormalizedError,
    create_timeout_error,
    field_error,
    map_exception,
    map_jasper_error_to_mcp_error,
)
from .formats import OutputFormatRegistry, default_registry
from .models import (
    AsyncExecutionHandle,
    ExecutionMode,
    ExecutionRecord,
    ExecutionRequest,
    ExecutionResult,
    ExecutionStatistics,
    ExecutionStatus,
    OutputFormatDescriptor,
    ReportMetadata,
    ReportValidation,
)
from .parameters import transform_parameters
from .tracker import ExecutionTracker

logger = logging.getLogger(__name__)

REPORT_UNIT = "reportUnit"
DEFAULT_MAX_FILE_SIZE = 100 * 1024 * 1024
PAGE_RANGE = re.compile(r"\d+(-\d+)?(,\d+(-\d+)?)*")

# JasperReports async job states -> our terminal states
REMOTE_TERMINAL_STATES = {
    "ready": ExecutionStatus.READY,
    "failed": ExecutionStatus.FAILED,
    "cancelled": ExecutionStatus.CANCELLED,
}


class ReportExecutionEngine:
    """Runs reports against one JasperReports Server."""

    def __init__(
        self,
        client: JasperClient,
        tracker: Optional[ExecutionTracker] = None,
        registry: Optional[OutputFormatRegistry] = None,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    ):
        self.client = client
        self.tracker = tracker or ExecutionTracker()
        self.registry = registry or default_registry
        self.max_file_size = max_file_size

    # ─── Validation ──────────────────────────────────────────────────────────

    def validate_request(self, request: ExecutionRequest) -> OutputFormatDescriptor:
        """Local checks only; raises InvalidParams before anything is recorded."""
        _validate_report_uri(request.report_uri)
        descriptor = self.registry.resolve(request.output_format)
        if request.pages is not None:
            _validate_page_range(request.pages)
        return descriptor

    async def _resolve_report_unit(self, report_uri: str) -> dict[str, Any]:
        resource = await self.client.get_resource(report_uri)
        if not resource:
            raise NormalizedError(
                ErrorCode.RESOURCE_NOT_FOUND,
                f"Report not found: {report_uri}",
                {"resourceUri": report_uri},
            )
        resource_type = resource.get("resourceType")
        if resource_type != REPORT_UNIT:
            raise NormalizedError(
                ErrorCode.INVALID_REQUEST,
                f"Resource at {report_uri} is not a report (type: {resource_type})",
                {"resourceUri": report_uri, "resourceType": resource_type},
            )
        return resource

    def _execution_body(self, request: ExecutionRequest, descriptor: OutputFormatDescriptor, run_async: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "reportUnitUri": request.report_uri,
            "outputFormat": descriptor.format,
            "parameters": transform_parameters(request.parameters),
            "async": run_async,
            "freshData": request.fresh_data,
            "ignorePagination": request.ignore_pagination,
        }
        if request.pages:
            body["pages"] = request.pages
        if request.locale:
            body["locale"] = request.locale
        if request.timezone:
            body["timezone"] = request.timezone
        return body

    def _fail(self, execution_id: str, exc: BaseException, context: str) -> NormalizedError:
        error = map_exception(exc, context)
        self.tracker.fail(execution_id, error)
        logger.warning("Execution %s failed: [%s] %s", execution_id, error.code, error.message)
        return error

    # ─── Synchronous execution ───────────────────────────────────────────────

    async def run_report_sync(self, request: ExecutionRequest) -> ExecutionResult:
        """Render a report in one round trip and return its content."""
        descriptor = self.validate_request(request)
        request = request.model_copy(update={"output_format": descriptor.format})
        execution_id = self.tracker.begin(request, ExecutionMode.SYNC)
        started = time.monotonic()
        logger.info("Running %s as %s (execution %s)", request.report_uri, descriptor.format, execution_id)

        try:
            self.tracker.update(execution_id, status=ExecutionStatus.RESOLVING_RESOURCE)
            await self._resolve_report_unit(request.report_uri)

            self.tracker.update(execution_id, status=ExecutionStatus.TRANSFORMING_PARAMS)
            body = self._execution_body(request, descriptor, run_async=False)

            self.tracker.update(execution_id, status=ExecutionStatus.INVOKING)
            response = await self.client.start_execution(body, accept=descriptor.mime_type)

            result = self._package(
                execution_id,
                request.report_uri,
                descriptor,
                response,
                file_name=f"{_report_name(request.report_uri)}.{descriptor.extension}",
                generation_time_ms=(time.monotonic() - started) * 1000,
            )
        except asyncio.CancelledError:
            self.tracker.cancel(execution_id)
            raise
        except Exception as exc:
            raise self._fail(execution_id, exc, f"Report execution for {request.report_uri}") from exc

        self.tracker.complete(execution_id, result)
        return result

    def _package(
        self,
        execution_id: str,
        report_uri: str,
        descriptor: OutputFormatDescriptor,
        response: httpx.Response,
        file_name: str,
        generation_time_ms: Optional[float] = None,
    ) -> ExecutionResult:
        content_type = response.headers.get("content-type") or descriptor.mime_type
        raw = response.content
        if len(raw) > self.max_file_size:
            raise field_error(
                "file_size",
                f"Generated file size ({len(raw)} bytes) exceeds maximum allowed size ({self.max_file_size} bytes)",
                value=len(raw),
                constraint=f"<= {self.max_file_size}",
            )

        content: bytes | str
        if descriptor.binary:
            content = raw
        else:
            content = response.text

        return ExecutionResult(
            execution_id=execution_id,
            report_uri=report_uri,
            output_format=descriptor.format,
            content=content,
            content_type=content_type,
            file_name=file_name,
            file_size=len(raw),
            generation_time_ms=generation_time_ms,
        )

    # ─── Asynchronous execution ──────────────────────────────────────────────

    async def run_report_async(self, request: ExecutionRequest) -> AsyncExecutionHandle:
        """Start a server-side job and return immediately with a pollable id."""
        descriptor = self.validate_request(request)
        request = request.model_copy(update={"output_format": descriptor.format})
        execution_id = self.tracker.begin(request, ExecutionMode.ASYNC)
        logger.info("Starting async run of %s as %s (execution %s)", request.report_uri, descriptor.format, execution_id)

        try:
            self.tracker.update(execution_id, status=ExecutionStatus.RESOLVING_RESOURCE)
            await self._resolve_report_unit(request.report_uri)

            self.tracker.update(execution_id, status=ExecutionStatus.TRANSFORMING_PARAMS)
            body = self._execution_body(request, descriptor, run_async=True)

            self.tracker.update(execution_id, status=ExecutionStatus.INVOKING)
            response = await self.client.start_execution(body)
            data = response.json() if response.content else {}
            remote_id = data.get("requestId")
            if not remote_id:
                raise NormalizedError(
                    ErrorCode.INTERNAL_ERROR,
                    "Server did not return a request id for the async execution",
                    {"response": data},
                )
        except asyncio.CancelledError:
            self.tracker.cancel(execution_id)
            raise
        except Exception as exc:
            raise self._fail(execution_id, exc, f"Async report execution for {request.report_uri}") from exc

        self.tracker.update(
            execution_id,
            status=ExecutionStatus.PENDING,
            remote_id=remote_id,
            export_id=_first_export_id(data),
            file_name=f"{_report_name(request.report_uri)}.{descriptor.extension}",
            content_type=descriptor.mime_type,
        )
        return AsyncExecutionHandle(
            execution_id=execution_id,
            report_uri=request.report_uri,
            output_format=descriptor.format,
        )

    async def get_execution_status(self, execution_id: str) -> ExecutionRecord:
        """Snapshot of an execution; polls the server while an async job is open."""
        record = self.tracker.get(execution_id)
        if record.is_terminal or record.mode != ExecutionMode.ASYNC or not record.remote_id:
            return record

        try:
            status_data = await self.client.get_execution_status(record.remote_id)
        except Exception as exc:
            error = map_exception(exc, f"Status check for execution {execution_id}")
            if error.code == ErrorCode.RESOURCE_NOT_FOUND:
                # the server dropped the job; nothing more will happen to it
                self.tracker.fail(execution_id, error)
                return self.tracker.get(execution_id)
            raise error from exc

        remote_state = str(status_data.get("value", "")).lower()
        terminal = REMOTE_TERMINAL_STATES.get(remote_state)

        if terminal is None:
            return self.tracker.update(execution_id, status=ExecutionStatus.POLLING) or self.tracker.get(execution_id)

        if terminal == ExecutionStatus.READY:
            self.tracker.complete(execution_id)
        elif terminal == ExecutionStatus.CANCELLED:
            self.tracker.cancel(execution_id)
        else:
            descriptor = status_data.get("errorDescriptor") or {
                "errorCode": "report.execution.failed",
                "message": f"Execution {execution_id} failed on the server",
            }
            self.tracker.fail(execution_id, map_jasper_error_to_mcp_error(descriptor))
        return self.tracker.get(execution_id)

    async def cancel_execution(self, execution_id: str) -> bool:
        """Cancel an open async job. Returns False when there is nothing to cancel."""
        record = self.tracker.get(execution_id)
        if record.is_terminal:
            logger.info("Execution %s is already %s; cancel ignored", execution_id, record.status.value)
            return False
        if record.mode != ExecutionMode.ASYNC or record.status not in (ExecutionStatus.PENDING, ExecutionStatus.POLLING):
            logger.info("Execution %s cannot be cancelled in state %s", execution_id, record.status.value)
            return False

        try:
            await self.client.cancel_execution(record.remote_id)
        except Exception as exc:
            error = map_exception(exc, f"Cancel of execution {execution_id}")
            if error.code == ErrorCode.RESOURCE_NOT_FOUND:
                logger.info("Execution %s already completed or not found on the server", execution_id)
                return False
            raise error from exc

        self.tracker.cancel(execution_id)
        return True

    async def get_execution_result(self, execution_id: str) -> ExecutionResult:
        """Download the output of a finished async execution."""
        record = await self.get_execution_status(execution_id)
        if record.mode != ExecutionMode.ASYNC:
            raise field_error("execution_id", "Only async executions have downloadable results", value=execution_id)
        if record.status != ExecutionStatus.READY:
            raise NormalizedError(
                ErrorCode.INVALID_REQUEST,
                f"Execution {execution_id} is {record.status.value}, not ready",
                {"executionId": execution_id, "status": record.status.value},
            )

        descriptor = self.registry.resolve(record.output_format)
        try:
            export_id = record.export_id or _first_export_id(await self.client.get_execution_details(record.remote_id))
            if not export_id:
                raise NormalizedError(
                    ErrorCode.RESOURCE_NOT_FOUND,
                    f"No export available for execution {execution_id}",
                    {"executionId": execution_id},
                )
            response = await self.client.get_export_output(record.remote_id, export_id)
        except Exception as exc:
            raise map_exception(exc, f"Result download for execution {execution_id}") from exc

        detected = self.registry.find_by_content_type(response.headers.get("content-type"))
        if detected is not None and detected.format != descriptor.format:
            logger.warning(
                "Execution %s returned %s content but was requested as %s",
                execution_id,
                detected.format,
                descriptor.format,
            )

        return self._package(
            execution_id,
            record.report_uri,
            descriptor,
            response,
            file_name=record.file_name or f"{_report_name(record.report_uri)}.{descriptor.extension}",
        )

    async def poll_until_complete(
        self,
        execution_id: str,
        interval: float = 5.0,
        max_attempts: int = 360,
    ) -> ExecutionRecord:
        """Poll an execution until it reaches a terminal state."""
        for attempt in range(1, max_attempts + 1):
            record = await self.get_execution_status(execution_id)
            if record.is_terminal:
                logger.debug("Execution %s terminal after %d poll(s)", execution_id, attempt)
                return record
            await asyncio.sleep(interval)
        raise create_timeout_error(f"Polling execution {execution_id} ({max_attempts * interval:.0f}s)")

    async def refresh_active_executions(self) -> int:
        """Poll every open async execution once. Returns how many were due for a check."""
        pending = [
            r for r in self.tracker.get_active_executions()
            if r.mode == ExecutionMode.ASYNC and r.status in (ExecutionStatus.PENDING, ExecutionStatus.POLLING)
        ]
        for record in pending:
            try:
                await self.get_execution_status(record.execution_id)
            except NormalizedError as exc:
                logger.warning("Status refresh for %s failed: [%s] %s", record.execution_id, exc.code, exc.message)
                if exc.requires_authentication():
                    logger.error("Stopping status refresh: server rejected the credentials")
                    break
        return len(pending)

    # ─── Report metadata ─────────────────────────────────────────────────────

    async def validate_report(self, report_uri: str) -> ReportValidation:
        """Pre-flight check that never raises."""
        try:
            _validate_report_uri(report_uri)
            resource = await self.client.get_resource(report_uri)
        except Exception as exc:
            error = map_exception(exc, f"Report validation for {report_uri}")
            return ReportValidation(valid=False, error=error.message)

        if not resource:
            return ReportValidation(valid=False, error=f"Report not found or not accessible: {report_uri}")
        if resource.get("resourceType") != REPORT_UNIT:
            return ReportValidation(
                valid=False,
                resource=resource,
                error=f"Resource at {report_uri} is not a report (type: {resource.get('resourceType')})",
            )
        return ReportValidation(valid=True, resource=resource, message="Report is valid and accessible")

    async def get_report_metadata(self, report_uri: str) -> ReportMetadata:
        _validate_report_uri(report_uri)
        try:
            resource = await self.client.get_resource(report_uri)
        except Exception as exc:
            raise map_exception(exc, f"Metadata lookup for {report_uri}") from exc
        if not resource:
            raise NormalizedError(ErrorCode.RESOURCE_NOT_FOUND, f"Report not found: {report_uri}", {"resourceUri": report_uri})

        try:
            input_controls = await self.client.get_input_controls(report_uri)
        except Exception as exc:
            error = map_exception(exc, f"Input controls for {report_uri}")
            logger.warning("Could not retrieve input controls for %s: %s", report_uri, error.message)
            input_controls = []

        return ReportMetadata(
            uri=resource.get("uri", report_uri),
            label=resource.get("label"),
            description=resource.get("description"),
            resource_type=resource.get("resourceType"),
            creation_date=resource.get("creationDate"),
            update_date=resource.get("updateDate"),
            version=resource.get("version"),
            input_controls=input_controls,
            supported_formats=self.registry.list(),
        )

    # ─── Tracker passthroughs ────────────────────────────────────────────────

    def get_supported_formats(self) -> list[OutputFormatDescriptor]:
        return self.registry.list()

    def get_execution_statistics(self) -> ExecutionStatistics:
        return self.tracker.get_statistics()

    def get_execution_history(self, limit: Optional[int] = None) -> list[ExecutionRecord]:
        return self.tracker.get_execution_history(limit)

    def get_active_executions(self) -> list[ExecutionRecord]:
        return self.tracker.get_active_executions()

    def clear_execution_history(self) -> None:
        self.tracker.clear()


def _validate_report_uri(report_uri: Optional[str]) -> None:
    if not report_uri or not report_uri.strip():
        raise field_error("report_uri", "Report URI is required", value=report_uri, constraint="non-empty string")
    if not report_uri.startswith("/"):
        raise field_error("report_uri", "Report URI must start with '/'", value=report_uri, constraint="absolute repository path")


def _validate_page_range(pages: str) -> None:
    if not PAGE_RANGE.fullmatch(pages):
        raise field_error(
            "pages",
            'Invalid page range format. Use formats like "1-5", "1,3,5", or "1-3,7-10"',
            value=pages,
            constraint="valid page range format",
        )
    for part in pages.split(","):
        if "-" in part:
            start, end = (int(p) for p in part.split("-"))
            if start >= end:
                raise field_error(
                    "pages",
                    f"Invalid page range: start page ({start}) must be less than end page ({end})",
                    value=part,
                    constraint="valid page range",
                )


def _report_name(report_uri: str) -> str:
    return report_uri.rstrip("/").rsplit("/", 1)[-1] or "report"


def _first_export_id(data: dict[str, Any]) -> Optional[str]:
    exports = data.get("exports") or []
    for export in exports:
        if isinstance(export, dict) and export.get("id"):
            return str(export["id"])
    return None


def encode_content(result: ExecutionResult) -> dict[str, Any]:
    """JSON-safe view of a result; binary content is base64-encoded."""
    payload = result.model_dump(mode="json", exclude={"content"})
    if isinstance(result.content, bytes):
        payload["content"] = base64.b64encode(result.content).decode("ascii")
        payload["content_encoding"] = "base64"
    else:
        payload["content"] = result.content
        payload["content_encoding"] = "utf-8"
    return payload
