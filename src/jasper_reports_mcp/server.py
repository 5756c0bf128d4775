"""JasperReports MCP Server.

FastMCP server exposing report execution on a JasperReports Server as tools.
Run: jasper-reports-mcp
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Iterator, Optional

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.types import ToolAnnotations

from .config import load_config
from .core.clients.jasper import JasperClient
from .core.engine import ReportExecutionEngine, encode_content
from .core.errors import NormalizedError
from .core.models import ExecutionRecord, ExecutionRequest
from .core.tracker import ExecutionTracker
from .watcher import ExecutionWatcher

logger = logging.getLogger(__name__)

READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False, idempotentHint=True, openWorldHint=True)
RUNS_REPORT = ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=False, openWorldHint=True)
TRACKS_EXECUTION = ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=True, openWorldHint=True)
LOCAL_RESET = ToolAnnotations(readOnlyHint=False, destructiveHint=True, idempotentHint=True, openWorldHint=False)

engine: Optional[ReportExecutionEngine] = None


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Load configuration, open the server connection, start the async execution watcher."""
    global engine
    config = load_config()
    logging.basicConfig(level=config.effective_log_level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    # httpx logs full request URLs at INFO, including j_password for argument auth
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logger.info("Connecting to JasperReports Server at %s (auth: %s)", config.url, config.auth_type)

    client = JasperClient(config)
    engine = ReportExecutionEngine(
        client,
        tracker=ExecutionTracker(max_history=config.max_history),
        max_file_size=config.max_file_size,
    )
    watcher = ExecutionWatcher(engine, config.poll_interval_seconds)
    await watcher.start()
    try:
        yield
    finally:
        await watcher.stop()
        await client.aclose()
        engine = None


mcp = FastMCP(
    "JasperReports",
    instructions="Run JasperReports Server reports in PDF, Excel, Word, HTML, CSV and other formats, synchronously or as tracked async jobs, and inspect report metadata and execution statistics.",
    lifespan=lifespan,
)


def _get_engine() -> ReportExecutionEngine:
    if engine is None:
        raise ToolError("JasperReports engine is not initialized")
    return engine


@contextmanager
def _tool_errors() -> Iterator[None]:
    """Surface NormalizedError to protocol clients as a JSON ToolError."""
    try:
        yield
    except NormalizedError as exc:
        logger.warning("Tool failed: [%s] %s", exc.code, exc.message)
        payload = exc.to_dict()
        payload["retryable"] = exc.is_retryable()
        payload["requires_authentication"] = exc.requires_authentication()
        raise ToolError(json.dumps(payload)) from exc


def _record_to_dict(record: ExecutionRecord) -> dict[str, Any]:
    return record.model_dump(mode="json")


def _build_request(
    report_uri: str,
    output_format: str,
    parameters: Optional[dict[str, Any]],
    pages: Optional[str],
    locale: Optional[str],
    timezone: Optional[str],
    ignore_pagination: bool,
    fresh_data: bool,
) -> ExecutionRequest:
    return ExecutionRequest(
        report_uri=report_uri,
        output_format=output_format,
        parameters=parameters or {},
        pages=pages or None,
        locale=locale or None,
        timezone=timezone or None,
        ignore_pagination=ignore_pagination,
        fresh_data=fresh_data,
    )


# ─── Tool 1: Run Report (sync) ───────────────────────────────────────────────


@mcp.tool(annotations=RUNS_REPORT)
async def jasper_run_report_sync(
    report_uri: str,
    output_format: str = "pdf",
    parameters: Optional[dict[str, Any]] = None,
    pages: Optional[str] = None,
    locale: Optional[str] = None,
    timezone: Optional[str] = None,
    ignore_pagination: bool = False,
    fresh_data: bool = False,
) -> dict:
    """Run a report and return its content in one call.

    Binary formats (pdf, xlsx, docx, ...) come back base64-encoded.

    Args:
        report_uri: Repository path of the report unit, e.g. '/reports/samples/AllAccounts'.
        output_format: pdf, html, xlsx, xls, csv, rtf, docx, odt, ods or xml. Default 'pdf'.
        parameters: Input control values keyed by parameter name. Lists select multiple values.
        pages: Page range such as '1-5', '1,3,5' or '1-3,7-10'.
        locale: Report locale, e.g. 'en_US'.
        timezone: Report time zone, e.g. 'America/New_York'.
        ignore_pagination: Render as a single page.
        fresh_data: Bypass the server's data snapshot cache.
    """
    request = _build_request(report_uri, output_format, parameters, pages, locale, timezone, ignore_pagination, fresh_data)
    with _tool_errors():
        result = await _get_engine().run_report_sync(request)
    payload = encode_content(result)
    payload["summary"] = f"Generated {result.file_name} ({result.file_size} bytes, {result.content_type})"
    return payload


# ─── Tool 2: Run Report (async) ──────────────────────────────────────────────


@mcp.tool(annotations=RUNS_REPORT)
async def jasper_run_report_async(
    report_uri: str,
    output_format: str = "pdf",
    parameters: Optional[dict[str, Any]] = None,
    pages: Optional[str] = None,
    locale: Optional[str] = None,
    timezone: Optional[str] = None,
    ignore_pagination: bool = False,
    fresh_data: bool = False,
) -> dict:
    """Start a report as a server-side job and return an execution id to poll.

    Use jasper_get_execution_status to follow it and jasper_get_execution_result
    to download the output once it is ready.

    Args:
        report_uri: Repository path of the report unit.
        output_format: pdf, html, xlsx, xls, csv, rtf, docx, odt, ods or xml. Default 'pdf'.
        parameters: Input control values keyed by parameter name.
        pages: Page range such as '1-5'.
        locale: Report locale.
        timezone: Report time zone.
        ignore_pagination: Render as a single page.
        fresh_data: Bypass the server's data snapshot cache.
    """
    request = _build_request(report_uri, output_format, parameters, pages, locale, timezone, ignore_pagination, fresh_data)
    with _tool_errors():
        handle = await _get_engine().run_report_async(request)
    payload = handle.model_dump(mode="json")
    payload["summary"] = f"Execution {handle.execution_id} started for {handle.report_uri} ({handle.output_format})"
    return payload


# ─── Tool 3: Execution Status ────────────────────────────────────────────────


@mcp.tool(annotations=TRACKS_EXECUTION)
async def jasper_get_execution_status(execution_id: str) -> dict:
    """Current state of an execution: pending, polling, ready, failed or cancelled.

    Args:
        execution_id: Id returned by jasper_run_report_async or jasper_run_report_sync.
    """
    with _tool_errors():
        record = await _get_engine().get_execution_status(execution_id)
    payload = _record_to_dict(record)
    summary = f"Execution {execution_id} is {record.status.value}"
    if record.error_message:
        summary += f": {record.error_message}"
    payload["summary"] = summary
    return payload


# ─── Tool 4: Execution Result ────────────────────────────────────────────────


@mcp.tool(annotations=TRACKS_EXECUTION)
async def jasper_get_execution_result(execution_id: str) -> dict:
    """Download the output of a finished async execution.

    Args:
        execution_id: Id returned by jasper_run_report_async.
    """
    with _tool_errors():
        result = await _get_engine().get_execution_result(execution_id)
    payload = encode_content(result)
    payload["summary"] = f"Downloaded {result.file_name} ({result.file_size} bytes)"
    return payload


# ─── Tool 5: Cancel Execution ────────────────────────────────────────────────


@mcp.tool(annotations=RUNS_REPORT)
async def jasper_cancel_execution(execution_id: str) -> dict:
    """Cancel a running async execution. Sync and finished executions cannot be cancelled.

    Args:
        execution_id: Id returned by jasper_run_report_async.
    """
    with _tool_errors():
        cancelled = await _get_engine().cancel_execution(execution_id)
    return {
        "execution_id": execution_id,
        "cancelled": cancelled,
        "summary": f"Execution {execution_id} cancelled" if cancelled else f"Execution {execution_id} was not running; nothing to cancel",
    }


# ─── Tool 6: Validate Report ─────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def jasper_validate_report(report_uri: str) -> dict:
    """Check that a repository path exists and is a runnable report unit.

    Args:
        report_uri: Repository path to check.
    """
    validation = await _get_engine().validate_report(report_uri)
    payload = validation.model_dump(mode="json")
    payload["summary"] = validation.message if validation.valid else f"Invalid: {validation.error}"
    return payload


# ─── Tool 7: Report Metadata ─────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def jasper_get_report_metadata(report_uri: str) -> dict:
    """Report descriptor with its input controls and the output formats it can be run in.

    Args:
        report_uri: Repository path of the report unit.
    """
    with _tool_errors():
        metadata = await _get_engine().get_report_metadata(report_uri)
    payload = metadata.model_dump(mode="json")
    payload["summary"] = f"{metadata.label or metadata.uri}: {len(metadata.input_controls)} input control(s)"
    return payload


# ─── Tool 8: Supported Formats ───────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def jasper_get_supported_formats() -> dict:
    """Output formats reports can be rendered in. No arguments needed."""
    formats = _get_engine().get_supported_formats()
    return {
        "formats": [f.model_dump(mode="json") for f in formats],
        "summary": "Supported formats: " + ", ".join(f.format for f in formats),
    }


# ─── Tool 9: Execution Statistics ────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def jasper_get_execution_statistics() -> dict:
    """Counts of successful, failed and cancelled executions since start or last clear."""
    stats = _get_engine().get_execution_statistics()
    payload = stats.model_dump(mode="json")
    payload["active_executions"] = len(_get_engine().get_active_executions())
    payload["summary"] = (
        f"{stats.total_executions} execution(s): {stats.successful_executions} succeeded, "
        f"{stats.failed_executions} failed ({stats.cancelled_executions} cancelled). "
        f"Average {stats.average_execution_time_ms:.0f} ms."
    )
    return payload


# ─── Tool 10: Execution History ──────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def jasper_get_execution_history(limit: int = 50) -> dict:
    """Finished executions, oldest first.

    Args:
        limit: Keep only the most recent N records. 0 or less returns all. Default 50.
    """
    history = _get_engine().get_execution_history(limit if limit > 0 else None)
    return {
        "executions": [_record_to_dict(r) for r in history],
        "count": len(history),
        "summary": f"{len(history)} finished execution(s)",
    }


# ─── Tool 11: Clear History ──────────────────────────────────────────────────


@mcp.tool(annotations=LOCAL_RESET)
async def jasper_clear_execution_history() -> dict:
    """Reset execution history and statistics. Running async jobs are forgotten, not cancelled."""
    _get_engine().clear_execution_history()
    return {"cleared": True, "summary": "Execution history and statistics cleared"}


def main():
    """Entry point for the CLI command."""
    mcp.run()


if __name__ == "__main__":
    main()
