"""In-memory registry of executions and their aggregate statistics."""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Optional

from .errors import ErrorCode, NormalizedError
from .models import (
    ExecutionMode,
    ExecutionRecord,
    ExecutionRequest,
    ExecutionResult,
    ExecutionStatistics,
    ExecutionStatus,
    FormatStats,
    utcnow,
)

logger = logging.getLogger(__name__)

# Fields callers may change on an open record.
_MUTABLE_FIELDS = frozenset({"status", "remote_id", "export_id", "content_type", "file_name"})
DEFAULT_MAX_HISTORY = 100


def _new_execution_id() -> str:
    return f"exec_{uuid.uuid4().hex}"


class ExecutionTracker:
    """Owns execution records and statistics.

    Statistics change only when a record reaches a terminal state, and each
    record is finalized at most once. All mutations happen under one lock so
    ``total == successful + failed`` holds for every snapshot. Only the
    newest ``max_history`` finished records are kept (``None`` keeps all);
    evicting a record never changes the counters.
    """

    def __init__(self, max_history: Optional[int] = DEFAULT_MAX_HISTORY):
        self._max_history = max_history
        self._lock = threading.Lock()
        self._active: dict[str, ExecutionRecord] = {}
        self._history: list[ExecutionRecord] = []
        self._by_id: dict[str, ExecutionRecord] = {}
        self._stats = ExecutionStatistics()

    def begin(self, request: ExecutionRequest, mode: ExecutionMode = ExecutionMode.SYNC) -> str:
        """Register an open record and return its execution id."""
        record = ExecutionRecord(
            execution_id=_new_execution_id(),
            mode=mode,
            report_uri=request.report_uri,
            output_format=request.output_format.lower(),
            parameters=dict(request.parameters),
        )
        with self._lock:
            self._active[record.execution_id] = record
            self._by_id[record.execution_id] = record
        logger.debug("Execution %s registered (%s, %s)", record.execution_id, mode.value, record.report_uri)
        return record.execution_id

    def update(self, execution_id: str, **changes: Any) -> Optional[ExecutionRecord]:
        """Record progress on an open execution (status, remote id, export id)."""
        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        with self._lock:
            record = self._by_id.get(execution_id)
            if record is None:
                return None
            if record.is_terminal:
                return record.model_copy(deep=True)
            if "status" in changes:
                changes["status"] = ExecutionStatus(changes["status"])
                if changes["status"].is_terminal:
                    raise ValueError("Use complete(), fail() or cancel() to finish an execution")
            for name, value in changes.items():
                setattr(record, name, value)
            return record.model_copy(deep=True)

    def complete(self, execution_id: str, result: Optional[ExecutionResult] = None) -> Optional[ExecutionRecord]:
        changes: dict[str, Any] = {"success": True}
        if result is not None:
            changes.update(
                file_name=result.file_name,
                content_type=result.content_type,
                file_size=result.file_size,
            )
        return self._finalize(execution_id, ExecutionStatus.READY, changes)

    def fail(self, execution_id: str, error: NormalizedError) -> Optional[ExecutionRecord]:
        return self._finalize(
            execution_id,
            ExecutionStatus.FAILED,
            {"success": False, "error_code": error.code, "error_message": error.message},
        )

    def cancel(self, execution_id: str) -> Optional[ExecutionRecord]:
        return self._finalize(
            execution_id,
            ExecutionStatus.CANCELLED,
            {"success": False, "error_code": ErrorCode.CANCELLED, "error_message": "Execution cancelled"},
        )

    def _finalize(self, execution_id: str, status: ExecutionStatus, changes: dict[str, Any]) -> Optional[ExecutionRecord]:
        with self._lock:
            record = self._by_id.get(execution_id)
            if record is None:
                logger.warning("Execution %s finished after the tracker was cleared; not recorded", execution_id)
                return None
            if record.is_terminal:
                logger.debug("Execution %s already finalized as %s", execution_id, record.status.value)
                return record.model_copy(deep=True)

            finished = utcnow()
            for name, value in changes.items():
                setattr(record, name, value)
            record.status = status
            record.finished_at = finished
            record.duration_ms = (finished - record.started_at).total_seconds() * 1000

            self._active.pop(execution_id, None)
            self._history.append(record)
            self._evict_locked()
            self._count(record)
            snapshot = record.model_copy(deep=True)

        logger.info(
            "Execution %s finished: %s (%s, %.0f ms)",
            execution_id, status.value, record.output_format, record.duration_ms,
        )
        return snapshot

    def _evict_locked(self) -> None:
        """Drop the oldest finished records beyond the cap. Counters are unaffected."""
        if self._max_history is None:
            return
        while len(self._history) > self._max_history:
            evicted = self._history.pop(0)
            self._by_id.pop(evicted.execution_id, None)

    def _count(self, record: ExecutionRecord) -> None:
        stats = self._stats
        fmt = stats.format_stats.setdefault(record.output_format, FormatStats())
        stats.total_executions += 1
        fmt.executions += 1
        if record.success:
            stats.successful_executions += 1
            fmt.successes += 1
        else:
            stats.failed_executions += 1
            fmt.failures += 1
            if record.status == ExecutionStatus.CANCELLED:
                stats.cancelled_executions += 1
        stats.total_execution_time_ms += record.duration_ms or 0.0
        stats.average_execution_time_ms = stats.total_execution_time_ms / stats.total_executions

    def _get_locked(self, execution_id: str) -> ExecutionRecord:
        record = self._by_id.get(execution_id)
        if record is None:
            raise NormalizedError(
                ErrorCode.RESOURCE_NOT_FOUND,
                f"Execution {execution_id} not found",
                {"executionId": execution_id},
            )
        return record

    def get(self, execution_id: str) -> ExecutionRecord:
        with self._lock:
            return self._get_locked(execution_id).model_copy(deep=True)

    def get_active_executions(self) -> list[ExecutionRecord]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._active.values()]

    def get_execution_history(self, limit: Optional[int] = None) -> list[ExecutionRecord]:
        """Retained terminal records in the order they finished; ``limit`` keeps the most recent."""
        with self._lock:
            history = self._history
            if limit is not None:
                history = history[-limit:] if limit > 0 else []
            return [r.model_copy(deep=True) for r in history]

    def get_statistics(self) -> ExecutionStatistics:
        with self._lock:
            return self._stats.model_copy(deep=True)

    def clear(self) -> None:
        """Drop active records and history and zero every counter."""
        with self._lock:
            self._active.clear()
            self._history.clear()
            self._by_id.clear()
            self._stats = ExecutionStatistics()
        logger.info("Execution history and statistics cleared")
