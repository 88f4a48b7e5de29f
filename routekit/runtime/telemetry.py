"""
telemetry.py - Execution records, derived statistics and optional export.

Every top-level ExecutionEngine.execute() call produces exactly one
ExecutionRecord. Records live in a bounded in-memory buffer (oldest evicted
first) for the lifetime of the client session; nothing is persisted.

Key features:
- Bounded history: deque(maxlen=capacity), append never awaits
- Fallback events: one per hop taken through a versioned fallback chain
- Stats: success rate, average/maximum duration, per-kind counts
- Export: JSON snapshot of records, fallback events and stats
- Sinks: optional fire-and-forget delivery; sink failures are logged and
  never affect command execution

Usage:
    from routekit.runtime.telemetry import ExecutionTelemetry, LoggingTelemetrySink

    telemetry = ExecutionTelemetry(capacity=100, sink=LoggingTelemetrySink())
    telemetry.record_execution("exec-1", command, "success", duration_ms=12.5)
    stats = telemetry.get_stats()
    print(stats.success_rate)  # "100.0%"
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections import Counter, deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Literal, Optional, Set, Union

from routekit.config.runtime_config import get_int_setting
from routekit.runtime.types import command_type_name, utc_now
from routekit.runtime.types._time import _datetime_to_iso

logger = logging.getLogger(__name__)

ExecutionStatus = Literal["success", "error"]


@dataclass(frozen=True)
class ExecutionRecord:
    """Immutable outcome of one top-level command execution.

    Attributes:
        execution_id: Opaque unique token for the execution.
        command_type: Wire tag of the executed command.
        status: "success" or "error".
        started_at: UTC start time.
        duration_ms: Wall-clock duration, when known.
        error: Error message for failed executions.
        version: Protocol version of the envelope, for versioned commands.
    """

    execution_id: str
    command_type: str
    status: ExecutionStatus
    started_at: datetime
    duration_ms: Optional[float] = None
    error: Optional[str] = None
    version: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "command_type": self.command_type,
            "status": self.status,
            "started_at": _datetime_to_iso(self.started_at),
            "duration_ms": self.duration_ms,
            "error": self.error,
            "version": self.version,
        }


@dataclass(frozen=True)
class FallbackEvent:
    """One hop through a versioned fallback chain."""

    execution_id: str
    original_version: int
    fallback_version: int
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "original_version": self.original_version,
            "fallback_version": self.fallback_version,
            "timestamp": _datetime_to_iso(self.timestamp),
        }


@dataclass
class ExecutionStats:
    """Statistics derived from the current history buffer."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: str = "0%"
    avg_duration_ms: float = 0
    max_duration_ms: float = 0
    command_types: Dict[str, int] = field(default_factory=dict)
    last_execution: Optional[str] = None
    fallback_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "avg_duration_ms": self.avg_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "command_types": dict(self.command_types),
            "last_execution": self.last_execution,
            "fallback_count": self.fallback_count,
        }


# =============================================================================
# Sinks
# =============================================================================


class TelemetrySink(ABC):
    """Destination for execution records (metrics endpoint, log, file...)."""

    @abstractmethod
    async def submit(self, record: ExecutionRecord) -> None:
        """Deliver one record. Exceptions are logged by the caller and dropped."""
        ...


class LoggingTelemetrySink(TelemetrySink):
    """Writes each record to a logger; failures at WARNING, successes at DEBUG."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger

    async def submit(self, record: ExecutionRecord) -> None:
        if record.status == "error":
            self._log.warning(
                "Route command %s [%s] failed after %sms: %s",
                record.command_type,
                record.execution_id,
                record.duration_ms,
                record.error,
            )
        else:
            self._log.debug(
                "Route command %s [%s] completed in %sms",
                record.command_type,
                record.execution_id,
                record.duration_ms,
            )


class JsonlTelemetrySink(TelemetrySink):
    """Appends records to a newline-delimited JSON file.

    File writes run on a single worker thread so the event loop never blocks
    on disk I/O and lines land in submission order.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="routekit-jsonl")

    @property
    def path(self) -> Path:
        return self._path

    async def submit(self, record: ExecutionRecord) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._executor, self._append, line)

    def close(self) -> None:
        """Wait for pending writes and stop the worker thread."""
        self._executor.shutdown(wait=True)

    def _append(self, line: str) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
        except OSError as e:
            logger.warning("Failed to append execution record to %s: %s", self._path, e)


# =============================================================================
# Telemetry
# =============================================================================


class ExecutionTelemetry:
    """Bounded execution history with derived statistics.

    The engine runs on a single event loop, so no locking is needed; every
    mutation below completes without an await between the size check and the
    append.
    """

    def __init__(
        self,
        capacity: Optional[int] = None,
        sink: Optional[TelemetrySink] = None,
        slow_threshold_ms: Optional[int] = None,
    ) -> None:
        """Initialize telemetry.

        Args:
            capacity: Maximum records kept; defaults to the configured
                history_capacity.
            sink: Optional external destination for each record.
            slow_threshold_ms: Durations above this are logged as slow;
                defaults to the configured slow_execution_ms.
        """
        if capacity is None:
            capacity = get_int_setting("history_capacity")
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if slow_threshold_ms is None:
            slow_threshold_ms = get_int_setting("slow_execution_ms")

        self._capacity = capacity
        self._sink = sink
        self._slow_threshold_ms = slow_threshold_ms
        self._records: Deque[ExecutionRecord] = deque(maxlen=capacity)
        self._fallbacks: Deque[FallbackEvent] = deque(maxlen=capacity)
        self._pending: Set["asyncio.Task[None]"] = set()

    @property
    def capacity(self) -> int:
        return self._capacity

    def record_execution(
        self,
        execution_id: str,
        command: Any,
        status: ExecutionStatus,
        error: Optional[str] = None,
        *,
        duration_ms: Optional[float] = None,
        started_at: Optional[datetime] = None,
        version: Optional[int] = None,
    ) -> ExecutionRecord:
        """Append a finalized record to the history buffer.

        Args:
            execution_id: Token identifying the execution.
            command: The command, envelope, raw wire dict or tag string.
            status: "success" or "error".
            error: Error message for failed executions.
            duration_ms: Measured duration.
            started_at: Start time; defaults to now.
            version: Envelope protocol version, if any.

        Returns:
            The stored record.
        """
        command_type = command if isinstance(command, str) else command_type_name(command)
        record = ExecutionRecord(
            execution_id=execution_id,
            command_type=command_type,
            status=status,
            started_at=started_at or utc_now(),
            duration_ms=duration_ms,
            error=error,
            version=version,
        )
        self._records.append(record)

        if (
            duration_ms is not None
            and self._slow_threshold_ms
            and duration_ms > self._slow_threshold_ms
        ):
            logger.warning(
                "Slow route command execution [%s]: %s took %.0fms",
                execution_id,
                command_type,
                duration_ms,
            )

        self._submit(record)
        return record

    def record_fallback(
        self, execution_id: str, original_version: int, fallback_version: int
    ) -> FallbackEvent:
        """Record one hop through a fallback chain."""
        event = FallbackEvent(
            execution_id=execution_id,
            original_version=original_version,
            fallback_version=fallback_version,
        )
        self._fallbacks.append(event)
        logger.info(
            "Route command [%s] falling back from version %d to %d",
            execution_id,
            original_version,
            fallback_version,
        )
        return event

    def get_history(self) -> List[ExecutionRecord]:
        """Records currently held, oldest first."""
        return list(self._records)

    def get_fallback_events(self) -> List[FallbackEvent]:
        return list(self._fallbacks)

    def clear_history(self) -> None:
        self._records.clear()
        self._fallbacks.clear()

    def get_stats(self) -> ExecutionStats:
        """Compute statistics over the current buffer.

        Safe on an empty buffer: the rate is "0%" and durations are 0.
        """
        records = list(self._records)
        total = len(records)
        successful = sum(1 for r in records if r.status == "success")
        durations = [r.duration_ms for r in records if r.duration_ms is not None]

        return ExecutionStats(
            total=total,
            successful=successful,
            failed=total - successful,
            success_rate=f"{successful / total * 100:.1f}%" if total else "0%",
            avg_duration_ms=sum(durations) / len(durations) if durations else 0,
            max_duration_ms=max(durations) if durations else 0,
            command_types=dict(Counter(r.command_type for r in records)),
            last_execution=_datetime_to_iso(records[-1].started_at) if records else None,
            fallback_count=len(self._fallbacks),
        )

    def export_history(self) -> str:
        """Serialize the buffer and stats as a JSON snapshot."""
        snapshot = {
            "exported_at": _datetime_to_iso(utc_now()),
            "capacity": self._capacity,
            "stats": self.get_stats().to_dict(),
            "records": [r.to_dict() for r in self._records],
            "fallback_events": [e.to_dict() for e in self._fallbacks],
        }
        return json.dumps(snapshot, indent=2, ensure_ascii=False)

    async def flush(self) -> None:
        """Wait for in-flight sink submissions to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _submit(self, record: ExecutionRecord) -> None:
        if self._sink is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; skipping telemetry sink for %s", record.execution_id)
            return

        task = loop.create_task(self._deliver(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, record: ExecutionRecord) -> None:
        assert self._sink is not None
        try:
            await self._sink.submit(record)
        except Exception as e:
            logger.warning(
                "Telemetry sink failed for execution %s: %s",
                record.execution_id,
                e,
            )
