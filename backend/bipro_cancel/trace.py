"""
Trace logging for cancellation runs.

Provides an append-only trace log and a context manager for timing pipeline
stages. Trace events are written as JSON lines to a single trace.jsonl file;
each event carries the run_id of the run it belongs to.
"""

from __future__ import annotations

import asyncio
import json
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator


class TraceLogger:
    """
    Append-only trace logger.

    Writes JSON line events to the trace file. Each event is a single line
    of JSON, ensuring the file can be read even if the process crashes.
    """

    def __init__(self, trace_path: Path) -> None:
        """
        Initialize the trace logger.

        Args:
            trace_path: Location of the trace.jsonl file. Created on first append.
        """
        self._trace_path = trace_path

    @property
    def trace_path(self) -> Path:
        """Path to the trace file."""
        return self._trace_path

    def append(self, event: dict[str, Any]) -> None:
        """
        Append a trace event to the log file.

        Args:
            event: The event dictionary to log. Should include standard fields
                   like 'ts', 'run_id', 'step', 'status', etc.
        """
        self._trace_path.parent.mkdir(parents=True, exist_ok=True)

        json_line = json.dumps(event, ensure_ascii=False, sort_keys=True)

        # Written synchronously, also from async runs; keep trace_dir on local disk.
        with open(self._trace_path, "a", encoding="utf-8") as f:
            f.write(json_line)
            f.write("\n")

    def read_events(self, run_id: str | None = None) -> list[dict[str, Any]]:
        """
        Read back logged events, optionally only those of one run.

        Returns:
            Events in the order they were appended. Empty if no trace exists yet.
        """
        if not self._trace_path.exists():
            return []
        events = [
            json.loads(line)
            for line in self._trace_path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
        if run_id is None:
            return events
        return [e for e in events if e.get("run_id") == run_id]


def _utc_iso_timestamp() -> str:
    """
    Get current UTC timestamp in ISO-8601 format with Z suffix.

    Returns:
        Timestamp string like '2025-12-12T11:40:12.123456Z'
    """
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def record_event(
    logger: TraceLogger,
    *,
    run_id: str,
    step: str,
    status: str = "ok",
    error: BaseException | None = None,
    **extra: Any,
) -> None:
    """Append a single untimed event, e.g. the outcome of a preview."""
    event: dict[str, Any] = {
        "ts": _utc_iso_timestamp(),
        "run_id": run_id,
        "step": step,
        "status": status,
        **extra,
    }
    if error is not None:
        event["error"] = {
            "kind": error.__class__.__name__,
            "message": str(error),
        }
    logger.append(event)


@contextmanager
def trace_step(
    logger: TraceLogger,
    *,
    run_id: str,
    step: str,
    inputs_ref: list[str] | None = None,
    outputs_ref: list[str] | None = None,
) -> Generator[None, None, None]:
    """
    Context manager for tracing a pipeline step.

    Measures duration, captures success/failure status, and writes a trace event
    when the step completes (either normally or via exception). May wrap awaits
    inside a coroutine.

    Args:
        logger: The TraceLogger to write events to.
        run_id: The run the step belongs to.
        step: Name of the step (e.g., 'stage:mapping').
        inputs_ref: Optional list of input references.
        outputs_ref: Optional list of output references.

    Raises:
        Re-raises any exception that occurs within the context.

    Example:
        with trace_step(logger, run_id=run_id, step="stage:mapping"):
            xml = await client.map_to_xml(customer, policy, pdf)
    """
    start_time = time.perf_counter()
    status = "ok"
    error_info: dict[str, str] | None = None

    try:
        yield
    except asyncio.CancelledError:
        status = "cancelled"
        raise
    except Exception as exc:
        status = "error"
        error_info = {
            "kind": exc.__class__.__name__,
            "message": str(exc),
        }
        raise
    finally:
        end_time = time.perf_counter()
        duration_ms = int((end_time - start_time) * 1000)

        event: dict[str, Any] = {
            "ts": _utc_iso_timestamp(),
            "run_id": run_id,
            "step": step,
            "status": status,
            "duration_ms": duration_ms,
            "inputs_ref": inputs_ref or [],
            "outputs_ref": outputs_ref or [],
        }

        if error_info is not None:
            event["error"] = error_info

        logger.append(event)
