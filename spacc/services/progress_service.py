"""Progress sessions: typed event channel, cooperative cancellation, cleanup.

A ``ProgressSessionManager`` owns the registry of live sessions.  Each long
operation gets a ``ProgressChannel`` from ``open()``; the operation produces
events into the channel and checks ``check_cancelled()`` at its natural
checkpoints, while a separate consumer (the SSE response) drains
``channel.events()``.  The two sides only share the channel's queue.

Thread-safety: safe under asyncio's single-threaded cooperative model.
Session flags are plain attributes mutated without await points.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import TYPE_CHECKING, Any, TypeVar

from spacc.exceptions import OperationCancelledError
from spacc.services.datetime_service import format_iso, now_utc

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

    from spacc.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ERROR_TAIL = 10


class EventKind(StrEnum):
    """Kinds of events a channel emits."""

    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"
    HEARTBEAT = "heartbeat"


_TERMINAL_KINDS = frozenset({EventKind.COMPLETE, EventKind.ERROR, EventKind.CANCELLED})


@dataclass(frozen=True)
class ProgressEvent:
    """One event on a progress channel."""

    kind: EventKind
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.kind in _TERMINAL_KINDS


@dataclass(frozen=True)
class ProgressStep:
    """A named step of an operation and its share of global progress."""

    name: str
    weight: int
    label: str


class ProgressPlan:
    """Ordered, weighted steps of one kind of operation. Weights sum to 100."""

    def __init__(self, steps: Sequence[ProgressStep]) -> None:
        names = [step.name for step in steps]
        if len(set(names)) != len(names):
            msg = f"Duplicate step names: {names}"
            raise ValueError(msg)
        total = sum(step.weight for step in steps)
        if total != 100:
            msg = f"Step weights must sum to 100, got {total}"
            raise ValueError(msg)
        self.steps: tuple[ProgressStep, ...] = tuple(steps)
        self._index = {step.name: index for index, step in enumerate(self.steps)}

    def label(self, step: str) -> str:
        index = self._index.get(step)
        return self.steps[index].label if index is not None else step

    def global_progress(self, step: str, step_progress: float) -> int:
        """Weights of completed steps plus the current step's weighted share.

        Unknown steps count as 0. Result is rounded and clamped to [0, 100].
        """
        index = self._index.get(step)
        if index is None:
            return 0
        completed = sum(s.weight for s in self.steps[:index])
        fraction = min(max(step_progress, 0.0), 100.0) / 100
        value = completed + self.steps[index].weight * fraction
        return round(min(max(value, 0.0), 100.0))


AUDIT_PLAN = ProgressPlan(
    [
        ProgressStep("source_inventory", 45, "Reading source library"),
        ProgressStep("target_inventory", 40, "Reading target project"),
        ProgressStep("diff", 5, "Comparing inventories"),
        ProgressStep("report", 10, "Writing report"),
    ]
)

REPAIR_PLAN = ProgressPlan(
    [
        ProgressStep("loading", 5, "Loading report"),
        ProgressStep("transferring", 90, "Transferring files"),
        ProgressStep("finalizing", 5, "Finalizing"),
    ]
)

SYNC_PLAN = ProgressPlan(
    [
        ProgressStep("source_inventory", 25, "Reading source library"),
        ProgressStep("target_inventory", 20, "Reading target project"),
        ProgressStep("diff", 5, "Comparing inventories"),
        ProgressStep("report", 5, "Writing report"),
        ProgressStep("transferring", 40, "Transferring files"),
        ProgressStep("finalizing", 5, "Finalizing"),
    ]
)


@dataclass
class ProgressSession:
    """Server-side bookkeeping for one long-running operation."""

    session_id: str
    started_at: float
    cancelled: bool = False
    client_disconnected: bool = False
    completed: bool = False

    def info(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "cancelled": self.cancelled,
            "client_disconnected": self.client_disconnected,
            "completed": self.completed,
            "started_at": format_iso(datetime.fromtimestamp(self.started_at, tz=timezone.utc)),
            "running_for_ms": int((time.time() - self.started_at) * 1000),
        }


@dataclass(frozen=True)
class CancelResult:
    """Outcome of a cancel request."""

    ok: bool
    message: str


class ProgressChannel:
    """Typed event channel for one operation instance."""

    def __init__(
        self,
        manager: ProgressSessionManager,
        session: ProgressSession,
        plan: ProgressPlan,
        *,
        throttle_ms: int,
        heartbeat_seconds: float,
        abort_on_disconnect: bool = False,
    ) -> None:
        self._manager = manager
        self._session = session
        self._plan = plan
        self._throttle = throttle_ms / 1000
        self._heartbeat = heartbeat_seconds
        self._abort_on_disconnect = abort_on_disconnect
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        self._last_emit = float("-inf")
        self._last_progress = 0
        self._started = time.monotonic()
        self._errors: list[dict[str, str]] = []
        self._bytes_transferred = 0
        self._files_processed = 0
        self._closed = False
        self.current_step: str | None = None

    @property
    def session_id(self) -> str:
        return self._session.session_id

    @property
    def closed(self) -> bool:
        """True once a terminal event has been emitted."""
        return self._closed

    # ── Cancellation ───────────────────────────────────

    def is_cancelled(self) -> bool:
        """True when the user explicitly cancelled the session."""
        return self._session.cancelled

    def is_client_disconnected(self) -> bool:
        return self._session.client_disconnected

    def should_abort(self) -> bool:
        """True when the operation should stop at its next checkpoint.

        A client disconnection alone does not abort unless the channel was
        opened with ``abort_on_disconnect``.
        """
        return self._session.cancelled or (
            self._abort_on_disconnect and self._session.client_disconnected
        )

    def check_cancelled(self, partial_result: dict[str, Any] | None = None) -> None:
        """Raise ``OperationCancelledError`` if the operation should stop."""
        if self.should_abort():
            raise OperationCancelledError(partial_result)

    # ── Stats ──────────────────────────────────────────

    def add_non_critical_error(self, message: str) -> None:
        self._errors.append({"timestamp": format_iso(now_utc()), "message": message})

    def update_stats(self, *, bytes_transferred: int = 0, files: int = 0) -> None:
        self._bytes_transferred += bytes_transferred
        self._files_processed += files

    def stats(self) -> dict[str, Any]:
        return {
            "duration_ms": int((time.monotonic() - self._started) * 1000),
            "files_processed": self._files_processed,
            "bytes_transferred": self._bytes_transferred,
        }

    # ── Emission ───────────────────────────────────────

    def _put(self, event: ProgressEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except Exception as exc:
            logger.error("Failed to queue %s event for %s: %s", event.kind, self.session_id, exc)

    def progress(
        self,
        step: str,
        step_progress: float = 0,
        message: str = "",
        *,
        force: bool = False,
        total_items: int = 0,
        processed_items: int = 0,
        current_item: str = "",
        bytes_total: int = 0,
    ) -> None:
        """Emit a throttled progress event.

        Global progress never decreases within a session, even if a caller
        reports a smaller value for a later call.
        """
        if self._closed:
            return
        self.current_step = step
        now = time.monotonic()
        if not force and now - self._last_emit < self._throttle:
            return
        self._last_emit = now
        self._last_progress = max(
            self._last_progress, self._plan.global_progress(step, step_progress)
        )
        self._put(
            ProgressEvent(
                EventKind.PROGRESS,
                {
                    "session_id": self.session_id,
                    "status": "running",
                    "progress": self._last_progress,
                    "current_step": step,
                    "step_progress": round(min(max(step_progress, 0), 100)),
                    "step_label": self._plan.label(step),
                    "message": message,
                    "details": {
                        "total_items": total_items,
                        "processed_items": processed_items,
                        "current_item": current_item,
                        "bytes_transferred": self._bytes_transferred,
                        "bytes_total": bytes_total,
                        "errors": self._errors[-_ERROR_TAIL:],
                    },
                },
            )
        )

    def _terminate(self, event: ProgressEvent) -> None:
        if self._closed:
            logger.debug("Ignoring %s event on closed session %s", event.kind, self.session_id)
            return
        self._closed = True
        self._put(event)
        self._manager.mark_completed(self.session_id)

    def complete(self, result: Any, summary: dict[str, Any] | None = None) -> None:
        self._terminate(
            ProgressEvent(
                EventKind.COMPLETE,
                {
                    "session_id": self.session_id,
                    "status": "completed",
                    "progress": 100,
                    "result": result,
                    "summary": {**self.stats(), **(summary or {}), "errors": list(self._errors)},
                },
            )
        )

    def error(
        self,
        error: BaseException | str,
        *,
        failed_at: str | None = None,
        partial_result: Any = None,
        can_retry: bool = True,
    ) -> None:
        self._terminate(
            ProgressEvent(
                EventKind.ERROR,
                {
                    "session_id": self.session_id,
                    "status": "error",
                    "error": str(error) or type(error).__name__,
                    "failed_at": failed_at or self.current_step or "unknown",
                    "can_retry": can_retry,
                    "partial_result": partial_result,
                    "summary": {**self.stats(), "errors": list(self._errors)},
                },
            )
        )

    def cancelled(self, partial_result: Any = None) -> None:
        self._terminate(
            ProgressEvent(
                EventKind.CANCELLED,
                {
                    "session_id": self.session_id,
                    "status": "cancelled",
                    "message": "Operation cancelled by user",
                    "partial_result": partial_result,
                    "summary": self.stats(),
                },
            )
        )

    async def events(self) -> AsyncIterator[ProgressEvent]:
        """Yield events until the terminal one; heartbeat while idle."""
        while True:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=self._heartbeat)
            except TimeoutError:
                yield ProgressEvent(EventKind.HEARTBEAT)
                continue
            yield event
            if event.is_terminal:
                return


class ProgressSessionManager:
    """Registry of live progress sessions with grace-period cleanup.

    Sessions are deleted ``completed_grace_seconds`` after their terminal
    event, or ``abandoned_grace_seconds`` after the transport closed early,
    whichever happens first.
    """

    def __init__(
        self,
        *,
        throttle_ms: int = 100,
        heartbeat_seconds: float = 30.0,
        completed_grace_seconds: float = 10.0,
        abandoned_grace_seconds: float = 300.0,
        abort_on_disconnect: bool = False,
    ) -> None:
        self._throttle_ms = throttle_ms
        self._heartbeat_seconds = heartbeat_seconds
        self._completed_grace = completed_grace_seconds
        self._abandoned_grace = abandoned_grace_seconds
        self._abort_on_disconnect = abort_on_disconnect
        self._sessions: dict[str, ProgressSession] = {}
        self._timers: dict[str, list[asyncio.TimerHandle]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> ProgressSessionManager:
        return cls(
            throttle_ms=settings.progress_throttle_ms,
            heartbeat_seconds=settings.progress_heartbeat_seconds,
            completed_grace_seconds=settings.progress_completed_grace_seconds,
            abandoned_grace_seconds=settings.progress_abandoned_grace_seconds,
            abort_on_disconnect=settings.progress_abort_on_disconnect,
        )

    def open(self, plan: ProgressPlan) -> ProgressChannel:
        """Register a new session and return its channel."""
        session_id = secrets.token_hex(16)
        session = ProgressSession(session_id=session_id, started_at=time.time())
        self._sessions[session_id] = session
        logger.info("Progress session %s opened (%d active)", session_id, len(self._sessions))
        return ProgressChannel(
            self,
            session,
            plan,
            throttle_ms=self._throttle_ms,
            heartbeat_seconds=self._heartbeat_seconds,
            abort_on_disconnect=self._abort_on_disconnect,
        )

    def get(self, session_id: str) -> ProgressSession | None:
        return self._sessions.get(session_id)

    def list_sessions(self) -> list[ProgressSession]:
        return list(self._sessions.values())

    def cancel(self, session_id: str) -> CancelResult:
        """Request cancellation. Idempotent: repeated calls change nothing."""
        session = self._sessions.get(session_id)
        if session is None:
            logger.info("Cancel requested for unknown session %s", session_id)
            return CancelResult(ok=False, message="Session not found")
        if session.cancelled:
            return CancelResult(ok=True, message="Cancellation already requested")
        session.cancelled = True
        logger.info("Cancellation requested for session %s", session_id)
        return CancelResult(ok=True, message="Cancellation requested")

    def mark_completed(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None or session.completed:
            return
        session.completed = True
        logger.info("Progress session %s completed, scheduling cleanup", session_id)
        self._schedule_delete(session_id, self._completed_grace)

    def mark_disconnected(self, session_id: str) -> None:
        """Record that the transport closed; never aborts the operation itself."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        if session.completed:
            return
        session.client_disconnected = True
        logger.info("Client disconnected from running session %s", session_id)
        self._schedule_delete(session_id, self._abandoned_grace)

    def _schedule_delete(self, session_id: str, delay: float) -> None:
        loop = asyncio.get_running_loop()
        handle = loop.call_later(delay, self._delete, session_id)
        self._timers.setdefault(session_id, []).append(handle)

    def _delete(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            if not session.completed:
                logger.info("Removed abandoned session %s", session_id)
            else:
                logger.debug("Removed session %s", session_id)
        for timer in self._timers.pop(session_id, []):
            timer.cancel()

    def track(self, task: asyncio.Task[Any]) -> None:
        """Keep a reference to a background operation until it finishes."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self) -> None:
        """Cancel cleanup timers and background operations."""
        for handles in self._timers.values():
            for timer in handles:
                timer.cancel()
        self._timers.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._sessions.clear()


async def run_with_progress(
    channel: ProgressChannel,
    operation: Callable[[ProgressChannel], Awaitable[T]],
    *,
    to_result: Callable[[T], Any],
    summarize: Callable[[T], dict[str, Any]] | None = None,
) -> T | None:
    """Run an operation and emit exactly one terminal event for it.

    Cancellation becomes a ``cancelled`` event, any other failure an
    ``error`` event.  Returns the operation's result, or None when it did
    not complete.
    """
    try:
        result = await operation(channel)
    except OperationCancelledError as exc:
        logger.info("Operation in session %s cancelled", channel.session_id)
        channel.cancelled(exc.partial_result)
        return None
    except Exception as exc:
        logger.error(
            "Operation in session %s failed at %s: %s",
            channel.session_id,
            channel.current_step,
            exc,
            exc_info=exc,
        )
        channel.error(exc, failed_at=channel.current_step)
        return None
    channel.complete(to_result(result), summarize(result) if summarize else None)
    return result
