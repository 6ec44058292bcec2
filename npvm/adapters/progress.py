"""Progress tracking for long-running package-manager operations."""

from __future__ import annotations

import uuid
from typing import Callable

import structlog

from npvm.models import OperationProgress, OperationType, now_ms

log = structlog.get_logger("npvm.progress")

ProgressSink = Callable[[OperationProgress], None]


class ProgressEmitter:
    """Single writer of one :class:`OperationProgress`.

    Every observable change is pushed to *on_progress* synchronously. While the
    operation runs, ``progress`` only grows and stays at or below *cap*; it reaches
    100 only through :meth:`complete`. Once terminal, the record is frozen.
    """

    def __init__(
        self,
        op_type: OperationType,
        on_progress: ProgressSink | None = None,
        *,
        package: str | None = None,
        message: str = "",
        step: int = 10,
        cap: int = 90,
    ) -> None:
        self.on_progress = on_progress
        self.step = step
        self.cap = cap
        self.progress = OperationProgress(
            id=str(uuid.uuid4()),
            type=op_type,
            status="pending",
            package=package,
            message=message,
        )

    # ── transitions ────────────────────────────────────────────────────────

    def start(self, message: str | None = None) -> OperationProgress:
        """Emit the pending record, then switch it to running."""
        self._notify()
        if self._frozen("start"):
            return self.progress
        self.progress.status = "running"
        if message is not None:
            self.progress.message = message
        self._notify()
        return self.progress

    def log(self, text: str, *, advance: bool = False) -> None:
        if self._frozen("log") or not text:
            return
        self.progress.logs.append(text)
        if advance:
            self.progress.progress = max(
                self.progress.progress, min(self.progress.progress + self.step, self.cap)
            )
        self._notify()

    def advance(self, value: int, message: str | None = None) -> None:
        if self._frozen("advance"):
            return
        self.progress.progress = max(self.progress.progress, min(value, self.cap))
        if message is not None:
            self.progress.message = message
        self._notify()

    def complete(self, message: str) -> OperationProgress:
        if self._frozen("complete"):
            return self.progress
        self.progress.status = "completed"
        self.progress.progress = 100
        self.progress.message = message
        self.progress.completed_at = now_ms()
        self._notify()
        return self.progress

    def fail(self, message: str) -> OperationProgress:
        if self._frozen("fail"):
            return self.progress
        self.progress.status = "failed"
        self.progress.message = message
        self.progress.completed_at = now_ms()
        self._notify()
        return self.progress

    # ── internal ───────────────────────────────────────────────────────────

    def _frozen(self, action: str) -> bool:
        if self.progress.is_terminal:
            log.debug("progress.ignored_after_terminal", id=self.progress.id, action=action)
            return True
        return False

    def _notify(self) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.progress)
        except Exception:
            log.debug("progress.sink_error", id=self.progress.id, exc_info=True)
