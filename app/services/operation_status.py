from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from app.models.operation_status import OperationState, OperationStatus

logger = logging.getLogger(__name__)


class OperationStatusTracker:
    """
    Single source of truth for the current operation's lifecycle.

    ``succeed`` and ``fail`` schedule a reset to idle; any later call
    cancels the pending reset so a stale timer never clobbers a newer status.
    """

    def __init__(self, *, success_reset_seconds: float = 2.0, error_reset_seconds: float = 3.0) -> None:
        self._success_reset_seconds = success_reset_seconds
        self._error_reset_seconds = error_reset_seconds
        self._status = OperationStatus()
        self._reset_handle: asyncio.TimerHandle | None = None

    def snapshot(self) -> OperationStatus:
        return self._status.model_copy()

    @property
    def state(self) -> OperationState:
        return self._status.state

    def begin(self, message: str) -> None:
        self._set(OperationState.PENDING, message)

    def succeed(self, message: str) -> None:
        self._set(OperationState.SUCCESS, message)
        self._schedule_reset(self._success_reset_seconds)

    def fail(self, message: str) -> None:
        self._set(OperationState.ERROR, message)
        self._schedule_reset(self._error_reset_seconds)

    def reset(self) -> None:
        self._set(OperationState.IDLE, "")

    def _set(self, state: OperationState, message: str) -> None:
        self._cancel_pending_reset()
        self._status = OperationStatus(state=state, message=message, updated_at=datetime.now(timezone.utc))
        logger.info("Operation status changed", extra={"state": state.value, "status_message": message})

    def _cancel_pending_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    def _schedule_reset(self, delay_seconds: float) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to own the timer; leave the terminal state in place.
            return
        self._reset_handle = loop.call_later(delay_seconds, self._auto_reset)

    def _auto_reset(self) -> None:
        self._reset_handle = None
        self._status = OperationStatus(state=OperationState.IDLE, updated_at=datetime.now(timezone.utc))
