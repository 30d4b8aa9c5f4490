from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from app.utils.exceptions import NotReady, SessionInitFailure

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class SessionInitializer(Protocol):
    async def initialize_session(self, identity: str) -> Any: ...


@dataclass(frozen=True)
class SessionHandle:
    """Proof that the encryption subsystem is ready for one identity."""

    identity: str


class SessionManager:
    def __init__(self, relayer: SessionInitializer) -> None:
        self._relayer = relayer
        self._state = SessionState.UNINITIALIZED
        self._identity: str | None = None
        self._in_flight: asyncio.Task[SessionHandle] | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def identity(self) -> str | None:
        return self._identity

    def is_ready(self, identity: str) -> bool:
        return self._state == SessionState.READY and self._identity == identity

    def require_ready(self, identity: str) -> SessionHandle:
        if not self.is_ready(identity):
            raise NotReady()
        return SessionHandle(identity=identity)

    async def ensure_ready(self, identity: str) -> SessionHandle:
        if self.is_ready(identity):
            return SessionHandle(identity=identity)

        in_flight = self._in_flight
        if in_flight is not None and self._identity == identity:
            return await asyncio.shield(in_flight)
        if in_flight is not None:
            # A different identity connected mid-initialization; let the old
            # attempt settle before starting over for the new one.
            try:
                await asyncio.shield(in_flight)
            except SessionInitFailure:
                pass
            if self.is_ready(identity):
                return SessionHandle(identity=identity)
            if self._in_flight is not None:
                return await self.ensure_ready(identity)

        self._state = SessionState.INITIALIZING
        self._identity = identity
        self._in_flight = asyncio.create_task(self._initialize(identity))
        return await asyncio.shield(self._in_flight)

    def reset(self) -> None:
        if self._in_flight is not None:
            # An in-flight attempt cannot be aborted; it will see the reset.
            logger.info("Session reset while initialization in flight", extra={"identity": self._identity})
        self._state = SessionState.UNINITIALIZED
        self._identity = None

    async def _initialize(self, identity: str) -> SessionHandle:
        logger.info("Initializing encryption session", extra={"identity": identity})
        try:
            await self._relayer.initialize_session(identity)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Encryption session initialization failed",
                extra={"identity": identity, "error": str(exc)},
            )
            if self._identity == identity:
                self._state = SessionState.UNINITIALIZED
            raise SessionInitFailure(f"FHEVM initialization failed: {exc}") from exc
        finally:
            if self._in_flight is asyncio.current_task():
                self._in_flight = None

        if self._identity != identity:
            raise SessionInitFailure("Identity changed during initialization")
        self._state = SessionState.READY
        logger.info("Encryption session ready", extra={"identity": identity})
        return SessionHandle(identity=identity)
