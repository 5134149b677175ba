"""Slack connection liveness: shared socket state and the periodic probe.

``SocketState`` is owned by the monitor (the only writer) and read by the
``/liveness`` endpoint. It is passed explicitly to both rather than kept in
a module-level global.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from esa_assistant.utils.dates import utcnow

# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


@dataclass
class SocketState:
    connected: bool = False
    last_connected_at: datetime | None = None
    last_disconnected_at: datetime | None = field(default_factory=utcnow)
    consecutive_failures: int = 0


def mark_connected(state: SocketState, now: datetime | None = None) -> None:
    state.connected = True
    state.last_connected_at = now or utcnow()
    state.consecutive_failures = 0


def mark_disconnected(state: SocketState, now: datetime | None = None) -> None:
    state.connected = False
    state.last_disconnected_at = now or utcnow()
    state.consecutive_failures += 1


def is_disconnected_too_long(state: SocketState, grace_ms: int, now: datetime | None = None) -> bool:
    """True iff disconnected and the disconnection is older than ``grace_ms``."""
    if state.connected or state.last_disconnected_at is None:
        return False
    elapsed_ms = ((now or utcnow()) - state.last_disconnected_at).total_seconds() * 1000
    return elapsed_ms > grace_ms


def build_liveness_body(state: SocketState, grace_ms: int, ok: bool) -> dict[str, Any]:
    return {
        "ok": ok,
        "connected": state.connected,
        "lastConnectedAt": state.last_connected_at.isoformat() if state.last_connected_at else None,
        "lastDisconnectedAt": (
            state.last_disconnected_at.isoformat() if state.last_disconnected_at else None
        ),
        "consecutiveFailures": state.consecutive_failures,
        "graceMs": grace_ms,
    }


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------


class ConnectionMonitor:
    """Probes the connection every ``interval_ms`` and records the outcome.

    The first probe runs as soon as the monitor starts. ``stop()`` prevents
    any further probe; a probe already running is left to finish.
    """

    def __init__(
        self,
        probe: Callable[[], Awaitable[Any]],
        state: SocketState,
        interval_ms: int,
    ) -> None:
        self.probe = probe
        self.state = state
        self.interval_ms = interval_ms
        self._stopped = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> ConnectionMonitor:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run(), name="connection-monitor")
        return self

    def stop(self) -> None:
        self._stopped.set()

    async def wait_closed(self) -> None:
        if self._task is not None:
            await self._task

    async def ping(self) -> None:
        """Run one probe and record the result on the shared state."""
        try:
            await self.probe()
        except Exception as exc:
            mark_disconnected(self.state)
            logger.warning(
                "Slack ping failed | consecutive_failures={} error={!r}",
                self.state.consecutive_failures,
                exc,
            )
            return
        mark_connected(self.state)

    async def _run(self) -> None:
        while not self._stopped.is_set():
            await self.ping()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval_ms / 1000)
            except asyncio.TimeoutError:
                continue


def start_connection_monitor(
    probe: Callable[[], Awaitable[Any]],
    state: SocketState,
    interval_ms: int,
) -> ConnectionMonitor:
    """Create and start a monitor on the running event loop."""
    return ConnectionMonitor(probe, state, interval_ms).start()
