"""Best-effort anonymous usage telemetry.

:meth:`TelemetryReporter.report` never raises and never blocks the caller.
Each event is sent once, as a single JSON POST with a short timeout, from a
detached asyncio task (or a daemon thread when no event loop is running).
Failures of any kind are dropped: there is no retry, queue or local storage.
The CLI awaits :meth:`TelemetryReporter.flush` before its event loop closes.
"""

from __future__ import annotations

import asyncio
import threading
import uuid

import httpx

from popforge.models import TargetKind, TelemetryEvent


def new_session_id() -> str:
    """Random, per-invocation identifier with no link to the user or host."""
    return uuid.uuid4().hex


class TelemetryReporter:
    """Fire-and-forget event sender."""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 2.0,
        enabled: bool = True,
        session_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self.enabled = enabled
        self.session_id = session_id or new_session_id()
        self._transport = transport
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> set[asyncio.Task]:
        """In-flight send tasks."""
        return set(self._pending)

    async def flush(self) -> None:
        """Give in-flight sends up to ``timeout`` seconds, then drop them.

        Call before the event loop shuts down; ``asyncio.run`` cancels any
        task still pending when the main coroutine returns.
        """
        pending = self.pending
        if not pending:
            return
        _, unfinished = await asyncio.wait(pending, timeout=self.timeout)
        for task in unfinished:
            task.cancel()

    def event(self, name: str, kind: TargetKind, outcome: str) -> TelemetryEvent:
        return TelemetryEvent(event=name, session_id=self.session_id, target_kind=kind, outcome=outcome)

    def report(self, event: TelemetryEvent) -> None:
        """Dispatch *event* without waiting for delivery."""
        if not self.enabled:
            return
        try:
            payload = event.model_dump(mode="json")
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                thread = threading.Thread(
                    target=asyncio.run,
                    args=(self._send(payload),),
                    name="popforge-telemetry",
                    daemon=True,
                )
                thread.start()
                return
            task = loop.create_task(self._send(payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        except Exception:
            # Telemetry must never affect the caller.
            return

    async def _send(self, payload: dict) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=self.timeout),
                transport=self._transport,
            ) as client:
                await asyncio.wait_for(
                    client.post(self.endpoint, json=payload),
                    timeout=self.timeout,
                )
        except Exception:
            # Dropped: delivery is best-effort.
            return
