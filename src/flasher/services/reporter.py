"""Pushes flasher events to an external presentation adapter over HTTP."""

import asyncio
import logging
from typing import Optional

import httpx


class ReportService:
    """Forwards events to ``{report_url}/api/v1.0/flasher/events``.

    Events are queued by ``handle_event`` and posted in order by a worker
    task, so a slow or absent receiver never delays flashing.
    """

    def __init__(self, report_url: str = "http://localhost:9080", queue_size: int = 1000):
        """Initialize report service.

        Args:
            report_url: Base URL of the event receiver
            queue_size: Events kept while the receiver is slow; extra events are dropped
        """
        self.logger = logging.getLogger("flasher.reporter")
        self.report_url = report_url
        self.report_endpoint = f"{report_url}/api/v1.0/flasher/events"
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._worker: Optional[asyncio.Task] = None

    def handle_event(self, event) -> None:
        """Event bus subscriber: queue an event for delivery."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.logger.warning(f"Report queue full, dropping {event.type} event")

    async def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run())
            self.logger.info(f"Reporting events to {self.report_endpoint}")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def report_event(self, event) -> None:
        """Send one event.

        Note:
            Failures are logged but not raised to avoid blocking flash operations
        """
        payload = event.model_dump(mode="json")
        self.logger.debug(f"Reporting event: {event.type}")

        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.post(self.report_endpoint, json=payload)
                response.raise_for_status()
                self.logger.debug("Report sent successfully")

        except httpx.HTTPError as e:
            self.logger.warning(f"Failed to report event {event.type}: {e}. Continuing...")
        except Exception as e:
            self.logger.error(f"Unexpected error reporting event: {e}", exc_info=True)

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.report_event(event)
            finally:
                self._queue.task_done()
