"""User command surface wiring discovery, connection and flashing together."""

import asyncio
import logging
from typing import Optional

from flasher.models.snapshot import StatusData
from flasher.config import FlasherConfig
from flasher.models.device import DeviceDescriptor
from flasher.models.events import LogLine
from flasher.models.firmware import FirmwareSource, FlashOptions
from flasher.services.connection import ConnectionHandle, ConnectionManager
from flasher.services.discovery import DeviceDiscovery, chooser_for
from flasher.services.event_bus import EventBus
from flasher.services.firmware_store import FirmwareStore
from flasher.services.orchestrator import FlashOrchestrator, FlashSession
from flasher.services.programmer import DeviceProgrammer, SimulatedProgrammer
from flasher.services.reporter import ReportService
from flasher.services.status_tracker import StatusTracker
from flasher.services.transport import PyUsbBackend, UsbBackend


class FlasherController:
    """Owns one device pipeline and exposes the user commands.

    Commands: connect, select_firmware, set_options, start_flash, cancel,
    disconnect. All state lives on this instance; nothing is module-global.
    """

    def __init__(
        self,
        config: Optional[FlasherConfig] = None,
        backend: Optional[UsbBackend] = None,
        programmer: Optional[DeviceProgrammer] = None,
    ):
        self.logger = logging.getLogger("flasher.controller")
        self.config = config or FlasherConfig()

        self.event_bus = EventBus()
        self.tracker = StatusTracker()
        self.event_bus.subscribe(self.tracker.handle_event)

        self.reporter: Optional[ReportService] = None
        if self.config.report_url:
            self.reporter = ReportService(self.config.report_url)
            self.event_bus.subscribe(self.reporter.handle_event)

        self.discovery = DeviceDiscovery(backend or PyUsbBackend(), event_bus=self.event_bus)
        self.connection = ConnectionManager(
            self.discovery,
            event_bus=self.event_bus,
            step_interval=self.config.connect_step_interval,
        )
        self.firmware_store = FirmwareStore(self.config.firmware_dir)
        self.orchestrator = FlashOrchestrator(
            programmer or SimulatedProgrammer(time_scale=self.config.simulation_time_scale),
            self.firmware_store,
            event_bus=self.event_bus,
            stage_timeouts=self.config.stage_timeouts,
        )

        self.firmware: Optional[FirmwareSource] = None
        self.options = FlashOptions()
        self.session: Optional[FlashSession] = None

    async def startup(self) -> None:
        if self.reporter:
            await self.reporter.start()
        await self.discovery.start_monitoring(self.config.hotplug_poll_interval)
        devices = await self.discovery.list_known_devices()
        if devices:
            self._log(f"Found {len(devices)} previously connected device(s)")

    async def shutdown(self) -> None:
        if self.session and not self.session.done:
            self.session.cancel()
            if self.session.task:
                self.session.task.cancel()
                try:
                    await self.session.task
                except asyncio.CancelledError:
                    self.logger.debug("Flash task cancelled on shutdown")
        await self.discovery.stop_monitoring()
        await self.connection.shutdown()
        await self.event_bus.drain()
        if self.reporter:
            await self.reporter.stop()

    async def list_devices(self) -> list[DeviceDescriptor]:
        return await self.discovery.list_known_devices()

    async def connect(
        self, serial_number: Optional[str] = None, product_id: Optional[int] = None
    ) -> ConnectionHandle:
        """Connect command.

        Raises:
            DeviceAlreadyOpen: If a device is already connected
            ConnectionFailed: If connecting fails
        """
        return await self.connection.connect(chooser=chooser_for(serial_number, product_id))

    def select_firmware(self, source: FirmwareSource) -> FirmwareSource:
        """SelectFirmware command; replaces any previous selection."""
        self.firmware = source
        kind = "preset" if source.is_preset else "custom"
        self.logger.info(f"Selected {kind} firmware: {source.display_name}")
        self._log(f"Selected {kind} firmware: {source.display_name}")
        return source

    def set_options(self, options: FlashOptions) -> FlashOptions:
        """SetOptions command; applies to the next flash run."""
        self.options = options
        self.logger.info(
            f"Flash options: erase={options.erase_before_write}, "
            f"verify={options.verify_after_write}, reset={options.reset_after_flash}"
        )
        return options

    async def start_flash(self) -> FlashSession:
        """StartFlash command; the session runs in the background.

        Raises:
            NotReady: If not connected or no firmware selected
            SessionBusy: If a session is already running
        """
        self.session = await self.orchestrator.start(
            self.connection.handle, self.firmware, self.options
        )
        return self.session

    def cancel(self) -> bool:
        return self.orchestrator.cancel(self.connection.handle)

    async def disconnect(self) -> None:
        await self.connection.disconnect()

    def status(self) -> StatusData:
        handle = self.connection.handle
        return StatusData(
            connection_state=self.connection.state,
            connection_progress=self.tracker.connection_progress,
            device=handle.descriptor if handle else None,
            degraded=handle.degraded if handle else False,
            firmware=self.firmware.display_name if self.firmware else None,
            options=self.options,
            session_id=self.tracker.session_id,
            flash_stage=self.tracker.flash_stage,
            flash_progress=self.tracker.flash_progress,
            outcome=self.tracker.outcome,
            log=self.tracker.log_lines,
        )

    def _log(self, text: str) -> None:
        self.event_bus.publish(LogLine(text=text))
