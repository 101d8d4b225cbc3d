"""Flash pipeline: erase → write → verify → reset."""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Optional

from flasher.models.errors import (
    DeviceLost,
    FlashCancelled,
    FlasherError,
    NotReady,
    SessionBusy,
    StageFailed,
    StageTimeout,
    describe_cause,
)
from flasher.models.events import (
    FlashCompleted,
    FlashOutcome,
    FlashProgress,
    FlashStageStarted,
    LogLine,
)
from flasher.models.firmware import FirmwareSource, FlashOptions
from flasher.models.status import FlashStage, OutcomeKind
from flasher.services.connection import ConnectionHandle
from flasher.services.event_bus import EventBus
from flasher.services.firmware_store import FirmwareStore
from flasher.services.programmer import DeviceProgrammer


# Relative stage weights; renormalized over the stages that actually run.
STAGE_WEIGHTS = {
    FlashStage.ERASE: 15,
    FlashStage.WRITE: 50,
    FlashStage.VERIFY: 25,
    FlashStage.RESET: 10,
}

STAGE_LABELS = {
    FlashStage.ERASE: "Erasing flash",
    FlashStage.WRITE: "Flashing firmware",
    FlashStage.VERIFY: "Verifying firmware",
    FlashStage.RESET: "Resetting device",
}


def plan_stages(options: FlashOptions) -> list[FlashStage]:
    """Stages to run for the given options, in execution order."""
    stages = []
    if options.erase_before_write:
        stages.append(FlashStage.ERASE)
    stages.append(FlashStage.WRITE)
    if options.verify_after_write:
        stages.append(FlashStage.VERIFY)
    if options.reset_after_flash:
        stages.append(FlashStage.RESET)
    return stages


class FlashSession:
    """One single-use execution of the flash pipeline."""

    def __init__(
        self,
        handle: ConnectionHandle,
        source: FirmwareSource,
        options: FlashOptions,
    ):
        self.id = uuid.uuid4().hex[:12]
        self.handle = handle
        self.source = source
        self.options = options
        self.stages = plan_stages(options)
        self.payload: bytes = b""
        self.created_at = datetime.now()

        self.stage: Optional[FlashStage] = None
        self.progress = 0
        self.stages_started: list[FlashStage] = []
        self.outcome: Optional[FlashOutcome] = None
        self.error: Optional[FlasherError] = None
        self.task: Optional[asyncio.Task] = None

        self._cancel_requested = False
        self._done = asyncio.Event()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def total_weight(self) -> int:
        return sum(STAGE_WEIGHTS[s] for s in self.stages)

    def cancel(self) -> None:
        """Request cancellation; honoured at the next stage boundary."""
        self._cancel_requested = True

    async def wait(self) -> "FlashSession":
        await self._done.wait()
        return self

    def __repr__(self) -> str:
        return (
            f"FlashSession(id={self.id}, firmware={self.source.display_name}, "
            f"stage={self.stage}, progress={self.progress}, outcome={self.outcome})"
        )


class FlashOrchestrator:
    """Runs flash sessions against connected devices."""

    def __init__(
        self,
        programmer: DeviceProgrammer,
        firmware_store: FirmwareStore,
        event_bus: Optional[EventBus] = None,
        stage_timeouts: Optional[dict[FlashStage, float]] = None,
    ):
        """Initialize flash orchestrator.

        Args:
            programmer: Performs the stage operations on the device
            firmware_store: Resolves firmware sources to payload bytes
            event_bus: Event sink for stage/progress/completion events
            stage_timeouts: Per-stage ceiling in seconds (no limit if missing)
        """
        self.logger = logging.getLogger("flasher.orchestrator")
        self.programmer = programmer
        self.firmware_store = firmware_store
        self.event_bus = event_bus
        self.stage_timeouts = dict(stage_timeouts or {})

    async def run(
        self,
        handle: Optional[ConnectionHandle],
        source: Optional[FirmwareSource],
        options: Optional[FlashOptions] = None,
    ) -> FlashSession:
        """Run a flash session to completion.

        Pipeline failures are recorded on the returned session's outcome,
        not raised.

        Raises:
            NotReady: If a precondition does not hold
            SessionBusy: If the handle already runs a session
        """
        session = await self.prepare(handle, source, options)
        await self._execute(session)
        return session

    async def start(
        self,
        handle: Optional[ConnectionHandle],
        source: Optional[FirmwareSource],
        options: Optional[FlashOptions] = None,
    ) -> FlashSession:
        """Check preconditions, schedule the session and return it at once."""
        session = await self.prepare(handle, source, options)
        session.task = asyncio.create_task(self._execute(session))
        return session

    def cancel(self, handle: Optional[ConnectionHandle]) -> bool:
        """Request cancellation of the session running on a handle.

        Returns:
            True if a session was running
        """
        if handle is None or handle.active_session is None:
            return False
        handle.active_session.cancel()
        self.logger.info(f"Cancellation requested for session {handle.active_session.id}")
        return True

    async def prepare(
        self,
        handle: Optional[ConnectionHandle],
        source: Optional[FirmwareSource],
        options: Optional[FlashOptions] = None,
    ) -> FlashSession:
        """Validate preconditions, load the payload and reserve the handle.

        Emits no events. On failure the handle is left untouched.
        """
        if handle is None or not handle.is_connected:
            raise NotReady("Device not connected")
        if handle.active_session is not None:
            raise SessionBusy(f"Session {handle.active_session.id} already running on this device")
        if source is None:
            raise NotReady("Firmware not selected")
        options = FlashOptions() if options is None else options
        if not isinstance(options, FlashOptions):
            raise NotReady(f"Invalid flash options: {options!r}")

        session = FlashSession(handle, source, options)
        handle.active_session = session
        try:
            session.payload = await self.firmware_store.load(source)
        except (OSError, ValueError) as e:
            handle.active_session = None
            raise NotReady(f"Firmware unavailable: {describe_cause(e)}", cause=e) from e

        if not handle.is_connected:
            handle.active_session = None
            raise NotReady("Device not connected")
        return session

    async def _execute(self, session: FlashSession) -> None:
        completed = 0
        total = session.total_weight
        self.logger.info(
            f"Flash session {session.id} starting: firmware={session.source.display_name}, "
            f"{len(session.payload)} bytes, stages={[s.value for s in session.stages]}"
        )
        self._log("Starting firmware flash process...")

        try:
            for stage in session.stages:
                if session.cancel_requested:
                    raise FlashCancelled(f"Cancelled before {stage.value}")
                self._check_device(session)
                await self._run_stage(session, stage, completed, total)
                completed += STAGE_WEIGHTS[stage]
                self._check_device(session)
                self._log(f"{STAGE_LABELS[stage]}... Done.")

            self._advance(session, 100)
            self._finish(session, FlashOutcome(result=OutcomeKind.SUCCESS))
            self._log("Firmware flashed successfully!")

        except FlashCancelled as e:
            session.error = e
            self._finish(session, FlashOutcome(result=OutcomeKind.CANCELLED, kind=e.kind))
            self._log("Flashing cancelled")

        except FlasherError as e:
            session.error = e
            self._finish(
                session,
                FlashOutcome(
                    result=OutcomeKind.FAILED,
                    kind=e.kind,
                    stage=session.stage,
                    cause=describe_cause(e.cause) if e.cause else e.message,
                ),
            )
            self._log(f"Error during flashing: {e.message}")

        except asyncio.CancelledError:
            session.error = FlashCancelled("Session task cancelled")
            self._finish(session, FlashOutcome(result=OutcomeKind.CANCELLED, kind="CANCELLED"))
            raise

    async def _run_stage(
        self, session: FlashSession, stage: FlashStage, completed: int, total: int
    ) -> None:
        handle = session.handle
        weight = STAGE_WEIGHTS[stage]

        session.stage = stage
        session.stages_started.append(stage)
        self._publish(FlashStageStarted(session_id=session.id, stage=stage))
        self._log(f"{STAGE_LABELS[stage]}...")
        self.logger.info(f"Session {session.id}: {stage.value} started")

        def report(fraction: float) -> None:
            self._check_device(session)
            fraction = min(max(fraction, 0.0), 1.0)
            # 100 is reserved for the success report
            percent = min(int(100 * (completed + fraction * weight) / total), 99)
            self._advance(session, percent)

        operation = getattr(self.programmer, stage.value)
        stage_task = asyncio.ensure_future(operation(handle, session.payload, report))
        closed_task = asyncio.ensure_future(handle.wait_closed())
        timeout = self.stage_timeouts.get(stage)

        try:
            done, _ = await asyncio.wait(
                {stage_task, closed_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            await self._discard(stage_task)
            raise
        finally:
            closed_task.cancel()

        # A closed handle wins over whatever the stage reported
        if handle.is_lost or not handle.is_open:
            await self._discard(stage_task)
            raise DeviceLost(f"Device {handle.descriptor.usb_id} lost during {stage.value}")

        if stage_task not in done:
            await self._discard(stage_task)
            self.logger.error(f"Session {session.id}: {stage.value} timed out after {timeout}s")
            raise StageTimeout(stage, timeout)

        try:
            stage_task.result()
        except DeviceLost:
            raise
        except Exception as e:
            self.logger.error(f"Session {session.id}: {stage.value} failed: {e}")
            raise StageFailed(stage, e) from e

        self.logger.info(f"Session {session.id}: {stage.value} complete")

    def _check_device(self, session: FlashSession) -> None:
        handle = session.handle
        if handle.is_lost or not handle.is_open:
            stage = session.stage.value if session.stage else "start"
            raise DeviceLost(f"Device {handle.descriptor.usb_id} lost during {stage}")

    def _advance(self, session: FlashSession, percent: int) -> None:
        if percent <= session.progress:
            return
        session.progress = percent
        self._publish(FlashProgress(session_id=session.id, percent=percent))

    def _finish(self, session: FlashSession, outcome: FlashOutcome) -> None:
        session.outcome = outcome
        if session.handle.active_session is session:
            session.handle.active_session = None
        session._done.set()
        if outcome.result == OutcomeKind.FAILED:
            stage = outcome.stage.value if outcome.stage else "-"
            self.logger.error(
                f"Flash session {session.id} failed: {outcome.kind} at {stage}: {outcome.cause}"
            )
        else:
            self.logger.info(f"Flash session {session.id} finished: {outcome.result.value}")
        self._publish(FlashCompleted(session_id=session.id, outcome=outcome))

    async def _discard(self, task: asyncio.Task) -> None:
        if task.done():
            if not task.cancelled() and task.exception() is not None:
                self.logger.debug(f"Discarded stage result: {task.exception()}")
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            self.logger.debug(f"Stage raised while cancelling: {e}")

    def _log(self, text: str) -> None:
        self._publish(LogLine(text=text))

    def _publish(self, event) -> None:
        if self.event_bus:
            self.event_bus.publish(event)
