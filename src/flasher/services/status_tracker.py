"""In-memory status snapshot built from the event stream."""

import logging
from collections import deque
from typing import Optional

from flasher.models.events import (
    ConnectionProgress,
    ConnectionStateChanged,
    FlashCompleted,
    FlashOutcome,
    FlashProgress,
    FlashStageStarted,
    LogLine,
)
from flasher.models.status import ConnectionState, FlashStage


class StatusTracker:
    """Event subscriber keeping the latest state for GET /status.

    Tracks:
    - Connection state and connection progress
    - Current flash session, stage, progress and last outcome
    - A bounded tail of log lines
    """

    def __init__(self, max_log_lines: int = 200):
        self.logger = logging.getLogger("flasher.status")

        self.connection_state: ConnectionState = ConnectionState.IDLE
        self.connection_progress: int = 0

        self.session_id: Optional[str] = None
        self.flash_stage: Optional[FlashStage] = None
        self.flash_progress: int = 0
        self.outcome: Optional[FlashOutcome] = None

        self._log: deque[str] = deque(maxlen=max_log_lines)

    def handle_event(self, event) -> None:
        """Update the snapshot from one event."""
        if isinstance(event, ConnectionStateChanged):
            self.connection_state = event.state
            if event.state != ConnectionState.CONNECTED:
                self.connection_progress = 0
        elif isinstance(event, ConnectionProgress):
            self.connection_progress = event.percent
        elif isinstance(event, FlashStageStarted):
            if event.session_id != self.session_id:
                self._begin_session(event.session_id)
            self.flash_stage = event.stage
        elif isinstance(event, FlashProgress):
            if event.session_id == self.session_id:
                self.flash_progress = event.percent
        elif isinstance(event, FlashCompleted):
            if event.session_id != self.session_id:
                self._begin_session(event.session_id)
            self.outcome = event.outcome
        elif isinstance(event, LogLine):
            self._log.append(event.text)

    @property
    def log_lines(self) -> list[str]:
        return list(self._log)

    def reset(self) -> None:
        """Reset to idle state."""
        self.connection_state = ConnectionState.IDLE
        self.connection_progress = 0
        self._begin_session(None)
        self._log.clear()
        self.logger.info("Status reset to idle")

    def _begin_session(self, session_id: Optional[str]) -> None:
        self.session_id = session_id
        self.flash_stage = None
        self.flash_progress = 0
        self.outcome = None
