"""Status enums for connection and flashing."""

from enum import Enum


class ConnectionState(str, Enum):
    """Connection manager states.

    State transitions:
    idle → connecting → connected → disconnected
              ↓                          ↓
             idle                    connecting
    """

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class FlashStage(str, Enum):
    """Flash pipeline stages, in execution order."""

    ERASE = "erase"
    WRITE = "write"
    VERIFY = "verify"
    RESET = "reset"


class OutcomeKind(str, Enum):
    """Terminal outcome of a flash session."""

    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ProtocolMode(str, Enum):
    """USB personality a device enumerates with."""

    DFU = "DFU"
    BOOTLOADER = "Bootloader"
    VIRTUAL_COM_PORT = "VirtualComPort"
    OTHER = "Other"
