import enum
import logging
import threading

from errors import ExternalProcessError

log = logging.getLogger(__name__)


class TeardownState(enum.Enum):
    IDLE = "idle"
    TEARDOWN_IN_FLIGHT = "teardown_in_flight"


class TeardownGuard:
    """
    Two-state latch making sure the bridge teardown runs exactly once, no
    matter how many times the host signals exit.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._state = TeardownState.IDLE

    @property
    def state(self) -> TeardownState:
        return self._state

    def try_begin(self) -> bool:
        """Compare-and-set IDLE -> TEARDOWN_IN_FLIGHT. True only for the first caller."""
        with self._lock:
            if self._state is not TeardownState.IDLE:
                return False
            self._state = TeardownState.TEARDOWN_IN_FLIGHT
            return True


async def shutdown(guard: TeardownGuard, bridge) -> bool:
    """
    Stop the adb server once. Returns False when teardown already ran.
    """
    if not guard.try_begin():
        log.debug("Teardown already in flight, ignoring exit request")
        return False

    try:
        await bridge.kill_server()
    except ExternalProcessError as e:
        log.error("Failed to stop ADB server during shutdown: %s", e)
    else:
        log.info("ADB server stopped during shutdown")
    return True
