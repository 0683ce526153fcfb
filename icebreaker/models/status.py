"""Health state of remote API models.

``StatusCell`` is shared by every catalog snapshot that holds the same
``ModelOnline``, and several probe tasks may target the same model in one
batch.  The cell stores a single immutable ``StatusCheck`` value and swaps it
under a lock, so readers always see a whole value and only one of several
concurrent ``begin_check`` callers wins.
"""

from __future__ import annotations

import enum
import logging
import threading

logger = logging.getLogger(__name__)


class StatusCheck(enum.Enum):
    Unchecked = "Unchecked"
    CheckingStatus = "CheckingStatus"
    Up = "Up"
    Down = "Down"


class StatusCell:
    """Thread-safe holder of a :class:`StatusCheck`.

    Transitions: any state → ``CheckingStatus``; ``CheckingStatus`` →
    ``Up`` or ``Down``.  ``Up``/``Down`` can be probed again.
    """

    def __init__(self, initial: StatusCheck = StatusCheck.Unchecked) -> None:
        self._value = initial
        self._lock = threading.Lock()

    def get(self) -> StatusCheck:
        with self._lock:
            return self._value

    def set(self, value: StatusCheck) -> None:
        with self._lock:
            self._value = value

    def compare_and_set(self, expected: StatusCheck, new: StatusCheck) -> bool:
        """Swap to ``new`` only if the current value is ``expected``."""
        with self._lock:
            if self._value is not expected:
                return False
            self._value = new
            return True

    def begin_check(self) -> bool:
        """Enter ``CheckingStatus``.

        Returns ``False`` when a check is already in flight; the caller
        must then leave the probe to the task that won.
        """
        with self._lock:
            if self._value is StatusCheck.CheckingStatus:
                return False
            self._value = StatusCheck.CheckingStatus
            return True

    def finish(self, up: bool) -> StatusCheck:
        """Record the probe outcome of the check started by ``begin_check``."""
        new = StatusCheck.Up if up else StatusCheck.Down
        if not self.compare_and_set(StatusCheck.CheckingStatus, new):
            logger.debug("status finished outside of a check, forcing %s", new.value)
            self.set(new)
        return new

    def __repr__(self) -> str:
        return f"StatusCell({self.get().value})"
