"""PIN entry dialog state machine."""

from __future__ import annotations

from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from .client import Denied, KioskError

log = structlog.get_logger()

T = TypeVar("T")

EMPTY_PIN = "empty"


class PinPadState(str, Enum):
    IDLE = "idle"
    ENTERING = "entering"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"


class PinPad:
    """
    Modal PIN dialog.

    Digits are only accepted while ENTERING. While SUBMITTING only cancel is
    honoured, so one gate call is in flight at a time; a cancelled submission
    closes the dialog at once and its gate result is discarded on return.
    A rejected PIN keeps the dialog open with the digits cleared.
    """

    def __init__(self, max_length: int = 8):
        self.max_length = max_length
        self.state = PinPadState.IDLE
        self.error: Optional[str] = None
        self._digits: list[str] = []
        self._attempt = 0

    @property
    def is_open(self) -> bool:
        return self.state in (PinPadState.ENTERING, PinPadState.SUBMITTING)

    @property
    def length(self) -> int:
        return len(self._digits)

    @property
    def masked(self) -> str:
        return "•" * len(self._digits)

    def open(self) -> None:
        if self.state == PinPadState.SUBMITTING:
            return
        self._digits.clear()
        self.error = None
        self.state = PinPadState.ENTERING

    def press(self, digit: str) -> None:
        if self.state != PinPadState.ENTERING:
            return
        if len(digit) != 1 or not digit.isdigit():
            return
        if len(self._digits) < self.max_length:
            self._digits.append(digit)
            self.error = None

    def backspace(self) -> None:
        if self.state == PinPadState.ENTERING and self._digits:
            self._digits.pop()

    def clear(self) -> None:
        if self.state == PinPadState.ENTERING:
            self._digits.clear()

    def cancel(self) -> None:
        if self.state == PinPadState.SUBMITTING:
            self._attempt += 1
        self._digits.clear()
        self.error = None
        self.state = PinPadState.IDLE

    async def submit(self, gate: Callable[[str], Awaitable[T | Denied]]) -> Optional[T]:
        """Hand the entered PIN to `gate`; return its result, or None when refused."""
        if self.state != PinPadState.ENTERING:
            return None
        if not self._digits:
            self.error = EMPTY_PIN
            return None

        pin = "".join(self._digits)
        self.state = PinPadState.SUBMITTING
        self._attempt += 1
        attempt = self._attempt
        try:
            result = await gate(pin)
        except KioskError as exc:
            if self._superseded(attempt):
                return None
            self._reopen(exc.message)
            log.warning("pin_pad.gate_failed", error=exc.message, retryable=exc.retryable)
            return None

        if self._superseded(attempt):
            return None
        if isinstance(result, Denied):
            self._reopen(result.message)
            log.info("pin_pad.rejected")
            return None

        self._digits.clear()
        self.error = None
        self.state = PinPadState.SUCCEEDED
        return result

    def _superseded(self, attempt: int) -> bool:
        if attempt == self._attempt:
            return False
        log.info("pin_pad.cancelled_in_flight")
        return True

    def _reopen(self, message: str) -> None:
        self._digits.clear()
        self.error = message
        self.state = PinPadState.ENTERING
