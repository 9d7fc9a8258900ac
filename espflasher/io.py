"""The transport a loader talks through."""

from __future__ import annotations

import abc
import time

from espflasher.common import UnsupportedFuncError


class Port(abc.ABC):
    """Link to a target: byte transfer, control lines and a timeout timer.

    Subclasses supply the transfer and control-line operations; the timer,
    delay and debug output have working defaults.
    """

    _deadline: float = 0.0

    @abc.abstractmethod
    def write(self, data, timeout):
        """Write ``data`` within ``timeout`` milliseconds.

        Raises LoaderTimeout if the timeout elapses.
        """

    @abc.abstractmethod
    def read(self, size, timeout):
        """Read exactly ``size`` bytes within ``timeout`` milliseconds.

        Returns the bytes read; raises LoaderTimeout if the timeout elapses.
        """

    @abc.abstractmethod
    def enter_bootloader(self):
        """Assert the bootstrap pins and toggle reset to enter boot mode."""

    @abc.abstractmethod
    def reset_target(self):
        """Toggle the reset pin."""

    def delay_ms(self, ms):
        """Block for ``ms`` milliseconds."""
        time.sleep(ms / 1000)

    def start_timer(self, ms):
        """Start the timeout timer to run for ``ms`` milliseconds."""
        self._deadline = time.monotonic() + ms / 1000

    def remaining_time(self):
        """Milliseconds left on the timer, 0 once it has elapsed."""
        remaining = self._deadline - time.monotonic()
        return max(0, int(remaining * 1000))

    def debug_print(self, text):
        """Report a debug message; silent unless overridden."""

    def change_transmission_rate(self, rate):
        """Change the link's transmission rate."""
        raise UnsupportedFuncError(
            f"{type(self).__name__} cannot change its transmission rate"
        )

    def set_cs(self, level):
        """Drive the SPI chip-select line to ``level``."""
        raise UnsupportedFuncError(f"{type(self).__name__} has no chip-select line")