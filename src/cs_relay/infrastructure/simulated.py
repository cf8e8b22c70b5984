"""Software output line: remembers its state and logs every transition."""

import logging

logger = logging.getLogger(__name__)


class SimulatedOutput:
    def __init__(self, pin: int) -> None:
        self.pin = pin
        self._value = 0
        self._closed = False
        self.writes: list[int] = []  # every value written, in order

    @property
    def value(self) -> int:
        return self._value

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def transitions(self) -> int:
        """Number of writes that changed the line's level."""
        level, count = 0, 0
        for written in self.writes:
            if written != level:
                count += 1
                level = written
        return count

    def _write(self, value: int) -> None:
        if self._closed:
            raise RuntimeError(f"Simulated pin {self.pin} is closed")
        self.writes.append(value)
        self._value = value
        logger.info("[SIM GPIO] pin %d set to %d", self.pin, value)

    def on(self) -> None:
        self._write(1)

    def off(self) -> None:
        self._write(0)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            logger.info("[SIM GPIO] pin %d released", self.pin)
