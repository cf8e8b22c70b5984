"""OutputHandle Protocol — one switchable output line (relay coil).

gpiozero.DigitalOutputDevice satisfies it as-is; SimulatedOutput is the
stand-in for hosts without GPIO.
"""

from typing import Protocol


class OutputHandle(Protocol):
    @property
    def value(self) -> int: ...

    @property
    def closed(self) -> bool: ...

    def on(self) -> None: ...

    def off(self) -> None: ...

    def close(self) -> None: ...
