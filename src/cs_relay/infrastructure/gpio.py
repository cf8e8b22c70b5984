"""Real relay outputs via gpiozero (install the `hardware` extra)."""

from collections.abc import Callable

from src.cs_relay.domain.output import OutputHandle


def gpio_output_factory(active_high: bool = True) -> Callable[[int], OutputHandle]:
    """Return a factory opening one DigitalOutputDevice per pin, initially off."""
    from gpiozero import DigitalOutputDevice

    def _open(pin: int) -> OutputHandle:
        return DigitalOutputDevice(pin, active_high=active_high, initial_value=False)

    return _open
