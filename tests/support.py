"""Test doubles shared by the unit tests."""

from datetime import datetime, timedelta

from config.settings import Settings
from src.cs_relay.infrastructure.simulated import SimulatedOutput

PIN_MAP = {1: 73, 2: 70}


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingOutputs:
    """Output factory that keeps every SimulatedOutput it opens, keyed by pin."""

    def __init__(self) -> None:
        self.by_pin: dict[int, SimulatedOutput] = {}
        self.opened = 0

    def __call__(self, pin: int) -> SimulatedOutput:
        self.opened += 1
        output = SimulatedOutput(pin)
        self.by_pin[pin] = output
        return output


def make_settings(**overrides: object) -> Settings:
    values: dict[str, object] = {
        "STORE_BACKEND": "memory",
        "RELAY_BACKEND": "simulated",
        "SOCKET_PIN_MAP": PIN_MAP,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # type: ignore[arg-type]


class FailingOutput(SimulatedOutput):
    """SimulatedOutput whose on() (or off() while energized) raises OSError."""

    def __init__(self, pin: int, fail_on: str = "on") -> None:
        super().__init__(pin)
        self.fail_on = fail_on

    def on(self) -> None:
        if self.fail_on == "on":
            raise OSError("line busy")
        super().on()

    def off(self) -> None:
        if self.fail_on == "off" and self.value:
            raise OSError("line stuck")
        super().off()
