"""Tests for RelayController with simulated outputs."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from src.cs_common.errors import ActuationError, UnknownSocketError
from src.cs_relay.application.controller import RelayController, build_relay_controller
from src.cs_relay.infrastructure.simulated import SimulatedOutput
from tests.support import PIN_MAP, FailingOutput, RecordingOutputs, make_settings


class OverlapDetectingOutput(SimulatedOutput):
    def __init__(self, pin: int) -> None:
        super().__init__(pin)
        self._busy = False
        self.overlaps = 0

    def _write(self, value: int) -> None:
        if self._busy:
            self.overlaps += 1
        self._busy = True
        time.sleep(0.001)
        super()._write(value)
        self._busy = False


class TestSimulatedOutput:
    def test_transitions_count_level_changes(self) -> None:
        out = SimulatedOutput(73)
        out.on()
        out.on()
        out.off()
        assert out.writes == [1, 1, 0]
        assert out.transitions == 2

    def test_write_after_close_fails(self) -> None:
        out = SimulatedOutput(73)
        out.close()
        out.close()
        assert out.closed
        with pytest.raises(RuntimeError):
            out.on()


class TestRelayWrites:
    def test_energize_and_deenergize(self, relay: RelayController, outputs: RecordingOutputs) -> None:
        relay.energize(1)
        assert relay.state(1) is True
        assert outputs.by_pin[73].value == 1
        relay.deenergize(1)
        assert relay.state(1) is False

    def test_energize_twice_is_one_transition(
        self, relay: RelayController, outputs: RecordingOutputs
    ) -> None:
        relay.energize(1)
        relay.energize(1)
        assert outputs.by_pin[73].transitions == 1
        assert outputs.by_pin[73].writes == [1]

    def test_deenergize_idle_socket_writes_nothing(
        self, relay: RelayController, outputs: RecordingOutputs
    ) -> None:
        relay.deenergize(2)
        assert outputs.by_pin[70].writes == []

    def test_handle_is_reused(self, relay: RelayController, outputs: RecordingOutputs) -> None:
        relay.energize(1)
        relay.deenergize(1)
        relay.energize(1)
        assert outputs.opened == 1

    def test_closed_handle_is_reopened(
        self, relay: RelayController, outputs: RecordingOutputs
    ) -> None:
        relay.energize(1)
        outputs.by_pin[73].close()
        relay.energize(1)
        assert outputs.opened == 2
        assert relay.state(1) is True

    def test_sockets_are_independent(
        self, relay: RelayController, outputs: RecordingOutputs
    ) -> None:
        relay.energize(1)
        relay.energize(2)
        relay.deenergize(1)
        assert relay.state(1) is False
        assert relay.state(2) is True

    def test_state_of_unopened_socket(self, relay: RelayController) -> None:
        assert relay.state(2) is None

    def test_unknown_socket(self, relay: RelayController) -> None:
        assert relay.sockets == [1, 2]
        assert not relay.has_socket(9)
        with pytest.raises(UnknownSocketError, match="Invalid socket number: 9"):
            relay.energize(9)
        with pytest.raises(UnknownSocketError):
            relay.state(9)

    def test_failing_output_raises_actuation_error(self) -> None:
        relay = RelayController(PIN_MAP, FailingOutput)
        with pytest.raises(ActuationError) as exc_info:
            relay.energize(1)
        assert exc_info.value.socket_number == 1
        assert "line busy" in exc_info.value.message

    def test_concurrent_writes_to_one_socket_are_serialized(self) -> None:
        handles: list[OverlapDetectingOutput] = []

        def factory(pin: int) -> OverlapDetectingOutput:
            handle = OverlapDetectingOutput(pin)
            handles.append(handle)
            return handle

        relay = RelayController(PIN_MAP, factory)
        barrier = threading.Barrier(8)

        def toggle(i: int) -> None:
            barrier.wait()
            for _ in range(20):
                if i % 2:
                    relay.energize(1)
                else:
                    relay.deenergize(1)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(toggle, range(8)))

        assert len(handles) == 1
        assert handles[0].overlaps == 0


class TestRelayShutdown:
    def test_shutdown_turns_everything_off_and_closes(
        self, relay: RelayController, outputs: RecordingOutputs
    ) -> None:
        relay.energize(1)
        relay.energize(2)
        relay.shutdown()
        assert relay.closed
        for out in outputs.by_pin.values():
            assert out.value == 0
            assert out.closed

    def test_shutdown_is_idempotent(
        self, relay: RelayController, outputs: RecordingOutputs
    ) -> None:
        relay.energize(1)
        relay.shutdown()
        relay.shutdown()
        assert outputs.by_pin[73].writes == [1, 0]

    def test_writes_after_shutdown_rejected(self, relay: RelayController) -> None:
        relay.shutdown()
        with pytest.raises(ActuationError, match="shut down"):
            relay.energize(1)

    def test_shutdown_with_nothing_opened(self, relay: RelayController) -> None:
        relay.shutdown()
        assert relay.closed

    def test_context_manager_shuts_down(self, outputs: RecordingOutputs) -> None:
        with RelayController(PIN_MAP, outputs) as relay:
            relay.energize(2)
        assert relay.closed
        assert outputs.by_pin[70].value == 0
        assert outputs.by_pin[70].closed

    def test_context_manager_shuts_down_on_error(self, outputs: RecordingOutputs) -> None:
        with pytest.raises(KeyError):
            with RelayController(PIN_MAP, outputs) as relay:
                relay.energize(1)
                raise KeyError("boom")
        assert outputs.by_pin[73].value == 0

    def test_failed_release_still_releases_the_rest(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        handles: dict[int, SimulatedOutput] = {}

        def factory(pin: int) -> SimulatedOutput:
            handle = FailingOutput(pin, fail_on="off") if pin == 73 else SimulatedOutput(pin)
            handles[pin] = handle
            return handle

        relay = RelayController(PIN_MAP, factory)
        relay.energize(1)
        relay.energize(2)
        with caplog.at_level(logging.ERROR), pytest.raises(ActuationError, match=r"\[1\]"):
            relay.shutdown()
        assert handles[70].value == 0
        assert handles[70].closed
        assert "Failed to release socket 1" in caplog.text

    def test_failed_off_still_closes_the_handle(self) -> None:
        handles: list[FailingOutput] = []

        def factory(pin: int) -> FailingOutput:
            handle = FailingOutput(pin, fail_on="off")
            handles.append(handle)
            return handle

        relay = RelayController(PIN_MAP, factory)
        relay.energize(1)
        with pytest.raises(ActuationError):
            relay.shutdown()
        assert handles[0].closed
        assert relay.closed


class TestBuildRelayController:
    def test_simulated_backend(self) -> None:
        relay = build_relay_controller(make_settings(RELAY_BACKEND="simulated"))
        assert relay.sockets == [1, 2]
        relay.energize(1)
        assert relay.state(1) is True
        relay.shutdown()

    def test_auto_falls_back_off_linux(
        self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        monkeypatch.setattr("src.cs_relay.application.controller.sys.platform", "darwin")
        with caplog.at_level(logging.WARNING):
            relay = build_relay_controller(make_settings(RELAY_BACKEND="auto"))
        assert "simulated relays" in caplog.text
        relay.energize(2)
        assert relay.state(2) is True
        relay.shutdown()

    def test_pin_map_from_settings(self) -> None:
        relay = build_relay_controller(
            make_settings(RELAY_BACKEND="simulated", SOCKET_PIN_MAP={3: 17})
        )
        assert relay.sockets == [3]
        assert not relay.has_socket(1)
