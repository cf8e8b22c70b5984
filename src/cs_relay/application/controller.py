"""RelayController — owns every relay output the process drives.

- One handle per socket, opened on first use and reused until closed.
- Writes to the same socket are serialized by a per-socket lock; sockets
  never block each other.
- Writing the level a line already has is skipped, so energize/deenergize
  are idempotent at the hardware layer.
- shutdown() drives every opened line off and releases it. It runs at most
  once; the controller refuses writes afterwards. Use the controller as a
  context manager (or call shutdown() from the process lifespan) so an
  energized socket is never left on when the process exits.
"""

import importlib.util
import logging
import sys
import threading
from collections.abc import Callable, Mapping

from config.settings import Settings
from src.cs_common.errors import ActuationError, UnknownSocketError
from src.cs_relay.domain.output import OutputHandle
from src.cs_relay.infrastructure.gpio import gpio_output_factory
from src.cs_relay.infrastructure.simulated import SimulatedOutput

logger = logging.getLogger(__name__)


class RelayController:
    def __init__(
        self,
        pin_map: Mapping[int, int],
        output_factory: Callable[[int], OutputHandle],
    ) -> None:
        self._pin_map: dict[int, int] = dict(pin_map)
        self._output_factory = output_factory
        self._outputs: dict[int, OutputHandle] = {}
        self._socket_locks: dict[int, threading.Lock] = {
            socket: threading.Lock() for socket in self._pin_map
        }
        self._registry_lock = threading.Lock()
        self._closed = False

    @property
    def sockets(self) -> list[int]:
        return sorted(self._pin_map)

    @property
    def closed(self) -> bool:
        return self._closed

    def has_socket(self, socket_number: int) -> bool:
        return socket_number in self._pin_map

    def energize(self, socket_number: int) -> None:
        self._write(socket_number, True)

    def deenergize(self, socket_number: int) -> None:
        self._write(socket_number, False)

    def state(self, socket_number: int) -> bool | None:
        """Last level of the socket's line, or None if it was never opened."""
        self._resolve_pin(socket_number)
        handle = self._outputs.get(socket_number)
        if handle is None or handle.closed:
            return None
        return bool(handle.value)

    def _resolve_pin(self, socket_number: int) -> int:
        pin = self._pin_map.get(socket_number)
        if pin is None:
            raise UnknownSocketError(socket_number)
        return pin

    def _handle_for(self, socket_number: int, pin: int) -> OutputHandle:
        """Caller holds the socket lock."""
        handle = self._outputs.get(socket_number)
        if handle is None or handle.closed:
            handle = self._output_factory(pin)
            with self._registry_lock:
                self._outputs[socket_number] = handle
            logger.debug("Opened output for socket %d (pin %d)", socket_number, pin)
        return handle

    def _write(self, socket_number: int, energized: bool) -> None:
        pin = self._resolve_pin(socket_number)
        with self._socket_locks[socket_number]:
            if self._closed:
                raise ActuationError(socket_number, "relay controller is shut down")
            try:
                handle = self._handle_for(socket_number, pin)
                if bool(handle.value) == energized:
                    logger.debug(
                        "Socket %d already %s", socket_number, "on" if energized else "off"
                    )
                    return
                if energized:
                    handle.on()
                else:
                    handle.off()
            except Exception as exc:
                raise ActuationError(socket_number, str(exc)) from exc
        logger.info(
            "Socket %d %s (pin %d)",
            socket_number,
            "activated" if energized else "deactivated",
            pin,
        )

    def shutdown(self) -> None:
        """Turn every opened output off and release it; raise if any failed."""
        with self._registry_lock:
            if self._closed:
                return
            self._closed = True
            opened = sorted(self._outputs.items())

        failed: list[int] = []
        for socket_number, handle in opened:
            with self._socket_locks[socket_number]:
                try:
                    if not handle.closed:
                        try:
                            handle.off()
                        finally:
                            handle.close()
                    logger.info("Cleaned up socket %d", socket_number)
                except Exception:
                    logger.exception("Failed to release socket %d", socket_number)
                    failed.append(socket_number)
        with self._registry_lock:
            self._outputs.clear()
        if failed:
            raise ActuationError(None, f"sockets {failed} could not be released")

    def __enter__(self) -> "RelayController":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


def build_relay_controller(settings: Settings) -> RelayController:
    """Pick the output backend from RELAY_BACKEND ("auto" prefers real GPIO on Linux)."""
    backend = settings.RELAY_BACKEND
    if backend == "auto":
        gpio_available = (
            sys.platform.startswith("linux")
            and importlib.util.find_spec("gpiozero") is not None
        )
        backend = "gpio" if gpio_available else "simulated"
        if backend == "simulated":
            logger.warning("GPIO output not available on this host; using simulated relays")

    factory: Callable[[int], OutputHandle]
    if backend == "gpio":
        factory = gpio_output_factory(active_high=settings.RELAY_ACTIVE_HIGH)
    else:
        factory = SimulatedOutput
    logger.info("Relay backend: %s, sockets %s", backend, sorted(settings.SOCKET_PIN_MAP))
    return RelayController(settings.SOCKET_PIN_MAP, factory)
