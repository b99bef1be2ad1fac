"""Pulse daemon: answers TCP probes with a one-line summary of host health."""

from __future__ import annotations

import math
import socket
import struct
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from pulsedaemon.metrics import (
    DATABASE_PROCESS_NAMES,
    DEFAULT_MOUNT_POINT,
    CpuMonitor,
    available_memory,
    available_space,
    format_client_ip,
    is_database_running,
    total_disk_space,
    total_physical_memory,
    uptime_in_secs,
)

DAEMON_PORT = 1382
"""Port the daemon listens on."""

DELIMITER = ":"
"""Separator placed between the metrics of a pulse string."""

MAX_LEN = 512
"""Size of the receive buffer; at most one byte less is read per call."""

OP_TIMEOUT = 5.0
"""Seconds a client has to present its authority key."""

KEY_OPTION = "-k"

_ACCEPT_POLL = 0.2


def _float32(value: float) -> float:
    return struct.unpack("f", struct.pack("f", value))[0]


def _used_ratio(free: int, total: int) -> float:
    """One minus free/total, with the division done in single precision."""
    if total == 0:
        return -math.inf if free else math.nan
    return 1.0 - _float32(_float32(float(free)) / _float32(float(total)))


@dataclass(frozen=True)
class Pulse:
    """One snapshot of the metrics a client receives."""

    cpu_load: float
    database_running: bool
    uptime: int
    total_disk: int
    free_disk: int
    total_memory: int
    free_memory: int

    def disk_used_ratio(self) -> float:
        """Fraction of the disk in use."""
        return _used_ratio(self.free_disk, self.total_disk)

    def memory_used_ratio(self) -> float:
        """Fraction of physical memory in use."""
        return _used_ratio(self.free_memory, self.total_memory)

    def format(self, delimiter: str = DELIMITER) -> str:
        """Render the pulse as the delimited string sent to clients."""
        parts = (
            f"{self.cpu_load:.4f}",
            str(int(self.database_running)),
            str(self.uptime),
            str(self.total_disk),
            str(self.free_disk),
            f"{self.disk_used_ratio():.4f}",
            str(self.total_memory),
            str(self.free_memory),
            f"{self.memory_used_ratio():.4f}",
        )
        return delimiter.join(parts)


def collect_pulse(
    monitor: CpuMonitor | None = None,
    process_names: Iterable[str] = DATABASE_PROCESS_NAMES,
    mount_point: str = DEFAULT_MOUNT_POINT,
) -> Pulse:
    """Gather the current host metrics into a Pulse."""
    total_disk = total_disk_space(mount_point)
    free_disk = available_space(mount_point)
    total_memory = total_physical_memory()
    free_memory = available_memory()
    if monitor is None:
        monitor = CpuMonitor()
    return Pulse(
        cpu_load=monitor.load(),
        database_running=is_database_running(process_names),
        uptime=uptime_in_secs(),
        total_disk=total_disk,
        free_disk=free_disk,
        total_memory=total_memory,
        free_memory=free_memory,
    )


def extract_key(argument: str) -> str | None:
    """Return the key of an argument of the form ``-kKEY``, or None."""
    if len(argument) < len(KEY_OPTION) + 1 or not argument.startswith(KEY_OPTION):
        return None
    return argument[len(KEY_OPTION):]


def parse_key(argv: Sequence[str]) -> str:
    """Return the authority key given as the first argument, or an empty string."""
    if not argv:
        return ""
    return extract_key(argv[0]) or ""


def key_matches(data: bytes, key: str) -> bool:
    """Tell whether received data starts with the authority key.

    An empty key accepts anything.
    """
    if not key:
        return True
    expected = key.encode()
    return len(data) >= len(expected) and data[: len(expected)] == expected


def _client_ip(address: object) -> str:
    try:
        return format_client_ip(address)
    except ValueError as exc:
        return str(exc)


class PulseServer:
    """TCP server handing each client one pulse string, guarded by an optional key."""

    def __init__(
        self,
        key: str = "",
        host: str = "",
        port: int = DAEMON_PORT,
        pulse_factory: Callable[[], Pulse] | None = None,
        timeout: float = OP_TIMEOUT,
    ) -> None:
        self.key = key
        self.host = host
        self.port = port
        if pulse_factory is None:
            monitor = CpuMonitor()
            pulse_factory = lambda: collect_pulse(monitor)  # noqa: E731
        self.pulse_factory = pulse_factory
        self.timeout = timeout
        self._listener: socket.socket | None = None
        self._closing = threading.Event()
        self._threads: set[threading.Thread] = set()
        self._lock = threading.Lock()

    def bind(self) -> tuple[str, int]:
        """Open the listening socket and return the address it is bound to."""
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            listener.bind((self.host, self.port))
            listener.listen(socket.SOMAXCONN)
        except OSError:
            listener.close()
            raise
        listener.settimeout(_ACCEPT_POLL)
        self._listener = listener
        self._closing.clear()
        host, port = listener.getsockname()[:2]
        return host, port

    def serve_forever(self) -> None:
        """Accept clients until shut down, serving each in its own thread."""
        if self._listener is None:
            self.bind()
        listener = self._listener
        assert listener is not None
        while not self._closing.is_set():
            try:
                connection, address = listener.accept()
            except socket.timeout:
                continue
            except OSError:
                if self._closing.is_set():
                    return
                self.shutdown()
                raise
            thread = threading.Thread(
                target=self._serve_client, args=(connection, address), daemon=True
            )
            with self._lock:
                self._threads.add(thread)
            thread.start()

    def _serve_client(self, connection: socket.socket, address: object) -> None:
        try:
            self.handle_client(connection, address)
        finally:
            with self._lock:
                self._threads.discard(threading.current_thread())

    def handle_client(self, connection: socket.socket, address: object) -> bool:
        """Serve one client; return True once a pulse has been sent.

        With a key set, the client must send it within the timeout.
        The connection is closed in every case.
        """
        ip = _client_ip(address)
        deadline = time.monotonic() + self.timeout
        with connection:
            if not self.key:
                return self._respond(connection, ip)
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                connection.settimeout(remaining)
                try:
                    data = connection.recv(MAX_LEN - 1)
                except socket.timeout:
                    return False
                except OSError:
                    return False
                if not data:
                    return False
                if key_matches(data, self.key):
                    print(f"valid authority key provided by client: {ip}")
                    return self._respond(connection, ip)

    def _respond(self, connection: socket.socket, ip: str) -> bool:
        pulse = self.pulse_factory().format(DELIMITER)
        try:
            connection.sendall(pulse.encode())
        except OSError:
            return False
        print(f"{pulse} => {ip}")
        return True

    def shutdown(self) -> None:
        """Stop accepting, close the listener and wait for client threads."""
        self._closing.set()
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.close()
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            if thread is not threading.current_thread():
                thread.join(self.timeout)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the pulse daemon; ``-kKEY`` sets the authority key."""
    args = list(sys.argv[1:] if argv is None else argv)
    key = parse_key(args)

    print("\nPulse Server... (CTRL+C to exit)")
    if key:
        print(f"Authority key set to: {key}\n")
    else:
        print("Key-less mode, any client can probe this server\n")

    monitor = CpuMonitor()
    monitor.update()
    time.sleep(1)

    server = PulseServer(key=key, pulse_factory=lambda: collect_pulse(monitor))
    try:
        server.bind()
    except OSError as exc:
        print(f"socket binding ERROR: {exc}", file=sys.stderr)
        return 1
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nPulse Server exiting...")
    except OSError as exc:
        print(f"socket accept ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        server.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())