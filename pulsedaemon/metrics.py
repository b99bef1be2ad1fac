"""Host metrics: CPU load, memory, disk space, uptime and database detection."""

from __future__ import annotations

import ipaddress
import os
import re
import shutil
import sys
import time
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Iterable

import psutil

BYTES_PER_KB = 1024
"""Base-2 kilobyte used for every size reported by this module."""

PROC_ROOT = "/proc"
PROC_STAT = "/proc/stat"
PROC_MEMINFO = "/proc/meminfo"

DEFAULT_MOUNT_POINT = "C:\\" if sys.platform == "win32" else "/"

DATABASE_PROCESS_NAMES: tuple[str, ...] = (
    "mysql",
    "mysqld.exe",
    "mysqld",
    "mariadbd",
    "memcached",
    "db2sysc",
    "cassandra",
    "redis-server",
    "mongod",
    "mongos",
    "tnslsnr",
    "oracle",
    "sqlservr",
    "postgres",
)

# Longest command line prefix inspected for a process (one line buffer).
_CMDLINE_LIMIT = 511

_MEM_AVAILABLE = re.compile(r"^MemAvailable:\s*(\d+)")


@dataclass(frozen=True)
class CpuStats:
    """Cumulative CPU times from the aggregate ``cpu`` line of /proc/stat."""

    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0
    guest: int = 0
    guest_nice: int = 0

    def idle_time(self) -> int:
        """Time spent idle or waiting for I/O."""
        return self.idle + self.iowait

    def non_idle_time(self) -> int:
        """Time spent doing work (guest time is already counted in user)."""
        return (
            self.user
            + self.nice
            + self.system
            + self.irq
            + self.softirq
            + self.steal
        )

    def total_time(self) -> int:
        """Idle plus non-idle time."""
        return self.idle_time() + self.non_idle_time()


def parse_cpu_stats(text: str) -> CpuStats:
    """Parse the leading ``cpu`` line of /proc/stat content.

    Fields missing at the end of the line are left at zero.
    """
    first_line = text.lstrip().split("\n", 1)[0]
    parts = first_line.split()
    if not parts or parts[0] != "cpu":
        raise ValueError("no aggregate cpu line found")
    values: list[int] = []
    for part in parts[1 : 1 + len(fields(CpuStats))]:
        if not part.isdigit():
            break
        values.append(int(part))
    if not values:
        raise ValueError("cpu line holds no counters")
    return CpuStats(*values)


def read_cpu_stats(path: str | os.PathLike[str] = PROC_STAT) -> CpuStats:
    """Read and parse CPU counters from a /proc/stat style file."""
    return parse_cpu_stats(Path(path).read_text())


def cpu_usage(previous: CpuStats, current: CpuStats) -> float:
    """Fraction of non-idle time between two samples, from 0.0 to 1.0.

    Returns 0.0 when no time elapsed between the samples.
    """
    total_diff = current.total_time() - previous.total_time()
    idle_diff = current.idle_time() - previous.idle_time()
    if total_diff == 0:
        return 0.0
    return (total_diff - idle_diff) / total_diff


class CpuMonitor:
    """Keeps the previous and current CPU samples to measure load between them."""

    def __init__(self, stat_path: str | os.PathLike[str] = PROC_STAT) -> None:
        self.stat_path = stat_path
        self.previous = CpuStats()
        self.current = CpuStats()

    def update(self) -> bool:
        """Shift the current sample to previous and take a new one.

        Returns False if the statistics could not be read; the current
        sample is then kept.
        """
        self.previous = self.current
        try:
            self.current = read_cpu_stats(self.stat_path)
        except (OSError, ValueError):
            return False
        return True

    def load(self) -> float:
        """Take a new sample and return the load since the last one."""
        if not self.update():
            return 0.0
        return cpu_usage(self.previous, self.current)


def format_client_ip(address: object) -> str:
    """Return the textual IP of a socket address as given by ``accept``.

    Raises ValueError for addresses that are not IPv4 or IPv6.
    """
    if isinstance(address, tuple) and address and isinstance(address[0], str):
        host = address[0].split("%", 1)[0]
        try:
            return str(ipaddress.ip_address(host))
        except ValueError:
            pass
    raise ValueError("Unknown AF")


def cmdline_matches(cmdline: str, name: str) -> bool:
    """Tell whether the program path in a command line has a component ``name``.

    Only the first argument is considered, up to its first space, and it is
    split on ``/``; one of the parts must equal ``name`` exactly.
    """
    line = cmdline[:_CMDLINE_LIMIT].split("\0", 1)[0]
    head, newline, _ = line.partition("\n")
    line = head + newline
    tokens = [token for token in line.split(" ") if token]
    if not tokens:
        return False
    return any(part == name for part in tokens[0].split("/") if part)


def find_process_id(name: str, proc_root: str | os.PathLike[str] = PROC_ROOT) -> int | None:
    """Return the id of a process whose command line names ``name``, or None."""
    try:
        entries = list(os.scandir(proc_root))
    except OSError:
        return None
    for entry in entries:
        if not entry.name.isdigit():
            continue
        try:
            data = Path(entry.path, "cmdline").read_bytes()
        except OSError:
            continue
        cmdline = data[:_CMDLINE_LIMIT].decode("utf-8", errors="surrogateescape")
        if cmdline_matches(cmdline, name):
            return int(entry.name)
    return None


def _running_process_names() -> set[str]:
    names: set[str] = set()
    for process in psutil.process_iter(["name"]):
        process_name = process.info.get("name")
        if process_name:
            names.add(process_name)
    return names


def is_database_running(
    names: Iterable[str] = DATABASE_PROCESS_NAMES,
    proc_root: str | os.PathLike[str] = PROC_ROOT,
) -> bool:
    """Tell whether any of the named database processes is running.

    Uses the process table under ``proc_root`` when it exists, and the
    executable names of all processes otherwise.
    """
    wanted = list(names)
    if os.path.isdir(proc_root):
        return any(find_process_id(name, proc_root) is not None for name in wanted)
    running = _running_process_names()
    return any(name in running for name in wanted)


def parse_available_memory(text: str) -> int:
    """Return the MemAvailable value in kB from /proc/meminfo content, or 0."""
    for line in text.splitlines():
        match = _MEM_AVAILABLE.match(line)
        if match:
            return int(match.group(1))
    return 0


def available_memory(meminfo_path: str | os.PathLike[str] = PROC_MEMINFO) -> int:
    """Available physical memory in kB."""
    try:
        text = Path(meminfo_path).read_text()
    except OSError:
        return psutil.virtual_memory().available // BYTES_PER_KB
    return parse_available_memory(text)


def total_physical_memory() -> int:
    """Total physical memory in kB."""
    return psutil.virtual_memory().total // BYTES_PER_KB


def uptime_in_secs() -> int:
    """Seconds since the system booted."""
    return max(0, int(time.time() - psutil.boot_time()))


def available_space(mount_point: str | os.PathLike[str] = DEFAULT_MOUNT_POINT) -> int:
    """Free disk space at ``mount_point`` in kB, or 0 if it cannot be read."""
    try:
        if hasattr(os, "statvfs"):
            stat = os.statvfs(mount_point)
            return (stat.f_bsize * stat.f_bfree) // BYTES_PER_KB
        return shutil.disk_usage(mount_point).free // BYTES_PER_KB
    except OSError:
        return 0


def total_disk_space(mount_point: str | os.PathLike[str] = DEFAULT_MOUNT_POINT) -> int:
    """Total disk space at ``mount_point`` in kB, or 0 if it cannot be read."""
    try:
        if hasattr(os, "statvfs"):
            stat = os.statvfs(mount_point)
            return (stat.f_blocks * stat.f_frsize) // BYTES_PER_KB
        return shutil.disk_usage(mount_point).total // BYTES_PER_KB
    except OSError:
        return 0