# pulsedaemon

`pulsedaemon` is a small TCP daemon that reports the health of the machine it
runs on. A client connects, optionally sends an authority key, and receives a
single line, the *pulse*, describing the host's current state. The connection
is then closed.

## Installing

```
pip install pulsedaemon
```

## Running the daemon

Start it in key-less mode, where any client may probe the server:

```
pulsedaemon
```

Or require clients to present an authority key by passing it with `-k`,
written directly after the flag as the first argument:

```
pulsedaemon -ksecret
```

The same entry point can be started with `python -m pulsedaemon.server`.

The daemon takes a first CPU sample, waits one second, then listens on TCP
port 1382 on all interfaces. Each client is served in its own thread, and
every pulse sent is printed together with the client's address. Press
`CTRL+C` to stop it.

When a key is set, the server reads what the client sends and replies once a
received chunk begins with the key. A client that does not do so within five
seconds, or that closes its side first, is disconnected without a reply.

## The pulse

The reply is a single line of colon-separated fields:

```
cpu_load:db_running:uptime:disk_total:disk_free:disk_used:mem_total:mem_free:mem_used
```

| Field        | Meaning                                                       |
|--------------|---------------------------------------------------------------|
| `cpu_load`   | CPU usage since the previous pulse, as a fraction (4 places)  |
| `db_running` | `1` if a known database process is running, otherwise `0`     |
| `uptime`     | Seconds since the system booted                               |
| `disk_total` | Total size of the root file system, in KiB                    |
| `disk_free`  | Free space on the root file system, in KiB                    |
| `disk_used`  | Used fraction of the root file system (4 places)              |
| `mem_total`  | Total physical memory, in KiB                                 |
| `mem_free`   | Available physical memory, in KiB                             |
| `mem_used`   | Used fraction of physical memory (4 places)                   |

The used fractions are computed in single precision, as one minus free over
total.

The database check looks for processes named `mysql`, `mysqld.exe`,
`mysqld`, `mariadbd`, `memcached`, `db2sysc`, `cassandra`, `redis-server`,
`mongod`, `mongos`, `tnslsnr`, `oracle`, `sqlservr` and `postgres`. Where a
`/proc` directory exists, a process matches when one `/`-separated part of
the program path in its command line equals the name; elsewhere the
executable names of all processes are compared.

## Probing from a client

Any TCP client will do. With Python's standard library:

```python
import socket

with socket.create_connection(("localhost", 1382)) as conn:
    conn.sendall(b"secret")          # omit when the server runs key-less
    print(conn.recv(512).decode())
```

## Using the library

The metrics and the server are also available from Python.

```python
from pulsedaemon.metrics import CpuMonitor
from pulsedaemon.server import collect_pulse

monitor = CpuMonitor("/proc/stat")
monitor.update()

pulse = collect_pulse(monitor, ["postgres", "redis-server"], "/")
print(pulse.format(":"))
print(pulse.disk_used_ratio(), pulse.memory_used_ratio())
```

`pulsedaemon.metrics` offers the individual readings:
`available_memory`, `total_physical_memory`, `available_space`,
`total_disk_space`, `uptime_in_secs`, `find_process_id`,
`is_database_running` and `format_client_ip`, together with `CpuStats`,
`parse_cpu_stats`, `read_cpu_stats`, `cpu_usage` and `CpuMonitor` for
working with CPU counters, and `parse_available_memory` and
`cmdline_matches` for parsing `/proc` content directly.

`pulsedaemon.server` holds `Pulse`, `collect_pulse`, the argument helpers
`extract_key` and `parse_key`, `key_matches`, and `PulseServer`. Create a
`PulseServer` with a key, host, port, a callable that produces a `Pulse`,
and a timeout in seconds, then call `bind()` (which returns the bound
address) and `serve_forever()`; `shutdown()` stops it. `handle_client` serves
a single accepted connection and returns whether a pulse was sent.

## Limitations

- CPU load is read from `/proc/stat`. On systems without it, the reported
  load is always `0.0000`.
- The server speaks plain TCP only; there is no encryption, and the
  authority key travels in the clear.
- The port, the list of database process names and the mount point are
  fixed in the command; only the authority key can be set on the command
  line.