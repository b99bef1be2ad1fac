"""A TCP daemon that reports host health pulses: CPU load, database presence, uptime, disk and memory."""

__version__ = "1.0.0"
__all__ = ["metrics", "server"]