"""powerctl: sleep idle cluster nodes and wake them on demand."""

__version__ = "0.1.0"
