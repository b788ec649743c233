"""In-process telemetry: capture buffers, event log history and health monitors."""

__version__ = "0.1.0"
