"""extperf - per-extension resource attribution and history."""

__version__ = "0.1.0"
