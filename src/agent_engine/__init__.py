"""Agent execution engine: resolves agent configuration and runs chat and scheduled turns."""

__version__ = "0.3.0"
