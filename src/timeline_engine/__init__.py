"""Task dependency graph and timeline auto-scheduling engine."""

__version__ = "0.1.0"
