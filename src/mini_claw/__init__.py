"""Chat relay for an external coding agent."""

__version__ = "0.1.0"
