"""Safe-output gate: validate, sanitize, authorize and execute agent-proposed operations."""

__version__ = "0.1.0"
