"""Agent tool server for previewed, idempotent composite writes against the object store."""

__version__ = "0.1.0"
