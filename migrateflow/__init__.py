"""Versioned database migrations: a migrator, migration objects, URL and command helpers."""

__version__ = "0.1.0"