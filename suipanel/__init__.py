"""Models, SQLite storage and migrations, traffic tracking and HTTP helpers for a proxy management panel."""

__version__ = "1.3.0"