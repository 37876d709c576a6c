"""Real-time vehicle locations and occupancies kept in memory and served over HTTP."""

__version__ = "0.1.0"