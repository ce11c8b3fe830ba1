"""Maintenance daemon for a persistent job store."""

__version__ = "1.0.0"
