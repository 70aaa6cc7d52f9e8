"""Consulting platform API: application composition and lifecycle."""

__version__ = "3.0.0"
