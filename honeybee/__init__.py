"""Honeybee: offline-first shared calendar sync for paired partners."""

__version__ = "0.1.0"
