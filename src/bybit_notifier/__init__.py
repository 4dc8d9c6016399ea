"""Bybit private stream notifier."""

__version__ = "0.1.0"
