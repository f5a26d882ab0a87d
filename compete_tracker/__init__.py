"""Compete Tracker: competitor and product tracking with snapshot history."""

__version__ = "1.0.0"
