"""Lecture video region extraction worker."""

__version__ = "0.1.0"
