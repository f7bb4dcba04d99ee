"""Coding-question validation and repair pipeline."""

__version__ = "1.0.0"
