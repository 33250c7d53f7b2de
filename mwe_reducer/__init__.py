"""Reduce failing Python programs to minimal working examples."""

__version__ = "0.1.0"
