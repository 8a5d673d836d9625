"""Clinic appointment workflow backend."""

__version__ = "0.1.0"
