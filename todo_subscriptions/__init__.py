"""Paid-access subscription lifecycle service for the todo backend."""

__version__ = "0.1.0"
