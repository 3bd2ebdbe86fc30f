"""Recall: a memory lifecycle engine for AI assistants."""

__version__ = "0.1.0"
