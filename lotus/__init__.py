"""Lotus: conversation context and token budget management for chat assistants."""

__version__ = "0.1.0"
