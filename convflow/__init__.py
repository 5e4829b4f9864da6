"""Conversation workflow engine: clarification, planning, execution, review."""

__version__ = "0.1.0"
