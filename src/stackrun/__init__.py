"""Suspend/resume task orchestration on a SQLite run store."""

__version__ = "0.1.0"
