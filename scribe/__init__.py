"""Scribe: turn-bounded model orchestration for writing-analysis tools."""

__version__ = "0.1.0"
