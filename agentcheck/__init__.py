"""Helpers for end-to-end checks of a metrics and logs agent: cloud service queries, agent control and load generation."""

__version__ = "0.1.0"