"""Skybridge: follow discovery and batch follow for AT Protocol accounts."""

__version__ = "0.1.0"
