"""Test doubles shared across test packages.

Usage::

    from tests.factories.agents import make_agent
"""
