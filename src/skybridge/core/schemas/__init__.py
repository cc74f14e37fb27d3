"""Pydantic request/response schemas for Skybridge."""
