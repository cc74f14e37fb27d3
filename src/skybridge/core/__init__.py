"""Core services, persistence and schemas."""
