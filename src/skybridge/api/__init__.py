"""HTTP edge: FastAPI application, dependencies and routes."""
