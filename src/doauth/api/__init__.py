"""HTTP API: FastAPI application, auth middleware and v1 routes."""
