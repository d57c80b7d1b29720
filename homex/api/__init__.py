"""HTTP API: FastAPI app factory, routes, middleware and error mapping."""

from homex.api.app import create_app

__all__ = ["create_app"]
