"""HTTP transport: FastAPI application, routers and error mapping."""

from taskmanager.api.app import create_app

__all__ = ["create_app"]
