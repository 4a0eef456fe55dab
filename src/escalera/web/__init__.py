"""FastAPI mapping of the ladder operations."""

from escalera.web.api import create_app, get_current_identity, get_service

__all__ = ["create_app", "get_current_identity", "get_service"]
