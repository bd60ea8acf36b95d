"""HTTP API for shopcore."""

from shopcore.api.app import create_app

__all__ = ["create_app"]
