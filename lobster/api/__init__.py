"""
API module.
Contains the FastAPI application served by the HTTP channel.
"""

from lobster.api.main import create_app

__all__ = ["create_app"]
