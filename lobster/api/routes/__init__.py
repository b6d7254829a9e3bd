"""
API routes module.
"""

from lobster.api.routes.health import router as health_router
from lobster.api.routes.messages import router as messages_router

__all__ = ["messages_router", "health_router"]
