"""
Sessions module.
Contains the durable channel-to-session store.
"""

from lobster.sessions.store import SessionStore

__all__ = ["SessionStore"]
