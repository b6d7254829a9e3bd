"""
Adapters module.
Contains the collaborator contracts and the bundled channel and agent adapters.
"""

from lobster.adapters.base import Adapter, AgentAdapter, InputAdapter, OutputAdapter
from lobster.adapters.http_channel import HttpInputAdapter
from lobster.adapters.opencode import OpencodeAgent
from lobster.adapters.webhook import WebhookOutputAdapter

__all__ = [
    "Adapter",
    "InputAdapter",
    "OutputAdapter",
    "AgentAdapter",
    "HttpInputAdapter",
    "WebhookOutputAdapter",
    "OpencodeAgent",
]
