"""
Queue module.
Contains the durable file-backed queue store.
"""

from lobster.queue.store import QueueStore, generate_item_id

__all__ = ["QueueStore", "generate_item_id"]
