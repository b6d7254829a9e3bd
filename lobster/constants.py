"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class KernelState(StrEnum):
    """
    Dispatch kernel lifecycle states.

    State transitions:
    - STOPPED -> RUNNING (bootstrap)
    - RUNNING -> DRAINING (shutdown requested)
    - DRAINING -> STOPPED (in-flight work finished or drain timeout)
    """

    STOPPED = "stopped"
    RUNNING = "running"
    DRAINING = "draining"


# Queue names
INCOMING_QUEUE = "incoming"
OUTGOING_QUEUE = "outgoing"

# Queue partitions live in sibling directories: <name>, <name>_processing, <name>_done
PROCESSING_SUFFIX = "_processing"
DONE_SUFFIX = "_done"
ITEM_EXTENSION = ".json"
TEMP_EXTENSION = ".tmp"

# Agent commands
RESET_COMMANDS = frozenset({"/reset", "!reset"})

# Metrics names
METRIC_QUEUE_DEPTH = "lobster_queue_depth"
METRIC_ITEMS_ENQUEUED = "lobster_queue_items_enqueued_total"
METRIC_ITEMS_COMPLETED = "lobster_queue_items_completed_total"
METRIC_ITEMS_REQUEUED = "lobster_queue_items_requeued_total"
METRIC_MESSAGES_REJECTED = "lobster_messages_rejected_total"
METRIC_MESSAGE_DURATION = "lobster_message_processing_seconds"
METRIC_DELIVERIES = "lobster_deliveries_total"
METRIC_RATE_LIMITED = "lobster_rate_limited_total"
METRIC_RETRY_ATTEMPTS = "lobster_retry_attempts_total"

# Trace span names
SPAN_PROCESS_MESSAGE = "process_message"
SPAN_DELIVER_RESPONSE = "deliver_response"
SPAN_REMOTE_CALL = "remote_call"
