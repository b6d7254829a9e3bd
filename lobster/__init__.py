"""
Lobster Relay Kernel

Relays chat messages from an input channel to a remote agent service and routes
the replies back, using a crash-tolerant file-backed queue so that restarts
neither lose nor duplicate work.
"""

__version__ = "1.0.0"
