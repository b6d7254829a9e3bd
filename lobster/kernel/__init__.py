"""
Kernel module.
Contains the dispatch kernel and its inbound message channel.
"""

from lobster.kernel.channel import MessageChannel
from lobster.kernel.kernel import DispatchKernel

__all__ = ["DispatchKernel", "MessageChannel"]
