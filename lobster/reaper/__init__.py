"""
Reaper module.
Contains startup orphan recovery and archive pruning.
"""

from lobster.reaper.main import Reaper

__all__ = ["Reaper"]
