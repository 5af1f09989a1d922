"""
Reaper module.
Contains the lease reaper for recovering jobs orphaned in processing.
"""

from jobqueue.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
