"""
Job Package
===========

Analysis dispatch (in-process or Redis Queue) and stale recovery.
"""

from .dispatcher import AnalysisDispatcher, InProcessDispatcher, RQDispatcher, get_dispatcher
from .sweeper import StaleContractSweeper, SweepResult, STALE_DIAGNOSTIC

__all__ = [
    # Dispatch
    "AnalysisDispatcher", "InProcessDispatcher", "RQDispatcher", "get_dispatcher",
    # Recovery
    "StaleContractSweeper", "SweepResult", "STALE_DIAGNOSTIC",
]
