"""Orchestrator - patrol controllers, cancellation, progress and checkpointing."""

from .cancellation import CancellationToken
from .fleet import FleetPatrolController, parse_target_urls
from .progress import ProgressSnapshot, ProgressTracker
from .runner import ScanCursor, ScanOutcome, ScanStats, TargetScan, classify_batch
from .single import ControllerState, ControllerStateError, SinglePatrolController

__all__ = [
    "CancellationToken",
    "ControllerState",
    "ControllerStateError",
    "FleetPatrolController",
    "ProgressSnapshot",
    "ProgressTracker",
    "ScanCursor",
    "ScanOutcome",
    "ScanStats",
    "SinglePatrolController",
    "TargetScan",
    "classify_batch",
    "parse_target_urls",
]
