"""Mostaql Hub — Core Package.

Pure building blocks of the detection pipeline:
  - SeenSet: bounded ordered dedup memory
  - FilterCriteria / evaluate: two-stage listing filter
  - QuietHours: notification suppression window

The cycle and scheduler live in mostaql_hub.core.cycle and
mostaql_hub.core.scheduler.
"""

from mostaql_hub.core.filters import FilterCriteria, FilterStage, evaluate, filter_batch
from mostaql_hub.core.quiet_hours import QuietHours
from mostaql_hub.core.seen_set import SeenSet

__all__ = [
    "FilterCriteria",
    "FilterStage",
    "evaluate",
    "filter_batch",
    "QuietHours",
    "SeenSet",
]
