"""Scheduling, single-flight check execution, and event fan-out.

Public API
----------
* :class:`~jkkwatch.orchestrator.scheduler.WatchScheduler`: Idle/Running
  state machine with the repeating timer and the single-flight lock.
* :class:`~jkkwatch.orchestrator.pipeline.CheckPipeline`: one
  probe → log → notify → auto-stop cycle.
* :class:`~jkkwatch.orchestrator.broadcaster.EventBroadcaster`: multi-subscriber
  event fan-out with a late-joiner backfill.
* :class:`~jkkwatch.orchestrator.state.WatchState`: in-memory status owner.
* :class:`~jkkwatch.orchestrator.runner.WatchService` /
  :func:`~jkkwatch.orchestrator.runner.open_service`: wiring and the
  command surface.
* :func:`~jkkwatch.orchestrator.runner.run_once` /
  :func:`~jkkwatch.orchestrator.runner.run_watch`: process modes.
"""

from jkkwatch.orchestrator.broadcaster import EventBroadcaster, Subscription
from jkkwatch.orchestrator.pipeline import CheckPipeline, CheckReport
from jkkwatch.orchestrator.runner import WatchService, open_service, run_once, run_watch
from jkkwatch.orchestrator.scheduler import WatchScheduler
from jkkwatch.orchestrator.state import WatchState

__all__ = [
    # Scheduler
    "WatchScheduler",
    # Check cycle
    "CheckPipeline",
    "CheckReport",
    # Events
    "EventBroadcaster",
    "Subscription",
    # State
    "WatchState",
    # Wiring and process modes
    "WatchService",
    "open_service",
    "run_once",
    "run_watch",
]
