"""
Service Organization
====================

**protocols**
  Interfaces of the shared store, the local controller, the notifier and
  the sunset provider.

**command_synthesizer / broadcast_distributor**
  Initiator side: build one group command and publish it as the group's
  versioned record.

**execution_agent / schedule_evaluator**
  Per-device runtime: trigger the local controller on time, fire due
  schedules once per window.

**neighborhood_service**
  Membership, participation and schedule CRUD for the surrounding app.

**utilities/**
  Stateless helpers (sun times).
"""

from .broadcast_distributor import BroadcastDistributor, Subscription
from .command_synthesizer import CommandSynthesizer, StartResult
from .execution_agent import LocalExecutionAgent
from .neighborhood_service import NeighborhoodService
from .schedule_evaluator import FiredSchedule, FireMarkerStore, ScheduleEvaluator

__all__ = [
    "BroadcastDistributor",
    "CommandSynthesizer",
    "FireMarkerStore",
    "FiredSchedule",
    "LocalExecutionAgent",
    "NeighborhoodService",
    "ScheduleEvaluator",
    "StartResult",
    "Subscription",
]
