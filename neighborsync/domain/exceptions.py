"""Centralized exception hierarchy for the neighborhood sync engine.

All domain and service exceptions inherit from :class:`NeighborSyncError` so
that callers can catch a single base class when they need a broad safety net,
yet still match on specific subclasses where narrower handling is appropriate.

Synthesis-time errors (``InvalidCommandError``, ``NoEligibleMembersError``)
propagate to whoever started the sync. Execution errors
(``ControllerUnreachableError``) stay on the member's own device.

Hierarchy
---------
::

    NeighborSyncError
    ├── ValidationError
    │   └── InvalidCommandError          (empty colours, unknown effect id)
    ├── NoEligibleMembersError           (everyone paused / opted out)
    ├── ParticipationPermissionError     (member edited someone else's state)
    ├── NotFoundError                    (unknown member / schedule)
    ├── StaleCommandIgnoredError         (out-of-order record at a subscriber)
    ├── DeviceError
    │   └── ControllerUnreachableError   (local controller timeout / HTTP error)
    └── ConfigurationError               (missing / invalid config)
"""

from __future__ import annotations


class NeighborSyncError(Exception):
    """Base exception for all neighborhood sync errors.

    Parameters
    ----------
    message:
        Human-readable description.
    detail:
        Optional machine-readable context dict attached to the error for
        structured logging.
    """

    def __init__(self, message: str = "", *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


class ValidationError(NeighborSyncError):
    """Caller supplied invalid or incomplete input."""


class InvalidCommandError(ValidationError):
    """A sync command (or schedule) cannot be built from the given fields."""


class NoEligibleMembersError(NeighborSyncError):
    """Every member of the group is paused or opted out of this trigger."""


class ParticipationPermissionError(NeighborSyncError):
    """A member tried to change another member's participation state."""


class NotFoundError(NeighborSyncError):
    """Requested entity does not exist."""


class StaleCommandIgnoredError(NeighborSyncError):
    """A subscriber received a record older than one it already delivered."""


class DeviceError(NeighborSyncError):
    """Hardware communication or device-protocol failure."""


class ControllerUnreachableError(DeviceError):
    """The member's local lighting controller did not accept the command."""


class ConfigurationError(NeighborSyncError):
    """Missing or invalid engine configuration."""
