"""Exceptions raised by the tracker core and club operations."""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for all tracker errors."""


class ValidationError(TrackerError, ValueError):
    """Input rejected; no state was changed."""


class NotFoundError(TrackerError, LookupError):
    """Referenced team, player, game, user or assignment does not exist."""


class PermissionDeniedError(TrackerError):
    """The acting user's role does not allow the operation."""


class GameFinishedError(TrackerError):
    """A finished game only accepts an AI summary."""


class RosterImportError(TrackerError):
    """AI roster extraction failed. The message is safe to show to users."""
