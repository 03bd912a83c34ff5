"""
Typed failures that cross the engine boundary.

Parsing and matching problems are recovered where they are detected and never
raised. Only failures of external collaborators reach the caller.
"""

from __future__ import annotations


class RCMStudioError(Exception):
    """Base class for failures surfaced to the UI layer."""


class ServiceError(RCMStudioError):
    """The generative text service failed or returned nothing usable."""


class StorageError(RCMStudioError):
    """The study store could not list, save, or delete a study."""
