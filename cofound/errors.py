"""Exceptions raised by the Cofound service layer."""
from __future__ import annotations


class CofoundError(Exception):
    """Base class for service-layer failures."""


class NotFoundError(CofoundError):
    """A record addressed by id does not exist."""

    def __init__(self, label: str, entity_id: str):
        super().__init__(f"{label} not found")
        self.label = label
        self.entity_id = entity_id


class PermissionDeniedError(CofoundError):
    """The caller is not allowed to act on the record."""


class ValidationError(CofoundError):
    """Input rejected before it reaches the store."""


class InvalidTransitionError(CofoundError):
    """A status change that the workflow does not allow."""

    def __init__(self, label: str, current: str, target: str):
        super().__init__(f"{label} cannot move from '{current}' to '{target}'")
        self.current = current
        self.target = target


class AuthError(CofoundError):
    """The identity provider rejected the caller's credentials."""


class WebhookError(CofoundError):
    """A webhook delivery could not be authenticated or parsed."""
