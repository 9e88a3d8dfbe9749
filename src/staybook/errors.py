"""Error kinds surfaced by booking, availability and dashboard operations."""

from __future__ import annotations


class StayBookError(Exception):
    """Base class for errors shown to the user."""

    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.user_message)


class ValidationError(StayBookError, ValueError):
    """Missing or malformed input. Not retried."""

    user_message = "Please fill in all required fields."


class AuthorizationError(StayBookError):
    """The caller does not own the resource. Nothing was changed."""

    user_message = "You are not allowed to perform this action."


class TransientStoreError(StayBookError):
    """Database or network failure. The user has to retry manually."""

    user_message = "Failed to save your booking. Please try again."


class RaceConditionError(StayBookError):
    """A requested night or slot was taken by another booking."""

    user_message = "These dates are no longer available. Please select different dates."
