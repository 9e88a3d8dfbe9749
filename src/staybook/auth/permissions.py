"""Ownership checks for owner-only actions."""

from __future__ import annotations

import logging
from typing import Protocol

from staybook.errors import AuthorizationError

logger = logging.getLogger(__name__)


class Owned(Protocol):
    id: int
    owner_id: int | None


def ensure_owner(resource: Owned, user_id: int | None) -> None:
    """Raise AuthorizationError unless ``user_id`` owns ``resource``."""
    if user_id is None or resource.owner_id != user_id:
        logger.warning(
            "User %s refused access to %s %s",
            user_id, type(resource).__name__, resource.id,
        )
        raise AuthorizationError()
