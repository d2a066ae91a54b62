# Overview: Service-layer operations for maintenance; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime

from . import hold_service
from retailpos.time_utils import utcnow


def sweep_expired_holds(*, now: datetime | None = None) -> int:
    """
    Expire held transactions past their expires_at.

    Resume already checks expiry lazily; this keeps the held list clean for
    carts nobody comes back to.
    """
    return hold_service.expire_stale_holds(now or utcnow())
