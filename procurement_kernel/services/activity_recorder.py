"""
ActivityRecorder -- append-only request activity trail.

Responsibility:
    Appends one RequestActivity row per workflow operation (who did what,
    from which status to which, with what comment) inside the caller's
    transaction, so the trail commits or rolls back with the change it
    describes.

Architecture position:
    Kernel > Services.  Called by RequestWorkflowService only.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import func, select

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.activity import ActivityAction, RequestActivity
from procurement_kernel.services.base import BaseService

logger = get_logger("services.activity")


class ActivityRecorder(BaseService):
    """Writes RequestActivity rows.  Flushes, never commits."""

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def record(
        self,
        request_id: UUID,
        actor_id: UUID,
        action: ActivityAction,
        from_status: str | None = None,
        to_status: str | None = None,
        comment: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> RequestActivity:
        last = self.session.execute(
            select(func.max(RequestActivity.seq)).where(
                RequestActivity.request_id == request_id
            )
        ).scalar_one_or_none()
        activity = RequestActivity(
            request_id=request_id,
            seq=(last or 0) + 1,
            actor_id=actor_id,
            action=action.value,
            from_status=from_status,
            to_status=to_status,
            comment=comment,
            payload=payload,
            occurred_at=self._clock.now(),
        )
        self.session.add(activity)
        self.session.flush()
        logger.debug(
            "activity_recorded",
            extra={
                "request_id": str(request_id),
                "action": action.value,
                "to_status": to_status,
            },
        )
        return activity
