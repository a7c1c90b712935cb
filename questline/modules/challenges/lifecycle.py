"""
Challenge lifecycle finalizer.

Moves group challenges through their one-way lifecycle:

- upcoming -> active once `start_date` has passed
- upcoming/active -> completed once `end_date` has passed, or (when asked
  to check participants) once no participant is still active

The completed transition is a conditional UPDATE on the status column, so
repeated and concurrent calls are safe: exactly one caller performs the
transition and queues `challenge.finalized`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional

from questline.core.database.base import ensure_utc
from questline.database.models import GroupChallenge
from questline.modules.challenges.repository import (
    ChallengeParticipantRepository,
    GroupChallengeRepository,
)
from questline.modules.shared.base_service import BaseService

if TYPE_CHECKING:
    from logging import Logger

    from questline.core.database.unit_of_work import UnitOfWork
    from questline.core.event.bus import EventBus


class ChallengeLifecycleFinalizer(BaseService):
    def __init__(
        self,
        config_manager: Any,
        event_bus: Optional[EventBus],
        logger: Logger,
        *,
        challenges: Optional[GroupChallengeRepository] = None,
        participants: Optional[ChallengeParticipantRepository] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self.challenges = challenges or GroupChallengeRepository()
        self.participants = participants or ChallengeParticipantRepository()

    async def finalize_if_needed(
        self,
        uow: UnitOfWork,
        challenge: GroupChallenge,
        check_participants: bool = False,
    ) -> bool:
        """
        Complete `challenge` if it has ended (or has no active participants
        when `check_participants` is set).

        Returns True only when this call performed the transition.
        """
        if challenge.is_terminal:
            return False

        now = uow.now()
        end_date = ensure_utc(challenge.end_date)
        has_ended = end_date is not None and now >= end_date

        should_complete = has_ended
        reason = "ended"
        if not should_complete and check_participants:
            should_complete = await self.participants.count_active(uow.session, challenge.id) == 0
            reason = "no_active_participants"

        if not should_complete:
            return False

        completed_at = end_date if has_ended else now
        transitioned = await self.challenges.mark_completed(
            uow.session, challenge.id, completed_at, now
        )
        await self.challenges.refresh(uow.session, challenge)

        if transitioned:
            self.queue_event(
                uow,
                "challenge.finalized",
                {
                    "challenge_id": challenge.id,
                    "reason": reason,
                    "completed_at": ensure_utc(challenge.completed_at).isoformat()  # type: ignore[union-attr]
                    if challenge.completed_at
                    else None,
                },
            )
            self.log_operation("finalize_challenge", challenge_id=challenge.id, reason=reason)
        return transitioned

    async def finalize_due_challenges(self, uow: UnitOfWork, limit: Optional[int] = None) -> List[int]:
        """Finalize every open challenge whose end date has passed; returns their ids."""
        batch = int(limit or self.get_config("jobs.finalize_batch_size", 200))
        due = await self.challenges.list_due_for_finalization(uow.session, uow.now(), limit=batch)

        finalized: List[int] = []
        for challenge in due:
            if await self.finalize_if_needed(uow, challenge):
                finalized.append(challenge.id)
        return finalized

    async def activate_started_challenges(self, uow: UnitOfWork, limit: Optional[int] = None) -> List[int]:
        """Move upcoming challenges whose start date has passed to active."""
        batch = int(limit or self.get_config("jobs.finalize_batch_size", 200))
        now = uow.now()
        started = await self.challenges.list_started_upcoming(uow.session, now, limit=batch)

        activated: List[int] = []
        for challenge in started:
            if await self.challenges.mark_active(uow.session, challenge.id, now):
                await self.challenges.refresh(uow.session, challenge)
                activated.append(challenge.id)
                self.queue_event(uow, "challenge.activated", {"challenge_id": challenge.id})

        if activated:
            self.log_operation("activate_challenges", count=len(activated))
        return activated
