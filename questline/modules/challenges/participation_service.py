"""Joining and leaving group challenges."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from questline.database.models import (
    ChallengeParticipant,
    ChallengeStatus,
    GroupChallenge,
    ParticipantStatus,
)
from questline.modules.challenges.lifecycle import ChallengeLifecycleFinalizer
from questline.modules.challenges.repository import (
    ChallengeParticipantRepository,
    GroupChallengeRepository,
)
from questline.modules.progression.ledger import ProgressionLedger
from questline.modules.shared.base_service import BaseService
from questline.modules.shared.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
)

if TYPE_CHECKING:
    from logging import Logger

    from questline.core.database.unit_of_work import UnitOfWork
    from questline.core.event.bus import EventBus


@dataclass
class ParticipationResult:
    challenge: GroupChallenge
    participant: ChallengeParticipant
    challenge_finalized: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "challenge_id": self.challenge.id,
            "challenge_status": self.challenge.status,
            "current_participants": self.challenge.current_participants,
            "participant_id": self.participant.id,
            "participant_status": self.participant.status,
            "challenge_finalized": self.challenge_finalized,
        }


class ChallengeParticipationService(BaseService):
    def __init__(
        self,
        config_manager: Any,
        event_bus: Optional[EventBus],
        logger: Logger,
        *,
        ledger: ProgressionLedger,
        finalizer: ChallengeLifecycleFinalizer,
        challenges: Optional[GroupChallengeRepository] = None,
        participants: Optional[ChallengeParticipantRepository] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self.ledger = ledger
        self.finalizer = finalizer
        self.challenges = challenges or GroupChallengeRepository()
        self.participants = participants or ChallengeParticipantRepository()

    async def join_challenge(
        self,
        uow: UnitOfWork,
        user_id: int,
        challenge_id: int,
        invite_code: Optional[str] = None,
    ) -> ParticipationResult:
        """
        Add `user_id` to an upcoming or active challenge.

        Private challenges require their invite code. A user who dropped out
        cannot rejoin.
        """
        action = "join_challenge"
        challenge = await self.challenges.get(uow.session, challenge_id, for_update=True)
        if challenge is None:
            raise NotFoundError("GroupChallenge", challenge_id)
        if challenge.status not in ChallengeStatus.open_values():
            raise StateConflictError(
                action,
                "challenge_closed",
                "challenge is no longer accepting participants",
                details={"status": challenge.status},
            )
        if not challenge.is_public and (not invite_code or invite_code != challenge.invite_code):
            raise PermissionDeniedError(action, "a valid invite code is required")

        existing = await self.participants.get_for_user(uow.session, challenge.id, user_id)
        if existing is not None:
            raise StateConflictError(
                action,
                "already_joined",
                "user has already joined this challenge",
                details={"participant_status": existing.status},
            )
        if (
            challenge.max_participants is not None
            and challenge.current_participants >= challenge.max_participants
        ):
            raise StateConflictError(
                action,
                "challenge_full",
                "challenge has reached its participant limit",
                details={"max_participants": challenge.max_participants},
            )

        participant = self.participants.add(
            uow.session,
            ChallengeParticipant(
                challenge_id=challenge.id,
                user_id=user_id,
                status=ParticipantStatus.ACTIVE.value,
                current_progress=0,
                total_points=0,
                total_xp_earned=0,
                completed_tasks_count=0,
                streak_days=0,
                longest_streak=0,
                joined_at=uow.now(),
            ),
        )
        challenge.current_participants += 1
        await self.participants.flush(uow.session)

        await self.ledger.record_activity(uow, user_id, "challenge_joined")

        self.queue_event(
            uow,
            "challenge.joined",
            {
                "challenge_id": challenge.id,
                "challenge_title": challenge.title,
                "user_id": user_id,
                "current_participants": challenge.current_participants,
            },
        )
        self.log_operation(action, user_id=user_id, challenge_id=challenge.id)
        return ParticipationResult(challenge, participant)

    async def leave_challenge(
        self, uow: UnitOfWork, user_id: int, challenge_id: int
    ) -> ParticipationResult:
        """
        Drop `user_id` out of a challenge.

        The creator cannot leave, and a participant who already completed or
        dropped out stays as they are. Leaving may finalize the challenge
        when no active participant remains.
        """
        action = "leave_challenge"
        challenge = await self.challenges.get(uow.session, challenge_id, for_update=True)
        if challenge is None:
            raise NotFoundError("GroupChallenge", challenge_id)
        if challenge.creator_id == user_id:
            raise StateConflictError(action, "creator_cannot_leave", "the creator cannot leave")

        participant = await self.participants.get_for_user(
            uow.session, challenge.id, user_id, for_update=True
        )
        if participant is None:
            raise NotFoundError("ChallengeParticipant", f"{challenge_id}:{user_id}")
        if participant.status == ParticipantStatus.COMPLETED.value:
            raise StateConflictError(
                action, "participant_completed", "a completed participant cannot leave"
            )
        if participant.status == ParticipantStatus.DROPPED_OUT.value:
            raise StateConflictError(action, "already_left", "participant has already left")

        participant.status = ParticipantStatus.DROPPED_OUT.value
        participant.dropped_at = uow.now()
        if challenge.current_participants > 0:
            challenge.current_participants -= 1
        await self.participants.flush(uow.session)

        finalized = await self.finalizer.finalize_if_needed(uow, challenge, check_participants=True)

        self.queue_event(
            uow,
            "challenge.left",
            {
                "challenge_id": challenge.id,
                "user_id": user_id,
                "current_participants": challenge.current_participants,
                "challenge_finalized": finalized,
            },
        )
        self.log_operation(action, user_id=user_id, challenge_id=challenge.id, finalized=finalized)
        return ParticipationResult(challenge, participant, finalized)
