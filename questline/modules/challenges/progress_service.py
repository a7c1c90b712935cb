"""
Challenge progress tracking.

Purpose
-------
Record challenge-task completions, verify pending ones and move
participants toward their challenge goal.

Design Notes
------------
- Eligibility is checked in full before anything is written: challenge
  active, task active and inside its availability window, participant
  active (row locked), prerequisites approved, repeat limits respected,
  proof present when required.
- Verification type decides the initial status: `none` approves,
  `manual` leaves the completion pending, `ai` asks the proof judge. A
  failing judge raises and the unit of work rolls back.
- `_apply_approved_completion` is shared by instant approval and manual
  verification, so both paths update counters, progress snapshots, the
  participant streak and the ledger identically.
- The goal transition is gated on the participant still being `active`,
  which makes the completion bonus exactly-once. Manual approval of a
  participant who is no longer `active` is refused.
- Only the participant row is locked. The shared task counter is bumped
  with a single UPDATE and no task row lock is held across the judge call.

Events: `challenge.task_completed`, `challenge.completion_pending`,
`challenge.participant_completed`, `challenge.verification_result`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

from questline.core.database.base import ensure_utc
from questline.database.models import (
    ActivityType,
    ChallengeParticipant,
    ChallengeProgress,
    ChallengeStatus,
    ChallengeTask,
    ChallengeTaskCompletion,
    CompletionStatus,
    GoalType,
    GroupChallenge,
    ParticipantStatus,
    VerificationType,
)
from questline.modules.challenges.lifecycle import ChallengeLifecycleFinalizer
from questline.modules.challenges.repository import (
    ChallengeParticipantRepository,
    ChallengeProgressRepository,
    ChallengeTaskCompletionRepository,
    ChallengeTaskRepository,
    GroupChallengeRepository,
)
from questline.modules.challenges.verification import ProofJudge, ProofVerdict
from questline.modules.progression.ledger import LedgerResult, ProgressionLedger
from questline.modules.progression.streaks import StreakState, advance_streak
from questline.modules.shared.base_service import BaseService
from questline.modules.shared.exceptions import (
    ExternalDependencyError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)

if TYPE_CHECKING:
    from logging import Logger

    from questline.core.database.unit_of_work import UnitOfWork
    from questline.core.event.bus import EventBus


OPEN_COMPLETION_STATUSES = (CompletionStatus.PENDING.value, CompletionStatus.APPROVED.value)


@dataclass
class ChallengeTaskCompletionResult:
    """Outcome of completing or verifying one challenge task."""

    completion: ChallengeTaskCompletion
    participant: ChallengeParticipant
    challenge: GroupChallenge
    ledger: Optional[LedgerResult] = None
    bonus: Optional[LedgerResult] = None
    participant_completed: bool = False
    challenge_finalized: bool = False
    verdict: Optional[ProofVerdict] = None

    @property
    def approved(self) -> bool:
        return self.completion.status == CompletionStatus.APPROVED.value

    def to_dict(self) -> Dict[str, Any]:
        participant = self.participant
        return {
            "completion_id": self.completion.id,
            "task_id": self.completion.task_id,
            "status": self.completion.status,
            "completion_number": self.completion.completion_number,
            "points_earned": self.completion.points_earned,
            "xp_earned": self.completion.xp_earned,
            "rejection_reason": self.completion.rejection_reason,
            "ai_analysis": self.verdict.to_dict() if self.verdict else None,
            "participant": {
                "id": participant.id,
                "status": participant.status,
                "current_progress": participant.current_progress,
                "total_points": participant.total_points,
                "total_xp_earned": participant.total_xp_earned,
                "completed_tasks_count": participant.completed_tasks_count,
                "streak_days": participant.streak_days,
            },
            "participant_completed": self.participant_completed,
            "challenge_status": self.challenge.status,
            "challenge_finalized": self.challenge_finalized,
            "progression": self.ledger.to_dict() if self.ledger else None,
            "challenge_bonus": self.bonus.to_dict() if self.bonus else None,
        }


@dataclass
class _ApprovalOutcome:
    ledger: Optional[LedgerResult] = None
    bonus: Optional[LedgerResult] = None
    participant_completed: bool = False


class ChallengeProgressService(BaseService):
    def __init__(
        self,
        config_manager: Any,
        event_bus: Optional[EventBus],
        logger: Logger,
        *,
        ledger: ProgressionLedger,
        finalizer: ChallengeLifecycleFinalizer,
        judge: Optional[ProofJudge] = None,
        challenges: Optional[GroupChallengeRepository] = None,
        participants: Optional[ChallengeParticipantRepository] = None,
        tasks: Optional[ChallengeTaskRepository] = None,
        completions: Optional[ChallengeTaskCompletionRepository] = None,
        progress: Optional[ChallengeProgressRepository] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self.ledger = ledger
        self.finalizer = finalizer
        self.judge = judge
        self.challenges = challenges or GroupChallengeRepository()
        self.participants = participants or ChallengeParticipantRepository()
        self.tasks = tasks or ChallengeTaskRepository()
        self.completions = completions or ChallengeTaskCompletionRepository()
        self.progress = progress or ChallengeProgressRepository()

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def complete_challenge_task(
        self,
        uow: UnitOfWork,
        user_id: int,
        challenge_id: int,
        task_id: int,
        proof: Optional[str] = None,
        proof_image_url: Optional[str] = None,
    ) -> ChallengeTaskCompletionResult:
        action = "complete_challenge_task"
        now = uow.now()

        challenge = await self.challenges.get(uow.session, challenge_id)
        if challenge is None:
            raise NotFoundError("GroupChallenge", challenge_id)
        if challenge.status != ChallengeStatus.ACTIVE.value:
            raise StateConflictError(
                action,
                "challenge_not_active",
                "challenge is not active",
                details={"challenge_id": challenge_id, "status": challenge.status},
            )

        task = await self.tasks.get_in_challenge(uow.session, challenge_id, task_id)
        if task is None:
            raise NotFoundError("ChallengeTask", task_id)
        if not task.is_active:
            raise StateConflictError(action, "task_inactive", "task is not active")
        self._check_window(action, task, now)

        participant = await self.participants.get_for_user(
            uow.session, challenge_id, user_id, for_update=True
        )
        if participant is None:
            raise NotFoundError("ChallengeParticipant", f"{challenge_id}:{user_id}")
        if participant.status != ParticipantStatus.ACTIVE.value:
            raise StateConflictError(
                action,
                "participant_not_active",
                "participant is no longer active in this challenge",
                details={"status": participant.status},
            )

        await self._check_prerequisites(uow, action, participant, task)
        await self._check_repeat_limits(uow, action, participant, task)

        if task.requires_proof and not (proof or proof_image_url):
            raise ValidationError("proof", "this task requires proof")
        if challenge.verification_type == VerificationType.AI.value and not proof_image_url:
            raise ValidationError("proof_image_url", "AI-verified challenges require a proof image")

        completion_number = (
            await self.completions.count_for_task(uow.session, participant.id, task.id) + 1
        )
        completion = ChallengeTaskCompletion(
            challenge_id=challenge.id,
            task_id=task.id,
            participant_id=participant.id,
            user_id=user_id,
            status=CompletionStatus.PENDING.value,
            completion_number=completion_number,
            completed_at=now,
            proof=proof,
            proof_image_url=proof_image_url,
            is_verified=False,
            points_earned=0,
            xp_earned=0,
        )

        verdict: Optional[ProofVerdict] = None
        if challenge.verification_type == VerificationType.NONE.value:
            completion.status = CompletionStatus.APPROVED.value
        elif challenge.verification_type == VerificationType.AI.value:
            verdict = await self._judge(task, proof_image_url)  # type: ignore[arg-type]
            completion.ai_analysis = verdict.to_dict()
            completion.is_verified = True
            completion.verified_at = now
            if verdict.approved:
                completion.status = CompletionStatus.APPROVED.value
            else:
                completion.status = CompletionStatus.REJECTED.value
                completion.rejection_reason = verdict.reason or "Rejected by AI verification"

        self.completions.add(uow.session, completion)
        await self.completions.flush(uow.session)

        outcome = _ApprovalOutcome()
        finalized = False
        if completion.status == CompletionStatus.APPROVED.value:
            outcome = await self._apply_approved_completion(uow, challenge, participant, task, completion)
            finalized = await self.finalizer.finalize_if_needed(uow, challenge, check_participants=True)
        elif completion.status == CompletionStatus.PENDING.value:
            self.queue_event(
                uow,
                "challenge.completion_pending",
                {
                    "challenge_id": challenge.id,
                    "creator_id": challenge.creator_id,
                    "user_id": user_id,
                    "task_id": task.id,
                    "task_title": task.title,
                    "completion_id": completion.id,
                },
            )
        else:
            self._queue_verification_result(uow, challenge, completion, verified_by=None)

        self.log_operation(
            action,
            user_id=user_id,
            challenge_id=challenge.id,
            task_id=task.id,
            status=completion.status,
            verification_type=challenge.verification_type,
        )
        return ChallengeTaskCompletionResult(
            completion=completion,
            participant=participant,
            challenge=challenge,
            ledger=outcome.ledger,
            bonus=outcome.bonus,
            participant_completed=outcome.participant_completed,
            challenge_finalized=finalized,
            verdict=verdict,
        )

    @staticmethod
    def _check_window(action: str, task: ChallengeTask, now: datetime) -> None:
        available_from = ensure_utc(task.available_from)
        available_until = ensure_utc(task.available_until)
        if available_from is not None and now < available_from:
            raise StateConflictError(
                action,
                "task_not_available",
                "task is not available yet",
                details={"available_from": available_from.isoformat()},
            )
        if available_until is not None and now > available_until:
            raise StateConflictError(
                action,
                "task_expired",
                "task is no longer available",
                details={"available_until": available_until.isoformat()},
            )

    async def _check_prerequisites(
        self,
        uow: UnitOfWork,
        action: str,
        participant: ChallengeParticipant,
        task: ChallengeTask,
    ) -> None:
        required = [int(p) for p in (task.prerequisites or [])]
        if not required:
            return
        approved = await self.completions.approved_task_ids(uow.session, participant.id, required)
        missing = [task_id for task_id in required if task_id not in approved]
        if missing:
            raise StateConflictError(
                action,
                "prerequisites_incomplete",
                "complete the prerequisite tasks first",
                details={"missing_task_ids": missing},
            )

    async def _check_repeat_limits(
        self,
        uow: UnitOfWork,
        action: str,
        participant: ChallengeParticipant,
        task: ChallengeTask,
    ) -> None:
        open_count = await self.completions.count_for_task(
            uow.session, participant.id, task.id, OPEN_COMPLETION_STATUSES
        )
        if not task.is_repeatable:
            if open_count > 0:
                raise StateConflictError(
                    action, "already_completed", "task has already been completed"
                )
        elif task.max_completions is not None and open_count >= task.max_completions:
            raise StateConflictError(
                action,
                "max_completions_reached",
                "task has reached its completion limit",
                details={"max_completions": task.max_completions},
            )

    async def _judge(self, task: ChallengeTask, proof_image_url: str) -> ProofVerdict:
        if self.judge is None:
            raise ExternalDependencyError("proof_judge", "no proof judge configured")
        return await self.judge.verify(proof_image_url, task.description or task.title)

    # ------------------------------------------------------------------
    # Shared approval routine
    # ------------------------------------------------------------------

    async def _apply_approved_completion(
        self,
        uow: UnitOfWork,
        challenge: GroupChallenge,
        participant: ChallengeParticipant,
        task: ChallengeTask,
        completion: ChallengeTaskCompletion,
    ) -> _ApprovalOutcome:
        day = uow.today()
        points = max(0, task.point_value or 0)
        xp = self.ledger.validate_amount(task.xp_reward or 0)

        participant.completed_tasks_count += 1
        participant.total_points += points
        participant.total_xp_earned += xp
        if challenge.goal_type == GoalType.TOTAL_XP.value:
            participant.current_progress = participant.total_xp_earned
            progress_delta = xp
        else:
            participant.current_progress = participant.completed_tasks_count
            progress_delta = 1

        streak = advance_streak(
            StreakState(
                current=participant.streak_days,
                longest=participant.longest_streak,
                last_date=participant.last_activity_date,
            ),
            day,
        )
        participant.streak_days = streak.current
        participant.longest_streak = streak.longest
        participant.last_activity_date = streak.last_date

        snapshot = await self.progress.get_for_day(uow.session, participant.id, day)
        if snapshot is None:
            snapshot = self.progress.add(
                uow.session,
                ChallengeProgress(
                    participant_id=participant.id,
                    challenge_id=challenge.id,
                    activity_date=day,
                    progress_value=0,
                    tasks_completed=0,
                    xp_earned=0,
                    points_earned=0,
                ),
            )
        snapshot.progress_value += progress_delta
        snapshot.tasks_completed += 1
        snapshot.xp_earned += xp
        snapshot.points_earned += points
        snapshot.cumulative_progress = participant.current_progress
        snapshot.streak_count = participant.streak_days

        await self.tasks.increment_completion_count(uow.session, task.id)
        completion.points_earned = points
        completion.xp_earned = xp
        await self.completions.flush(uow.session)

        outcome = _ApprovalOutcome()
        if xp > 0:
            outcome.ledger = await self.ledger.award(
                uow,
                participant.user_id,
                xp,
                source=ActivityType.CHALLENGE_TASK_COMPLETED.value,
                source_id=completion.id,
                description=f"Completed challenge task: {task.title}",
            )
        await self.ledger.record_activity(uow, participant.user_id, "challenge_task", day)

        self.queue_event(
            uow,
            "challenge.task_completed",
            {
                "challenge_id": challenge.id,
                "user_id": participant.user_id,
                "task_id": task.id,
                "task_title": task.title,
                "completion_id": completion.id,
                "points_earned": points,
                "xp_earned": xp,
                "current_progress": participant.current_progress,
                "goal_target": challenge.goal_target,
            },
        )

        await self._check_goal(uow, challenge, participant, outcome)
        return outcome

    async def _check_goal(
        self,
        uow: UnitOfWork,
        challenge: GroupChallenge,
        participant: ChallengeParticipant,
        outcome: _ApprovalOutcome,
    ) -> None:
        if participant.status != ParticipantStatus.ACTIVE.value:
            return
        if participant.current_progress < challenge.goal_target:
            return

        participant.status = ParticipantStatus.COMPLETED.value
        participant.completed_at = uow.now()
        outcome.participant_completed = True

        bonus = self.ledger.validate_amount(challenge.xp_reward or 0)
        if bonus > 0:
            outcome.bonus = await self.ledger.award(
                uow,
                participant.user_id,
                bonus,
                source=ActivityType.CHALLENGE_COMPLETED.value,
                source_id=challenge.id,
                description=f"Completed challenge: {challenge.title}",
            )
        await self.ledger.record_activity(uow, participant.user_id, "challenge_completed")

        self.queue_event(
            uow,
            "challenge.participant_completed",
            {
                "challenge_id": challenge.id,
                "challenge_title": challenge.title,
                "user_id": participant.user_id,
                "bonus_xp": bonus,
                "total_points": participant.total_points,
            },
        )
        self.log_operation(
            "participant_completed_challenge",
            user_id=participant.user_id,
            challenge_id=challenge.id,
            bonus_xp=bonus,
        )

    # ------------------------------------------------------------------
    # Manual verification
    # ------------------------------------------------------------------

    async def verify_challenge_task(
        self,
        uow: UnitOfWork,
        verifier_id: int,
        challenge_id: int,
        completion_id: int,
        status: Union[CompletionStatus, str],
        rejection_reason: Optional[str] = None,
        is_admin: bool = False,
    ) -> ChallengeTaskCompletionResult:
        """
        Approve or reject a pending completion.

        Only the challenge creator or an admin may verify. Approval runs the
        same bookkeeping as an instantly approved completion.
        """
        action = "verify_challenge_task"
        decision = status.value if isinstance(status, CompletionStatus) else str(status)
        if decision not in (CompletionStatus.APPROVED.value, CompletionStatus.REJECTED.value):
            raise ValidationError("status", "status must be 'approved' or 'rejected'")
        reason = (rejection_reason or "").strip()
        if decision == CompletionStatus.REJECTED.value and not reason:
            raise ValidationError("rejection_reason", "a reason is required when rejecting")

        challenge = await self.challenges.get(uow.session, challenge_id)
        if challenge is None:
            raise NotFoundError("GroupChallenge", challenge_id)

        completion = await self.completions.get(uow.session, completion_id, for_update=True)
        if completion is None:
            raise NotFoundError("ChallengeTaskCompletion", completion_id)
        if completion.challenge_id != challenge.id:
            raise StateConflictError(
                action,
                "completion_not_in_challenge",
                "completion does not belong to this challenge",
            )
        if completion.status != CompletionStatus.PENDING.value:
            raise StateConflictError(
                action,
                "already_verified",
                "completion is not pending verification",
                details={"status": completion.status},
            )

        if verifier_id != challenge.creator_id and not is_admin:
            raise PermissionDeniedError(action, "only the challenge creator or an admin can verify")

        participant = await self.participants.get(uow.session, completion.participant_id, for_update=True)
        if participant is None:
            raise NotFoundError("ChallengeParticipant", completion.participant_id)
        # rejecting a left participant's pending completion is still allowed
        if decision == CompletionStatus.APPROVED.value and participant.status != ParticipantStatus.ACTIVE.value:
            raise StateConflictError(
                action,
                "participant_not_active",
                "participant is no longer active in this challenge",
                details={"status": participant.status},
            )

        now = uow.now()
        completion.status = decision
        completion.is_verified = True
        completion.verified_by = verifier_id
        completion.verified_at = now

        outcome = _ApprovalOutcome()
        finalized = False
        if decision == CompletionStatus.APPROVED.value:
            task = await self.tasks.get(uow.session, completion.task_id)
            if task is None:
                raise NotFoundError("ChallengeTask", completion.task_id)
            outcome = await self._apply_approved_completion(uow, challenge, participant, task, completion)
            finalized = await self.finalizer.finalize_if_needed(uow, challenge, check_participants=True)
        else:
            completion.rejection_reason = reason
            await self.completions.flush(uow.session)

        self._queue_verification_result(uow, challenge, completion, verified_by=verifier_id)
        self.log_operation(
            action,
            verifier_id=verifier_id,
            challenge_id=challenge.id,
            completion_id=completion.id,
            status=decision,
        )
        return ChallengeTaskCompletionResult(
            completion=completion,
            participant=participant,
            challenge=challenge,
            ledger=outcome.ledger,
            bonus=outcome.bonus,
            participant_completed=outcome.participant_completed,
            challenge_finalized=finalized,
        )

    def _queue_verification_result(
        self,
        uow: UnitOfWork,
        challenge: GroupChallenge,
        completion: ChallengeTaskCompletion,
        verified_by: Optional[int],
    ) -> None:
        self.queue_event(
            uow,
            "challenge.verification_result",
            {
                "challenge_id": challenge.id,
                "user_id": completion.user_id,
                "task_id": completion.task_id,
                "completion_id": completion.id,
                "status": completion.status,
                "rejection_reason": completion.rejection_reason,
                "verified_by": verified_by,
            },
        )
