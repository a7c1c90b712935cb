"""Group challenge participation, progress, verification and lifecycle."""

from questline.modules.challenges.lifecycle import ChallengeLifecycleFinalizer
from questline.modules.challenges.participation_service import (
    ChallengeParticipationService,
    ParticipationResult,
)
from questline.modules.challenges.progress_service import (
    ChallengeProgressService,
    ChallengeTaskCompletionResult,
)
from questline.modules.challenges.repository import (
    ChallengeParticipantRepository,
    ChallengeProgressRepository,
    ChallengeTaskCompletionRepository,
    ChallengeTaskRepository,
    GroupChallengeRepository,
)
from questline.modules.challenges.verification import (
    GeminiProofJudge,
    ProofJudge,
    ProofVerdict,
)

__all__ = [
    "ChallengeLifecycleFinalizer",
    "ChallengeParticipantRepository",
    "ChallengeParticipationService",
    "ChallengeProgressRepository",
    "ChallengeProgressService",
    "ChallengeTaskCompletionRepository",
    "ChallengeTaskCompletionResult",
    "ChallengeTaskRepository",
    "GeminiProofJudge",
    "GroupChallengeRepository",
    "ParticipationResult",
    "ProofJudge",
    "ProofVerdict",
]
