"""Challenge and global leaderboards."""

from questline.modules.leaderboard.service import (
    LeaderboardPage,
    LeaderboardRanker,
    competition_ranks,
)

__all__ = ["LeaderboardPage", "LeaderboardRanker", "competition_ranks"]
