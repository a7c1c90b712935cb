"""Unit tests for competition ranking and leaderboard paging validation."""

import pytest

from questline.core.logging.logger import get_logger
from questline.modules.leaderboard import LeaderboardRanker
from questline.modules.leaderboard.service import competition_ranks
from questline.modules.shared.exceptions import ValidationError


def identity(value):
    return value


class TestCompetitionRanks:
    def test_ties_share_rank_and_next_skips(self):
        assert competition_ranks([5, 5, 3], identity, first_rank=1, offset=0) == [1, 1, 3]

    def test_all_distinct(self):
        assert competition_ranks([9, 8, 7], identity, first_rank=1, offset=0) == [1, 2, 3]

    def test_all_tied(self):
        assert competition_ranks([4, 4, 4, 4], identity, first_rank=1, offset=0) == [1, 1, 1, 1]

    def test_page_starting_inside_a_tie(self):
        # Full board 12, 12, 12, 9 ranks as 1, 1, 1, 4; this page starts at offset 2.
        assert competition_ranks([12, 9], identity, first_rank=1, offset=2) == [1, 4]

    def test_page_after_offset(self):
        assert competition_ranks([9, 8], identity, first_rank=6, offset=5) == [6, 7]

    def test_tuple_keys(self):
        rows = [(50, 5, 5), (50, 3, 3), (50, 3, 3), (10, 1, 1)]
        assert competition_ranks(rows, identity, first_rank=1, offset=0) == [1, 2, 2, 4]

    def test_empty(self):
        assert competition_ranks([], identity, first_rank=1, offset=0) == []


@pytest.mark.asyncio
class TestPageValidation:
    @pytest.fixture
    def ranker(self, config_manager):
        return LeaderboardRanker(config_manager, None, get_logger("tests.leaderboard"))

    @pytest.mark.parametrize("limit", [0, -1, 101, True, "10"])
    async def test_invalid_limit(self, ranker, limit):
        with pytest.raises(ValidationError):
            await ranker.get_global_leaderboard(None, limit=limit)

    async def test_negative_offset(self, ranker):
        with pytest.raises(ValidationError):
            await ranker.get_challenge_leaderboard(None, 1, limit=10, offset=-1)

    async def test_unknown_timeframe(self, ranker):
        with pytest.raises(ValidationError) as exc_info:
            await ranker.get_global_leaderboard(None, timeframe="yearly", limit=10)
        assert exc_info.value.field == "timeframe"

    async def test_configured_max_page_size(self, ranker, config_manager):
        config_manager.set_override("leaderboard.max_page_size", 5)
        with pytest.raises(ValidationError):
            await ranker.get_global_leaderboard(None, limit=6)
