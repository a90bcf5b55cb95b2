from typing import Any, Dict, List

from ..models.models import StandingEntry
from ..utils.logger_config import get_logger
from .errors import ContestNotFound
from .storage import DuckDBStorage

logger = get_logger("leaderboard")


class LeaderboardAggregator:
    """
    Read-only views over the submission ledger.

    Contest standings take each user's best score per problem (and the
    earliest time that score was reached), sum them per user and order by
    total score desc, latest best-reaching time asc, then user ID.
    """

    def __init__(self, storage: DuckDBStorage):
        self.storage = storage

    def compute_standings(self, contest_id: str, final_only: bool = False) -> List[StandingEntry]:
        if self.storage.get_contest(contest_id) is None:
            raise ContestNotFound(contest_id)
        standings = self.storage.calculate_contest_standings(contest_id, final_only=final_only)
        logger.debug(f"Computed standings for contest {contest_id}: {len(standings)} entries")
        return standings

    def global_leaderboard(
        self,
        page: int = 1,
        limit: int = 10,
        search: str = "",
        min_rating: int = 0,
        max_rating: int = 3000,
    ) -> Dict[str, Any]:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        return self.storage.list_users_by_rating(
            page=page, limit=limit, search=search,
            min_rating=min_rating, max_rating=max_rating,
        )
