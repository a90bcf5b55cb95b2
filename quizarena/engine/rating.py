"""
Multiplayer Elo rating engine.

After a contest ends, final standings are turned into rating changes: each
participant's expected score is the sum of pairwise win probabilities
against the rest of the field, the actual score is the number of
participants ranked below them, and the difference is scaled by a
rating-tier K-factor.
"""

from bisect import bisect
from datetime import datetime
from typing import Any, Dict, List, Sequence, Tuple

from ..models.models import RatingChange, RatingHistoryEntry, StandingEntry
from ..utils.logger_config import get_logger
from .contest import Clock, ContestRegistry, EndedContest, FinalizedContest
from .errors import NoParticipants, RatingRunInProgress, UserNotFound
from .locks import rating_locks
from .storage import DuckDBStorage

logger = get_logger("rating")

UNRATED_FLOOR = 1000


class PolicyTable:
    """
    Step function over ratings, given as ordered ``(threshold, value)`` pairs.

    The first threshold must be ``None`` (applies to everything below the
    second threshold); each later value applies from its threshold upwards.
    """

    def __init__(self, pairs: Sequence[Sequence[Any]]):
        if not pairs or pairs[0][0] is not None:
            raise ValueError("Policy table must start with a (None, value) pair")
        thresholds = [pair[0] for pair in pairs[1:]]
        if any(t is None for t in thresholds) or thresholds != sorted(set(thresholds)):
            raise ValueError("Policy table thresholds must be strictly increasing")
        self.thresholds = thresholds
        self.values = [pair[1] for pair in pairs]

    def lookup(self, rating: int) -> Any:
        return self.values[bisect(self.thresholds, rating)]


DEFAULT_K_FACTORS = PolicyTable([(None, 40), (1200, 32), (2000, 24), (2400, 16)])
DEFAULT_TITLES = PolicyTable([(None, "Newbie"), (1000, "Pupil"), (1900, "Expert"), (2100, "Candidate Master")])


def k_factor(rating: int, participant_count: int, table: PolicyTable = DEFAULT_K_FACTORS) -> int:
    # participant_count is accepted so tables can later depend on field size
    return table.lookup(rating)


def title_for(rating: int, table: PolicyTable = DEFAULT_TITLES) -> str:
    return table.lookup(rating)


def expected_score(rating: int, others: Sequence[int]) -> float:
    return sum(1 / (1 + 10 ** ((other - rating) / 400)) for other in others)


def compute_rating_changes(
    standings: List[StandingEntry],
    ratings: Dict[str, int],
    unrated_floor: int = UNRATED_FLOOR,
    k_table: PolicyTable = DEFAULT_K_FACTORS,
    title_table: PolicyTable = DEFAULT_TITLES,
) -> List[RatingChange]:
    """
    Compute new ratings for a ranked field. Pure: reads nothing, writes nothing.

    Args:
        standings: entries with dense 1-based ranks
        ratings: current rating per user ID; a rating of exactly 0 is
            treated as ``unrated_floor``

    Returns:
        One RatingChange per standing entry, in rank order
    """
    n = len(standings)
    current = {}
    for entry in standings:
        rating = ratings.get(entry.user_id, unrated_floor)
        current[entry.user_id] = unrated_floor if rating == 0 else rating

    changes = []
    for entry in standings:
        rating = current[entry.user_id]
        others = [current[other.user_id] for other in standings if other.user_id != entry.user_id]
        expected = expected_score(rating, others)
        actual = n - entry.rank
        delta = round(k_factor(rating, n, k_table) * (actual - expected))
        new_rating = rating + delta
        changes.append(RatingChange(
            user_id=entry.user_id,
            rank=entry.rank,
            old_rating=rating,
            new_rating=new_rating,
            new_title=title_for(new_rating, title_table),
        ))
    return changes


class RatingEngine:
    """Applies rating changes for ended contests, at most once per contest"""

    def __init__(
        self,
        storage: DuckDBStorage,
        clock: Clock = datetime.now,
        unrated_floor: int = UNRATED_FLOOR,
        k_table: PolicyTable = DEFAULT_K_FACTORS,
        title_table: PolicyTable = DEFAULT_TITLES,
    ):
        self.storage = storage
        self.clock = clock
        self.unrated_floor = unrated_floor
        self.k_table = k_table
        self.title_table = title_table
        self.contests = ContestRegistry(storage, clock)

    @classmethod
    def from_config(cls, storage: DuckDBStorage, config, clock: Clock = datetime.now) -> "RatingEngine":
        k_pairs = config.get("rating.k_factors")
        title_pairs = config.get("rating.titles")
        return cls(
            storage,
            clock=clock,
            unrated_floor=config.get("rating.unrated_floor", UNRATED_FLOOR),
            k_table=PolicyTable(k_pairs) if k_pairs else DEFAULT_K_FACTORS,
            title_table=PolicyTable(title_pairs) if title_pairs else DEFAULT_TITLES,
        )

    def finalize_ratings(self, contest_id: str) -> List[RatingChange]:
        """
        Rate an ended contest and mark it finalized.

        Raises:
            ContestNotFound, RatingsAlreadyFinalized, ContestNotEnded,
            RatingRunInProgress, NoParticipants
        """
        ended = self.contests.ended(contest_id)
        _, changes = self.apply(ended)
        return changes

    def apply(self, ended: EndedContest) -> Tuple[FinalizedContest, List[RatingChange]]:
        contest_id = ended.id
        if not rating_locks.try_hold(contest_id):
            raise RatingRunInProgress(contest_id)
        try:
            self.storage.begin_rating_run(contest_id, self.clock())
            try:
                changes = self._rate(ended)
            except Exception:
                self.storage.abort_rating_run(contest_id)
                raise
        finally:
            rating_locks.release(contest_id)

        ended.contest.ratings_updated = True
        return FinalizedContest(ended.contest, self.clock()), changes

    def _compute(self, contest_id: str) -> List[RatingChange]:
        standings = self.storage.calculate_contest_standings(contest_id, final_only=True)
        users = self.storage.get_users([entry.user_id for entry in standings])

        missing = [entry.user_id for entry in standings if entry.user_id not in users]
        if missing:
            logger.warning(f"Contest {contest_id}: dropping {len(missing)} ranked users without an account")
            standings = [entry for entry in standings if entry.user_id in users]
            for rank, entry in enumerate(standings, start=1):
                entry.rank = rank

        if not standings:
            raise NoParticipants(contest_id)

        ratings = {user_id: user.rating for user_id, user in users.items()}
        return compute_rating_changes(
            standings, ratings, self.unrated_floor, self.k_table, self.title_table
        )

    def _rate(self, ended: EndedContest) -> List[RatingChange]:
        contest_id = ended.id
        changes = self._compute(contest_id)
        self.storage.commit_rating_changes(contest_id, changes, self.clock())

        logger.info(f"Ratings finalized for contest {contest_id}: {len(changes)} participants")
        for change in changes:
            logger.debug(
                f"  #{change.rank} {change.user_id}: {change.old_rating} -> {change.new_rating} "
                f"({change.delta:+d}, {change.new_title})"
            )
        return changes

    def rating_history(self, user_id: str) -> List[RatingHistoryEntry]:
        if self.storage.get_user(user_id) is None:
            raise UserNotFound(user_id)
        return self.storage.get_rating_history(user_id)

    def preview(self, contest_id: str) -> List[RatingChange]:
        """Compute the changes an ended contest would produce without committing them"""
        ended = self.contests.ended(contest_id)
        return self._compute(ended.id)
