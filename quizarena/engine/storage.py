"""
DuckDB-based data storage for QuizArena.

Holds problems, contests, users, the submission ledger and rating history.
Every multi-statement write runs inside ``transaction()`` so that a failure
leaves no partial state behind.
"""

import json
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import duckdb

from ..models.models import (
    Contest, Problem, RatingChange, RatingHistoryEntry, StandingEntry,
    Submission, User, UserRole, Verdict, generate_id
)
from ..utils.logger_config import get_logger
from .errors import (
    DuplicateFinalSubmission, RatingRunInProgress, RatingsAlreadyFinalized,
    TransientStorageError, AlreadyRegistered
)

logger = get_logger("storage")

RATING_RUN_RUNNING = "running"
RATING_RUN_COMPLETED = "completed"


def _load_json_list(value: Any) -> List:
    if value is None:
        return []
    if isinstance(value, str):
        return json.loads(value) if value else []
    return list(value)


class DuckDBStorage:
    """
    DuckDB storage for contest data with one connection per thread.
    """

    def __init__(self, db_path: str = "data/quizarena.duckdb", initial_rating: int = 300):
        logger.info(f"Initializing DuckDB storage at {db_path}")
        self.db_path = Path(db_path)
        self.initial_rating = initial_rating
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._thread_local = threading.local()
        self._create_schema()

    def _get_conn(self) -> duckdb.DuckDBPyConnection:
        """Get or create a new database connection for the current thread"""
        if not hasattr(self._thread_local, 'conn'):
            self._thread_local.conn = duckdb.connect(str(self.db_path))
        return self._thread_local.conn

    def _create_schema(self) -> None:
        """Create the database schema"""
        conn = self._get_conn()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id VARCHAR PRIMARY KEY,
                username VARCHAR NOT NULL UNIQUE,
                role VARCHAR NOT NULL,
                rating INTEGER NOT NULL,
                title VARCHAR NOT NULL,
                institute VARCHAR,
                created_at TIMESTAMP
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS problems (
                id VARCHAR PRIMARY KEY,
                title VARCHAR NOT NULL,
                description TEXT,
                options JSON,
                correct_option JSON NOT NULL,
                score INTEGER NOT NULL,
                subject VARCHAR,
                tags JSON,
                difficulty INTEGER DEFAULT 0,
                created_at TIMESTAMP
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS contests (
                id VARCHAR PRIMARY KEY,
                title VARCHAR NOT NULL,
                description TEXT,
                start_time TIMESTAMP NOT NULL,
                end_time TIMESTAMP NOT NULL,
                problem_ids JSON,
                is_published BOOLEAN DEFAULT FALSE,
                ratings_updated BOOLEAN DEFAULT FALSE,   -- Terminal marker, set exactly once
                created_at TIMESTAMP
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS contest_participants (
                contest_id VARCHAR NOT NULL,
                user_id VARCHAR NOT NULL,
                registered_at TIMESTAMP,
                PRIMARY KEY (contest_id, user_id)
            )
        """)

        # One row per (contest, user, problem): drafts are overwritten in place
        conn.execute("""
            CREATE TABLE IF NOT EXISTS contest_submissions (
                id VARCHAR NOT NULL,
                contest_id VARCHAR NOT NULL,
                user_id VARCHAR NOT NULL,
                problem_id VARCHAR NOT NULL,
                selected_options JSON,
                submitted_at TIMESTAMP NOT NULL,
                verdict VARCHAR NOT NULL,
                score INTEGER NOT NULL,
                is_final BOOLEAN DEFAULT FALSE,
                PRIMARY KEY (contest_id, user_id, problem_id)
            )
        """)

        # Unique per (contest, user): the final-submission lock
        conn.execute("""
            CREATE TABLE IF NOT EXISTS contest_finalizations (
                contest_id VARCHAR NOT NULL,
                user_id VARCHAR NOT NULL,
                finalized_at TIMESTAMP,
                PRIMARY KEY (contest_id, user_id)
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS practice_submissions (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                problem_id VARCHAR NOT NULL,
                selected_options JSON,
                submitted_at TIMESTAMP NOT NULL,
                verdict VARCHAR NOT NULL,
                score INTEGER NOT NULL
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS rating_history (
                contest_id VARCHAR NOT NULL,
                user_id VARCHAR NOT NULL,
                old_rating INTEGER NOT NULL,
                new_rating INTEGER NOT NULL,
                timestamp TIMESTAMP NOT NULL,
                PRIMARY KEY (contest_id, user_id)
            )
        """)

        # In-progress marker for rating runs, one per contest
        conn.execute("""
            CREATE TABLE IF NOT EXISTS rating_runs (
                contest_id VARCHAR PRIMARY KEY,
                status VARCHAR NOT NULL,
                started_at TIMESTAMP,
                finished_at TIMESTAMP
            )
        """)

        conn.execute("CREATE INDEX IF NOT EXISTS idx_practice_user ON practice_submissions(user_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_history_user ON rating_history(user_id)")

    @contextmanager
    def transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Run a block inside BEGIN/COMMIT, rolling back on any exception"""
        conn = self._get_conn()
        conn.execute("BEGIN TRANSACTION")
        try:
            yield conn
        except duckdb.TransactionException as e:
            conn.execute("ROLLBACK")
            logger.warning(f"Transaction conflict, rolled back: {e}")
            raise TransientStorageError(f"Transaction aborted: {e}") from e
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        try:
            conn.execute("COMMIT")
        except duckdb.TransactionException as e:
            logger.warning(f"Transaction aborted on commit: {e}")
            raise TransientStorageError(f"Transaction aborted: {e}") from e

    # Users

    def create_user(
        self,
        username: str,
        role: UserRole = UserRole.USER,
        rating: Optional[int] = None,
        title: str = "Newbie",
        institute: str = "self",
        user_id: Optional[str] = None,
    ) -> User:
        """Create a new user"""
        user = User(
            id=user_id or generate_id(),
            username=username,
            rating=self.initial_rating if rating is None else rating,
            title=title,
            role=role,
            institute=institute,
            created_at=datetime.now(),
        )
        conn = self._get_conn()
        conn.execute("""
            INSERT INTO users (id, username, role, rating, title, institute, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, [user.id, user.username, user.role.value, user.rating, user.title, user.institute, user.created_at])
        logger.info(f"Created user {user.username} (ID: {user.id})")
        return user

    def _row_to_user(self, row: Sequence) -> User:
        return User(
            id=row[0],
            username=row[1],
            role=UserRole(row[2]),
            rating=row[3],
            title=row[4],
            institute=row[5] or "",
            created_at=row[6],
        )

    def get_user(self, user_id: str) -> Optional[User]:
        """Get user by ID"""
        row = self._get_conn().execute("""
            SELECT id, username, role, rating, title, institute, created_at
            FROM users WHERE id = ?
        """, [user_id]).fetchone()
        return self._row_to_user(row) if row else None

    def get_users(self, user_ids: List[str]) -> Dict[str, User]:
        """Get several users at once, keyed by ID"""
        if not user_ids:
            return {}
        rows = self._get_conn().execute("""
            SELECT id, username, role, rating, title, institute, created_at
            FROM users WHERE list_contains(?, id)
        """, [list(user_ids)]).fetchall()
        return {row[0]: self._row_to_user(row) for row in rows}

    def list_users_by_rating(
        self,
        page: int = 1,
        limit: int = 10,
        search: str = "",
        min_rating: int = 0,
        max_rating: int = 3000,
    ) -> Dict[str, Any]:
        """Rating leaderboard across all users with solve counts and accuracy"""
        conn = self._get_conn()
        pattern = f"%{search}%"
        filter_sql = """
            u.rating BETWEEN ? AND ?
            AND (? = '' OR u.username ILIKE ? OR u.institute ILIKE ?)
        """
        filter_params = [min_rating, max_rating, search, pattern, pattern]

        rows = conn.execute(f"""
            WITH answers AS (
                SELECT user_id, verdict, is_final FROM contest_submissions
                UNION ALL
                SELECT user_id, verdict, TRUE AS is_final FROM practice_submissions
            )
            SELECT
                u.id,
                u.username,
                u.rating,
                u.title,
                u.institute,
                COUNT(a.user_id) FILTER (WHERE a.is_final AND a.verdict IN (?, ?)) AS problems_solved,
                COUNT(a.user_id) FILTER (WHERE a.is_final) AS total_final
            FROM users u
            LEFT JOIN answers a ON a.user_id = u.id
            WHERE {filter_sql}
            GROUP BY u.id, u.username, u.rating, u.title, u.institute
            ORDER BY u.rating DESC, u.username ASC
            LIMIT ? OFFSET ?
        """, [Verdict.ACCEPTED.value, Verdict.CORRECT.value] + filter_params
             + [limit, (page - 1) * limit]).fetchall()

        total_row = conn.execute(f"""
            SELECT COUNT(*) FROM users u WHERE {filter_sql}
        """, filter_params).fetchone()
        total_count = total_row[0] if total_row else 0

        leaderboard = []
        for row in rows:
            solved, total_final = row[5], row[6]
            leaderboard.append({
                "user_id": row[0],
                "username": row[1],
                "rating": row[2],
                "title": row[3],
                "institute": row[4],
                "problems_solved": solved,
                "accuracy": (solved / total_final) if total_final else 0,
            })

        return {
            "leaderboard": leaderboard,
            "pagination": {
                "page": page,
                "limit": limit,
                "total_count": total_count,
                "total_pages": (total_count + limit - 1) // limit if limit else 0,
            },
        }

    # Problems

    def create_problem(self, problem: Problem) -> Problem:
        """Insert a problem definition"""
        conn = self._get_conn()
        conn.execute("""
            INSERT INTO problems
            (id, title, description, options, correct_option, score, subject, tags, difficulty, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            problem.id, problem.title, problem.description,
            json.dumps(problem.options), json.dumps(problem.correct_option),
            problem.score, problem.subject, json.dumps(problem.tags),
            problem.difficulty, datetime.now()
        ])
        return problem

    def _row_to_problem(self, row: Sequence) -> Problem:
        return Problem(
            id=row[0],
            title=row[1],
            description=row[2] or "",
            options=_load_json_list(row[3]),
            correct_option=_load_json_list(row[4]),
            score=row[5],
            subject=row[6] or "",
            tags=_load_json_list(row[7]),
            difficulty=row[8] or 0,
        )

    def get_problem(self, problem_id: str) -> Optional[Problem]:
        """Get a problem by ID"""
        row = self._get_conn().execute("""
            SELECT id, title, description, options, correct_option, score, subject, tags, difficulty
            FROM problems WHERE id = ?
        """, [problem_id]).fetchone()
        return self._row_to_problem(row) if row else None

    def get_problems(self, problem_ids: List[str]) -> Dict[str, Problem]:
        """Get several problems at once, keyed by ID"""
        if not problem_ids:
            return {}
        rows = self._get_conn().execute("""
            SELECT id, title, description, options, correct_option, score, subject, tags, difficulty
            FROM problems WHERE list_contains(?, id)
        """, [list(problem_ids)]).fetchall()
        return {row[0]: self._row_to_problem(row) for row in rows}

    def sample_unseen_problems(self, user_id: str, count: int = 1,
                               subjects: Optional[List[str]] = None) -> List[Problem]:
        """Random problems the user has never answered in practice mode"""
        params: List[Any] = [user_id]
        subject_sql = ""
        if subjects:
            subject_sql = "AND list_contains(?, p.subject)"
            params.append(list(subjects))
        params.append(count)

        rows = self._get_conn().execute(f"""
            SELECT p.id, p.title, p.description, p.options, p.correct_option,
                   p.score, p.subject, p.tags, p.difficulty
            FROM problems p
            WHERE p.id NOT IN (
                SELECT problem_id FROM practice_submissions WHERE user_id = ?
            )
            {subject_sql}
            ORDER BY random()
            LIMIT ?
        """, params).fetchall()
        return [self._row_to_problem(row) for row in rows]

    # Contests

    def create_contest(self, contest: Contest) -> Contest:
        """Insert a contest"""
        contest.created_at = contest.created_at or datetime.now()
        conn = self._get_conn()
        conn.execute("""
            INSERT INTO contests
            (id, title, description, start_time, end_time, problem_ids, is_published, ratings_updated, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            contest.id, contest.title, contest.description, contest.start_time,
            contest.end_time, json.dumps(contest.problem_ids), contest.is_published,
            contest.ratings_updated, contest.created_at
        ])
        logger.info(f"Created contest {contest.title} (ID: {contest.id})")
        return contest

    def get_contest(self, contest_id: str) -> Optional[Contest]:
        """Get contest by ID, including its participant list"""
        conn = self._get_conn()
        row = conn.execute("""
            SELECT id, title, description, start_time, end_time, problem_ids,
                   is_published, ratings_updated, created_at
            FROM contests WHERE id = ?
        """, [contest_id]).fetchone()
        if not row:
            return None

        participants = conn.execute("""
            SELECT user_id FROM contest_participants
            WHERE contest_id = ? ORDER BY registered_at, user_id
        """, [contest_id]).fetchall()

        return Contest(
            id=row[0],
            title=row[1],
            description=row[2] or "",
            start_time=row[3],
            end_time=row[4],
            problem_ids=_load_json_list(row[5]),
            participant_ids=[p[0] for p in participants],
            is_published=bool(row[6]),
            ratings_updated=bool(row[7]),
            created_at=row[8],
        )

    def list_contests(self, published_only: bool = False) -> List[Contest]:
        """List contests, newest start first"""
        query = "SELECT id FROM contests"
        if published_only:
            query += " WHERE is_published = TRUE"
        query += " ORDER BY start_time DESC"

        contests = []
        for (contest_id,) in self._get_conn().execute(query).fetchall():
            contest = self.get_contest(contest_id)
            if contest:
                contests.append(contest)
        return contests

    def set_contest_published(self, contest_id: str, is_published: bool) -> None:
        self._get_conn().execute("""
            UPDATE contests SET is_published = ? WHERE id = ?
        """, [is_published, contest_id])

    def add_participant(self, contest_id: str, user_id: str, registered_at: datetime) -> None:
        """Register a user for a contest; raises AlreadyRegistered on duplicates"""
        try:
            self._get_conn().execute("""
                INSERT INTO contest_participants (contest_id, user_id, registered_at)
                VALUES (?, ?, ?)
            """, [contest_id, user_id, registered_at])
        except duckdb.ConstraintException as e:
            raise AlreadyRegistered(contest_id, user_id) from e

    # Submission ledger

    def _row_to_contest_submission(self, row: Sequence) -> Submission:
        return Submission(
            id=row[0],
            contest_id=row[1],
            user_id=row[2],
            problem_id=row[3],
            selected_options=_load_json_list(row[4]),
            submitted_at=row[5],
            verdict=Verdict(row[6]),
            score=row[7],
            is_final=bool(row[8]),
        )

    def has_final_submission(self, contest_id: str, user_id: str) -> bool:
        row = self._get_conn().execute("""
            SELECT 1 FROM contest_finalizations WHERE contest_id = ? AND user_id = ?
        """, [contest_id, user_id]).fetchone()
        return row is not None

    def upsert_draft_submission(self, submission: Submission) -> Submission:
        """
        Write a draft contest answer, overwriting any earlier draft for the
        same (contest, user, problem).

        Raises:
            DuplicateFinalSubmission: the user already finalized this contest
        """
        contest_id = submission.contest_id
        with self.transaction() as conn:
            finalized = conn.execute("""
                SELECT 1 FROM contest_finalizations WHERE contest_id = ? AND user_id = ?
            """, [contest_id, submission.user_id]).fetchone()
            if finalized:
                raise DuplicateFinalSubmission(contest_id, submission.user_id)

            self._upsert_contest_row(conn, submission)
            self._ensure_participant(conn, contest_id, submission.user_id, submission.submitted_at)
            row = conn.execute("""
                SELECT id, contest_id, user_id, problem_id, selected_options,
                       submitted_at, verdict, score, is_final
                FROM contest_submissions
                WHERE contest_id = ? AND user_id = ? AND problem_id = ?
            """, [contest_id, submission.user_id, submission.problem_id]).fetchone()

        return self._row_to_contest_submission(row)

    def finalize_contest_submissions(self, contest_id: str, user_id: str,
                                     submissions: List[Submission], finalized_at: datetime) -> List[Submission]:
        """
        Lock in a user's answers for a contest. The finalization marker and
        every answer are written in one transaction.

        Raises:
            DuplicateFinalSubmission: a final submission already exists
        """
        if self.has_final_submission(contest_id, user_id):
            raise DuplicateFinalSubmission(contest_id, user_id)

        try:
            with self.transaction() as conn:
                conn.execute("""
                    INSERT INTO contest_finalizations (contest_id, user_id, finalized_at)
                    VALUES (?, ?, ?)
                """, [contest_id, user_id, finalized_at])
                for submission in submissions:
                    self._upsert_contest_row(conn, submission)
                self._ensure_participant(conn, contest_id, user_id, finalized_at)
        except duckdb.ConstraintException as e:
            raise DuplicateFinalSubmission(contest_id, user_id) from e

        return self.list_contest_submissions(contest_id, user_id=user_id)

    def _upsert_contest_row(self, conn: duckdb.DuckDBPyConnection, submission: Submission) -> None:
        conn.execute("""
            INSERT INTO contest_submissions
            (id, contest_id, user_id, problem_id, selected_options, submitted_at, verdict, score, is_final)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (contest_id, user_id, problem_id) DO UPDATE SET
                selected_options = EXCLUDED.selected_options,
                submitted_at = EXCLUDED.submitted_at,
                verdict = EXCLUDED.verdict,
                score = EXCLUDED.score,
                is_final = EXCLUDED.is_final
        """, [
            submission.id, submission.contest_id, submission.user_id, submission.problem_id,
            json.dumps(submission.selected_options), submission.submitted_at,
            submission.verdict.value, submission.score, submission.is_final
        ])

    def _ensure_participant(self, conn: duckdb.DuckDBPyConnection, contest_id: str,
                            user_id: str, registered_at: datetime) -> None:
        conn.execute("""
            INSERT INTO contest_participants (contest_id, user_id, registered_at)
            VALUES (?, ?, ?)
            ON CONFLICT DO NOTHING
        """, [contest_id, user_id, registered_at])

    def insert_practice_submission(self, submission: Submission) -> Submission:
        self._get_conn().execute("""
            INSERT INTO practice_submissions
            (id, user_id, problem_id, selected_options, submitted_at, verdict, score)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, [
            submission.id, submission.user_id, submission.problem_id,
            json.dumps(submission.selected_options), submission.submitted_at,
            submission.verdict.value, submission.score
        ])
        return submission

    def list_contest_submissions(self, contest_id: str, user_id: Optional[str] = None,
                                 final_only: bool = False) -> List[Submission]:
        """List contest submissions with optional filters"""
        where_conditions = ["contest_id = ?"]
        params: List[Any] = [contest_id]
        if user_id:
            where_conditions.append("user_id = ?")
            params.append(user_id)
        if final_only:
            where_conditions.append("is_final = TRUE")

        rows = self._get_conn().execute(f"""
            SELECT id, contest_id, user_id, problem_id, selected_options,
                   submitted_at, verdict, score, is_final
            FROM contest_submissions
            WHERE {" AND ".join(where_conditions)}
            ORDER BY submitted_at, user_id, problem_id
        """, params).fetchall()
        return [self._row_to_contest_submission(row) for row in rows]

    def list_practice_submissions(self, user_id: str) -> List[Submission]:
        """Practice submissions of a user, newest first"""
        rows = self._get_conn().execute("""
            SELECT id, user_id, problem_id, selected_options, submitted_at, verdict, score
            FROM practice_submissions
            WHERE user_id = ?
            ORDER BY submitted_at DESC
        """, [user_id]).fetchall()
        return [
            Submission(
                id=row[0],
                user_id=row[1],
                problem_id=row[2],
                selected_options=_load_json_list(row[3]),
                submitted_at=row[4],
                verdict=Verdict(row[5]),
                score=row[6],
                is_final=True,
            )
            for row in rows
        ]

    # Standings

    def calculate_contest_standings(self, contest_id: str, final_only: bool = False) -> List[StandingEntry]:
        """
        Rank users of a contest: best score per problem, summed per user,
        ties broken by the latest of the per-problem earliest-best times.
        """
        rows = self._get_conn().execute("""
            WITH scoped AS (
                SELECT user_id, problem_id, score, submitted_at
                FROM contest_submissions
                WHERE contest_id = ? AND (NOT ? OR is_final)
            ),
            best AS (
                SELECT user_id, problem_id, MAX(score) AS best_score
                FROM scoped
                GROUP BY user_id, problem_id
            ),
            reached AS (
                SELECT s.user_id, s.problem_id, b.best_score, MIN(s.submitted_at) AS reached_at
                FROM scoped s
                JOIN best b ON s.user_id = b.user_id
                           AND s.problem_id = b.problem_id
                           AND s.score = b.best_score
                GROUP BY s.user_id, s.problem_id, b.best_score
            ),
            totals AS (
                SELECT user_id,
                       CAST(SUM(best_score) AS BIGINT) AS total_score,
                       MAX(reached_at) AS last_submission_time
                FROM reached
                GROUP BY user_id
            )
            SELECT
                t.user_id,
                u.username,
                t.total_score,
                t.last_submission_time,
                ROW_NUMBER() OVER (
                    ORDER BY t.total_score DESC, t.last_submission_time ASC, t.user_id ASC
                ) AS rank
            FROM totals t
            LEFT JOIN users u ON u.id = t.user_id
            ORDER BY rank
        """, [contest_id, final_only]).fetchall()

        return [
            StandingEntry(
                user_id=row[0],
                username=row[1],
                total_score=int(row[2]),
                last_submission_time=row[3],
                rank=int(row[4]),
            )
            for row in rows
        ]

    # Ratings

    def begin_rating_run(self, contest_id: str, started_at: datetime) -> None:
        """
        Claim the rating run marker for a contest.

        Raises:
            RatingsAlreadyFinalized: a completed run exists
            RatingRunInProgress: another run holds the marker, or crashed holding it
        """
        conn = self._get_conn()
        try:
            conn.execute("""
                INSERT INTO rating_runs (contest_id, status, started_at)
                VALUES (?, ?, ?)
            """, [contest_id, RATING_RUN_RUNNING, started_at])
        except duckdb.ConstraintException as e:
            row = conn.execute("""
                SELECT status FROM rating_runs WHERE contest_id = ?
            """, [contest_id]).fetchone()
            if row and row[0] == RATING_RUN_COMPLETED:
                raise RatingsAlreadyFinalized(contest_id) from e
            raise RatingRunInProgress(contest_id) from e

    def abort_rating_run(self, contest_id: str) -> None:
        """Release a marker whose run rolled back without writing anything"""
        self._get_conn().execute("""
            DELETE FROM rating_runs WHERE contest_id = ? AND status = ?
        """, [contest_id, RATING_RUN_RUNNING])

    def get_rating_run_status(self, contest_id: str) -> Optional[str]:
        row = self._get_conn().execute("""
            SELECT status FROM rating_runs WHERE contest_id = ?
        """, [contest_id]).fetchone()
        return row[0] if row else None

    def commit_rating_changes(self, contest_id: str, changes: List[RatingChange], timestamp: datetime) -> None:
        """
        Apply every rating change, append history and set ratings_updated in
        one transaction.
        """
        with self.transaction() as conn:
            row = conn.execute("""
                SELECT ratings_updated FROM contests WHERE id = ?
            """, [contest_id]).fetchone()
            if row and row[0]:
                raise RatingsAlreadyFinalized(contest_id)

            for change in changes:
                conn.execute("""
                    UPDATE users SET rating = ?, title = ? WHERE id = ?
                """, [change.new_rating, change.new_title, change.user_id])
                conn.execute("""
                    INSERT INTO rating_history (contest_id, user_id, old_rating, new_rating, timestamp)
                    VALUES (?, ?, ?, ?, ?)
                """, [contest_id, change.user_id, change.old_rating, change.new_rating, timestamp])

            conn.execute("""
                UPDATE contests SET ratings_updated = TRUE WHERE id = ?
            """, [contest_id])
            conn.execute("""
                UPDATE rating_runs SET status = ?, finished_at = ? WHERE contest_id = ?
            """, [RATING_RUN_COMPLETED, timestamp, contest_id])

        logger.info(f"Committed {len(changes)} rating changes for contest {contest_id}")

    def get_rating_history(self, user_id: str) -> List[RatingHistoryEntry]:
        rows = self._get_conn().execute("""
            SELECT contest_id, old_rating, new_rating, timestamp
            FROM rating_history
            WHERE user_id = ?
            ORDER BY timestamp, contest_id
        """, [user_id]).fetchall()
        return [
            RatingHistoryEntry(contest_id=row[0], old_rating=row[1], new_rating=row[2], timestamp=row[3])
            for row in rows
        ]

    def close(self) -> None:
        """Close the current thread's database connection"""
        if hasattr(self._thread_local, 'conn'):
            self._thread_local.conn.close()
            del self._thread_local.conn

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def get_storage_info(self) -> Dict[str, Any]:
        """Get storage system information"""
        conn = self._get_conn()
        counts = {}
        for table in ("users", "problems", "contests", "contest_submissions", "practice_submissions"):
            row = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
            counts[table] = row[0] if row else 0

        db_size = self.db_path.stat().st_size if self.db_path.exists() else 0
        return {
            "storage_format": "duckdb",
            "database_size_mb": db_size / 1024 / 1024,
            "total_users": counts["users"],
            "total_problems": counts["problems"],
            "total_contests": counts["contests"],
            "total_contest_submissions": counts["contest_submissions"],
            "total_practice_submissions": counts["practice_submissions"],
        }
