import hmac
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Tuple

import duckdb
from flask import Flask, Response, jsonify, request

from ..engine.contest import ContestRegistry
from ..engine.errors import ArenaError, InvalidContest, InvalidSubmission, TransientStorageError
from ..engine.judge import Judge
from ..engine.leaderboard import LeaderboardAggregator
from ..engine.ledger import SubmissionLedger
from ..engine.rating import RatingEngine
from ..engine.storage import DuckDBStorage
from ..models.models import UserRole
from ..utils.config_manager import ConfigManager, get_config
from ..utils.logger_config import get_logger
from ..utils.problem_loader import parse_problem


# Get logger
logger = get_logger("server")

# Create Flask app
app = Flask(__name__)
logger.info("Created Flask application")


class GlobalRateLimiter:
    """Global request frequency limiter"""
    def __init__(self, min_interval: float = 0.0):
        self._last_request_time = 0.0
        self._lock = threading.Lock()
        self._min_interval = min_interval

    def should_rate_limit(self) -> bool:
        """Check if request frequency should be limited"""
        with self._lock:
            current_time = time.time()

            if current_time - self._last_request_time < self._min_interval:
                return True

            self._last_request_time = current_time
            return False

    def get_wait_time(self) -> float:
        """Get the time to wait"""
        with self._lock:
            current_time = time.time()
            return max(0, self._min_interval - (current_time - self._last_request_time))


# Services (configured by init_services)
global_rate_limiter = GlobalRateLimiter()
storage: Optional[DuckDBStorage] = None
registry: Optional[ContestRegistry] = None
ledger: Optional[SubmissionLedger] = None
leaderboard: Optional[LeaderboardAggregator] = None
rating_engine: Optional[RatingEngine] = None
clock: Callable[[], datetime] = datetime.now
admin_token = ""
retry_max_attempts = 3
retry_initial_delay = 0.5


def init_services(config: Optional[ConfigManager] = None, db_path: Optional[str] = None,
                  clock_fn: Optional[Callable[[], datetime]] = None) -> None:
    """
    Build the storage and engine services the routes use.

    Args:
        config: Configuration manager (defaults to the global one)
        db_path: Override for ``database.path``
        clock_fn: Time source, injectable for tests
    """
    global global_rate_limiter, storage, registry, ledger, leaderboard, rating_engine
    global clock, admin_token, retry_max_attempts, retry_initial_delay

    config = config or get_config()
    clock = clock_fn or datetime.now

    if storage is not None:
        storage.close()
    storage = DuckDBStorage(
        db_path=db_path or config.get("database.path", "data/quizarena.duckdb"),
        initial_rating=config.get("rating.initial_rating", 300),
    )

    grace = timedelta(seconds=config.get("contest.auto_submit_grace_seconds", 0))
    registry = ContestRegistry(storage, clock)
    ledger = SubmissionLedger(storage, Judge(), clock, auto_submit_grace=grace)
    leaderboard = LeaderboardAggregator(storage)
    rating_engine = RatingEngine.from_config(storage, config, clock)

    min_interval = config.get("rate_limiting.min_interval", 0.0)
    global_rate_limiter = GlobalRateLimiter(min_interval)
    logger.info(f"Configured rate limiter with interval: {min_interval}s")

    admin_token = str(config.get("auth.admin_token", "") or "")
    if not admin_token:
        logger.warning("No admin token configured, operator routes are disabled")

    retry_max_attempts = config.get("retry.max_attempts", 3)
    retry_initial_delay = config.get("retry.initial_delay", 0.5)
    logger.info("Server services initialized")


# Helper functions
def success_response(data: Any = None, message: str = "Success", status_code: int = 200) -> Tuple[Response, int]:
    """
    Create a standardized success response.

    Args:
        data: Optional data to include in response
        message: Success message string
        status_code: HTTP status code (default: 200)

    Returns:
        Tuple of (Flask Response object, status code)
    """
    response = {
        "status": "success",
        "message": message
    }
    if data is not None:
        response["data"] = data
    return jsonify(response), status_code


def error_response(message: str, status_code: int = 400, error: Optional[str] = None,
                   retryable: bool = False) -> Tuple[Response, int]:
    """
    Create a standardized error response.

    Args:
        message: Error message string
        status_code: HTTP status code (default: 400)
        error: Machine-readable error kind
        retryable: Whether the client may safely repeat the request

    Returns:
        Tuple of (Flask Response object, status code)
    """
    response = {
        "status": "error",
        "message": message
    }
    if error:
        response["error"] = error
        response["retryable"] = retryable
    return jsonify(response), status_code


def arena_error_response(e: ArenaError) -> Tuple[Response, int]:
    if e.status_code >= 500:
        logger.warning(f"{e.kind}: {e.message}")
    else:
        logger.info(f"Rejected request ({e.kind}): {e.message}")
    return error_response(e.message, e.status_code, error=e.kind, retryable=e.retryable)


def throttle() -> None:
    # Global frequency control
    if global_rate_limiter.should_rate_limit():
        wait_time = global_rate_limiter.get_wait_time()
        logger.info(f"Rate limiting request, waiting {wait_time:.3f}s")
        time.sleep(wait_time)


def is_admin_request() -> bool:
    provided = request.headers.get("X-Admin-Token", "")
    if not admin_token or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), admin_token.encode("utf-8"))


def unauthorized_response() -> Tuple[Response, int]:
    logger.warning(f"Unauthorized operator request to {request.path}")
    return error_response("Unauthorized", 403, error="unauthorized")


def run_with_retry(description: str, operation: Callable[[], Any]) -> Any:
    """
    Run an idempotent operation, retrying transient storage errors with
    exponential backoff.
    """
    retry_delay = retry_initial_delay
    for attempt in range(retry_max_attempts):
        try:
            return operation()
        except TransientStorageError as e:
            if attempt < retry_max_attempts - 1:
                logger.warning(f"Database conflict on {description} (attempt {attempt + 1}/{retry_max_attempts}): {e}")
                time.sleep(retry_delay)
                retry_delay *= 2  # Exponential backoff
            else:
                logger.error(f"Failed {description} after {attempt + 1} attempts: {e}")
                raise


def parse_time(value: Any, field: str) -> datetime:
    if not value:
        raise InvalidContest(f"{field} is required")
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise InvalidContest(f"{field} is not an ISO 8601 timestamp: {value}")


def int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


# System

@app.route("/api/system/health", methods=["GET"])
def health():
    try:
        return success_response(storage.get_storage_info())
    except Exception as e:
        logger.error(f"Health check failed: {e}", exc_info=True)
        return error_response(f"Health check failed: {str(e)}", 500)


# Users

@app.route("/api/users/create", methods=["POST"])
def create_user():
    """
    Create a user.

    Request Body:
        username: Unique user name
        institute: Optional institute name
        role: "user" (default) or "admin"; creating admins requires the operator token
    """
    try:
        data = request.get_json(silent=True)
        if not data:
            return error_response("No JSON data provided", 400)

        username = (data.get("username") or "").strip()
        if not username:
            return error_response("Username is required", 400)

        role = UserRole(data.get("role", UserRole.USER.value))
        if role == UserRole.ADMIN and not is_admin_request():
            return unauthorized_response()

        user = storage.create_user(username=username, role=role, institute=data.get("institute", "self"))
        return success_response(user.to_dict(), "User created successfully", 201)

    except ValueError as e:
        return error_response(f"Invalid role: {str(e)}", 400)
    except duckdb.ConstraintException:
        return error_response("Username is already taken", 409, error="username_taken")
    except Exception as e:
        logger.error(f"Failed to create user: {e}", exc_info=True)
        return error_response(f"Failed to create user: {str(e)}", 500)


@app.route("/api/users/get/<user_id>", methods=["GET"])
def get_user(user_id: str):
    try:
        user = storage.get_user(user_id)
        if not user:
            return error_response(f"User with ID {user_id} not found", 404, error="user_not_found")
        return success_response(user.to_dict())
    except Exception as e:
        logger.error(f"Failed to get user: {e}", exc_info=True)
        return error_response(f"Failed to get user: {str(e)}", 500)


@app.route("/api/users/rating-history/<user_id>", methods=["GET"])
def get_rating_history(user_id: str):
    try:
        history = rating_engine.rating_history(user_id)
        return success_response([entry.to_dict() for entry in history])
    except ArenaError as e:
        return arena_error_response(e)
    except Exception as e:
        logger.error(f"Failed to get rating history: {e}", exc_info=True)
        return error_response(f"Failed to get rating history: {str(e)}", 500)


@app.route("/api/leaderboard", methods=["GET"])
def get_global_leaderboard():
    """
    Users ordered by rating.

    Query Parameters:
        page, limit: Pagination (limit capped at 100)
        search: Substring match on username or institute
        min_rating, max_rating: Inclusive rating range
    """
    try:
        result = leaderboard.global_leaderboard(
            page=int_arg("page", 1),
            limit=int_arg("limit", 10),
            search=request.args.get("search", ""),
            min_rating=int_arg("min_rating", 0),
            max_rating=int_arg("max_rating", 3000),
        )
        return success_response(result)
    except Exception as e:
        logger.error(f"Failed to get leaderboard: {e}", exc_info=True)
        return error_response(f"Failed to get leaderboard: {str(e)}", 500)


# Problems

@app.route("/api/problems/create", methods=["POST"])
def create_problem():
    if not is_admin_request():
        return unauthorized_response()
    try:
        data = request.get_json(silent=True)
        if not data:
            return error_response("No JSON data provided", 400)
        problem = storage.create_problem(parse_problem(data))
        logger.info(f"Created problem {problem.title} (ID: {problem.id})")
        return success_response(problem.to_dict(include_answer=True), "Problem created successfully", 201)
    except ValueError as e:
        return error_response(str(e), 400, error="invalid_problem")
    except duckdb.ConstraintException:
        return error_response("A problem with this ID already exists", 409, error="problem_exists")
    except Exception as e:
        logger.error(f"Failed to create problem: {e}", exc_info=True)
        return error_response(f"Failed to create problem: {str(e)}", 500)


@app.route("/api/problems/get/<problem_id>", methods=["GET"])
def get_problem(problem_id: str):
    try:
        problem = storage.get_problem(problem_id)
        if not problem:
            return error_response(f"Problem with ID {problem_id} not found", 404, error="problem_not_found")
        return success_response(problem.to_dict(include_answer=is_admin_request()))
    except Exception as e:
        logger.error(f"Failed to get problem: {e}", exc_info=True)
        return error_response(f"Failed to get problem: {str(e)}", 500)


@app.route("/api/problems/random", methods=["GET"])
def get_random_problems():
    """
    Practice problems the user has not answered yet.

    Query Parameters:
        user_id: Required
        count: Number of problems (default 1, max 50)
        subject: May be repeated to select several subjects
    """
    try:
        user_id = request.args.get("user_id")
        if not user_id:
            return error_response("user_id is required", 400)
        count = min(max(int_arg("count", 1), 1), 50)
        subjects = request.args.getlist("subject") or None
        problems = ledger.draw_practice_problems(user_id, count=count, subjects=subjects)
        return success_response([p.to_dict() for p in problems])
    except ArenaError as e:
        return arena_error_response(e)
    except Exception as e:
        logger.error(f"Failed to draw practice problems: {e}", exc_info=True)
        return error_response(f"Failed to draw practice problems: {str(e)}", 500)


# Contests

@app.route("/api/contests/create", methods=["POST"])
def create_contest():
    """
    Create a contest.

    Request format:
    {
        "title": "Weekly Quiz 12",
        "description": "...",
        "start_time": "2025-01-01T10:00:00",
        "end_time": "2025-01-01T12:00:00",
        "problem_ids": ["problem_1", "problem_2"],
        "is_published": false
    }
    """
    if not is_admin_request():
        return unauthorized_response()
    try:
        data = request.get_json(silent=True)
        if not data:
            return error_response("No JSON data provided", 400)

        contest = registry.create_contest(
            title=data.get("title", ""),
            description=data.get("description", ""),
            start_time=parse_time(data.get("start_time"), "start_time"),
            end_time=parse_time(data.get("end_time"), "end_time"),
            problem_ids=list(data.get("problem_ids", [])),
            is_published=bool(data.get("is_published", False)),
        )
        return success_response(contest.to_dict(now=clock()), "Contest created successfully", 201)
    except ArenaError as e:
        return arena_error_response(e)
    except Exception as e:
        logger.error(f"Error creating contest: {e}", exc_info=True)
        return error_response(f"Failed to create contest: {str(e)}", 500)


@app.route("/api/contests/get/<contest_id>", methods=["GET"])
def get_contest(contest_id: str):
    """
    Get contest details by ID. Unpublished contests are only visible to operators.

    Query Parameters:
        include_problems: If "true", includes the contest's problems (without answers)
    """
    try:
        contest = registry.get_contest(contest_id)
        admin = is_admin_request()
        if not contest.is_published and not admin:
            return error_response(f"Contest with ID {contest_id} not found", 404, error="contest_not_found")

        response_data = contest.to_dict(now=clock())
        if request.args.get("include_problems", "false").lower() == "true":
            problems = storage.get_problems(contest.problem_ids)
            response_data["problems"] = [
                problems[pid].to_dict(include_answer=admin) for pid in contest.problem_ids if pid in problems
            ]
        return success_response(response_data)
    except ArenaError as e:
        return arena_error_response(e)
    except Exception as e:
        logger.error(f"Failed to get contest: {e}", exc_info=True)
        return error_response(f"Failed to get contest: {str(e)}", 500)


@app.route("/api/contests/list", methods=["GET"])
def list_contests():
    try:
        contests = registry.list_contests(published_only=not is_admin_request())
        now = clock()
        return success_response([contest.to_dict(now=now) for contest in contests])
    except Exception as e:
        logger.error(f"Failed to list contests: {e}", exc_info=True)
        return error_response(f"Failed to list contests: {str(e)}", 500)


@app.route("/api/contests/toggle-publish/<contest_id>", methods=["POST"])
def toggle_publish(contest_id: str):
    if not is_admin_request():
        return unauthorized_response()
    try:
        contest = registry.toggle_publish(contest_id)
        message = "Contest published" if contest.is_published else "Contest unpublished"
        return success_response(contest.to_dict(now=clock()), message)
    except ArenaError as e:
        return arena_error_response(e)
    except Exception as e:
        logger.error(f"Failed to toggle publication: {e}", exc_info=True)
        return error_response(f"Failed to toggle publication: {str(e)}", 500)


@app.route("/api/contests/register/<contest_id>", methods=["POST"])
def register_for_contest(contest_id: str):
    throttle()
    try:
        data = request.get_json(silent=True) or {}
        user_id = data.get("user_id")
        if not user_id:
            return error_response("user_id is required", 400)
        contest = registry.register(contest_id, user_id)
        return success_response(contest.to_dict(now=clock()), "Registered successfully")
    except ArenaError as e:
        return arena_error_response(e)
    except Exception as e:
        logger.error(f"Failed to register: {e}", exc_info=True)
        return error_response(f"Failed to register: {str(e)}", 500)


# Submissions

@app.route("/api/submissions/draft/<contest_id>", methods=["POST"])
def submit_draft(contest_id: str):
    """
    Save a contest answer before finalization. Repeating the request
    overwrites the earlier draft for the same problem.

    Request Body:
        user_id, problem_id, selected_options
    """
    throttle()
    try:
        data = request.get_json(silent=True)
        if not data:
            return error_response("No JSON data provided", 400)

        user_id = data.get("user_id")
        problem_id = data.get("problem_id")
        if not all([user_id, problem_id]):
            return error_response("Missing required fields")

        submission = run_with_retry(
            "draft submission",
            lambda: ledger.submit_draft(user_id, problem_id, contest_id, data.get("selected_options")),
        )
        return success_response(submission.to_dict(), "Draft saved")
    except ArenaError as e:
        return arena_error_response(e)
    except Exception as e:
        logger.error(f"Failed to save draft: {e}", exc_info=True)
        return error_response(f"Failed to save draft: {str(e)}", 500)


@app.route("/api/submissions/final/<contest_id>", methods=["POST"])
def submit_final(contest_id: str):
    """
    Finalize all of a user's answers for a contest. Accepted once per user.

    Request Body:
        user_id: Submitting user
        answers: [{"problem_id": ..., "selected_options": [...]}, ...]
        auto_submit: System-triggered submission at expiry (operator token required)
    """
    throttle()
    try:
        data = request.get_json(silent=True)
        if not data:
            return error_response("No JSON data provided", 400)

        user_id = data.get("user_id")
        if not user_id:
            return error_response("user_id is required", 400)
        answers = data.get("answers")
        if not isinstance(answers, list):
            raise InvalidSubmission("answers must be a list")

        auto_submit = bool(data.get("auto_submit", False))
        if auto_submit and not is_admin_request():
            return unauthorized_response()

        submissions = ledger.submit_final_batch(user_id, contest_id, answers, auto_submit=auto_submit)
        return success_response({
            "submissions": [s.to_dict() for s in submissions],
            "total_score": sum(s.score for s in submissions),
        }, "Final submission recorded")
    except ArenaError as e:
        return arena_error_response(e)
    except Exception as e:
        logger.error(f"Failed to record final submission: {e}", exc_info=True)
        return error_response(f"Failed to record final submission: {str(e)}", 500)


@app.route("/api/submissions/list/<contest_id>", methods=["GET"])
def list_submissions(contest_id: str):
    """
    List a contest's submissions. Without the operator token a ``user_id``
    query parameter is required and only that user's rows are returned.
    """
    try:
        user_id = request.args.get("user_id")
        if not user_id and not is_admin_request():
            return error_response("user_id is required", 400)
        submissions = ledger.contest_submissions(contest_id, user_id=user_id)
        return success_response([s.to_dict() for s in submissions])
    except ArenaError as e:
        return arena_error_response(e)
    except Exception as e:
        logger.error(f"Failed to list submissions: {e}", exc_info=True)
        return error_response(f"Failed to list submissions: {str(e)}", 500)


@app.route("/api/submissions/practice", methods=["POST"])
def submit_practice():
    throttle()
    try:
        data = request.get_json(silent=True)
        if not data:
            return error_response("No JSON data provided", 400)

        user_id = data.get("user_id")
        problem_id = data.get("problem_id")
        selected = data.get("selected_option", data.get("selected_options"))
        if not all([user_id, problem_id, selected]):
            return error_response("Problem ID and selected option are required", 400)

        result = ledger.submit_practice(user_id, problem_id, selected)
        return success_response(result, "Submission recorded")
    except ArenaError as e:
        return arena_error_response(e)
    except Exception as e:
        logger.error(f"Failed to record practice submission: {e}", exc_info=True)
        return error_response(f"Failed to record practice submission: {str(e)}", 500)


@app.route("/api/submissions/practice-history/<user_id>", methods=["GET"])
def get_practice_history(user_id: str):
    try:
        history = ledger.practice_history(user_id)
        return success_response([s.to_dict() for s in history])
    except Exception as e:
        logger.error(f"Failed to get practice history: {e}", exc_info=True)
        return error_response(f"Failed to get practice history: {str(e)}", 500)


# Standings and ratings

@app.route("/api/standings/get/<contest_id>", methods=["GET"])
def get_standings(contest_id: str):
    """
    Get current contest standings.

    Query Parameters:
        final_only: If "true", only final submissions count

    Returns:
        Entries ordered by rank
    """
    throttle()
    try:
        final_only = request.args.get("final_only", "false").lower() == "true"
        standings = run_with_retry(
            "standings request",
            lambda: leaderboard.compute_standings(contest_id, final_only=final_only),
        )
        return success_response([entry.to_dict() for entry in standings])
    except ArenaError as e:
        return arena_error_response(e)
    except Exception as e:
        logger.error(f"Failed to get standings: {e}", exc_info=True)
        return error_response(f"Failed to get standings: {str(e)}", 500)


@app.route("/api/ratings/finalize/<contest_id>", methods=["POST"])
def finalize_ratings(contest_id: str):
    """Apply rating changes for an ended contest. Runs at most once per contest."""
    if not is_admin_request():
        return unauthorized_response()
    try:
        changes = rating_engine.finalize_ratings(contest_id)
        return success_response([change.to_dict() for change in changes], "Ratings updated successfully")
    except ArenaError as e:
        return arena_error_response(e)
    except Exception as e:
        logger.error(f"Rating update error: {e}", exc_info=True)
        return error_response(f"Failed to update ratings: {str(e)}", 500)


# Main entrypoint
def run_api(host: str = "0.0.0.0", port: int = 5000, debug: bool = False, config=None):
    """
    Start the Flask API server.

    Args:
        host: Host address to bind to (default: "0.0.0.0")
        port: Port number to bind to (default: 5000)
        debug: Enable debug mode (default: False)
        config: Configuration manager instance (optional)
    """
    init_services(config)
    logger.info(f"Serving QuizArena API on {host}:{port}")
    app.run(host=host, port=port, debug=debug)
