"""
HTTP client for the QuizArena API.

Idempotent calls (standings, drafts and plain reads) are retried with
exponential backoff on connection failures and on responses the server
marks as retryable. Final submissions and rating finalization are sent
exactly once.
"""

import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from .utils.logger_config import get_logger

logger = get_logger("client")


class ArenaApiError(Exception):
    """Error response from the API, or a failure to reach it"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 kind: Optional[str] = None, retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.kind = kind
        self.retryable = retryable


class ArenaClient:

    def __init__(
        self,
        api_base: str = "http://localhost:5000",
        admin_token: Optional[str] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        session: Optional[requests.Session] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.admin_token = admin_token
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = session or requests.Session()

    def _headers(self, admin: bool) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if admin:
            if not self.admin_token:
                raise ArenaApiError("This call requires an admin token", kind="unauthorized")
            headers["X-Admin-Token"] = self.admin_token
        return headers

    def _send(self, method: str, path: str, json: Optional[Dict[str, Any]] = None,
              params: Optional[Dict[str, Any]] = None, admin: bool = False) -> Any:
        url = f"{self.api_base}{path}"
        try:
            response = self.session.request(
                method, url, json=json, params=params,
                headers=self._headers(admin), timeout=self.timeout,
            )
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise ArenaApiError(f"Unable to reach API at {url}: {e}", retryable=True) from e

        try:
            result = response.json()
        except ValueError:
            raise ArenaApiError(
                f"Non-JSON response from {url} (HTTP {response.status_code})",
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )

        if result.get("status") != "success":
            raise ArenaApiError(
                result.get("message", "Unknown error"),
                status_code=response.status_code,
                kind=result.get("error"),
                retryable=bool(result.get("retryable", False)),
            )
        return result.get("data")

    def _send_with_retry(self, method: str, path: str, **kwargs) -> Any:
        delay = self.retry_delay
        for attempt in range(self.max_retries):
            try:
                return self._send(method, path, **kwargs)
            except ArenaApiError as e:
                if not e.retryable or attempt == self.max_retries - 1:
                    raise
                logger.warning(f"{method} {path} failed (attempt {attempt + 1}/{self.max_retries}): {e.message}")
                time.sleep(delay)
                delay *= 2  # Exponential backoff

    # Users and problems

    def create_user(self, username: str, institute: str = "self") -> Dict[str, Any]:
        return self._send("POST", "/api/users/create", json={"username": username, "institute": institute})

    def get_user(self, user_id: str) -> Dict[str, Any]:
        return self._send_with_retry("GET", f"/api/users/get/{user_id}")

    def rating_history(self, user_id: str) -> List[Dict[str, Any]]:
        return self._send_with_retry("GET", f"/api/users/rating-history/{user_id}")

    def global_leaderboard(self, page: int = 1, limit: int = 10, search: str = "") -> Dict[str, Any]:
        return self._send_with_retry(
            "GET", "/api/leaderboard", params={"page": page, "limit": limit, "search": search}
        )

    def create_problem(self, problem: Dict[str, Any]) -> Dict[str, Any]:
        return self._send("POST", "/api/problems/create", json=problem, admin=True)

    def random_problems(self, user_id: str, count: int = 1) -> List[Dict[str, Any]]:
        return self._send("GET", "/api/problems/random", params={"user_id": user_id, "count": count})

    # Contests

    def create_contest(self, title: str, start_time: datetime, end_time: datetime,
                       problem_ids: List[str], description: str = "",
                       is_published: bool = False) -> Dict[str, Any]:
        return self._send("POST", "/api/contests/create", admin=True, json={
            "title": title,
            "description": description,
            "start_time": start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "problem_ids": problem_ids,
            "is_published": is_published,
        })

    def get_contest(self, contest_id: str) -> Dict[str, Any]:
        return self._send_with_retry("GET", f"/api/contests/get/{contest_id}", admin=bool(self.admin_token))

    def register(self, contest_id: str, user_id: str) -> Dict[str, Any]:
        return self._send("POST", f"/api/contests/register/{contest_id}", json={"user_id": user_id})

    # Submissions

    def submit_draft(self, contest_id: str, user_id: str, problem_id: str,
                     selected_options: List[str]) -> Dict[str, Any]:
        return self._send_with_retry("POST", f"/api/submissions/draft/{contest_id}", json={
            "user_id": user_id,
            "problem_id": problem_id,
            "selected_options": selected_options,
        })

    def submit_final(self, contest_id: str, user_id: str, answers: List[Dict[str, Any]],
                     auto_submit: bool = False) -> Dict[str, Any]:
        return self._send("POST", f"/api/submissions/final/{contest_id}", admin=auto_submit, json={
            "user_id": user_id,
            "answers": answers,
            "auto_submit": auto_submit,
        })

    def submit_practice(self, user_id: str, problem_id: str, selected_option: Any) -> Dict[str, Any]:
        return self._send("POST", "/api/submissions/practice", json={
            "user_id": user_id,
            "problem_id": problem_id,
            "selected_option": selected_option,
        })

    # Standings and ratings

    def get_standings(self, contest_id: str, final_only: bool = False) -> List[Dict[str, Any]]:
        return self._send_with_retry(
            "GET", f"/api/standings/get/{contest_id}",
            params={"final_only": "true" if final_only else "false"},
        )

    def finalize_ratings(self, contest_id: str) -> List[Dict[str, Any]]:
        return self._send("POST", f"/api/ratings/finalize/{contest_id}", admin=True)
