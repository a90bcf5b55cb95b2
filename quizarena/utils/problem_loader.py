import json
import os
from typing import Any, Dict, List, Optional, Tuple

from ..models.models import Problem, generate_id
from .logger_config import get_logger

logger = get_logger("problem_loader")


def parse_problem(data: Dict[str, Any], problem_id: Optional[str] = None) -> Problem:
    """
    Build a Problem from a library or API record.

    Accepts both ``correct_option`` and the camelCase ``correctOption`` key.

    Raises:
        ValueError: required fields are missing or invalid
    """
    title = (data.get("title") or "").strip()
    if not title:
        raise ValueError("Title is required")

    correct = data.get("correct_option", data.get("correctOption"))
    if not correct:
        raise ValueError(f"Problem '{title}' has no correct option")

    score = data.get("score")
    if not isinstance(score, int) or isinstance(score, bool) or score <= 0:
        raise ValueError(f"Problem '{title}' must have a positive integer score")

    options = data.get("options") or []
    correct_list = [correct] if isinstance(correct, str) else list(correct)
    if options and any(option not in options for option in correct_list):
        raise ValueError(f"Problem '{title}' has a correct option that is not among its options")

    return Problem(
        id=problem_id or data.get("id") or generate_id(),
        title=title,
        description=data.get("description", ""),
        options=options,
        correct_option=correct_list,
        score=score,
        subject=data.get("subject", ""),
        tags=data.get("tags") or [],
        difficulty=data.get("difficulty", 0),
    )


class ProblemLibraryLoader:
    """Load problems from a JSON problem library file"""

    def __init__(self, data_path: str = "data/problems.json"):
        self.data_path = data_path
        self.problems_dict: Dict[str, Dict[str, Any]] = {}
        self._load_problem_dict()

    def _load_problem_dict(self) -> None:
        """
        Read the library. Either a list of records with an ``id`` each, or an
        object mapping problem ID to record.
        """
        if not os.path.exists(self.data_path):
            logger.warning(f"Problem library not found at {self.data_path}")
            return

        with open(self.data_path, "r", encoding="utf-8") as f:
            raw = json.load(f)

        if isinstance(raw, dict):
            self.problems_dict = {str(pid): record for pid, record in raw.items()}
        else:
            for record in raw:
                if "id" not in record:
                    raise ValueError(f"Problem record without id in {self.data_path}: {record.get('title')}")
                self.problems_dict[str(record["id"])] = record
        logger.info(f"Loaded {len(self.problems_dict)} problems from {self.data_path}")

    def get_problem_ids(self, subject: Optional[str] = None) -> List[str]:
        """Get problem IDs, optionally restricted to one subject"""
        if not subject:
            return list(self.problems_dict.keys())
        return [pid for pid, p in self.problems_dict.items()
                if p.get("subject", "").lower() == subject.lower()]

    def load_problem(self, problem_id: str) -> Optional[Problem]:
        if problem_id not in self.problems_dict:
            return None
        return parse_problem(self.problems_dict[problem_id], problem_id=problem_id)

    def import_into(self, storage, subject: Optional[str] = None) -> Tuple[List[str], List[str]]:
        """
        Insert library problems that the database does not have yet.

        Returns:
            Tuple of (imported problem IDs, skipped problem IDs)
        """
        imported, skipped = [], []
        for problem_id in self.get_problem_ids(subject):
            if storage.get_problem(problem_id) is not None:
                skipped.append(problem_id)
                continue
            storage.create_problem(self.load_problem(problem_id))
            imported.append(problem_id)

        logger.info(f"Imported {len(imported)} problems, skipped {len(skipped)} already present")
        return imported, skipped
