import logging
from typing import Optional

from core.state import ProblemInfo

logger = logging.getLogger(__name__)

VIEWS = ("queue", "solutions")


class AppState:
    """View controller: current view, extracted problem and debug flag."""

    def __init__(self, view: str = "queue"):
        self._view = view
        self._problem_info: Optional[ProblemInfo] = None
        self._has_debugged = False

    def get_view(self) -> str:
        return self._view

    def set_view(self, view: str) -> None:
        if view not in VIEWS:
            raise ValueError(f"Unknown view: {view}. Available: {list(VIEWS)}")
        if view != self._view:
            logger.info(f"View changed: {self._view} -> {view}")
        self._view = view

    def get_problem_info(self) -> Optional[ProblemInfo]:
        return self._problem_info

    def set_problem_info(self, problem_info: Optional[ProblemInfo]) -> None:
        self._problem_info = problem_info

    def get_has_debugged(self) -> bool:
        return self._has_debugged

    def set_has_debugged(self, value: bool) -> None:
        self._has_debugged = value
