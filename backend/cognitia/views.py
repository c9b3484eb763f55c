import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Any


logger = logging.getLogger(__name__)

PENDING_QUIZZES = "pending_quizzes"
COMPLETED_QUIZZES = "completed_quizzes"


class QuizViewCache:
    """Per-student cache of the pending/completed quiz lists shown on dashboards.

    Every invalidation bumps a generation counter for the key. A load that
    overlapped an invalidation is returned to its caller but never cached.
    """

    def __init__(self):
        self._entries: dict[tuple[str, Any], Any] = {}
        self._generations: defaultdict[tuple[str, Any], int] = defaultdict(int)
        self._epoch = 0
        self._lock = threading.Lock()

    def get_or_load(self, kind: str, student_id: Any, loader: Callable[[], Any]) -> Any:
        key = (kind, student_id)
        with self._lock:
            if key in self._entries:
                return self._entries[key]
            seen = (self._epoch, self._generations[key])
        value = loader()
        with self._lock:
            if (self._epoch, self._generations[key]) == seen:
                self._entries[key] = value
            else:
                logger.debug(f"Discarded stale {kind} view for student {student_id}")
        return value

    def invalidate(self, kind: str, student_id: Any) -> None:
        key = (kind, student_id)
        with self._lock:
            self._entries.pop(key, None)
            self._generations[key] += 1
        logger.debug(f"Invalidated {kind} view for student {student_id}")

    def invalidate_quiz_lists(self, student_id: Any) -> None:
        self.invalidate(PENDING_QUIZZES, student_id)
        self.invalidate(COMPLETED_QUIZZES, student_id)

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()
            self._generations.clear()
            self._epoch += 1

    def __contains__(self, key: tuple[str, Any]) -> bool:
        with self._lock:
            return key in self._entries


quiz_views = QuizViewCache()
