"""Timed, resumable quiz attempt for one student.

A :class:`QuizSession` drives a single attempt through
``idle -> started -> submitted``. The countdown is derived from the attempt's
persisted start time, so reopening the quiz never extends the time limit, and
the automatic submission at zero is guarded by a one-shot latch.
"""
import logging
import math
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .config import settings
from .countdown import Countdown
from .database import as_utc, to_db_time, utc_now
from .errors import (
    CognitiaError,
    DuplicateInProgressAttempt,
    SessionBoundToAnotherQuiz,
    SessionNotStarted,
    StoreError,
    ValidationError,
)
from .models import AttemptStatus
from .store import RecordStore
from .views import QuizViewCache


logger = logging.getLogger(__name__)

ANSWER_KEYS = ("attempt_id", "question_id")


@dataclass
class AnswerRecord:
    question_id: Any
    submitted_text: str
    is_correct: bool
    elapsed_seconds: int | None = None


@dataclass(frozen=True)
class StartResult:
    attempt_id: Any
    started_at: datetime
    resumed: bool


@dataclass(frozen=True)
class QuizResult:
    score_percent: int
    total_questions: int
    correct_count: int
    answers: list[AnswerRecord] = field(default_factory=list)


def score_percent(correct: int, total: int) -> int:
    if total <= 0:
        return 0
    # half-up, so 12.5 -> 13
    return int(math.floor(100 * correct / total + 0.5))


class QuizSession:
    def __init__(
        self,
        store: RecordStore,
        *,
        clock: Callable[[], datetime] = utc_now,
        views: QuizViewCache | None = None,
        tick_seconds: float | None = None,
        timer_factory: Callable[..., Countdown] | None = Countdown,
    ):
        self._store = store
        self._clock = clock
        self._views = views
        self._tick_seconds = settings.tick_seconds if tick_seconds is None else tick_seconds
        self._timer_factory = timer_factory
        self._timer: Countdown | None = None
        self._lock = threading.RLock()

        self.student_id: Any = None
        self.quiz_id: Any = None
        self.attempt_id: Any = None
        self.started_at: datetime | None = None
        self.time_limit_minutes: int = settings.default_quiz_minutes
        self._answers: dict[Any, AnswerRecord] = {}
        self._remaining = 0
        self._submitted = False
        self._submitting = False
        self._auto_submitted = False
        self._result: QuizResult | None = None

    # --- observable state ---

    @property
    def is_started(self) -> bool:
        return self.attempt_id is not None

    @property
    def is_submitted(self) -> bool:
        return self._submitted

    @property
    def remaining_seconds(self) -> int:
        return self._remaining

    @property
    def answered_count(self) -> int:
        return len(self._answers)

    @property
    def result(self) -> QuizResult | None:
        return self._result

    @property
    def auto_submitted(self) -> bool:
        return self._auto_submitted

    def get_answer(self, question_id: Any) -> AnswerRecord | None:
        return self._answers.get(question_id)

    def answers(self) -> list[AnswerRecord]:
        with self._lock:
            return list(self._answers.values())

    def format_remaining(self) -> str:
        minutes, seconds = divmod(self._remaining, 60)
        return f"{minutes}:{seconds:02d}"

    # --- operations ---

    def start(self, student_id: Any, quiz_id: Any, time_limit_minutes: int | None = None) -> StartResult:
        if not student_id or not quiz_id:
            raise ValidationError("Missing student id or quiz id")
        limit = time_limit_minutes if time_limit_minutes and time_limit_minutes > 0 else settings.default_quiz_minutes

        with self._lock:
            if self._submitted:
                raise ValidationError("Attempt already submitted")
            if self.is_started and (student_id, quiz_id) != (self.student_id, self.quiz_id):
                raise SessionBoundToAnotherQuiz(f"Session is bound to quiz {self.quiz_id}")

            filters = {"student_id": student_id, "quiz_id": quiz_id, "status": AttemptStatus.IN_PROGRESS.value}
            existing = self._store.find_one("attempts", filters)
            resumed = existing is not None
            if existing is None:
                try:
                    existing = self._store.insert("attempts", {**filters, "started_at": to_db_time(self._clock())})
                except DuplicateInProgressAttempt:
                    # another tab won the race; resume its attempt
                    logger.info(f"Concurrent start for student {student_id} quiz {quiz_id}, resuming")
                    existing = self._store.find_one("attempts", filters)
                    if existing is None:
                        raise StoreError("In-progress attempt vanished after uniqueness conflict")
                    resumed = True

            self.student_id = student_id
            self.quiz_id = quiz_id
            self.attempt_id = existing["id"]
            self.started_at = as_utc(existing["started_at"])
            self.time_limit_minutes = limit

            if resumed:
                for row in self._store.query("answers", {"attempt_id": self.attempt_id}):
                    self._answers.setdefault(
                        row["question_id"],
                        AnswerRecord(
                            question_id=row["question_id"],
                            submitted_text=row["submitted_text"],
                            is_correct=bool(row["is_correct"]),
                            elapsed_seconds=row.get("elapsed_seconds"),
                        ),
                    )

            elapsed = math.floor((self._clock() - self.started_at).total_seconds())
            self._remaining = max(0, limit * 60 - elapsed)

        if resumed:
            logger.info(
                f"Resuming quiz {quiz_id} for student {student_id} (attempt {self.attempt_id}, {self._remaining}s left)"
            )
        else:
            logger.info(f"Started quiz {quiz_id} for student {student_id} (attempt {self.attempt_id})")
        self._start_timer()
        return StartResult(attempt_id=self.attempt_id, started_at=self.started_at, resumed=resumed)

    def record_answer(
        self,
        question_id: Any,
        submitted_text: str,
        is_correct: bool,
        elapsed_seconds: int | None = None,
    ) -> AnswerRecord:
        with self._lock:
            if not self.is_started:
                raise SessionNotStarted()
            if self._submitted:
                logger.warning(f"Answer for question {question_id} recorded after attempt {self.attempt_id} was submitted")
            answer = AnswerRecord(
                question_id=question_id,
                submitted_text=submitted_text,
                is_correct=bool(is_correct),
                elapsed_seconds=elapsed_seconds,
            )
            self._answers[question_id] = answer
            attempt_id = self.attempt_id

        try:
            self._store.upsert(
                "answers",
                {
                    "attempt_id": attempt_id,
                    "question_id": question_id,
                    "submitted_text": answer.submitted_text,
                    "is_correct": answer.is_correct,
                    "elapsed_seconds": answer.elapsed_seconds,
                },
                ANSWER_KEYS,
            )
        except StoreError as exc:
            logger.error(f"Error saving answer for question {question_id} (attempt {attempt_id}): {exc}")
        return answer

    def submit(self) -> QuizResult:
        with self._lock:
            if not self.is_started:
                raise SessionNotStarted()
            self._submitting = True
            answers = list(self._answers.values())
            attempt_id = self.attempt_id

        correct = sum(1 for answer in answers if answer.is_correct)
        total = len(answers)
        score = score_percent(correct, total)
        try:
            self._store.update(
                "attempts",
                attempt_id,
                {
                    "status": AttemptStatus.COMPLETED.value,
                    "total_score": score,
                    "submitted_at": to_db_time(self._clock()),
                },
            )
        except StoreError as exc:
            with self._lock:
                self._submitting = False
            logger.error(f"Error submitting attempt {attempt_id}: {exc}")
            raise

        result = QuizResult(score_percent=score, total_questions=total, correct_count=correct, answers=answers)
        with self._lock:
            self._submitted = True
            self._submitting = False
            self._result = result
        self._stop_timer()
        if self._views is not None:
            self._views.invalidate_quiz_lists(self.student_id)
        logger.info(f"Submitted attempt {attempt_id}: {correct}/{total} correct, score {score}")
        return result

    def tick(self) -> None:
        with self._lock:
            if not self.is_started or self._submitted or self._submitting or self._auto_submitted:
                return
            self._remaining = max(0, self._remaining - 1)
            if self._remaining > 0:
                return
            self._auto_submitted = True

        self._stop_timer()
        logger.warning(f"Time is up for attempt {self.attempt_id}, submitting answers")
        try:
            self.submit()
        except CognitiaError as exc:
            logger.error(f"Automatic submission of attempt {self.attempt_id} failed: {exc}")

    def close(self) -> None:
        self._stop_timer()

    # --- timer ---

    def _start_timer(self) -> None:
        if self._timer_factory is None:
            return
        with self._lock:
            if self._submitted or self._auto_submitted:
                return
            if self._timer is None:
                self._timer = self._timer_factory(self.tick, self._tick_seconds)
            timer = self._timer
        timer.start()

    def _stop_timer(self) -> None:
        with self._lock:
            timer = self._timer
        if timer is not None:
            timer.stop()


class SessionRegistry:
    """Live quiz sessions keyed by (student, quiz) so countdowns outlive a request."""

    def __init__(self, session_factory: Callable[[], QuizSession]):
        self._session_factory = session_factory
        self._sessions: dict[tuple[Any, Any], QuizSession] = {}
        self._lock = threading.Lock()

    def open(self, student_id: Any, quiz_id: Any, time_limit_minutes: int | None = None) -> tuple[QuizSession, StartResult]:
        key = (student_id, quiz_id)
        with self._lock:
            self._sweep()
            session = self._sessions.get(key)
            if session is None:
                session = self._session_factory()
                self._sessions[key] = session
            return session, session.start(student_id, quiz_id, time_limit_minutes)

    def get(self, student_id: Any, quiz_id: Any) -> QuizSession | None:
        with self._lock:
            return self._sessions.get((student_id, quiz_id))

    def discard(self, student_id: Any, quiz_id: Any) -> None:
        with self._lock:
            session = self._sessions.pop((student_id, quiz_id), None)
        if session is not None:
            session.close()

    def _sweep(self) -> None:
        finished = [key for key, session in self._sessions.items() if session.is_submitted]
        for key in finished:
            self._sessions.pop(key).close()
        if finished:
            logger.debug(f"Dropped {len(finished)} submitted quiz sessions")

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
        if sessions:
            logger.info(f"Closed {len(sessions)} quiz sessions")
