import unittest

from backend.cognitia.errors import SessionBoundToAnotherQuiz, SessionNotStarted, StoreError, ValidationError
from backend.cognitia.quiz_session import QuizSession, SessionRegistry, score_percent
from backend.cognitia.store import InMemoryRecordStore
from backend.cognitia.views import COMPLETED_QUIZZES, PENDING_QUIZZES, QuizViewCache

from .support import FakeClock

SESSION_LOGGER = "backend.cognitia.quiz_session"


class RecordingTimer:
    def __init__(self, callback, interval):
        self.callback = callback
        self.interval = interval
        self.started = 0
        self.stopped = 0

    def start(self):
        self.started += 1

    def stop(self):
        self.stopped += 1


class QuizSessionTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryRecordStore()
        self.clock = FakeClock()
        self.views = QuizViewCache()

    def make_session(self, store=None, **kwargs) -> QuizSession:
        kwargs.setdefault("clock", self.clock)
        kwargs.setdefault("views", self.views)
        kwargs.setdefault("timer_factory", None)
        return QuizSession(store or self.store, **kwargs)

    def answer_all(self, session, outcomes):
        for question_id, correct in enumerate(outcomes, start=1):
            session.record_answer(question_id, f"answer {question_id}", correct)

    def update_count(self) -> int:
        return self.store.calls.count(("update", "attempts"))


class StartTests(QuizSessionTestCase):
    def test_fresh_start_creates_attempt_with_full_time(self):
        session = self.make_session()
        started = session.start(7, 42, 10)

        self.assertFalse(started.resumed)
        self.assertTrue(session.is_started)
        self.assertEqual(session.remaining_seconds, 600)
        self.assertEqual(session.format_remaining(), "10:00")
        attempts = self.store.rows("attempts")
        self.assertEqual(len(attempts), 1)
        self.assertEqual(attempts[0]["status"], "in_progress")
        self.assertEqual(attempts[0]["id"], started.attempt_id)

    def test_missing_limit_uses_default_minutes(self):
        session = self.make_session()
        session.start(7, 42)

        self.assertEqual(session.remaining_seconds, 15 * 60)

    def test_non_positive_limit_uses_default_minutes(self):
        for limit in (0, -5):
            with self.subTest(limit=limit):
                session = self.make_session()
                session.start(7, 42 + abs(limit), limit)

                self.assertEqual(session.time_limit_minutes, 15)
                self.assertEqual(session.remaining_seconds, 15 * 60)
                session.tick()
                self.assertFalse(session.is_submitted)

    def test_start_requires_both_ids(self):
        for student_id, quiz_id in [(None, 1), (1, None), ("", 1)]:
            with self.subTest(student_id=student_id, quiz_id=quiz_id):
                with self.assertRaises(ValidationError):
                    self.make_session().start(student_id, quiz_id, 10)
        self.assertEqual(self.store.rows("attempts"), [])

    def test_start_is_idempotent_across_sessions(self):
        first = self.make_session().start(7, 42, 10)
        second = self.make_session().start(7, 42, 10)

        self.assertTrue(second.resumed)
        self.assertEqual(second.attempt_id, first.attempt_id)
        self.assertEqual(len(self.store.rows("attempts")), 1)

    def test_start_twice_on_one_session_resumes(self):
        session = self.make_session()
        first = session.start(7, 42, 10)
        again = session.start(7, 42, 10)

        self.assertTrue(again.resumed)
        self.assertEqual(again.attempt_id, first.attempt_id)

    def test_session_cannot_switch_quiz(self):
        session = self.make_session()
        session.start(7, 42, 10)

        with self.assertRaises(SessionBoundToAnotherQuiz):
            session.start(7, 43, 10)
        self.assertEqual(session.quiz_id, 42)

    def test_resume_subtracts_elapsed_time(self):
        self.make_session().start(7, 42, 10)
        self.clock.advance(125.6)

        resumed = self.make_session()
        resumed.start(7, 42, 10)

        self.assertEqual(resumed.remaining_seconds, 600 - 125)
        self.assertEqual(resumed.format_remaining(), "7:55")

    def test_resume_after_deadline_submits_on_next_tick(self):
        self.make_session().start(7, 42, 15)
        self.clock.advance(20 * 60)

        late = self.make_session()
        late.start(7, 42, 15)
        self.assertEqual(late.remaining_seconds, 0)

        with self.assertLogs(SESSION_LOGGER, level="WARNING"):
            late.tick()

        self.assertTrue(late.is_submitted)
        self.assertTrue(late.auto_submitted)
        self.assertEqual(self.store.rows("attempts")[0]["status"], "completed")

    def test_concurrent_start_resumes_the_winner(self):
        clock = self.clock

        class RacingStore(InMemoryRecordStore):
            raced = False

            def find_one(self, table, filters):
                # the other tab inserts between our lookup and our insert
                if table == "attempts" and not self.raced:
                    self.raced = True
                    self.insert("attempts", {**filters, "started_at": clock().replace(tzinfo=None)})
                    return None
                return super().find_one(table, filters)

        store = RacingStore()
        session = self.make_session(store)
        started = session.start(7, 42, 10)

        self.assertTrue(started.resumed)
        self.assertEqual(len(store.rows("attempts")), 1)
        self.assertEqual(session.attempt_id, store.rows("attempts")[0]["id"])

    def test_resume_hydrates_saved_answers(self):
        first = self.make_session()
        first.start(7, 42, 10)
        first.record_answer(1, "4", True)
        first.record_answer(2, "Cusco", False)

        second = self.make_session()
        second.start(7, 42, 10)

        self.assertEqual(second.answered_count, 2)
        self.assertEqual(second.get_answer(2).submitted_text, "Cusco")
        self.assertFalse(second.get_answer(2).is_correct)


class RecordAnswerTests(QuizSessionTestCase):
    def test_answer_before_start_raises(self):
        with self.assertRaises(SessionNotStarted):
            self.make_session().record_answer(1, "4", True)
        self.assertEqual(self.store.rows("answers"), [])

    def test_last_answer_wins(self):
        session = self.make_session()
        session.start(7, 42, 10)

        session.record_answer(1, "5", False, elapsed_seconds=4)
        session.record_answer(1, "4", True, elapsed_seconds=9)

        self.assertEqual(session.answered_count, 1)
        self.assertEqual(session.get_answer(1).submitted_text, "4")
        rows = self.store.rows("answers")
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["submitted_text"], "4")
        self.assertIs(rows[0]["is_correct"], True)
        self.assertEqual(rows[0]["elapsed_seconds"], 9)

    def test_autosave_failure_is_logged_not_raised(self):
        session = self.make_session()
        session.start(7, 42, 10)
        self.store.fail_on.add("upsert")

        with self.assertLogs(SESSION_LOGGER, level="ERROR") as logs:
            answer = session.record_answer(1, "4", True)

        self.assertTrue(answer.is_correct)
        self.assertIsNotNone(session.get_answer(1))
        self.assertEqual(self.store.rows("answers"), [])
        self.assertIn("Error saving answer", logs.output[0])
        self.assertEqual(session.submit().score_percent, 100)


class SubmitTests(QuizSessionTestCase):
    def test_submit_before_start_raises(self):
        with self.assertRaises(SessionNotStarted):
            self.make_session().submit()

    def test_no_answers_scores_zero(self):
        session = self.make_session()
        session.start(7, 42, 10)

        result = session.submit()

        self.assertEqual(result.score_percent, 0)
        self.assertEqual(result.total_questions, 0)
        attempt = self.store.rows("attempts")[0]
        self.assertEqual(attempt["status"], "completed")
        self.assertEqual(attempt["total_score"], 0)
        self.assertIsNotNone(attempt["submitted_at"])

    def test_three_of_five_scores_sixty(self):
        session = self.make_session()
        session.start(7, 42, 10)
        self.answer_all(session, [True, True, True, False, False])

        result = session.submit()

        self.assertEqual(result.score_percent, 60)
        self.assertEqual(result.correct_count, 3)
        self.assertEqual(result.total_questions, 5)
        self.assertTrue(session.is_submitted)
        self.assertEqual(self.store.rows("attempts")[0]["total_score"], 60)

    def test_score_rounds_half_up(self):
        cases = [(0, 0, 0), (1, 8, 13), (2, 3, 67), (1, 3, 33), (7, 7, 100), (1, 200, 1), (1, 201, 0)]
        for correct, total, expected in cases:
            with self.subTest(correct=correct, total=total):
                self.assertEqual(score_percent(correct, total), expected)

    def test_failed_submit_can_be_retried(self):
        session = self.make_session()
        session.start(7, 42, 10)
        self.answer_all(session, [True, False])
        self.store.fail_on.add("update:attempts")

        with self.assertLogs(SESSION_LOGGER, level="ERROR"):
            with self.assertRaises(StoreError):
                session.submit()
        self.assertFalse(session.is_submitted)
        self.assertEqual(self.store.rows("attempts")[0]["status"], "in_progress")

        self.store.fail_on.clear()
        result = session.submit()

        self.assertTrue(session.is_submitted)
        self.assertEqual(result.score_percent, 50)

    def test_submit_invalidates_student_quiz_lists(self):
        self.views.get_or_load(PENDING_QUIZZES, 7, lambda: ["quiz 42"])
        self.views.get_or_load(COMPLETED_QUIZZES, 7, lambda: [])
        self.views.get_or_load(PENDING_QUIZZES, 8, lambda: ["quiz 42"])

        session = self.make_session()
        session.start(7, 42, 10)
        session.submit()

        self.assertNotIn((PENDING_QUIZZES, 7), self.views)
        self.assertNotIn((COMPLETED_QUIZZES, 7), self.views)
        self.assertIn((PENDING_QUIZZES, 8), self.views)

    def test_start_after_submit_is_rejected(self):
        session = self.make_session()
        session.start(7, 42, 10)
        session.submit()

        with self.assertRaises(ValidationError):
            session.start(7, 42, 10)


class CountdownTests(QuizSessionTestCase):
    def test_tick_counts_down(self):
        session = self.make_session()
        session.start(7, 42, 1)

        for _ in range(10):
            session.tick()

        self.assertEqual(session.remaining_seconds, 50)
        self.assertEqual(session.format_remaining(), "0:50")

    def test_tick_before_start_does_nothing(self):
        session = self.make_session()
        session.tick()

        self.assertEqual(session.remaining_seconds, 0)
        self.assertFalse(session.is_submitted)
        self.assertEqual(self.store.calls, [])

    def test_auto_submit_fires_exactly_once(self):
        session = self.make_session()
        session.start(7, 42, 1)
        session.record_answer(1, "4", True)

        with self.assertLogs(SESSION_LOGGER, level="WARNING") as logs:
            for _ in range(90):
                session.tick()

        self.assertTrue(session.is_submitted)
        self.assertTrue(session.auto_submitted)
        self.assertEqual(session.result.score_percent, 100)
        self.assertEqual(self.update_count(), 1)
        self.assertEqual(sum("Time is up" in line for line in logs.output), 1)

    def test_no_ticks_after_manual_submit(self):
        session = self.make_session()
        session.start(7, 42, 1)
        session.tick()
        session.submit()
        remaining = session.remaining_seconds

        for _ in range(120):
            session.tick()

        self.assertEqual(session.remaining_seconds, remaining)
        self.assertFalse(session.auto_submitted)
        self.assertEqual(self.update_count(), 1)

    def test_failed_auto_submit_is_not_retried_by_ticks(self):
        session = self.make_session()
        session.start(7, 42, 1)
        self.store.fail_on.add("update:attempts")

        with self.assertLogs(SESSION_LOGGER, level="ERROR") as logs:
            for _ in range(70):
                session.tick()

        self.assertTrue(session.auto_submitted)
        self.assertFalse(session.is_submitted)
        self.assertTrue(any("Automatic submission" in line for line in logs.output))
        self.assertEqual(self.update_count(), 1)

        self.store.fail_on.clear()
        session.submit()
        self.assertTrue(session.is_submitted)

    def test_timer_is_started_and_stopped(self):
        timers = []

        def factory(callback, interval):
            timers.append(RecordingTimer(callback, interval))
            return timers[-1]

        session = self.make_session(timer_factory=factory, tick_seconds=0.5)
        session.start(7, 42, 10)

        self.assertEqual(len(timers), 1)
        timer = timers[0]
        self.assertEqual(timer.started, 1)
        self.assertEqual(timer.interval, 0.5)
        self.assertEqual(timer.callback, session.tick)

        session.submit()
        self.assertEqual(timer.stopped, 1)


class SessionRegistryTests(QuizSessionTestCase):
    def test_open_reuses_live_session(self):
        registry = SessionRegistry(self.make_session)

        first, started = registry.open(7, 42, 10)
        second, again = registry.open(7, 42, 10)

        self.assertIs(first, second)
        self.assertFalse(started.resumed)
        self.assertTrue(again.resumed)
        self.assertIs(registry.get(7, 42), first)
        self.assertIsNone(registry.get(7, 43))

    def test_open_replaces_submitted_session(self):
        registry = SessionRegistry(self.make_session)
        first, _ = registry.open(7, 42, 10)
        first.submit()

        second, started = registry.open(7, 42, 10)

        self.assertIsNot(second, first)
        self.assertFalse(started.resumed)
        self.assertNotEqual(second.attempt_id, first.attempt_id)

    def test_submitted_sessions_are_dropped_on_next_open(self):
        registry = SessionRegistry(self.make_session)
        finished, _ = registry.open(7, 42, 10)
        timed_out, _ = registry.open(8, 42, 1)
        finished.submit()
        for _ in range(60):
            timed_out.tick()
        self.assertTrue(timed_out.auto_submitted)
        self.assertEqual(len(registry), 2)

        registry.open(9, 42, 10)

        self.assertEqual(len(registry), 1)
        self.assertIsNone(registry.get(7, 42))
        self.assertIsNone(registry.get(8, 42))
        self.assertIsNotNone(registry.get(9, 42))

    def test_discard_and_close_all(self):
        registry = SessionRegistry(self.make_session)
        registry.open(7, 42, 10)
        registry.open(8, 42, 10)

        registry.discard(7, 42)
        self.assertIsNone(registry.get(7, 42))

        registry.close_all()
        self.assertIsNone(registry.get(8, 42))


if __name__ == "__main__":
    unittest.main()
