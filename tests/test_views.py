import unittest

from backend.cognitia.views import COMPLETED_QUIZZES, PENDING_QUIZZES, QuizViewCache


class QuizViewCacheTests(unittest.TestCase):
    def setUp(self) -> None:
        self.views = QuizViewCache()

    def test_loads_once_until_invalidated(self):
        calls = []

        def loader():
            calls.append(1)
            return [len(calls)]

        self.assertEqual(self.views.get_or_load(PENDING_QUIZZES, 7, loader), [1])
        self.assertEqual(self.views.get_or_load(PENDING_QUIZZES, 7, loader), [1])

        self.views.invalidate_quiz_lists(7)

        self.assertEqual(self.views.get_or_load(PENDING_QUIZZES, 7, loader), [2])
        self.assertEqual(len(calls), 2)

    def test_load_racing_a_submit_is_not_cached(self):
        def loader():
            # the student submits while the old list is being read
            self.views.invalidate_quiz_lists(7)
            return ["stale quiz 42"]

        value = self.views.get_or_load(PENDING_QUIZZES, 7, loader)

        self.assertEqual(value, ["stale quiz 42"])
        self.assertNotIn((PENDING_QUIZZES, 7), self.views)
        self.assertEqual(self.views.get_or_load(PENDING_QUIZZES, 7, lambda: []), [])
        self.assertIn((PENDING_QUIZZES, 7), self.views)

    def test_load_racing_a_global_invalidation_is_not_cached(self):
        def loader():
            self.views.invalidate_all()
            return ["unpublished quiz"]

        self.views.get_or_load(COMPLETED_QUIZZES, 7, loader)

        self.assertNotIn((COMPLETED_QUIZZES, 7), self.views)

    def test_invalidating_one_student_keeps_others(self):
        self.views.get_or_load(PENDING_QUIZZES, 7, lambda: ["a"])
        self.views.get_or_load(PENDING_QUIZZES, 8, lambda: ["b"])

        self.views.invalidate_quiz_lists(7)

        self.assertNotIn((PENDING_QUIZZES, 7), self.views)
        self.assertIn((PENDING_QUIZZES, 8), self.views)


if __name__ == "__main__":
    unittest.main()
