import threading
import unittest

from backend.cognitia.countdown import Countdown


class CountdownTests(unittest.TestCase):
    def test_ticks_until_stopped(self):
        ticked = threading.Event()
        calls = []

        def callback():
            calls.append(1)
            if len(calls) >= 3:
                ticked.set()

        countdown = Countdown(callback, interval=0.01)
        countdown.start()
        self.assertTrue(ticked.wait(2))
        countdown.stop()

        self.assertFalse(countdown.running)
        stopped_at = len(calls)
        threading.Event().wait(0.05)
        self.assertEqual(len(calls), stopped_at)

    def test_start_twice_keeps_one_thread(self):
        countdown = Countdown(lambda: None, interval=0.01, name="single-countdown")
        countdown.start()
        countdown.start()

        names = [thread.name for thread in threading.enumerate()]
        countdown.stop()

        self.assertEqual(names.count("single-countdown"), 1)

    def test_callback_errors_do_not_stop_the_countdown(self):
        ticked = threading.Event()
        calls = []

        def callback():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            ticked.set()

        countdown = Countdown(callback, interval=0.01)
        with self.assertLogs("backend.cognitia.countdown", level="ERROR") as logs:
            countdown.start()
            self.assertTrue(ticked.wait(2))
            countdown.stop()

        self.assertGreaterEqual(len(calls), 2)
        self.assertIn("Countdown tick failed: boom", logs.output[0])

    def test_stop_from_callback_does_not_deadlock(self):
        done = threading.Event()
        holder = {}

        def callback():
            holder["countdown"].stop()
            done.set()

        countdown = Countdown(callback, interval=0.01)
        holder["countdown"] = countdown
        countdown.start()

        self.assertTrue(done.wait(2))
        self.assertFalse(countdown.running)

    def test_stop_without_start_is_safe(self):
        countdown = Countdown(lambda: None)
        countdown.stop()
        countdown.stop()

        self.assertFalse(countdown.running)


if __name__ == "__main__":
    unittest.main()
