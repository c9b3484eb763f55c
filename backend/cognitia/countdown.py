import logging
import threading
from collections.abc import Callable


logger = logging.getLogger(__name__)


class Countdown:
    """Calls ``callback`` every ``interval`` seconds on a daemon thread until stopped."""

    def __init__(self, callback: Callable[[], None], interval: float = 1.0, name: str = "quiz-countdown"):
        self._callback = callback
        self._interval = interval
        self._name = name
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped.is_set()

    def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        thread = self._thread
        # stop() may be called from the callback itself
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._interval + 1)

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            try:
                self._callback()
            except Exception as exc:
                logger.error(f"Countdown tick failed: {exc}")
