import threading
from typing import Callable


class ThreadingScheduler:
    """Run callbacks after a delay on daemon timer threads.

    ``call_later`` returns an object with a ``cancel()`` method; test doubles
    only need to honour that contract.
    """

    def __init__(self, thread_name: str = "narration-watchdog"):
        self.thread_name = thread_name

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay_seconds, callback)
        timer.name = self.thread_name
        timer.daemon = True
        timer.start()
        return timer
