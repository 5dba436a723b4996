import threading
import time
from typing import Callable, List, Tuple

# added to the read timeout so a read cut off by the budget ends after the token has fired
READ_GRACE = 0.05


class DeadlineController:
    """
    Wall-clock budget for one request, shared by every suspension point.

    The token expires once, at or after `seconds`, and never resets. `signal`
    is set when it fires so waits can return early, and callbacks registered
    with `on_expire` run right after, which is how an in-flight read is cut off.
    Use it as a context manager so the timer thread is disarmed when the
    request is done.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        if seconds <= 0:
            raise ValueError("deadline must be positive")
        self.seconds = float(seconds)
        self._clock = clock
        self._started = clock()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self.signal = threading.Event()
        self._timer = threading.Timer(self.seconds, self._fire)
        self._timer.daemon = True
        self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            if self.signal.is_set():
                return
            self.signal.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_expire(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Run `callback` once when the deadline fires, or at once if it already has.
        Returns a function that unregisters it.
        """
        with self._lock:
            pending = not self.signal.is_set()
            if pending:
                self._callbacks.append(callback)
        if not pending:
            callback()

        def cancel() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return cancel

    def elapsed(self) -> float:
        return self._clock() - self._started

    @property
    def expired(self) -> bool:
        if not self.signal.is_set() and self.elapsed() >= self.seconds:
            self._fire()
        return self.signal.is_set()

    def remaining(self) -> float:
        if self.expired:
            return 0.0
        return max(0.0, self.seconds - self.elapsed())

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`, waking early if the deadline fires. Returns True if expired."""
        if seconds > 0 and not self.expired:
            self.signal.wait(min(seconds, self.remaining()))
        return self.expired

    def call_timeout(self, connect: float) -> Tuple[float, float]:
        # requests takes (connect, read); the read limit applies per socket read,
        # so the body itself is bounded through on_expire
        remaining = max(self.remaining(), 0.001)
        return (min(connect, remaining), remaining + READ_GRACE)

    def close(self) -> None:
        self._timer.cancel()

    def __enter__(self) -> "DeadlineController":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
