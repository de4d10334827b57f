import heapq
import itertools
import logging
import threading
import time
from typing import Callable, List, Optional


class ScheduledCall:
    __slots__ = ('fire_at', 'seq', 'fn', 'args')

    def __init__(self, fire_at: float, seq: int, fn: Callable, args: tuple):
        self.fire_at = fire_at
        self.seq = seq
        self.fn = fn
        self.args = args

    def __lt__(self, other: 'ScheduledCall') -> bool:
        return (self.fire_at, self.seq) < (other.fire_at, other.seq)


class Scheduler:
    """Runs deferred callbacks at absolute times on a single worker.

    - Jobs are ordered by ``(fire_at, seq)`` so equal deadlines fire in the
      order they were scheduled
    - ``run_due`` also runs jobs that become due while it is running
    - The clock is injectable; tests drive a manual clock and call
      ``run_due`` instead of starting ``run_forever``
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = 0.05,
        logger: Optional[logging.Logger] = None,
    ):
        self._clock = clock
        self.poll_interval = poll_interval
        self.logger = logger or logging.getLogger(__name__)
        self._queue: List[ScheduledCall] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    def now(self) -> float:
        return self._clock()

    def call_at(self, fire_at: float, fn: Callable, *args) -> ScheduledCall:
        call = ScheduledCall(fire_at, next(self._seq), fn, args)
        with self._lock:
            heapq.heappush(self._queue, call)
        return call

    def call_later(self, delay: float, fn: Callable, *args) -> ScheduledCall:
        return self.call_at(self.now() + max(0.0, delay), fn, *args)

    def call_every(self, interval: float, fn: Callable, *args) -> None:
        """Repeat ``fn`` every ``interval`` seconds at fixed absolute times."""
        if interval <= 0:
            raise ValueError('interval must be positive')

        def _tick(fire_at: float):
            self.call_at(fire_at + interval, _tick, fire_at + interval)
            fn(*args)

        first = self.now() + interval
        self.call_at(first, _tick, first)

    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    def next_deadline(self) -> Optional[float]:
        with self._lock:
            return self._queue[0].fire_at if self._queue else None

    def _pop_due(self, now: float) -> Optional[ScheduledCall]:
        with self._lock:
            if not self._queue or self._queue[0].fire_at > now:
                return None
            return heapq.heappop(self._queue)

    def run_due(self, now: Optional[float] = None) -> int:
        """Fire every job due at ``now`` (default: the clock). Returns the count."""
        if now is None:
            now = self.now()
        fired = 0
        while True:
            call = self._pop_due(now)
            if call is None:
                return fired
            fired += 1
            try:
                call.fn(*call.args)
            except Exception:
                self.logger.exception(f"[timer-error] fn={getattr(call.fn, '__name__', call.fn)} fire_at={call.fire_at:.3f}")

    def run_forever(self, sleep: Callable[[float], None] = time.sleep) -> None:
        self.logger.info('[timer-loop] started')
        while not self._stopped.is_set():
            self.run_due()
            deadline = self.next_deadline()
            wait = self.poll_interval
            if deadline is not None:
                wait = min(wait, max(0.0, deadline - self.now()))
            sleep(wait)
        self.logger.info('[timer-loop] stopped')

    def stop(self) -> None:
        self._stopped.set()
