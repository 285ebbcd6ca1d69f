import threading
from typing import Callable, Generic, Hashable, Optional, TypeVar

T = TypeVar("T")


class _Flight(Generic[T]):
    def __init__(self) -> None:
        self.done = threading.Event()
        self.rerun = False
        self.runs = 0
        self.result: Optional[T] = None
        self.error: Optional[BaseException] = None


class SingleFlight(Generic[T]):
    """Runs at most one call per key at a time within this process.

    A call arriving while another one for the same key is in flight does not
    start a run of its own. It flags the flight for one more run, waits, and
    receives the outcome of the final run, which therefore started after the
    caller arrived. Any number of overlapping callers collapse into at most
    one extra run.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._flights: dict[Hashable, _Flight[T]] = {}

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._flights

    def run(self, key: Hashable, fn: Callable[[], T]) -> T:
        with self._lock:
            flight = self._flights.get(key)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._flights[key] = flight
            else:
                flight.rerun = True

        if not leader:
            flight.done.wait()
            return self._outcome(flight)

        try:
            while True:
                flight.runs += 1
                try:
                    flight.result = fn()
                    flight.error = None
                except Exception as exc:
                    flight.result = None
                    flight.error = exc
                with self._lock:
                    if not flight.rerun:
                        del self._flights[key]
                        break
                    flight.rerun = False
        except BaseException:
            with self._lock:
                self._flights.pop(key, None)
            raise
        finally:
            flight.done.set()
        return self._outcome(flight)

    @staticmethod
    def _outcome(flight: _Flight[T]) -> T:
        if flight.error is not None:
            raise flight.error
        return flight.result  # type: ignore[return-value]
