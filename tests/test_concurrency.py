import threading
import time

import pytest

from concurrency import SingleFlight


def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.005)


def _start(target) -> threading.Thread:
    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    return thread


def test_overlapping_calls_collapse_into_one_trailing_run() -> None:
    flights: SingleFlight[int] = SingleFlight()
    release = threading.Event()
    calls: list[int] = []
    results: list[int] = []

    def work() -> int:
        calls.append(len(calls) + 1)
        if len(calls) == 1:
            release.wait(2)
        return len(calls)

    threads = [_start(lambda: results.append(flights.run("u1", work)))]
    _wait_for(lambda: len(calls) == 1)
    threads += [_start(lambda: results.append(flights.run("u1", work))) for _ in range(3)]
    _wait_for(lambda: flights._flights["u1"].rerun)
    time.sleep(0.1)
    release.set()
    for thread in threads:
        thread.join(2)

    assert len(calls) == 2
    assert results == [2, 2, 2, 2]
    assert not flights.in_flight("u1")


def test_followers_receive_the_error() -> None:
    flights: SingleFlight[int] = SingleFlight()
    release = threading.Event()
    errors: list[BaseException] = []

    def work() -> int:
        release.wait(2)
        raise RuntimeError("store down")

    def call() -> None:
        try:
            flights.run("u1", work)
        except RuntimeError as exc:
            errors.append(exc)

    leader = _start(call)
    _wait_for(lambda: flights.in_flight("u1"))
    follower = _start(call)
    _wait_for(lambda: flights._flights["u1"].rerun)
    release.set()
    leader.join(2)
    follower.join(2)

    assert [str(exc) for exc in errors] == ["store down", "store down"]
    assert not flights.in_flight("u1")


def test_distinct_keys_do_not_wait_for_each_other() -> None:
    flights: SingleFlight[str] = SingleFlight()
    release = threading.Event()

    leader = _start(lambda: flights.run("u1", lambda: release.wait(2) and "u1"))
    _wait_for(lambda: flights.in_flight("u1"))

    assert flights.run("u2", lambda: "u2") == "u2"
    assert flights.in_flight("u1")
    release.set()
    leader.join(2)


def test_sequential_calls_each_run() -> None:
    flights: SingleFlight[int] = SingleFlight()
    counter = iter(range(1, 10))
    assert flights.run("u1", lambda: next(counter)) == 1
    assert flights.run("u1", lambda: next(counter)) == 2
    with pytest.raises(ZeroDivisionError):
        flights.run("u1", lambda: 1 // 0)
    assert not flights.in_flight("u1")
