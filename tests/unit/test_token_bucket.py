from __future__ import annotations

import threading

import pytest

from dynamo_pipeline.testkit import ManualClock
from dynamo_pipeline.token_bucket import TokenBucket


def test_bucket_starts_full_and_takes() -> None:
    bucket = TokenBucket("tbl", 10, now=ManualClock())

    assert bucket.peek() == 10
    assert bucket.take(4) == (True, 6)
    assert bucket.take() == (True, 5)


def test_failed_take_leaves_balance_untouched() -> None:
    bucket = TokenBucket("tbl", 10, now=ManualClock())

    assert bucket.take(11) == (False, 10)
    assert bucket.peek() == 10


def test_deficit_take_goes_negative_and_reports_wait() -> None:
    bucket = TokenBucket("tbl", 10, now=ManualClock())

    assert bucket.take(25, allow_deficit=True) == (False, -15)
    assert bucket.peek() == -15
    assert bucket.wait_seconds() == 1.5


def test_refill_keeps_unconverted_time_and_caps_at_one_second() -> None:
    clock = ManualClock()
    bucket = TokenBucket("tbl", 10, now=clock)
    bucket.take(10)

    clock.advance(0.55)
    assert bucket.peek() == 5

    # the leftover 0.05s counts toward the next token
    clock.advance(0.05)
    assert bucket.peek() == 6

    clock.advance(60)
    assert bucket.peek() == 10
    assert bucket.wait_seconds() == 0


def test_frequent_peeks_refill_in_proportion_to_elapsed_time() -> None:
    clock = ManualClock()
    bucket = TokenBucket("tbl", 4, now=clock)
    bucket.take(4)

    # each step is worth half a token
    for _ in range(6):
        clock.advance(0.125)
        bucket.peek()

    assert bucket.peek() == 3


def test_fractional_deficit_clears_after_waiting() -> None:
    clock = ManualClock()
    bucket = TokenBucket("tbl", 10, now=clock)
    bucket.take(12.5, allow_deficit=True)
    assert bucket.peek() == -2.5

    while (delay := bucket.wait_seconds()) > 0:
        assert len(clock.slept) < 10
        clock.sleep(delay)

    assert bucket.peek() == 0.5
    assert sum(clock.slept) < 0.4


def test_waiting_the_reported_time_clears_the_deficit() -> None:
    clock = ManualClock()
    bucket = TokenBucket("tbl", 4, now=clock)
    bucket.take(10, allow_deficit=True)

    clock.sleep(bucket.wait_seconds())
    assert bucket.peek() == 0
    assert clock.slept == [1.5]


@pytest.mark.parametrize("rate", [0, -1])
def test_invalid_fill_rate_raises(rate: float) -> None:
    with pytest.raises(ValueError):
        TokenBucket("tbl", rate)


def test_concurrent_takes_never_oversubscribe() -> None:
    bucket = TokenBucket("tbl", 100, now=ManualClock())
    granted: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        for _ in range(50):
            ok, _ = bucket.take(1)
            with lock:
                granted.append(ok)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert granted.count(True) == 100
    assert bucket.peek() == 0
