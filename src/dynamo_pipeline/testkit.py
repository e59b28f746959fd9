from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Executor, Future
from typing import Any

from .mocks import ANY, FakeDynamoDBClient


class ManualClock:
    """Clock for token buckets; ``sleep`` advances it instead of blocking."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.slept: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)
        self.advance(seconds)


class ImmediateExecutor(Executor):
    """Runs each submitted call on the caller's thread, in submission order."""

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future[Any]:
        future: Future[Any] = Future()
        try:
            result = fn(*args, **kwargs)
        except Exception as err:
            future.set_exception(err)
        else:
            future.set_result(result)
        return future


def no_sleep(_: float) -> None:
    return None


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "ImmediateExecutor",
    "ManualClock",
    "no_sleep",
]
