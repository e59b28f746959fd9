from __future__ import annotations

from collections.abc import Callable, Iterator
from concurrent import futures
from concurrent.futures import Future
from typing import Any, Protocol

type Cancel = Callable[[], None]


class Executable[T](Protocol):
    def execute(self) -> Iterator[list[T]]: ...


def _close(strides: Iterator[Any]) -> None:
    close = getattr(strides, "close", None)
    if close is not None:
        close()


class _Mapped[T, U]:
    def __init__(self, source: Executable[T], fn: Callable[[T, int], U]) -> None:
        self._source = source
        self._fn = fn

    def execute(self) -> Iterator[list[U]]:
        index = 0
        strides = self._source.execute()
        try:
            for stride in strides:
                mapped: list[U] = []
                for item in stride:
                    mapped.append(self._fn(item, index))
                    index += 1
                yield mapped
        finally:
            _close(strides)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._source, name)


class _Filtered[T]:
    def __init__(self, source: Executable[T], predicate: Callable[[T, int], bool]) -> None:
        self._source = source
        self._predicate = predicate

    def execute(self) -> Iterator[list[T]]:
        index = 0
        strides = self._source.execute()
        try:
            for stride in strides:
                kept: list[T] = []
                for item in stride:
                    if self._predicate(item, index):
                        kept.append(item)
                    index += 1
                if kept:
                    yield kept
        finally:
            _close(strides)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._source, name)


class TableIterator[T, P]:
    """Consumer-facing view over a fetcher's stream of batches.

    Visitors receive a ``cancel`` callable; calling it stops iteration after
    the current item (``for_each``) or stride (``for_each_stride``). The
    underlying generator is closed on every exit path, which lets requests
    already in flight complete before its thread pool shuts down.
    """

    def __init__(self, fetcher: Executable[T], parent: P | None = None) -> None:
        self._fetcher = fetcher
        self._parent = parent

    def for_each_stride(self, fn: Callable[[list[T], int, P | None, Cancel], Any]) -> P | None:
        cancelled = False

        def cancel() -> None:
            nonlocal cancelled
            cancelled = True

        strides = self._fetcher.execute()
        try:
            for index, stride in enumerate(strides):
                fn(stride, index, self._parent, cancel)
                if cancelled:
                    break
        finally:
            _close(strides)
        return self._parent

    def for_each(self, fn: Callable[[T, int, P | None, Cancel], Any]) -> P | None:
        """Visit every item; futures returned by ``fn`` are awaited at the end of each stride."""
        cancelled = False
        index = 0

        def cancel() -> None:
            nonlocal cancelled
            cancelled = True

        strides = self._fetcher.execute()
        try:
            for stride in strides:
                pending: list[Future[Any]] = []
                for item in stride:
                    out = fn(item, index, self._parent, cancel)
                    index += 1
                    if isinstance(out, Future):
                        pending.append(out)
                    if cancelled:
                        break
                if pending:
                    for done in futures.as_completed(pending):
                        done.result()
                if cancelled:
                    break
        finally:
            _close(strides)
        return self._parent

    def map[U](self, fn: Callable[[T, int], U]) -> list[U]:
        return [item for stride in _Mapped(self._fetcher, fn).execute() for item in stride]

    def map_lazy[U](self, fn: Callable[[T, int], U]) -> TableIterator[U, P]:
        return TableIterator(_Mapped(self._fetcher, fn), self._parent)

    def filter_lazy(self, predicate: Callable[[T, int], bool]) -> TableIterator[T, P]:
        return TableIterator(_Filtered(self._fetcher, predicate), self._parent)

    def all(self) -> list[T]:
        return [item for stride in self.stride_iterator() for item in stride]

    def iterator(self) -> Iterator[T]:
        strides = self.stride_iterator()
        try:
            for stride in strides:
                yield from stride
        finally:
            _close(strides)

    def stride_iterator(self) -> Iterator[list[T]]:
        strides = self._fetcher.execute()
        try:
            yield from strides
        finally:
            _close(strides)

    def __iter__(self) -> Iterator[T]:
        return self.iterator()

    @property
    def last_evaluated_key(self) -> dict[str, Any] | None:
        return getattr(self._fetcher, "last_evaluated_key", None)

    @property
    def next_cursor(self) -> str:
        return getattr(self._fetcher, "next_cursor", "")
