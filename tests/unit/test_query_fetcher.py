from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from botocore.exceptions import ClientError

from dynamo_pipeline import AwsError, QueryFetcher, TokenBucket, ValidationError
from dynamo_pipeline.cursor import decode_cursor
from dynamo_pipeline.mocks import FakeDynamoDBClient
from dynamo_pipeline.testkit import ImmediateExecutor, ManualClock, no_sleep


class _PagedTable:
    """Serves ``total`` items keyed by ``id``, honouring Limit and ExclusiveStartKey."""

    def __init__(
        self,
        total: int,
        *,
        matches: Callable[[int], bool] = lambda _: True,
        consumed: float | None = None,
    ) -> None:
        self.total = total
        self.requests: list[dict[str, Any]] = []
        self.fetched = 0
        self._matches = matches
        self._consumed = consumed

    def query(self, **req: Any) -> dict[str, Any]:
        return self._page(req)

    def scan(self, **req: Any) -> dict[str, Any]:
        return self._page(req)

    def _page(self, req: dict[str, Any]) -> dict[str, Any]:
        self.requests.append(req)
        start = int(req["ExclusiveStartKey"]["id"]["N"]) + 1 if "ExclusiveStartKey" in req else 0
        end = min(start + req["Limit"], self.total)

        items = [{"id": {"N": str(i)}} for i in range(start, end) if self._matches(i)]
        self.fetched += len(items)

        out: dict[str, Any] = {"Items": items}
        if end < self.total:
            out["LastEvaluatedKey"] = {"id": {"N": str(end - 1)}}
        if self._consumed is not None:
            out["ConsumedCapacity"] = {"TableName": "tbl", "CapacityUnits": self._consumed}
        return out


def _fetcher(client: Any, operation: str = "query", **kwargs: Any) -> QueryFetcher:
    kwargs.setdefault("batch_size", 100)
    kwargs.setdefault("buffer_capacity", 1)
    kwargs.setdefault("executor", ImmediateExecutor())
    return QueryFetcher({"TableName": "tbl"}, client, operation, **kwargs)  # type: ignore[arg-type]


def _ids(batches: list[list[dict[str, Any]]]) -> list[int]:
    return [int(item["id"]) for batch in batches for item in batch]


def test_query_delivers_every_item_once_in_order() -> None:
    table = _PagedTable(250)
    batches = list(_fetcher(table).execute())

    assert _ids(batches) == list(range(250))
    assert [len(b) for b in batches] == [100, 100, 50]
    assert [r["Limit"] for r in table.requests] == [100, 100, 100]
    assert "ExclusiveStartKey" not in table.requests[0]
    assert table.requests[1]["ExclusiveStartKey"] == {"id": {"N": "99"}}


def test_query_on_worker_threads_delivers_every_item() -> None:
    table = _PagedTable(1000)
    fetcher = QueryFetcher({"TableName": "tbl"}, table, "query", batch_size=30, buffer_capacity=2)

    assert _ids(list(fetcher.execute())) == list(range(1000))
    assert fetcher._executor is None


def test_limit_stops_at_limit_and_resumes_from_last_key() -> None:
    table = _PagedTable(250)
    fetcher = _fetcher(table, limit=150)
    first = list(fetcher.execute())

    assert _ids(first) == list(range(150))
    assert [r["Limit"] for r in table.requests] == [100, 50]
    assert fetcher.last_evaluated_key == {"id": {"N": "149"}}

    resumed = _fetcher(table, next_token=fetcher.last_evaluated_key)
    assert _ids(list(resumed.execute())) == list(range(150, 250))
    assert table.requests[2]["ExclusiveStartKey"] == {"id": {"N": "149"}}


def test_execute_returns_last_key_as_generator_value() -> None:
    gen = _fetcher(_PagedTable(50), limit=5).execute()
    assert len(next(gen)) == 5

    with pytest.raises(StopIteration) as stop:
        next(gen)
    assert stop.value.value == {"id": {"N": "4"}}


def test_limit_reached_with_table_exhausted_leaves_no_last_key() -> None:
    fetcher = _fetcher(_PagedTable(10), limit=10)
    assert len(_ids(list(fetcher.execute()))) == 10
    assert fetcher.last_evaluated_key is None
    assert fetcher.next_cursor == ""


def test_next_cursor_encodes_last_key_with_sort_order() -> None:
    fetcher = QueryFetcher(
        {"TableName": "tbl", "IndexName": "by-id", "ScanIndexForward": False},
        _PagedTable(50),
        "query",
        batch_size=10,
        buffer_capacity=1,
        limit=10,
        executor=ImmediateExecutor(),
    )
    list(fetcher.execute())

    decoded = decode_cursor(fetcher.next_cursor)
    assert decoded.last_key == {"id": {"N": "9"}}
    assert decoded.index == "by-id"
    assert decoded.sort == "DESC"

    scan = _fetcher(_PagedTable(50), "scan", limit=10)
    list(scan.execute())
    assert decode_cursor(scan.next_cursor).sort is None


def test_lookahead_never_buffers_more_than_capacity_plus_one_batch() -> None:
    table = _PagedTable(100)
    peak = 0
    delivered = 0
    original = table._page

    def observed(req: dict[str, Any]) -> dict[str, Any]:
        nonlocal peak
        out = original(req)
        peak = max(peak, table.fetched - delivered)
        return out

    table._page = observed  # type: ignore[method-assign]

    for batch in _fetcher(table, batch_size=10, buffer_capacity=1).execute():
        delivered += len(batch)

    assert delivered == 100
    assert peak <= 1 * 10 + 10


def test_mostly_filtered_scan_terminates_with_all_matches() -> None:
    table = _PagedTable(1000, matches=lambda i: i % 10 == 0)
    batches = list(_fetcher(table, "scan").execute())

    assert _ids(batches) == list(range(0, 1000, 10))
    assert len(table.requests) == 10
    assert all(batches)


def test_empty_pages_are_skipped() -> None:
    table = _PagedTable(300, matches=lambda i: i >= 250)
    batches = list(_fetcher(table, "scan").execute())

    assert [len(b) for b in batches] == [50]
    assert len(table.requests) == 3


def test_token_bucket_deficit_delays_the_next_call() -> None:
    clock = ManualClock()
    bucket = TokenBucket("tbl", 10, now=clock)
    table = _PagedTable(30, consumed=25)

    batches = list(_fetcher(table, batch_size=10, token_bucket=bucket, sleep=clock.sleep).execute())

    assert _ids(batches) == list(range(30))
    assert clock.slept == [1.5, 2.5]
    assert all(r["ReturnConsumedCapacity"] == "TOTAL" for r in table.requests)


def test_fractional_consumed_capacity_does_not_stall_reads() -> None:
    clock = ManualClock()
    bucket = TokenBucket("tbl", 10, now=clock)
    table = _PagedTable(30, consumed=12.5)

    def bounded_sleep(seconds: float) -> None:
        assert len(clock.slept) < 20, f"reads stalled after sleeping {clock.slept}"
        clock.sleep(seconds)

    batches = list(_fetcher(table, batch_size=10, token_bucket=bucket, sleep=bounded_sleep).execute())

    assert _ids(batches) == list(range(30))
    assert len(table.requests) == 3
    # two deficits of 2.5 and 12 units at 10 units per second, plus sub-token rounding
    assert 1.45 <= sum(clock.slept) < 1.7


def test_store_error_is_raised_after_earlier_batches() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {"TableName": "tbl", "Limit": 2},
        response={
            "Items": [{"id": {"N": "1"}}, {"id": {"N": "2"}}],
            "LastEvaluatedKey": {"id": {"N": "2"}},
        },
    )
    client.expect(
        "query",
        {"ExclusiveStartKey": {"id": {"N": "2"}}},
        error=ClientError(
            {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}},
            "Query",
        ),
    )

    gen = _fetcher(client, batch_size=2).execute()
    assert _ids([next(gen)]) == [1, 2]
    with pytest.raises(AwsError) as err:
        next(gen)
    assert err.value.code == "ProvisionedThroughputExceededException"
    client.assert_no_pending()


def test_closing_early_settles_requests_and_shuts_down_pool() -> None:
    fetcher = QueryFetcher(
        {"TableName": "tbl"}, _PagedTable(10_000), "query", batch_size=10, buffer_capacity=3, sleep=no_sleep
    )
    gen = fetcher.execute()
    assert len(next(gen)) == 10
    gen.close()

    assert not fetcher.is_active()
    assert fetcher._executor is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"batch_size": 0, "buffer_capacity": 1},
        {"batch_size": 10, "buffer_capacity": -1},
        {"batch_size": 10, "buffer_capacity": 1, "limit": 0},
    ],
)
def test_invalid_configuration_raises(kwargs: dict[str, Any]) -> None:
    with pytest.raises(ValidationError):
        QueryFetcher({"TableName": "tbl"}, object(), "query", **kwargs)


def test_unknown_operation_raises() -> None:
    with pytest.raises(ValidationError):
        QueryFetcher({"TableName": "tbl"}, object(), "get", batch_size=1, buffer_capacity=1)  # type: ignore[arg-type]
