from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Any, Literal

from botocore.exceptions import ClientError

from .aws_errors import map_client_error
from .batch_fetcher import BatchGetFetcher, Chunk, TableKey
from .batch_writer import BatchWriter
from .conditions import (
    AttributeExists,
    AttributeNotExists,
    CompiledCondition,
    ConditionExpression,
    SortKeyCondition,
    compile_condition,
    key_condition,
)
from .config import PipelineConfig, create_dynamodb_client
from .cursor import decode_cursor
from .errors import ValidationError
from .iterator import TableIterator
from .marshal import deserialize_map, serialize_map
from .query_fetcher import QueryFetcher
from .token_bucket import TokenBucket

logger = logging.getLogger(__name__)

type Item = dict[str, Any]
type ReturnValues = Literal["NONE", "ALL_OLD", "UPDATED_OLD", "ALL_NEW", "UPDATED_NEW"]


@dataclass(frozen=True)
class KeyDefinition:
    pk: str
    sk: str | None = None

    def key_of(self, item: Mapping[str, Any]) -> Item:
        if self.pk not in item:
            raise ValidationError(f"missing partition key attribute: {self.pk}")
        key = {self.pk: item[self.pk]}
        if self.sk is not None:
            if self.sk not in item:
                raise ValidationError(f"missing sort key attribute: {self.sk}")
            key[self.sk] = item[self.sk]
        return key


def _as_key_definition(keys: KeyDefinition | tuple[str, ...] | str) -> KeyDefinition:
    if isinstance(keys, KeyDefinition):
        return keys
    if isinstance(keys, str):
        return KeyDefinition(pk=keys)
    if not 1 <= len(keys) <= 2:
        raise ValidationError("keys must name a partition key and an optional sort key")
    return KeyDefinition(*keys)


def _with_compiled(req: dict[str, Any], compiled: CompiledCondition) -> dict[str, Any]:
    if compiled.names:
        req["ExpressionAttributeNames"] = dict(compiled.names)
    if compiled.values:
        req["ExpressionAttributeValues"] = serialize_map(compiled.values)
    return req


class ScanQueryPipeline:
    def __init__(
        self,
        table_name: str,
        keys: KeyDefinition | tuple[str, ...] | str,
        index: str | None = None,
        *,
        client: Any | None = None,
        config: PipelineConfig | None = None,
        executor: Executor | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not table_name:
            raise ValidationError("table_name is required")

        self.table_name = table_name
        self.keys = _as_key_definition(keys)
        self.index = index
        self._client = client or create_dynamodb_client()
        self.config = (config or PipelineConfig()).validate()
        self._executor = executor
        self._sleep = sleep
        self._read_bucket = self._new_read_bucket()

    def _new_read_bucket(self) -> TokenBucket | None:
        limit = self.config.read_capacity_unit_limit
        if limit is None:
            return None
        return TokenBucket(self.index or self.table_name, limit)

    def with_read_buffer(self, read_buffer: int) -> ScanQueryPipeline:
        self.config = self.config.with_changes(read_buffer=read_buffer)
        return self

    def with_read_batch_size(self, read_batch_size: int) -> ScanQueryPipeline:
        self.config = self.config.with_changes(read_batch_size=read_batch_size)
        return self

    def with_read_capacity_unit_limit(self, limit: float | None) -> ScanQueryPipeline:
        self.config = self.config.with_changes(read_capacity_unit_limit=limit)
        self._read_bucket = self._new_read_bucket()
        return self

    def query(
        self,
        key_conditions: Mapping[str, Any],
        *,
        batch_size: int | None = None,
        buffer_capacity: int | None = None,
        limit: int | None = None,
        filters: ConditionExpression | None = None,
        consistent_read: bool = False,
        sort_descending: bool = False,
        cursor: str | None = None,
    ) -> TableIterator[Item, ScanQueryPipeline]:
        if self.keys.pk not in key_conditions:
            raise ValidationError(f"missing partition key condition: {self.keys.pk}")

        sort = None
        if self.keys.sk is not None and self.keys.sk in key_conditions:
            sort = key_conditions[self.keys.sk]
            if not isinstance(sort, SortKeyCondition):
                sort = SortKeyCondition.eq(sort)

        keys = key_condition(self.keys.pk, key_conditions[self.keys.pk], self.keys.sk, sort)
        req = self._base_request(consistent_read)
        req["KeyConditionExpression"] = keys.expression
        req["ScanIndexForward"] = not sort_descending

        compiled = keys
        if filters is not None:
            compiled = compile_condition(filters, keys)
            req["FilterExpression"] = compiled.expression

        return self._read("query", _with_compiled(req, compiled), batch_size, buffer_capacity, limit, cursor)

    def scan(
        self,
        *,
        batch_size: int | None = None,
        buffer_capacity: int | None = None,
        limit: int | None = None,
        filters: ConditionExpression | None = None,
        consistent_read: bool = False,
        cursor: str | None = None,
    ) -> TableIterator[Item, ScanQueryPipeline]:
        req = self._base_request(consistent_read)
        compiled = CompiledCondition()
        if filters is not None:
            compiled = compile_condition(filters)
            req["FilterExpression"] = compiled.expression

        return self._read("scan", _with_compiled(req, compiled), batch_size, buffer_capacity, limit, cursor)

    def _base_request(self, consistent_read: bool) -> dict[str, Any]:
        req: dict[str, Any] = {"TableName": self.table_name, "ConsistentRead": consistent_read}
        if self.index is not None:
            req["IndexName"] = self.index
        return req

    def _read(
        self,
        operation: Literal["query", "scan"],
        req: dict[str, Any],
        batch_size: int | None,
        buffer_capacity: int | None,
        limit: int | None,
        cursor: str | None,
    ) -> TableIterator[Item, ScanQueryPipeline]:
        next_token = self._resume_key(operation, req, cursor) if cursor else None
        fetcher = QueryFetcher(
            req,
            self._client,
            operation,
            batch_size=batch_size if batch_size is not None else self.config.read_batch_size,
            buffer_capacity=buffer_capacity if buffer_capacity is not None else self.config.read_buffer,
            limit=limit,
            token_bucket=self._read_bucket,
            next_token=next_token,
            executor=self._executor,
            sleep=self._sleep,
        )
        return TableIterator(fetcher, self)

    def _resume_key(self, operation: str, req: Mapping[str, Any], cursor: str) -> dict[str, Any]:
        try:
            decoded = decode_cursor(cursor)
        except ValueError as err:
            raise ValidationError("invalid cursor") from err

        if decoded.index != req.get("IndexName"):
            raise ValidationError("cursor index does not match")
        if operation == "query":
            sort = "ASC" if req.get("ScanIndexForward", True) else "DESC"
            if decoded.sort is not None and decoded.sort != sort:
                raise ValidationError("cursor sort does not match")
        return decoded.last_key


class Pipeline(ScanQueryPipeline):
    def __init__(
        self,
        table_name: str,
        keys: KeyDefinition | tuple[str, ...] | str,
        *,
        client: Any | None = None,
        config: PipelineConfig | None = None,
        executor: Executor | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(table_name, keys, client=client, config=config, executor=executor, sleep=sleep)
        self.unprocessed_items: list[Item] = []

    def with_write_buffer(self, write_buffer: int) -> Pipeline:
        self.config = self.config.with_changes(write_buffer=write_buffer)
        return self

    def with_write_batch_size(self, write_batch_size: int) -> Pipeline:
        self.config = self.config.with_changes(write_batch_size=write_batch_size)
        return self

    def create_index(
        self, name: str, keys: KeyDefinition | tuple[str, ...] | str
    ) -> ScanQueryPipeline:
        return ScanQueryPipeline(
            self.table_name,
            keys,
            name,
            client=self._client,
            config=self.config,
            executor=self._executor,
            sleep=self._sleep,
        )

    def get_items(
        self,
        keys: Sequence[Mapping[str, Any]],
        *,
        batch_size: int | None = None,
        buffer_capacity: int | None = None,
        consistent_read: bool = False,
    ) -> TableIterator[Item, Pipeline]:
        size = batch_size if batch_size is not None else self.config.read_batch_size
        capacity = buffer_capacity if buffer_capacity is not None else self.config.read_buffer
        if not 1 <= size <= 100:
            raise ValidationError("batch_size must be between 1 and 100")
        if capacity < 0:
            raise ValidationError("buffer_capacity must be >= 0")

        chunk = Chunk(self.table_name, tuple(self.keys.key_of(key) for key in keys))
        fetcher = BatchGetFetcher(
            self._client,
            "batch_get",
            chunk,
            batch_size=size,
            buffer_capacity=capacity,
            consistent_read=consistent_read,
            token_bucket=self._read_bucket,
            on_unprocessed_keys=self.unprocessed_items.extend,
            executor=self._executor,
            sleep=self._sleep,
        )
        return TableIterator(fetcher, self)

    def transact_get(
        self,
        keys: Sequence[Mapping[str, Any]],
        *,
        batch_size: int | None = None,
    ) -> TableIterator[Item, Pipeline]:
        """Read up to 100 items atomically.

        Entries are key maps for this table, or maps with ``table_name``,
        ``keys`` and ``key_definition`` to read from other tables.
        """
        table_keys: list[TableKey] = []
        for entry in keys:
            if "table_name" in entry and "keys" in entry:
                definition = _as_key_definition(entry.get("key_definition") or self.keys)
                table_keys.append(TableKey(entry["table_name"], definition.key_of(entry["keys"])))
            else:
                table_keys.append(TableKey(self.table_name, self.keys.key_of(entry)))

        fetcher = BatchGetFetcher(
            self._client,
            "transact_get",
            table_keys,
            batch_size=batch_size if batch_size is not None else self.config.read_batch_size,
            buffer_capacity=1,
            executor=self._executor,
            sleep=self._sleep,
        )
        return TableIterator(fetcher, self)

    def put_items(
        self,
        items: Sequence[Mapping[str, Any]],
        *,
        batch_size: int | None = None,
        buffer_capacity: int | None = None,
        disable_slow_start: bool = False,
    ) -> Pipeline:
        writer = BatchWriter(
            self._client,
            self.table_name,
            items,
            batch_size=batch_size if batch_size is not None else self.config.write_batch_size,
            buffer_capacity=buffer_capacity if buffer_capacity is not None else self.config.write_buffer,
            on_unprocessed_items=self.unprocessed_items.extend,
            disable_slow_start=disable_slow_start,
            executor=self._executor,
            sleep=self._sleep,
        )
        writer.execute()
        return self

    def put(self, item: Mapping[str, Any], condition: ConditionExpression | None = None) -> Pipeline:
        req: dict[str, Any] = {"TableName": self.table_name, "Item": serialize_map(item)}
        if condition is not None:
            compiled = compile_condition(condition)
            req["ConditionExpression"] = compiled.expression
            _with_compiled(req, compiled)

        try:
            self._client.put_item(**req)
        except ClientError as err:
            logger.error("put to %s failed: %s", self.table_name, map_client_error(err))
            self.unprocessed_items.append(dict(item))
        return self

    def put_if_not_exists(self, item: Mapping[str, Any]) -> Pipeline:
        return self.put(item, AttributeNotExists(self.keys.pk))

    def update(
        self,
        key: Mapping[str, Any],
        attributes: Mapping[str, Any],
        *,
        condition: ConditionExpression | None = None,
        return_values: ReturnValues | None = None,
    ) -> Item | None:
        if not attributes:
            raise ValidationError("attributes are required")

        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        assignments: list[str] = []
        for i, (attr, value) in enumerate(attributes.items()):
            names[f"#u{i}"] = attr
            values[f":u{i}"] = value
            assignments.append(f"#u{i} = :u{i}")

        req: dict[str, Any] = {
            "TableName": self.table_name,
            "Key": serialize_map(self.keys.key_of(key)),
            "UpdateExpression": "SET " + ", ".join(assignments),
        }
        compiled = CompiledCondition(names=names, values=values)
        if condition is not None:
            compiled = compile_condition(condition, compiled)
            req["ConditionExpression"] = compiled.expression
        _with_compiled(req, compiled)
        if return_values:
            req["ReturnValues"] = return_values

        try:
            out = self._client.update_item(**req)
        except ClientError as err:
            logger.error("update on %s failed: %s", self.table_name, map_client_error(err))
            self.unprocessed_items.append(dict(key))
            return None

        attrs = out.get("Attributes")
        return deserialize_map(attrs) if attrs else None

    def delete(
        self,
        key: Mapping[str, Any],
        *,
        condition: ConditionExpression | None = None,
        return_values: ReturnValues | None = None,
        report_error: bool = False,
    ) -> Item | None:
        compiled = compile_condition(condition or AttributeExists(self.keys.pk))
        req: dict[str, Any] = {
            "TableName": self.table_name,
            "Key": serialize_map(self.keys.key_of(key)),
            "ConditionExpression": compiled.expression,
        }
        _with_compiled(req, compiled)
        if return_values:
            req["ReturnValues"] = return_values

        try:
            out = self._client.delete_item(**req)
        except ClientError as err:
            if report_error:
                logger.error("delete on %s failed: %s", self.table_name, map_client_error(err))
                self.unprocessed_items.append(dict(key))
            return None

        attrs = out.get("Attributes")
        return deserialize_map(attrs) if attrs else None

    def handle_unprocessed(self, callback: Callable[[Item], Any]) -> Pipeline:
        for item in self.unprocessed_items:
            callback(item)
        return self
