from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from .batch_fetcher import BatchGetFetcher, Chunk, TableKey
from .batch_writer import BatchWriter
from .conditions import (
    AttributeExists,
    AttributeNotExists,
    AttributeType,
    BeginsWith,
    Between,
    Comparison,
    CompiledCondition,
    Contains,
    In,
    Logical,
    Property,
    Size,
    SortKeyCondition,
    Value,
    compile_condition,
    key_condition,
    sort_key,
)
from .config import PipelineConfig, create_boto3_config, create_dynamodb_client
from .cursor import Cursor, decode_cursor, encode_cursor
from .errors import (
    AwsError,
    ConditionFailedError,
    DynamoPipelineError,
    NotFoundError,
    TransactionCanceledError,
    ValidationError,
)
from .fetcher import AbstractFetcher
from .iterator import TableIterator
from .pipeline import KeyDefinition, Pipeline, ScanQueryPipeline
from .query_fetcher import QueryFetcher
from .token_bucket import TokenBucket

try:
    __version__ = version("dynamo-pipeline")
except PackageNotFoundError:
    __version__ = "0.0.0"


__all__ = [
    "AbstractFetcher",
    "AttributeExists",
    "AttributeNotExists",
    "AttributeType",
    "AwsError",
    "BatchGetFetcher",
    "BatchWriter",
    "BeginsWith",
    "Between",
    "Chunk",
    "Comparison",
    "CompiledCondition",
    "ConditionFailedError",
    "Contains",
    "Cursor",
    "DynamoPipelineError",
    "In",
    "KeyDefinition",
    "Logical",
    "NotFoundError",
    "Pipeline",
    "PipelineConfig",
    "Property",
    "QueryFetcher",
    "ScanQueryPipeline",
    "Size",
    "SortKeyCondition",
    "TableIterator",
    "TableKey",
    "TokenBucket",
    "TransactionCanceledError",
    "ValidationError",
    "Value",
    "compile_condition",
    "create_boto3_config",
    "create_dynamodb_client",
    "decode_cursor",
    "encode_cursor",
    "key_condition",
    "sort_key",
    "__version__",
]
