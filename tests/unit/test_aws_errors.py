from __future__ import annotations

from botocore.exceptions import ClientError

from dynamo_pipeline import (
    AwsError,
    ConditionFailedError,
    DynamoPipelineError,
    NotFoundError,
    TransactionCanceledError,
    ValidationError,
)
from dynamo_pipeline.aws_errors import map_client_error, map_transaction_error


def _err(code: str, message: str = "msg", **extra: object) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}, **extra}, "Op")


def test_known_codes_map_to_library_errors() -> None:
    assert isinstance(map_client_error(_err("ConditionalCheckFailedException")), ConditionFailedError)
    assert isinstance(map_client_error(_err("ValidationException")), ValidationError)
    assert isinstance(map_client_error(_err("ResourceNotFoundException")), NotFoundError)


def test_other_codes_keep_code_and_message() -> None:
    err = map_client_error(_err("ThrottlingException", "slow"))
    assert isinstance(err, AwsError)
    assert isinstance(err, DynamoPipelineError)
    assert err.code == "ThrottlingException"
    assert err.message == "slow"


def test_transaction_cancellation_keeps_reason_codes() -> None:
    err = map_transaction_error(
        _err(
            "TransactionCanceledException",
            CancellationReasons=[{"Code": "None"}, {"Code": "ConditionalCheckFailed"}],
        )
    )
    assert isinstance(err, TransactionCanceledError)
    assert err.reason_codes == ("ConditionalCheckFailed",)


def test_transaction_mapper_falls_back_to_client_mapping() -> None:
    assert isinstance(map_transaction_error(_err("ResourceNotFoundException")), NotFoundError)
