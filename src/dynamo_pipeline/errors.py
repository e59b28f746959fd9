from __future__ import annotations


class DynamoPipelineError(Exception):
    pass


class ConditionFailedError(DynamoPipelineError):
    pass


class NotFoundError(DynamoPipelineError):
    pass


class ValidationError(DynamoPipelineError):
    pass


class TransactionCanceledError(DynamoPipelineError):
    def __init__(self, *, message: str, reason_codes: tuple[str, ...]) -> None:
        super().__init__(message)
        self.reason_codes = reason_codes


class AwsError(DynamoPipelineError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
