"""Error codes for DynamoDB service failures and their classification."""

from __future__ import annotations

from typing import Any, Mapping

from ..errors import ErrorKind, StoreError


class DynamoErrorCodes:
    """One code per DynamoDB service error name."""

    PREFIX = "convstore.dynamodb"

    CONDITIONAL_CHECK_FAILED = f"{PREFIX}.ConditionalCheckFailedException"
    TRANSACTION_CANCELED = f"{PREFIX}.TransactionCanceledException"
    TRANSACTION_CONFLICT = f"{PREFIX}.TransactionConflictException"
    TRANSACTION_IN_PROGRESS = f"{PREFIX}.TransactionInProgressException"
    PROVISIONED_THROUGHPUT_EXCEEDED = f"{PREFIX}.ProvisionedThroughputExceededException"
    REQUEST_LIMIT_EXCEEDED = f"{PREFIX}.RequestLimitExceeded"
    THROTTLING = f"{PREFIX}.ThrottlingException"
    VALIDATION = f"{PREFIX}.ValidationException"
    RESOURCE_NOT_FOUND = f"{PREFIX}.ResourceNotFoundException"
    RESOURCE_IN_USE = f"{PREFIX}.ResourceInUseException"
    ITEM_COLLECTION_SIZE_LIMIT_EXCEEDED = f"{PREFIX}.ItemCollectionSizeLimitExceededException"
    ACCESS_DENIED = f"{PREFIX}.AccessDeniedException"
    UNRECOGNIZED_CLIENT = f"{PREFIX}.UnrecognizedClientException"
    INTERNAL_SERVER_ERROR = f"{PREFIX}.InternalServerError"
    SERVICE_UNAVAILABLE = f"{PREFIX}.ServiceUnavailable"
    UNKNOWN = f"{PREFIX}.Unknown"
    TRANSPORT = f"{PREFIX}.Transport"


_KNOWN = {
    code.rsplit(".", 1)[1]: code
    for name, code in vars(DynamoErrorCodes).items()
    if name.isupper() and name != "PREFIX" and name not in ("UNKNOWN", "TRANSPORT")
}

_KIND_BY_NAME = {
    "ConditionalCheckFailedException": ErrorKind.CONFLICT,
    "TransactionCanceledException": ErrorKind.CONFLICT,
    "TransactionConflictException": ErrorKind.CONFLICT,
    "ValidationException": ErrorKind.VALIDATION,
    "ResourceNotFoundException": ErrorKind.NOT_FOUND,
}

_THROTTLING = {
    DynamoErrorCodes.PROVISIONED_THROUGHPUT_EXCEEDED,
    DynamoErrorCodes.REQUEST_LIMIT_EXCEEDED,
    DynamoErrorCodes.THROTTLING,
}

_RETRYABLE = _THROTTLING | {
    DynamoErrorCodes.INTERNAL_SERVER_ERROR,
    DynamoErrorCodes.SERVICE_UNAVAILABLE,
    DynamoErrorCodes.TRANSACTION_IN_PROGRESS,
    DynamoErrorCodes.TRANSACTION_CONFLICT,
    DynamoErrorCodes.TRANSPORT,
}


def code_for(error_name: str) -> str:
    """Map a service error name to its code, or Unknown."""
    return _KNOWN.get(error_name, DynamoErrorCodes.UNKNOWN)


def service_error(error_name: str, message: str, **details: Any) -> StoreError:
    """Build a StoreError for a named service error."""
    code = code_for(error_name)
    kind = _KIND_BY_NAME.get(error_name, ErrorKind.FAILURE)
    if code == DynamoErrorCodes.UNKNOWN:
        details.setdefault("error_name", error_name)
    return StoreError(kind, code, message or error_name, details)


def map_client_error(response: Mapping[str, Any]) -> StoreError:
    """Translate a botocore ClientError response dict into a StoreError.

    Cancellation reasons of a cancelled transaction are kept in
    details["cancellation_reasons"] as a list of reason codes.
    """
    error = response.get("Error", {}) or {}
    name = error.get("Code", "") or "Unknown"
    message = error.get("Message", "") or ""
    details: dict[str, Any] = {}

    reasons = response.get("CancellationReasons")
    if reasons is not None:
        details["cancellation_reasons"] = [r.get("Code", "None") for r in reasons]

    status = (response.get("ResponseMetadata") or {}).get("HTTPStatusCode")
    if status is not None:
        details["http_status"] = status

    return service_error(name, message, **details)


def transport_error(message: str) -> StoreError:
    return StoreError.failure(DynamoErrorCodes.TRANSPORT, message)


def is_conditional_failure(error: StoreError) -> bool:
    """True when a condition expression rejected the write.

    A cancelled transaction counts when at least one member failed its
    condition.
    """
    if error.code == DynamoErrorCodes.CONDITIONAL_CHECK_FAILED:
        return True
    if error.code == DynamoErrorCodes.TRANSACTION_CANCELED:
        reasons = error.details.get("cancellation_reasons") or []
        return "ConditionalCheckFailed" in reasons
    return False


def is_throttling(error: StoreError) -> bool:
    return error.code in _THROTTLING


def is_retryable(error: StoreError) -> bool:
    return error.code in _RETRYABLE
