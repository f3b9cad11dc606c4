"""
Typed Exception Hierarchy for the Bulkwrite Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of a bulk write must be able to tell "my input was wrong" from
"the store cannot do this" from "the retry could not be scheduled" without
parsing messages.  Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BulkWriteError:

    BulkWriteError (base)
    |
    +-- ValidationError
    |   +-- InvalidChunkSizeError
    |   +-- MixedEntityTypeError
    |   +-- InvalidDescriptorError
    |   +-- InvalidRetryBudgetError
    |   +-- PayloadTooLargeError
    |   +-- UnknownEntityTypeError
    |
    +-- StructuralError
    |   +-- UnsupportedOperationError
    |   +-- MissingExternalIdFieldError
    |   +-- ChunkLimitExceededError
    |   +-- StoreContractError
    |
    +-- PartialFailure
    +-- SchedulingFailure
    +-- DeserializationError
    +-- RetryJobNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_CHUNK_SIZE          | chunk size <= 0 or not an int
                | MIXED_ENTITY_TYPE           | batch holds more than one entity type
                | INVALID_DESCRIPTOR          | missing / malformed operation descriptor
                | INVALID_RETRY_BUDGET        | retries_left < 0 or attempt < 1
                | PAYLOAD_TOO_LARGE           | serialized payload exceeds its limit
                | UNKNOWN_ENTITY_TYPE         | type not present in the registry
----------------|-----------------------------|-----------------------------------------
Structural      | UNSUPPORTED_OPERATION       | operation kind the store cannot run
                | MISSING_EXTERNAL_ID_FIELD   | upsert field missing / not an external id
                | CHUNK_LIMIT_EXCEEDED        | chunk breaks a store hard limit
                | STORE_CONTRACT_VIOLATION    | store answered with the wrong shape
----------------|-----------------------------|-----------------------------------------
Partial failure | PARTIAL_FAILURE             | never raised; handed to error hooks
Scheduling      | SCHEDULING_FAILURE          | job row or scheduler registration failed
Deserialization | DESERIALIZATION_FAILURE     | stored payload cannot be rehydrated
Retry job       | RETRY_JOB_NOT_FOUND         | job id does not exist

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        result = processor.process(records, descriptor, policy)
    except ValidationError as e:
        reject_request(e.code, str(e))      # caller bug, never retried
    except StructuralError as e:
        alert_operator(e.code, str(e))      # configuration problem
        partial = e.partial_result          # what the other chunks did

Per-record rejections never raise: they are reported in
``ExecutionResult.failed_records``.
A chunk-level error is raised only after every other chunk has run and
retries are scheduled; the processor attaches the run's result to it as
``partial_result``.
"""


class BulkWriteError(Exception):
    """
    Base exception for all bulkwrite errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BULK_WRITE_ERROR"
    partial_result: object | None = None


# Validation exceptions


class ValidationError(BulkWriteError):
    """Bad caller input. Surfaced synchronously, never retried."""

    code: str = "VALIDATION_ERROR"


class InvalidChunkSizeError(ValidationError):
    """Chunk size must be a positive integer."""

    code: str = "INVALID_CHUNK_SIZE"

    def __init__(self, chunk_size: object):
        self.chunk_size = chunk_size
        super().__init__(
            f"Invalid chunk size {chunk_size!r}: must be a positive integer"
        )


class MixedEntityTypeError(ValidationError):
    """A batch must hold records of a single entity type."""

    code: str = "MIXED_ENTITY_TYPE"

    def __init__(self, expected: str, actual: str, index: int | None = None):
        self.expected = expected
        self.actual = actual
        self.index = index
        where = f" at position {index}" if index is not None else ""
        super().__init__(
            f"Mismatched entity type '{actual}'{where}: "
            f"batch entity type is '{expected}'"
        )


class InvalidDescriptorError(ValidationError):
    """Operation descriptor is missing or malformed."""

    code: str = "INVALID_DESCRIPTOR"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid operation descriptor: {reason}")


class InvalidRetryBudgetError(ValidationError):
    """Retry budget or attempt number out of range."""

    code: str = "INVALID_RETRY_BUDGET"

    def __init__(self, retries_left: object, attempt: object = None):
        self.retries_left = retries_left
        self.attempt = attempt
        super().__init__(
            f"Invalid retry budget: retries_left={retries_left!r}, "
            f"attempt={attempt!r} (retries_left must be >= 0, attempt >= 1)"
        )


class PayloadTooLargeError(ValidationError):
    """Serialized payload exceeds its configured limit."""

    code: str = "PAYLOAD_TOO_LARGE"

    def __init__(self, size_bytes: int, limit_bytes: int, what: str = "payload"):
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        self.what = what
        super().__init__(
            f"Serialized {what} too large: {size_bytes} bytes exceeds "
            f"the limit of {limit_bytes} bytes"
        )


class UnknownEntityTypeError(ValidationError):
    """Entity type is not registered."""

    code: str = "UNKNOWN_ENTITY_TYPE"

    def __init__(self, entity_type: str, available: tuple[str, ...] = ()):
        self.entity_type = entity_type
        self.available = available
        super().__init__(
            f"Unknown entity type '{entity_type}'. "
            f"Registered: {list(available)}"
        )


# Structural exceptions


class StructuralError(BulkWriteError):
    """The store or schema cannot support the requested operation."""

    code: str = "STRUCTURAL_ERROR"


class UnsupportedOperationError(StructuralError):
    """Operation kind is not supported."""

    code: str = "UNSUPPORTED_OPERATION"

    def __init__(self, operation: object):
        self.operation = operation
        super().__init__(f"Unsupported operation kind: {operation!r}")


class MissingExternalIdFieldError(StructuralError):
    """Upsert field does not exist or is not an external identifier."""

    code: str = "MISSING_EXTERNAL_ID_FIELD"

    def __init__(self, entity_type: str, field_name: str, reason: str):
        self.entity_type = entity_type
        self.field_name = field_name
        self.reason = reason
        super().__init__(
            f"Cannot upsert {entity_type} on '{field_name}': {reason}"
        )


class ChunkLimitExceededError(StructuralError):
    """Chunk exceeds a hard limit enforced by the store."""

    code: str = "CHUNK_LIMIT_EXCEEDED"

    def __init__(self, size: int, limit: int, unit: str = "records"):
        self.size = size
        self.limit = limit
        self.unit = unit
        super().__init__(
            f"Chunk of {size} {unit} exceeds the store limit of {limit} {unit}"
        )


class StoreContractError(StructuralError):
    """The store returned a response that breaks its contract."""

    code: str = "STORE_CONTRACT_VIOLATION"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Record store contract violated: {reason}")


# Outcome exceptions


class PartialFailure(BulkWriteError):
    """
    Some records in a chunk were rejected by the store.

    Never raised.  Built by the processor and handed to error hooks so they
    receive a typed error object alongside the failing records.
    """

    code: str = "PARTIAL_FAILURE"

    def __init__(self, chunk_index: int, failed_count: int, messages: tuple[str, ...]):
        self.chunk_index = chunk_index
        self.failed_count = failed_count
        self.messages = messages
        first = f": {messages[0]}" if messages else ""
        super().__init__(
            f"{failed_count} record(s) failed in chunk {chunk_index}{first}"
        )


class SchedulingFailure(BulkWriteError):
    """Retry job persistence or scheduler registration failed."""

    code: str = "SCHEDULING_FAILURE"

    def __init__(self, reason: str, job_id: str | None = None):
        self.reason = reason
        self.job_id = job_id
        suffix = f" (job {job_id} removed)" if job_id else ""
        super().__init__(f"Retry scheduling failed: {reason}{suffix}")


class DeserializationError(BulkWriteError):
    """Stored payload cannot be rehydrated into typed records."""

    code: str = "DESERIALIZATION_FAILURE"

    def __init__(self, entity_type: str, reason: str):
        self.entity_type = entity_type
        self.reason = reason
        super().__init__(
            f"Cannot deserialize {entity_type} records: {reason}"
        )


class RetryJobNotFoundError(BulkWriteError):
    """Retry job with given ID was not found."""

    code: str = "RETRY_JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Retry job not found: {job_id}")
