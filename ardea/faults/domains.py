"""
Ardea Faults - Domain-specific fault types.

Provides concrete fault classes for:
- CONFIG faults
- MODEL faults (descriptor, schema, query misuse, hooks)
- IO faults (storage backend failures)
"""

from typing import Any, Optional
from .core import Fault, FaultDomain, Severity


# ============================================================================
# CONFIG Faults
# ============================================================================

class ConfigFault(Fault):
    """Configuration could not be loaded or applied."""

    def __init__(self, key: str, reason: str, **kwargs):
        super().__init__(
            code="CONFIG_INVALID",
            message=f"Invalid configuration '{key}': {reason}",
            domain=FaultDomain.CONFIG,
            severity=Severity.FATAL,
            retryable=False,
            metadata={"key": key, "reason": reason, **kwargs.get("metadata", {})},
        )


# ============================================================================
# MODEL Faults
# ============================================================================

class ModelFault(Fault):
    """Base class for model faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        retryable: bool = False,
        public: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.MODEL,
            severity=severity,
            retryable=retryable,
            public=public,
            metadata=metadata,
        )


class AdapterNotConfiguredFault(ModelFault):
    """Model has no storage adapter and none could be resolved."""

    def __init__(self, model: str, **kwargs):
        super().__init__(
            code="ADAPTER_NOT_CONFIGURED",
            message=f"No storage adapter configured for model '{model}'",
            severity=Severity.FATAL,
            metadata={"model": model, **kwargs.get("metadata", {})},
        )


class ModelInitFault(ModelFault):
    """Lazy model initialization failed."""

    def __init__(self, model: str, reason: str, **kwargs):
        super().__init__(
            code="MODEL_INIT_FAILED",
            message=f"Failed to initialize model {model}: {reason}",
            severity=Severity.FATAL,
            metadata={"model": model, "reason": reason, **kwargs.get("metadata", {})},
        )


class FieldValidationFault(ModelFault):
    """A field value violated its declared rules."""

    def __init__(self, field: str, reason: str, **kwargs):
        self.field = field
        self.reason = reason
        super().__init__(
            code="VALIDATION_FAILED",
            message=f'Validation failed for field "{field}": {reason}',
            severity=Severity.WARN,
            public=True,
            metadata={"field": field, "reason": reason, **kwargs.get("metadata", {})},
        )


ValidationError = FieldValidationFault


class QueryFault(ModelFault):
    """Query builder or condition misuse."""

    def __init__(self, model: str, operation: str, reason: str, **kwargs):
        super().__init__(
            code="QUERY_INVALID",
            message=f"Query on '{model}' ({operation}) failed: {reason}",
            metadata={"model": model, "operation": operation, "reason": reason, **kwargs.get("metadata", {})},
        )


class SoftDeleteFault(ModelFault):
    """Soft-delete operation requested on a model without soft delete."""

    def __init__(self, model: str, operation: str, **kwargs):
        super().__init__(
            code="SOFT_DELETE_DISABLED",
            message=f"Soft delete is not enabled for model '{model}' ({operation})",
            metadata={"model": model, "operation": operation, **kwargs.get("metadata", {})},
        )


class IndexFault(ModelFault):
    """Index creation or removal failed."""

    def __init__(self, reason: str, *, action: str = "create", **kwargs):
        super().__init__(
            code="INDEX_FAILED",
            message=f"Failed to {action} index: {reason}",
            metadata={"action": action, "reason": reason, **kwargs.get("metadata", {})},
        )


class HookFault(ModelFault):
    """An after-hook failed once the write had already been committed."""

    def __init__(self, slot: str, reason: str, *, instance: Any = None, **kwargs):
        self.slot = slot
        self.instance = instance
        super().__init__(
            code="HOOK_FAILED",
            message=f"Hook '{slot}' failed after write: {reason}",
            metadata={"slot": slot, "reason": reason, **kwargs.get("metadata", {})},
        )


class RecordNotFoundFault(ModelFault):
    """An instance-level operation targeted a record that no longer exists."""

    def __init__(self, model: str, pk: Any, **kwargs):
        super().__init__(
            code="RECORD_NOT_FOUND",
            message=f"Record {pk!r} of '{model}' not found",
            public=True,
            metadata={"model": model, "pk": pk, **kwargs.get("metadata", {})},
        )


# ============================================================================
# IO Faults
# ============================================================================

class BackendFault(Fault):
    """A storage adapter round trip failed."""

    def __init__(self, backend: str, operation: str, reason: str, **kwargs):
        self.backend = backend
        self.operation = operation
        super().__init__(
            code="BACKEND_ERROR",
            message=f"{backend} {operation} error: {reason}",
            domain=FaultDomain.IO,
            retryable=True,
            metadata={"backend": backend, "operation": operation, "reason": reason, **kwargs.get("metadata", {})},
        )


class DatabaseConnectionFault(Fault):
    """Storage adapter could not connect."""

    def __init__(self, url: str, reason: str, **kwargs):
        super().__init__(
            code="DB_CONNECTION_FAILED",
            message=f"Database connection failed ({url}): {reason}",
            domain=FaultDomain.IO,
            severity=Severity.FATAL,
            retryable=True,
            metadata={"url": url, "reason": reason, **kwargs.get("metadata", {})},
        )
