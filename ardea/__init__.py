"""
Ardea - async active-record data access for SQL and document stores

Complete integration of:
- Models: Declarative fields, schema validation and coercion
- Query: Lazy, chainable, single-use query builder
- Policies: Soft delete and automatic timestamps
- Hooks: Lifecycle callbacks around every write
- Relations: belongs_to / has_one / has_many
- Indexes: Declarative index descriptors for both backends
- Adapters: SQLite (aiosqlite) and an in-memory document store
- Faults: Structured error handling with fault domains
"""

__version__ = "0.1.0"

# ============================================================================
# Models
# ============================================================================

from .models import (
    Model,
    ModelRegistry,
    QueryBuilder,
    Page,
    BulkResult,
    SoftDeleteMode,
    MISSING,
    Field,
    FieldType,
    ValidationRule,
    StringField,
    TextField,
    NumberField,
    BigIntField,
    DecimalField,
    BooleanField,
    DateField,
    TimestampField,
    ArrayField,
    ObjectField,
    JSONField,
    EnumField,
    UUIDField,
    BinaryField,
    AnyField,
    hook,
    Index,
    TextIndex,
    GeoIndex,
)

# ============================================================================
# Storage
# ============================================================================

from .adapters import StorageAdapter, AdapterCapabilities, ExecuteResult, SQLiteAdapter, MemoryDocumentAdapter
from .db import configure, register_adapter, register_provider, resolve_adapter, reset_connections, get_query_log
from .cache import CacheBackend, MemoryCache
from .config import ArdeaConfig

# ============================================================================
# Faults
# ============================================================================

from .faults import (
    Fault,
    AdapterNotConfiguredFault,
    BackendFault,
    FieldValidationFault,
    HookFault,
    IndexFault,
    ModelInitFault,
    QueryFault,
    RecordNotFoundFault,
    SoftDeleteFault,
    ValidationError,
)

__all__ = [
    "__version__",
    # Models
    "Model",
    "ModelRegistry",
    "QueryBuilder",
    "Page",
    "BulkResult",
    "SoftDeleteMode",
    "MISSING",
    "Field",
    "FieldType",
    "ValidationRule",
    "StringField",
    "TextField",
    "NumberField",
    "BigIntField",
    "DecimalField",
    "BooleanField",
    "DateField",
    "TimestampField",
    "ArrayField",
    "ObjectField",
    "JSONField",
    "EnumField",
    "UUIDField",
    "BinaryField",
    "AnyField",
    "hook",
    "Index",
    "TextIndex",
    "GeoIndex",
    # Storage
    "StorageAdapter",
    "AdapterCapabilities",
    "ExecuteResult",
    "SQLiteAdapter",
    "MemoryDocumentAdapter",
    "configure",
    "register_adapter",
    "register_provider",
    "resolve_adapter",
    "reset_connections",
    "get_query_log",
    "CacheBackend",
    "MemoryCache",
    "ArdeaConfig",
    # Faults
    "Fault",
    "AdapterNotConfiguredFault",
    "BackendFault",
    "FieldValidationFault",
    "HookFault",
    "IndexFault",
    "ModelInitFault",
    "QueryFault",
    "RecordNotFoundFault",
    "SoftDeleteFault",
    "ValidationError",
]
