"""
Ardea Model System — async active record over SQL and document stores.

Usage:
    from ardea.models import Model, StringField, NumberField

    class Product(Model):
        table = "products"

        name = StringField(required=True)
        price = NumberField(min=0)

        class Meta:
            timestamps = True

Public API:
    - Model / ModelMeta / ModelRegistry
    - Fields: Field, StringField, NumberField, ... , Schema, ValidationRule
    - QueryBuilder, Page, BulkResult
    - Hooks: hook, HookSet
    - Indexes: Index, TextIndex, GeoIndex, IndexManager
    - Conditions: compile_sql, compile_document, SoftDeleteMode, MISSING
"""

from .base import Model, ModelMeta, ModelRegistry
from .conditions import CompiledWhere, SoftDeleteMode, compile_document, compile_sql, normalize_sort
from .fields import (
    MISSING,
    UNSET,
    AnyField,
    ArrayField,
    BigIntField,
    BinaryField,
    BooleanField,
    DateField,
    DecimalField,
    EnumField,
    Field,
    FieldType,
    JSONField,
    NumberField,
    ObjectField,
    Schema,
    StringField,
    TextField,
    TimestampField,
    UUIDField,
    ValidationRule,
)
from .hooks import HOOK_SLOTS, HookSet, hook
from .indexes import GeoIndex, Index, IndexManager, IndexSpec, TextIndex
from .options import ModelOptions
from .query import BulkResult, Page, QueryBuilder

__all__ = [
    # Core
    "Model",
    "ModelMeta",
    "ModelRegistry",
    "ModelOptions",
    # Query
    "QueryBuilder",
    "Page",
    "BulkResult",
    "SoftDeleteMode",
    "CompiledWhere",
    "compile_sql",
    "compile_document",
    "normalize_sort",
    # Fields
    "MISSING",
    "UNSET",
    "Field",
    "FieldType",
    "ValidationRule",
    "Schema",
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
    # Hooks
    "HOOK_SLOTS",
    "HookSet",
    "hook",
    # Indexes
    "Index",
    "TextIndex",
    "GeoIndex",
    "IndexSpec",
    "IndexManager",
]
