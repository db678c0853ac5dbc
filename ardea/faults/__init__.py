"""
Ardea Faults - structured error taxonomy.

Every error raised by ardea derives from ``Fault`` and carries a stable
code, a domain and retry semantics.
"""

from .core import Fault, FaultDomain, Severity
from .domains import (
    AdapterNotConfiguredFault,
    BackendFault,
    ConfigFault,
    DatabaseConnectionFault,
    FieldValidationFault,
    HookFault,
    IndexFault,
    ModelFault,
    ModelInitFault,
    QueryFault,
    RecordNotFoundFault,
    SoftDeleteFault,
    ValidationError,
)

__all__ = [
    "Fault",
    "FaultDomain",
    "Severity",
    "AdapterNotConfiguredFault",
    "BackendFault",
    "ConfigFault",
    "DatabaseConnectionFault",
    "FieldValidationFault",
    "HookFault",
    "IndexFault",
    "ModelFault",
    "ModelInitFault",
    "QueryFault",
    "RecordNotFoundFault",
    "SoftDeleteFault",
    "ValidationError",
]
