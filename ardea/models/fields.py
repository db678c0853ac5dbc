"""
Ardea Model Fields — declarative schema engine.

Fields are declared as class attributes on a model:

    class User(Model):
        table = "users"

        name = StringField(required=True, max=80)
        email = StringField(pattern=r"^[^@]+@[^@]+$")
        role = EnumField(["admin", "member"], default="member")
        tags = ArrayField(default=list)
        joined = DateField(default=utcnow)

Every field is a data descriptor over the instance's value bag. A payload
is run through ``Schema.process`` before it reaches an adapter:

1. absent value + default → default materialized (thunks are called)
2. ``set`` transform
3. coercion to the declared type (enum values are only membership-checked)
4. fail-fast validation raising ``FieldValidationFault``

Keys that are not declared pass through untouched.
"""

from __future__ import annotations

import copy
import datetime
import decimal
import json
import math
import re
from dataclasses import dataclass, fields as dc_fields, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Union

from ..faults import FieldValidationFault

__all__ = [
    "UNSET",
    "MISSING",
    "FieldType",
    "ValidationRule",
    "Field",
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
    "Schema",
    "utcnow",
    "coerce_value",
    "check_type",
    "parse_datetime",
]


# ── Sentinels ────────────────────────────────────────────────────────────────

class _Unset:
    """Sentinel for distinguishing 'not set' from None."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "<UNSET>"

    def __bool__(self):
        return False


UNSET = _Unset()


class _Missing:
    """Condition value meaning "field does not exist"."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "<MISSING>"

    def __bool__(self):
        return False


MISSING = _Missing()


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


# ── Types ────────────────────────────────────────────────────────────────────


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BIGINT = "bigint"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    TIMESTAMP = "timestamp"
    ARRAY = "array"
    OBJECT = "object"
    JSON = "json"
    ENUM = "enum"
    UUID = "uuid"
    TEXT = "text"
    BINARY = "binary"
    ANY = "any"


_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_datetime(value: Any) -> Any:
    """
    Best-effort conversion to ``datetime``.

    Numbers are epoch milliseconds. Strings must be ISO-8601. Anything
    that cannot be converted is returned unchanged.
    """
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day, tzinfo=datetime.timezone.utc)
    if _is_number(value):
        try:
            return datetime.datetime.fromtimestamp(value / 1000, tz=datetime.timezone.utc)
        except (OverflowError, OSError, ValueError):
            return value
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.datetime.fromisoformat(text)
        except ValueError:
            return value
    return value


def coerce_value(value: Any, field_type: FieldType) -> Any:
    """Convert ``value`` towards ``field_type``; unconvertible values are left as is."""
    if value is None:
        return value

    if field_type in (FieldType.STRING, FieldType.TEXT):
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return value if isinstance(value, str) else str(value)

    if field_type == FieldType.NUMBER:
        if isinstance(value, bool):
            return int(value)
        if _is_number(value):
            return value
        if isinstance(value, decimal.Decimal):
            return float(value)
        if isinstance(value, str):
            text = value.strip()
            try:
                return int(text)
            except ValueError:
                pass
            try:
                number = float(text)
            except ValueError:
                return value
            return value if math.isnan(number) else number
        return value

    if field_type == FieldType.BIGINT:
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip(), 10)
            except ValueError:
                return value
        return value

    if field_type == FieldType.DECIMAL:
        if isinstance(value, decimal.Decimal):
            return value
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float, str)):
            try:
                result = decimal.Decimal(str(value).strip())
            except decimal.InvalidOperation:
                return value
            return value if result.is_nan() else result
        return value

    if field_type == FieldType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value in ("true", "1")
        return bool(value)

    if field_type == FieldType.DATE:
        return parse_datetime(value)

    if field_type == FieldType.TIMESTAMP:
        if _is_number(value):
            return value
        converted = parse_datetime(value)
        if isinstance(converted, datetime.datetime):
            if converted.tzinfo is None:
                converted = converted.replace(tzinfo=datetime.timezone.utc)
            return int(converted.timestamp() * 1000)
        return value

    if field_type == FieldType.ARRAY:
        if isinstance(value, list):
            return value
        if isinstance(value, tuple):
            return list(value)
        return [value]

    if field_type in (FieldType.OBJECT, FieldType.JSON):
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        return value

    if field_type == FieldType.UUID:
        return str(value)

    if field_type == FieldType.BINARY:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        if isinstance(value, str):
            return value.encode("utf-8")
        return value

    # enum / any
    return value


def check_type(value: Any, field_type: FieldType) -> bool:
    if field_type in (FieldType.STRING, FieldType.TEXT):
        return isinstance(value, str)
    if field_type == FieldType.NUMBER:
        return _is_number(value) and not (isinstance(value, float) and math.isnan(value))
    if field_type == FieldType.BIGINT:
        return isinstance(value, int) and not isinstance(value, bool)
    if field_type == FieldType.DECIMAL:
        return isinstance(value, decimal.Decimal) or _is_number(value)
    if field_type == FieldType.BOOLEAN:
        return isinstance(value, bool)
    if field_type == FieldType.DATE:
        return isinstance(value, (datetime.datetime, datetime.date))
    if field_type == FieldType.TIMESTAMP:
        return _is_number(value) and value > 0
    if field_type == FieldType.ARRAY:
        return isinstance(value, list)
    if field_type == FieldType.OBJECT:
        return isinstance(value, dict)
    if field_type == FieldType.JSON:
        return isinstance(value, (dict, list))
    if field_type == FieldType.UUID:
        return isinstance(value, str) and _UUID_RE.match(value) is not None
    if field_type == FieldType.BINARY:
        return isinstance(value, (bytes, bytearray, memoryview))
    return True


# ── Validation rules ─────────────────────────────────────────────────────────


@dataclass
class ValidationRule:
    """
    Declarative checks for one field.

    ``min``/``max`` bound the length of strings and the value of numbers;
    ``length`` requires an exact string length. ``custom`` returns True,
    or False / an error message.
    """

    required: bool = False
    min: Optional[float] = None
    max: Optional[float] = None
    length: Optional[int] = None
    pattern: Optional[Union[str, "re.Pattern[str]"]] = None
    enum: Optional[Sequence[Any]] = None
    custom: Optional[Callable[[Any], Union[bool, str]]] = None
    message: Optional[str] = None

    @classmethod
    def coerce(cls, value: Any) -> Optional["ValidationRule"]:
        if value is None or isinstance(value, ValidationRule):
            return value
        if isinstance(value, dict):
            return cls(**value)
        if callable(value):
            return cls(custom=value)
        raise TypeError(f"Cannot build a ValidationRule from {type(value).__name__}")


_RULE_KEYS = {f.name for f in dc_fields(ValidationRule)}


# ── Base Field ───────────────────────────────────────────────────────────────


class Field:
    """
    Base field descriptor — every declared model field is one of these.

    Parameters:
        type      – one of ``FieldType`` (or its string value)
        default   – value or zero-arg callable used when the value is absent
        enum      – allowed values for ``enum`` fields
        validate  – ``ValidationRule`` or mapping of rule keywords
        get       – transform applied when the attribute is read
        set       – transform applied before coercion on write
        **rules   – rule keywords (``required``, ``min``, ``max`` ...) inline
    """

    field_type: FieldType = FieldType.ANY

    _creation_counter = 0

    def __init__(
        self,
        type: Union[FieldType, str, None] = None,
        *,
        default: Any = UNSET,
        enum: Optional[Sequence[Any]] = None,
        validate: Any = None,
        get: Optional[Callable[[Any], Any]] = None,
        set: Optional[Callable[[Any], Any]] = None,
        **rules: Any,
    ):
        if type is not None:
            self.field_type = FieldType(type)
        self.default = default
        self.enum = list(enum) if enum is not None else None
        unknown = [key for key in rules if key not in _RULE_KEYS]
        if unknown:
            raise TypeError(f"Unknown field option(s): {', '.join(sorted(unknown))}")
        rule = ValidationRule.coerce(validate)
        if rules:
            rule = replace(rule or ValidationRule(), **rules)
        self.rule = rule
        self.getter = get
        self.setter = set

        # Set by __set_name__ / the metaclass
        self.name: str = ""
        self.model: Any = None

        self._order = Field._creation_counter
        Field._creation_counter += 1

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.name}>"

    # ── Descriptor protocol ──────────────────────────────────────────

    def __get__(self, instance: Any, owner: type) -> Any:
        if instance is None:
            return self
        value = instance._data.get(self.name)
        if self.getter is not None and value is not None:
            return self.getter(value)
        return value

    def __set__(self, instance: Any, value: Any) -> None:
        instance._data[self.name] = value

    def __delete__(self, instance: Any) -> None:
        instance._data.pop(self.name, None)

    # ── Defaults ─────────────────────────────────────────────────────

    @property
    def required(self) -> bool:
        return bool(self.rule and self.rule.required)

    def has_default(self) -> bool:
        return self.default is not UNSET

    def get_default(self) -> Any:
        """Get default value, calling it if callable."""
        if self.default is UNSET:
            return None
        if callable(self.default):
            return self.default()
        return copy.deepcopy(self.default)

    # ── Processing ───────────────────────────────────────────────────

    def coerce(self, value: Any) -> Any:
        if self.field_type == FieldType.ENUM:
            return value
        return coerce_value(value, self.field_type)

    def clean(self, value: Any) -> Any:
        """Apply ``set`` and coercion to a present value."""
        if value is None:
            return None
        if self.setter is not None:
            value = self.setter(value)
        return self.coerce(value)

    def _fail(self, default_message: str) -> FieldValidationFault:
        message = self.rule.message if self.rule and self.rule.message else default_message
        return FieldValidationFault(self.name, message)

    def validate(self, value: Any) -> None:
        """
        Check ``value`` against this field's rules.

        Raises:
            FieldValidationFault: on the first violated rule.
        """
        rule = self.rule
        empty = value is None or value is UNSET or value == ""
        if empty:
            if rule and rule.required:
                raise self._fail(f"{self.name} is required")
            return

        if self.field_type == FieldType.ENUM:
            if self.enum is not None and value not in self.enum:
                raise self._fail(f"{self.name} must be one of: {', '.join(map(str, self.enum))}")
        elif not check_type(value, self.field_type):
            raise self._fail(f"{self.name} must be of type {self.field_type.value}")

        if rule is None:
            return

        if isinstance(value, str):
            if rule.length is not None and len(value) != rule.length:
                raise self._fail(f"{self.name} must be exactly {rule.length} characters")
            if rule.min is not None and len(value) < rule.min:
                raise self._fail(f"{self.name} must be at least {rule.min} characters")
            if rule.max is not None and len(value) > rule.max:
                raise self._fail(f"{self.name} must be at most {rule.max} characters")
        elif _is_number(value) or isinstance(value, decimal.Decimal):
            if rule.min is not None and value < rule.min:
                raise self._fail(f"{self.name} must be at least {rule.min}")
            if rule.max is not None and value > rule.max:
                raise self._fail(f"{self.name} must be at most {rule.max}")

        if rule.pattern is not None and isinstance(value, str):
            regex = re.compile(rule.pattern) if isinstance(rule.pattern, str) else rule.pattern
            if regex.search(value) is None:
                raise self._fail(f"{self.name} format is invalid")

        if rule.enum is not None and self.field_type != FieldType.ENUM and value not in rule.enum:
            raise self._fail(f"{self.name} must be one of: {', '.join(map(str, rule.enum))}")

        if rule.custom is not None:
            result = rule.custom(value)
            if result is not True:
                raise self._fail(result if isinstance(result, str) else f"{self.name} validation failed")

    # ── Storage conversion ───────────────────────────────────────────

    def to_python(self, value: Any) -> Any:
        """Convert a stored value back to its Python form."""
        if value is None:
            return None
        if self.field_type == FieldType.BOOLEAN and isinstance(value, int):
            return bool(value)
        if self.field_type == FieldType.ARRAY and isinstance(value, str):
            try:
                decoded = json.loads(value)
            except json.JSONDecodeError:
                return value
            return decoded if isinstance(decoded, list) else value
        if self.field_type in (FieldType.STRING, FieldType.TEXT, FieldType.ENUM, FieldType.ANY):
            return value
        return self.coerce(value)


# ── Shorthand fields ─────────────────────────────────────────────────────────


class StringField(Field):
    """Short string."""
    field_type = FieldType.STRING


class TextField(Field):
    """Unbounded text."""
    field_type = FieldType.TEXT


class NumberField(Field):
    """Integer or float; numeric strings are parsed."""
    field_type = FieldType.NUMBER


class BigIntField(Field):
    field_type = FieldType.BIGINT


class DecimalField(Field):
    """Exact decimal, held as ``decimal.Decimal``."""
    field_type = FieldType.DECIMAL


class BooleanField(Field):
    """Boolean; the strings ``"true"`` and ``"1"`` are true, other strings false."""
    field_type = FieldType.BOOLEAN


class DateField(Field):
    """Datetime; accepts ``date``, epoch milliseconds and ISO-8601 strings."""
    field_type = FieldType.DATE


class TimestampField(Field):
    """Epoch milliseconds."""
    field_type = FieldType.TIMESTAMP


class ArrayField(Field):
    field_type = FieldType.ARRAY


class ObjectField(Field):
    field_type = FieldType.OBJECT


class JSONField(Field):
    field_type = FieldType.JSON


class UUIDField(Field):
    field_type = FieldType.UUID


class BinaryField(Field):
    field_type = FieldType.BINARY


class AnyField(Field):
    field_type = FieldType.ANY


class EnumField(Field):
    """Membership-checked value; never coerced."""

    field_type = FieldType.ENUM

    def __init__(self, choices: Sequence[Any], **kwargs: Any):
        if isinstance(choices, type) and issubclass(choices, Enum):
            choices = [member.value for member in choices]
        super().__init__(FieldType.ENUM, enum=choices, **kwargs)


# ── Schema ───────────────────────────────────────────────────────────────────


class Schema:
    """Ordered collection of a model's declared fields."""

    def __init__(self, fields: Optional[Dict[str, Field]] = None):
        self._fields: Dict[str, Field] = dict(fields or {})

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def __getitem__(self, name: str) -> Field:
        return self._fields[name]

    def get(self, name: str) -> Optional[Field]:
        return self._fields.get(name)

    def items(self):
        return self._fields.items()

    @property
    def names(self) -> List[str]:
        return list(self._fields)

    def process(self, raw: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
        """
        Default, transform, coerce and validate ``raw``.

        With ``partial`` (updates) only the keys present in ``raw`` are
        touched and defaults are not applied.
        """
        processed: Dict[str, Any] = {}
        for name, fld in self._fields.items():
            present = name in raw
            if partial and not present:
                continue
            value = raw.get(name)
            if value is None and not partial and fld.has_default():
                value = fld.get_default()
                present = True
            value = fld.clean(value)
            fld.validate(value)
            if present:
                processed[name] = value
        for key, value in raw.items():
            if key not in processed and key not in self._fields:
                processed[key] = value
        return processed

    def validate(self, data: Dict[str, Any], partial: bool = False) -> None:
        """Validate already-processed ``data`` (fail-fast)."""
        for name, fld in self._fields.items():
            if partial and name not in data:
                continue
            fld.validate(data.get(name))

    def to_python(self, row: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(row)
        for name, value in row.items():
            fld = self._fields.get(name)
            if fld is not None:
                out[name] = fld.to_python(value)
        return out
