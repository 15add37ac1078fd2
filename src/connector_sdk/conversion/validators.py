"""
Canonical field descriptors → pydantic validators.

:func:`database_field_to_validator` returns an ``(annotation, FieldInfo)`` pair
ready for :func:`pydantic.create_model`; :func:`build_model` assembles such
pairs into a model for a table, collection or resource. The same descriptor is
projected differently depending on ``mode``:

``full``
    Shape of a record read back from the backend.
``insert``
    Fields with defaults or nullability may be omitted.
``update``
    Every field may be omitted (partial update); nullability still applies.
"""

from __future__ import annotations

import keyword
import re
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Annotated, Any, Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Tuple, Type, Union
from uuid import UUID

from pydantic import (
    AliasChoices,
    AnyUrl,
    AwareDatetime,
    Base64Bytes,
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    create_model,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.fields import FieldInfo

from ..core.errors import ValidationError
from ..core.schema import ColumnDefinition, DatabaseType, DocumentFieldDefinition, RESTFieldDefinition
from .config import DEFAULT_CONVERSION_CONFIG, TypeConversionConfig

FieldLike = Union[ColumnDefinition, DocumentFieldDefinition, RESTFieldDefinition]

MODES = ("full", "insert", "update")

CURRENCY_PATTERN = r"^\d+(\.\d{2})?$"
DECIMAL_PATTERN = r"^-?\d+(\.\d+)?$"
BIGINT_PATTERN = r"^-?\d+$"

_Number = Union[StrictInt, StrictFloat]
_Latitude = Annotated[float, Field(ge=-90, le=90)]
_Longitude = Annotated[float, Field(ge=-180, le=180)]


class GeoPoint(BaseModel):
    """Geographic coordinate accepted for ``GEOPOINT`` fields."""

    model_config = ConfigDict(populate_by_name=True)

    latitude: _Latitude = Field(validation_alias=AliasChoices("latitude", "lat", "_latitude"))
    longitude: _Longitude = Field(validation_alias=AliasChoices("longitude", "lng", "_longitude"))


class AttachmentObject(BaseModel):
    url: str
    filename: Optional[str] = None
    size: Optional[int] = None
    mime_type: Optional[str] = None


_NUMERIC_TYPES = {DatabaseType.INTEGER, DatabaseType.SERIAL, DatabaseType.BIGINT, DatabaseType.BIGSERIAL}
_TEMPORAL_TYPES = {DatabaseType.DATE, DatabaseType.TIME, DatabaseType.TIMESTAMP, DatabaseType.TIMESTAMPTZ}
_RESERVED_NAMES = frozenset(dir(BaseModel))


def _enum_values(field: FieldLike) -> Optional[Tuple[str, ...]]:
    values = getattr(field, "enum_values", None)
    if values:
        return tuple(str(value) for value in values)
    return None


def _custom_override(field: FieldLike, config: TypeConversionConfig) -> Optional[Any]:
    mapping = config.custom_type_mapping
    if not mapping:
        return None
    original = getattr(field, "original_type", None)
    if original and original in mapping:
        return mapping[original]
    return mapping.get(field.type.value)


def _temporal_type(kind: DatabaseType, config: TypeConversionConfig) -> Any:
    if config.datetime_format == "epoch":
        return _Number
    strict = config.datetime_format == "native"
    if kind is DatabaseType.DATE:
        base: Any = date
    elif kind is DatabaseType.TIME:
        base = time
    elif kind is DatabaseType.TIMESTAMPTZ and config.timezone_handling == "utc":
        base = AwareDatetime
    else:
        base = datetime
    if strict:
        return Annotated[base, Field(strict=True)]
    return base


def _decimal_type(field: FieldLike, config: TypeConversionConfig) -> Any:
    precision = getattr(field, "precision", None)
    scale = getattr(field, "scale", None)
    if config.decimal_handling == "string":
        return Annotated[StrictStr, Field(pattern=DECIMAL_PATTERN)]
    if config.decimal_handling == "decimal":
        return Annotated[Decimal, Field(max_digits=precision, decimal_places=scale)]
    if precision and precision > 15 and config.precision_loss == "error":
        raise ValidationError(
            f"Decimal field '{field.name}' with precision {precision} cannot be represented as a float without precision loss",
            field=field.name,
        )
    return _Number


def _text_type(field: FieldLike) -> Any:
    constraints: Dict[str, Any] = {}
    max_length = getattr(field, "max_length", None)
    if max_length:
        constraints["max_length"] = max_length
    pattern = getattr(field, "pattern", None)
    if pattern:
        constraints["pattern"] = pattern
    if constraints:
        return Annotated[StrictStr, Field(**constraints)]
    return StrictStr


def _select_type(field: FieldLike, config: TypeConversionConfig) -> Any:
    values = _enum_values(field)
    if values and config.enum_validation == "strict":
        return Literal[values]  # type: ignore[valid-type]
    return StrictStr


def _array_element(field: FieldLike, config: TypeConversionConfig, depth: int) -> Any:
    element = getattr(field, "array_element_type", None)
    if element is None or config.array_type_inference != "strict":
        return Any
    probe = DocumentFieldDefinition(name=f"{field.name}_item", type=element, nullable=False)
    return field_base_type(probe, config, depth=depth + 1)


def field_base_type(field: FieldLike, config: TypeConversionConfig = DEFAULT_CONVERSION_CONFIG, *, depth: int = 0) -> Any:
    """Return the non-optional annotation for ``field`` under ``config``."""

    override = _custom_override(field, config)
    if override is not None:
        return override

    kind = field.type
    if kind in (DatabaseType.INTEGER, DatabaseType.SERIAL):
        return StrictInt
    if kind in (DatabaseType.BIGINT, DatabaseType.BIGSERIAL):
        if config.bigint_handling == "string":
            return Annotated[StrictStr, Field(pattern=BIGINT_PATTERN)]
        if config.bigint_handling == "bigint":
            return Union[StrictInt, Annotated[StrictStr, Field(pattern=BIGINT_PATTERN)]]
        return StrictInt
    if kind in (DatabaseType.DECIMAL, DatabaseType.NUMERIC):
        return _decimal_type(field, config)
    if kind in (DatabaseType.REAL, DatabaseType.DOUBLE, DatabaseType.FLOAT):
        return _Number
    if kind in (DatabaseType.TEXT, DatabaseType.VARCHAR, DatabaseType.CHAR):
        return _text_type(field)
    if kind is DatabaseType.UUID:
        return UUID
    if kind is DatabaseType.URL:
        return AnyUrl if config.url_validation else StrictStr
    if kind in _TEMPORAL_TYPES:
        return _temporal_type(kind, config)
    if kind is DatabaseType.INTERVAL:
        return timedelta
    if kind in (DatabaseType.BOOLEAN, DatabaseType.CHECKBOX):
        return StrictBool
    if kind in (DatabaseType.JSON, DatabaseType.JSONB, DatabaseType.JSON_SCHEMA):
        return JsonValue
    if kind in (DatabaseType.DOCUMENT, DatabaseType.MAP):
        return Dict[str, Any]
    if kind in (DatabaseType.BYTEA, DatabaseType.BLOB):
        return bytes
    if kind is DatabaseType.ATTACHMENT:
        if config.attachment_handling == "base64":
            return Base64Bytes
        if config.attachment_handling == "object":
            return AttachmentObject
        return AnyUrl if config.url_validation else StrictStr
    if kind is DatabaseType.ARRAY:
        return List[_array_element(field, config, depth)]  # type: ignore[misc]
    if kind is DatabaseType.NESTED_OBJECT:
        nested = getattr(field, "nested_fields", None)
        if nested and depth < config.nested_object_max_depth:
            return build_model(_pascal_case(f"{field.name}_object"), nested, config=config, mode="full", extra="allow", depth=depth + 1)
        return Dict[str, Any]
    if kind is DatabaseType.REFERENCE:
        return StrictStr
    if kind is DatabaseType.GEOPOINT:
        return Union[GeoPoint, Tuple[_Latitude, _Longitude]]
    if kind in (DatabaseType.SINGLE_SELECT, DatabaseType.ENUM):
        return _select_type(field, config)
    if kind in (DatabaseType.MULTIPLE_SELECT, DatabaseType.MULTISELECT):
        return List[_select_type(field, config)]  # type: ignore[misc]
    if kind is DatabaseType.RATING:
        return Annotated[StrictInt, Field(ge=0, le=5)]
    if kind is DatabaseType.CURRENCY:
        return Union[
            Annotated[StrictInt, Field(ge=0)],
            Annotated[StrictFloat, Field(ge=0)],
            Annotated[StrictStr, Field(pattern=CURRENCY_PATTERN)],
        ]

    if config.unknown_type_handling == "error":
        raise ValidationError(f"Unsupported field type for '{field.name}': {kind.value}", field=field.name, value=kind.value)
    if config.unknown_type_handling == "string":
        return StrictStr
    return Any


def _is_omittable(field: FieldLike, mode: str) -> bool:
    if mode == "update":
        return True
    if isinstance(field, DocumentFieldDefinition) and field.is_optional:
        return True
    if isinstance(field, RESTFieldDefinition) and not field.required:
        return mode == "insert" or field.nullable
    if mode == "insert":
        return field.nullable or field.default_value is not None or bool(getattr(field, "is_auto_increment", False))
    return False


def database_field_to_validator(
    field: FieldLike,
    config: TypeConversionConfig = DEFAULT_CONVERSION_CONFIG,
    *,
    mode: str = "full",
    depth: int = 0,
) -> Tuple[Any, FieldInfo]:
    """
    Map a canonical field to a ``(annotation, FieldInfo)`` pair.

    Parameters
    ----------
    field:
        Column, document field or REST field descriptor.
    config:
        Conversion knobs (numeric modes, date handling, optionality policy...).
    mode:
        ``full``, ``insert`` or ``update``.
    depth:
        Current nesting depth, bounded by ``config.nested_object_max_depth``.
    """

    if mode not in MODES:
        raise ValueError(f"Unknown schema mode '{mode}'. Expected one of {', '.join(MODES)}.")

    annotation = field_base_type(field, config, depth=depth)
    nullable = bool(field.nullable) or config.nullable_by_default
    omittable = _is_omittable(field, mode)
    accept_none = False
    if nullable:
        handling = config.optional_field_handling
        if handling in ("nullable", "both"):
            accept_none = True
        if handling in ("optional", "both") and mode != "full":
            omittable = True
        if handling == "optional" and mode == "full":
            accept_none = True

    if accept_none:
        annotation = Optional[annotation]

    description = getattr(field, "comment", None) or getattr(field, "description", None)
    if omittable:
        info = Field(default=None, alias=field.name, description=description)
    else:
        info = Field(..., alias=field.name, description=description)
    return annotation, info


def _pascal_case(value: str) -> str:
    parts = [part for part in re.split(r"[_\-\s.]+", value) if part]
    candidate = "".join(part[:1].upper() + part[1:] for part in parts) or "Model"
    if not candidate[0].isalpha():
        candidate = f"Model{candidate}"
    return re.sub(r"\W", "", candidate)


def _python_name(name: str, taken: set[str]) -> str:
    candidate = re.sub(r"\W", "_", name).strip("_") or "field"
    if candidate[0].isdigit() or keyword.iskeyword(candidate) or candidate in _RESERVED_NAMES or candidate.startswith("model_"):
        candidate = f"f_{candidate}"
    base = candidate
    suffix = 1
    while candidate in taken:
        suffix += 1
        candidate = f"{base}_{suffix}"
    taken.add(candidate)
    return candidate


def build_model(
    model_name: str,
    fields: Iterable[FieldLike],
    *,
    config: TypeConversionConfig = DEFAULT_CONVERSION_CONFIG,
    mode: str = "full",
    extra: str = "forbid",
    exclude: Sequence[str] = (),
    depth: int = 0,
) -> Type[BaseModel]:
    """Create a pydantic model whose aliases are the original field names."""

    taken: set[str] = set()
    definitions: Dict[str, Any] = {}
    for item in fields:
        if item.name in exclude:
            continue
        definitions[_python_name(item.name, taken)] = database_field_to_validator(item, config, mode=mode, depth=depth)
    model_config = ConfigDict(extra=extra, populate_by_name=True, protected_namespaces=(), arbitrary_types_allowed=True)  # type: ignore[typeddict-item]
    return create_model(_pascal_case(model_name), __config__=model_config, **definitions)


def format_pydantic_errors(error: PydanticValidationError) -> List[str]:
    """Flatten a pydantic error into ``"field.path: message"`` strings."""

    messages: List[str] = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()) if part != "__root__")
        message = item.get("msg", "invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        messages.append(f"{location}: {message}" if location else message)
    return messages


def field_type_summary(fields: Iterable[FieldLike]) -> Mapping[str, str]:
    """Field name → canonical type value, handy for CLI and log output."""

    return {item.name: item.type.value for item in fields}


def is_numeric(kind: DatabaseType) -> bool:
    return kind in _NUMERIC_TYPES or kind in (DatabaseType.DECIMAL, DatabaseType.NUMERIC, DatabaseType.REAL, DatabaseType.DOUBLE, DatabaseType.FLOAT)
