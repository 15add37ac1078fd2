"""Configuration object steering the type conversion engine."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping


@dataclass(slots=True, frozen=True)
class TypeConversionConfig:
    """
    Knobs controlling how canonical fields become runtime validators.

    Attributes
    ----------
    bigint_handling:
        ``number`` (plain int), ``string`` (digit string) or ``bigint`` (either).
    decimal_handling:
        ``number`` (float/int), ``string`` (decimal string) or ``decimal``
        (:class:`decimal.Decimal` honouring precision and scale).
    precision_loss:
        ``warn``, ``error`` or ``ignore`` when a DECIMAL column is projected to
        binary floats with more than 15 significant digits.
    datetime_format:
        ``iso`` (ISO-8601 strings or datetime objects), ``epoch`` (milliseconds)
        or ``native`` (datetime objects only).
    timezone_handling:
        ``preserve``, ``utc`` or ``local``; ``utc`` requires aware timestamps.
    nested_object_max_depth:
        Depth at which nested objects stop being modelled field by field.
    array_type_inference:
        ``strict`` validates array elements against the declared element type,
        ``loose`` accepts any element.
    optional_field_handling:
        ``nullable`` (``None`` accepted, key required), ``optional`` (key may be
        omitted, ``None`` rejected) or ``both``.
    enum_validation:
        ``strict`` restricts select/enum fields to their known values.
    url_validation:
        Validate URL fields as URLs rather than plain strings.
    attachment_handling:
        ``url``, ``base64`` or ``object``.
    unknown_type_handling:
        ``any``, ``string`` or ``error``.
    nullable_by_default:
        Treat every field as nullable regardless of the source metadata.
    custom_type_mapping:
        Overrides keyed by canonical type value or backend ``original_type``.
    """

    bigint_handling: str = "number"
    decimal_handling: str = "number"
    precision_loss: str = "warn"
    datetime_format: str = "iso"
    timezone_handling: str = "preserve"
    nested_object_max_depth: int = 10
    array_type_inference: str = "loose"
    optional_field_handling: str = "both"
    enum_validation: str = "strict"
    url_validation: bool = True
    attachment_handling: str = "url"
    unknown_type_handling: str = "any"
    nullable_by_default: bool = False
    custom_type_mapping: Mapping[str, Any] = field(default_factory=dict)

    def with_overrides(self, **overrides: Any) -> "TypeConversionConfig":
        return replace(self, **overrides)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "TypeConversionConfig":
        if not payload:
            return cls()
        known: Dict[str, Any] = {key: value for key, value in payload.items() if key in cls.__dataclass_fields__}
        return cls(**known)


DEFAULT_CONVERSION_CONFIG = TypeConversionConfig()
