"""
Model builders for tables, collections and REST resources.

Each builder returns a :class:`ModelSet` holding three pydantic models (full,
insert, update). Fields are exposed under their original names as aliases, so
``model_validate`` accepts records exactly as the backend returns them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..core.logging import get_logger
from ..core.schema import (
    CollectionDefinition,
    ColumnDefinition,
    DatabaseType,
    RESTResourceDefinition,
    TableDefinition,
)
from .config import DEFAULT_CONVERSION_CONFIG, TypeConversionConfig
from .validators import MODES, build_model, format_pydantic_errors

LOGGER = get_logger(__name__)

DOCUMENT_ID_FIELDS = ("_id", "id")


@dataclass(slots=True)
class ModelSet:
    full: Type[BaseModel]
    insert: Type[BaseModel]
    update: Type[BaseModel]

    def for_mode(self, mode: str) -> Type[BaseModel]:
        if mode not in MODES:
            raise ValueError(f"Unknown schema mode '{mode}'. Expected one of {', '.join(MODES)}.")
        return getattr(self, mode)


@dataclass(slots=True)
class DataValidationResult:
    valid: bool
    data: Optional[Dict[str, Any]] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _is_generated_key(column: ColumnDefinition) -> bool:
    if not column.is_primary_key:
        return False
    return column.is_auto_increment or column.type in (DatabaseType.SERIAL, DatabaseType.BIGSERIAL)


def _precision_warnings(columns: Sequence[ColumnDefinition], config: TypeConversionConfig) -> List[str]:
    if config.decimal_handling != "number" or config.precision_loss != "warn":
        return []
    warnings = []
    for column in columns:
        if column.type in (DatabaseType.DECIMAL, DatabaseType.NUMERIC) and (column.precision or 0) > 15:
            warnings.append(f"Column '{column.name}' has precision {column.precision}; values may lose precision as floats")
    return warnings


def table_to_schemas(table: TableDefinition, config: TypeConversionConfig = DEFAULT_CONVERSION_CONFIG) -> ModelSet:
    """Build full/insert/update models for a relational table."""

    for message in _precision_warnings(table.columns, config):
        LOGGER.warning(message, extra={"table": table.name})
    generated = [column.name for column in table.columns if _is_generated_key(column)]
    return ModelSet(
        full=build_model(f"{table.name}_record", table.columns, config=config, mode="full"),
        insert=build_model(f"{table.name}_insert", table.columns, config=config, mode="insert", exclude=generated),
        update=build_model(f"{table.name}_update", table.columns, config=config, mode="update"),
    )


def collection_to_schemas(collection: CollectionDefinition, config: TypeConversionConfig = DEFAULT_CONVERSION_CONFIG) -> ModelSet:
    """Build models for a document collection; unknown keys are allowed since documents are open."""

    return ModelSet(
        full=build_model(f"{collection.name}_document", collection.fields, config=config, mode="full", extra="allow"),
        insert=build_model(
            f"{collection.name}_insert",
            collection.fields,
            config=config,
            mode="insert",
            extra="allow",
            exclude=DOCUMENT_ID_FIELDS,
        ),
        update=build_model(f"{collection.name}_update", collection.fields, config=config, mode="update", extra="allow"),
    )


def resource_to_schemas(resource: RESTResourceDefinition, config: TypeConversionConfig = DEFAULT_CONVERSION_CONFIG) -> ModelSet:
    """Build models for a REST resource; insert and update skip read-only fields."""

    read_only = [item.name for item in resource.fields if item.read_only]
    readable = [item for item in resource.fields if not item.write_only]
    return ModelSet(
        full=build_model(f"{resource.name}_resource", readable, config=config, mode="full", extra="ignore"),
        insert=build_model(f"{resource.name}_create", resource.fields, config=config, mode="insert", exclude=read_only),
        update=build_model(f"{resource.name}_update", resource.fields, config=config, mode="update", exclude=read_only),
    )


def validate_with_model(model: Type[BaseModel], data: Mapping[str, Any], *, mode: str = "full") -> DataValidationResult:
    """Validate ``data`` against ``model`` and dump it back under the original field names."""

    try:
        instance = model.model_validate(dict(data))
    except PydanticValidationError as exc:
        return DataValidationResult(valid=False, errors=format_pydantic_errors(exc))
    return DataValidationResult(valid=True, data=instance.model_dump(by_alias=True, exclude_unset=mode != "full"))


def validate_table_data(
    table: TableDefinition,
    data: Mapping[str, Any],
    mode: str = "full",
    config: TypeConversionConfig = DEFAULT_CONVERSION_CONFIG,
) -> DataValidationResult:
    result = validate_with_model(table_to_schemas(table, config).for_mode(mode), data, mode=mode)
    result.warnings.extend(_precision_warnings(table.columns, config))
    return result


def validate_collection_data(
    collection: CollectionDefinition,
    data: Mapping[str, Any],
    mode: str = "full",
    config: TypeConversionConfig = DEFAULT_CONVERSION_CONFIG,
) -> DataValidationResult:
    return validate_with_model(collection_to_schemas(collection, config).for_mode(mode), data, mode=mode)


def validate_resource_data(
    resource: RESTResourceDefinition,
    data: Mapping[str, Any],
    mode: str = "full",
    config: TypeConversionConfig = DEFAULT_CONVERSION_CONFIG,
) -> DataValidationResult:
    return validate_with_model(resource_to_schemas(resource, config).for_mode(mode), data, mode=mode)


class TypeConverter:
    """
    Per-connector façade over the conversion engine.

    Model sets are cached by table/collection/resource name so repeated
    validations against the same definition do not rebuild pydantic models.
    Call :meth:`clear_cache` after re-introspection.
    """

    def __init__(self, config: Optional[TypeConversionConfig] = None) -> None:
        self.config = config or DEFAULT_CONVERSION_CONFIG
        self._cache: Dict[str, ModelSet] = {}

    def clear_cache(self) -> None:
        self._cache.clear()

    def models_for(self, definition: TableDefinition | CollectionDefinition | RESTResourceDefinition) -> ModelSet:
        if isinstance(definition, TableDefinition):
            key = f"table:{definition.qualified_name}"
            builder = table_to_schemas
        elif isinstance(definition, CollectionDefinition):
            key = f"collection:{definition.database}.{definition.name}"
            builder = collection_to_schemas
        else:
            key = f"resource:{definition.name}"
            builder = resource_to_schemas
        models = self._cache.get(key)
        if models is None:
            models = builder(definition, self.config)  # type: ignore[arg-type]
            self._cache[key] = models
        return models

    def validate(
        self,
        definition: TableDefinition | CollectionDefinition | RESTResourceDefinition,
        data: Mapping[str, Any],
        mode: str = "full",
    ) -> DataValidationResult:
        return validate_with_model(self.models_for(definition).for_mode(mode), data, mode=mode)
