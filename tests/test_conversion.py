from __future__ import annotations

from decimal import Decimal

import pytest

from connector_sdk.conversion import (
    TypeConversionConfig,
    TypeConverter,
    collection_to_schemas,
    deserialize_value,
    loses_precision,
    resource_to_schemas,
    serialize_value,
    table_to_create_statement,
    table_to_type_declaration,
    validate_table_data,
)
from connector_sdk.conversion.schemas import validate_with_model
from connector_sdk.core.errors import ValidationError
from connector_sdk.core.schema import (
    CollectionDefinition,
    ColumnDefinition,
    DatabaseType,
    DocumentFieldDefinition,
    RESTFieldDefinition,
    RESTResourceDefinition,
    TableDefinition,
)


def _accounts() -> TableDefinition:
    return TableDefinition(
        name="user_accounts",
        schema="public",
        columns=[
            ColumnDefinition(name="id", type=DatabaseType.INTEGER, nullable=False, is_primary_key=True, is_auto_increment=True),
            ColumnDefinition(name="email", type=DatabaseType.VARCHAR, nullable=False, max_length=255),
            ColumnDefinition(name="age", type=DatabaseType.INTEGER),
            ColumnDefinition(name="created_at", type=DatabaseType.TIMESTAMP, default_value="CURRENT_TIMESTAMP"),
        ],
        primary_key=["id"],
    )


def test_create_statement_renders_constraints():
    statement = table_to_create_statement(_accounts())

    assert statement == (
        'CREATE TABLE "user_accounts" (\n'
        '  "id" INTEGER NOT NULL,\n'
        '  "email" VARCHAR(255) NOT NULL,\n'
        '  "age" INTEGER,\n'
        '  "created_at" TIMESTAMP DEFAULT CURRENT_TIMESTAMP,\n'
        '  PRIMARY KEY ("id")\n'
        ");"
    )


def test_type_declaration_uses_pascal_case():
    declaration = table_to_type_declaration(_accounts())

    assert declaration.startswith("export interface UserAccounts {")
    assert "  id: number;" in declaration
    assert "  email: string;" in declaration
    assert "  age?: number | null;" in declaration
    assert "  created_at?: Date | null;" in declaration
    assert declaration.endswith("}")


def test_insert_model_skips_generated_key_and_requires_not_null():
    valid = validate_table_data(_accounts(), {"email": "ada@example.com"}, "insert")
    assert valid.valid
    assert valid.data == {"email": "ada@example.com"}

    missing = validate_table_data(_accounts(), {"age": 3}, "insert")
    assert not missing.valid
    assert any(error.startswith("email:") for error in missing.errors)


def test_full_model_is_strict_about_types_and_lengths():
    result = validate_table_data(
        _accounts(),
        {"id": "1", "email": "x" * 300, "age": None, "created_at": None},
        "full",
    )

    assert not result.valid
    fields = {error.split(":", 1)[0] for error in result.errors}
    assert {"id", "email"} <= fields


def test_update_model_accepts_partial_payloads():
    assert validate_table_data(_accounts(), {}, "update").valid
    assert validate_table_data(_accounts(), {"age": 40}, "update").valid


def test_unknown_mode_is_rejected():
    with pytest.raises(ValueError):
        validate_table_data(_accounts(), {}, "merge")


def test_decimal_handling_modes():
    table = TableDefinition(name="prices", columns=[ColumnDefinition(name="amount", type=DatabaseType.DECIMAL, nullable=False, precision=10, scale=2)])

    as_decimal = validate_table_data(table, {"amount": "12.50"}, "full", TypeConversionConfig(decimal_handling="decimal"))
    assert as_decimal.valid
    assert as_decimal.data == {"amount": Decimal("12.50")}

    as_string = validate_table_data(table, {"amount": "twelve"}, "full", TypeConversionConfig(decimal_handling="string"))
    assert not as_string.valid


def test_precision_loss_error_mode():
    table = TableDefinition(name="ledger", columns=[ColumnDefinition(name="balance", type=DatabaseType.NUMERIC, precision=20, scale=4)])

    with pytest.raises(ValidationError):
        validate_table_data(table, {"balance": 1}, "full", TypeConversionConfig(precision_loss="error"))

    warned = validate_table_data(table, {"balance": 1}, "full")
    assert warned.warnings


def test_unknown_type_handling():
    table = TableDefinition(name="things", columns=[ColumnDefinition(name="blob", type=DatabaseType.UNKNOWN, nullable=False)])

    assert validate_table_data(table, {"blob": {"any": "thing"}}, "full").valid
    assert not validate_table_data(table, {"blob": 5}, "full", TypeConversionConfig(unknown_type_handling="string")).valid
    with pytest.raises(ValidationError):
        validate_table_data(table, {"blob": 5}, "full", TypeConversionConfig(unknown_type_handling="error"))


def test_collection_models_allow_extra_fields_and_optional_keys():
    collection = CollectionDefinition(
        name="users",
        database="shop",
        fields=[
            DocumentFieldDefinition(name="_id", type=DatabaseType.TEXT, nullable=False),
            DocumentFieldDefinition(name="email", type=DatabaseType.TEXT, nullable=False),
            DocumentFieldDefinition(name="nickname", type=DatabaseType.TEXT, nullable=False, is_optional=True),
        ],
    )
    models = collection_to_schemas(collection)

    result = validate_with_model(models.insert, {"email": "a@example.com", "plan": "pro"}, mode="insert")

    assert result.valid
    assert result.data["plan"] == "pro"
    assert not validate_with_model(models.full, {"_id": "1"}).valid


def test_resource_insert_model_rejects_read_only_fields():
    resource = RESTResourceDefinition(
        name="widgets",
        endpoint="/widgets",
        fields=[
            RESTFieldDefinition(name="id", type=DatabaseType.INTEGER, required=True, read_only=True, nullable=False),
            RESTFieldDefinition(name="label", type=DatabaseType.TEXT, required=True, nullable=False),
        ],
    )
    models = resource_to_schemas(resource)

    assert validate_with_model(models.insert, {"label": "A"}, mode="insert").valid
    assert not validate_with_model(models.insert, {"id": 1, "label": "A"}, mode="insert").valid


def test_type_converter_caches_models():
    converter = TypeConverter()
    table = _accounts()

    first = converter.models_for(table)
    assert converter.models_for(table) is first
    converter.clear_cache()
    assert converter.models_for(table) is not first


def test_value_serialisation():
    bigint = ColumnDefinition(name="n", type=DatabaseType.BIGINT)
    payload = ColumnDefinition(name="doc", type=DatabaseType.JSONB)
    flag = ColumnDefinition(name="flag", type=DatabaseType.BOOLEAN)

    assert deserialize_value(9007199254740993, bigint, TypeConversionConfig(bigint_handling="string")) == "9007199254740993"
    assert deserialize_value('{"a": 1}', payload) == {"a": 1}
    assert deserialize_value("t", flag) is True
    assert serialize_value({"a": 1}, payload) == '{"a": 1}'
    assert serialize_value(None, payload) is None


def test_loses_precision():
    assert not loses_precision("0.1")
    assert loses_precision("12345678901234567.89")
