from __future__ import annotations

from connector_sdk.core.schema import (
    CollectionDefinition,
    ColumnDefinition,
    DatabaseSchema,
    DatabaseType,
    DocumentFieldDefinition,
    DocumentSchema,
    IndexDefinition,
    RESTFieldDefinition,
    RESTResourceDefinition,
    RESTSchema,
    TableDefinition,
    ViewDefinition,
)
from connector_sdk.introspection import (
    compare_document_schemas,
    compare_rest_schemas,
    compare_schemas,
    describe_field_changes,
    generate_schema_diff,
)


def _users(*extra: ColumnDefinition, email_nullable: bool = True, email_type: DatabaseType = DatabaseType.VARCHAR) -> TableDefinition:
    return TableDefinition(
        name="users",
        columns=[
            ColumnDefinition(name="id", type=DatabaseType.INTEGER, nullable=False, is_primary_key=True),
            ColumnDefinition(name="email", type=email_type, nullable=email_nullable, max_length=255 if email_type is DatabaseType.VARCHAR else None),
            *extra,
        ],
        primary_key=["id"],
    )


def _schema(*tables: TableDefinition, views=()) -> DatabaseSchema:
    return DatabaseSchema(name="app", tables=list(tables), views=list(views))


def test_identical_schemas_have_no_changes():
    comparison = compare_schemas(_schema(_users()), _schema(_users()))

    assert not comparison.has_changes
    assert comparison.modified_tables == []
    assert generate_schema_diff(comparison) == []


def test_added_column():
    source = _schema(_users())
    target = _schema(_users(ColumnDefinition(name="nickname", type=DatabaseType.TEXT)))

    statements = generate_schema_diff(compare_schemas(source, target))

    assert statements == ['ALTER TABLE "users" ADD COLUMN "nickname" TEXT;']


def test_column_alterations():
    source = _schema(_users())
    target = _schema(_users(email_nullable=False, email_type=DatabaseType.TEXT))

    comparison = compare_schemas(source, target)
    statements = generate_schema_diff(comparison)

    change = comparison.modified_tables[0].changes.modified_columns[0]
    assert change.new.name == "email"
    assert "nullable: True -> False" in change.changes
    assert statements == [
        'ALTER TABLE "users" ALTER COLUMN "email" TYPE TEXT;',
        'ALTER TABLE "users" ALTER COLUMN "email" SET NOT NULL;',
    ]


def test_removed_column_and_new_index():
    source_table = _users(ColumnDefinition(name="legacy", type=DatabaseType.TEXT))
    target_table = _users()
    target_table.indexes.append(IndexDefinition(name="idx_users_email", table_name="users", columns=["email"], is_unique=True))

    statements = generate_schema_diff(compare_schemas(_schema(source_table), _schema(target_table)))

    assert statements == [
        'CREATE UNIQUE INDEX "idx_users_email" ON "users" ("email");',
        'ALTER TABLE "users" DROP COLUMN "legacy";',
    ]


def test_added_and_removed_tables_and_views():
    orders = TableDefinition(
        name="orders",
        columns=[ColumnDefinition(name="id", type=DatabaseType.BIGINT, nullable=False)],
        primary_key=["id"],
    )
    source = _schema(_users(), views=[ViewDefinition(name="active_users", definition="SELECT * FROM users;")])
    target = _schema(orders, views=[ViewDefinition(name="recent_orders", definition="SELECT * FROM orders")])

    comparison = compare_schemas(source, target)
    statements = generate_schema_diff(comparison)

    assert [table.name for table in comparison.added_tables] == ["orders"]
    assert [table.name for table in comparison.removed_tables] == ["users"]
    assert statements[0].startswith('CREATE TABLE "orders" (')
    assert statements[0].endswith(");")
    assert 'DROP TABLE "users";' in statements
    assert 'CREATE VIEW "recent_orders" AS SELECT * FROM orders;' in statements
    assert statements[-1] == 'DROP VIEW "active_users";'


def test_tables_match_on_qualified_name():
    public_users = _users()
    audit_users = _users()
    audit_users.schema = "audit"

    comparison = compare_schemas(_schema(public_users), _schema(audit_users))

    assert [table.qualified_name for table in comparison.added_tables] == ["audit.users"]
    assert [table.qualified_name for table in comparison.removed_tables] == ["public.users"]


def _collection(*fields: DocumentFieldDefinition) -> DocumentSchema:
    return DocumentSchema(name="shop", collections=[CollectionDefinition(name="users", database="shop", fields=list(fields))])


def test_document_field_changes():
    source = _collection(
        DocumentFieldDefinition(name="name", type=DatabaseType.TEXT),
        DocumentFieldDefinition(name="age", type=DatabaseType.INTEGER),
        DocumentFieldDefinition(name="legacy", type=DatabaseType.TEXT),
    )
    target = _collection(
        DocumentFieldDefinition(name="name", type=DatabaseType.TEXT, is_optional=True),
        DocumentFieldDefinition(name="age", type=DatabaseType.TEXT),
        DocumentFieldDefinition(name="email", type=DatabaseType.TEXT),
    )

    comparison = compare_document_schemas(source, target)

    assert comparison.has_changes
    assert describe_field_changes(comparison) == [
        "ALTER FIELD users.name OPTIONAL",
        "ALTER FIELD users.age TYPE text (was integer)",
        "ADD FIELD users.email (text)",
        "DROP FIELD users.legacy",
    ]


def test_rest_resource_changes():
    source = RESTSchema(name="api", base_url="https://api.example.com", resources=[])
    target = RESTSchema(
        name="api",
        base_url="https://api.example.com",
        resources=[RESTResourceDefinition(name="widgets", endpoint="/widgets", fields=[RESTFieldDefinition(name="id", type=DatabaseType.INTEGER)])],
    )

    comparison = compare_rest_schemas(source, target)

    assert describe_field_changes(comparison, container="RESOURCE") == ["CREATE RESOURCE widgets"]
    assert describe_field_changes(compare_rest_schemas(target, target)) == []
