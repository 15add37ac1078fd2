from __future__ import annotations

import json
import sqlite3
from contextlib import closing
from pathlib import Path

import pytest
from typer.testing import CliRunner

from connector_sdk.cli.main import app


@pytest.fixture()
def secrets_file(tmp_path) -> Path:
    path = tmp_path / "secret.toml"
    path.write_text('[credentials.postgres-dev]\nuser = "app"\npassword = "s3cret"\n', encoding="utf-8")
    return path


@pytest.fixture()
def database(tmp_path) -> Path:
    path = tmp_path / "library.db"
    with closing(sqlite3.connect(path)) as connection, connection:
        connection.execute("CREATE TABLE authors (id INTEGER PRIMARY KEY, name TEXT NOT NULL)")
        connection.execute("CREATE TABLE books (id INTEGER PRIMARY KEY, title TEXT NOT NULL, author_id INTEGER)")
    return path


@pytest.fixture()
def config_file(tmp_path, database) -> Path:
    path = tmp_path / "sqlite.yaml"
    path.write_text(f"name: library\ndatabase: {database}\n", encoding="utf-8")
    return path


def invoke(cli_runner: CliRunner, secrets_file: Path, args: list[str]):
    return cli_runner.invoke(app, ["--secrets", str(secrets_file), *args])


def test_connectors_list(cli_runner, secrets_file):
    result = invoke(cli_runner, secrets_file, ["connectors", "list"])

    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert lines[0].split() == ["Type", "Version", "Plugin", "Description"]
    assert [line.split()[0] for line in lines[2:]] == ["postgres", "sqlite", "supabase", "mongodb", "rest"]


def test_connectors_list_json(cli_runner, secrets_file):
    result = invoke(cli_runner, secrets_file, ["connectors", "list", "--json"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert {item["type"] for item in payload} == {"postgres", "sqlite", "supabase", "mongodb", "rest"}
    assert all(item["isPlugin"] is False for item in payload)


def test_connectors_describe(cli_runner, secrets_file):
    text = invoke(cli_runner, secrets_file, ["connectors", "describe", "postgres"])
    as_json = invoke(cli_runner, secrets_file, ["connectors", "describe", "sqlite", "--json"])

    assert text.exit_code == 0
    assert "Type: postgres" in text.stdout
    assert "Name: PostgreSQL Database" in text.stdout
    assert "sequences" in text.stdout
    assert as_json.exit_code == 0
    payload = json.loads(as_json.stdout)
    assert payload["type"] == "sqlite"
    assert payload["supportedFeatures"]["schemas"] is False


def test_connectors_examples(cli_runner, secrets_file):
    result = invoke(cli_runner, secrets_file, ["connectors", "examples", "postgres"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert set(payload) == {"default", "development", "production", "highPerformance"}
    assert payload["default"]["port"] == 5432


def test_unknown_connector_type(cli_runner, secrets_file):
    result = invoke(cli_runner, secrets_file, ["connectors", "describe", "oracle"])

    assert result.exit_code == 1
    assert "Connector type 'oracle' is not registered. Available types:" in result.output


def test_connectors_validate(cli_runner, secrets_file, config_file, tmp_path):
    valid = invoke(cli_runner, secrets_file, ["connectors", "validate", "sqlite", "-c", str(config_file)])

    assert valid.exit_code == 0
    assert json.loads(valid.stdout) == {"valid": True, "errors": []}

    broken = tmp_path / "broken.json"
    broken.write_text(json.dumps({"name": "x", "queryTimeout": 5}), encoding="utf-8")
    invalid = invoke(cli_runner, secrets_file, ["connectors", "validate", "sqlite", "-c", str(broken)])

    assert invalid.exit_code == 1
    payload = json.loads(invalid.stdout)
    assert payload["valid"] is False
    assert len(payload["errors"]) == 1


def test_connectors_test_runs_a_query(cli_runner, secrets_file, config_file):
    result = invoke(cli_runner, secrets_file, ["connectors", "test", "sqlite", "-c", str(config_file)])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["valid"] is True
    assert payload["errors"] == []
    assert payload["latencyMs"] >= 0


def test_schema_introspect_to_stdout(cli_runner, secrets_file, config_file):
    result = invoke(cli_runner, secrets_file, ["schema", "introspect", "sqlite", "-c", str(config_file)])

    assert result.exit_code == 0
    assert '"name": "authors"' in result.output
    assert "Schema version: " in result.output


def _snapshot(cli_runner, secrets_file, config_file, output: Path) -> None:
    result = invoke(cli_runner, secrets_file, ["schema", "introspect", "sqlite", "-c", str(config_file), "-o", str(output)])
    assert result.exit_code == 0
    assert f"Wrote 2 tables to {output}" in result.output


def test_schema_diff_reports_added_columns(cli_runner, secrets_file, config_file, database, tmp_path):
    before, after = tmp_path / "before.json", tmp_path / "after.json"
    _snapshot(cli_runner, secrets_file, config_file, before)
    with closing(sqlite3.connect(database)) as connection, connection:
        connection.execute("ALTER TABLE books ADD COLUMN isbn TEXT")
    _snapshot(cli_runner, secrets_file, config_file, after)

    unchanged = cli_runner.invoke(app, ["schema", "diff", str(before), str(before), "--sql"])
    statements = cli_runner.invoke(app, ["schema", "diff", str(before), str(after), "--sql"])
    summary = cli_runner.invoke(app, ["schema", "diff", str(before), str(after)])

    assert unchanged.stdout.strip() == "-- No changes"
    assert statements.exit_code == 0
    assert 'ADD COLUMN "isbn"' in statements.stdout
    payload = json.loads(summary.stdout)
    assert payload["has_changes"] is True
    assert payload["modified_tables"][0]["table"]["name"] == "books"
    assert [column["name"] for column in payload["modified_tables"][0]["changes"]["added_columns"]] == ["isbn"]


def test_schema_exports(cli_runner, secrets_file, config_file, tmp_path):
    snapshot = tmp_path / "schema.json"
    _snapshot(cli_runner, secrets_file, config_file, snapshot)

    ddl = cli_runner.invoke(app, ["schema", "ddl", str(snapshot)])
    types = cli_runner.invoke(app, ["schema", "types", str(snapshot)])

    assert ddl.exit_code == 0
    assert 'CREATE TABLE "authors" (' in ddl.stdout
    assert 'PRIMARY KEY ("id")' in ddl.stdout
    assert types.exit_code == 0
    assert "export interface Books {" in types.stdout
    assert "  title: string;" in types.stdout


def test_schema_commands_reject_invalid_documents(cli_runner, tmp_path):
    bogus = tmp_path / "bogus.json"
    bogus.write_text(json.dumps(["not", "a", "mapping"]), encoding="utf-8")

    result = cli_runner.invoke(app, ["schema", "ddl", str(bogus)])

    assert result.exit_code == 2
