"""
Typer application for inspecting connectors and canonical schemas.

Command groups:

* ``connectors``: list, describe and exercise the registered connector types.
* ``schema``: introspect a live source, diff saved snapshots, and export DDL
  or TypeScript declarations from them.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from ..bootstrap import initialize_connectors
from ..config import SecretsCredentialsProvider
from ..conversion import table_to_create_statement, table_to_type_declaration
from ..core.errors import ConnectorError, format_error_response
from ..core.logging import configure_logging
from ..core.registry import ConnectorRegistry, RegistryConfig
from ..core.schema import DatabaseSchema, DocumentSchema, RESTSchema, load_schema, schema_to_dict
from ..introspection import compare_document_schemas, compare_rest_schemas, compare_schemas, describe_field_changes, generate_schema_diff
from ..services import ConnectorServices

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Connector SDK command line.\n\n"
        "Command groups:\n"
        "- connectors: list, describe, validate and test connector types.\n"
        "- schema: introspect sources, diff snapshots, export DDL and type declarations."
    ),
)
connectors_app = typer.Typer(help="Inspect registered connector types and check configurations against them.")
app.add_typer(connectors_app, name="connectors")
schema_app = typer.Typer(help="Introspect live sources and work with saved canonical schema snapshots.")
app.add_typer(schema_app, name="schema")


def _emit_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _fail(exc: ConnectorError) -> None:
    typer.echo(json.dumps(format_error_response(exc), ensure_ascii=False, indent=2), err=True)
    raise typer.Exit(code=1)


def _read_mapping(path: Path) -> Dict[str, Any]:
    """Load a YAML or JSON document that must contain a mapping."""

    if not path.is_file():
        raise typer.BadParameter(f"File '{path}' does not exist.")
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle) if path.suffix.lower() == ".json" else yaml.safe_load(handle)
    except (yaml.YAMLError, ValueError) as exc:
        raise typer.BadParameter(f"Failed to parse '{path}': {exc}") from exc
    if not isinstance(payload, dict):
        raise typer.BadParameter(f"File '{path}' must contain a mapping.")
    return payload


def _read_schema(path: Path) -> Any:
    payload = _read_mapping(path)
    try:
        return load_schema(payload)
    except (TypeError, ValueError, KeyError) as exc:
        raise typer.BadParameter(f"'{path}' is not a canonical schema document: {exc}") from exc


def _config_for(connector_type: str, path: Path) -> Dict[str, Any]:
    config = _read_mapping(path)
    config.setdefault("type", connector_type)
    return config


@app.callback(invoke_without_command=False)
def main(
    ctx: typer.Context,
    secrets: Optional[Path] = typer.Option(
        None,
        "--secrets",
        help="TOML secrets file holding [credentials.<secret_id>] tables.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    plugin_manifest: Optional[List[Path]] = typer.Option(
        None,
        "--plugin-manifest",
        help="YAML/JSON plugin manifest naming module:attribute factories. Can be repeated.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override CONNECTOR_SDK_LOG_LEVEL (e.g. DEBUG)."),
) -> None:
    """
    Build the connector registry shared by every sub-command.

    The registry is stored in Typer's state so child commands can retrieve it
    via :class:`typer.Context`.
    """

    if log_level:
        configure_logging(log_level, force=True)
    config = RegistryConfig(plugin_paths=tuple(plugin_manifest or ()), enable_logging=False)
    try:
        registry = initialize_connectors(SecretsCredentialsProvider(path=secrets), config)
    except ConnectorError as exc:
        _fail(exc)
    state = ctx.ensure_object(dict)
    state["registry"] = registry


def _require_registry(ctx: typer.Context) -> ConnectorRegistry:
    state = ctx.ensure_object(dict)
    registry = state.get("registry")
    if not isinstance(registry, ConnectorRegistry):
        raise typer.Exit(code=2)
    return registry


def _require_factory(ctx: typer.Context, connector_type: str) -> Any:
    registry = _require_registry(ctx)
    factory = registry.get_connector_factory(connector_type)
    if factory is None:
        available = ", ".join(registry.get_available_connectors())
        typer.echo(f"Connector type '{connector_type}' is not registered. Available types: {available}", err=True)
        raise typer.Exit(code=1)
    return factory


# Connectors -----------------------------------------------------------------


@connectors_app.command("list")
def connectors_list(
    ctx: typer.Context,
    output_json: bool = typer.Option(False, "--json", help="Emit connector metadata in JSON format."),
) -> None:
    """List registered connector types."""

    registry = _require_registry(ctx)
    entries = registry.get_all_connector_metadata()
    if output_json:
        _emit_json([entry.to_dict() for entry in entries])
        return
    if not entries:
        typer.echo("No connectors registered.")
        raise typer.Exit(code=0)

    header = f"{'Type':<12} {'Version':<9} {'Plugin':<7} Description"
    typer.echo(header)
    typer.echo("-" * len(header))
    for entry in entries:
        plugin = "yes" if entry.is_plugin else "no"
        typer.echo(f"{entry.type:<12} {entry.version:<9} {plugin:<7} {entry.description}")


@connectors_app.command("describe")
def connectors_describe(
    ctx: typer.Context,
    connector_type: str = typer.Argument(..., help="Connector type, e.g. postgres or mongodb."),
    output_json: bool = typer.Option(False, "--json", help="Emit metadata in JSON format."),
) -> None:
    """Show metadata and supported features for a connector type."""

    factory = _require_factory(ctx, connector_type)
    metadata = _require_registry(ctx).get_connector_metadata(connector_type)
    features = factory.get_supported_features()
    if output_json:
        payload = metadata.to_dict() if metadata else {"type": connector_type}
        payload["supportedFeatures"] = features
        _emit_json(payload)
        return

    typer.echo(f"Type: {connector_type}")
    typer.echo(f"Name: {factory.name}")
    typer.echo(f"Version: {factory.version}")
    typer.echo(f"Description: {factory.description}")
    if metadata is not None:
        typer.echo(f"Capabilities: {', '.join(metadata.capabilities) or 'N/A'}")
        typer.echo(f"Dependencies: {', '.join(metadata.dependencies) or 'N/A'}")
        typer.echo(f"Plugin: {metadata.is_plugin}")
    typer.echo(f"Supported Versions: {', '.join(factory.supported_versions) or 'N/A'}")
    enabled = [name for name, value in features.items() if value]
    typer.echo(f"Features: {', '.join(enabled) or 'N/A'}")


@connectors_app.command("examples")
def connectors_examples(
    ctx: typer.Context,
    connector_type: str = typer.Argument(..., help="Connector type."),
) -> None:
    """Print example configurations for a connector type."""

    factory = _require_factory(ctx, connector_type)
    _emit_json({"default": factory.create_default_config(), **factory.get_example_configs()})


@connectors_app.command("validate")
def connectors_validate(
    ctx: typer.Context,
    connector_type: str = typer.Argument(..., help="Connector type."),
    config_file: Path = typer.Option(..., "--config", "-c", help="YAML/JSON connector configuration.", dir_okay=False),
) -> None:
    """Validate a configuration file without connecting."""

    _require_factory(ctx, connector_type)
    config = _config_for(connector_type, config_file)
    result = ConnectorServices(_require_registry(ctx)).validate_connector_configuration(connector_type, config)
    _emit_json({"valid": result.valid, "errors": result.errors})
    if not result.valid:
        raise typer.Exit(code=1)


@connectors_app.command("test")
def connectors_test(
    ctx: typer.Context,
    connector_type: str = typer.Argument(..., help="Connector type."),
    config_file: Path = typer.Option(..., "--config", "-c", help="YAML/JSON connector configuration.", dir_okay=False),
) -> None:
    """Connect with a throwaway connector, run a test query and disconnect."""

    factory = _require_factory(ctx, connector_type)
    config = _config_for(connector_type, config_file)
    try:
        result = factory.test_config(config)
    except ConnectorError as exc:
        _fail(exc)
    _emit_json({"valid": result.valid, "errors": result.errors, "warnings": result.warnings, "latencyMs": result.latency_ms})
    if not result.valid:
        raise typer.Exit(code=1)


# Schema ---------------------------------------------------------------------


@schema_app.command("introspect")
def schema_introspect(
    ctx: typer.Context,
    connector_type: str = typer.Argument(..., help="Connector type."),
    config_file: Path = typer.Option(..., "--config", "-c", help="YAML/JSON connector configuration.", dir_okay=False),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the canonical schema JSON to this file.", dir_okay=False),
) -> None:
    """Introspect a live source and print its canonical schema and SHA-256 version."""

    _require_factory(ctx, connector_type)
    config = _config_for(connector_type, config_file)
    try:
        snapshot = ConnectorServices(_require_registry(ctx)).introspect_snapshot(connector_type, config)
    except ConnectorError as exc:
        _fail(exc)
    document = json.dumps(schema_to_dict(snapshot.schema), ensure_ascii=False, indent=2)
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(document + "\n", encoding="utf-8")
        typer.echo(f"Wrote {snapshot.table_count} tables to {output}")
    else:
        typer.echo(document)
    typer.echo(f"Schema version: {snapshot.version}", err=True)


@schema_app.command("diff")
def schema_diff(
    old: Path = typer.Argument(..., help="Previous canonical schema JSON.", dir_okay=False),
    new: Path = typer.Argument(..., help="Current canonical schema JSON.", dir_okay=False),
    as_sql: bool = typer.Option(False, "--sql", help="Render migration statements instead of a JSON summary."),
) -> None:
    """Compare two saved schema snapshots."""

    before, after = _read_schema(old), _read_schema(new)
    if type(before) is not type(after):
        raise typer.BadParameter("Both schema documents must describe the same kind of source.")

    if isinstance(before, DatabaseSchema):
        comparison = compare_schemas(before, after)
        statements = generate_schema_diff(comparison)
    elif isinstance(before, DocumentSchema):
        comparison = compare_document_schemas(before, after)
        statements = describe_field_changes(comparison, container="COLLECTION")
    elif isinstance(before, RESTSchema):
        comparison = compare_rest_schemas(before, after)
        statements = describe_field_changes(comparison, container="RESOURCE")
    else:  # pragma: no cover - load_schema only returns the three families
        raise typer.BadParameter("Unsupported schema document.")

    if as_sql:
        if not statements:
            typer.echo("-- No changes")
            return
        for statement in statements:
            typer.echo(statement)
        return
    _emit_json(schema_to_dict(comparison))


def _relational(path: Path) -> DatabaseSchema:
    schema = _read_schema(path)
    if not isinstance(schema, DatabaseSchema):
        raise typer.BadParameter(f"'{path}' must describe a relational schema.")
    return schema


@schema_app.command("ddl")
def schema_ddl(schema_file: Path = typer.Argument(..., help="Canonical relational schema JSON.", dir_okay=False)) -> None:
    """Render CREATE TABLE statements for every table in a snapshot."""

    schema = _relational(schema_file)
    typer.echo("\n\n".join(table_to_create_statement(table) for table in schema.tables))


@schema_app.command("types")
def schema_types(schema_file: Path = typer.Argument(..., help="Canonical relational schema JSON.", dir_okay=False)) -> None:
    """Render TypeScript interfaces for every table in a snapshot."""

    schema = _relational(schema_file)
    typer.echo("\n\n".join(table_to_type_declaration(table) for table in schema.tables))


if __name__ == "__main__":  # pragma: no cover
    app()
