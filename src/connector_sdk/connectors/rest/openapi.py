"""
Resource discovery from OpenAPI (3.x) and Swagger (2.0) documents.

Collection paths (those without path parameters) become resources; the item
path ``/<collection>/{id}`` contributes its methods. Field definitions come
from the JSON schema of the successful ``GET`` response, or from a component
named after the resource when the response does not reference one.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from ...core.schema import DatabaseType, RESTFieldDefinition, RESTPagination, RESTResourceDefinition

_METHODS = ("get", "post", "put", "patch", "delete")

_STRING_FORMATS = {
    "date-time": DatabaseType.TIMESTAMPTZ,
    "date": DatabaseType.DATE,
    "time": DatabaseType.TIME,
    "uuid": DatabaseType.UUID,
    "uri": DatabaseType.URL,
    "url": DatabaseType.URL,
    "byte": DatabaseType.BYTEA,
    "binary": DatabaseType.BYTEA,
}


def _components(document: Mapping[str, Any]) -> Mapping[str, Any]:
    if "components" in document:
        return document.get("components", {}).get("schemas", {}) or {}
    return document.get("definitions", {}) or {}


def resolve_ref(document: Mapping[str, Any], schema: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    """Follow local ``$ref`` pointers until a concrete schema is reached."""

    seen = set()
    while schema and "$ref" in schema:
        ref = schema["$ref"]
        if ref in seen or not ref.startswith("#/"):
            return {}
        seen.add(ref)
        target: Any = document
        for part in ref[2:].split("/"):
            target = target.get(part, {}) if isinstance(target, Mapping) else {}
        schema = target
    return schema or {}


def json_schema_type(schema: Mapping[str, Any]) -> DatabaseType:
    """Map a JSON-schema property onto :class:`DatabaseType`."""

    kind = schema.get("type")
    if isinstance(kind, list):
        kind = next((item for item in kind if item != "null"), None)
    fmt = schema.get("format")
    if schema.get("enum"):
        return DatabaseType.ENUM
    if kind == "integer":
        return DatabaseType.BIGINT if fmt == "int64" else DatabaseType.INTEGER
    if kind == "number":
        return DatabaseType.DOUBLE if fmt in ("float", "double") else DatabaseType.DECIMAL
    if kind == "boolean":
        return DatabaseType.BOOLEAN
    if kind == "array":
        return DatabaseType.ARRAY
    if kind == "object":
        return DatabaseType.JSON
    if kind == "string":
        return _STRING_FORMATS.get(fmt or "", DatabaseType.TEXT)
    return DatabaseType.UNKNOWN


def schema_fields(document: Mapping[str, Any], schema: Mapping[str, Any]) -> List[RESTFieldDefinition]:
    schema = resolve_ref(document, schema)
    if schema.get("type") == "array":
        schema = resolve_ref(document, schema.get("items"))
    required = set(schema.get("required") or [])
    fields = []
    for name, raw in (schema.get("properties") or {}).items():
        prop = resolve_ref(document, raw)
        kind = json_schema_type(prop)
        nullable = bool(prop.get("nullable")) or (isinstance(prop.get("type"), list) and "null" in prop["type"]) or name not in required
        fields.append(_field(name, prop, kind, nullable, name in required))
    return fields


def _field(name: str, prop: Mapping[str, Any], kind: DatabaseType, nullable: bool, required: bool) -> RESTFieldDefinition:
    return RESTFieldDefinition(
        name=name,
        type=kind,
        nullable=nullable,
        required=required,
        read_only=bool(prop.get("readOnly")),
        write_only=bool(prop.get("writeOnly")),
        max_length=prop.get("maxLength"),
        enum_values=[str(item) for item in prop["enum"]] if prop.get("enum") else None,
        format=prop.get("format"),
        pattern=prop.get("pattern"),
        minimum=prop.get("minimum"),
        maximum=prop.get("maximum"),
        min_items=prop.get("minItems"),
        max_items=prop.get("maxItems"),
        description=prop.get("description"),
        example=prop.get("example"),
        default_value=prop.get("default"),
        api_field_name=name,
        original_type=prop.get("format") or (str(prop["type"]) if prop.get("type") else None),
    )


def _response_schema(operation: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    responses = operation.get("responses") or {}
    for status in ("200", "201", 200, 201, "default"):
        response = responses.get(status)
        if not response:
            continue
        if "schema" in response:
            return response["schema"]
        content = response.get("content") or {}
        for media_type, payload in content.items():
            if "json" in media_type and payload.get("schema"):
                return payload["schema"]
    return None


def _pagination(operation: Mapping[str, Any]) -> Optional[RESTPagination]:
    names = {param.get("name") for param in operation.get("parameters") or [] if isinstance(param, Mapping)}
    if "cursor" in names:
        return RESTPagination(type="cursor", param_names={"cursor": "cursor", "limit": "limit"})
    if "page" in names:
        return RESTPagination(type="page", param_names={"page": "page", "pageSize": "page_size" if "page_size" in names else "pageSize"})
    if "offset" in names or "limit" in names:
        return RESTPagination(type="offset", param_names={"limit": "limit", "offset": "offset"})
    return None


def resources_from_openapi(document: Mapping[str, Any]) -> List[RESTResourceDefinition]:
    """Derive resource definitions from an OpenAPI/Swagger document."""

    paths: Mapping[str, Any] = document.get("paths") or {}
    components = _components(document)
    resources: Dict[str, RESTResourceDefinition] = {}
    for path, item in paths.items():
        if "{" in path or not isinstance(item, Mapping):
            continue
        segments = [segment for segment in path.strip("/").split("/") if segment]
        if not segments:
            continue
        name = segments[-1]
        methods = [method.upper() for method in _METHODS if method in item]
        for other, other_item in paths.items():
            if other.startswith(path.rstrip("/") + "/{") and other.count("/") == path.rstrip("/").count("/") + 1:
                methods.extend(method.upper() for method in _METHODS if method in other_item and method.upper() not in methods)
        get = item.get("get") or {}
        schema = _response_schema(get) if get else None
        if not schema and name in components:
            schema = components[name]
        fields = schema_fields(document, schema) if schema else []
        primary_key = "id" if any(field.name == "id" for field in fields) else None
        resources[name] = RESTResourceDefinition(
            name=name,
            endpoint=path,
            fields=fields,
            supported_methods=methods or ["GET"],
            pagination=_pagination(get) if get else None,
            primary_key=primary_key,
            comment=get.get("summary") or get.get("description") if get else None,
            metadata={"source": "openapi"},
        )
    return [resources[name] for name in sorted(resources)]


__all__ = ["json_schema_type", "resolve_ref", "resources_from_openapi", "schema_fields"]
