"""
Schema inference for schema-less collections.

Documents are walked with an explicit stack bounded by ``max_depth``; every
field path accumulates observed types, a null count, a handful of sample values
and the number of documents it appeared in. Prevalence is that document count
divided by the number of sampled documents.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ...core.schema import DatabaseType, DocumentFieldDefinition, schema_to_dict
from ..base import utcnow

MAX_SAMPLE_VALUES = 5

_TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")
_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_URL = re.compile(r"^https?://")
_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)

TypeHook = Callable[[Any], Optional[DatabaseType]]


def infer_document_type(value: Any, hook: Optional[TypeHook] = None) -> DatabaseType:
    """
    Map a decoded document value onto :class:`DatabaseType`.

    ``hook`` is consulted first so backends can recognise driver types
    (object ids, references) without this module importing the driver.
    """

    if hook is not None:
        hinted = hook(value)
        if hinted is not None:
            return hinted
    if value is None:
        return DatabaseType.UNKNOWN
    if isinstance(value, bool):
        return DatabaseType.BOOLEAN
    if isinstance(value, int):
        return DatabaseType.INTEGER
    if isinstance(value, float):
        return DatabaseType.FLOAT
    if isinstance(value, Decimal):
        return DatabaseType.DECIMAL
    if isinstance(value, str):
        if _TIMESTAMP.match(value):
            return DatabaseType.TIMESTAMP
        if _DATE.match(value):
            return DatabaseType.DATE
        if _URL.match(value):
            return DatabaseType.URL
        if _UUID.match(value):
            return DatabaseType.UUID
        return DatabaseType.TEXT
    if isinstance(value, datetime):
        return DatabaseType.TIMESTAMP
    if isinstance(value, date):
        return DatabaseType.DATE
    if isinstance(value, (bytes, bytearray, memoryview)):
        return DatabaseType.BLOB
    if isinstance(value, (list, tuple)):
        return DatabaseType.ARRAY
    if isinstance(value, Mapping):
        if "_latitude" in value and "_longitude" in value:
            return DatabaseType.GEOPOINT
        if value.get("type") == "Point" and isinstance(value.get("coordinates"), (list, tuple)):
            return DatabaseType.GEOPOINT
        if "$ref" in value or "_path" in value:
            return DatabaseType.REFERENCE
        return DatabaseType.NESTED_OBJECT
    return DatabaseType.UNKNOWN


@dataclass(slots=True)
class _FieldStats:
    name: str
    path: str
    parent: Optional[str]
    depth: int
    occurrences: int = 0
    null_count: int = 0
    types: Counter = field(default_factory=Counter)
    element_types: Counter = field(default_factory=Counter)
    samples: List[Any] = field(default_factory=list)
    max_length: Optional[int] = None
    last_document: int = -1


@dataclass(slots=True)
class TypeInconsistency:
    field: str
    types: List[DatabaseType]
    counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "types": [item.value for item in self.types], "counts": dict(self.counts)}


@dataclass(slots=True)
class SamplingResult:
    """Outcome of sampling one collection."""

    collection: str
    sample_size: int
    sampled_documents: int
    fields: List[DocumentFieldDefinition] = field(default_factory=list)
    nested_collections: List[str] = field(default_factory=list)
    sampling_date: datetime = field(default_factory=utcnow)
    confidence: float = 0.0
    inconsistencies: List[TypeInconsistency] = field(default_factory=list)

    def field_named(self, path: str) -> Optional[DocumentFieldDefinition]:
        pending = list(self.fields)
        while pending:
            item = pending.pop()
            if (item.field_path or item.name) == path:
                return item
            pending.extend(item.nested_fields or [])
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection": self.collection,
            "sampleSize": self.sample_size,
            "sampledDocuments": self.sampled_documents,
            "fields": schema_to_dict(self.fields),
            "nestedCollections": list(self.nested_collections),
            "samplingDate": self.sampling_date.isoformat(),
            "confidence": self.confidence,
            "inconsistencies": [item.to_dict() for item in self.inconsistencies],
        }


class SchemaSampler:
    """
    Infer field definitions from a sample of documents.

    Parameters
    ----------
    max_depth:
        Number of nesting levels analysed; ``1`` keeps top-level keys only.
    min_field_prevalence:
        Fraction of sampled documents a field must appear in to be reported.
    type_hook:
        Optional backend-specific type recogniser, see :func:`infer_document_type`.
    """

    def __init__(self, *, max_depth: int = 5, min_field_prevalence: float = 0.1, type_hook: Optional[TypeHook] = None) -> None:
        self.max_depth = max_depth
        self.min_field_prevalence = min_field_prevalence
        self.type_hook = type_hook

    def _collect(self, documents: Sequence[Mapping[str, Any]]) -> Dict[str, _FieldStats]:
        stats: Dict[str, _FieldStats] = {}
        for index, document in enumerate(documents):
            stack: List[Tuple[Mapping[str, Any], Optional[str], int]] = [(document, None, 0)]
            while stack:
                node, prefix, depth = stack.pop()
                if depth >= self.max_depth or not isinstance(node, Mapping):
                    continue
                for key, value in node.items():
                    path = f"{prefix}.{key}" if prefix else str(key)
                    entry = stats.get(path)
                    if entry is None:
                        entry = stats[path] = _FieldStats(name=str(key), path=path, parent=prefix, depth=depth)
                    if entry.last_document != index:
                        entry.occurrences += 1
                        entry.last_document = index
                    if value is None:
                        entry.null_count += 1
                        continue
                    kind = infer_document_type(value, self.type_hook)
                    entry.types[kind] += 1
                    if len(entry.samples) < MAX_SAMPLE_VALUES:
                        entry.samples.append(value)
                    if isinstance(value, str):
                        entry.max_length = max(entry.max_length or 0, len(value))
                    elif kind is DatabaseType.ARRAY:
                        entry.element_types.update(infer_document_type(item, self.type_hook) for item in value)
                    elif kind is DatabaseType.NESTED_OBJECT:
                        stack.append((value, path, depth + 1))
        return stats

    def _definition(self, entry: _FieldStats, total: int) -> DocumentFieldDefinition:
        prevalence = entry.occurrences / total
        observed = [kind for kind, _ in entry.types.most_common()]
        primary = observed[0] if observed else DatabaseType.UNKNOWN
        element = entry.element_types.most_common(1)[0][0] if entry.element_types else None
        return DocumentFieldDefinition(
            name=entry.name,
            type=primary,
            nullable=entry.null_count > 0 or not observed,
            field_path=entry.path,
            nested_depth=entry.depth,
            is_optional=prevalence < 1.0,
            array_element_type=element,
            prevalence=prevalence,
            sample_values=list(entry.samples),
            observed_types=observed,
            original_type=" | ".join(kind.value for kind in observed) or DatabaseType.UNKNOWN.value,
            metadata={
                "occurrences": entry.occurrences,
                "nullCount": entry.null_count,
                "typeCounts": {kind.value: count for kind, count in entry.types.items()},
                "maxLength": entry.max_length,
            },
        )

    def analyze(self, documents: Sequence[Mapping[str, Any]]) -> Tuple[List[DocumentFieldDefinition], List[TypeInconsistency]]:
        """Return top-level field definitions (children nested) and type inconsistencies."""

        if not documents:
            return [], []
        total = len(documents)
        stats = self._collect(documents)
        kept: Dict[str, DocumentFieldDefinition] = {}
        inconsistencies: List[TypeInconsistency] = []
        roots: List[DocumentFieldDefinition] = []
        # Parents are always registered before their children, so one pass suffices.
        for path, entry in stats.items():
            if entry.occurrences / total < self.min_field_prevalence:
                continue
            if entry.parent is not None and entry.parent not in kept:
                continue
            definition = self._definition(entry, total)
            kept[path] = definition
            if len(entry.types) > 1:
                inconsistencies.append(
                    TypeInconsistency(
                        field=path,
                        types=list(definition.observed_types),
                        counts={kind.value: count for kind, count in entry.types.items()},
                    )
                )
            if entry.parent is None:
                roots.append(definition)
            else:
                parent = kept[entry.parent]
                if parent.nested_fields is None:
                    parent.nested_fields = []
                parent.nested_fields.append(definition)
        return roots, inconsistencies

    def sample(self, collection: str, documents: Sequence[Mapping[str, Any]], requested: int) -> SamplingResult:
        fields, inconsistencies = self.analyze(documents)
        confidence = min(1.0, len(documents) / requested) if requested > 0 else 0.0
        return SamplingResult(
            collection=collection,
            sample_size=requested,
            sampled_documents=len(documents),
            fields=fields,
            confidence=confidence,
            inconsistencies=inconsistencies,
        )


__all__ = [
    "MAX_SAMPLE_VALUES",
    "SamplingResult",
    "SchemaSampler",
    "TypeInconsistency",
    "infer_document_type",
]
