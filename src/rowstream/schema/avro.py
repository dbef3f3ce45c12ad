"""Avro schema definitions for mutation records.

Two layouts are supported:

- ``specific``: one Avro field per column. Insert and delete records carry
  ``database``, ``table`` and the columns; update records carry ``database``,
  ``table`` and an ``old_<column>`` / ``new_<column>`` pair per column.
- ``generic``: a single table-agnostic schema per operation kind whose row
  values live in a map of nullable primitives (``row`` for insert/delete,
  ``old_row`` / ``new_row`` for update).
"""

from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

import fastavro
from fastavro.schema import (
    SchemaParseException,
    UnknownType,
    fingerprint,
    to_parsing_canonical_form,
)

from rowstream.schema.subject import MutationKind

SPECIFIC_NAMESPACE = "rowstream.specific"
GENERIC_NAMESPACE = "rowstream.generic"

# Fields every mutation schema carries in front of the row data.
METADATA_FIELDS = ("database", "table")
OLD_PREFIX = "old_"
NEW_PREFIX = "new_"

COLUMN_TYPES = frozenset(
    {"boolean", "int", "long", "float", "double", "string", "bytes"}
)
GENERIC_VALUE_TYPES = ["null", "boolean", "long", "double", "string", "bytes"]

_AVRO_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Layout(StrEnum):
    """How row values are laid out inside a mutation record."""

    SPECIFIC = "specific"
    GENERIC = "generic"


@dataclass(frozen=True, slots=True)
class Column:
    """A table column as it appears in a specific schema."""

    name: str
    type: str
    nullable: bool = False

    def __post_init__(self) -> None:
        if not _AVRO_NAME.match(self.name):
            msg = f"Column name '{self.name}' is not a valid Avro field name"
            raise ValueError(msg)
        if self.type not in COLUMN_TYPES:
            msg = (
                f"Column '{self.name}' has unsupported type '{self.type}' "
                f"(expected one of {sorted(COLUMN_TYPES)})"
            )
            raise ValueError(msg)

    def avro_field(self, name: str | None = None) -> dict[str, Any]:
        field_name = name or self.name
        if self.nullable:
            return {"name": field_name, "type": ["null", self.type], "default": None}
        return {"name": field_name, "type": self.type}


@dataclass(frozen=True)
class MutationSchema:
    """Immutable Avro record schema plus the layout its fields follow.

    Two schemas are equal when their Parsing Canonical Forms and layouts
    match; docs, aliases and field defaults do not take part.
    """

    definition: dict[str, Any] = field(compare=False, hash=False)
    layout: Layout = Layout.SPECIFIC
    canonical: str = field(init=False)
    parsed: Any = field(init=False, compare=False, hash=False, repr=False)

    def __post_init__(self) -> None:
        definition = copy.deepcopy(self.definition)
        if not isinstance(definition, dict) or definition.get("type") != "record":
            msg = "A mutation schema must be an Avro record"
            raise ValueError(msg)
        try:
            parsed = fastavro.parse_schema(definition)
            canonical = to_parsing_canonical_form(definition)
        except (SchemaParseException, UnknownType, KeyError, TypeError) as exc:
            msg = f"Invalid Avro schema: {exc}"
            raise ValueError(msg) from exc

        names = {f["name"] for f in definition.get("fields", [])}
        missing = [name for name in METADATA_FIELDS if name not in names]
        if missing:
            msg = f"Mutation schema '{definition.get('name')}' lacks field(s) {missing}"
            raise ValueError(msg)

        object.__setattr__(self, "definition", definition)
        object.__setattr__(self, "layout", Layout(self.layout))
        object.__setattr__(self, "canonical", canonical)
        object.__setattr__(self, "parsed", parsed)

    @property
    def name(self) -> str:
        return str(self.definition["name"])

    @property
    def field_names(self) -> list[str]:
        return [f["name"] for f in self.definition["fields"]]

    @property
    def fingerprint(self) -> str:
        """CRC-64-AVRO fingerprint of the canonical form, as hex."""
        return str(fingerprint(self.canonical, "CRC-64-AVRO"))

    @classmethod
    def from_json(
        cls, text: str, layout: Layout | str = Layout.SPECIFIC
    ) -> MutationSchema:
        try:
            definition = json.loads(text)
        except json.JSONDecodeError as exc:
            msg = f"Schema is not valid JSON: {exc}"
            raise ValueError(msg) from exc
        return cls(definition, Layout(layout))

    @classmethod
    def load(cls, path: str | Path) -> MutationSchema:
        """Load an ``.avsc`` file. Records in the generic namespace load as generic."""
        p = Path(path)
        schema = cls.from_json(p.read_text(encoding="utf-8"))
        if schema.definition.get("namespace") == GENERIC_NAMESPACE:
            return cls(schema.definition, Layout.GENERIC)
        return schema


def _record_name(table: str, kind: MutationKind) -> str:
    base = "".join(part.capitalize() for part in re.split(r"[^A-Za-z0-9]+", table))
    if not base or base[0].isdigit():
        base = f"T{base}"
    return f"{base}{kind.value.capitalize()}"


def specific_schema(
    table: str, kind: MutationKind | str, columns: list[Column]
) -> MutationSchema:
    """Build the specific schema of one table and operation kind."""
    kind = MutationKind(kind)
    if not columns:
        msg = f"Table '{table}' needs at least one column"
        raise ValueError(msg)
    fields: list[dict[str, Any]] = [
        {"name": "database", "type": "string"},
        {"name": "table", "type": "string"},
    ]
    if kind == MutationKind.UPDATE:
        for col in columns:
            fields.append(col.avro_field(f"{OLD_PREFIX}{col.name}"))
            fields.append(col.avro_field(f"{NEW_PREFIX}{col.name}"))
    else:
        fields.extend(col.avro_field() for col in columns)
    definition = {
        "type": "record",
        "name": _record_name(table, kind),
        "namespace": SPECIFIC_NAMESPACE,
        "fields": fields,
    }
    return MutationSchema(definition, Layout.SPECIFIC)


def specific_schemas(
    table: str, columns: list[Column]
) -> dict[MutationKind, MutationSchema]:
    """Build the insert, update and delete specific schemas of a table."""
    return {kind: specific_schema(table, kind, columns) for kind in MutationKind}


def generic_schema(kind: MutationKind | str) -> MutationSchema:
    """Return the table-agnostic schema of an operation kind."""
    kind = MutationKind(kind)
    row_map = {"type": "map", "values": GENERIC_VALUE_TYPES}
    fields: list[dict[str, Any]] = [
        {"name": "database", "type": "string"},
        {"name": "table", "type": "string"},
    ]
    if kind == MutationKind.UPDATE:
        fields.append({"name": "old_row", "type": row_map})
        fields.append({"name": "new_row", "type": row_map})
    else:
        fields.append({"name": "row", "type": row_map})
    definition = {
        "type": "record",
        "name": f"Generic{kind.value.capitalize()}",
        "namespace": GENERIC_NAMESPACE,
        "fields": fields,
    }
    return MutationSchema(definition, Layout.GENERIC)
