"""Avro body codec: mutation records <-> schemaless Avro bytes."""

from __future__ import annotations

import io
import struct
from typing import Any

import fastavro

from rowstream.errors import (
    DeserializationFailed,
    SerializationFailed,
    UnknownSchemaId,
    UnresolvedSchema,
)
from rowstream.schema.avro import (
    METADATA_FIELDS,
    NEW_PREFIX,
    OLD_PREFIX,
    Layout,
    MutationSchema,
)
from rowstream.schema.repository import RegisteredSchema, SchemaRepository
from rowstream.schema.subject import MutationKind
from rowstream.wire.frame import decode_frame, encode_frame
from rowstream.wire.records import (
    DeleteMutation,
    InsertMutation,
    Mutation,
    UpdateMutation,
)


def _columns(schema: MutationSchema) -> list[str]:
    return [name for name in schema.field_names if name not in METADATA_FIELDS]


def _update_columns(schema: MutationSchema) -> list[str]:
    return [
        name[len(NEW_PREFIX) :]
        for name in _columns(schema)
        if name.startswith(NEW_PREFIX)
    ]


class MutationCodec:
    """Converts mutation records to Avro bodies and back.

    The record shape on the wire depends on the schema layout; the record
    variant produced on decode depends only on the registered subject's kind.
    """

    def serialize(self, schema: MutationSchema, mutation: Mutation) -> bytes:
        datum = self.to_datum(schema, mutation)
        buf = io.BytesIO()
        try:
            fastavro.schemaless_writer(buf, schema.parsed, datum)
        except (
            ValueError,
            TypeError,
            KeyError,
            AttributeError,
            OverflowError,
            struct.error,
        ) as exc:
            msg = f"Cannot encode {mutation.subject} with schema '{schema.name}': {exc}"
            raise SerializationFailed(msg) from exc
        return buf.getvalue()

    def deserialize(self, registered: RegisteredSchema, body: bytes) -> Mutation:
        schema = registered.schema
        buf = io.BytesIO(body)
        try:
            datum = fastavro.schemaless_reader(buf, schema.parsed)
        except Exception as exc:
            msg = (
                f"Cannot decode schema id {registered.schema_id} "
                f"({registered.subject}): {exc}"
            )
            raise DeserializationFailed(msg) from exc
        if buf.tell() != len(body):
            msg = (
                f"Schema id {registered.schema_id} ({registered.subject}) left "
                f"{len(body) - buf.tell()} trailing byte(s) undecoded"
            )
            raise DeserializationFailed(msg)
        if not isinstance(datum, dict):
            msg = f"Schema id {registered.schema_id} did not decode to a record"
            raise DeserializationFailed(msg)
        try:
            return self.from_datum(registered, datum)
        except KeyError as exc:
            msg = (
                f"Schema id {registered.schema_id} ({registered.subject}) lacks "
                f"field {exc} required by a {registered.subject.kind} record"
            )
            raise DeserializationFailed(msg) from exc

    # -- datum mapping -----------------------------------------------------------

    def to_datum(self, schema: MutationSchema, mutation: Mutation) -> dict[str, Any]:
        datum: dict[str, Any] = {
            "database": mutation.database,
            "table": mutation.table,
        }
        if schema.layout == Layout.GENERIC:
            if isinstance(mutation, UpdateMutation):
                datum["old_row"] = dict(mutation.old_row)
                datum["new_row"] = dict(mutation.new_row)
            else:
                datum["row"] = dict(mutation.row)
            return datum

        if isinstance(mutation, UpdateMutation):
            columns = _update_columns(schema)
            self._check_columns(schema, mutation.old_row, columns)
            self._check_columns(schema, mutation.new_row, columns)
            for col in columns:
                datum[f"{OLD_PREFIX}{col}"] = mutation.old_row.get(col)
                datum[f"{NEW_PREFIX}{col}"] = mutation.new_row.get(col)
        else:
            columns = _columns(schema)
            self._check_columns(schema, mutation.row, columns)
            datum.update(mutation.row)
        return datum

    @staticmethod
    def _check_columns(
        schema: MutationSchema, row: dict[str, Any], columns: list[str]
    ) -> None:
        unknown = sorted(set(row) - set(columns))
        if unknown:
            msg = f"Schema '{schema.name}' has no column(s) {unknown}"
            raise SerializationFailed(msg)

    def from_datum(
        self, registered: RegisteredSchema, datum: dict[str, Any]
    ) -> Mutation:
        schema = registered.schema
        kind = registered.subject.kind
        database = datum["database"]
        table = datum["table"]

        if schema.layout == Layout.GENERIC:
            if kind == MutationKind.UPDATE:
                return UpdateMutation(
                    database, table, dict(datum["old_row"]), dict(datum["new_row"])
                )
            row = dict(datum["row"])
        elif kind == MutationKind.UPDATE:
            columns = _update_columns(schema)
            return UpdateMutation(
                database,
                table,
                {col: datum[f"{OLD_PREFIX}{col}"] for col in columns},
                {col: datum[f"{NEW_PREFIX}{col}"] for col in columns},
            )
        else:
            row = {col: datum[col] for col in _columns(schema)}

        if kind == MutationKind.INSERT:
            return InsertMutation(database, table, row)
        return DeleteMutation(database, table, row)


class FrameCodec:
    """Frames mutations against a schema repository.

    ``encode`` expects the mutation's subject to be registered already;
    ``decode`` resolves the schema from the id in the frame header.
    """

    def __init__(
        self, repository: SchemaRepository, codec: MutationCodec | None = None
    ) -> None:
        self._repository = repository
        self._codec = codec or MutationCodec()

    @property
    def repository(self) -> SchemaRepository:
        return self._repository

    def encode(self, mutation: Mutation) -> tuple[RegisteredSchema, bytes]:
        registered = self._repository.get(mutation.subject)
        body = self._codec.serialize(registered.schema, mutation)
        return registered, encode_frame(registered.schema_id, body)

    def decode(
        self,
        frame: bytes,
        *,
        topic: str | None = None,
        partition: int | None = None,
        offset: int | None = None,
    ) -> tuple[RegisteredSchema, Mutation]:
        """Decode one frame.

        Raises ``FrameTooShort``, ``UnresolvedSchema`` or
        ``DeserializationFailed``.
        """
        schema_id, body = decode_frame(frame)
        try:
            registered = self._repository.schema_for(schema_id)
        except UnknownSchemaId:
            raise UnresolvedSchema(
                schema_id, topic=topic, partition=partition, offset=offset
            ) from None
        return registered, self._codec.deserialize(registered, body)
