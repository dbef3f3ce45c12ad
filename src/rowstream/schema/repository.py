"""In-memory schema repository: subject <-> schema id <-> schema.

Readers never take a lock. Every registration builds new immutable mappings
under the writer lock and publishes them with a single reference swap, so an
id returned by ``register`` is visible to ``schema_for`` on every thread.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType

import structlog

from rowstream.errors import (
    DuplicateSubjectConflict,
    SchemaIdExhausted,
    UnknownSchemaId,
    UnknownSubject,
)
from rowstream.schema.avro import MutationSchema
from rowstream.schema.subject import Subject
from rowstream.wire.frame import MAX_SCHEMA_ID

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class RegisteredSchema:
    schema_id: int
    subject: Subject
    schema: MutationSchema


@dataclass(frozen=True, slots=True)
class _Snapshot:
    by_id: Mapping[int, RegisteredSchema]
    by_subject: Mapping[Subject, int]
    next_id: int


class SchemaRepository:
    """Maps subjects to compact schema ids and back.

    Ids are assigned monotonically starting at *first_id* and never reused
    within one instance.
    """

    def __init__(self, first_id: int = 0) -> None:
        if not 0 <= first_id <= MAX_SCHEMA_ID:
            msg = f"first_id must be within 0..{MAX_SCHEMA_ID}, got {first_id}"
            raise ValueError(msg)
        self._write_lock = threading.Lock()
        self._snapshot = _Snapshot(
            by_id=MappingProxyType({}),
            by_subject=MappingProxyType({}),
            next_id=first_id,
        )

    def register(self, subject: Subject, schema: MutationSchema) -> int:
        """Register *schema* under *subject* and return its id.

        Re-registering a subject with a structurally equal schema returns the
        existing id; a different schema raises ``DuplicateSubjectConflict``.
        """
        existing = self._existing_id(subject, schema)
        if existing is not None:
            return existing

        with self._write_lock:
            existing = self._existing_id(subject, schema)
            if existing is not None:
                return existing

            snap = self._snapshot
            schema_id = snap.next_id
            if schema_id > MAX_SCHEMA_ID:
                raise SchemaIdExhausted(MAX_SCHEMA_ID)

            by_id = dict(snap.by_id)
            by_id[schema_id] = RegisteredSchema(schema_id, subject, schema)
            by_subject = dict(snap.by_subject)
            by_subject[subject] = schema_id
            self._snapshot = _Snapshot(
                by_id=MappingProxyType(by_id),
                by_subject=MappingProxyType(by_subject),
                next_id=schema_id + 1,
            )

        logger.info(
            "registry.schema_registered",
            subject=str(subject),
            schema_id=schema_id,
            schema=schema.name,
            layout=schema.layout.value,
        )
        return schema_id

    def _existing_id(self, subject: Subject, schema: MutationSchema) -> int | None:
        snap = self._snapshot
        schema_id = snap.by_subject.get(subject)
        if schema_id is None:
            return None
        if snap.by_id[schema_id].schema != schema:
            raise DuplicateSubjectConflict(subject, schema_id)
        return schema_id

    def schema_for(self, schema_id: int) -> RegisteredSchema:
        try:
            return self._snapshot.by_id[schema_id]
        except KeyError:
            raise UnknownSchemaId(schema_id) from None

    def id_for(self, subject: Subject) -> int:
        try:
            return self._snapshot.by_subject[subject]
        except KeyError:
            raise UnknownSubject(subject) from None

    def get(self, subject: Subject) -> RegisteredSchema:
        """Return the registered entry of *subject*."""
        snap = self._snapshot
        try:
            return snap.by_id[snap.by_subject[subject]]
        except KeyError:
            raise UnknownSubject(subject) from None

    def subjects(self) -> list[Subject]:
        return [entry.subject for entry in self]

    def __contains__(self, subject: object) -> bool:
        return subject in self._snapshot.by_subject

    def __len__(self) -> int:
        return len(self._snapshot.by_id)

    def __iter__(self) -> Iterator[RegisteredSchema]:
        by_id = self._snapshot.by_id
        return iter([by_id[k] for k in sorted(by_id)])


def load_schema_dir(repository: SchemaRepository, path: str | Path) -> list[int]:
    """Register every ``<database>.<table>.<kind>.avsc`` file under *path*.

    Files are registered in sorted filename order, so two processes loading
    the same directory into fresh repositories assign identical ids.
    """
    directory = Path(path)
    if not directory.is_dir():
        msg = f"Schema directory not found: {directory}"
        raise FileNotFoundError(msg)

    ids: list[int] = []
    for file in sorted(directory.glob("*.avsc")):
        try:
            subject = Subject.parse(file.name.removesuffix(".avsc"))
        except ValueError as exc:
            msg = f"Cannot derive a subject from schema file '{file.name}': {exc}"
            raise ValueError(msg) from exc
        ids.append(repository.register(subject, MutationSchema.load(file)))
    logger.info("registry.schema_dir_loaded", path=str(directory), count=len(ids))
    return ids
