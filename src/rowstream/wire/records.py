"""Typed mutation records: one variant per operation kind."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

from rowstream.schema.subject import MutationKind, Subject

_KEY_SEPARATOR = "\x1f"


def _row_key(
    database: str, table: str, row: dict[str, Any], primary_key: tuple[str, ...]
) -> bytes:
    """Partition key for a row.

    Without a primary key every mutation of the table shares one key, which
    keeps the whole table on one partition and therefore in commit order.
    """
    if not primary_key:
        return f"{database}.{table}".encode()
    try:
        values = [row[col] for col in primary_key]
    except KeyError as exc:
        msg = f"Primary key column {exc} missing from {database}.{table} row"
        raise ValueError(msg) from None
    parts = [v.hex() if isinstance(v, bytes) else str(v) for v in values]
    return _KEY_SEPARATOR.join(parts).encode()


@dataclass(slots=True)
class InsertMutation:
    """A newly inserted row."""

    kind: ClassVar[MutationKind] = MutationKind.INSERT

    database: str
    table: str
    row: dict[str, Any]
    primary_key: tuple[str, ...] = field(default=(), compare=False)

    @property
    def subject(self) -> Subject:
        return Subject(self.database, self.table, self.kind)

    def row_key(self) -> bytes:
        return _row_key(self.database, self.table, self.row, self.primary_key)


@dataclass(slots=True)
class UpdateMutation:
    """Old and new values of every tracked column of an updated row."""

    kind: ClassVar[MutationKind] = MutationKind.UPDATE

    database: str
    table: str
    old_row: dict[str, Any]
    new_row: dict[str, Any]
    primary_key: tuple[str, ...] = field(default=(), compare=False)

    @property
    def subject(self) -> Subject:
        return Subject(self.database, self.table, self.kind)

    def row_key(self) -> bytes:
        # Keyed on the old image so the update follows the insert it modifies.
        return _row_key(self.database, self.table, self.old_row, self.primary_key)

    def changed_columns(self) -> list[str]:
        return [
            col
            for col in self.new_row
            if self.old_row.get(col) != self.new_row.get(col)
        ]


@dataclass(slots=True)
class DeleteMutation:
    """The last image of a deleted row."""

    kind: ClassVar[MutationKind] = MutationKind.DELETE

    database: str
    table: str
    row: dict[str, Any]
    primary_key: tuple[str, ...] = field(default=(), compare=False)

    @property
    def subject(self) -> Subject:
        return Subject(self.database, self.table, self.kind)

    def row_key(self) -> bytes:
        return _row_key(self.database, self.table, self.row, self.primary_key)


Mutation = InsertMutation | UpdateMutation | DeleteMutation
