"""Registry subjects: the (database, table, operation) identity of a schema."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class MutationKind(StrEnum):
    """Row operation carried by a mutation record."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class Subject:
    """Registry key for a mutation schema. Never written to the wire."""

    database: str
    table: str
    kind: MutationKind

    def __post_init__(self) -> None:
        if not self.database or not self.table:
            msg = "Subject requires a non-empty database and table"
            raise ValueError(msg)
        # Accept the plain string form ("insert") as well as the enum.
        object.__setattr__(self, "kind", MutationKind(self.kind))

    def __str__(self) -> str:
        return f"{self.database}.{self.table}.{self.kind}"

    @classmethod
    def parse(cls, value: str) -> Subject:
        """Parse ``<database>.<table>.<kind>``."""
        parts = value.split(".")
        if len(parts) != 3:
            msg = f"Subject '{value}' must look like '<database>.<table>.<kind>'"
            raise ValueError(msg)
        database, table, kind = parts
        return cls(database, table, MutationKind(kind))


def subjects_for_table(database: str, table: str) -> list[Subject]:
    """Return the insert, update and delete subjects of one table."""
    return [Subject(database, table, kind) for kind in MutationKind]
