"""Interface between an upstream change-log reader and the producer.

A binlog/WAL reader turns each row change into a ``ChangeEvent`` and hands
it to a ``ChangeListener`` (the mutation producer implements one).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

from rowstream.wire.records import (
    DeleteMutation,
    InsertMutation,
    Mutation,
    UpdateMutation,
)


@dataclass(slots=True)
class ChangeEvent:
    """A single row change read from a database log."""

    operation: Literal["insert", "update", "delete"]
    database: str
    table: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    primary_key: tuple[str, ...] = ()
    position: int | None = field(default=None, compare=False)  # log offset / LSN

    def to_mutation(self) -> Mutation:
        """Convert to the typed record of the event's operation."""
        if self.operation == "insert":
            if self.after is None:
                msg = f"Insert on {self.database}.{self.table} has no row image"
                raise ValueError(msg)
            return InsertMutation(
                self.database, self.table, self.after, self.primary_key
            )
        if self.operation == "update":
            if self.before is None or self.after is None:
                msg = (
                    f"Update on {self.database}.{self.table} needs both the "
                    "old and the new row image"
                )
                raise ValueError(msg)
            return UpdateMutation(
                self.database, self.table, self.before, self.after, self.primary_key
            )
        if self.operation == "delete":
            if self.before is None:
                msg = f"Delete on {self.database}.{self.table} has no row image"
                raise ValueError(msg)
            return DeleteMutation(
                self.database, self.table, self.before, self.primary_key
            )
        msg = f"Unknown operation '{self.operation}'"
        raise ValueError(msg)


@runtime_checkable
class ChangeListener(Protocol):
    """Receives row changes from a log reader."""

    def on_mutation(self, event: ChangeEvent) -> None:
        """Handle one change event."""
        ...
