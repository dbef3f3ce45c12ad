#!/usr/bin/env python3
"""Runnable demo: publish an insert/update/delete of one row and consume it back.

Prerequisites:
    docker compose -f docker/docker-compose.yml up -d
    python examples/user_mutations_demo.py
"""

from __future__ import annotations

from rich.console import Console

from rowstream.config.loader import load_config
from rowstream.observability.log import configure_logging
from rowstream.schema.avro import Column, specific_schemas
from rowstream.schema.repository import SchemaRepository
from rowstream.schema.subject import Subject
from rowstream.streaming.consumer import MutationConsumer
from rowstream.streaming.producer import MutationProducer
from rowstream.streaming.topics import ensure_topics, mutation_topic_name
from rowstream.wire.records import DeleteMutation, InsertMutation, UpdateMutation

console = Console()

COLUMNS = [
    Column("id", "long"),
    Column("username", "string"),
    Column("bio", "bytes"),
    Column("login_count", "int"),
]


def main() -> None:
    config = load_config()
    configure_logging("warning")

    # 1. Both sides share one repository so schema ids agree
    repository = SchemaRepository()
    for kind, schema in specific_schemas("user", COLUMNS).items():
        schema_id = repository.register(Subject("mypipe", "user", kind), schema)
        console.print(f"[bold]{schema.name}[/bold] -> schema id {schema_id}")

    topic = mutation_topic_name("mypipe", "user")
    ensure_topics(config.kafka, [topic])

    # 2. Publish the life of one row
    bob = {"id": 1, "username": "bob", "bio": b"hi", "login_count": 5}
    bob2 = {"id": 1, "username": "bob2", "bio": b"hello", "login_count": 6}
    with MutationProducer(config.kafka, repository) as producer:
        for mutation in (
            InsertMutation("mypipe", "user", bob, ("id",)),
            UpdateMutation("mypipe", "user", bob, bob2, ("id",)),
            DeleteMutation("mypipe", "user", bob2, ("id",)),
        ):
            report = producer.send_and_wait(mutation)
            console.print(
                f"[green]sent[/green] {mutation.kind} "
                f"partition={report.partition} offset={report.offset}"
            )

    # 3. Consume until the delete arrives
    def on_insert(mutation: InsertMutation) -> bool:
        console.print(f"[cyan]insert[/cyan] {mutation.row}")
        return True

    def on_update(mutation: UpdateMutation) -> bool:
        console.print(f"[yellow]update[/yellow] {mutation.changed_columns()}")
        return True

    def on_delete(mutation: DeleteMutation) -> bool:
        console.print(f"[red]delete[/red] {mutation.row}")
        return False

    consumer = MutationConsumer(
        topic,
        config.kafka,
        repository,
        on_insert=on_insert,
        on_update=on_update,
        on_delete=on_delete,
        group_id="rowstream-demo",
    )
    stats = consumer.start().result(timeout=60)
    console.print(f"\ndispatched={stats.dispatched} skipped={stats.skipped}")


if __name__ == "__main__":
    main()
