"""Typer CLI for rowstream."""

from __future__ import annotations

import time
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from rowstream.config.loader import load_config
from rowstream.config.models import RowstreamConfig
from rowstream.observability.log import configure_logging
from rowstream.schema.avro import Layout, generic_schema
from rowstream.schema.repository import SchemaRepository, load_schema_dir
from rowstream.schema.subject import MutationKind, Subject
from rowstream.streaming.consumer import MutationConsumer
from rowstream.streaming.topics import ensure_topics, topics_for_tables
from rowstream.wire.records import DeleteMutation, InsertMutation, UpdateMutation

console = Console()
app = typer.Typer(name="rowstream", help="Row-mutation wire protocol tools")


def _load(config_path: str | None) -> RowstreamConfig:
    if config_path is not None and not Path(config_path).exists():
        console.print(f"[red]Config file not found: {config_path}[/red]")
        raise typer.Exit(1)
    try:
        config = load_config(config_path)
    except ValueError as exc:
        console.print(f"[red]Invalid config:[/red] {exc}")
        raise typer.Exit(1) from exc
    configure_logging(config.log_level, json=config.log_json)
    return config


def _build_repository(config: RowstreamConfig, schema_dir: str | None) -> SchemaRepository:
    repository = SchemaRepository(first_id=config.registry.first_id)
    directory = schema_dir or config.registry.schema_dir
    if directory is not None:
        try:
            load_schema_dir(repository, directory)
        except (FileNotFoundError, ValueError) as exc:
            console.print(f"[red]Cannot load schemas:[/red] {exc}")
            raise typer.Exit(1) from exc
    return repository


@app.command()
def validate(
    config_path: str | None = typer.Option(None, "--config", help="Config YAML"),
) -> None:
    """Validate a configuration file and print the effective settings."""
    config = _load(config_path)
    console.print(f"[green]Valid[/green]: {config_path or '(defaults)'}")
    console.print(f"  kafka:    {config.kafka.bootstrap_servers}")
    console.print(f"  group:    {config.kafka.group_id}")
    console.print(f"  auth:     {config.kafka.auth_mechanism}")
    console.print(f"  registry: first_id={config.registry.first_id}")
    if config.registry.schema_dir:
        console.print(f"  schemas:  {config.registry.schema_dir}")
    console.print(f"  dlq:      {'enabled' if config.dlq.enabled else 'disabled'}")


@app.command()
def schemas(
    schema_dir: str | None = typer.Option(
        None, "--schema-dir", help="Directory of <db>.<table>.<kind>.avsc files"
    ),
    config_path: str | None = typer.Option(None, "--config", help="Config YAML"),
) -> None:
    """List the schema ids a schema directory resolves to."""
    config = _load(config_path)
    repository = _build_repository(config, schema_dir)
    if not len(repository):
        console.print("[yellow]No schemas registered[/yellow]")
        return

    table = Table(title="Registered schemas")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Subject")
    table.add_column("Record")
    table.add_column("Layout")
    table.add_column("Fingerprint", style="dim")
    for entry in repository:
        table.add_row(
            str(entry.schema_id),
            str(entry.subject),
            entry.schema.name,
            entry.schema.layout.value,
            entry.schema.fingerprint,
        )
    console.print(table)


@app.command()
def topics(
    tables: list[str] = typer.Argument(..., help="<database>.<table> entries"),
    generic: bool = typer.Option(False, "--generic", help="Use generic topics"),
    config_path: str | None = typer.Option(None, "--config", help="Config YAML"),
) -> None:
    """Create the mutation (and DLQ) topics of the given tables."""
    config = _load(config_path)
    pairs: list[tuple[str, str]] = []
    for entry in tables:
        database, sep, table = entry.partition(".")
        if not sep or not database or not table:
            console.print(f"[red]'{entry}' must look like <database>.<table>[/red]")
            raise typer.Exit(1)
        pairs.append((database, table))

    names = topics_for_tables(
        pairs,
        layout=Layout.GENERIC if generic else Layout.SPECIFIC,
        dlq_suffix=config.dlq.topic_suffix if config.dlq.enabled else None,
    )
    try:
        created = ensure_topics(config.kafka, names)
    except RuntimeError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc
    for name in names:
        marker = "[green]created[/green]" if name in created else "[dim]exists[/dim]"
        console.print(f"  {name} {marker}")


@app.command()
def consume(
    database: str = typer.Argument(..., help="Database name"),
    table: str = typer.Argument(..., help="Table name"),
    schema_dir: str | None = typer.Option(
        None, "--schema-dir", help="Directory of <db>.<table>.<kind>.avsc files"
    ),
    group_id: str | None = typer.Option(None, "--group-id", help="Consumer group"),
    generic: bool = typer.Option(False, "--generic", help="Read the generic topic"),
    config_path: str | None = typer.Option(None, "--config", help="Config YAML"),
) -> None:
    """Start a debug console consumer that prints decoded mutations."""
    config = _load(config_path)
    repository = _build_repository(config, schema_dir)
    layout = Layout.GENERIC if generic else Layout.SPECIFIC
    if generic:
        for kind in MutationKind:
            repository.register(Subject(database, table, kind), generic_schema(kind))

    def on_insert(mutation: InsertMutation) -> bool:
        console.print(f"[green]insert[/green] {mutation.database}.{mutation.table}")
        console.print(f"  row: {mutation.row}")
        return True

    def on_update(mutation: UpdateMutation) -> bool:
        console.print(f"[yellow]update[/yellow] {mutation.database}.{mutation.table}")
        console.print(f"  old: {mutation.old_row}")
        console.print(f"  new: {mutation.new_row}")
        return True

    def on_delete(mutation: DeleteMutation) -> bool:
        console.print(f"[red]delete[/red] {mutation.database}.{mutation.table}")
        console.print(f"  row: {mutation.row}")
        return True

    topic = topics_for_tables([(database, table)], layout=layout)[0]
    consumer = MutationConsumer(
        topic,
        config.kafka,
        repository,
        on_insert=on_insert,
        on_update=on_update,
        on_delete=on_delete,
        group_id=group_id or f"{database}_{table}_console-{int(time.time() * 1000)}",
        consumer_config=config.consumer,
        dlq_config=config.dlq,
    )
    console.print(f"[yellow]Consuming from:[/yellow] {topic}")
    future = consumer.start()
    try:
        stats = future.result()
    except KeyboardInterrupt:
        stats = consumer.stop().result(timeout=config.consumer.poll_timeout_seconds * 5)
    console.print(
        f"dispatched={stats.dispatched} skipped={stats.skipped} "
        f"callback_failures={stats.callback_failures}"
    )
