"""Topic naming conventions and Kafka admin utilities."""

from __future__ import annotations

import structlog
from confluent_kafka.admin import AdminClient, NewTopic  # type: ignore[attr-defined]

from rowstream.config.models import KafkaConfig
from rowstream.schema.avro import Layout
from rowstream.streaming.auth import client_config

logger = structlog.get_logger()


def mutation_topic_name(
    database: str, table: str, layout: Layout | str = Layout.SPECIFIC
) -> str:
    """Topic shared by all three mutation kinds of a table: ``<db>_<table>_<layout>``."""
    return f"{database}_{table}_{Layout(layout).value}"


def dlq_topic_name(source_topic: str, suffix: str = "dlq") -> str:
    """Build a DLQ topic name: ``<source_topic>.<suffix>``."""
    return f"{source_topic}.{suffix}"


def topics_for_tables(
    tables: list[tuple[str, str]],
    *,
    layout: Layout | str = Layout.SPECIFIC,
    dlq_suffix: str | None = None,
) -> list[str]:
    """Return mutation topics (and DLQ topics when *dlq_suffix* is set)."""
    topics: list[str] = []
    for database, table in tables:
        topic = mutation_topic_name(database, table, layout)
        topics.append(topic)
        if dlq_suffix:
            topics.append(dlq_topic_name(topic, dlq_suffix))
    return topics


def ensure_topics(config: KafkaConfig, topics: list[str]) -> list[str]:
    """Create missing topics; return the names that were created."""
    admin = AdminClient(client_config(config))
    existing = set(admin.list_topics(timeout=10).topics.keys())
    to_create = [
        NewTopic(
            t,
            num_partitions=config.topic_num_partitions,
            replication_factor=config.topic_replication_factor,
        )
        for t in topics
        if t not in existing
    ]
    if not to_create:
        logger.info("topics.all_exist", count=len(topics))
        return []
    futures = admin.create_topics(to_create)
    created: list[str] = []
    failed: list[str] = []
    for topic, future in futures.items():
        try:
            future.result()
            logger.info("topic.created", topic=topic)
            created.append(topic)
        except Exception as exc:
            logger.error("topic.create_failed", topic=topic, error=str(exc))
            failed.append(f"{topic}: {exc}")
    if failed:
        msg = f"Failed to create {len(failed)} topic(s): {'; '.join(failed)}"
        raise RuntimeError(msg)
    return created
