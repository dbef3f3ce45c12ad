"""Typed mutation producer: register, serialize, frame, publish."""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

import structlog
from confluent_kafka import KafkaException, Producer

from rowstream.config.models import KafkaConfig, ProducerConfig
from rowstream.errors import PublishFailed, UnknownSubject
from rowstream.schema.avro import MutationSchema, generic_schema
from rowstream.schema.repository import RegisteredSchema, SchemaRepository
from rowstream.schema.subject import Subject
from rowstream.sources.base import ChangeEvent
from rowstream.streaming.auth import client_config
from rowstream.streaming.topics import mutation_topic_name
from rowstream.wire.codec import FrameCodec, MutationCodec
from rowstream.wire.records import Mutation

logger = structlog.get_logger()

SchemaProvider = Callable[[Subject], MutationSchema]


@dataclass(frozen=True, slots=True)
class DeliveryReport:
    """Broker acknowledgment of one published mutation."""

    topic: str
    partition: int
    offset: int
    schema_id: int


def generic_schema_provider(subject: Subject) -> MutationSchema:
    """Schema provider that maps every subject to the generic layout."""
    return generic_schema(subject.kind)


def create_producer(
    kafka_config: KafkaConfig, producer_config: ProducerConfig | None = None
) -> Producer:
    """Create an idempotent Kafka producer."""
    cfg = producer_config or ProducerConfig()
    return Producer(
        client_config(
            kafka_config,
            **{
                "enable.idempotence": kafka_config.enable_idempotence,
                "acks": kafka_config.acks,
                "linger.ms": cfg.linger_ms,
                "delivery.timeout.ms": cfg.delivery_timeout_ms,
            },
        )
    )


class MutationProducer:
    """Publishes typed mutation records as schema-id framed Avro.

    Every mutation of a table goes to ``mutation_topic_name(db, table,
    layout)`` keyed by its row key, so a single partition sees the changes of
    one row in commit order.

    Subjects are looked up in the shared repository. When a *schema_provider*
    is given, unknown subjects are registered on first use; otherwise they
    must have been registered up front and ``UnknownSubject`` is raised.

    ``send`` may be called from several threads. Calls into the underlying
    client's ``produce`` are serialized, and a background thread polls the
    client so delivery futures resolve without the caller flushing.
    """

    def __init__(
        self,
        kafka_config: KafkaConfig,
        repository: SchemaRepository,
        *,
        producer_config: ProducerConfig | None = None,
        schema_provider: SchemaProvider | None = None,
        codec: MutationCodec | None = None,
    ) -> None:
        self._config = producer_config or ProducerConfig()
        self._repository = repository
        self._schema_provider = schema_provider
        self._frames = FrameCodec(repository, codec)
        self._producer = create_producer(kafka_config, self._config)
        self._produce_lock = threading.Lock()
        self._closed = threading.Event()
        self._poller = threading.Thread(
            target=self._poll_loop, name="rowstream-producer-poll", daemon=True
        )
        self._poller.start()

    def _poll_loop(self) -> None:
        while not self._closed.is_set():
            try:
                self._producer.poll(self._config.poll_interval_seconds)
            except Exception as exc:
                logger.error("producer.poll_failed", error=str(exc))

    def _resolve(self, subject: Subject) -> RegisteredSchema:
        try:
            return self._repository.get(subject)
        except UnknownSubject:
            if self._schema_provider is None:
                raise
        self._repository.register(subject, self._schema_provider(subject))
        return self._repository.get(subject)

    def send(self, mutation: Mutation) -> Future[DeliveryReport]:
        """Publish *mutation*; the future resolves on broker acknowledgment.

        Raises ``UnknownSubject``, ``SerializationFailed`` or
        ``PublishFailed`` synchronously. Broker-side delivery errors fail the
        returned future with ``PublishFailed``. Nothing is retried here.
        """
        if self._closed.is_set():
            msg = "MutationProducer is closed"
            raise RuntimeError(msg)

        subject = mutation.subject
        self._resolve(subject)
        registered, frame = self._frames.encode(mutation)
        topic = mutation_topic_name(
            subject.database, subject.table, registered.schema.layout
        )
        key = mutation.row_key()
        future: Future[DeliveryReport] = Future()

        def _on_delivery(err: Any, msg: Any) -> None:
            # The caller may have cancelled the future while it was in flight.
            if not future.set_running_or_notify_cancel():
                logger.debug("producer.delivery_cancelled", topic=topic)
                return
            if err is not None:
                logger.error(
                    "producer.delivery_failed",
                    topic=topic,
                    subject=str(subject),
                    error=str(err),
                )
                future.set_exception(PublishFailed(topic, err))
                return
            future.set_result(
                DeliveryReport(
                    topic=msg.topic(),
                    partition=msg.partition(),
                    offset=msg.offset(),
                    schema_id=registered.schema_id,
                )
            )

        with self._produce_lock:
            try:
                self._producer.produce(
                    topic=topic, key=key, value=frame, on_delivery=_on_delivery
                )
            except (BufferError, KafkaException) as exc:
                logger.error(
                    "producer.publish_failed",
                    topic=topic,
                    subject=str(subject),
                    error=str(exc),
                )
                raise PublishFailed(topic, exc) from exc

        logger.debug(
            "producer.sent",
            topic=topic,
            subject=str(subject),
            schema_id=registered.schema_id,
            size=len(frame),
        )
        return future

    def send_and_wait(
        self, mutation: Mutation, timeout: float | None = None
    ) -> DeliveryReport:
        """Publish and block until the broker acknowledges."""
        future = self.send(mutation)
        return future.result(
            timeout=timeout if timeout is not None else self._config.flush_timeout_seconds
        )

    def on_mutation(self, event: ChangeEvent) -> None:
        """``ChangeListener`` hook for a log reader."""
        self.send(event.to_mutation())

    def flush(self, timeout: float | None = None) -> int:
        """Wait for in-flight messages; return how many are still pending."""
        remaining = self._producer.flush(
            timeout if timeout is not None else self._config.flush_timeout_seconds
        )
        if remaining:
            logger.warning("producer.flush_incomplete", pending=remaining)
        return int(remaining)

    def close(self) -> None:
        """Flush and stop the delivery poller. Safe to call more than once."""
        if self._closed.is_set():
            return
        self.flush()
        self._closed.set()
        self._poller.join(timeout=self._config.poll_interval_seconds * 10)
        logger.info("producer.closed")

    def __enter__(self) -> MutationProducer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
