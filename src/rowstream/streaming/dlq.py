"""Dead-letter routing for messages the consumer skips."""

from __future__ import annotations

import time
import traceback

import structlog
from confluent_kafka import Producer

from rowstream.config.models import DLQConfig
from rowstream.errors import UnresolvedSchema
from rowstream.streaming.topics import dlq_topic_name

logger = structlog.get_logger()


class DLQHandler:
    """Copies a skipped frame to ``<topic>.<suffix>`` with diagnostic headers.

    DLQ write failures are logged and never raised: the consumer has already
    decided to skip the message and must keep going.
    """

    def __init__(self, producer: Producer, config: DLQConfig | None = None) -> None:
        self._producer = producer
        self._config = config or DLQConfig()

    def send(
        self,
        *,
        source_topic: str,
        partition: int,
        offset: int,
        key: bytes | None,
        value: bytes | None,
        error: Exception,
    ) -> bool:
        """Publish the failed frame; return whether the DLQ accepted it."""
        if not self._config.enabled:
            return False

        dlq = dlq_topic_name(source_topic, self._config.topic_suffix)
        headers: list[tuple[str, bytes]] = []
        if self._config.include_headers:
            fields = {
                "dlq.source.topic": source_topic,
                "dlq.source.partition": str(partition),
                "dlq.source.offset": str(offset),
                "dlq.error.type": type(error).__name__,
                "dlq.error.message": str(error),
                "dlq.timestamp": str(int(time.time() * 1000)),
            }
            if isinstance(error, UnresolvedSchema):
                fields["dlq.schema.id"] = str(error.schema_id)
            if error.__traceback__ is not None:
                fields["dlq.error.stacktrace"] = "".join(
                    traceback.format_exception(error)
                )
            headers = [(k, v.encode()) for k, v in fields.items()]

        try:
            self._producer.produce(topic=dlq, key=key, value=value, headers=headers)
            if self._config.flush_interval_seconds <= 0:
                self._producer.flush(timeout=10)
            else:
                self._producer.poll(0)
        except Exception as dlq_exc:
            logger.error(
                "dlq.write_failed",
                topic=dlq,
                source_topic=source_topic,
                partition=partition,
                offset=offset,
                original_error=str(error),
                dlq_error=str(dlq_exc),
            )
            return False
        logger.warning(
            "dlq.message_sent",
            topic=dlq,
            source_topic=source_topic,
            partition=partition,
            offset=offset,
            error=str(error),
        )
        return True

    def flush(self, timeout: float = 30.0) -> None:
        """Flush pending DLQ messages; called when the consumer stops."""
        self._producer.flush(timeout=timeout)
