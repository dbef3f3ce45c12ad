"""Typed mutation consumer with per-kind callbacks and a completion future."""

from __future__ import annotations

import dataclasses
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum, StrEnum
from typing import Any

import structlog
from confluent_kafka import Consumer, KafkaError, KafkaException, Message

from rowstream.config.models import ConsumerConfig, DLQConfig, KafkaConfig
from rowstream.errors import (
    CallbackFailed,
    DeserializationFailed,
    FrameError,
    SubscriptionFailed,
    TransportDisconnected,
    UnresolvedSchema,
)
from rowstream.schema.repository import SchemaRepository
from rowstream.schema.subject import MutationKind
from rowstream.streaming.auth import client_config
from rowstream.streaming.dlq import DLQHandler
from rowstream.streaming.producer import create_producer
from rowstream.wire.codec import FrameCodec, MutationCodec
from rowstream.wire.records import (
    DeleteMutation,
    InsertMutation,
    UpdateMutation,
)

logger = structlog.get_logger()


class ConsumerState(StrEnum):
    CREATED = "created"
    SUBSCRIBING = "subscribing"
    POLLING = "polling"
    DISPATCHING = "dispatching"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


class DispatchSignal(Enum):
    """What a callback asks the loop to do after the current batch."""

    CONTINUE = "continue"
    STOP = "stop"


CallbackResult = bool | DispatchSignal | None
InsertCallback = Callable[[InsertMutation], CallbackResult]
UpdateCallback = Callable[[UpdateMutation], CallbackResult]
DeleteCallback = Callable[[DeleteMutation], CallbackResult]


@dataclass
class ConsumerStats:
    """Outcome counters; every consumed frame lands in exactly one of them."""

    dispatched: int = 0
    skipped: int = 0
    callback_failures: int = 0
    unhandled: int = 0
    batches: int = 0


def _as_signal(result: CallbackResult) -> DispatchSignal:
    if isinstance(result, DispatchSignal):
        return result
    if result is False:
        return DispatchSignal.STOP
    return DispatchSignal.CONTINUE


class MutationConsumer:
    """Consumes framed mutations from one topic and dispatches them by kind.

    ``start()`` subscribes on the calling thread (raising
    ``SubscriptionFailed`` on failure) and then polls on a dedicated thread.
    Frames are decoded against the shared repository and handed to
    ``on_insert`` / ``on_update`` / ``on_delete`` in receipt order.

    A callback returning ``False`` (or ``DispatchSignal.STOP``) lets the rest
    of the current batch dispatch, then ends polling. Undecodable frames and
    callback exceptions are logged, counted, optionally copied to the DLQ and
    skipped. A fatal transport error fails the completion future with
    ``TransportDisconnected``.
    """

    def __init__(
        self,
        topic: str,
        kafka_config: KafkaConfig,
        repository: SchemaRepository,
        *,
        on_insert: InsertCallback | None = None,
        on_update: UpdateCallback | None = None,
        on_delete: DeleteCallback | None = None,
        group_id: str | None = None,
        consumer_config: ConsumerConfig | None = None,
        dlq_config: DLQConfig | None = None,
        codec: MutationCodec | None = None,
    ) -> None:
        self._topic = topic
        self._kafka_config = kafka_config
        self._group_id = group_id or kafka_config.group_id
        self._config = consumer_config or ConsumerConfig()
        self._frames = FrameCodec(repository, codec)
        self._callbacks: dict[MutationKind, Callable[[Any], CallbackResult] | None] = {
            MutationKind.INSERT: on_insert,
            MutationKind.UPDATE: on_update,
            MutationKind.DELETE: on_delete,
        }

        self._state = ConsumerState.CREATED
        self._state_lock = threading.Lock()
        self._stop_requested = threading.Event()
        self._completion: Future[ConsumerStats] = Future()
        self._stats = ConsumerStats()
        self._consumer: Consumer | None = None
        self._thread: threading.Thread | None = None

        dlq_cfg = dlq_config or DLQConfig()
        self._dlq: DLQHandler | None = (
            DLQHandler(create_producer(kafka_config), dlq_cfg)
            if dlq_cfg.enabled
            else None
        )

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def group_id(self) -> str:
        return self._group_id

    @property
    def state(self) -> ConsumerState:
        return self._state

    @property
    def completion(self) -> Future[ConsumerStats]:
        return self._completion

    @property
    def stats(self) -> ConsumerStats:
        return dataclasses.replace(self._stats)

    def _set_state(self, state: ConsumerState) -> None:
        with self._state_lock:
            self._state = state

    # -- lifecycle ---------------------------------------------------------------

    def start(self) -> Future[ConsumerStats]:
        """Join the consumer group and start polling in the background."""
        with self._state_lock:
            if self._state != ConsumerState.CREATED:
                msg = f"Consumer for '{self._topic}' cannot start from state '{self._state}'"
                raise RuntimeError(msg)
            self._state = ConsumerState.SUBSCRIBING

        consumer: Consumer | None = None
        try:
            consumer = Consumer(
                client_config(
                    self._kafka_config,
                    **{
                        "group.id": self._group_id,
                        "auto.offset.reset": self._kafka_config.auto_offset_reset,
                        "enable.auto.commit": False,
                        "session.timeout.ms": self._kafka_config.session_timeout_ms,
                        "max.poll.interval.ms": self._kafka_config.max_poll_interval_ms,
                        "fetch.min.bytes": self._kafka_config.fetch_min_bytes,
                        "fetch.wait.max.ms": self._kafka_config.fetch_max_wait_ms,
                    },
                )
            )
            consumer.subscribe([self._topic])
        except Exception as exc:
            failure = SubscriptionFailed(self._topic, self._group_id, exc)
            logger.error(
                "consumer.subscribe_failed",
                topic=self._topic,
                group_id=self._group_id,
                error=str(exc),
            )
            if consumer is not None:
                self._close_client(consumer)
            if self._dlq is not None:
                self._dlq.flush()
            self._set_state(ConsumerState.FAILED)
            self._completion.set_exception(failure)
            raise failure from exc

        self._consumer = consumer
        self._thread = threading.Thread(
            target=self._run, name=f"rowstream-consumer-{self._topic}", daemon=True
        )
        self._thread.start()
        logger.info("consumer.started", topic=self._topic, group_id=self._group_id)
        return self._completion

    def stop(self) -> Future[ConsumerStats]:
        """Ask the loop to stop after the current batch. Idempotent."""
        with self._state_lock:
            if self._state == ConsumerState.CREATED:
                self._state = ConsumerState.STOPPED
                self._completion.set_result(dataclasses.replace(self._stats))
                return self._completion
        if not self._stop_requested.is_set():
            self._stop_requested.set()
            logger.info("consumer.stop_requested", topic=self._topic)
        return self._completion

    def join(self, timeout: float | None = None) -> ConsumerStats:
        """Block until the loop has finished; re-raise a fatal failure."""
        return self._completion.result(timeout=timeout)

    # -- loop --------------------------------------------------------------------

    def _run(self) -> None:
        failure: TransportDisconnected | None = None
        try:
            self._poll_loop()
        except TransportDisconnected as exc:
            failure = exc
        except BaseException as exc:
            failure = TransportDisconnected(
                f"Consumer loop for '{self._topic}' failed: {exc!r}"
            )
            failure.__cause__ = exc
        finally:
            self._set_state(ConsumerState.STOPPING)
            try:
                self._close()
            except Exception as exc:
                logger.warning(
                    "consumer.close_failed", topic=self._topic, error=str(exc)
                )
            finally:
                self._finish(failure)

    def _finish(self, failure: TransportDisconnected | None) -> None:
        stats = dataclasses.replace(self._stats)
        if failure is not None:
            self._set_state(ConsumerState.FAILED)
            logger.error(
                "consumer.failed",
                topic=self._topic,
                error=str(failure),
                dispatched=stats.dispatched,
            )
            self._completion.set_exception(failure)
            return
        self._set_state(ConsumerState.STOPPED)
        logger.info(
            "consumer.stopped",
            topic=self._topic,
            dispatched=stats.dispatched,
            skipped=stats.skipped,
            callback_failures=stats.callback_failures,
        )
        self._completion.set_result(stats)

    def _poll_loop(self) -> None:
        consumer = self._consumer
        assert consumer is not None
        while not self._stop_requested.is_set():
            self._set_state(ConsumerState.POLLING)
            try:
                messages = consumer.consume(
                    num_messages=self._config.poll_batch_size,
                    timeout=self._config.poll_timeout_seconds,
                )
            except (KafkaException, RuntimeError) as exc:
                msg = f"Polling '{self._topic}' failed: {exc}"
                raise TransportDisconnected(msg) from exc
            if not messages:
                continue

            self._set_state(ConsumerState.DISPATCHING)
            self._stats.batches += 1
            if self._dispatch_batch(messages) is DispatchSignal.STOP:
                logger.info("consumer.stop_signalled_by_callback", topic=self._topic)
                self._stop_requested.set()
            self._commit(consumer)

    def _dispatch_batch(self, messages: list[Message]) -> DispatchSignal:
        signal = DispatchSignal.CONTINUE
        for msg in messages:
            err = msg.error()
            if err is not None:
                if err.code() == KafkaError._PARTITION_EOF:  # type: ignore[attr-defined]
                    continue
                if err.fatal():
                    raise TransportDisconnected(str(err))
                logger.warning(
                    "consumer.transport_error", topic=self._topic, error=str(err)
                )
                continue
            if self._handle(msg) is DispatchSignal.STOP:
                signal = DispatchSignal.STOP
        return signal

    def _handle(self, msg: Message) -> DispatchSignal:
        coords: dict[str, Any] = {
            "topic": msg.topic(),
            "partition": msg.partition(),
            "offset": msg.offset(),
        }
        try:
            registered, mutation = self._frames.decode(msg.value() or b"", **coords)
        except (FrameError, UnresolvedSchema, DeserializationFailed) as exc:
            self._stats.skipped += 1
            logger.warning(
                "consumer.message_skipped",
                error_type=type(exc).__name__,
                error=str(exc),
                **coords,
            )
            self._route_to_dlq(msg, exc)
            return DispatchSignal.CONTINUE

        kind = registered.subject.kind
        callback = self._callbacks[kind]
        if callback is None:
            self._stats.unhandled += 1
            logger.debug("consumer.no_callback", kind=kind.value, **coords)
            return DispatchSignal.CONTINUE

        try:
            result = callback(mutation)
        except Exception as exc:
            failure = CallbackFailed(
                f"{kind} callback raised {type(exc).__name__}: {exc}", **coords
            )
            failure.__cause__ = exc
            self._stats.callback_failures += 1
            logger.error(
                "consumer.callback_failed",
                kind=kind.value,
                error_type=type(exc).__name__,
                error=str(exc),
                **coords,
            )
            self._route_to_dlq(msg, failure)
            return DispatchSignal.CONTINUE

        self._stats.dispatched += 1
        return _as_signal(result)

    def _route_to_dlq(self, msg: Message, error: Exception) -> None:
        topic = msg.topic()
        partition = msg.partition()
        offset = msg.offset()
        if self._dlq is None or topic is None or partition is None or offset is None:
            return
        self._dlq.send(
            source_topic=topic,
            partition=partition,
            offset=offset,
            key=msg.key(),
            value=msg.value(),
            error=error,
        )

    def _commit(self, consumer: Consumer) -> None:
        try:
            consumer.commit(asynchronous=self._config.commit_async)
        except KafkaException as exc:
            # At-least-once: uncommitted offsets are re-delivered after restart.
            logger.warning("consumer.commit_failed", topic=self._topic, error=str(exc))

    def _close_client(self, consumer: Consumer) -> None:
        try:
            consumer.close()
        except (KafkaException, RuntimeError) as exc:
            logger.warning("consumer.close_failed", topic=self._topic, error=str(exc))

    def _close(self) -> None:
        consumer = self._consumer
        if consumer is not None:
            try:
                consumer.unsubscribe()
            except (KafkaException, RuntimeError) as exc:
                logger.warning(
                    "consumer.unsubscribe_failed", topic=self._topic, error=str(exc)
                )
            self._close_client(consumer)
        if self._dlq is not None:
            self._dlq.flush()
