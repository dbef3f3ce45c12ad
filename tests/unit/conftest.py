"""In-memory stand-ins for confluent-kafka's Producer and Consumer."""

from __future__ import annotations

import threading
import time
import zlib
from collections import defaultdict
from collections.abc import Callable, Iterator
from typing import Any
from unittest.mock import patch

import pytest

from rowstream.schema.avro import Column, specific_schemas
from rowstream.schema.repository import SchemaRepository
from rowstream.schema.subject import Subject

DATABASE = "mypipe"
TABLE = "user"
USER_COLUMNS = [
    Column("id", "long"),
    Column("username", "string"),
    Column("bio", "bytes"),
    Column("login_count", "int"),
]


class FakeMessage:
    def __init__(
        self,
        topic: str,
        partition: int,
        offset: int,
        key: bytes | None,
        value: bytes | None,
        headers: Any = None,
        error: Any = None,
    ) -> None:
        self._topic = topic
        self._partition = partition
        self._offset = offset
        self._key = key
        self._value = value
        self._headers = headers
        self._error = error

    def topic(self) -> str:
        return self._topic

    def partition(self) -> int:
        return self._partition

    def offset(self) -> int:
        return self._offset

    def key(self) -> bytes | None:
        return self._key

    def value(self) -> bytes | None:
        return self._value

    def headers(self) -> Any:
        return self._headers

    def error(self) -> Any:
        return self._error


class FakeBroker:
    """Partitioned append-only logs shared by fake producers and consumers."""

    def __init__(self, num_partitions: int = 1) -> None:
        self.num_partitions = num_partitions
        self.logs: dict[tuple[str, int], list[FakeMessage]] = defaultdict(list)
        self.commits: list[bool] = []
        self.producers: list[FakeProducer] = []
        self.consumers: list[FakeConsumer] = []
        self.fail_subscribe: Exception | None = None
        self.fail_consume: Exception | None = None
        self.fail_produce: Exception | None = None
        self.delivery_error: Any = None
        self._cond = threading.Condition()

    def partition_for(self, key: bytes | None) -> int:
        if not key:
            return 0
        return zlib.crc32(key) % self.num_partitions

    def append(
        self,
        topic: str,
        value: bytes | None,
        *,
        key: bytes | None = None,
        partition: int | None = None,
        headers: Any = None,
    ) -> FakeMessage:
        with self._cond:
            p = self.partition_for(key) if partition is None else partition
            log = self.logs[(topic, p)]
            msg = FakeMessage(topic, p, len(log), key, value, headers)
            log.append(msg)
            self._cond.notify_all()
        return msg

    def inject_error(self, topic: str, error: Any, partition: int = 0) -> None:
        with self._cond:
            log = self.logs[(topic, partition)]
            log.append(FakeMessage(topic, partition, len(log), None, None, error=error))
            self._cond.notify_all()

    def messages(self, topic: str) -> list[FakeMessage]:
        with self._cond:
            return [
                m for (t, _), log in sorted(self.logs.items()) if t == topic for m in log
            ]

    def fetch(
        self,
        topics: list[str],
        positions: dict[tuple[str, int], int],
        max_messages: int,
        timeout: float,
    ) -> list[FakeMessage]:
        def _ready() -> list[FakeMessage]:
            out: list[FakeMessage] = []
            for (topic, partition), log in sorted(self.logs.items()):
                if topic not in topics:
                    continue
                pos = positions.get((topic, partition), 0)
                for msg in log[pos:]:
                    if len(out) >= max_messages:
                        return out
                    out.append(msg)
            return out

        with self._cond:
            self._cond.wait_for(lambda: bool(_ready()), timeout=timeout)
            batch = _ready()
        for msg in batch:
            positions[(msg.topic(), msg.partition())] = msg.offset() + 1
        return batch


class FakeProducer:
    def __init__(self, broker: FakeBroker, config: dict[str, Any]) -> None:
        self.broker = broker
        self.config = config
        self._pending: list[tuple[Callable[..., None] | None, FakeMessage]] = []
        self._lock = threading.Lock()
        broker.producers.append(self)

    def produce(
        self,
        topic: str,
        value: bytes | None = None,
        key: bytes | None = None,
        headers: Any = None,
        on_delivery: Callable[..., None] | None = None,
    ) -> None:
        if self.broker.fail_produce is not None:
            raise self.broker.fail_produce
        msg = self.broker.append(topic, value, key=key, headers=headers)
        with self._lock:
            self._pending.append((on_delivery, msg))

    def _deliver(self) -> int:
        with self._lock:
            pending, self._pending = self._pending, []
        for callback, msg in pending:
            if callback is not None:
                callback(self.broker.delivery_error, msg)
        return len(pending)

    def poll(self, timeout: float = 0) -> int:
        delivered = self._deliver()
        if not delivered and timeout:
            time.sleep(min(timeout, 0.01))
        return delivered

    def flush(self, timeout: float | None = None) -> int:
        self._deliver()
        return 0


class FakeConsumer:
    def __init__(self, broker: FakeBroker, config: dict[str, Any]) -> None:
        self.broker = broker
        self.config = config
        self.topics: list[str] = []
        self.positions: dict[tuple[str, int], int] = {}
        self.closed = False
        broker.consumers.append(self)

    def subscribe(self, topics: list[str], **_: Any) -> None:
        if self.broker.fail_subscribe is not None:
            raise self.broker.fail_subscribe
        self.topics = list(topics)

    def consume(self, num_messages: int = 1, timeout: float = -1) -> list[FakeMessage]:
        if self.closed:
            raise RuntimeError("Consumer closed")
        if self.broker.fail_consume is not None:
            raise self.broker.fail_consume
        return self.broker.fetch(self.topics, self.positions, num_messages, timeout)

    def commit(self, asynchronous: bool = True, **_: Any) -> None:
        self.broker.commits.append(asynchronous)

    def unsubscribe(self) -> None:
        self.topics = []

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def broker() -> Iterator[FakeBroker]:
    """Patch confluent-kafka clients with fakes sharing one in-memory broker."""
    fake = FakeBroker()
    with (
        patch(
            "rowstream.streaming.producer.Producer",
            side_effect=lambda conf: FakeProducer(fake, conf),
        ),
        patch(
            "rowstream.streaming.consumer.Consumer",
            side_effect=lambda conf: FakeConsumer(fake, conf),
        ),
    ):
        yield fake


@pytest.fixture
def repository() -> SchemaRepository:
    """Repository with the specific insert/update/delete schemas of mypipe.user."""
    repo = SchemaRepository()
    for kind, schema in specific_schemas(TABLE, USER_COLUMNS).items():
        repo.register(Subject(DATABASE, TABLE, kind), schema)
    return repo
