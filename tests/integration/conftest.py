"""Docker Compose fixtures for integration tests."""

from __future__ import annotations

import subprocess
import time
import uuid

import pytest
from confluent_kafka.admin import AdminClient

from rowstream.config.models import ConsumerConfig, KafkaConfig
from rowstream.schema.avro import Column, specific_schemas
from rowstream.schema.repository import SchemaRepository
from rowstream.schema.subject import Subject

COMPOSE_FILE = "docker/docker-compose.yml"
USER_COLUMNS = [
    Column("id", "long"),
    Column("username", "string"),
    Column("bio", "bytes"),
    Column("login_count", "int"),
]


def _compose(*args: str) -> None:
    subprocess.run(
        ["docker", "compose", "-f", COMPOSE_FILE, *args],
        check=True,
        capture_output=True,
    )


def _wait_for_kafka(bootstrap: str = "localhost:9092", *, timeout: int = 120) -> None:
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            admin = AdminClient({"bootstrap.servers": bootstrap})
            admin.list_topics(timeout=5)
            return
        except Exception:
            time.sleep(2)
    raise TimeoutError(f"Kafka at {bootstrap} not ready after {timeout}s")


@pytest.fixture(scope="session")
def docker_services():
    """Start Docker Compose services and wait until healthy."""
    _compose("up", "-d")
    try:
        _wait_for_kafka()
        yield
    finally:
        _compose("down", "-v")


@pytest.fixture(scope="session")
def kafka_config(docker_services) -> KafkaConfig:
    return KafkaConfig(bootstrap_servers="localhost:9092")


@pytest.fixture
def consumer_config() -> ConsumerConfig:
    return ConsumerConfig(poll_timeout_seconds=0.5, commit_async=False)


@pytest.fixture
def database() -> str:
    """A database name unique to the test so topics never collide."""
    return f"it{uuid.uuid4().hex[:8]}"


@pytest.fixture
def repository(database: str) -> SchemaRepository:
    repo = SchemaRepository()
    for kind, schema in specific_schemas("user", USER_COLUMNS).items():
        repo.register(Subject(database, "user", kind), schema)
    return repo
