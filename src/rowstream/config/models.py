"""Pydantic configuration models for producers, consumers and the registry."""

from __future__ import annotations

from enum import StrEnum
from typing import Self

from pydantic import BaseModel, Field, SecretStr, model_validator


class KafkaAuthMechanism(StrEnum):
    """Kafka SASL authentication mechanisms."""

    NONE = "none"
    SASL_PLAIN = "sasl_plain"
    SASL_SCRAM_256 = "sasl_scram_256"
    SASL_SCRAM_512 = "sasl_scram_512"


class KafkaConfig(BaseModel):
    """Kafka broker connection and client settings shared by both sides."""

    bootstrap_servers: str = "localhost:9092"
    group_id: str = "rowstream"
    auto_offset_reset: str = "earliest"
    enable_idempotence: bool = True
    acks: str = "all"
    topic_num_partitions: int = Field(default=1, ge=1)
    topic_replication_factor: int = Field(default=1, ge=1)
    # Consumer tuning
    session_timeout_ms: int = Field(default=45000, ge=1000)
    max_poll_interval_ms: int = Field(default=300000, ge=1000)
    fetch_min_bytes: int = Field(default=1, ge=1)
    fetch_max_wait_ms: int = Field(default=500, ge=0)
    # Auth / security
    security_protocol: str = "PLAINTEXT"
    auth_mechanism: KafkaAuthMechanism = KafkaAuthMechanism.NONE
    sasl_username: str | None = None
    sasl_password: SecretStr | None = None
    ssl_ca_location: str | None = None
    ssl_certificate_location: str | None = None
    ssl_key_location: str | None = None

    @model_validator(mode="after")
    def check_auth_requirements(self) -> Self:
        """SASL mechanisms need both a username and a password."""
        if self.auth_mechanism != KafkaAuthMechanism.NONE and (
            not self.sasl_username or not self.sasl_password
        ):
            msg = (
                "sasl_username and sasl_password are required "
                f"when auth_mechanism is '{self.auth_mechanism.value}'"
            )
            raise ValueError(msg)
        return self


class ProducerConfig(BaseModel):
    """Mutation producer settings."""

    linger_ms: int = Field(default=5, ge=0)
    delivery_timeout_ms: int = Field(default=120000, ge=1000)
    # How often the background thread serves delivery callbacks.
    poll_interval_seconds: float = Field(default=0.1, gt=0)
    flush_timeout_seconds: float = Field(default=10.0, gt=0)


class ConsumerConfig(BaseModel):
    """Mutation consumer settings."""

    poll_batch_size: int = Field(default=100, ge=1)
    # Upper bound on how long a stop request waits for the poll to return.
    poll_timeout_seconds: float = Field(default=1.0, gt=0)
    commit_async: bool = True


class RegistryConfig(BaseModel):
    """Schema repository settings."""

    first_id: int = Field(default=0, ge=0, le=0xFFFF)
    # Directory of <database>.<table>.<kind>.avsc files registered at startup.
    schema_dir: str | None = None


class DLQConfig(BaseModel):
    """Dead-letter routing for messages the consumer has to skip."""

    enabled: bool = False
    topic_suffix: str = Field(default="dlq", min_length=1)
    include_headers: bool = True
    flush_interval_seconds: float = Field(default=0.0, ge=0.0)


class RetryConfig(BaseModel):
    """Caller-side retry / backoff for publishing."""

    max_attempts: int = Field(default=5, ge=1)
    initial_wait_seconds: float = Field(default=1.0, gt=0)
    max_wait_seconds: float = Field(default=60.0, gt=0)
    jitter_seconds: float = Field(default=1.0, ge=0.0)
    delivery_timeout_seconds: float = Field(default=30.0, gt=0)


class RowstreamConfig(BaseModel, extra="forbid"):
    """Root configuration."""

    kafka: KafkaConfig = KafkaConfig()
    producer: ProducerConfig = ProducerConfig()
    consumer: ConsumerConfig = ConsumerConfig()
    registry: RegistryConfig = RegistryConfig()
    dlq: DLQConfig = DLQConfig()
    retry: RetryConfig = RetryConfig()
    log_level: str = "info"
    log_json: bool = False
