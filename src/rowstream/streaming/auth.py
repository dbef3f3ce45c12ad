"""Kafka authentication settings for confluent-kafka clients."""

from __future__ import annotations

from typing import Any

from rowstream.config.models import KafkaAuthMechanism, KafkaConfig

_SASL_MECHANISMS = {
    KafkaAuthMechanism.SASL_PLAIN: "PLAIN",
    KafkaAuthMechanism.SASL_SCRAM_256: "SCRAM-SHA-256",
    KafkaAuthMechanism.SASL_SCRAM_512: "SCRAM-SHA-512",
}


def build_kafka_auth_config(config: KafkaConfig) -> dict[str, Any]:
    """Return security/SASL entries to merge into a client config dict.

    SSL certificate paths are honoured with or without SASL so that plain
    ``SSL`` listeners work too.
    """
    auth: dict[str, Any] = {}
    if config.security_protocol != "PLAINTEXT":
        auth["security.protocol"] = config.security_protocol
    if config.ssl_ca_location:
        auth["ssl.ca.location"] = config.ssl_ca_location
    if config.ssl_certificate_location:
        auth["ssl.certificate.location"] = config.ssl_certificate_location
    if config.ssl_key_location:
        auth["ssl.key.location"] = config.ssl_key_location

    mechanism = _SASL_MECHANISMS.get(config.auth_mechanism)
    if mechanism is not None:
        auth["security.protocol"] = config.security_protocol
        auth["sasl.mechanism"] = mechanism
        auth["sasl.username"] = config.sasl_username
        auth["sasl.password"] = (
            config.sasl_password.get_secret_value() if config.sasl_password else ""
        )
    return auth


def client_config(config: KafkaConfig, **overrides: Any) -> dict[str, Any]:
    """Base confluent-kafka config: bootstrap servers, auth, then *overrides*."""
    conf: dict[str, Any] = {"bootstrap.servers": config.bootstrap_servers}
    conf.update(build_kafka_auth_config(config))
    conf.update(overrides)
    return conf
