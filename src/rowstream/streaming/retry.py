"""Caller-side publish retry.

``MutationProducer`` never retries; services that want at-least-once
publishing wrap ``send`` with this helper.
"""

from __future__ import annotations

from concurrent.futures import TimeoutError as FutureTimeout

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from rowstream.config.models import RetryConfig
from rowstream.errors import PublishFailed
from rowstream.streaming.producer import DeliveryReport, MutationProducer
from rowstream.wire.records import Mutation

logger = structlog.get_logger()


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "producer.publish_retry",
        attempt=state.attempt_number,
        error=str(exc) if exc else None,
    )


def send_with_retry(
    producer: MutationProducer,
    mutation: Mutation,
    config: RetryConfig | None = None,
) -> DeliveryReport:
    """Publish *mutation* and wait for delivery, retrying ``PublishFailed``.

    The last failure is re-raised once ``max_attempts`` is exhausted.
    """
    cfg = config or RetryConfig()

    @retry(
        stop=stop_after_attempt(cfg.max_attempts),
        wait=wait_exponential_jitter(
            initial=cfg.initial_wait_seconds,
            max=cfg.max_wait_seconds,
            jitter=cfg.jitter_seconds,
        ),
        retry=retry_if_exception_type((PublishFailed, FutureTimeout)),
        before_sleep=_log_retry,
        reraise=True,
    )
    def _attempt() -> DeliveryReport:
        return producer.send_and_wait(mutation, timeout=cfg.delivery_timeout_seconds)

    return _attempt()
