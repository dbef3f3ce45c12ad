"""Unit tests for caller-side publish retry."""

from __future__ import annotations

from concurrent.futures import TimeoutError as FutureTimeout
from unittest.mock import MagicMock

import pytest

from rowstream.config.models import RetryConfig
from rowstream.errors import PublishFailed, SerializationFailed
from rowstream.streaming.producer import DeliveryReport
from rowstream.streaming.retry import send_with_retry
from rowstream.wire.records import InsertMutation

FAST = RetryConfig(
    max_attempts=3,
    initial_wait_seconds=0.001,
    max_wait_seconds=0.001,
    jitter_seconds=0.0,
    delivery_timeout_seconds=1.0,
)
MUTATION = InsertMutation("mypipe", "user", {"id": 1})
REPORT = DeliveryReport("mypipe_user_specific", 0, 12, 0)


class TestSendWithRetry:
    def test_success_first_try(self):
        producer = MagicMock()
        producer.send_and_wait.return_value = REPORT
        assert send_with_retry(producer, MUTATION, FAST) == REPORT
        producer.send_and_wait.assert_called_once_with(MUTATION, timeout=1.0)

    def test_retries_publish_failures(self):
        producer = MagicMock()
        producer.send_and_wait.side_effect = [
            PublishFailed("mypipe_user_specific", "queue full"),
            FutureTimeout(),
            REPORT,
        ]
        assert send_with_retry(producer, MUTATION, FAST) == REPORT
        assert producer.send_and_wait.call_count == 3

    def test_reraises_after_max_attempts(self):
        producer = MagicMock()
        producer.send_and_wait.side_effect = PublishFailed("t", "broker down")
        with pytest.raises(PublishFailed, match="broker down"):
            send_with_retry(producer, MUTATION, FAST)
        assert producer.send_and_wait.call_count == 3

    def test_does_not_retry_serialization_errors(self):
        producer = MagicMock()
        producer.send_and_wait.side_effect = SerializationFailed("bad row")
        with pytest.raises(SerializationFailed):
            send_with_retry(producer, MUTATION, FAST)
        producer.send_and_wait.assert_called_once()
