"""Exception hierarchy for the registry, wire codec and Kafka runtime."""

from __future__ import annotations

from typing import Any


class RowstreamError(Exception):
    """Base class for every error raised by rowstream."""


# -- Registry ------------------------------------------------------------------


class RegistryError(RowstreamError):
    """Schema repository lookup or registration failure."""


class DuplicateSubjectConflict(RegistryError):
    def __init__(self, subject: Any, existing_id: int) -> None:
        self.subject = subject
        self.existing_id = existing_id
        super().__init__(
            f"Subject '{subject}' is already registered as schema id "
            f"{existing_id} with a different schema"
        )


class UnknownSchemaId(RegistryError):
    def __init__(self, schema_id: int) -> None:
        self.schema_id = schema_id
        super().__init__(f"Unknown schema id {schema_id}")


class UnknownSubject(RegistryError):
    def __init__(self, subject: Any) -> None:
        self.subject = subject
        super().__init__(f"Unknown subject '{subject}'")


class SchemaIdExhausted(RegistryError):
    def __init__(self, max_id: int) -> None:
        self.max_id = max_id
        super().__init__(f"No schema ids left (maximum is {max_id})")


# -- Wire ------------------------------------------------------------------------


class FrameError(RowstreamError):
    """Malformed frame on the wire."""


class FrameTooShort(FrameError):
    def __init__(self, length: int, header_width: int) -> None:
        self.length = length
        self.header_width = header_width
        super().__init__(
            f"Frame of {length} byte(s) is shorter than the "
            f"{header_width}-byte schema id header"
        )


class CodecError(RowstreamError):
    """Record body could not be converted to or from Avro."""


class SerializationFailed(CodecError):
    pass


class DeserializationFailed(CodecError):
    pass


# -- Per-message consumer failures -------------------------------------------------


class MessageError(RowstreamError):
    """A single consumed message could not be dispatched.

    Carries the message coordinates so the failure can be logged and routed
    to the dead-letter topic without stopping the consume loop.
    """

    def __init__(
        self,
        message: str,
        *,
        topic: str | None = None,
        partition: int | None = None,
        offset: int | None = None,
    ) -> None:
        self.topic = topic
        self.partition = partition
        self.offset = offset
        super().__init__(message)


class UnresolvedSchema(MessageError):
    def __init__(self, schema_id: int, **coords: Any) -> None:
        self.schema_id = schema_id
        super().__init__(f"Schema id {schema_id} is not registered", **coords)


class CallbackFailed(MessageError):
    pass


# -- Transport ---------------------------------------------------------------------


class TransportError(RowstreamError):
    """Kafka client failure."""


class PublishFailed(TransportError):
    def __init__(self, topic: str, error: Any) -> None:
        self.topic = topic
        self.error = error
        super().__init__(f"Failed to publish to '{topic}': {error}")


class SubscriptionFailed(TransportError):
    def __init__(self, topic: str, group_id: str, error: Any) -> None:
        self.topic = topic
        self.group_id = group_id
        self.error = error
        super().__init__(
            f"Failed to subscribe group '{group_id}' to '{topic}': {error}"
        )


class TransportDisconnected(TransportError):
    pass
