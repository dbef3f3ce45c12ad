"""Unit tests for the Avro body codec and frame codec."""

from __future__ import annotations

import pytest

from rowstream.errors import (
    DeserializationFailed,
    FrameTooShort,
    SerializationFailed,
    UnknownSubject,
    UnresolvedSchema,
)
from rowstream.schema.avro import generic_schema
from rowstream.schema.repository import SchemaRepository
from rowstream.schema.subject import MutationKind, Subject
from rowstream.wire.codec import FrameCodec, MutationCodec
from rowstream.wire.frame import decode_frame, encode_frame
from rowstream.wire.records import DeleteMutation, InsertMutation, UpdateMutation

DATABASE = "mypipe"
TABLE = "user"
BOB = {"id": 1, "username": "bob", "bio": b"hi", "login_count": 5}
BOB2 = {"id": 1, "username": "bob2", "bio": b"hello", "login_count": 6}


class TestSpecificLayout:
    def test_insert_round_trip(self, repository: SchemaRepository):
        frames = FrameCodec(repository)
        registered, frame = frames.encode(InsertMutation(DATABASE, TABLE, dict(BOB)))

        assert decode_frame(frame)[0] == registered.schema_id
        decoded_entry, mutation = frames.decode(frame)
        assert decoded_entry == registered
        assert mutation == InsertMutation(DATABASE, TABLE, BOB)
        assert isinstance(mutation.row["bio"], bytes)

    def test_update_round_trip(self, repository: SchemaRepository):
        frames = FrameCodec(repository)
        _, frame = frames.encode(UpdateMutation(DATABASE, TABLE, dict(BOB), dict(BOB2)))
        _, mutation = frames.decode(frame)
        assert mutation == UpdateMutation(DATABASE, TABLE, BOB, BOB2)

    def test_update_uses_old_and_new_fields(self, repository: SchemaRepository):
        schema = repository.get(Subject(DATABASE, TABLE, MutationKind.UPDATE)).schema
        datum = MutationCodec().to_datum(
            schema, UpdateMutation(DATABASE, TABLE, dict(BOB), dict(BOB2))
        )
        assert datum["old_username"] == "bob"
        assert datum["new_username"] == "bob2"
        assert datum["database"] == DATABASE

    def test_delete_round_trip(self, repository: SchemaRepository):
        frames = FrameCodec(repository)
        _, frame = frames.encode(DeleteMutation(DATABASE, TABLE, dict(BOB2)))
        _, mutation = frames.decode(frame)
        assert isinstance(mutation, DeleteMutation)
        assert mutation.row == BOB2

    def test_each_kind_has_its_own_id(self, repository: SchemaRepository):
        frames = FrameCodec(repository)
        ids = {
            frames.encode(m)[0].schema_id
            for m in (
                InsertMutation(DATABASE, TABLE, dict(BOB)),
                UpdateMutation(DATABASE, TABLE, dict(BOB), dict(BOB2)),
                DeleteMutation(DATABASE, TABLE, dict(BOB)),
            )
        }
        assert len(ids) == 3


class TestGenericLayout:
    @pytest.fixture
    def generic_repo(self) -> SchemaRepository:
        repo = SchemaRepository()
        for kind in MutationKind:
            repo.register(Subject(DATABASE, TABLE, kind), generic_schema(kind))
        return repo

    def test_insert_round_trip_keeps_value_types(self, generic_repo: SchemaRepository):
        row = {"id": 1, "active": True, "score": 1.5, "bio": b"hi", "note": None}
        frames = FrameCodec(generic_repo)
        _, frame = frames.encode(InsertMutation(DATABASE, TABLE, row))
        _, mutation = frames.decode(frame)
        assert mutation.row == row
        assert mutation.row["active"] is True

    def test_update_round_trip(self, generic_repo: SchemaRepository):
        frames = FrameCodec(generic_repo)
        _, frame = frames.encode(
            UpdateMutation(DATABASE, TABLE, {"username": "bob"}, {"username": "bob2"})
        )
        _, mutation = frames.decode(frame)
        assert mutation == UpdateMutation(
            DATABASE, TABLE, {"username": "bob"}, {"username": "bob2"}
        )


class TestSerializationFailures:
    def test_unknown_column(self, repository: SchemaRepository):
        with pytest.raises(SerializationFailed, match="no column"):
            FrameCodec(repository).encode(
                InsertMutation(DATABASE, TABLE, {**BOB, "email": "b@example.com"})
            )

    def test_wrong_value_type(self, repository: SchemaRepository):
        with pytest.raises(SerializationFailed):
            FrameCodec(repository).encode(
                InsertMutation(DATABASE, TABLE, {**BOB, "login_count": "five"})
            )

    def test_missing_required_column(self, repository: SchemaRepository):
        row = dict(BOB)
        del row["username"]
        with pytest.raises(SerializationFailed):
            FrameCodec(repository).encode(InsertMutation(DATABASE, TABLE, row))

    def test_unregistered_subject(self, repository: SchemaRepository):
        with pytest.raises(UnknownSubject):
            FrameCodec(repository).encode(InsertMutation(DATABASE, "orders", {"id": 1}))


class TestDecodeFailures:
    def test_short_frame(self, repository: SchemaRepository):
        with pytest.raises(FrameTooShort):
            FrameCodec(repository).decode(b"\x00")

    def test_unknown_id_carries_coordinates(self, repository: SchemaRepository):
        with pytest.raises(UnresolvedSchema) as exc_info:
            FrameCodec(repository).decode(
                encode_frame(999, b""), topic="t", partition=2, offset=17
            )
        err = exc_info.value
        assert err.schema_id == 999
        assert (err.topic, err.partition, err.offset) == ("t", 2, 17)

    def test_truncated_body(self, repository: SchemaRepository):
        frames = FrameCodec(repository)
        _, frame = frames.encode(InsertMutation(DATABASE, TABLE, dict(BOB)))
        with pytest.raises(DeserializationFailed):
            frames.decode(frame[:-2])

    def test_trailing_bytes(self, repository: SchemaRepository):
        frames = FrameCodec(repository)
        _, frame = frames.encode(InsertMutation(DATABASE, TABLE, dict(BOB)))
        with pytest.raises(DeserializationFailed, match="trailing"):
            frames.decode(frame + b"\x00")
