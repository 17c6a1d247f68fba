"""Unit tests for oplog entry decoding."""

import json
import pytest
from datetime import datetime, timezone

from bson import ObjectId
from bson.int64 import Int64
from bson.timestamp import Timestamp

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../'))

from mongo_oplog.operation import Operation, Kind, OperationType, OplogTime, decode
from mongo_oplog.errors import MissingFieldError, UnknownOperationError, OplogError


def noop_entry() -> dict:
    return {
        "ts": Timestamp(1479419535, 0),
        "h": -2135725856567446411,
        "v": 2,
        "op": "n",
        "ns": "",
        "o": {"msg": "initiating set"},
    }


def insert_entry(oid: ObjectId) -> dict:
    return {
        "ts": Timestamp(1479561394, 0),
        "h": -1742072865587022793,
        "v": 2,
        "op": "i",
        "ns": "foo.bar",
        "o": {"_id": oid, "foo": "bar"},
    }


class TestOperationDecoding:
    """Test Operation.from_document."""

    def test_converts_noops(self):
        """Test no-op entries decode to a Noop operation."""
        entry = noop_entry()
        operation = Operation.from_document(entry)

        assert operation == Operation(
            id=-2135725856567446411,
            timestamp=OplogTime(seconds=1479419535, nanoseconds=0),
            document={"msg": "initiating set"},
            kind=Kind.noop(),
        )
        assert operation.timestamp.to_datetime() == datetime(2016, 11, 17, 21, 52, 15, tzinfo=timezone.utc)

    def test_converts_inserts(self):
        """Test insert entries decode to an Insert operation with namespace."""
        oid = ObjectId("583050b26813716e505a5bf2")
        entry = insert_entry(oid)
        operation = Operation.from_document(entry)

        assert operation == Operation(
            id=-1742072865587022793,
            timestamp=OplogTime(seconds=1479561394, nanoseconds=0),
            document={"_id": ObjectId("583050b26813716e505a5bf2"), "foo": "bar"},
            kind=Kind.insert("foo.bar"),
        )
        assert operation.kind.type is OperationType.INSERT
        assert operation.kind.namespace == "foo.bar"

    def test_document_is_shared_not_copied(self):
        """Test payload and namespace reference the entry's own objects."""
        entry = insert_entry(ObjectId())
        operation = Operation.from_document(entry)

        assert operation.document is entry["o"]
        assert operation.kind.namespace is entry["ns"]

    def test_noop_does_not_require_namespace(self):
        """Test no-ops decode without an ns field."""
        entry = noop_entry()
        del entry["ns"]
        assert Operation.from_document(entry).kind == Kind.noop()

    def test_accepts_int64(self):
        """Test bson Int64 values are accepted for h."""
        entry = noop_entry()
        entry["h"] = Int64(-2135725856567446411)
        operation = Operation.from_document(entry)
        assert operation.id == -2135725856567446411
        assert type(operation.id) is int

    def test_decode_alias(self):
        """Test module-level decode matches from_document."""
        entry = noop_entry()
        assert decode(entry) == Operation.from_document(entry)

    def test_decoding_is_idempotent(self):
        """Test decoding the same entry twice gives equal operations."""
        entry = insert_entry(ObjectId())
        assert Operation.from_document(entry) == Operation.from_document(entry)


class TestUnknownOperations:
    """Test op codes the decoder does not handle."""

    @pytest.mark.parametrize("op", ["u", "d", "c", "db", "x", ""])
    def test_unhandled_op_codes_are_rejected(self, op):
        """Test every op other than n and i raises UnknownOperationError."""
        entry = noop_entry()
        entry["op"] = op

        with pytest.raises(UnknownOperationError) as exc_info:
            Operation.from_document(entry)

        assert exc_info.value.op == op

    def test_unknown_op_checked_before_other_fields(self):
        """Test an unknown op wins over missing common fields."""
        with pytest.raises(UnknownOperationError):
            Operation.from_document({"op": "u"})

    def test_errors_share_base_class(self):
        """Test decode errors are OplogErrors."""
        with pytest.raises(OplogError):
            Operation.from_document({"op": "d"})


class TestMissingFields:
    """Test required field validation."""

    @pytest.mark.parametrize("field", ["h", "ts", "o"])
    @pytest.mark.parametrize("make_entry", [noop_entry, lambda: insert_entry(ObjectId())])
    def test_missing_common_field(self, field, make_entry):
        """Test a missing h, ts or o fails regardless of op."""
        entry = make_entry()
        del entry[field]

        with pytest.raises(MissingFieldError) as exc_info:
            Operation.from_document(entry)

        assert exc_info.value.field == field
        assert exc_info.value.reason == MissingFieldError.NOT_PRESENT

    def test_missing_op(self):
        """Test a missing op field."""
        entry = noop_entry()
        del entry["op"]

        with pytest.raises(MissingFieldError, match="'op' not present"):
            Operation.from_document(entry)

    def test_insert_requires_namespace(self):
        """Test inserts without ns fail."""
        entry = insert_entry(ObjectId())
        del entry["ns"]

        with pytest.raises(MissingFieldError) as exc_info:
            Operation.from_document(entry)

        assert exc_info.value.field == "ns"

    @pytest.mark.parametrize("field,value", [
        ("op", 1),
        ("ns", None),
        ("h", "123"),
        ("h", 1.5),
        ("h", True),
        ("ts", 1479561394 << 32),
        ("ts", datetime(2016, 11, 19, tzinfo=timezone.utc)),
        ("o", "document"),
        ("o", [1, 2]),
    ])
    def test_wrong_type(self, field, value):
        """Test a field of the wrong type is reported as missing."""
        entry = insert_entry(ObjectId())
        entry[field] = value

        with pytest.raises(MissingFieldError, match="unexpected type") as exc_info:
            Operation.from_document(entry)

        assert exc_info.value.field == field

    def test_h_out_of_int64_range(self):
        """Test an identifier that does not fit in 64 bits."""
        entry = noop_entry()
        entry["h"] = 1 << 63

        with pytest.raises(MissingFieldError, match="int64"):
            Operation.from_document(entry)


class TestOplogTime:
    """Test timestamp decoding."""

    def test_seconds_from_high_word(self):
        """Test the high word becomes seconds."""
        assert OplogTime.from_raw(1479419535 << 32) == OplogTime(1479419535, 0)

    def test_ordinal_scaled_by_million(self):
        """Test the low word is scaled by 1,000,000."""
        ts = OplogTime.from_timestamp(Timestamp(1479419535, 7))
        assert ts.seconds == 1479419535
        assert ts.nanoseconds == 7_000_000

    def test_nanoseconds_truncated_to_32_bits(self):
        """Test scaled ordinals wrap to an unsigned 32-bit value."""
        ts = OplogTime.from_raw((10 << 32) | 5000)
        assert ts.nanoseconds == 5_000_000_000 - (1 << 32)

    def test_negative_seconds_use_arithmetic_shift(self):
        """Test pre-epoch values keep their sign."""
        ts = OplogTime.from_raw((-5 << 32) | 3)
        assert ts.seconds == -5
        assert ts.nanoseconds == 3_000_000

    def test_high_bit_timestamp_is_signed(self):
        """Test a Timestamp with the top bit set decodes as negative seconds."""
        ts = OplogTime.from_timestamp(Timestamp(0x80000000, 0))
        assert ts.seconds == -(1 << 31)
        assert ts.to_datetime() == datetime(1901, 12, 13, 20, 45, 52, tzinfo=timezone.utc)

    def test_to_datetime_carries_overflowing_nanoseconds(self):
        """Test nanoseconds beyond one second carry into the datetime."""
        ts = OplogTime(seconds=0, nanoseconds=1_500_000_000)
        assert ts.to_datetime() == datetime(1970, 1, 1, 0, 0, 1, 500000, tzinfo=timezone.utc)


class TestKind:
    """Test Kind variants."""

    def test_all_variants_constructible(self):
        """Test every category exists even though only two are decoded."""
        kinds = [
            Kind.insert("db.coll"), Kind.update(), Kind.delete(),
            Kind.command(), Kind.database(), Kind.noop()
        ]
        assert [k.type for k in kinds] == list(OperationType)

    def test_op_codes(self):
        """Test enum values are the oplog op codes."""
        assert {t.value for t in OperationType} == {"i", "u", "d", "c", "db", "n"}

    def test_only_insert_carries_namespace(self):
        """Test namespace is unset for non-insert kinds."""
        assert Kind.noop().namespace is None
        assert Kind.insert("foo.bar") != Kind.insert("foo.baz")


class TestToDict:
    """Test JSON-safe conversion of operations."""

    def test_insert_to_dict(self):
        """Test ObjectIds and timestamps are converted."""
        oid = ObjectId("583050b26813716e505a5bf2")
        result = Operation.from_document(insert_entry(oid)).to_dict()

        assert result["id"] == -1742072865587022793
        assert result["op"] == "i"
        assert result["namespace"] == "foo.bar"
        assert result["document"] == {"_id": "583050b26813716e505a5bf2", "foo": "bar"}
        assert result["timestamp"] == datetime.fromtimestamp(1479561394, tz=timezone.utc).isoformat()
        json.dumps(result)
