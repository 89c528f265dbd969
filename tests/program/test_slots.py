from dataclasses import replace

import pytest

from provenance.program.encoding import Identity, ProductRecord, TransactionType, encode_record
from provenance.program.errors import CapacityExceeded, MalformedRecord
from provenance.program.slots import (
    SLOT_INITIALIZED,
    SlotHandle,
    is_initialized,
    read_record,
    required_capacity,
    write_record,
    write_records,
)

SLOT_KEY = Identity(b"\x10" * 20)
OWNER = Identity(b"\x20" * 20)


@pytest.fixture
def record():
    return ProductRecord(
        product_id="SN-001",
        transaction_type=TransactionType.MANUFACTURE,
        previous_record=None,
        current_owner=OWNER,
        next_owner=None,
        timestamp=1700000000,
        metadata="batch-7",
    )


def new_slot(capacity=256, key=SLOT_KEY):
    return SlotHandle(key=key, data=bytearray(capacity))


def test_write_then_read(record):
    slot = new_slot()
    write_record(slot, record)

    assert is_initialized(slot)
    assert read_record(slot) == record


def test_write_frames_and_pads(record):
    """Slot keeps its size: state marker, record bytes, zero padding."""
    slot = new_slot(128)
    write_record(slot, record)
    encoded = encode_record(record)

    assert len(slot.data) == 128
    assert slot.data[0] == SLOT_INITIALIZED
    assert bytes(slot.data[1:1 + len(encoded)]) == encoded
    assert bytes(slot.data[1 + len(encoded):]) == bytes(128 - 1 - len(encoded))


def test_overwrite_with_shorter_record_clears_tail(record):
    slot = new_slot()
    write_record(slot, replace(record, metadata="x" * 100))
    write_record(slot, record)

    assert read_record(slot) == record
    assert bytes(slot.data[required_capacity(record):]) == bytes(256 - required_capacity(record))


def test_read_uninitialized_slot():
    with pytest.raises(MalformedRecord, match="does not hold a record"):
        read_record(new_slot())


def test_read_zero_capacity_slot():
    with pytest.raises(MalformedRecord):
        read_record(new_slot(0))


def test_read_garbage_slot():
    slot = new_slot(16)
    slot.data[0] = SLOT_INITIALIZED
    slot.data[1:5] = b"\xff\xff\xff\xff"
    with pytest.raises(MalformedRecord, match="malformed"):
        read_record(slot)


def test_capacity_exact_fit(record):
    slot = new_slot(required_capacity(record))
    write_record(slot, record)
    assert read_record(slot) == record


def test_capacity_exceeded_leaves_bytes_unchanged(record):
    slot = new_slot(required_capacity(record) - 1)
    slot.data[:] = b"\x07" * slot.capacity
    before = bytes(slot.data)

    with pytest.raises(CapacityExceeded):
        write_record(slot, record)
    assert bytes(slot.data) == before


def test_write_records_is_all_or_nothing(record):
    roomy = new_slot(256)
    cramped = new_slot(8, key=Identity(b"\x11" * 20))

    with pytest.raises(CapacityExceeded):
        write_records([(roomy, record), (cramped, record)])

    assert not is_initialized(roomy)
    assert bytes(roomy.data) == bytes(256)
