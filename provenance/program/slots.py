"""Fixed-capacity storage slots and the record read/write contract.

A slot buffer starts with a one-byte state marker (0 = uninitialized,
1 = holds a record), followed by the encoded record and zero padding up to
the slot's capacity.
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

from provenance.program.encoding import DecodeError, Identity, ProductRecord, decode_record_prefix, encode_record
from provenance.program.errors import CapacityExceeded, MalformedRecord

SLOT_UNINITIALIZED = 0
SLOT_INITIALIZED = 1
SLOT_HEADER_SIZE = 1


@dataclass
class SlotHandle:
    """A host-owned buffer lent to the program for one invocation."""

    key: Identity
    data: bytearray = field(default_factory=bytearray)
    is_signer: bool = False

    @property
    def capacity(self) -> int:
        return len(self.data)


def required_capacity(record: ProductRecord) -> int:
    return SLOT_HEADER_SIZE + len(encode_record(record))


def is_initialized(slot: SlotHandle) -> bool:
    return slot.capacity > 0 and slot.data[0] == SLOT_INITIALIZED


def read_record(slot: SlotHandle) -> ProductRecord:
    if not is_initialized(slot):
        raise MalformedRecord(f"Slot {slot.key} does not hold a record.")
    try:
        record, _ = decode_record_prefix(bytes(slot.data[SLOT_HEADER_SIZE:]))
    except DecodeError as e:
        raise MalformedRecord(f"Slot {slot.key} holds a malformed record: {e}") from e
    return record


def _frame(slot: SlotHandle, record: ProductRecord) -> bytes:
    framed = bytes([SLOT_INITIALIZED]) + encode_record(record)
    if len(framed) > slot.capacity:
        raise CapacityExceeded(
            f"Record needs {len(framed)} bytes but slot {slot.key} holds only {slot.capacity}."
        )
    return framed.ljust(slot.capacity, b"\x00")


def write_record(slot: SlotHandle, record: ProductRecord):
    slot.data[:] = _frame(slot, record)


def write_records(writes: Iterable[Tuple[SlotHandle, ProductRecord]]):
    """Write several records, checking all of them before any buffer changes."""
    staged: List[Tuple[SlotHandle, bytes]] = [(slot, _frame(slot, record)) for slot, record in writes]
    for slot, framed in staged:
        slot.data[:] = framed
