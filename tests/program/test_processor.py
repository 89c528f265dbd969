import pytest

from provenance.program.encoding import (
    CreateProduct,
    Identity,
    MarkEndOfLife,
    RecordRepair,
    TransactionType,
    TransferOwnership,
    encode_request,
)
from provenance.program.errors import (
    CapacityExceeded,
    InvalidRequest,
    MalformedRecord,
    MissingSignature,
    MissingSlot,
    NotAuthorized,
)
from provenance.program.processor import END_OF_LIFE_METADATA, FixedClock, process_instruction
from provenance.program.slots import SlotHandle, is_initialized, read_record

PROGRAM_ID = Identity(b"\xfe" * 20)
MANUFACTURER = Identity(b"\x4d" * 20)
BUYER = Identity(b"\x42" * 20)
STRANGER = Identity(b"\x53" * 20)


def storage(seed: int, capacity: int = 256) -> SlotHandle:
    return SlotHandle(key=Identity(bytes([seed]) * 20), data=bytearray(capacity))


def party(identity: Identity, signed: bool = True) -> SlotHandle:
    return SlotHandle(key=identity, is_signer=signed)


@pytest.fixture
def product_slot(clock):
    """A slot holding a Manufacture record owned by MANUFACTURER."""
    slot = storage(1)
    data = encode_request(CreateProduct(product_id="SN-001", metadata="batch-7"))
    process_instruction(PROGRAM_ID, [slot, party(MANUFACTURER)], data, clock)
    return slot


# -- CreateProduct


def test_create_product(clock):
    slot = storage(1)
    data = encode_request(CreateProduct(product_id="SN-001", metadata="batch-7"))

    process_instruction(PROGRAM_ID, [slot, party(MANUFACTURER)], data, clock)

    record = read_record(slot)
    assert record.product_id == "SN-001"
    assert record.metadata == "batch-7"
    assert record.transaction_type == TransactionType.MANUFACTURE
    assert record.current_owner == MANUFACTURER
    assert record.previous_record is None
    assert record.next_owner is None
    assert record.timestamp == clock.now()


def test_create_product_requires_signature(clock):
    slot = storage(1)
    data = encode_request(CreateProduct(product_id="SN-001"))

    with pytest.raises(MissingSignature):
        process_instruction(PROGRAM_ID, [slot, party(MANUFACTURER, signed=False)], data, clock)
    assert not is_initialized(slot)


def test_create_product_too_large_for_slot(clock):
    slot = storage(1, capacity=16)
    data = encode_request(CreateProduct(product_id="SN-001", metadata="a long batch description"))

    with pytest.raises(CapacityExceeded):
        process_instruction(PROGRAM_ID, [slot, party(MANUFACTURER)], data, clock)
    assert bytes(slot.data) == bytes(16)


# -- TransferOwnership


def test_transfer_links_old_and_new_records(product_slot, clock):
    original = read_record(product_slot)
    new_slot = storage(2)
    clock.advance(60)

    data = encode_request(TransferOwnership(next_owner=BUYER))
    process_instruction(PROGRAM_ID, [product_slot, party(MANUFACTURER), new_slot], data, clock)

    old = read_record(product_slot)
    assert old.next_owner == BUYER
    assert old.current_owner == original.current_owner
    assert old.previous_record == original.previous_record
    assert old.timestamp == original.timestamp
    assert old.metadata == original.metadata

    new = read_record(new_slot)
    assert new.transaction_type == TransactionType.TRANSFER
    assert new.current_owner == BUYER
    assert new.previous_record == product_slot.key
    assert new.product_id == "SN-001"
    assert new.next_owner is None
    assert new.metadata == ""
    assert new.timestamp == original.timestamp + 60


def test_transfer_by_non_owner_modifies_nothing(product_slot, clock):
    before = bytes(product_slot.data)
    new_slot = storage(2)

    data = encode_request(TransferOwnership(next_owner=STRANGER))
    with pytest.raises(NotAuthorized):
        process_instruction(PROGRAM_ID, [product_slot, party(STRANGER), new_slot], data, clock)

    assert bytes(product_slot.data) == before
    assert not is_initialized(new_slot)


def test_transfer_without_signature(product_slot, clock):
    data = encode_request(TransferOwnership(next_owner=BUYER))
    with pytest.raises(MissingSignature):
        process_instruction(PROGRAM_ID, [product_slot, party(MANUFACTURER, signed=False), storage(2)], data, clock)


def test_transfer_new_slot_too_small_leaves_old_slot_untouched(product_slot, clock):
    before = bytes(product_slot.data)
    cramped = storage(2, capacity=8)

    data = encode_request(TransferOwnership(next_owner=BUYER))
    with pytest.raises(CapacityExceeded):
        process_instruction(PROGRAM_ID, [product_slot, party(MANUFACTURER), cramped], data, clock)

    assert bytes(product_slot.data) == before
    assert bytes(cramped.data) == bytes(8)


def test_transfer_from_uninitialized_slot(clock):
    data = encode_request(TransferOwnership(next_owner=BUYER))
    with pytest.raises(MalformedRecord):
        process_instruction(PROGRAM_ID, [storage(1), party(MANUFACTURER), storage(2)], data, clock)


def test_signature_checked_before_reading_record(clock):
    data = encode_request(TransferOwnership(next_owner=BUYER))
    with pytest.raises(MissingSignature):
        process_instruction(PROGRAM_ID, [storage(1), party(MANUFACTURER, signed=False), storage(2)], data, clock)


# -- RecordRepair / MarkEndOfLife


def test_record_repair(product_slot, clock):
    repair_slot = storage(3)
    before = bytes(product_slot.data)

    data = encode_request(RecordRepair(metadata="screen replaced"))
    process_instruction(PROGRAM_ID, [product_slot, party(MANUFACTURER), repair_slot], data, clock)

    repair = read_record(repair_slot)
    assert repair.transaction_type == TransactionType.REPAIR
    assert repair.current_owner == MANUFACTURER
    assert repair.previous_record == product_slot.key
    assert repair.metadata == "screen replaced"
    assert bytes(product_slot.data) == before


@pytest.mark.parametrize("request_obj", [RecordRepair(metadata="unauthorized fix"), MarkEndOfLife()])
def test_successor_by_non_owner(product_slot, clock, request_obj):
    target = storage(3)
    with pytest.raises(NotAuthorized):
        process_instruction(PROGRAM_ID, [product_slot, party(STRANGER), target], encode_request(request_obj), clock)
    assert not is_initialized(target)


@pytest.mark.parametrize("request_obj", [RecordRepair(metadata="fix"), MarkEndOfLife()])
def test_successor_without_signature(product_slot, clock, request_obj):
    target = storage(3)
    with pytest.raises(MissingSignature):
        process_instruction(
            PROGRAM_ID, [product_slot, party(MANUFACTURER, signed=False), target], encode_request(request_obj), clock
        )
    assert not is_initialized(target)


def test_mark_end_of_life(product_slot, clock):
    eol_slot = storage(4)

    process_instruction(PROGRAM_ID, [product_slot, party(MANUFACTURER), eol_slot], encode_request(MarkEndOfLife()), clock)

    eol = read_record(eol_slot)
    assert eol.transaction_type == TransactionType.END_OF_LIFE
    assert eol.metadata == END_OF_LIFE_METADATA == "Product marked as end-of-life"
    assert eol.current_owner == MANUFACTURER
    assert eol.previous_record == product_slot.key


def test_end_of_life_is_not_terminal_in_program(product_slot, clock):
    """The program itself does not refuse events after end-of-life."""
    eol_slot = storage(4)
    process_instruction(PROGRAM_ID, [product_slot, party(MANUFACTURER), eol_slot], encode_request(MarkEndOfLife()), clock)

    repair_slot = storage(5)
    data = encode_request(RecordRepair(metadata="refurbished"))
    process_instruction(PROGRAM_ID, [eol_slot, party(MANUFACTURER), repair_slot], data, clock)
    assert read_record(repair_slot).previous_record == eol_slot.key


# -- Dispatch


def test_invalid_request_touches_no_slot(mocker, clock):
    slots = mocker.MagicMock()
    with pytest.raises(InvalidRequest):
        process_instruction(PROGRAM_ID, slots, b"\x09garbage", clock)
    assert slots.mock_calls == []


def test_empty_request(clock):
    with pytest.raises(InvalidRequest):
        process_instruction(PROGRAM_ID, [storage(1)], b"", clock)


@pytest.mark.parametrize(
    "request_obj, supplied",
    [
        (CreateProduct(product_id="SN-001"), 1),
        (TransferOwnership(next_owner=BUYER), 2),
        (RecordRepair(metadata="fix"), 2),
        (MarkEndOfLife(), 0),
    ],
)
def test_missing_slot(product_slot, clock, request_obj, supplied):
    slots = [product_slot, party(MANUFACTURER)][:supplied]
    before = bytes(product_slot.data)

    with pytest.raises(MissingSlot) as excinfo:
        process_instruction(PROGRAM_ID, slots, encode_request(request_obj), clock)
    assert type(request_obj).__name__ in str(excinfo.value)
    assert bytes(product_slot.data) == before


def test_extra_slots_are_ignored(clock):
    slot = storage(1)
    spare = storage(9)
    process_instruction(PROGRAM_ID, [slot, party(MANUFACTURER), spare], encode_request(CreateProduct(product_id="SN-9")), clock)

    assert read_record(slot).product_id == "SN-9"
    assert not is_initialized(spare)


def test_timestamp_comes_from_injected_clock():
    slot = storage(1)
    process_instruction(PROGRAM_ID, [slot, party(MANUFACTURER)], encode_request(CreateProduct(product_id="SN-1")), FixedClock(-5))
    assert read_record(slot).timestamp == -5
