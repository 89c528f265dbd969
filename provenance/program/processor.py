import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Sequence, Tuple, Type

from provenance.program.encoding import (
    CreateProduct,
    DecodeError,
    Identity,
    MarkEndOfLife,
    OperationRequest,
    ProductRecord,
    RecordRepair,
    TransactionType,
    TransferOwnership,
    decode_request,
)
from provenance.program.errors import InvalidRequest, MissingSlot
from provenance.program.guard import authorize, require_signer
from provenance.program.slots import SlotHandle, read_record, write_records

logger = logging.getLogger(__name__)

END_OF_LIFE_METADATA = "Product marked as end-of-life"

Writes = List[Tuple[SlotHandle, ProductRecord]]


# === CLOCKS ===


class SystemClock:
    def now(self) -> int:
        return int(time.time())


class FixedClock:
    """Clock returning a settable timestamp, for replays and tests."""

    def __init__(self, timestamp: int = 0):
        self.timestamp = timestamp

    def now(self) -> int:
        return self.timestamp

    def advance(self, seconds: int = 1) -> int:
        self.timestamp += seconds
        return self.timestamp


# === SLOT ROLES ===


def _bind(slots: Sequence[SlotHandle], roles: Tuple[str, ...], instruction: str) -> List[SlotHandle]:
    if len(slots) < len(roles):
        missing = ", ".join(roles[len(slots):])
        raise MissingSlot(f"{instruction} requires {len(roles)} slots, got {len(slots)} (missing: {missing}).")
    return list(slots[: len(roles)])


@dataclass
class CreateProductAccounts:
    ROLES = ("product", "manufacturer")
    product: SlotHandle
    manufacturer: SlotHandle

    @classmethod
    def from_slots(cls, slots: Sequence[SlotHandle], instruction: str) -> "CreateProductAccounts":
        return cls(*_bind(slots, cls.ROLES, instruction))


@dataclass
class TransferOwnershipAccounts:
    ROLES = ("product", "current_owner", "new_record")
    product: SlotHandle
    current_owner: SlotHandle
    new_record: SlotHandle

    @classmethod
    def from_slots(cls, slots: Sequence[SlotHandle], instruction: str) -> "TransferOwnershipAccounts":
        return cls(*_bind(slots, cls.ROLES, instruction))


@dataclass
class SuccessorRecordAccounts:
    """Slots for handlers that append a record after the product's current one."""

    ROLES = ("product", "owner", "record")
    product: SlotHandle
    owner: SlotHandle
    record: SlotHandle

    @classmethod
    def from_slots(cls, slots: Sequence[SlotHandle], instruction: str) -> "SuccessorRecordAccounts":
        return cls(*_bind(slots, cls.ROLES, instruction))


# === TRANSITION HANDLERS ===


def create_product(accounts: CreateProductAccounts, request: CreateProduct, clock) -> Writes:
    require_signer(accounts.manufacturer, "Manufacturer")

    record = ProductRecord(
        product_id=request.product_id,
        transaction_type=TransactionType.MANUFACTURE,
        previous_record=None,
        current_owner=accounts.manufacturer.key,
        next_owner=None,
        timestamp=clock.now(),
        metadata=request.metadata,
    )
    logger.info("Product created: %s", request.product_id)
    return [(accounts.product, record)]


def transfer_ownership(accounts: TransferOwnershipAccounts, request: TransferOwnership, clock) -> Writes:
    require_signer(accounts.current_owner, "Current owner")

    record = read_record(accounts.product)
    authorize(accounts.current_owner.is_signer, accounts.current_owner.key, record.current_owner)

    new_record = ProductRecord(
        product_id=record.product_id,
        transaction_type=TransactionType.TRANSFER,
        previous_record=accounts.product.key,
        current_owner=request.next_owner,
        next_owner=None,
        timestamp=clock.now(),
        metadata="",
    )
    logger.info("Ownership of %s transferred to: %s", record.product_id, request.next_owner)
    return [
        (accounts.product, replace(record, next_owner=request.next_owner)),
        (accounts.new_record, new_record),
    ]


def _successor(accounts: SuccessorRecordAccounts, transaction_type: TransactionType, metadata: str, clock) -> ProductRecord:
    require_signer(accounts.owner, "Owner")

    record = read_record(accounts.product)
    authorize(accounts.owner.is_signer, accounts.owner.key, record.current_owner)

    return ProductRecord(
        product_id=record.product_id,
        transaction_type=transaction_type,
        previous_record=accounts.product.key,
        current_owner=record.current_owner,
        next_owner=None,
        timestamp=clock.now(),
        metadata=metadata,
    )


def record_repair(accounts: SuccessorRecordAccounts, request: RecordRepair, clock) -> Writes:
    repair_record = _successor(accounts, TransactionType.REPAIR, request.metadata, clock)
    logger.info("Repair recorded for product: %s", repair_record.product_id)
    return [(accounts.record, repair_record)]


def mark_end_of_life(accounts: SuccessorRecordAccounts, request: MarkEndOfLife, clock) -> Writes:
    eol_record = _successor(accounts, TransactionType.END_OF_LIFE, END_OF_LIFE_METADATA, clock)
    logger.info("Product marked as end-of-life: %s", eol_record.product_id)
    return [(accounts.record, eol_record)]


# === DISPATCH ===

ROUTES: Dict[Type, Tuple[Type, Callable]] = {
    CreateProduct: (CreateProductAccounts, create_product),
    TransferOwnership: (TransferOwnershipAccounts, transfer_ownership),
    RecordRepair: (SuccessorRecordAccounts, record_repair),
    MarkEndOfLife: (SuccessorRecordAccounts, mark_end_of_life),
}


def process_instruction(program_id: Identity, slots: Sequence[SlotHandle], instruction_data: bytes, clock=None):
    """Decode one operation request, run its handler and commit the records it produces.

    Args:
        program_id (Identity): Identity the host invoked the program under.
        slots (Sequence[SlotHandle]): Slot handles in the order the operation expects them.
        instruction_data (bytes): Encoded operation request.
        clock: Object with a ``now()`` method returning the host timestamp.

    Raises:
        ProcessingError: Any failure; no slot is written when one is raised.
    """
    try:
        request: OperationRequest = decode_request(instruction_data)
    except DecodeError as e:
        logger.warning("Rejected instruction data: %s", e)
        raise InvalidRequest(f"Instruction data does not decode to a known operation: {e}") from e

    accounts_type, handler = ROUTES[type(request)]
    logger.info("Instruction: %s (program %s)", type(request).__name__, program_id)

    accounts = accounts_type.from_slots(slots, type(request).__name__)
    writes = handler(accounts, request, clock or SystemClock())
    write_records(writes)
