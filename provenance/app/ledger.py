import logging
import os
import threading
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from dotenv import load_dotenv
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import decode_hex, keccak
from sqlmodel import Session, SQLModel

from provenance.app.exceptions import NotFoundError
from provenance.app.models import SlotAccount
from provenance.app.utils import validate_address
from provenance.program.encoding import Identity, ProductRecord
from provenance.program.processor import SystemClock, process_instruction
from provenance.program.slots import SlotHandle, is_initialized, read_record

load_dotenv()
PROGRAM_ID = os.getenv("PROGRAM_ID", "0x0000000000000000000000000000000050524f56")
SLOT_CAPACITY = int(os.getenv("SLOT_CAPACITY", "512"))

logger = logging.getLogger(__name__)

# Invocations touching the same slots must not interleave. Reentrant: the
# manager holds it across the chain head lookup and the invocation.
INVOCATION_LOCK = threading.RLock()


def invocation_message(instruction_data: bytes, account_addresses: Sequence[str]) -> bytes:
    """Bytes a party signs to authorize an invocation: the request followed by every account identity in order."""
    return bytes(instruction_data) + b"".join(Identity.from_address(a).raw for a in account_addresses)


def sign_invocation(private_key: str, instruction_data: bytes, account_addresses: Sequence[str]) -> str:
    if not private_key.startswith("0x"):
        private_key = "0x" + private_key
    message = encode_defunct(primitive=invocation_message(instruction_data, account_addresses))
    signed = Account.sign_message(message, private_key=private_key)
    return "0x" + bytes(signed.signature).hex()


class Ledger:
    """Host environment for the provenance program.

    Slots live in the database. Each invocation runs the program against
    copies of the referenced slot buffers and persists them in a single
    transaction only if the program succeeds, so a failed invocation leaves
    no trace.
    """

    def __init__(self, session: Session, clock=None, program_id: str = PROGRAM_ID, slot_capacity: int = SLOT_CAPACITY):
        self.session = session
        self.clock = clock or SystemClock()
        self.program_id = Identity.from_address(program_id)
        self.slot_capacity = slot_capacity
        self.lock = INVOCATION_LOCK

    # === SLOTS ===

    def allocate_slot(self, capacity: Optional[int] = None) -> str:
        """Create a zero-filled slot under a fresh identity.

        The slot is flushed but not committed; it becomes permanent with the
        next successful invocation or commit.
        """
        capacity = self.slot_capacity if capacity is None else capacity
        if capacity <= 0:
            raise ValueError(f"Slot capacity must be positive, got {capacity}.")
        address = Account.create().address
        self.session.add(SlotAccount(address=address, capacity=capacity, data=bytes(capacity)))
        self.session.flush()
        logger.debug("Allocated slot %s (%d bytes)", address, capacity)
        return address

    def _get_slot_row(self, address: str) -> SlotAccount:
        row = self.session.get(SlotAccount, validate_address(address))
        if row is None:
            raise NotFoundError(f"Slot {address} does not exist.")
        return row

    def get_slot_bytes(self, address: str) -> bytes:
        return bytes(self._get_slot_row(address).data)

    def slot_exists(self, address: str) -> bool:
        return self.session.get(SlotAccount, validate_address(address)) is not None

    def has_record(self, address: str) -> bool:
        row = self._get_slot_row(address)
        return is_initialized(SlotHandle(key=Identity.from_address(row.address), data=bytearray(row.data)))

    def read_slot(self, address: str) -> ProductRecord:
        row = self._get_slot_row(address)
        return read_record(SlotHandle(key=Identity.from_address(row.address), data=bytearray(row.data)))

    # === INVOCATION ===

    def recover_signers(self, message: bytes, signatures: Iterable[str]) -> Set[str]:
        signers = set()
        for signature in signatures:
            try:
                signer = Account.recover_message(encode_defunct(primitive=message), signature=signature)
            except Exception as e:
                raise ValueError(f"Invalid signature {signature}: {e}") from e
            signers.add(signer.lower())
        return signers

    def _load_handles(self, addresses: List[str], signers: Set[str]) -> Tuple[List[SlotHandle], Dict[str, Tuple[SlotAccount, bytearray]]]:
        handles = []
        buffers: Dict[str, bytearray] = {}
        rows: Dict[str, Tuple[SlotAccount, bytearray]] = {}
        for address in addresses:
            if address not in buffers:
                row = self.session.get(SlotAccount, address)
                buffers[address] = bytearray(row.data) if row is not None else bytearray()
                if row is not None:
                    rows[address] = (row, buffers[address])
            handles.append(
                SlotHandle(
                    key=Identity.from_address(address),
                    data=buffers[address],
                    is_signer=address.lower() in signers,
                )
            )
        return handles, rows

    def invoke(
        self,
        instruction_data: bytes,
        account_addresses: Sequence[str],
        signatures: Sequence[str] = (),
        on_commit: Optional[Callable[[str], Iterable[SQLModel]]] = None,
    ) -> str:
        """Run one invocation of the program atomically.
        Args:
            instruction_data (bytes): Encoded operation request.
            account_addresses (Sequence[str]): Slot and party addresses in the order the operation expects.
            signatures (Sequence[str]): Signatures over the invocation message by the authorizing parties.
            on_commit (Callable): Receives the transaction id and returns extra rows to persist with the slots.
        Returns:
            str: Transaction id (hex).
        """
        with self.lock:
            tx_id = None
            try:
                addresses = [validate_address(a) for a in account_addresses]
                message = invocation_message(instruction_data, addresses)
                signers = self.recover_signers(message, signatures)
                tx_id = "0x" + keccak(message + b"".join(decode_hex(s) for s in signatures)).hex()

                handles, rows = self._load_handles(addresses, signers)
                process_instruction(self.program_id, handles, instruction_data, self.clock)

                for row, buffer in rows.values():
                    row.data = bytes(buffer)
                    self.session.add(row)
                if on_commit is not None:
                    for extra in on_commit(tx_id):
                        self.session.add(extra)
                self.session.commit()
            except Exception as e:
                logger.warning("Invocation %s rolled back: %s", tx_id, e)
                self.session.rollback()
                raise

        logger.info("Invocation %s committed (%d accounts)", tx_id, len(addresses))
        return tx_id
