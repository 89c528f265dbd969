"""Canonical binary layout of provenance records and operation requests.

Every integer is little-endian. Strings are a u32 byte length followed by
UTF-8 bytes, identities are 20 raw bytes and optional values are a u8
presence tag (0 or 1) followed by the value when present. Enumerations are a
single u8 discriminant.

ProductRecord:
    product_id: string
    transaction_type: u8
    previous_record: option<identity>
    current_owner: identity
    next_owner: option<identity>
    timestamp: i64
    metadata: string

OperationRequest (u8 tag, then fields):
    0 CreateProduct      product_id: string, metadata: string
    1 TransferOwnership  next_owner: identity
    2 RecordRepair       metadata: string
    3 MarkEndOfLife      (no fields)
"""
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Tuple, Union

from eth_utils import decode_hex, is_hex_address, to_checksum_address

IDENTITY_LENGTH = 20


class DecodeError(ValueError):
    pass


@dataclass(frozen=True)
class Identity:
    """Opaque 20-byte identity of a party or a storage slot."""

    raw: bytes

    def __post_init__(self):
        if not isinstance(self.raw, bytes) or len(self.raw) != IDENTITY_LENGTH:
            raise ValueError(f"Identity must be exactly {IDENTITY_LENGTH} bytes.")

    @classmethod
    def from_address(cls, address: str) -> "Identity":
        if not isinstance(address, str) or not is_hex_address(address):
            raise ValueError(f"Address {address} is not a valid hex address.")
        return cls(decode_hex(address))

    @property
    def address(self) -> str:
        return to_checksum_address("0x" + self.raw.hex())

    def __str__(self) -> str:
        return self.address


class TransactionType(IntEnum):
    MANUFACTURE = 0
    REPAIR = 1
    TRANSFER = 2
    END_OF_LIFE = 3

    @property
    def label(self) -> str:
        return {
            TransactionType.MANUFACTURE: "Manufacture",
            TransactionType.REPAIR: "Repair",
            TransactionType.TRANSFER: "Transfer",
            TransactionType.END_OF_LIFE: "EndOfLife",
        }[self]


@dataclass(frozen=True)
class ProductRecord:
    product_id: str
    transaction_type: TransactionType
    previous_record: Optional[Identity]
    current_owner: Identity
    next_owner: Optional[Identity]
    timestamp: int
    metadata: str


# === OPERATION REQUESTS ===


@dataclass(frozen=True)
class CreateProduct:
    TAG = 0
    product_id: str
    metadata: str = ""


@dataclass(frozen=True)
class TransferOwnership:
    TAG = 1
    next_owner: Identity


@dataclass(frozen=True)
class RecordRepair:
    TAG = 2
    metadata: str


@dataclass(frozen=True)
class MarkEndOfLife:
    TAG = 3


OperationRequest = Union[CreateProduct, TransferOwnership, RecordRepair, MarkEndOfLife]


# === PRIMITIVES ===


def _pack_u8(value: int) -> bytes:
    return struct.pack("<B", value)


def _pack_i64(value: int) -> bytes:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"Timestamp must be an integer, got {value!r}.")
    try:
        return struct.pack("<q", value)
    except struct.error:
        raise ValueError(f"Timestamp {value} does not fit in a signed 64-bit integer.")


def _pack_string(value: str) -> bytes:
    if not isinstance(value, str):
        raise ValueError(f"Expected text, got {type(value).__name__}.")
    raw = value.encode("utf-8")
    return struct.pack("<I", len(raw)) + raw


def _pack_identity(identity: Identity) -> bytes:
    if not isinstance(identity, Identity):
        raise ValueError(f"Expected an Identity, got {type(identity).__name__}.")
    return identity.raw


def _pack_optional_identity(identity: Optional[Identity]) -> bytes:
    if identity is None:
        return _pack_u8(0)
    return _pack_u8(1) + _pack_identity(identity)


class _Reader:
    def __init__(self, data: bytes):
        self._data = bytes(data)
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self.offset

    def _take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self._data):
            raise DecodeError(f"Unexpected end of input: needed {size} bytes at offset {self.offset}.")
        chunk = self._data[self.offset:end]
        self.offset = end
        return chunk

    def u8(self) -> int:
        return self._take(1)[0]

    def u32(self) -> int:
        return struct.unpack("<I", self._take(4))[0]

    def i64(self) -> int:
        return struct.unpack("<q", self._take(8))[0]

    def string(self) -> str:
        length = self.u32()
        raw = self._take(length)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Invalid UTF-8 text at offset {self.offset - length}: {e}")

    def identity(self) -> Identity:
        return Identity(self._take(IDENTITY_LENGTH))

    def optional_identity(self) -> Optional[Identity]:
        tag = self.u8()
        if tag == 0:
            return None
        if tag == 1:
            return self.identity()
        raise DecodeError(f"Invalid option tag {tag} at offset {self.offset - 1}.")

    def transaction_type(self) -> TransactionType:
        tag = self.u8()
        try:
            return TransactionType(tag)
        except ValueError:
            raise DecodeError(f"Unknown transaction type tag {tag}.")

    def finish(self):
        if self.remaining:
            raise DecodeError(f"{self.remaining} trailing bytes after end of value.")


# === PRODUCT RECORD ===


def encode_record(record: ProductRecord) -> bytes:
    return b"".join(
        [
            _pack_string(record.product_id),
            _pack_u8(TransactionType(record.transaction_type)),
            _pack_optional_identity(record.previous_record),
            _pack_identity(record.current_owner),
            _pack_optional_identity(record.next_owner),
            _pack_i64(record.timestamp),
            _pack_string(record.metadata),
        ]
    )


def _read_record(reader: _Reader) -> ProductRecord:
    return ProductRecord(
        product_id=reader.string(),
        transaction_type=reader.transaction_type(),
        previous_record=reader.optional_identity(),
        current_owner=reader.identity(),
        next_owner=reader.optional_identity(),
        timestamp=reader.i64(),
        metadata=reader.string(),
    )


def decode_record(data: bytes) -> ProductRecord:
    reader = _Reader(data)
    record = _read_record(reader)
    reader.finish()
    return record


def decode_record_prefix(data: bytes) -> Tuple[ProductRecord, int]:
    """Decode a record from the start of `data`, ignoring whatever follows it.

    Returns the record and the number of bytes it occupied.
    """
    reader = _Reader(data)
    record = _read_record(reader)
    return record, reader.offset


# === OPERATION REQUEST ===


def encode_request(request: OperationRequest) -> bytes:
    if isinstance(request, CreateProduct):
        body = _pack_string(request.product_id) + _pack_string(request.metadata)
    elif isinstance(request, TransferOwnership):
        body = _pack_identity(request.next_owner)
    elif isinstance(request, RecordRepair):
        body = _pack_string(request.metadata)
    elif isinstance(request, MarkEndOfLife):
        body = b""
    else:
        raise TypeError(f"Unsupported request type: {type(request).__name__}")
    return _pack_u8(request.TAG) + body


_REQUEST_DECODERS = {
    CreateProduct.TAG: lambda r: CreateProduct(product_id=r.string(), metadata=r.string()),
    TransferOwnership.TAG: lambda r: TransferOwnership(next_owner=r.identity()),
    RecordRepair.TAG: lambda r: RecordRepair(metadata=r.string()),
    MarkEndOfLife.TAG: lambda r: MarkEndOfLife(),
}


def decode_request(data: bytes) -> OperationRequest:
    reader = _Reader(data)
    tag = reader.u8()
    decoder = _REQUEST_DECODERS.get(tag)
    if decoder is None:
        raise DecodeError(f"Unknown operation tag {tag}.")
    request = decoder(reader)
    reader.finish()
    return request
