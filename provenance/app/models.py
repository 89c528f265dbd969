from typing import Optional
from sqlmodel import Field, SQLModel

ROLE_ADMIN = "ADMIN" # grants roles, seeded from OPERATOR_PRIVATE_KEY
ROLE_MANUFACTURER = "MANUFACTURER" # may register new products
ROLE_USER = "USER"
ROLES = (ROLE_ADMIN, ROLE_MANUFACTURER, ROLE_USER)

class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    hashed_password: str
    role: str = ROLE_USER
    wallet_address: str = Field(index=True, unique=True)
    encrypted_private_key: str

class SlotAccount(SQLModel, table=True):
    """Fixed-capacity storage slot owned by the ledger host."""
    address: str = Field(primary_key=True)
    capacity: int
    data: bytes

class ProductIndex(SQLModel, table=True):
    """Host-side lookup from a product id to its chain."""
    product_id: str = Field(primary_key=True)
    manufacturer: str = Field(index=True)
    genesis_slot: str
    head_slot: str
    status: str # TransactionType label of the head record

class TransactionLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tx_id: str = Field(index=True, unique=True)
    instruction: str
    product_id: str = Field(index=True)
    signer: str
    record_slot: str
    slots: str # comma separated, in invocation order
    timestamp: int
