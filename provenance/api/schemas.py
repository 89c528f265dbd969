from pydantic import BaseModel, Field
from typing import List, Optional

# ==== REQUEST MODELS ====
class CreateProductRequest(BaseModel):
    product_id: str = Field(min_length=1)
    metadata: str = ""

class TransferOwnershipRequest(BaseModel):
    next_owner_address: str

class RecordRepairRequest(BaseModel):
    metadata: str = Field(min_length=1)

class RoleGrantRequest(BaseModel):
    target_address: str
    role_name: str

class UserCreateRequest(BaseModel):
    email: str
    password: str

class WalletLoginRequest(BaseModel):
    wallet_address: str
    message: str
    signature: str

# ==== RESPONSE MODELS ====
class TransactionResponse(BaseModel):
    status: str = "success"
    tx_id: str
    product_id: str
    record_slot: str
    previous_slot: Optional[str] = None

class RecordResponse(BaseModel):
    slot: str
    product_id: str
    transaction_type: str
    previous_record: Optional[str] = None
    current_owner: str
    next_owner: Optional[str] = None
    timestamp: int
    date: str
    metadata: str

class HistoryResponse(BaseModel):
    product_id: str
    history: List[RecordResponse]

class VerificationResponse(BaseModel):
    product_id: str
    valid: bool
    length: int
    issues: List[str]

class TransactionLogResponse(BaseModel):
    tx_id: str
    instruction: str
    product_id: str
    signer: str
    record_slot: str
    timestamp: int
    date: str
