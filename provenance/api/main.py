# PRODUCT PROVENANCE API
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List

from fastapi import FastAPI, HTTPException, Depends, Request, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlmodel import Session, select

from provenance.api.schemas import (
    CreateProductRequest,
    HistoryResponse,
    RecordRepairRequest,
    RecordResponse,
    RoleGrantRequest,
    TransactionLogResponse,
    TransactionResponse,
    TransferOwnershipRequest,
    UserCreateRequest,
    VerificationResponse,
    WalletLoginRequest,
)
from provenance.app.database import get_session, init_db, engine
from provenance.app.exceptions import ConflictError, NotFoundError
from provenance.app.initial_data import create_initial_data
from provenance.app.ledger import Ledger
from provenance.app.logging_config import setup_logging
from provenance.app.models import ROLE_ADMIN, ROLE_MANUFACTURER, ROLE_USER, User
from provenance.app.provenance_manager import ProvenanceManager
from provenance.app.security import (
    get_password_hash,
    verify_password,
    encrypt_private_key,
    create_access_token,
    decrypt_private_key,
    verify_wallet_signature,
    SECRET_KEY,
    ALGORITHM,
    JWTError,
    jwt,
)
from provenance.app.utils import generate_new_wallet, private_key_to_address, validate_address
from provenance.program.errors import (
    CapacityExceeded,
    InvalidRequest,
    MalformedRecord,
    MissingSignature,
    MissingSlot,
    NotAuthorized,
    ProcessingError,
)
from provenance.program.processor import SystemClock

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    InvalidRequest: status.HTTP_400_BAD_REQUEST,
    MalformedRecord: status.HTTP_400_BAD_REQUEST,
    MissingSlot: status.HTTP_400_BAD_REQUEST,
    MissingSignature: status.HTTP_401_UNAUTHORIZED,
    NotAuthorized: status.HTTP_403_FORBIDDEN,
    CapacityExceeded: 413,
}

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()

    with Session(engine) as session:
        create_initial_data(session)
    yield

app = FastAPI(title="Product Provenance API", lifespan=lifespan)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "HTTP %s %s -> %d (%.1f ms)",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
    )
    return response

def get_clock():
    return SystemClock()

def get_manager(session: Session = Depends(get_session), clock=Depends(get_clock)) -> ProvenanceManager:
    return ProvenanceManager(session, Ledger(session, clock=clock))

def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning("Rejected access token: %s", e)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    if payload.get("sub") is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials")
    return payload

def get_current_user(token: str = Depends(oauth2_scheme), session: Session = Depends(get_session)) -> User:
    email = decode_access_token(token)["sub"]

    user = session.exec(select(User).where(User.email == email)).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user

def get_custodial_key(user: User) -> str:
    try:
        return decrypt_private_key(user.encrypted_private_key)
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Wallet decryption failed: {str(e)}")

def to_http_error(e: Exception) -> HTTPException:
    """Translate program and manager errors into HTTP errors."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, ProcessingError):
        return HTTPException(status_code=ERROR_STATUS.get(type(e), 400), detail={"error": e.code, "message": e.message})
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.exception("Unhandled error")
    return HTTPException(status_code=500, detail=str(e))

# === API ENDPOINTS ===

@app.get("/")
def read_root():
    """Root endpoint to check API status.

    Returns:
        dict: Status message and backend information.
    """
    return {"status": "Product Provenance API is running.", "backend": "Provenance Ledger"}

@app.get("/health")
def health():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

# === REGISTRATION AND AUTHENTICATION ===

@app.post("/register")
def register(user_data: UserCreateRequest, session: Session = Depends(get_session)):
    email = user_data.email
    password = user_data.password
    existing_user = session.exec(select(User).where(User.email == email)).first()
    if existing_user:
        raise HTTPException(status_code=409, detail=f"User with email '{email}' already exists.")

    # Generate new custodial wallet
    private_key = generate_new_wallet()
    wallet_address = private_key_to_address(private_key)

    new_user = User(
        email=email,
        hashed_password=get_password_hash(password),
        role=ROLE_USER,
        wallet_address=wallet_address,
        encrypted_private_key=encrypt_private_key(private_key)
    )
    session.add(new_user)
    session.commit()
    session.refresh(new_user)

    return {"status": "success", "email": email, "wallet_address": wallet_address}

@app.post("/token")
def login(form_data: OAuth2PasswordRequestForm = Depends(), session: Session = Depends(get_session)):
    """Authenticate user and provide JWT token."""
    user = session.exec(select(User).where(User.email == form_data.username)).first()
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect email or password")

    access_token = create_access_token(subject=user.email, role=user.role)
    return {"access_token": access_token, "token_type": "bearer", "role": user.role, "address": user.wallet_address}

@app.post("/auth/wallet-login")
def wallet_login(request: WalletLoginRequest, session: Session = Depends(get_session)):
    """Authenticate by signing a message with the wallet's key."""
    if not verify_wallet_signature(request.wallet_address, request.message, request.signature):
        logger.warning("Wallet login failed for %s: invalid signature", request.wallet_address)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        wallet_address = validate_address(request.wallet_address)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    user = session.exec(select(User).where(User.wallet_address == wallet_address)).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No account is registered for this wallet")

    logger.info("Wallet login for %s", wallet_address)
    access_token = create_access_token(subject=user.email, role=user.role)
    return {"access_token": access_token, "token_type": "bearer", "role": user.role, "address": user.wallet_address}

@app.post("/auth/refresh")
def refresh_token(current_user: User = Depends(get_current_user)):
    """Issue a fresh token for the holder of a still-valid one."""
    access_token = create_access_token(subject=current_user.email, role=current_user.role)
    logger.info("Token refreshed for %s", current_user.email)
    return {"access_token": access_token, "token_type": "bearer", "role": current_user.role, "address": current_user.wallet_address}

@app.get("/auth/verify")
def verify_token(token: str = Depends(oauth2_scheme)):
    payload = decode_access_token(token)
    return {
        "valid": True,
        "email": payload["sub"],
        "role": payload.get("role"),
        "expires_at": datetime.fromtimestamp(payload["exp"], timezone.utc).isoformat() if "exp" in payload else None,
    }

# === ROLE MANAGEMENT ===

@app.post("/admin/grant-role")
def grant_role(request: RoleGrantRequest, current_user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    """Set a registered account's role. Granting USER revokes manufacturer rights."""
    if current_user.role != ROLE_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only an administrator can grant roles")
    if request.role_name not in (ROLE_MANUFACTURER, ROLE_USER):
        raise HTTPException(status_code=400, detail=f"Role {request.role_name} cannot be granted.")
    try:
        target_address = validate_address(request.target_address)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    target = session.exec(select(User).where(User.wallet_address == target_address)).first()
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No account is registered for {target_address}")

    target.role = request.role_name
    session.add(target)
    session.commit()
    logger.info("%s granted %s to %s", current_user.email, request.role_name, target_address)
    return {"status": "success", "address": target_address, "role": request.role_name}

# === LIFECYCLE TRANSACTIONS ===

@app.post("/products", status_code=status.HTTP_201_CREATED, response_model=TransactionResponse)
def create_product(request: CreateProductRequest, current_user: User = Depends(get_current_user), manager: ProvenanceManager = Depends(get_manager)):
    if current_user.role != ROLE_MANUFACTURER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only manufacturers can register products")
    sender_pk = get_custodial_key(current_user)
    try:
        return manager.create_product(sender_pk=sender_pk, product_id=request.product_id, metadata=request.metadata)
    except Exception as e:
        raise to_http_error(e)

@app.post("/products/{product_id}/transfer", response_model=TransactionResponse)
def transfer_ownership(product_id: str, request: TransferOwnershipRequest, current_user: User = Depends(get_current_user), manager: ProvenanceManager = Depends(get_manager)):
    sender_pk = get_custodial_key(current_user)
    try:
        return manager.transfer_ownership(sender_pk=sender_pk, product_id=product_id, next_owner_address=request.next_owner_address)
    except Exception as e:
        raise to_http_error(e)

@app.post("/products/{product_id}/repair", response_model=TransactionResponse)
def record_repair(product_id: str, request: RecordRepairRequest, current_user: User = Depends(get_current_user), manager: ProvenanceManager = Depends(get_manager)):
    sender_pk = get_custodial_key(current_user)
    try:
        return manager.record_repair(sender_pk=sender_pk, product_id=product_id, metadata=request.metadata)
    except Exception as e:
        raise to_http_error(e)

@app.post("/products/{product_id}/end-of-life", response_model=TransactionResponse)
def mark_end_of_life(product_id: str, current_user: User = Depends(get_current_user), manager: ProvenanceManager = Depends(get_manager)):
    sender_pk = get_custodial_key(current_user)
    try:
        return manager.mark_end_of_life(sender_pk=sender_pk, product_id=product_id)
    except Exception as e:
        raise to_http_error(e)

# === READ ENDPOINTS ===

@app.get("/products/{product_id}/history", response_model=HistoryResponse)
def get_product_history(product_id: str, manager: ProvenanceManager = Depends(get_manager)):
    try:
        return {"product_id": product_id, "history": manager.get_product_history(product_id)}
    except Exception as e:
        raise to_http_error(e)

@app.get("/products/{product_id}/verify", response_model=VerificationResponse)
def verify_product_chain(product_id: str, manager: ProvenanceManager = Depends(get_manager)):
    try:
        return manager.verify_chain(product_id)
    except Exception as e:
        raise to_http_error(e)

@app.get("/records/{slot_address}", response_model=RecordResponse)
def get_record(slot_address: str, manager: ProvenanceManager = Depends(get_manager)):
    try:
        return manager.get_record(slot_address)
    except Exception as e:
        raise to_http_error(e)

@app.get("/transactions/recent", response_model=List[TransactionLogResponse])
def get_recent_transactions(limit: int = 10, manager: ProvenanceManager = Depends(get_manager)):
    try:
        return manager.get_recent_transactions(limit=limit)
    except Exception as e:
        raise to_http_error(e)

# === STATS ===

@app.get("/statistics")
def get_stats(manager: ProvenanceManager = Depends(get_manager)):
    try:
        return {"statistics": manager.get_system_stats()}
    except Exception as e:
        raise to_http_error(e)
