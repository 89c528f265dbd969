import os
import sys
import pytest
from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy.pool import StaticPool

os.environ["SECRET_KEY"] = "test_secret_key"
os.environ["MASTER_ENCRYPTION_KEY"] = "kuE-1lRPliERa1bhHMqbqIS2GbpGcWmd-lrNIGPvoXU="
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.pop("OPERATOR_PRIVATE_KEY", None)

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
from provenance.app import models  # noqa: F401
from provenance.app.ledger import Ledger
from provenance.app.provenance_manager import ProvenanceManager
from provenance.app.utils import private_key_to_address
from provenance.program.processor import FixedClock

MANUFACTURER_PK = "0x" + "11" * 32
BUYER_PK = "0x" + "22" * 32
STRANGER_PK = "0x" + "33" * 32

START_TIME = 1700000000


@pytest.fixture
def clock():
    return FixedClock(START_TIME)


@pytest.fixture
def session():
    """Create a new in-memory database session for a test."""
    test_engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(test_engine)
    with Session(test_engine) as session:
        yield session
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def ledger(session, clock):
    return Ledger(session, clock=clock)


@pytest.fixture
def manager(session, ledger):
    return ProvenanceManager(session, ledger)


@pytest.fixture
def wallets():
    return {
        name: {"private_key": pk, "address": private_key_to_address(pk)}
        for name, pk in [("manufacturer", MANUFACTURER_PK), ("buyer", BUYER_PK), ("stranger", STRANGER_PK)]
    }
