import logging
import os
from typing import Optional

from sqlmodel import Session, select

from provenance.app.models import ROLE_ADMIN, User
from provenance.app.security import get_password_hash, encrypt_private_key
from provenance.app.utils import private_key_to_address

logger = logging.getLogger(__name__)

def create_initial_data(session: Session) -> Optional[User]:
    """Seed the administrator account that grants manufacturer roles.

    The administrator's custodial wallet is the OPERATOR_PRIVATE_KEY wallet.
    An existing account holding that wallet is promoted instead of duplicated.
    """
    operator_key = os.getenv("OPERATOR_PRIVATE_KEY")
    if not operator_key:
        logger.info("No OPERATOR_PRIVATE_KEY set; skipping administrator bootstrap.")
        return None

    if not operator_key.startswith("0x"):
        operator_key = "0x" + operator_key
    wallet_address = private_key_to_address(operator_key)
    admin_email = os.getenv("ADMIN_EMAIL", "admin@provenance.local")

    admin = session.exec(select(User).where(User.wallet_address == wallet_address)).first()
    if admin is not None:
        if admin.role != ROLE_ADMIN:
            logger.info("Promoting %s (%s) to %s.", admin.email, wallet_address, ROLE_ADMIN)
            admin.role = ROLE_ADMIN
            session.add(admin)
            session.commit()
        else:
            logger.info("Administrator %s already present.", admin.email)
        return admin

    admin = User(
        email=admin_email,
        hashed_password=get_password_hash(os.getenv("ADMIN_PASSWORD", "adminpass")),
        role=ROLE_ADMIN,
        wallet_address=wallet_address,
        encrypted_private_key=encrypt_private_key(operator_key),
    )
    session.add(admin)
    session.commit()
    session.refresh(admin)
    logger.info("Administrator %s created with wallet %s.", admin_email, wallet_address)
    return admin
