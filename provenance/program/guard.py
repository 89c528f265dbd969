import logging

from provenance.program.encoding import Identity
from provenance.program.errors import MissingSignature, NotAuthorized

logger = logging.getLogger(__name__)


def require_signer(slot, role: str = "Signer"):
    """Reject the invocation unless the host marked `slot` as a signer."""
    if not slot.is_signer:
        logger.warning("%s %s must sign the transaction", role, slot.key)
        raise MissingSignature(f"{role} {slot.key} must sign the transaction.")


def authorize(is_signer: bool, claimed_identity: Identity, required_identity: Identity):
    """Succeed only when the claimed identity signed and is the required authority."""
    if not is_signer:
        logger.warning("Identity %s did not sign the transaction", claimed_identity)
        raise MissingSignature(f"Identity {claimed_identity} did not sign the transaction.")
    if claimed_identity != required_identity:
        logger.warning("Signer %s is not the current owner %s", claimed_identity, required_identity)
        raise NotAuthorized(f"Signer {claimed_identity} is not the current owner.")
