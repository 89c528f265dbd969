from datetime import datetime

from eth_account import Account
from eth_utils import is_hex_address, to_checksum_address


def private_key_to_address(private_key: str) -> str:
    """Derive the wallet address from a given private key."""
    if not private_key.startswith("0x"):
        private_key = "0x" + private_key

    account = Account.from_key(private_key)
    return account.address


def generate_new_wallet() -> str:
    """Create a fresh private key (hex, 0x-prefixed)."""
    return "0x" + bytes(Account.create().key).hex()


def validate_address(address: str) -> str:
    """Validate a wallet or slot address and return it in checksum format.
    Args:
        address (str): The address to validate.
    Returns:
        str: The checksummed address.
    """
    if not address or not isinstance(address, str):
        raise ValueError(f"Address {address} is not a valid address.")
    if not address.startswith("0x") or not is_hex_address(address):
        raise ValueError(f"Address {address} is not a valid address.")
    return to_checksum_address(address)


def format_date(timestamp: int) -> str:
    if timestamp <= 0:
        return "N/A"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M")
