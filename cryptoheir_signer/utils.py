"""
Utility functions for the CryptoHeir offline signer.
"""
import datetime
from decimal import Decimal, InvalidOperation, localcontext
from typing import Union

import rlp
from eth_utils import keccak, to_canonical_address, to_checksum_address
from web3 import Web3

Number = Union[int, str, Decimal]


def predict_contract_address(sender: str, nonce: int) -> str:
    """
    Compute the address a CREATE deployment will get.

    The address is the last 20 bytes of keccak256(rlp([sender, nonce])).

    Args:
        sender: Deployer address
        nonce: Nonce of the deployment transaction

    Returns:
        Checksummed contract address
    """
    encoded = rlp.encode([to_canonical_address(sender), int(nonce)])
    return to_checksum_address(keccak(encoded)[12:])


def _format_units(wei: int, unit: str) -> str:
    # normalize() would round to the context precision
    text = format(Decimal(Web3.from_wei(int(wei), unit)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if "." not in text:
        text += ".0"
    return text


def format_ether(wei: int) -> str:
    """Format a wei amount as an ether decimal string ("0.1", "2.0")."""
    return _format_units(wei, "ether")


def format_gwei(wei: int) -> str:
    return _format_units(wei, "gwei")


def _parse_units(amount: Number, unit: str, label: str) -> int:
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise ValueError(f"{label} must be a decimal number, got {amount!r}")
    if not value.is_finite() or value < 0:
        raise ValueError(f"{label} must be a non-negative number, got {amount!r}")
    with localcontext() as ctx:
        ctx.prec = 999
        wei = value * Web3.to_wei(1, unit)
        if wei != wei.to_integral_value():
            raise ValueError(f"{label} has more decimal places than {unit} allows, got {amount!r}")
    return int(wei)


def parse_ether(amount: Number, label: str = "value") -> int:
    """
    Convert an ether amount to wei.

    Raises:
        ValueError: If the amount is not a non-negative decimal number
    """
    return _parse_units(amount, "ether", label)


def parse_gwei(amount: Number, label: str = "gas price") -> int:
    return _parse_units(amount, "gwei", label)


def to_hex_str(value) -> str:
    """Normalize bytes/HexBytes/str to a 0x-prefixed lowercase hex string."""
    if isinstance(value, str):
        return value.lower() if value.startswith("0x") else "0x" + value.lower()
    return Web3.to_hex(value)


def utc_now_iso() -> str:
    """Current UTC time in ISO-8601 with millisecond precision."""
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
