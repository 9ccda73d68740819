"""
Signing key material: raw private keys and BIP-39 mnemonics.

Everything here works offline. Key material is never logged.
"""
import logging
from typing import Optional, Tuple

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import ValidationError as EthValidationError

from .config import SignConfig
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# BIP-44 path for Ethereum accounts
DERIVATION_PATH = "m/44'/60'/0'/0/{index}"
MNEMONIC_WORD_COUNTS = (12, 24)

Account.enable_unaudited_hdwallet_features()


def derivation_path(index: int) -> str:
    if index < 0:
        raise ConfigurationError(f"Account index must be non-negative, got {index}")
    return DERIVATION_PATH.format(index=index)


def account_from_private_key(private_key: str) -> LocalAccount:
    """
    Load an account from a hex private key.

    Raises:
        ConfigurationError: If the key is not a valid secp256k1 private key
    """
    key = private_key.strip()
    if not key.startswith("0x"):
        key = "0x" + key
    try:
        return Account.from_key(key)
    except ValueError:
        # The exception text may echo the key
        raise ConfigurationError(
            "PRIVATE_KEY is not a valid private key",
            hint="Expected 32 bytes as hex, with or without the 0x prefix.",
        ) from None


def derive_account(mnemonic: str, index: int = 0) -> LocalAccount:
    """
    Derive an account from a BIP-39 mnemonic.

    Args:
        mnemonic: 12 or 24 word English phrase
        index: Account index in ``m/44'/60'/0'/0/<index>``

    Returns:
        The derived account

    Raises:
        ConfigurationError: If the phrase has the wrong length or fails its checksum
    """
    phrase = " ".join(mnemonic.split())
    word_count = len(phrase.split(" ")) if phrase else 0
    if word_count not in MNEMONIC_WORD_COUNTS:
        raise ConfigurationError(f"Invalid mnemonic: expected 12 or 24 words, got {word_count}")

    path = derivation_path(index)
    try:
        account = Account.from_mnemonic(phrase, account_path=path)
    except (EthValidationError, ValueError):
        # The library's message repeats the phrase
        raise ConfigurationError(
            "Failed to derive key from mnemonic: not a valid BIP-39 phrase",
            hint="Check the words and their order.",
        ) from None
    logger.info(f"Derived account {account.address} ({path})")
    return account


def generate_mnemonic(num_words: int = 24) -> Tuple[str, LocalAccount]:
    """
    Generate a new mnemonic phrase.

    Returns:
        (phrase, account at index 0)
    """
    if num_words not in MNEMONIC_WORD_COUNTS:
        raise ConfigurationError(f"Mnemonic length must be 12 or 24 words, got {num_words}")
    account, phrase = Account.create_with_mnemonic(num_words=num_words, account_path=derivation_path(0))
    return phrase, account


def load_signing_account(config: SignConfig) -> LocalAccount:
    """
    Load the signing account for the sign phase.

    A raw private key wins; otherwise the account is derived from the
    mnemonic at ``config.account_index``.

    Raises:
        ConfigurationError: If neither PRIVATE_KEY nor MNEMONIC is configured
    """
    if config.private_key:
        if config.mnemonic:
            logger.warning("Both PRIVATE_KEY and MNEMONIC are set; using PRIVATE_KEY")
        return account_from_private_key(config.private_key)
    if config.mnemonic:
        return derive_account(config.mnemonic, config.account_index)
    raise ConfigurationError(
        "PRIVATE_KEY not set",
        hint="Set PRIVATE_KEY, or set MNEMONIC and pass --mnemonic-index.",
    )


def private_key_hex(account: LocalAccount) -> str:
    """Hex private key of an account, 0x-prefixed."""
    key: Optional[bytes] = account.key
    return "0x" + bytes(key).hex()
