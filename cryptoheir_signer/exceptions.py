"""
Exceptions for the CryptoHeir offline signer.

Every failure is terminal to the invocation that raised it; nothing here is
retried. The CLI prints ``message`` and ``hint`` and exits non-zero.
"""
from typing import Optional


class CryptoHeirError(Exception):
    """Base exception for all offline-signer errors."""

    def __init__(self, message: str, hint: Optional[str] = None):
        self.hint = hint
        super().__init__(message)


# Configuration

class ConfigurationError(CryptoHeirError):
    """Raised when a required setting (key, address, RPC) is missing or invalid."""
    pass


class NoRpcConfiguration(ConfigurationError):
    """Raised when neither an RPC override nor a resolvable network is available."""
    pass


class UnsupportedNetwork(ConfigurationError):
    """Raised when a network name is not in the supported network table."""
    pass


class MissingApiKey(ConfigurationError):
    """Raised when a network endpoint needs a provider API key that is not configured."""
    pass


class MissingArtifact(ConfigurationError):
    """Raised when the compiled contract artifact cannot be loaded."""
    pass


# Output files

class OutputFileError(ConfigurationError):
    """Raised when a result file cannot be written."""
    pass


class ReceiptNotSaved(OutputFileError):
    """Raised when a transaction was mined but its receipt file could not be written."""

    def __init__(self, tx_hash: str, block_number: int, error: OutputFileError, explorer_url: Optional[str] = None):
        self.tx_hash = tx_hash
        self.block_number = block_number
        self.explorer_url = explorer_url
        hint = "The transaction is on-chain. Do not broadcast it again."
        if explorer_url:
            hint += f" View it at {explorer_url}"
        super().__init__(
            f"Transaction {tx_hash} confirmed in block {block_number}, but the receipt was not saved: {error}",
            hint=hint,
        )


# Validation

class ValidationError(CryptoHeirError):
    """Raised for malformed input detected before any network call."""
    pass


class InvalidParameters(ValidationError):
    """Raised when function parameters are missing or conflicting."""
    pass


class MalformedDescriptor(ValidationError):
    """Raised when a transaction descriptor file is not in the expected shape."""
    pass


# Verification

class VerificationError(CryptoHeirError):
    """Raised when on-chain state does not match what the operator supplied."""
    pass


class NoContractAtAddress(VerificationError):
    """Raised when an address expected to hold a contract has no bytecode."""

    def __init__(self, address: str, role: str = "contract"):
        self.address = address
        self.role = role
        super().__init__(
            f"No {role} found at address {address}",
            hint="Verify the address is correct and the contract is deployed on this network.",
        )


# Integrity

class IntegrityError(CryptoHeirError):
    """Raised when a security-relevant cross-check fails."""
    pass


class SenderMismatch(IntegrityError):
    """Raised when the signing key does not belong to the transaction sender."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Wallet address mismatch: transaction is from {expected}, key belongs to {actual}",
            hint="The private key does not match the transaction sender.",
        )


class ChainIdMismatch(IntegrityError):
    """Raised when the connected chain differs from the one the transaction was signed for."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Chain ID mismatch: transaction signed for chain ID {expected}, connected to chain ID {actual}",
            hint="Please connect to the correct network.",
        )


# Network

class RpcError(CryptoHeirError):
    """Raised when an RPC request fails (timeout, unreachable endpoint, bad response)."""
    pass


class GasEstimationError(CryptoHeirError):
    """Raised when the node rejects gas estimation, usually because the call would revert."""

    def __init__(self, message: str, reason: Optional[str] = None, hint: Optional[str] = None):
        self.reason = reason
        super().__init__(message, hint=hint)


# Submission

class BroadcastError(CryptoHeirError):
    """Raised when the node refuses a signed transaction."""
    pass


class NonceExpired(BroadcastError):
    """Raised when the transaction nonce has already been used."""
    pass


class ReplacementUnderpriced(BroadcastError):
    """Raised when a pending transaction with the same nonce pays a higher fee."""
    pass


class InsufficientFunds(BroadcastError):
    """Raised when the sender cannot cover gas costs plus value."""
    pass


# Operator

class SigningCancelled(CryptoHeirError):
    """Raised when the operator declines a confirmation prompt."""
    pass
