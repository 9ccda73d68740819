"""
CryptoHeir offline signer: prepare, sign and broadcast transactions with the
signing key kept on an air-gapped machine.
"""
from .version import __version__
from .builder import FeeData, GasOverrides, TransactionBuilder
from .broadcaster import BroadcastResult, Broadcaster, broadcast_file, receipt_path_for, resolve_broadcast_rpc
from .config import BroadcastConfig, NetworkConfig, PrepareConfig, SignConfig
from .exceptions import (
    BroadcastError, ChainIdMismatch, ConfigurationError, CryptoHeirError, GasEstimationError,
    InsufficientFunds, IntegrityError, InvalidParameters, MalformedDescriptor, MissingApiKey,
    MissingArtifact, NoContractAtAddress, NonceExpired, NoRpcConfiguration, OutputFileError,
    ReceiptNotSaved, ReplacementUnderpriced,
    RpcError, SenderMismatch, SigningCancelled, UnsupportedNetwork, ValidationError, VerificationError
)
from .keys import derive_account, generate_mnemonic, load_signing_account
from .models import Receipt, SignedDescriptor, UnsignedDescriptor
from .signer import render_summary, sign_descriptor, sign_file
from .utils import predict_contract_address

__all__ = [
    "__version__",
    "TransactionBuilder",
    "GasOverrides",
    "FeeData",
    "Broadcaster",
    "BroadcastResult",
    "broadcast_file",
    "receipt_path_for",
    "resolve_broadcast_rpc",
    "NetworkConfig",
    "PrepareConfig",
    "SignConfig",
    "BroadcastConfig",
    "load_signing_account",
    "derive_account",
    "generate_mnemonic",
    "UnsignedDescriptor",
    "SignedDescriptor",
    "Receipt",
    "render_summary",
    "sign_descriptor",
    "sign_file",
    "predict_contract_address",
    "CryptoHeirError",
    "ConfigurationError",
    "NoRpcConfiguration",
    "UnsupportedNetwork",
    "MissingApiKey",
    "MissingArtifact",
    "OutputFileError",
    "ReceiptNotSaved",
    "ValidationError",
    "InvalidParameters",
    "MalformedDescriptor",
    "VerificationError",
    "NoContractAtAddress",
    "IntegrityError",
    "SenderMismatch",
    "ChainIdMismatch",
    "RpcError",
    "GasEstimationError",
    "BroadcastError",
    "NonceExpired",
    "ReplacementUnderpriced",
    "InsufficientFunds",
    "SigningCancelled",
]
