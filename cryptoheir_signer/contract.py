"""
CryptoHeir contract interface: callable functions, call-data encoding,
deployment artifact loading and revert reason decoding.
"""
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple, Union

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector
from web3 import Web3

from .exceptions import InvalidParameters, MissingArtifact
from .utils import parse_ether

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Error(string) selector used by require() reverts
ERROR_STRING_SELECTOR = "0x08c379a0"


@dataclass(frozen=True)
class FunctionSpec:
    """A CryptoHeir function that may be called through the offline signer."""
    name: str
    inputs: Tuple[Tuple[str, str], ...]
    payable: bool = False

    @property
    def types(self) -> List[str]:
        return [abi_type for _, abi_type in self.inputs]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.types)})"

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    def encode(self, params: Mapping[str, str]) -> str:
        """
        ABI-encode a call to this function.

        Args:
            params: Validated parameters keyed by input name

        Returns:
            0x-prefixed call data
        """
        args = []
        for param_name, abi_type in self.inputs:
            raw = params[param_name]
            if abi_type == "address":
                args.append(Web3.to_checksum_address(raw))
            else:
                args.append(int(raw))
        return Web3.to_hex(self.selector + encode(self.types, args))


CALLABLE_FUNCTIONS: Dict[str, FunctionSpec] = {
    "deposit": FunctionSpec(
        "deposit",
        (("token", "address"), ("beneficiary", "address"), ("amount", "uint256"), ("deadline", "uint256")),
        payable=True,
    ),
    "claim": FunctionSpec("claim", (("inheritanceId", "uint256"),)),
    "reclaim": FunctionSpec("reclaim", (("inheritanceId", "uint256"),)),
    "extendDeadline": FunctionSpec(
        "extendDeadline", (("inheritanceId", "uint256"), ("deadline", "uint256"))
    ),
    "transferFeeCollector": FunctionSpec("transferFeeCollector", (("newFeeCollector", "address"),)),
    "acceptFeeCollector": FunctionSpec("acceptFeeCollector", ()),
}

# Flag names shown in validation messages
PARAM_FLAGS = {
    "token": "--token",
    "beneficiary": "--beneficiary",
    "amount": "--amount",
    "deadline": "--deadline",
    "value": "--value",
    "inheritanceId": "--inheritance-id",
    "newFeeCollector": "--new-fee-collector",
}


def get_function(function_name: Optional[str]) -> FunctionSpec:
    """
    Look up a callable function by name.

    Raises:
        InvalidParameters: If the name is not in the allow-list
    """
    function = CALLABLE_FUNCTIONS.get(function_name or "")
    if function is None:
        raise InvalidParameters(
            f"Invalid function name: {function_name}",
            hint=f"Valid functions: {', '.join(CALLABLE_FUNCTIONS)}",
        )
    return function


def is_native_token(token: Optional[str]) -> bool:
    return token is None or token.lower() == ZERO_ADDRESS


def _require(params: Dict[str, str], function_name: str, *names: str) -> None:
    missing = [name for name in names if params.get(name) in (None, "")]
    if missing:
        flags = " and ".join(PARAM_FLAGS[name] for name in missing)
        raise InvalidParameters(f"{function_name} requires {flags}")


def _check_address(params: Dict[str, str], name: str) -> None:
    if not Web3.is_address(params[name]):
        raise InvalidParameters(f"{PARAM_FLAGS[name]} is not a valid address: {params[name]}")


def _check_uint(params: Dict[str, str], name: str) -> None:
    raw = params[name]
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise InvalidParameters(f"{PARAM_FLAGS[name]} must be an integer, got {raw!r}")
    if value < 0 or value >= 2 ** 256:
        raise InvalidParameters(f"{PARAM_FLAGS[name]} is out of range: {raw}")


def validate_call_params(function_name: str, params: Mapping[str, Optional[str]]) -> Dict[str, str]:
    """
    Check and normalize the parameters of a function call.

    Runs before any network access. For ``deposit`` the token defaults to the
    zero address (native token, "address(0)" is accepted as well); a native
    deposit needs ``value`` and defaults ``amount`` to "0", an ERC-20 deposit
    needs ``amount`` and must not carry ``value``.

    Args:
        function_name: One of the callable function names
        params: Raw parameters, keyed by name; None values are ignored

    Returns:
        The normalized parameters, as strings

    Raises:
        InvalidParameters: If a parameter is missing, malformed or conflicting
    """
    function = get_function(function_name)
    clean = {key: str(value).strip() for key, value in params.items() if value is not None}

    if function.name == "deposit":
        _require(clean, function.name, "beneficiary", "deadline")

        token = clean.get("token") or ZERO_ADDRESS
        if token.lower() == "address(0)":
            token = ZERO_ADDRESS
        clean["token"] = token
        _check_address(clean, "token")

        if is_native_token(token):
            if not clean.get("value"):
                raise InvalidParameters("Native token deposit requires --value")
            try:
                parse_ether(clean["value"])
            except ValueError as e:
                raise InvalidParameters(f"--value is invalid: {e}")
            # Ignored by the contract for native deposits
            clean.setdefault("amount", "0")
        else:
            if not clean.get("amount"):
                raise InvalidParameters(
                    "ERC20 token deposit requires --amount",
                    hint="Provide amount in smallest unit (e.g., for USDC with 6 decimals, 1 USDC = 1000000)",
                )
            if clean.get("value"):
                raise InvalidParameters("Do not use --value for ERC20 deposits (use --amount instead)")
    elif function.name in ("claim", "reclaim"):
        _require(clean, function.name, "inheritanceId")
    elif function.name == "extendDeadline":
        _require(clean, function.name, "inheritanceId", "deadline")
    elif function.name == "transferFeeCollector":
        _require(clean, function.name, "newFeeCollector")

    for param_name, abi_type in function.inputs:
        if abi_type == "address":
            _check_address(clean, param_name)
        else:
            _check_uint(clean, param_name)

    allowed = {name for name, _ in function.inputs}
    if function.payable:
        allowed.add("value")
    unexpected = sorted(set(clean) - allowed)
    if unexpected:
        logger.warning(f"Ignoring parameters not used by {function.name}: {', '.join(unexpected)}")
        clean = {key: value for key, value in clean.items() if key in allowed}

    return clean


def encode_call(function_name: str, params: Mapping[str, str]) -> str:
    """Encode call data for a validated function call."""
    return get_function(function_name).encode(params)


@dataclass(frozen=True)
class ContractArtifact:
    """Compiled contract, as produced by ``forge build``."""
    bytecode: str

    @property
    def bytecode_size(self) -> int:
        return (len(self.bytecode) - 2) // 2


def load_artifact(path: Union[str, Path]) -> ContractArtifact:
    """
    Load the CryptoHeir build artifact.

    Both Foundry (``bytecode.object``) and Hardhat (``bytecode`` string)
    layouts are accepted.

    Raises:
        MissingArtifact: If the file is absent, unreadable or has no bytecode
    """
    path = Path(path)
    hint = "Please build the contract first: cd foundry && forge build"
    if not path.exists():
        raise MissingArtifact(f"Contract artifact not found at: {path}", hint=hint)

    try:
        artifact = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise MissingArtifact(f"Contract artifact is not valid JSON: {e}", hint=hint) from e

    bytecode = artifact.get("bytecode")
    if isinstance(bytecode, dict):
        bytecode = bytecode.get("object")
    if not isinstance(bytecode, str) or bytecode in ("", "0x"):
        raise MissingArtifact(f"Invalid bytecode in contract artifact: {path}", hint=hint)
    if not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode

    return ContractArtifact(bytecode=bytecode)


# Custom error selectors of CryptoHeir and of the EIP-6093 ERC-20 errors
ERROR_SIGNATURES = {
    "0xfb8f41b2": "InvalidBeneficiary",
    "0x4a8bc1e2": "InvalidDeadline",
    "0x356680b7": "InsufficientAmount",
    "0x82b42900": "InvalidTokenTransfer",
    "0x0686117c": "InheritanceNotFound",
    "0xd5e3c468": "AlreadyClaimed",
    "0xc2237061": "DeadlineNotReached",
    "0x3087e2e7": "DeadlineAlreadyPassed",
    "0xa295ac11": "OnlyDepositor",
    "0x85d1f726": "OnlyBeneficiary",
    "0x64283d7b": "OnlyFeeCollector",
    "0x7a34e7e0": "InvalidFeeCollector",
    "0x6a76d5b2": "NoPendingTransfer",
    "0xe602df05": "ERC20InvalidApprover",
    "0x94280d62": "ERC20InvalidSpender",
    "0x13be252b": "ERC20InsufficientAllowance",
    "0xe450d38c": "ERC20InsufficientBalance",
    "0xec442f05": "ERC20InvalidSender",
    "0x96c6fd1e": "ERC20InvalidReceiver",
}

ERROR_MESSAGES = {
    "InvalidBeneficiary": "Invalid beneficiary address. It must be a valid address different from the depositor.",
    "InvalidDeadline": "Invalid deadline. The deadline must be set in the future.",
    "InsufficientAmount": "Amount must be greater than zero.",
    "InvalidTokenTransfer": "Cannot send native tokens when depositing ERC20 tokens.",
    "InheritanceNotFound": "Inheritance not found. It may not exist or has already been claimed.",
    "AlreadyClaimed": "This inheritance has already been claimed and is no longer available.",
    "DeadlineNotReached": "Cannot claim yet. The deadline has not been reached.",
    "DeadlineAlreadyPassed": "Cannot reclaim. The deadline has already passed and the beneficiary can now claim.",
    "OnlyDepositor": "Only the original depositor can perform this action.",
    "OnlyBeneficiary": "Only the designated beneficiary can perform this action.",
    "OnlyFeeCollector": "Only the fee collector can perform this action.",
    "InvalidFeeCollector": "Invalid fee collector address. The address cannot be zero.",
    "NoPendingTransfer": "No pending fee collector transfer exists.",
    "ERC20InvalidApprover": "Invalid approver address.",
    "ERC20InvalidSpender": "Invalid spender address provided for token approval.",
    "ERC20InsufficientAllowance": "Insufficient token allowance. Approve the contract to spend your tokens first.",
    "ERC20InsufficientBalance": "Insufficient token balance to complete this transaction.",
    "ERC20InvalidSender": "Invalid sender address for token transfer.",
    "ERC20InvalidReceiver": "Invalid receiver address for token transfer.",
}

_SELECTOR_RE = re.compile(r"0x[0-9a-fA-F]{8}")


def decode_revert(data: Optional[str], message: Optional[str] = None) -> Optional[Tuple[str, str]]:
    """
    Translate revert data into an (error name, readable message) pair.

    Args:
        data: Hex revert data returned by the node, if any
        message: Error text to search for a selector when ``data`` is absent

    Returns:
        (name, message) for a recognised revert, otherwise None
    """
    if isinstance(data, str) and data.startswith("0x") and len(data) >= 10:
        selector = data[:10].lower()
        if selector == ERROR_STRING_SELECTOR:
            try:
                (reason,) = decode(["string"], bytes.fromhex(data[10:]))
            except (DecodingError, ValueError):
                return None
            return "Error", reason
        name = ERROR_SIGNATURES.get(selector)
        if name:
            return name, ERROR_MESSAGES[name]

    if message:
        for match in _SELECTOR_RE.findall(message):
            name = ERROR_SIGNATURES.get(match.lower())
            if name:
                return name, ERROR_MESSAGES[name]
    return None
