"""
TransactionBuilder - prepares unsigned CryptoHeir transactions (online phase).
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception

from .config import DEFAULT_ARTIFACT_PATH, NetworkConfig, PrepareConfig, make_web3
from .contract import (
    decode_revert, encode_call, get_function, is_native_token,
    load_artifact, validate_call_params
)
from .exceptions import (
    ChainIdMismatch, GasEstimationError, InvalidParameters, NoContractAtAddress, RpcError
)
from .models import DescriptorMetadata, NetworkInfo, TransactionFields, UnsignedDescriptor
from .utils import format_ether, parse_ether, parse_gwei, utc_now_iso

T = TypeVar("T")


@dataclass(frozen=True)
class GasOverrides:
    """Operator-supplied gas settings; any field set here wins over the node's values."""
    gas_limit: Optional[int] = None
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    @classmethod
    def from_gwei(
        cls,
        gas_limit: Optional[str] = None,
        gas_price: Optional[str] = None,
        max_fee: Optional[str] = None,
        priority_fee: Optional[str] = None,
    ) -> "GasOverrides":
        """
        Build overrides from CLI strings (fees in gwei).

        Raises:
            InvalidParameters: If a value is malformed or the combination conflicts
        """
        try:
            overrides = cls(
                gas_limit=int(gas_limit) if gas_limit is not None else None,
                gas_price=parse_gwei(gas_price, "--gas-price") if gas_price is not None else None,
                max_fee_per_gas=parse_gwei(max_fee, "--max-fee") if max_fee is not None else None,
                max_priority_fee_per_gas=(
                    parse_gwei(priority_fee, "--priority-fee") if priority_fee is not None else None
                ),
            )
        except ValueError as e:
            raise InvalidParameters(f"Invalid gas override: {e}")
        overrides.validate()
        return overrides

    def validate(self) -> None:
        if self.gas_limit is not None and self.gas_limit <= 0:
            raise InvalidParameters("--gas-limit must be a positive integer")
        fee_market = (self.max_fee_per_gas, self.max_priority_fee_per_gas)
        if self.gas_price is not None and any(v is not None for v in fee_market):
            raise InvalidParameters("Use either --gas-price (legacy) or --max-fee/--priority-fee (EIP-1559), not both")
        if (self.max_fee_per_gas is None) != (self.max_priority_fee_per_gas is None):
            raise InvalidParameters("--max-fee and --priority-fee must be given together")
        if self.max_fee_per_gas is not None and self.max_priority_fee_per_gas > self.max_fee_per_gas:
            raise InvalidParameters("--priority-fee cannot exceed --max-fee")


@dataclass(frozen=True)
class FeeData:
    """Fee settings chosen for a transaction."""
    type: int
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    @property
    def fee_per_gas(self) -> int:
        return self.max_fee_per_gas if self.type == 2 else self.gas_price


class TransactionBuilder:
    """
    Builds unsigned transaction descriptors for the CryptoHeir contract.

    The builder only reads chain state (nonce, balance, fees, bytecode, gas
    estimates); nothing is signed or submitted. Every RPC failure aborts the
    preparation, there are no retries.
    """

    # Priority fee used when the node supplies a base fee but no override is set
    DEFAULT_PRIORITY_FEE_WEI = 1_500_000_000
    # Estimates get a 20% safety buffer
    GAS_BUFFER_DIVISOR = 5

    def __init__(
        self,
        w3: Web3,
        network_name: Optional[str] = None,
        artifact_path: str = DEFAULT_ARTIFACT_PATH,
        default_contract_address: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the TransactionBuilder

        Args:
            w3: Connected Web3 instance
            network_name: Network name to record in the descriptor metadata
                (looked up from the chain ID when omitted)
            artifact_path: Path to the compiled CryptoHeir artifact (deployments)
            default_contract_address: Contract used when a call names none
            logger: Optional logger instance
        """
        self.w3 = w3
        self.network_name = NetworkConfig.canonical_name(network_name) if network_name else None
        self.artifact_path = artifact_path
        self.default_contract_address = default_contract_address
        self.logger = logger or logging.getLogger(__name__)
        self._chain_id: Optional[int] = None

    @classmethod
    def from_config(
        cls,
        config: PrepareConfig,
        network: Optional[str] = None,
        artifact_path: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "TransactionBuilder":
        """
        Create a builder from the prepare-phase configuration.

        The RPC override (RPC_URL) takes precedence; otherwise the endpoint is
        derived from the network name and the provider API key.

        Raises:
            NoRpcConfiguration: If neither an override nor a network is available
            UnsupportedNetwork: If the network name is unknown
            MissingApiKey: If the endpoint needs INFURA_API_KEY and it is unset
        """
        rpc_url = NetworkConfig.get_rpc_url(network, override=config.rpc_url, api_key=config.infura_api_key)
        w3 = make_web3(rpc_url, timeout=config.request_timeout)
        return cls(
            w3,
            network_name=network,
            artifact_path=artifact_path or config.artifact_path,
            default_contract_address=config.contract_address,
            logger=logger,
        )

    def _rpc(self, action: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return fn(*args)
        except (Web3Exception, ValueError, OSError) as e:
            self.logger.error(f"RPC call failed while {action}: {e}")
            raise RpcError(f"Failed while {action}: {e}") from e

    @property
    def chain_id(self) -> int:
        """Chain ID reported by the connected node."""
        if self._chain_id is None:
            self._chain_id = int(self._rpc("fetching chain ID", lambda: self.w3.eth.chain_id))
            self.logger.debug(f"Connected to chain ID {self._chain_id}")
        return self._chain_id

    def network_info(self) -> NetworkInfo:
        """
        Describe the connected network for the descriptor metadata.

        Raises:
            ChainIdMismatch: If a named network's chain ID differs from the node's
        """
        chain_id = self.chain_id
        if self.network_name:
            expected = NetworkConfig.get_chain_id(self.network_name)
            if expected != chain_id:
                raise ChainIdMismatch(expected, chain_id)
            return NetworkInfo(name=self.network_name, chain_id=chain_id)
        return NetworkInfo(name=NetworkConfig.network_name_for_chain(chain_id), chain_id=chain_id)

    def fetch_fee_data(self, overrides: Optional[GasOverrides] = None) -> FeeData:
        """
        Choose the fee settings for a transaction.

        An explicit legacy gas price or EIP-1559 fee pair wins. Otherwise a
        chain that reports a base fee gets an EIP-1559 transaction with
        ``maxFee = 2 * baseFee + priorityFee``; a chain without one gets a
        legacy transaction at the node's gas price.

        Args:
            overrides: Operator gas settings

        Returns:
            The chosen FeeData
        """
        overrides = overrides or GasOverrides()
        if overrides.gas_price is not None:
            self.logger.info(f"Gas price (manual): {overrides.gas_price} wei")
            return FeeData(type=0, gas_price=overrides.gas_price)
        if overrides.max_fee_per_gas is not None:
            self.logger.info(
                f"Max fee per gas (manual): {overrides.max_fee_per_gas} wei, "
                f"priority fee: {overrides.max_priority_fee_per_gas} wei"
            )
            return FeeData(
                type=2,
                max_fee_per_gas=overrides.max_fee_per_gas,
                max_priority_fee_per_gas=overrides.max_priority_fee_per_gas,
            )

        block = self._rpc("fetching latest block", self.w3.eth.get_block, "latest")
        base_fee = block.get("baseFeePerGas") if block is not None else None
        if base_fee is not None:
            priority_fee = self.DEFAULT_PRIORITY_FEE_WEI
            max_fee = 2 * int(base_fee) + priority_fee
            self.logger.info(f"Base fee: {base_fee} wei, max fee per gas: {max_fee} wei")
            return FeeData(type=2, max_fee_per_gas=max_fee, max_priority_fee_per_gas=priority_fee)

        gas_price = int(self._rpc("fetching gas price", lambda: self.w3.eth.gas_price))
        self.logger.info(f"Chain has no base fee, using legacy gas price: {gas_price} wei")
        return FeeData(type=0, gas_price=gas_price)

    def verify_contract(self, address: str, role: str = "contract") -> int:
        """
        Check that an address holds bytecode.

        Returns:
            Size of the deployed bytecode in bytes

        Raises:
            NoContractAtAddress: If the address has no code
        """
        code = self._rpc(f"fetching code at {address}", self.w3.eth.get_code, Web3.to_checksum_address(address))
        if not code or len(code) == 0:
            raise NoContractAtAddress(address, role=role)
        self.logger.info(f"{role.capitalize()} verified at {address} (bytecode size: {len(code)} bytes)")
        return len(code)

    def estimate_gas(self, tx: Dict[str, Any]) -> int:
        """
        Estimate gas for a transaction and add a 20% buffer.

        Raises:
            GasEstimationError: If the node reports the call would revert
            RpcError: If the node cannot be reached
        """
        try:
            estimate = int(self.w3.eth.estimate_gas(tx))
        except ContractLogicError as e:
            decoded = decode_revert(getattr(e, "data", None), str(e))
            if decoded:
                name, message = decoded
                raise GasEstimationError(f"Transaction would revert: {name}", reason=message) from e
            raise GasEstimationError(f"Transaction would revert: {e}") from e
        except OSError as e:
            raise RpcError(f"Failed while estimating gas: {e}") from e
        except (Web3Exception, ValueError) as e:
            raise GasEstimationError(
                f"Gas estimation failed: {e}",
                hint="Use --gas-limit to set the gas limit manually.",
            ) from e

        gas_limit = estimate + estimate // self.GAS_BUFFER_DIVISOR
        self.logger.info(f"Estimated gas: {estimate} (with buffer: {gas_limit})")
        return gas_limit

    def _account_state(self, address: str):
        nonce = int(self._rpc("fetching account nonce", self.w3.eth.get_transaction_count, address, "pending"))
        balance = int(self._rpc("fetching account balance", self.w3.eth.get_balance, address))
        self.logger.info(f"Nonce for {address}: {nonce}, balance: {format_ether(balance)} ETH")
        return nonce, balance

    def _build(
        self,
        mode: str,
        function_name: str,
        params: Dict[str, str],
        signer_address: str,
        nonce: int,
        balance: int,
        fees: FeeData,
        data: str,
        to: Optional[str],
        value: Optional[int],
        overrides: GasOverrides,
        network: NetworkInfo,
    ) -> UnsignedDescriptor:
        if overrides.gas_limit is not None:
            gas_limit = overrides.gas_limit
            self.logger.info(f"Gas limit (manual): {gas_limit}")
        else:
            estimate_tx: Dict[str, Any] = {"from": signer_address, "data": data, "value": value or 0}
            if to:
                estimate_tx["to"] = to
            gas_limit = self.estimate_gas(estimate_tx)

        estimated_cost = gas_limit * fees.fee_per_gas
        if balance < estimated_cost + (value or 0):
            self.logger.warning(
                f"Account balance {format_ether(balance)} ETH is below the maximum cost "
                f"{format_ether(estimated_cost + (value or 0))} ETH"
            )

        transaction = TransactionFields(
            type=fees.type,
            from_address=signer_address,
            to=to,
            data=data,
            nonce=nonce,
            chain_id=network.chain_id,
            gas_limit=gas_limit,
            gas_price=fees.gas_price,
            max_fee_per_gas=fees.max_fee_per_gas,
            max_priority_fee_per_gas=fees.max_priority_fee_per_gas,
            value=value,
        )
        metadata = DescriptorMetadata(
            network=network,
            estimated_cost=format_ether(estimated_cost),
            timestamp=utc_now_iso(),
            prepared=True,
            signed=False,
        )
        return UnsignedDescriptor(
            mode=mode,
            function_name=function_name,
            params=params,
            transaction=transaction,
            metadata=metadata,
        )

    def prepare_deployment(
        self,
        signer_address: str,
        gas_overrides: Optional[GasOverrides] = None,
    ) -> UnsignedDescriptor:
        """
        Prepare an unsigned contract deployment.

        Args:
            signer_address: Address that will sign on the offline machine
            gas_overrides: Optional operator gas settings

        Returns:
            Unsigned descriptor with ``mode="deploy"``

        Raises:
            MissingArtifact: If the contract has not been compiled
            InvalidParameters: If the gas overrides conflict
            RpcError: If any chain query fails
        """
        overrides = gas_overrides or GasOverrides()
        overrides.validate()
        signer_address = Web3.to_checksum_address(signer_address)
        artifact = load_artifact(self.artifact_path)
        self.logger.info(f"Loaded contract bytecode ({artifact.bytecode_size} bytes)")

        network = self.network_info()
        nonce, balance = self._account_state(signer_address)
        fees = self.fetch_fee_data(overrides)

        return self._build(
            mode="deploy",
            function_name="deploy",
            params={},
            signer_address=signer_address,
            nonce=nonce,
            balance=balance,
            fees=fees,
            data=artifact.bytecode,
            to=None,
            value=None,
            overrides=overrides,
            network=network,
        )

    def prepare_call(
        self,
        signer_address: str,
        function_name: str,
        params: Mapping[str, Optional[str]],
        contract_address: Optional[str] = None,
        gas_overrides: Optional[GasOverrides] = None,
    ) -> UnsignedDescriptor:
        """
        Prepare an unsigned call to a CryptoHeir function.

        Parameters are validated before any network access. The contract (and,
        for ERC-20 deposits, the token) must have bytecode on chain, which
        catches address typos before gas is spent.

        Args:
            signer_address: Address that will sign on the offline machine
            function_name: One of deposit, claim, reclaim, extendDeadline,
                transferFeeCollector, acceptFeeCollector
            params: Function parameters keyed by name
            contract_address: CryptoHeir address (defaults to CONTRACT_ADDRESS)
            gas_overrides: Optional operator gas settings

        Returns:
            Unsigned descriptor with ``mode="call"``

        Raises:
            InvalidParameters: If the function or its parameters are invalid
            NoContractAtAddress: If the contract or token has no bytecode
            GasEstimationError: If the call would revert
            RpcError: If any chain query fails
        """
        function = get_function(function_name)
        clean = validate_call_params(function.name, params)
        overrides = gas_overrides or GasOverrides()
        overrides.validate()

        contract_address = contract_address or self.default_contract_address
        if not contract_address:
            raise InvalidParameters(
                "--contract <address> is required for function calls",
                hint="Either use --contract or set CONTRACT_ADDRESS.",
            )
        if not Web3.is_address(contract_address):
            raise InvalidParameters(f"--contract is not a valid address: {contract_address}")
        contract_address = Web3.to_checksum_address(contract_address)
        signer_address = Web3.to_checksum_address(signer_address)

        network = self.network_info()
        nonce, balance = self._account_state(signer_address)
        fees = self.fetch_fee_data(overrides)

        self.verify_contract(contract_address)
        value = None
        if function.name == "deposit":
            if is_native_token(clean["token"]):
                value = parse_ether(clean["value"])
            else:
                self.verify_contract(clean["token"], role="token contract")

        data = encode_call(function.name, clean)
        self.logger.debug(f"Encoded {function.signature}: {data[:10]}...")

        return self._build(
            mode="call",
            function_name=function.name,
            params=clean,
            signer_address=signer_address,
            nonce=nonce,
            balance=balance,
            fees=fees,
            data=data,
            to=contract_address,
            value=value,
            overrides=overrides,
            network=network,
        )
