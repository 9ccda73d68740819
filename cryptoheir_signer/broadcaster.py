"""
Broadcaster - submits signed transactions and records their receipts (online phase).
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound, Web3Exception

from .config import DEFAULT_POLL_INTERVAL, DEFAULT_RECEIPT_TIMEOUT, BroadcastConfig, NetworkConfig, make_web3
from .exceptions import (
    BroadcastError, ChainIdMismatch, InsufficientFunds, MalformedDescriptor, MissingApiKey,
    NoRpcConfiguration, NonceExpired, OutputFileError, ReceiptNotSaved, ReplacementUnderpriced, RpcError
)
from .models import NetworkInfo, Receipt, SignedDescriptor
from .utils import to_hex_str, utc_now_iso

logger = logging.getLogger(__name__)

CONFIRMED = "confirmed"
ALREADY_BROADCAST = "already_broadcast"
PENDING = "pending"


@dataclass
class BroadcastResult:
    """Outcome of a broadcast attempt."""
    status: str
    tx_hash: str
    receipt: Optional[Receipt] = None
    # "success"/"failed" once mined, None while pending
    receipt_status: Optional[str] = None
    block_number: Optional[int] = None
    contract_address: Optional[str] = None
    explorer_url: Optional[str] = None
    receipt_path: Optional[Path] = None

    @property
    def is_pending(self) -> bool:
        return self.block_number is None


def receipt_path_for(signed_path: Union[str, Path]) -> Path:
    """Receipt file for a signed file: ``signed-tx.json`` -> ``signed-tx-receipt.json``."""
    path = Path(signed_path)
    if path.suffix == ".json":
        return path.with_name(f"{path.stem}-receipt.json")
    return path.with_name(f"{path.name}-receipt.json")


def resolve_broadcast_rpc(descriptor: SignedDescriptor, config: BroadcastConfig) -> str:
    """
    Choose the RPC endpoint for a signed transaction.

    The network embedded in the descriptor comes first. The RPC_URL override
    is only used when no network is embedded, or when the embedded network
    needs an API key that is not configured.

    Raises:
        NoRpcConfiguration: If neither source yields an endpoint
        UnsupportedNetwork: If the embedded network name is unknown
        MissingApiKey: If the embedded network needs INFURA_API_KEY and no override is set
    """
    network_name = None
    if descriptor.metadata is not None:
        network_name = descriptor.metadata.network.name

    if network_name:
        try:
            return NetworkConfig.get_rpc_url(network_name, api_key=config.infura_api_key)
        except MissingApiKey:
            if not config.rpc_url:
                raise
            logger.warning(f"INFURA_API_KEY not set for {network_name}, using RPC_URL instead")
            return config.rpc_url

    if config.rpc_url:
        return config.rpc_url
    raise NoRpcConfiguration(
        "No RPC configuration found",
        hint=(
            "The signed transaction file does not contain network information, "
            "and RPC_URL is not set. Please set RPC_URL for a custom provider."
        ),
    )


def _classify_send_error(error: Exception) -> BroadcastError:
    message = str(error)
    lowered = message.lower()
    if "nonce too low" in lowered or "nonce has already been used" in lowered:
        return NonceExpired(
            f"Nonce expired: {message}",
            hint="The nonce has already been used. This transaction may have already been broadcast.",
        )
    if "replacement transaction underpriced" in lowered or "replacement fee too low" in lowered:
        return ReplacementUnderpriced(
            f"Replacement transaction underpriced: {message}",
            hint="A transaction with the same nonce exists with higher gas price.",
        )
    if "insufficient funds" in lowered:
        return InsufficientFunds(
            f"Insufficient funds: {message}",
            hint="Insufficient funds to cover gas costs.",
        )
    return BroadcastError(f"Error broadcasting transaction: {message}")


class Broadcaster:
    """
    Submits a signed transaction and waits for it to be mined.

    Re-running a broadcast is safe: a transaction the node already knows is
    reported, never resubmitted.
    """

    def __init__(
        self,
        w3: Web3,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the Broadcaster

        Args:
            w3: Connected Web3 instance
            receipt_timeout: Seconds to wait for the receipt before reporting pending
            poll_interval: Seconds between receipt polls
            logger: Optional logger instance
        """
        self.w3 = w3
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def for_descriptor(
        cls,
        descriptor: SignedDescriptor,
        config: BroadcastConfig,
        logger: Optional[logging.Logger] = None,
    ) -> "Broadcaster":
        """Create a broadcaster connected to the network the descriptor was signed for."""
        rpc_url = resolve_broadcast_rpc(descriptor, config)
        w3 = make_web3(rpc_url, timeout=config.request_timeout)
        return cls(
            w3,
            receipt_timeout=config.receipt_timeout,
            poll_interval=config.poll_interval,
            logger=logger,
        )

    def _rpc(self, action: str, fn, *args: Any) -> Any:
        try:
            return fn(*args)
        except TransactionNotFound:
            raise
        except (Web3Exception, ValueError, OSError) as e:
            self.logger.error(f"RPC call failed while {action}: {e}")
            raise RpcError(f"Failed while {action}: {e}") from e

    def _network_info(self, descriptor: SignedDescriptor, chain_id: int) -> NetworkInfo:
        name = None
        if descriptor.metadata is not None:
            name = descriptor.metadata.network.name
        return NetworkInfo(name=name or NetworkConfig.network_name_for_chain(chain_id), chain_id=chain_id)

    def check_chain_id(self, descriptor: SignedDescriptor) -> int:
        """
        Compare the node's chain ID with the one the transaction was signed for.

        Returns:
            The node's chain ID

        Raises:
            ChainIdMismatch: If they differ
        """
        chain_id = int(self._rpc("fetching chain ID", lambda: self.w3.eth.chain_id))
        expected = descriptor.chain_id
        if expected is None and descriptor.metadata is not None:
            expected = descriptor.metadata.network.chain_id
        if expected is None:
            self.logger.warning("Signed transaction has no chain ID, skipping chain check")
        elif int(expected) != chain_id:
            raise ChainIdMismatch(int(expected), chain_id)
        self.logger.info(f"Connected to chain ID {chain_id}")
        return chain_id

    def find_existing(self, descriptor: SignedDescriptor, chain_id: int) -> Optional[BroadcastResult]:
        """
        Look the transaction up by hash.

        Returns:
            An ``already_broadcast`` result if the node knows the transaction, else None
        """
        try:
            existing = self._rpc("checking transaction status", self.w3.eth.get_transaction, descriptor.tx_hash)
        except TransactionNotFound:
            self.logger.debug(f"Transaction {descriptor.tx_hash} not known to the node")
            return None
        if existing is None:
            return None

        self.logger.warning(f"Transaction {descriptor.tx_hash} has already been broadcast")
        result = BroadcastResult(
            status=ALREADY_BROADCAST,
            tx_hash=descriptor.tx_hash,
            explorer_url=NetworkConfig.tx_url(chain_id, descriptor.tx_hash),
        )
        block_number = existing.get("blockNumber")
        if block_number is None:
            return result

        try:
            receipt = self._rpc(
                "fetching transaction receipt", self.w3.eth.get_transaction_receipt, descriptor.tx_hash
            )
        except TransactionNotFound:
            return result
        result.block_number = int(receipt["blockNumber"])
        result.receipt_status = "success" if receipt["status"] == 1 else "failed"
        result.contract_address = receipt.get("contractAddress")
        return result

    def submit(self, descriptor: SignedDescriptor) -> str:
        """
        Send the raw signed payload.

        Returns:
            Transaction hash reported by the node

        Raises:
            NonceExpired: If the nonce has already been used
            ReplacementUnderpriced: If a pending transaction with the same nonce pays more
            InsufficientFunds: If the sender cannot cover gas and value
            BroadcastError: For any other rejection
            RpcError: If the node cannot be reached
        """
        self.logger.info(f"Broadcasting transaction {descriptor.tx_hash}")
        try:
            sent = self.w3.eth.send_raw_transaction(descriptor.signed_transaction)
        except OSError as e:
            raise RpcError(f"Failed while broadcasting transaction: {e}") from e
        except (Web3Exception, ValueError) as e:
            raise _classify_send_error(e) from e

        tx_hash = to_hex_str(sent)
        if tx_hash.lower() != descriptor.tx_hash.lower():
            self.logger.warning(f"Node returned hash {tx_hash}, expected {descriptor.tx_hash}")
        return tx_hash

    def wait_for_receipt(self, tx_hash: str) -> Optional[Any]:
        """
        Wait for the transaction to be mined.

        Returns:
            The node's receipt, or None if the timeout passed first
        """
        self.logger.info(f"Waiting up to {self.receipt_timeout}s for confirmation of {tx_hash}")
        try:
            return self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout, poll_latency=self.poll_interval
            )
        except TimeExhausted:
            self.logger.warning(f"Transaction {tx_hash} not mined after {self.receipt_timeout}s")
            return None
        except (Web3Exception, ValueError, OSError) as e:
            raise RpcError(f"Failed while waiting for receipt: {e}") from e

    def build_receipt(self, descriptor: SignedDescriptor, node_receipt: Any, chain_id: int) -> Receipt:
        """Turn the node's receipt into the persisted Receipt record."""
        contract_address = node_receipt.get("contractAddress")
        if (
            contract_address
            and descriptor.predicted_contract_address
            and contract_address.lower() != descriptor.predicted_contract_address.lower()
        ):
            self.logger.warning(
                f"Deployed address {contract_address} differs from predicted "
                f"{descriptor.predicted_contract_address}"
            )
        return Receipt(
            mode=descriptor.mode,
            function_name=descriptor.function_name,
            transaction_hash=to_hex_str(node_receipt["transactionHash"]),
            from_address=descriptor.from_address,
            to=descriptor.to,
            contract_address=contract_address,
            block_number=int(node_receipt["blockNumber"]),
            gas_used=int(node_receipt["gasUsed"]),
            status="success" if node_receipt["status"] == 1 else "failed",
            timestamp=utc_now_iso(),
            network=self._network_info(descriptor, chain_id),
            value=descriptor.value if descriptor.value and descriptor.value != "0" else None,
        )

    def broadcast(self, descriptor: SignedDescriptor) -> BroadcastResult:
        """
        Broadcast a signed transaction.

        Args:
            descriptor: Output of the sign phase

        Returns:
            BroadcastResult with status ``confirmed``, ``already_broadcast`` or ``pending``

        Raises:
            MalformedDescriptor: If the signed payload is missing
            ChainIdMismatch: If the node is on a different chain
            BroadcastError: If the node refuses the transaction
            RpcError: If the node cannot be reached
        """
        if not descriptor.signed_transaction:
            raise MalformedDescriptor("Invalid transaction file format (missing signedTransaction)")

        chain_id = self.check_chain_id(descriptor)

        existing = self.find_existing(descriptor, chain_id)
        if existing is not None:
            return existing

        tx_hash = self.submit(descriptor)
        explorer_url = NetworkConfig.tx_url(chain_id, tx_hash)

        node_receipt = self.wait_for_receipt(tx_hash)
        if node_receipt is None:
            return BroadcastResult(status=PENDING, tx_hash=tx_hash, explorer_url=explorer_url)

        receipt = self.build_receipt(descriptor, node_receipt, chain_id)
        self.logger.info(f"Transaction {tx_hash} mined in block {receipt.block_number}: {receipt.status}")
        return BroadcastResult(
            status=CONFIRMED,
            tx_hash=tx_hash,
            receipt=receipt,
            receipt_status=receipt.status,
            block_number=receipt.block_number,
            contract_address=receipt.contract_address,
            explorer_url=explorer_url,
        )


def broadcast_file(
    signed_path: Union[str, Path],
    config: BroadcastConfig,
    broadcaster: Optional[Broadcaster] = None,
) -> BroadcastResult:
    """
    Broadcast the signed transaction in ``signed_path``.

    A confirmed transaction gets its receipt written next to the input as
    ``<name>-receipt.json``; already-broadcast and pending results write nothing.
    """
    descriptor = SignedDescriptor.load(signed_path)
    if broadcaster is None:
        broadcaster = Broadcaster.for_descriptor(descriptor, config)
    result = broadcaster.broadcast(descriptor)
    if result.receipt is not None:
        try:
            result.receipt_path = result.receipt.write(receipt_path_for(signed_path))
        except OutputFileError as e:
            logger.error(f"Transaction {result.tx_hash} was mined but its receipt could not be saved: {e}")
            raise ReceiptNotSaved(result.tx_hash, result.block_number, e, explorer_url=result.explorer_url) from e
        logger.info(f"Transaction receipt saved to {result.receipt_path}")
    return result
