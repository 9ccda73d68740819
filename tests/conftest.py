"""
Pytest fixtures for the CryptoHeir offline signer tests.
"""
import json
import time

import pytest
import rlp
from unittest.mock import MagicMock
from eth_account import Account
from eth_utils import keccak, to_canonical_address, to_checksum_address
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound
from web3.providers.rpc import HTTPProvider

from cryptoheir_signer.config import NetworkConfig

# Constants for testing
GWEI = 10 ** 9
TEST_PRIV_KEY = "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_ADDRESS = Account.from_key(TEST_PRIV_KEY).address
OTHER_PRIV_KEY = "0x" + "11" * 32
TEST_CONTRACT = "0x1234567890123456789012345678901234567890"
TEST_TOKEN = "0x2222222222222222222222222222222222222222"
TEST_BENEFICIARY = "0x3333333333333333333333333333333333333333"
SEPOLIA_CHAIN_ID = 11155111
# Standard BIP-39 test phrase
TEST_MNEMONIC = "test test test test test test test test test test test junk"
TEST_MNEMONIC_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
TEST_BYTECODE = "0x6080604052348015600e575f80fd5b50603e80601a5f395ff3fe60806040525f80fdfea164736f6c6343000818000a"


@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _patch_http_provider(monkeypatch):
    """
    Stub every Web3 HTTP call so no DNS / network traffic is triggered.
    Works for all tests because it is autouse.
    """
    def _dummy(self, method, params=None, _=None):
        if method == "eth_chainId":
            return {"jsonrpc": "2.0", "id": 1, "result": hex(SEPOLIA_CHAIN_ID)}
        return {"jsonrpc": "2.0", "id": 1, "result": "0x0"}

    monkeypatch.setattr(HTTPProvider, "make_request", _dummy, raising=True)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the developer's shell and .env settings out of the tests."""
    for name in (
        "SIGNER_ADDRESS", "RPC_URL", "INFURA_API_KEY", "CONTRACT_ADDRESS", "CRYPTOHEIR_ARTIFACT",
        "PRIVATE_KEY", "MNEMONIC", "RECEIPT_TIMEOUT", "RECEIPT_POLL_INTERVAL", "RPC_TIMEOUT",
        "SEPOLIA_RPC_URL", "MAINNET_RPC_URL", "LOCALHOST_RPC_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
    NetworkConfig._networks_cache = None


def _int(field: bytes) -> int:
    return int.from_bytes(field, "big")


def decode_raw(raw) -> dict:
    """Pull sender, nonce and recipient out of a signed payload, the way a node would."""
    raw = bytes(HexBytes(raw))
    if raw[0] == 2:
        fields = rlp.decode(raw[1:])
        nonce, to = _int(fields[1]), fields[5]
    else:
        fields = rlp.decode(raw)
        nonce, to = _int(fields[0]), fields[3]
    return {
        "hash": Web3.to_hex(keccak(raw)),
        "from": Account.recover_transaction(raw),
        "nonce": nonce,
        "to": to_checksum_address(to) if to else None,
        "type": 2 if raw[0] == 2 else 0,
    }


class FakeChain:
    """In-memory node behind a MagicMock ``w3.eth``."""

    def __init__(self, chain_id=SEPOLIA_CHAIN_ID, base_fee=10 * GWEI, gas_price=GWEI, gas_estimate=100_000):
        self.chain_id = chain_id
        self.base_fee = base_fee
        self.gas_price = gas_price
        self.gas_estimate = gas_estimate
        self.nonces = {}
        self.balances = {}
        self.code = {TEST_CONTRACT.lower(): b"\x60\x80\x60\x40", TEST_TOKEN.lower(): b"\x60\x80"}
        self.transactions = {}
        self.receipts = {}
        self.block_number = 100
        self.auto_mine = True
        self.estimate_error = None
        self.send_error = None

    def mine(self, tx_hash, status=1):
        tx = self.transactions[tx_hash]
        self.block_number += 1
        tx["blockNumber"] = self.block_number
        contract_address = None
        if tx["to"] is None:
            contract_address = to_checksum_address(
                keccak(rlp.encode([to_canonical_address(tx["from"]), tx["nonce"]]))[12:]
            )
        self.receipts[tx_hash] = {
            "transactionHash": HexBytes(tx_hash),
            "blockNumber": self.block_number,
            "gasUsed": 85_000,
            "status": status,
            "from": tx["from"],
            "to": tx["to"],
            "contractAddress": contract_address,
            "logs": [],
        }
        self.nonces[tx["from"]] = tx["nonce"] + 1

    # JSON-RPC handlers

    def get_transaction_count(self, address, block_identifier=None):
        return self.nonces.get(address, 0)

    def get_balance(self, address, block_identifier=None):
        return self.balances.get(address, 10 ** 18)

    def get_block(self, block_identifier, full_transactions=False):
        block = {"number": self.block_number}
        if self.base_fee is not None:
            block["baseFeePerGas"] = self.base_fee
        return block

    def get_code(self, address, block_identifier=None):
        return HexBytes(self.code.get(address.lower(), b""))

    def estimate_gas(self, tx, block_identifier=None):
        if self.estimate_error is not None:
            raise self.estimate_error
        return self.gas_estimate

    def send_raw_transaction(self, raw):
        if self.send_error is not None:
            raise self.send_error
        tx = decode_raw(raw)
        tx["blockNumber"] = None
        self.transactions[tx["hash"]] = tx
        if self.auto_mine:
            self.mine(tx["hash"])
        return HexBytes(tx["hash"])

    def _key(self, tx_hash):
        return Web3.to_hex(HexBytes(tx_hash))

    def get_transaction(self, tx_hash):
        key = self._key(tx_hash)
        if key not in self.transactions:
            raise TransactionNotFound(f"Transaction with hash: '{key}' not found.")
        return dict(self.transactions[key])

    def get_transaction_receipt(self, tx_hash):
        key = self._key(tx_hash)
        if key not in self.receipts:
            raise TransactionNotFound(f"Transaction with hash: '{key}' not found.")
        return self.receipts[key]

    def wait_for_transaction_receipt(self, tx_hash, timeout=120, poll_latency=0.1):
        key = self._key(tx_hash)
        if key not in self.receipts:
            raise TimeExhausted(f"Transaction {key} is not in the chain after {timeout} seconds")
        return self.receipts[key]

    def build_eth(self):
        eth = MagicMock()
        eth.chain_id = self.chain_id
        eth.gas_price = self.gas_price
        for name in (
            "get_transaction_count", "get_balance", "get_block", "get_code", "estimate_gas",
            "send_raw_transaction", "get_transaction", "get_transaction_receipt",
            "wait_for_transaction_receipt",
        ):
            setattr(eth, name, MagicMock(side_effect=getattr(self, name)))
        return eth


@pytest.fixture
def fake_chain():
    return FakeChain()


@pytest.fixture
def mock_w3(fake_chain):
    """Create a mock Web3 instance backed by the fake chain"""
    mock = MagicMock(spec=Web3)
    mock.eth = fake_chain.build_eth()
    return mock


@pytest.fixture
def mock_account():
    """Create a deterministic test account"""
    return Account.from_key(TEST_PRIV_KEY)


@pytest.fixture
def artifact_path(tmp_path):
    """A minimal Foundry build artifact"""
    path = tmp_path / "CryptoHeir.json"
    path.write_text(json.dumps({"abi": [], "bytecode": {"object": TEST_BYTECODE}}))
    return path
