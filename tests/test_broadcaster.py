"""
Tests for the Broadcaster (broadcast phase).
"""
import json

import pytest
from unittest.mock import MagicMock, patch
from web3.exceptions import Web3RPCError

from cryptoheir_signer.broadcaster import (
    ALREADY_BROADCAST, CONFIRMED, PENDING, Broadcaster, broadcast_file, receipt_path_for,
    resolve_broadcast_rpc
)
from cryptoheir_signer.builder import TransactionBuilder
from cryptoheir_signer.config import BroadcastConfig
from cryptoheir_signer.exceptions import (
    BroadcastError, ChainIdMismatch, InsufficientFunds, MalformedDescriptor, MissingApiKey,
    NoRpcConfiguration, NonceExpired, ReceiptNotSaved, ReplacementUnderpriced, UnsupportedNetwork
)
from cryptoheir_signer.models import SignedDescriptor
from cryptoheir_signer.signer import sign_descriptor
from conftest import SEPOLIA_CHAIN_ID, TEST_ADDRESS, TEST_CONTRACT


@pytest.fixture
def signed_claim(mock_w3, mock_account):
    builder = TransactionBuilder(mock_w3, network_name="sepolia")
    descriptor = builder.prepare_call(TEST_ADDRESS, "claim", {"inheritanceId": "3"}, contract_address=TEST_CONTRACT)
    return sign_descriptor(descriptor, mock_account, lambda question: True)


@pytest.fixture
def broadcaster(mock_w3):
    return Broadcaster(mock_w3, receipt_timeout=10, poll_interval=1)


class TestResolveRpc:

    def _descriptor(self, name):
        return SignedDescriptor.from_dict({
            "signedTransaction": "0x02",
            "txHash": "0x" + "00" * 32,
            "from": TEST_ADDRESS,
            "nonce": 0,
            "chainId": SEPOLIA_CHAIN_ID,
            "gasLimit": "21000",
            "metadata": {"network": {"name": name, "chainId": SEPOLIA_CHAIN_ID}},
        })

    def test_embedded_network_first(self):
        config = BroadcastConfig(rpc_url="https://override", infura_api_key="key")
        url = resolve_broadcast_rpc(self._descriptor("sepolia"), config)
        assert url == "https://sepolia.infura.io/v3/key"

    def test_override_when_api_key_missing(self):
        config = BroadcastConfig(rpc_url="https://override")
        assert resolve_broadcast_rpc(self._descriptor("sepolia"), config) == "https://override"

    def test_override_when_no_network(self):
        config = BroadcastConfig(rpc_url="https://override")
        assert resolve_broadcast_rpc(self._descriptor(None), config) == "https://override"

    def test_missing_api_key_without_override(self):
        with pytest.raises(MissingApiKey):
            resolve_broadcast_rpc(self._descriptor("sepolia"), BroadcastConfig())

    def test_nothing_configured(self):
        with pytest.raises(NoRpcConfiguration):
            resolve_broadcast_rpc(self._descriptor(None), BroadcastConfig())

    def test_unknown_network(self):
        with pytest.raises(UnsupportedNetwork):
            resolve_broadcast_rpc(self._descriptor("ropsten"), BroadcastConfig(rpc_url="https://override"))

    def test_local_network_needs_no_key(self):
        assert resolve_broadcast_rpc(self._descriptor("anvil"), BroadcastConfig()) == "http://127.0.0.1:8545"


class TestBroadcast:

    def test_confirmed(self, broadcaster, signed_claim, fake_chain):
        result = broadcaster.broadcast(signed_claim)

        assert result.status == CONFIRMED
        assert result.tx_hash == signed_claim.tx_hash
        receipt = result.receipt
        assert receipt.status == "success"
        assert receipt.mode == "call"
        assert receipt.function_name == "claim"
        assert receipt.to == TEST_CONTRACT
        assert receipt.contract_address is None
        assert receipt.gas_used == 85000
        assert receipt.network.name == "sepolia"
        assert receipt.network.chain_id == SEPOLIA_CHAIN_ID
        assert result.explorer_url == f"https://sepolia.etherscan.io/tx/{signed_claim.tx_hash}"

    def test_failed_transaction(self, broadcaster, signed_claim, fake_chain):
        fake_chain.auto_mine = False
        original_send = fake_chain.send_raw_transaction

        def send_and_fail(raw):
            tx_hash = original_send(raw)
            fake_chain.mine(signed_claim.tx_hash, status=0)
            return tx_hash

        broadcaster.w3.eth.send_raw_transaction.side_effect = send_and_fail
        result = broadcaster.broadcast(signed_claim)
        assert result.status == CONFIRMED
        assert result.receipt.status == "failed"

    def test_chain_id_mismatch_before_submission(self, broadcaster, signed_claim, mock_w3):
        mock_w3.eth.chain_id = 1
        with pytest.raises(ChainIdMismatch) as exc_info:
            broadcaster.broadcast(signed_claim)
        assert "Chain ID mismatch" in str(exc_info.value)
        mock_w3.eth.send_raw_transaction.assert_not_called()
        mock_w3.eth.get_transaction.assert_not_called()

    def test_already_mined(self, broadcaster, signed_claim, mock_w3):
        broadcaster.broadcast(signed_claim)
        mock_w3.eth.send_raw_transaction.reset_mock()

        result = broadcaster.broadcast(signed_claim)
        assert result.status == ALREADY_BROADCAST
        assert result.receipt_status == "success"
        assert result.block_number is not None
        assert result.receipt is None
        mock_w3.eth.send_raw_transaction.assert_not_called()

    def test_already_pending(self, broadcaster, signed_claim, fake_chain, mock_w3):
        fake_chain.auto_mine = False
        first = broadcaster.broadcast(signed_claim)
        assert first.status == PENDING

        mock_w3.eth.send_raw_transaction.reset_mock()
        second = broadcaster.broadcast(signed_claim)
        assert second.status == ALREADY_BROADCAST
        assert second.is_pending
        assert second.receipt_status is None
        mock_w3.eth.send_raw_transaction.assert_not_called()

    def test_timeout_is_pending(self, broadcaster, signed_claim, fake_chain, mock_w3):
        fake_chain.auto_mine = False
        result = broadcaster.broadcast(signed_claim)
        assert result.status == PENDING
        assert result.receipt is None
        _, kwargs = mock_w3.eth.wait_for_transaction_receipt.call_args
        assert kwargs == {"timeout": 10, "poll_latency": 1}

    @pytest.mark.parametrize("message,error_type", [
        ("nonce too low: next nonce 5, tx nonce 4", NonceExpired),
        ("replacement transaction underpriced", ReplacementUnderpriced),
        ("insufficient funds for gas * price + value", InsufficientFunds),
        ("intrinsic gas too low", BroadcastError),
    ])
    def test_send_errors_classified(self, broadcaster, signed_claim, fake_chain, message, error_type):
        fake_chain.send_error = Web3RPCError(message)
        with pytest.raises(error_type) as exc_info:
            broadcaster.broadcast(signed_claim)
        assert type(exc_info.value) is error_type

    def test_send_error_from_value_error(self, broadcaster, signed_claim, fake_chain):
        fake_chain.send_error = ValueError({"code": -32000, "message": "nonce too low"})
        with pytest.raises(NonceExpired):
            broadcaster.broadcast(signed_claim)

    def test_send_errors_not_retried(self, broadcaster, signed_claim, fake_chain, mock_w3):
        fake_chain.send_error = Web3RPCError("insufficient funds")
        with pytest.raises(InsufficientFunds):
            broadcaster.broadcast(signed_claim)
        assert mock_w3.eth.send_raw_transaction.call_count == 1

    def test_missing_signed_payload(self, broadcaster, signed_claim):
        descriptor = signed_claim.model_copy(update={"signed_transaction": ""})
        with pytest.raises(MalformedDescriptor, match="signedTransaction"):
            broadcaster.broadcast(descriptor)

    def test_chain_check_falls_back_to_metadata(self, broadcaster, signed_claim, mock_w3):
        descriptor = signed_claim.model_copy(update={"chain_id": None})
        mock_w3.eth.chain_id = 1
        with pytest.raises(ChainIdMismatch):
            broadcaster.broadcast(descriptor)


class TestBroadcastFile:

    def test_writes_receipt_next_to_input(self, tmp_path, signed_claim, broadcaster):
        signed_path = signed_claim.write(tmp_path / "signed-tx.json")
        result = broadcast_file(signed_path, BroadcastConfig(), broadcaster=broadcaster)

        receipt_path = tmp_path / "signed-tx-receipt.json"
        assert result.receipt_path == receipt_path
        data = json.loads(receipt_path.read_text())
        assert data["transactionHash"] == signed_claim.tx_hash
        assert data["status"] == "success"
        assert data["functionName"] == "claim"
        assert data["contractAddress"] is None
        assert isinstance(data["gasUsed"], str)

    def test_pending_writes_nothing(self, tmp_path, signed_claim, broadcaster, fake_chain):
        fake_chain.auto_mine = False
        signed_path = signed_claim.write(tmp_path / "signed-tx.json")
        result = broadcast_file(signed_path, BroadcastConfig(), broadcaster=broadcaster)
        assert result.status == PENDING
        assert not (tmp_path / "signed-tx-receipt.json").exists()

    def test_unwritable_receipt_still_reports_mined_transaction(
        self, tmp_path, signed_claim, broadcaster, fake_chain, mock_w3
    ):
        signed_path = signed_claim.write(tmp_path / "signed-tx.json")
        (tmp_path / "signed-tx-receipt.json").mkdir()

        with pytest.raises(ReceiptNotSaved) as exc_info:
            broadcast_file(signed_path, BroadcastConfig(), broadcaster=broadcaster)

        error = exc_info.value
        assert error.tx_hash == signed_claim.tx_hash
        assert error.block_number == fake_chain.receipts[signed_claim.tx_hash]["blockNumber"]
        assert signed_claim.tx_hash in str(error)
        assert "Do not broadcast it again" in error.hint
        assert mock_w3.eth.send_raw_transaction.call_count == 1

    @patch("cryptoheir_signer.broadcaster.make_web3")
    def test_connects_to_embedded_network(self, mock_make_web3, tmp_path, signed_claim, mock_w3):
        mock_make_web3.return_value = mock_w3
        signed_path = signed_claim.write(tmp_path / "signed-tx.json")
        broadcast_file(signed_path, BroadcastConfig(infura_api_key="key", receipt_timeout=5))
        assert mock_make_web3.call_args.args[0] == "https://sepolia.infura.io/v3/key"


@pytest.mark.parametrize("signed,receipt", [
    ("signed-tx.json", "signed-tx-receipt.json"),
    ("out/deploy.json", "out/deploy-receipt.json"),
    ("signed", "signed-receipt.json"),
])
def test_receipt_path_for(signed, receipt):
    assert str(receipt_path_for(signed)) == receipt
