"""
Tests for the cryptoheir-broadcast command.
"""
import json

import pytest
from unittest.mock import patch
from typer.testing import CliRunner

from cryptoheir_cli.broadcast import app
from cryptoheir_signer.builder import TransactionBuilder
from cryptoheir_signer.signer import sign_descriptor
from conftest import TEST_ADDRESS, TEST_CONTRACT

runner = CliRunner()

ENV = {"INFURA_API_KEY": "test-key"}


@pytest.fixture
def patched_web3(mock_w3):
    with patch("cryptoheir_signer.broadcaster.make_web3", return_value=mock_w3) as mock_make_web3:
        yield mock_make_web3


@pytest.fixture
def signed_file(tmp_path, mock_w3, mock_account):
    builder = TransactionBuilder(mock_w3, network_name="sepolia")
    descriptor = builder.prepare_call(TEST_ADDRESS, "claim", {"inheritanceId": "3"}, contract_address=TEST_CONTRACT)
    signed = sign_descriptor(descriptor, mock_account, lambda question: True)
    return signed.write(tmp_path / "signed-tx.json")


def test_broadcast_confirmed(tmp_path, signed_file, patched_web3):
    result = runner.invoke(app, [str(signed_file)], env=ENV)

    assert result.exit_code == 0, result.output
    assert "Transaction confirmed" in result.output
    assert (tmp_path / "signed-tx-receipt.json").exists()
    assert "https://sepolia.etherscan.io/tx/0x" in result.output


def test_rebroadcast_short_circuits(tmp_path, signed_file, patched_web3, mock_w3):
    runner.invoke(app, [str(signed_file)], env=ENV)
    mock_w3.eth.send_raw_transaction.reset_mock()

    result = runner.invoke(app, [str(signed_file)], env=ENV)
    assert result.exit_code == 0, result.output
    assert "Transaction already broadcast, status: success" in result.output
    mock_w3.eth.send_raw_transaction.assert_not_called()


def test_pending_exits_zero(tmp_path, signed_file, patched_web3, fake_chain):
    fake_chain.auto_mine = False
    result = runner.invoke(app, [str(signed_file), "--timeout", "1"], env=ENV)
    assert result.exit_code == 0, result.output
    assert "not confirmed after 1s" in result.output
    assert not (tmp_path / "signed-tx-receipt.json").exists()


def test_chain_mismatch_exits_one(tmp_path, signed_file, patched_web3, mock_w3):
    mock_w3.eth.chain_id = 1
    result = runner.invoke(app, [str(signed_file)], env=ENV)
    assert result.exit_code == 1
    assert "Chain ID mismatch" in result.output
    mock_w3.eth.send_raw_transaction.assert_not_called()


def test_missing_api_key_without_override(tmp_path, signed_file, patched_web3):
    result = runner.invoke(app, [str(signed_file)])
    assert result.exit_code == 1
    assert "INFURA_API_KEY" in result.output


def test_missing_file(tmp_path, patched_web3):
    result = runner.invoke(app, [str(tmp_path / "nope.json")], env=ENV)
    assert result.exit_code == 1
    assert "not found" in result.output


def test_unwritable_receipt_reports_confirmed_transaction(tmp_path, signed_file, patched_web3, mock_w3):
    (tmp_path / "signed-tx-receipt.json").mkdir()
    signed = json.loads(signed_file.read_text())

    result = runner.invoke(app, [str(signed_file)], env=ENV)

    assert result.exit_code == 1
    assert "Transaction confirmed" in result.output
    assert f"Transaction hash: {signed['txHash']}" in result.output
    assert "Block number: 101" in result.output
    assert "❌ Error:" in result.output
    assert "Do not broadcast it again" in result.output
    assert not isinstance(result.exception, OSError)
    mock_w3.eth.send_raw_transaction.assert_called_once()
