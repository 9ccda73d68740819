"""
Property-based tests for the CryptoHeir offline signer.

These tests verify that properties hold true across many random inputs.
"""
import pytest
from hypothesis import HealthCheck, given, settings, strategies as st
from eth_account import Account

from cryptoheir_signer.contract import ZERO_ADDRESS, validate_call_params
from cryptoheir_signer.exceptions import InvalidParameters
from cryptoheir_signer.utils import format_ether, parse_ether, predict_contract_address
from conftest import TEST_BENEFICIARY, TEST_TOKEN

wei_strategy = st.integers(min_value=0, max_value=10 ** 30)
nonce_strategy = st.integers(min_value=0, max_value=2 ** 32)
address_strategy = st.binary(min_size=20, max_size=20).map(lambda b: "0x" + b.hex())
uint_text_strategy = st.integers(min_value=0, max_value=2 ** 256 - 1).map(str)


@settings(max_examples=100)
@given(wei=wei_strategy)
def test_format_then_parse_ether_is_exact(wei):
    """Ether strings written into descriptors convert back to the same wei amount."""
    text = format_ether(wei)
    assert "." in text
    assert parse_ether(text) == wei


@settings(max_examples=50)
@given(sender=address_strategy, nonce=nonce_strategy)
def test_predicted_address_properties(sender, nonce):
    first = predict_contract_address(sender, nonce)
    # Deterministic and case-insensitive in the sender
    assert predict_contract_address(sender.upper().replace("0X", "0x"), nonce) == first
    assert first.startswith("0x") and len(first) == 42
    assert predict_contract_address(sender, nonce + 1) != first


@settings(max_examples=50)
@given(value=st.decimals(min_value=0, max_value=10 ** 6, places=18, allow_nan=False), deadline=uint_text_strategy)
def test_native_deposit_always_has_zero_amount(value, deadline):
    params = validate_call_params("deposit", {
        "beneficiary": TEST_BENEFICIARY, "deadline": deadline, "value": str(value),
    })
    assert params["token"] == ZERO_ADDRESS
    assert params["amount"] == "0"


@settings(max_examples=50)
@given(amount=uint_text_strategy, value=st.integers(min_value=1, max_value=10 ** 6).map(str))
def test_erc20_deposit_never_carries_value(amount, value):
    base = {"token": TEST_TOKEN, "beneficiary": TEST_BENEFICIARY, "deadline": "1900000000", "amount": amount}
    assert "value" not in validate_call_params("deposit", base)
    with pytest.raises(InvalidParameters):
        validate_call_params("deposit", {**base, "value": value})


@settings(max_examples=25, suppress_health_check=[HealthCheck.too_slow])
@given(key=st.binary(min_size=32, max_size=32))
def test_signed_payload_recovers_sender(key):
    """Whatever key signs, the payload recovers to that key's address."""
    try:
        account = Account.from_key(key)
    except ValueError:
        # Zero and out-of-range keys are not valid secp256k1 scalars
        return
    tx = {
        "chainId": 11155111,
        "nonce": 0,
        "gas": 21000,
        "value": 0,
        "data": "0x",
        "to": TEST_BENEFICIARY,
        "maxFeePerGas": 2 * 10 ** 9,
        "maxPriorityFeePerGas": 10 ** 9,
        "accessList": [],
    }
    signed = account.sign_transaction(tx)
    assert Account.recover_transaction(signed.raw_transaction) == account.address
