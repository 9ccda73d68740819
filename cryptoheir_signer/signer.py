"""
Offline signing of prepared transaction descriptors.

Nothing in this module touches the network. The operator sees a review of the
transaction and must confirm it before the key is used.
"""
import logging
from pathlib import Path
from typing import Callable, List, Optional, Union

from eth_account.signers.local import LocalAccount
from web3 import Web3

from .exceptions import MalformedDescriptor, SenderMismatch, SigningCancelled
from .models import SignedDescriptor, UnsignedDescriptor
from .utils import format_ether, format_gwei, predict_contract_address, utc_now_iso

logger = logging.getLogger(__name__)

Confirm = Callable[[str], bool]

RULE = "═" * 51

RESIGN_QUESTION = "Do you want to sign it again? (yes/no): "
SIGN_QUESTION = "Do you want to sign this transaction? (yes/no): "


def render_summary(descriptor: UnsignedDescriptor) -> str:
    """
    Render the review shown to the operator before signing.

    Args:
        descriptor: Prepared transaction

    Returns:
        Multi-line summary text
    """
    tx = descriptor.transaction
    network = descriptor.metadata.network
    lines: List[str] = [RULE, "         TRANSACTION REVIEW", RULE, ""]

    lines += ["Transaction Type:", f"  {descriptor.label}", ""]

    if descriptor.mode == "call":
        lines.append("Function Parameters:")
        for key, value in descriptor.params.items():
            lines.append(f"  {key}: {value}")
        lines.append("")

    lines += [
        "Network Information:",
        f"  Network: {network.name or 'unknown'}",
        f"  Chain ID: {network.chain_id}",
        "",
        "Transaction Details:",
        f"  From: {tx.from_address}",
    ]
    if tx.to:
        lines.append(f"  To: {tx.to}")
    if tx.value:
        lines.append(f"  Value: {format_ether(tx.value)} ETH")
    lines += [f"  Nonce: {tx.nonce}", f"  Gas Limit: {tx.gas_limit}", ""]

    if tx.is_fee_market:
        lines += [
            "Gas Fees (EIP-1559):",
            f"  Max Fee Per Gas: {format_gwei(tx.max_fee_per_gas or 0)} gwei",
            f"  Max Priority Fee: {format_gwei(tx.max_priority_fee_per_gas or 0)} gwei",
        ]
    else:
        lines += ["Gas Fees (Legacy):", f"  Gas Price: {format_gwei(tx.gas_price or 0)} gwei"]

    lines += ["", f"Estimated Maximum Cost: {descriptor.metadata.estimated_cost} ETH", "", RULE]
    return "\n".join(lines)


def sign_descriptor(
    descriptor: UnsignedDescriptor,
    account: LocalAccount,
    confirm: Confirm,
    review: Optional[Callable[[str], None]] = None,
) -> SignedDescriptor:
    """
    Sign a prepared transaction after the operator has reviewed it.

    The checks run in a fixed order: the descriptor must be prepared, a
    descriptor already marked signed needs an explicit override, the key must
    belong to the sender, and the operator must approve the review.

    Args:
        descriptor: Unsigned descriptor from the prepare phase
        account: Signing account
        confirm: Asks the operator a yes/no question
        review: Shows the review summary (logged at info level when omitted)

    Returns:
        The signed descriptor

    Raises:
        MalformedDescriptor: If the descriptor was not prepared
        SigningCancelled: If the operator declines a prompt
        SenderMismatch: If the key does not belong to ``transaction.from``
    """
    if not descriptor.metadata.prepared:
        raise MalformedDescriptor("Transaction parameters have not been properly prepared")

    if descriptor.metadata.signed:
        logger.warning("This transaction appears to have already been signed")
        if not confirm(RESIGN_QUESTION):
            raise SigningCancelled("Transaction signing cancelled.")

    tx = descriptor.transaction
    if account.address.lower() != tx.from_address.lower():
        raise SenderMismatch(tx.from_address, account.address)

    summary = render_summary(descriptor)
    if review is not None:
        review(summary)
    else:
        logger.info(summary)

    if not confirm(SIGN_QUESTION):
        raise SigningCancelled("Transaction signing cancelled by user.")

    signed = account.sign_transaction(tx.to_signable())
    raw = Web3.to_hex(signed.raw_transaction)
    tx_hash = Web3.to_hex(signed.hash)
    logger.info(f"Signed transaction {tx_hash}")

    predicted = None
    if descriptor.mode == "deploy":
        predicted = predict_contract_address(account.address, tx.nonce)
        logger.info(f"Predicted contract address: {predicted}")

    metadata = descriptor.metadata.model_copy(update={"signed": True, "signed_at": utc_now_iso()})

    return SignedDescriptor(
        signed_transaction=raw,
        tx_hash=tx_hash,
        mode=descriptor.mode,
        function_name=descriptor.function_name,
        from_address=account.address,
        to=tx.to,
        value=format_ether(tx.value) if tx.value else "0",
        nonce=tx.nonce,
        chain_id=tx.chain_id,
        gas_limit=tx.gas_limit,
        gas_price=tx.gas_price if not tx.is_fee_market else None,
        max_fee_per_gas=tx.max_fee_per_gas if tx.is_fee_market else None,
        max_priority_fee_per_gas=tx.max_priority_fee_per_gas if tx.is_fee_market else None,
        predicted_contract_address=predicted,
        metadata=metadata,
    )


def sign_file(
    input_path: Union[str, Path],
    output_path: Union[str, Path],
    account: LocalAccount,
    confirm: Confirm,
    review: Optional[Callable[[str], None]] = None,
) -> SignedDescriptor:
    """
    Sign the descriptor in ``input_path`` and write the result to ``output_path``.

    The output file is only written once every check has passed; a failure or
    cancellation leaves no file behind.
    """
    descriptor = UnsignedDescriptor.load(input_path)
    signed = sign_descriptor(descriptor, account, confirm, review=review)
    signed.write(output_path)
    logger.info(f"Signed transaction saved to {output_path}")
    return signed
