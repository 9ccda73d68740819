"""
cryptoheir-broadcast: submit a signed transaction from an online machine.
"""
import dataclasses
from pathlib import Path
from typing import Optional

import typer

from cryptoheir_signer.broadcaster import ALREADY_BROADCAST, PENDING, BroadcastResult, broadcast_file
from cryptoheir_signer.config import BroadcastConfig
from cryptoheir_signer.exceptions import CryptoHeirError, ReceiptNotSaved
from cryptoheir_signer.models import SignedDescriptor

from ._common import banner, fail, load_environment, setup_logging

app = typer.Typer(add_completion=False, help="Broadcast a signed CryptoHeir transaction (online).")


def _describe(descriptor: SignedDescriptor, path: Path) -> None:
    typer.echo("✓ Loaded signed transaction")
    typer.echo(f"  File: {path}")
    typer.echo(f"  Transaction hash: {descriptor.tx_hash}")
    typer.echo(f"  From: {descriptor.from_address}")
    label = "Contract Deployment" if descriptor.mode == "deploy" else f"Function Call ({descriptor.function_name})"
    typer.echo(f"  Type: {label}")
    if descriptor.predicted_contract_address:
        typer.echo(f"  Predicted contract address: {descriptor.predicted_contract_address}")
    if descriptor.to:
        typer.echo(f"  Contract: {descriptor.to}")
    if descriptor.value and descriptor.value != "0":
        typer.echo(f"  Value: {descriptor.value} ETH")


def _report(result: BroadcastResult, descriptor: SignedDescriptor, timeout: float) -> None:
    if result.status == ALREADY_BROADCAST:
        typer.echo("\n⚠️  This transaction has already been broadcast!")
        if result.is_pending:
            typer.echo("  Block number: pending")
            typer.echo("  Status: Pending...")
        else:
            typer.echo(f"  Block number: {result.block_number}")
            typer.echo(f"Transaction already broadcast, status: {result.receipt_status}")
            if descriptor.mode == "deploy" and result.contract_address:
                typer.echo(f"  Contract deployed at: {result.contract_address}")
    elif result.status == PENDING:
        typer.echo(f"\n⏳ Transaction {result.tx_hash} not confirmed after {timeout:g}s")
        typer.echo("  It may still be mined. Run this command again to check its status.")
    else:
        receipt = result.receipt
        typer.echo("\n✓ Transaction confirmed!")
        typer.echo(f"  Block number: {receipt.block_number}")
        typer.echo(f"  Gas used: {receipt.gas_used}")
        typer.echo(f"  Status: {'Success ✓' if receipt.status == 'success' else 'Failed ✗'}")
        if receipt.contract_address:
            typer.echo(f"  Contract deployed at: {receipt.contract_address}")
        typer.echo(f"\n📝 Transaction receipt saved to: {result.receipt_path}")

    if result.explorer_url:
        typer.echo(f"\n🔗 {result.explorer_url}")
    typer.echo("\n✅ Done!\n")


@app.command()
def broadcast(
    signed_file: Path = typer.Argument(..., help="Signed transaction file (signed-tx.json)"),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", min=0, help="Seconds to wait for confirmation (default 300)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Broadcast a signed transaction and wait for its receipt.

    Example:
        cryptoheir-broadcast signed-tx.json
    """
    load_environment()
    setup_logging(verbose)

    banner("CryptoHeir Transaction Broadcaster")

    try:
        config = BroadcastConfig.from_env()
        if timeout is not None:
            config = dataclasses.replace(config, receipt_timeout=timeout)
        descriptor = SignedDescriptor.load(signed_file)
        _describe(descriptor, signed_file)

        typer.echo("\n📤 Broadcasting transaction...")
        result = broadcast_file(signed_file, config)
    except ReceiptNotSaved as e:
        typer.echo("\n✓ Transaction confirmed!")
        typer.echo(f"  Transaction hash: {e.tx_hash}")
        typer.echo(f"  Block number: {e.block_number}")
        fail(e)
    except CryptoHeirError as e:
        fail(e)

    _report(result, descriptor, config.receipt_timeout)


def main():
    app()


if __name__ == "__main__":
    main()
