"""
cryptoheir-prepare: build an unsigned transaction on an online machine.
"""
from pathlib import Path
from typing import Optional

import typer

from cryptoheir_signer.builder import GasOverrides, TransactionBuilder
from cryptoheir_signer.config import PrepareConfig
from cryptoheir_signer.exceptions import CryptoHeirError, InvalidParameters
from cryptoheir_signer.models import UnsignedDescriptor
from cryptoheir_signer.utils import format_ether, format_gwei

from ._common import banner, fail, load_environment, section, setup_logging

app = typer.Typer(add_completion=False, help="Prepare an unsigned CryptoHeir transaction (online).")


def _print_result(descriptor: UnsignedDescriptor, output: Path) -> None:
    tx = descriptor.transaction
    network = descriptor.metadata.network
    section("TRANSACTION PREPARED")
    typer.echo(f"  Type: {descriptor.label}")
    for key, value in descriptor.params.items():
        typer.echo(f"    {key}: {value}")
    typer.echo(f"  Network: {network.name or 'unknown'} (Chain ID: {network.chain_id})")
    typer.echo(f"  From: {tx.from_address}")
    if tx.to:
        typer.echo(f"  To: {tx.to}")
    if tx.value:
        typer.echo(f"  Value: {format_ether(tx.value)} ETH")
    typer.echo(f"  Nonce: {tx.nonce}")
    typer.echo(f"  Gas Limit: {tx.gas_limit}")
    if tx.is_fee_market:
        typer.echo(f"  Max Fee Per Gas: {format_gwei(tx.max_fee_per_gas)} gwei")
        typer.echo(f"  Max Priority Fee: {format_gwei(tx.max_priority_fee_per_gas)} gwei")
    else:
        typer.echo(f"  Gas Price: {format_gwei(tx.gas_price)} gwei")
    typer.echo(f"  Estimated Maximum Cost: {descriptor.metadata.estimated_cost} ETH")
    typer.echo(f"\n  Saved to: {output}")
    typer.echo("\n📤 Next step:")
    typer.echo(f"  Transfer {output} to your OFFLINE machine")
    typer.echo(f"  Then run: cryptoheir-sign {output}\n")


@app.command()
def prepare(
    deploy: bool = typer.Option(False, "--deploy", help="Prepare a contract deployment"),
    call: Optional[str] = typer.Option(None, "--call", help="Function to call"),
    network: Optional[str] = typer.Option(None, "--network", "-n", help="Network name, e.g. sepolia"),
    output: Path = typer.Option(Path("tx-params.json"), "--output", "-o", help="Output file"),
    gas_limit: Optional[str] = typer.Option(None, "--gas-limit", help="Gas limit (skips estimation)"),
    gas_price: Optional[str] = typer.Option(None, "--gas-price", help="Legacy gas price in gwei"),
    max_fee: Optional[str] = typer.Option(None, "--max-fee", help="EIP-1559 max fee per gas in gwei"),
    priority_fee: Optional[str] = typer.Option(None, "--priority-fee", help="EIP-1559 priority fee in gwei"),
    contract: Optional[str] = typer.Option(None, "--contract", help="CryptoHeir contract address"),
    beneficiary: Optional[str] = typer.Option(None, "--beneficiary", help="Beneficiary address (deposit)"),
    deadline: Optional[str] = typer.Option(None, "--deadline", help="Unix timestamp deadline"),
    value: Optional[str] = typer.Option(None, "--value", help="Native token amount in ether (deposit)"),
    inheritance_id: Optional[str] = typer.Option(None, "--inheritance-id", help="Inheritance ID"),
    token: Optional[str] = typer.Option(None, "--token", help="ERC20 token address, omit for native"),
    amount: Optional[str] = typer.Option(None, "--amount", help="ERC20 amount in the token's smallest unit"),
    new_fee_collector: Optional[str] = typer.Option(None, "--new-fee-collector", help="New fee collector"),
    artifact: Optional[Path] = typer.Option(None, "--artifact", help="Compiled contract artifact (deploy)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Prepare an unsigned transaction for offline signing.

    Examples:
        cryptoheir-prepare --deploy --network sepolia

        cryptoheir-prepare --call claim --inheritance-id 0 --contract 0x... --network sepolia
    """
    load_environment()
    setup_logging(verbose)

    banner("CryptoHeir Transaction Preparation")

    try:
        if deploy == bool(call):
            raise InvalidParameters(
                "Specify exactly one of --deploy or --call <function>",
                hint="Valid functions: deposit, claim, reclaim, extendDeadline, "
                     "transferFeeCollector, acceptFeeCollector",
            )

        config = PrepareConfig.from_env()
        signer_address = config.require_signer_address()
        overrides = GasOverrides.from_gwei(
            gas_limit=gas_limit, gas_price=gas_price, max_fee=max_fee, priority_fee=priority_fee
        )
        builder = TransactionBuilder.from_config(
            config, network=network, artifact_path=str(artifact) if artifact else None
        )

        typer.echo(f"✓ Signer address: {signer_address}")
        if deploy:
            descriptor = builder.prepare_deployment(signer_address, gas_overrides=overrides)
        else:
            params = {
                "token": token,
                "beneficiary": beneficiary,
                "amount": amount,
                "deadline": deadline,
                "value": value,
                "inheritanceId": inheritance_id,
                "newFeeCollector": new_fee_collector,
            }
            descriptor = builder.prepare_call(
                signer_address,
                call,
                params,
                contract_address=contract,
                gas_overrides=overrides,
            )

        descriptor.write(output)
    except CryptoHeirError as e:
        fail(e)

    _print_result(descriptor, output)


def main():
    app()


if __name__ == "__main__":
    main()
