"""
cryptoheir-sign: review and sign a prepared transaction on an air-gapped machine.
"""
import dataclasses
from pathlib import Path
from typing import Optional

import typer

from cryptoheir_signer.config import SignConfig
from cryptoheir_signer.exceptions import ConfigurationError, CryptoHeirError, SigningCancelled
from cryptoheir_signer.keys import load_signing_account
from cryptoheir_signer.signer import sign_file

from ._common import ask_yes_no, banner, fail, load_environment, section, setup_logging

app = typer.Typer(add_completion=False, help="Sign a prepared CryptoHeir transaction (offline).")


@app.command()
def sign(
    input_file: Path = typer.Argument(..., help="Prepared transaction file (tx-params.json)"),
    output_file: Path = typer.Argument(Path("signed-tx.json"), help="Where to write the signed transaction"),
    mnemonic_index: Optional[int] = typer.Option(
        None, "--mnemonic-index", min=0, help="Sign with the MNEMONIC account at this index"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Sign a prepared transaction. No network access is needed.

    Example:
        cryptoheir-sign tx-params.json signed-tx.json
    """
    load_environment()
    setup_logging(verbose)

    banner("CryptoHeir Offline Transaction Signer")
    typer.echo("⚠️  OFFLINE MODE - No network access required\n")

    try:
        config = SignConfig.from_env(account_index=mnemonic_index or 0)
        if mnemonic_index is not None:
            if not config.mnemonic:
                raise ConfigurationError("MNEMONIC not set", hint="--mnemonic-index signs with the MNEMONIC phrase.")
            config = dataclasses.replace(config, private_key=None)
        account = load_signing_account(config)
        typer.echo(f"✓ Loaded wallet: {account.address}")
        typer.echo(f"✓ Loading transaction parameters from: {input_file}\n")

        signed = sign_file(input_file, output_file, account, confirm=ask_yes_no, review=typer.echo)
    except SigningCancelled as e:
        typer.echo(f"\n{e}\n")
        raise typer.Exit(code=0)
    except CryptoHeirError as e:
        fail(e)

    typer.echo("\n✓ Transaction signed successfully!")
    section("SIGNING COMPLETE")
    typer.echo(f"  Transaction Hash: {signed.tx_hash}")
    if signed.predicted_contract_address:
        typer.echo(f"  Predicted Contract Address: {signed.predicted_contract_address}")
    typer.echo(f"  Signed transaction saved to: {output_file}")
    typer.echo("\n📤 Next step:")
    typer.echo(f"  Transfer {output_file} to your ONLINE machine")
    typer.echo(f"  Then run: cryptoheir-broadcast {output_file}\n")


def main():
    app()


if __name__ == "__main__":
    main()
