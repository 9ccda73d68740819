"""
cryptoheir-mnemonic: generate BIP-39 phrases and derive accounts (offline).
"""
import typer

from cryptoheir_signer.exceptions import CryptoHeirError
from cryptoheir_signer.keys import derivation_path, derive_account, generate_mnemonic, private_key_hex

from ._common import fail, load_environment, setup_logging

app = typer.Typer(add_completion=False, help="Generate mnemonic phrases and derive signing keys (offline).")

WIDE_RULE = "=" * 70


@app.callback()
def main_callback(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")):
    load_environment()
    setup_logging(verbose)


@app.command()
def generate(
    show_keys: bool = typer.Option(False, "--show-keys", help="Also print the first derived account"),
    words: int = typer.Option(24, "--words", help="Number of words (12 or 24)"),
):
    """Generate a new BIP-39 mnemonic phrase."""
    try:
        phrase, account = generate_mnemonic(words)
    except CryptoHeirError as e:
        fail(e)

    typer.echo(f"\n{WIDE_RULE}")
    typer.echo(f"  {words}-Word Mnemonic Phrase (BIP39)")
    typer.echo(WIDE_RULE)
    typer.echo(f"\n{phrase}\n")
    typer.echo(WIDE_RULE)
    typer.echo("\n⚠️  IMPORTANT: Write this mnemonic down and store it securely!")
    typer.echo("   Anyone with this phrase can access your funds.")
    typer.echo("   Never share it or store it digitally.\n")

    if show_keys:
        typer.echo(f"Derived Account ({derivation_path(0)}):")
        typer.echo(f"  Address:     {account.address}")
        typer.echo(f"  Private Key: {private_key_hex(account)}\n")
        typer.echo("⚠️  Keep your private key secret!\n")


@app.command()
def derive(index: int = typer.Option(0, "--index", min=0, help="Account index")):
    """Derive an account from a mnemonic phrase read from the terminal."""
    typer.echo(f"\n{WIDE_RULE}")
    typer.echo("  Derive Ethereum Private Key from Mnemonic")
    typer.echo(WIDE_RULE)
    phrase = typer.prompt("\nEnter your 12 or 24-word mnemonic phrase", hide_input=True)

    try:
        account = derive_account(phrase, index)
    except CryptoHeirError as e:
        fail(e)

    key = private_key_hex(account)
    typer.echo(f"\n{WIDE_RULE}")
    typer.echo("  Derived Ethereum Account")
    typer.echo(WIDE_RULE)
    typer.echo(f"\nDerivation Path: {derivation_path(index)}")
    typer.echo(f"Address:         {account.address}")
    typer.echo(f"Private Key:     {key}")
    typer.echo(f"\n{WIDE_RULE}\n")
    typer.echo("⚠️  IMPORTANT: Keep your private key secure!\n")
    typer.echo("You can use this private key with cryptoheir-sign by setting:")
    typer.echo(f"  export PRIVATE_KEY={key}")
    typer.echo(f"  export SIGNER_ADDRESS={account.address}")


def main():
    app()


if __name__ == "__main__":
    main()
