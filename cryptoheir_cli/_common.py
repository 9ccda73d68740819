"""
Shared helpers for the CLI commands.
"""
import logging
import sys
from typing import NoReturn

import typer
from dotenv import find_dotenv, load_dotenv

from cryptoheir_signer.exceptions import CryptoHeirError

RULE = "═" * 51


def load_environment() -> None:
    """Load a .env file from the working directory, without overriding the real environment."""
    load_dotenv(find_dotenv(usecwd=True), override=False)


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def fail(error: CryptoHeirError) -> NoReturn:
    """Print an error with its hint and exit with status 1."""
    typer.echo(f"\n❌ Error: {error}", err=True)
    if error.hint:
        typer.echo(f"   {error.hint}", err=True)
    reason = getattr(error, "reason", None)
    if reason:
        typer.echo(f"   Reason: {reason}", err=True)
    raise typer.Exit(code=1)


def banner(title: str) -> None:
    typer.echo(title)
    typer.echo("=" * len(title) + "\n")


def section(title: str) -> None:
    typer.echo(f"\n{RULE}")
    typer.echo(f"         {title}")
    typer.echo(f"{RULE}\n")


def ask_yes_no(question: str) -> bool:
    """Ask a question on the terminal; only "yes" or "y" count as consent."""
    answer = typer.prompt(question, default="", show_default=False, prompt_suffix="")
    return answer.strip().lower() in ("yes", "y")
