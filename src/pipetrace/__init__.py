"""pipetrace package entrypoint."""

from pipetrace.cli.app import main as _cli_main


def main() -> None:
    """Run the pipetrace CLI."""
    _cli_main()
