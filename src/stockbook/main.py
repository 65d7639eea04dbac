"""
Main entry point for Stockbook.

This module wires up the command-line interface and exits with its
status code.
"""

import sys

from .utils.ledger_cli import main as cli_main


def main():
    """
    Main application entry point.

    Runs the ledger CLI and exits with its return code.
    """
    sys.exit(cli_main())


if __name__ == "__main__":
    main()
