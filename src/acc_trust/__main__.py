# SPDX-License-Identifier: MPL-2.0
"""
acc - Main entry point for the CLI.

Allows ``python -m acc_trust`` to behave like the ``acc`` command.
"""

from acc_trust.cli.main import cli

if __name__ == "__main__":
    cli()
