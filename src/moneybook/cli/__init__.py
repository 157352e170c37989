"""moneybook Command Line Interface.

Entry point: moneybook.cli.main:main (installed as the `moneybook` script).
"""

from .main import main

__all__ = ["main"]
