"""
CLI module for Titrate - contains command-line interface components.
"""

from titrate.cli.app import cli, main

__all__ = ["cli", "main"]
