"""
CLI module for Sagaflow - contains command-line interface components.
"""

from sagaflow.cli.app import cli

__all__ = ["cli"]
