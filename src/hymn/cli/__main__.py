#!/usr/bin/env python3
"""
CLI entry point for hymn.cli module.

This allows running: python -m hymn.cli
"""

from .main import cli

if __name__ == "__main__":
    cli()
