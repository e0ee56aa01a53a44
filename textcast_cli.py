#!/usr/bin/env python3
"""
Project-level CLI launcher.

Usage:
    python textcast_cli.py <command> [options]
"""

from textcast.cli.main import main


if __name__ == "__main__":
    raise SystemExit(main())
