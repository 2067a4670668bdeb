"""Entry point for running devapp_engine as a module.

Usage:
    python -m devapp_engine <command> [options]
"""
from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
