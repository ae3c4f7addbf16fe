"""
Convenience entry point for running gardenslots directly.

Usage: python -m gardenslots [command] [options]
"""

from .cli.app import app

if __name__ == "__main__":
    app()
