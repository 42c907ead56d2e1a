"""
Entry point for running voxdeck as a module.

Usage:
    python -m voxdeck decks
    python -m voxdeck review "Spanish"
    python -m voxdeck --help
"""
from voxdeck.cli.review_cli import main

if __name__ == "__main__":
    main()
