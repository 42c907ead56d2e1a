"""
voxdeck: voice-driven spaced repetition.

Packages:
- scheduling: FSRS interval model, learning steps, leech detection
- review: live session engine, command matching, events
- storage: SQLite card store
- integrations: HTTP card store and explanation clients
- cli: typer/rich terminal interface
"""

__version__ = "0.1.0"
