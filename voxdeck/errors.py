"""
Exception types raised at voxdeck's I/O boundaries.
"""


class VoxdeckError(Exception):
    """Base class for voxdeck errors."""


class StoreError(VoxdeckError):
    """Raised when the card store cannot complete a call."""


class CardNotFoundError(StoreError):
    """Raised when a card or deck does not exist in the store."""


class ExplainError(VoxdeckError):
    """Raised when an explanation cannot be produced."""
