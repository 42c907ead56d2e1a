"""
HTTP integrations: remote card store and explanation service.
"""

from .card_api_client import CardApiClient
from .explain_client import ExplanationClient

__all__ = ["CardApiClient", "ExplanationClient"]
