"""
External service clients for the Deal Intake pipeline.
"""

from .openai_client import OpenAIClient

__all__ = [
    'OpenAIClient',
]
