"""
LLM prompts for the Deal Intake pipeline.

Provides system and user prompts for:
- Deal registration extraction from forwarded partner emails
"""

from .extract_intake import (
    INTAKE_EXTRACTION_SYSTEM_PROMPT,
    build_extraction_messages,
    build_system_prompt,
)

__all__ = [
    'INTAKE_EXTRACTION_SYSTEM_PROMPT',
    'build_extraction_messages',
    'build_system_prompt',
]
