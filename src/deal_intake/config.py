"""
Configuration management for the Deal Intake pipeline.

Loads settings from environment variables with sensible defaults.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / '.env'
if _env_file.exists():
    load_dotenv(_env_file)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Configuration settings loaded from environment."""

    # OpenAI (only needed for the LLM extraction strategy)
    OPENAI_API_KEY: str = os.getenv('OPENAI_API_KEY', '')
    OPENAI_CHAT_MODEL: str = os.getenv('OPENAI_CHAT_MODEL', 'gpt-4o-mini')

    # Extraction
    INTERNAL_DOMAIN: str = os.getenv('DEAL_INTAKE_INTERNAL_DOMAIN', 'amplifai.com')
    LLM_TIMEOUT_SECONDS: float = float(os.getenv('DEAL_INTAKE_LLM_TIMEOUT_SECONDS', '20'))
    RULES_FALLBACK: bool = _env_bool('DEAL_INTAKE_RULES_FALLBACK', True)
    VOCABULARY_PATH: str = os.getenv('DEAL_INTAKE_VOCABULARY_PATH', '')
    DESCRIPTION_MAX_CHARS: int = int(os.getenv('DEAL_INTAKE_DESCRIPTION_MAX_CHARS', '500'))
    RAW_TEXT_MAX_CHARS: int = int(os.getenv('DEAL_INTAKE_RAW_TEXT_MAX_CHARS', '5000'))

    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')

    @classmethod
    def llm_enabled(cls) -> bool:
        """True when an OpenAI key is configured and the LLM strategy can run."""
        return bool(cls.OPENAI_API_KEY)

    @classmethod
    def validate(cls) -> list[str]:
        """
        Validate that configuration required by the LLM path is present.

        The rule-based extractor runs without any of these keys.

        Returns:
            List of missing or invalid configuration keys
        """
        missing = []
        if not cls.OPENAI_API_KEY:
            missing.append('OPENAI_API_KEY')
        if not cls.INTERNAL_DOMAIN:
            missing.append('DEAL_INTAKE_INTERNAL_DOMAIN')
        if cls.LLM_TIMEOUT_SECONDS <= 0:
            missing.append('DEAL_INTAKE_LLM_TIMEOUT_SECONDS')
        return missing


# Singleton config instance
config = Config()
