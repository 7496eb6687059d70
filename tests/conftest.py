"""
Pytest configuration and shared fixtures.

Key fixtures:
- internal_domain: The organization's own domain used across tests
- vocabulary: The packaged extraction vocabulary
- rule_extractor: RuleBasedExtractor bound to internal_domain
- double_forward_email: Partner -> distributor -> internal staff chain
- openai_api_key: OpenAI API key from environment (live tests only)

Everything except the live OpenAI tests runs offline.
"""

import os
import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

# Load environment variables
from dotenv import load_dotenv

env_file = Path(__file__).parent.parent / '.env'
if env_file.exists():
    load_dotenv(env_file)

from deal_intake.models.vocabulary import Vocabulary, load_vocabulary
from deal_intake.pipeline.extractor import RuleBasedExtractor


INTERNAL_DOMAIN = 'internal.example'

DOUBLE_FORWARD_BODY = """
Hi team, new registration below.

---------- Forwarded message ---------
From: Marcus Webb <marcus@telarus.com>
Date: Tue, Feb 3, 2026 at 9:14 AM
Subject: New opportunity - Pinnacle Retail Group
To: Sarah Lin <sarah@internal.example>

Hey Sarah, passing this along from one of my partners.

---------- Forwarded message ---------
From: Jessica Hernandez <jhernandez@partner.net>
Date: Mon, Feb 2, 2026 at 4:51 PM
Subject: New opportunity - Pinnacle Retail Group
To: Marcus Webb <marcus@telarus.com>

Customer: Derek Foster, VP of Operations, Pinnacle Retail Group
Email: dfoster@pinnacleretail.com
Phone: (312) 555-0148
They have about 2000 seats and want to go live within 3 months.

Thanks,
Jessica Hernandez
NexGen Partners
(415) 555-0199
"""


@pytest.fixture
def openai_api_key() -> str:
    """Get OpenAI API key from environment."""
    key = os.getenv('OPENAI_API_KEY')
    if not key:
        pytest.skip('OPENAI_API_KEY not set')
    return key


@pytest.fixture
def internal_domain() -> str:
    return INTERNAL_DOMAIN


@pytest.fixture
def vocabulary() -> Vocabulary:
    """The packaged vocabulary."""
    return load_vocabulary()


@pytest.fixture
def rule_extractor(vocabulary: Vocabulary) -> RuleBasedExtractor:
    """Rule-based extractor bound to the test internal domain."""
    return RuleBasedExtractor(internal_domain=INTERNAL_DOMAIN, vocabulary=vocabulary)


@pytest.fixture
def double_forward_email() -> dict[str, str]:
    """Keyword arguments for extract(): a two-layer forward delivered by staff."""
    return {
        'raw_body': DOUBLE_FORWARD_BODY,
        'sender_email': 'sarah@internal.example',
        'sender_name': 'Sarah Lin',
        'subject': 'Fwd: Fwd: New opportunity - Pinnacle Retail Group',
    }
