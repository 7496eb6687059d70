#!/usr/bin/env python3
"""
Example: Run a forwarded partner email through the Deal Intake pipeline.

This script demonstrates:
1. Extracting a deal registration record from a double-forwarded email
2. Handing the intake to the partner and applying their resubmission
3. Surfacing and resolving a field conflict before conversion

The LLM strategy is used when OPENAI_API_KEY is set; otherwise the
rule-based extractor runs on its own.

Usage:
    python examples/process_email.py
"""

import asyncio
import json
import sys
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from dotenv import load_dotenv

# Load environment variables
env_file = Path(__file__).parent.parent / '.env'
if env_file.exists():
    load_dotenv(env_file)

from deal_intake.config import config
from deal_intake.models import InboundEmail
from deal_intake.pipeline import IntakePipeline


SAMPLE_BODY = f"""
Hi team, see below - new one from Telarus.

---------- Forwarded message ---------
From: Marcus Webb <marcus@telarus.com>
Date: Tue, Feb 3, 2026 at 9:14 AM
Subject: New opportunity - Pinnacle Retail Group
To: Sarah Lin <sarah@{config.INTERNAL_DOMAIN}>

Hey Sarah, passing this along from one of my partners.

---------- Forwarded message ---------
From: Jessica Hernandez <jhernandez@nexgenpartners.net>
Date: Mon, Feb 2, 2026 at 4:51 PM
Subject: New opportunity - Pinnacle Retail Group
To: Marcus Webb <marcus@telarus.com>

Customer: Derek Foster, VP of Operations, Pinnacle Retail Group
Email: dfoster@pinnacleretail.com
Phone: (312) 555-0148
They have about 2000 seats across three contact centers and want coaching
and gamification in place within 3 months.

Thanks,
Jessica Hernandez
NexGen Partners
(415) 555-0199
"""


async def main():
    """Run the example intake demonstration."""
    print("=" * 60)
    print("Deal Intake Example")
    print("=" * 60)

    pipeline = IntakePipeline.from_config()
    mode = 'LLM with rule-based fallback' if pipeline.llm_extractor else 'rule-based only'
    print(f"\nExtraction mode: {mode}")

    if pipeline.llm_extractor:
        health = await pipeline.llm_extractor.openai.health_check()
        print(f"OpenAI health: {health}")
        if not health['healthy']:
            print("OpenAI unreachable; LLM extraction is likely to fail.")

    email = InboundEmail(
        body=SAMPLE_BODY,
        sender_email=f'sarah@{config.INTERNAL_DOMAIN}',
        sender_name='Sarah Lin',
        subject='Fwd: Fwd: New opportunity - Pinnacle Retail Group',
        message_id='<demo-1@mail.example>',
    )

    # =========================================================================
    # Extract
    # =========================================================================
    print("\n" + "-" * 60)
    print("Extracting...")
    print("-" * 60)

    intake = await pipeline.process_email(email)

    print(f"\nMethod: {intake.parsing_method}")
    for name in intake.record.populated_fields():
        value = getattr(intake.record, name)
        print(f"  {name:<28} {value!s:<45} ({intake.confidence.get(name)})")

    if intake.warnings:
        print("\nWarnings:")
        for warning in intake.warnings:
            print(f"  - {warning}")

    # =========================================================================
    # Partner round trip
    # =========================================================================
    print("\n" + "-" * 60)
    print("Partner completion form...")
    print("-" * 60)

    pipeline.hand_off_to_partner(intake, partner_email=intake.record.ta_email or 'partner@example.com')
    outcome = pipeline.receive_partner_submission(
        intake,
        {
            'customer_email': 'derek.foster@pinnacleretail.com',
            'customer_country': 'USA',
        },
    )

    print(f"\nConflicts: {outcome.conflicted_fields or 'none'}")
    for conflict in outcome.conflicts:
        print(json.dumps(conflict.model_dump(), indent=2, default=str))

    if intake.has_conflicts:
        pipeline.mark_conflicts_resolved(intake)
        print("\nConflicts marked resolved.")

    pipeline.convert(intake)
    print(f"Final status: {intake.status.value}")

    if pipeline.llm_extractor:
        await pipeline.llm_extractor.openai.close()

    print("\n" + "=" * 60)
    print("Example complete!")
    print("=" * 60)


if __name__ == '__main__':
    asyncio.run(main())
