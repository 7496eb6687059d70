"""
Deal registration extraction prompts.

The system prompt is rendered per internal domain and vocabulary, so the
allowed distributor names, solution tags and bucket labels always match the
YAML the rule-based extractor uses.

Response model is defined in deal_intake.pipeline.llm_extractor.
"""

from ..models.vocabulary import Vocabulary
from ..pipeline.unwrapper import is_internal_address


# =============================================================================
# System Prompt
# =============================================================================

INTAKE_EXTRACTION_SYSTEM_PROMPT = """You are an expert at extracting structured deal registration data from business emails.

## Who Is Who

These emails are forwarded into the intake inbox by internal staff at @{internal_domain}.
- ANY address at {internal_domain} is INTERNAL STAFF. Never use it, or the name beside it, as the partner (TA), the distributor (TSD) contact or the customer.
- The PARTNER (TA) is the person who originally wrote up the opportunity: the earliest sender who has the customer details and usually a signature with their company.
- The TSD CONTACT is an intermediary who forwarded the email with phrases like "passing this along" or "from one of my partners", or a distributor rep the partner mentions by name.

## Multi-Forward Chains

Emails may be forwarded several times. Example chain:
  Jessica (partner) -> Marcus (distributor contact) -> Sarah (internal staff)

---------- Forwarded message ---------
From: Marcus Webb <marcus@telarus.com>
Hey Sarah, passing this along from one of my partners.

---------- Forwarded message ---------
From: Jessica Hernandez <jhernandez@nexgenpartners.net>
Customer: Derek Foster, VP of Operations
Company: Pinnacle Retail Group

Thanks,
Jessica Hernandez
NexGen Partners

Result:
- ta_full_name = "Jessica Hernandez", ta_email = "jhernandez@nexgenpartners.net", ta_company_name = "NexGen Partners"
- tsd_name = "Telarus" (Marcus's email domain), tsd_contact_name = "Marcus Webb", tsd_contact_email = "marcus@telarus.com"
- customer_first_name = "Derek", customer_last_name = "Foster", customer_job_title = "VP of Operations", customer_company_name = "Pinnacle Retail Group"
- Sarah is internal staff and appears nowhere in the result

## Allowed Values

- tsd_name: one of {distributors}, or "{other_distributor}" when a distributor is named but not in that list
- agent_count: one of {agent_count_buckets}
  Convert counts into the bucket that contains them: "about 2000 seats" -> "1000 to 2499", "300 reps" -> "250 to 499"
- implementation_timeline: one of {timeline_buckets}
- solutions_interested: any of {solutions}
- customer_state: 2-letter code for US states

## Extraction Rules

- Extract ONLY what is stated in the email; never invent values
- Leave a field null when the email does not contain it
- opportunity_description: one or two sentences on what the customer needs
- If no external partner can be found, return null for every ta_ field"""


# =============================================================================
# User Prompt
# =============================================================================

INTAKE_EXTRACTION_USER_PROMPT_TEMPLATE = """{sender_context}

Email Body:
{email_body}"""

INTERNAL_FORWARDER_NOTE = (
    '[NOTE: The sender is INTERNAL staff forwarding this email. Look for the ORIGINAL '
    'sender in the forwarded content below - that person is the partner (TA).]'
)


def _quoted(values: list[str]) -> str:
    return ', '.join(f'"{value}"' for value in values)


def build_system_prompt(internal_domain: str, vocabulary: Vocabulary) -> str:
    """
    Render the system prompt for an internal domain and vocabulary.

    Args:
        internal_domain: The organization's own email domain
        vocabulary: Allowed distributor names, solution tags and buckets

    Returns:
        System prompt text
    """
    return INTAKE_EXTRACTION_SYSTEM_PROMPT.format(
        internal_domain=internal_domain.lstrip('@'),
        distributors=_quoted(vocabulary.distributor_names),
        other_distributor=vocabulary.other_distributor,
        agent_count_buckets=_quoted(vocabulary.agent_count_labels),
        timeline_buckets=_quoted(vocabulary.timeline_labels),
        solutions=_quoted(list(vocabulary.solutions)),
    )


def build_extraction_messages(
    email_body: str,
    internal_domain: str,
    vocabulary: Vocabulary,
    sender_email: str | None = None,
    sender_name: str | None = None,
    subject: str | None = None,
) -> list[dict[str, str]]:
    """
    Build extraction prompt messages for one email.

    Args:
        email_body: Normalized email body
        internal_domain: The organization's own email domain
        vocabulary: Extraction vocabulary
        sender_email: Direct sender address
        sender_name: Direct sender display name
        subject: Subject line

    Returns:
        List of message dicts for OpenAI chat completion
    """
    context_parts = []
    if sender_name or sender_email:
        context_parts.append(f"From: {sender_name or ''} <{sender_email or ''}>")
        if is_internal_address(sender_email, internal_domain):
            context_parts.append(INTERNAL_FORWARDER_NOTE)
    if subject:
        context_parts.append(f'Subject: {subject}')

    user_prompt = INTAKE_EXTRACTION_USER_PROMPT_TEMPLATE.format(
        sender_context='\n'.join(context_parts),
        email_body=email_body,
    )

    return [
        {'role': 'system', 'content': build_system_prompt(internal_domain, vocabulary)},
        {'role': 'user', 'content': user_prompt.strip()},
    ]
