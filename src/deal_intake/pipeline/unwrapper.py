"""
Forward-chain unwrapping.

Deal registrations usually reach the intake mailbox after one or more
forwards (partner -> distributor -> internal staff). The person who actually
originated the deal is the earliest sender in the chain, which in the text is
the deepest ``From:`` header block.

Header blocks are recognized with an ordered list of banner patterns (Gmail,
Outlook, Outlook mailto, bare From/Sent). At a given position the first
pattern in that order wins; across positions every block is kept so mixed
client chains still unwrap fully. The body is never modified: extractors see
the whole chain so they can recover data from any layer.
"""

import re
from dataclasses import dataclass, field

_HEADER_LABELS = r'(?:From|Sent|Date|To|Cc|Subject|Reply-To)'

_SENDER = (
    r'(?:(?P<name>[^<>\[\]:@]{0,80}?)\s*'
    r'(?:<(?P<email>[^<>\s@]+@[^<>\s]+)>|\[mailto:(?P<mailto>[^\]\s@]+@[^\]\s]+)\])'
    r'|(?P<bare>[\w.%+-]+@[\w-]+(?:\.[\w-]+)*\.[A-Za-z]{2,})'
    r'|(?P<name_only>[A-Z][^<>\[\]:@]{1,60}?)(?=\s+(?:Sent|Date|To)\s*:))'
)
_ADDRESSED_SENDER = r'(?P<name>[^<>\[\]:@]{0,80}?)\s*<(?P<email>[^<>\s@]+@[^<>\s]+)>'

# Ordered by specificity; each names the banner style it recognizes.
_BANNER_PATTERNS: list[tuple[str, re.Pattern]] = [
    (
        'gmail',
        re.compile(r'(?<!-)-{3,}\s*Forwarded message\s*-{3,}\s*From:\s*' + _SENDER, re.IGNORECASE),
    ),
    (
        'outlook',
        re.compile(
            r'(?:(?<!-)-{3,}\s*Original Message\s*-{3,}|(?<!_)_{10,})\s*From:\s*' + _SENDER,
            re.IGNORECASE,
        ),
    ),
    (
        'outlook_mailto',
        re.compile(r'(?<![\w-])From:\s*' + _SENDER + r'(?<=\])', re.IGNORECASE),
    ),
    (
        'bare',
        re.compile(
            r'(?<![\w-])From:\s*' + _SENDER + r'(?=\s*(?:\(|' + _HEADER_LABELS + r'\s*:))',
        ),
    ),
    (
        'from_address',
        re.compile(r'(?<![\w-])From:\s*' + _ADDRESSED_SENDER, re.IGNORECASE),
    ),
]

_SUBJECT = re.compile(
    r'Subject:\s*(?P<subject>.+?)(?=\s+' + _HEADER_LABELS + r'\s*:|\s+-{3,}|$)',
    re.IGNORECASE,
)
_SUBJECT_MAX_CHARS = 200

# Dotted host-like tokens, for internal-domain checks
_HOST_NAME = re.compile(r'(?<![\w-])[\w-]{1,63}(?:\.[\w-]{1,63}){0,8}')


@dataclass(frozen=True)
class ForwardHeader:
    """One ``From:`` header block found inside a forwarded email."""

    name: str | None
    email: str | None
    subject: str | None
    position: int
    banner: str

    def is_internal(self, internal_domain: str | None) -> bool:
        """True when this sender belongs to the organization's own domain."""
        return is_internal_address(self.email, internal_domain) or is_internal_address(
            self.name, internal_domain
        )


@dataclass
class ForwardChain:
    """
    Result of unwrapping a forwarded email.

    ``headers`` are in text order, i.e. most recent forwarder first and the
    originating sender last. ``original`` is the deepest external header.
    """

    body: str
    headers: list[ForwardHeader] = field(default_factory=list)
    original: ForwardHeader | None = None

    @property
    def original_sender_name(self) -> str | None:
        return self.original.name if self.original else None

    @property
    def original_sender_email(self) -> str | None:
        return self.original.email if self.original else None

    @property
    def original_subject(self) -> str | None:
        return self.original.subject if self.original else None

    def segment(self, header: ForwardHeader) -> str:
        """Text from ``header`` up to the next header block (or the end)."""
        later = [h.position for h in self.headers if h.position > header.position]
        end = min(later) if later else len(self.body)
        return self.body[header.position:end]

    @property
    def preamble(self) -> str:
        """Text written above the first forwarded header."""
        if not self.headers:
            return self.body
        return self.body[: self.headers[0].position]


def is_internal_address(value: str | None, internal_domain: str | None) -> bool:
    """
    True when ``value`` carries the internal domain or one of its subdomains.

    Matched per host name, case-insensitively: 'sarah@mail.acme.com' is
    internal to 'acme.com', 'bob@notacme.com' is not.
    """
    if not value or not internal_domain:
        return False
    domain = internal_domain.lower().lstrip('@')
    return any(
        host == domain or host.endswith('.' + domain)
        for host in _HOST_NAME.findall(value.lower())
    )


def _clean_name(raw: str | None) -> str | None:
    if not raw:
        return None
    name = raw.strip().strip('"\'').strip(' ,;')
    if not name or '@' in name:
        return None
    return name


def _parse_sender(match: re.Match) -> tuple[str | None, str | None]:
    groups = match.groupdict()
    email = groups.get('email') or groups.get('mailto') or groups.get('bare')
    name = _clean_name(groups.get('name') or groups.get('name_only'))
    return name, email.strip().rstrip('.,;') if email else None


def _subject_after(text: str, start: int, end: int) -> str | None:
    match = _SUBJECT.search(text, start, end)
    if not match:
        return None
    subject = match.group('subject').strip()
    return subject[:_SUBJECT_MAX_CHARS] or None


def unwrap_forward_chain(text: str, internal_domain: str | None = None) -> ForwardChain:
    """
    Find every forwarded header block and identify the originating sender.

    Args:
        text: Normalized email text
        internal_domain: Organization's own email domain; its senders are
            forwarding staff and never count as the originating party

    Returns:
        ForwardChain; all original_* properties are None when nothing matched
    """
    chain = ForwardChain(body=text)
    if not text:
        return chain

    lowered = text.lower()
    by_position: dict[int, tuple[str, re.Match]] = {}
    for banner, pattern in _BANNER_PATTERNS:
        for match in pattern.finditer(text):
            # Anchor on the "From:" token so banner and bare matches coincide
            anchor = lowered.rfind('from:', match.start(), match.end())
            anchor = anchor if anchor >= 0 else match.start()
            by_position.setdefault(anchor, (banner, match))

    positions = sorted(by_position)
    for i, position in enumerate(positions):
        banner, match = by_position[position]
        name, email = _parse_sender(match)
        if not name and not email:
            continue
        next_position = positions[i + 1] if i + 1 < len(positions) else len(text)
        chain.headers.append(
            ForwardHeader(
                name=name,
                email=email,
                subject=_subject_after(text, match.end(), next_position),
                position=position,
                banner=banner,
            )
        )

    external = [h for h in chain.headers if not h.is_internal(internal_domain)]
    if external:
        chain.original = external[-1]
    return chain
