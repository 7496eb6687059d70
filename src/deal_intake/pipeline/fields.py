"""
Field extractors for deal registration emails.

Every extractor is a pure function over an ExtractionContext that yields
``(field, Candidate)`` pairs. All of them follow one rule-priority table
instead of separate code paths per forwarding pattern:

    header    85-90   From: addresses of the direct sender and forwarded layers
    section   85-90   structured layouts (header line, then bare value lines)
    label     75-85   "Label: value" / "Label - value"
    vocabulary 60-90  known distributor names and solution keywords
    pattern   30-65   regexes for counts, timelines, money, addresses, signatures
    positional 35-50  unlabeled emails and phones, first to partner then customer

Internal-domain addresses are never candidates for any contact field. An
internal sender only means the real sender has to come from the forward chain.

Most extractors see only the context. A few refine what the others found
(signature lookups need the partner name, positional fallbacks need to know
which addresses are already claimed) and take the record assembled so far.
"""

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable, Iterable, Iterator

from ..models.record import Candidate, ExtractedRecord, RECORD_FIELDS
from ..models.vocabulary import CountBucket, TimelineBucket, Vocabulary
from .normalizer import truncate
from .unwrapper import ForwardChain, is_internal_address

FieldCandidates = Iterator[tuple[str, Candidate]]

LABEL_VALUE_MAX_CHARS = 200
SIGNATURE_WINDOW_CHARS = 160
SECTION_MAX_LINES = 8


# =============================================================================
# Label tables
# =============================================================================

# Within a group, earlier labels are more specific.
PARTNER_NAME_LABELS = (
    'partner name', 'ta name', 'advisor name', 'rep name', 'sales rep',
    'partner contact', 'referred by',
)
PARTNER_LINE_LABELS = ('referral partner', 'trusted advisor', 'partner', 'ta')
PARTNER_COMPANY_LABELS = ('partner company', 'ta company', 'agency name', 'reseller', 'agency')
PARTNER_EMAIL_LABELS = ('partner email', 'ta email', 'advisor email')
PARTNER_PHONE_LABELS = ('partner phone', 'ta phone', 'advisor phone')

DISTRIBUTOR_LABELS = ('distribution partner', 'distributor', 'master agent', 'tsd')
TSD_CONTACT_LABELS = ('tsd contact', 'distributor contact', 'tsd rep', 'channel manager')
TSD_EMAIL_LABELS = ('tsd email', 'distributor email')

CUSTOMER_COMPANY_LABELS = (
    'customer company', 'company name', 'business name', 'account name',
    'organization', 'account', 'company',
)
CUSTOMER_LINE_LABELS = ('customer name', 'customer', 'end user', 'end-user', 'prospect', 'client')
CUSTOMER_CONTACT_LABELS = (
    'customer contact', 'contact name', 'primary contact', 'decision maker',
    'main contact', 'poc', 'contact',
)
JOB_TITLE_LABELS = ('job title', 'customer title', 'title', 'position', 'role')
CUSTOMER_EMAIL_LABELS = ('customer email', 'contact email', 'email address', 'email', 'e-mail')
CUSTOMER_PHONE_LABELS = (
    'customer phone', 'contact phone', 'phone number', 'phone', 'direct',
    'cell', 'mobile', 'tel', 'office',
)

ADDRESS_LABELS = ('street address', 'address', 'location', 'headquarters', 'hq')
CITY_LABELS = ('city',)
STATE_LABELS = ('state', 'province')
POSTAL_LABELS = ('zip code', 'postal code', 'zip')
COUNTRY_LABELS = ('country',)

AGENT_COUNT_LABELS = (
    'number of agents', '# of agents', 'agent count', 'contact center size',
    'team size', 'seat count', 'agents', 'seats', 'headcount',
)
TIMELINE_LABELS = (
    'implementation timeline', 'timeline', 'timeframe', 'time frame', 'implementation',
    'expected start', 'start date', 'go live', 'go-live', 'target date', 'decision date',
)
DEAL_VALUE_LABELS = (
    'deal value', 'deal size', 'opportunity value', 'estimated value',
    'contract value', 'arr', 'acv', 'mrr', 'budget',
)
SOLUTION_LABELS = ('solutions interested', 'interested in', 'solutions', 'solution', 'products')
OPPORTUNITY_SECTION_LABELS = ('opportunity info', 'opportunity information', 'opportunity details', 'opp info')
DESCRIPTION_LABELS = (
    'opportunity description', 'description', 'details', 'notes', 'use case',
    'requirements', 'pain points',
)

# Generic labels score below the specific ones in their group.
_GENERIC_LABELS = frozenset({'contact', 'email', 'e-mail', 'phone', 'direct', 'cell', 'mobile', 'tel', 'office', 'company'})

SECTION_HEADERS = {
    'partner': ('partner', 'partner info', 'partner information'),
    'customer_company': ('customer company', 'customer company info', 'end user', 'end user info'),
    'customer_contact': ('customer contact', 'customer contact info', 'contact info'),
    'opportunity': ('opportunity', 'opportunity info', 'opp info', 'opp'),
}

# Labels that only end the previous label's value.
_TERMINATOR_LABELS = (
    'from', 'sent', 'date', 'to', 'cc', 'subject', 'reply-to',
    'partner info', 'customer company info', 'customer contact info', 'contact info',
    'end user info', 'opportunity',
)

_ALL_LABELS = tuple(
    sorted(
        {
            *PARTNER_NAME_LABELS, *PARTNER_LINE_LABELS, *PARTNER_COMPANY_LABELS,
            *PARTNER_EMAIL_LABELS, *PARTNER_PHONE_LABELS, *DISTRIBUTOR_LABELS,
            *TSD_CONTACT_LABELS, *TSD_EMAIL_LABELS, *CUSTOMER_COMPANY_LABELS,
            *CUSTOMER_LINE_LABELS, *CUSTOMER_CONTACT_LABELS, *JOB_TITLE_LABELS,
            *CUSTOMER_EMAIL_LABELS, *CUSTOMER_PHONE_LABELS, *ADDRESS_LABELS,
            *CITY_LABELS, *STATE_LABELS, *POSTAL_LABELS, *COUNTRY_LABELS,
            *AGENT_COUNT_LABELS, *TIMELINE_LABELS, *DEAL_VALUE_LABELS,
            *SOLUTION_LABELS, *OPPORTUNITY_SECTION_LABELS, *DESCRIPTION_LABELS,
            *_TERMINATOR_LABELS,
        },
        key=len,
        reverse=True,
    )
)


# =============================================================================
# Shared patterns
# =============================================================================

EMAIL_PATTERN = re.compile(
    r'(?<![\w.%+-])[\w.%+-]{1,64}@[\w-]{1,63}(?:\.[\w-]{1,63}){0,8}\.[A-Za-z]{2,24}'
)
PHONE_PATTERN = re.compile(
    r'(?<![\w.])(?:\+?1[\s.-]?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}'
    r'(?:\s*(?:x|ext\.?)\s*\d{1,5})?(?!\d)'
)

_LABEL_PATTERN = re.compile(
    r'(?<![\w#@.-])(?P<label>'
    + '|'.join(re.escape(label).replace(r'\ ', r'\s+') for label in _ALL_LABELS)
    + r')(?P<sep>\s*:|\s+[-–]\s)\s*',
    re.IGNORECASE,
)
_SENTENCE_END = re.compile(r'(?<=[a-z0-9)]{2})[.!?](?=\s+[A-Z]|\s*$)')
_BANNER = re.compile(r'-{3,}|_{5,}|\bOn\s.{5,120}?\swrote:')
_SIGN_OFF = re.compile(
    r'(?<![\w-])(?:Thanks|Thank you|Many thanks|Best regards|Kind regards|Warm regards|'
    r'Regards|Sincerely|Cheers|Best,)'
)
_LABEL_LINE = re.compile(r'^[A-Z][A-Za-z#/& -]{1,30}:\s')
_FROM_HEADER = re.compile(r'(?<![\w-])From:', re.IGNORECASE)

_PLACEHOLDERS = frozenset({'n/a', 'na', 'tbd', 'tba', 'unknown', 'none', '-', '?', 'pending'})
_STRIP_CHARS = ' \t,;:|-–*"\'()[]<>'

_COMPANY_SUFFIXES = (
    r'Inc|LLC|L\.L\.C|Corp|Corporation|Co|Ltd|Limited|LLP|LP|PLC|Group|Holdings|Partners|'
    r'Consulting|Solutions|Advisors|Advisory|Technologies|Technology|Communications|'
    r'Systems|Services|Networks|Enterprises|Industries|Labs|Agency|Health|Healthcare|'
    r'Insurance|Bank|Retail|Logistics'
)
_COMPANY_SUFFIX = re.compile(rf'\b(?:{_COMPANY_SUFFIXES})\b')
_SIGNATURE_COMPANY = re.compile(
    rf"(?<![\w&'’.-])(?:[A-Z][\w&'’.-]{{0,40}}\s+){{1,4}}(?:{_COMPANY_SUFFIXES})\b\.?"
)
_JOB_TITLE = re.compile(
    r'\b(?:ceo|cto|cio|coo|cfo|cmo|cxo|vp|svp|evp|avp|vice president|president|director|'
    r'manager|head of|chief|officer|lead|supervisor|owner|founder|coordinator|'
    r'specialist|administrator|executive|analyst|engineer|principal)\b',
    re.IGNORECASE,
)
_NAME_WORD = r"[A-Z][a-zA-Z'’-]*\.?"
_PERSON = re.compile(rf'^(?:(?:Mr|Mrs|Ms|Dr)\.?\s+)?{_NAME_WORD}(?:\s+{_NAME_WORD}){{1,3}}$')
_HONORIFIC = re.compile(r'^(?:Mr|Mrs|Ms|Dr)\.?\s+')

US_STATES = frozenset(
    'AL AK AZ AR CA CO CT DE DC FL GA HI ID IL IN IA KS KY LA ME MD MA MI MN MS MO MT NE NV NH '
    'NJ NM NY NC ND OH OK OR PA RI SC SD TN TX UT VT VA WA WV WI WY PR'.split()
)
_CITY_STATE_ZIP = re.compile(
    r"(?<![\w.'-])(?P<city>[A-Z][a-zA-Z.'-]{0,40}(?:\s+[A-Z][a-zA-Z.'-]{0,40}){0,2}),?\s+"
    r'(?P<state>[A-Z]{2})\s+(?P<zip>\d{5}(?:-\d{4})?)\b'
)
_STREET = re.compile(
    r"\b\d{1,6}\s+(?:[NSEW]\.?\s+)?(?:[A-Z0-9][\w.'-]{0,40}\s+){0,4}"
    r'(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Drive|Dr|Lane|Ln|Way|Court|Ct|'
    r'Place|Pl|Parkway|Pkwy|Highway|Hwy|Circle|Cir|Plaza|Square|Sq|Terrace|Trail)\b\.?'
    r'(?:,?\s*(?:Suite|Ste\.?|Unit|Floor|Fl\.?|#)\s*[\w-]+)?'
)
_COUNTRY = re.compile(r'\b(?P<country>USA|U\.S\.A\.?|United States(?: of America)?|Canada)\b')

_COUNT_NUMBER = r'(?<![\d,])(?P<{0}>\d{{1,3}}(?:,\d{{3}}){{1,3}}|\d{{1,7}}(?:\.\d{{1,3}})?)\s*(?P<{0}_k>[kK]\b)?'
_COUNT_QUALIFIER = (
    r'(?P<qual>about|approximately|approx\.?|around|roughly|nearly|close to|'
    r'over|more than|at least|under|less than|fewer than|up to|~|>|<)?\s*'
)
_COUNT_UNITS = (
    r'\s*(?:agents?|seats?|reps|representatives|users|licen[cs]es|csrs?|associates|'
    r'contact center agents)\b'
)
_COUNT_RANGE = _COUNT_NUMBER.format('lo') + r'\s*(?:-|–|to)\s*' + _COUNT_NUMBER.format('hi')
_COUNT_SINGLE = _COUNT_QUALIFIER + _COUNT_NUMBER.format('n') + r'\s*(?P<plus>\+)?'
COUNT_RANGE_WITH_UNIT = re.compile(_COUNT_RANGE + r'\s*\+?' + _COUNT_UNITS, re.IGNORECASE)
COUNT_SINGLE_WITH_UNIT = re.compile(_COUNT_SINGLE + _COUNT_UNITS, re.IGNORECASE)
_COUNT_RANGE_BARE = re.compile(_COUNT_RANGE, re.IGNORECASE)
_COUNT_SINGLE_BARE = re.compile(_COUNT_SINGLE, re.IGNORECASE)

_DURATION = re.compile(
    r'(?<![\d.])(?P<n>\d{1,4}(?:\.\d{1,2})?)(?:\s*(?:-|–|to)\s*(?P<m>\d{1,4}(?:\.\d{1,2})?))?\s*(?P<plus>\+)?\s*'
    r'(?P<unit>days?|weeks?|wks?|months?|mos?|quarters?|years?|yrs?)\b',
    re.IGNORECASE,
)
_DURATION_IN_TEXT = re.compile(
    r'\b(?:within|in|next|over the next|about|approximately|around|inside of)\s+'
    r'(?:the\s+)?(?:next\s+)?' + _DURATION.pattern,
    re.IGNORECASE,
)
_MONTHS_PER_UNIT = {'d': 1 / 30, 'w': 12 / 52, 'm': 1.0, 'q': 3.0, 'y': 12.0}

CURRENCY_PATTERN = re.compile(
    r'\$\s?\d[\d,]{0,20}(?:\.\d{1,2})?\s*(?:[kKmM]\b|million|thousand)?'
    r'(?:\s*(?:/|per)\s*(?:month|mo|year|yr|annum|annually))?'
)

_SUBJECT_PREFIX = re.compile(r'^(?:(?:fwd?|fw|re)\s*:\s*)+', re.IGNORECASE)
_SUBJECT_COMPANY = re.compile(
    r'\b(?:deal registration|registration|new deal|deal|opportunity|referral|lead)'
    r'\s*(?:[-:–]|for)\s*(?P<company>[^|:]{2,80}?)\s*(?:$|\||\s[-–]\s)',
    re.IGNORECASE,
)

_PASSING_ALONG = re.compile(
    r'passing (?:this|it) along|from one of my partners|from my partner|'
    r'one of our partners|on behalf of (?:my|our) partner',
    re.IGNORECASE,
)


# =============================================================================
# Label index
# =============================================================================


@dataclass(frozen=True)
class LabelHit:
    """
    One ``Label:`` occurrence in the normalized text.

    ``value`` stops at the next known label, a forward banner, a sign-off, a
    sentence end or LABEL_VALUE_MAX_CHARS. ``block`` ignores sentence ends,
    for free-text labels like descriptions.
    """

    label: str
    start: int
    value_start: int
    value: str
    block: str


def _cut(text: str, *patterns: re.Pattern) -> str:
    end = len(text)
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.start() < end:
            end = match.start()
    return text[:end]


def clean_value(value: str | None) -> str | None:
    """Trim punctuation around a captured value; placeholders become None."""
    if not value:
        return None
    cleaned = value.strip(_STRIP_CHARS).strip()
    if not cleaned or cleaned.lower() in _PLACEHOLDERS:
        return None
    return cleaned


class LabelIndex:
    """All label occurrences in a text, in text order."""

    def __init__(self, text: str):
        self.hits: list[LabelHit] = []
        matches = []
        for match in _LABEL_PATTERN.finditer(text):
            # "Label - value" only counts for capitalized labels
            if '-' in match.group('sep') or '–' in match.group('sep'):
                if not match.group('label')[0].isupper():
                    continue
            matches.append(match)

        for i, match in enumerate(matches):
            end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
            block = _cut(text[match.end():end], _BANNER, _SIGN_OFF)
            value = _cut(block, _SENTENCE_END)[:LABEL_VALUE_MAX_CHARS]
            self.hits.append(
                LabelHit(
                    label=' '.join(match.group('label').lower().split()),
                    start=match.start(),
                    value_start=match.end(),
                    value=value.strip(),
                    block=block.strip(),
                )
            )

    def find(self, labels: Iterable[str]) -> Iterator[LabelHit]:
        """Hits with a usable value, grouped by label in the given priority order."""
        for label in labels:
            for hit in self.hits:
                if hit.label == label and clean_value(hit.value):
                    yield hit

    def first(self, labels: Iterable[str]) -> LabelHit | None:
        return next(self.find(labels), None)


def label_confidence(label: str, specific: int, generic: int | None = None) -> int:
    if label in _GENERIC_LABELS:
        return generic if generic is not None else specific - 5
    return specific


# =============================================================================
# Extraction context
# =============================================================================


def _unique(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for value in values:
        key = value.lower()
        if key not in seen:
            seen.add(key)
            result.append(value)
    return result


@dataclass
class ExtractionContext:
    """Everything the extractors may look at for one email."""

    text: str
    vocabulary: Vocabulary
    chain: ForwardChain
    internal_domain: str | None = None
    lines: list[str] = field(default_factory=list)
    sender_email: str | None = None
    sender_name: str | None = None
    subject: str | None = None
    description_max_chars: int = 500

    labels: LabelIndex = field(init=False)
    emails: list[str] = field(init=False)
    phones: list[str] = field(init=False)

    def __post_init__(self):
        self.labels = LabelIndex(self.text)
        self.emails = _unique(EMAIL_PATTERN.findall(self.text))
        self.phones = _unique(m.group(0).strip() for m in PHONE_PATTERN.finditer(self.text))

    def is_internal(self, value: str | None) -> bool:
        return is_internal_address(value, self.internal_domain)

    def find_labels(self, labels: Iterable[str], allow_internal: bool = False) -> Iterator[LabelHit]:
        """Label hits, skipping values that name an internal address."""
        for hit in self.labels.find(labels):
            if allow_internal or not self.is_internal(hit.value):
                yield hit

    def first_label(self, labels: Iterable[str], allow_internal: bool = False) -> LabelHit | None:
        return next(self.find_labels(labels, allow_internal), None)

    def is_distributor_email(self, email: str | None) -> bool:
        return self.vocabulary.distributor_for_email(email) is not None

    def is_outside_email(self, email: str | None) -> bool:
        """An address that may belong to a partner or customer."""
        return bool(email) and not self.is_internal(email) and not self.is_distributor_email(email)

    @property
    def sender_emails(self) -> set[str]:
        """Lowercased addresses seen in From: positions (direct or forwarded)."""
        emails = {h.email.lower() for h in self.chain.headers if h.email}
        if self.sender_email:
            emails.add(self.sender_email.lower())
        return emails

    @property
    def subjects(self) -> list[str]:
        subjects = [self.subject, self.chain.original_subject]
        return [_SUBJECT_PREFIX.sub('', s).strip() for s in subjects if s]


# =============================================================================
# Value classification helpers
# =============================================================================


def is_job_title(value: str) -> bool:
    return bool(_JOB_TITLE.search(value))


def is_company_name(value: str) -> bool:
    return bool(_COMPANY_SUFFIX.search(value))


def is_person_name(value: str) -> bool:
    """Two to four capitalized words that read as neither a company nor a title."""
    return bool(_PERSON.match(value)) and not is_company_name(value) and not is_job_title(value)


def split_name(full_name: str) -> tuple[str | None, str | None]:
    """'Dr. Derek J. Foster' -> ('Derek', 'J. Foster')."""
    words = _HONORIFIC.sub('', full_name.strip()).split()
    if not words:
        return None, None
    return words[0], ' '.join(words[1:]) or None


@dataclass
class ContactParts:
    """Pieces recovered from a one-line contact description."""

    name: str | None = None
    title: str | None = None
    company: str | None = None
    email: str | None = None
    phone: str | None = None


def split_contact_line(value: str) -> ContactParts:
    """
    Break 'Derek Foster, VP Operations, Pinnacle Retail Group <d@p.com>' into parts.

    The first person-like piece is the name, the first title-like piece the
    job title; of what is left, a piece with a company suffix is preferred.
    """
    parts = ContactParts()
    email = EMAIL_PATTERN.search(value)
    if email:
        parts.email = email.group(0)
    phone = PHONE_PATTERN.search(value)
    if phone:
        parts.phone = phone.group(0).strip()

    rest = PHONE_PATTERN.sub(' ', EMAIL_PATTERN.sub(' ', value))
    rest = re.sub(r'mailto:|[<>()\[\]]', ' ', rest)
    pieces = [clean_value(p) for p in re.split(r'\s*(?:[,;|/]|\s[-–]\s)\s*', rest)]

    leftovers = []
    for piece in filter(None, pieces):
        piece = piece.replace('_', ' ')
        if parts.name is None and is_person_name(piece):
            parts.name = piece
        elif parts.title is None and is_job_title(piece) and not is_company_name(piece):
            parts.title = piece
        else:
            leftovers.append(piece)

    if leftovers:
        companies = [p for p in leftovers if is_company_name(p)]
        parts.company = companies[0] if companies else leftovers[0]
    return parts


def company_from_email(
    email: str | None, vocabulary: Vocabulary, internal_domain: str | None
) -> str | None:
    """
    Guess a company name from an address's domain ('jane@acme-health.com' -> 'Acme-health').

    Returns None for public mail providers, internal and distributor domains.
    """
    if not email or '@' not in email:
        return None
    domain = email.rsplit('@', 1)[1].lower()
    if is_internal_address(domain, internal_domain) or vocabulary.distributor_for_email(email):
        return None
    labels = domain.split('.')
    if len(labels) > 2 and labels[0] in ('mail', 'email', 'smtp', 'us', 'corp'):
        labels = labels[1:]
    if vocabulary.is_public_provider(labels[0]):
        return None
    return labels[0].capitalize()


@lru_cache(maxsize=512)
def _term_pattern(term: str) -> re.Pattern:
    # Not inside an address or a domain name
    return re.compile(
        r'(?<![\w@.-])' + re.escape(term).replace(r'\ ', r'\s+') + r'(?![\w@-]|\.\w)',
        re.IGNORECASE,
    )


def find_term(text: str, term: str) -> re.Match | None:
    return _term_pattern(term).search(text)


# =============================================================================
# Bucketing
# =============================================================================


def _parse_number(raw: str, k_suffix: str | None) -> float:
    number = float(raw.replace(',', ''))
    return number * 1000 if k_suffix else number


def parse_agent_count(value: str, require_unit: bool = True) -> tuple[float, str] | None:
    """
    Read a head count from free text.

    Returns:
        (count, kind) with kind 'range' or 'number'; a range yields its midpoint
    """
    range_pattern = COUNT_RANGE_WITH_UNIT if require_unit else _COUNT_RANGE_BARE
    single_pattern = COUNT_SINGLE_WITH_UNIT if require_unit else _COUNT_SINGLE_BARE

    match = range_pattern.search(value)
    if match:
        lo = _parse_number(match.group('lo'), match.group('lo_k'))
        hi = _parse_number(match.group('hi'), match.group('hi_k') or match.group('lo_k'))
        if hi >= lo:
            return (lo + hi) / 2, 'range'

    match = single_pattern.search(value)
    if not match:
        return None
    n = _parse_number(match.group('n'), match.group('n_k'))
    qualifier = (match.group('qual') or '').lower()
    if match.group('plus') or qualifier in ('over', 'more than', '>'):
        n += 1
    elif qualifier in ('under', 'less than', 'fewer than', '<'):
        n -= 1
    return n, 'number'


def bucket_for_count(count: float, buckets: list[CountBucket]) -> str | None:
    """First bucket (smallest first) containing the rounded count."""
    n = int(count + 0.5)
    for bucket in buckets:
        if bucket.contains(n):
            return bucket.label
    return None


def months_from_duration(match: re.Match) -> float:
    upper = float(match.group('m') or match.group('n'))
    months = upper * _MONTHS_PER_UNIT[match.group('unit')[0].lower()]
    if match.group('plus'):
        months += 0.5
    return months


def bucket_for_months(months: float, buckets: list[TimelineBucket]) -> str | None:
    """First bucket (soonest first) whose upper bound covers ``months``."""
    for bucket in buckets:
        if bucket.max_months is None or months <= bucket.max_months:
            return bucket.label
    return None


def timeline_from_text(value: str, buckets: list[TimelineBucket], labeled: bool) -> str | None:
    """Snap a duration or a bucket phrase onto a timeline bucket label."""
    for bucket in buckets:
        if bucket.label.lower() in value.lower():
            return bucket.label

    duration = (_DURATION if labeled else _DURATION_IN_TEXT).search(value)
    if duration:
        return bucket_for_months(months_from_duration(duration), buckets)

    for bucket in buckets:
        if any(find_term(value, phrase) for phrase in bucket.phrases):
            return bucket.label
    return None


# =============================================================================
# Sections (header line followed by bare value lines)
# =============================================================================

_ALL_SECTION_HEADERS = frozenset(h for headers in SECTION_HEADERS.values() for h in headers)


def _section_header(line: str) -> str | None:
    key = ' '.join(line.strip().rstrip(':-– ').lower().split())
    return key if key in _ALL_SECTION_HEADERS else None


def find_section(lines: list[str], headers: tuple[str, ...]) -> list[str]:
    """Value lines under the first matching section header, or []."""
    for i, line in enumerate(lines):
        if _section_header(line) not in headers:
            continue
        body = []
        for following in lines[i + 1:]:
            if (
                _section_header(following)
                or _LABEL_LINE.match(following)
                or _BANNER.match(following)
                or _SIGN_OFF.match(following)
                or len(body) >= SECTION_MAX_LINES
            ):
                break
            body.append(following.lstrip('*• ').strip())
        body = [value for value in body if value]
        if body:
            return body
    return []


def extract_sections(ctx: ExtractionContext) -> FieldCandidates:
    """Structured layouts: Partner / Customer Company / Customer Contact / Opportunity."""
    partner = find_section(ctx.lines, SECTION_HEADERS['partner'])
    for line in partner:
        email = EMAIL_PATTERN.search(line)
        phone = PHONE_PATTERN.search(line)
        if email:
            yield 'ta_email', Candidate(email.group(0), 90, 'section')
        elif phone:
            yield 'ta_phone', Candidate(phone.group(0).strip(), 85, 'section')
        elif is_person_name(line.replace('_', ' ')):
            yield 'ta_full_name', Candidate(line.replace('_', ' '), 85, 'section')
        else:
            yield 'ta_company_name', Candidate(line, 85, 'section')

    company = find_section(ctx.lines, SECTION_HEADERS['customer_company'])
    street_lines = []
    for i, line in enumerate(company):
        if i == 0:
            yield 'customer_company_name', Candidate(line, 90, 'section')
            continue
        csz = _CITY_STATE_ZIP.fullmatch(line)
        if csz and csz.group('state') in US_STATES:
            yield 'customer_city', Candidate(csz.group('city'), 85, 'section')
            yield 'customer_state', Candidate(csz.group('state'), 85, 'section')
            yield 'customer_postal_code', Candidate(csz.group('zip'), 85, 'section')
        else:
            street_lines.append(line)
    if street_lines:
        yield 'customer_street_address', Candidate(', '.join(street_lines), 85, 'section')

    contact = find_section(ctx.lines, SECTION_HEADERS['customer_contact'])
    for i, line in enumerate(contact):
        email = EMAIL_PATTERN.search(line)
        phone = PHONE_PATTERN.search(line)
        if email:
            yield 'customer_email', Candidate(email.group(0), 90, 'section')
        elif phone:
            yield 'customer_phone', Candidate(phone.group(0).strip(), 85, 'section')
        elif i == 0 or is_person_name(line):
            first, last = split_name(line)
            if first:
                yield 'customer_first_name', Candidate(first, 90, 'section')
            if last:
                yield 'customer_last_name', Candidate(last, 90, 'section')
        elif is_job_title(line):
            yield 'customer_job_title', Candidate(line, 85, 'section')

    opportunity = find_section(ctx.lines, SECTION_HEADERS['opportunity'])
    if opportunity:
        description = truncate(' '.join(opportunity), ctx.description_max_chars)
        yield 'opportunity_description', Candidate(description, 90, 'section')


# =============================================================================
# Sender roles (forward headers)
# =============================================================================


def _is_passing_along(text: str) -> bool:
    return bool(_PASSING_ALONG.search(text))


def extract_sender_roles(ctx: ExtractionContext) -> FieldCandidates:
    """
    Partner and distributor contact from From: addresses.

    The deepest external, non-distributor sender originated the deal and is
    the partner. Distributor-domain senders are distributor contacts. A more
    recent external forwarder who says they are passing a partner's deal
    along is treated as a distributor contact too, at lower confidence.
    """
    # Most recent first: the direct sender, then forwarded layers in text order
    layers: list[tuple[str | None, str | None, str, int]] = []
    if ctx.sender_email or ctx.sender_name:
        layers.append((ctx.sender_name, ctx.sender_email, ctx.chain.preamble, 85))
    for header in ctx.chain.headers:
        layers.append((header.name, header.email, ctx.chain.segment(header), 90))

    seen: set[str] = set()
    external = []
    for name, email, note, confidence in layers:
        if ctx.is_internal(email) or ctx.is_internal(name):
            continue
        key = (email or name or '').lower()
        if key in seen:
            continue
        seen.add(key)
        external.append((name, email, note, confidence))

    partner_found = False
    for name, email, note, confidence in reversed(external):
        distributor = ctx.vocabulary.distributor_for_email(email)
        if distributor:
            yield 'tsd_name', Candidate(distributor, 90, 'header')
            if name:
                yield 'tsd_contact_name', Candidate(name, 90, 'header')
            if email:
                yield 'tsd_contact_email', Candidate(email, 90, 'header')
        elif not partner_found:
            partner_found = True
            if name:
                yield 'ta_full_name', Candidate(name, confidence, 'header')
            if email:
                yield 'ta_email', Candidate(email, confidence, 'header')
        elif _is_passing_along(note):
            if name:
                yield 'tsd_contact_name', Candidate(name, 60, 'header')
            if email:
                yield 'tsd_contact_email', Candidate(email, 60, 'header')


# =============================================================================
# Partner
# =============================================================================


def extract_partner_labels(ctx: ExtractionContext) -> FieldCandidates:
    """Labeled partner values; these refine header-derived partner fields."""
    for hit in ctx.find_labels(PARTNER_NAME_LABELS):
        parts = split_contact_line(hit.value)
        name = parts.name
        if name is None:
            plain = clean_value(hit.value)
            if plain and not re.search(r'[\d@]', plain) and len(plain.split()) <= 4:
                name = plain
        if name:
            yield 'ta_full_name', Candidate(name, 75, 'label', refines=True)
        if parts.email and ctx.is_outside_email(parts.email):
            yield 'ta_email', Candidate(parts.email, 75, 'label')
        if parts.phone:
            yield 'ta_phone', Candidate(parts.phone, 75, 'label')

    for hit in ctx.find_labels(PARTNER_LINE_LABELS):
        distributor = _distributor_in(hit.value, ctx.vocabulary)
        if distributor:
            # "Partner: Telarus" names the distributor, not the referring partner
            yield 'tsd_name', Candidate(distributor, 90, 'label')
            continue
        parts = split_contact_line(hit.value)
        if parts.name:
            yield 'ta_full_name', Candidate(parts.name, 75, 'label', refines=True)
        if parts.company:
            yield 'ta_company_name', Candidate(parts.company, 80, 'label', refines=True)
        if parts.email and ctx.is_outside_email(parts.email):
            yield 'ta_email', Candidate(parts.email, 75, 'label')
        if parts.phone:
            yield 'ta_phone', Candidate(parts.phone, 75, 'label')

    for hit in ctx.find_labels(PARTNER_COMPANY_LABELS):
        company = clean_value(EMAIL_PATTERN.sub(' ', hit.value))
        if company:
            yield 'ta_company_name', Candidate(company, 80, 'label', refines=True)

    for hit in ctx.find_labels(PARTNER_EMAIL_LABELS):
        email = EMAIL_PATTERN.search(hit.value)
        if email and ctx.is_outside_email(email.group(0)):
            yield 'ta_email', Candidate(email.group(0), 80, 'label')

    for hit in ctx.find_labels(PARTNER_PHONE_LABELS):
        phone = PHONE_PATTERN.search(hit.value)
        if phone:
            yield 'ta_phone', Candidate(phone.group(0).strip(), 80, 'label')


def extract_partner_signature(ctx: ExtractionContext, record: ExtractedRecord) -> FieldCandidates:
    """Company and phone from the partner's sign-off block."""
    name = record.ta_full_name
    if not name:
        return
    first_name, _ = split_name(name)
    for candidate_name in _unique(n for n in (name, first_name) if n):
        for match in re.finditer(re.escape(candidate_name), ctx.text):
            before = ctx.text[max(0, match.start() - 40):match.start()]
            if not _SIGN_OFF.search(before):
                continue
            window = ctx.text[match.end():match.end() + SIGNATURE_WINDOW_CHARS]
            window = _cut(window, _BANNER, _FROM_HEADER)
            company = _SIGNATURE_COMPANY.search(window)
            if company:
                yield 'ta_company_name', Candidate(company.group(0).strip(), 70, 'pattern')
            phone = PHONE_PATTERN.search(window)
            if phone:
                yield 'ta_phone', Candidate(phone.group(0).strip(), 75, 'pattern')
            return


# =============================================================================
# Distributor (TSD)
# =============================================================================


def _distributor_in(value: str, vocabulary: Vocabulary) -> str | None:
    resolved = vocabulary.resolve_distributor(clean_value(value))
    if resolved and resolved != vocabulary.other_distributor:
        return resolved
    for entry in vocabulary.distributors:
        if any(find_term(value, term) for term in entry.terms):
            return entry.name
    return None


def find_distributor_mention(text: str, vocabulary: Vocabulary) -> str | None:
    """The vocabulary distributor mentioned earliest in ``text``."""
    best: tuple[int, str] | None = None
    for entry in vocabulary.distributors:
        for term in entry.terms:
            match = find_term(text, term)
            if match and (best is None or match.start() < best[0]):
                best = (match.start(), entry.name)
    return best[1] if best else None


def extract_distributor(ctx: ExtractionContext) -> FieldCandidates:
    """Distributor name and contact from labels and vocabulary mentions."""
    for hit in ctx.find_labels(DISTRIBUTOR_LABELS):
        distributor = _distributor_in(hit.value, ctx.vocabulary)
        if distributor:
            yield 'tsd_name', Candidate(distributor, 90, 'label')
        else:
            yield 'tsd_name', Candidate(ctx.vocabulary.other_distributor, 50, 'label')
        parts = split_contact_line(hit.value)
        if parts.name:
            yield 'tsd_contact_name', Candidate(parts.name, 70, 'label')
        if parts.email and not ctx.is_internal(parts.email):
            yield 'tsd_contact_email', Candidate(parts.email, 75, 'label')

    for subject in ctx.subjects:
        mentioned = find_distributor_mention(subject, ctx.vocabulary)
        if mentioned:
            yield 'tsd_name', Candidate(mentioned, 75, 'vocabulary')
    mentioned = find_distributor_mention(ctx.text, ctx.vocabulary)
    if mentioned:
        yield 'tsd_name', Candidate(mentioned, 70, 'vocabulary')

    for hit in ctx.find_labels(TSD_CONTACT_LABELS):
        parts = split_contact_line(hit.value)
        name = parts.name or (clean_value(hit.value) if not parts.email else None)
        if name:
            yield 'tsd_contact_name', Candidate(name, 75, 'label')
        if parts.email and not ctx.is_internal(parts.email):
            yield 'tsd_contact_email', Candidate(parts.email, 80, 'label')

    for hit in ctx.find_labels(TSD_EMAIL_LABELS):
        email = EMAIL_PATTERN.search(hit.value)
        if email and not ctx.is_internal(email.group(0)):
            yield 'tsd_contact_email', Candidate(email.group(0), 80, 'label')


# =============================================================================
# Customer
# =============================================================================


def _customer_name_candidates(name: str, confidence: int, rule: str) -> FieldCandidates:
    first, last = split_name(name)
    if first:
        yield 'customer_first_name', Candidate(first, confidence, rule)
    if last:
        yield 'customer_last_name', Candidate(last, confidence, rule)


def _is_customer_email(ctx: ExtractionContext, email: str) -> bool:
    return ctx.is_outside_email(email) and email.lower() not in ctx.sender_emails


def extract_customer_labels(ctx: ExtractionContext) -> FieldCandidates:
    """Customer company, contact, title, email and phone from labels."""
    for hit in ctx.find_labels(CUSTOMER_COMPANY_LABELS):
        company = clean_value(EMAIL_PATTERN.sub(' ', hit.value))
        if company:
            confidence = label_confidence(hit.label, 80)
            yield 'customer_company_name', Candidate(company, confidence, 'label')

    for hit in ctx.find_labels(CUSTOMER_LINE_LABELS):
        parts = split_contact_line(hit.value)
        pieces = [p for p in (parts.name, parts.title, parts.company) if p]
        if len(pieces) == 1 and parts.name:
            # A lone person-like value is ambiguous: a contact or a company
            yield from _customer_name_candidates(parts.name, 65, 'label')
            yield 'customer_company_name', Candidate(parts.name, 50, 'label')
        else:
            if parts.name:
                yield from _customer_name_candidates(parts.name, 70, 'label')
            if parts.title:
                yield 'customer_job_title', Candidate(parts.title, 65, 'label')
            if parts.company:
                yield 'customer_company_name', Candidate(parts.company, 80, 'label')
        if parts.email and _is_customer_email(ctx, parts.email):
            yield 'customer_email', Candidate(parts.email, 80, 'label')
        if parts.phone:
            yield 'customer_phone', Candidate(parts.phone, 75, 'label')

    for hit in ctx.find_labels(CUSTOMER_CONTACT_LABELS):
        parts = split_contact_line(hit.value)
        if parts.name:
            confidence = label_confidence(hit.label, 75, 60)
            yield from _customer_name_candidates(parts.name, confidence, 'label')
        if parts.title:
            yield 'customer_job_title', Candidate(parts.title, 70, 'label')
        if parts.email and _is_customer_email(ctx, parts.email):
            yield 'customer_email', Candidate(parts.email, 80, 'label')
        if parts.phone:
            yield 'customer_phone', Candidate(parts.phone, 75, 'label')

    for hit in ctx.find_labels(JOB_TITLE_LABELS):
        title = clean_value(hit.value)
        if title and not EMAIL_PATTERN.search(title):
            yield 'customer_job_title', Candidate(title, 75, 'label')

    for hit in ctx.find_labels(CUSTOMER_EMAIL_LABELS):
        email = EMAIL_PATTERN.search(hit.value)
        if email and _is_customer_email(ctx, email.group(0)):
            confidence = label_confidence(hit.label, 80)
            yield 'customer_email', Candidate(email.group(0), confidence, 'label')

    for hit in ctx.find_labels(CUSTOMER_PHONE_LABELS):
        phone = PHONE_PATTERN.search(hit.value)
        if phone:
            confidence = label_confidence(hit.label, 80, 70)
            yield 'customer_phone', Candidate(phone.group(0).strip(), confidence, 'label')


def extract_subject_company(ctx: ExtractionContext) -> FieldCandidates:
    """'Deal registration - Pinnacle Retail Group' style subjects."""
    for subject in ctx.subjects:
        match = _SUBJECT_COMPANY.search(subject)
        if not match:
            continue
        company = clean_value(match.group('company'))
        if company and not find_distributor_mention(company, ctx.vocabulary):
            yield 'customer_company_name', Candidate(company, 50, 'pattern')


def extract_company_from_domains(ctx: ExtractionContext, record: ExtractedRecord) -> FieldCandidates:
    """Company-name guesses from partner and customer email domains."""
    partner_company = company_from_email(record.ta_email, ctx.vocabulary, ctx.internal_domain)
    if partner_company:
        yield 'ta_company_name', Candidate(partner_company, 60, 'pattern')
    customer_company = company_from_email(record.customer_email, ctx.vocabulary, ctx.internal_domain)
    if customer_company:
        yield 'customer_company_name', Candidate(customer_company, 55, 'pattern')


# =============================================================================
# Address
# =============================================================================


def _address_from_value(value: str, confidence: int, rule: str) -> FieldCandidates:
    csz = _CITY_STATE_ZIP.search(value)
    if csz and csz.group('state') in US_STATES:
        street = clean_value(value[:csz.start()])
        if street:
            yield 'customer_street_address', Candidate(street, confidence, rule)
        yield 'customer_city', Candidate(csz.group('city'), confidence, rule)
        yield 'customer_state', Candidate(csz.group('state'), confidence, rule)
        yield 'customer_postal_code', Candidate(csz.group('zip'), confidence, rule)
        return
    street = _STREET.search(value)
    if street:
        yield 'customer_street_address', Candidate(street.group(0).strip(), confidence, rule)


def extract_address(ctx: ExtractionContext) -> FieldCandidates:
    """Customer postal address from labels, then street and City, ST ZIP patterns."""
    hit = ctx.first_label(ADDRESS_LABELS)
    if hit:
        yield from _address_from_value(hit.value, 75, 'label')

    for labels, field_name in (
        (CITY_LABELS, 'customer_city'),
        (STATE_LABELS, 'customer_state'),
        (POSTAL_LABELS, 'customer_postal_code'),
        (COUNTRY_LABELS, 'customer_country'),
    ):
        hit = ctx.first_label(labels)
        value = clean_value(hit.value) if hit else None
        if value:
            yield field_name, Candidate(value, 75, 'label')

    street = _STREET.search(ctx.text)
    if street:
        yield 'customer_street_address', Candidate(street.group(0).strip(), 55, 'pattern')

    us_address = False
    for csz in _CITY_STATE_ZIP.finditer(ctx.text):
        if csz.group('state') not in US_STATES:
            continue
        us_address = True
        yield 'customer_city', Candidate(csz.group('city'), 60, 'pattern')
        yield 'customer_state', Candidate(csz.group('state'), 60, 'pattern')
        yield 'customer_postal_code', Candidate(csz.group('zip'), 60, 'pattern')
        break

    country = _COUNTRY.search(ctx.text)
    if country:
        name = 'Canada' if country.group('country') == 'Canada' else 'USA'
        yield 'customer_country', Candidate(name, 50, 'pattern')
    elif us_address:
        yield 'customer_country', Candidate('USA', 45, 'pattern')


# =============================================================================
# Opportunity
# =============================================================================


def extract_agent_count(ctx: ExtractionContext) -> FieldCandidates:
    """Agent-count bucket; labeled values may omit the unit."""
    buckets = ctx.vocabulary.agent_count_buckets
    for hit in ctx.find_labels(AGENT_COUNT_LABELS):
        parsed = parse_agent_count(hit.value, require_unit=False)
        if parsed:
            count, kind = parsed
            label = bucket_for_count(count, buckets)
            if label:
                yield 'agent_count', Candidate(label, 85 if kind == 'range' else 75, 'label')
                break

    parsed = parse_agent_count(ctx.text, require_unit=True)
    if parsed:
        count, kind = parsed
        label = bucket_for_count(count, buckets)
        if label:
            yield 'agent_count', Candidate(label, 65 if kind == 'range' else 60, 'pattern')


def extract_timeline(ctx: ExtractionContext) -> FieldCandidates:
    buckets = ctx.vocabulary.timeline_buckets
    hit = ctx.first_label(TIMELINE_LABELS)
    if hit:
        label = timeline_from_text(hit.value, buckets, labeled=True)
        if label:
            yield 'implementation_timeline', Candidate(label, 80, 'label')
            return
    label = timeline_from_text(ctx.text, buckets, labeled=False)
    if label:
        yield 'implementation_timeline', Candidate(label, 60, 'pattern')


def extract_solutions(ctx: ExtractionContext) -> FieldCandidates:
    """Solution tags whose keywords appear anywhere; higher confidence when labeled."""
    labeled = ' '.join(hit.block for hit in ctx.find_labels(SOLUTION_LABELS, allow_internal=True))
    haystack = ' '.join([ctx.text, *ctx.subjects])

    tags = []
    in_label = False
    for tag, keywords in ctx.vocabulary.solutions.items():
        if any(find_term(haystack, keyword) for keyword in keywords):
            tags.append(tag)
            if labeled and any(find_term(labeled, keyword) for keyword in keywords):
                in_label = True
    if tags:
        yield 'solutions_interested', Candidate(tags, 75 if in_label else 60, 'vocabulary')


def extract_deal_value(ctx: ExtractionContext) -> FieldCandidates:
    for hit in ctx.find_labels(DEAL_VALUE_LABELS):
        value = clean_value(hit.value)
        if value and re.search(r'\d', value):
            yield 'deal_value', Candidate(value, 80, 'label')
            return
    money = CURRENCY_PATTERN.search(ctx.text)
    if money:
        yield 'deal_value', Candidate(money.group(0).strip(), 50, 'pattern')


def extract_description(ctx: ExtractionContext) -> FieldCandidates:
    limit = ctx.description_max_chars
    hit = ctx.first_label(OPPORTUNITY_SECTION_LABELS, allow_internal=True)
    if hit:
        # An opportunity section runs past its own inner labels
        section = clean_value(_cut(ctx.text[hit.value_start:], _BANNER, _SIGN_OFF))
        if section:
            yield 'opportunity_description', Candidate(truncate(section, limit), 85, 'label')

    for hit in ctx.find_labels(DESCRIPTION_LABELS, allow_internal=True):
        block = clean_value(hit.block)
        if block:
            yield 'opportunity_description', Candidate(truncate(block, limit), 70, 'label')
            return


# =============================================================================
# Positional fallback
# =============================================================================


def extract_positional_contacts(ctx: ExtractionContext, record: ExtractedRecord) -> FieldCandidates:
    """
    Unlabeled emails and phones, in text order: first to the partner, next to
    the customer. Only fills fields still empty; values already used by any
    field are skipped.
    """
    claimed = set(ctx.sender_emails)
    for name in RECORD_FIELDS:
        value = getattr(record, name)
        if isinstance(value, str):
            claimed.add(value.lower())

    emails = [e for e in ctx.emails if e.lower() not in claimed and ctx.is_outside_email(e)]
    for field_name in ('ta_email', 'customer_email'):
        if emails and not record.is_populated(field_name):
            yield field_name, Candidate(emails.pop(0), 40, 'positional')

    phones = [p for p in ctx.phones if p.lower() not in claimed]
    for field_name, confidence in (('ta_phone', 40), ('customer_phone', 35)):
        if phones and not record.is_populated(field_name):
            yield field_name, Candidate(phones.pop(0), confidence, 'positional')


# =============================================================================
# Rule-priority table
# =============================================================================

Extractor = Callable[[ExtractionContext], FieldCandidates]
RefiningExtractor = Callable[[ExtractionContext, ExtractedRecord], FieldCandidates]

# Applied in order; within equal confidence the earlier candidate stays.
EXTRACTORS: tuple[Extractor, ...] = (
    extract_sender_roles,
    extract_sections,
    extract_partner_labels,
    extract_distributor,
    extract_customer_labels,
    extract_address,
    extract_agent_count,
    extract_timeline,
    extract_solutions,
    extract_deal_value,
    extract_description,
    extract_subject_company,
)

# Run after EXTRACTORS, against the record assembled so far.
REFINING_EXTRACTORS: tuple[RefiningExtractor, ...] = (
    extract_partner_signature,
    extract_company_from_domains,
    extract_positional_contacts,
)
