"""
Email body normalization.

Strips markup, decodes entities and collapses whitespace. Two views of the
same cleaned body are offered:
- normalize_text: one whitespace-normalized line, what every rule searches
- normalize_lines: the same text split on line breaks, for the structured
  section layouts some distributors send (header line, then bare value lines)
"""

import re
import warnings

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

# "<jane@acme.com>" in plain-text headers is an address, not a tag
_BRACKETED_ADDRESS = re.compile(r'<\s*(?:mailto:)?([^<>\s@]+@[^<>\s]+)\s*>', re.IGNORECASE)
_HTML_COMMENT = re.compile(r'<!--[\s\S]*?-->')
_BLOCK_BREAK = re.compile(r'<br\s*/?>|</(?:p|div|tr|li|h[1-6]|table|blockquote)\s*>', re.IGNORECASE)
_WHITESPACE = re.compile(r'\s+')
_INLINE_WHITESPACE = re.compile(r'[^\S\n]+')
# Reply quoting: "> > text"
_QUOTE_MARKERS = re.compile(r'^[ \t]*(?:>[ \t]?)+', re.MULTILINE)


def _to_plain_text(raw: str) -> str:
    text = _HTML_COMMENT.sub(' ', raw)
    text = _BRACKETED_ADDRESS.sub(r'&lt;\1&gt;', text)
    text = _BLOCK_BREAK.sub(lambda m: m.group(0) + '\n', text)

    with warnings.catch_warnings():
        warnings.simplefilter('ignore', MarkupResemblesLocatorWarning)
        soup = BeautifulSoup(text, 'html.parser')
    for tag in soup(['script', 'style', 'head']):
        tag.decompose()

    text = soup.get_text(' ').replace('\xa0', ' ').replace('\r', '\n')
    return _QUOTE_MARKERS.sub('', text)


def normalize_text(raw: str | None) -> str:
    """
    Clean a raw email body (plain text or HTML) into one whitespace-normalized line.

    Args:
        raw: Email body as received

    Returns:
        Cleaned text; '' for empty input
    """
    if not raw:
        return ''
    return _WHITESPACE.sub(' ', _to_plain_text(raw)).strip()


def normalize_lines(raw: str | None) -> list[str]:
    """Cleaned, non-empty lines of a raw email body, each whitespace-collapsed."""
    if not raw:
        return []
    lines = (_INLINE_WHITESPACE.sub(' ', line).strip() for line in _to_plain_text(raw).split('\n'))
    return [line for line in lines if line]


def truncate(text: str, limit: int) -> str:
    """Cut text to ``limit`` characters, marking the cut with '...'."""
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + '...'
