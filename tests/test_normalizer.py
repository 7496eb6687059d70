"""
Tests for email body normalization.
"""

import pytest

from deal_intake.pipeline.normalizer import normalize_lines, normalize_text, truncate


class TestNormalizeText:
    """One whitespace-normalized line per body."""

    @pytest.mark.parametrize('raw', [None, '', '   '])
    def test_empty(self, raw):
        assert normalize_text(raw) == ''

    def test_plain_text_whitespace_collapsed(self):
        assert normalize_text('Hello\r\n\r\n  there\tfriend  ') == 'Hello there friend'

    def test_html_tags_stripped(self):
        assert normalize_text('<p>Hello</p><p>World</p>') == 'Hello World'

    def test_script_and_style_removed(self):
        html = '<style>.x {color: red}</style><script>var a = 1;</script><div>Body</div>'

        assert normalize_text(html) == 'Body'

    def test_entities_decoded(self):
        assert normalize_text('AT&amp;T&nbsp;Wireless') == 'AT&T Wireless'

    def test_bracketed_address_survives(self):
        text = normalize_text('From: Jessica Hernandez <jhernandez@partner.net>')

        assert text == 'From: Jessica Hernandez <jhernandez@partner.net>'

    def test_html_comment_removed(self):
        assert normalize_text('Keep<!-- drop this -->this') == 'Keep this'

    def test_quote_markers_removed(self):
        assert normalize_text('> > Customer: Acme\n> Phone: 555') == 'Customer: Acme Phone: 555'


class TestNormalizeLines:
    """Line view used by structured section layouts."""

    def test_lines_trimmed_and_empty_dropped(self):
        assert normalize_lines('Partner\n\n   Amy   Ross  \n') == ['Partner', 'Amy Ross']

    def test_html_block_breaks(self):
        assert normalize_lines('<div>Partner</div><div>Amy Ross</div>a<br>b') == [
            'Partner',
            'Amy Ross',
            'a',
            'b',
        ]

    def test_empty(self):
        assert normalize_lines(None) == []


class TestTruncate:
    def test_short_text_untouched(self):
        assert truncate('short', 10) == 'short'

    def test_long_text_marked(self):
        assert truncate('abcdefghij', 4) == 'abcd...'
