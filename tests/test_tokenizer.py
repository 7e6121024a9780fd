import io

import pytest

from market_feed.cursor import Position
from market_feed.errors import ErrorCollector, StreamFailure
from market_feed.models import ErrorKind
from market_feed.tokenizer import EndOfStream, EndTag, StartTag, Text, XmlTokenizer


def tokenize(data, chunk_size=64 * 1024, **options):
    errors = ErrorCollector()
    if isinstance(data, str):
        data = data.encode('utf-8')
    tokens = list(XmlTokenizer(io.BytesIO(data), errors, chunk_size=chunk_size, **options))
    return tokens, errors


def describe(tokens):
    """Compact token view: ('<a', '</a', 'text', 'EOF')."""
    result = []
    for token in tokens:
        if isinstance(token, StartTag):
            result.append(f"<{token.name}")
        elif isinstance(token, EndTag):
            result.append(f"</{token.name}")
        elif isinstance(token, Text):
            result.append(token.text)
        else:
            result.append('EOF')
    return result


def text_of(tokens):
    return ''.join(t.text for t in tokens if isinstance(t, Text))


class TestWellFormed:

    def test_tokens_and_positions(self):
        tokens, errors = tokenize('<a x="1"><b>hi</b></a>')

        assert describe(tokens) == ['<a', '<b', 'hi', '</b', '</a', 'EOF']
        assert tokens[0].attrs == {'x': '1'}
        assert tokens[0].position == Position(1, 1)
        assert tokens[1].position == Position(1, 10)
        assert tokens[2].position == Position(1, 13)
        assert tokens[3].position == Position(1, 15)
        assert isinstance(tokens[-1], EndOfStream)
        assert len(errors) == 0

    def test_positions_across_lines(self):
        tokens, _ = tokenize('<a>\n  <b>x</b>\n</a>')
        b = next(t for t in tokens if isinstance(t, StartTag) and t.name == 'b')
        assert b.position == Position(2, 3)

    def test_self_closing_tag_yields_start_and_end(self):
        tokens, errors = tokenize('<a><currency id="RUR" rate="1"/></a>')
        assert describe(tokens) == ['<a', '<currency', '</currency', '</a', 'EOF']
        assert tokens[1].self_closing
        assert tokens[1].attrs == {'id': 'RUR', 'rate': '1'}
        assert len(errors) == 0

    def test_single_quoted_attribute_may_contain_gt(self):
        tokens, errors = tokenize("<a title='x > y'/>")
        assert tokens[0].attrs == {'title': 'x > y'}
        assert len(errors) == 0

    def test_prolog_comments_and_doctype_are_skipped(self):
        tokens, errors = tokenize(
            '<?xml version="1.0"?><!DOCTYPE yml_catalog SYSTEM "shops.dtd"><!-- note --><a/>'
        )
        assert describe(tokens) == ['<a', '</a', 'EOF']
        assert len(errors) == 0

    def test_byte_order_mark_is_dropped(self):
        tokens, errors = tokenize(b'\xef\xbb\xbf<a/>')
        assert tokens[0].position == Position(1, 1)
        assert len(errors) == 0

    def test_text_stream_is_accepted(self):
        errors = ErrorCollector()
        tokens = list(XmlTokenizer(io.StringIO('<a>x</a>'), errors))
        assert describe(tokens) == ['<a', 'x', '</a', 'EOF']

    def test_iteration_stops_after_end_of_stream(self):
        tokenizer = XmlTokenizer(io.BytesIO(b'<a/>'), ErrorCollector())
        assert len(list(tokenizer)) == 3
        assert list(tokenizer) == []


class TestTextDecoding:

    def test_predefined_and_character_references(self):
        tokens, errors = tokenize('<a>x &amp; y &lt; &#65;&#x42;&quot;&apos;&gt;</a>')
        assert text_of(tokens) == 'x & y < AB"\'>'
        assert len(errors) == 0

    def test_attribute_values_are_unescaped(self):
        tokens, _ = tokenize('<a href="/p?a=1&amp;b=2"/>')
        assert tokens[0].attrs['href'] == '/p?a=1&b=2'

    def test_bad_references_are_kept_and_reported(self):
        tokens, errors = tokenize('<a>AT&T &bogus;</a>')
        assert text_of(tokens) == 'AT&T &bogus;'
        assert [e.kind for e in errors] == [ErrorKind.MALFORMED_XML] * 2
        assert (errors.errors[0].line, errors.errors[0].column) == (1, 6)

    def test_html_entities_are_optional(self):
        tokens, errors = tokenize('<a>&nbsp;</a>', html_entities=True)
        assert text_of(tokens) == '\xa0'
        assert len(errors) == 0

        tokens, errors = tokenize('<a>&nbsp;</a>')
        assert text_of(tokens) == '&nbsp;'
        assert len(errors) == 1

    def test_cdata_is_kept_verbatim(self):
        tokens, errors = tokenize('<a><![CDATA[<b>&amp;</b>]]></a>')
        cdata = [t for t in tokens if isinstance(t, Text)]
        assert cdata[0].text == '<b>&amp;</b>'
        assert cdata[0].cdata
        assert len(errors) == 0

    def test_invalid_utf8_is_replaced_and_reported(self):
        tokens, errors = tokenize(b'<a>\xff</a>')
        assert text_of(tokens) == '\ufffd'
        assert len(errors) == 1
        assert (errors.errors[0].line, errors.errors[0].column) == (1, 4)

    @pytest.mark.parametrize('chunk_size', [1, 2, 7, 64])
    def test_chunk_boundaries_do_not_change_tokens(self, chunk_size):
        document = (
            '<?xml version="1.0"?>\n<root date="2024">\n'
            '  <item name="Цвет &amp; вес">Привет, мир &#x263A;</item>\n'
            '  <!-- comment --><![CDATA[raw <data>]]>\n'
            '</root>\n'
        )
        expected, expected_errors = tokenize(document)
        tokens, errors = tokenize(document, chunk_size=chunk_size)
        assert tokens == expected
        assert len(errors) == len(expected_errors) == 0


class TestRecovery:

    def test_unclosed_element_is_repaired(self):
        tokens, errors = tokenize('<a><b>text</a>')
        assert describe(tokens) == ['<a', '<b', 'text', '</b', '</a', 'EOF']
        assert tokens[3].synthetic
        assert len(errors) == 1
        assert errors.errors[0].kind == ErrorKind.MALFORMED_XML
        assert (errors.errors[0].line, errors.errors[0].column) == (1, 4)

    def test_unexpected_closing_tag_is_ignored(self):
        tokens, errors = tokenize('<a></x></a>')
        assert describe(tokens) == ['<a', '</a', 'EOF']
        assert 'unexpected closing tag' in errors.errors[0].message

    def test_open_elements_are_closed_at_end_of_stream(self):
        tokens, errors = tokenize('<a><b>')
        assert describe(tokens) == ['<a', '<b', '</b', '</a', 'EOF']
        assert all(t.synthetic for t in tokens if isinstance(t, EndTag))
        assert len(errors) == 2

    def test_unterminated_start_tag_is_dropped(self):
        tokens, errors = tokenize('<a><b attr="1" <c>x</c></a>')
        assert describe(tokens) == ['<a', '<c', 'x', '</c', '</a', 'EOF']
        assert errors.errors[0].message == "unterminated start tag"
        assert (errors.errors[0].line, errors.errors[0].column) == (1, 4)

    def test_stray_less_than_is_kept_as_text(self):
        tokens, errors = tokenize('<a>1 < 2</a>')
        assert text_of(tokens) == '1 < 2'
        assert errors.errors[0].message == "unescaped '<' in text"

    def test_unquoted_and_valueless_attributes(self):
        tokens, errors = tokenize('<a x=1 y></a>')
        assert tokens[0].attrs == {'x': '1', 'y': ''}
        assert len(errors) == 2

    def test_duplicate_attribute_keeps_first_value(self):
        tokens, errors = tokenize('<a x="1" x="2"/>')
        assert tokens[0].attrs == {'x': '1'}
        assert "duplicate attribute 'x'" in errors.errors[0].message

    def test_unterminated_comment_resumes_at_next_tag(self):
        tokens, errors = tokenize('<a><!-- never closed <b>x</b></a>')
        assert describe(tokens) == ['<a', '<b', 'x', '</b', '</a', 'EOF']
        assert errors.errors[0].message == "unterminated comment"

    def test_comment_search_is_bounded(self):
        document = '<!-- open <a>' + '<b>x</b>' * 50 + '</a>'
        tokens, errors = tokenize(document, chunk_size=16, max_markup_size=32)
        assert describe(tokens)[:4] == ['<a', '<b', 'x', '</b']
        assert describe(tokens)[-2:] == ['</a', 'EOF']
        assert len(errors) == 1
        assert errors.errors[0].message == "comment not terminated within 32 characters"
        assert (errors.errors[0].line, errors.errors[0].column) == (1, 1)

    def test_repeated_sibling_closes_the_open_one(self):
        tokens, errors = tokenize('<offers><offer><name>a<offer>b</offer></offers>', implicit_close={'offer'})
        assert describe(tokens) == [
            '<offers', '<offer', '<name', 'a', '</name', '</offer', '<offer', 'b', '</offer', '</offers', 'EOF',
        ]
        assert tokens[4].synthetic and tokens[5].synthetic
        assert [(e.line, e.column) for e in errors.errors] == [(1, 16), (1, 9)]
        assert "is not closed before the next <offer>" in errors.errors[1].message

    def test_nesting_is_kept_for_other_elements(self):
        tokens, errors = tokenize('<a><a>x</a></a>', implicit_close={'offer'})
        assert describe(tokens) == ['<a', '<a', 'x', '</a', '</a', 'EOF']
        assert len(errors) == 0


class TestStreamFailure:

    class FailingStream:
        def __init__(self, data):
            self.data = data
            self.calls = 0

        def read(self, size):
            self.calls += 1
            if self.calls > 1:
                raise OSError("connection reset")
            return self.data

    def test_read_error_raises_stream_failure(self):
        tokenizer = XmlTokenizer(self.FailingStream(b'<a><b>partial'), ErrorCollector())
        seen = []
        with pytest.raises(StreamFailure):
            for token in tokenizer:
                seen.append(token)
        assert describe(seen) == ['<a', '<b']
