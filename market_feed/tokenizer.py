"""
Streaming XML tokenizer.
Reads a feed stream chunk by chunk and hands out one token at a time:
start tags, end tags, text and end-of-stream. Malformed markup is
reported to the error collector and skipped; element nesting is repaired
so consumers always see balanced start/end tokens.
"""

import codecs
import logging
import re
import zlib
from collections import deque
from dataclasses import dataclass
from html.entities import name2codepoint
from typing import IO, Deque, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from .cursor import Cursor, Position
from .errors import ErrorCollector, StreamFailure
from .models import ErrorKind

logger = logging.getLogger(__name__)

XML_ENTITIES = {'lt': '<', 'gt': '>', 'amp': '&', 'apos': "'", 'quot': '"'}

_NAME_START_RE = re.compile(r'[A-Za-z_:\u00C0-\U0010FFFF]')
_NAME_RE = re.compile(r'[A-Za-z_:\u00C0-\U0010FFFF][\w.:\-\u00B7\u00C0-\U0010FFFF]*')
_TAG_SCAN_RE = re.compile(r'[<>"\']')
_WS_RE = re.compile(r'\s*')
_ATTR_RE = re.compile(
    r'(?P<name>[^\s=/>"\'<]+)'
    r'(?:\s*=\s*(?:"(?P<dq>[^"]*)"|\'(?P<sq>[^\']*)\'|(?P<bare>[^\s"\'>=]+)))?'
)
_REF_RE = re.compile(r'&(?:#([0-9]+)|#[xX]([0-9a-fA-F]+)|([A-Za-z_][\w.\-]*))?(;?)')


@dataclass(frozen=True)
class StartTag:
    name: str
    attrs: Dict[str, str]
    position: Position
    self_closing: bool = False


@dataclass(frozen=True)
class EndTag:
    name: str
    position: Position
    synthetic: bool = False  # inserted to repair nesting


@dataclass(frozen=True)
class Text:
    text: str
    position: Position
    cdata: bool = False


@dataclass(frozen=True)
class EndOfStream:
    position: Position


Token = Union[StartTag, EndTag, Text, EndOfStream]


def _is_xml_char(codepoint: int) -> bool:
    return (codepoint in (0x9, 0xA, 0xD)
            or 0x20 <= codepoint <= 0xD7FF
            or 0xE000 <= codepoint <= 0xFFFD
            or 0x10000 <= codepoint <= 0x10FFFF)


class XmlTokenizer:
    """
    Pull-based tokenizer over a binary (or text) stream.

    The stream is read lazily in ``chunk_size`` pieces. Only the markup or
    text run currently being scanned is kept in memory. Iterating yields
    tokens until (and including) a single ``EndOfStream``.
    """

    def __init__(self,
                 stream: IO,
                 errors: ErrorCollector,
                 chunk_size: int = 64 * 1024,
                 html_entities: bool = False,
                 implicit_close: Iterable[str] = (),
                 max_markup_size: int = 1024 * 1024):
        """
        Initialize tokenizer.

        Args:
            stream: Object with a ``read(size)`` method returning bytes or str
            errors: Collector receiving MalformedXml records
            chunk_size: Read size
            html_entities: Also resolve HTML named entities such as &nbsp;
            implicit_close: Element names that never nest; a start tag of one
                of them closes the open element of the same name
            max_markup_size: Characters buffered while looking for the end of
                a comment, CDATA section, DOCTYPE or processing instruction
        """
        self._stream = stream
        self._errors = errors
        self._chunk_size = chunk_size
        self._html_entities = html_entities
        self._implicit_close: FrozenSet[str] = frozenset(implicit_close)
        self._max_markup_size = max_markup_size
        self._decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        self._buf = ''
        self._pos = 0
        self._eof = False
        self._started = False
        self._finished = False
        self._cursor = Cursor()
        self._open: List[Tuple[str, Position]] = []
        self._pending: Deque[Token] = deque()

    @property
    def depth(self) -> int:
        return len(self._open)

    @property
    def position(self) -> Position:
        return self._cursor.position

    def __iter__(self):
        return self

    def __next__(self) -> Token:
        while not self._pending:
            if self._finished:
                raise StopIteration
            self._scan()
        return self._pending.popleft()

    # -- buffer management -------------------------------------------------

    def _fill(self) -> bool:
        """Read one more chunk. Returns False once the stream is exhausted."""
        if self._eof:
            return False
        try:
            chunk = self._stream.read(self._chunk_size)
        except (OSError, EOFError, zlib.error) as e:
            raise StreamFailure(
                f"Failed to read feed stream: {e}",
                context={'position': str(self._cursor.position)},
            ) from e

        if not chunk:
            self._eof = True
            text = self._decoder.decode(b'', final=True)
        elif isinstance(chunk, str):
            text = chunk
        else:
            text = self._decoder.decode(chunk)

        if text and not self._started:
            self._started = True
            if text.startswith('\ufeff'):
                text = text[1:]

        if '\ufffd' in text and not isinstance(chunk, str):
            where = self._cursor.position.advanced(self._buf[self._pos:])
            where = where.advanced(text[:text.index('\ufffd')])
            self._error(where, "invalid UTF-8 byte sequence")

        self._buf += text
        return bool(text) or not self._eof

    def _ensure(self, size: int) -> bool:
        while len(self._buf) - self._pos < size:
            if not self._fill():
                return False
        return True

    def _compact(self) -> None:
        if self._pos and (self._pos == len(self._buf) or self._pos >= self._chunk_size):
            self._buf = self._buf[self._pos:]
            self._pos = 0

    def _consume(self, end: int) -> str:
        text = self._buf[self._pos:end]
        self._cursor.advance(text)
        self._pos = end
        return text

    def _find(self, needle: str, start: int, limit: Optional[int] = None) -> int:
        """Find ``needle``, reading ahead at most ``limit`` characters past the current position."""
        index = self._buf.find(needle, start)
        while index == -1:
            if limit is not None and len(self._buf) - self._pos >= limit:
                return -1
            searched = max(start, len(self._buf) - len(needle) + 1)
            if not self._fill():
                return -1
            index = self._buf.find(needle, searched)
        return index

    def _resync(self, start: int) -> None:
        """Skip ahead to the next '<' at or after ``start``."""
        index = self._find('<', start)
        end = index if index != -1 else len(self._buf)
        skipped = self._consume(end)
        logger.debug(f"Resynchronized at {self._cursor.position}, skipped {len(skipped)} chars")

    def _error(self, position: Position, message: str, value: str = '') -> None:
        self._errors.add(ErrorKind.MALFORMED_XML, position, message, value)

    # -- scanning ----------------------------------------------------------

    def _scan(self) -> None:
        self._compact()
        if not self._ensure(1):
            self._close_all()
            self._pending.append(EndOfStream(self._cursor.position))
            self._finished = True
            return

        if self._buf[self._pos] != '<':
            self._scan_text()
            return

        self._ensure(2)
        following = self._buf[self._pos + 1:self._pos + 2]
        if following == '/':
            self._scan_end_tag()
        elif following == '!':
            self._scan_declaration()
        elif following == '?':
            self._scan_construct('<?', '?>', 'processing instruction')
        elif following and _NAME_START_RE.match(following):
            self._scan_start_tag()
        else:
            position = self._cursor.position
            self._error(position, "unescaped '<' in text", self._buf[self._pos:self._pos + 20])
            self._pending.append(Text(self._consume(self._pos + 1), position))

    def _scan_text(self) -> None:
        position = self._cursor.position
        index = self._buf.find('<', self._pos)
        while index == -1:
            searched = len(self._buf)
            if not self._fill():
                break
            index = self._buf.find('<', searched)
        raw = self._consume(index if index != -1 else len(self._buf))
        self._pending.append(Text(self._unescape(raw, position), position))

    def _scan_construct(self, opener: str, terminator: str, what: str) -> Optional[str]:
        """Consume ``opener ... terminator`` and return the content between."""
        position = self._cursor.position
        end = self._find(terminator, self._pos + len(opener), self._max_markup_size)
        if end == -1:
            if self._eof:
                message = f"unterminated {what}"
            else:
                message = f"{what} not terminated within {self._max_markup_size} characters"
            self._error(position, message, self._buf[self._pos:self._pos + 40])
            self._resync(self._pos + 1)
            return None
        content = self._buf[self._pos + len(opener):end]
        self._consume(end + len(terminator))
        return content

    def _scan_declaration(self) -> None:
        self._ensure(9)
        if self._buf.startswith('<!--', self._pos):
            self._scan_construct('<!--', '-->', 'comment')
        elif self._buf.startswith('<![CDATA[', self._pos):
            position = self._cursor.position
            content = self._scan_construct('<![CDATA[', ']]>', 'CDATA section')
            if content is not None:
                self._pending.append(Text(content, position, cdata=True))
        elif self._buf.startswith('<!DOCTYPE', self._pos):
            close = self._find('>', self._pos, self._max_markup_size)
            subset = self._buf.find('[', self._pos, close if close != -1 else len(self._buf))
            terminator = ']>' if subset != -1 else '>'
            self._scan_construct('<!DOCTYPE', terminator, 'DOCTYPE declaration')
        else:
            self._error(self._cursor.position, "invalid markup declaration",
                        self._buf[self._pos:self._pos + 20])
            self._resync(self._pos + 1)

    def _find_tag_end(self, start: int) -> Tuple[int, bool]:
        """
        Locate the '>' closing the tag that starts at ``start``.

        Quoted attribute values may contain '>'. A '<' anywhere ends the
        scan: the tag is unterminated and the '<' is the resync point.

        Returns:
            (end index, closed) where end is one past '>' when closed
        """
        index = start + 1
        quote = None
        while True:
            match = _TAG_SCAN_RE.search(self._buf, index)
            if match is None:
                index = len(self._buf)
                if not self._fill():
                    return len(self._buf), False
                continue
            char = match.group()
            index = match.end()
            if char == '<':
                return match.start(), False
            if quote:
                if char == quote:
                    quote = None
            elif char == '>':
                return match.end(), True
            else:
                quote = char

    def _scan_start_tag(self) -> None:
        position = self._cursor.position
        end, closed = self._find_tag_end(self._pos)
        raw = self._consume(end)
        if not closed:
            self._error(position, "unterminated start tag", raw)
            return

        name_match = _NAME_RE.match(raw, 1)
        name = name_match.group()
        inner = raw[name_match.end():-1]
        self_closing = False
        stripped = inner.rstrip()
        if stripped.endswith('/'):
            self_closing = True
            inner = stripped[:-1]

        if name in self._implicit_close:
            self._close_implicitly(name, position)
        attrs = self._parse_attributes(inner, position.advanced(raw[:name_match.end()]), position)
        self._pending.append(StartTag(name, attrs, position, self_closing))
        if self_closing:
            self._pending.append(EndTag(name, position))
        else:
            self._open.append((name, position))

    def _parse_attributes(self, inner: str, base: Position, tag_position: Position) -> Dict[str, str]:
        attrs: Dict[str, str] = {}
        index = 0
        while True:
            start = _WS_RE.match(inner, index).end()
            if start >= len(inner):
                break
            if start == index:
                self._error(tag_position, "missing whitespace before attribute", inner[start:start + 40])

            match = _ATTR_RE.match(inner, start)
            if match is None:
                self._error(base.advanced(inner[:start]), "invalid attribute syntax", inner[start:start + 40])
                break

            name = match.group('name')
            for group in ('dq', 'sq', 'bare'):
                raw_value = match.group(group)
                if raw_value is not None:
                    value = self._unescape(raw_value, base.advanced(inner[:match.start(group)]))
                    if group == 'bare':
                        self._error(tag_position, f"unquoted value for attribute '{name}'", raw_value)
                    break
            else:
                value = ''
                self._error(tag_position, f"attribute '{name}' has no value", name)

            if name in attrs:
                self._error(tag_position, f"duplicate attribute '{name}'", value)
            else:
                attrs[name] = value
            index = match.end()
        return attrs

    def _scan_end_tag(self) -> None:
        position = self._cursor.position
        end, closed = self._find_tag_end(self._pos)
        raw = self._consume(end)
        content = raw[2:-1] if closed else raw[2:]
        name_match = _NAME_RE.fullmatch(content.strip())
        if name_match is None:
            self._error(position, "invalid end tag", raw)
            return
        if not closed:
            self._error(position, "unterminated end tag", raw)
        self._close(name_match.group(), position, raw)

    # -- nesting -----------------------------------------------------------

    def _close(self, name: str, position: Position, raw: str) -> None:
        if self._open and self._open[-1][0] == name:
            self._open.pop()
            self._pending.append(EndTag(name, position))
            return

        if any(open_name == name for open_name, _ in self._open):
            while self._open[-1][0] != name:
                open_name, open_position = self._open.pop()
                self._error(open_position, f"element <{open_name}> is not closed before </{name}>", open_name)
                self._pending.append(EndTag(open_name, position, synthetic=True))
            self._open.pop()
            self._pending.append(EndTag(name, position))
            return

        self._error(position, f"unexpected closing tag </{name}>", raw)

    def _close_implicitly(self, name: str, position: Position) -> None:
        """Close a still open ``name`` element (and its children) before a new sibling starts."""
        if not any(open_name == name for open_name, _ in self._open):
            return
        while True:
            open_name, open_position = self._open.pop()
            self._error(open_position, f"element <{open_name}> is not closed before the next <{name}>", open_name)
            self._pending.append(EndTag(open_name, position, synthetic=True))
            if open_name == name:
                return

    def _close_all(self) -> None:
        position = self._cursor.position
        while self._open:
            open_name, open_position = self._open.pop()
            self._error(open_position, f"element <{open_name}> is not closed at end of stream", open_name)
            self._pending.append(EndTag(open_name, position, synthetic=True))

    # -- references --------------------------------------------------------

    def _resolve(self, match: 're.Match') -> Optional[str]:
        decimal, hexadecimal, name, semicolon = match.groups()
        if not semicolon:
            return None
        if decimal or hexadecimal:
            codepoint = int(decimal) if decimal else int(hexadecimal, 16)
            if not _is_xml_char(codepoint):
                return None
            return chr(codepoint)
        if name in XML_ENTITIES:
            return XML_ENTITIES[name]
        if name and self._html_entities and name in name2codepoint:
            return chr(name2codepoint[name])
        return None

    def _unescape(self, text: str, position: Position) -> str:
        """Replace character and entity references; report broken ones."""
        if '&' not in text:
            return text
        parts = []
        last = 0
        for match in _REF_RE.finditer(text):
            parts.append(text[last:match.start()])
            last = match.end()
            decoded = self._resolve(match)
            if decoded is None:
                self._error(position.advanced(text[:match.start()]),
                            "invalid character or entity reference", match.group())
                parts.append(match.group())
            else:
                parts.append(decoded)
        parts.append(text[last:])
        return ''.join(parts)
